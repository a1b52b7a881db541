from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.db.models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATES,
    Conversation,
    ConversationState,
    InvalidTransitionError,
    MarketResult,
)

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def _open(state: ConversationState = ConversationState.TEMPLATE_SENT) -> Conversation:
    return Conversation.open(
        trigger_tweet_id="1",
        user_id="42",
        username="alice",
        state=state,
        now=NOW,
        ttl=timedelta(hours=1),
    )


def test_terminal_states_have_no_exits() -> None:
    for state in TERMINAL_STATES:
        assert ALLOWED_TRANSITIONS[state] == set()
        conv = _open(state)
        for target in ConversationState:
            with pytest.raises(InvalidTransitionError):
                conv.transition(target, NOW)


def test_complete_requires_creating_market() -> None:
    result = MarketResult(market_id="1", market_pda="P", url="https://m.example/P")
    with pytest.raises(InvalidTransitionError):
        _open().complete(result, NOW)

    conv = _open(ConversationState.CREATING_MARKET)
    later = NOW + timedelta(seconds=5)
    conv.complete(result, later)
    assert conv.state == ConversationState.DONE
    assert conv.market_result == result
    assert conv.updated_at == later


def test_fail_records_message() -> None:
    conv = _open(ConversationState.CREATING_MARKET)
    conv.fail("no funds", NOW)
    assert conv.state == ConversationState.FAILED
    assert conv.error_message == "no funds"


def test_expiry_boundary_is_inclusive() -> None:
    conv = _open()
    assert not conv.is_expired(NOW + timedelta(minutes=59))
    assert conv.is_expired(NOW + timedelta(hours=1))


def test_serializes_with_camel_case_aliases() -> None:
    dumped = _open().model_dump(by_alias=True, mode="json")
    assert dumped["triggerTweetId"] == "1"
    assert dumped["expiresAt"].startswith("2026-10-18T13:00:00")
    assert Conversation.model_validate(dumped).trigger_tweet_id == "1"
