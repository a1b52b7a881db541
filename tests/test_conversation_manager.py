from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.adapters.markets import CreateMarketResult
from app.adapters.twitter import AccountMetrics, InboundTweet, TweetIncludes
from app.bot.replies import ReplySender
from app.core.rate_limit import RateLimiter
from app.db.models import ConversationState, WalletVoteResolver
from app.db.store import JsonStore
from app.services.conversation import IMAGE_UPLOAD_FAILED, ConversationManager
from app.services.spam_filter import SpamFilter

WALLET = "So11111111111111111111111111111111111111112"
VOTER = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
IMAGE_URL = "https://pbs.twimg.com/media/abc.jpg"
BASE_URL = "https://markets.example/markets"


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class _FakeTwitter:
    bot_user_id = "1"

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.metrics: AccountMetrics | None = AccountMetrics(followers=500, tweets=900, verified=True)
        self.fail_replies = False
        self._next_id = 1000

    async def reply(self, text: str, in_reply_to: str) -> str:
        if self.fail_replies:
            raise RuntimeError("429 Too Many Requests")
        self._next_id += 1
        reply_id = str(self._next_id)
        self.sent.append((reply_id, in_reply_to, text))
        return reply_id

    async def get_user_metrics(self, user_id: str) -> AccountMetrics | None:
        return self.metrics


class _FakeMarkets:
    def __init__(self, result: CreateMarketResult | None = None) -> None:
        self.result = result or CreateMarketResult(success=True, market_id="mkt-1", market_pda="PDA123", signatures=["sig"])
        self.calls: list = []

    async def create_market(self, params, fee_receiver=None) -> CreateMarketResult:
        self.calls.append((params, fee_receiver))
        return self.result


class _FakeImages:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.resolved: list[str] = []

    async def resolve(self, url: str) -> str:
        if self.fail:
            raise RuntimeError("upload service down")
        self.resolved.append(url)
        return "ipfs://image-cid"


def _build(tmp_path, twitter=None, markets=None, images=None):
    twitter = twitter or _FakeTwitter()
    clock = _Clock()
    store = JsonStore(tmp_path / "store.json")
    spam = SpamFilter(
        twitter,  # type: ignore[arg-type]
        RateLimiter(limit=3, window_seconds=3600, clock=clock),
        min_followers=100,
        min_tweets=100,
        require_verified=True,
    )
    manager = ConversationManager(
        store=store,
        replies=ReplySender(twitter),  # type: ignore[arg-type]
        spam_filter=spam,
        markets=markets or _FakeMarkets(),  # type: ignore[arg-type]
        images=images or _FakeImages(),  # type: ignore[arg-type]
        market_base_url=BASE_URL + "/",
        clock=clock,
    )
    return manager, store, twitter, clock


def _tweet(tweet_id: str, text: str, reply_to: str | None = None, media: bool = False, author: str = "42") -> InboundTweet:
    raw: dict = {"id": tweet_id, "author_id": author, "text": text}
    if reply_to:
        raw["referenced_tweets"] = [{"type": "replied_to", "id": reply_to}]
    if media:
        raw["attachments"] = {"media_keys": ["3_1"]}
    return InboundTweet.model_validate(raw)


INCLUDES = TweetIncludes.model_validate({"media": [{"media_key": "3_1", "type": "photo", "url": IMAGE_URL}]})


def _filled(wallet: str | None = WALLET, extra: str = "") -> str:
    lines = ["@marketbot", "Q: Will ETH flip BTC in 2099?", "CAT: crypto", "END: 2099-12-31"]
    if wallet:
        lines.append(f"WALLET: {wallet}")
    if extra:
        lines.append(extra)
    return "\n".join(lines)


@pytest.mark.asyncio
async def test_intent_then_filled_template_creates_market(tmp_path) -> None:
    markets = _FakeMarkets()
    manager, store, twitter, _ = _build(tmp_path, markets=markets)

    await manager.process_message(_tweet("100", "@marketbot create a market"), "alice")
    assert len(twitter.sent) == 1
    template_id, replied_to, text = twitter.sent[0]
    assert replied_to == "100"
    assert text.startswith("@alice ")

    conv = store.get_conversation_by_template_reply_tweet_id(template_id)
    assert conv is not None
    assert conv.state == ConversationState.TEMPLATE_SENT
    assert conv.expires_at - conv.created_at == timedelta(hours=1)

    await manager.process_message(_tweet("200", _filled(), reply_to=template_id, media=True), "alice", INCLUDES)

    done = store.get_conversation(conv.id)
    assert done is not None
    assert done.state == ConversationState.DONE
    assert done.filled_reply_tweet_id == "200"
    assert done.fee_receiver_wallet == WALLET
    assert done.market_result is not None
    assert done.market_result.url == f"{BASE_URL}/PDA123"
    assert done.params is not None and done.params.image_uri == "ipfs://image-cid"

    params, fee_receiver = markets.calls[0]
    assert params.question == "Will ETH flip BTC in 2099?"
    assert fee_receiver == WALLET

    _, replied_to, text = twitter.sent[-1]
    assert replied_to == "200"
    assert f"{BASE_URL}/PDA123" in text


@pytest.mark.asyncio
async def test_validation_errors_keep_conversation_open(tmp_path) -> None:
    manager, store, twitter, clock = _build(tmp_path)
    await manager.process_message(_tweet("100", "@marketbot new market"), "alice")
    template_id = twitter.sent[0][0]
    conv = store.get_conversation_by_template_reply_tweet_id(template_id)
    assert conv is not None

    clock.now += timedelta(minutes=10)
    await manager.process_message(_tweet("200", _filled(wallet=None), reply_to=template_id, media=True), "alice", INCLUDES)

    _, replied_to, text = twitter.sent[-1]
    assert replied_to == "200"
    assert "WALLET (Solana wallet address) is required" in text
    still_open = store.get_conversation(conv.id)
    assert still_open is not None
    assert still_open.state == ConversationState.TEMPLATE_SENT
    assert still_open.expires_at == conv.expires_at
    assert still_open.updated_at == clock.now

    await manager.process_message(_tweet("201", _filled(), reply_to=template_id, media=True), "alice", INCLUDES)
    assert store.get_conversation(conv.id).state == ConversationState.DONE  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_standalone_submission_skips_template(tmp_path) -> None:
    manager, store, twitter, _ = _build(tmp_path)
    text = _filled(extra=f"RESOLVER: {VOTER}")

    await manager.process_message(_tweet("300", text, media=True), "bob", INCLUDES)

    conversations = store.get_all_conversations()
    assert len(conversations) == 1
    conv = conversations[0]
    assert conv.state == ConversationState.DONE
    assert conv.trigger_tweet_id == "300"
    assert conv.filled_reply_tweet_id == "300"
    assert conv.template_reply_tweet_id is None
    assert conv.params is not None
    assert isinstance(conv.params.resolver_type, WalletVoteResolver)
    assert len(twitter.sent) == 1
    assert "PDA123" in twitter.sent[0][2]


@pytest.mark.asyncio
async def test_full_template_without_image_is_ignored(tmp_path) -> None:
    manager, store, twitter, _ = _build(tmp_path)
    await manager.process_message(_tweet("300", _filled()), "bob")
    assert twitter.sent == []
    assert store.get_all_conversations() == []
    assert store.is_processed("300")


@pytest.mark.asyncio
async def test_spam_filtered_user_gets_nothing(tmp_path) -> None:
    twitter = _FakeTwitter()
    twitter.metrics = AccountMetrics(followers=10, tweets=900, verified=True)
    manager, store, _, _ = _build(tmp_path, twitter=twitter)

    await manager.process_message(_tweet("100", "@marketbot create a market"), "alice")
    assert twitter.sent == []
    assert store.get_all_conversations() == []
    assert store.is_processed("100")


@pytest.mark.asyncio
async def test_rate_limit_caps_requests_per_user(tmp_path) -> None:
    manager, store, twitter, _ = _build(tmp_path)
    for i in range(5):
        await manager.process_message(_tweet(str(100 + i), "@marketbot create a market"), "alice")
    assert len(twitter.sent) == 3
    assert len(store.get_all_conversations()) == 3


@pytest.mark.asyncio
async def test_duplicate_delivery_is_ignored(tmp_path) -> None:
    manager, store, twitter, _ = _build(tmp_path)
    tweet = _tweet("100", "@marketbot create a market")
    await manager.process_message(tweet, "alice")
    await manager.process_message(tweet, "alice")
    assert len(twitter.sent) == 1
    assert len(store.get_all_conversations()) == 1


@pytest.mark.asyncio
async def test_unrelated_mention_is_ignored(tmp_path) -> None:
    manager, store, twitter, _ = _build(tmp_path)
    await manager.process_message(_tweet("100", "@marketbot gm"), "alice")
    assert twitter.sent == []
    assert store.get_all_conversations() == []


@pytest.mark.asyncio
async def test_template_send_failure_records_nothing(tmp_path) -> None:
    twitter = _FakeTwitter()
    twitter.fail_replies = True
    manager, store, _, _ = _build(tmp_path, twitter=twitter)
    await manager.process_message(_tweet("100", "@marketbot create a market"), "alice")
    assert store.get_all_conversations() == []
    assert store.is_processed("100")


@pytest.mark.asyncio
async def test_expiry_closes_only_stale_open_conversations(tmp_path) -> None:
    manager, store, twitter, clock = _build(tmp_path)
    await manager.process_message(_tweet("100", "@marketbot create a market"), "alice")
    template_id = twitter.sent[0][0]
    await manager.process_message(_tweet("300", _filled(), media=True), "bob", INCLUDES)

    clock.now += timedelta(minutes=59)
    assert manager.expire_stale_conversations() == 0

    clock.now += timedelta(minutes=1)
    assert manager.expire_stale_conversations() == 1
    states = sorted(c.state.value for c in store.get_all_conversations())
    assert states == ["DONE", "EXPIRED"]
    assert manager.expire_stale_conversations() == 0

    # a late reply no longer reaches the expired conversation
    sent_before = len(twitter.sent)
    await manager.process_message(_tweet("400", _filled(), reply_to=template_id), "alice")
    expired = store.get_conversation_by_template_reply_tweet_id(template_id)
    assert expired is not None and expired.state == ConversationState.EXPIRED
    assert expired.filled_reply_tweet_id is None
    assert len(twitter.sent) == sent_before


@pytest.mark.asyncio
async def test_late_reply_expires_conversation_without_sweep(tmp_path) -> None:
    markets = _FakeMarkets()
    manager, store, twitter, clock = _build(tmp_path, markets=markets)
    await manager.process_message(_tweet("100", "@marketbot create a market"), "alice")
    template_id = twitter.sent[0][0]

    clock.now += timedelta(hours=3)
    await manager.process_message(_tweet("200", _filled(), reply_to=template_id, media=True), "alice", INCLUDES)

    conv = store.get_conversation_by_template_reply_tweet_id(template_id)
    assert conv is not None
    assert conv.state == ConversationState.EXPIRED
    assert conv.filled_reply_tweet_id is None
    assert markets.calls == []
    assert len(twitter.sent) == 1
    assert manager.expire_stale_conversations() == 0


@pytest.mark.asyncio
async def test_image_failure_replies_and_leaves_conversation_open(tmp_path) -> None:
    markets = _FakeMarkets()
    manager, store, twitter, _ = _build(tmp_path, markets=markets, images=_FakeImages(fail=True))
    await manager.process_message(_tweet("100", "@marketbot create a market"), "alice")
    template_id = twitter.sent[0][0]

    await manager.process_message(_tweet("200", _filled(), reply_to=template_id, media=True), "alice", INCLUDES)

    assert IMAGE_UPLOAD_FAILED in twitter.sent[-1][2]
    assert markets.calls == []
    conv = store.get_conversation_by_template_reply_tweet_id(template_id)
    assert conv is not None and conv.state == ConversationState.TEMPLATE_SENT


@pytest.mark.asyncio
async def test_market_failure_marks_conversation_failed(tmp_path) -> None:
    markets = _FakeMarkets(CreateMarketResult(success=False, error="insufficient funds"))
    manager, store, twitter, _ = _build(tmp_path, markets=markets)

    await manager.process_message(_tweet("300", _filled(), media=True), "bob", INCLUDES)

    conv = store.get_all_conversations()[0]
    assert conv.state == ConversationState.FAILED
    assert conv.error_message == "insufficient funds"
    assert conv.market_result is None
    assert "insufficient funds" in twitter.sent[-1][2]


@pytest.mark.asyncio
async def test_market_client_exception_becomes_failure(tmp_path) -> None:
    class _Exploding(_FakeMarkets):
        async def create_market(self, params, fee_receiver=None) -> CreateMarketResult:
            raise RuntimeError("boom")

    manager, store, _, _ = _build(tmp_path, markets=_Exploding())
    await manager.process_message(_tweet("300", _filled(), media=True), "bob", INCLUDES)
    conv = store.get_all_conversations()[0]
    assert conv.state == ConversationState.FAILED
    assert conv.error_message == "boom"
