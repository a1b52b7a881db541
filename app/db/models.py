from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class StoreModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConversationState(str, Enum):
    TEMPLATE_SENT = "TEMPLATE_SENT"
    CREATING_MARKET = "CREATING_MARKET"
    DONE = "DONE"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


TERMINAL_STATES = {ConversationState.DONE, ConversationState.FAILED, ConversationState.EXPIRED}

ALLOWED_TRANSITIONS: dict[ConversationState, set[ConversationState]] = {
    ConversationState.TEMPLATE_SENT: {
        ConversationState.TEMPLATE_SENT,
        ConversationState.CREATING_MARKET,
        ConversationState.EXPIRED,
    },
    ConversationState.CREATING_MARKET: {ConversationState.DONE, ConversationState.FAILED},
    ConversationState.DONE: set(),
    ConversationState.FAILED: set(),
    ConversationState.EXPIRED: set(),
}


class InvalidTransitionError(Exception):
    pass


class UmaResolver(StoreModel):
    type: Literal["uma"] = "uma"


class WalletVoteResolver(StoreModel):
    type: Literal["walletVote"] = "walletVote"
    voters: list[str]


ResolverConfig = Annotated[Union[UmaResolver, WalletVoteResolver], Field(discriminator="type")]


class MarketParams(StoreModel):
    question: str
    category: str
    end_date: date
    description: str | None = None
    rules: str | None = None
    image_uri: str | None = None
    resolver_type: ResolverConfig = Field(default_factory=UmaResolver)


class MarketResult(StoreModel):
    market_id: str
    market_pda: str
    signatures: list[str] = Field(default_factory=list)
    url: str


class Conversation(StoreModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    trigger_tweet_id: str
    template_reply_tweet_id: str | None = None
    filled_reply_tweet_id: str | None = None
    user_id: str
    username: str
    state: ConversationState
    params: MarketParams | None = None
    fee_receiver_wallet: str | None = None
    market_result: MarketResult | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime

    @classmethod
    def open(
        cls,
        *,
        trigger_tweet_id: str,
        user_id: str,
        username: str,
        state: ConversationState,
        now: datetime,
        ttl: timedelta,
        **fields,
    ) -> Conversation:
        return cls(
            trigger_tweet_id=trigger_tweet_id,
            user_id=user_id,
            username=username,
            state=state,
            created_at=now,
            updated_at=now,
            expires_at=now + ttl,
            **fields,
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def transition(self, new_state: ConversationState, now: datetime) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(f"{self.id}: {self.state.value} -> {new_state.value} is not allowed")
        self.state = new_state
        self.updated_at = now

    def start_market_creation(self, params: MarketParams, fee_receiver_wallet: str, now: datetime) -> None:
        self.transition(ConversationState.CREATING_MARKET, now)
        self.params = params
        self.fee_receiver_wallet = fee_receiver_wallet

    def complete(self, result: MarketResult, now: datetime) -> None:
        self.transition(ConversationState.DONE, now)
        self.market_result = result

    def fail(self, error_message: str, now: datetime) -> None:
        self.transition(ConversationState.FAILED, now)
        self.error_message = error_message


class StoreData(StoreModel):
    last_mention_id: str | None = None
    conversations: dict[str, Conversation] = Field(default_factory=dict)
    processed_tweet_ids: list[str] = Field(default_factory=list)
