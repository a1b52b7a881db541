from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from tweepy.asynchronous import AsyncClient

logger = logging.getLogger(__name__)

TWEET_FIELDS = ["author_id", "conversation_id", "in_reply_to_user_id", "referenced_tweets", "created_at", "attachments"]
MEDIA_FIELDS = ["url", "preview_image_url", "type"]
EXPANSIONS = ["author_id", "attachments.media_keys"]
USER_METRIC_FIELDS = ["public_metrics", "verified", "verified_type"]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ReferencedTweet(_Payload):
    type: str
    id: str


class Attachments(_Payload):
    media_keys: list[str] = Field(default_factory=list)


class InboundTweet(_Payload):
    id: str
    author_id: str
    text: str = ""
    referenced_tweets: list[ReferencedTweet] = Field(default_factory=list)
    attachments: Attachments | None = None

    @property
    def replied_to_id(self) -> str | None:
        for ref in self.referenced_tweets:
            if ref.type == "replied_to":
                return ref.id
        return None

    @property
    def media_keys(self) -> list[str]:
        return self.attachments.media_keys if self.attachments else []


class MediaItem(_Payload):
    media_key: str
    type: str
    url: str | None = None
    preview_image_url: str | None = None


class TwitterUser(_Payload):
    id: str
    username: str


class TweetIncludes(_Payload):
    media: list[MediaItem] = Field(default_factory=list)
    users: list[TwitterUser] = Field(default_factory=list)

    def username_for(self, user_id: str) -> str | None:
        for user in self.users:
            if user.id == user_id:
                return user.username
        return None


@dataclass
class MentionBatch:
    tweets: list[dict[str, Any]] = field(default_factory=list)
    newest_id: str | None = None
    includes: dict[str, Any] = field(default_factory=dict)


@dataclass
class AccountMetrics:
    followers: int
    tweets: int
    verified: bool


def _raw(obj: Any) -> dict[str, Any]:
    # tweepy models keep the API payload on .data
    data = getattr(obj, "data", obj)
    return dict(data) if isinstance(data, dict) else {}


class TwitterAdapter:
    def __init__(
        self,
        bot_user_id: str,
        consumer_key: str,
        consumer_secret: str,
        access_token: str,
        access_secret: str,
        bearer_token: str = "",
        client: AsyncClient | None = None,
    ) -> None:
        self.bot_user_id = bot_user_id
        self.client = client or AsyncClient(
            bearer_token=bearer_token or None,
            consumer_key=consumer_key,
            consumer_secret=consumer_secret,
            access_token=access_token,
            access_token_secret=access_secret,
        )

    async def poll_mentions(self, since_id: str | None) -> MentionBatch:
        kwargs: dict[str, Any] = {
            "id": self.bot_user_id,
            "max_results": 100,
            "tweet_fields": TWEET_FIELDS,
            "media_fields": MEDIA_FIELDS,
            "expansions": EXPANSIONS,
            "user_fields": ["username"],
            "user_auth": True,
        }
        if since_id:
            kwargs["since_id"] = since_id
        resp = await self.client.get_users_mentions(**kwargs)

        tweets = [_raw(t) for t in (resp.data or [])]
        includes_raw = resp.includes or {}
        includes = {
            "media": [_raw(m) for m in includes_raw.get("media", [])],
            "users": [_raw(u) for u in includes_raw.get("users", [])],
        }
        meta = resp.meta or {}
        newest_id = meta.get("newest_id") or (tweets[0].get("id") if tweets else None) or since_id
        return MentionBatch(tweets=tweets, newest_id=newest_id, includes=includes)

    async def reply(self, text: str, in_reply_to: str) -> str:
        resp = await self.client.create_tweet(text=text, in_reply_to_tweet_id=in_reply_to, user_auth=True)
        return str(_raw(resp.data)["id"])

    async def get_user_metrics(self, user_id: str) -> AccountMetrics | None:
        resp = await self.client.get_user(id=user_id, user_fields=USER_METRIC_FIELDS, user_auth=True)
        data = _raw(resp.data)
        metrics = data.get("public_metrics")
        if not metrics:
            return None
        return AccountMetrics(
            followers=int(metrics.get("followers_count") or 0),
            tweets=int(metrics.get("tweet_count") or 0),
            verified=data.get("verified") is True,
        )

    async def get_username(self, user_id: str) -> str | None:
        resp = await self.client.get_user(id=user_id, user_auth=True)
        return _raw(resp.data).get("username")
