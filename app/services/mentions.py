from __future__ import annotations

import logging

from pydantic import ValidationError

from app.adapters.twitter import InboundTweet, TweetIncludes, TwitterAdapter
from app.db.store import JsonStore
from app.services.conversation import ConversationManager

logger = logging.getLogger(__name__)

UNKNOWN_USERNAME = "unknown"


class MentionPoller:
    def __init__(self, twitter: TwitterAdapter, store: JsonStore, manager: ConversationManager) -> None:
        self.twitter = twitter
        self.store = store
        self.manager = manager

    async def _resolve_username(self, author_id: str, includes: TweetIncludes) -> str:
        username = includes.username_for(author_id)
        if username:
            return username
        try:
            return await self.twitter.get_username(author_id) or UNKNOWN_USERNAME
        except Exception as exc:  # noqa: BLE001
            logger.warning("username_lookup_failed", extra={"event": "username_lookup_failed", "user_id": author_id, "error": str(exc)})
            return UNKNOWN_USERNAME

    def _parse_includes(self, raw: dict) -> TweetIncludes:
        try:
            return TweetIncludes.model_validate(raw or {})
        except ValidationError as exc:
            logger.warning("malformed_includes", extra={"event": "malformed_includes", "error": str(exc)})
            return TweetIncludes()

    async def run_once(self) -> int:
        """Fetch and handle one batch of mentions, oldest first. Returns messages handled."""
        since_id = self.store.get_last_mention_id()
        try:
            batch = await self.twitter.poll_mentions(since_id)
        except Exception as exc:  # noqa: BLE001
            logger.error("poll_error", extra={"event": "poll_error", "since_id": since_id, "error": str(exc)})
            return 0

        logger.debug("poll_result", extra={"event": "poll_result", "count": len(batch.tweets), "newest_id": batch.newest_id})
        includes = self._parse_includes(batch.includes)
        handled = 0
        for raw in reversed(batch.tweets):
            try:
                tweet = InboundTweet.model_validate(raw)
            except ValidationError as exc:
                logger.warning(
                    "malformed_tweet_skipped",
                    extra={"event": "malformed_tweet_skipped", "tweet_id": str(raw.get("id")), "error": str(exc)},
                )
                continue
            if tweet.author_id == self.twitter.bot_user_id:
                continue
            try:
                username = await self._resolve_username(tweet.author_id, includes)
                await self.manager.process_message(tweet, username, includes)
                handled += 1
            except Exception as exc:  # noqa: BLE001
                logger.exception("message_failed", extra={"event": "message_failed", "tweet_id": tweet.id, "error": str(exc)})
        # advanced after the batch: a crash mid-batch refetches, the processed set dedupes
        if batch.newest_id:
            try:
                self.store.set_last_mention_id(batch.newest_id)
            except OSError as exc:
                logger.error("cursor_save_failed", extra={"event": "cursor_save_failed", "newest_id": batch.newest_id, "error": str(exc)})
        return handled
