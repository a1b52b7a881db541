from __future__ import annotations

import logging

from app.adapters.twitter import TwitterAdapter
from app.bot.templates import error_template, success_template, validation_error_template
from app.core.template_parser import build_template_prompt

logger = logging.getLogger(__name__)


class ReplySender:
    """Threads bot replies under a tweet. Delivery failures are logged, never raised."""

    def __init__(self, twitter: TwitterAdapter) -> None:
        self.twitter = twitter

    async def send_template(self, username: str, reply_to_id: str) -> str | None:
        try:
            reply_id = await self.twitter.reply(build_template_prompt(username), reply_to_id)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "template_send_failed",
                extra={"event": "template_send_failed", "tweet_id": reply_to_id, "username": username, "error": str(exc)},
            )
            return None
        logger.info(
            "template_sent",
            extra={"event": "template_sent", "tweet_id": reply_to_id, "reply_tweet_id": reply_id, "username": username},
        )
        return reply_id

    async def send_success(self, username: str, reply_to_id: str, url: str, question: str) -> None:
        try:
            reply_id = await self.twitter.reply(success_template(username, question, url), reply_to_id)
            logger.info(
                "success_reply_sent",
                extra={"event": "success_reply_sent", "tweet_id": reply_to_id, "reply_tweet_id": reply_id, "url": url},
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "success_reply_failed",
                extra={"event": "success_reply_failed", "tweet_id": reply_to_id, "username": username, "error": str(exc)},
            )

    async def send_error(self, username: str, reply_to_id: str, error: str) -> None:
        try:
            await self.twitter.reply(error_template(username, error), reply_to_id)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "error_reply_failed",
                extra={"event": "error_reply_failed", "tweet_id": reply_to_id, "username": username, "error": str(exc)},
            )

    async def send_validation_error(self, username: str, reply_to_id: str, errors: list[str]) -> None:
        try:
            await self.twitter.reply(validation_error_template(username, errors), reply_to_id)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "validation_reply_failed",
                extra={"event": "validation_reply_failed", "tweet_id": reply_to_id, "username": username, "error": str(exc)},
            )
