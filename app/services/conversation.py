from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from app.adapters.markets import CreateMarketResult, MarketCreationClient
from app.adapters.media import ImageUploader, image_url_for
from app.adapters.twitter import InboundTweet, TweetIncludes
from app.bot.replies import ReplySender
from app.core.nlu import detect_create_market_intent
from app.core.template_parser import ParseResult, parse_template
from app.db.models import Conversation, ConversationState, MarketParams, MarketResult
from app.db.store import JsonStore
from app.services.spam_filter import SpamFilter

logger = logging.getLogger(__name__)

CONVERSATION_TTL = timedelta(hours=1)
IMAGE_UPLOAD_FAILED = "Failed to upload image. Please try again."


class ConversationManager:
    """Drives one market-creation attempt per conversation.

    TEMPLATE_SENT -> CREATING_MARKET -> DONE | FAILED, or TEMPLATE_SENT -> EXPIRED.
    A standalone submission starts directly in CREATING_MARKET. Every message id
    is marked processed before anything else happens, so redelivery is a no-op.
    """

    def __init__(
        self,
        store: JsonStore,
        replies: ReplySender,
        spam_filter: SpamFilter,
        markets: MarketCreationClient,
        images: ImageUploader,
        market_base_url: str,
        ttl: timedelta = CONVERSATION_TTL,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.replies = replies
        self.spam_filter = spam_filter
        self.markets = markets
        self.images = images
        self.market_base_url = market_base_url.rstrip("/")
        self.ttl = ttl
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def market_url(self, market_pda: str) -> str:
        return f"{self.market_base_url}/{market_pda}"

    async def process_message(self, tweet: InboundTweet, author_username: str, includes: TweetIncludes | None = None) -> None:
        if self.store.is_processed(tweet.id):
            logger.debug("duplicate_message_skipped", extra={"event": "duplicate_message_skipped", "tweet_id": tweet.id})
            return
        self.store.mark_processed(tweet.id)

        logger.info(
            "mention_received",
            extra={"event": "mention_received", "tweet_id": tweet.id, "user_id": tweet.author_id, "username": author_username},
        )

        replied_to = tweet.replied_to_id
        if replied_to:
            conversation = self.store.get_conversation_by_template_reply_tweet_id(replied_to)
            if conversation and conversation.state == ConversationState.TEMPLATE_SENT:
                now = self.clock()
                # the sweep may not have run yet; the window still closes on time
                if conversation.is_expired(now):
                    self._expire(conversation, now)
                    return
                await self._handle_filled_template(conversation, tweet, author_username, includes)
                return

        image_url = image_url_for(tweet, includes)
        standalone = parse_template(tweet.text, has_image=bool(image_url), now=self.clock())
        if standalone.success:
            await self._handle_standalone(tweet, author_username, standalone, image_url)
            return

        if detect_create_market_intent(tweet.text):
            await self._handle_new_request(tweet, author_username)

    async def _handle_new_request(self, tweet: InboundTweet, username: str) -> None:
        if not await self.spam_filter.admit(tweet.author_id, username, tweet.id):
            return

        logger.info(
            "intent_detected",
            extra={
                "event": "intent_detected",
                "tweet_id": tweet.id,
                "user_id": tweet.author_id,
                "username": username,
                "user_market_count": self.store.get_user_market_count(tweet.author_id),
            },
        )

        reply_id = await self.replies.send_template(username, tweet.id)
        if not reply_id:
            return

        conversation = Conversation.open(
            trigger_tweet_id=tweet.id,
            template_reply_tweet_id=reply_id,
            user_id=tweet.author_id,
            username=username,
            state=ConversationState.TEMPLATE_SENT,
            now=self.clock(),
            ttl=self.ttl,
        )
        self.store.save_conversation(conversation)
        logger.info(
            "conversation_opened",
            extra={"event": "conversation_opened", "conversation_id": conversation.id, "expires_at": conversation.expires_at.isoformat()},
        )

    async def _handle_filled_template(
        self,
        conversation: Conversation,
        tweet: InboundTweet,
        username: str,
        includes: TweetIncludes | None,
    ) -> None:
        now = self.clock()
        conversation.filled_reply_tweet_id = tweet.id
        image_url = image_url_for(tweet, includes)

        logger.info(
            "template_received",
            extra={"event": "template_received", "tweet_id": tweet.id, "conversation_id": conversation.id, "username": username},
        )

        parsed = parse_template(tweet.text, has_image=bool(image_url), now=now)
        if not parsed.success:
            logger.info(
                "template_parse_failed",
                extra={
                    "event": "template_parse_failed",
                    "tweet_id": tweet.id,
                    "conversation_id": conversation.id,
                    "errors": "; ".join(parsed.errors),
                },
            )
            # stays open for another attempt; expires_at is left alone
            conversation.transition(ConversationState.TEMPLATE_SENT, now)
            self.store.save_conversation(conversation)
            await self.replies.send_validation_error(username, tweet.id, parsed.errors)
            return

        params = await self._attach_image(parsed, image_url, username, tweet.id)
        if params is None:
            return

        current = self.store.get_conversation(conversation.id)
        if current is None or current.state != ConversationState.TEMPLATE_SENT:
            logger.warning(
                "conversation_no_longer_open",
                extra={
                    "event": "conversation_no_longer_open",
                    "conversation_id": conversation.id,
                    "state": current.state.value if current else None,
                },
            )
            return

        conversation.start_market_creation(params, parsed.fee_receiver_wallet or "", self.clock())
        self.store.save_conversation(conversation)
        await self._create_market(conversation, tweet.id, username)

    async def _handle_standalone(
        self,
        tweet: InboundTweet,
        username: str,
        parsed: ParseResult,
        image_url: str | None,
    ) -> None:
        if not await self.spam_filter.admit(tweet.author_id, username, tweet.id):
            return

        logger.info(
            "standalone_template_received",
            extra={"event": "standalone_template_received", "tweet_id": tweet.id, "user_id": tweet.author_id, "username": username},
        )

        params = await self._attach_image(parsed, image_url, username, tweet.id)
        if params is None:
            return

        conversation = Conversation.open(
            trigger_tweet_id=tweet.id,
            filled_reply_tweet_id=tweet.id,
            user_id=tweet.author_id,
            username=username,
            state=ConversationState.CREATING_MARKET,
            params=params,
            fee_receiver_wallet=parsed.fee_receiver_wallet,
            now=self.clock(),
            ttl=self.ttl,
        )
        self.store.save_conversation(conversation)
        await self._create_market(conversation, tweet.id, username)

    async def _attach_image(self, parsed: ParseResult, image_url: str | None, username: str, tweet_id: str) -> MarketParams | None:
        params = parsed.params
        if params is None:
            return None
        if not image_url:
            return params
        try:
            logger.info("downloading_image", extra={"event": "downloading_image", "tweet_id": tweet_id, "image_url": image_url})
            params.image_uri = await self.images.resolve(image_url)
        except Exception as exc:  # noqa: BLE001
            logger.error("image_upload_failed", extra={"event": "image_upload_failed", "tweet_id": tweet_id, "error": str(exc)})
            await self.replies.send_error(username, tweet_id, IMAGE_UPLOAD_FAILED)
            return None
        return params

    async def _create_market(self, conversation: Conversation, reply_to_id: str, username: str) -> None:
        params = conversation.params
        if params is None:
            raise ValueError(f"conversation {conversation.id} has no market params")

        logger.info(
            "market_requested",
            extra={
                "event": "market_requested",
                "conversation_id": conversation.id,
                "question": params.question,
                "fee_receiver_wallet": conversation.fee_receiver_wallet,
            },
        )
        try:
            result = await self.markets.create_market(params, conversation.fee_receiver_wallet)
        except Exception as exc:  # noqa: BLE001
            logger.exception("market_client_crashed", extra={"event": "market_client_crashed", "conversation_id": conversation.id})
            result = CreateMarketResult(success=False, error=str(exc) or exc.__class__.__name__)

        if result.success and result.market_pda:
            url = self.market_url(result.market_pda)
            conversation.complete(
                MarketResult(
                    market_id=result.market_id or "",
                    market_pda=result.market_pda,
                    signatures=result.signatures,
                    url=url,
                ),
                self.clock(),
            )
            self.store.save_conversation(conversation)
            logger.info(
                "conversation_done",
                extra={
                    "event": "conversation_done",
                    "conversation_id": conversation.id,
                    "market_id": result.market_id,
                    "market_pda": result.market_pda,
                    "fee_receiver_wallet": conversation.fee_receiver_wallet,
                },
            )
            await self.replies.send_success(username, reply_to_id, url, params.question)
            return

        error = result.error or "Unknown error"
        conversation.fail(error, self.clock())
        self.store.save_conversation(conversation)
        logger.warning("conversation_failed", extra={"event": "conversation_failed", "conversation_id": conversation.id, "error": error})
        await self.replies.send_error(username, reply_to_id, error)

    def _expire(self, conversation: Conversation, now: datetime) -> None:
        conversation.transition(ConversationState.EXPIRED, now)
        self.store.save_conversation(conversation)
        logger.info(
            "conversation_expired",
            extra={"event": "conversation_expired", "conversation_id": conversation.id, "username": conversation.username},
        )

    def expire_stale_conversations(self) -> int:
        now = self.clock()
        expired = 0
        for conversation in self.store.get_all_conversations():
            if conversation.state != ConversationState.TEMPLATE_SENT or not conversation.is_expired(now):
                continue
            self._expire(conversation, now)
            expired += 1
        return expired
