from __future__ import annotations

import logging
import os
from collections import deque
from pathlib import Path

from pydantic import ValidationError

from app.db.models import Conversation, ConversationState, StoreData

logger = logging.getLogger(__name__)

MAX_PROCESSED_TWEETS = 10_000


class StoreError(Exception):
    pass


class DuplicateTemplateReplyError(StoreError):
    pass


def _id_key(tweet_id: str) -> tuple[int, str]:
    # snowflake ids: longer is newer, equal length compares lexically
    return len(tweet_id), tweet_id


class JsonStore:
    """Single-document JSON store, rewritten atomically on every mutation.

    The document is ``{lastMentionId, conversations, processedTweetIds}``. Reads
    hand out copies so nothing changes on disk until ``save_conversation``.
    """

    def __init__(self, path: str | Path = "./data/store.json", max_processed: int = MAX_PROCESSED_TWEETS) -> None:
        self.path = Path(path)
        self.max_processed = max_processed
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.data = self._load()
        self._processed = deque(self.data.processed_tweet_ids)
        self._processed_set = set(self._processed)
        self._trim_processed()

    def _load(self) -> StoreData:
        if not self.path.exists():
            return StoreData()
        try:
            raw = self.path.read_text(encoding="utf-8")
            return StoreData.model_validate_json(raw)
        except (OSError, ValueError, ValidationError) as exc:
            raise StoreError(f"Unreadable store file {self.path}: {exc}") from exc

    def save(self) -> None:
        self.data.processed_tweet_ids = list(self._processed)
        payload = self.data.model_dump_json(by_alias=True, indent=2)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, self.path)

    # cursor

    def get_last_mention_id(self) -> str | None:
        return self.data.last_mention_id

    def set_last_mention_id(self, tweet_id: str) -> bool:
        current = self.data.last_mention_id
        if current is not None and _id_key(tweet_id) <= _id_key(current):
            return False
        self.data.last_mention_id = tweet_id
        self.save()
        return True

    # dedupe

    def is_processed(self, tweet_id: str) -> bool:
        return tweet_id in self._processed_set

    def mark_processed(self, tweet_id: str) -> None:
        if tweet_id not in self._processed_set:
            self._processed.append(tweet_id)
            self._processed_set.add(tweet_id)
            self._trim_processed()
        self.save()

    def _trim_processed(self) -> None:
        while len(self._processed) > self.max_processed:
            self._processed_set.discard(self._processed.popleft())

    # conversations

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        conv = self.data.conversations.get(conversation_id)
        return conv.model_copy(deep=True) if conv else None

    def get_conversation_by_template_reply_tweet_id(self, tweet_id: str) -> Conversation | None:
        for conv in self.data.conversations.values():
            if conv.template_reply_tweet_id == tweet_id:
                return conv.model_copy(deep=True)
        return None

    def get_all_conversations(self) -> list[Conversation]:
        return [conv.model_copy(deep=True) for conv in self.data.conversations.values()]

    def save_conversation(self, conversation: Conversation) -> None:
        reply_id = conversation.template_reply_tweet_id
        if reply_id:
            owner = self.get_conversation_by_template_reply_tweet_id(reply_id)
            if owner and owner.id != conversation.id:
                raise DuplicateTemplateReplyError(f"template reply {reply_id} already belongs to conversation {owner.id}")
        self.data.conversations[conversation.id] = conversation.model_copy(deep=True)
        self.save()

    def get_user_market_count(self, user_id: str) -> int:
        active = {ConversationState.DONE, ConversationState.CREATING_MARKET}
        return sum(1 for c in self.data.conversations.values() if c.user_id == user_id and c.state in active)
