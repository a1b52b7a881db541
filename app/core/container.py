from __future__ import annotations

from dataclasses import dataclass

from app.adapters.markets import MarketCreationClient
from app.adapters.media import ImageUploader
from app.adapters.twitter import TwitterAdapter
from app.bot.replies import ReplySender
from app.core.config import Settings
from app.core.http import ResilientHTTPClient
from app.core.rate_limit import RateLimiter
from app.db.store import JsonStore
from app.services.conversation import ConversationManager
from app.services.mentions import MentionPoller
from app.services.spam_filter import SpamFilter


@dataclass
class ServiceHub:
    settings: Settings
    http: ResilientHTTPClient
    store: JsonStore
    twitter: TwitterAdapter
    replies: ReplySender
    rate_limiter: RateLimiter
    spam_filter: SpamFilter
    images: ImageUploader
    markets: MarketCreationClient
    conversation_manager: ConversationManager
    mention_poller: MentionPoller
