from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, HTTPException, Request

from app.adapters.markets import MarketCreationClient
from app.adapters.media import ImageUploader
from app.adapters.twitter import TwitterAdapter
from app.bot.replies import ReplySender
from app.core.config import Settings, get_settings
from app.core.container import ServiceHub
from app.core.http import ResilientHTTPClient
from app.core.logging import setup_logging
from app.core.rate_limit import RateLimiter
from app.db.store import JsonStore
from app.services.conversation import ConversationManager
from app.services.mentions import MentionPoller
from app.services.spam_filter import SpamFilter
from app.workers.scheduler import WorkerScheduler

logger = logging.getLogger(__name__)


def build_hub(settings: Settings, http: ResilientHTTPClient, twitter: TwitterAdapter | None = None) -> ServiceHub:
    store = JsonStore(settings.store_path)
    twitter = twitter or TwitterAdapter(
        bot_user_id=settings.twitter_bot_user_id,
        consumer_key=settings.twitter_consumer_key,
        consumer_secret=settings.twitter_consumer_secret,
        access_token=settings.twitter_access_token,
        access_secret=settings.twitter_access_secret,
        bearer_token=settings.twitter_bearer_token,
    )
    replies = ReplySender(twitter)
    rate_limiter = RateLimiter(limit=settings.max_requests_per_hour, window_seconds=3600)
    spam_filter = SpamFilter(
        twitter=twitter,
        rate_limiter=rate_limiter,
        min_followers=settings.min_followers,
        min_tweets=settings.min_tweets,
        require_verified=settings.require_verified,
    )
    images = ImageUploader(http=http, upload_url=settings.image_upload_url)
    markets = MarketCreationClient(http=http, api_url=settings.market_api_url, api_key=settings.market_api_key)
    manager = ConversationManager(
        store=store,
        replies=replies,
        spam_filter=spam_filter,
        markets=markets,
        images=images,
        market_base_url=settings.market_base_url,
        ttl=timedelta(minutes=settings.conversation_ttl_minutes),
    )
    return ServiceHub(
        settings=settings,
        http=http,
        store=store,
        twitter=twitter,
        replies=replies,
        rate_limiter=rate_limiter,
        spam_filter=spam_filter,
        images=images,
        markets=markets,
        conversation_manager=manager,
        mention_poller=MentionPoller(twitter=twitter, store=store, manager=manager),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level)

    missing = settings.missing_required()
    if missing:
        raise RuntimeError(f"Missing required env vars: {', '.join(missing)}")

    http = ResilientHTTPClient(timeout=settings.http_timeout_sec)
    try:
        hub = build_hub(settings, http)
    except Exception:
        await http.close()
        raise
    logger.info("starting", extra={"event": "starting", "store_path": settings.store_path, "market_api_url": settings.market_api_url})

    scheduler = None
    if not settings.serverless_mode:
        scheduler = WorkerScheduler(hub)
        scheduler.start()

    app.state.settings = settings
    app.state.hub = hub
    app.state.scheduler = scheduler

    try:
        yield
    finally:
        logger.info("shutting_down", extra={"event": "shutting_down"})
        if scheduler:
            scheduler.stop()
        hub.store.save()
        await http.close()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Market Mention Bot", version="1.0.0", lifespan=lifespan)

    def _cron_authorized(req: Request) -> bool:
        # Native Vercel cron invocations include this header.
        if req.headers.get("x-vercel-cron"):
            return True
        if not settings.cron_secret:
            return True
        if req.headers.get("authorization", "") == f"Bearer {settings.cron_secret}":
            return True
        return req.headers.get("x-cron-secret", "") == settings.cron_secret

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/ready")
    async def ready() -> dict:
        hub: ServiceHub = app.state.hub
        scheduler = app.state.scheduler
        if scheduler is not None and not scheduler.scheduler.running:
            raise HTTPException(status_code=503, detail="scheduler not running")
        if not hub.store.path.parent.exists():
            raise HTTPException(status_code=503, detail="store directory missing")
        return {"status": "ready", "last_mention_id": hub.store.get_last_mention_id()}

    @app.api_route("/tasks/mentions/poll", methods=["GET", "POST"])
    async def task_poll(req: Request) -> dict:
        if not _cron_authorized(req):
            raise HTTPException(status_code=401, detail="Unauthorized")
        count = await app.state.hub.mention_poller.run_once()
        return {"ok": True, "processed": count, "task": "mentions", "ts": datetime.now(timezone.utc).isoformat()}

    @app.api_route("/tasks/conversations/expire", methods=["GET", "POST"])
    async def task_expire(req: Request) -> dict:
        if not _cron_authorized(req):
            raise HTTPException(status_code=401, detail="Unauthorized")
        try:
            count = app.state.hub.conversation_manager.expire_stale_conversations()
            return {"ok": True, "expired": count, "task": "expiry", "ts": datetime.now(timezone.utc).isoformat()}
        except Exception as exc:  # noqa: BLE001
            logger.exception("task_expiry_failed", extra={"event": "task_expiry_failed", "error": str(exc)})
            return {"ok": False, "expired": 0, "task": "expiry", "error": str(exc), "ts": datetime.now(timezone.utc).isoformat()}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("app.main:app", host=settings.host, port=settings.port, reload=False)
