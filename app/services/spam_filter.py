from __future__ import annotations

import logging

from app.adapters.twitter import TwitterAdapter
from app.core.rate_limit import RateLimiter

logger = logging.getLogger(__name__)


class SpamFilter:
    def __init__(
        self,
        twitter: TwitterAdapter,
        rate_limiter: RateLimiter,
        min_followers: int,
        min_tweets: int,
        require_verified: bool,
    ) -> None:
        self.twitter = twitter
        self.rate_limiter = rate_limiter
        self.min_followers = min_followers
        self.min_tweets = min_tweets
        self.require_verified = require_verified

    async def admit(self, user_id: str, username: str, tweet_id: str) -> bool:
        ctx = {"user_id": user_id, "username": username, "tweet_id": tweet_id}

        limit = self.rate_limiter.check(user_id)
        if not limit.allowed:
            logger.info("user_rate_limited", extra={"event": "user_rate_limited", **ctx, "count": limit.count})
            return False

        try:
            metrics = await self.twitter.get_user_metrics(user_id)
        except Exception as exc:  # noqa: BLE001
            logger.error("spam_filter_error", extra={"event": "spam_filter_error", **ctx, "error": str(exc)})
            return False

        if metrics is None:
            logger.warning("spam_filter_no_metrics", extra={"event": "spam_filter_no_metrics", **ctx})
            return False

        if metrics.followers < self.min_followers or metrics.tweets < self.min_tweets:
            logger.info(
                "spam_filtered",
                extra={
                    "event": "spam_filtered",
                    **ctx,
                    "followers": metrics.followers,
                    "tweets": metrics.tweets,
                    "min_followers": self.min_followers,
                    "min_tweets": self.min_tweets,
                },
            )
            return False

        if self.require_verified and not metrics.verified:
            logger.info("spam_filtered_not_verified", extra={"event": "spam_filtered_not_verified", **ctx})
            return False

        return True
