from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    host: str = "0.0.0.0"
    port: int = 8000

    twitter_consumer_key: str = Field(default="", alias="TWITTER_CONSUMER_KEY")
    twitter_consumer_secret: str = Field(default="", alias="TWITTER_CONSUMER_SECRET")
    twitter_access_token: str = Field(default="", alias="TWITTER_ACCESS_TOKEN")
    twitter_access_secret: str = Field(default="", alias="TWITTER_ACCESS_SECRET")
    twitter_bearer_token: str = Field(default="", alias="TWITTER_BEARER_TOKEN")
    twitter_bot_user_id: str = Field(default="", alias="TWITTER_BOT_USER_ID")

    market_api_url: str = Field(default="https://api.yosoku.fun", alias="MARKET_API_URL")
    market_api_key: str = Field(default="", alias="MARKET_API_KEY")
    image_upload_url: str = Field(default="https://api.yosoku.fun/api/v1/upload-image", alias="IMAGE_UPLOAD_URL")
    market_base_url: str = Field(default="https://yosoku.fun/markets", alias="MARKET_BASE_URL")
    http_timeout_sec: float = Field(default=20.0, alias="HTTP_TIMEOUT_SEC")

    min_followers: int = Field(default=100, alias="MIN_FOLLOWERS")
    min_tweets: int = Field(default=100, alias="MIN_TWEETS")
    require_verified: bool = Field(default=True, alias="REQUIRE_VERIFIED")
    max_requests_per_hour: int = Field(default=3, alias="MAX_REQUESTS_PER_HOUR")

    mention_poll_interval_sec: int = Field(default=15, alias="MENTION_POLL_INTERVAL_SEC")
    expiry_sweep_interval_sec: int = Field(default=60, alias="EXPIRY_SWEEP_INTERVAL_SEC")
    conversation_ttl_minutes: int = Field(default=60, alias="CONVERSATION_TTL_MINUTES")
    store_path: str = Field(default="./data/store.json", alias="STORE_PATH")

    serverless_mode: bool = Field(default=False, alias="SERVERLESS_MODE")
    cron_secret: str = Field(default="", alias="CRON_SECRET")

    def missing_required(self) -> List[str]:
        required = {
            "TWITTER_CONSUMER_KEY": self.twitter_consumer_key,
            "TWITTER_CONSUMER_SECRET": self.twitter_consumer_secret,
            "TWITTER_ACCESS_TOKEN": self.twitter_access_token,
            "TWITTER_ACCESS_SECRET": self.twitter_access_secret,
            "TWITTER_BEARER_TOKEN": self.twitter_bearer_token,
            "TWITTER_BOT_USER_ID": self.twitter_bot_user_id,
        }
        return [name for name, value in required.items() if not value.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
