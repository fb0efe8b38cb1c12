from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    telegram_bot_token: str
    allowed_chat_ids: list[int] = []

    @field_validator("allowed_chat_ids", mode="before")
    @classmethod
    def parse_chat_ids(cls, v):
        if isinstance(v, str):
            return [int(x.strip()) for x in v.split(",") if x.strip()]
        if isinstance(v, int):
            return [v]
        return v

    default_currency: str = "USD"

    @field_validator("default_currency", mode="before")
    @classmethod
    def normalize_currency(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    db_path: str = "budgie.db"
    debug: bool = False
    health_check_port: int = 8080
    exchange_rate_api_key: str | None = None
    exchange_rate_url: str = "https://v6.exchangerate-api.com/v6"
    exchange_rate_cache_seconds: int = 3600
    exchange_rate_error_cache_seconds: int = 60
    exchange_rate_timeout: float = 10.0


settings = Settings()
