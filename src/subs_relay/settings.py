from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    public_base_url: Optional[str] = None
    force_https: bool = False

    # Result cache: 48h for hits, 5 min for empty answers
    search_cache_ttl: int = 48 * 60 * 60
    empty_search_cache_ttl: int = 300
    content_cache_ttl: int = 2 * 60 * 60
    search_cache_max_size: int = 5000
    content_cache_max_size: int = 1000

    ip_rate_limit_window: int = 60
    ip_rate_limit_max: int = 10

    search_timeout: float = 15.0
    download_timeout: float = 30.0
    metadata_timeout: float = 10.0

    primary_providers: List[str] = ["subsunacs", "subssab", "subsland"]
    fallback_provider: Optional[str] = "easternspirit"

    easternspirit_username: Optional[str] = None
    easternspirit_password: Optional[str] = None
    subsland_relay_url: Optional[str] = "https://r.jina.ai/"
    tmdb_api_key: Optional[str] = None

    log_level: str = "INFO"
    json_logs: bool = False
    host: str = "0.0.0.0"
    port: int = 7000

    class Config:
        env_prefix = "BG_SUBS_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def easternspirit_enabled(self) -> bool:
        return bool(self.easternspirit_username and self.easternspirit_password)


def get_settings() -> Settings:
    return Settings()
