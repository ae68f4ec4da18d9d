"""
Configuration loaded from environment variables.
"""
from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1",
]


class Settings(BaseSettings):
    # Logging
    log_level: str = "INFO"

    # CORS
    allowed_origin: str = "*"

    # Source site
    instagram_host: str = "instagram.com"

    # Page fetch
    page_fetch_timeout: float = 15.0
    user_agents: List[str] = DEFAULT_USER_AGENTS

    # Media streaming
    stream_timeout: float = 60.0
    stream_chunk_size: int = 64 * 1024
    stream_user_agent: str = DEFAULT_USER_AGENTS[0]
    stream_referer: str = "https://www.instagram.com/"
    download_filename_prefix: str = "savegram"

    # Optional paid extraction API, consulted after the page strategies fail
    api_backend_url: Optional[str] = None
    api_backend_key: str = ""
    api_backend_key_header: str = "x-api-key"
    api_backend_timeout: float = 20.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
