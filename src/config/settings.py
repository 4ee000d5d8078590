"""Global guestbook settings"""

from dataclasses import dataclass
from typing import Optional

from pydantic_settings import BaseSettings


@dataclass(frozen=True)
class RemoteConfig:
    """Connection details for the hosted backend (table + blob store)."""

    url: str
    key: str
    bucket: str = "messages"
    table: str = "messages"
    timeout: float = 10.0


class Settings(BaseSettings):
    """
    Centralized configuration.
    Reads configs from env variables.
    """

    app_name: str = "Bridal Shower Guestbook"
    server_port: int = 8000
    log_level: str = "INFO"

    supabase_url: Optional[str] = None
    # Public key used by browsers/clients for direct access.
    supabase_anon_key: Optional[str] = None
    # Elevated key, server side only.
    supabase_service_key: Optional[str] = None

    storage_bucket: str = "messages"
    messages_table: str = "messages"

    data_file: str = "data/messages.json"
    photos_dir: str = "data/photos"

    api_base_url: str = "http://localhost:8000/api"

    redis_url: Optional[str] = None
    change_feed_channel: str = "messages:inserts"

    refetch_delay: float = 1.0
    request_timeout: float = 10.0

    model_config = {"env_file": ".env", "extra": "ignore"}

    def _remote(self, key: Optional[str]) -> Optional[RemoteConfig]:
        if not self.supabase_url or not key:
            return None
        return RemoteConfig(
            url=self.supabase_url.rstrip("/"),
            key=key,
            bucket=self.storage_bucket,
            table=self.messages_table,
            timeout=self.request_timeout,
        )

    def client_remote(self) -> Optional[RemoteConfig]:
        """Client-side credentials, or None when direct access is not configured."""
        return self._remote(self.supabase_anon_key)

    def server_remote(self) -> Optional[RemoteConfig]:
        """Server credentials (service key preferred), or None for local storage."""
        return self._remote(self.supabase_service_key or self.supabase_anon_key)


settings = Settings()
