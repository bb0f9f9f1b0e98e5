from __future__ import annotations

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Upstream: on-chain TVL ───────────────────────────────────────────────
    etherscan_api_key: str = ""
    etherscan_api_base: str = "https://api.etherscan.io/v2/api"
    pendle_api_base: str = "https://api-v2.pendle.finance"
    chain_id: int = 1
    # Etherscan free tier allows 5 calls/sec
    etherscan_rate_limit_delay: float = 0.3
    tvl_timeout_seconds: float = 30.0
    tvl_max_attempts: int = 4
    tvl_retry_base_delay: float = 2.0

    # ── Upstream: season points ──────────────────────────────────────────────
    points_api_url: str = (
        "https://app.neutrl.fi/api/sentio?hash=e449740b504a998538eabad36695f9fc8f0cc9d8c0552cfeb66939978d2547ff"
        "&variables=%7B%22userId%22%3A%22ethereum-1-undefined%22%2C%22seasonProgramIds%22%3A%5B%22"
        "ethereum-1-seasonProgram-Season_Neutrl_Origin%22%2C%22plasma-9745-seasonProgram-Season_Neutrl_Origin%22%5D%7D"
    )
    points_season_program_id: str = "ethereum-1-seasonProgram-Season_Neutrl_Origin"
    points_user_agent: str = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    points_timeout_seconds: float = 30.0
    points_max_attempts: int = 3
    points_retry_base_delay: float = 2.0

    # ── Caching ──────────────────────────────────────────────────────────────
    points_cache_ttl_seconds: float = 60 * 60
    tvl_cache_ttl_seconds: float = 10 * 60

    # ── Storage ──────────────────────────────────────────────────────────────
    sqlite_path: Path = Path("./data/pointscope.db")
    database_url: str = ""
    supabase_url: str = ""
    supabase_service_key: str = ""
    snapshot_read_limit: int = 500

    # ── API / ops ────────────────────────────────────────────────────────────
    cron_secret: str = ""
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    log_level: str = "INFO"

    @field_validator("sqlite_path", mode="before")
    @classmethod
    def expand_sqlite_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser()

    @property
    def sql_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{self.sqlite_path}"

    @property
    def uses_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)


# Singleton: import and use `settings` everywhere
settings = Settings()
