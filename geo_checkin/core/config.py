from __future__ import annotations
from pydantic_settings import BaseSettings
from pydantic import Field
import secrets

# generated once per process when QR_SECRET is unset; tokens do not survive a restart
_EPHEMERAL_QR_SECRET = secrets.token_urlsafe(48)

class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")

    auth_jwks_url: str = Field(..., alias="AUTH_JWKS_URL")
    token_issuer: str = Field("authentication-svc", alias="TOKEN_ISSUER")

    events_base_url: str = Field("http://localhost:8002", alias="EVENTS_BASE_URL")

    # QR tokens
    qr_secret: str | None = Field(default=None, alias="QR_SECRET")
    qr_uri_scheme: str = Field("eviden://checkin", alias="QR_URI_SCHEME")
    security_level_ttls: dict[str, float] = Field(default_factory=dict, alias="SECURITY_LEVEL_TTLS")

    # Check-in gate
    max_location_age_seconds: float | None = Field(default=60.0, alias="MAX_LOCATION_AGE_SECONDS")
    store_timeout_seconds: float = Field(default=5.0, alias="STORE_TIMEOUT_SECONDS")

    # Redis
    redis_url: str = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")
    rl_enabled: bool = Field(default=True, alias="RL_ENABLED")
    rl_window_seconds: int = Field(default=60, alias="RL_WINDOW_SECONDS")
    rl_max_reqs: int = Field(default=60, alias="RL_MAX_REQS")

    # NATS
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_checkin: str = Field("checkins.recorded", alias="NATS_SUBJECT_CHECKIN")
    publish_checkins: bool = Field(default=True, alias="PUBLISH_CHECKINS")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    @property
    def qr_secret_effective(self) -> str:
        return self.qr_secret or _EPHEMERAL_QR_SECRET

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
