from __future__ import annotations
from dataclasses import dataclass
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator

MIN_SECRET_LENGTH = 32

@dataclass(frozen=True)
class CryptoConfig:
    """Key material handed to the token codec at construction."""
    cipher_secret: bytes
    mac_secret: bytes

    def __post_init__(self):
        if len(self.cipher_secret) < MIN_SECRET_LENGTH or len(self.mac_secret) < MIN_SECRET_LENGTH:
            raise ValueError(f"QR secrets must be at least {MIN_SECRET_LENGTH} bytes")
        if self.cipher_secret == self.mac_secret:
            raise ValueError("cipher and HMAC secrets must be independent")

    def __repr__(self) -> str:
        return "CryptoConfig(cipher_secret=***, mac_secret=***)"

class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")

    auth_jwks_url: str = Field(..., alias="AUTH_JWKS_URL")
    token_issuer: str = Field("authentication-svc", alias="TOKEN_ISSUER")

    # QR credentials: no fallbacks, a missing secret is fatal at startup
    qr_cipher_secret: str = Field(..., alias="QR_CIPHER_SECRET", repr=False)
    qr_hmac_secret: str = Field(..., alias="QR_HMAC_SECRET", repr=False)
    qr_default_lifetime_hours: float = Field(default=24, alias="QR_DEFAULT_LIFETIME_HOURS", gt=0)
    token_replay_guard: bool = Field(default=False, alias="TOKEN_REPLAY_GUARD")

    # Scanning sessions
    scan_cooldown_ms: int = Field(default=3000, alias="SCAN_COOLDOWN_MS", ge=0)
    scan_history_size: int = Field(default=20, alias="SCAN_HISTORY_SIZE", gt=0)
    session_idle_ttl_seconds: int = Field(default=1800, alias="SESSION_IDLE_TTL_SECONDS", gt=0)
    session_max: int = Field(default=500, alias="SESSION_MAX", gt=0)

    # Redis
    redis_url: str = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")
    rl_enabled: bool = Field(default=True, alias="RL_ENABLED")
    rl_window_seconds: int = Field(default=60, alias="RL_WINDOW_SECONDS")
    rl_max_reqs: int = Field(default=120, alias="RL_MAX_REQS")

    # NATS
    nats_enabled: bool = Field(default=True, alias="NATS_ENABLED")
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_checkin: str = Field("checkins.recorded", alias="NATS_SUBJECT_CHECKIN")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_format: str = Field("json", alias="LOG_FORMAT")

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    @field_validator("qr_cipher_secret", "qr_hmac_secret")
    @classmethod
    def _secret_strength(cls, v: str) -> str:
        if len(v.strip()) < MIN_SECRET_LENGTH:
            raise ValueError(f"must be at least {MIN_SECRET_LENGTH} characters")
        return v

    @model_validator(mode="after")
    def _independent_secrets(self) -> "Settings":
        if self.qr_cipher_secret == self.qr_hmac_secret:
            raise ValueError("QR_CIPHER_SECRET and QR_HMAC_SECRET must differ")
        return self

    @property
    def crypto(self) -> CryptoConfig:
        return CryptoConfig(
            cipher_secret=self.qr_cipher_secret.encode("utf-8"),
            mac_secret=self.qr_hmac_secret.encode("utf-8"),
        )

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
