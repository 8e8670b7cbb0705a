import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _env_any(*names: str, default=None, required: bool = False) -> str:
    """Return the first non-empty env var from *names.

    Allows alias keys so the deployment can use different naming without breaking the app.
    """
    for name in names:
        val = os.getenv(name)
        if val is not None and str(val).strip() != "":
            return val
    if required and default is None:
        raise RuntimeError(f"Missing required environment variable. Tried: {', '.join(names)}")
    return default


@dataclass(frozen=True)
class Settings:
    # Agora credentials. Optional at import time: the token endpoint reports a
    # configuration error instead of the whole app refusing to start.
    AGORA_APP_ID: str = field(default_factory=lambda: _env_any("AGORA_APP_ID", default=""))
    AGORA_APP_CERT: str = field(
        default_factory=lambda: _env_any("AGORA_APP_CERTIFICATE", "AGORA_APP_CERT", default="")
    )
    AGORA_TOKEN_EXPIRE: int = field(
        default_factory=lambda: int(_env_any("AGORA_TOKEN_EXPIRE", default="3600"))
    )

    # Presence store (Redis/Valkey). Empty -> in-process store.
    REDIS_URL: str = field(default_factory=lambda: _env_any("REDIS_URL", default=""))
    VIEWER_TTL_SECONDS: int = field(
        default_factory=lambda: int(_env_any("VIEWER_TTL_SECONDS", default="60"))
    )

    # slowapi limit string for token issuance
    TOKEN_RATE_LIMIT: str = field(
        default_factory=lambda: _env_any("TOKEN_RATE_LIMIT", default="60/minute")
    )


settings = Settings()


def get_settings() -> Settings:
    return settings
