import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Upstream API (backend of record) and public URLs
    API_URL: str = "http://localhost:5002"
    APP_URL: str = "http://localhost:8000"
    API_TIMEOUT_SECONDS: float = 10.0
    INTERNAL_API_KEY: str = "internal"

    # Entitlement resolution: "live" calls verify-token, "fixture" serves canned states.
    # The fixture source is rejected in production by validate_env.
    ENTITLEMENT_SOURCE: str = "live"
    ENTITLEMENT_FIXTURE: str = "none"  # none | membership | all

    # Opportunistic token award on page load
    AWARD_PENDING_ENABLED: bool = True

    # Profile catalog (JSON). Falls back to the built-in sample catalog.
    PROFILES_PATH: Optional[str] = None

    # Credential cookies
    COOKIE_SECURE: bool = False
    COOKIE_MAX_AGE_SECONDS: int = 60 * 60 * 24 * 30

    # Replay ledger for checkout returns (in-memory when unset)
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Stripe test-mode passthrough, never forwarded in production
    STRIPE_DEBUG_SECRET: Optional[str] = None

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"

    def debug_secret(self) -> Optional[str]:
        """Debug secret forwarded to checkout creation (None in production)."""
        if self.is_production:
            return None
        return self.STRIPE_DEBUG_SECRET


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("storefront")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "API_URL",
        "APP_URL",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
