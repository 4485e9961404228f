"""
Configuration module for PropertyPerfect Backend.
Centralizes all environment variables and settings.

Supabase Compatibility:
- Handles the postgres:// DATABASE_URL format (postgres:// -> postgresql://)
- SUPABASE_URL + anon key are used to resolve bearer tokens to users

Usage:
    from propertyperfect.config import config

    if config.IS_DEV:
        print("Running in development mode")

    conn_str = config.DATABASE_URL
"""

import os
from typing import Optional, List
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load .env file (safe - won't override existing env vars)
load_dotenv()


def _get_env(key: str, default: str = "") -> str:
    """Safely get and strip an environment variable."""
    return os.getenv(key, default).strip()


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get an environment variable as boolean."""
    val = _get_env(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int = 0) -> int:
    """Get an environment variable as integer."""
    try:
        return int(_get_env(key, str(default)))
    except ValueError:
        return default


def _get_env_float(key: str, default: float = 0.0) -> float:
    """Get an environment variable as float."""
    try:
        return float(_get_env(key, str(default)))
    except ValueError:
        return default


def _get_env_list(key: str, default: List[str] = None) -> List[str]:
    """Get a comma-separated environment variable as list."""
    val = _get_env(key, "")
    if not val:
        return default or []
    return [item.strip() for item in val.split(",") if item.strip()]


def _fix_database_url(url: str) -> str:
    """
    Fix the legacy DATABASE_URL scheme.
    Supabase/Heroku style URLs use 'postgres://' but psycopg3 requires 'postgresql://'.
    """
    if url and url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


# Placeholder the Stripe CLI docs tell people to paste; never a real secret
STRIPE_CLI_PLACEHOLDER_SECRET = "whsec_from_stripe_cli"


@dataclass
class Config:
    """
    Application configuration with all settings.
    Loaded from environment variables with sensible defaults.
    """

    # ─────────────────────────────────────────────────────────────
    # Environment
    # ─────────────────────────────────────────────────────────────
    FLASK_ENV: str = field(default_factory=lambda: _get_env("FLASK_ENV", "production").lower())

    @property
    def IS_DEV(self) -> bool:
        """
        True only when FLASK_ENV explicitly names a development environment.
        Unset means production: dev mode unlocks unsigned webhooks and the test token.
        """
        return self.FLASK_ENV in ("development", "dev", "local")

    @property
    def IS_PROD(self) -> bool:
        """True if running in production mode."""
        return not self.IS_DEV

    @property
    def IS_HOSTED(self) -> bool:
        """True if running on a managed host (Render, Railway, Fly)."""
        return bool(_get_env("RENDER") or _get_env("RAILWAY_ENVIRONMENT") or _get_env("FLY_APP_NAME"))

    # ─────────────────────────────────────────────────────────────
    # Server
    # ─────────────────────────────────────────────────────────────
    PORT: int = field(default_factory=lambda: _get_env_int("PORT", 5001))
    HOST: str = field(default_factory=lambda: _get_env("HOST", "0.0.0.0"))

    # ─────────────────────────────────────────────────────────────
    # Database (Supabase Postgres)
    # ─────────────────────────────────────────────────────────────
    _DATABASE_URL_RAW: str = field(default_factory=lambda: _get_env("DATABASE_URL"))

    @property
    def DATABASE_URL(self) -> str:
        """Database connection URL (fixed for psycopg3 compatibility)."""
        return _fix_database_url(self._DATABASE_URL_RAW)

    @property
    def HAS_DATABASE(self) -> bool:
        """True if database URL is configured."""
        return bool(self._DATABASE_URL_RAW)

    APP_SCHEMA: str = field(default_factory=lambda: _get_env("APP_SCHEMA", "public"))
    DB_CONNECT_TIMEOUT: int = field(default_factory=lambda: _get_env_int("DB_CONNECT_TIMEOUT", 5))

    # ─────────────────────────────────────────────────────────────
    # Auth (Supabase)
    # ─────────────────────────────────────────────────────────────
    SUPABASE_URL: str = field(default_factory=lambda: _get_env("SUPABASE_URL").rstrip("/"))
    SUPABASE_ANON_KEY: str = field(default_factory=lambda: _get_env("SUPABASE_ANON_KEY"))
    SUPABASE_SERVICE_ROLE_KEY: str = field(default_factory=lambda: _get_env("SUPABASE_SERVICE_ROLE_KEY"))
    AUTH_TIMEOUT_SECONDS: int = field(default_factory=lambda: _get_env_int("AUTH_TIMEOUT_SECONDS", 10))

    @property
    def SUPABASE_CONFIGURED(self) -> bool:
        """True if bearer tokens can be resolved against Supabase Auth."""
        return bool(self.SUPABASE_URL and (self.SUPABASE_ANON_KEY or self.SUPABASE_SERVICE_ROLE_KEY))

    # Reserved bearer token for integration testing (bypasses persistence)
    TEST_AUTH_TOKEN: str = field(default_factory=lambda: _get_env("TEST_AUTH_TOKEN", "test-token"))
    _ALLOW_TEST_TOKEN_RAW: str = field(default_factory=lambda: _get_env("ALLOW_TEST_TOKEN"))

    @property
    def ALLOW_TEST_TOKEN(self) -> bool:
        """Explicit env var wins; otherwise the test token only works in dev."""
        if self._ALLOW_TEST_TOKEN_RAW:
            return _get_env_bool("ALLOW_TEST_TOKEN", False)
        return self.IS_DEV

    # ─────────────────────────────────────────────────────────────
    # Admin
    # ─────────────────────────────────────────────────────────────
    # Option 1: Token-based (X-Admin-Token header)
    ADMIN_TOKEN: str = field(default_factory=lambda: _get_env("ADMIN_TOKEN"))

    # Option 2: Email-based (comma-separated list of allowed admin emails)
    ADMIN_EMAILS: List[str] = field(default_factory=lambda: _get_env_list("ADMIN_EMAILS"))

    @property
    def ADMIN_AUTH_CONFIGURED(self) -> bool:
        """True if admin authentication is configured."""
        return bool(self.ADMIN_TOKEN or self.ADMIN_EMAILS)

    def is_admin_email(self, email: str) -> bool:
        """Check if email is in the admin list."""
        if not email or not self.ADMIN_EMAILS:
            return False
        return email.lower().strip() in [e.lower() for e in self.ADMIN_EMAILS]

    # ─────────────────────────────────────────────────────────────
    # Stripe
    # ─────────────────────────────────────────────────────────────
    STRIPE_SECRET_KEY: str = field(default_factory=lambda: _get_env("STRIPE_SECRET_KEY"))
    STRIPE_WEBHOOK_SECRET: str = field(default_factory=lambda: _get_env("STRIPE_WEBHOOK_SECRET"))
    STRIPE_CURRENCY: str = field(default_factory=lambda: _get_env("STRIPE_CURRENCY", "usd").lower())

    @property
    def STRIPE_CONFIGURED(self) -> bool:
        """True if Stripe API calls can be made."""
        return bool(self.STRIPE_SECRET_KEY)

    @property
    def STRIPE_WEBHOOK_SECRET_CONFIGURED(self) -> bool:
        """True if a real webhook signing secret is set (CLI placeholder does not count)."""
        secret = self.STRIPE_WEBHOOK_SECRET
        return bool(secret) and secret != STRIPE_CLI_PLACEHOLDER_SECRET

    @property
    def STRIPE_MODE(self) -> str:
        """Returns 'live' or 'test' based on key prefix."""
        if self.STRIPE_SECRET_KEY.startswith("sk_live_"):
            return "live"
        return "test"

    # ─────────────────────────────────────────────────────────────
    # Image model
    # ─────────────────────────────────────────────────────────────
    # Provider selection: "gemini" (default) or "openrouter"
    IMAGE_PROVIDER: str = field(default_factory=lambda: _get_env("IMAGE_PROVIDER", "gemini").lower())
    # GEMINI_API_KEY with fallback to GOOGLE_API_KEY
    GEMINI_API_KEY: str = field(default_factory=lambda: _get_env("GEMINI_API_KEY") or _get_env("GOOGLE_API_KEY"))
    GEMINI_IMAGE_MODEL: str = field(
        default_factory=lambda: _get_env("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image-preview")
    )
    OPENROUTER_API_KEY: str = field(default_factory=lambda: _get_env("OPENROUTER_API_KEY"))
    OPENROUTER_IMAGE_MODEL: str = field(
        default_factory=lambda: _get_env("OPENROUTER_IMAGE_MODEL", "google/gemini-2.5-flash-image-preview")
    )
    MODEL_TIMEOUT_SECONDS: int = field(default_factory=lambda: _get_env_int("MODEL_TIMEOUT_SECONDS", 120))
    # Upper bound for downloaded/inlined source images (bytes)
    MAX_IMAGE_BYTES: int = field(default_factory=lambda: _get_env_int("MAX_IMAGE_BYTES", 15 * 1024 * 1024))
    # Hosts source images may be fetched from (comma-separated); empty allows any public host
    ALLOWED_IMAGE_HOSTS: List[str] = field(
        default_factory=lambda: [h.lower() for h in _get_env_list("ALLOWED_IMAGE_HOSTS")]
    )

    # ─────────────────────────────────────────────────────────────
    # Usage policy
    # ─────────────────────────────────────────────────────────────
    # Initial kill-switch state; admin toggles persist to app_settings
    ENHANCEMENTS_DISABLED: bool = field(default_factory=lambda: _get_env_bool("ENHANCEMENTS_DISABLED", False))
    KILL_SWITCH_REFRESH_SECONDS: int = field(default_factory=lambda: _get_env_int("KILL_SWITCH_REFRESH_SECONDS", 5))

    # 0 disables the check
    DAILY_USER_JOB_LIMIT: int = field(default_factory=lambda: _get_env_int("DAILY_USER_JOB_LIMIT", 10))
    DAILY_GLOBAL_JOB_LIMIT: int = field(default_factory=lambda: _get_env_int("DAILY_GLOBAL_JOB_LIMIT", 50))

    CREDITS_PER_JOB: int = 1
    REFUND_ON_FAILURE: bool = field(default_factory=lambda: _get_env_bool("REFUND_ON_FAILURE", False))
    FREE_CREDITS_ON_SIGNUP: int = field(default_factory=lambda: _get_env_int("FREE_CREDITS_ON_SIGNUP", 5))

    # Admin dashboard cost estimates
    COST_PER_ENHANCEMENT_USD: float = field(default_factory=lambda: _get_env_float("COST_PER_ENHANCEMENT_USD", 0.039))
    DAILY_COST_LIMIT_USD: float = field(default_factory=lambda: _get_env_float("DAILY_COST_LIMIT_USD", 50.0))

    # ─────────────────────────────────────────────────────────────
    # CORS
    # ─────────────────────────────────────────────────────────────
    _ALLOWED_ORIGINS_RAW: str = field(default_factory=lambda: _get_env("ALLOWED_ORIGINS"))

    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        """
        List of allowed CORS origins.
        Parses comma-separated URLs, sanitizes common misconfigurations.
        """
        raw = self._ALLOWED_ORIGINS_RAW

        if not raw:
            if self.IS_DEV:
                return [
                    "http://localhost:3000",
                    "http://localhost:3001",
                    "http://127.0.0.1:3000",
                ]
            return []

        if raw == "*":
            return ["*"]

        origins = []
        for part in raw.split(","):
            origin = part.strip()
            if not origin:
                continue

            # Strip accidental "ALLOWED_ORIGINS=" prefix (common misconfiguration)
            if origin.upper().startswith("ALLOWED_ORIGINS="):
                origin = origin[len("ALLOWED_ORIGINS="):]

            if origin.startswith("http://") or origin.startswith("https://"):
                origins.append(origin)

        return origins

    @property
    def ALLOW_ALL_ORIGINS(self) -> bool:
        """True if wildcard CORS is enabled."""
        return self._ALLOWED_ORIGINS_RAW == "*"

    # ─────────────────────────────────────────────────────────────
    # Logging & Debug
    # ─────────────────────────────────────────────────────────────
    def log_summary(self) -> None:
        """Print configuration summary for debugging."""
        print("=" * 60)
        print("[CONFIG] PropertyPerfect Backend Configuration")
        print("=" * 60)
        dev_note = " (auto-detected)" if self.IS_DEV and not _get_env("FLASK_ENV") else ""
        print(f"  Environment: {self.FLASK_ENV} (IS_DEV={self.IS_DEV}{dev_note})")
        print(f"  Port: {self.PORT}")
        print("-" * 60)
        print(f"  Database configured: {self.HAS_DATABASE}")
        print(f"  Supabase auth configured: {self.SUPABASE_CONFIGURED}")
        print(f"  Test token allowed: {self.ALLOW_TEST_TOKEN}")
        print(f"  Stripe configured: {self.STRIPE_CONFIGURED} ({self.STRIPE_MODE if self.STRIPE_CONFIGURED else 'N/A'})")
        print(f"  Stripe webhook secret: {self.STRIPE_WEBHOOK_SECRET_CONFIGURED}")
        print(f"  Image provider: {self.IMAGE_PROVIDER}")
        print("-" * 60)
        print(f"  Enhancements disabled at boot: {self.ENHANCEMENTS_DISABLED}")
        print(f"  Daily limits: user={self.DAILY_USER_JOB_LIMIT}, global={self.DAILY_GLOBAL_JOB_LIMIT}")
        print(f"  Refund on failure: {self.REFUND_ON_FAILURE}")
        print(f"  Free credits on signup: {self.FREE_CREDITS_ON_SIGNUP}")
        print(f"  Admin auth configured: {self.ADMIN_AUTH_CONFIGURED}")
        print("=" * 60)

    def validate(self) -> List[str]:
        """
        Validate configuration and return list of warnings.
        Returns empty list if all critical config is present.
        """
        warnings = []

        if self.IS_PROD:
            if not self.HAS_DATABASE:
                warnings.append("DATABASE_URL not set - running without persistence!")
            if not self.SUPABASE_CONFIGURED:
                warnings.append("SUPABASE_URL / key not set - bearer tokens cannot be verified")
            if not self.STRIPE_CONFIGURED:
                warnings.append("STRIPE_SECRET_KEY not set - checkout disabled")
            if not self.STRIPE_WEBHOOK_SECRET_CONFIGURED:
                warnings.append("STRIPE_WEBHOOK_SECRET not set - webhooks will be rejected")
            if self.ALLOW_TEST_TOKEN:
                warnings.append("ALLOW_TEST_TOKEN enabled in production - test token bypasses persistence")
            if not self.ALLOWED_ORIGINS:
                warnings.append("ALLOWED_ORIGINS not set - CORS will block requests")
            if self.ALLOW_ALL_ORIGINS:
                warnings.append("ALLOWED_ORIGINS=* - allowing all origins (not recommended for production)")

        if self.IMAGE_PROVIDER not in ("gemini", "openrouter"):
            warnings.append(f"Unknown IMAGE_PROVIDER '{self.IMAGE_PROVIDER}' - falling back to gemini")

        return warnings

    def to_dict(self) -> dict:
        """Export safe configuration as dictionary (no secrets)."""
        return {
            "environment": self.FLASK_ENV,
            "is_dev": self.IS_DEV,
            "port": self.PORT,
            "has_database": self.HAS_DATABASE,
            "supabase_configured": self.SUPABASE_CONFIGURED,
            "stripe_configured": self.STRIPE_CONFIGURED,
            "stripe_mode": self.STRIPE_MODE if self.STRIPE_CONFIGURED else None,
            "image_provider": self.IMAGE_PROVIDER,
            "daily_user_job_limit": self.DAILY_USER_JOB_LIMIT,
            "daily_global_job_limit": self.DAILY_GLOBAL_JOB_LIMIT,
            "refund_on_failure": self.REFUND_ON_FAILURE,
            "free_credits_on_signup": self.FREE_CREDITS_ON_SIGNUP,
        }


# ─────────────────────────────────────────────────────────────
# Singleton instance
# ─────────────────────────────────────────────────────────────
try:
    config = Config()
    print(f"[CONFIG] Loaded successfully (IS_DEV={config.IS_DEV}, IS_HOSTED={config.IS_HOSTED})")
except Exception as e:
    print(f"[CONFIG] FATAL: Failed to load config: {repr(e)}")
    raise


def log_config():
    """Print the configuration summary plus any warnings."""
    config.log_summary()
    for warning in config.validate():
        print(f"[CONFIG] WARNING: {warning}")
