"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with APPSEC_ prefix.
A local .env file is read too, so a developer can drop ANTHROPIC_API_KEY
there instead of exporting it.
"""

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

INSECURE_JWT_SECRET = "change-me-in-production"


class Settings(BaseSettings):
    """All app configuration. Set via APPSEC_* env vars."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/users.db"

    # Auth
    jwt_secret: str = INSECURE_JWT_SECRET
    jwt_algorithm: str = "HS256"
    access_token_expire_days: int = 7
    bcrypt_rounds: int = 12  # ~250ms per hash; tests lower this to 4
    min_password_length: int = 6

    # First-run admin account (password_changed stays false until rotated)
    admin_username: str = "admin"
    admin_email: str = "admin@localhost"
    admin_password: str = "admin"

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 3001

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Downstream agent credential. Read from the bare ANTHROPIC_API_KEY
    # that the Anthropic SDK uses, or the prefixed variant.
    anthropic_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("APPSEC_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
    )

    # Agent
    agent_backend: str = "anthropic"
    agent_model: str = "claude-sonnet-4-20250514"
    agent_max_tokens: int = 4096
    agent_environment: str = "development"
    agent_verbose: bool = False
    agent_timeout_seconds: float = 600.0

    # Chat
    session_terminator: str = "/end"

    # Analysis reports (code review / threat modeling)
    reports_dir: str = "reports"
    max_context_files: int = 200
    max_context_bytes: int = 200_000

    model_config = SettingsConfigDict(
        env_prefix="APPSEC_",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_production_settings(self):
        """Ensure sensitive defaults are changed in non-development environments."""
        if (
            self.environment != "development"
            and self.jwt_secret == INSECURE_JWT_SECRET
        ):
            raise ValueError(
                "APPSEC_JWT_SECRET must be set to a secure value in "
                "non-development environments. Generate one with: "
                'python -c "import secrets; print(secrets.token_urlsafe(32))"'
            )
        return self


# Singleton, import this everywhere
settings = Settings()
