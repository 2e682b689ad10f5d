from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite+aiosqlite:///./eduadmin.db"

    # Redis (rate limiter)
    redis_url: str = "redis://localhost:6379/0"

    # App
    secret_key: str = "dev-secret-key-change-in-production"
    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = False

    # Security
    allowed_origins: str = "http://localhost:3000,http://localhost:8080"
    rate_limit_enabled: bool = True
    rate_limit_per_minute: int = 60
    admin_api_token: str = ""

    # Remote role-permissions store
    role_store_url: str = "http://localhost:8000/api"
    role_store_timeout: float = 10.0

    # Client-local override store (empty = memory only)
    local_storage_path: str = "data/local-storage.json"

    # Bootstrap accounts used when a token carries no role claim
    owner_email: str = "owner@eduadmin.org"
    limited_email: str = "frontdesk@eduadmin.org"
    limited_default_role_id: str = "role-frontdesk"

    # Identity tokens and sessions
    id_token_expire_minutes: int = 60
    token_refresh_seconds: int = 300
    session_max_age_minutes: int = 480
    session_cookie_name: str = "eduadmin_session"

    # Routing
    default_dashboard_path: str = "/dashboard"
    login_path: str = "/login"

    model_config = {"env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _validate_production(self):
        if self.environment == "production":
            if self.secret_key == "dev-secret-key-change-in-production":
                raise ValueError(
                    "Production requires a non-default SECRET_KEY"
                )
            if not self.admin_api_token:
                raise ValueError(
                    "Production requires ADMIN_API_TOKEN for role permission writes"
                )
        return self


settings = Settings()
