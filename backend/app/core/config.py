from pydantic_settings import BaseSettings, SettingsConfigDict

PLAN_CATALOG: dict[str, dict] = {
    "basic": {
        "name": "Basic",
        "monthly_price": 29,
        "limits": {"max_pages": 12, "max_issues_per_month": 1, "max_magazines": 1, "custom_domain": False},
    },
    "pro": {
        "name": "Pro",
        "monthly_price": 79,
        "limits": {"max_pages": 24, "max_issues_per_month": 4, "max_magazines": 5, "custom_domain": True},
    },
    "customize": {
        "name": "Customize",
        "monthly_price": 199,
        "limits": {"max_pages": -1, "max_issues_per_month": -1, "max_magazines": -1, "custom_domain": True},
    },
}


class Settings(BaseSettings):
    app_name: str = "Magazinify AI"
    app_env: str = "development"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "magazinify"
    postgres_user: str = "magazinify"
    postgres_password: str = "magazinify"

    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_socket_timeout_seconds: float = 2.0

    database_url: str | None = None
    redis_url: str | None = None
    frontend_origin: str = "http://localhost:3000"
    additional_frontend_origins: str = ""
    tenant_rate_limit_per_minute: int = 120
    analytics_ingest_limit_per_hour: int = 100
    worker_heartbeat_key: str = "worker:heartbeat"
    worker_heartbeat_ttl_seconds: int = 45
    celery_task_always_eager: bool = False

    jwt_secret_key: str = "change_this_in_production"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60
    jwt_refresh_token_expire_minutes: int = 10080

    stripe_api_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_webhook_tolerance_seconds: int = 300
    stripe_checkout_success_url: str = "http://localhost:3000/settings/billing?checkout=success"
    stripe_checkout_cancel_url: str = "http://localhost:3000/pricing?checkout=cancelled"
    stripe_price_id_basic: str | None = None
    stripe_price_id_pro: str | None = None
    stripe_price_id_customize: str | None = None
    default_plan: str = "basic"
    platform_admin_emails: str = ""

    public_base_domain: str = "magazinify.ai"
    sprite_placeholder_url: str = "/placeholder-cover.svg"
    sprite_width: int = 800
    sprite_height: int = 1200
    default_page_count: int = 12
    revalidation_webhook_url: str | None = None
    revalidation_timeout_seconds: float = 5.0

    ai_provider: str = "openai"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"
    openai_timeout_seconds: float = 60.0
    openai_temperature: float = 0.7
    openai_max_retries: int = 1
    generation_lock_ttl_seconds: int = 900
    generation_max_task_retries: int = 3

    @property
    def platform_admin_email_list(self) -> list[str]:
        if not self.platform_admin_emails.strip():
            return []
        return [value.strip().lower() for value in self.platform_admin_emails.split(",") if value.strip()]

    @property
    def cors_allowed_origins(self) -> list[str]:
        origins = [self.frontend_origin.strip()]
        if self.additional_frontend_origins.strip():
            origins.extend(
                [value.strip() for value in self.additional_frontend_origins.split(",") if value.strip()]
            )
        unique: list[str] = []
        for origin in origins:
            if origin and origin not in unique:
                unique.append(origin)
        return unique

    @property
    def stripe_price_ids(self) -> dict[str, str | None]:
        return {
            "basic": self.stripe_price_id_basic,
            "pro": self.stripe_price_id_pro,
            "customize": self.stripe_price_id_customize,
        }

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def sqlalchemy_database_uri(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def cache_redis_url(self) -> str:
        if self.redis_url:
            return self.redis_url
        return f"redis://{self.redis_host}:{self.redis_port}/0"


settings = Settings()
