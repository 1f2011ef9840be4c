from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_MOBILE_APP_SCHEME = "healthythako"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_url: str = "http://localhost:8080"
    payment_redirect_path: str = "/payment-redirect"
    payment_success_path: str = "/payment-success"
    payment_cancel_path: str = "/payment-cancelled"
    payment_currency: str = "BDT"
    support_email: str = "support@healthythako.com"

    # Managed backend platform hosting the REST API and the payment functions.
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    verify_payment_url: str | None = None
    create_payment_url: str | None = None

    mobile_app_scheme: str = DEFAULT_MOBILE_APP_SCHEME
    mobile_user_agent_marker: str = "HealthyThakoApp"
    user_id_header: str = "x-user-id"

    payment_verify_timeout_seconds: float = 8.0
    payment_verify_max_attempts: int = 3
    payment_verify_backoff_seconds: float = 1.0
    payment_verify_total_budget_seconds: float = 20.0
    payment_success_redirect_delay_seconds: float = 3.0
    payment_audit_wait_seconds: float = 2.0
    payment_create_timeout_seconds: float = 15.0

    validator_target_url: str | None = None

    database_url: str | None = None
    database_pool_size: int = 5
    database_max_overflow: int = 5
    database_pool_timeout_seconds: int = 30
    database_pool_recycle_seconds: int = 1800

    env: str = "dev"
    log_level: str = "info"

    @property
    def functions_base_url(self) -> str | None:
        if not self.supabase_url:
            return None
        return f"{self.supabase_url.rstrip('/')}/functions/v1"

    @property
    def rest_base_url(self) -> str | None:
        if not self.supabase_url:
            return None
        return f"{self.supabase_url.rstrip('/')}/rest/v1"

    @property
    def verify_payment_endpoint(self) -> str | None:
        if self.verify_payment_url:
            return self.verify_payment_url
        base = self.functions_base_url
        return f"{base}/verify-payment" if base else None

    @property
    def create_payment_endpoint(self) -> str | None:
        if self.create_payment_url:
            return self.create_payment_url
        base = self.functions_base_url
        return f"{base}/create-payment" if base else None

    @property
    def platform_headers(self) -> dict[str, str]:
        if not self.supabase_anon_key:
            return {}
        return {
            "apikey": self.supabase_anon_key,
            "Authorization": f"Bearer {self.supabase_anon_key}",
        }

    @property
    def public_app_url(self) -> str:
        return self.app_url.rstrip("/")

    @property
    def is_production(self) -> bool:
        return str(self.env or "").lower() in {"prod", "production"}


settings = Settings()
