"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderConfig(BaseModel):
    """Immutable per-provider configuration handed to an adapter."""

    model_config = ConfigDict(frozen=True)

    def missing(self, *names: str) -> List[str]:
        """Return the names of required fields that are unset or blank."""
        return [name for name in names if not getattr(self, name)]


class VNPayConfig(ProviderConfig):
    tmn_code: Optional[str] = None
    hash_secret: Optional[str] = None
    payment_url: str = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
    return_url: Optional[str] = None
    locale: str = "vn"
    expire_minutes: int = 15


class MoMoConfig(ProviderConfig):
    partner_code: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    endpoint: str = "https://test-payment.momo.vn/v2/gateway/api/create"
    redirect_url: Optional[str] = None
    ipn_url: Optional[str] = None
    request_type: str = "captureWallet"
    lang: str = "vi"


class PayOSConfig(ProviderConfig):
    client_id: Optional[str] = None
    api_key: Optional[str] = None
    checksum_key: Optional[str] = None
    endpoint: str = "https://api-merchant.payos.vn"
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./paybroker.db",
        description="SQLAlchemy async connection URL",
    )
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Redis Configuration (per-reference distributed lock)
    redis_url: Optional[str] = Field(default=None, description="Redis connection URL")
    redis_lock_timeout: int = Field(default=30, description="Distributed lock timeout (seconds)")
    redis_lock_wait: float = Field(
        default=10.0, description="Max seconds to wait for a reference lock"
    )

    # Message Queue Configuration
    rabbitmq_url: Optional[str] = Field(default=None, description="RabbitMQ connection URL")
    rabbitmq_exchange: str = Field(default="payments", description="Topic exchange for events")

    # Application Configuration
    app_name: str = Field(default="paybroker", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="CORS allowed origins (comma-separated)",
    )
    public_base_url: Optional[str] = Field(
        default=None, description="Externally reachable base URL used for provider callbacks"
    )
    frontend_return_url: str = Field(
        default="http://localhost:3000/payments/result",
        description="Where browser returns are redirected after processing",
    )
    admin_api_key: Optional[str] = Field(
        default=None, description="API key for operator endpoints (disabled when unset)"
    )

    # Provider calls
    provider_timeout_seconds: float = Field(
        default=10.0, description="Timeout for outbound provider calls"
    )
    provider_retry_attempts: int = Field(
        default=3, description="Attempts for connection-level provider failures"
    )

    # VNPay
    vnpay_tmn_code: Optional[str] = None
    vnpay_hash_secret: Optional[str] = None
    vnpay_url: str = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
    vnpay_return_url: Optional[str] = None

    # MoMo
    momo_partner_code: Optional[str] = None
    momo_access_key: Optional[str] = None
    momo_secret_key: Optional[str] = None
    momo_endpoint: str = "https://test-payment.momo.vn/v2/gateway/api/create"
    momo_redirect_url: Optional[str] = None
    momo_ipn_url: Optional[str] = None

    # payOS payment links
    payos_client_id: Optional[str] = None
    payos_api_key: Optional[str] = None
    payos_checksum_key: Optional[str] = None
    payos_endpoint: str = "https://api-merchant.payos.vn"
    payos_return_url: Optional[str] = None
    payos_cancel_url: Optional[str] = None

    # VietQR through a dedicated payOS channel
    vietqr_client_id: Optional[str] = None
    vietqr_api_key: Optional[str] = None
    vietqr_checksum_key: Optional[str] = None
    vietqr_endpoint: str = "https://api-merchant.payos.vn"
    vietqr_return_url: Optional[str] = None
    vietqr_cancel_url: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        return v.rstrip("/") if v else v

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    def vnpay(self) -> VNPayConfig:
        return VNPayConfig(
            tmn_code=self.vnpay_tmn_code,
            hash_secret=self.vnpay_hash_secret,
            payment_url=self.vnpay_url,
            return_url=self.vnpay_return_url,
        )

    def momo(self) -> MoMoConfig:
        return MoMoConfig(
            partner_code=self.momo_partner_code,
            access_key=self.momo_access_key,
            secret_key=self.momo_secret_key,
            endpoint=self.momo_endpoint,
            redirect_url=self.momo_redirect_url,
            ipn_url=self.momo_ipn_url,
        )

    def payos(self) -> PayOSConfig:
        return PayOSConfig(
            client_id=self.payos_client_id,
            api_key=self.payos_api_key,
            checksum_key=self.payos_checksum_key,
            endpoint=self.payos_endpoint,
            return_url=self.payos_return_url,
            cancel_url=self.payos_cancel_url,
        )

    def vietqr(self) -> PayOSConfig:
        return PayOSConfig(
            client_id=self.vietqr_client_id,
            api_key=self.vietqr_api_key,
            checksum_key=self.vietqr_checksum_key,
            endpoint=self.vietqr_endpoint,
            return_url=self.vietqr_return_url,
            cancel_url=self.vietqr_cancel_url,
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
