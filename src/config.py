"""Configuration management for the phone OTP authentication service."""

from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Ignore extra environment variables
    )

    # Server configuration
    port: int = 8000
    host: str = "0.0.0.0"
    environment: str = "dev"
    cors_origin: str = "*"

    # Cognito configuration
    cognito_region: str = "eu-west-1"
    cognito_user_pool_id: str = ""
    cognito_client_id: str = ""

    # Session cookie lifetimes (must match the user pool token lifetimes)
    id_token_max_age: int = 3600
    refresh_token_max_age: int = 604800

    # Token verification
    jwt_algorithm: str = "RS256"
    jwks_cache_ttl: int = 3600
    decision_cache_ttl: int = 300

    # OTP challenge policy
    otp_max_rounds: int = 3
    otp_attempt_ttl: int = 300
    otp_regenerate_on_retry: bool = False
    otp_brand_name: str = "WyzeSecure"

    # External calls
    http_timeout: float = 5.0
    sms_delivery_timeout: float = 3.0

    # Rate limiting for /auth endpoints
    rate_limit_requests: int = 10
    rate_limit_window: int = 60

    # Logging and telemetry
    log_level: str = "INFO"
    otlp_endpoint: Optional[str] = None
    enable_console_export: bool = False

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        if v not in ("dev", "staging", "prod"):
            raise ValueError('ENVIRONMENT must be one of dev, staging, prod')
        return v

    @field_validator('otp_max_rounds')
    @classmethod
    def validate_otp_max_rounds(cls, v):
        if v < 1:
            raise ValueError('OTP_MAX_ROUNDS must be at least 1')
        return v

    @model_validator(mode="after")
    def validate_cookie_lifetimes(self):
        if self.id_token_max_age >= self.refresh_token_max_age:
            raise ValueError('ID_TOKEN_MAX_AGE must be shorter than REFRESH_TOKEN_MAX_AGE')
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "prod"

    @property
    def issuer(self) -> str:
        """Expected ``iss`` claim of tokens minted by the user pool."""
        return f"https://cognito-idp.{self.cognito_region}.amazonaws.com/{self.cognito_user_pool_id}"

    @property
    def jwks_url(self) -> str:
        return f"{self.issuer}/.well-known/jwks.json"


# Global settings instance
settings = Settings()
