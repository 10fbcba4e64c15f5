"""Authentication configuration."""

from typing import Literal

from pydantic import BaseModel, Field, model_validator


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    Durations are in their natural units (minutes for OTPs and access
    tokens, days for refresh sessions). Secrets are not part of this model;
    they come from Vault at wiring time.
    """

    # OTP settings
    otp_expiry_minutes: int = Field(
        default=10,
        description="How long a one-time passcode remains valid",
        ge=5,
        le=60,
    )

    # Access token settings
    access_token_expiry_minutes: int = Field(
        default=15,
        description="Access token lifetime in minutes",
        ge=1,
        le=60,
    )
    jwt_algorithm: Literal["HS256", "HS384", "HS512"] = Field(
        default="HS256",
        description="HMAC algorithm used to sign access and refresh tokens",
    )
    jwt_issuer: str = Field(
        default="fitbizz-auth",
        description="Value of the iss claim on minted tokens",
    )

    # Refresh session settings
    refresh_token_expiry_days: int = Field(
        default=7,
        description="Refresh session lifetime in days",
        ge=1,
        le=90,
    )
    sweep_interval_minutes: int = Field(
        default=1440,  # daily
        description="How often expired refresh sessions are swept",
        ge=1,
    )

    # Account settings
    signup_mode: Literal["password_at_signup", "deferred_password"] = Field(
        default="password_at_signup",
        description="Whether signup takes a password or defers it to create-password",
    )
    default_role: str = Field(
        default="mother",
        description="Role assigned when the caller does not provide one",
    )
    self_service_roles: list[str] = Field(
        default_factory=lambda: ["mother", "trainer"],
        description="Roles a caller may pick at signup or first social login",
    )
    bcrypt_rounds: int = Field(
        default=12,
        description="bcrypt cost factor for password hashes",
        ge=4,
        le=16,
    )

    # Application
    app_name: str = Field(
        default="FitBizZ",
        description="Application name for emails",
    )

    @model_validator(mode="after")
    def _default_role_is_allowed(self) -> "AuthConfig":
        if self.default_role not in self.self_service_roles:
            raise ValueError(f"default_role '{self.default_role}' is not in self_service_roles")
        return self
