from typing import Any

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str | None = None
    supabase_url: str
    supabase_service_role_key: str
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("TWILIO_AUTH_TOKEN", "SMS_WEBHOOK_AUTH_TOKEN"),
    )
    twilio_phone_number: str | None = None
    twilio_webhook_public_url: str | None = None  # signed URL when behind a TLS proxy
    brevo_api_key: str | None = None
    brevo_sender_email: str | None = None
    brevo_sender_name: str = "VinClub"
    internal_scheduler_secret: str | None = None
    observability_export_url: str | None = None
    observability_export_bearer_token: str | None = None
    observability_export_timeout_seconds: float = 3.0

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )


_REQUIRED_INTEGRATION_VARS = {
    "twilio": (
        ("TWILIO_ACCOUNT_SID", "twilio_account_sid"),
        ("TWILIO_AUTH_TOKEN", "twilio_auth_token"),
        ("TWILIO_PHONE_NUMBER", "twilio_phone_number"),
    ),
    "brevo": (
        ("BREVO_API_KEY", "brevo_api_key"),
        ("BREVO_SENDER_EMAIL", "brevo_sender_email"),
    ),
}


def integration_config_status(config: Settings) -> dict[str, Any]:
    """Report which messaging providers have their environment configured."""
    status: dict[str, Any] = {}
    for provider, required in _REQUIRED_INTEGRATION_VARS.items():
        missing = [env_name for env_name, attr in required if not getattr(config, attr)]
        status[provider] = {"configured": not missing, "missing": missing}
    return status


settings = Settings()
