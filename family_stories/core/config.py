"""Application configuration."""
from typing import Any, Dict

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Firebase service account
    firebase_type: str = "service_account"
    firebase_project_id: str
    firebase_private_key_id: str
    firebase_private_key: str
    firebase_client_email: str
    firebase_client_id: str
    firebase_auth_uri: str = "https://accounts.google.com/o/oauth2/auth"
    firebase_token_uri: str = "https://oauth2.googleapis.com/token"
    firebase_auth_provider_x509_cert_url: str = "https://www.googleapis.com/oauth2/v1/certs"
    firebase_client_x509_cert_url: str = ""
    firebase_universe_domain: str = "googleapis.com"
    firebase_storage_bucket: str

    # OpenAI
    openai_api_key: str
    openai_text_model: str = "gpt-4o"
    openai_image_model: str = "dall-e-3"
    openai_timeout_seconds: float = 120.0

    # Retell
    retell_api_key: str
    retell_from_number: str
    retell_base_url: str = "https://api.retellai.com"
    retell_timeout_seconds: float = 30.0

    # Scheduled dispatch
    dispatch_enabled: bool = True
    dispatch_interval_seconds: int = 60
    dispatch_window_seconds: int = 300

    # Webhook dedup gate
    dedup_ttl_seconds: int = 3600
    dedup_max_entries: int = 10000

    # Post-call hooks
    video_hook_enabled: bool = True
    video_poll_attempts: int = 30
    video_poll_interval_seconds: float = 10.0
    upcoming_questions_enabled: bool = True

    # Server
    cors_allow_origins: str = "*"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    def firebase_credentials(self) -> Dict[str, Any]:
        """Service account dict in the shape firebase_admin expects."""
        return {
            "type": self.firebase_type,
            "project_id": self.firebase_project_id,
            "private_key_id": self.firebase_private_key_id,
            # Keys pasted into env files carry literal "\n" sequences
            "private_key": self.firebase_private_key.replace("\\n", "\n"),
            "client_email": self.firebase_client_email,
            "client_id": self.firebase_client_id,
            "auth_uri": self.firebase_auth_uri,
            "token_uri": self.firebase_token_uri,
            "auth_provider_x509_cert_url": self.firebase_auth_provider_x509_cert_url,
            "client_x509_cert_url": self.firebase_client_x509_cert_url,
            "universe_domain": self.firebase_universe_domain,
        }


settings = Settings()
