"""
Application configuration settings loaded from environment variables.
Uses pydantic_settings for validation and type conversion.
"""
from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    """
    Application settings class with environment variable validation.

    Attributes:
        database_url: Database connection string (PostgreSQL in production)
        secret_key: Secret key for JWT token encoding
        algorithm: Algorithm used for JWT encoding (typically HS256)
        access_token_expire_minutes: Access token expiration time in minutes

        # Intake function settings
        intake_api_key: Static bearer token expected from the intake automation
        intake_rate_limit: Accepted intake requests per caller and window
        intake_rate_window_seconds: Length of the rolling rate-limit window
        intake_max_pdf_bytes: Largest decoded PDF accepted by the intake function

        # Storage settings
        cost_estimates_bucket: Bucket holding patient cost-estimate PDFs
        practice_assets_bucket: Public bucket holding the practice logo
        dsgvo_documents_bucket: Bucket holding the practice privacy documents
        signed_url_ttl_seconds: Lifetime of signed PDF links

        # Frontend settings
        frontend_url: URL of the dashboard frontend (CORS origin)

        # Bootstrap admin settings (optional)
        bootstrap_admin_email: Optional admin email for first admin creation
        bootstrap_admin_password: Optional admin password for first admin creation
    """
    # Database settings
    database_url: str

    # JWT settings
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 12

    # Intake function settings
    intake_api_key: Optional[str] = None
    intake_rate_limit: int = 10
    intake_rate_window_seconds: int = 60
    intake_max_pdf_bytes: int = 10 * 1024 * 1024

    # Storage settings
    cost_estimates_bucket: str = "cost_estimates"
    practice_assets_bucket: str = "practice_assets"
    dsgvo_documents_bucket: str = "dsgvo_documents"
    signed_url_ttl_seconds: int = 3600

    # Email webhook settings
    email_webhook_timeout: float = 15.0

    # Frontend settings
    frontend_url: str = "http://localhost:5173"

    # Bootstrap admin settings (optional - only used for first admin creation)
    bootstrap_admin_email: Optional[str] = None
    bootstrap_admin_password: Optional[str] = None

    class Config:
        """Configuration for environment variables loading"""
        env_file = ".env"
        case_sensitive = False

    # Cloudinary settings
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""

# Create settings instance
settings = Settings()
