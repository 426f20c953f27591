"""
Configuration management using Pydantic settings.
Loads environment variables for Supabase, POS webhook secrets, and the
reservation ledger / valet collaborators.
"""
from pydantic_settings import BaseSettings
from typing import Dict, List


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # Supabase Configuration
    supabase_url: str = ""
    supabase_service_key: str = ""

    # POS webhook verification
    verify_webhook_signatures: bool = False
    toast_webhook_secret: str = ""
    square_webhook_secret: str = ""
    square_notification_url: str = ""  # Falls back to the request URL when empty
    clover_webhook_auth_code: str = ""

    # External collaborators
    reservation_ledger_base_url: str = "http://localhost:8081"
    reservation_ledger_api_key: str = ""
    valet_service_base_url: str = "http://localhost:8082"
    valet_service_api_key: str = ""
    http_timeout_seconds: float = 10.0

    # Correlation
    correlation_window_minutes: int = 60
    correlate_without_table: bool = False

    # Menu taxonomy used to tell drinks from entrees
    menu_drink_keywords: List[str] = ["drink", "beverage"]
    menu_entree_keywords: List[str] = ["entree", "main"]
    menu_category_table: Dict[str, str] = {
        "beverages": "DRINK",
        "drinks": "DRINK",
        "cocktails": "DRINK",
        "wine": "DRINK",
        "beer": "DRINK",
        "entrees": "ENTREE",
        "mains": "ENTREE",
        "main courses": "ENTREE",
    }

    # Application Configuration
    app_environment: str = "development"
    log_level: str = "INFO"

    # Side-effect retry
    valet_max_attempts: int = 3
    retry_backoff_multiplier: float = 2.0
    retry_initial_delay_seconds: float = 1.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
