"""Application configuration."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    
    # Database
    DATABASE_URL: str = "postgresql+asyncpg://walletshare:walletshare@db:5432/walletshare"
    
    # Security
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    
    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "America/New_York"
    JOB_TIMEOUT_SECONDS: float = 900.0
    EXTERNAL_CALL_TIMEOUT_SECONDS: float = 30.0
    
    # CRM sync
    CRM_SYNC_MAX_ATTEMPTS: int = 5
    CRM_USER_AGENT: str = "WalletShareExpander-Agent/1.0"
    
    # Program defaults
    DEFAULT_SHARE_RATE: float = 15.0  # percent of incremental revenue
    DEFAULT_GRADUATION_CRITERIA: str = "any"
    
    # Optional override for the CRM webhook used when a tenant has none
    DEFAULT_CRM_WEBHOOK_URL: Optional[str] = None
    
    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
