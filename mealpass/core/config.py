"""
Configuration settings for the application
"""

import os
from typing import List, Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """Application settings"""
    
    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./mealpass.db")
    USE_FIREBASE: bool = os.getenv("USE_FIREBASE", "false").lower() in ("1", "true", "yes")
    FIREBASE_CREDENTIALS_JSON: Optional[str] = os.getenv("FIREBASE_CREDENTIALS_JSON")
    FIREBASE_CREDENTIALS_FILE: Optional[str] = os.getenv("FIREBASE_CREDENTIALS_FILE")
    FIREBASE_CREDENTIALS_B64: Optional[str] = os.getenv("FIREBASE_CREDENTIALS_B64")
    
    # Security
    ADMIN_TOKEN: str = os.getenv("ADMIN_TOKEN", "admin_token_123")
    WEBHOOK_SECRET: str = os.getenv("WEBHOOK_SECRET", "change-me-webhook-secret")
    
    # Application
    BASE_URL: str = os.getenv("BASE_URL", "http://localhost:8000")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: Optional[str] = os.getenv("LOG_FILE")
    
    # CORS
    ALLOW_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8000",
    ]
    
    # File limits
    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024  # 10MB
    
    # Import: Firestore caps a write batch at 500 operations
    IMPORT_BATCH_SIZE: int = 450
    
    # Coupon dispatch
    DISPATCH_BATCH_SIZE: int = 40
    DISPATCH_CHUNK_SIZE: int = 10
    
    # Participant photos (Google Drive)
    GOOGLE_API_KEY: Optional[str] = os.getenv("GOOGLE_API_KEY")
    DEFAULT_DRIVE_FOLDER_ID: Optional[str] = os.getenv("DEFAULT_DRIVE_FOLDER_ID")
    PHOTO_LOOKUP_TIMEOUT: float = 1.5
    PHOTO_CACHE_TTL: int = 60 * 60
    
    # Outgoing mail
    SMTP_HOST: str = os.getenv("SMTP_HOST", "smtp.gmail.com")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER: Optional[str] = os.getenv("SMTP_USER")
    SMTP_PASSWORD: Optional[str] = os.getenv("SMTP_PASSWORD")
    SMTP_USE_TLS: bool = os.getenv("SMTP_USE_TLS", "true").lower() in ("1", "true", "yes")
    SMTP_SENDER_NAME: str = os.getenv("SMTP_SENDER_NAME", "MealPass")
    
    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
