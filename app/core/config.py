from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator
from typing import List, Optional


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "BabyCare Storefront API"
    API_V1_STR: str = "/api/v1"

    # Database
    DATABASE_URL: str
    DB_STATEMENT_TIMEOUT_MS: int = 15000  # PostgreSQL only

    # Identity provider (bearer JWT)
    IDENTITY_JWT_KEY: str
    IDENTITY_JWT_ALGORITHM: str = "HS256"
    IDENTITY_JWT_AUDIENCE: Optional[str] = None
    ADMIN_EMAILS: str = ""  # Comma-separated, promoted to admin on first sight

    # Razorpay
    RAZORPAY_KEY_ID: str
    RAZORPAY_KEY_SECRET: str
    RAZORPAY_WEBHOOK_SECRET: str

    # Pricing
    CURRENCY: str = "INR"
    CURRENCY_SYMBOL: str = "₹"
    TAX_RATE: float = 0.08

    # Firebase Cloud Messaging (optional)
    FIREBASE_PROJECT_ID: str = ""
    FIREBASE_CLIENT_EMAIL: str = ""
    FIREBASE_PRIVATE_KEY: str = ""
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
    ]

    # Environment
    ENVIRONMENT: str = "development"
    ENV: Optional[str] = Field(default=None)

    DEBUG: bool = False

    # Frontend
    FRONTEND_URL: str = "http://localhost:3000"

    # Monitoring (Optional - Add to .env for production)
    SENTRY_DSN: str = ""

    # Celery & Redis (Task Queue)
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("TAX_RATE")
    @classmethod
    def validate_tax_rate(cls, value: float) -> float:
        if value < 0 or value > 1:
            raise ValueError("TAX_RATE must be a fraction between 0 and 1")
        return value

    @model_validator(mode="after")
    def validate_production_secrets(self):
        if self.ENVIRONMENT == "production":
            if self.IDENTITY_JWT_ALGORITHM.startswith("HS") and len(self.IDENTITY_JWT_KEY.strip()) < 32:
                raise ValueError("IDENTITY_JWT_KEY must be at least 32 chars in production")
            if (self.RAZORPAY_KEY_ID or "").startswith("rzp_test_"):
                raise ValueError("RAZORPAY_KEY_ID must use live key in production")
        return self

    @property
    def admin_emails(self) -> List[str]:
        return [email.strip().lower() for email in self.ADMIN_EMAILS.split(",") if email.strip()]

    @property
    def firebase_configured(self) -> bool:
        return bool(self.FIREBASE_PROJECT_ID and self.FIREBASE_CLIENT_EMAIL and self.FIREBASE_PRIVATE_KEY)

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
