from pydantic_settings import BaseSettings
from pydantic import Field
import os
from pathlib import Path
import dotenv

# Always load apps/.env (relative to this file), regardless of where the process is started.
_APPS_DIR = Path(__file__).resolve().parents[1]
dotenv.load_dotenv(dotenv_path=_APPS_DIR / ".env", override=False)


class Settings(BaseSettings):
    APP_HOST: str = Field(default=os.getenv("APP_HOST", "0.0.0.0"))
    APP_PORT: int = Field(default=int(os.getenv("APP_PORT", "8000")))
    LOG_LEVEL: str = Field(default=os.getenv("LOG_LEVEL", "INFO"))

    # Comma-separated list of allowed browser origins; "*" allows all.
    CORS_ALLOW_ORIGINS: str = Field(default=os.getenv("CORS_ALLOW_ORIGINS", "*"))

    # Firebase Admin SDK
    # If the service-account file does not exist, application-default credentials are used.
    FIREBASE_CREDENTIALS_PATH: str = Field(
        default=os.getenv("FIREBASE_CREDENTIALS_PATH", str(_APPS_DIR / "serviceAccountKey.json"))
    )
    FIREBASE_PROJECT_ID: str = Field(default=os.getenv("FIREBASE_PROJECT_ID", ""))

    # Verified ID tokens are cached briefly to avoid repeated Admin SDK calls.
    TOKEN_CACHE_TTL_SECONDS: float = Field(default=float(os.getenv("TOKEN_CACHE_TTL_SECONDS", "60")))

    # Stripe
    STRIPE_SECRET_KEY: str = Field(default=os.getenv("STRIPE_SECRET_KEY", ""))
    # Required by POST /stripeWebhook; requests are rejected with 500 while unset.
    STRIPE_WEBHOOK_SECRET: str = Field(default=os.getenv("STRIPE_WEBHOOK_SECRET", ""))
    STRIPE_API_VERSION: str = Field(default=os.getenv("STRIPE_API_VERSION", "2025-05-28.basil"))
    STRIPE_PROFESSIONAL_PRICE_ID: str = Field(default=os.getenv("STRIPE_PROFESSIONAL_PRICE_ID", "price_professional"))
    STRIPE_ENTERPRISE_PRICE_ID: str = Field(default=os.getenv("STRIPE_ENTERPRISE_PRICE_ID", "price_enterprise"))
    # Coupon applied to subscriptions created with a valid referral code.
    STRIPE_REFERRAL_COUPON_ID: str = Field(default=os.getenv("STRIPE_REFERRAL_COUPON_ID", ""))
    STRIPE_AUTOMATIC_TAX: bool = Field(default=os.getenv("STRIPE_AUTOMATIC_TAX", "true").lower() == "true")

    # Referrals
    REFERRAL_DISCOUNT_PERCENTAGE: float = Field(default=float(os.getenv("REFERRAL_DISCOUNT_PERCENTAGE", "50")))
    REFERRAL_REWARD_AMOUNT: float = Field(default=float(os.getenv("REFERRAL_REWARD_AMOUNT", "50")))

    # New user provisioning
    # Real tenants are assigned by an admin after signup.
    DEFAULT_COMPANY_ID: str = Field(default=os.getenv("DEFAULT_COMPANY_ID", "default_company"))
    DEFAULT_USER_ROLE: str = Field(default=os.getenv("DEFAULT_USER_ROLE", "driver"))

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
