"""
Application configuration
Read from environment variables (and .env when present)
"""
from pydantic import ConfigDict
from pydantic_settings import BaseSettings

from domain.value_objects import StayPolicy


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "Hotel Reservation Engine"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    SEED_DEMO_DATA: bool = True
    DEMO_HOTEL_ID: str = "hotel-demo-0001"

    # JWT
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Stay policy
    MIN_STAY_NIGHTS: int = 1
    MAX_STAY_NIGHTS: int = 30
    LATE_CHECK_OUT_HOUR: int = 12

    # Retry on store conflicts
    CONFLICT_RETRY_ATTEMPTS: int = 3
    CONFLICT_RETRY_BASE_DELAY: float = 0.05

    # Listings
    UPCOMING_WINDOW_DAYS: int = 7
    PAYMENT_LIST_LIMIT: int = 100

    model_config = ConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    def stay_policy(self) -> StayPolicy:
        return StayPolicy(
            min_nights=self.MIN_STAY_NIGHTS,
            max_nights=self.MAX_STAY_NIGHTS,
            late_check_out_hour=self.LATE_CHECK_OUT_HOUR,
        )


settings = Settings()
