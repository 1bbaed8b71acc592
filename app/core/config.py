from typing import Literal
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    APP_NAME: str = "Tabsplit Engine"
    LOG_LEVEL: str = "INFO"

    DEFAULT_CURRENCY: str = "USD"
    DEFAULT_DECIMAL_PLACES: int = 2

    ROUNDING_MODE: Literal["roundHalfUp", "roundHalfEven", "floor", "ceil"] = "roundHalfUp"
    REMAINDER_DISTRIBUTION: Literal["largestShare", "payer", "firstListed", "random"] = "largestShare"
    SETTLEMENT_STRATEGY: Literal["pairwise", "greedy"] = "pairwise"

    class Config:
        env_file = ".env"

settings = Settings()
