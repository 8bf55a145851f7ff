import os
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./stockdesk.db"  # e.g. postgresql://user:pass@db:5432/stockdesk
    log_level: str = "INFO"
    quote_cache_ttl: int = 30  # seconds
    quote_cache_size: int = 512
    starting_balance: Decimal = Decimal("100000.00")


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", Settings.database_url),
        log_level=os.getenv("LOG_LEVEL", Settings.log_level).upper(),
        quote_cache_ttl=int(os.getenv("QUOTE_CACHE_TTL", Settings.quote_cache_ttl)),
        quote_cache_size=int(os.getenv("QUOTE_CACHE_SIZE", Settings.quote_cache_size)),
        starting_balance=Decimal(os.getenv("STARTING_BALANCE", str(Settings.starting_balance))),
    )
