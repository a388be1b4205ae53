"""Engine configuration."""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_BASE_URL: str = "https://localhost/api"
    REQUEST_TIMEOUT_SECONDS: float = 10.0

    # Query parameter carrying the cache-busting token on re-fetches
    CACHE_BUST_PARAM: str = "_t"

    # Evidence retention window applied on upload
    ATTACHMENT_RETENTION_MONTHS: int = 1

    # Comma-separated severity names used when master data cannot be loaded
    FALLBACK_SEVERITIES: str = "Minor,Medium,Major,Critical"

    class Config:
        env_file = ".env"
        env_prefix = "CAPA_"

    def get_fallback_severities(self) -> list[str]:
        """Parse FALLBACK_SEVERITIES into a list."""
        return [name.strip() for name in self.FALLBACK_SEVERITIES.split(",") if name.strip()]


settings = Settings()
