from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Redis (document store) settings
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 20

    # Firebase Auth settings
    FIREBASE_PROJECT_ID: str = "dashboard-dev"
    FIREBASE_JWKS_URL: str | None = None

    # =================================================================
    # TRANSACTION SETTINGS - optimistic concurrency against the store
    # =================================================================
    STORE_TXN_MAX_ATTEMPTS: int = 10
    STORE_TXN_BASE_DELAY: float = 0.01
    STORE_TXN_MAX_DELAY: float = 0.25
    STORE_TXN_TIMEOUT_S: float = 5.0

    # =================================================================
    # ABUSE MITIGATION - tier catalogs live in code, not here
    # =================================================================
    RATE_LIMIT_RECORD_TTL_S: int = 86400  # idle records expire after a day
    AUTO_MUTE_THRESHOLD: int = 5
    TOXICITY_BLOCK_THRESHOLD: float = 0.5

    # HTTP settings
    CORS_ALLOWED_ORIGINS: list[str] = ["http://localhost:5173", "http://localhost:3000"]
    TRUST_X_FORWARDED_FOR: bool = False
    TRUSTED_PROXY_IPS: list[str] = []

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def jwks_url(self) -> str:
        if self.FIREBASE_JWKS_URL:
            return self.FIREBASE_JWKS_URL
        return (
            "https://www.googleapis.com/service_accounts/v1/jwk/"
            "securetoken@system.gserviceaccount.com"
        )

    def token_issuer(self) -> str:
        return f"https://securetoken.google.com/{self.FIREBASE_PROJECT_ID}"

    def get_store_config(self) -> dict:
        """
        Get document store transaction configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "max_attempts": self.STORE_TXN_MAX_ATTEMPTS,
            "base_delay": self.STORE_TXN_BASE_DELAY,
            "max_delay": self.STORE_TXN_MAX_DELAY,
            "timeout": self.STORE_TXN_TIMEOUT_S,
        }

        if self.environment == "development":
            # Fail faster locally
            config["timeout"] = min(config["timeout"], 2.0)

        return config


settings = Settings()
