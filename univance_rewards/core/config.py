from pydantic_settings import BaseSettings, SettingsConfigDict
class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="REWARDS_", env_file=".env", extra="ignore")
    ENVIRONMENT: str = "development"
    DATABASE_URL: str = "sqlite:///./rewards.db"

    SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"

    # sibling services
    USER_SERVICE_URL: str = "http://localhost:3002"
    POINTS_SERVICE_URL: str = "http://localhost:3004"
    NOTIFICATION_SERVICE_URL: str = "http://localhost:3006"
    HTTP_TIMEOUT: float = 10.0

    UPLOAD_DIR: str = "./uploads"
    FILE_STORAGE_URL: str = "http://localhost:3005/uploads"
    MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024

    LOG_LEVEL: str = "INFO"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"
settings = Settings()
