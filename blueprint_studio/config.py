from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load env values for components that read os.environ directly (e.g., boto3 credential chain).
_project_root = Path(__file__).resolve().parents[1]
load_dotenv(_project_root / ".env", override=False)


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"

    HISTORY_LIMIT: int = 20
    SAVE_DEBOUNCE_SECONDS: float = 1.5
    REFINEMENT_MEMORY_SIZE: int = 5

    PERSISTENCE_BASE_URL: str | None = None
    PERSISTENCE_API_TOKEN: str | None = None
    PERSISTENCE_TIMEOUT_SECONDS: float = 20.0

    GENERATION_BASE_URL: str | None = None
    GENERATION_API_TOKEN: str | None = None
    GENERATION_TIMEOUT_SECONDS: float = 90.0

    MEDIA_STORAGE_BUCKET: str | None = None
    MEDIA_STORAGE_ENDPOINT: str | None = None
    MEDIA_STORAGE_REGION: str = "us-east-1"
    MEDIA_STORAGE_ACCESS_KEY: str | None = None
    MEDIA_STORAGE_SECRET_KEY: str | None = None
    MEDIA_STORAGE_USE_SSL: bool = True
    MEDIA_STORAGE_FORCE_PATH_STYLE: bool = True

    # Public URLs of uploaded assets look like <host>/<...>/<ASSET_PUBLIC_BUCKET>/<owner>/<document>/<file>.
    ASSET_PUBLIC_BUCKET: str = "site-assets"

    PREVIEW_QUEUE_SIZE: int = 32

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"

    @field_validator("HISTORY_LIMIT", "REFINEMENT_MEMORY_SIZE")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
