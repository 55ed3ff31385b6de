from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):

    # "neo4j" for the graph store, "memory" for local runs and tests
    STORE_BACKEND: str = "neo4j"

    NEO4J_URI: Optional[str] = None
    NEO4J_USER: Optional[str] = None
    NEO4J_PASSWORD: Optional[str] = None

    STORE_TIMEOUT_SECONDS: float = 10.0
    STORAGE_RETRY_BACKOFF_SECONDS: float = 0.5
    NUMBER_GENERATION_ATTEMPTS: int = 10

    APPLICATION_NUMBER_PREFIX: str = "DMPS"
    ADMISSION_NUMBER_PREFIX: str = "ADM"
    DEFAULT_SECTION: str = "A"

    UPLOAD_DIR: str = "uploads"
    UPLOAD_BASE_URL: str = "http://localhost:8000/uploads"
    MAX_PHOTO_BYTES: int = 5 * 1024 * 1024

    # Guardian emails are skipped while EMAIL_HOST is unset
    SCHOOL_NAME: str = "D.M. Public School"
    EMAIL_HOST: Optional[str] = None
    EMAIL_PORT: int = 587
    EMAIL_USER: Optional[str] = None
    EMAIL_PASSWORD: Optional[str] = None
    EMAIL_FROM: str = "D.M. Public School <no-reply@dmpublicschool.in>"
    EMAIL_USE_TLS: bool = True

    JWT_SECRET_KEY: str = "super_secret_key_change_me_in_prod"
    ALGORITHM: str = "HS256"

    CORS_ORIGINS: List[str] = ["http://localhost:5173"]

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
