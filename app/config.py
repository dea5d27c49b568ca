"""
Application configuration
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080
    API_TITLE: str = "Native Build API"
    API_VERSION: str = "0.1.0"

    # Source tree used when a request does not name one
    DEFAULT_REPO_DIR: str = "/repo"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
