"""
Application settings.
Values come from the environment or a local .env file.
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # Database. DATABASE_URL wins over the individual parts when set.
    DATABASE_URL: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "mission_chat"
    DB_USER: str = "postgres"
    DB_PASS: str = "postgres"

    # Redis (token sessions issued by the auth service)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Chat
    GENERAL_ROOM_ALIAS: str = "general"
    GENERAL_ROOM_TITLE: str = "Chat General"
    MISSION_ROOM_TITLE_PREFIX: str = "Mission room"
    ELEVATED_ROLES: List[str] = ["admin", "teacher", "profesor"]

    # Optional
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    PROJECT_NAME: str = "Mission Chat Backend"
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASS}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def is_elevated_role(self, role: Optional[str]) -> bool:
        if not role:
            return False
        return role.strip().lower() in {r.lower() for r in self.ELEVATED_ROLES}

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
