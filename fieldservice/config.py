from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional


class Settings(BaseSettings):
    # Database Configuration
    database_url: Optional[str] = None
    db_username: Optional[str] = None
    db_password: Optional[str] = None
    db_host: str = "localhost"
    db_port: str = "5432"
    db_name: Optional[str] = None

    # Row lock wait before an operation fails with OperationTimeout (PostgreSQL only)
    lock_timeout_ms: int = 5000

    # Authentication
    secret_key: str = "your-secret-key-here"
    algorithm: str = "HS256"
    access_token_expire_minutes: Optional[int] = 30

    @field_validator('algorithm', mode='before')
    @classmethod
    def parse_algorithm(cls, v):
        if v is None or v == '':
            return "HS256"
        return v

    @field_validator('access_token_expire_minutes', mode='before')
    @classmethod
    def parse_token_expire(cls, v):
        if v is None or v == '':
            return 30
        return int(v)

    # Lifecycle policy
    reassign_reason_required: bool = True
    allow_resubmit_rejected: bool = False
    auto_assign_any_region: bool = False  # fall back to any ACTIVE technician when the region has none

    # Logging
    log_level: str = "INFO"

    @property
    def database_connection_url(self) -> str:
        """Build database URL from individual components or use direct URL"""
        if all([self.db_username, self.db_password, self.db_host, self.db_port, self.db_name]):
            return f"postgresql://{self.db_username}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"
        elif self.database_url:
            return self.database_url
        else:
            return "sqlite:///./fieldservice.db"  # Fallback to SQLite

    class Config:
        env_file = ".env"


settings = Settings()
