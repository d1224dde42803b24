"""Application configuration"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Helpdesk settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    PROJECT_NAME: str = "Helpdesk Ticket Core"
    VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./helpdesk.db"

    # Seeded identities
    # WHY: Rule-engine and ingestion writes need an actor when none is given.
    SYSTEM_USER_ID: int = 1
    DEFAULT_GROUP_NAME: str = "Users"

    # Rule engine
    # When True, a failing attribute write rolls back every write of the
    # same perform_changes batch. When False, earlier writes survive.
    PERFORM_CHANGES_ATOMIC: bool = False

    # Placeholder rendered for template paths that do not resolve
    NOTIFICATION_UNKNOWN_VALUE: str = "-"

    # Selector search
    SELECTOR_DEFAULT_LIMIT: int = 10

    @property
    def async_database_url(self) -> str:
        """Get async database URL"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")


settings = Settings()
