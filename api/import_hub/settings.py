# import_hub/settings.py
"""
Import Hub settings.

Values come from the environment or a local ``.env`` file.
"""
from __future__ import annotations
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices


class Settings(BaseSettings):
    # =========================================================================
    # File Storage (logs)
    # =========================================================================
    DATA_ROOT: Path = Field(
        default=(Path(__file__).resolve().parents[2] / "import-data"),
        validation_alias=AliasChoices("IMPORT_HUB_DATA_ROOT", "DATA_ROOT"),
    )
    LOG_LEVEL: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # =========================================================================
    # PostgreSQL Database
    # =========================================================================
    DB_HOST: str = Field(default="localhost", validation_alias="DB_HOST")
    DB_PORT: int = Field(default=5432, validation_alias="DB_PORT")
    DB_NAME: str = Field(default="import_hub", validation_alias="DB_NAME")
    DB_USER: str = Field(default="postgres", validation_alias="DB_USER")
    DB_PASSWORD: str = Field(default="postgres", validation_alias="DB_PASSWORD")

    # Connection pool settings
    DB_POOL_SIZE: int = Field(default=5, validation_alias="DB_POOL_SIZE")
    DB_MAX_OVERFLOW: int = Field(default=10, validation_alias="DB_MAX_OVERFLOW")
    DB_ECHO: bool = Field(default=False, validation_alias="DB_ECHO")

    # Full async URL; overrides the DB_* parts when set (e.g. sqlite+aiosqlite://)
    DATABASE_URL: str | None = Field(default=None, validation_alias="DATABASE_URL")
    DB_CREATE_TABLES: bool = Field(default=True, validation_alias="DB_CREATE_TABLES")

    # =========================================================================
    # Currencies & Costing
    # =========================================================================
    LOCAL_CURRENCY: str = Field(default="BRL", validation_alias="LOCAL_CURRENCY")
    FOREIGN_CURRENCY: str = Field(default="USD", validation_alias="FOREIGN_CURRENCY")
    # money columns are NUMERIC(14, 4)
    MONEY_DECIMAL_PLACES: int = Field(default=4, ge=0, le=4)
    ALLOCATION_ABSORB_REMAINDER: bool = Field(
        default=False,
        description="Let the last item absorb allocation rounding drift",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

settings = Settings()
