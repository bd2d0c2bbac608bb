from pydantic_settings import BaseSettings
from pydantic import BaseModel, Field, field_validator
from functools import lru_cache
from typing import Dict, Optional

from dbreaper.reaper.types import DEFAULT_EXPIRY, RetentionPolicy


class TablePolicyOverride(BaseModel):
    """Per-table overrides of the reaper defaults (unset fields inherit)"""
    expiry: Optional[int] = Field(None, ge=0)
    move_records: Optional[bool] = None
    dump_to_file: Optional[bool] = None
    preserve_backup_table: Optional[bool] = None
    backup_table_prefix: Optional[str] = None
    reaper_data_dir: Optional[str] = None
    dump_timeout: Optional[int] = Field(None, gt=0)
    timestamp_column: str = "created_at"


class Settings(BaseSettings):
    # Database
    database_url: str = "mysql+pymysql://root@localhost:3306/reaper"

    # Application
    app_name: str = "DB Reaper"
    debug: bool = False
    log_level: str = "INFO"

    # Logging
    log_dir: str = ""  # Empty disables file logging
    log_json: bool = False  # Enable JSON logging for production
    enable_request_logging: bool = True

    # Reaper defaults
    reaper_data_dir: str = "reaped"
    move_records: bool = True
    expiry: int = DEFAULT_EXPIRY  # seconds (90 days)
    dump_to_file: bool = True
    preserve_backup_table: bool = False
    backup_table_prefix: str = "reaper_"
    dump_timeout: Optional[int] = 3600  # seconds; None waits forever
    dump_tool_path: str = ""  # Override the dump executable found on PATH

    # Tables reaped by the batch run / API, e.g. TABLES='{"events": {"expiry": 2592000}}'
    tables: Dict[str, TablePolicyOverride] = {}

    # Authentication (API Keys)
    require_api_key: bool = False  # Set to True in production
    api_keys: str = ""  # Comma-separated list of valid API keys

    @field_validator('expiry')
    @classmethod
    def validate_expiry(cls, v):
        """Expiry is a number of seconds and can't go negative"""
        if v < 0:
            raise ValueError('expiry must be non-negative')
        return v

    @field_validator('dump_timeout', mode='before')
    @classmethod
    def parse_dump_timeout(cls, v):
        """Treat empty / zero as no timeout"""
        if v in ("", 0, "0", None):
            return None
        return v

    def default_policy(self) -> RetentionPolicy:
        return RetentionPolicy(
            expiry=self.expiry,
            move_records=self.move_records,
            dump_to_file=self.dump_to_file,
            preserve_backup_table=self.preserve_backup_table,
            backup_table_prefix=self.backup_table_prefix,
            reaper_data_dir=self.reaper_data_dir,
            dump_timeout=self.dump_timeout,
        )

    def policy_for(self, table_name: str) -> RetentionPolicy:
        """Defaults merged with the table's configured overrides"""
        override = self.tables.get(table_name)
        if override is None:
            return self.default_policy()
        return self.default_policy().merge(**override.model_dump(exclude={"timestamp_column"}))

    def timestamp_column_for(self, table_name: str) -> str:
        override = self.tables.get(table_name)
        return override.timestamp_column if override else "created_at"

    @property
    def valid_api_keys(self) -> list[str]:
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()
