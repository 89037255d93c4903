"""
Compliance Engine Configuration
Environment-driven settings for persistence, worker pools and the script sandbox
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="COMPLIANCE_ENGINE_", extra="ignore")

    # Application
    app_name: str = "Compliance Engine"
    debug: bool = False

    # Database
    database_url: str = Field(
        default="sqlite:///./compliance_engine.db",
        description="SQLAlchemy URL for frameworks, scans, findings and the resource inventory",
    )
    database_echo: bool = False

    # Scan execution
    max_concurrent_evaluations: int = Field(
        default=8,
        description="Resources evaluated in parallel within one scan (rules run serially per resource)",
    )
    scan_executor_workers: int = Field(
        default=4,
        description="Background workers for fire-and-forget scan starts",
    )

    # custom_script sandbox
    script_timeout_ms: int = Field(default=50, description="Hard wall-clock budget for one script run")
    script_max_steps: int = Field(default=10000, description="Interpreter step budget per script run")
    script_max_sequence_length: int = Field(
        default=10000,
        description="Largest string or collection a script may build or inspect",
    )

    # tag_pattern matching
    pattern_timeout_ms: int = Field(default=50, description="Hard wall-clock budget for one tag_pattern regex match")

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @field_validator(
        "max_concurrent_evaluations",
        "scan_executor_workers",
        "script_timeout_ms",
        "script_max_steps",
        "script_max_sequence_length",
        "pattern_timeout_ms",
    )
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings"""
    return Settings()
