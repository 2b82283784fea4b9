"""Configuration management for fapiao parsing."""
import os
from pathlib import Path
from typing import Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.exceptions import ConfigurationError

DEFAULT_API_URL = "https://dashscope.aliyuncs.com/api/v1/services/aigc/multimodal-generation/generation"


class Settings(BaseSettings):
    """Centralized configuration for fapiao parsing."""

    model_config = SettingsConfigDict(
        env_prefix="FAPIAO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    # API Configuration
    api_token: Optional[str] = Field(default=None, description="Bearer token for the model endpoint")
    api_url: str = Field(default=DEFAULT_API_URL, description="Multimodal generation endpoint")
    model_name: str = Field(default="qwen-vl-plus", description="Model used for extraction and aggregation")

    # Processing Configuration
    batch_size: int = Field(default=8, ge=1, description="Number of files sent in one model call")
    request_timeout_seconds: float = Field(default=300.0, gt=0, description="Time bound for each model call")
    pdf_render_scale: float = Field(default=2.0, gt=0, description="Zoom factor for PDF rasterization")
    max_file_size_mb: float = Field(default=20.0, gt=0, description="Largest accepted input file")
    custom_prompt: str = Field(default="", description="Extra instructions appended to every prompt")
    csv_local_fallback: bool = Field(
        default=False,
        description="Render the CSV locally when the aggregation reply has no csv section",
    )

    # Debug Configuration
    debug_responses: bool = Field(default=False, description="Save raw model responses for debugging")
    responses_directory: Path = Field(default=Path("json_responses"), description="Where raw responses are saved")

    # File Paths
    output_directory: Path = Field(default=Path("output"), description="Output directory for exports")
    logs_directory: Path = Field(default=Path("logs"), description="Logs folder")
    log_level: str = Field(default="INFO", description="Log level for the fapiao_parser logger")

    @field_validator("api_token")
    @classmethod
    def blank_token_is_none(cls, v):
        """Treat an empty token as not configured."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("debug_responses", "csv_local_fallback", mode="before")
    @classmethod
    def parse_flag(cls, v):
        """Parse boolean flags from strings."""
        if isinstance(v, str):
            return v.strip() == "1" or v.strip().lower() == "true"
        return v

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, v):
        return v.strip().upper()

    @classmethod
    def from_env(cls) -> "Settings":
        """Create Settings instance from environment variables.

        ``DASHSCOPE_API_KEY`` is honoured as a fallback token.

        Raises:
            ConfigurationError: If an environment or .env value is invalid
        """
        try:
            settings = cls()
        except ValidationError as e:
            error = e.errors()[0]
            field = str(error["loc"][0]) if error["loc"] else "settings"
            raise ConfigurationError(f"FAPIAO_{field.upper()}", error["msg"]) from e
        if settings.api_token is None and os.getenv("DASHSCOPE_API_KEY"):
            settings = settings.model_copy(update={"api_token": os.getenv("DASHSCOPE_API_KEY").strip()})
        return settings

    @property
    def api_headers(self) -> dict:
        """Default request headers (token added per request)."""
        return {"Content-Type": "application/json"}
