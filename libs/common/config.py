"""Configuration management for the model serving service.

Centralizes environment-driven configuration. Builds on
``pydantic_settings.BaseSettings`` so values can be provided via environment
variables, a ``.env`` file, or defaults.

Usage
- Inject the config in the service entrypoint: ``config = ModelServingConfig()``
- Or select dynamically: ``config = get_config("model-serving")``
"""

from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration shared by every service entrypoint.

    Field names double as environment variable names (case-insensitive),
    e.g. ``ml_log_level`` is read from ``ML_LOG_LEVEL``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    ml_env: str = Field(default="local")

    # Logging
    ml_log_level: str = Field(default="INFO")
    ml_log_format: str = Field(default="json")


class ModelServingConfig(BaseConfig):
    """Configuration for the graph model serving service.

    Notes
    - ``port`` honours the conventional ``PORT`` variable first.
    - ``ml_model_url`` overrides ``ml_model_dir``/``ml_model_file`` when set and
      may be a plain path, a ``file://`` URL, or an ``http(s)://`` URL.
    """

    port: int = Field(default=3000, validation_alias=AliasChoices("port", "PORT", "ML_PORT"))
    ml_host: str = Field(default="0.0.0.0")

    # Execution backend
    ml_backend: str = Field(default="onnxruntime")
    ml_onnx_providers: List[str] = Field(default_factory=lambda: ["CPUExecutionProvider"])

    # Model artifact
    ml_model_dir: str = Field(default="model")
    ml_model_file: str = Field(default="model.onnx")
    ml_model_url: Optional[str] = Field(default=None)
    ml_model_fetch_timeout: float = Field(default=30.0)

    @property
    def model_dir_path(self) -> Path:
        """Directory exposed as static files under ``/model``."""
        return Path(self.ml_model_dir)


def get_config(service_name: str) -> BaseConfig:
    """Get configuration for a service by logical name.

    Unknown names fall back to ``BaseConfig``.
    """
    config_map = {
        "model-serving": ModelServingConfig,
    }
    config_class = config_map.get(service_name, BaseConfig)
    return config_class()
