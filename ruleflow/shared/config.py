"""
Shared configuration management for the ruleflow engine.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Engine configuration with environment overrides."""

    model_config = SettingsConfigDict(
        env_prefix="RULEFLOW_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Logging
    log_level: str = Field(default="info", description="Log level for the engine loggers")

    # Collaborators
    template_engine: str = Field(default="basic", description="Validation message renderer: basic or jinja2")

    # Function invocation
    function_cache_enabled: bool = Field(default=True, description="Honour per-function cache flags")

    # Expression evaluator limits
    expression_max_length: int = Field(default=4096, ge=1, description="Maximum expression source length")
    expression_max_nodes: int = Field(default=2000, ge=1, description="Maximum syntax nodes per expression")

    # Observability
    metrics_enabled: bool = Field(default=True, description="Record Prometheus metrics")


def get_settings(**overrides) -> EngineSettings:
    """Get engine settings, applying explicit overrides over the environment."""
    return EngineSettings(**overrides)
