from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OrchestrationSettings(BaseModel):
    max_handoffs: int = Field(5, ge=1, description="Maximum agent hops per orchestrated request.")
    hop_timeout_seconds: float = Field(30.0, gt=0.0, description="Per-hop timeout applied to each agent run.")
    workflow_max_concurrency: int = Field(
        1,
        ge=1,
        description="Upper bound on concurrently running workflow tasks (1 keeps declaration order strictly sequential).",
    )
    workflow_task_timeout_seconds: float | None = Field(
        None,
        gt=0.0,
        description="Optional timeout applied to each workflow task.",
    )


class TaskSettings(BaseModel):
    default_plan_description: str = Field("Deployment plan", min_length=1)
    history_limit: int = Field(200, ge=1, description="Maximum history entries retained per task.")
    parse_plans: bool = Field(
        True,
        description="Attach the composite plan parser so planner output is converted into plan steps.",
    )


class RetrySettings(BaseModel):
    max_attempts: int = Field(3, ge=1, description="Attempts per plan step, including the first one.")
    initial_backoff_seconds: float = Field(0.1, ge=0.0)
    backoff_multiplier: float = Field(2.0, ge=1.0)
    max_backoff_seconds: float = Field(1.0, ge=0.0)


class ObservabilitySettings(BaseModel):
    prometheus_enabled: bool = Field(True)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


class Settings(BaseSettings):
    environment: Literal["local", "test", "production"] = Field("local")
    api_v1_prefix: str = Field("/api/v1")

    orchestration: OrchestrationSettings = Field(default_factory=OrchestrationSettings)  # type: ignore[arg-type]
    tasks: TaskSettings = Field(default_factory=TaskSettings)  # type: ignore[arg-type]
    retry: RetrySettings = Field(default_factory=RetrySettings)  # type: ignore[arg-type]
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )


@lru_cache(maxsize=1)
def _get_cached_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def get_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Return settings, using cached defaults unless overrides are provided."""
    if overrides:
        materialized = dict(overrides)
        allowed_keys = {"environment", "orchestration", "tasks", "retry", "observability"}
        filtered = {key: value for key, value in materialized.items() if key in allowed_keys}
        if filtered:
            return Settings(**filtered)
    return _get_cached_settings()
