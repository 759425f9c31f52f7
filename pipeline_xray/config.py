from __future__ import annotations

import os
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field


class ReasoningConfig(BaseModel):
    """Settings for the reasoning job queue."""

    auto_process: bool = False
    concurrency: int = Field(default=3, ge=1)
    max_retries: int = Field(default=4, ge=1)
    retry_delays: List[float] = Field(default_factory=lambda: [1.0, 2.0, 4.0, 8.0])
    llm_timeout: float = 30.0
    debug: bool = False


class LLMConfig(BaseModel):
    """Settings for the language-model explanation tier."""

    model: Optional[str] = None
    max_tokens: int = 150
    temperature: float = 0.1


class CollectorConfig(BaseModel):
    """Where tracked executions are shipped over HTTP."""

    server_url: str = "http://localhost:3000"
    api_key: Optional[str] = None


class XRayConfig(BaseModel):
    """Top-level configuration model."""

    reasoning: ReasoningConfig = ReasoningConfig()
    llm: LLMConfig = LLMConfig()
    collector: CollectorConfig = CollectorConfig()
    database_url: Optional[str] = None


def _env_flag(name: str) -> Optional[bool]:
    value = os.getenv(name)
    if value is None:
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return int(value)


def load_config(path: Optional[str] = None) -> XRayConfig:
    """Load configuration from YAML file and environment.

    Args:
        path: Optional path to config file. Falls back to XRAY_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("XRAY_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = XRayConfig(**data)
    else:
        config = XRayConfig()

    reasoning = config.reasoning
    auto_process = _env_flag("XRAY_AUTO_REASONING")
    if auto_process is not None:
        reasoning.auto_process = auto_process
    debug = _env_flag("XRAY_REASONING_DEBUG")
    if debug is not None:
        reasoning.debug = debug
    concurrency = _env_int("XRAY_REASONING_CONCURRENCY")
    if concurrency is not None:
        reasoning.concurrency = max(1, concurrency)
    max_retries = _env_int("XRAY_REASONING_MAX_RETRIES")
    if max_retries is not None:
        reasoning.max_retries = max(1, max_retries)

    env_model = os.getenv("XRAY_LLM_MODEL")
    if env_model:
        config.llm.model = env_model

    env_server = os.getenv("XRAY_SERVER_URL")
    if env_server:
        config.collector.server_url = env_server
    env_api_key = os.getenv("XRAY_API_KEY")
    if env_api_key:
        config.collector.api_key = env_api_key

    env_db_url = os.getenv("XRAY_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
