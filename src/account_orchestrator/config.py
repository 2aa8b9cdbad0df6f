"""Configuration management for the account orchestrator."""

import json
import logging
from pathlib import Path
from typing import List, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from database.recorder import OrchestrationRecorder
from database.sqlite_store import DEFAULT_DB_PATH
from models import BackendConfig, BalancingPolicy, ExecutionStrategy
from orchestration.allocator import ResourceAllocator
from orchestration.orchestrator import OrchestrationConfig, Orchestrator
from prompts.templates import TemplateManager
from utils.llm import create_llm_client


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".account-orchestrator"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.json"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(Exception):
    """Raised when settings cannot be loaded or used."""
    pass


class OrchestratorSettings(BaseSettings):
    """Orchestrator settings from a JSON config file with ORCHESTRATOR_* environment overrides."""

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    backends: List[BackendConfig] = Field(default_factory=list)
    policy: BalancingPolicy = BalancingPolicy.LEAST_LOADED

    max_subtasks: int = Field(5, ge=1, le=10)
    strategy: ExecutionStrategy = ExecutionStrategy.ADAPTIVE
    save_history: bool = True

    request_timeout: Optional[float] = 120.0
    availability_timeout: Optional[float] = None
    poll_interval: float = Field(1.0, gt=0)
    max_retries: int = Field(2, ge=0)
    retry_delay: float = Field(1.0, ge=0)

    db_path: str = str(DEFAULT_DB_PATH)
    prompts_dir: Optional[str] = None
    log_level: str = "INFO"

    @field_validator("backends")
    @classmethod
    def validate_backend_ids(cls, v):
        """Reject explicit ids that appear more than once."""
        ids = [backend.id for backend in v if backend.id]
        duplicates = sorted({backend_id for backend_id in ids if ids.count(backend_id) > 1})
        if duplicates:
            raise ValueError(f"Duplicate backend ids: {', '.join(duplicates)}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        return level

    @classmethod
    def load(cls, path: Union[str, Path, None] = None) -> "OrchestratorSettings":
        """
        Load settings from a JSON file, letting environment variables override it.

        A missing file is not an error; the environment (and defaults) still apply.
        """
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        file_data = {}
        if config_path.exists():
            try:
                file_data = json.loads(config_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigurationError(f"Failed to read config file {config_path}: {e}") from e
            logger.debug(f"Loaded configuration from {config_path}")

        from_env = cls()
        overrides = from_env.model_dump(include=from_env.model_fields_set)
        return cls.model_validate({**file_data, **overrides})

    def save(self, path: Union[str, Path, None] = None) -> Path:
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(
            json.dumps(self.model_dump(mode="json"), indent=2),
            encoding="utf-8"
        )
        logger.info(f"Saved configuration to {config_path}", extra={"backends": len(self.backends)})
        return config_path

    def to_orchestration_config(self, **overrides) -> OrchestrationConfig:
        values = {
            "max_subtasks": self.max_subtasks,
            "strategy": self.strategy,
            "save_history": self.save_history,
            "request_timeout": self.request_timeout,
            "availability_timeout": self.availability_timeout,
            "poll_interval": self.poll_interval,
        }
        values.update(overrides)
        return OrchestrationConfig(**values)

    def build_allocator(self) -> ResourceAllocator:
        if not self.backends:
            raise ConfigurationError("No backends configured. Run 'account-orchestrator init' first.")

        def client_factory(backend: BackendConfig):
            return create_llm_client(
                api_key=backend.api_key,
                base_url=backend.base_url,
                max_retries=self.max_retries,
                retry_delay=self.retry_delay,
                timeout=self.request_timeout or 120.0
            )

        return ResourceAllocator(
            self.backends,
            policy=self.policy,
            client_factory=client_factory,
            poll_interval=self.poll_interval
        )

    def build_orchestrator(
        self,
        recorder: Optional[OrchestrationRecorder] = None,
        **overrides
    ) -> Orchestrator:
        """Wire allocator, templates and recorder into an orchestrator."""
        return Orchestrator(
            self.build_allocator(),
            config=self.to_orchestration_config(**overrides),
            recorder=recorder,
            templates=TemplateManager(self.prompts_dir)
        )
