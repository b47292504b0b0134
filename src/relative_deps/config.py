"""Run options and per-project configuration."""

import logging
import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .constants import CONFIG_FILE, DEFAULT_PARALLEL_CONCURRENCY, ENV_MAX_CONCURRENCY

logger = logging.getLogger(__name__)


class InstallOptions(BaseModel):
    """Process-wide options for one install run.

    ``verbose`` only affects diagnostic output, never behavior.
    """

    force: bool = False  # bypass change detection
    clean: bool = False  # drop cache records before running
    verbose: bool = False
    max_concurrency: Optional[int] = Field(default=None, ge=1)  # None: use project config
    parallel: bool = False  # run concurrently even if config resolves to 1


class ProjectConfig(BaseModel):
    """Optional settings from ``.relative-deps.yaml`` in the consumer root."""

    max_concurrency: int = Field(default=1, ge=1)
    ignore: List[str] = Field(default_factory=list)  # extra fingerprint ignore patterns
    watch_delay: float = Field(default=0.5, gt=0)  # seconds of quiet before a rerun


def load_project_config(root: Path) -> ProjectConfig:
    """Load project configuration if present, defaults otherwise.

    ``RELATIVE_DEPS_MAX_CONCURRENCY`` overrides the file's ``max_concurrency``.
    """
    cfg_path = Path(root) / CONFIG_FILE
    data = {}
    if cfg_path.exists():
        try:
            data = yaml.safe_load(cfg_path.read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Ignoring unreadable %s: %s", cfg_path, e)
            data = {}
        if not isinstance(data, dict):
            logger.warning("Ignoring %s: expected a mapping", cfg_path)
            data = {}

    env_value = os.environ.get(ENV_MAX_CONCURRENCY)
    if env_value:
        data["max_concurrency"] = env_value

    try:
        return ProjectConfig(**data)
    except ValidationError as e:
        logger.warning("Invalid relative-deps configuration, using defaults: %s", e)
        return ProjectConfig()


def resolve_max_concurrency(cli_value: Optional[int], config: ProjectConfig, parallel: bool = False) -> int:
    """CLI flag > environment/config file > default of 1.

    With ``parallel``, a resolved ceiling of 1 becomes DEFAULT_PARALLEL_CONCURRENCY.
    """
    if cli_value is not None:
        return cli_value
    if parallel and config.max_concurrency == 1:
        return DEFAULT_PARALLEL_CONCURRENCY
    return config.max_concurrency
