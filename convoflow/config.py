"""
Engine settings.

Values come from dataclass defaults, then a YAML file, then
``CONVOFLOW_*`` environment variables.
"""
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml


@dataclass
class EngineSettings:
    """Tunables for the conversation runtime."""

    max_auto_steps: int = 100
    store_dir: Optional[str] = None
    log_level: str = "INFO"
    execution_log_limit: int = 1000

    _ENV_MAP = {
        "max_auto_steps": "CONVOFLOW_MAX_AUTO_STEPS",
        "store_dir": "CONVOFLOW_STORE_DIR",
        "log_level": "CONVOFLOW_LOG_LEVEL",
        "execution_log_limit": "CONVOFLOW_EXECUTION_LOG_LIMIT",
    }

    def __post_init__(self) -> None:
        self.max_auto_steps = int(self.max_auto_steps)
        if self.max_auto_steps < 1:
            raise ValueError("max_auto_steps must be at least 1")
        self.log_level = str(self.log_level).upper()
        self.execution_log_limit = int(self.execution_log_limit)
        if self.execution_log_limit < 1:
            raise ValueError("execution_log_limit must be at least 1")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EngineSettings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, base: Optional["EngineSettings"] = None) -> "EngineSettings":
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = dict(vars(base)) if base is not None else {}
        for name, env_key in cls._ENV_MAP.items():
            if env_key in environ and environ[env_key] != "":
                values[name] = environ[env_key]
        return cls.from_mapping(values)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "EngineSettings":
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Settings file {path} must contain a mapping")
        return cls.from_mapping(data.get("convoflow", data))

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "EngineSettings":
        """YAML file (if given) overridden by the environment."""
        base = cls.from_yaml(path) if path else cls()
        return cls.from_env(base=base)


def configure_logging(settings: EngineSettings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
