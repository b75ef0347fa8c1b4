"""Configuration loader for the submission monitor."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigurationError
from .weights import WeightConfiguration


class MonitorConfig:
    """Central configuration container for the submission monitor."""

    DEFAULT_CONFIG_PATH = Path("config/monitor.yaml")

    def __init__(self, config_path: Optional[Path | str] = None, *, required: bool = False) -> None:
        path = Path(config_path) if config_path else self.DEFAULT_CONFIG_PATH
        if not path.is_absolute():
            path = Path.cwd() / path
        self.config_path = path
        self.required = required or config_path is not None
        self._data = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            if self.required:
                raise ConfigurationError(f"Configuration file not found: {self.config_path}")
            return {"settings": {}, "weights": {}}
        try:
            with open(self.config_path, "r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Failed to read configuration {self.config_path}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Configuration {self.config_path} must be a mapping")
        return dict(data)

    def get_setting(self, key: str, default: Any = None) -> Any:
        settings = self._data.get("settings") or {}
        return settings.get(key, default)

    def weights_section(self) -> Dict[str, Any]:
        return dict(self._data.get("weights") or {})

    def weight_configuration(self) -> WeightConfiguration:
        return WeightConfiguration.from_dict(self.weights_section())
