"""
YAML configuration loader.

Every ``*.yml`` / ``*.yaml`` file in the config directory contributes its
top-level sections; later files (by name) override earlier ones.
"""

from pathlib import Path
from typing import Any

import yaml


class ConfigLoader:
    def __init__(self, config_dir: str = "config"):
        self.config_dir = Path(config_dir)

    # ------------------------------------------------------------------

    def load_all(self) -> dict[str, Any]:
        config: dict[str, Any] = {}

        if not self.config_dir.is_dir():
            return config

        files = sorted(
            [*self.config_dir.glob("*.yml"), *self.config_dir.glob("*.yaml")],
            key=lambda p: p.name,
        )
        for path in files:
            config.update(self.load_file(path))

        return config

    @staticmethod
    def load_file(path: Path) -> dict[str, Any]:
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: top level must be a mapping")
        return data
