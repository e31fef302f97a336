"""YAML configuration loader for importstore.

Reads import.yaml from the config/ directory:
  storage:  apply_rules default for jobs that do not set it
  matching: hits_per_split for the fuzzy transfer matcher
  tagging:  label template and tag mode for the per-job tag
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import yaml

DEFAULT_HITS_PER_SPLIT = 4
DEFAULT_TAG_LABEL = "Data Import with key {key}"
DEFAULT_TAG_MODE = "nothing"


@dataclass(frozen=True)
class BatchConfig:
    """Per-job options, validated from the job's configuration mapping."""
    apply_rules: bool = False

    @classmethod
    def from_mapping(
        cls, mapping: Mapping | None, default_apply_rules: bool = False
    ) -> BatchConfig:
        """Read "apply-rules" (or "apply_rules"); other keys belong to importers."""
        if not mapping:
            return cls(apply_rules=default_apply_rules)
        value = mapping.get("apply-rules", mapping.get("apply_rules"))
        if value is None:
            return cls(apply_rules=default_apply_rules)
        if not isinstance(value, bool):
            raise ValueError(f"apply-rules must be true or false, got {value!r}")
        return cls(apply_rules=value)


class Config:
    """Loads and provides access to import.yaml."""

    def __init__(self, config_dir: Path | str = "config"):
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise FileNotFoundError(f"Config directory not found: {self.config_dir}")

        self._settings: dict | None = None

    def _load(self, filename: str) -> dict:
        path = self.config_dir / filename
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            raise ValueError(f"Empty config file: {path}")
        if not isinstance(data, dict):
            raise ValueError(f"Expected a mapping in {path}")
        return data

    @property
    def settings(self) -> dict:
        if self._settings is None:
            self._settings = self._load("import.yaml")
        return self._settings

    def _section(self, name: str) -> dict:
        return self.settings.get(name) or {}

    @property
    def apply_rules(self) -> bool:
        """Default for jobs without an apply-rules option. Default: False."""
        value = self._section("storage").get("apply_rules", False)
        if not isinstance(value, bool):
            raise ValueError(f"storage.apply_rules must be true or false, got {value!r}")
        return value

    @property
    def hits_per_split(self) -> int:
        value = self._section("matching").get("hits_per_split", DEFAULT_HITS_PER_SPLIT)
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            raise ValueError(f"matching.hits_per_split must be a positive integer, got {value!r}")
        return value

    @property
    def tag_label(self) -> str:
        return self._section("tagging").get("label", DEFAULT_TAG_LABEL)

    @property
    def tag_mode(self) -> str:
        return self._section("tagging").get("mode", DEFAULT_TAG_MODE)

    def batch_config(self, job_configuration: Mapping | None) -> BatchConfig:
        return BatchConfig.from_mapping(job_configuration, default_apply_rules=self.apply_rules)
