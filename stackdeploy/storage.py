"""Helpers for reading deployment files and tracking API runs."""
from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .models import (
    DeploymentConfig,
    RunRecord,
    StageEvent,
    parameter_list_to_mapping,
    stringify_value,
)


class DeploymentRepository:
    """Reads deployment configuration, templates and parameter files."""

    def __init__(self, root: Optional[Path] = None) -> None:
        self.root = root or Path.cwd()

    def resolve(self, path: Path | str, base: Optional[Path] = None) -> Path:
        path = Path(path).expanduser()
        if path.is_absolute():
            return path
        return (base or self.root) / path

    def load_deployment(self, path: Path | str) -> DeploymentConfig:
        """Load a YAML (or JSON) deployment file.

        Relative ``template_path`` and ``parameters_file`` entries are resolved
        against the directory holding the deployment file.
        """
        config_path = self.resolve(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Missing deployment file at {config_path}")
        data = yaml.safe_load(config_path.read_text()) or {}
        config = DeploymentConfig.model_validate(data)
        base = config_path.parent
        if config.template_path is not None:
            config.template_path = self.resolve(config.template_path, base)
        if config.parameters_file is not None:
            config.parameters_file = self.resolve(config.parameters_file, base)
        return config

    def load_template(self, path: Path | str) -> str:
        template_path = self.resolve(path)
        if not template_path.exists():
            raise FileNotFoundError(f"Template path does not exist: {template_path}")
        return template_path.read_text(encoding="utf-8")

    def load_parameters(self, path: Path | str) -> Dict[str, str]:
        """Read a parameter file.

        Accepts the CloudFormation CLI list format
        (``[{"ParameterKey": ..., "ParameterValue": ...}]``) or a plain mapping.
        """
        params_path = self.resolve(path)
        if not params_path.exists():
            raise FileNotFoundError(f"Parameters file does not exist: {params_path}")
        data = yaml.safe_load(params_path.read_text()) or {}
        if isinstance(data, list):
            try:
                return parameter_list_to_mapping(data)
            except ValueError as exc:
                raise ValueError(f"{exc} in {params_path}") from exc
        if isinstance(data, dict):
            return {str(key): stringify_value(value) for key, value in data.items()}
        raise ValueError(f"Unsupported parameters file format: {params_path}")


class RunRegistry:
    """In-memory run history for deployments started over HTTP.

    Records live for the lifetime of the process only.
    """

    def __init__(self) -> None:
        self._runs: Dict[str, RunRecord] = {}
        self._lock = threading.Lock()

    def start_run(self, run_id: str, stack_name: str) -> RunRecord:
        record = RunRecord(run_id=run_id, stack_name=stack_name)
        with self._lock:
            self._runs[run_id] = record
        return record

    def append_run_event(self, run_id: str, event: StageEvent) -> None:
        with self._lock:
            record = self._runs.get(run_id)
            if record is None:
                raise KeyError(run_id)
            record.events.append(event)

    def finalize_run(self, run_id: str, ok: bool, summary: str | None = None, **fields: Any) -> None:
        with self._lock:
            record = self._runs.get(run_id)
            if record is None:
                raise KeyError(run_id)
            record.ok = ok
            if summary:
                record.summary = summary
            for name, value in fields.items():
                setattr(record, name, value)

    def get_run(self, run_id: str) -> RunRecord | None:
        with self._lock:
            record = self._runs.get(run_id)
            return record.model_copy(deep=True) if record is not None else None
