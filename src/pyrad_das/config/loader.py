from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml
from pydantic import ValidationError

from pyrad_das.config.schema import DasConfig


@dataclass(frozen=True, slots=True)
class ConfigLoadError(Exception):
    """A DAS config source could not be read, parsed or validated."""

    source: str
    reason: str
    problems: tuple[str, ...] = ()

    def __str__(self) -> str:
        return "\n".join([f"{self.source}: {self.reason}", *(f" - {problem}" for problem in self.problems)])

    @classmethod
    def from_validation(cls, error: ValidationError, *, source: str) -> ConfigLoadError:
        # input values are omitted; the shared secret must not reach the log
        problems = tuple(
            f"{'.'.join(str(part) for part in item.get('loc', ())) or '<root>'}: {item.get('msg', 'invalid value')}"
            for item in error.errors()
        )
        return cls(source, "invalid DAS configuration", problems)


def _load_yaml(text: str) -> Any:
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"YAML parse error: {exc}") from exc
    if document is None:
        raise ValueError("Empty YAML document")
    return document


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"JSON parse error: {exc}") from exc


_PARSERS: dict[str, Callable[[str], Any]] = {
    ".yml": _load_yaml,
    ".yaml": _load_yaml,
    ".json": _load_json,
}


def read_config_file(path: str | Path) -> dict[str, Any]:
    """Parse a YAML/JSON config file into a mapping; no validation yet."""
    config_path = Path(path)
    source = str(config_path)

    parser = _PARSERS.get(config_path.suffix.lower())
    if parser is None:
        raise ConfigLoadError(source, f"Unsupported config format '{config_path.suffix}', use .yml/.yaml or .json")

    try:
        text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigLoadError(source, "Config file not found") from exc
    except OSError as exc:
        raise ConfigLoadError(source, f"Cannot read config file: {exc}") from exc

    try:
        document = parser(text)
    except ValueError as exc:
        raise ConfigLoadError(source, str(exc)) from exc

    if not isinstance(document, dict):
        raise ConfigLoadError(source, "Config root must be a mapping")
    return document


def load_config(path: str | Path, *, overrides: Mapping[str, Any] | None = None) -> DasConfig:
    """File values first, then overrides (the CLI flags) on top."""
    document = read_config_file(path)
    return validate_config({**document, **(overrides or {})}, source=str(path))


def validate_config(data: Any, *, source: str = "<memory>") -> DasConfig:
    try:
        return DasConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigLoadError.from_validation(exc, source=source) from exc
