#!/usr/bin/env python3

"""Shared helpers for the MOCO report extension."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import json
import json5
import os
import re
import sys
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

ISO_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

DEBUG_ENV_VAR = "TIMEWARRIOR_EXT_MOCO_DEBUG"
API_KEY_ENV_VAR = "MOCO_API_KEY"

DOMAIN_KEY = "reports.moco.domain"
API_KEY_KEY = "reports.moco.api_key"
PROJECTS_FILE_KEY = "reports.moco.projects_file"
SUBMIT_KEY = "reports.moco.submit"
FUZZY_THRESHOLD_KEY = "reports.moco.fuzzy_threshold"
DEFAULT_TASK_KEY = "reports.moco.default_task"
CONTEXT_TAG_KEY = "reports.moco.context_tag"
EXCLUDE_TAGS_KEY = "reports.moco.exclude_tags"
FAIL_ON_MISSING_TASK_KEY = "reports.moco.fail_on_missing_task"
SKIP_INVALID_KEY = "reports.moco.skip_invalid"
TIMEOUT_KEY = "reports.moco.timeout"

DEFAULT_FUZZY_THRESHOLD = 0.8
DEFAULT_TASK_TERM = "software engineering"
DEFAULT_CONTEXT_TAG = "work"
DEFAULT_TIMEOUT = 10.0

PROJECT_TAG_PATTERN = re.compile(r"^([^:]+):\s*(.+)$")

ConfigValue = Union[str, bool, Mapping[str, "ConfigValue"]]


class MocoError(Exception):
    """Base class for everything the extension raises on purpose."""


class ParseError(MocoError):
    pass


class ValidationError(MocoError):
    pass


class NotFoundError(MocoError):
    pass


class ConfigError(MocoError):
    pass


class MocoApiError(MocoError):
    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


_debug_override: Optional[bool] = None


def set_debug(enabled: Optional[bool]) -> None:
    """Force debug output on or off; ``None`` defers to the environment."""

    global _debug_override
    _debug_override = enabled


def _debug_enabled() -> bool:
    if _debug_override is not None:
        return _debug_override
    value = os.getenv(DEBUG_ENV_VAR, "").strip().lower()
    return value in {"1", "true", "yes", "on"}


def debug(message: str) -> None:
    if _debug_enabled():
        sys.stderr.write("[moco] " + message.rstrip() + "\n")


def warn(message: str) -> None:
    sys.stderr.write(message.rstrip() + "\n")


@dataclass(frozen=True)
class RawInterval:
    """One record of the `timew export` payload as it was exported."""

    id: int
    start: str
    end: str
    tags: Tuple[str, ...] = ()
    annotation: str = ""

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> "RawInterval":
        if not isinstance(record, Mapping):
            raise ParseError(f"Interval record must be an object, got {record!r}")
        interval_id = record.get("id")
        if not isinstance(interval_id, int) or isinstance(interval_id, bool):
            raise ParseError(f"Interval id must be an integer, got {interval_id!r}")
        tags = record.get("tags")
        if tags is None:
            tags = []
        if not isinstance(tags, list):
            raise ParseError(f"Tags of interval {interval_id} must be a list, got {tags!r}")
        return cls(
            id=interval_id,
            start=str(record.get("start", "") or ""),
            end=str(record.get("end", "") or ""),
            tags=tuple(str(tag) for tag in tags),
            annotation=str(record.get("annotation", "") or ""),
        )

    def to_interval(self) -> "Interval":
        project_tag, remaining = (self.tags[0], self.tags[1:]) if self.tags else ("", ())
        project, description = split_project_tag(project_tag)
        return Interval(
            id=self.id,
            start=self.start,
            end=self.end,
            project=project,
            description=description,
            tags=tuple(remaining),
        )


@dataclass(frozen=True)
class Interval:
    id: int
    start: str
    end: str
    project: str
    description: str
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TimewarriorReport:
    config: Mapping[str, ConfigValue]
    intervals: Tuple[RawInterval, ...]

    def to_intervals(self) -> List[Interval]:
        return [raw.to_interval() for raw in self.intervals]


@dataclass(frozen=True)
class MocoTask:
    id: int
    name: str
    active: bool = True
    billable: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MocoTask":
        try:
            return cls(
                id=data["id"],
                name=str(data["name"]),
                active=bool(data.get("active", True)),
                billable=bool(data.get("billable", True)),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise ConfigError(f"Malformed task in catalog: {data!r}") from exc


@dataclass(frozen=True)
class MocoProject:
    id: int
    name: str
    active: bool = True
    tasks: Tuple[MocoTask, ...] = ()
    identifier: str = ""
    billable: bool = True
    customer: Optional[Mapping[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MocoProject":
        try:
            tasks = tuple(MocoTask.from_dict(task) for task in data.get("tasks") or [])
            return cls(
                id=data["id"],
                name=str(data["name"]),
                active=bool(data.get("active", True)),
                tasks=tasks,
                identifier=str(data.get("identifier", "") or ""),
                billable=bool(data.get("billable", True)),
                customer=data.get("customer"),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise ConfigError(f"Malformed project in catalog: {data!r}") from exc


@dataclass
class MocoActivity:
    """Activity as it is handed to MOCO.

    ``billable`` stays ``None`` unless the interval carried a non-billable
    marker; MOCO then falls back to the project/task setting.
    """

    project_id: int
    task_id: int
    date: str
    seconds: int
    description: str
    billable: Optional[bool] = None

    def group_key(self) -> Tuple[str, int, str]:
        return (self.date, self.project_id, self.description)

    def as_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "project_id": self.project_id,
            "task_id": self.task_id,
            "date": self.date,
            "seconds": self.seconds,
            "description": self.description,
        }
        if self.billable is not None:
            payload["billable"] = self.billable
        return payload


@dataclass
class MocoConfig:
    domain: str
    api_key: str
    projects_file: Optional[str]
    submit: bool
    fuzzy_threshold: float
    default_task: str
    context_tag: str
    exclude_tags: set[str] = field(default_factory=set)
    fail_on_missing_task: bool = False
    skip_invalid: bool = False
    timeout: float = DEFAULT_TIMEOUT
    debug: bool = False
    verbose: bool = False


def split_project_tag(tag: str) -> Tuple[str, str]:
    """Split a ``"Project: description"`` tag into its lowercased project and description."""

    match = PROJECT_TAG_PATTERN.match(tag or "")
    if not match:
        return "", ""
    project, description = match.groups()
    return project.lower(), description.strip()


def format_iso_timestamp(value: str) -> str:
    """Rewrite ``20250228T060000Z`` as ``2025-02-28T06:00:00Z``."""

    if not isinstance(value, str) or len(value) != 16 or value[8] != "T" or value[15] != "Z":
        raise ValidationError(f"Invalid timestamp: {value!r}")
    return (
        f"{value[0:4]}-{value[4:6]}-{value[6:8]}"
        f"T{value[9:11]}:{value[11:13]}:{value[13:15]}Z"
    )


def parse_timew_timestamp(value: str) -> datetime:
    try:
        return datetime.strptime(format_iso_timestamp(value), ISO_DATETIME_FORMAT)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid timestamp: {value!r}") from exc


def split_report_input(content: str) -> Tuple[str, str]:
    """Split the report header from the JSON payload."""

    header, separator, payload = content.partition("\n\n")
    if separator:
        return header, payload
    if content.lstrip().startswith("["):
        return "", content
    return content, ""


def parse_config_header(header: str) -> Mapping[str, ConfigValue]:
    config: Dict[str, Any] = {"debug": False, "verbose": False}

    for line in header.split("\n"):
        key, _, value = line.rstrip("\r").partition(": ")
        if not key or not value:
            continue

        if key in ("debug", "verbose"):
            config[key] = value == "1"
            continue

        parts = key.split(".")
        current = config
        for part in parts[:-1]:
            child = current.setdefault(part, {})
            if not isinstance(child, dict):
                debug(f"config key '{key}' collides with value of '{part}', skipped")
                break
            current = child
        else:
            current[parts[-1]] = value

    return _freeze(config)


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    return value


def config_value(config: Mapping[str, ConfigValue], key: str) -> Optional[ConfigValue]:
    """Look up a dotted key in a parsed (nested) report config."""

    current: Any = config
    for part in key.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def parse_intervals(payload: str) -> Tuple[RawInterval, ...]:
    if not payload.strip():
        return ()

    try:
        records = json.loads(payload)
    except ValueError as exc:
        raise ParseError(f"Could not parse timew export: {exc}") from exc

    if not isinstance(records, list):
        raise ParseError("timew export must be a JSON array of intervals")

    return tuple(RawInterval.from_dict(record) for record in records)


def parse_report(content: str) -> TimewarriorReport:
    """Parse what `timew report` pipes to an extension: header, blank line, JSON."""

    header, payload = split_report_input(content)
    return TimewarriorReport(
        config=parse_config_header(header),
        intervals=parse_intervals(payload),
    )


def load_projects_file(filename: str) -> List[MocoProject]:
    """Load a project catalog from a JSON file (same shape as `/projects/assigned`)."""

    if os.path.isabs(filename):
        path = filename
    else:
        path = os.path.join(sys.path[0], filename)
    try:
        with open(path, encoding="utf-8") as catalog_file:
            data = json5.load(catalog_file)
    except OSError as exc:
        raise ConfigError(f"Could not read projects file {path}: {exc}") from exc
    except ValueError as exc:
        raise ConfigError(f"Invalid projects file {path}: {exc}") from exc

    if not isinstance(data, list):
        raise ConfigError(f"Projects file {path} must contain a list of projects")
    return [MocoProject.from_dict(item) for item in data]


def resolve_report_config(config: Mapping[str, ConfigValue]) -> MocoConfig:
    debug_value = config.get("debug") is True or _debug_enabled()

    api_key = _resolve_value(config, API_KEY_KEY, "")
    if not api_key:
        api_key = os.getenv(API_KEY_ENV_VAR, "").strip()

    projects_file = _resolve_value(config, PROJECTS_FILE_KEY, "") or None

    return MocoConfig(
        domain=_resolve_value(config, DOMAIN_KEY, ""),
        api_key=api_key,
        projects_file=projects_file,
        submit=_parse_bool(_resolve_value(config, SUBMIT_KEY, "0")) is True,
        fuzzy_threshold=_parse_float(
            _resolve_value(config, FUZZY_THRESHOLD_KEY, ""),
            DEFAULT_FUZZY_THRESHOLD,
            FUZZY_THRESHOLD_KEY,
        ),
        default_task=_resolve_value(config, DEFAULT_TASK_KEY, "") or DEFAULT_TASK_TERM,
        context_tag=_resolve_value(config, CONTEXT_TAG_KEY, DEFAULT_CONTEXT_TAG),
        exclude_tags=_parse_tag_list(_resolve_value(config, EXCLUDE_TAGS_KEY, "")),
        fail_on_missing_task=_parse_bool(
            _resolve_value(config, FAIL_ON_MISSING_TASK_KEY, "0")
        )
        is True,
        skip_invalid=_parse_bool(_resolve_value(config, SKIP_INVALID_KEY, "0")) is True,
        timeout=_parse_float(
            _resolve_value(config, TIMEOUT_KEY, ""), DEFAULT_TIMEOUT, TIMEOUT_KEY
        ),
        debug=debug_value,
        verbose=config.get("verbose") is True,
    )


def _resolve_value(config: Mapping[str, ConfigValue], key: str, default: str) -> str:
    value = default
    header_value = config_value(config, key)
    if isinstance(header_value, str):
        value = header_value.strip()
    env_value = _get_env_value(key)
    if env_value is not None:
        value = env_value
    return value


def _get_env_value(key: str) -> Optional[str]:
    raw = os.getenv(_env_key_for_header(key))
    if raw is None:
        return None
    return raw.strip()


def _env_key_for_header(header_key: str) -> str:
    return "TIMEWARRIOR_" + header_key.upper().replace(".", "_")


def _parse_tag_list(raw: Optional[str]) -> set[str]:
    if not raw:
        return set()
    return {tag.strip() for tag in raw.split(",") if tag.strip()}


def _parse_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    lower = value.strip().lower()
    if lower in {"1", "true", "yes", "on"}:
        return True
    if lower in {"0", "false", "no", "off"}:
        return False
    return None


def _parse_float(value: Optional[str], default: float, name: str) -> float:
    if value is None or value == "":
        return default
    try:
        parsed = float(value)
    except ValueError:
        warn(f"Invalid value for {name}: {value!r}. Using default {default}.")
        return default
    if parsed < 0:
        warn(f"Negative value for {name}. Using default {default}.")
        return default
    return parsed
