"""Configuration loading and validation.

Usage:
    config = load("metrics-report.yaml")       # raises ConfigError on bad config
    config.filter_settings()                   # -> FilterSettings for the engine
    generate_template("metrics-report.yaml")   # writes example file to disk
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from metrics_report.errors import MetricsReportError
from metrics_report.filters import DEFAULT_EXCLUDED_MEMBERS, FilterSettings
from metrics_report.models import SourceFamily

DEFAULT_CONFIG_PATH = "metrics-report.yaml"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigError(MetricsReportError):
    """Raised when the configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# Config dataclass
# ---------------------------------------------------------------------------

@dataclass
class FilterConfig:
    excluded_members: str = DEFAULT_EXCLUDED_MEMBERS
    excluded_assemblies: str = ""
    excluded_types: str = ""
    exclude_methods: bool = False
    exclude_properties: bool = False
    exclude_fields: bool = False
    exclude_events: bool = False


@dataclass
class Config:
    solution: str
    documents: dict[SourceFamily, list[Path]] = field(default_factory=dict)
    thresholds: Path | None = None
    baseline: Path | None = None
    suppressions: Path | None = None
    output: Path | None = None
    filters: FilterConfig = field(default_factory=FilterConfig)

    def filter_settings(self) -> FilterSettings:
        f = self.filters
        return FilterSettings.from_strings(
            f.excluded_members,
            f.excluded_assemblies,
            f.excluded_types,
            exclude_methods=f.exclude_methods,
            exclude_properties=f.exclude_properties,
            exclude_fields=f.exclude_fields,
            exclude_events=f.exclude_events,
        )

    def document_paths(self) -> list[tuple[SourceFamily, Path]]:
        return [(family, path) for family in SourceFamily for path in self.documents.get(family, [])]


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load(config_path: str = DEFAULT_CONFIG_PATH) -> Config:
    """Load and validate configuration from a YAML file.

    Environment variables prefixed with METRICS_REPORT_ override file values.
    Relative paths are resolved against the configuration file's directory.

    Raises:
        ConfigError: if the file is missing, malformed, or required fields
                     are absent.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(
            f"Config file not found: '{config_path}'\n"
            "Run `python -m metrics_report init` to generate a template."
        )

    try:
        with path.open(encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse '{config_path}': {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"'{config_path}' must be a YAML mapping at the top level.")

    base = path.parent
    errors: list[str] = []

    documents: dict[SourceFamily, list[Path]] = {}
    raw_documents = raw.get("documents") or {}
    if not isinstance(raw_documents, dict):
        errors.append("  - 'documents' must be a mapping of source family to file list")
        raw_documents = {}
    for family in SourceFamily:
        entries = raw_documents.get(family.value) or []
        if isinstance(entries, str):
            entries = [entries]
        if not isinstance(entries, list):
            errors.append(f"  - 'documents.{family.value}' must be a list of paths")
            continue
        documents[family] = [_resolve(base, entry) for entry in entries if entry]
    unknown = sorted(set(raw_documents) - {family.value for family in SourceFamily})
    if unknown:
        errors.append(f"  - unknown document families: {', '.join(map(str, unknown))}")

    raw_filters = raw.get("filters") or {}
    if not isinstance(raw_filters, dict):
        errors.append("  - 'filters' must be a mapping")
        raw_filters = {}

    config = Config(
        solution=str(_env("SOLUTION") or raw.get("solution") or "").strip(),
        documents=documents,
        thresholds=_optional_path(base, _env("THRESHOLDS") or raw.get("thresholds")),
        baseline=_optional_path(base, _env("BASELINE") or raw.get("baseline")),
        suppressions=_optional_path(base, _env("SUPPRESSIONS") or raw.get("suppressions")),
        output=_optional_path(base, _env("OUTPUT") or raw.get("output")),
        filters=_load_filters(raw_filters, errors),
    )
    _validate(config, errors)
    return config


def _load_filters(raw: dict, errors: list[str]) -> FilterConfig:
    defaults = FilterConfig()

    def text(key: str, default: str) -> str:
        value = _env(key.upper())
        if value is None:
            value = raw.get(key, default)
        return "" if value is None else str(value)

    def flag(key: str) -> bool:
        value = _env(key.upper())
        if value is None:
            value = raw.get(key, False)
        if isinstance(value, bool):
            return value
        folded = str(value).strip().lower()
        if folded in _TRUE:
            return True
        if folded not in _FALSE:
            errors.append(f"  - 'filters.{key}' must be a boolean, got '{value}'")
        return False

    return FilterConfig(
        excluded_members=text("excluded_members", defaults.excluded_members),
        excluded_assemblies=text("excluded_assemblies", defaults.excluded_assemblies),
        excluded_types=text("excluded_types", defaults.excluded_types),
        exclude_methods=flag("exclude_methods"),
        exclude_properties=flag("exclude_properties"),
        exclude_fields=flag("exclude_fields"),
        exclude_events=flag("exclude_events"),
    )


def _validate(config: Config, errors: list[str]) -> None:
    """Raise ConfigError listing every problem found."""
    if not config.solution:
        errors.append(
            "  - 'solution' is missing (or set the METRICS_REPORT_SOLUTION environment variable)"
        )
    if not any(config.documents.values()):
        errors.append(
            "  - 'documents' is empty - list at least one coverage, metrics or diagnostics file"
        )

    if errors:
        raise ConfigError("Invalid configuration:\n" + "\n".join(errors))


def _env(name: str) -> str | None:
    return os.environ.get(f"METRICS_REPORT_{name}")


def _resolve(base: Path, value) -> Path:
    path = Path(str(value))
    return path if path.is_absolute() else base / path


def _optional_path(base: Path, value) -> Path | None:
    if value is None or not str(value).strip():
        return None
    return _resolve(base, str(value).strip())


# ---------------------------------------------------------------------------
# Template generator (used by `init` command)
# ---------------------------------------------------------------------------

TEMPLATE = """\
solution: "MySolution"

documents:
  # Parsed element lists, one JSON file per analysis tool run
  coverage:
    - "artifacts/coverage.json"
  metrics:
    - "artifacts/code-metrics.json"
  diagnostics:
    - "artifacts/analyzers.json"

thresholds: "thresholds.json"        # optional, built-in defaults otherwise
baseline: "baseline.json"            # optional, previous report for deltas
suppressions: "suppressed.json"      # optional
output: "metrics-report.json"        # optional, stdout otherwise

filters:
  excluded_members: "ctor,cctor,MoveNext,SetStateMachine"
  excluded_assemblies: ""            # e.g. "Tests;Benchmarks"
  excluded_types: ""                 # e.g. "*.Migrations.*"
  exclude_methods: false
  exclude_properties: false
  exclude_fields: false
  exclude_events: false
"""


def generate_template(output_path: str = DEFAULT_CONFIG_PATH) -> None:
    """Write a template metrics-report.yaml to *output_path*.

    Raises:
        ConfigError: if the file already exists.
    """
    path = Path(output_path)
    if path.exists():
        raise ConfigError(
            f"'{output_path}' already exists. Remove it first or choose a different path."
        )
    path.write_text(TEMPLATE, encoding="utf-8")
