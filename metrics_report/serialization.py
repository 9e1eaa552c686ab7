"""JSON interchange for parsed documents, suppressions and reports.

Functions:
    report_to_dict(report)         -> dict   (camelCase keys, numbers as int/float)
    thresholds_to_dict(table)      -> dict
    report_from_dict(data)         -> MetricsReport
    document_from_dict(data)       -> ParsedDocument
    suppressions_from_data(data)   -> list[SuppressedSymbolInfo]
    load_json(path)                -> Any    (decimals preserved)
    load_document(path)            -> ParsedDocument
    load_report(path)              -> MetricsReport
    load_suppressions(path)        -> list[SuppressedSymbolInfo]
    dump_report(report, indent)    -> str

Decoding keeps every number as ``Decimal`` so a report written here and read
back as a baseline compares exactly.
"""

import json
import logging
from decimal import Decimal
from pathlib import Path
from types import MappingProxyType
from typing import Any

from metrics_report.catalog import descriptor, resolve_metric_identifier
from metrics_report.errors import DocumentFormatError
from metrics_report.models import (
    LocatedFinding,
    MemberKind,
    MetricKey,
    MetricsNode,
    MetricsReport,
    MetricSymbolLevel,
    MetricThreshold,
    MetricThresholdDefinition,
    MetricValue,
    ParsedDocument,
    RawElement,
    RawMetricValue,
    ReportMetadata,
    ReportPaths,
    RuleBreakdownEntry,
    RuleDescription,
    RuleViolationDetail,
    SourceFamily,
    SourceLocation,
    Suppression,
    SuppressedSymbolInfo,
    ThresholdStatus,
    ThresholdTable,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _number(value: Decimal | None):
    """Decimal to JSON number: int when whole (88.0 -> 88), float otherwise.

    A float prints back as the same digits for values of up to 15
    significant digits, which rolled-up means are rounded to stay within.
    """
    if value is None:
        return None
    return int(value) if value == value.to_integral_value() else float(value)


def _decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except ArithmeticError as exc:
        raise DocumentFormatError(f"Not a number: {value!r}") from exc


def _int(value: Any) -> int | None:
    number = _decimal(value)
    return None if number is None else int(number)


def _enum(enum_type, raw: Any, field_name: str):
    if raw is None:
        return None
    for member in enum_type:
        if str(raw).casefold() in (member.value.casefold(), member.name.casefold()):
            return member
    raise DocumentFormatError(f"Unknown {field_name} '{raw}'")


def _drop_none(data: dict) -> dict:
    return {key: value for key, value in data.items() if value is not None}


def _metric_key(name: Any) -> MetricKey | None:
    metric = resolve_metric_identifier(name if isinstance(name, str) else None)
    if metric is None:
        logger.warning("Ignoring unknown metric '%s'", name)
    return metric


# ---------------------------------------------------------------------------
# Shared pieces
# ---------------------------------------------------------------------------

def _source_to_dict(source: SourceLocation | None) -> dict | None:
    if source is None:
        return None
    return _drop_none({"path": source.path, "startLine": source.start_line, "endLine": source.end_line})


def _source_from_dict(data: Any) -> SourceLocation | None:
    if not isinstance(data, dict) or not data.get("path"):
        return None
    return SourceLocation(str(data["path"]), _int(data.get("startLine")), _int(data.get("endLine")))


def _breakdown_to_dict(breakdown) -> dict | None:
    if breakdown is None:
        return None
    return {
        rule_id: {
            "count": entry.count,
            "violations": [
                _drop_none({
                    "message": v.message,
                    "uri": v.uri,
                    "startLine": v.start_line,
                    "endLine": v.end_line,
                })
                for v in entry.violations
            ],
        }
        for rule_id, entry in breakdown.items()
    }


def _breakdown_from_dict(data: Any) -> dict[str, RuleBreakdownEntry] | None:
    if not isinstance(data, dict):
        return None
    breakdown = {}
    for rule_id, entry in data.items():
        if not isinstance(entry, dict):
            continue
        violations = tuple(
            RuleViolationDetail(v.get("message"), v.get("uri"), _int(v.get("startLine")), _int(v.get("endLine")))
            for v in entry.get("violations") or []
            if isinstance(v, dict)
        )
        breakdown[str(rule_id)] = RuleBreakdownEntry(_int(entry.get("count")) or 0, violations)
    return breakdown


def _rule_descriptions_from_dict(data: Any) -> dict[str, RuleDescription]:
    if not isinstance(data, dict):
        return {}
    return {
        str(rule_id): RuleDescription(
            entry.get("shortDescription"),
            entry.get("fullDescription"),
            entry.get("helpUri"),
            entry.get("category"),
        )
        for rule_id, entry in data.items()
        if isinstance(entry, dict)
    }


def _rule_descriptions_to_dict(descriptions) -> dict:
    return {
        rule_id: _drop_none({
            "shortDescription": d.short_description,
            "fullDescription": d.full_description,
            "helpUri": d.help_uri,
            "category": d.category,
        })
        for rule_id, d in descriptions.items()
    }


# ---------------------------------------------------------------------------
# Parsed documents
# ---------------------------------------------------------------------------

def _findings_from_list(data: Any) -> tuple[LocatedFinding, ...]:
    if data is None:
        return ()
    if not isinstance(data, list):
        raise DocumentFormatError("'findings' must be a list.")
    findings = []
    for position, raw in enumerate(data):
        if not isinstance(raw, dict) or not raw.get("path"):
            raise DocumentFormatError(f"Finding #{position} has no 'path'.")
        metric = _metric_key(raw.get("metric"))
        if metric is None:
            continue
        if descriptor(metric).family is not SourceFamily.DIAGNOSTICS:
            raise DocumentFormatError(f"Finding #{position}: {metric.value} is not a violation count.")
        findings.append(LocatedFinding(
            metric=metric,
            path=str(raw["path"]),
            start_line=_int(raw.get("startLine")),
            end_line=_int(raw.get("endLine")),
            rule_id=raw.get("ruleId"),
            message=raw.get("message"),
        ))
    return tuple(findings)


def document_from_dict(data: Any) -> ParsedDocument:
    """Build a ``ParsedDocument`` from its JSON form.

    Raises:
        DocumentFormatError: if the payload is not an object with an
                             ``elements`` list or an element is malformed.
    """
    if not isinstance(data, dict) or not isinstance(data.get("elements"), list):
        raise DocumentFormatError("A parsed document must be an object with an 'elements' list.")
    source = _enum(SourceFamily, data.get("source"), "source family")
    if source is None:
        raise DocumentFormatError("A parsed document must declare its 'source'.")

    elements = []
    for position, raw in enumerate(data["elements"]):
        if not isinstance(raw, dict):
            raise DocumentFormatError(f"Element #{position} is not an object.")
        kind = _enum(MetricSymbolLevel, raw.get("kind"), "element kind")
        if kind is None:
            raise DocumentFormatError(f"Element #{position} has no 'kind'.")
        metrics: dict[MetricKey, RawMetricValue] = {}
        for name, value in (raw.get("metrics") or {}).items():
            metric = _metric_key(name)
            if metric is None:
                continue
            if isinstance(value, dict):
                metrics[metric] = RawMetricValue(
                    _decimal(value.get("value")), value.get("unit"), _breakdown_from_dict(value.get("breakdown")),
                )
            else:
                metrics[metric] = RawMetricValue(_decimal(value))
        elements.append(RawElement(
            kind=kind,
            name=str(raw.get("name") or ""),
            fully_qualified_name=raw.get("fullyQualifiedName"),
            parent_fully_qualified_name=raw.get("parentFullyQualifiedName"),
            containing_assembly=raw.get("containingAssembly"),
            member_kind=_enum(MemberKind, raw.get("memberKind"), "member kind"),
            source=_source_from_dict(raw.get("source")),
            metrics=MappingProxyType(metrics),
        ))

    return ParsedDocument(
        source=source,
        elements=tuple(elements),
        solution_name=data.get("solutionName"),
        source_path=data.get("sourcePath"),
        rule_descriptions=_rule_descriptions_from_dict(data.get("ruleDescriptions")),
        findings=_findings_from_list(data.get("findings")),
    )


# ---------------------------------------------------------------------------
# Suppressions
# ---------------------------------------------------------------------------

def suppressions_from_data(data: Any) -> list[SuppressedSymbolInfo]:
    """Accept ``{"suppressedSymbols": [...]}`` or a bare list."""
    if isinstance(data, dict):
        data = data.get("suppressedSymbols")
    if not isinstance(data, list):
        raise DocumentFormatError("Suppressed symbols must be a list or an object with 'suppressedSymbols'.")
    return [
        SuppressedSymbolInfo(
            fully_qualified_name=entry.get("fullyQualifiedName"),
            metric=entry.get("metric"),
            rule_id=entry.get("ruleId"),
            justification=entry.get("justification"),
            file_path=entry.get("filePath"),
            level=_enum(MetricSymbolLevel, entry.get("symbolLevel"), "symbol level"),
        )
        for entry in data
        if isinstance(entry, dict)
    ]


def _suppressed_to_dict(entry: SuppressedSymbolInfo) -> dict:
    return _drop_none({
        "filePath": entry.file_path,
        "fullyQualifiedName": entry.fully_qualified_name,
        "ruleId": entry.rule_id,
        "metric": entry.metric,
        "justification": entry.justification,
        "symbolLevel": entry.level.value if entry.level else None,
    })


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def _value_to_dict(value: MetricValue) -> dict:
    data = {
        "value": _number(value.value),
        "status": value.status.value,
        "delta": _number(value.delta),
        "suppressed": value.suppressed,
    }
    if value.unit:
        data["unit"] = value.unit
    if value.breakdown is not None:
        data["breakdown"] = _breakdown_to_dict(value.breakdown)
    if value.suppression is not None:
        data["suppression"] = _drop_none({
            "ruleId": value.suppression.rule_id,
            "justification": value.suppression.justification,
        })
    return data


def _node_to_dict(node: MetricsNode) -> dict:
    data = {
        "kind": node.kind.value,
        "name": node.name,
        "fullyQualifiedName": node.fully_qualified_name,
        "isNew": node.is_new,
        "source": _source_to_dict(node.source),
        "metrics": {metric.value: _value_to_dict(v) for metric, v in node.metrics.items()},
        "children": [_node_to_dict(child) for child in node.children],
    }
    if node.kind is MetricSymbolLevel.MEMBER:
        data["memberKind"] = node.member_kind.value if node.member_kind else None
        data["includesStateMachineCoverage"] = node.includes_state_machine_coverage
    return data


def thresholds_to_dict(table: ThresholdTable) -> dict:
    return {
        metric.value: {
            "description": definition.description,
            "levels": {
                level.value: {
                    "warning": _number(t.warning),
                    "error": _number(t.error),
                    "higherIsBetter": t.higher_is_better,
                    "positiveDeltaNeutral": t.positive_delta_neutral,
                }
                for level, t in definition.levels.items()
            },
        }
        for metric, definition in table.items()
    }


def report_to_dict(report: MetricsReport) -> dict:
    metadata = report.metadata
    paths = metadata.paths
    return {
        "metadata": {
            "generatedAt": metadata.generated_at,
            "baselineReference": metadata.baseline_reference,
            "paths": _drop_none({
                "metricsDirectory": paths.metrics_directory,
                "baseline": paths.baseline,
                "report": paths.report,
                "thresholds": paths.thresholds,
            }),
            "thresholds": thresholds_to_dict(metadata.thresholds),
            "metricUnits": {metric.value: unit for metric, unit in metadata.metric_units.items()},
            "metricDescriptions": {m.value: text for m, text in metadata.metric_descriptions.items()},
            "excludedMemberNames": metadata.excluded_member_names,
            "excludedAssemblyNames": metadata.excluded_assembly_names,
            "excludedTypeNames": metadata.excluded_type_names,
            "suppressedSymbols": [_suppressed_to_dict(s) for s in metadata.suppressed_symbols],
            "ruleDescriptions": _rule_descriptions_to_dict(metadata.rule_descriptions),
        },
        "solution": _node_to_dict(report.solution),
    }


def _value_from_dict(data: Any) -> MetricValue:
    if not isinstance(data, dict):
        return MetricValue(_decimal(data))
    suppression = data.get("suppression")
    return MetricValue(
        value=_decimal(data.get("value")),
        status=_enum(ThresholdStatus, data.get("status"), "status") or ThresholdStatus.NA,
        delta=_decimal(data.get("delta")),
        unit=data.get("unit"),
        breakdown=_breakdown_from_dict(data.get("breakdown")),
        suppression=(
            Suppression(suppression.get("ruleId"), suppression.get("justification"))
            if isinstance(suppression, dict) else None
        ),
    )


def _node_from_dict(data: Any) -> MetricsNode:
    if not isinstance(data, dict):
        raise DocumentFormatError("A report node must be an object.")
    kind = _enum(MetricSymbolLevel, data.get("kind"), "node kind")
    if kind is None:
        raise DocumentFormatError("A report node has no 'kind'.")
    metrics = {}
    for name, value in (data.get("metrics") or {}).items():
        metric = _metric_key(name)
        if metric is not None:
            metrics[metric] = _value_from_dict(value)
    return MetricsNode(
        kind=kind,
        name=str(data.get("name") or ""),
        fully_qualified_name=data.get("fullyQualifiedName"),
        is_new=bool(data.get("isNew", False)),
        source=_source_from_dict(data.get("source")),
        metrics=MappingProxyType(metrics),
        children=tuple(_node_from_dict(child) for child in data.get("children") or []),
        member_kind=_enum(MemberKind, data.get("memberKind"), "member kind"),
        includes_state_machine_coverage=bool(data.get("includesStateMachineCoverage", False)),
    )


def _thresholds_from_dict(data: Any) -> ThresholdTable:
    table = {}
    for name, definition in (data or {}).items():
        metric = _metric_key(name)
        if metric is None or not isinstance(definition, dict):
            continue
        levels = {}
        for level_name, t in (definition.get("levels") or {}).items():
            if not isinstance(t, dict):
                continue
            level = _enum(MetricSymbolLevel, level_name, "symbol level")
            levels[level] = MetricThreshold(
                _decimal(t.get("warning")),
                _decimal(t.get("error")),
                bool(t.get("higherIsBetter", True)),
                bool(t.get("positiveDeltaNeutral", False)),
            )
        table[metric] = MetricThresholdDefinition(definition.get("description"), MappingProxyType(levels))
    return MappingProxyType(table)


def _by_metric(data: Any) -> dict[MetricKey, str]:
    keyed = {}
    for name, text in (data or {}).items():
        metric = _metric_key(name)
        if metric is not None:
            keyed[metric] = text
    return keyed


def report_from_dict(data: Any) -> MetricsReport:
    """Rebuild a report written by ``report_to_dict``; used to load baselines.

    Raises:
        DocumentFormatError: if the payload has no ``solution`` node.
    """
    if not isinstance(data, dict) or "solution" not in data:
        raise DocumentFormatError("A report must be an object with a 'solution' node.")
    meta = data.get("metadata") or {}
    paths = meta.get("paths") or {}
    metadata = ReportMetadata(
        generated_at=str(meta.get("generatedAt") or ""),
        thresholds=_thresholds_from_dict(meta.get("thresholds")),
        suppressed_symbols=tuple(suppressions_from_data(meta.get("suppressedSymbols") or [])),
        paths=ReportPaths(
            paths.get("metricsDirectory"), paths.get("baseline"), paths.get("report"), paths.get("thresholds"),
        ),
        baseline_reference=meta.get("baselineReference"),
        metric_units=_by_metric(meta.get("metricUnits")),
        metric_descriptions=_by_metric(meta.get("metricDescriptions")),
        excluded_member_names=meta.get("excludedMemberNames") or "",
        excluded_assembly_names=meta.get("excludedAssemblyNames") or "",
        excluded_type_names=meta.get("excludedTypeNames") or "",
        rule_descriptions=_rule_descriptions_from_dict(meta.get("ruleDescriptions")),
    )
    return MetricsReport(metadata, _node_from_dict(data["solution"]))


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------

def load_json(path: str | Path) -> Any:
    """Read a JSON file, keeping numbers as ``Decimal``.

    Raises:
        DocumentFormatError: if the file is missing or not valid JSON.
    """
    path = Path(path)
    try:
        with path.open(encoding="utf-8") as f:
            return json.load(f, parse_float=Decimal)
    except FileNotFoundError as exc:
        raise DocumentFormatError(f"File not found: '{path}'") from exc
    except json.JSONDecodeError as exc:
        raise DocumentFormatError(f"Failed to parse '{path}': {exc}") from exc


def load_document(path: str | Path, source: SourceFamily | None = None) -> ParsedDocument:
    """Load a parsed document; *source* fills in a missing ``source`` field
    and the file path fills in a missing ``sourcePath``."""
    data = load_json(path)
    if isinstance(data, dict):
        data = dict(data)
        if source is not None:
            data.setdefault("source", source.value)
        data.setdefault("sourcePath", str(path))
    return document_from_dict(data)


def load_report(path: str | Path) -> MetricsReport:
    return report_from_dict(load_json(path))


def load_suppressions(path: str | Path) -> list[SuppressedSymbolInfo]:
    return suppressions_from_data(load_json(path))


def dump_report(report: MetricsReport, indent: int | None = 2) -> str:
    return json.dumps(report_to_dict(report), indent=indent, ensure_ascii=False)
