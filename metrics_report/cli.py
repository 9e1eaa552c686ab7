"""CLI entry point — command definitions using Click.

Commands:
    init          Generate a template config file
    aggregate     Merge parsed documents into one report (JSON)
    thresholds    Show the resolved threshold table (JSON)
"""

import functools
import json
import logging
import sys
from pathlib import Path
from typing import Any

import click

from metrics_report import __version__


# ---------------------------------------------------------------------------
# Helpers shared by all data commands
# ---------------------------------------------------------------------------

def _load_config(ctx: click.Context):
    """Load the configuration file. Exits on error."""
    from metrics_report.config import ConfigError, load

    try:
        return load(ctx.obj["config_path"])
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)


def _read_thresholds(path: Path | None):
    from metrics_report.errors import DocumentFormatError
    from metrics_report.thresholds import parse_thresholds

    if path is None:
        return parse_thresholds(None)
    try:
        payload = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise DocumentFormatError(f"File not found: '{path}'") from exc
    return parse_thresholds(payload)


def _emit_json(data: Any, ctx: click.Context, output_path: str | None = None) -> None:
    """Write JSON to stdout or to the file specified by --output."""
    obj = ctx.obj
    indent = 2 if obj["pretty"] else None
    text = json.dumps(data, indent=indent, ensure_ascii=False)

    output_path = obj["output_path"] or output_path
    if output_path:
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(text)
        click.echo(f"Report written to '{output_path}'", err=True)
    else:
        click.echo(text)


def _verbose(ctx: click.Context, message: str) -> None:
    if ctx.obj["verbose"]:
        click.echo(f"[verbose] {message}", err=True)


def _handle_errors(func):
    """Decorator that catches engine exceptions and exits cleanly."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        from metrics_report.errors import (
            DocumentFormatError,
            MetricsReportError,
            ThresholdsError,
            ValidationError,
        )

        try:
            return func(*args, **kwargs)
        except ThresholdsError as exc:
            click.echo(f"Thresholds error: {exc}", err=True)
            sys.exit(1)
        except ValidationError as exc:
            click.echo(f"Validation error: {exc}", err=True)
            sys.exit(1)
        except DocumentFormatError as exc:
            click.echo(f"Input error: {exc}", err=True)
            sys.exit(1)
        except MetricsReportError as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(1)

    return wrapper


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", "config_path", default="metrics-report.yaml", show_default=True,
              help="Path to the configuration file.")
@click.option("--output", "output_path", default=None,
              help="Write JSON output to a file instead of stdout.")
@click.option("--pretty", is_flag=True, default=False,
              help="Pretty-print the JSON output.")
@click.option("--verbose", is_flag=True, default=False,
              help="Enable verbose logging.")
@click.version_option(__version__, prog_name="metrics-report")
@click.pass_context
def cli(ctx: click.Context, config_path: str, output_path: str | None,
        pretty: bool, verbose: bool) -> None:
    """Merge coverage, code-metrics and diagnostics into one report, export as JSON."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["output_path"] = output_path
    ctx.obj["pretty"] = pretty
    ctx.obj["verbose"] = verbose


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

@cli.command("init")
@click.option("--output", "output_path", default="metrics-report.yaml", show_default=True,
              help="Path where the template config file will be written.")
def init_command(output_path: str) -> None:
    """Generate a template metrics-report.yaml file."""
    from metrics_report.config import ConfigError, generate_template
    try:
        generate_template(output_path)
        click.echo(f"Template written to '{output_path}'.")
        click.echo("Edit it with your solution name and the parsed document paths.")
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# aggregate
# ---------------------------------------------------------------------------

@cli.command("aggregate")
@click.option("--strict", is_flag=True, default=False,
              help="Exit with status 2 when the run produced warnings.")
@click.pass_context
@_handle_errors
def aggregate_command(ctx: click.Context, strict: bool) -> None:
    """Merge every configured document into one report."""
    from metrics_report.aggregation import MetricsAggregator
    from metrics_report.models import ReportPaths
    from metrics_report.serialization import (
        load_document,
        load_report,
        load_suppressions,
        report_to_dict,
    )

    config = _load_config(ctx)

    documents = []
    for family, path in config.document_paths():
        _verbose(ctx, f"Loading {family.value} document '{path}'")
        documents.append(load_document(path, family))

    thresholds = _read_thresholds(config.thresholds)
    baseline = None
    if config.baseline is not None:
        if config.baseline.exists():
            _verbose(ctx, f"Loading baseline '{config.baseline}'")
            baseline = load_report(config.baseline)
        else:
            _verbose(ctx, f"No baseline at '{config.baseline}', every symbol is new")
    suppressed = load_suppressions(config.suppressions) if config.suppressions else []

    aggregator = MetricsAggregator(filters=config.filter_settings(), thresholds=thresholds)
    output = ctx.obj["output_path"] or (str(config.output) if config.output else None)
    result = aggregator.aggregate(
        documents,
        solution_name=config.solution,
        baseline=baseline,
        suppressed_symbols=suppressed,
        paths=ReportPaths(
            metrics_directory=str(Path(ctx.obj["config_path"]).parent),
            baseline=str(config.baseline) if config.baseline else None,
            report=output,
            thresholds=str(config.thresholds) if config.thresholds else None,
        ),
        baseline_reference=str(config.baseline) if baseline is not None else None,
    )

    for warning in result.warnings:
        click.echo(f"Warning [{warning.code}]: {warning.message}", err=True)

    _emit_json(report_to_dict(result.report), ctx, output)
    if strict and result.warnings:
        sys.exit(2)


# ---------------------------------------------------------------------------
# thresholds
# ---------------------------------------------------------------------------

@cli.command("thresholds")
@click.argument("path", required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
@_handle_errors
def thresholds_command(ctx: click.Context, path: Path | None) -> None:
    """Show the threshold table resolved from PATH (built-in defaults if omitted)."""
    from metrics_report.serialization import thresholds_to_dict

    _verbose(ctx, f"Resolving thresholds from {path or 'built-in defaults'}")
    _emit_json(thresholds_to_dict(_read_thresholds(path)), ctx)
