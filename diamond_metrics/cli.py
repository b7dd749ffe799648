from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import typer

from .aggregator import SessionAggregate, aggregate
from .comparator import ThresholdTable, compare
from .config import as_dict as config_as_dict, get_config
from .errors import ConfigError, FitError
from .models import SOURCE_TYPES
from .normalizer import normalize
from .regression import fit
from .reports import (
    REPORT_KINDS,
    build_force_plate_progression,
    build_report,
    classify_arm_care,
)
from .zones import GridScheme, SprayScheme

logger = logging.getLogger(__name__)

app = typer.Typer(help="Derive summary statistics, trends and benchmark comparisons from sensor sessions.")


def _fail(message: str, *, code: int = 1) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def load_records(source: Path) -> list[Any]:
    """Load a JSON list of records (or an object with a ``records`` list) from disk."""
    if not source.exists():
        raise FileNotFoundError(f"Input file not found: {source}")

    raw_text = source.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{source} is not valid JSON.") from exc

    if isinstance(payload, dict) and isinstance(payload.get("records"), list):
        payload = payload["records"]
    if not isinstance(payload, list):
        raise ValueError("Input must be a JSON list of records.")
    return payload


def _load_or_fail(source: Path) -> list[Any]:
    try:
        records = load_records(source.expanduser())
    except (FileNotFoundError, ValueError) as exc:
        _fail(str(exc))
        return []
    logger.debug("Loaded %s record(s) from %s", len(records), source)
    return records


def _load_json_object(source: Path) -> Mapping[str, Any]:
    path = source.expanduser()
    if not path.exists():
        _fail(f"Input file not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        _fail(f"{path} is not valid JSON.")
    if not isinstance(payload, dict):
        _fail("Input must be a JSON object.")
    return payload


def _benchmark_tables(raw: Mapping[str, Any]) -> dict[str, list[ThresholdTable]]:
    tables: dict[str, list[ThresholdTable]] = {}
    for group, entries in raw.items():
        if not isinstance(entries, dict) or not entries:
            _fail(f"Benchmarks for {group!r} must map table names to {{band: cutoff}} objects.")
        try:
            tables[group] = [ThresholdTable.from_mapping(name, cutoffs) for name, cutoffs in entries.items()]
        except ValueError as exc:
            _fail(str(exc))
    return tables


def _check_source(source: str) -> str:
    if source not in SOURCE_TYPES:
        raise typer.BadParameter(
            f"expected one of: {', '.join(SOURCE_TYPES)}", param_name="source"
        )
    return source


def _resolve_group_by(group_by: Optional[str]):
    if not group_by:
        return None
    config = get_config()
    lowered = group_by.lower()
    if lowered == "spray":
        return SprayScheme.from_config(config.spray)
    if lowered == "zone":
        return GridScheme.from_bounds(config.strike_zone)
    return group_by


def _format_number(value: Optional[float]) -> str:
    return f"{value:.1f}" if value is not None else "n/a"


def render_aggregate_table(
    aggregates: Mapping[Any, SessionAggregate],
    metrics: Sequence[str],
) -> str:
    """Render a fixed-width table with count, mean and max per metric for each group."""
    headers = ["group", "count"]
    for metric in metrics:
        headers.extend([f"{metric}_avg", f"{metric}_max"])

    rows = []
    for key, summary in aggregates.items():
        row = {"group": "(unclassified)" if key is None else str(key), "count": str(summary.count)}
        for metric in metrics:
            row[f"{metric}_avg"] = _format_number(summary.mean_of(metric))
            row[f"{metric}_max"] = _format_number(summary.max_of(metric))
        rows.append(row)

    widths = {key: len(key) for key in headers}
    for row in rows:
        for key in headers:
            widths[key] = max(widths[key], len(row[key]))

    def _format_line(values: Mapping[str, str]) -> str:
        return "  ".join(values[key].rjust(widths[key]) for key in headers)

    header_line = "  ".join(key.upper().rjust(widths[key]) for key in headers)
    body = "\n".join(_format_line(row) for row in rows)
    return "\n".join(filter(None, [header_line, body]))


def _tracked_metrics(aggregates: Mapping[Any, SessionAggregate]) -> list[str]:
    seen: dict[str, None] = {}
    for summary in aggregates.values():
        for metric in summary.mean:
            seen.setdefault(metric, None)
    return list(seen)


def _parse_table_entries(entries: Sequence[str]) -> dict[str, float]:
    cutoffs: dict[str, float] = {}
    for entry in entries:
        name, sep, raw = entry.partition("=")
        if not sep or not name.strip():
            raise typer.BadParameter(f"expected NAME=CUTOFF, received {entry!r}", param_name="table")
        try:
            cutoffs[name.strip()] = float(raw)
        except ValueError as exc:
            raise typer.BadParameter(f"cutoff for {name.strip()!r} must be a number", param_name="table") from exc
    return cutoffs


@app.command()
def summarize(
    file: Path = typer.Argument(..., help="JSON file containing a list of raw records."),
    source: str = typer.Option(
        ...,
        "--source",
        "-s",
        help="Record source type: swing, hit, pitch or forcePlateTrial.",
    ),
    group_by: Optional[str] = typer.Option(
        None,
        "--group-by",
        "-g",
        help="Label to group by (e.g. session_id, pitch_type), or 'spray'/'zone' for zone schemes.",
    ),
    metric: list[str] = typer.Option(
        [],
        "--metric",
        "-m",
        help="Metric(s) to show (repeatable). Defaults to every metric present.",
    ),
    zero_missing: list[str] = typer.Option(
        [],
        "--zero-missing",
        help="Metric(s) where a zero reading means 'not captured' (repeatable).",
    ),
) -> None:
    """
    Print per-group count, mean and max for normalised records.

    Examples:
        diamond-metrics summarize hits.json --source hit --group-by session_id
        diamond-metrics summarize hits.json --source hit --group-by spray -m exit_velocity
    """
    _check_source(source)
    records = _load_or_fail(file)
    samples = normalize(records, source, zero_is_missing=zero_missing)
    if not samples:
        typer.echo("No usable records found.")
        raise typer.Exit(code=0)

    try:
        aggregates = aggregate(samples, _resolve_group_by(group_by), metrics=metric)
    except ConfigError as exc:
        _fail(str(exc))
    metrics = list(metric) or _tracked_metrics(aggregates)
    typer.echo(render_aggregate_table(aggregates, metrics))
    typer.echo(f"{len(samples)} sample(s) from {len(records)} record(s).")


@app.command()
def report(
    file: Path = typer.Argument(..., help="JSON file containing a list of raw records."),
    kind: str = typer.Option(
        ...,
        "--kind",
        "-k",
        help=f"Report to build: {', '.join(REPORT_KINDS)}.",
    ),
    benchmarks_file: Optional[Path] = typer.Option(
        None,
        "--benchmarks",
        "-b",
        help="JSON object mapping pitch type to {table: {band: cutoff}} (trackman only).",
    ),
) -> None:
    """Build a technology report and print it as JSON."""
    if kind not in REPORT_KINDS:
        raise typer.BadParameter(f"expected one of: {', '.join(REPORT_KINDS)}", param_name="kind")
    records = _load_or_fail(file)
    benchmarks = None
    if benchmarks_file is not None:
        benchmarks = _benchmark_tables(_load_json_object(benchmarks_file))
    try:
        result = build_report(kind, records, benchmarks=benchmarks)
    except ValueError as exc:
        _fail(str(exc))
    typer.echo(json.dumps(result.to_dict(), indent=2))


@app.command()
def trend(
    file: Path = typer.Argument(..., help="JSON file containing a list of raw records."),
    source: str = typer.Option(..., "--source", "-s", help="Record source type."),
    x: str = typer.Option(..., "--x", help="Metric on the x axis."),
    y: str = typer.Option(..., "--y", help="Metric on the y axis."),
) -> None:
    """Fit a least-squares trend between two metrics."""
    _check_source(source)
    samples = normalize(_load_or_fail(file), source)
    points = [
        (sample.metrics[x], sample.metrics[y])
        for sample in samples
        if x in sample.metrics and y in sample.metrics
    ]
    result = fit(points)
    if isinstance(result, FitError):
        typer.secho(f"Trend unavailable: {result}", fg=typer.colors.YELLOW)
        raise typer.Exit(code=0)
    typer.echo(
        f"{y} = {result.slope:.4f} * {x} + {result.intercept:.4f} "
        f"(n={result.n}, x in [{result.x_min:g}, {result.x_max:g}])"
    )


@app.command("compare")
def compare_value(
    value: float = typer.Argument(..., help="Value to compare."),
    table: list[str] = typer.Option(
        [],
        "--table",
        "-t",
        help="Benchmark entry as NAME=CUTOFF (repeatable).",
    ),
    name: str = typer.Option("benchmarks", "--name", help="Name of the benchmark table."),
) -> None:
    """Compare a value with benchmark cutoffs and print its band and percentage differences."""
    if not table:
        raise typer.BadParameter("at least one --table NAME=CUTOFF entry is required", param_name="table")
    try:
        result = compare(value, ThresholdTable.from_mapping(name, _parse_table_entries(table)))
    except ValueError as exc:
        _fail(str(exc))
    typer.echo(f"Band: {result.band or 'below all cutoffs'}")
    for entry, diff in result.percent_diff.items():
        if diff is None:
            typer.secho(f"  {entry}: n/a ({result.errors[entry]})", fg=typer.colors.YELLOW)
        else:
            typer.echo(f"  {entry}: {diff:+.1f}%")


@app.command()
def progression(
    file: Path = typer.Argument(..., help="JSON file containing force-plate trials."),
    metric: list[str] = typer.Option(..., "--metric", "-m", help="Metric(s) to track (repeatable)."),
    test_type: Optional[str] = typer.Option(None, "--test-type", help="Only include trials of this test type."),
) -> None:
    """Print the test-over-test progression for force-plate metrics as JSON."""
    records = _load_or_fail(file)
    result = build_force_plate_progression(records, metric, test_type=test_type)
    typer.echo(json.dumps(result.to_dict(), indent=2))


@app.command("arm-care")
def arm_care(
    file: Path = typer.Argument(..., help="JSON object holding one arm-care exam."),
    body_weight: float = typer.Option(..., "--body-weight", "-w", help="Body weight in pounds."),
) -> None:
    """Band arm-care strength as a percentage of body weight."""
    exam = _load_json_object(file)
    try:
        result = classify_arm_care(exam, body_weight)
    except ValueError as exc:
        _fail(str(exc))
    typer.echo(json.dumps(result.to_dict(), indent=2))


@app.command("config")
def config_show() -> None:
    """
    Show the effective configuration (zone bounds, level cutoffs, target windows).
    """
    try:
        config = config_as_dict()
    except ConfigError as exc:
        _fail(str(exc))
    typer.echo(f"Config source: {config.get('source')}")
    spray = config.get("spray", {})
    typer.echo(f"Spray cutoffs: pull<{spray.get('pull_cutoff')}, opposite>{spray.get('opposite_cutoff')}")
    zone = config.get("strike_zone", {})
    typer.echo(f"Strike zone: x={zone.get('x')}, y={zone.get('y')}, grid={zone.get('grid')}")
    levels = config.get("bat_speed_levels", {})
    typer.echo("Bat speed levels: " + ", ".join(f"{label}>={cutoff}" for label, cutoff in levels.items()))
    typer.echo(f"Hard hit: >={config.get('hard_hit_mph')} mph")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
