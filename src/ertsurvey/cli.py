"""Command line interface for the ertsurvey package."""
from __future__ import annotations

import logging
from pathlib import Path

import typer

from .classification import Thresholds
from .data import load_line_file
from .demo import run_demo
from .export import ExportKind, ExportPreconditionError, SurveyLine, points_frame, write_export
from .field.runner import app as field_app
from .metrics import summarize_line

app = typer.Typer(context_settings={"help_option_names": ["-h", "--help"]})
app.add_typer(field_app, name="field")


def _thresholds(void: float, water: float) -> Thresholds:
    try:
        return Thresholds(void=void, water=water)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--void/--water") from exc


def _load(input_path: Path, thresholds: Thresholds) -> SurveyLine:
    try:
        return load_line_file(input_path, thresholds)
    except (FileNotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc), param_hint="--in") from exc


@app.command()
def analyze(
    input_path: Path = typer.Option(..., "--in", help="Saved 'ERT LINE' text file."),
    void: float = typer.Option(800.0, "--void", help="Void threshold (ohm-m)."),
    water: float = typer.Option(50.0, "--water", help="Water threshold (ohm-m)."),
) -> None:
    """Print derived resistivity, depth and classification for a saved line."""

    line = _load(input_path, _thresholds(void, water))
    df = points_frame(line)
    if df.empty:
        typer.echo("No measurements in line.")
        return
    typer.echo(df.drop(columns=["latitude", "longitude"]).to_string(index=False))
    summary = summarize_line(line)
    counts = ", ".join(f"{category.value}={count}" for category, count in summary.categories.items())
    typer.echo(
        f"a={line.spacing:g} m, {summary.count} points, "
        f"rho_a {summary.resistivity_min:.2f}..{summary.resistivity_max:.2f} ohm-m "
        f"(mean {summary.resistivity_mean:.2f}); {counts}"
    )


@app.command()
def convert(
    input_path: Path = typer.Option(..., "--in", help="Saved 'ERT LINE' text file."),
    out_dir: Path = typer.Option(Path("."), "--out", help="Output directory."),
    fmt: str = typer.Option("csv", "--format", help="Export format: csv|kml|txt."),
    void: float = typer.Option(800.0, "--void", help="Void threshold (ohm-m)."),
    water: float = typer.Option(50.0, "--water", help="Water threshold (ohm-m)."),
) -> None:
    """Re-export a saved line in another format."""

    try:
        kind = ExportKind(fmt.lower())
    except ValueError as exc:
        raise typer.BadParameter("Use csv, kml or txt", param_hint="--format") from exc
    line = _load(input_path, _thresholds(void, water))
    try:
        path = write_export(line, kind, out_dir)
    except ExportPreconditionError as exc:
        typer.echo(f"[error] {exc}")
        raise typer.Exit(code=1) from exc
    typer.echo(f"Wrote {path}")


@app.command()
def demo(
    out_dir: Path = typer.Option(Path("demo_output"), "--out", help="Target directory for demo exports."),
    points: int = typer.Option(24, "--points", help="Number of simulated measurements."),
    spacing: float = typer.Option(5.0, "--spacing", help="Electrode spacing (m)."),
) -> None:
    """Simulate a geotagged survey line and write every export format."""

    paths = run_demo(out_dir, points=points, spacing=spacing)
    for kind, path in paths.items():
        typer.echo(f"{kind.value}: {path}")


@app.callback()
def main(log_level: str = typer.Option("WARNING", "--log-level", help="Logging level.")) -> None:
    logging.basicConfig(level=log_level.upper(), format="%(levelname)s %(name)s: %(message)s")


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
