import typer  # type: ignore
import json
import logging
from dataclasses import asdict, replace
from pathlib import Path
from typing import List, Optional
from typing_extensions import Annotated

import yaml
from pydantic import ValidationError
from rich.console import Console  # type: ignore
from rich.panel import Panel  # type: ignore
from rich.table import Table  # type: ignore

import glucoloop
from glucoloop.analysis.export import output_summary, prediction_to_dataframe, write_json
from glucoloop.api.algorithm_io import AlgorithmInput, DoseRecommendationType
from glucoloop.api.recommendations import AlgorithmDoseRecommendation
from glucoloop.core.algorithm import run
from glucoloop.core.errors import AlgorithmError
from glucoloop.core.prediction import generate_prediction
from glucoloop.core.settings import AlgorithmSettings
from glucoloop.core.units import GlucoseUnit, from_mg_dl
from glucoloop.validation import (
    build_algorithm_input,
    build_algorithm_settings,
    format_validation_error,
    input_warnings,
    validate_algorithm_input_dict,
    validate_algorithm_settings_dict,
)


app = typer.Typer(help="glucoloop CLI - closed-loop glucose forecasting and insulin dosing decisions.")
settings_app = typer.Typer(help="Inspect and check algorithm settings.")
app.add_typer(settings_app, name="settings")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _read_mapping(path: Path, console: Console) -> dict:
    if not path.is_file():
        console.print(f"[bold red]Error: File '{path}' not found.[/bold red]")
        raise typer.Exit(code=1)
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(path.read_text())
        else:
            data = yaml.safe_load(path.read_text())
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        console.print(f"[bold red]Error: Could not parse '{path}' - {e}[/bold red]")
        raise typer.Exit(code=1)
    if not isinstance(data, dict):
        console.print(f"[bold red]Error: '{path}' must contain a mapping at the top level.[/bold red]")
        raise typer.Exit(code=1)
    return data


def _print_validation_error(error: ValidationError, console: Console) -> None:
    console.print("[bold red]Validation failed:[/bold red]")
    for line in format_validation_error(error):
        console.print(f"- {line}")


def _load_settings(settings_path: Optional[Path], console: Console) -> AlgorithmSettings:
    if settings_path is None:
        return AlgorithmSettings()
    data = _read_mapping(settings_path, console)
    try:
        return build_algorithm_settings(validate_algorithm_settings_dict(data))
    except ValidationError as e:
        _print_validation_error(e, console)
        raise typer.Exit(code=1)
    except ValueError as e:
        console.print(f"[bold red]Error: Invalid settings - {e}[/bold red]")
        raise typer.Exit(code=1)


def _load_input(input_path: Path, settings_path: Optional[Path], console: Console):
    settings = _load_settings(settings_path, console)
    data = _read_mapping(input_path, console)
    try:
        model = validate_algorithm_input_dict(data)
        algorithm_input = build_algorithm_input(model, settings)
    except ValidationError as e:
        _print_validation_error(e, console)
        raise typer.Exit(code=1)
    except ValueError as e:
        console.print(f"[bold red]Error: Invalid input - {e}[/bold red]")
        raise typer.Exit(code=1)
    return model, algorithm_input


def _format_glucose(value: float, unit: GlucoseUnit) -> str:
    converted = from_mg_dl(value, unit)
    return f"{converted:.1f}" if unit == GlucoseUnit.MMOL_L else f"{converted:.0f}"


def _recommendation_table(recommendation: AlgorithmDoseRecommendation) -> Table:
    table = Table(title="Dose Recommendation", show_header=True, header_style="bold magenta")
    table.add_column("Kind", style="cyan")
    table.add_column("Value", justify="right")
    table.add_column("Detail")
    if recommendation.manual is not None:
        manual = recommendation.manual
        notice = manual.notice.kind.value if manual.notice else "-"
        table.add_row("Manual bolus", f"{manual.amount:.2f} U", notice)
    elif recommendation.automatic is None:
        table.add_row("No change", "-", "current delivery continues")
    else:
        automatic = recommendation.automatic
        basal = automatic.basal_adjustment
        if basal is None:
            table.add_row("Temp basal", "-", "no change")
        elif basal.is_cancel:
            table.add_row("Temp basal", "cancel", "resume scheduled basal")
        else:
            minutes = basal.duration.total_seconds() / 60.0
            table.add_row("Temp basal", f"{basal.units_per_hour:.2f} U/hr", f"for {minutes:.0f} min")
        if automatic.bolus_units is not None:
            table.add_row("Automatic bolus", f"{automatic.bolus_units:.2f} U", "partial correction")
    return table


@app.command()
def predict(
    input_path: Annotated[Path, typer.Option(help="Path to an algorithm input YAML/JSON document")],
    settings_path: Annotated[Optional[Path], typer.Option(help="Optional YAML with algorithm setting overrides")] = None,
    output_csv: Annotated[Optional[Path], typer.Option(help="Write the forecast and effect curves to this CSV")] = None,
    rows: Annotated[int, typer.Option(help="Number of forecast points to show")] = 12,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
):
    """Forecast glucose from a snapshot and show the predicted curve."""
    console = Console()
    _configure_logging(verbose)
    model, algorithm_input = _load_input(input_path, settings_path, console)
    unit = GlucoseUnit.parse(model.glucose_unit)

    try:
        prediction = generate_prediction(algorithm_input, algorithm_input.prediction_start)
    except AlgorithmError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1)

    table = Table(title=f"Glucose Forecast ({unit.value})", show_header=True, header_style="bold magenta")
    table.add_column("Time", style="cyan", no_wrap=True)
    table.add_column("Glucose", justify="right", style="green")
    for sample in prediction.glucose[:rows]:
        table.add_row(sample.timestamp.isoformat(), _format_glucose(sample.quantity, unit))
    console.print(table)

    eventual = prediction.glucose[-1]
    console.print(
        f"Eventual glucose: [bold]{_format_glucose(eventual.quantity, unit)} {unit.value}[/bold] "
        f"at {eventual.timestamp.isoformat()}"
    )
    console.print(f"Active insulin: {prediction.active_insulin or 0.0:.2f} U, active carbs: {prediction.active_carbs or 0.0:.0f} g")

    if output_csv is not None:
        frame = prediction_to_dataframe(prediction, unit)
        output_csv.parent.mkdir(parents=True, exist_ok=True)
        frame.to_csv(output_csv)
        console.print(f"Forecast saved to: {output_csv}")


@app.command()
def recommend(
    input_path: Annotated[Path, typer.Option(help="Path to an algorithm input YAML/JSON document")],
    settings_path: Annotated[Optional[Path], typer.Option(help="Optional YAML with algorithm setting overrides")] = None,
    kind: Annotated[Optional[str], typer.Option(help="Override recommendation type: manual_bolus, automatic_bolus or temp_basal")] = None,
    output_json: Annotated[Optional[Path], typer.Option(help="Write the recommendation summary to this JSON file")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
):
    """Run one loop cycle and show the dosing recommendation."""
    console = Console()
    _configure_logging(verbose)
    model, algorithm_input = _load_input(input_path, settings_path, console)
    unit = GlucoseUnit.parse(model.glucose_unit)

    if kind is not None:
        try:
            recommendation_type = DoseRecommendationType(kind)
        except ValueError:
            console.print(f"[bold red]Error: Unknown recommendation type '{kind}'.[/bold red]")
            raise typer.Exit(code=1)
        algorithm_input = _with_recommendation_type(algorithm_input, recommendation_type)

    try:
        output = run(algorithm_input)
    except AlgorithmError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1)

    correction = output.correction
    detail = correction.kind.value
    if correction.min_glucose is not None:
        detail += f" (min {_format_glucose(correction.min_glucose.quantity, unit)} {unit.value})"
    console.print(Panel(detail, title="Correction"))
    console.print(_recommendation_table(output.recommendation))

    if output_json is not None:
        output_json.parent.mkdir(parents=True, exist_ok=True)
        write_json(output_json, output_summary(output))
        console.print(f"Recommendation saved to: {output_json}")


def _with_recommendation_type(algorithm_input: AlgorithmInput, recommendation_type: DoseRecommendationType) -> AlgorithmInput:
    return replace(algorithm_input, recommendation_type=recommendation_type)


@app.command()
def validate(
    input_path: Annotated[Path, typer.Option(help="Path to an algorithm input YAML/JSON document")],
    settings_path: Annotated[Optional[Path], typer.Option(help="Optional YAML with algorithm setting overrides")] = None,
):
    """Validate an input document for out-of-range values and missing keys."""
    console = Console()
    if settings_path is not None:
        _load_settings(settings_path, console)

    data = _read_mapping(input_path, console)
    try:
        model = validate_algorithm_input_dict(data)
    except ValidationError as e:
        _print_validation_error(e, console)
        raise typer.Exit(code=1)

    warnings: List[str] = input_warnings(model)
    if warnings:
        console.print("[yellow]Warnings:[/yellow]")
        for warning in warnings:
            console.print(f"- {warning}")
    console.print(f"[green]Input '{input_path}' is valid.[/green]")


@settings_app.command("show")
def settings_show(
    settings_path: Annotated[Optional[Path], typer.Option(help="Optional YAML with algorithm setting overrides")] = None,
):
    """Show the effective algorithm settings."""
    console = Console()
    settings = _load_settings(settings_path, console)
    defaults = asdict(AlgorithmSettings())

    table = Table(title="Algorithm Settings", show_lines=False)
    table.add_column("Name", style="cyan")
    table.add_column("Value", justify="right")
    table.add_column("Default", justify="right")
    for name, value in asdict(settings).items():
        style = "bold yellow" if value != defaults[name] else ""
        table.add_row(name, f"[{style}]{value}[/{style}]" if style else str(value), str(defaults[name]))
    console.print(table)


@app.command()
def version():
    """Show the installed glucoloop version."""
    console = Console()
    console.print(f"glucoloop {glucoloop.__version__}")


if __name__ == "__main__":
    app()
