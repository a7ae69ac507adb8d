#!/usr/bin/env python3
"""
Azure Cost Recommendation Report CLI.

Joins Azure Advisor VM cost recommendations with VM metadata and NIC
configuration from Azure Resource Graph, and exports the result as CSV.

Usage:
    python main.py report --subscription <sub-id>
    python main.py report -s <sub-id-1>,<sub-id-2> --output-dir ./reports
    python main.py show AzCM_Recs_2024-05-01T13-45-10.csv
"""
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from dotenv import load_dotenv

from config import Settings
from azure_client import (
    ResourceQueryClient,
    SubscriptionResolver,
    ExternalServiceError,
    build_credential,
)
from report_engine import ReportEngine, CostReport
from report_exporter import (
    create_preview_table,
    default_output_dir,
    default_report_filename,
    export_report,
    load_csv_report,
)

__version__ = "1.0.0"

# Load environment variables
load_dotenv()

app = typer.Typer(
    name="cost-rec-report",
    help="""💰 Azure VM Cost Recommendation Report

Correlates Azure Advisor cost recommendations with VM and NIC details
and exports a CSV report.

[bold]Quick Start:[/bold]
    python main.py report -s <subscription-id>""",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()


def create_header():
    """Print the tool banner."""
    console.print()
    console.print(f"  [bold bright_cyan]💰 Azure Cost Recommendation Report[/] [dim]v{__version__}[/]")
    console.print()


def configure_logging(level: str) -> None:
    """Configure root logging once for the CLI."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()],
    )


def parse_subscription_ids(value: Optional[str]) -> List[str]:
    """Split a comma-separated subscription list, dropping blanks and repeats."""
    if not value:
        return []
    ids = []
    for part in value.split(","):
        sub_id = part.strip()
        if sub_id and sub_id not in ids:
            ids.append(sub_id)
    return ids


def create_summary_panel(report: CostReport, export_path: Optional[str] = None) -> Panel:
    """Create a summary panel for a finished run."""
    lines = [
        f"[bold]Generated:[/bold] {report.timestamp.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        f"[bold]Subscriptions:[/bold] {len(report.subscriptions)}",
        f"[bold]Recommendations:[/bold] {report.total_recommendations}",
    ]
    if report.unresolved_vms:
        lines.append(f"[yellow]VMs not found:[/yellow] {report.unresolved_vms}")
    if report.unresolved_nics:
        lines.append(f"[yellow]NICs not found:[/yellow] {report.unresolved_nics}")
    if report.failed_subscriptions:
        lines.append(f"[red]Subscriptions skipped:[/red] {len(report.failed_subscriptions)}")
    if export_path:
        lines.append(f"[bold]Saved to:[/bold] {export_path}")

    return Panel(
        "\n".join(lines),
        title="[bold]📋 Report Summary[/bold]",
        border_style="cyan",
    )


def resolve_output_path(
    output: Optional[str],
    output_dir: Optional[str],
    settings: Settings,
    output_format: Optional[str] = None,
) -> Path:
    """Pick the report file path from the CLI options and settings."""
    if output:
        return Path(output)
    directory = Path(output_dir or settings.output_dir or default_output_dir())
    filename = default_report_filename()
    if output_format and output_format.lower() == "json":
        filename = filename[:-len(".csv")] + ".json"
    return directory / filename


@app.command()
def report(
    subscription: Optional[str] = typer.Option(
        None, "--subscription", "-s",
        help="Azure Subscription ID, or a comma-separated list (or set AZURE_SUBSCRIPTION_ID env var)",
    ),
    output: Optional[str] = typer.Option(
        None, "--output", "-o",
        help="Output file path (default: AzCM_Recs_<timestamp>.csv on the desktop)",
    ),
    output_dir: Optional[str] = typer.Option(
        None, "--output-dir",
        help="Directory for the timestamped report file",
    ),
    output_format: Optional[str] = typer.Option(
        None, "--format", "-f",
        help="Output format override (csv, json). Auto-detected from file extension if not specified.",
    ),
    top: int = typer.Option(
        20, "--top", "-t",
        help="Number of rows to show in the preview table",
    ),
    no_preview: bool = typer.Option(
        False, "--no-preview",
        help="Skip the console preview table",
    ),
    continue_on_error: bool = typer.Option(
        False, "--continue-on-error",
        help="Skip subscriptions that fail instead of aborting the run",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Enable debug logging",
    ),
):
    """
    📊 Build the cost recommendation report.

    For each subscription, fetches Advisor cost recommendations, VMs and NICs
    from Azure Resource Graph, joins them, and writes one row per recommendation.
    """
    create_header()

    settings = Settings()
    configure_logging("DEBUG" if verbose else settings.log_level)
    if continue_on_error:
        settings.continue_on_error = True

    subscription_ids = parse_subscription_ids(subscription or settings.azure_subscription_id)
    if not subscription_ids:
        console.print("[red]Error: Subscription ID required. Use --subscription or set AZURE_SUBSCRIPTION_ID[/red]")
        raise typer.Exit(1)

    credential = build_credential(
        tenant_id=settings.azure_tenant_id,
        client_id=settings.azure_client_id,
        client_secret=settings.azure_client_secret,
    )
    engine = ReportEngine(
        query_client=ResourceQueryClient(credential),
        subscription_resolver=SubscriptionResolver(credential),
        settings=settings,
        console=console,
    )

    try:
        cost_report = engine.run(subscription_ids)
    except ExternalServiceError as e:
        console.print(f"\n[red]✗ Report aborted for {e.describe()}[/red]")
        console.print("[dim]No report was written. Check 'az login' or your service principal settings.[/dim]")
        raise typer.Exit(1)

    for warning in cost_report.warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")

    output_path = resolve_output_path(output, output_dir, settings, output_format)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        export_path = export_report(cost_report, str(output_path), output_format)
    except (OSError, ValueError) as e:
        console.print(f"[red]✗ Export failed: {e}[/red]")
        raise typer.Exit(1)

    if not no_preview and cost_report.rows:
        console.print()
        console.print(create_preview_table(cost_report.rows, limit=top))

    console.print()
    console.print(create_summary_panel(cost_report, export_path))


@app.command()
def show(
    path: str = typer.Argument(..., help="Report CSV file to preview"),
    top: int = typer.Option(
        20, "--top", "-t",
        help="Number of rows to show",
    ),
):
    """📄 Preview a previously exported report."""
    try:
        rows = load_csv_report(path)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error reading report: {e}[/red]")
        raise typer.Exit(1)

    console.print(create_preview_table(rows, limit=top))


@app.command()
def version():
    """Show version information."""
    console.print(f"cost-rec-report v{__version__}")


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
