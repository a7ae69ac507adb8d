"""
Report exporter module for cost recommendation reports.
Supports CSV (the default deliverable) and JSON, plus a console preview table.
"""
import csv
import json
from datetime import datetime
from pathlib import Path
from typing import List, Dict, Any, Optional

from rich.table import Table
from rich import box

from correlator import ReportRow, REPORT_COLUMNS, REPORT_HEADERS
from report_engine import CostReport


REPORT_FILENAME_PREFIX = "AzCM_Recs_"


def default_report_filename(now: Optional[datetime] = None) -> str:
    """Timestamped file name, e.g. AzCM_Recs_2024-05-01T13-45-10.csv."""
    now = now or datetime.now()
    return f"{REPORT_FILENAME_PREFIX}{now.strftime('%Y-%m-%dT%H-%M-%S')}.csv"


def default_output_dir() -> Path:
    """The user's desktop if there is one, otherwise the home directory."""
    desktop = Path.home() / "Desktop"
    if desktop.is_dir():
        return desktop
    return Path.home()


def format_flag(value: Optional[bool]) -> str:
    """Display a tri-state flag."""
    if value is None:
        return "Unknown"
    return "Yes" if value else "No"


def _parse_flag(text: Optional[str]) -> Optional[bool]:
    if text is None:
        return None
    lowered = text.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return None


class ReportExporter:
    """Export cost reports to various formats."""

    def __init__(self, report: CostReport):
        """Initialize exporter with a cost report.

        Args:
            report: The CostReport to export
        """
        self.report = report

    def export(self, output_path: str, output_format: Optional[str] = None) -> str:
        """Export report to file, auto-detecting format from extension.

        Args:
            output_path: Path to output file
            output_format: Optional format override ('csv', 'json').
                   If None, detected from file extension.

        Returns:
            Path to the exported file
        """
        if output_format is None:
            ext = Path(output_path).suffix.lower()
            format_map = {
                '.csv': 'csv',
                '.json': 'json',
            }
            output_format = format_map.get(ext, 'csv')

        output_format = output_format.lower()
        if output_format == 'csv':
            return self.export_csv(output_path)
        elif output_format == 'json':
            return self.export_json(output_path)
        else:
            raise ValueError(f"Unsupported export format: {output_format}")

    def export_csv(self, output_path: str) -> str:
        """Export report as CSV: a header row, then one row per recommendation.

        Args:
            output_path: Path to output CSV file

        Returns:
            Path to the exported file
        """
        with open(output_path, "w", newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(REPORT_HEADERS)
            for row in self.report.rows:
                # csv writes None as an empty field
                writer.writerow(row.values())

        return output_path

    def export_json(self, output_path: str) -> str:
        """Export report as JSON with run metadata.

        Args:
            output_path: Path to output JSON file

        Returns:
            Path to the exported file
        """
        output_data = {
            "timestamp": self.report.timestamp.isoformat(),
            "summary": {
                "total_recommendations": self.report.total_recommendations,
                "unresolved_vms": self.report.unresolved_vms,
                "unresolved_nics": self.report.unresolved_nics,
                "subscriptions": [
                    {
                        "subscription_id": s.subscription_id,
                        "subscription_name": s.subscription_name,
                        "recommendations": s.recommendations,
                        "vms": s.vms,
                        "nics": s.nics,
                        "truncated_datasets": s.truncated_datasets,
                        "truncation_details": s.truncation_details,
                    }
                    for s in self.report.subscriptions
                ],
                "failed_subscriptions": [
                    {"subscription_id": f.subscription_id, "stage": f.stage, "error": f.error}
                    for f in self.report.failed_subscriptions
                ],
            },
            "warnings": self.report.warnings,
            "rows": [row.to_dict() for row in self.report.rows],
        }

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(output_data, f, indent=2)

        return output_path


def load_csv_report(path: str) -> List[ReportRow]:
    """Read a CSV written by ReportExporter back into report rows.

    Empty fields become None and accelNetEnabled is parsed back to a bool.
    """
    rows = []
    with open(path, newline='', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        missing = [h for h in REPORT_HEADERS if h not in (reader.fieldnames or [])]
        if missing:
            raise ValueError(f"Not a cost recommendation report, missing columns: {', '.join(missing)}")
        for record in reader:
            values: Dict[str, Any] = {}
            for header, attr in REPORT_COLUMNS:
                text = record.get(header)
                values[attr] = text if text else None
            values["accel_net_enabled"] = _parse_flag(values["accel_net_enabled"])
            values["vm_resolved"] = values["vm_name"] is not None
            values["nic_resolved"] = values["accel_net_enabled"] is not None
            rows.append(ReportRow(**values))
    return rows


def create_preview_table(rows: List[ReportRow], limit: int = 20) -> Table:
    """Create a console table previewing the report rows."""
    table = Table(
        title=f"💰 Cost Recommendations ({len(rows)} total)",
        box=box.ROUNDED,
        show_lines=False,
        header_style="bold cyan",
    )

    table.add_column("VM Name", style="bold")
    table.add_column("Subscription")
    table.add_column("Location")
    table.add_column("Current SKU", style="yellow")
    table.add_column("Recommended SKU", style="green")
    table.add_column("CPU %", justify="right")
    table.add_column("Mem %", justify="right")
    table.add_column("Net %", justify="right")
    table.add_column("Accel Net", justify="center")
    table.add_column("Market")
    table.add_column("App ID")

    for row in rows[:limit]:
        vm_name = row.vm_name or f"[dim]{row.vm_name_hint or 'not found'}[/dim]"
        table.add_row(
            vm_name,
            row.subscription_name or row.subscription_id or "",
            row.vm_location or "",
            row.vm_sku or "",
            row.recommended_sku or "",
            row.cpu_percent or "",
            row.memory_percent or "",
            row.network_percent or "",
            format_flag(row.accel_net_enabled),
            row.market_tag or "",
            row.application_id or "",
        )

    if len(rows) > limit:
        table.caption = f"Showing {limit} of {len(rows)} rows"

    return table


def export_report(report: CostReport, output_path: str, output_format: Optional[str] = None) -> str:
    """Convenience function to export a report.

    Args:
        report: The CostReport to export
        output_path: Path to output file
        output_format: Optional format ('csv', 'json'). Auto-detected if None.

    Returns:
        Path to the exported file
    """
    exporter = ReportExporter(report)
    return exporter.export(output_path, output_format)
