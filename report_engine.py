"""
Report engine: drives dataset loading and correlation across subscriptions
and accumulates the rows into a single report.
"""
from typing import Dict, Iterable, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn

from azure_client import ResourceQueryClient, SubscriptionResolver, ExternalServiceError
from config import Settings
from correlator import ReportRow, correlate
from dataset_loader import DatasetLoader

logger = logging.getLogger(__name__)


@dataclass
class SubscriptionSummary:
    """Per-subscription statistics for a run."""
    subscription_id: str
    subscription_name: str
    recommendations: int = 0
    vms: int = 0
    nics: int = 0
    unresolved_vms: int = 0
    unresolved_nics: int = 0
    truncated_datasets: List[str] = field(default_factory=list)
    truncation_details: Dict[str, str] = field(default_factory=dict)


@dataclass
class FailedSubscription:
    """A subscription skipped because of a service error."""
    subscription_id: str
    stage: Optional[str]
    error: str


@dataclass
class CostReport:
    """Complete cost recommendation report."""
    timestamp: datetime
    rows: List[ReportRow] = field(default_factory=list)
    subscriptions: List[SubscriptionSummary] = field(default_factory=list)
    failed_subscriptions: List[FailedSubscription] = field(default_factory=list)

    @property
    def total_recommendations(self) -> int:
        return len(self.rows)

    @property
    def unresolved_vms(self) -> int:
        return sum(s.unresolved_vms for s in self.subscriptions)

    @property
    def unresolved_nics(self) -> int:
        return sum(s.unresolved_nics for s in self.subscriptions)

    @property
    def warnings(self) -> List[str]:
        """Non-fatal conditions worth surfacing alongside the report."""
        messages = []
        for summary in self.subscriptions:
            for dataset in summary.truncated_datasets:
                messages.append(
                    f"{summary.subscription_name}: {dataset} result set truncated "
                    f"({summary.truncation_details.get(dataset, 'row limit reached')}); joins may be incomplete"
                )
            if summary.unresolved_vms:
                messages.append(
                    f"{summary.subscription_name}: {summary.unresolved_vms} recommendation(s) reference VMs not found"
                )
            if summary.unresolved_nics:
                messages.append(
                    f"{summary.subscription_name}: accelerated networking unknown for {summary.unresolved_nics} VM(s)"
                )
        for failed in self.failed_subscriptions:
            messages.append(f"{failed.subscription_id}: skipped after error in {failed.stage}: {failed.error}")
        return messages


class ReportEngine:
    """Runs the fetch, index and join phases for each subscription in turn."""

    def __init__(
        self,
        query_client: ResourceQueryClient,
        subscription_resolver: SubscriptionResolver,
        settings: Optional[Settings] = None,
        console: Optional[Console] = None,
        show_progress: bool = True,
    ):
        self.settings = settings or Settings()
        self.console = console or Console()
        self.subscription_resolver = subscription_resolver
        self.loader = DatasetLoader(query_client, settings=self.settings)
        self.show_progress = show_progress

    def run(self, subscription_ids: Iterable[str]) -> CostReport:
        """Build the report for the given subscriptions, in order.

        Raises:
            ExternalServiceError: on the first subscription failure, unless
                continue_on_error is enabled in settings
        """
        report = CostReport(timestamp=datetime.now(timezone.utc))

        for subscription_id in subscription_ids:
            try:
                self._process_subscription(subscription_id, report)
            except ExternalServiceError as e:
                if not self.settings.continue_on_error:
                    raise
                logger.error(f"Skipping subscription {subscription_id}: {e.describe()}")
                self.console.print(f"[red]✗ Skipping subscription {subscription_id} ({e.stage}): {e}[/red]")
                report.failed_subscriptions.append(
                    FailedSubscription(subscription_id=subscription_id, stage=e.stage, error=str(e))
                )

        return report

    def _process_subscription(self, subscription_id: str, report: CostReport) -> None:
        subscription_name = self.subscription_resolver.get_display_name(subscription_id)
        self.console.print(f"\n[bold]Subscription:[/bold] {subscription_name} [dim]({subscription_id})[/dim]")

        datasets = self.loader.load_datasets(subscription_id)
        summary = SubscriptionSummary(
            subscription_id=subscription_id,
            subscription_name=subscription_name,
            recommendations=len(datasets.recommendations),
            vms=len(datasets.vms_by_id),
            nics=len(datasets.nics_by_id),
            truncated_datasets=list(datasets.truncated_datasets),
            truncation_details=dict(datasets.truncation_details),
        )
        self.console.print(f"[green]Found {summary.recommendations} cost recommendations[/green]")

        # Rows are staged so a failed subscription never leaves partial output
        rows: List[ReportRow] = []
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=self.console,
            disable=not self.show_progress,
        ) as progress:
            task = progress.add_task("[cyan]Correlating recommendations...", total=len(datasets.recommendations))
            for recommendation in datasets.recommendations:
                row = correlate(
                    recommendation,
                    datasets.vms_by_id,
                    datasets.nics_by_id,
                    subscription_name=subscription_name,
                )
                if not row.vm_resolved:
                    summary.unresolved_vms += 1
                    logger.debug(f"VM not found for recommendation {recommendation.id}: {recommendation.vm_resource_id}")
                elif not row.nic_resolved:
                    summary.unresolved_nics += 1
                    logger.debug(f"NIC not found for VM {row.resource_id}")
                rows.append(row)
                progress.update(task, advance=1)

        if summary.unresolved_vms:
            logger.warning(
                f"{summary.unresolved_vms} recommendation(s) in {subscription_id} reference VMs "
                f"missing from the VM result set"
            )
        if summary.unresolved_nics:
            logger.warning(
                f"{summary.unresolved_nics} VM(s) in {subscription_id} have no resolvable NIC"
            )

        report.rows.extend(rows)
        report.subscriptions.append(summary)
