"""
Dataset loader: fetches recommendations, VMs and NICs for a subscription
and indexes VMs and NICs by resource ID.
"""
from typing import Callable, Dict, Iterable, List, Optional, Tuple, TypeVar
from dataclasses import dataclass, field
import logging

from azure_client import (
    ResourceQueryClient,
    QueryResult,
    RecommendationRecord,
    VirtualMachineRecord,
    NetworkInterfaceRecord,
)
from config import (
    Settings,
    build_recommendations_query,
    build_virtual_machines_query,
    build_network_interfaces_query,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

STAGE_RECOMMENDATIONS = "recommendations"
STAGE_VIRTUAL_MACHINES = "virtual machines"
STAGE_NETWORK_INTERFACES = "network interfaces"


def normalize_resource_id(resource_id: Optional[str]) -> Optional[str]:
    """Index key for an Azure resource ID. Resource IDs are case-insensitive."""
    if not resource_id:
        return None
    key = resource_id.strip().lower()
    return key or None


@dataclass
class IndexStats:
    """Bookkeeping from building a lookup index."""
    indexed: int = 0
    duplicates: int = 0
    skipped: int = 0


def build_index(records: Iterable[T], key: Callable[[T], Optional[str]]) -> Tuple[Dict[str, T], IndexStats]:
    """Index records by normalized resource ID.

    The first record seen for an ID wins; later duplicates are ignored.
    Records without an ID cannot be looked up and are skipped.
    """
    index: Dict[str, T] = {}
    stats = IndexStats()
    for record in records:
        record_key = normalize_resource_id(key(record))
        if record_key is None:
            stats.skipped += 1
            continue
        if record_key in index:
            stats.duplicates += 1
            continue
        index[record_key] = record
    stats.indexed = len(index)
    return index, stats


@dataclass
class SubscriptionDatasets:
    """Everything fetched for one subscription, ready for correlation."""
    subscription_id: str
    recommendations: List[RecommendationRecord] = field(default_factory=list)
    vms_by_id: Dict[str, VirtualMachineRecord] = field(default_factory=dict)
    nics_by_id: Dict[str, NetworkInterfaceRecord] = field(default_factory=dict)

    # Result sets that hit the row cap, with how many rows came back
    truncated_datasets: List[str] = field(default_factory=list)
    truncation_details: Dict[str, str] = field(default_factory=dict)
    duplicate_vms: int = 0
    duplicate_nics: int = 0

    @property
    def is_truncated(self) -> bool:
        return bool(self.truncated_datasets)


class DatasetLoader:
    """Runs the three Resource Graph queries for a subscription."""

    def __init__(
        self,
        query_client: ResourceQueryClient,
        settings: Optional[Settings] = None,
    ):
        self.query_client = query_client
        self.settings = settings or Settings()

    def _fetch(self, subscription_id: str, query_text: str, stage: str) -> QueryResult:
        result = self.query_client.query(
            subscription_id,
            query_text,
            max_rows=self.settings.max_rows,
            stage=stage,
        )
        if result.truncated:
            logger.warning(
                f"{stage.capitalize()} result for subscription {subscription_id} "
                f"{result.describe_truncation()}; joins against it may be incomplete"
            )
        return result

    def load_datasets(self, subscription_id: str) -> SubscriptionDatasets:
        """Fetch and index recommendations, VMs and NICs for a subscription."""
        datasets = SubscriptionDatasets(subscription_id=subscription_id)

        rec_result = self._fetch(subscription_id, build_recommendations_query(), STAGE_RECOMMENDATIONS)
        vm_result = self._fetch(
            subscription_id,
            build_virtual_machines_query(self.settings.application_tag, self.settings.market_tag),
            STAGE_VIRTUAL_MACHINES,
        )
        nic_result = self._fetch(subscription_id, build_network_interfaces_query(), STAGE_NETWORK_INTERFACES)

        for result in (rec_result, vm_result, nic_result):
            if result.truncated:
                datasets.truncated_datasets.append(result.stage)
                datasets.truncation_details[result.stage] = result.describe_truncation()

        datasets.recommendations = [RecommendationRecord.from_row(row) for row in rec_result.records]

        datasets.vms_by_id, vm_stats = build_index(
            (VirtualMachineRecord.from_row(row) for row in vm_result.records),
            key=lambda vm: vm.resource_id,
        )
        datasets.nics_by_id, nic_stats = build_index(
            (NetworkInterfaceRecord.from_row(row) for row in nic_result.records),
            key=lambda nic: nic.resource_id,
        )
        datasets.duplicate_vms = vm_stats.duplicates
        datasets.duplicate_nics = nic_stats.duplicates

        for label, stats in (("VM", vm_stats), ("NIC", nic_stats)):
            if stats.duplicates:
                logger.warning(
                    f"{stats.duplicates} duplicate {label} resource IDs in subscription "
                    f"{subscription_id}; kept the first record for each"
                )
            if stats.skipped:
                logger.warning(f"{stats.skipped} {label} records without a resource ID were skipped")

        logger.debug(
            f"Loaded {len(datasets.recommendations)} recommendations, {vm_stats.indexed} VMs, "
            f"{nic_stats.indexed} NICs for {subscription_id}"
        )
        return datasets
