"""
Correlator: joins a cost recommendation to its VM and the VM's NIC,
producing one denormalized report row per recommendation.
"""
from typing import Any, Dict, List, Mapping, Optional, Tuple
from dataclasses import dataclass

from azure_client import RecommendationRecord, VirtualMachineRecord, NetworkInterfaceRecord
from dataset_loader import normalize_resource_id


# Exported column header -> ReportRow attribute, in output order
REPORT_COLUMNS: List[Tuple[str, str]] = [
    ("recommendation", "recommendation"),
    ("vmName", "vm_name"),
    ("subscriptionName", "subscription_name"),
    ("subscriptionID", "subscription_id"),
    ("resourceId", "resource_id"),
    ("vmSKU", "vm_sku"),
    ("recommendedSKU", "recommended_sku"),
    ("vmLocation", "vm_location"),
    ("marketTag", "market_tag"),
    ("applicationID", "application_id"),
    ("cpuPercent", "cpu_percent"),
    ("memoryPercent", "memory_percent"),
    ("networkPercent", "network_percent"),
    ("accelNetEnabled", "accel_net_enabled"),
]

REPORT_HEADERS = [header for header, _ in REPORT_COLUMNS]


@dataclass(frozen=True)
class ReportRow:
    """One line of the cost recommendation report.

    VM and NIC derived fields are None when the referenced resource was not
    in the fetched result sets. accel_net_enabled is None (unknown) rather
    than False whenever the NIC could not be resolved.
    """
    recommendation: Optional[str]
    vm_name: Optional[str]
    subscription_name: Optional[str]
    subscription_id: Optional[str]
    resource_id: Optional[str]
    vm_sku: Optional[str]
    recommended_sku: Optional[str]
    vm_location: Optional[str]
    market_tag: Optional[str]
    application_id: Optional[str]
    cpu_percent: Optional[str]
    memory_percent: Optional[str]
    network_percent: Optional[str]
    accel_net_enabled: Optional[bool]

    # Not exported
    vm_name_hint: Optional[str] = None
    vm_resolved: bool = False
    nic_resolved: bool = False

    def values(self) -> List[Any]:
        """Field values in column order."""
        return [getattr(self, attr) for _, attr in REPORT_COLUMNS]

    def to_dict(self) -> Dict[str, Any]:
        """Field values keyed by column header."""
        return {header: getattr(self, attr) for header, attr in REPORT_COLUMNS}


def correlate(
    recommendation: RecommendationRecord,
    vm_index: Mapping[str, VirtualMachineRecord],
    nic_index: Mapping[str, NetworkInterfaceRecord],
    subscription_name: Optional[str] = None,
) -> ReportRow:
    """Build the report row for a recommendation.

    Never raises on missing references: a recommendation whose VM is not in
    vm_index still yields a row, with the VM and NIC fields left as None.
    """
    vm = None
    vm_key = normalize_resource_id(recommendation.vm_resource_id)
    if vm_key is not None:
        vm = vm_index.get(vm_key)

    nic = None
    if vm is not None:
        nic_key = normalize_resource_id(vm.nic_resource_id)
        if nic_key is not None:
            nic = nic_index.get(nic_key)

    return ReportRow(
        recommendation=recommendation.problem_description,
        vm_name=vm.name if vm else None,
        subscription_name=subscription_name,
        subscription_id=recommendation.subscription_id,
        resource_id=recommendation.vm_resource_id,
        vm_sku=recommendation.current_sku,
        recommended_sku=recommendation.recommended_sku,
        vm_location=vm.location if vm else None,
        market_tag=vm.market_tag if vm else None,
        application_id=vm.application_id if vm else None,
        cpu_percent=recommendation.cpu_percent_threshold,
        memory_percent=recommendation.memory_percent_threshold,
        network_percent=recommendation.network_percent_threshold,
        accel_net_enabled=nic.accelerated_networking_enabled if nic else None,
        vm_name_hint=recommendation.vm_name_hint,
        vm_resolved=vm is not None,
        nic_resolved=nic is not None,
    )
