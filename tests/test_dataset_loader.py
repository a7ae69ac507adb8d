"""Tests for dataset_loader.py - fetching, indexing and truncation detection."""
import logging

import pytest
from unittest.mock import MagicMock

from azure_client import ResourceQueryClient, QueryResult, QueryError, VirtualMachineRecord
from config import Settings
from dataset_loader import (
    DatasetLoader,
    build_index,
    normalize_resource_id,
    STAGE_RECOMMENDATIONS,
    STAGE_VIRTUAL_MACHINES,
    STAGE_NETWORK_INTERFACES,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _rec_row(vm_id):
    return {
        "id": f"{vm_id}/providers/Microsoft.Advisor/recommendations/1",
        "problem": "Right-size or shutdown underutilized virtual machines",
        "subscriptionId": "sub-1",
        "resourceGroup": "rg",
        "vmName": vm_id,
        "currentSku": "Standard_D4s_v3",
        "targetSku": "Standard_D2s_v3",
        "maxCpuP95": "4.1",
        "maxMemoryP95": "30.2",
        "maxTotalNetworkP95": "1.0",
        "vmResourceId": vm_id,
    }


def _vm_row(vm_id, nic_id="", name=None):
    return {
        "id": vm_id,
        "name": name or vm_id,
        "location": "eastus",
        "applicationId": "APP-1",
        "market": "",
        "nicId": nic_id,
    }


def _nic_row(nic_id, accelerated=True):
    return {"id": nic_id, "acceleratedNetworking": accelerated}


def _make_loader(recs=(), vms=(), nics=(), max_rows=5000, total_records=None):
    rows_by_stage = {
        STAGE_RECOMMENDATIONS: list(recs),
        STAGE_VIRTUAL_MACHINES: list(vms),
        STAGE_NETWORK_INTERFACES: list(nics),
    }

    def fake_query(subscription_id, query_text, max_rows=5000, stage="query"):
        records = rows_by_stage[stage]
        return QueryResult(
            subscription_id=subscription_id,
            stage=stage,
            max_rows=max_rows,
            records=records,
            total_records=total_records.get(stage, len(records)) if total_records else len(records),
        )

    query_client = MagicMock(spec=ResourceQueryClient)
    query_client.query.side_effect = fake_query
    loader = DatasetLoader(query_client, settings=Settings(ARG_MAX_ROWS=max_rows))
    return loader, query_client


class TestNormalizeResourceId:

    def test_lowercases_and_strips(self):
        assert normalize_resource_id("  /Subscriptions/ABC/VM1 ") == "/subscriptions/abc/vm1"

    def test_empty_is_none(self):
        assert normalize_resource_id("") is None
        assert normalize_resource_id("   ") is None
        assert normalize_resource_id(None) is None


class TestBuildIndex:

    def test_first_record_wins_on_duplicate(self):
        first = VirtualMachineRecord("vm1", "first", "eastus")
        second = VirtualMachineRecord("VM1", "second", "westus")
        index, stats = build_index([first, second], key=lambda vm: vm.resource_id)

        assert index["vm1"] is first
        assert stats.duplicates == 1
        assert stats.indexed == 1

    def test_records_without_id_are_skipped(self):
        records = [VirtualMachineRecord(None, "orphan", "eastus"), VirtualMachineRecord("vm2", "vm2", "eastus")]
        index, stats = build_index(records, key=lambda vm: vm.resource_id)

        assert list(index) == ["vm2"]
        assert stats.skipped == 1


class TestLoadDatasets:

    def test_issues_three_queries_for_the_subscription(self):
        loader, query_client = _make_loader()
        loader.load_datasets("sub-1")

        stages = [c.kwargs["stage"] for c in query_client.query.call_args_list]
        assert stages == [STAGE_RECOMMENDATIONS, STAGE_VIRTUAL_MACHINES, STAGE_NETWORK_INTERFACES]
        for c in query_client.query.call_args_list:
            assert c.args[0] == "sub-1"
            assert c.kwargs["max_rows"] == 5000

    def test_vm_query_uses_configured_tags(self):
        loader, query_client = _make_loader()
        loader.settings = Settings(APPLICATION_TAG="AppCode", MARKET_TAG="Region")
        loader.load_datasets("sub-1")

        vm_query = query_client.query.call_args_list[1].args[1]
        assert "tags['AppCode']" in vm_query
        assert "tags['Region']" in vm_query

    def test_builds_records_and_indexes(self):
        loader, _ = _make_loader(
            recs=[_rec_row("vm1"), _rec_row("vm2")],
            vms=[_vm_row("VM1", "nic1")],
            nics=[_nic_row("NIC1", False)],
        )
        datasets = loader.load_datasets("sub-1")

        assert [r.vm_resource_id for r in datasets.recommendations] == ["vm1", "vm2"]
        assert datasets.recommendations[0].recommended_sku == "Standard_D2s_v3"
        assert set(datasets.vms_by_id) == {"vm1"}
        assert datasets.vms_by_id["vm1"].market_tag is None
        assert datasets.nics_by_id["nic1"].accelerated_networking_enabled is False
        assert not datasets.is_truncated

    def test_duplicate_vm_ids_keep_first_and_warn(self, caplog):
        loader, _ = _make_loader(vms=[_vm_row("vm1", name="first"), _vm_row("vm1", name="second")])
        with caplog.at_level(logging.WARNING):
            datasets = loader.load_datasets("sub-1")

        assert datasets.vms_by_id["vm1"].name == "first"
        assert datasets.duplicate_vms == 1
        assert "duplicate VM" in caplog.text

    def test_vm_result_at_cap_is_flagged_truncated(self, caplog):
        vms = [_vm_row(f"vm{i}") for i in range(5000)]
        loader, _ = _make_loader(vms=vms)
        with caplog.at_level(logging.WARNING):
            datasets = loader.load_datasets("sub-1")

        assert datasets.truncated_datasets == [STAGE_VIRTUAL_MACHINES]
        assert datasets.is_truncated
        assert "hit the 5000-row limit" in caplog.text
        assert datasets.truncation_details == {STAGE_VIRTUAL_MACHINES: "hit the 5000-row limit"}

    def test_below_cap_is_not_truncated(self, caplog):
        loader, _ = _make_loader(vms=[_vm_row(f"vm{i}") for i in range(4999)])
        with caplog.at_level(logging.WARNING):
            datasets = loader.load_datasets("sub-1")

        assert datasets.truncated_datasets == []
        assert "row limit" not in caplog.text

    def test_total_records_above_returned_is_truncated(self, caplog):
        loader, _ = _make_loader(
            nics=[_nic_row("nic1")],
            max_rows=10,
            total_records={STAGE_NETWORK_INTERFACES: 25},
        )
        with caplog.at_level(logging.WARNING):
            datasets = loader.load_datasets("sub-1")

        assert datasets.truncated_datasets == [STAGE_NETWORK_INTERFACES]
        assert datasets.truncation_details[STAGE_NETWORK_INTERFACES] == "returned 1 of 25 rows"
        assert "returned 1 of 25 rows" in caplog.text
        assert "row limit" not in caplog.text

    def test_query_failure_propagates(self):
        loader, query_client = _make_loader()
        query_client.query.side_effect = QueryError("throttled", subscription_id="sub-1", stage=STAGE_VIRTUAL_MACHINES)

        with pytest.raises(QueryError) as exc_info:
            loader.load_datasets("sub-1")
        assert exc_info.value.stage == STAGE_VIRTUAL_MACHINES
