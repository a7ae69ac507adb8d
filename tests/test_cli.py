"""Tests for the typer CLI in main.py."""
import csv

import pytest
from unittest.mock import MagicMock, patch
from typer.testing import CliRunner

import main
from azure_client import QueryResult, QueryError
from dataset_loader import STAGE_RECOMMENDATIONS, STAGE_VIRTUAL_MACHINES, STAGE_NETWORK_INTERFACES


runner = CliRunner()

ROWS = {
    STAGE_RECOMMENDATIONS: [
        {
            "id": "rec-1",
            "problem": "Right-size underutilized VM",
            "subscriptionId": "sub-1",
            "resourceGroup": "rg",
            "vmName": "vm1",
            "currentSku": "Standard_D2",
            "targetSku": "Standard_D1",
            "maxCpuP95": "3",
            "maxMemoryP95": "20",
            "maxTotalNetworkP95": "1",
            "vmResourceId": "vm1",
        },
        {
            "id": "rec-2",
            "problem": "Right-size underutilized VM",
            "subscriptionId": "sub-1",
            "resourceGroup": "rg",
            "vmName": "vm-ghost",
            "currentSku": "Standard_D4",
            "targetSku": "Standard_D2",
            "maxCpuP95": "1",
            "maxMemoryP95": "5",
            "maxTotalNetworkP95": "0",
            "vmResourceId": "vm-ghost",
        },
    ],
    STAGE_VIRTUAL_MACHINES: [
        {"id": "vm1", "name": "vm1", "location": "eastus", "applicationId": "APP", "market": "US", "nicId": "nic1"},
    ],
    STAGE_NETWORK_INTERFACES: [
        {"id": "nic1", "acceleratedNetworking": True},
    ],
}


@pytest.fixture
def azure_mocks(monkeypatch):
    """Patch credential, Resource Graph and subscription clients used by main."""
    monkeypatch.delenv("AZURE_SUBSCRIPTION_ID", raising=False)
    query_client = MagicMock()
    query_client.query.side_effect = lambda sub_id, query_text, max_rows=5000, stage="query": QueryResult(
        sub_id, stage, max_rows, records=ROWS[stage], total_records=len(ROWS[stage])
    )
    resolver = MagicMock()
    resolver.get_display_name.return_value = "Production"

    with patch.object(main, "build_credential", return_value=MagicMock()), \
         patch.object(main, "ResourceQueryClient", return_value=query_client), \
         patch.object(main, "SubscriptionResolver", return_value=resolver):
        yield query_client, resolver


def test_report_writes_csv(azure_mocks, tmp_path):
    output = tmp_path / "report.csv"
    result = runner.invoke(main.app, ["report", "-s", "sub-1", "-o", str(output), "--no-preview"])

    assert result.exit_code == 0, result.output
    with open(output, newline="", encoding="utf-8") as f:
        records = list(csv.DictReader(f))
    assert len(records) == 2
    assert records[0]["vmName"] == "vm1"
    assert records[0]["subscriptionName"] == "Production"
    assert records[0]["accelNetEnabled"] == "True"
    assert records[1]["resourceId"] == "vm-ghost"
    assert records[1]["vmName"] == ""
    assert records[1]["accelNetEnabled"] == ""


def test_report_to_output_dir(azure_mocks, tmp_path):
    result = runner.invoke(main.app, ["report", "-s", "sub-1", "--output-dir", str(tmp_path)])

    assert result.exit_code == 0, result.output
    files = list(tmp_path.glob("AzCM_Recs_*.csv"))
    assert len(files) == 1


def test_report_multiple_subscriptions(azure_mocks, tmp_path):
    query_client, resolver = azure_mocks
    output = tmp_path / "report.csv"
    result = runner.invoke(main.app, ["report", "-s", "sub-1,sub-2", "-o", str(output), "--no-preview"])

    assert result.exit_code == 0, result.output
    assert [c.args[0] for c in resolver.get_display_name.call_args_list] == ["sub-1", "sub-2"]
    with open(output, newline="", encoding="utf-8") as f:
        assert len(list(csv.DictReader(f))) == 4


def test_truncation_warning_printed_once(azure_mocks, tmp_path):
    query_client, _ = azure_mocks
    query_client.query.side_effect = lambda sub_id, query_text, max_rows=5000, stage="query": QueryResult(
        sub_id, stage, max_rows, records=ROWS[stage],
        total_records=40 if stage == STAGE_VIRTUAL_MACHINES else len(ROWS[stage]),
    )
    output = tmp_path / "report.csv"

    result = runner.invoke(main.app, ["report", "-s", "sub-1", "-o", str(output), "--no-preview"])

    assert result.exit_code == 0, result.output
    assert result.output.count("truncated") == 1


def test_report_requires_subscription(azure_mocks):
    result = runner.invoke(main.app, ["report"])
    assert result.exit_code == 1
    assert "Subscription ID required" in result.output


def test_failure_writes_no_report(azure_mocks, tmp_path):
    query_client, _ = azure_mocks
    query_client.query.side_effect = QueryError("bad query", subscription_id="sub-1", stage=STAGE_RECOMMENDATIONS)
    output = tmp_path / "report.csv"

    result = runner.invoke(main.app, ["report", "-s", "sub-1", "-o", str(output)])

    assert result.exit_code == 1
    assert "sub-1" in result.output
    assert not output.exists()


def test_show_previews_saved_report(azure_mocks, tmp_path):
    output = tmp_path / "report.csv"
    runner.invoke(main.app, ["report", "-s", "sub-1", "-o", str(output), "--no-preview"])

    result = runner.invoke(main.app, ["show", str(output)])

    assert result.exit_code == 0, result.output
    assert "2 total" in result.output


def test_show_missing_file(tmp_path):
    result = runner.invoke(main.app, ["show", str(tmp_path / "missing.csv")])
    assert result.exit_code == 1


def test_version():
    result = runner.invoke(main.app, ["version"])
    assert result.exit_code == 0
    assert main.__version__ in result.output
