"""
Configuration and settings for the Azure cost recommendation report CLI.
"""
from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional


# Azure Resource Graph returns at most this many rows per query
MAX_QUERY_ROWS = 5000

# Rows per Resource Graph page; larger results are fetched with skip tokens
QUERY_PAGE_SIZE = 1000


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Azure Authentication
    azure_subscription_id: Optional[str] = Field(default=None, alias="AZURE_SUBSCRIPTION_ID")
    azure_tenant_id: Optional[str] = Field(default=None, alias="AZURE_TENANT_ID")
    azure_client_id: Optional[str] = Field(default=None, alias="AZURE_CLIENT_ID")
    azure_client_secret: Optional[str] = Field(default=None, alias="AZURE_CLIENT_SECRET")

    # Query Settings
    max_rows: int = Field(default=MAX_QUERY_ROWS, alias="ARG_MAX_ROWS")
    application_tag: str = Field(default="ApplicationID", alias="APPLICATION_TAG")
    market_tag: str = Field(default="Market", alias="MARKET_TAG")

    # Run behaviour
    continue_on_error: bool = Field(default=False, alias="CONTINUE_ON_ERROR")

    # Output
    output_dir: Optional[str] = Field(default=None, alias="REPORT_OUTPUT_DIR")
    log_level: str = Field(default="WARNING", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True


RECOMMENDATIONS_QUERY = """
advisorresources
| where type == 'microsoft.advisor/recommendations'
| where properties.category == 'Cost'
| where properties.impactedField =~ 'Microsoft.Compute/virtualMachines'
| project id,
    problem = tostring(properties.shortDescription.problem),
    subscriptionId,
    resourceGroup,
    vmName = tostring(properties.impactedValue),
    currentSku = tostring(properties.extendedProperties.currentSku),
    targetSku = tostring(properties.extendedProperties.targetSku),
    maxCpuP95 = tostring(properties.extendedProperties.MaxCpuP95),
    maxMemoryP95 = tostring(properties.extendedProperties.MaxMemoryP95),
    maxTotalNetworkP95 = tostring(properties.extendedProperties.MaxTotalNetworkP95),
    vmResourceId = tostring(properties.resourceMetadata.resourceId)
""".strip()

NETWORK_INTERFACES_QUERY = """
resources
| where type =~ 'microsoft.network/networkinterfaces'
| project id,
    acceleratedNetworking = tobool(properties.enableAcceleratedNetworking)
""".strip()


def _escape_kql(value: str) -> str:
    """Escape a value for use inside a single-quoted KQL string literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def build_recommendations_query() -> str:
    """Query for VM cost recommendations from Azure Advisor."""
    return RECOMMENDATIONS_QUERY


def build_virtual_machines_query(application_tag: str = "ApplicationID", market_tag: str = "Market") -> str:
    """Query for VM metadata, including the tags reported as application ID and market.

    Only the first network interface of each VM is projected; it is the one
    Azure treats as primary when the VM has a single NIC.
    """
    return f"""
resources
| where type =~ 'microsoft.compute/virtualmachines'
| project id,
    name,
    location,
    applicationId = tostring(tags['{_escape_kql(application_tag)}']),
    market = tostring(tags['{_escape_kql(market_tag)}']),
    nicId = tostring(properties.networkProfile.networkInterfaces[0].id)
""".strip()


def build_network_interfaces_query() -> str:
    """Query for NIC accelerated networking configuration."""
    return NETWORK_INTERFACES_QUERY
