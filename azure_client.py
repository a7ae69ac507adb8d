"""
Azure client module for the cost recommendation report.
Handles authentication, Azure Resource Graph queries and subscription lookups.
"""
from typing import Optional, Dict, List, Any
from dataclasses import dataclass, field
import logging

from azure.core.exceptions import ClientAuthenticationError, HttpResponseError
from azure.identity import DefaultAzureCredential, ClientSecretCredential
from azure.mgmt.resourcegraph import ResourceGraphClient
from azure.mgmt.resourcegraph.models import QueryRequest, QueryRequestOptions
from azure.mgmt.subscription import SubscriptionClient

from config import MAX_QUERY_ROWS, QUERY_PAGE_SIZE

logger = logging.getLogger(__name__)


class ExternalServiceError(Exception):
    """Raised when an Azure service call fails for a subscription."""

    def __init__(self, message: str, subscription_id: Optional[str] = None, stage: Optional[str] = None):
        super().__init__(message)
        self.subscription_id = subscription_id
        self.stage = stage

    def describe(self) -> str:
        """Human-readable description naming the subscription and stage."""
        where = f"subscription {self.subscription_id}" if self.subscription_id else "unknown subscription"
        if self.stage:
            where += f" ({self.stage})"
        return f"{where}: {self}"


class AuthenticationError(ExternalServiceError):
    """Credentials are invalid or the subscription cannot be accessed."""


class QueryError(ExternalServiceError):
    """A Resource Graph query failed (bad syntax, throttling, service unavailable)."""


def _clean(value: Any) -> Optional[str]:
    """Normalize a projected value: KQL tostring(null) yields '' which means absent."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_bool(value: Any) -> Optional[bool]:
    """Parse a boolean column, keeping None for unknown."""
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text == "true":
        return True
    if text == "false":
        return False
    return None


@dataclass(frozen=True)
class RecommendationRecord:
    """An Azure Advisor cost recommendation for a virtual machine."""
    id: Optional[str]
    problem_description: Optional[str]
    subscription_id: Optional[str]
    resource_group: Optional[str]
    vm_name_hint: Optional[str]
    current_sku: Optional[str]
    recommended_sku: Optional[str]
    cpu_percent_threshold: Optional[str]
    memory_percent_threshold: Optional[str]
    network_percent_threshold: Optional[str]
    vm_resource_id: Optional[str]

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "RecommendationRecord":
        return cls(
            id=_clean(row.get("id")),
            problem_description=_clean(row.get("problem")),
            subscription_id=_clean(row.get("subscriptionId")),
            resource_group=_clean(row.get("resourceGroup")),
            vm_name_hint=_clean(row.get("vmName")),
            current_sku=_clean(row.get("currentSku")),
            recommended_sku=_clean(row.get("targetSku")),
            cpu_percent_threshold=_clean(row.get("maxCpuP95")),
            memory_percent_threshold=_clean(row.get("maxMemoryP95")),
            network_percent_threshold=_clean(row.get("maxTotalNetworkP95")),
            vm_resource_id=_clean(row.get("vmResourceId")),
        )


@dataclass(frozen=True)
class VirtualMachineRecord:
    """VM metadata as reported by Resource Graph."""
    resource_id: Optional[str]
    name: Optional[str]
    location: Optional[str]
    application_id: Optional[str] = None
    market_tag: Optional[str] = None
    nic_resource_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "VirtualMachineRecord":
        return cls(
            resource_id=_clean(row.get("id")),
            name=_clean(row.get("name")),
            location=_clean(row.get("location")),
            application_id=_clean(row.get("applicationId")),
            market_tag=_clean(row.get("market")),
            nic_resource_id=_clean(row.get("nicId")),
        )


@dataclass(frozen=True)
class NetworkInterfaceRecord:
    """NIC configuration relevant to the report."""
    resource_id: Optional[str]
    accelerated_networking_enabled: Optional[bool] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "NetworkInterfaceRecord":
        return cls(
            resource_id=_clean(row.get("id")),
            accelerated_networking_enabled=_to_bool(row.get("acceleratedNetworking")),
        )


@dataclass
class QueryResult:
    """Rows returned by a single Resource Graph query."""
    subscription_id: str
    stage: str
    max_rows: int
    records: List[Dict[str, Any]] = field(default_factory=list)
    total_records: Optional[int] = None
    result_truncated: bool = False

    @property
    def truncated(self) -> bool:
        """True when the result set hit the row cap and rows may be missing."""
        if self.result_truncated:
            return True
        if len(self.records) >= self.max_rows:
            return True
        return self.total_records is not None and self.total_records > len(self.records)

    def describe_truncation(self) -> str:
        """Why the result set is incomplete, e.g. 'returned 5000 of 7200 rows'."""
        if self.total_records is not None and self.total_records > len(self.records):
            return f"returned {len(self.records)} of {self.total_records} rows"
        if len(self.records) >= self.max_rows:
            return f"hit the {self.max_rows}-row limit"
        return "flagged as partial by the service"


def build_credential(
    tenant_id: Optional[str] = None,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
):
    """Service principal credential when fully configured, default chain otherwise."""
    if client_id and client_secret and tenant_id:
        return ClientSecretCredential(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=client_secret,
        )
    return DefaultAzureCredential()


def _is_auth_failure(error: HttpResponseError) -> bool:
    return error.status_code in (401, 403)


class ResourceQueryClient:
    """Client for Azure Resource Graph queries scoped to one subscription."""

    def __init__(self, credential=None, graph_client: Optional[ResourceGraphClient] = None):
        if graph_client is None:
            graph_client = ResourceGraphClient(credential or DefaultAzureCredential())
        self.graph_client = graph_client

    def _fetch_page(self, request: QueryRequest, subscription_id: str, stage: str):
        """Execute a single Resource Graph request, mapping SDK errors."""
        try:
            return self.graph_client.resources(request)
        except ClientAuthenticationError as e:
            raise AuthenticationError(
                f"Authentication failed: {e}", subscription_id=subscription_id, stage=stage
            ) from e
        except HttpResponseError as e:
            if _is_auth_failure(e):
                raise AuthenticationError(
                    f"Access denied: {e}", subscription_id=subscription_id, stage=stage
                ) from e
            raise QueryError(
                f"Resource Graph query failed: {e}", subscription_id=subscription_id, stage=stage
            ) from e

    def query(
        self,
        subscription_id: str,
        query_text: str,
        max_rows: int = MAX_QUERY_ROWS,
        stage: str = "query",
    ) -> QueryResult:
        """Run a KQL query against a subscription.

        Follows skip tokens page by page until max_rows rows are collected
        or the service has no more pages.

        Args:
            subscription_id: Subscription to scope the query to
            query_text: Resource Graph query
            max_rows: Maximum number of rows to collect
            stage: Label of the dataset being fetched, used in errors and logs

        Returns:
            QueryResult with the flat records in provider order

        Raises:
            AuthenticationError: credentials rejected or subscription inaccessible
            QueryError: any other service failure
        """
        if not subscription_id or not subscription_id.strip():
            raise ValueError("subscription_id must not be empty")

        records: List[Dict[str, Any]] = []
        total_records = None
        result_truncated = False
        skip_token = None
        page = 1

        logger.debug(f"Executing Resource Graph query ({stage}) for {subscription_id}")
        while True:
            request = QueryRequest(
                subscriptions=[subscription_id],
                query=query_text,
                options=QueryRequestOptions(
                    top=min(QUERY_PAGE_SIZE, max_rows - len(records)),
                    skip_token=skip_token,
                    result_format="objectArray",
                ),
            )
            response = self._fetch_page(request, subscription_id, stage)

            data = list(response.data or [])
            records.extend(data)
            total_records = response.total_records
            # result_truncated is a ResultTruncated enum or its raw string value
            truncated_flag = getattr(response.result_truncated, "value", response.result_truncated)
            result_truncated = _to_bool(truncated_flag) is True
            skip_token = response.skip_token

            logger.debug(
                f"Resource Graph ({stage}) page {page}: {len(data)} rows, "
                f"{len(records)} of {total_records} collected"
            )
            if not skip_token or not data or len(records) >= max_rows:
                break
            page += 1

        return QueryResult(
            subscription_id=subscription_id,
            stage=stage,
            max_rows=max_rows,
            records=records[:max_rows],
            total_records=total_records,
            result_truncated=result_truncated,
        )


class SubscriptionResolver:
    """Looks up subscription metadata (display names)."""

    def __init__(self, credential=None, subscription_client: Optional[SubscriptionClient] = None):
        if subscription_client is None:
            subscription_client = SubscriptionClient(credential or DefaultAzureCredential())
        self.subscription_client = subscription_client

    def get_display_name(self, subscription_id: str) -> str:
        """Resolve a subscription's display name.

        Raises:
            AuthenticationError: the subscription cannot be accessed
        """
        try:
            subscription = self.subscription_client.subscriptions.get(subscription_id)
        except (ClientAuthenticationError, HttpResponseError) as e:
            raise AuthenticationError(
                f"Cannot access subscription: {e}", subscription_id=subscription_id, stage="subscription"
            ) from e
        return subscription.display_name or subscription_id
