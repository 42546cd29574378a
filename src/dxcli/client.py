"""Platform API client implementing the describe gateway."""

from __future__ import annotations

import logging

import httpx

from .errors import GatewayError
from .identifiers import ObjectClass, ObjectId

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.dnanexus.com"

_TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}

_DATA_OBJECT_FIELDS = (
    "id",
    "project",
    "class",
    "types",
    "created",
    "state",
    "hidden",
    "links",
    "name",
    "folder",
    "sponsored",
    "sponsoredUntil",
    "tags",
    "modified",
    "createdBy",
    "properties",
    "details",
)

_EXECUTION_FIELDS = (
    "id",
    "class",
    "name",
    "executableName",
    "created",
    "modified",
    "billTo",
    "project",
    "folder",
    "rootExecution",
    "parentJob",
    "parentJobTry",
    "parentAnalysis",
    "detachedFrom",
    "detachedFromTry",
    "analysis",
    "stage",
    "state",
    "workspace",
    "launchedBy",
    "tags",
    "properties",
    "details",
    "priority",
    "rank",
    "dependsOn",
    "runInput",
    "originalInput",
    "input",
    "output",
    "delayWorkspaceDestruction",
    "ignoreReuse",
    "preserveJobOutputs",
    "detailedJobMetrics",
    "costLimit",
    "outputReusedFrom",
    "workerReuseDeadlineRunTime",
    "selectedTreeTurnaroundTimeThreshold",
    "selectedTreeTurnaroundTimeThresholdFrom",
    "treeTurnaroundTime",
    "currency",
    "totalPrice",
    "priceComputedAt",
    "totalEgress",
    "egressComputedAt",
)

# Describe fields requested per class. Unrequested fields come back only
# when they are in the server default set.
DESCRIBE_FIELDS: dict[ObjectClass, tuple[str, ...]] = {
    ObjectClass.ANALYSIS: _EXECUTION_FIELDS + ("executable", "stages", "workflow"),
    ObjectClass.JOB: _EXECUTION_FIELDS
    + (
        "try",
        "originJob",
        "tryCreated",
        "startedRunning",
        "stoppedRunning",
        "egressReport",
        "stateTransitions",
        "function",
        "finalPriority",
        "systemRequirements",
        "executionPolicy",
        "timeout",
        "instanceType",
        "networkAccess",
        "failureReason",
        "failureMessage",
        "failureFrom",
        "failureReports",
        "failureCounts",
        "region",
        "singleContext",
        "httpsApp",
        "clusterSpec",
        "clusterID",
        "debugOn",
        "isFree",
        "allowSSH",
        "sshHostKey",
        "host",
        "sshPort",
        "clusterSlaves",
        "headJobOnDemand",
        "internetUsageIPs",
        "subtotalEgressInfo",
        "applet",
        "app",
        "resources",
        "projectCache",
    ),
    ObjectClass.FILE: _DATA_OBJECT_FIELDS
    + (
        "media",
        "size",
        "cloudAccount",
        "archivalState",
        "watermarkId",
        "watermarkVersion",
        "resolvedPolicies",
    ),
    ObjectClass.RECORD: _DATA_OBJECT_FIELDS + ("size",),
    ObjectClass.DATABASE: _DATA_OBJECT_FIELDS + ("databaseName", "uniqueDatabaseName"),
    ObjectClass.APPLET: _DATA_OBJECT_FIELDS
    + (
        "runSpec",
        "dxapi",
        "access",
        "title",
        "summary",
        "description",
        "developerNotes",
        "ignoreReuse",
        "httpsApps",
        "treeTurnaroundTimeThreshold",
        "inputSpec",
        "outputSpec",
    ),
    ObjectClass.APP: (
        "id",
        "class",
        "billTo",
        "name",
        "version",
        "aliases",
        "region",
        "applet",
        "createdBy",
        "created",
        "modified",
        "installed",
        "openSource",
        "ignoreReuse",
        "deleted",
        "installs",
        "isDeveloperFor",
        "authorizedUsers",
        "regionalOptions",
        "httpsApp",
        "published",
        "title",
        "summary",
        "description",
        "details",
        "categories",
        "lineItemPerTest",
        "access",
        "inputSpec",
        "outputSpec",
        "dxapi",
        "runSpec",
        "treeTurnaroundTimeThreshold",
        "resources",
    ),
    ObjectClass.PROJECT: (
        "id",
        "class",
        "name",
        "region",
        "summary",
        "description",
        "version",
        "changes",
        "tags",
        "properties",
        "cloudAccount",
        "remoteDataUsage",
        "archivedDataUsage",
        "previewViewerRestricted",
        "displayDataProtectionNotice",
        "billTo",
        "protected",
        "restricted",
        "downloadRestricted",
        "externalUploadRestricted",
        "containsPHI",
        "databaseUIViewOnly",
        "currency",
        "created",
        "createdBy",
        "modified",
        "level",
        "dataUsage",
        "storageCost",
        "defaultInstanceType",
        "provider",
        "sponsoredDataUsage",
        "sponsoredUntil",
        "pendingTransfer",
        "totalSponsoredEgressBytes",
        "consumedSponsoredEgressBytes",
        "allowedExecutables",
        "atSpendingLimit",
        "folders",
        "objects",
        "permissions",
        "appCaches",
    ),
    ObjectClass.CONTAINER: (
        "id",
        "class",
        "name",
        "region",
        "billTo",
        "type",
        "created",
        "modified",
        "level",
        "dataUsage",
        "sponsoredDataUsage",
        "remoteDataUsage",
        "project",
        "app",
        "appName",
        "destroyAt",
        "folders",
        "cloudAccount",
        "fileUploadParameters",
    ),
}


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds > 0 else None


class DxApiClient:
    """Thin wrapper around the platform's ``/{id}/describe`` route.

    One attempt per call; retrying is left to the caller.
    """

    def __init__(
        self,
        auth_token: str,
        base_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._client = httpx.Client(
            base_url=base_url,
            headers={"Authorization": f"Bearer {auth_token}"},
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    def __enter__(self) -> DxApiClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @staticmethod
    def describe_input(object_id: ObjectId, try_number: int | None = None) -> dict:
        body: dict = {"fields": {name: True for name in DESCRIBE_FIELDS[object_id.object_class]}}
        if object_id.object_class.is_data_object:
            body["details"] = True
            body["properties"] = True
            if object_id.project is not None:
                body["project"] = object_id.project.dxid
        if object_id.object_class is ObjectClass.JOB and try_number is not None:
            body["try"] = try_number
        return body

    def _post(self, path: str, body: dict) -> dict:
        """Make a POST request, return the decoded JSON object."""
        logger.debug("POST %s%s %s", self.base_url, path, body)
        try:
            resp = self._client.post(path, json=body)
        except httpx.TimeoutException as exc:
            raise GatewayError(GatewayError.TRANSIENT, "TIMEOUT", "Request timed out") from exc
        except httpx.RequestError as exc:
            raise GatewayError(GatewayError.TRANSIENT, "NETWORK", str(exc)) from exc

        logger.debug("HTTP %s from %s: %s", resp.status_code, path, resp.text)

        if resp.status_code >= 400:
            raise self._classify_error(resp)

        if not resp.content:
            raise GatewayError(
                GatewayError.MALFORMED,
                "EMPTY_RESPONSE",
                f"Empty response (HTTP {resp.status_code})",
                resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise GatewayError(GatewayError.MALFORMED, "INVALID_RESPONSE", resp.text[:200], resp.status_code) from exc
        if not isinstance(data, dict):
            raise GatewayError(
                GatewayError.MALFORMED,
                "INVALID_RESPONSE",
                f"Expected a JSON object, got {type(data).__name__}",
                resp.status_code,
            )
        return data

    @staticmethod
    def _classify_error(resp: httpx.Response) -> GatewayError:
        status = resp.status_code
        code = f"HTTP_{status}"
        message = resp.text[:200]
        try:
            err = resp.json().get("error") or {}
        except (ValueError, AttributeError):
            err = {}
        if isinstance(err, dict):
            code = err.get("type", code)
            message = err.get("message", message)

        if code == "InvalidAuthentication":
            kind = GatewayError.UNAUTHORIZED
        elif code == "PermissionDenied":
            kind = GatewayError.REJECTED
        elif status == 401:
            kind = GatewayError.UNAUTHORIZED
        elif status == 404 or code == "ResourceNotFound":
            kind = GatewayError.NOT_FOUND
        elif status in _TRANSIENT_STATUS_CODES or status >= 500:
            kind = GatewayError.TRANSIENT
        else:
            kind = GatewayError.REJECTED

        return GatewayError(
            kind,
            code,
            message,
            status,
            retry_after=_parse_retry_after(resp.headers.get("retry-after")),
        )

    def fetch(self, object_id: ObjectId, *, try_number: int | None = None) -> dict:
        """Fetch the raw describe payload for one object."""
        return self._post(f"/{object_id.dxid}/describe", self.describe_input(object_id, try_number))

    def close(self):
        self._client.close()
