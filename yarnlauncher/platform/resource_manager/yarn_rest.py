import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import requests

from yarnlauncher.platform.rest import RestClient
from yarnlauncher.platform.security.credentials import Credentials
from yarnlauncher.schemas import (
    ApplicationReport,
    ApplicationState,
    FinalApplicationStatus,
    NewApplication,
    Resource,
    ResourceUsage,
    SubmissionContext,
)

from .resource_manager import ApplicationNotFoundError, ResourceManagerError, ResourceManagerInterface

logger = logging.getLogger(__name__)


def _timestamp(millis: Any) -> Optional[datetime]:
    if not millis:
        return None
    return datetime.fromtimestamp(int(millis) / 1000.0, tz=timezone.utc)


def parse_app_report(app: Dict[str, Any]) -> ApplicationReport:
    usage = ResourceUsage(
        num_used_containers=max(int(app.get("runningContainers", 0)), 0),
        used_resources=Resource(
            memory_mb=max(int(app.get("allocatedMB", 0)), 0),
            vcores=max(int(app.get("allocatedVCores", 0)), 0),
        ),
        memory_seconds=int(app.get("memorySeconds", 0)),
        vcore_seconds=int(app.get("vcoreSeconds", 0)),
    )
    return ApplicationReport(
        application_id=app["id"],
        name=app.get("name", ""),
        state=ApplicationState(app["state"]),
        final_status=FinalApplicationStatus(app.get("finalStatus", "UNDEFINED")),
        diagnostics=app.get("diagnostics") or "",
        tracking_url=app.get("trackingUrl"),
        user=app.get("user"),
        queue=app.get("queue"),
        application_type=app.get("applicationType"),
        current_attempt_id=app.get("currentAppAttemptId"),
        start_time=_timestamp(app.get("startedTime")),
        finish_time=_timestamp(app.get("finishedTime")),
        resource_usage=usage,
    )


def submission_to_json(context: SubmissionContext) -> Dict[str, Any]:
    """Render a SubmissionContext as the RM REST `new application` request body"""
    spec = context.am_container_spec
    local_resources = [
        {
            "key": name,
            "value": {
                "resource": res.resource,
                "type": res.type.value,
                "visibility": res.visibility.value,
                "size": res.size,
                "timestamp": res.timestamp,
            },
        }
        for name, res in spec.local_resources.items()
    ]
    am_spec: Dict[str, Any] = {
        "local-resources": {"entry": local_resources},
        "commands": {"command": " ".join(spec.commands)},
        "environment": {"entry": [{"key": k, "value": v} for k, v in spec.environment.items()]},
        "application-acls": {"entry": [{"key": k.value, "value": v} for k, v in spec.application_acls.items()]},
    }
    if spec.tokens:
        creds = Credentials.read_token_storage(spec.tokens)
        am_spec["credentials"] = {
            "tokens": {
                "entry": [{"key": alias, "value": token.encode_to_url_string()} for alias, token in creds.token_items()]
            },
            "secrets": {"entry": []},
        }
    return {
        "application-id": context.application_id,
        "application-name": context.application_name,
        "application-type": context.application_type,
        "queue": context.queue,
        "priority": context.priority,
        "max-app-attempts": context.max_app_attempts,
        "application-tags": {"tag": list(context.application_tags)},
        "resource": {"memory": context.resource.memory_mb, "vCores": context.resource.vcores},
        "am-container-spec": am_spec,
    }


class YarnRestResourceManager(ResourceManagerInterface):
    """ResourceManager client over the YARN RM REST API (ws/v1/cluster)"""

    API_PREFIX = "/ws/v1/cluster"

    def __init__(
        self,
        address: str,
        connect_timeout: float = 3.1,
        read_timeout: float = 60.0,
        retry_count: int = 3,
        user_name: Optional[str] = None,
    ) -> None:
        super().__init__(address)
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.retry_count = retry_count
        self.user_name = user_name
        self._client: Optional[RestClient] = None

    @property
    def api_root(self) -> str:
        base = self.address if "://" in self.address else f"http://{self.address}"
        return base.rstrip("/") + self.API_PREFIX

    @property
    def client(self) -> RestClient:
        self._check_started()
        assert self._client is not None
        return self._client

    def start(self) -> None:
        if self._client is None:
            self._client = RestClient(
                self.api_root,
                connect_timeout=self.connect_timeout,
                read_timeout=self.read_timeout,
                retry_count=self.retry_count,
                user_name=self.user_name,
            )
        super().start()
        logger.debug(f"Started {self!r}")

    def stop(self) -> None:
        if self._client is not None:
            self._client.close_session()
            self._client = None
        super().stop()

    def create_application(self) -> NewApplication:
        try:
            data = self.client.request_json("apps/new-application", "POST")
        except requests.HTTPError as exc:
            raise ResourceManagerError(f"Failed to create application: {exc}") from exc
        if not data or "application-id" not in data:
            raise ResourceManagerError(f"Unexpected new-application response: {data}")
        capability = data.get("maximum-resource-capability", {})
        return NewApplication(
            application_id=data["application-id"],
            maximum_resource_capability=Resource(
                memory_mb=int(capability.get("memory", 0)),
                vcores=int(capability.get("vCores", 0)),
            ),
        )

    def submit_application(self, context: SubmissionContext) -> None:
        body = submission_to_json(context)
        logger.debug(f"Submitting application {context.application_id} to {self.address}")
        try:
            self.client.request("apps", "POST", json=body)
        except requests.HTTPError as exc:
            raise ResourceManagerError(f"Failed to submit {context.application_id}: {exc}") from exc

    def get_application_report(self, application_id: str) -> ApplicationReport:
        try:
            data = self.client.request_json(f"apps/{application_id}", "GET")
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 404:
                raise ApplicationNotFoundError(application_id) from exc
            raise ResourceManagerError(f"Failed to get report for {application_id}: {exc}") from exc
        if not data or "app" not in data:
            raise ResourceManagerError(f"Unexpected application report response: {data}")
        return parse_app_report(data["app"])

    def get_applications(
        self,
        application_types: Optional[Iterable[str]] = None,
        states: Optional[Iterable[ApplicationState]] = None,
    ) -> List[ApplicationReport]:
        params: Dict[str, str] = {}
        if application_types:
            params["applicationTypes"] = ",".join(application_types)
        if states:
            params["states"] = ",".join(ApplicationState(s).value for s in states)
        try:
            data = self.client.request_json("apps", "GET", params=params)
        except requests.HTTPError as exc:
            raise ResourceManagerError(f"Failed to list applications: {exc}") from exc
        apps = (data or {}).get("apps") or {}
        return [parse_app_report(app) for app in apps.get("app", [])]
