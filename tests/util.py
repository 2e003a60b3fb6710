import json
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from yarnlauncher.launcher import APPLICATION_TYPE
from yarnlauncher.platform.resource_manager import (
    ApplicationNotFoundError,
    ResourceManagerError,
    ResourceManagerInterface,
)
from yarnlauncher.schemas import (
    ApplicationReport,
    ApplicationState,
    FinalApplicationStatus,
    NewApplication,
    Resource,
    SubmissionContext,
)

PRIMARY_RM = "rm1.example.com:8088"
SECONDARY_RM = "rm2.example.com:8088"


class FakeResourceManager(ResourceManagerInterface):
    """
    In-memory ResourceManager. Submitted applications are ACCEPTED; tests move
    them through states with `set_state` and inject poll failures by setting
    `fail_reports`.
    """

    cluster_timestamp = 1700000000000

    def __init__(
        self,
        address: str,
        connect_timeout: float = 3.1,
        read_timeout: float = 60.0,
        retry_count: int = 3,
        user_name: Optional[str] = None,
    ) -> None:
        super().__init__(address)
        self.max_capability = Resource(memory_mb=8192, vcores=8)
        self.apps: Dict[str, ApplicationReport] = {}
        self.created: List[str] = []
        self.submitted: List[SubmissionContext] = []
        self.fail_reports = False
        self.report_calls = 0
        self.stop_calls = 0
        self._lock = threading.Lock()
        self._next_id = 1

    def stop(self) -> None:
        self.stop_calls += 1
        super().stop()

    def _new_id(self) -> str:
        with self._lock:
            seq = self._next_id
            self._next_id += 1
        return f"application_{self.cluster_timestamp}_{seq:04d}"

    def add_app(
        self,
        name: str,
        state: ApplicationState = ApplicationState.RUNNING,
        application_type: str = APPLICATION_TYPE,
    ) -> str:
        app_id = self._new_id()
        self.apps[app_id] = ApplicationReport(
            application_id=app_id,
            name=name,
            state=state,
            application_type=application_type,
            tracking_url=f"http://{self.address}/proxy/{app_id}/",
        )
        return app_id

    def set_state(
        self,
        app_id: str,
        state: ApplicationState,
        final_status: FinalApplicationStatus = FinalApplicationStatus.UNDEFINED,
        diagnostics: str = "",
    ) -> None:
        self.apps[app_id] = self.apps[app_id].model_copy(
            update={"state": state, "final_status": final_status, "diagnostics": diagnostics}
        )

    def create_application(self) -> NewApplication:
        self._check_started()
        app_id = self._new_id()
        self.created.append(app_id)
        return NewApplication(application_id=app_id, maximum_resource_capability=self.max_capability)

    def submit_application(self, context: SubmissionContext) -> None:
        self._check_started()
        self.submitted.append(context)
        self.apps[context.application_id] = ApplicationReport(
            application_id=context.application_id,
            name=context.application_name,
            state=ApplicationState.ACCEPTED,
            application_type=context.application_type,
            queue=context.queue,
            user="launcher",
            start_time=datetime(2024, 1, 1),
        )

    def get_application_report(self, application_id: str) -> ApplicationReport:
        self._check_started()
        self.report_calls += 1
        if self.fail_reports:
            raise ResourceManagerError(f"{self.address} is unreachable")
        try:
            return self.apps[application_id]
        except KeyError:
            raise ApplicationNotFoundError(application_id) from None

    def get_applications(
        self,
        application_types: Optional[Iterable[str]] = None,
        states: Optional[Iterable[ApplicationState]] = None,
    ) -> List[ApplicationReport]:
        self._check_started()
        types = set(application_types or [])
        state_set = set(states or [])
        return [
            report
            for report in self.apps.values()
            if (not types or report.application_type in types) and (not state_set or report.state in state_set)
        ]


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, period: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(period)
    return predicate()


def make_response(
    status_code: int = 200,
    body: Any = None,
    headers: Optional[Dict[str, str]] = None,
    content: Optional[bytes] = None,
) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response.reason = "OK" if status_code < 400 else "Error"
    if content is not None:
        response._content = content
    else:
        response._content = b"" if body is None else json.dumps(body).encode("utf-8")
    response.headers.update(headers or {})
    return response
