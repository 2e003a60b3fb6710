from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ApplicationState(str, Enum):
    NEW = "NEW"
    NEW_SAVING = "NEW_SAVING"
    SUBMITTED = "SUBMITTED"
    ACCEPTED = "ACCEPTED"
    RUNNING = "RUNNING"
    FINISHED = "FINISHED"
    FAILED = "FAILED"
    KILLED = "KILLED"


# States in which a restarted launcher resumes monitoring instead of resubmitting
RECONNECTABLE_STATES: FrozenSet[ApplicationState] = frozenset(
    {
        ApplicationState.NEW,
        ApplicationState.NEW_SAVING,
        ApplicationState.SUBMITTED,
        ApplicationState.ACCEPTED,
        ApplicationState.RUNNING,
    }
)

TERMINAL_STATES: FrozenSet[ApplicationState] = frozenset(
    {
        ApplicationState.FINISHED,
        ApplicationState.FAILED,
        ApplicationState.KILLED,
    }
)


class FinalApplicationStatus(str, Enum):
    UNDEFINED = "UNDEFINED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    KILLED = "KILLED"
    ENDED = "ENDED"


class Resource(BaseModel):
    model_config = ConfigDict(frozen=True)

    memory_mb: int = Field(..., ge=0, examples=[2048])
    vcores: int = Field(..., ge=0, examples=[2])


class ResourceUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    num_used_containers: int = 0
    used_resources: Optional[Resource] = None
    memory_seconds: int = 0
    vcore_seconds: int = 0


class ApplicationReport(BaseModel):
    """Snapshot of an application's status as returned by one poll of the ResourceManager"""

    model_config = ConfigDict(frozen=True)

    application_id: str = Field(..., examples=["application_1700000000000_0042"])
    name: str
    state: ApplicationState
    final_status: FinalApplicationStatus = FinalApplicationStatus.UNDEFINED
    diagnostics: str = ""
    tracking_url: Optional[str] = None
    user: Optional[str] = None
    queue: Optional[str] = None
    application_type: Optional[str] = None
    current_attempt_id: Optional[str] = None
    start_time: Optional[datetime] = None
    finish_time: Optional[datetime] = None
    resource_usage: Optional[ResourceUsage] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class NewApplication(BaseModel):
    model_config = ConfigDict(frozen=True)

    application_id: str
    maximum_resource_capability: Resource


class LocalResourceType(str, Enum):
    FILE = "FILE"
    ARCHIVE = "ARCHIVE"
    PATTERN = "PATTERN"


class LocalResourceVisibility(str, Enum):
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"
    APPLICATION = "APPLICATION"


class LocalResource(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: Optional[str] = Field(None, description="Local path or remote URI this resource was staged from")
    resource: str = Field(..., description="Fully qualified URI of the resource in distributed storage")
    type: LocalResourceType = LocalResourceType.FILE
    visibility: LocalResourceVisibility = LocalResourceVisibility.APPLICATION
    size: int = 0
    timestamp: int = 0


class ApplicationAccessType(str, Enum):
    VIEW_APP = "VIEW_APP"
    MODIFY_APP = "MODIFY_APP"


class ContainerLaunchContext(BaseModel):
    commands: List[str] = []
    local_resources: Dict[str, LocalResource] = {}
    environment: Dict[str, str] = {}
    application_acls: Dict[ApplicationAccessType, str] = {}
    tokens: Optional[bytes] = Field(None, description="Serialized credential bundle (token storage format)")


class SubmissionContext(BaseModel):
    application_id: str
    application_name: str
    application_type: str
    queue: str = "default"
    priority: int = 0
    max_app_attempts: int = 1
    application_tags: List[str] = []
    resource: Resource
    am_container_spec: ContainerLaunchContext
