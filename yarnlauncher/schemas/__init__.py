from .application import (
    RECONNECTABLE_STATES,
    TERMINAL_STATES,
    ApplicationAccessType,
    ApplicationReport,
    ApplicationState,
    ContainerLaunchContext,
    FinalApplicationStatus,
    LocalResource,
    LocalResourceType,
    LocalResourceVisibility,
    NewApplication,
    Resource,
    ResourceUsage,
    SubmissionContext,
)
from .filesystem import FileStatus

__all__ = [
    "RECONNECTABLE_STATES",
    "TERMINAL_STATES",
    "ApplicationAccessType",
    "ApplicationReport",
    "ApplicationState",
    "ContainerLaunchContext",
    "FileStatus",
    "FinalApplicationStatus",
    "LocalResource",
    "LocalResourceType",
    "LocalResourceVisibility",
    "NewApplication",
    "Resource",
    "ResourceUsage",
    "SubmissionContext",
]
