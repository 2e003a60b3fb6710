from .resource_manager import (
    ApplicationNotFoundError,
    ResourceManagerError,
    ResourceManagerInterface,
    ResourceManagerNotStartedError,
)
from .yarn_rest import YarnRestResourceManager

__all__ = [
    "ResourceManagerInterface",
    "YarnRestResourceManager",
    "ResourceManagerError",
    "ApplicationNotFoundError",
    "ResourceManagerNotStartedError",
]
