from .app_launcher import APPLICATION_TYPE, LauncherState, StatusChannel, YarnAppLauncher
from .client_pool import ResourceManagerClientPool
from .jar_cache import calculate_per_month_cache_path, retain_k_latest_cache_paths
from .lifecycle import ClusterLifecycleManager, MessageSubType
from .notify import EmailNotifier
from .resources import (
    MissingLibraryDirectoryError,
    ResourceBundleError,
    ResourceBundler,
    ResourceUploadError,
    calculate_dest_jar_path,
    negotiate_resources,
)
from .services import LauncherService, LogCopier, PeriodicTask, ServiceManager
from .tokens import SecurityTokenProvisioner

__all__ = [
    "APPLICATION_TYPE",
    "LauncherState",
    "StatusChannel",
    "YarnAppLauncher",
    "ResourceManagerClientPool",
    "calculate_per_month_cache_path",
    "retain_k_latest_cache_paths",
    "ClusterLifecycleManager",
    "MessageSubType",
    "EmailNotifier",
    "MissingLibraryDirectoryError",
    "ResourceBundleError",
    "ResourceBundler",
    "ResourceUploadError",
    "calculate_dest_jar_path",
    "negotiate_resources",
    "LauncherService",
    "LogCopier",
    "PeriodicTask",
    "ServiceManager",
    "SecurityTokenProvisioner",
]
