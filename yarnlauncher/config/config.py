import json
import logging
import os
from datetime import datetime
from importlib import import_module
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Type, Union, cast

import yaml
from pydantic import Field, ValidationError, field_serializer, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from yarnlauncher.platform.filesystem import FileSystem, WebHDFSFileSystem
from yarnlauncher.platform.resource_manager import ResourceManagerInterface
from yarnlauncher.util import config_file_logging

if TYPE_CHECKING:
    from yarnlauncher.launcher import (  # noqa: F401
        ClusterLifecycleManager,
        EmailNotifier,
        ResourceManagerClientPool,
        YarnAppLauncher,
    )

logger = logging.getLogger(__name__)

SETTINGS_PATH_ENV = "YARN_LAUNCHER_SETTINGS_PATH"


class InvalidSettings(ValueError):
    pass


def get_class_path(cls: type) -> str:
    return cls.__module__ + "." + cls.__name__


def import_string(dotted_path: str) -> Any:
    """
    Stolen from pydantic. Import a dotted module path and return the attribute/class designated by the
    last name in the path. Raise ImportError if the import fails.
    """
    try:
        module_path, class_name = dotted_path.strip(" ").rsplit(".", 1)
    except ValueError as e:
        raise ImportError(f'"{dotted_path}" doesn\'t look like a module path') from e

    module = import_module(module_path)
    try:
        return getattr(module, class_name)
    except AttributeError as e:
        raise ImportError(f'Module "{module_path}" does not define a "{class_name}" attribute') from e


def _load_subclass(v: Any, base: type, field_name: str) -> type:
    try:
        loaded = import_string(v) if isinstance(v, str) else v
    except ImportError as exc:
        raise ValueError(str(exc)) from exc
    if not isinstance(loaded, type) or not issubclass(loaded, base):
        raise ValueError(f"{field_name} must subclass {get_class_path(base)}")
    return loaded


class LoggingConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="YARN_LAUNCHER_LOGGING_", extra="forbid")

    level: str = "INFO"
    format: str = "%(asctime)s.%(msecs)03d | %(threadName)s | %(levelname)s | %(name)s:%(lineno)s] %(message)s"
    datefmt: str = "%Y-%m-%d %H:%M:%S"
    buffer_num_records: int = 1024
    flush_period: int = 30


class ResourceManagerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="YARN_LAUNCHER_RM_", extra="forbid")

    address: str = "localhost:8088"
    other_addresses: List[str] = []
    client_class: Type[ResourceManagerInterface] = Field(
        "yarnlauncher.platform.resource_manager.YarnRestResourceManager",
        validate_default=True,
    )
    connect_timeout: float = 3.1
    read_timeout: float = 60.0
    retry_count: int = 3
    user_name: Optional[str] = None

    @field_validator("client_class", mode="before")
    @classmethod
    def load_client_class(cls, v: Any) -> Type[ResourceManagerInterface]:
        return cast(Type[ResourceManagerInterface], _load_subclass(v, ResourceManagerInterface, "client_class"))

    @field_serializer("client_class")
    def dump_client_class(self, v: type) -> str:
        return get_class_path(v)

    def build_client(self, address: str) -> ResourceManagerInterface:
        kwargs = self.model_dump(exclude={"client_class", "address", "other_addresses"})
        return self.client_class(address=address, **kwargs)  # type: ignore[call-arg]


class FileSystemSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="YARN_LAUNCHER_FS_", extra="forbid")

    uri: str = "file:///"
    filesystem_class: Type[FileSystem] = Field(
        "yarnlauncher.platform.filesystem.LocalFileSystem",
        validate_default=True,
    )
    webhdfs_url: Optional[str] = None
    webhdfs_port: int = 9870
    other_namenodes: List[str] = []
    user_name: Optional[str] = None
    connect_timeout: float = 3.1
    read_timeout: float = 60.0

    @field_validator("filesystem_class", mode="before")
    @classmethod
    def load_filesystem_class(cls, v: Any) -> Type[FileSystem]:
        return cast(Type[FileSystem], _load_subclass(v, FileSystem, "filesystem_class"))

    @field_serializer("filesystem_class")
    def dump_filesystem_class(self, v: type) -> str:
        return get_class_path(v)

    def webhdfs_url_for(self, uri: str) -> str:
        if uri == self.uri and self.webhdfs_url:
            return self.webhdfs_url
        host = uri.split("://", 1)[-1].split("/", 1)[0].split(":", 1)[0]
        return f"http://{host}:{self.webhdfs_port}"

    def build(self, uri: Optional[str] = None) -> FileSystem:
        """
        Create a new filesystem handle for `uri` (default: the primary filesystem).
        Every call returns a fresh, independently closeable handle.
        """
        uri = uri or self.uri
        if issubclass(self.filesystem_class, WebHDFSFileSystem):
            return self.filesystem_class(
                uri=uri,
                webhdfs_url=self.webhdfs_url_for(uri),
                user_name=self.user_name,
                connect_timeout=self.connect_timeout,
                read_timeout=self.read_timeout,
            )
        return self.filesystem_class(uri=uri)  # type: ignore[call-arg]


class AppMasterSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="YARN_LAUNCHER_AM_", extra="forbid")

    memory_mbs: int = Field(512, gt=0)
    cores: int = Field(1, gt=0)
    jvm_memory_xmx_ratio: float = 1.0
    jvm_memory_overhead_mbs: int = 0
    jvm_args: List[str] = []
    proxy_jvm_args: List[str] = []
    main_class: str = "com.example.yarn.ApplicationMaster"
    log_file_name: Optional[str] = None
    max_attempts: int = Field(1, ge=1)
    lib_jars_dir: Optional[Path] = None
    jars: List[Path] = []
    files_local: List[Path] = []
    files_remote: List[str] = []
    zips_remote: List[str] = []
    job_conf_path: Optional[Path] = None

    @model_validator(mode="after")
    def validate_jvm_memory(self) -> "AppMasterSettings":
        from yarnlauncher.launcher.command import check_jvm_memory

        check_jvm_memory(self.memory_mbs, self.jvm_memory_xmx_ratio, self.jvm_memory_overhead_mbs)
        return self


class ContainerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="YARN_LAUNCHER_CONTAINER_", extra="forbid")

    jars: List[Path] = []
    files_local: List[Path] = []


class JarCacheSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="YARN_LAUNCHER_JAR_CACHE_", extra="forbid")

    enabled: bool = False
    root_dir: str = "/tmp/yarn-launcher/jar-cache"
    retain_periods: int = Field(2, ge=1)


class SecuritySettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="YARN_LAUNCHER_SECURITY_", extra="forbid")

    enabled: bool = False
    key_management_enabled: bool = False
    refresher_class: str = "default"
    token_file_name: str = ".token"
    rm_principal: Optional[str] = None
    renew_interval_sec: float = Field(12 * 3600, gt=0)
    keytab: Optional[Path] = None
    principal: Optional[str] = None


class LogCopierSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="YARN_LAUNCHER_LOG_COPIER_", extra="forbid")

    disable_driver_copy: bool = False
    sink_log_root_dir: Path = Path("logs")
    copy_period_sec: float = Field(60, gt=0)


class NotificationSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="YARN_LAUNCHER_NOTIFY_", extra="forbid")

    email_on_shutdown: bool = False
    smtp_host: str = "localhost"
    smtp_port: int = 25
    sender: str = "yarn-launcher@localhost"
    recipients: List[str] = []


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="YARN_LAUNCHER_", extra="forbid")

    application_name: str = "YarnLauncherApplication"
    queue: str = "default"
    view_acl: str = "*"
    app_report_interval_sec: float = Field(60, gt=0)
    max_get_app_report_failures: int = Field(4, ge=0)
    container_timezone: str = "America/Los_Angeles"
    detach_on_exit: bool = False
    launcher_mode: str = ""
    application_tags: Optional[str] = None
    work_dir_root: str = "/tmp/yarn-launcher/work"
    service_stop_timeout_sec: float = 300
    rpc_timeout_sec: float = 60
    lifecycle_manager_enabled: bool = False

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    resource_manager: ResourceManagerSettings = Field(default_factory=ResourceManagerSettings)
    filesystem: FileSystemSettings = Field(default_factory=FileSystemSettings)
    app_master: AppMasterSettings = Field(default_factory=AppMasterSettings)
    container: ContainerSettings = Field(default_factory=ContainerSettings)
    jar_cache: JarCacheSettings = Field(default_factory=JarCacheSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    log_copier: LogCopierSettings = Field(default_factory=LogCopierSettings)
    notification: NotificationSettings = Field(default_factory=NotificationSettings)

    @property
    def tag_list(self) -> List[str]:
        if not self.application_tags:
            return []
        return [tag.strip() for tag in self.application_tags.split(",") if tag.strip()]

    def save(self, path: Union[str, Path]) -> None:
        with open(path, "w") as fp:
            fp.write(self.dump_yaml())

    def dump_yaml(self) -> str:
        return cast(
            str,
            yaml.dump(
                json.loads(self.model_dump_json()),
                sort_keys=False,
                indent=4,
            ),
        )

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Settings":
        with open(path) as fp:
            raw_data = yaml.safe_load(fp) or {}
        try:
            return cls(**raw_data)
        except ValidationError as exc:
            raise InvalidSettings(f"{path} is invalid:\n{exc}") from exc


class LauncherConfig:
    """
    Uses above settings to build components and provide dependencies
    No component should refer to external settings or set its own dependencies
    Instead, this class builds and injects needed settings/dependencies at runtime
    """

    def __init__(self, settings_path: Union[str, Path, None] = None, settings: Optional[Settings] = None) -> None:
        if settings is not None:
            if not isinstance(settings, Settings):
                raise ValueError(
                    "If you're passing the settings kwarg, it must be an instance of yarnlauncher.config.Settings. "
                    "Otherwise, leave settings=None to load the settings file."
                )
            self.settings_path: Optional[Path] = None
            self.settings = settings
            return

        path = Path(settings_path or os.environ.get(SETTINGS_PATH_ENV) or "settings.yml")
        if not path.is_file():
            raise FileNotFoundError(f"Settings file {path} does not exist")
        self.settings_path = path.resolve()
        self.settings = Settings.load(self.settings_path)

    @property
    def log_path(self) -> Path:
        return Path(self.settings.log_copier.sink_log_root_dir).joinpath(self.settings.application_name)

    def build_filesystem_factory(self) -> Callable[[], FileSystem]:
        return self.settings.filesystem.build

    def build_client_pool(self) -> "ResourceManagerClientPool":
        from yarnlauncher.launcher import ResourceManagerClientPool

        return ResourceManagerClientPool.from_settings(self.settings.resource_manager)

    def build_lifecycle_manager(self) -> "Optional[ClusterLifecycleManager]":
        from yarnlauncher.launcher import ClusterLifecycleManager

        if not self.settings.lifecycle_manager_enabled:
            return None
        return ClusterLifecycleManager(self.settings.application_name)

    def build_notifier(self) -> "Optional[EmailNotifier]":
        from yarnlauncher.launcher import EmailNotifier

        if not self.settings.notification.email_on_shutdown:
            return None
        return EmailNotifier.from_settings(self.settings.notification, self.settings.application_name)

    def build_launcher(self) -> "YarnAppLauncher":
        from yarnlauncher.launcher import YarnAppLauncher

        return YarnAppLauncher(
            self.settings,
            client_pool=self.build_client_pool(),
            filesystem_factory=self.build_filesystem_factory(),
            lifecycle_manager=self.build_lifecycle_manager(),
            notifier=self.build_notifier(),
        )

    def enable_logging(self, basename: str, filename: Union[str, Path, None] = None) -> Dict[str, Any]:
        if filename is None:
            ts = datetime.now().strftime("%Y-%m-%d_%H%M%S")
            log_path = self.log_path.joinpath(f"{basename}_{ts}.log")
        else:
            log_path = Path(filename)
        config_file_logging(
            filename=log_path,
            **self.settings.logging.model_dump(),
        )
        return {"filename": log_path, **self.settings.logging.model_dump()}
