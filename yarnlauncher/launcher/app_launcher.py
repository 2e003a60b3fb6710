import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Union

from yarnlauncher.platform.filesystem import FileSystem, join_path
from yarnlauncher.schemas import (
    RECONNECTABLE_STATES,
    ApplicationAccessType,
    ApplicationReport,
    ContainerLaunchContext,
    FinalApplicationStatus,
    LocalResourceType,
    Resource,
    SubmissionContext,
)
from yarnlauncher.util import AtomicBoolean, AtomicCounter, Closer, run_with_timeout

from .client_pool import ResourceManagerClientPool
from .command import build_application_master_command, check_jvm_memory
from .jar_cache import calculate_per_month_cache_path, retain_k_latest_cache_paths
from .lifecycle import ClusterLifecycleManager
from .notify import EmailNotifier
from .resources import (
    FrozenManifest,
    Manifest,
    MissingLibraryDirectoryError,
    ResourceBundler,
    freeze_manifest,
    negotiate_resources,
)
from .services import LauncherService, LogCopier, PeriodicTask, ServiceManager
from .tokens import SecurityTokenProvisioner

if TYPE_CHECKING:
    from yarnlauncher.config import Settings
    from yarnlauncher.platform.security.refresher import TokenRefresher

logger = logging.getLogger(__name__)

APPLICATION_TYPE = "YARN_LAUNCHER"
AZKABAN_LAUNCHER_MODE = "azkaban"

APP_MASTER_WORK_DIR_NAME = "appmaster"
CONTAINER_WORK_DIR_NAME = "container"
LIB_JARS_DIR_NAME = "_libjars"
APP_JARS_DIR_NAME = "_appjars"
APP_FILES_DIR_NAME = "_appfiles"
APP_LOGS_DIR_NAME = "_applogs"

CONTAINER_CLASSPATH = [
    "$PWD",
    "$PWD/*",
    "$HADOOP_CONF_DIR",
    "$HADOOP_COMMON_HOME/share/hadoop/common/*",
    "$HADOOP_COMMON_HOME/share/hadoop/common/lib/*",
    "$HADOOP_HDFS_HOME/share/hadoop/hdfs/*",
    "$HADOOP_HDFS_HOME/share/hadoop/hdfs/lib/*",
    "$HADOOP_YARN_HOME/share/hadoop/yarn/*",
    "$HADOOP_YARN_HOME/share/hadoop/yarn/lib/*",
]


class LauncherState(str, Enum):
    IDLE = "IDLE"
    DISCOVERING = "DISCOVERING"
    RECONNECTED = "RECONNECTED"
    SUBMITTING = "SUBMITTING"
    MONITORING = "MONITORING"
    SHUTTING_DOWN = "SHUTTING_DOWN"
    STOPPED = "STOPPED"


@dataclass(frozen=True)
class ApplicationReportArrivalEvent:
    report: ApplicationReport


@dataclass(frozen=True)
class ApplicationReportFailureEvent:
    error: BaseException


StatusEvent = Union[ApplicationReportArrivalEvent, ApplicationReportFailureEvent]


class StatusChannel:
    """Delivers poll events synchronously, on the publishing thread, to a single subscriber"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriber: Optional[Callable[[StatusEvent], None]] = None

    def subscribe(self, handler: Callable[[StatusEvent], None]) -> None:
        with self._lock:
            if self._subscriber is not None and self._subscriber != handler:
                raise RuntimeError("StatusChannel already has a subscriber")
            self._subscriber = handler

    def publish(self, event: StatusEvent) -> None:
        with self._lock:
            handler = self._subscriber
        if handler is None:
            logger.warning(f"Dropping {event.__class__.__name__}: no subscriber")
            return
        handler(event)


class YarnAppLauncher:
    """
    Launches an application on YARN, or reconnects to an already running
    instance with the same name, then polls its status until it completes or
    becomes unreachable, and drives an orderly shutdown.
    """

    def __init__(
        self,
        settings: "Settings",
        client_pool: Optional[ResourceManagerClientPool] = None,
        filesystem_factory: Optional[Callable[[], FileSystem]] = None,
        lifecycle_manager: Optional[ClusterLifecycleManager] = None,
        notifier: Optional[EmailNotifier] = None,
        start_time: Optional[datetime] = None,
    ) -> None:
        am = settings.app_master
        check_jvm_memory(am.memory_mbs, am.jvm_memory_xmx_ratio, am.jvm_memory_overhead_mbs)

        self.settings = settings
        self.application_name = settings.application_name
        self.detach_on_exit = settings.detach_on_exit
        self.start_time = start_time or datetime.now()
        self.client_pool = client_pool or ResourceManagerClientPool.from_settings(settings.resource_manager)
        self.filesystem_factory: Callable[[], FileSystem] = filesystem_factory or settings.filesystem.build
        self.lifecycle_manager = lifecycle_manager
        self.notifier = notifier

        self.closer = Closer()
        self.fs = self.closer.register(self.filesystem_factory())
        if lifecycle_manager is not None:
            self.closer.register(lifecycle_manager)

        self.status_channel = StatusChannel()
        self.state = LauncherState.IDLE
        self.application_id: Optional[str] = None
        self.application_completed = False
        self.last_report: Optional[ApplicationReport] = None
        self.submission_context: Optional[SubmissionContext] = None
        self.lib_jar_names: List[str] = []
        self.failure_count = AtomicCounter()

        self.token_refresher: "Optional[TokenRefresher]" = None
        self.service_manager: Optional[ServiceManager] = None
        self.status_monitor: Optional[PeriodicTask] = None

        self.stopped = False
        self._stop_lock = threading.Lock()
        self._stop_started = False
        self._stopped_event = threading.Event()
        self._notification_sent = AtomicBoolean(False)

    @property
    def rpc_timeout(self) -> float:
        return self.settings.rpc_timeout_sec

    @property
    def jar_cache_enabled(self) -> bool:
        return self.settings.jar_cache.enabled

    @property
    def jar_cache_path(self) -> str:
        return calculate_per_month_cache_path(self.settings.jar_cache.root_dir, self.start_time)

    def app_work_dir(self, application_id: str) -> str:
        return join_path(self.settings.work_dir_root, self.application_name, application_id)

    @property
    def token_file_path(self) -> str:
        return join_path(self.settings.work_dir_root, self.application_name, self.settings.security.token_file_name)

    def sanitize_application_id(self, application_id: str) -> str:
        """
        In Azkaban detach mode, Azkaban kills YARN applications it finds in the
        launcher's logs by their "application_" prefix, so the prefix is dropped.
        """
        if self.detach_on_exit and self.settings.launcher_mode.lower() == AZKABAN_LAUNCHER_MODE:
            return application_id.replace("application_", "")
        return application_id

    def is_application_running(self) -> bool:
        return self.application_id is not None and not self.application_completed and not self.detach_on_exit

    def launch(self) -> None:
        self.status_channel.subscribe(self._dispatch)

        # Login to obtain tokens before talking to the ResourceManager
        if self.settings.security.key_management_enabled:
            self.token_refresher = self._build_token_refresher()
            self.token_refresher.login_and_schedule_token_renewal()

        self.client_pool.start_all()

        self.state = LauncherState.DISCOVERING
        self.application_id = self.get_reconnectable_application_id()
        if self.application_id is None:
            logger.info("No reconnectable application found so submitting a new application")
            self.client_pool.pin_primary()
            self.state = LauncherState.SUBMITTING
            self.application_id = self.setup_and_submit_application()
        else:
            self.state = LauncherState.RECONNECTED

        if self.lifecycle_manager is not None:
            self.lifecycle_manager.start()
            self.lifecycle_manager.is_application_running_flag.compare_and_set(False, self.is_application_running())

        self.state = LauncherState.MONITORING
        self.status_monitor = PeriodicTask(
            self._poll_application_report,
            period=self.settings.app_report_interval_sec,
            name="ApplicationStatusMonitor",
        )
        self.status_monitor.start()
        self._add_services()

    def get_reconnectable_application_id(self) -> Optional[str]:
        report = self.client_pool.find_reconnectable(self.application_name, [APPLICATION_TYPE], RECONNECTABLE_STATES)
        if report is None:
            return None
        sanitized_id = self.sanitize_application_id(report.application_id)
        logger.info(f"Found reconnectable application with application ID: {sanitized_id}")
        logger.info(f"Application Tracking URL: {report.tracking_url}")
        return report.application_id

    def _check_lib_jars_dir(self) -> None:
        lib_jars_dir = self.settings.app_master.lib_jars_dir
        if lib_jars_dir is not None and not Path(lib_jars_dir).is_dir():
            raise MissingLibraryDirectoryError(
                f"The library directory {lib_jars_dir} was not found; aborting the application"
            )

    def setup_and_submit_application(self) -> str:
        self._check_lib_jars_dir()
        client = self.client_pool.active

        logger.info("Creating new YARN application")
        new_app = run_with_timeout(client.create_application, self.rpc_timeout)
        application_id = new_app.application_id
        logger.info(f"Created new YARN application: {self.sanitize_application_id(application_id)}")

        am = self.settings.app_master
        resource = negotiate_resources(
            Resource(memory_mb=am.memory_mbs, vcores=am.cores),
            new_app.maximum_resource_capability,
        )
        # The heap is sized from the negotiated memory, which may be below the configured amount
        check_jvm_memory(resource.memory_mb, am.jvm_memory_xmx_ratio, am.jvm_memory_overhead_mbs)

        bundler = ResourceBundler(self.fs, self.jar_cache_enabled)
        am_resources = self.add_app_master_local_resources(application_id, bundler)
        launch_context = ContainerLaunchContext(
            local_resources=dict(am_resources),
            environment=self.build_environment(),
            commands=[self.build_application_master_command(application_id, resource.memory_mb)],
        )

        if self.jar_cache_enabled:
            # Keep at least the current and last period to cover executions running for up to a month
            cleaned = retain_k_latest_cache_paths(
                self.settings.jar_cache.root_dir,
                self.settings.jar_cache.retain_periods,
                self.fs,
                current=self.jar_cache_path,
            )
            if not cleaned:
                logger.warning("Failed to delete older jar cache directories")

        launch_context.application_acls = {ApplicationAccessType.VIEW_APP: self.settings.view_acl}

        if self.settings.security.enabled:
            self.build_token_provisioner().setup_security_tokens(launch_context)

        context = SubmissionContext(
            application_id=application_id,
            application_name=self.application_name,
            application_type=APPLICATION_TYPE,
            queue=self.settings.queue,
            priority=0,
            max_app_attempts=am.max_attempts,
            application_tags=list(dict.fromkeys(self.settings.tag_list)),
            resource=resource,
            am_container_spec=launch_context,
        )
        self.add_container_local_resources(application_id, bundler)

        logger.info(f"Submitting application {self.sanitize_application_id(application_id)}")
        run_with_timeout(client.submit_application, self.rpc_timeout, context)
        self.submission_context = context
        logger.info("Application successfully submitted and accepted")

        report = run_with_timeout(client.get_application_report, self.rpc_timeout, application_id)
        if report.application_id != application_id:
            logger.error(
                f"Application id mismatch: submitted {self.sanitize_application_id(application_id)} "
                f"but the ResourceManager reports {self.sanitize_application_id(report.application_id)}"
            )
        logger.info(f"Application Name: {report.name}")
        logger.info(f"Application Tracking URL: {report.tracking_url}")
        logger.info(f"Application User: {report.user} Queue: {report.queue}")
        return application_id

    def add_app_master_local_resources(self, application_id: str, bundler: ResourceBundler) -> FrozenManifest:
        app_work_dir = self.app_work_dir(application_id)
        jars_root_dir = self.jar_cache_path if self.jar_cache_enabled else app_work_dir
        am_work_dir = join_path(app_work_dir, APP_MASTER_WORK_DIR_NAME)
        am_jars_cache_dir = join_path(jars_root_dir, APP_MASTER_WORK_DIR_NAME)
        logger.info(f"Configured application master work directory to: {am_work_dir}")
        logger.info(f"Configured application master jars directory to: {am_jars_cache_dir}")

        am = self.settings.app_master
        manifest: Manifest = {}
        if am.lib_jars_dir is not None:
            # Lib jars are shared between all containers, store at the root level
            lib_jars_dest_dir = join_path(jars_root_dir, LIB_JARS_DIR_NAME)
            unshared_dir = join_path(app_work_dir, LIB_JARS_DIR_NAME)
            self.lib_jar_names = bundler.add_lib_jars(am.lib_jars_dir, manifest, lib_jars_dest_dir, unshared_dir)
            logger.info(f"Added lib jars to {lib_jars_dest_dir} and execution-private directory {unshared_dir}")
        if am.jars:
            bundler.add_app_jars(
                am.jars,
                manifest,
                join_path(am_jars_cache_dir, APP_JARS_DIR_NAME),
                join_path(am_work_dir, APP_JARS_DIR_NAME),
            )
        if am.files_local:
            bundler.add_local_files(am.files_local, manifest, join_path(app_work_dir, APP_FILES_DIR_NAME))
        if am.files_remote:
            bundler.add_remote_files(am.files_remote, manifest, LocalResourceType.FILE)
        if am.zips_remote:
            bundler.add_remote_files(am.zips_remote, manifest, LocalResourceType.ARCHIVE)
        if am.job_conf_path is not None:
            bundler.add_job_conf_package(am.job_conf_path, join_path(app_work_dir, APP_FILES_DIR_NAME), manifest)
        return freeze_manifest(manifest)

    def add_container_local_resources(self, application_id: str, bundler: ResourceBundler) -> None:
        app_work_dir = self.app_work_dir(application_id)
        jars_root_dir = self.jar_cache_path if self.jar_cache_enabled else app_work_dir
        container_work_dir = join_path(app_work_dir, CONTAINER_WORK_DIR_NAME)
        container_jars_dir = join_path(jars_root_dir, CONTAINER_WORK_DIR_NAME)
        logger.info(f"Configured container work directory to: {container_work_dir}")

        container = self.settings.container
        if container.jars:
            bundler.add_app_jars(
                container.jars,
                None,
                join_path(container_jars_dir, APP_JARS_DIR_NAME),
                join_path(container_work_dir, APP_JARS_DIR_NAME),
            )
        if container.files_local:
            bundler.add_local_files(container.files_local, None, join_path(container_work_dir, APP_FILES_DIR_NAME))

    def build_environment(self) -> Dict[str, str]:
        return {"CLASSPATH": ":".join(CONTAINER_CLASSPATH)}

    def build_application_master_command(self, application_id: str, memory_mbs: int) -> str:
        am = self.settings.app_master
        return build_application_master_command(
            application_name=self.application_name,
            application_id=application_id,
            memory_mbs=memory_mbs,
            xmx_ratio=am.jvm_memory_xmx_ratio,
            overhead_mbs=am.jvm_memory_overhead_mbs,
            main_class=am.main_class,
            container_timezone=self.settings.container_timezone,
            start_time=self.start_time,
            lib_jar_names=self.lib_jar_names,
            jvm_args=am.jvm_args,
            proxy_jvm_args=am.proxy_jvm_args,
            log_file_name=am.log_file_name,
        )

    def build_token_provisioner(self) -> SecurityTokenProvisioner:
        return SecurityTokenProvisioner(
            self.fs,
            rm_address=self.client_pool.primary_address,
            renewer=self.settings.security.rm_principal,
            other_namenodes=self.settings.filesystem.other_namenodes,
            fs_builder=self.settings.filesystem.build,
        )

    def _build_token_refresher(self) -> "TokenRefresher":
        from yarnlauncher.platform.security.refresher import build_token_refresher

        return build_token_refresher(
            self.settings.security.refresher_class,
            self.settings,
            self.fs,
            self.token_file_path,
            lifecycle_manager=self.lifecycle_manager,
            timeout=self.rpc_timeout,
        )

    def build_log_copier(self, application_id: str) -> LogCopier:
        src_log_dir = join_path(self.app_work_dir(application_id), APP_LOGS_DIR_NAME)
        if not self.fs.exists(src_log_dir):
            self.fs.mkdirs(src_log_dir)
        sink_log_dir = Path(self.settings.log_copier.sink_log_root_dir).joinpath(self.application_name, application_id)
        return LogCopier(
            self.fs,
            src_log_dir,
            sink_log_dir,
            service_period=self.settings.log_copier.copy_period_sec,
        )

    def _add_services(self) -> None:
        assert self.application_id is not None
        # Held while building so a concurrent stop() cannot close the filesystem underneath
        with self._stop_lock:
            if self._stop_started:
                logger.info("Launcher is already stopping; not starting subsidiary services")
                self._stop_token_refresher()
                return
            services: List[LauncherService] = []
            if self.token_refresher is not None:
                logger.info("Adding the token refresher service since key management is enabled")
                services.append(self.token_refresher)
            if not self.settings.log_copier.disable_driver_copy:
                services.append(self.build_log_copier(self.application_id))
            if not services:
                return
            self.service_manager = ServiceManager(services)
            self.service_manager.start()

    def _stop_token_refresher(self) -> None:
        if self.token_refresher is None:
            return
        self.token_refresher.stop()
        self.token_refresher.join(timeout=self.settings.service_stop_timeout_sec)
        if self.token_refresher.is_alive():
            logger.error("Token refresher did not stop within the service stop timeout")

    def _poll_application_report(self) -> None:
        application_id = self.application_id
        if application_id is None or self._stop_started:
            return
        try:
            report = run_with_timeout(self.client_pool.active.get_application_report, self.rpc_timeout, application_id)
        except Exception as exc:
            logger.error(
                f"Failed to get application report for YARN application "
                f"{self.sanitize_application_id(application_id)}: {exc}"
            )
            self.status_channel.publish(ApplicationReportFailureEvent(exc))
        else:
            self.status_channel.publish(ApplicationReportArrivalEvent(report))

    def _dispatch(self, event: StatusEvent) -> None:
        if isinstance(event, ApplicationReportArrivalEvent):
            self.handle_application_report_arrival(event)
        else:
            self.handle_application_report_failure(event)

    def handle_application_report_arrival(self, event: ApplicationReportArrivalEvent) -> None:
        report = event.report
        logger.info(f"YARN application state: {report.state.value}")

        # One success resets the count of consecutive failures
        self.failure_count.set(0)
        self.last_report = report

        if report.is_terminal:
            self.application_completed = True

        if self.lifecycle_manager is not None:
            self.lifecycle_manager.is_application_running_flag.set(self.is_application_running())

        if not self.application_completed:
            return

        logger.info(f"YARN application finished with final status: {report.final_status.value}")
        if report.final_status == FinalApplicationStatus.FAILED:
            logger.error(f"YARN application failed for the following reason: {report.diagnostics}")
        try:
            self.stop()
        except Exception:
            logger.exception(f"Failed to stop the {self.__class__.__name__}")
        finally:
            self.send_shutdown_notification(report)

    def handle_application_report_failure(self, event: ApplicationReportFailureEvent) -> None:
        num_failures = self.failure_count.increment_and_get()
        max_failures = self.settings.max_get_app_report_failures
        if num_failures <= max_failures:
            return

        logger.warning(
            f"Number of consecutive failures to get the application report {num_failures} "
            f"exceeds the threshold {max_failures}"
        )
        try:
            self.stop()
        except Exception:
            logger.exception(f"Failed to stop the {self.__class__.__name__}")
        finally:
            self.send_shutdown_notification(None)

    def send_shutdown_notification(self, report: Optional[ApplicationReport]) -> None:
        if self.notifier is None:
            return
        if self._notification_sent.compare_and_set(False, True):
            self.notifier.send_shutdown_notification(report)

    def clean_up_app_work_directory(self, application_id: str) -> None:
        # The primary handle may already be closed: use a fresh one
        with self.filesystem_factory() as fs:
            app_work_dir = self.app_work_dir(application_id)
            if fs.exists(app_work_dir):
                logger.info(f"Deleting application working directory {app_work_dir}")
                fs.delete(app_work_dir, recursive=True)

    def stop(self) -> None:
        """
        Stop services, polling and RM clients, then remove the application
        working directory and close owned resources. Only the first call does
        any work; the first error encountered is re-raised after cleanup.
        """
        with self._stop_lock:
            if self._stop_started:
                return
            self._stop_started = True

        self.state = LauncherState.SHUTTING_DOWN
        logger.info(f"Stopping the {self.__class__.__name__}")
        timeout = self.settings.service_stop_timeout_sec
        errors: List[BaseException] = []
        try:
            if self.service_manager is not None:
                try:
                    self.service_manager.stop_and_wait(timeout)
                except TimeoutError as exc:
                    logger.error(f"Timeout in stopping the service manager: {exc}")
                    errors.append(exc)

            if self.status_monitor is not None and not self.status_monitor.shutdown(timeout):
                logger.error(f"Application status monitor did not stop within {timeout} seconds")

            self.client_pool.stop_all()
        finally:
            try:
                if self.application_id is not None and not self.detach_on_exit:
                    self.clean_up_app_work_directory(self.application_id)
            except Exception as exc:
                logger.exception("Failed to clean up the application working directory")
                errors.append(exc)
            finally:
                try:
                    self.closer.close()
                except Exception as exc:
                    errors.append(exc)
                finally:
                    self.stopped = True
                    self.state = LauncherState.STOPPED
                    self._stopped_event.set()

        if errors:
            raise errors[0]

    def wait_until_stopped(self, timeout: Optional[float] = None) -> bool:
        return self._stopped_event.wait(timeout=timeout)
