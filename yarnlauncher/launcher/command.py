import math
import shlex
from datetime import datetime
from typing import Optional, Sequence

from yarnlauncher.config import InvalidSettings

JAVA_HOME_VAR = "$JAVA_HOME"
LOG_DIR_EXPANSION_VAR = "<LOG_DIR>"
STDOUT = "stdout"
STDERR = "stderr"

JVM_USER_TIMEZONE_PROPERTY = "user.timezone"
CONTAINER_LOG_DIR_PROPERTY = "yarn.launcher.container.log.dir"
CONTAINER_LOG_FILE_PROPERTY = "yarn.launcher.container.log.file"
LAUNCHER_START_TIME_PROPERTY = "yarn.launcher.start.time"
LIB_JAR_LIST_PROPERTY = "yarn.launcher.lib.jar.list"
APPLICATION_NAME_OPTION = "app_name"
APPLICATION_ID_OPTION = "app_id"


def check_jvm_memory(memory_mbs: int, xmx_ratio: float, overhead_mbs: int) -> None:
    if not 0.0 <= xmx_ratio <= 1.0:
        raise InvalidSettings(f"jvm_memory_xmx_ratio must be between 0 and 1 (got {xmx_ratio})")
    if overhead_mbs < 0 or overhead_mbs >= memory_mbs * xmx_ratio:
        raise InvalidSettings(
            f"jvm_memory_overhead_mbs ({overhead_mbs}) must be non-negative and less than "
            f"memory_mbs * jvm_memory_xmx_ratio ({memory_mbs} * {xmx_ratio})"
        )


def compute_heap_size(memory_mbs: int, xmx_ratio: float, overhead_mbs: int) -> int:
    return math.floor(memory_mbs * xmx_ratio) - overhead_mbs


def log_file_stem(main_class: str, log_file_name: Optional[str] = None) -> str:
    return log_file_name or main_class.rsplit(".", 1)[-1]


def build_application_master_command(
    application_name: str,
    application_id: str,
    memory_mbs: int,
    xmx_ratio: float,
    overhead_mbs: int,
    main_class: str,
    container_timezone: str,
    start_time: datetime,
    lib_jar_names: Sequence[str] = (),
    jvm_args: Sequence[str] = (),
    proxy_jvm_args: Sequence[str] = (),
    log_file_name: Optional[str] = None,
) -> str:
    """
    The shell command that starts the application master JVM in its container.
    `<LOG_DIR>` and `$JAVA_HOME` are expanded by the NodeManager.
    """
    stem = log_file_stem(main_class, log_file_name)
    heap_mbs = compute_heap_size(memory_mbs, xmx_ratio, overhead_mbs)
    parts = [
        f"{JAVA_HOME_VAR}/bin/java",
        f"-Xmx{heap_mbs}M",
        f"-D{JVM_USER_TIMEZONE_PROPERTY}={container_timezone}",
        f"-D{CONTAINER_LOG_DIR_PROPERTY}={LOG_DIR_EXPANSION_VAR}",
        f"-D{CONTAINER_LOG_FILE_PROPERTY}={stem}.{STDOUT}",
        f"-D{LAUNCHER_START_TIME_PROPERTY}={int(start_time.timestamp() * 1000)}",
        f"-D{LIB_JAR_LIST_PROPERTY}={','.join(lib_jar_names)}",
        *jvm_args,
        *proxy_jvm_args,
        main_class,
        f"--{APPLICATION_NAME_OPTION}",
        shlex.quote(application_name),
        f"--{APPLICATION_ID_OPTION}",
        application_id,
        f"1>{LOG_DIR_EXPANSION_VAR}/{stem}.{STDOUT}",
        f"2>{LOG_DIR_EXPANSION_VAR}/{stem}.{STDERR}",
    ]
    return " ".join(part for part in parts if part)
