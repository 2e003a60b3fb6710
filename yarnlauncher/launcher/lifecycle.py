import logging
import threading
from enum import Enum
from typing import Callable, List, Optional

from yarnlauncher.util import AtomicBoolean

logger = logging.getLogger(__name__)


class MessageSubType(str, Enum):
    APPLICATION_MASTER_SHUTDOWN = "APPLICATION_MASTER_SHUTDOWN"
    TOKEN_FILE_UPDATED = "TOKEN_FILE_UPDATED"


MessageListener = Callable[[MessageSubType], None]


class ClusterLifecycleManager:
    """
    Launcher-side handle on the cluster coordination layer. It exposes whether
    the launched application is running and forwards control messages to the
    application master; the coordination protocol itself is left to the
    registered listener.
    """

    def __init__(self, cluster_name: str, listener: Optional[MessageListener] = None) -> None:
        self.cluster_name = cluster_name
        self.is_application_running_flag = AtomicBoolean(False)
        self.listener = listener
        self._lock = threading.Lock()
        self._messages: List[MessageSubType] = []
        self.started = False
        self.closed = False

    @property
    def messages(self) -> List[MessageSubType]:
        with self._lock:
            return list(self._messages)

    def start(self) -> None:
        logger.info(f"Starting cluster lifecycle manager for {self.cluster_name}")
        self.started = True

    def stop(self) -> None:
        self.started = False

    def close(self) -> None:
        self.stop()
        self.closed = True

    def send_message(self, sub_type: MessageSubType) -> None:
        logger.info(f"Sending {sub_type.value} message to the {self.cluster_name} cluster")
        with self._lock:
            self._messages.append(sub_type)
        if self.listener is not None:
            self.listener(sub_type)
