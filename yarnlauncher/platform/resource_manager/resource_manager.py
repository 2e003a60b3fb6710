import abc
from typing import Iterable, List, Optional

from yarnlauncher.schemas import ApplicationReport, ApplicationState, NewApplication, SubmissionContext


class ResourceManagerError(Exception):
    pass


class ApplicationNotFoundError(ResourceManagerError):
    pass


class ResourceManagerNotStartedError(ResourceManagerError):
    pass


class ResourceManagerInterface(abc.ABC):
    """
    Client of one cluster ResourceManager endpoint. Every RPC requires a
    prior `start()`; `stop()` releases the connection and is idempotent.
    """

    def __init__(self, address: str) -> None:
        self.address = address
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def _check_started(self) -> None:
        if not self._started:
            raise ResourceManagerNotStartedError(f"{self!r} has not been started")

    def start(self) -> None:
        self._started = True

    def stop(self) -> None:
        self._started = False

    @abc.abstractmethod
    def create_application(self) -> NewApplication:
        """
        Reserve a new application id. The returned maximum resource capability
        bounds what the application master may request.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def submit_application(self, context: SubmissionContext) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def get_application_report(self, application_id: str) -> ApplicationReport:
        """Raises ApplicationNotFoundError if the RM does not know `application_id`"""
        raise NotImplementedError

    @abc.abstractmethod
    def get_applications(
        self,
        application_types: Optional[Iterable[str]] = None,
        states: Optional[Iterable[ApplicationState]] = None,
    ) -> List[ApplicationReport]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.address})"
