import logging
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional

from yarnlauncher.platform.resource_manager import ResourceManagerError, ResourceManagerInterface
from yarnlauncher.schemas import ApplicationReport, ApplicationState

if TYPE_CHECKING:
    from yarnlauncher.config.config import ResourceManagerSettings

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], ResourceManagerInterface]


class ResourceManagerClientPool:
    """
    One client per distinct ResourceManager address: the primary address
    first, then the alternates in configured order. The client that discovers
    a reconnectable application, or the primary client when submitting, becomes
    the active client used for monitoring.
    """

    def __init__(
        self,
        primary_address: str,
        other_addresses: Iterable[str],
        client_factory: ClientFactory,
    ) -> None:
        self.primary_address = primary_address
        addresses: List[str] = [primary_address]
        for address in other_addresses:
            if address not in addresses:
                addresses.append(address)
        self._clients: Dict[str, ResourceManagerInterface] = {addr: client_factory(addr) for addr in addresses}
        self._active_address: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: "ResourceManagerSettings") -> "ResourceManagerClientPool":
        return cls(settings.address, settings.other_addresses, settings.build_client)

    @property
    def addresses(self) -> List[str]:
        return list(self._clients)

    def client(self, address: str) -> ResourceManagerInterface:
        return self._clients[address]

    @property
    def active_address(self) -> Optional[str]:
        return self._active_address

    @property
    def active(self) -> ResourceManagerInterface:
        if self._active_address is None:
            raise ResourceManagerError("No active ResourceManager client: discover or pin one first")
        return self._clients[self._active_address]

    def start_all(self) -> None:
        for client in self._clients.values():
            client.start()

    def stop_all(self) -> None:
        for address, client in self._clients.items():
            try:
                client.stop()
            except Exception:
                logger.exception(f"Failed to stop ResourceManager client for {address}")

    def find_reconnectable(
        self,
        application_name: str,
        application_types: Iterable[str],
        states: Iterable[ApplicationState],
    ) -> Optional[ApplicationReport]:
        application_types = list(application_types)
        states = list(states)
        for address, client in self._clients.items():
            for report in client.get_applications(application_types, states):
                if report.name == application_name:
                    self._active_address = address
                    return report
        return None

    def pin_primary(self) -> ResourceManagerInterface:
        self._active_address = self.primary_address
        return self._clients[self.primary_address]

    def __len__(self) -> int:
        return len(self._clients)
