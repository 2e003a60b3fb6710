"""
Login and periodic delegation-token renewal for long-running launches.

Refreshers are looked up by alias in `TokenRefresher._registry`; any other
name is imported as a dotted class path. Constructors may accept any prefix
of (settings, fs, token_file_path, lifecycle_manager): the longest one the
class accepts is used.
"""
import inspect
import logging
import subprocess
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Type

from yarnlauncher.config import import_string
from yarnlauncher.launcher.lifecycle import ClusterLifecycleManager, MessageSubType
from yarnlauncher.launcher.services import LauncherService
from yarnlauncher.launcher.tokens import fetch_filesystem_tokens
from yarnlauncher.platform.filesystem import FileSystem
from yarnlauncher.util import run_with_timeout

from .credentials import Credentials, current_user_credentials

if TYPE_CHECKING:
    from yarnlauncher.config import Settings

logger = logging.getLogger(__name__)


class TokenRefresherError(Exception):
    pass


class TokenRefresherConstructionError(TokenRefresherError):
    pass


class KerberosLoginError(TokenRefresherError):
    pass


class TokenRefresher(LauncherService):
    _registry: Dict[str, Type["TokenRefresher"]] = {}

    def __init__(
        self,
        settings: "Settings",
        fs: FileSystem,
        token_file_path: str,
        lifecycle_manager: Optional[ClusterLifecycleManager] = None,
    ) -> None:
        super().__init__(service_period=settings.security.renew_interval_sec)
        self.settings = settings
        self.fs = fs
        self.token_file_path = token_file_path
        self.lifecycle_manager = lifecycle_manager
        self.logged_in = False

    def login(self) -> None:
        raise NotImplementedError

    def renew_tokens(self) -> None:
        raise NotImplementedError

    def schedule_token_renewal(self) -> None:
        if not self.started:
            logger.info(f"Scheduling token renewal every {self.service_period} seconds")
            self.start()

    def login_and_schedule_token_renewal(self) -> None:
        self.login()
        self.schedule_token_renewal()

    def run_cycle(self) -> None:
        self.renew_tokens()

    def write_token_file(self, credentials: Credentials) -> None:
        logger.info(f"Writing {len(credentials)} tokens to {self.fs.qualify(self.token_file_path)}")
        self.fs.write_bytes(self.token_file_path, credentials.write_token_storage(), overwrite=True)

    def notify_token_file_updated(self) -> None:
        if self.lifecycle_manager is not None:
            self.lifecycle_manager.send_message(MessageSubType.TOKEN_FILE_UPDATED)


class DelegationTokenRefresher(TokenRefresher):
    """Fetches filesystem delegation tokens into the current user's credentials"""

    def _fetch(self) -> Credentials:
        fresh = Credentials()
        fetch_filesystem_tokens(
            fresh,
            self.fs,
            self.settings.security.rm_principal,
            self.settings.filesystem.other_namenodes,
            self.settings.filesystem.build,
        )
        current = current_user_credentials()
        current.add_all(fresh)
        return current

    def login(self) -> None:
        self.write_token_file(self._fetch())
        self.logged_in = True
        logger.info("Logged in and obtained delegation tokens")

    def renew_tokens(self) -> None:
        logger.info("Renewing delegation tokens")
        self.write_token_file(self._fetch())
        self.notify_token_file_updated()


class KeytabTokenRefresher(DelegationTokenRefresher):
    """Re-acquires a Kerberos ticket from a keytab before each token fetch"""

    def __init__(
        self,
        settings: "Settings",
        fs: FileSystem,
        token_file_path: str,
        lifecycle_manager: Optional[ClusterLifecycleManager] = None,
    ) -> None:
        super().__init__(settings, fs, token_file_path, lifecycle_manager)
        if settings.security.keytab is None or not settings.security.principal:
            raise TokenRefresherError("The keytab refresher requires security.keytab and security.principal")
        self.keytab = settings.security.keytab
        self.principal = settings.security.principal

    def kinit(self) -> None:
        args = ["kinit", "-kt", str(self.keytab), self.principal]
        logger.debug(f"Running: {' '.join(args)}")
        p = subprocess.run(args, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, encoding="utf-8")
        if p.returncode != 0:
            raise KerberosLoginError(f"kinit for {self.principal} failed: {p.stdout}")

    def login(self) -> None:
        self.kinit()
        super().login()

    def renew_tokens(self) -> None:
        self.kinit()
        super().renew_tokens()


TokenRefresher._registry.update(
    {
        "default": DelegationTokenRefresher,
        "delegation-token": DelegationTokenRefresher,
        "keytab": KeytabTokenRefresher,
    }
)


def resolve_refresher_class(name: str) -> Type[TokenRefresher]:
    cls = TokenRefresher._registry.get(name.strip().lower())
    if cls is None:
        cls = import_string(name)
    if not isinstance(cls, type) or not issubclass(cls, TokenRefresher):
        raise TypeError(f"{name} is not a TokenRefresher")
    return cls


def invoke_longest_constructor(cls: type, args: Sequence[Any]) -> Any:
    """Call `cls` with the longest prefix of `args` its signature accepts"""
    signature = inspect.signature(cls)
    for n in range(len(args), -1, -1):
        try:
            signature.bind(*args[:n])
        except TypeError:
            continue
        return cls(*args[:n])
    raise TypeError(f"No constructor of {cls.__name__} accepts a prefix of {len(args)} arguments")


def build_token_refresher(
    name: str,
    settings: "Settings",
    fs: FileSystem,
    token_file_path: str,
    lifecycle_manager: Optional[ClusterLifecycleManager] = None,
    timeout: Optional[float] = None,
) -> TokenRefresher:
    args: List[Any] = [settings, fs, token_file_path]
    if lifecycle_manager is not None:
        args.append(lifecycle_manager)

    def _construct() -> TokenRefresher:
        return invoke_longest_constructor(resolve_refresher_class(name), args)  # type: ignore[no-any-return]

    try:
        return run_with_timeout(_construct, timeout)
    except Exception as exc:
        raise TokenRefresherConstructionError(f"Failed to build token refresher {name!r}: {exc}") from exc
