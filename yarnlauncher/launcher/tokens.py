import logging
import os
from typing import Callable, Iterable, Mapping, Optional

from yarnlauncher.platform.filesystem import FileSystem
from yarnlauncher.platform.security.credentials import (
    RM_DELEGATION_TOKEN,
    Credentials,
    current_user_credentials,
)
from yarnlauncher.schemas import ContainerLaunchContext

logger = logging.getLogger(__name__)

HADOOP_TOKEN_FILE_LOCATION = "HADOOP_TOKEN_FILE_LOCATION"


def fetch_filesystem_tokens(
    credentials: Credentials,
    fs: FileSystem,
    renewer: Optional[str],
    other_namenodes: Iterable[str] = (),
    fs_builder: Optional[Callable[[str], FileSystem]] = None,
) -> int:
    """
    Add delegation tokens for `fs` and every other namenode to `credentials`,
    skipping services that already have a token. Returns the number added.
    """
    num_added = 0

    def _add(target: FileSystem) -> None:
        nonlocal num_added
        token = target.get_delegation_token(renewer)
        if token is None:
            logger.debug(f"{target!r} issued no delegation token")
            return
        if credentials.has_service(token.service):
            logger.debug(f"Already have a token for {token.service}")
            return
        credentials.add_token(token.service, token)
        num_added += 1

    _add(fs)
    for uri in other_namenodes:
        if fs_builder is None:
            logger.warning(f"Cannot fetch a delegation token for {uri}: no filesystem builder")
            continue
        with fs_builder(uri) as other_fs:
            _add(other_fs)
    return num_added


class SecurityTokenProvisioner:
    """Assembles the credential bundle shipped to the application master"""

    def __init__(
        self,
        fs: FileSystem,
        rm_address: str,
        renewer: Optional[str] = None,
        other_namenodes: Iterable[str] = (),
        fs_builder: Optional[Callable[[str], FileSystem]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.fs = fs
        self.rm_address = rm_address
        self.renewer = renewer
        self.other_namenodes = list(other_namenodes)
        self.fs_builder = fs_builder
        self.environ = os.environ if environ is None else environ

    def collect_credentials(self) -> Credentials:
        credentials = current_user_credentials().copy()

        token_file = self.environ.get(HADOOP_TOKEN_FILE_LOCATION)
        if token_file:
            logger.info(f"{HADOOP_TOKEN_FILE_LOCATION} is set to {token_file}; reading tokens from it")
            # Entries in the token file take precedence
            credentials.add_all(Credentials.read_token_storage_file(token_file))
            logger.debug(f"Tokens after merging {token_file}: {credentials.all_tokens()}")

        fetch_filesystem_tokens(credentials, self.fs, self.renewer, self.other_namenodes, self.fs_builder)
        return credentials

    def filter_credentials(self, credentials: Credentials) -> Credentials:
        # Only pass the RM token of the RM in use, or the RM fails to renew it
        final = Credentials()
        for token in credentials.all_tokens():
            if token.kind == RM_DELEGATION_TOKEN and token.service != self.rm_address:
                logger.debug(f"Dropping {token.kind} for {token.service}")
                continue
            final.add_token(token.service, token)
        return final

    def setup_security_tokens(self, launch_context: ContainerLaunchContext) -> Credentials:
        logger.info("Setting up security tokens for the container launch context")
        final = self.filter_credentials(self.collect_credentials())
        launch_context.tokens = final.write_token_storage()
        logger.info(f"Setting container launch context with credential tokens: {final.all_tokens()}")
        return final
