import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from yarnlauncher.platform.rest import RestClient
from yarnlauncher.platform.security.credentials import Token
from yarnlauncher.schemas import FileStatus

from .filesystem import FileSystem, FileSystemError, PathLike, join_path

logger = logging.getLogger(__name__)


def _status_from_json(parent: str, data: Dict[str, Any]) -> FileStatus:
    suffix = data.get("pathSuffix", "")
    path = join_path(parent, suffix) if suffix else parent
    return FileStatus(
        path=path,
        is_dir=data.get("type") == "DIRECTORY",
        length=int(data.get("length", 0)),
        modification_time=int(data.get("modificationTime", 0)),
    )


class WebHDFSFileSystem(FileSystem):
    """
    HDFS over the WebHDFS REST API. `uri` is the namenode's filesystem URI
    (hdfs://nn:8020) used to qualify paths; `webhdfs_url` is the HTTP endpoint
    (http://nn:9870).
    """

    API_PREFIX = "/webhdfs/v1"

    def __init__(
        self,
        uri: str,
        webhdfs_url: str,
        user_name: Optional[str] = None,
        connect_timeout: float = 3.1,
        read_timeout: float = 60.0,
        retry_count: int = 3,
    ) -> None:
        super().__init__()
        self.uri = uri
        self._client = RestClient(
            webhdfs_url.rstrip("/") + self.API_PREFIX,
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            retry_count=retry_count,
            user_name=user_name,
        )

    @staticmethod
    def _url(path: str) -> str:
        if "://" in path:
            # Strip scheme and authority from a qualified path
            path = "/" + path.split("://", 1)[1].partition("/")[2]
        return "/" + path.lstrip("/")

    def _op(self, path: str, http_method: str, op: str, **params: Any) -> requests.Response:
        self._check_open()
        return self._client.request(self._url(path), http_method, params={"op": op, **params})

    def exists(self, path: str) -> bool:
        try:
            self.get_file_status(path)
        except FileNotFoundError:
            return False
        return True

    def get_file_status(self, path: str) -> FileStatus:
        try:
            response = self._op(path, "GET", "GETFILESTATUS")
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 404:
                raise FileNotFoundError(path) from exc
            raise
        return _status_from_json(self._url(path), response.json()["FileStatus"])

    def list_status(self, path: str) -> List[FileStatus]:
        try:
            response = self._op(path, "GET", "LISTSTATUS")
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 404:
                raise FileNotFoundError(path) from exc
            raise
        parent = self._url(path)
        statuses = response.json()["FileStatuses"]["FileStatus"]
        return sorted((_status_from_json(parent, s) for s in statuses), key=lambda s: s.path)

    def mkdirs(self, path: str) -> bool:
        response = self._op(path, "PUT", "MKDIRS")
        return bool(response.json().get("boolean", False))

    def _create(self, path: str, data: bytes, overwrite: bool) -> None:
        self._check_open()
        # CREATE is a two-step operation: the namenode redirects to a datanode
        redirect = self._client.request(
            self._url(path),
            "PUT",
            params={"op": "CREATE", "overwrite": str(overwrite).lower()},
            allow_redirects=False,
        )
        location = redirect.headers.get("Location")
        if not location:
            raise FileSystemError(f"WebHDFS CREATE for {path} returned no datanode location")
        self._client.request(location, "PUT", data=data)

    def copy_from_local(self, src: PathLike, dest: str, overwrite: bool = False) -> None:
        if not overwrite and self.exists(dest):
            raise FileSystemError(f"{dest} already exists")
        data = Path(src).read_bytes()
        logger.debug(f"Uploading {src} ({len(data)} bytes) to {self.qualify(dest)}")
        self._create(dest, data, overwrite)

    def delete(self, path: str, recursive: bool = False) -> bool:
        try:
            response = self._op(path, "DELETE", "DELETE", recursive=str(recursive).lower())
        except requests.HTTPError as exc:
            raise FileSystemError(f"Failed to delete {path}: {exc}") from exc
        return bool(response.json().get("boolean", False))

    def write_bytes(self, path: str, data: bytes, overwrite: bool = True) -> None:
        self._create(path, data, overwrite)

    def read_bytes(self, path: str) -> bytes:
        try:
            response = self._op(path, "GET", "OPEN")
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 404:
                raise FileNotFoundError(path) from exc
            raise
        return response.content

    def get_delegation_token(self, renewer: Optional[str]) -> Optional[Token]:
        params = {"renewer": renewer} if renewer else {}
        response = self._op("/", "GET", "GETDELEGATIONTOKEN", **params)
        token = (response.json() or {}).get("Token")
        if not token or not token.get("urlString"):
            return None
        return Token.decode_from_url_string(token["urlString"])

    def close(self) -> None:
        self._client.close_session()
        super().close()
