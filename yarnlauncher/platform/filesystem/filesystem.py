import abc
import posixpath
from pathlib import Path
from typing import Any, List, Optional, Union

from yarnlauncher.platform.security.credentials import Token
from yarnlauncher.schemas import FileStatus

PathLike = Union[Path, str]


class FileSystemError(OSError):
    pass


class FileSystemClosedError(FileSystemError):
    pass


def join_path(base: str, *parts: str) -> str:
    return posixpath.join(base, *parts)


class FileSystem(abc.ABC):
    """
    Distributed storage as seen by the launcher. Paths are absolute POSIX
    strings within the filesystem; `qualify()` turns them into full URIs
    suitable for LocalResource registration.
    """

    uri: str

    def __init__(self) -> None:
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise FileSystemClosedError(f"{self.__class__.__name__}({self.uri}) is closed")

    def qualify(self, path: str) -> str:
        if "://" in path:
            return path
        return self.uri.rstrip("/") + "/" + path.lstrip("/")

    @abc.abstractmethod
    def exists(self, path: str) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def get_file_status(self, path: str) -> FileStatus:
        """Raises FileNotFoundError if `path` does not exist"""
        raise NotImplementedError

    @abc.abstractmethod
    def list_status(self, path: str) -> List[FileStatus]:
        raise NotImplementedError

    @abc.abstractmethod
    def mkdirs(self, path: str) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def copy_from_local(self, src: PathLike, dest: str, overwrite: bool = False) -> None:
        """Raises FileSystemError if `dest` exists and overwrite is False"""
        raise NotImplementedError

    @abc.abstractmethod
    def delete(self, path: str, recursive: bool = False) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def write_bytes(self, path: str, data: bytes, overwrite: bool = True) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def read_bytes(self, path: str) -> bytes:
        raise NotImplementedError

    def get_delegation_token(self, renewer: Optional[str]) -> Optional[Token]:
        """Filesystems without security return None"""
        return None

    def close(self) -> None:
        self._closed = True

    def __enter__(self) -> "FileSystem":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.uri})"
