import logging
import shutil
from pathlib import Path
from typing import List

from yarnlauncher.schemas import FileStatus

from .filesystem import FileSystem, FileSystemError, PathLike

logger = logging.getLogger(__name__)


class LocalFileSystem(FileSystem):
    """
    Uses a local (or network-mounted) directory tree as the launcher's
    distributed storage. Suitable for single-node clusters and testing.
    """

    def __init__(self, uri: str = "file:///") -> None:
        super().__init__()
        self.uri = uri

    @staticmethod
    def _local(path: str) -> Path:
        if path.startswith("file://"):
            path = path[len("file://") :]
        return Path(path)

    def qualify(self, path: str) -> str:
        if "://" in path:
            return path
        return self._local(path).absolute().as_uri()

    @staticmethod
    def _status(path: Path) -> FileStatus:
        st = path.stat()
        return FileStatus(
            path=path.as_posix(),
            is_dir=path.is_dir(),
            length=0 if path.is_dir() else st.st_size,
            modification_time=int(st.st_mtime * 1000),
        )

    def exists(self, path: str) -> bool:
        self._check_open()
        return self._local(path).exists()

    def get_file_status(self, path: str) -> FileStatus:
        self._check_open()
        return self._status(self._local(path))

    def list_status(self, path: str) -> List[FileStatus]:
        self._check_open()
        local = self._local(path)
        if not local.is_dir():
            return [self._status(local)]
        return [self._status(child) for child in sorted(local.iterdir())]

    def mkdirs(self, path: str) -> bool:
        self._check_open()
        self._local(path).mkdir(parents=True, exist_ok=True)
        return True

    def copy_from_local(self, src: PathLike, dest: str, overwrite: bool = False) -> None:
        self._check_open()
        dest_path = self._local(dest)
        if dest_path.exists() and not overwrite:
            raise FileSystemError(f"Destination {dest} already exists")
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src, dest_path)
        logger.debug(f"Copied {src} to {dest_path}")

    def delete(self, path: str, recursive: bool = False) -> bool:
        self._check_open()
        local = self._local(path)
        if not local.exists():
            return False
        if local.is_dir():
            if recursive:
                shutil.rmtree(local)
            else:
                try:
                    local.rmdir()
                except OSError as exc:
                    raise FileSystemError(f"Cannot delete non-empty directory {path} non-recursively") from exc
        else:
            local.unlink()
        return True

    def write_bytes(self, path: str, data: bytes, overwrite: bool = True) -> None:
        self._check_open()
        local = self._local(path)
        if local.exists() and not overwrite:
            raise FileSystemError(f"Destination {path} already exists")
        local.parent.mkdir(parents=True, exist_ok=True)
        local.write_bytes(data)

    def read_bytes(self, path: str) -> bytes:
        self._check_open()
        return self._local(path).read_bytes()
