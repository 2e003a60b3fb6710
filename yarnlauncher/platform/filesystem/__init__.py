from .filesystem import FileSystem, FileSystemClosedError, FileSystemError, PathLike, join_path
from .local import LocalFileSystem
from .webhdfs import WebHDFSFileSystem

__all__ = [
    "FileSystem",
    "FileSystemError",
    "FileSystemClosedError",
    "PathLike",
    "join_path",
    "LocalFileSystem",
    "WebHDFSFileSystem",
]
