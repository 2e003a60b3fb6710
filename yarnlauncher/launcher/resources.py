import logging
import posixpath
import tarfile
import tempfile
import time
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from yarnlauncher.platform.filesystem import FileSystem, FileSystemError, PathLike, join_path
from yarnlauncher.schemas import LocalResource, LocalResourceType, LocalResourceVisibility, Resource

logger = logging.getLogger(__name__)

Manifest = Dict[str, LocalResource]
FrozenManifest = Mapping[str, LocalResource]

SNAPSHOT_MARKER = "SNAPSHOT"
TAR_GZ_SUFFIX = ".tar.gz"


class ResourceBundleError(Exception):
    pass


class MissingLibraryDirectoryError(ResourceBundleError):
    pass


class ResourceUploadError(ResourceBundleError):
    pass


def freeze_manifest(manifest: Manifest) -> FrozenManifest:
    return MappingProxyType(dict(manifest))


def negotiate_resources(requested: Resource, maximum: Resource) -> Resource:
    """Clamp the requested master resources to the cluster's maximum capability"""
    memory_mb = requested.memory_mb
    if memory_mb > maximum.memory_mb:
        logger.info(
            f"Specified AM memory [{memory_mb}] is above the maximum memory capacity "
            f"[{maximum.memory_mb}] of the cluster, using the maximum memory capacity instead."
        )
        memory_mb = maximum.memory_mb

    vcores = requested.vcores
    if vcores > maximum.vcores:
        logger.info(
            f"Specified AM vcores [{vcores}] is above the maximum vcore capacity "
            f"[{maximum.vcores}] of the cluster, using the maximum vcore capacity instead."
        )
        vcores = maximum.vcores
    return Resource(memory_mb=memory_mb, vcores=vcores)


def calculate_dest_jar_path(jar_name: str, unshared_dir: str, cache_dir: str, cache_enabled: bool) -> str:
    # SNAPSHOT jars are mutable builds and must never be served from the shared cache
    if cache_enabled and SNAPSHOT_MARKER not in jar_name:
        return join_path(cache_dir, jar_name)
    return join_path(unshared_dir, jar_name)


class ResourceBundler:
    """
    Uploads local jars and files to distributed storage and registers them as
    LocalResources of a container launch context.

    Every `add_*` method takes a `manifest`; pass None to upload without
    registering (container resources are discovered by the workers from the
    well-known directories instead).
    """

    def __init__(
        self,
        fs: FileSystem,
        jar_cache_enabled: bool,
        max_upload_attempts: int = 5,
        partial_upload_wait_sec: float = 3.0,
    ) -> None:
        if max_upload_attempts < 1:
            raise ValueError("max_upload_attempts must be at least 1")
        self.fs = fs
        self.jar_cache_enabled = jar_cache_enabled
        self.max_upload_attempts = max_upload_attempts
        self.partial_upload_wait_sec = partial_upload_wait_sec

    def _is_complete(self, dest: str, expected_length: int) -> bool:
        try:
            return self.fs.get_file_status(dest).length == expected_length
        except FileNotFoundError:
            return False

    def upload_with_retry(self, src: PathLike, dest: str) -> bool:
        """
        Copy `src` to `dest` until the destination exists with the source's length.
        A destination of the wrong length may be a concurrent upload by another
        launcher: wait for it and count the attempt as failed.
        """
        expected_length = Path(src).stat().st_size
        attempts = 0
        while not self._is_complete(dest, expected_length):
            try:
                if self.fs.exists(dest):
                    time.sleep(self.partial_upload_wait_sec)
                    raise FileSystemError(f"Waiting for upload of {dest} to complete")
                self.fs.copy_from_local(src, dest)
            except OSError as exc:
                attempts += 1
                logger.warning(f"{dest} was not copied successfully ({exc}); attempt {attempts}")
                if attempts >= self.max_upload_attempts:
                    logger.error(f"Giving up on copying {src} to {dest} after {attempts} attempts")
                    return False
        return True

    def register(
        self,
        dest: str,
        manifest: Optional[Manifest],
        type: LocalResourceType = LocalResourceType.FILE,
        source: Optional[str] = None,
    ) -> Optional[LocalResource]:
        if manifest is None:
            return None
        status = self.fs.get_file_status(dest)
        resource = LocalResource(
            source=source,
            resource=self.fs.qualify(dest),
            type=type,
            visibility=LocalResourceVisibility.APPLICATION,
            size=status.length,
            timestamp=status.modification_time,
        )
        manifest[posixpath.basename(dest.rstrip("/"))] = resource
        return resource

    def add_lib_jars(
        self, src_dir: PathLike, manifest: Optional[Manifest], cache_dir: str, unshared_dir: str
    ) -> List[str]:
        src_dir = Path(src_dir)
        if not src_dir.is_dir():
            raise MissingLibraryDirectoryError(f"The library directory {src_dir} was not found; aborting")

        jar_names: List[str] = []
        for jar in sorted(p for p in src_dir.iterdir() if p.is_file()):
            dest = calculate_dest_jar_path(jar.name, unshared_dir, cache_dir, self.jar_cache_enabled)
            if self.upload_with_retry(jar, dest):
                self.register(dest, manifest, source=str(jar))
                jar_names.append(jar.name)
            else:
                logger.warning(f"Failed to upload lib jar {jar}")
        return jar_names

    def add_app_jars(
        self, jar_list: Iterable[PathLike], manifest: Optional[Manifest], cache_dir: str, unshared_dir: str
    ) -> None:
        for jar in map(Path, jar_list):
            if not jar.is_file():
                raise ResourceUploadError(f"Application jar {jar} does not exist")
            dest = calculate_dest_jar_path(jar.name, unshared_dir, cache_dir, self.jar_cache_enabled)
            if not self.upload_with_retry(jar, dest):
                raise ResourceUploadError(f"Failed to upload application jar {jar} to {dest}")
            self.register(dest, manifest, source=str(jar))

    def add_local_files(self, file_list: Iterable[PathLike], manifest: Optional[Manifest], dest_dir: str) -> None:
        for src in map(Path, file_list):
            if not src.exists():
                logger.warning(f"The requested file {src} doesn't exist; skipping")
                continue
            dest = join_path(dest_dir, src.name)
            if self.fs.exists(dest):
                logger.info(f"The destination file {dest} already exists, skipping upload")
            else:
                self.fs.copy_from_local(src, dest)
            self.register(dest, manifest, source=str(src))

    def add_remote_files(
        self,
        uri_list: Iterable[str],
        manifest: Manifest,
        type: LocalResourceType = LocalResourceType.FILE,
    ) -> None:
        for uri in uri_list:
            try:
                self.register(uri, manifest, type=type, source=uri)
            except FileNotFoundError:
                logger.warning(f"The remote resource {uri} doesn't exist; skipping")

    def add_job_conf_package(self, src: PathLike, dest_dir: str, manifest: Manifest) -> str:
        src = Path(src)
        if not src.exists():
            raise ResourceUploadError(f"Job configuration path {src} does not exist")
        dest = join_path(dest_dir, src.name + TAR_GZ_SUFFIX)
        with tempfile.TemporaryDirectory() as tmp:
            archive = Path(tmp).joinpath(src.name + TAR_GZ_SUFFIX)
            with tarfile.open(archive, "w:gz") as tar:
                tar.add(src, arcname=src.name)
            self.fs.copy_from_local(archive, dest, overwrite=True)
        self.register(dest, manifest, type=LocalResourceType.ARCHIVE, source=str(src))
        return dest

