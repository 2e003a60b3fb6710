import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from yarnlauncher.config import Settings
from yarnlauncher.launcher import ResourceManagerClientPool, YarnAppLauncher
from yarnlauncher.platform.filesystem import LocalFileSystem
from yarnlauncher.platform.security.credentials import current_user_credentials

from .util import PRIMARY_RM, SECONDARY_RM, FakeResourceManager


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@pytest.fixture
def hdfs_root(tmp_path: Path) -> Path:
    root = tmp_path / "hdfs"
    root.mkdir()
    return root


@pytest.fixture
def local_fs():
    fs = LocalFileSystem()
    yield fs
    fs.close()


@pytest.fixture
def lib_jars_dir(tmp_path: Path) -> Path:
    lib = tmp_path / "lib"
    lib.mkdir()
    for name in ["guava-31.1.jar", "commons-io-2.11.jar", "ingest-core-1.2-SNAPSHOT.jar"]:
        lib.joinpath(name).write_bytes(name.encode() * 10)
    return lib


@pytest.fixture
def make_settings(tmp_path: Path, hdfs_root: Path):
    def _make(**overrides: Any) -> Settings:
        base: Dict[str, Any] = {
            "application_name": "test-app",
            "app_report_interval_sec": 0.05,
            "max_get_app_report_failures": 2,
            "work_dir_root": str(hdfs_root / "work"),
            "service_stop_timeout_sec": 5,
            "rpc_timeout_sec": 5,
            "resource_manager": {
                "address": PRIMARY_RM,
                "other_addresses": [SECONDARY_RM],
                "client_class": FakeResourceManager,
            },
            "jar_cache": {"root_dir": str(hdfs_root / "jar-cache")},
            "log_copier": {
                "disable_driver_copy": True,
                "sink_log_root_dir": tmp_path / "logs",
                "copy_period_sec": 0.05,
            },
        }
        return Settings(**_merge(base, overrides))

    return _make


@pytest.fixture
def rm_pool() -> ResourceManagerClientPool:
    return ResourceManagerClientPool(PRIMARY_RM, [SECONDARY_RM], FakeResourceManager)


@pytest.fixture
def make_launcher(make_settings, rm_pool):
    launchers: List[YarnAppLauncher] = []

    def _make(settings: Optional[Settings] = None, **kwargs: Any) -> YarnAppLauncher:
        kwargs.setdefault("client_pool", rm_pool)
        kwargs.setdefault("filesystem_factory", LocalFileSystem)
        launcher = YarnAppLauncher(settings or make_settings(), **kwargs)
        launchers.append(launcher)
        return launcher

    yield _make
    for launcher in launchers:
        if not launcher.stopped:
            try:
                launcher.stop()
            except Exception:
                pass


@pytest.fixture(autouse=True)
def clean_user_credentials():
    creds = current_user_credentials()
    for alias, _ in creds.token_items():
        creds.remove_token(alias)
    yield
    for alias, _ in creds.token_items():
        creds.remove_token(alias)


@pytest.fixture(autouse=True)
def restore_package_logger():
    logger = logging.getLogger("yarnlauncher")
    level, handlers = logger.level, list(logger.handlers)
    yield
    logger.setLevel(level)
    logger.handlers[:] = handlers
