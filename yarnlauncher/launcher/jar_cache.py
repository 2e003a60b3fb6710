"""
Month-bucketed cache of uploaded jars on distributed storage.

Jars uploaded under `<cache_root>/<YYYY-MM>` are shared by every submission
in that month; older buckets are pruned so storage stays bounded while still
covering executions that run for up to a month.
"""
import logging
import posixpath
from datetime import datetime
from typing import List, Optional

from yarnlauncher.platform.filesystem import FileSystem, join_path

logger = logging.getLogger(__name__)

CACHE_PERIOD_FORMAT = "%Y-%m"


def calculate_per_month_cache_path(cache_root: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return join_path(cache_root, now.strftime(CACHE_PERIOD_FORMAT))


def retain_k_latest_cache_paths(parent_dir: str, k: int, fs: FileSystem, current: Optional[str] = None) -> bool:
    """
    Keep the `k` newest period directories under `parent_dir` (always including
    `current`, when it exists) and delete the rest. Returns False if any
    deletion failed.
    """
    if k < 1:
        raise ValueError(f"Must retain at least one cache period (k={k})")
    if not fs.exists(parent_dir):
        return True

    periods = sorted((s.path for s in fs.list_status(parent_dir) if s.is_dir), reverse=True)
    current_name = _period_name(current) if current else None
    current_path = next((p for p in periods if _period_name(p) == current_name), None)

    retained: List[str] = [current_path] if current_path else []
    for path in periods:
        if len(retained) >= k:
            break
        if path != current_path:
            retained.append(path)

    failed: List[str] = []
    for path in periods:
        if path in retained:
            continue
        logger.info(f"Deleting expired jar cache directory {path}")
        try:
            if not fs.delete(path, recursive=True):
                failed.append(path)
        except OSError as exc:
            logger.warning(f"Error deleting {path}: {exc}")
            failed.append(path)

    if failed:
        logger.warning(f"Failed to delete jar cache directories: {', '.join(failed)}")
        return False
    return True


def _period_name(path: str) -> str:
    return posixpath.basename(path.rstrip("/"))
