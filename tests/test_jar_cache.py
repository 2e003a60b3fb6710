from datetime import datetime

import pytest

from yarnlauncher.launcher import calculate_per_month_cache_path, retain_k_latest_cache_paths


def test_per_month_cache_path():
    path = calculate_per_month_cache_path("/user/ingest/jar-cache", datetime(2024, 3, 17, 23, 59))
    assert path == "/user/ingest/jar-cache/2024-03"


def test_per_month_cache_path_pads_month():
    assert calculate_per_month_cache_path("/cache/", datetime(2023, 11, 1)) == "/cache/2023-11"
    assert calculate_per_month_cache_path("/cache", datetime(2024, 1, 31)).endswith("/2024-01")


def _make_periods(root, names):
    for name in names:
        root.joinpath(name).mkdir(parents=True)
        root.joinpath(name, "app.jar").write_bytes(b"jar")


def test_retain_keeps_newest_periods(tmp_path, local_fs):
    root = tmp_path / "cache"
    _make_periods(root, ["2023-10", "2023-11", "2023-12", "2024-01"])
    assert retain_k_latest_cache_paths(str(root), 2, local_fs)
    assert sorted(p.name for p in root.iterdir()) == ["2023-12", "2024-01"]


def test_retain_always_keeps_current_period(tmp_path, local_fs):
    root = tmp_path / "cache"
    _make_periods(root, ["2023-10", "2023-11", "2023-12"])
    current = str(root / "2023-10")
    assert retain_k_latest_cache_paths(str(root), 2, local_fs, current=current)
    assert sorted(p.name for p in root.iterdir()) == ["2023-10", "2023-12"]


def test_retain_one_period_keeps_only_current(tmp_path, local_fs):
    root = tmp_path / "cache"
    _make_periods(root, ["2024-01", "2024-02", "2024-03"])
    assert retain_k_latest_cache_paths(str(root), 1, local_fs, current=str(root / "2024-02"))
    assert [p.name for p in root.iterdir()] == ["2024-02"]


def test_retain_ignores_plain_files(tmp_path, local_fs):
    root = tmp_path / "cache"
    _make_periods(root, ["2024-01", "2024-02"])
    root.joinpath("README").write_text("not a period")
    assert retain_k_latest_cache_paths(str(root), 1, local_fs)
    assert sorted(p.name for p in root.iterdir()) == ["2024-02", "README"]


def test_retain_missing_parent_is_noop(tmp_path, local_fs):
    assert retain_k_latest_cache_paths(str(tmp_path / "missing"), 2, local_fs)


def test_retain_fewer_periods_than_k(tmp_path, local_fs):
    root = tmp_path / "cache"
    _make_periods(root, ["2024-01"])
    assert retain_k_latest_cache_paths(str(root), 3, local_fs)
    assert root.joinpath("2024-01").is_dir()


def test_retain_rejects_k_below_one(tmp_path, local_fs):
    with pytest.raises(ValueError):
        retain_k_latest_cache_paths(str(tmp_path), 0, local_fs)


def test_retain_reports_failed_deletes(tmp_path, local_fs, mocker, caplog):
    root = tmp_path / "cache"
    _make_periods(root, ["2023-12", "2024-01", "2024-02"])
    mocker.patch.object(local_fs, "delete", side_effect=PermissionError("denied"))
    assert not retain_k_latest_cache_paths(str(root), 2, local_fs)
    assert "2023-12" in caplog.text
    assert root.joinpath("2023-12").is_dir()
