import threading

import pytest

from yarnlauncher.launcher import LauncherService, LogCopier, PeriodicTask, ServiceManager

from .util import wait_for


class CountingService(LauncherService):
    def __init__(self, service_period=0.01, fail=False):
        super().__init__(service_period=service_period)
        self.cycles = 0
        self.cleaned_up = False
        self.fail = fail

    def run_cycle(self):
        self.cycles += 1
        if self.fail:
            raise RuntimeError("cycle failed")

    def cleanup(self):
        self.cleaned_up = True


class HangingService(LauncherService):
    def __init__(self):
        super().__init__(service_period=0.01)
        self.release = threading.Event()

    def cleanup(self):
        self.release.wait(timeout=10)


def test_service_cycles_until_stopped():
    service = CountingService()
    service.start()
    assert wait_for(lambda: service.cycles >= 3)
    service.stop()
    service.join(timeout=5)
    assert not service.is_alive()
    assert service.cleaned_up
    assert service.stopping


def test_cycle_exceptions_do_not_stop_service():
    service = CountingService(fail=True)
    service.start()
    assert wait_for(lambda: service.cycles >= 3)
    service.stop()
    service.join(timeout=5)


def test_service_manager_starts_and_stops_all():
    services = [CountingService(), CountingService()]
    manager = ServiceManager(services)
    assert len(manager) == 2
    manager.start()
    manager.start()
    assert all(s.started for s in services)
    manager.stop_and_wait(timeout=5)
    assert not any(s.is_alive() for s in services)
    assert all(s.cleaned_up for s in services)


def test_service_manager_ignores_unstarted_services():
    manager = ServiceManager([CountingService()])
    manager.stop_and_wait(timeout=1)


def test_service_manager_timeout_names_stuck_services():
    hanging = HangingService()
    manager = ServiceManager([CountingService(), hanging])
    manager.start()
    try:
        with pytest.raises(TimeoutError, match="HangingService"):
            manager.stop_and_wait(timeout=0.1)
    finally:
        hanging.release.set()
        hanging.join(timeout=5)


class TestPeriodicTask:
    def test_first_run_is_immediate(self):
        calls = []
        task = PeriodicTask(lambda: calls.append(1), period=60, name="test-task")
        task.start()
        assert task.is_running
        assert wait_for(lambda: calls, timeout=1)
        assert task.shutdown(timeout=5)
        assert calls == [1]
        assert not task.is_running

    def test_runs_periodically(self):
        calls = []
        task = PeriodicTask(lambda: calls.append(1), period=0.01)
        task.start()
        assert wait_for(lambda: len(calls) >= 3)
        assert task.shutdown(timeout=5)

    def test_exceptions_do_not_cancel_schedule(self):
        calls = []

        def flaky():
            calls.append(1)
            raise ValueError("poll failed")

        task = PeriodicTask(flaky, period=0.01)
        task.start()
        assert wait_for(lambda: len(calls) >= 3)
        assert task.shutdown(timeout=5)

    def test_shutdown_from_own_thread(self):
        results = []
        task = PeriodicTask(lambda: results.append(task.shutdown(timeout=5)), period=0.01)
        task.start()
        assert wait_for(lambda: results)
        assert results == [True]
        assert wait_for(lambda: not task._thread.is_alive())

    def test_shutdown_before_start(self):
        assert PeriodicTask(lambda: None, period=1).shutdown(timeout=1)

    def test_rejects_non_positive_period(self):
        with pytest.raises(ValueError):
            PeriodicTask(lambda: None, period=0)


class TestLogCopier:
    @pytest.fixture
    def dirs(self, tmp_path, hdfs_root):
        src = hdfs_root / "work" / "test-app" / "application_1_0001" / "_applogs"
        src.mkdir(parents=True)
        return src, tmp_path / "sink"

    def test_copies_matching_logs(self, local_fs, dirs):
        src, sink = dirs
        src.joinpath("container_01").mkdir()
        src.joinpath("container_01", "Worker.stdout").write_text("hello")
        src.joinpath("container_01", "Worker.stderr").write_text("oops")
        src.joinpath("container_01", "gc.log").write_text("ignored")

        copier = LogCopier(local_fs, str(src), sink)
        assert copier.copy_logs() == 2
        assert sink.joinpath("container_01", "Worker.stdout").read_text() == "hello"
        assert sink.joinpath("container_01", "Worker.stderr").read_text() == "oops"
        assert not sink.joinpath("container_01", "gc.log").exists()

    def test_only_changed_files_recopied(self, local_fs, dirs):
        src, sink = dirs
        log = src.joinpath("AM.stdout")
        log.write_text("line 1\n")
        copier = LogCopier(local_fs, str(src), sink)
        assert copier.copy_logs() == 1
        assert copier.copy_logs() == 0

        log.write_text("line 1\nline 2\n")
        assert copier.copy_logs() == 1
        assert sink.joinpath("AM.stdout").read_text() == "line 1\nline 2\n"

    def test_missing_source_dir(self, local_fs, tmp_path):
        copier = LogCopier(local_fs, str(tmp_path / "missing"), tmp_path / "sink")
        assert copier.copy_logs() == 0

    def test_final_copy_on_stop(self, local_fs, dirs):
        src, sink = dirs
        copier = LogCopier(local_fs, str(src), sink, service_period=60)
        copier.start()
        src.joinpath("AM.stderr").write_text("late output")
        copier.stop()
        copier.join(timeout=5)
        assert sink.joinpath("AM.stderr").read_text() == "late output"
