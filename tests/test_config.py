import sys

import pytest
import yaml
from pydantic import ValidationError

from yarnlauncher.config import InvalidSettings, LauncherConfig, Settings, get_class_path
from yarnlauncher.config.config import AppMasterSettings, FileSystemSettings, ResourceManagerSettings
from yarnlauncher.launcher import ClusterLifecycleManager, EmailNotifier, YarnAppLauncher
from yarnlauncher.platform.filesystem import LocalFileSystem, WebHDFSFileSystem
from yarnlauncher.platform.resource_manager import YarnRestResourceManager

from .util import PRIMARY_RM, FakeResourceManager


@pytest.fixture
def settings_file(tmp_path):
    def _write(data):
        path = tmp_path / "settings.yml"
        path.write_text(yaml.dump(data))
        return path

    return _write


def test_defaults():
    settings = Settings()
    assert settings.max_get_app_report_failures == 4
    assert settings.app_report_interval_sec == 60
    assert settings.container_timezone == "America/Los_Angeles"
    assert settings.jar_cache.retain_periods == 2
    assert settings.security.renew_interval_sec == 12 * 3600
    assert settings.resource_manager.client_class is YarnRestResourceManager
    assert settings.filesystem.filesystem_class is LocalFileSystem


def test_load_yaml(settings_file):
    path = settings_file(
        {
            "application_name": "ingest",
            "queue": "etl",
            "resource_manager": {"address": "rm1:8088", "other_addresses": ["rm2:8088"]},
            "app_master": {"memory_mbs": 4096, "jvm_memory_xmx_ratio": 0.8, "jvm_memory_overhead_mbs": 100},
        }
    )
    settings = Settings.load(path)
    assert settings.application_name == "ingest"
    assert settings.queue == "etl"
    assert settings.resource_manager.other_addresses == ["rm2:8088"]
    assert settings.app_master.memory_mbs == 4096


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "settings.yml"
    path.write_text("")
    assert Settings.load(path).application_name == "YarnLauncherApplication"


@pytest.mark.parametrize(
    "app_master",
    [
        {"memory_mbs": 1024, "jvm_memory_xmx_ratio": 1.5},
        {"memory_mbs": 1024, "jvm_memory_xmx_ratio": 0.5, "jvm_memory_overhead_mbs": 512},
        {"memory_mbs": 1024, "jvm_memory_overhead_mbs": -1},
    ],
)
def test_invalid_jvm_memory(settings_file, app_master):
    with pytest.raises(InvalidSettings, match="jvm_memory"):
        Settings.load(settings_file({"app_master": app_master}))
    with pytest.raises(ValidationError):
        AppMasterSettings(**app_master)


def test_unknown_key_rejected(settings_file):
    with pytest.raises(InvalidSettings, match="not_a_setting"):
        Settings.load(settings_file({"not_a_setting": 1}))


def test_client_class_must_be_resource_manager():
    with pytest.raises(ValidationError, match="client_class must subclass"):
        ResourceManagerSettings(client_class="yarnlauncher.platform.filesystem.LocalFileSystem")


def test_client_class_import_error():
    with pytest.raises(ValidationError):
        ResourceManagerSettings(client_class="no_such_module.Client")


def test_build_client():
    rm_settings = ResourceManagerSettings(
        address=PRIMARY_RM, client_class=FakeResourceManager, read_timeout=5, retry_count=1, user_name="etl"
    )
    client = rm_settings.build_client("rm9:8088")
    assert isinstance(client, FakeResourceManager)
    assert client.address == "rm9:8088"


def test_dump_yaml_round_trip(tmp_path, make_settings):
    settings = make_settings(queue="etl", application_tags="a,b")
    path = tmp_path / "dumped.yml"
    settings.save(path)
    data = yaml.safe_load(path.read_text())
    assert data["resource_manager"]["client_class"] == get_class_path(FakeResourceManager)
    loaded = Settings.load(path)
    assert loaded == settings


def test_tag_list(make_settings):
    assert make_settings().tag_list == []
    assert make_settings(application_tags=" nightly, etl ,, ").tag_list == ["nightly", "etl"]


class TestFileSystemSettings:
    def test_webhdfs_url_for_primary(self):
        fs_settings = FileSystemSettings(uri="hdfs://nn1:8020", webhdfs_url="https://nn1.example.com:9871")
        assert fs_settings.webhdfs_url_for("hdfs://nn1:8020") == "https://nn1.example.com:9871"

    def test_webhdfs_url_for_other_namenode(self):
        fs_settings = FileSystemSettings(uri="hdfs://nn1:8020", webhdfs_port=50070)
        assert fs_settings.webhdfs_url_for("hdfs://nn2.example.com:8020/") == "http://nn2.example.com:50070"

    def test_build_returns_fresh_handles(self):
        fs_settings = FileSystemSettings()
        first, second = fs_settings.build(), fs_settings.build()
        assert isinstance(first, LocalFileSystem)
        assert first is not second
        first.close()
        assert not second.closed

    def test_build_webhdfs(self):
        fs_settings = FileSystemSettings(
            uri="hdfs://nn1:8020",
            filesystem_class="yarnlauncher.platform.filesystem.WebHDFSFileSystem",
            user_name="etl",
        )
        fs = fs_settings.build("hdfs://nn2:8020")
        assert isinstance(fs, WebHDFSFileSystem)
        assert fs.uri == "hdfs://nn2:8020"
        assert fs.qualify("/a.jar") == "hdfs://nn2:8020/a.jar"


class TestLauncherConfig:
    def test_missing_settings_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            LauncherConfig(tmp_path / "missing.yml")

    def test_settings_path_from_environment(self, settings_file, monkeypatch):
        path = settings_file({"application_name": "from-env"})
        monkeypatch.setenv("YARN_LAUNCHER_SETTINGS_PATH", str(path))
        config = LauncherConfig()
        assert config.settings.application_name == "from-env"
        assert config.settings_path == path.resolve()

    def test_rejects_non_settings(self):
        with pytest.raises(ValueError):
            LauncherConfig(settings={"application_name": "x"})

    def test_optional_components_disabled(self, make_settings):
        config = LauncherConfig(settings=make_settings())
        assert config.build_lifecycle_manager() is None
        assert config.build_notifier() is None

    def test_optional_components_enabled(self, make_settings):
        settings = make_settings(
            lifecycle_manager_enabled=True,
            notification={"email_on_shutdown": True, "recipients": ["ops@example.com"]},
        )
        config = LauncherConfig(settings=settings)
        assert isinstance(config.build_lifecycle_manager(), ClusterLifecycleManager)
        notifier = config.build_notifier()
        assert isinstance(notifier, EmailNotifier)
        assert notifier.recipients == ["ops@example.com"]

    def test_build_launcher(self, make_settings):
        config = LauncherConfig(settings=make_settings())
        launcher = config.build_launcher()
        assert isinstance(launcher, YarnAppLauncher)
        assert launcher.application_id is None

    def test_log_path(self, make_settings, tmp_path):
        config = LauncherConfig(settings=make_settings())
        assert config.log_path == tmp_path / "logs" / "test-app"

    def test_enable_logging(self, make_settings, tmp_path, monkeypatch):
        monkeypatch.setattr(sys, "excepthook", sys.excepthook)
        config = LauncherConfig(settings=make_settings(logging={"level": "DEBUG"}))
        info = config.enable_logging("launcher", filename=tmp_path / "logs" / "launcher.log")
        assert info["level"] == "DEBUG"
        assert (tmp_path / "logs").is_dir()
