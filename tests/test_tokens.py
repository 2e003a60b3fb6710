import pytest

from yarnlauncher.launcher import SecurityTokenProvisioner
from yarnlauncher.launcher.tokens import HADOOP_TOKEN_FILE_LOCATION, fetch_filesystem_tokens
from yarnlauncher.platform.filesystem import LocalFileSystem
from yarnlauncher.platform.security import (
    HDFS_DELEGATION_TOKEN,
    RM_DELEGATION_TOKEN,
    Credentials,
    Token,
    current_user_credentials,
)
from yarnlauncher.schemas import ContainerLaunchContext

RM_ADDRESS = "rm1.example.com:8032"


class TokenIssuingFileSystem(LocalFileSystem):
    def __init__(self, uri="hdfs://nn1:8020"):
        super().__init__(uri)
        self.renewers = []

    def get_delegation_token(self, renewer):
        self.renewers.append(renewer)
        service = self.uri.split("://", 1)[1]
        return Token(identifier=service.encode(), password=b"pw", kind=HDFS_DELEGATION_TOKEN, service=service)


def _rm_token(service):
    return Token(identifier=b"rm", password=b"pw", kind=RM_DELEGATION_TOKEN, service=service)


@pytest.fixture
def fs():
    return TokenIssuingFileSystem()


def test_fetch_tokens_for_all_namenodes(fs):
    creds = Credentials()
    added = fetch_filesystem_tokens(creds, fs, "yarn/rm@EXAMPLE.COM", ["hdfs://nn2:8020"], TokenIssuingFileSystem)
    assert added == 2
    assert creds.has_service("nn1:8020")
    assert creds.has_service("nn2:8020")
    assert fs.renewers == ["yarn/rm@EXAMPLE.COM"]


def test_fetch_skips_existing_services(fs):
    creds = Credentials()
    existing = Token(kind=HDFS_DELEGATION_TOKEN, service="nn1:8020")
    creds.add_token("nn1:8020", existing)
    assert fetch_filesystem_tokens(creds, fs, None) == 0
    assert creds.get_token("nn1:8020") is existing


def test_fetch_without_builder_skips_other_namenodes(fs):
    creds = Credentials()
    assert fetch_filesystem_tokens(creds, fs, None, ["hdfs://nn2:8020"]) == 1


def test_unsecured_filesystem_issues_no_tokens():
    creds = Credentials()
    assert fetch_filesystem_tokens(creds, LocalFileSystem(), None) == 0
    assert len(creds) == 0


def test_filter_drops_foreign_rm_tokens(fs):
    provisioner = SecurityTokenProvisioner(fs, RM_ADDRESS, environ={})
    creds = Credentials()
    creds.add_token("rm-ours", _rm_token(RM_ADDRESS))
    creds.add_token("rm-other", _rm_token("rm2.example.com:8032"))
    creds.add_token("hdfs", Token(kind=HDFS_DELEGATION_TOKEN, service="nn1:8020"))

    final = provisioner.filter_credentials(creds)
    services = sorted(t.service for t in final)
    assert services == ["nn1:8020", RM_ADDRESS]


def test_setup_security_tokens(fs):
    current_user_credentials().add_token("rm", _rm_token("rm2.example.com:8032"))
    current_user_credentials().add_token("rm-ours", _rm_token(RM_ADDRESS))
    provisioner = SecurityTokenProvisioner(fs, RM_ADDRESS, renewer="yarn", environ={})
    context = ContainerLaunchContext()

    final = provisioner.setup_security_tokens(context)
    assert context.tokens is not None
    shipped = Credentials.read_token_storage(context.tokens)
    assert sorted(t.service for t in shipped) == sorted(t.service for t in final) == ["nn1:8020", RM_ADDRESS]
    # The ambient credentials are copied, never modified
    assert not current_user_credentials().has_service("nn1:8020")


def test_token_file_entries_win(fs, tmp_path):
    current_user_credentials().add_token("hdfs", Token(identifier=b"stale", kind=HDFS_DELEGATION_TOKEN, service="x"))
    from_file = Credentials()
    fresh = Token(identifier=b"fresh", kind=HDFS_DELEGATION_TOKEN, service="x")
    from_file.add_token("hdfs", fresh)
    token_file = tmp_path / "container_tokens"
    token_file.write_bytes(from_file.write_token_storage())

    provisioner = SecurityTokenProvisioner(fs, RM_ADDRESS, environ={HADOOP_TOKEN_FILE_LOCATION: str(token_file)})
    creds = provisioner.collect_credentials()
    assert creds.get_token("hdfs") == fresh
