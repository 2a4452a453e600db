"""
Pytest configuration and shared fixtures for the installer tests.

No test runs a real command: every stage goes through FakeRunner, which
records argv and answers with canned output.
"""

import pytest

from sail.command import CmdResult, CommandRunner
from sail.config import SailConfig
from sail.context import InstallContext, RollbackStack
from sail.exceptions import CommandError
from sail.target import TargetDescriptor


class FakeRunner(CommandRunner):
    """Records commands instead of running them.

    `responses` maps an argv prefix (tuple) to stdout; `failures` is a set of
    argv prefixes that exit with status 1.
    """

    def __init__(self, responses=None, failures=None):
        super().__init__()
        self.calls = []
        self.inputs = []
        self.responses = dict(responses or {})
        self.failures = set(failures or ())

    def _match(self, argv, table):
        for prefix in table:
            if tuple(argv[: len(prefix)]) == tuple(prefix):
                return prefix
        return None

    def run(self, argv, description=None, input_text=None, capture=False):
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        self.inputs.append(input_text)
        if self._match(argv, self.failures) is not None:
            raise CommandError(description or argv[0], argv, 1, "boom")
        prefix = self._match(argv, self.responses)
        stdout = self.responses[prefix] if prefix is not None else ""
        return CmdResult(argv=argv, returncode=0, stdout=stdout, stderr="")

    def commands(self, name):
        """Every recorded call whose first element is `name`"""
        return [c for c in self.calls if c[0] == name]

    def chroot_commands(self):
        """Recorded arch-chroot calls, without the `arch-chroot <root>` prefix"""
        return [c[2:] for c in self.calls if c[0] == "arch-chroot"]


class FakeBlockDevice:
    def __init__(self, partitions=(), is_block=True, uuid="ABCD-1234"):
        self.partitions = list(partitions)
        self.is_block = is_block
        self._uuid = uuid

    def is_block_device(self, path):
        return self.is_block

    def partition_numbers(self, disk):
        return list(self.partitions)

    def uuid(self, path):
        return self._uuid


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def root(tmp_path):
    root = tmp_path / "mnt"
    root.mkdir()
    return root


@pytest.fixture
def context(runner, root):
    return InstallContext(
        runner=runner,
        root_mount=str(root),
        euid=0,
        environ={"PATH": "/usr/bin"},
        which=lambda name: f"/usr/bin/{name}",
        sleep=lambda seconds: None,
        rollback=RollbackStack(enabled=False),
    )


@pytest.fixture
def block_device():
    return FakeBlockDevice()


@pytest.fixture
def fake_block_device():
    return FakeBlockDevice


@pytest.fixture
def sail_config():
    return SailConfig(
        disk="/dev/disk/by-id/ata-TEST_DISK",
        partsize_esp="1G",
        partsize_bpool="4G",
        hostname="lbox",
        timezone="Asia/Jakarta",
        root_password="123",
    )


@pytest.fixture
def target(sail_config, block_device):
    return sail_config.build_target(block_device)


@pytest.fixture
def make_target():
    def _make(partitions=(), storage_class="ssd", zfs_packaging="normal", kernel_variant="linux",
              disk="/dev/disk/by-id/ata-TEST_DISK"):
        return TargetDescriptor.create(
            kernel_variant, zfs_packaging, storage_class, disk, "1G", "4G", FakeBlockDevice(partitions)
        )

    return _make
