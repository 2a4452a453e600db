"""Tests for the installation pipeline."""

import pytest

from sail.exceptions import (
    CommandError,
    InstallCancelledError,
    MissingDependencyError,
    PrivilegeError,
    ValidationError,
)
from sail.installer import BASE_PACKAGES, FIRMWARE_PACKAGES, Installer, install
from sail.preflight import REQUIRED_COMMANDS
from sail.resources import POST_INSTALL_SCRIPTS

ZFS_LINUX_INFO = "Name : zfs-linux\nVersion : 2.2.2_6.6.8.arch1.1-1\nDepends On : kmod  zfs-utils=2.2.2  linux=6.6.8.arch1-1\n"
SGDISK_EMPTY = "Number  Start (sector)    End (sector)  Size       Code  Name\n"


def linux_info(version):
    return f"Name : linux\nVersion : {version}\nDepends On : coreutils\n"


@pytest.fixture
def installed_root(root):
    """A target root holding the files pacstrap would have installed"""
    for directory in ("etc/default", "etc/pacman.d", "etc/grub.d", "boot/efi/EFI/arch", "boot/efis/ata-TEST_DISK-part1"):
        (root / directory).mkdir(parents=True)
    (root / "etc/default/grub").write_text("GRUB_TIMEOUT=5\n")
    (root / "etc/pacman.conf").write_text("[options]\n#IgnorePkg   =\n")
    (root / "etc/mkinitcpio.conf").write_text("HOOKS=(base)\n")
    (root / "etc/sudoers").write_text("root ALL=(ALL) ALL\n")
    (root / "etc/grub.d/10_linux").write_text("rpool=`grub-probe --target=fs_label`\n")
    return root


@pytest.fixture
def installer(context, runner, sail_config, block_device, installed_root):
    def _make(target, repo_version="6.6.8.arch1-1"):
        context.exists = lambda path: True
        runner.responses[("pacman", "-Si", target.zfs_package)] = ZFS_LINUX_INFO
        runner.responses[("pacman", "-Si", target.kernel)] = linux_info(repo_version)
        return Installer(context, target, sail_config, block_device)

    return _make


def pacstraps(runner):
    return runner.commands("pacstrap")


class TestInstallBaseSystem:
    def test_kernel_from_repo(self, installer, runner, root, target):
        source = installer(target).install_base_system()

        assert not source.from_archive
        assert runner.calls[0] == ["pacman", "-Sy"]
        assert pacstraps(runner) == [
            ["pacstrap", "-c", str(root), *BASE_PACKAGES],
            ["pacstrap", "-c", str(root), "linux", "linux-headers"],
            ["pacstrap", "-c", str(root), *FIRMWARE_PACKAGES],
            ["pacstrap", "-c", str(root), "zfs-linux", "zfs-utils"],
        ]

    def test_kernel_from_archive_when_repo_moved_on(self, installer, runner, root, target):
        source = installer(target, repo_version="6.7.1.arch1-1").install_base_system()

        assert source.from_archive
        url = "https://archive.archlinux.org/packages/l/linux/linux-6.6.8.arch1-1-x86_64.pkg.tar.zst"
        assert ["pacstrap", "-U", str(root), url] in pacstraps(runner)
        assert ["pacstrap", "-c", str(root), "linux-headers"] in pacstraps(runner)
        assert ["pacstrap", "-c", str(root), "linux", "linux-headers"] not in pacstraps(runner)

    def test_dkms_uses_repo_kernel(self, installer, runner, root, make_target):
        target = make_target(zfs_packaging="dkms")
        inst = installer(target, repo_version="6.7.1.arch1-1")
        runner.responses[("pacman", "-Si", "zfs-dkms")] = "Name : zfs-dkms\nVersion : 2.2.2-1\nDepends On : dkms\n"

        source = inst.install_base_system()

        assert not source.from_archive
        assert pacstraps(runner)[-1] == ["pacstrap", "-c", str(root), "zfs-dkms", "zfs-utils"]

    def test_pacstrap_failure_propagates(self, installer, runner, target):
        runner.failures.add(("pacstrap", "-c"))

        with pytest.raises(CommandError, match="Install base packages"):
            installer(target).install_base_system()


class TestFinalize:
    def test_ssd_gets_scrub_and_trim(self, installer, runner, root, make_target):
        installer(make_target(storage_class="ssd")).finalize_installation()

        enabled = [c[-1] for c in runner.chroot_commands() if c[:2] == ["systemctl", "enable"]]
        assert enabled == [
            "NetworkManager",
            "zfs-scrub@rpool.timer",
            "zfs-scrub@bpool.timer",
            "zfs-trim@rpool.timer",
            "zfs-trim@bpool.timer",
        ]
        assert (root / "etc/systemd/system/zfs-trim@.timer").exists()
        assert "ExecStart=/usr/bin/zpool trim %i" in (root / "etc/systemd/system/zfs-trim@.service").read_text()

    def test_hdd_skips_trim(self, installer, runner, root, make_target):
        installer(make_target(storage_class="hdd")).finalize_installation()

        enabled = [c[-1] for c in runner.chroot_commands() if c[:2] == ["systemctl", "enable"]]
        assert not any("trim" in unit for unit in enabled)
        assert "zfs-scrub@rpool.timer" in enabled
        assert not (root / "etc/systemd/system/zfs-trim@.timer").exists()
        assert (root / "etc/systemd/system/zfs-scrub@.service").exists()

    def test_sudoers_and_post_install_scripts(self, installer, root, target):
        installer(target).finalize_installation()

        assert (root / "etc/sudoers").read_text().endswith("%wheel ALL=(ALL) ALL\n")
        for name in POST_INSTALL_SCRIPTS:
            script = root / "root/post_install_scripts" / f"{name}.sh"
            assert script.read_text().startswith("#!/bin/bash")
            assert script.stat().st_mode & 0o777 == 0o700


class TestRun:
    def test_stage_order(self, installer, target):
        names = [name for name, _ in installer(target).stages()]

        assert names == [
            "partition disk",
            "create pools and datasets",
            "install base system",
            "configure system",
            "install AUR helpers",
            "apply grub workarounds",
            "install bootloader",
            "finalize",
            "snapshot and clean up",
        ]

    def test_full_run(self, installer, runner, target):
        installer(target).run()

        tools = [c[0] for c in runner.calls]
        assert tools[0] == "sgdisk"
        assert runner.calls[-2:] == [["zpool", "export", "bpool"], ["zpool", "export", "rpool"]]
        assert ["zfs", "snapshot", "-r", "rpool/arch@install"] in runner.calls

    def test_stops_at_first_failure(self, installer, runner, target):
        runner.failures.add(("zpool", "create"))

        with pytest.raises(CommandError, match="Create boot pool"):
            installer(target).run()

        assert runner.commands("pacstrap") == []
        assert runner.commands("zfs") == []

    def test_rollback_unwinds_on_failure(self, installer, context, runner, target):
        context.rollback.enabled = True
        runner.failures.add(("pacstrap",))

        with pytest.raises(CommandError):
            installer(target).run()

        undo = runner.calls[runner.calls.index(["pacstrap", "-c", context.root_mount, *BASE_PACKAGES]) + 1:]
        assert undo[0] == ["umount", str(context.target("boot/efi"))]
        assert ["zpool", "destroy", "-f", "rpool"] in undo
        assert undo[-1] == ["sgdisk", "-d1", target.disk]
        assert context.rollback.actions == []

    def test_rollback_disabled_leaves_state(self, installer, context, runner, target):
        runner.failures.add(("pacstrap",))

        with pytest.raises(CommandError):
            installer(target).run()

        assert runner.commands("zpool")[-1][1] == "create"
        assert not any(c[:2] == ["sgdisk", "-d1"] for c in runner.calls)

    def test_failure_after_finalize_keeps_installed_system(self, installer, context, runner, target):
        context.rollback.enabled = True
        runner.failures.add(("zpool", "export", "rpool"))

        with pytest.raises(CommandError, match="Export pool rpool"):
            installer(target).run()

        assert runner.calls[-1] == ["zpool", "export", "rpool"]
        assert not any(c[:2] == ["zpool", "destroy"] for c in runner.calls)
        assert not any(c[0] == "sgdisk" and c[1].startswith("-d") for c in runner.calls)

    def test_host_commands_are_preflighted(self, installer, runner, target):
        installer(target).run()

        assert {c[0] for c in runner.calls} <= set(REQUIRED_COMMANDS)

    def test_rollback_cleared_after_success(self, installer, context, target):
        context.rollback.enabled = True

        installer(target).run()

        assert context.rollback.actions == []


class TestInstall:
    @pytest.fixture(autouse=True)
    def partition_table(self, runner):
        runner.responses[("sgdisk", "--print")] = SGDISK_EMPTY

    def test_requires_root(self, context, sail_config):
        context.euid = 1000

        with pytest.raises(PrivilegeError):
            install(context, sail_config)

    def test_requires_tools(self, context, sail_config):
        context.which = lambda name: None if name == "zpool" else f"/usr/bin/{name}"

        with pytest.raises(MissingDependencyError, match="zpool"):
            install(context, sail_config)

    def test_declined_confirmation(self, context, runner, sail_config, monkeypatch):
        monkeypatch.setattr("sail.disk_manager.BlockDevice.is_block_device", lambda self, path: True)
        seen = []

        def confirm(target):
            seen.append(target)
            return False

        with pytest.raises(InstallCancelledError):
            install(context, sail_config, confirm=confirm)

        assert seen[0].efi_part == "/dev/disk/by-id/ata-TEST_DISK-part1"
        assert runner.calls == [["sgdisk", "--print", "/dev/disk/by-id/ata-TEST_DISK"]]

    def test_not_a_block_device(self, context, runner, sail_config):
        with pytest.raises(ValidationError, match="not a block device"):
            install(context, sail_config)

        assert runner.calls == []
