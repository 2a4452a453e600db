#!/usr/bin/env python3
# System Configuration Module
# Writes the target's configuration files and runs first-boot setup

import os
import re
import tempfile

from loguru import logger

from .resources import (
    ARCHZFS_KEY_ID_URL,
    ARCHZFS_KEY_URL,
    ARCHZFS_MIRRORLIST_URL,
    ARCHZFS_REPO,
    KERNEL_UPDATER,
    MKINITCPIO_HOOKS,
)

EFI_MOUNT_OPTIONS = "x-systemd.idle-timeout=1min,x-systemd.automount,noauto,umask=0022,fmask=0022,dmask=0022"

ZFS_ENABLED_UNITS = ["zfs-import-scan.service", "zfs-import.target", "zfs-zed", "zfs.target"]
# Datasets are mounted through their canmount/mountpoint properties instead
ZFS_DISABLED_UNITS = ["zfs-mount"]

_ZFS_FSTYPE = re.compile(r"zfs\s*")


def filter_fstab(genfstab_output):
    """Keep only ZFS entries from genfstab, forcing zfsutil (legacy) mount handling."""
    kept = []
    for line in genfstab_output.splitlines():
        line = _ZFS_FSTYPE.sub("zfs zfsutil,", line)
        if "zfs zfsutil" in line:
            kept.append(line)
    return kept


def efi_fstab_entries(uuid, efi_last_path):
    return [
        f"UUID={uuid} /boot/efis/{efi_last_path} vfat {EFI_MOUNT_OPTIONS} 0 1",
        f"UUID={uuid} /boot/efi vfat {EFI_MOUNT_OPTIONS} 0 1",
    ]


def pin_packages(pacman_conf, packages):
    """Enable IgnorePkg in pacman.conf and add `packages` to it"""
    lines = []
    for line in pacman_conf.splitlines():
        line = line.replace("#IgnorePkg", "IgnorePkg")
        if line.startswith("IgnorePkg"):
            line = f"{line} {' '.join(packages)}"
        lines.append(line)
    return "\n".join(lines) + "\n"


def _append(path, text):
    with open(path, "a") as f:
        f.write(text if text.endswith("\n") else text + "\n")


class SystemConfig:
    def __init__(self, context, target, config, block_device):
        self.context = context
        self.target = target
        self.config = config
        self.block_device = block_device

    @property
    def root_mount(self):
        return self.context.root_mount

    def configure_system(self):
        """Configure the installed system in place"""
        self._configure_grub_defaults()
        self._generate_fstab()
        self._configure_mkinitcpio()
        self._configure_time_sync()
        self._configure_firstboot()
        self._generate_hostid()
        self._pin_kernel()
        self._write_kernel_updater()
        self._configure_zfs_services()
        self._configure_locale()
        self._add_archzfs_repo()

    def _configure_grub_defaults(self):
        logger.info("Set mkinitcpio zfs hook scan path...")
        _append(
            self.context.target("etc/default/grub"),
            f'GRUB_DISABLE_OS_PROBER=false\nGRUB_CMDLINE_LINUX="zfs_import_dir={self.target.disk_parent}"\n',
        )

    def _generate_fstab(self):
        logger.info("Generate fstab...")
        out = self.context.runner.output(["genfstab", "-U", self.root_mount], description="Generate fstab")
        lines = filter_fstab(out)

        uuid = self.block_device.uuid(self.target.efi_part)
        lines.extend(efi_fstab_entries(uuid, self.target.efi_last_path))

        self.context.target("etc/fstab").write_text("\n".join(lines) + "\n")

    def _configure_mkinitcpio(self):
        logger.info("Configure mkinitcpio...")
        conf = self.context.target("etc/mkinitcpio.conf")
        if conf.exists():
            conf.replace(conf.with_name("mkinitcpio.conf.old"))
        conf.write_text(MKINITCPIO_HOOKS + "\n")

    def _configure_time_sync(self):
        logger.info("Enable internet time sync...")
        runner = self.context.runner
        runner.run(["hwclock", "--systohc"], description="Sync hardware clock")
        runner.run(
            ["systemctl", "enable", "systemd-timesyncd", f"--root={self.root_mount}"],
            description="Enable systemd-timesyncd",
        )

    def _configure_firstboot(self):
        logger.info("Set locale, timezone, keymap...")
        runner = self.context.runner
        config = self.config

        self.context.target("etc/localtime").unlink(missing_ok=True)

        # Keep the password off the command line
        with tempfile.NamedTemporaryFile("w", prefix="sail-", delete=False) as f:
            f.write(config.root_password)
            password_file = f.name
        try:
            runner.run(
                [
                    "systemd-firstboot",
                    f"--root={self.root_mount}",
                    "--force",
                    f"--locale={config.locale}",
                    f"--locale-messages={config.locale}",
                    f"--keymap={config.keymap}",
                    f"--timezone={config.timezone}",
                    f"--hostname={config.hostname}",
                    f"--root-password-file={password_file}",
                    "--root-shell=/bin/bash",
                ],
                description="Run systemd-firstboot",
            )
        finally:
            os.unlink(password_file)

        # systemd-firstboot does not always apply the root password
        logger.info("Change root password using chroot...")
        runner.chroot(
            self.root_mount,
            ["passwd"],
            description="Set root password",
            input_text=f"{config.root_password}\n{config.root_password}\n",
        )

    def _generate_hostid(self):
        logger.info("Generate hostid...")
        self.context.runner.run(
            ["zgenhostid", "-f", "-o", str(self.context.target("etc/hostid"))],
            description="Generate hostid",
        )

    def _pin_kernel(self):
        logger.info("Ignore kernel update...")
        target = self.target
        pacman_conf = self.context.target("etc/pacman.conf")
        pacman_conf.write_text(
            pin_packages(
                pacman_conf.read_text(),
                [target.kernel, target.kernel_headers, target.zfs_package, "zfs-utils"],
            )
        )

    def _write_kernel_updater(self):
        logger.info("Generate kernel_updater script in /usr/local/bin...")
        path = self.context.target("usr/local/bin/kernel_updater")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(KERNEL_UPDATER)
        path.chmod(0o755)

    def _configure_zfs_services(self):
        logger.info("Enable zfs services...")
        runner = self.context.runner
        runner.run(
            ["systemctl", "enable", *ZFS_ENABLED_UNITS, f"--root={self.root_mount}"],
            description="Enable zfs services",
        )
        runner.run(
            ["systemctl", "disable", *ZFS_DISABLED_UNITS, f"--root={self.root_mount}"],
            description="Disable zfs-mount",
        )

    def _configure_locale(self):
        logger.info("Apply locales...")
        self.context.target("etc/locale.gen").write_text(f"{self.config.locale} UTF-8\n")
        self.context.runner.chroot(self.root_mount, ["locale-gen"], description="Generate locales")

    def _add_archzfs_repo(self):
        logger.info("Import keys of archzfs...")
        runner = self.context.runner

        key = runner.output(["curl", "-fsSL", ARCHZFS_KEY_URL], description="Download archzfs key")
        runner.chroot(self.root_mount, ["pacman-key", "-a", "-"], description="Import archzfs key", input_text=key + "\n")

        key_id = runner.output(["curl", "-fsSL", ARCHZFS_KEY_ID_URL], description="Download archzfs key id")
        runner.chroot(self.root_mount, ["pacman-key", "--lsign-key", key_id], description="Sign archzfs key")

        mirrorlist = runner.output(["curl", "-fsSL", ARCHZFS_MIRRORLIST_URL], description="Download archzfs mirrorlist")
        self.context.target("etc/pacman.d/mirrorlist-archzfs").write_text(mirrorlist + "\n")

        logger.info("Add archzfs repo...")
        _append(self.context.target("etc/pacman.conf"), ARCHZFS_REPO)
