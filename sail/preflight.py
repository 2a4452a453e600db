#!/usr/bin/env python3
# Preflight Module
# Checks that the installer can run before anything touches the disk

from loguru import logger

from .exceptions import MissingDependencyError, PrivilegeError

REQUIRED_COMMANDS = [
    "arch-chroot",
    "blkid",
    "chmod",
    "curl",
    "genfstab",
    "hwclock",
    "mkdir",
    "mkfs.vfat",
    "modprobe",
    "mount",
    "pacman",
    "pacstrap",
    "partprobe",
    "sgdisk",
    "systemctl",
    "systemd-firstboot",
    "umount",
    "zfs",
    "zgenhostid",
    "zpool",
]


def check_as_root(context):
    if context.euid != 0:
        raise PrivilegeError(context.euid)


def check_commands(context, commands=REQUIRED_COMMANDS):
    """Fail on the first required command that is not on PATH"""
    for cmd in commands:
        if context.which(cmd) is None:
            raise MissingDependencyError(cmd)
        logger.debug(f"Found {cmd}")


def run_preflight(context):
    logger.info("Checking privileges and required commands...")
    check_as_root(context)
    check_commands(context)
