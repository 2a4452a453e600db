#!/usr/bin/env python3
# AUR Manager Module
# Builds helper packages from the AUR inside the target and configures zrepl

import yaml
from loguru import logger

from .target import BOOT_POOL, ROOT_POOL

BUILD_USER = "nobody"
BUILD_DIR = "/tmp/build"
SUDOERS_GRANT = "etc/sudoers.d/00_nobody"

# (package, what it is), built in this order
AUR_PACKAGES = [
    ("paru-bin", "AUR helper"),
    ("bieaz", "boot environment manager"),
    ("rozb3-pac", "pacman hook for boot environment manager"),
    ("zrepl-bin", "zrepl auto snapshotter"),
]

SNAPSHOT_PREFIX = "zrepl_"


def zrepl_config():
    """Snapshot every 15 minutes; keep all for an hour, hourly for 12 hours, daily for a week"""
    prefix_regex = f"^{SNAPSHOT_PREFIX}.*"
    return {
        "jobs": [
            {
                "name": "snapjob",
                "type": "snap",
                "filesystems": {
                    f"{BOOT_POOL}/arch/BOOT": True,
                    f"{BOOT_POOL}/arch/BOOT/default": True,
                    f"{ROOT_POOL}/arch/DATA<": True,
                    f"{ROOT_POOL}/arch/ROOT": True,
                    f"{ROOT_POOL}/arch/ROOT/default": True,
                },
                "snapshotting": {
                    "type": "periodic",
                    "interval": "15m",
                    "prefix": SNAPSHOT_PREFIX,
                },
                "pruning": {
                    "keep": [
                        {"type": "grid", "grid": "1x1h(keep=all) | 12x1h | 7x1d", "regex": prefix_regex},
                        # Snapshots zrepl did not take are pruned too
                        {"type": "regex", "negate": True, "regex": prefix_regex},
                    ]
                },
            }
        ]
    }


def build_script(package):
    return (
        f"mkdir -p {BUILD_DIR} && cd {BUILD_DIR} && rm -rf {package} && "
        f"git clone https://aur.archlinux.org/{package}.git && "
        f"cd {package} && makepkg -si --noconfirm"
    )


class AURManager:
    def __init__(self, context):
        self.context = context

    def install_helpers(self):
        """Build and install the AUR helpers as an unprivileged user, then configure zrepl"""
        grant = self.context.target(SUDOERS_GRANT)
        grant.parent.mkdir(parents=True, exist_ok=True)
        grant.write_text(f"{BUILD_USER} ALL=(ALL) NOPASSWD: ALL\n")
        grant.chmod(0o440)

        try:
            for package, label in AUR_PACKAGES:
                self.install_package(package, label)
        finally:
            logger.info("Delete temporary sudo grant...")
            grant.unlink(missing_ok=True)

        self.write_zrepl_config()

    def install_package(self, package, label):
        logger.info(f"Install {label} ({package})...")
        self.context.runner.chroot(
            self.context.root_mount,
            ["su", BUILD_USER, "-s", "/bin/bash", "-c", build_script(package)],
            description=f"Build {package}",
        )

    def write_zrepl_config(self):
        logger.info("Generate zrepl configuration...")
        path = self.context.target("etc/zrepl/zrepl.yml")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(zrepl_config(), sort_keys=False, default_flow_style=False))
