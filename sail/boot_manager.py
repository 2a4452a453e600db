#!/usr/bin/env python3
# Boot Manager Module
# Handles bootloader installation and configuration

import re
import shutil
import tempfile
from pathlib import Path

from loguru import logger

GRUB_BOOT_DIR = "/boot/efi/EFI/arch"
GRUB_LOADER = r"\EFI\arch\grubx64.efi"
ZPOOL_CACHE = "/etc/zfs/zpool.cache"

# grub-probe reports bare vdev names unless told to print full paths
VDEV_NAME_PATH_ENV = "ZPOOL_VDEV_NAME_PATH=YES"

# 10_linux guesses the pool name from the root dataset; read it from the vdev label instead
_POOL_NAME_RE = re.compile(r"rpool=.*")
POOL_NAME_FROM_LABEL = "rpool=`zdb -l ${GRUB_DEVICE} | grep -E '[[:blank:]]name' | cut -d\\' -f 2`"


def patch_grub_linux_script(text):
    return _POOL_NAME_RE.sub(lambda _: POOL_NAME_FROM_LABEL, text)


def mirror_esp(efi_dir, efis_dir):
    """Copy the EFI tree of the primary ESP onto every ESP mounted under efis_dir"""
    efi_dir = Path(efi_dir)
    targets = sorted(p for p in Path(efis_dir).iterdir() if p.is_dir())

    # Stage through a temporary copy: one of the targets is the primary ESP itself
    with tempfile.TemporaryDirectory(prefix="sail-esp-") as staging:
        staged = Path(staging, "EFI")
        shutil.copytree(efi_dir / "EFI", staged)
        for esp in targets:
            logger.debug(f"Mirror EFI tree to {esp}")
            # Replace, not merge: files gone from the primary must not linger
            if (esp / "EFI").exists():
                shutil.rmtree(esp / "EFI")
            shutil.copytree(staged, esp / "EFI")

    return targets


class BootManager:
    def __init__(self, context, target):
        self.context = context
        self.target = target

    @property
    def root_mount(self):
        return self.context.root_mount

    def _chroot(self, argv, description):
        self.context.runner.chroot(self.root_mount, argv, description=description)

    def apply_workarounds(self):
        """Let GRUB resolve ZFS vdevs and pool names on by-id disks"""
        logger.info("Grub canonical path fix...")
        profile = self.context.target("etc/profile.d/zpool_vdev_name_path.sh")
        profile.parent.mkdir(parents=True, exist_ok=True)
        profile.write_text(f"export {VDEV_NAME_PATH_ENV}\n")
        with open(self.context.target("etc/sudoers"), "a") as f:
            f.write('Defaults env_keep += "ZPOOL_VDEV_NAME_PATH"\n')

        logger.info("Pool name missing fix...")
        linux_script = self.context.target("etc/grub.d/10_linux")
        linux_script.write_text(patch_grub_linux_script(linux_script.read_text()))

    def install_bootloader(self):
        """Install GRUB into the ESP and keep every redundant ESP bootable"""
        self.generate_initrd()
        self.install_grub()
        self.generate_grub_menu()
        self.mirror_esps()

    def generate_initrd(self):
        logger.info("Generate initrd...")
        # An empty, immutable cache makes the initramfs import pools by scanning
        self._chroot(["rm", "-f", ZPOOL_CACHE], "Remove zpool cache")
        self._chroot(["touch", ZPOOL_CACHE], "Create empty zpool cache")
        self._chroot(["chmod", "a-w", ZPOOL_CACHE], "Make zpool cache read-only")
        self._chroot(["chattr", "+i", ZPOOL_CACHE], "Make zpool cache immutable")
        self._chroot(["mkinitcpio", "-P"], "Generate initramfs")

    def install_grub(self):
        logger.info("Create grub boot dir, in esp and boot pool...")
        self.context.target(GRUB_BOOT_DIR).mkdir(parents=True, exist_ok=True)
        self.context.target("boot/grub").mkdir(parents=True, exist_ok=True)

        logger.info("Install grub efi...")
        grub_install = ["env", VDEV_NAME_PATH_ENV, "grub-install", "--boot-directory", GRUB_BOOT_DIR, "--efi-directory", "/boot/efi/"]
        self._chroot(grub_install, "Install grub")
        # Fallback loader at the removable-media path for firmware that drops NVRAM entries
        self._chroot([*grub_install, "--removable"], "Install removable grub")

        self._chroot(
            [
                "efibootmgr", "-cg",
                "-p", str(self.target.next_partition_number),
                "-l", GRUB_LOADER,
                "-L", f"arch-{self.target.disk_last_path}",
                "-d", self.target.disk,
            ],
            "Register boot entry",
        )

    def generate_grub_menu(self):
        logger.info("Generate grub menu...")
        grub_cfg = f"{GRUB_BOOT_DIR}/grub/grub.cfg"
        self._chroot(["env", VDEV_NAME_PATH_ENV, "grub-mkconfig", "-o", grub_cfg], "Generate grub menu")
        self._chroot(["cp", grub_cfg, "/boot/grub/grub.cfg"], "Copy grub menu to boot pool")

    def mirror_esps(self):
        logger.info("Mirror esp content...")
        mirror_esp(self.context.target("boot/efi"), self.context.target("boot/efis"))
