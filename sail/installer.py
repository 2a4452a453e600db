#!/usr/bin/env python3
# Installer Module
# Main installation logic for Arch Linux with ZFS

from loguru import logger

from .aur_manager import AURManager
from .boot_manager import BootManager
from .disk_manager import BlockDevice, DiskManager
from .exceptions import InstallCancelledError
from .package_index import PackageIndex, select_kernel_source
from .preflight import run_preflight
from .resources import POST_INSTALL_SCRIPTS, maintenance_units
from .system_config import SystemConfig
from .target import BOOT_POOL, ROOT_POOL
from .zfs_manager import ZFSManager

BASE_PACKAGES = [
    "base",
    "base-devel",
    "dosfstools",
    "efibootmgr",
    "grub",
    "git",
    "htop",
    "mandoc",
    "mkinitcpio",
    "neovim",
    "networkmanager",
    "reflector",
    "sudo",
    "zsh",
]
FIRMWARE_PACKAGES = ["linux-firmware", "intel-ucode", "amd-ucode"]

POST_INSTALL_DIR = "root/post_install_scripts"
SYSTEMD_UNIT_DIR = "etc/systemd/system"

SETTLE_DELAY = 1


class Installer:
    def __init__(self, context, target, config, block_device, package_index=None):
        self.context = context
        self.target = target
        self.config = config
        self.package_index = package_index or PackageIndex(context.runner)

        self.disk_manager = DiskManager(context, target)
        self.zfs_manager = ZFSManager(context, target)
        self.system_config = SystemConfig(context, target, config, block_device)
        self.aur_manager = AURManager(context)
        self.boot_manager = BootManager(context, target)

    @property
    def root_mount(self):
        return self.context.root_mount

    def stages(self):
        """The installation pipeline, in the only order it can run"""
        return [
            ("partition disk", self.disk_manager.partition_disk),
            ("create pools and datasets", self.zfs_manager.format_disk),
            ("install base system", self.install_base_system),
            ("configure system", self.system_config.configure_system),
            ("install AUR helpers", self.aur_manager.install_helpers),
            ("apply grub workarounds", self.boot_manager.apply_workarounds),
            ("install bootloader", self.boot_manager.install_bootloader),
            ("finalize", self.finalize_installation),
            ("snapshot and clean up", self.snapshot_and_clean),
        ]

    def run(self):
        """Run every stage in order, stopping at the first failure"""
        for name, stage in self.stages():
            logger.info(f"==> {name}")
            try:
                stage()
            except Exception:
                logger.error(f"Stage '{name}' failed")
                self.context.rollback.unwind(self.context.runner)
                raise
        self.context.rollback.clear()

    def install_base_system(self):
        """Install the base system and a kernel the ZFS module was built for"""
        runner = self.context.runner
        index = self.package_index
        target = self.target

        logger.info("Update pacman repository...")
        index.refresh()

        logger.info("Check compatible kernel version...")
        required = index.info(target.zfs_package).pinned_version(target.kernel)

        logger.info("Check repo kernel version...")
        available = index.info(target.kernel).version

        logger.info("Install base packages...")
        self._pacstrap(BASE_PACKAGES, "Install base packages")

        logger.info("Install kernel, download from archive if not available...")
        source = select_kernel_source(target.kernel, required, available)
        if not source.from_archive:
            logger.info(f"Install {target.kernel} {source.version} from repo...")
            self._pacstrap([target.kernel, target.kernel_headers], "Install kernel")
        else:
            logger.info(f"Install manually from {source.url}")
            runner.run(["pacstrap", "-U", self.root_mount, source.url], description="Install kernel from archive")
            self._pacstrap([target.kernel_headers], "Install kernel headers")

        logger.info("Install firmware...")
        self._pacstrap(FIRMWARE_PACKAGES, "Install firmware")

        logger.info("Install zfs...")
        self._pacstrap([target.zfs_package, "zfs-utils"], "Install zfs")

        return source

    def _pacstrap(self, packages, description):
        self.context.runner.run(["pacstrap", "-c", self.root_mount, *packages], description=description)

    def finalize_installation(self):
        """Maintenance timers, services, sudo and the post-install scripts"""
        self.write_maintenance_units()
        self.enable_services()

        logger.info("Add wheel to sudoers...")
        with open(self.context.target("etc/sudoers"), "a") as f:
            f.write("%wheel ALL=(ALL) ALL\n")

        self.write_post_install_scripts()
        self.context.sleep(SETTLE_DELAY)

    def maintenance_actions(self):
        actions = ["scrub"]
        if self.target.uses_ssd:
            actions.append("trim")
        return actions

    def write_maintenance_units(self):
        unit_dir = self.context.target(SYSTEMD_UNIT_DIR)
        unit_dir.mkdir(parents=True, exist_ok=True)
        for action in self.maintenance_actions():
            logger.info(f"Generate monthly {action} service...")
            for name, content in maintenance_units(action).items():
                (unit_dir / name).write_text(content)

    def enable_services(self):
        logger.info("Enable systemd services...")
        units = ["NetworkManager"]
        for action in self.maintenance_actions():
            units.extend(f"zfs-{action}@{pool}.timer" for pool in (ROOT_POOL, BOOT_POOL))
        for unit in units:
            self.context.runner.chroot(self.root_mount, ["systemctl", "enable", unit], description=f"Enable {unit}")

    def write_post_install_scripts(self):
        logger.info("Generating post-installation scripts...")
        script_dir = self.context.target(POST_INSTALL_DIR)
        script_dir.mkdir(parents=True, exist_ok=True)
        for name, content in POST_INSTALL_SCRIPTS.items():
            path = script_dir / f"{name}.sh"
            path.write_text(content)
            path.chmod(0o700)

    def snapshot_and_clean(self):
        # The system is installed by now; a failure here must not destroy it
        self.context.rollback.clear()
        self.zfs_manager.snapshot_install()
        self.zfs_manager.unmount_esps()
        self.zfs_manager.export_pools()


def install(context, config, confirm=None):
    """Check the host, resolve the target disk and run the whole pipeline

    `confirm` is called with the resolved target before anything is written
    and cancels the run when it returns False.
    """
    run_preflight(context)

    block_device = BlockDevice(context.runner)
    target = config.build_target(block_device)
    logger.info(
        f"Installing {target.kernel} with {target.zfs_package} on {target.disk}, "
        f"partitions {target.efi_part}, {target.bpool_part}, {target.rpool_part}"
    )

    if confirm is not None and not confirm(target):
        raise InstallCancelledError()

    installer = Installer(context, target, config, block_device)
    installer.run()
    return installer
