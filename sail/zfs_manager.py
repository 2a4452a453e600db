#!/usr/bin/env python3
# ZFS Manager Module
# Handles ZFS pool and dataset operations

from loguru import logger

from .target import BOOT_POOL, ROOT_POOL

BOOT_POOL_OPTIONS = [
    "-o", "compatibility=grub2",
    "-o", "ashift=12",
    "-o", "autotrim=on",
    "-O", "acltype=posixacl",
    "-O", "canmount=off",
    "-O", "compression=lz4",
    "-O", "devices=off",
    "-O", "normalization=formD",
    "-O", "relatime=on",
    "-O", "xattr=sa",
    "-O", "mountpoint=/boot",
]

ROOT_POOL_OPTIONS = [
    "-o", "ashift=12",
    "-o", "autotrim=on",
    "-O", "acltype=posixacl",
    "-O", "canmount=off",
    "-O", "compression=zstd",
    "-O", "dnodesize=auto",
    "-O", "normalization=formD",
    "-O", "relatime=on",
    "-O", "xattr=sa",
    "-O", "mountpoint=/",
]

ROOT_DATASET = f"{ROOT_POOL}/arch/ROOT/default"
BOOT_DATASET = f"{BOOT_POOL}/arch/BOOT/default"
DATA_DATASET = f"{ROOT_POOL}/arch/DATA/default"

# (dataset, properties), in creation order: parents always come first
CONTAINER_DATASETS = [
    (f"{ROOT_POOL}/arch", ["canmount=off", "mountpoint=none"]),
    (f"{BOOT_POOL}/arch", ["canmount=off", "mountpoint=none"]),
    (f"{BOOT_POOL}/arch/BOOT", ["canmount=off", "mountpoint=none"]),
    (f"{ROOT_POOL}/arch/ROOT", ["canmount=off", "mountpoint=none"]),
    (f"{ROOT_POOL}/arch/DATA", ["canmount=off", "mountpoint=none"]),
    (BOOT_DATASET, ["mountpoint=/boot", "canmount=noauto"]),
    (DATA_DATASET, ["mountpoint=/", "canmount=off"]),
    (ROOT_DATASET, ["mountpoint=/", "canmount=noauto"]),
]

# Mounted by hand: canmount=noauto keeps them from mounting on import
MOUNTED_DATASETS = [ROOT_DATASET, BOOT_DATASET]

NOAUTO_DATA_DIRS = ["usr", "var", "var/lib"]
DATA_DIRS = ["home", "root", "srv", "usr/local", "var/log", "var/spool"]

# Optional datasets so application state is snapshotted separately from the OS
APPLICATION_DATA_DIRS = [
    "var/games",
    "var/www",
    "var/lib/AccountsService",  # GNOME
    "var/lib/docker",
    "var/lib/nfs",
    "var/lib/lxc",
    "var/lib/libvirt",
]

DIR_MODES = {
    "root": "750",
    "var/games": "775",
}

SNAPSHOT_NAME = "install"


class ZFSManager:
    def __init__(self, context, target):
        self.context = context
        self.target = target

    @property
    def root_mount(self):
        return self.context.root_mount

    def format_disk(self):
        """Create both pools, the dataset tree and the EFI filesystem"""
        self.load_module()
        self.create_pools()
        self.create_datasets()
        self.setup_esp()

    def load_module(self):
        logger.info("Load zfs kernel module...")
        self.context.runner.run(["modprobe", "zfs"], description="Load zfs kernel module")

    def create_pools(self):
        runner = self.context.runner

        logger.info(f"Create boot pool '{BOOT_POOL}' on {self.target.bpool_part}...")
        runner.run(
            ["zpool", "create", *BOOT_POOL_OPTIONS, "-R", self.root_mount, BOOT_POOL, self.target.bpool_part],
            description="Create boot pool",
        )
        self.context.rollback.push(f"Destroy pool {BOOT_POOL}", ["zpool", "destroy", "-f", BOOT_POOL])

        logger.info(f"Create root pool '{ROOT_POOL}' on {self.target.rpool_part}...")
        runner.run(
            ["zpool", "create", *ROOT_POOL_OPTIONS, "-R", self.root_mount, ROOT_POOL, self.target.rpool_part],
            description="Create root pool",
        )
        self.context.rollback.push(f"Destroy pool {ROOT_POOL}", ["zpool", "destroy", "-f", ROOT_POOL])

    def create_datasets(self):
        """Create the dataset hierarchy under both pools"""
        logger.info("Create root and boot datasets...")
        for name, properties in CONTAINER_DATASETS:
            self._create_dataset(name, *properties)

        # The root dataset has to be mounted before child mountpoints resolve
        for name in MOUNTED_DATASETS:
            self.context.runner.run(["zfs", "mount", name], description=f"Mount {name}")

        logger.info("Create data datasets...")
        for path in NOAUTO_DATA_DIRS:
            self._create_dataset(f"{DATA_DATASET}/{path}", "canmount=off")
        for path in DATA_DIRS:
            self._create_dataset(f"{DATA_DATASET}/{path}", "canmount=on")

        logger.info("Create optional application datasets...")
        for path in APPLICATION_DATA_DIRS:
            self._create_dataset(f"{DATA_DATASET}/{path}", "canmount=on")

        for path, mode in DIR_MODES.items():
            self.context.runner.run(["chmod", mode, str(self.context.target(path))], description=f"Set mode of /{path}")

    def _create_dataset(self, name, *properties):
        """Create a ZFS dataset with the given properties"""
        cmd = ["zfs", "create"]
        for prop in properties:
            cmd.extend(["-o", prop])
        cmd.append(name)
        self.context.runner.run(cmd, description=f"Create dataset {name}")

    def setup_esp(self):
        """Format the EFI partition and mount it at its own and the shared path"""
        runner = self.context.runner
        efi_part = self.target.efi_part

        logger.info(f"Format and mount esp {efi_part}...")
        runner.run(["mkfs.vfat", "-n", "EFI", efi_part], description="Format EFI partition")

        for mountpoint in (self.efis_mountpoint, str(self.context.target("boot/efi"))):
            runner.run(["mkdir", "-p", mountpoint], description=f"Create {mountpoint}")
            runner.run(["mount", "-t", "vfat", efi_part, mountpoint], description=f"Mount EFI partition at {mountpoint}")
            self.context.rollback.push(f"Unmount {mountpoint}", ["umount", mountpoint])

    @property
    def efis_mountpoint(self):
        return str(self.context.target("boot/efis", self.target.efi_last_path))

    def snapshot_install(self):
        """Recursive snapshot of both pools, the clean install restore point"""
        logger.info("Snapshot of clean installation...")
        for pool in (ROOT_POOL, BOOT_POOL):
            self.context.runner.run(
                ["zfs", "snapshot", "-r", f"{pool}/arch@{SNAPSHOT_NAME}"],
                description=f"Snapshot {pool}",
            )

    def unmount_esps(self):
        logger.info("Unmount efi partitions...")
        runner = self.context.runner
        runner.run(["umount", str(self.context.target("boot/efi"))], description="Unmount /boot/efi")

        efis_dir = self.context.target("boot/efis")
        if efis_dir.is_dir():
            for mountpoint in sorted(efis_dir.iterdir()):
                runner.run(["umount", str(mountpoint)], description=f"Unmount {mountpoint}")

    def export_pools(self):
        """Export both pools so the live environment releases them before reboot"""
        logger.info("Export pools...")
        for pool in (BOOT_POOL, ROOT_POOL):
            self.context.runner.run(["zpool", "export", pool], description=f"Export pool {pool}")
