#!/usr/bin/env python3
# Target Descriptor Module
# Validated installation parameters and the names derived from them

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath

from .exceptions import ValidationError

BOOT_POOL = "bpool"
ROOT_POOL = "rpool"

SIZE_UNITS = ("K", "M", "G", "T", "P")
_SIZE_RE = re.compile(r"^([0-9]+)([KMGTP])$")


class KernelVariant(Enum):
    LINUX = "linux"
    LINUX_LTS = "linux-lts"
    LINUX_ZEN = "linux-zen"
    LINUX_HARDENED = "linux-hardened"


class ZfsPackaging(Enum):
    NORMAL = "normal"
    DKMS = "dkms"


class StorageClass(Enum):
    SSD = "ssd"
    HDD = "hdd"


def parse_choice(enum_cls, value):
    """Look up an enum member by value, rejecting anything else as a ValidationError."""
    try:
        return enum_cls(value)
    except ValueError:
        choices = ", ".join(m.value for m in enum_cls)
        raise ValidationError(value, f"must be one of: {choices}") from None


def validate_size(size):
    """Accept `<positive integer><K|M|G|T|P>`, e.g. "512M" or "4G"."""
    if not isinstance(size, str) or not size:
        raise ValidationError(size, "partition size is empty")
    if size[-1] not in SIZE_UNITS:
        raise ValidationError(size, f"isn't a valid unit in partsize_* ({', '.join(SIZE_UNITS)})")
    match = _SIZE_RE.match(size)
    if match is None:
        raise ValidationError(size, "invalid partsize_* magnitude")
    if int(match.group(1)) <= 0:
        raise ValidationError(size, "partsize_* must be greater than zero")
    return size


@dataclass(frozen=True)
class TargetDescriptor:
    """Where and what to install. Built once, read by every stage, never changed."""

    kernel_variant: KernelVariant
    zfs_packaging: ZfsPackaging
    storage_class: StorageClass
    disk: str
    partsize_esp: str
    partsize_bpool: str
    next_partition_number: int

    @classmethod
    def create(cls, kernel_variant, zfs_packaging, storage_class, disk, partsize_esp, partsize_bpool, block_device):
        """Validate the parameters and read the disk's partition table.

        The partition table read is the only thing touching the system; it
        does not modify the disk.
        """
        if not block_device.is_block_device(disk):
            raise ValidationError(disk, "is not a block device")
        for size in (partsize_esp, partsize_bpool):
            validate_size(size)

        existing = block_device.partition_numbers(disk)
        next_partition_number = max(existing) + 1 if existing else 1

        return cls(
            kernel_variant=parse_choice(KernelVariant, kernel_variant),
            zfs_packaging=parse_choice(ZfsPackaging, zfs_packaging),
            storage_class=parse_choice(StorageClass, storage_class),
            disk=disk,
            partsize_esp=partsize_esp,
            partsize_bpool=partsize_bpool,
            next_partition_number=next_partition_number,
        )

    @property
    def kernel(self):
        return self.kernel_variant.value

    @property
    def kernel_headers(self):
        return f"{self.kernel}-headers"

    @property
    def zfs_package(self):
        if self.zfs_packaging is ZfsPackaging.DKMS:
            return "zfs-dkms"
        return f"zfs-{self.kernel}"

    @property
    def uses_ssd(self):
        return self.storage_class is StorageClass.SSD

    def _part(self, offset):
        return f"{self.disk}-part{self.next_partition_number + offset}"

    @property
    def efi_part(self):
        return self._part(0)

    @property
    def bpool_part(self):
        return self._part(1)

    @property
    def rpool_part(self):
        return self._part(2)

    @property
    def efi_last_path(self):
        """Last component of the EFI partition path, used as its /boot/efis/ directory"""
        return PurePosixPath(self.efi_part).name

    @property
    def disk_last_path(self):
        return PurePosixPath(self.disk).name

    @property
    def disk_parent(self):
        return str(PurePosixPath(self.disk).parent)

    @property
    def pools(self):
        return (BOOT_POOL, ROOT_POOL)
