#!/usr/bin/env python3
# Disk Manager Module
# Handles block device queries and partitioning of the target disk

import os
import stat

from loguru import logger

from .exceptions import DeviceTimeoutError

# GPT type codes
EFI_TYPE_CODE = "EF00"
BPOOL_TYPE_CODE = "BE00"
RPOOL_TYPE_CODE = "BF00"

PARTITION_WAIT_TIMEOUT = 10.0
PARTITION_WAIT_INTERVAL = 0.2


def parse_partition_numbers(sgdisk_output):
    """Extract partition numbers from the table printed by `sgdisk --print`."""
    numbers = []
    in_table = False
    for line in sgdisk_output.splitlines():
        fields = line.split()
        if not fields:
            continue
        if fields[0] == "Number":
            in_table = True
            continue
        if in_table and fields[0].isdigit():
            numbers.append(int(fields[0]))
    return numbers


class BlockDevice:
    """Narrow wrapper over the tools that describe block devices."""

    def __init__(self, runner):
        self.runner = runner

    def is_block_device(self, path):
        try:
            return stat.S_ISBLK(os.stat(path).st_mode)
        except OSError:
            return False

    def partition_numbers(self, disk):
        """Read the partition table and return the numbers already in use"""
        out = self.runner.output(["sgdisk", "--print", disk], description=f"Read partition table of {disk}")
        return parse_partition_numbers(out)

    def uuid(self, path):
        """Filesystem UUID of a partition"""
        return self.runner.output(["blkid", "-s", "UUID", "-o", "value", path], description=f"Read UUID of {path}")


class DiskManager:
    def __init__(self, context, target):
        self.context = context
        self.target = target

    def partition_disk(self):
        """Create the EFI, boot pool and root pool partitions after any existing ones"""
        runner = self.context.runner
        target = self.target
        disk = target.disk

        layout = [
            ("efi", target.next_partition_number, f"+{target.partsize_esp}", EFI_TYPE_CODE),
            ("bpool", target.next_partition_number + 1, f"+{target.partsize_bpool}", BPOOL_TYPE_CODE),
            # An end of 0 means the rest of the disk
            ("rpool", target.next_partition_number + 2, "0", RPOOL_TYPE_CODE),
        ]

        for name, number, end, type_code in layout:
            logger.info(f"Create {name} partition {number} on {disk}...")
            runner.run(
                ["sgdisk", f"-n{number}:0:{end}", f"-t{number}:{type_code}", disk],
                description=f"Create {name} partition",
            )
            self.context.rollback.push(f"Delete partition {number}", ["sgdisk", f"-d{number}", disk])

        runner.run(["partprobe", disk], description="Re-read partition table")
        self.wait_for_partitions()

    def wait_for_partitions(self, timeout=PARTITION_WAIT_TIMEOUT, interval=PARTITION_WAIT_INTERVAL):
        """Poll until the kernel has created the new partition device nodes"""
        paths = [self.target.efi_part, self.target.bpool_part, self.target.rpool_part]
        deadline = self.context.clock() + timeout

        while True:
            missing = [p for p in paths if not self.context.exists(p)]
            if not missing:
                return
            if self.context.clock() >= deadline:
                raise DeviceTimeoutError(missing, timeout)
            logger.debug(f"Waiting for {', '.join(missing)}")
            self.context.sleep(interval)
