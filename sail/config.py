#!/usr/bin/env python3
# Configuration Module
# Loads sail.yaml, or writes a template for the operator to edit

from dataclasses import asdict, dataclass, fields
from pathlib import Path

import yaml

from .exceptions import ConfigNotFoundError, ValidationError
from .target import TargetDescriptor

CONFIG_FILE = "sail.yaml"

TEMPLATE_HEADER = """\
# sail installer configuration
#
# kernel_variant: linux | linux-lts | linux-zen | linux-hardened
# zfs_packaging:  normal (zfs-<kernel>) | dkms (zfs-dkms)
# storage_class:  ssd | hdd (hdd skips the monthly TRIM timers)
# disk:           use a /dev/disk/by-id path, partitions are addressed as <disk>-partN
# partsize_*:     <number><K|M|G|T|P>
# Quote values YAML would read as a number or boolean, e.g. root_password: '0755'
"""


@dataclass(frozen=True)
class SailConfig:
    kernel_variant: str = "linux"
    zfs_packaging: str = "normal"
    storage_class: str = "ssd"
    disk: str = "/dev/disk/by-id/CHANGE_ME"
    partsize_esp: str = "1G"
    partsize_bpool: str = "4G"
    hostname: str = "archzfs"
    timezone: str = "UTC"
    locale: str = "en_US.UTF-8"
    keymap: str = "us"
    root_password: str = ""

    @classmethod
    def from_mapping(cls, raw):
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ValidationError(", ".join(unknown), "unknown configuration keys")

        values = {}
        for key, value in raw.items():
            if value is None:
                continue
            # YAML reads 0755 as an int and `no` as a bool; str() would not give the text back
            if not isinstance(value, str):
                raise ValidationError(value, f"{key} must be a string, quote it in the configuration file")
            values[key] = value
        config = cls(**values)
        config.validate()
        return config

    def validate(self):
        if not self.root_password:
            raise ValidationError(self.root_password, "root_password must be set")
        if not self.hostname or " " in self.hostname:
            raise ValidationError(self.hostname, "hostname must be non-empty without spaces")
        for key in ("timezone", "locale", "keymap"):
            if not getattr(self, key):
                raise ValidationError(getattr(self, key), f"{key} must be set")

    def build_target(self, block_device):
        return TargetDescriptor.create(
            self.kernel_variant,
            self.zfs_packaging,
            self.storage_class,
            self.disk,
            self.partsize_esp,
            self.partsize_bpool,
            block_device,
        )


def generate_config(path):
    """Write a default configuration and stop so it can be edited"""
    path = Path(path)
    body = yaml.safe_dump(asdict(SailConfig()), sort_keys=False, default_flow_style=False)
    path.write_text(TEMPLATE_HEADER + "\n" + body, encoding="utf-8")
    raise ConfigNotFoundError(str(path))


def load_config(path):
    path = Path(path)
    if not path.is_file():
        generate_config(path)

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValidationError(str(path), "configuration must contain a mapping")

    return SailConfig.from_mapping(raw)
