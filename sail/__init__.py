#!/usr/bin/env python3
# Arch ZFS Installer
# Package initialization file

from .config import SailConfig, load_config
from .context import InstallContext
from .installer import Installer, install
from .target import TargetDescriptor

__version__ = "0.1.0"
