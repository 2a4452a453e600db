#!/usr/bin/env python3
# Installer Exceptions
# Error hierarchy shared by every installation stage

"""Exceptions raised by the installer.

Exception Hierarchy:
    SailError (base)
        ├── ValidationError
        ├── ConfigNotFoundError
        ├── PrivilegeError
        ├── MissingDependencyError
        ├── CommandError
        ├── DeviceTimeoutError
        └── InstallCancelledError

Validation, privilege and dependency errors are raised before anything is
written to disk. CommandError is the only failure mode of the pipeline
stages themselves.
"""


class SailError(Exception):
    """Base exception for all installer errors."""


class ValidationError(SailError):
    """An installation parameter failed validation."""

    def __init__(self, value, reason):
        self.value = value
        self.reason = reason
        super().__init__(f"{value!r}: {reason}")


class ConfigNotFoundError(SailError):
    """The configuration file was missing and a template was generated."""

    def __init__(self, path):
        self.path = path
        super().__init__(f"{path} not found, generated a new one. Edit it before running again.")


class PrivilegeError(SailError):
    """The installer is not running as root."""

    def __init__(self, euid):
        self.euid = euid
        super().__init__(f"Must be run as root (effective uid is {euid})")


class MissingDependencyError(SailError):
    """A required external tool is not on the search path."""

    def __init__(self, tool):
        self.tool = tool
        super().__init__(f"Required command not found: {tool}")


class CommandError(SailError):
    """An external command exited with a non-zero status."""

    def __init__(self, description, argv, returncode, stderr=""):
        self.description = description
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        msg = f"{description} failed ({returncode}): {' '.join(self.argv)}"
        if stderr:
            msg += f"\n{stderr.strip()}"
        super().__init__(msg)


class DeviceTimeoutError(SailError):
    """Partition device nodes did not appear in time."""

    def __init__(self, paths, timeout):
        self.paths = list(paths)
        self.timeout = timeout
        super().__init__(f"Device nodes did not appear within {timeout}s: {', '.join(self.paths)}")


class InstallCancelledError(SailError):
    """The operator declined the destructive run."""

    def __init__(self):
        super().__init__("Installation cancelled by user.")
