#!/usr/bin/env python3
# Install Context Module
# Process state every stage reads instead of touching globals

import os
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from .command import CommandRunner
from .exceptions import CommandError

DEFAULT_ROOT_MOUNT = "/mnt"


class RollbackStack:
    """Compensating commands pushed by stages, unwound in reverse on failure.

    Disabled unless the operator asks for it: partially provisioned state is
    left in place by default so it can be inspected.
    """

    def __init__(self, enabled=False):
        self.enabled = enabled
        self.actions = []

    def push(self, description, argv):
        if self.enabled:
            self.actions.append((description, list(argv)))

    def clear(self):
        self.actions = []

    def unwind(self, runner):
        """Run pushed actions newest first; a failing action is logged and skipped."""
        while self.actions:
            description, argv = self.actions.pop()
            logger.warning(f"Rolling back: {description}")
            try:
                runner.run(argv, description=description)
            except CommandError as e:
                logger.warning(f"Rollback step failed, continuing: {e}")


@dataclass
class InstallContext:
    """Everything a stage needs from the host process.

    Tests build one with a fake runner, a temporary root and stub callables.
    """

    runner: CommandRunner
    root_mount: str = DEFAULT_ROOT_MOUNT
    euid: int = 0
    environ: dict = field(default_factory=dict)
    cwd: str = "."
    which: object = shutil.which
    sleep: object = time.sleep
    exists: object = os.path.exists
    clock: object = time.monotonic
    rollback: RollbackStack = field(default_factory=RollbackStack)

    @classmethod
    def from_process(cls, root_mount=DEFAULT_ROOT_MOUNT, rollback=False):
        """Capture the running process' UID, environment and working directory once."""
        environ = dict(os.environ)
        return cls(
            runner=CommandRunner(env=environ),
            root_mount=root_mount,
            euid=os.geteuid(),
            environ=environ,
            cwd=os.getcwd(),
            which=lambda name: shutil.which(name, path=environ.get("PATH")),
            rollback=RollbackStack(enabled=rollback),
        )

    def target(self, *parts):
        """Path inside the mounted target root."""
        return Path(self.root_mount, *[p.lstrip("/") for p in parts])
