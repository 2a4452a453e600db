#!/usr/bin/env python3
# Command Runner Module
# Runs external tools and turns non-zero exits into CommandError

import shlex
import subprocess
from dataclasses import dataclass

from loguru import logger

from .exceptions import CommandError


@dataclass(frozen=True)
class CmdResult:
    argv: list
    returncode: int
    stdout: str
    stderr: str


def format_argv(argv):
    return " ".join(shlex.quote(str(a)) for a in argv)


class CommandRunner:
    """Blocking child-process runner. There are no retries and no timeouts."""

    def __init__(self, env=None):
        self.env = env

    def run(self, argv, description=None, input_text=None, capture=False):
        """Run a command and raise CommandError if it exits non-zero.

        With capture=False the child inherits the terminal so long-running
        tools (pacstrap, makepkg) show their own progress.
        """
        argv = [str(a) for a in argv]
        description = description or argv[0]
        logger.debug(f"CMD {format_argv(argv)}")

        kwargs = {"text": True, "env": self.env}
        if input_text is not None:
            kwargs["input"] = input_text
        if capture:
            kwargs["stdout"] = subprocess.PIPE
            kwargs["stderr"] = subprocess.PIPE

        proc = subprocess.run(argv, **kwargs)
        stdout = proc.stdout or ""
        stderr = proc.stderr or ""

        if stdout:
            logger.debug(f"STDOUT {stdout.strip()}")
        if stderr:
            logger.debug(f"STDERR {stderr.strip()}")

        if proc.returncode != 0:
            raise CommandError(description, argv, proc.returncode, stderr)

        return CmdResult(argv=argv, returncode=proc.returncode, stdout=stdout, stderr=stderr)

    def output(self, argv, description=None, input_text=None):
        """Run a command and return its trimmed stdout."""
        result = self.run(argv, description=description, input_text=input_text, capture=True)
        return result.stdout.strip()

    def chroot(self, root, argv, description=None, input_text=None):
        """Run a command inside the target root with arch-chroot."""
        return self.run(["arch-chroot", root, *argv], description=description, input_text=input_text)

