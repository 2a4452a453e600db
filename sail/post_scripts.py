#!/usr/bin/env python3
# Post-install Scripts Module
# Lists and runs the helper scripts left in /root after installation

from pathlib import Path

from loguru import logger

from .exceptions import ValidationError

# Where the scripts live once the installed system has booted
SCRIPT_DIR = "/root/post_install_scripts"


def list_scripts(script_dir=SCRIPT_DIR):
    """Names of the available scripts, without the .sh suffix"""
    script_dir = Path(script_dir)
    if not script_dir.is_dir():
        return []
    return sorted(p.stem for p in script_dir.glob("*.sh") if p.is_file())


def script_path(name, script_dir=SCRIPT_DIR):
    if name not in list_scripts(script_dir):
        raise ValidationError(name, f"no such post-installation script in {script_dir}")
    return Path(script_dir, f"{name}.sh")


def exec_script(runner, name, script_dir=SCRIPT_DIR):
    path = script_path(name, script_dir)
    logger.info(f"Executing {path}...")
    return runner.run(["bash", str(path)], description=f"Run {name}")
