#!/usr/bin/env python3
# Arch Linux ZFS Installer
# Main entry point for the installer

import argparse
import os
import sys

from InquirerPy import inquirer
from InquirerPy.base.control import Choice
from loguru import logger

from sail.config import CONFIG_FILE, load_config
from sail.context import InstallContext
from sail.exceptions import SailError
from sail.installer import install
from sail.logging_utils import setup_logging
from sail.post_scripts import SCRIPT_DIR, exec_script, list_scripts


def build_parser():
    parser = argparse.ArgumentParser(prog="sail", description="Arch Linux installation and post-installation script")
    parser.add_argument("--debug", action="store_true", help="Enable debug output")
    parser.add_argument("--log-file", help="Also write a debug log to this file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    start = subparsers.add_parser("start", help="start Arch Linux installation")
    start.add_argument("-c", "--config", default=CONFIG_FILE, help=f"configuration file (default: {CONFIG_FILE})")
    start.add_argument("-y", "--yes", action="store_true", help="do not ask before writing to the disk")
    start.add_argument(
        "--rollback-on-failure",
        action="store_true",
        help="delete created partitions, pools and mounts if a stage fails",
    )

    exec_cmd = subparsers.add_parser("exec", help="execute a post-installation script")
    exec_cmd.add_argument("-s", "--script", help="script name to execute")

    subparsers.add_parser("list", help="list all available scripts")
    return parser


def confirm_target(target):
    """Ask before the disk is modified"""
    print(f"\nDisk:        {target.disk}")
    print(f"Partitions:  {target.efi_part} (EFI, {target.partsize_esp})")
    print(f"             {target.bpool_part} (boot pool, {target.partsize_bpool})")
    print(f"             {target.rpool_part} (root pool, rest of disk)")
    print(f"Kernel:      {target.kernel} with {target.zfs_package}\n")
    return inquirer.confirm(
        message=f"WARNING: This will write new partitions and ZFS pools to {target.disk}. Continue?",
        default=False,
    ).execute()


def select_script():
    names = list_scripts()
    if not names:
        raise SailError(f"No post-installation scripts found in {SCRIPT_DIR}")
    return inquirer.select(
        message="Select a script to execute:",
        choices=[Choice(name, name) for name in names],
    ).execute()


def start(args):
    print("=" * 80)
    print("Arch Linux ZFS Installer")
    print("=" * 80)

    context = InstallContext.from_process(rollback=args.rollback_on_failure)
    config = load_config(os.path.join(context.cwd, args.config))
    install(context, config, confirm=None if args.yes else confirm_target)

    print("\nInstallation completed successfully!")
    print("You can now reboot into your new Arch Linux system.")
    print(f"Post-installation scripts are in {SCRIPT_DIR}, run them with: sail exec -s <name>")


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug, log_file=args.log_file)

    try:
        if args.command == "start":
            start(args)
        elif args.command == "exec":
            context = InstallContext.from_process()
            exec_script(context.runner, args.script or select_script())
        elif args.command == "list":
            for name in list_scripts():
                print(name)
    except KeyboardInterrupt:
        print("\nInstallation cancelled by user.")
        sys.exit(130)
    except Exception as e:
        logger.error(str(e))
        if args.debug:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
