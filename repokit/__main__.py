"""Check a connection profile: `python -m repokit --profile NAME`."""

from __future__ import annotations

import argparse
import importlib
import logging
import os
import sys
from pathlib import Path

from .config import load_config
from .errors import InvalidConfigurationError
from .session import SessionManager, get_session_manager

PASSWORD_ENV = "REPOKIT_PASSWORD"


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", type=Path, default=None, help="Path to config.toml")
    parser.add_argument("--profile", default=None, help="Profile name (defaults to the active profile)")
    parser.add_argument("--user", default=None, help="Database user (defaults to the profile's user)")
    parser.add_argument("--password", default=None, help=f"Database password (or set {PASSWORD_ENV})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None, *, manager: SessionManager | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    config = load_config(args.config)
    manager = manager or get_session_manager()
    try:
        profile = config.profile(args.profile) if args.profile else config.active()
        if profile is None:
            print("No connection profile configured.")
            return 2
        packages = profile.packages or []
        for package in packages:
            importlib.import_module(package)
        manager.configure(profile).set_package_list(packages)
    except (InvalidConfigurationError, ImportError) as exc:
        print(f"Invalid configuration: {exc}")
        return 2

    user = args.user if args.user is not None else profile.user or ""
    password = args.password if args.password is not None else os.environ.get(PASSWORD_ENV, "")
    if not manager.login(user, password):
        print(f"Login to '{profile.name}' failed: {manager.last_failure}")
        return 1
    try:
        print(f"Connected to '{profile.name}' ({manager.url})")
        print("Roles: " + (", ".join(sorted(manager.roles)) or "-"))
        print("Repositories: " + (", ".join(manager.repository_names) or "-"))
    finally:
        manager.logout()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
