"""
Utility functions for the GitLab to GitHub migration tool.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from subprocess import CompletedProcess

logger: logging.Logger = logging.getLogger(__name__)

_LOG_LEVEL_ENV_VAR = "LOGLEVEL"


class PassError(Exception):
    """Base class for pass-related errors."""


class InvalidPassPathError(PassError):
    """Raised when the pass path does not exist in the password store."""


def setup_logging(*, verbose: bool = False) -> None:
    """Configure logging for the migration process.

    The LOGLEVEL environment variable (e.g. "DEBUG", "WARNING") takes precedence over ``verbose``.
    """
    level = logging.DEBUG if verbose else logging.INFO
    env_level = os.environ.get(_LOG_LEVEL_ENV_VAR, "").upper()
    if env_level in logging.getLevelNamesMapping():
        level = logging.getLevelNamesMapping()[env_level]

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(), logging.FileHandler("migration.log", mode="a")],
        force=True,
    )


def inform(heading: str) -> None:
    """Log a section heading so the operator sees which phase is running."""
    logger.info("==================================")
    logger.info(heading)
    logger.info("==================================")


def _validate_pass_path(pass_path: str) -> None:
    if not re.fullmatch(r"(?:[A-Za-z0-9_-]+)(?:/[A-Za-z0-9_-]+)*", pass_path):
        msg = f"Invalid pass path: {pass_path}"
        raise ValueError(msg)


def get_pass_value(pass_path: str) -> str:
    """Get value from the pass utility at the specified path."""
    _validate_pass_path(pass_path)

    try:
        result: CompletedProcess[str] = subprocess.run(  # noqa: S603
            ["pass", pass_path], capture_output=True, text=True, check=True
        )
    except FileNotFoundError as e:
        msg = "The pass utility is not installed"
        raise PassError(msg) from e
    except subprocess.CalledProcessError as e:
        if "not in the password store" in e.stderr.lower():
            msg = f"Pass path '{pass_path}' not found or invalid."
            raise InvalidPassPathError(msg) from e
        msg = (
            f"Failed to get value from pass at '{pass_path}'.\n"
            f"Error: {e.stderr.strip()}\n"
            f"Return code: {e.returncode}"
        )
        raise PassError(msg) from e

    return result.stdout.strip()


def resolve_token(pass_path: str | None, env_var: str, default_pass_path: str, platform: str) -> str | None:
    """Resolve an API token: explicit pass path, then environment variable, then default pass path."""
    if pass_path:
        return get_pass_value(pass_path)

    token = os.environ.get(env_var)
    if token:
        return token

    try:
        return get_pass_value(default_pass_path)
    except PassError:
        logger.warning(f"No {platform} token specified nor found")
        return None
