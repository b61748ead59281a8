"""
Load a .env file into the process environment.
"""

import logging
import os
from pathlib import Path
from typing import Dict, MutableMapping, Optional

from .header import strip_header
from .lexer import parse_env


logger = logging.getLogger("pushenv.loader")


def apply_env(
    variables: Dict[str, str],
    override: bool = False,
    environ: Optional[MutableMapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Copy variables into an environment mapping.

    Existing entries are kept unless override is set.

    Returns:
        The variables that were actually set
    """
    target = os.environ if environ is None else environ
    applied = {}
    for key, value in variables.items():
        if key in target and not override:
            continue
        target[key] = value
        applied[key] = value
    return applied


def load_env(
    path: str = ".env",
    override: bool = False,
    environ: Optional[MutableMapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Read a .env file and export its variables.

    Args:
        path: File to read; a missing file loads nothing
        override: Replace variables already present in the environment
        environ: Target mapping (defaults to os.environ)

    Returns:
        All variables parsed from the file
    """
    env_path = Path(path)
    if not env_path.exists():
        logger.debug("No env file at %s", env_path)
        return {}

    variables = parse_env(strip_header(env_path.read_text(encoding="utf-8")))
    applied = apply_env(variables, override=override, environ=environ)
    logger.debug("Loaded %d of %d variables from %s", len(applied), len(variables), env_path)
    return variables
