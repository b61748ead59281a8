"""
pushenv - Encrypted, versioned .env sync for teams

Use as a library to load .env files, or as a CLI to push, pull, diff and
roll back encrypted env files through S3-compatible object storage.
"""

__version__ = "0.1.0"

from .core import lexer, header, syncer, versions
from .core.lexer import parse_env
from .core.loader import load_env

__all__ = [
    "lexer",
    "header",
    "syncer",
    "versions",
    "parse_env",
    "load_env",
]
