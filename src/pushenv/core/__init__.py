"""
pushenv core modules.

Includes:
- lexer: Token-based .env file parsing
- header: Provenance header detection and generation
- inference: Placeholder values for example files
- envdiff: Structural local/remote comparison
- crypto: Key derivation and authenticated encryption
- storage: Blob store adapter and key layout
- versions: Per-stage version ledger
- keystore: Local cache of derived keys
- project: .pushenv/config.json
- syncer: Push/pull/diff/rollback engine
- loader: Load a .env file into os.environ
- errors: PushEnvError hierarchy
- fileio: Atomic whole-file writes
"""

from . import lexer
from . import header
from . import inference
from . import envdiff
from . import crypto
from . import storage
from . import versions
from . import keystore
from . import project
from . import syncer
from . import loader
from . import errors
from . import fileio

__all__ = [
    "lexer",
    "header",
    "inference",
    "envdiff",
    "crypto",
    "storage",
    "versions",
    "keystore",
    "project",
    "syncer",
    "loader",
    "errors",
    "fileio",
]
