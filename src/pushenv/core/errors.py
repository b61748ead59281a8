"""
Error kinds raised by the sync engine.

Every error is terminal for the current command. The CLI prints the
message, then the hint (if any) as a remediation step.
"""

from typing import Iterable, Optional


class PushEnvError(Exception):
    """Base class for all pushenv errors."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint


class NotInitialized(PushEnvError):
    """No .pushenv/config.json in the project root."""

    def __init__(self):
        super().__init__(
            "Project not initialized.",
            hint="Run 'pushenv init' first to set up your project.",
        )


class StageNotConfigured(PushEnvError):
    def __init__(self, stage: str, configured: Iterable[str]):
        self.stage = stage
        self.configured = list(configured)
        super().__init__(
            f"Stage '{stage}' is not configured for this project.",
            hint=f"Configured stages: {', '.join(self.configured)}. "
                 "Run 'pushenv init' to reconfigure stages.",
        )


class LocalFileMissing(PushEnvError):
    def __init__(self, path: str, hint: Optional[str] = None):
        self.path = path
        super().__init__(f".env file not found at {path}", hint=hint)


class KeyMaterialMissing(PushEnvError):
    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(
            "No key material found for this project on this machine.",
            hint="Run 'pushenv pull' here once (with the shared passphrase) "
                 "to set up this machine.",
        )


class RemoteNotFound(PushEnvError):
    """A blob is absent from the store."""

    def __init__(self, key: str, message: Optional[str] = None, hint: Optional[str] = None):
        self.key = key
        super().__init__(message or f"No data found at '{key}'", hint=hint)


class VersionNotFound(PushEnvError):
    def __init__(self, version: int, available: Iterable[int]):
        self.version = version
        self.available = list(available)
        super().__init__(
            f"Version {version} not found.",
            hint=f"Available versions: {', '.join(str(v) for v in self.available)}",
        )


class NoVersionHistory(PushEnvError):
    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(
            "No version history found.",
            hint=f"Stage '{stage}' doesn't have versioning enabled yet. "
                 "The next push will create version 1.",
        )


class AuthenticationError(PushEnvError):
    """Wrong key or tampered ciphertext."""

    def __init__(self, message: str = "Decryption failed: incorrect passphrase or key.",
                 hint: Optional[str] = None):
        super().__init__(message, hint=hint)


class StorageError(PushEnvError):
    """Network or backend failure talking to the blob store."""


class InvalidCiphertextFormat(PushEnvError):
    def __init__(self, detail: str = "Invalid encrypted data format."):
        super().__init__(detail)


class CredentialsMissing(PushEnvError):
    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__(
            "Object storage credentials are not configured.",
            hint=f"Set {', '.join(self.missing)} or write them to "
                 "~/.pushenv/credentials.json.",
        )
