"""
Blob store adapter.

A generic key-addressed store with put/get/head/list. S3BlobStore talks
to any S3-compatible endpoint (Cloudflare R2, MinIO, AWS) through boto3.

Key layout:
    {project}/{stage}/env.encrypted          latest alias
    {project}/{stage}/v{N}/env.encrypted     version N
    {project}/{stage}/metadata.json          version ledger
    {project}/env.encrypted                  legacy, default stage only
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import CredentialsMissing, RemoteNotFound, StorageError


logger = logging.getLogger("pushenv.storage")

DEFAULT_STAGE = "development"
BLOB_NAME = "env.encrypted"
METADATA_NAME = "metadata.json"
OCTET_STREAM = "application/octet-stream"
JSON_CONTENT = "application/json"

CREDENTIAL_ENV_VARS = {
    "endpoint": "PUSHENV_R2_ENDPOINT",
    "accessKey": "PUSHENV_R2_ACCESS_KEY",
    "secretKey": "PUSHENV_R2_SECRET_KEY",
    "bucket": "PUSHENV_R2_BUCKET",
}
_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def stage_key(project_id: str, stage: str = DEFAULT_STAGE) -> str:
    return f"{project_id}/{stage}/{BLOB_NAME}"


def legacy_key(project_id: str) -> str:
    return f"{project_id}/{BLOB_NAME}"


def version_key(project_id: str, stage: str, version: int) -> str:
    return f"{project_id}/{stage}/v{version}/{BLOB_NAME}"


def metadata_key(project_id: str, stage: str) -> str:
    return f"{project_id}/{stage}/{METADATA_NAME}"


class BlobStore(ABC):
    """Abstract key-addressed blob store."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str = OCTET_STREAM) -> None:
        """Store data at key, replacing any existing object."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """
        Fetch the object at key.

        Raises:
            RemoteNotFound: nothing stored at key
            StorageError: any other backend failure
        """

    @abstractmethod
    def head(self, key: str) -> bool:
        """True if an object exists at key."""

    @abstractmethod
    def list(self, prefix: str = "") -> List[str]:
        """Keys under prefix, sorted."""


@dataclass
class StoreCredentials:
    """Connection settings for an S3-compatible bucket."""
    endpoint: str
    access_key: str
    secret_key: str
    bucket: str


def pushenv_home() -> Path:
    """Directory for machine-local state (~/.pushenv unless PUSHENV_HOME is set)."""
    override = os.getenv("PUSHENV_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".pushenv"


def load_credentials(credentials_file: Optional[Path] = None) -> StoreCredentials:
    """
    Resolve store credentials.

    Environment variables win; missing fields are filled from
    credentials.json in the pushenv home directory.

    Raises:
        CredentialsMissing: if any field is still unset
    """
    values: Dict[str, str] = {}
    path = credentials_file or (pushenv_home() / "credentials.json")

    if path.exists():
        try:
            with open(path, "r") as f:
                data = json.load(f)
            values.update({k: str(v) for k, v in data.items() if k in CREDENTIAL_ENV_VARS and v})
        except (json.JSONDecodeError, OSError, AttributeError) as exc:
            logger.warning("Ignoring unreadable credentials file %s: %s", path, exc)

    for field_name, env_var in CREDENTIAL_ENV_VARS.items():
        env_value = os.getenv(env_var)
        if env_value:
            values[field_name] = env_value

    missing = [env for name, env in CREDENTIAL_ENV_VARS.items() if not values.get(name)]
    if missing:
        raise CredentialsMissing(missing)

    return StoreCredentials(
        endpoint=values["endpoint"],
        access_key=values["accessKey"],
        secret_key=values["secretKey"],
        bucket=values["bucket"],
    )


class S3BlobStore(BlobStore):
    """BlobStore over an S3-compatible HTTP API."""

    def __init__(self, client, bucket: str):
        """
        Args:
            client: boto3 S3 client
            bucket: Bucket holding all projects
        """
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_credentials(cls, creds: StoreCredentials) -> "S3BlobStore":
        client = boto3.client(
            "s3",
            endpoint_url=creds.endpoint,
            aws_access_key_id=creds.access_key,
            aws_secret_access_key=creds.secret_key,
            region_name="auto",
        )
        return cls(client, creds.bucket)

    def put(self, key: str, data: bytes, content_type: str = OCTET_STREAM) -> None:
        logger.debug("PUT %s (%d bytes)", key, len(data))
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Upload of '{key}' failed: {exc}") from exc

    def get(self, key: str) -> bytes:
        logger.debug("GET %s", key)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            if _is_not_found(exc):
                raise RemoteNotFound(key) from exc
            raise StorageError(f"Download of '{key}' failed: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Download of '{key}' failed: {exc}") from exc

    def head(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as exc:
            if _is_not_found(exc):
                return False
            raise StorageError(f"Lookup of '{key}' failed: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Lookup of '{key}' failed: {exc}") from exc

    def list(self, prefix: str = "") -> List[str]:
        keys = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Listing '{prefix}' failed: {exc}") from exc
        return sorted(keys)


def _is_not_found(exc: ClientError) -> bool:
    code = str(exc.response.get("Error", {}).get("Code", ""))
    return code in _NOT_FOUND_CODES


@dataclass(frozen=True)
class BlobLookup:
    """One place the latest blob for a stage may live."""
    key: str
    label: str

    def fetch(self, store: BlobStore) -> Optional[bytes]:
        """Blob bytes, or None when absent."""
        try:
            return store.get(self.key)
        except RemoteNotFound:
            return None

    def exists(self, store: BlobStore) -> bool:
        return store.head(self.key)


def latest_lookups(project_id: str, stage: str, latest_version: Optional[int] = None) -> List[BlobLookup]:
    """
    Ordered lookup strategies for a stage's latest blob.

    When the ledger names a latest version its versioned blob is tried
    first, since the alias is only updated best-effort. Then the stage
    alias; the pre-multi-stage legacy key is only consulted for the
    default stage.
    """
    lookups = []
    if latest_version:
        lookups.append(BlobLookup(version_key(project_id, stage, latest_version), "version"))
    lookups.append(BlobLookup(stage_key(project_id, stage), "stage"))
    if stage == DEFAULT_STAGE:
        lookups.append(BlobLookup(legacy_key(project_id), "legacy"))
    return lookups


def fetch_first(store: BlobStore, lookups: List[BlobLookup]) -> Optional[Tuple[BlobLookup, bytes]]:
    """Evaluate lookups in order; first hit wins."""
    for lookup in lookups:
        data = lookup.fetch(store)
        if data is not None:
            if lookup.label == "legacy":
                logger.info("Using legacy blob at %s", lookup.key)
            return lookup, data
        logger.debug("No %s blob at %s", lookup.label, lookup.key)
    return None


def exists_any(store: BlobStore, lookups: List[BlobLookup]) -> bool:
    return any(lookup.exists(store) for lookup in lookups)
