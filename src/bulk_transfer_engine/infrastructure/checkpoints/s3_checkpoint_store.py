"""S3 checkpoint store."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Protocol

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from bulk_transfer_engine.domain.checkpoint_models import CheckpointState, validate_checkpoint_id
from bulk_transfer_engine.domain.errors import (
    CheckpointCorruptedError,
    CheckpointNotFoundError,
    CheckpointStorageError,
)
from bulk_transfer_engine.domain.ports import CheckpointStore

_MISSING_KEY_CODES = frozenset({"NoSuchKey", "404", "NotFound"})
_SUFFIX = ".json"


class S3Client(Protocol):
    """Subset of boto3 S3 client methods used by the store."""

    def put_object(self, **kwargs: Any) -> Any:
        """Upload one object."""

    def get_object(self, **kwargs: Any) -> Any:
        """Download one object."""

    def head_object(self, **kwargs: Any) -> Any:
        """Return object metadata."""

    def delete_object(self, **kwargs: Any) -> Any:
        """Delete one object."""

    def list_objects_v2(self, **kwargs: Any) -> Any:
        """List objects under a prefix."""


def _default_s3_client_factory(region_name: str | None = None) -> S3Client:
    try:
        import boto3
    except ModuleNotFoundError as exc:
        raise RuntimeError(
            "boto3 is required for the S3 checkpoint store. Install project dependencies first."
        ) from exc
    return boto3.client("s3", region_name=region_name)


class S3CheckpointStore(CheckpointStore):
    """Store each checkpoint as one JSON object under a key prefix.

    A single ``put_object`` replaces the whole object, so readers see either
    the previous or the new record.
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "checkpoints",
        region_name: str | None = None,
        s3_client_factory: Callable[[], S3Client] | None = None,
    ) -> None:
        if not bucket.strip():
            raise ValueError("bucket cannot be empty.")
        self._bucket = bucket
        self._prefix = prefix.strip().strip("/")
        self._region_name = region_name
        self._s3_client_factory = s3_client_factory
        self._client: S3Client | None = None

    async def save(self, state: CheckpointState) -> None:
        """Upload the serialized record."""

        key = self._key(state.checkpoint_id)
        body = state.model_dump_json(indent=2).encode("utf-8")
        try:
            await asyncio.to_thread(
                self._s3().put_object,
                Bucket=self._bucket,
                Key=key,
                Body=body,
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as exc:
            raise CheckpointStorageError(
                f"Failed to save checkpoint {state.checkpoint_id}: {exc}"
            ) from exc

    async def load(self, checkpoint_id: str) -> CheckpointState:
        """Download and validate a record."""

        key = self._key(checkpoint_id)
        try:
            response = await asyncio.to_thread(
                self._s3().get_object, Bucket=self._bucket, Key=key
            )
            payload = await asyncio.to_thread(response["Body"].read)
        except ClientError as exc:
            if _is_missing_key(exc):
                raise CheckpointNotFoundError(f"Checkpoint {checkpoint_id} not found.") from exc
            raise CheckpointStorageError(
                f"Failed to read checkpoint {checkpoint_id}: {exc}"
            ) from exc
        except BotoCoreError as exc:
            raise CheckpointStorageError(
                f"Failed to read checkpoint {checkpoint_id}: {exc}"
            ) from exc
        try:
            return CheckpointState.model_validate_json(payload)
        except ValidationError as exc:
            raise CheckpointCorruptedError(
                f"Checkpoint {checkpoint_id} is corrupted: {exc}"
            ) from exc

    async def list_checkpoints(self) -> list[str]:
        """List ids under the configured prefix."""

        try:
            return await asyncio.to_thread(self._list)
        except (ClientError, BotoCoreError) as exc:
            raise CheckpointStorageError(f"Failed to list checkpoints: {exc}") from exc

    async def delete(self, checkpoint_id: str) -> None:
        """Delete a record; S3 deletes are silent so existence is checked first."""

        key = self._key(checkpoint_id)
        client = self._s3()
        try:
            await asyncio.to_thread(client.head_object, Bucket=self._bucket, Key=key)
            await asyncio.to_thread(client.delete_object, Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if _is_missing_key(exc):
                raise CheckpointNotFoundError(f"Checkpoint {checkpoint_id} not found.") from exc
            raise CheckpointStorageError(
                f"Failed to delete checkpoint {checkpoint_id}: {exc}"
            ) from exc
        except BotoCoreError as exc:
            raise CheckpointStorageError(
                f"Failed to delete checkpoint {checkpoint_id}: {exc}"
            ) from exc

    def _key(self, checkpoint_id: str) -> str:
        name = f"{validate_checkpoint_id(checkpoint_id)}{_SUFFIX}"
        return f"{self._prefix}/{name}" if self._prefix else name

    def _list(self) -> list[str]:
        client = self._s3()
        list_prefix = f"{self._prefix}/" if self._prefix else ""
        ids: list[str] = []
        continuation_token: str | None = None
        while True:
            kwargs: dict[str, Any] = {"Bucket": self._bucket, "Prefix": list_prefix}
            if continuation_token is not None:
                kwargs["ContinuationToken"] = continuation_token
            response = client.list_objects_v2(**kwargs)
            for obj in response.get("Contents", []):
                name = str(obj["Key"])[len(list_prefix) :]
                if name.endswith(_SUFFIX) and "/" not in name:
                    ids.append(name.removesuffix(_SUFFIX))
            if not response.get("IsTruncated"):
                break
            continuation_token = response.get("NextContinuationToken")
        return sorted(ids)

    def _s3(self) -> S3Client:
        if self._client is None:
            if self._s3_client_factory is not None:
                self._client = self._s3_client_factory()
            else:
                self._client = _default_s3_client_factory(self._region_name)
        return self._client


def _is_missing_key(exc: ClientError) -> bool:
    error = exc.response.get("Error", {})
    return str(error.get("Code", "")) in _MISSING_KEY_CODES


__all__ = ["S3CheckpointStore", "S3Client"]
