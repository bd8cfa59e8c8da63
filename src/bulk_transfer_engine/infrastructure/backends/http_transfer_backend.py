"""HTTP adapter for a Globus-style transfer service."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from bulk_transfer_engine.domain.entities import (
    BatchJobRequest,
    FileEntry,
    JobStatusSnapshot,
    ListingPage,
)
from bulk_transfer_engine.domain.errors import BackendError, BackendErrorCode
from bulk_transfer_engine.domain.ports import TransferBackend
from bulk_transfer_engine.domain.transfer_types import EntryType

DEFAULT_BASE_URL = "https://transfer.api.globus.org/v0.10"

_STATUS_CODES = {
    400: BackendErrorCode.BAD_REQUEST,
    403: BackendErrorCode.PERMISSION_DENIED,
    404: BackendErrorCode.RESOURCE_NOT_FOUND,
    409: BackendErrorCode.CONFLICT,
    429: BackendErrorCode.RATE_LIMIT_EXCEEDED,
    503: BackendErrorCode.SERVICE_UNAVAILABLE,
}


class HttpTransferBackend(TransferBackend):
    """List directories, submit transfer tasks and read task status over HTTP."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        access_token: str | None = None,
        timeout_seconds: float = 30.0,
        page_size: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        normalized = base_url.strip().rstrip("/")
        if not normalized:
            raise ValueError("Transfer API base URL cannot be empty.")
        self._base_url = normalized
        self._access_token = access_token
        self._timeout_seconds = timeout_seconds
        self._page_size = page_size
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def list_directory(
        self,
        endpoint_id: str,
        path: str,
        *,
        show_hidden: bool = True,
        page_token: str | None = None,
    ) -> ListingPage:
        """Call `GET /operation/endpoint/{id}/ls`."""

        params: dict[str, str] = {"path": path}
        if show_hidden:
            params["show_hidden"] = "1"
        if page_token is not None:
            params["marker"] = page_token
        if self._page_size is not None:
            params["limit"] = str(self._page_size)
        payload = await self._request(
            "GET",
            f"/operation/endpoint/{quote(endpoint_id, safe='')}/ls",
            params=params,
        )
        raw_entries = payload.get("DATA", payload.get("data")) or []
        entries = [self._to_entry(raw) for raw in raw_entries if raw.get("name")]
        next_token = None
        if payload.get("has_next_page"):
            next_token = payload.get("marker") or payload.get("continue_from") or None
        return ListingPage(entries=entries, next_page_token=next_token)

    async def submit_batch_job(self, request: BatchJobRequest) -> str:
        """Call `GET /submission_id` then `POST /transfer`; return the task id."""

        submission = await self._request("GET", "/submission_id")
        submission_id = submission.get("value") or submission.get("submission_id")
        body: dict[str, Any] = {
            "DATA_TYPE": "transfer",
            "submission_id": submission_id,
            "label": request.label,
            "source_endpoint": request.source_endpoint_id,
            "destination_endpoint": request.destination_endpoint_id,
            "sync_level": request.sync_level,
            "verify_checksum": request.verify_checksum,
            "preserve_mtime": request.preserve_mtime,
            "encrypt_data": request.encrypt,
            "delete_destination_extra": request.delete_destination_extra,
            "DATA": [
                {
                    "DATA_TYPE": "transfer_item",
                    "source_path": item.source_path,
                    "destination_path": item.destination_path,
                    **({"checksum": item.checksum} if item.checksum else {}),
                }
                for item in request.items
            ],
        }
        payload = await self._request("POST", "/transfer", json=body)
        task_id = payload.get("task_id")
        if not isinstance(task_id, str) or not task_id:
            raise BackendError("Transfer submission response has no task_id.")
        return task_id

    async def get_job_status(self, job_id: str) -> JobStatusSnapshot:
        """Call `GET /task/{id}`."""

        payload = await self._request("GET", f"/task/{quote(job_id, safe='')}")
        return JobStatusSnapshot(
            job_id=str(payload.get("task_id") or job_id),
            status=str(payload.get("status", "")),
            files_transferred=int(payload.get("files_transferred") or 0),
            bytes_transferred=int(payload.get("bytes_transferred") or 0),
            files_failed=int(payload.get("subtasks_failed") or 0),
            nice_status=payload.get("nice_status"),
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""

        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            response = await self._http().request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise BackendError(
                f"{method} {url} failed: {exc}",
                code=BackendErrorCode.TRANSPORT_ERROR.value,
            ) from exc
        if not response.is_success:
            raise self._error_from_response(response)
        try:
            payload = response.json()
        except ValueError as exc:
            raise BackendError(
                f"{method} {url} returned invalid JSON.", status_code=response.status_code
            ) from exc
        if not isinstance(payload, dict):
            raise BackendError(
                f"{method} {url} returned an unexpected payload.",
                status_code=response.status_code,
            )
        return payload

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self._access_token:
                headers["Authorization"] = f"Bearer {self._access_token}"
            self._client = httpx.AsyncClient(
                timeout=self._timeout_seconds,
                transport=self._transport,
                headers=headers,
            )
        return self._client

    def _error_from_response(self, response: httpx.Response) -> BackendError:
        code: str | None = None
        message = response.reason_phrase or "request failed"
        request_id: str | None = None
        try:
            payload = response.json()
        except ValueError:
            text = response.text.strip()
            if text:
                message = text
        else:
            if isinstance(payload, dict):
                code = payload.get("code") or None
                message = str(payload.get("message") or payload.get("detail") or message)
                request_id = payload.get("request_id") or None
        if code is None:
            fallback = _STATUS_CODES.get(response.status_code)
            if fallback is None and response.status_code >= 500:
                fallback = BackendErrorCode.SERVER_ERROR
            code = fallback.value if fallback is not None else None
        return BackendError(
            f"{response.request.method} {response.request.url} failed: {message}",
            status_code=response.status_code,
            code=code,
            request_id=request_id,
        )

    def _to_entry(self, raw: dict[str, Any]) -> FileEntry:
        entry_type = EntryType.DIR if raw.get("type") == "dir" else EntryType.FILE
        return FileEntry(
            path=str(raw["name"]),
            name=str(raw["name"]),
            entry_type=entry_type,
            size=int(raw.get("size") or 0),
            last_modified=raw.get("last_modified"),
        )


__all__ = ["DEFAULT_BASE_URL", "HttpTransferBackend"]
