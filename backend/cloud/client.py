"""HTTP client for the cloud document store.

Documents live under users/{userId}/datasets/{datasetId}/{collection}/{docId}.
"""

import logging
from typing import Any

import httpx

from .retry import retry_with_backoff

logger = logging.getLogger("lineageweaver.cloud.client")


class CloudSyncError(Exception):
    """A cloud request failed with a non-success response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CloudClient:
    """Thin synchronous wrapper over the cloud store's REST API."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        retry_options: dict[str, Any] | None = None,
    ):
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "LineageWeaver/1.0",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.base_url = base_url.rstrip("/")
        self.retry_options = retry_options or {}
        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @staticmethod
    def document_path(user_id: str, dataset_id: str, collection: str, doc_id: int | str | None = None) -> str:
        path = f"/users/{user_id}/datasets/{dataset_id}/{collection}"
        if doc_id is not None:
            path += f"/{doc_id}"
        return path

    def _request(self, method: str, path: str, json: Any = None) -> httpx.Response:
        def send() -> httpx.Response:
            response = self._client.request(method, path, json=json)
            if response.status_code >= 400:
                raise CloudSyncError(
                    f"{method} {path} failed with status {response.status_code}",
                    status_code=response.status_code,
                )
            return response

        logger.debug(f"Cloud request: {method} {path}")
        return retry_with_backoff(send, **self.retry_options)

    def put_document(self, user_id: str, dataset_id: str, collection: str, doc_id: int | str, data: dict[str, Any]) -> None:
        self._request("PUT", self.document_path(user_id, dataset_id, collection, doc_id), json=data)

    def patch_document(self, user_id: str, dataset_id: str, collection: str, doc_id: int | str, updates: dict[str, Any]) -> None:
        self._request("PATCH", self.document_path(user_id, dataset_id, collection, doc_id), json=updates)

    def delete_document(self, user_id: str, dataset_id: str, collection: str, doc_id: int | str) -> None:
        self._request("DELETE", self.document_path(user_id, dataset_id, collection, doc_id))

    def list_documents(self, user_id: str, dataset_id: str, collection: str) -> list[dict[str, Any]]:
        response = self._request("GET", self.document_path(user_id, dataset_id, collection))
        data = response.json()
        if isinstance(data, dict):
            return data.get("documents", [])
        return data

    def close(self) -> None:
        self._client.close()
