"""Hosted document database client (REST API)."""

import asyncio
import base64
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from .config import BackendConfig
from .models import Document
from .store import (
    ErrorCallback,
    SnapshotCallback,
    Subscription,
    is_document_path,
    split_path,
)

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[Optional[str]]]


def encode_value(value: Any) -> dict[str, Any]:
    """Encode a Python value into the REST API's typed value format."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, bytes):
        return {"bytesValue": base64.b64encode(value).decode()}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    raise TypeError(f"Cannot store value of type {type(value).__name__}")


def decode_value(value: dict[str, Any]) -> Any:
    """Decode one typed value."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return value["booleanValue"]
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return value["timestampValue"]
    if "referenceValue" in value:
        return value["referenceValue"]
    if "bytesValue" in value:
        return base64.b64decode(value["bytesValue"])
    if "geoPointValue" in value:
        return dict(value["geoPointValue"])
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    raise ValueError(f"Unknown value type: {sorted(value)}")


def encode_fields(fields: dict[str, Any]) -> dict[str, Any]:
    return {name: encode_value(v) for name, v in fields.items()}


def decode_fields(fields: dict[str, Any]) -> dict[str, Any]:
    return {name: decode_value(v) for name, v in fields.items()}


def decode_document(raw: dict[str, Any]) -> Document:
    """Turn a REST document resource into a Document."""
    doc_id = raw["name"].rsplit("/", 1)[-1]
    return Document(id=doc_id, data=decode_fields(raw.get("fields", {})))


class FirestoreDocumentStore:
    """
    Document store backed by the hosted database's REST API.

    The REST API has no push channel, so subscriptions poll the path and
    deliver a full snapshot whenever it differs from the last one. A failed
    poll ends the subscription after calling on_error.
    """

    BASE_URL = "https://firestore.googleapis.com/v1"
    PAGE_SIZE = 300

    def __init__(
        self,
        config: BackendConfig,
        token_provider: Optional[TokenProvider] = None,
        poll_interval: float = 2.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the store client.

        Args:
            config: Backend configuration (project and database IDs)
            token_provider: Coroutine returning the current bearer token
            poll_interval: Seconds between subscription polls
            timeout: Transport-level timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.config = config
        self.token_provider = token_provider
        self.poll_interval = poll_interval
        self.root = f"projects/{config.project_id}/databases/{config.database_id}/documents"
        self.client = httpx.AsyncClient(
            base_url=self.BASE_URL,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        self._tasks: set[asyncio.Task] = set()

    def _url(self, path: str) -> str:
        return f"/{self.root}/{'/'.join(split_path(path))}"

    async def _headers(self) -> dict[str, str]:
        if self.token_provider is None:
            return {}
        token = await self.token_provider()
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = await self._headers()
        response = await self.client.request(method, self._url(path), headers=headers, **kwargs)
        logger.debug(f"{method} {path}: status={response.status_code}")
        return response

    async def get(self, path: str) -> Optional[Document]:
        response = await self._request("GET", path)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return decode_document(response.json())

    async def set(self, path: str, fields: dict[str, Any]) -> None:
        response = await self._request("PATCH", path, json={"fields": encode_fields(fields)})
        response.raise_for_status()

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        params = [("updateMask.fieldPaths", name) for name in fields]
        params.append(("currentDocument.exists", "true"))
        response = await self._request(
            "PATCH", path, params=params, json={"fields": encode_fields(fields)}
        )
        response.raise_for_status()

    async def delete(self, path: str) -> None:
        response = await self._request("DELETE", path)
        if response.status_code == 404:
            return
        response.raise_for_status()

    async def add_to_collection(self, path: str, fields: dict[str, Any]) -> str:
        response = await self._request("POST", path, json={"fields": encode_fields(fields)})
        response.raise_for_status()
        return decode_document(response.json()).id

    async def list_collection(self, path: str) -> list[Document]:
        docs: list[Document] = []
        page_token: Optional[str] = None
        while True:
            params: dict[str, Any] = {"pageSize": self.PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            response = await self._request("GET", path, params=params)
            if response.status_code == 404:
                return docs
            response.raise_for_status()
            data = response.json()
            docs.extend(decode_document(raw) for raw in data.get("documents", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return docs

    async def _read(self, path: str) -> list[Document]:
        if is_document_path(path):
            doc = await self.get(path)
            return [] if doc is None else [doc]
        return await self.list_collection(path)

    async def _poll(self, path: str, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> None:
        last: Optional[list[Document]] = None
        while True:
            try:
                docs = await self._read(path)
                if docs != last:
                    last = docs
                    on_snapshot(docs)
            except Exception as e:
                # Token refresh and snapshot handling fail here too
                logger.error(f"Polling {path} failed: {e}")
                on_error(e)
                return
            await asyncio.sleep(self.poll_interval)

    def subscribe(
        self, path: str, on_snapshot: SnapshotCallback, on_error: ErrorCallback
    ) -> Subscription:
        task = asyncio.get_running_loop().create_task(self._poll(path, on_snapshot, on_error))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return Subscription(path, task.cancel)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.client.aclose()
