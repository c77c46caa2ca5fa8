"""
Document Store - Remote Persistence for Cross-Device Data
=========================================================

Provides a unified interface for the remote document database.
Currently supports Firestore (REST API) and an in-memory store.

USAGE:
    store = FirestoreRestStore(project_id="my-project", api_key="...")
    store.set("users", uid, {"username": "alice", "createdAt": RemoteTimestamp})
    data = store.get("users", uid)

    # No project configured (or tests)
    store = InMemoryDocumentStore()
"""

import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import requests

logger = logging.getLogger(__name__)


class RemoteStoreError(Exception):
    """Base exception for remote document store errors."""
    pass


class PermissionDeniedError(RemoteStoreError):
    """The store's security rules rejected the request."""
    pass


class _ServerTimestamp:
    """Sentinel: let the store fill in its own write time."""

    def __repr__(self) -> str:
        return "RemoteTimestamp"


RemoteTimestamp = _ServerTimestamp()


class DocumentStore(ABC):
    """
    Abstract base class for remote document stores.
    Implement this interface to add new backends.
    """

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        """Fetch one document. Returns None if it does not exist."""
        ...

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        """Write a document. With merge=True only the given fields change."""
        ...

    @abstractmethod
    def list(
        self,
        collection: str,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Tuple[str, dict]]:
        """List (id, data) pairs, optionally ordered by a field."""
        ...


# ── Firestore value encoding ───────────────────────────────────────

def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _parse_timestamp(value: str) -> datetime:
    """Parse RFC 3339 timestamps, including Firestore's nanosecond precision."""
    value = value.rstrip("Z")
    if "." in value:
        head, fraction = value.split(".", 1)
        value = f"{head}.{fraction[:6]}"
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


def encode_value(value: Any) -> dict:
    """Python value -> Firestore typed value."""
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
    if isinstance(value, datetime):
        return {"timestampValue": _format_timestamp(value)}
    if isinstance(value, (list, tuple)):
        values = [encode_value(v) for v in value]
        return {"arrayValue": {"values": values} if values else {}}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    raise TypeError(f"Unsupported Firestore value type: {type(value).__name__}")


def encode_fields(data: dict) -> dict:
    return {key: encode_value(value) for key, value in data.items()}


def decode_value(value: dict) -> Any:
    """Firestore typed value -> Python value."""
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
        return _parse_timestamp(value["timestampValue"])
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    logger.debug(f"Unhandled Firestore value: {value}")
    return None


def decode_fields(fields: dict) -> dict:
    return {key: decode_value(value) for key, value in fields.items()}


class FirestoreRestStore(DocumentStore):
    """
    Firestore over its REST API.

    Writes go through ``documents:commit`` so RemoteTimestamp fields can be
    filled in by the server (REQUEST_TIME transform).
    """

    def __init__(
        self,
        project_id: str,
        api_key: str = "",
        database: str = "(default)",
        base_url: str = "https://firestore.googleapis.com/v1",
        timeout: int = 10,
        session: Optional[requests.Session] = None,
    ):
        self._root = f"projects/{project_id}/databases/{database}/documents"
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._session = session or requests.Session()

    def _doc_name(self, collection: str, doc_id: str) -> str:
        return f"{self._root}/{collection}/{doc_id}"

    def _params(self) -> dict:
        return {"key": self._api_key} if self._api_key else {}

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            response = self._session.request(
                method, url, params=self._params(), timeout=self._timeout, **kwargs
            )
        except requests.RequestException as e:
            raise RemoteStoreError(f"Firestore request failed: {e}") from e

        if response.status_code == 403:
            raise PermissionDeniedError(f"Firestore denied {method} {url}")
        return response

    @staticmethod
    def _raise_for_status(response: requests.Response) -> None:
        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise RemoteStoreError(f"Firestore error {response.status_code}: {response.text[:200]}") from e

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        url = f"{self._base_url}/{self._doc_name(collection, doc_id)}"
        response = self._request("GET", url)
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        return decode_fields(response.json().get("fields", {}))

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        fields = {k: v for k, v in data.items() if v is not RemoteTimestamp}
        server_time_fields = [k for k, v in data.items() if v is RemoteTimestamp]

        write: Dict[str, Any] = {
            "update": {
                "name": self._doc_name(collection, doc_id),
                "fields": encode_fields(fields),
            }
        }
        if merge:
            write["updateMask"] = {"fieldPaths": list(fields.keys())}
        if server_time_fields:
            write["updateTransforms"] = [
                {"fieldPath": name, "setToServerValue": "REQUEST_TIME"}
                for name in server_time_fields
            ]

        url = f"{self._base_url}/{self._root}:commit"
        response = self._request("POST", url, json={"writes": [write]})
        self._raise_for_status(response)
        logger.debug(f"Firestore write ok: {collection}/{doc_id}")

    def list(
        self,
        collection: str,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Tuple[str, dict]]:
        query: Dict[str, Any] = {"from": [{"collectionId": collection}]}
        if order_by:
            query["orderBy"] = [{
                "field": {"fieldPath": order_by},
                "direction": "DESCENDING" if descending else "ASCENDING",
            }]

        url = f"{self._base_url}/{self._root}:runQuery"
        response = self._request("POST", url, json={"structuredQuery": query})
        self._raise_for_status(response)

        results = []
        for entry in response.json():
            document = entry.get("document")
            if not document:
                continue  # readTime-only entries
            doc_id = document["name"].rsplit("/", 1)[-1]
            results.append((doc_id, decode_fields(document.get("fields", {}))))
        return results


class InMemoryDocumentStore(DocumentStore):
    """
    Process-local store with the same semantics as Firestore for the
    operations used here. Used when no remote project is configured.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, dict]] = {}

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        now = datetime.now(timezone.utc)
        resolved = {k: (now if v is RemoteTimestamp else copy.deepcopy(v)) for k, v in data.items()}
        docs = self._collections.setdefault(collection, {})
        if merge and doc_id in docs:
            docs[doc_id].update(resolved)
        else:
            docs[doc_id] = resolved

    def list(
        self,
        collection: str,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Tuple[str, dict]]:
        items = [(doc_id, copy.deepcopy(doc)) for doc_id, doc in self._collections.get(collection, {}).items()]
        if order_by:
            # Firestore leaves out documents without the ordering field
            items = [item for item in items if item[1].get(order_by) is not None]
            items.sort(key=lambda item: item[1][order_by], reverse=descending)
        return items
