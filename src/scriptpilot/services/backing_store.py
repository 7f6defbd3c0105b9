"""Script and asset persistence collaborators.

The orchestration core only needs get/list/upsert/delete-by-name. Two
implementations are provided: :class:`HttpBackingStore` talks to the hosting
platform's REST API, :class:`InMemoryBackingStore` keeps everything in
process for local runs and tests.
"""

from __future__ import annotations

import base64
import binascii
import logging
import posixpath
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

import httpx

from ..ai.tools.errors import BackingStoreError

LOGGER = logging.getLogger(__name__)

__all__ = [
    "BackingStore",
    "HttpBackingStore",
    "InMemoryBackingStore",
    "StoreCall",
    "encode_asset_content",
    "decode_asset_content",
    "mime_type_for",
]

_MIME_TYPES: dict[str, str] = {
    ".css": "text/css",
    ".svg": "image/svg+xml",
    ".json": "application/json",
    ".html": "text/html",
    ".md": "text/markdown",
    ".txt": "text/plain",
    ".js": "application/javascript",
    ".xml": "application/xml",
    ".yaml": "text/yaml",
    ".yml": "text/yaml",
}
_DEFAULT_MIME_TYPE = "text/plain"


def mime_type_for(name: str) -> str:
    """Return the MIME type used when uploading an asset called ``name``."""

    extension = posixpath.splitext(name.lower())[1]
    return _MIME_TYPES.get(extension, _DEFAULT_MIME_TYPE)


def encode_asset_content(text: str) -> str:
    """Encode asset text as base64 over its UTF-8 bytes."""

    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def decode_asset_content(payload: str) -> str:
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Asset content is not valid base64") from exc
    return raw.decode("utf-8", errors="replace")


@runtime_checkable
class BackingStore(Protocol):
    """Persistence surface used by the executor, preview and endpoint."""

    async def list_scripts(self) -> list[str]: ...

    async def get_script(self, name: str) -> str | None: ...

    async def upsert_script(self, name: str, content: str) -> None: ...

    async def delete_script(self, name: str) -> bool: ...

    async def list_assets(self) -> list[str]: ...

    async def get_asset(self, name: str) -> str | None: ...

    async def upsert_asset(self, name: str, encoded_content: str, mimetype: str) -> None: ...

    async def delete_asset(self, name: str) -> bool: ...


# ----------------------------------------------------------------------
# HTTP implementation
# ----------------------------------------------------------------------


class HttpBackingStore:
    """Backing store reached over the platform's ``/api/scripts`` and ``/api/assets`` routes.

    ``delete_*`` return ``False`` when the server answers 404; every other
    non-2xx status or transport failure raises :class:`BackingStoreError`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=headers or {},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpBackingStore":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # Scripts ------------------------------------------------------------

    async def list_scripts(self) -> list[str]:
        response = await self._request("GET", "/api/scripts", operation="list_scripts")
        entries = _json_body(response, "list_scripts").get("scripts") or []
        names = []
        for entry in entries:
            if isinstance(entry, dict):
                name = entry.get("displayName") or entry.get("uri")
                if name:
                    names.append(str(name))
        return names

    async def get_script(self, name: str) -> str | None:
        response = await self._request(
            "GET", _script_path(name), operation="get_script", target=name, allow_missing=True
        )
        if response.status_code == 404:
            return None
        return response.text

    async def upsert_script(self, name: str, content: str) -> None:
        await self._request(
            "POST",
            _script_path(name),
            operation="upsert_script",
            target=name,
            content=content.encode("utf-8"),
            headers={"Content-Type": "application/javascript"},
        )

    async def delete_script(self, name: str) -> bool:
        response = await self._request(
            "DELETE", _script_path(name), operation="delete_script", target=name, allow_missing=True
        )
        return response.status_code != 404

    # Assets -------------------------------------------------------------

    async def list_assets(self) -> list[str]:
        response = await self._request("GET", "/api/assets", operation="list_assets")
        entries = _json_body(response, "list_assets").get("assets") or []
        names = []
        for entry in entries:
            if isinstance(entry, dict):
                name = entry.get("displayName") or entry.get("path")
                if name:
                    names.append(str(name))
        return names

    async def get_asset(self, name: str) -> str | None:
        response = await self._request(
            "GET", _asset_path(name), operation="get_asset", target=name, allow_missing=True
        )
        if response.status_code == 404:
            return None
        return response.content.decode("utf-8", errors="replace")

    async def upsert_asset(self, name: str, encoded_content: str, mimetype: str) -> None:
        await self._request(
            "POST",
            "/api/assets",
            operation="upsert_asset",
            target=name,
            json={"publicPath": name, "mimetype": mimetype, "content": encoded_content},
        )

    async def delete_asset(self, name: str) -> bool:
        response = await self._request(
            "DELETE", _asset_path(name), operation="delete_asset", target=name, allow_missing=True
        )
        return response.status_code != 404

    # Internals ----------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        target: str | None = None,
        allow_missing: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            LOGGER.warning("Backing store %s failed for %s: %s", operation, target, exc)
            raise BackingStoreError(
                message=str(exc) or exc.__class__.__name__,
                operation=operation,
                target=target,
            ) from exc
        if allow_missing and response.status_code == 404:
            return response
        if response.is_error:
            message = _error_message(response)
            LOGGER.warning(
                "Backing store %s for %s returned %s: %s",
                operation,
                target,
                response.status_code,
                message,
            )
            raise BackingStoreError(
                message=message,
                operation=operation,
                target=target,
                status_code=response.status_code,
            )
        return response


def _script_path(name: str) -> str:
    return f"/api/scripts/{quote(name, safe='')}"


def _asset_path(name: str) -> str:
    return f"/api/assets/{quote(name, safe='')}"


def _json_body(response: httpx.Response, operation: str) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise BackingStoreError(message="Invalid JSON response", operation=operation) from exc
    return payload if isinstance(payload, dict) else {}


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        for key in ("error", "message"):
            value = payload.get(key)
            if value:
                return str(value)
    text = response.text.strip()
    return text or f"HTTP {response.status_code}"


# ----------------------------------------------------------------------
# In-memory implementation
# ----------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class StoreCall:
    """One recorded backing store invocation."""

    operation: str
    target: str | None = None


@dataclass(slots=True)
class _StoredAsset:
    content: str
    mimetype: str


@dataclass
class InMemoryBackingStore:
    """Process-local store that records every call in :attr:`calls`."""

    scripts: dict[str, str] = field(default_factory=dict)
    assets: dict[str, str] = field(default_factory=dict)
    calls: list[StoreCall] = field(default_factory=list)
    _asset_types: dict[str, str] = field(default_factory=dict, repr=False)

    @property
    def mutating_calls(self) -> list[StoreCall]:
        return [
            call
            for call in self.calls
            if call.operation.startswith(("upsert_", "delete_"))
        ]

    def asset_mimetype(self, name: str) -> str | None:
        return self._asset_types.get(name)

    async def list_scripts(self) -> list[str]:
        self.calls.append(StoreCall("list_scripts"))
        return sorted(self.scripts)

    async def get_script(self, name: str) -> str | None:
        self.calls.append(StoreCall("get_script", name))
        return self.scripts.get(name)

    async def upsert_script(self, name: str, content: str) -> None:
        self.calls.append(StoreCall("upsert_script", name))
        self.scripts[name] = content

    async def delete_script(self, name: str) -> bool:
        self.calls.append(StoreCall("delete_script", name))
        return self.scripts.pop(name, None) is not None

    async def list_assets(self) -> list[str]:
        self.calls.append(StoreCall("list_assets"))
        return sorted(self.assets)

    async def get_asset(self, name: str) -> str | None:
        self.calls.append(StoreCall("get_asset", name))
        return self.assets.get(name)

    async def upsert_asset(self, name: str, encoded_content: str, mimetype: str) -> None:
        self.calls.append(StoreCall("upsert_asset", name))
        try:
            content = decode_asset_content(encoded_content)
        except ValueError as exc:
            raise BackingStoreError(
                message=str(exc), operation="upsert_asset", target=name
            ) from exc
        self.assets[name] = content
        self._asset_types[name] = mimetype

    async def delete_asset(self, name: str) -> bool:
        self.calls.append(StoreCall("delete_asset", name))
        self._asset_types.pop(name, None)
        return self.assets.pop(name, None) is not None
