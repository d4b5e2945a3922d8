from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import quote, unquote, urlparse

import httpx
from bs4 import BeautifulSoup

from shelfmark.errors import BlobNotFoundError, UpstreamError, ValidationError
from shelfmark.services.common import parse_timestamp, to_bool


DEFAULT_BACKUP_DIRECTORY = "shelfmark"

PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop>'
    "<d:resourcetype/><d:getlastmodified/><d:getcontentlength/>"
    "</d:prop></d:propfind>"
)


@dataclass
class BlobEntry:
    name: str
    mod_time: datetime | None
    is_dir: bool


@dataclass
class WebDAVConfig:
    url: str
    username: str
    password: str
    path: str = DEFAULT_BACKUP_DIRECTORY
    auto_sync: bool = False

    @classmethod
    def from_settings(cls, settings) -> "WebDAVConfig":
        raw = settings.webdav_config if settings is not None else None
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError as exc:
                raise ValidationError("failed to parse WebDAV configuration") from exc
        if not raw or not isinstance(raw, dict):
            raise ValidationError("WebDAV configuration not found in user settings")

        url = (raw.get("url") or "").strip()
        if not url:
            raise ValidationError("WebDAV configuration has no server url")
        return cls(
            url=url,
            username=(raw.get("username") or "").strip(),
            password=raw.get("password") or "",
            path=(raw.get("path") or "").strip() or DEFAULT_BACKUP_DIRECTORY,
            auto_sync=to_bool(raw.get("auto_sync"), default=False),
        )


def parse_multistatus(xml_text: str, collection_path: str) -> list[BlobEntry]:
    """Entries of a depth-1 PROPFIND response, without the collection itself."""
    soup = BeautifulSoup(xml_text, "xml")
    own_path = collection_path.rstrip("/")
    entries: list[BlobEntry] = []
    for response in soup.find_all("response"):
        href = response.find("href")
        if href is None or not href.get_text(strip=True):
            continue
        path = unquote(urlparse(href.get_text(strip=True)).path).rstrip("/")
        if path == own_path:
            continue
        name = path.rsplit("/", 1)[-1]
        if not name:
            continue
        resource_type = response.find("resourcetype")
        is_dir = bool(resource_type and resource_type.find("collection"))
        modified = response.find("getlastmodified")
        entries.append(
            BlobEntry(
                name=name,
                mod_time=parse_timestamp(modified.get_text(strip=True))
                if modified
                else None,
                is_dir=is_dir,
            )
        )
    return entries


class WebDAVClient:
    """Minimal WebDAV client: PUT, GET, PROPFIND and MKCOL over httpx."""

    def __init__(
        self,
        base_url: str,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/") + "/"
        self._client = httpx.Client(
            auth=(username, password or "") if username else None,
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self) -> None:
        self._client.close()

    def url_for(self, path: str) -> str:
        return self.base_url + quote(path.lstrip("/"), safe="/")

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return self._client.request(method, self.url_for(path), **kwargs)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"WebDAV {method} {path} failed: {exc}") from exc

    def read(self, path: str) -> bytes:
        response = self._request("GET", path)
        if response.status_code == 404:
            raise BlobNotFoundError(f"{path} not found on WebDAV server")
        if response.status_code != 200:
            raise UpstreamError(
                f"WebDAV GET {path} returned HTTP {response.status_code}"
            )
        return response.content

    def write(self, path: str, data: bytes) -> None:
        response = self._request(
            "PUT", path, content=data, headers={"Content-Type": "application/json"}
        )
        if response.status_code not in {200, 201, 204}:
            raise UpstreamError(
                f"WebDAV PUT {path} returned HTTP {response.status_code}"
            )

    def list_dir(self, directory: str) -> list[BlobEntry]:
        collection = directory.strip("/") + "/"
        response = self._request(
            "PROPFIND",
            collection,
            content=PROPFIND_BODY,
            headers={"Depth": "1", "Content-Type": "application/xml"},
        )
        if response.status_code == 404:
            raise BlobNotFoundError(f"{directory} not found on WebDAV server")
        if response.status_code != 207:
            raise UpstreamError(
                f"WebDAV PROPFIND {directory} returned HTTP {response.status_code}"
            )
        return parse_multistatus(
            response.text, unquote(urlparse(self.url_for(collection)).path)
        )

    def mkdir_all(self, path: str) -> None:
        current = ""
        for part in [segment for segment in path.split("/") if segment]:
            current = f"{current}/{part}"
            response = self._request("MKCOL", current + "/")
            # 405: the collection already exists
            if response.status_code in {200, 201, 301, 405}:
                continue
            raise UpstreamError(
                f"WebDAV MKCOL {current} returned HTTP {response.status_code}"
            )
