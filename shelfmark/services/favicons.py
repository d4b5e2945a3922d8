from __future__ import annotations

from urllib.parse import quote, urlparse

import httpx
from flask import current_app

from shelfmark.errors import ValidationError
from shelfmark.services.content import DEFAULT_HEADERS


GOOGLE_FAVICON_URL = "https://www.google.com/s2/favicons?sz=64&domain_url={url}"
DUCKDUCKGO_FAVICON_URL = "https://icons.duckduckgo.com/ip3/{host}.ico"

ICON_CONTENT_TYPES = (
    "image/x-icon",
    "image/vnd.microsoft.icon",
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/svg+xml",
    "image/webp",
)
# Both services answer unknown hosts with a tiny placeholder image.
MIN_ICON_BYTES = 100
SNIFF_BYTES = 2048


def favicon_candidates(url: str) -> list[str]:
    parsed = urlparse(url)
    return [
        GOOGLE_FAVICON_URL.format(url=quote(url, safe="")),
        DUCKDUCKGO_FAVICON_URL.format(host=parsed.hostname),
    ]


def check_icon(client: httpx.Client, candidate: str) -> tuple[bool, str | None]:
    try:
        with client.stream("GET", candidate) as response:
            if response.status_code != 200:
                return False, f"HTTP {response.status_code}"

            content_type = response.headers.get("Content-Type", "").lower()
            if not content_type.startswith(ICON_CONTENT_TYPES):
                return False, f"unexpected content type {content_type!r}"

            length_header = response.headers.get("Content-Length")
            if length_header and length_header.isdigit() and int(length_header) > 0:
                if int(length_header) < MIN_ICON_BYTES:
                    return False, f"icon too small ({length_header} bytes)"
                return True, None

            size = 0
            for chunk in response.iter_bytes():
                size += len(chunk)
                if size >= SNIFF_BYTES:
                    break
            if size < MIN_ICON_BYTES:
                return False, f"icon too small ({size} bytes)"
            return True, None
    except httpx.HTTPError as exc:
        return False, str(exc) or exc.__class__.__name__


def find_favicon(
    url: str, timeout: float = 15.0, client: httpx.Client | None = None
) -> str | None:
    requested = (url or "").strip()
    if not requested:
        raise ValidationError("url is required")
    parsed = urlparse(requested)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise ValidationError("invalid url format")

    own_client = client is None
    if own_client:
        client = httpx.Client(
            timeout=timeout, headers=DEFAULT_HEADERS, follow_redirects=True
        )
    try:
        for candidate in favicon_candidates(requested):
            ok, reason = check_icon(client, candidate)
            if ok:
                return candidate
            current_app.logger.debug(
                "Favicon candidate %s rejected for %s: %s", candidate, requested, reason
            )
    finally:
        if own_client:
            client.close()

    current_app.logger.info("No favicon found for %s", requested)
    return None
