from __future__ import annotations

import warnings
from dataclasses import dataclass

import httpx
import trafilatura
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning


DEFAULT_HEADERS = {
    "User-Agent": "ShelfmarkBot/1.0 (+https://shelfmark.local)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

PAGE_STATUS_OK = "ok"
PAGE_STATUS_TIMEOUT = "timeout"
PAGE_STATUS_NOT_FOUND = "not_found"
PAGE_STATUS_SERVER_ERROR = "server_error"
PAGE_STATUS_DNS_ERROR = "dns_error"
PAGE_STATUS_UNREACHABLE = "unreachable"

TRANSIENT_PAGE_STATUSES = {
    PAGE_STATUS_TIMEOUT,
    PAGE_STATUS_UNREACHABLE,
    PAGE_STATUS_SERVER_ERROR,
}

MAX_TEXT_CHARS = 200000


@dataclass
class PageData:
    main_text: str = ""
    title: str | None = None
    description: str | None = None
    og_title: str | None = None
    og_description: str | None = None
    status: str = PAGE_STATUS_OK
    error: str | None = None
    status_code: int | None = None
    final_url: str | None = None

    def as_dict(self):
        return {
            "main_text": self.main_text,
            "title": self.title,
            "description": self.description,
            "og_title": self.og_title,
            "og_description": self.og_description,
            "status": self.status,
            "error": self.error,
            "status_code": self.status_code,
            "final_url": self.final_url,
        }


def _normalize_error(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return exc.__class__.__name__


def fetch_html(
    url: str,
    timeout: float,
    max_bytes: int,
    transport: httpx.BaseTransport | None = None,
) -> tuple[str, str, int]:
    with httpx.Client(
        follow_redirects=True,
        timeout=timeout,
        headers=DEFAULT_HEADERS,
        transport=transport,
    ) as client:
        with client.stream("GET", url) as response:
            status_code = response.status_code
            chunks = []
            total = 0
            for chunk in response.iter_bytes():
                total += len(chunk)
                if total > max_bytes:
                    break
                chunks.append(chunk)
            data = b"".join(chunks)
            encoding = response.encoding or "utf-8"
            return (
                data.decode(encoding, errors="ignore"),
                str(response.url),
                status_code,
            )


def _build_soup(html: str) -> BeautifulSoup:
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
        return BeautifulSoup(html, "lxml")


def _meta_content(soup: BeautifulSoup, **attrs) -> str | None:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return None
    content = tag.get("content")
    if not isinstance(content, str):
        return None
    return content.strip() or None


def extract_page(html: str) -> PageData:
    soup = _build_soup(html)
    page = PageData(
        title=soup.title.string.strip() if soup.title and soup.title.string else None,
        description=_meta_content(soup, name="description"),
        og_title=_meta_content(soup, property="og:title"),
        og_description=_meta_content(soup, property="og:description"),
    )

    text = trafilatura.extract(
        html,
        include_comments=False,
        include_tables=False,
        favor_precision=True,
        no_fallback=False,
    )
    if not text:
        for hidden in soup(["script", "style", "noscript"]):
            hidden.decompose()
        body = soup.body or soup
        text = "\n".join(part.strip() for part in body.stripped_strings)
    page.main_text = text[:MAX_TEXT_CHARS]
    return page


def classify_status(status_code: int | None, error: str | None) -> str:
    if error:
        lower = error.lower()
        if "timed out" in lower or "timeout" in lower:
            return PAGE_STATUS_TIMEOUT
        if "name or service not known" in lower or "nodename" in lower:
            return PAGE_STATUS_DNS_ERROR
        if "temporary failure in name resolution" in lower:
            return PAGE_STATUS_DNS_ERROR
        return PAGE_STATUS_UNREACHABLE

    if status_code is None:
        return PAGE_STATUS_UNREACHABLE
    if status_code in {404, 410}:
        return PAGE_STATUS_NOT_FOUND
    if status_code == 408:
        return PAGE_STATUS_TIMEOUT
    if status_code >= 500:
        return PAGE_STATUS_SERVER_ERROR
    if 200 <= status_code < 400:
        return PAGE_STATUS_OK
    return PAGE_STATUS_UNREACHABLE


def fetch_page(
    url: str,
    timeout: float,
    max_bytes: int,
    transport: httpx.BaseTransport | None = None,
) -> PageData:
    """Fetch ``url`` and extract its main text and meta tags.

    Network failures are reported through ``status``/``error`` and never
    raised. Transient failures are retried once with a longer timeout.
    """
    attempts = 2
    for attempt in range(1, attempts + 1):
        try:
            html, final_url, status_code = fetch_html(
                url,
                timeout=timeout * (1 + (attempt - 1) * 0.5),
                max_bytes=max_bytes,
                transport=transport,
            )
        except httpx.HTTPError as exc:
            error = _normalize_error(exc)
            status = classify_status(None, error)
            if attempt < attempts and status in TRANSIENT_PAGE_STATUSES:
                continue
            return PageData(status=status, error=error)

        status = classify_status(status_code, None)
        if status == PAGE_STATUS_OK:
            page = extract_page(html)
        elif attempt < attempts and status in TRANSIENT_PAGE_STATUSES:
            continue
        else:
            page = PageData(error=f"HTTP {status_code}")
        page.status = status
        page.status_code = status_code
        page.final_url = final_url
        return page

    return PageData(status=PAGE_STATUS_UNREACHABLE, error="Unable to fetch content.")
