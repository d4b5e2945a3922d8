from __future__ import annotations

from rapidfuzz import fuzz


SEARCH_FIELDS = ("title", "url", "tags", "description", "folder")


def _safe(value: str | None) -> str:
    return (value or "").strip()


def active_fields(fields) -> set[str]:
    chosen = {str(field).strip().lower() for field in fields or []}
    chosen &= set(SEARCH_FIELDS)
    return chosen or set(SEARCH_FIELDS)


def score_bookmark(bookmark, query: str, fields=None) -> tuple[float, list[str]]:
    q = query.strip().lower()
    enabled = active_fields(fields)

    title_l = _safe(bookmark.title).lower() if "title" in enabled else ""
    url_l = _safe(bookmark.url).lower() if "url" in enabled else ""
    tags = [tag.lower() for tag in bookmark.tags or []] if "tags" in enabled else []
    tags_l = " ".join(tags)
    description_l = (
        _safe(bookmark.description).lower() if "description" in enabled else ""
    )
    folder_l = (
        _safe(bookmark.folder.name if bookmark.folder else None).lower()
        if "folder" in enabled
        else ""
    )

    score = 0.0
    reasons: list[str] = []

    if title_l:
        if q == title_l:
            score += 150
            reasons.append("exact_title")
        elif title_l.startswith(q):
            score += 120
            reasons.append("title_prefix")
        elif q in title_l:
            score += 100
            reasons.append("title_contains")

    if q in tags:
        score += 110
        reasons.append("exact_tag")
    elif tags_l and q in tags_l:
        score += 90
        reasons.append("tag_match")

    if url_l and q in url_l:
        score += 60
        reasons.append("url_contains")

    if folder_l and q in folder_l:
        score += 50
        reasons.append("folder_contains")

    if description_l and q in description_l:
        score += 40
        reasons.append("description_contains")

    fuzzy_title = fuzz.partial_ratio(q, title_l) if title_l else 0
    if fuzzy_title >= 72:
        score += fuzzy_title * 0.30
        reasons.append("title_fuzzy")

    fuzzy_meta = fuzz.partial_ratio(q, tags_l) if tags_l else 0
    if fuzzy_meta >= 80:
        score += fuzzy_meta * 0.20
        reasons.append("meta_fuzzy")

    if description_l and len(q) >= 4:
        fuzzy_description = fuzz.partial_ratio(q, description_l[:6000])
        if fuzzy_description >= 88:
            score += fuzzy_description * 0.16
            reasons.append("description_fuzzy")

    return score, reasons


def search_bookmarks(bookmarks, query: str, limit: int = 50, fields=None):
    if not query or not query.strip():
        return []

    ranked = []
    for bookmark in bookmarks:
        score, reasons = score_bookmark(bookmark, query, fields=fields)
        if reasons and score > 0:
            ranked.append(
                {"bookmark": bookmark, "score": round(score, 2), "reasons": reasons}
            )

    ranked.sort(key=lambda item: item["score"], reverse=True)
    return ranked[:limit]
