from types import SimpleNamespace

from shelfmark.services.search import search_bookmarks


def _bookmark(
    title: str,
    tags=None,
    url: str = "https://example.com",
    description: str = "",
    folder: str | None = None,
):
    return SimpleNamespace(
        title=title,
        url=url,
        tags=list(tags or []),
        description=description,
        folder=SimpleNamespace(name=folder) if folder else None,
    )


def test_search_filters_irrelevant_items():
    bookmarks = [
        _bookmark("Python docs"),
        _bookmark("Gardening tips"),
        _bookmark("Travel planning"),
    ]

    results = search_bookmarks(bookmarks, "python")

    assert [row["bookmark"].title for row in results] == ["Python docs"]


def test_search_keeps_high_confidence_fuzzy_matches():
    bookmarks = [
        _bookmark("Python documentation"),
        _bookmark("Rust cookbook"),
    ]

    results = search_bookmarks(bookmarks, "pythn")

    assert results
    assert results[0]["bookmark"].title == "Python documentation"


def test_search_matches_description_text():
    bookmarks = [
        _bookmark("Weekly roundup", description="This includes release notes for flask 3.1"),
        _bookmark("Other"),
    ]

    results = search_bookmarks(bookmarks, "flask 3.1")

    assert len(results) == 1
    assert results[0]["bookmark"].title == "Weekly roundup"


def test_exact_tag_outranks_url_match():
    bookmarks = [
        _bookmark("Blog", url="https://rust-lang.org/blog"),
        _bookmark("Systems reading", tags=["rust"]),
    ]

    results = search_bookmarks(bookmarks, "rust")

    assert [row["bookmark"].title for row in results] == ["Systems reading", "Blog"]
    assert "exact_tag" in results[0]["reasons"]
    assert "url_contains" in results[1]["reasons"]


def test_search_fields_restrict_what_is_matched():
    bookmarks = [
        _bookmark("Unrelated", folder="Recipes"),
        _bookmark("Recipes for busy weeks"),
    ]

    by_title = search_bookmarks(bookmarks, "recipes", fields=["title"])
    by_folder = search_bookmarks(bookmarks, "recipes", fields=["folder"])

    assert [row["bookmark"].title for row in by_title] == ["Recipes for busy weeks"]
    assert [row["bookmark"].title for row in by_folder] == ["Unrelated"]


def test_blank_query_returns_nothing():
    assert search_bookmarks([_bookmark("Python docs")], "   ") == []
