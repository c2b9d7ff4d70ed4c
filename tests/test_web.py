from __future__ import annotations

import io
import json
import re
import zipfile
from pathlib import Path

import pytest
from fastapi import HTTPException

from bionic.web import WebConfig, create_app

from conftest import build_epub_bytes


def _find_route(app, path: str, method: str):
    method = method.upper()
    for route in app.router.routes:
        if getattr(route, "path", None) == path and method in getattr(route, "methods", set()):
            return route.endpoint
    raise RuntimeError(f"Route {method} {path} not found")


def _json(response) -> dict:
    return json.loads(response.body)


def test_book_and_chapter_payloads(sample_epub: Path) -> None:
    app = create_app(WebConfig(epub=sample_epub))
    book = _json(_find_route(app, "/api/book", "GET")())
    assert book["title"] == "Sample Book"
    assert book["authors"] == ["Sample Author"]
    assert [chapter["title"] for chapter in book["chapters"]] == ["Chapter One", "The Second", "Chapter 4"]
    assert [chapter["index"] for chapter in book["chapters"]] == [1, 2, 3]
    assert book["current"] == 0
    assert book["export_name"] == "Sample_Book_bionic.epub"

    chapter = _json(_find_route(app, "/api/chapter", "GET")())
    assert chapter["current"] == 0
    assert chapter["total"] == 3
    assert chapter["has_next"] and not chapter["has_previous"]
    assert "font-weight: 600" in chapter["markup"]


def test_navigation(sample_epub: Path) -> None:
    app = create_app(WebConfig(epub=sample_epub))
    navigate = _find_route(app, "/api/navigate", "POST")
    assert _json(navigate({"action": "next"}))["current"] == 1
    assert _json(navigate({"action": "jump", "index": 2}))["current"] == 2
    assert _json(navigate({"action": "next"}))["current"] == 2
    assert _json(navigate({"action": "jump", "index": 9}))["current"] == 2
    assert _json(navigate({"action": "previous"}))["current"] == 1
    with pytest.raises(HTTPException) as excinfo:
        navigate({"action": "sideways"})
    assert excinfo.value.status_code == 400
    with pytest.raises(HTTPException):
        navigate({"action": "jump", "index": "2"})


def test_resources_are_served_by_handle_id(sample_epub: Path) -> None:
    app = create_app(WebConfig(epub=sample_epub))
    markup = _json(_find_route(app, "/api/chapter", "GET")())["markup"]
    match = re.search(r'src="/api/resources/([0-9a-f]+)"', markup)
    assert match is not None
    response = _find_route(app, "/api/resources/{resource_id}", "GET")(match.group(1))
    assert response.body == b"\x89PNG\r\n\x1a\nmap"
    assert response.media_type == "image/png"
    with pytest.raises(HTTPException) as excinfo:
        _find_route(app, "/api/resources/{resource_id}", "GET")("unknown")
    assert excinfo.value.status_code == 404


def test_opening_a_new_book_releases_the_previous_one(sample_epub: Path) -> None:
    app = create_app(WebConfig(epub=sample_epub))
    first = app.state.sessions.current
    handle = first.resources["OEBPS/images/map.png"]

    payload = _json(_find_route(app, "/api/book", "POST")(sample_epub.read_bytes()))
    assert payload["current"] == 0
    assert first.closed
    assert handle.released
    assert app.state.sessions.current is not first


def test_invalid_and_empty_books_are_distinguished(sample_epub: Path) -> None:
    app = create_app(WebConfig(epub=sample_epub))
    open_book = _find_route(app, "/api/book", "POST")
    with pytest.raises(HTTPException) as invalid:
        open_book(b"not a zip")
    assert invalid.value.status_code == 400
    assert "Not a valid EPUB" in invalid.value.detail

    empty = build_epub_bytes([("img", "pic.png", "image/png", b"png")])
    with pytest.raises(HTTPException) as no_content:
        open_book(empty)
    assert no_content.value.status_code == 422
    assert "No content found" in no_content.value.detail
    assert not app.state.sessions.current.closed


def test_export_download(sample_epub: Path) -> None:
    app = create_app(WebConfig(epub=sample_epub))
    response = _find_route(app, "/api/export", "GET")()
    assert response.media_type == "application/epub+zip"
    assert "Sample_Book_bionic.epub" in response.headers["content-disposition"]
    with zipfile.ZipFile(io.BytesIO(response.body)) as zf:
        assert zf.namelist()[0] == "mimetype"


def test_text_endpoint_and_closed_book(tmp_path: Path) -> None:
    app = create_app(WebConfig())
    text = _json(_find_route(app, "/api/text", "POST")({"text": "Hi there"}))
    assert text["markup"].startswith('<span style="font-weight: 600; color: #3d2914;">H</span>')
    with pytest.raises(HTTPException) as excinfo:
        _find_route(app, "/api/chapter", "GET")()
    assert excinfo.value.status_code == 404
    assert _json(_find_route(app, "/api/book", "DELETE")()) == {"closed": False}


def test_index_builds_toc_entries_as_text() -> None:
    page = _find_route(create_app(WebConfig()), "/", "GET")()
    assert "option.textContent = ch.title" in page
    assert "innerHTML = book.chapters" not in page
