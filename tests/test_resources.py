from __future__ import annotations

import base64

import pytest
from bs4 import BeautifulSoup

from bionic.errors import ResourceReleased, UnresolvedResource
from bionic.resources import (
    ResourceTable,
    is_image_path,
    require_resource,
    resolve_reference_path,
    resolve_resource,
    rewrite_resource_references,
)


@pytest.fixture
def table() -> ResourceTable:
    table = ResourceTable()
    table.add("images/Cover.JPG", b"cover", "image/jpeg")
    table.add("OEBPS/images/map.png", b"map")
    table.add("OEBPS/images/My Image.png", b"spaced")
    return table


def test_case_insensitive_fallback(table: ResourceTable) -> None:
    handle = resolve_resource("Cover.jpg", "images/", table)
    assert handle is table["images/Cover.JPG"]


def test_exact_match_and_current_directory_marker(table: ResourceTable) -> None:
    assert resolve_resource("./map.png", "OEBPS/images/", table) is table["OEBPS/images/map.png"]
    assert resolve_resource("map.png", "OEBPS/images", table) is table["OEBPS/images/map.png"]


def test_parent_directory_references_are_normalized(table: ResourceTable) -> None:
    assert resolve_resource("../images/map.png", "OEBPS/text/", table) is table["OEBPS/images/map.png"]


def test_percent_encoded_reference(table: ResourceTable) -> None:
    assert resolve_resource("My%20Image.png", "OEBPS/images/", table) is table["OEBPS/images/My Image.png"]


def test_absolute_references_are_used_as_is(table: ResourceTable) -> None:
    assert resolve_reference_path("https://example.com/a.png", "OEBPS/") == "https://example.com/a.png"
    assert resolve_reference_path("/images/Cover.JPG", "OEBPS/") == "/images/Cover.JPG"
    assert resolve_resource("https://example.com/a.png", "OEBPS/", table) is None


def test_missing_reference_returns_none(table: ResourceTable) -> None:
    assert resolve_resource("nope.png", "OEBPS/images/", table) is None
    assert resolve_resource("", "OEBPS/images/", table) is None


def test_require_resource_reports_the_resolved_path(table: ResourceTable) -> None:
    assert require_resource("../images/map.png", "OEBPS/text/", table) is table["OEBPS/images/map.png"]
    with pytest.raises(UnresolvedResource) as excinfo:
        require_resource("../images/gone.png", "OEBPS/text/", table)
    assert excinfo.value.reference == "../images/gone.png"
    assert excinfo.value.resolved == "OEBPS/images/gone.png"


def test_first_key_wins_among_case_variants() -> None:
    table = ResourceTable()
    first = table.add("img/A.png", b"1")
    table.add("img/a.PNG", b"2")
    assert resolve_resource("IMG/a.png", "", table) is first


def test_release_drops_payloads(table: ResourceTable) -> None:
    handle = table["OEBPS/images/map.png"]
    table.release()
    assert handle.released
    assert len(table) == 0
    assert table.by_id(handle.id) is None
    with pytest.raises(ResourceReleased):
        handle.data


def test_handle_media_type_and_data_uri(table: ResourceTable) -> None:
    handle = table["OEBPS/images/map.png"]
    assert handle.media_type == "image/png"
    assert table.by_id(handle.id) is handle
    assert handle.data_uri() == "data:image/png;base64," + base64.b64encode(b"map").decode("ascii")


def test_rewrite_resource_references(table: ResourceTable) -> None:
    soup = BeautifulSoup(
        '<body><img src="../images/map.png"/><img src="missing.png"/>'
        '<svg><image xlink:href="../images/MAP.PNG"/></svg></body>',
        "html.parser",
    )
    count = rewrite_resource_references(soup.body, "OEBPS/text/", table, lambda handle: f"/r/{handle.path}")
    images = soup.find_all("img")
    assert count == 2
    assert images[0]["src"] == "/r/OEBPS/images/map.png"
    assert images[1]["src"] == "missing.png"
    assert soup.find("image")["xlink:href"] == "/r/OEBPS/images/map.png"


def test_is_image_path() -> None:
    assert is_image_path("OEBPS/Images/COVER.JPEG")
    assert is_image_path("a.svg")
    assert not is_image_path("style.css")
