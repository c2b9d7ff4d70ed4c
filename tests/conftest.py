from __future__ import annotations

import io
import zipfile
from pathlib import Path
from typing import Callable

import pytest

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="{root_path}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

PARAGRAPH = (
    "It was a bright cold day in April, and the clocks were striking thirteen. "
    "Winston slipped quickly through the glass doors."
)


def chapter_xhtml(title: str | None, body: str) -> str:
    head = f"<title>{title}</title>" if title is not None else ""
    return f"""<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
  <head>{head}</head>
  <body>
{body}
  </body>
</html>
"""


def build_epub_bytes(
    items: list[tuple[str, str, str, str | bytes | None]],
    *,
    title: str | None = "Sample Book",
    author: str | None = "Sample Author",
    spine: list[str] | None = None,
    extra: dict[str, str | bytes] | None = None,
    root_path: str = "OEBPS/content.opf",
    with_container: bool = True,
    with_rootfile: bool = True,
    with_manifest: bool = True,
) -> bytes:
    """
    Build an EPUB in memory.

    ``items`` are (id, href, media type, content) tuples; content None means
    the manifest declares the item but the archive lacks it.
    """
    root_dir = root_path.rsplit("/", 1)[0] + "/" if "/" in root_path else ""
    metadata = []
    if title is not None:
        metadata.append(f"<dc:title>{title}</dc:title>")
    if author is not None:
        metadata.append(f"<dc:creator>{author}</dc:creator>")
    metadata.append("<dc:language>en</dc:language>")
    manifest = "".join(
        f'<item id="{item_id}" href="{href}" media-type="{media_type}"/>'
        for item_id, href, media_type, _ in items
    )
    spine_ids = spine if spine is not None else [item_id for item_id, *_ in items]
    spine_xml = "".join(f'<itemref idref="{item_id}"/>' for item_id in spine_ids)
    manifest_xml = f"<manifest>{manifest}</manifest>" if with_manifest else ""
    opf_xml = f"""<?xml version="1.0" encoding="UTF-8"?>
<package version="3.0" unique-identifier="BookId" xmlns="http://www.idpf.org/2007/opf">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">{"".join(metadata)}</metadata>
  {manifest_xml}
  <spine>{spine_xml}</spine>
</package>
"""
    if with_rootfile:
        container_xml = CONTAINER_XML.format(root_path=root_path)
    else:
        container_xml = (
            '<?xml version="1.0"?>'
            '<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">'
            "<rootfiles/></container>"
        )

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("mimetype", "application/epub+zip", compress_type=zipfile.ZIP_STORED)
        if with_container:
            zf.writestr("META-INF/container.xml", container_xml)
        zf.writestr(root_path, opf_xml, compress_type=zipfile.ZIP_DEFLATED)
        for _, href, _, content in items:
            if content is not None:
                zf.writestr(f"{root_dir}{href}", content, compress_type=zipfile.ZIP_DEFLATED)
        for name, content in (extra or {}).items():
            zf.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture
def sample_epub_bytes() -> bytes:
    return build_epub_bytes(
        [
            ("cover", "text/cover.xhtml", "application/xhtml+xml", chapter_xhtml("Cover", '<img src="../images/Cover.JPG" alt=""/>')),
            ("ch1", "text/ch1.xhtml", "application/xhtml+xml", chapter_xhtml(
                "Chapter One",
                f'<h1>Chapter One</h1><p>{PARAGRAPH}</p><p><img src="../images/map.png" alt="map"/></p>',
            )),
            ("ch2", "text/ch2.xhtml", "application/xhtml+xml", chapter_xhtml(
                None,
                f"<h2>The Second</h2><p>{PARAGRAPH}</p><script>var x = 1;</script>",
            )),
            ("ch3", "text/ch3.xhtml", "application/xhtml+xml", chapter_xhtml(
                "",
                f"<p>{PARAGRAPH}</p><p>{PARAGRAPH}</p>",
            )),
            ("css", "styles/style.css", "text/css", "p { margin: 0; }"),
            ("img1", "images/Cover.JPG", "image/jpeg", b"\xff\xd8\xff\xe0cover"),
            ("img2", "images/map.png", "image/png", b"\x89PNG\r\n\x1a\nmap"),
        ],
        spine=["cover", "ch1", "ch2", "ch3"],
    )


@pytest.fixture
def sample_epub(tmp_path: Path, sample_epub_bytes: bytes) -> Path:
    path = tmp_path / "sample.epub"
    path.write_bytes(sample_epub_bytes)
    return path


@pytest.fixture
def epub_factory() -> Callable[..., bytes]:
    return build_epub_bytes
