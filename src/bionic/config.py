from __future__ import annotations

from dataclasses import dataclass, field

from .text import BionicStyle

CONTAINER_PATH = "META-INF/container.xml"
CONTAINER_NS = "urn:oasis:names:tc:opendocument:xmlns:container"
DC_NS = "http://purl.org/dc/elements/1.1/"

CONTENT_EXTS = (".xhtml", ".html", ".htm")
IMAGE_EXTS = (".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".bmp")
READABLE_MEDIA_TYPES = frozenset({"application/xhtml+xml", "text/html"})

DEFAULT_BOOK_TITLE = "Unknown Book"
DEFAULT_EXPORT_STEM = "bionic"
EXPORT_SUFFIX = "_bionic.epub"
MIN_CHAPTER_CHARS = 50


@dataclass(slots=True)
class ReaderConfig:
    min_chapter_chars: int = MIN_CHAPTER_CHARS
    style: BionicStyle = field(default_factory=BionicStyle)
    memoize: bool = False
    default_title: str = DEFAULT_BOOK_TITLE
