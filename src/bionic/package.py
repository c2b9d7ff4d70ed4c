from __future__ import annotations

import io
import logging
import posixpath
import re
import threading
import unicodedata
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from urllib.parse import unquote

from bs4 import BeautifulSoup, NavigableString, ParserRejectedMarkup, Tag  # type: ignore

from .config import (
    CONTAINER_NS,
    CONTAINER_PATH,
    CONTENT_EXTS,
    DC_NS,
    READABLE_MEDIA_TYPES,
    ReaderConfig,
)
from .errors import (
    MalformedChapterMarkup,
    MissingContainerDescriptor,
    MissingManifest,
    MissingRootDescriptor,
    NoReadableChapters,
    NotAZipArchive,
    SessionClosed,
)
from .markup import content_root, soup_from_markup
from .resources import ResourceTable, is_image_path

logger = logging.getLogger(__name__)

# Elements that never hold chapter prose.
NON_CONTENT_TAGS = ("script", "style", "nav", "header", "footer")

# Block elements delimit paragraphs when collapsing to plain text.
BLOCK_LEVEL_TAGS = {
    "address",
    "article",
    "aside",
    "blockquote",
    "dd",
    "div",
    "dl",
    "dt",
    "figcaption",
    "figure",
    "footer",
    "form",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "header",
    "hgroup",
    "hr",
    "li",
    "main",
    "nav",
    "ol",
    "p",
    "pre",
    "section",
    "table",
    "ul",
    "tr",
}

_TEXT_EXTS = CONTENT_EXTS + (".xml", ".opf", ".ncx", ".css", ".txt", ".smil")
_WS_RUN = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class ChapterRecord:
    index: int
    title: str
    plain_text: str
    raw_markup: str
    base_path: str
    source: str = ""

    def as_markup(self) -> str:
        return self.raw_markup

    def as_plain_text(self) -> str:
        return self.plain_text


@dataclass
class _ManifestItem:
    item_id: str
    href: str
    path: str
    media_type: str


@dataclass
class PackageSession:
    """An opened EPUB: the original bytes plus everything parsed from them."""

    archive: bytes
    title: str
    chapters: list[ChapterRecord]
    resources: ResourceTable
    root_path: str
    authors: list[str] = field(default_factory=list)
    language: str | None = None
    source_name: str | None = None
    _closed: bool = field(default=False, repr=False)

    @property
    def closed(self) -> bool:
        return self._closed

    def ensure_open(self) -> None:
        if self._closed:
            raise SessionClosed(f"Package session for {self.title!r} is closed.")

    def chapter(self, position: int) -> ChapterRecord:
        self.ensure_open()
        return self.chapters[position]

    def close(self) -> None:
        if self._closed:
            return
        released = len(self.resources)
        self.resources.release()
        self._closed = True
        logger.debug("Closed %r, released %d resources", self.title, released)

    def __enter__(self) -> "PackageSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _decode_text(raw: bytes) -> str:
    if raw.startswith((b"\xff\xfe", b"\xfe\xff")):
        try:
            return raw.decode("utf-16")
        except UnicodeDecodeError:
            pass
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("utf-8", errors="replace")


def _is_text_entry(name: str) -> bool:
    return name.lower().endswith(_TEXT_EXTS)


def _unpack(zf: zipfile.ZipFile) -> tuple[dict[str, str], dict[str, bytes]]:
    texts: dict[str, str] = {}
    binaries: dict[str, bytes] = {}
    for info in zf.infolist():
        if info.is_dir():
            continue
        try:
            raw = zf.read(info.filename)
        except (zipfile.BadZipFile, KeyError, OSError) as exc:
            logger.warning("Skipping unreadable entry %s: %s", info.filename, exc)
            continue
        if _is_text_entry(info.filename):
            texts[info.filename] = _decode_text(raw)
        else:
            binaries[info.filename] = raw
    return texts, binaries


def _strip_tag(tag: str) -> str:
    return tag.split("}", 1)[-1] if "}" in tag else tag


def _get_attr(elem: ET.Element, name: str) -> str | None:
    for attr, value in elem.attrib.items():
        if _strip_tag(attr) == name:
            return value
    return None


def _find_children(root: ET.Element, name: str) -> list[ET.Element]:
    return [elem for elem in root.iter() if _strip_tag(elem.tag) == name]


def _find_root_path(texts: dict[str, str]) -> str:
    container = texts.get(CONTAINER_PATH)
    if container is None:
        raise MissingContainerDescriptor(f"Missing {CONTAINER_PATH}", path=CONTAINER_PATH)
    try:
        root = ET.fromstring(container)
    except ET.ParseError as exc:
        raise MissingRootDescriptor(f"{CONTAINER_PATH} is not well-formed: {exc}", path=CONTAINER_PATH) from exc
    for rootfile in root.findall(f".//{{{CONTAINER_NS}}}rootfile") or _find_children(root, "rootfile"):
        full_path = rootfile.attrib.get("full-path")
        if full_path:
            return full_path
    raise MissingRootDescriptor("Missing rootfile", path=CONTAINER_PATH)


def _resolve_href(root_path: str, href: str) -> str:
    base = str(PurePosixPath(root_path).parent)
    href = unquote(href.split("#", 1)[0])
    combined = posixpath.join(base, href) if base not in ("", ".", "/") else href
    return posixpath.normpath(combined)


def _entry_dir(path: str) -> str:
    parent = posixpath.dirname(path)
    return f"{parent}/" if parent else ""


def _read_manifest(root: ET.Element, root_path: str) -> dict[str, _ManifestItem]:
    manifests = _find_children(root, "manifest")
    if not manifests:
        raise MissingManifest(f"Missing manifest in {root_path}", path=root_path)
    items: dict[str, _ManifestItem] = {}
    for elem in manifests[0]:
        if _strip_tag(elem.tag) != "item":
            continue
        item_id = _get_attr(elem, "id")
        href = _get_attr(elem, "href")
        if not item_id or not href:
            continue
        items[item_id] = _ManifestItem(
            item_id=item_id,
            href=href,
            path=_resolve_href(root_path, href),
            media_type=(_get_attr(elem, "media-type") or "").strip().lower(),
        )
    return items


def _spine_idrefs(root: ET.Element) -> list[str]:
    idrefs: list[str] = []
    for spine in _find_children(root, "spine"):
        for itemref in spine:
            if _strip_tag(itemref.tag) != "itemref":
                continue
            idref = _get_attr(itemref, "idref")
            if idref:
                idrefs.append(idref)
    return idrefs


def _metadata_texts(root: ET.Element, name: str) -> list[str]:
    values: list[str] = []
    for elem in root.iter(f"{{{DC_NS}}}{name}"):
        text = " ".join("".join(elem.itertext()).split())
        if text:
            values.append(unicodedata.normalize("NFC", text))
    return values


def collapse_whitespace(text: str) -> str:
    return _WS_RUN.sub(" ", text).strip()


def _collect_paragraphs(root: Tag) -> list[list[str]]:
    paragraphs: list[list[str]] = [[]]
    # (children iterator, closes a block) pairs; walked without recursion.
    stack = [(iter(root.children), False)]
    while stack:
        children, closes_block = stack[-1]
        child = next(children, None)
        if child is None:
            stack.pop()
            if closes_block:
                paragraphs.append([])
            continue
        if isinstance(child, Tag):
            if child.name == "br":
                paragraphs[-1].append(" ")
            elif child.name in BLOCK_LEVEL_TAGS:
                paragraphs.append([])
                stack.append((iter(child.children), True))
            else:
                stack.append((iter(child.children), False))
        elif type(child) is NavigableString:
            paragraphs[-1].append(str(child))
    return paragraphs


def extract_plain_text(root: Tag) -> str:
    """Collapse markup to text: one space between words, a blank line between blocks."""
    blocks = [collapse_whitespace("".join(parts)) for parts in _collect_paragraphs(root)]
    return "\n\n".join(block for block in blocks if block)


def _chapter_title(soup: BeautifulSoup, position: int) -> str:
    candidates: list[Tag | None] = [soup.find("title"), soup.find(["h1", "h2", "h3"])]
    for candidate in candidates:
        if candidate is None:
            continue
        title = collapse_whitespace(candidate.get_text())
        if title:
            return title
    return f"Chapter {position + 1}"


def _parse_chapter(markup: str, path: str, position: int) -> tuple[str, str]:
    try:
        soup = soup_from_markup(markup)
    except ParserRejectedMarkup as exc:
        raise MalformedChapterMarkup(path, str(exc)) from exc
    title = _chapter_title(soup, position)
    body = content_root(soup)
    if body is None:
        return title, ""
    for tag in body.find_all(NON_CONTENT_TAGS):
        tag.decompose()
    return title, extract_plain_text(body)


def _extract_resources(binaries: dict[str, bytes], manifest: dict[str, _ManifestItem]) -> ResourceTable:
    declared = {item.path: item.media_type for item in manifest.values()}
    table = ResourceTable()
    for name, data in binaries.items():
        if is_image_path(name):
            table.add(name, data, declared.get(name) or None)
    return table


def open_package(
    archive: bytes,
    config: ReaderConfig | None = None,
    *,
    source_name: str | None = None,
) -> PackageSession:
    """
    Parse an EPUB archive into a session holding chapters and image resources.

    Chapters follow spine order. Spine items that are not XHTML/HTML, are
    missing from the archive, fail to parse, or hold no more than
    ``config.min_chapter_chars`` characters of text are skipped.
    """
    config = config or ReaderConfig()
    try:
        zf = zipfile.ZipFile(io.BytesIO(archive))
    except zipfile.BadZipFile as exc:
        raise NotAZipArchive(f"Not a zip archive: {exc}", path=source_name) from exc

    with zf:
        texts, binaries = _unpack(zf)

    root_path = _find_root_path(texts)
    root_xml = texts.get(root_path)
    if root_xml is None:
        raise MissingRootDescriptor(f"Missing package document {root_path}", path=root_path)
    try:
        root = ET.fromstring(root_xml)
    except ET.ParseError as exc:
        raise MissingRootDescriptor(f"{root_path} is not well-formed: {exc}", path=root_path) from exc

    manifest = _read_manifest(root, root_path)
    titles = _metadata_texts(root, "title")
    languages = _metadata_texts(root, "language")

    chapters: list[ChapterRecord] = []
    for position, idref in enumerate(_spine_idrefs(root)):
        item = manifest.get(idref)
        if item is None or item.media_type not in READABLE_MEDIA_TYPES:
            continue
        markup = texts.get(item.path)
        if markup is None:
            logger.debug("Spine item %s points at missing entry %s", idref, item.path)
            continue
        try:
            title, text = _parse_chapter(markup, item.path, position)
        except MalformedChapterMarkup as exc:
            logger.warning("Skipping chapter: %s", exc)
            continue
        if len(text) <= config.min_chapter_chars:
            logger.debug("Skipping short chapter %s (%d chars)", item.path, len(text))
            continue
        chapters.append(
            ChapterRecord(
                index=position,
                title=title,
                plain_text=text,
                raw_markup=markup,
                base_path=_entry_dir(item.path),
                source=item.path,
            )
        )

    if not chapters:
        raise NoReadableChapters(path=source_name)

    session = PackageSession(
        archive=archive,
        title=titles[0] if titles else config.default_title,
        chapters=chapters,
        resources=_extract_resources(binaries, manifest),
        root_path=root_path,
        authors=_metadata_texts(root, "creator"),
        language=languages[0] if languages else None,
        source_name=source_name,
    )
    logger.debug(
        "Opened %r: %d chapters, %d resources",
        session.title,
        len(chapters),
        len(session.resources),
    )
    return session


def open_package_file(path: str | Path, config: ReaderConfig | None = None) -> PackageSession:
    path = Path(path)
    return open_package(path.read_bytes(), config, source_name=path.name)


class SessionManager:
    """Holds the single live package session and releases it on replacement."""

    def __init__(self, config: ReaderConfig | None = None) -> None:
        self.config = config or ReaderConfig()
        self.lock = threading.RLock()
        self._session: PackageSession | None = None

    @property
    def current(self) -> PackageSession | None:
        return self._session

    def open(self, archive: bytes, *, source_name: str | None = None) -> PackageSession:
        with self.lock:
            session = open_package(archive, self.config, source_name=source_name)
            if self._session is not None:
                self._session.close()
            self._session = session
            return session

    def close(self) -> None:
        with self.lock:
            if self._session is not None:
                self._session.close()
                self._session = None
