from __future__ import annotations

import io
import logging
import re
import zipfile
from pathlib import Path
from typing import Callable

from bs4 import BeautifulSoup, Tag  # type: ignore
from lxml import etree

from .config import CONTENT_EXTS, DEFAULT_EXPORT_STEM, EXPORT_SUFFIX
from .errors import MalformedChapterMarkup
from .markup import content_root, transform_fragment
from .package import PackageSession
from .text import DEFAULT_STYLE, BionicStyle

logger = logging.getLogger(__name__)

FragmentTransform = Callable[[Tag, BeautifulSoup], Tag]


def bionic_transform(style: BionicStyle = DEFAULT_STYLE) -> FragmentTransform:
    def _transform(root: Tag, soup: BeautifulSoup) -> Tag:
        return transform_fragment(root, soup, style)

    return _transform


def export_filename(title: str | None) -> str:
    stem = re.sub(r"\s+", "_", title.strip()) if title and title.strip() else DEFAULT_EXPORT_STEM
    return f"{stem}{EXPORT_SUFFIX}"


def is_content_entry(name: str) -> bool:
    return name.lower().endswith(CONTENT_EXTS)


def _check_well_formed(name: str, data: bytes) -> None:
    parser = etree.XMLParser(recover=False, resolve_entities=False, no_network=True, load_dtd=False)
    try:
        etree.fromstring(data, parser)
    except etree.XMLSyntaxError as exc:
        raise MalformedChapterMarkup(name, str(exc)) from exc


def transform_entry(name: str, data: bytes, transform: FragmentTransform) -> bytes | None:
    """
    Transform one content entry. Returns None when the entry has no body;
    raises MalformedChapterMarkup when it does not parse.
    """
    _check_well_formed(name, data)
    soup = BeautifulSoup(data, "lxml-xml")
    body = content_root(soup)
    if body is None:
        return None
    body.replace_with(transform(body, soup))
    return str(soup).encode("utf-8")


def _rebuild_archive(archive: bytes, transform: FragmentTransform) -> bytes:
    output = io.BytesIO()
    transformed = 0
    with zipfile.ZipFile(io.BytesIO(archive)) as src, zipfile.ZipFile(output, "w") as dst:
        for info in src.infolist():
            data = src.read(info.filename)
            if not info.is_dir() and is_content_entry(info.filename):
                try:
                    new_data = transform_entry(info.filename, data, transform)
                except MalformedChapterMarkup as exc:
                    logger.warning("Leaving entry untransformed: %s", exc)
                    new_data = None
                if new_data is not None:
                    data = new_data
                    transformed += 1
            dst.writestr(info, data)
    logger.debug("Transformed %d content entries", transformed)
    return output.getvalue()


def export_package(
    session: PackageSession,
    transform: FragmentTransform | None = None,
) -> bytes:
    """
    Build a new EPUB from the session's original archive with every content
    document's body run through ``transform`` (the bionic transform by
    default). All other entries are copied unchanged, in the same order.
    """
    session.ensure_open()
    return _rebuild_archive(session.archive, transform or bionic_transform())


def write_export(
    session: PackageSession,
    directory: str | Path,
    transform: FragmentTransform | None = None,
    *,
    filename: str | None = None,
) -> Path:
    target = Path(directory) / (filename or export_filename(session.title))
    target.write_bytes(export_package(session, transform))
    return target
