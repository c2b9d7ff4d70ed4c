from __future__ import annotations

import base64
import logging
import mimetypes
import posixpath
import re
import uuid
from collections.abc import Iterator, Mapping
from typing import Callable
from urllib.parse import unquote

from bs4 import Tag  # type: ignore

from .config import IMAGE_EXTS
from .errors import ResourceReleased, UnresolvedResource

logger = logging.getLogger(__name__)

_ABSOLUTE_REFERENCE = re.compile(r"^([a-z][a-z0-9+.-]*:|/)", re.IGNORECASE)


def is_image_path(path: str) -> bool:
    return path.lower().endswith(IMAGE_EXTS)


def guess_media_type(path: str) -> str:
    media_type, _ = mimetypes.guess_type(path)
    if media_type:
        return media_type
    if path.lower().endswith(".webp"):
        return "image/webp"
    return "application/octet-stream"


class ResourceHandle:
    """An extracted binary entry owned by a package session."""

    __slots__ = ("id", "path", "media_type", "_data")

    def __init__(self, path: str, data: bytes, media_type: str | None = None) -> None:
        self.id = uuid.uuid4().hex
        self.path = path
        self.media_type = media_type or guess_media_type(path)
        self._data: bytes | None = data

    @property
    def released(self) -> bool:
        return self._data is None

    @property
    def data(self) -> bytes:
        if self._data is None:
            raise ResourceReleased(f"Resource already released: {self.path}")
        return self._data

    @property
    def size(self) -> int:
        return len(self._data) if self._data is not None else 0

    def data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.media_type};base64,{encoded}"

    def release(self) -> None:
        self._data = None

    def __repr__(self) -> str:
        state = "released" if self.released else f"{self.size} bytes"
        return f"ResourceHandle({self.path!r}, {self.media_type!r}, {state})"


class ResourceTable(Mapping[str, ResourceHandle]):
    """Package path -> resource handle, with lookup by handle id and case-folded path."""

    def __init__(self, handles: Mapping[str, ResourceHandle] | None = None) -> None:
        self._handles: dict[str, ResourceHandle] = dict(handles or {})
        self._by_id = {handle.id: handle for handle in self._handles.values()}
        self._folded: dict[str, ResourceHandle] | None = None

    def __getitem__(self, path: str) -> ResourceHandle:
        return self._handles[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._handles)

    def __len__(self) -> int:
        return len(self._handles)

    def add(self, path: str, data: bytes, media_type: str | None = None) -> ResourceHandle:
        handle = ResourceHandle(path, data, media_type)
        previous = self._handles.get(path)
        if previous is not None:
            previous.release()
            self._by_id.pop(previous.id, None)
        self._handles[path] = handle
        self._by_id[handle.id] = handle
        self._folded = None
        return handle

    def by_id(self, resource_id: str) -> ResourceHandle | None:
        return self._by_id.get(resource_id)

    def lookup_folded(self, path: str) -> ResourceHandle | None:
        if self._folded is None:
            folded: dict[str, ResourceHandle] = {}
            for key, handle in self._handles.items():
                folded.setdefault(key.casefold(), handle)
            self._folded = folded
        return self._folded.get(path.casefold())

    def release(self) -> None:
        for handle in self._handles.values():
            handle.release()
        self._handles.clear()
        self._by_id.clear()
        self._folded = None


def resolve_reference_path(reference: str, base_path: str) -> str:
    if _ABSOLUTE_REFERENCE.match(reference):
        return reference
    reference = reference.split("#", 1)[0].split("?", 1)[0]
    while reference.startswith("./"):
        reference = reference[2:]
    if base_path:
        reference = posixpath.join(base_path, reference)
    normalized = posixpath.normpath(reference)
    return "" if normalized == "." else normalized


def require_resource(reference: str, base_path: str, table: ResourceTable) -> ResourceHandle:
    """
    Find the handle for a reference found in a chapter.

    Tries the exact package path, then a case-insensitive match, then the
    percent-decoded form of both. Raises UnresolvedResource when nothing
    matches.
    """
    resolved = resolve_reference_path(reference, base_path) if reference else ""
    candidates = [resolved]
    decoded = unquote(resolved)
    if decoded != resolved:
        candidates.append(decoded)
    for candidate in candidates:
        handle = table.get(candidate)
        if handle is not None:
            return handle
        handle = table.lookup_folded(candidate)
        if handle is not None:
            return handle
    raise UnresolvedResource(reference, resolved)


def resolve_resource(reference: str, base_path: str, table: ResourceTable) -> ResourceHandle | None:
    """Like require_resource, but returns None for references that do not resolve."""
    try:
        return require_resource(reference, base_path, table)
    except UnresolvedResource:
        return None


# (tag name, attribute names) pairs that carry resource references.
_REFERENCE_ATTRS = (
    ("img", ("src",)),
    ("image", ("href", "xlink:href")),
)


def rewrite_resource_references(
    root: Tag,
    base_path: str,
    table: ResourceTable,
    url_for: Callable[[ResourceHandle], str],
) -> int:
    """Point image references under ``root`` at resolved handles; returns the number rewritten."""
    rewritten = 0
    for name, attrs in _REFERENCE_ATTRS:
        for tag in root.find_all(name):
            for attr in attrs:
                reference = tag.get(attr)
                if not isinstance(reference, str) or not reference:
                    continue
                try:
                    handle = require_resource(reference, base_path, table)
                except UnresolvedResource as exc:
                    logger.debug("Leaving reference untouched: %s", exc)
                    continue
                tag[attr] = url_for(handle)
                rewritten += 1
    return rewritten
