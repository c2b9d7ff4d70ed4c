from __future__ import annotations

import logging
from typing import Callable

from bs4 import BeautifulSoup  # type: ignore

from .markup import content_root, inner_markup, soup_from_markup, transform_fragment
from .package import ChapterRecord, PackageSession
from .resources import ResourceHandle, ResourceTable, rewrite_resource_references
from .text import DEFAULT_STYLE, BionicStyle, convert_to_bionic

logger = logging.getLogger(__name__)

UrlFor = Callable[[ResourceHandle], str]


def _data_uri(handle: ResourceHandle) -> str:
    return handle.data_uri()


def render_chapter(
    chapter: ChapterRecord,
    resources: ResourceTable,
    url_for: UrlFor = _data_uri,
    style: BionicStyle = DEFAULT_STYLE,
) -> str:
    """
    Build display markup for a chapter: the bionic body content with image
    references pointing at resolved resources. Scripts are dropped.
    """
    soup = soup_from_markup(chapter.as_markup(), xml=False)
    root = content_root(soup)
    if root is None:
        soup = BeautifulSoup(f"<body>{chapter.as_markup()}</body>", "html.parser")
        root = soup.body
    for script in root.find_all("script"):
        script.decompose()
    transformed = transform_fragment(root, soup, style)
    rewrite_resource_references(transformed, chapter.base_path, resources, url_for)
    return inner_markup(transformed)


def render_plain_chapter(chapter: ChapterRecord, style: BionicStyle = DEFAULT_STYLE) -> str:
    return convert_to_bionic(chapter.as_plain_text(), style)


class ChapterNavigator:
    """Current-chapter cursor over a package session."""

    def __init__(
        self,
        session: PackageSession,
        url_for: UrlFor = _data_uri,
        *,
        style: BionicStyle = DEFAULT_STYLE,
        memoize: bool = False,
    ) -> None:
        session.ensure_open()
        self.session = session
        self.url_for = url_for
        self.style = style
        self.memoize = memoize
        self._cache: dict[int, str] = {}
        self.current_index = 0
        self.current_markup = ""
        self._show(0)

    @property
    def chapters(self) -> list[ChapterRecord]:
        return self.session.chapters

    def __len__(self) -> int:
        return len(self.session.chapters)

    @property
    def current_chapter(self) -> ChapterRecord:
        return self.session.chapter(self.current_index)

    @property
    def has_next(self) -> bool:
        return self.current_index < len(self) - 1

    @property
    def has_previous(self) -> bool:
        return self.current_index > 0

    def _render(self, position: int) -> str:
        if self.memoize and position in self._cache:
            return self._cache[position]
        markup = render_chapter(
            self.session.chapter(position),
            self.session.resources,
            self.url_for,
            self.style,
        )
        if self.memoize:
            self._cache[position] = markup
        return markup

    def _show(self, position: int) -> None:
        self.current_markup = self._render(position)
        self.current_index = position
        logger.debug("Showing chapter %d/%d", position + 1, len(self))

    def jump_to(self, position: int) -> bool:
        if not 0 <= position < len(self):
            return False
        self._show(position)
        return True

    def next(self) -> bool:
        if not self.has_next:
            return False
        return self.jump_to(self.current_index + 1)

    def previous(self) -> bool:
        if not self.has_previous:
            return False
        return self.jump_to(self.current_index - 1)

    def current_plain_markup(self) -> str:
        return render_plain_chapter(self.current_chapter, self.style)
