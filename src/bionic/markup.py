from __future__ import annotations

import warnings

from bs4 import (
    BeautifulSoup,
    FeatureNotFound,
    NavigableString,
    PageElement,
    Tag,
    XMLParsedAsHTMLWarning,
)  # type: ignore

from .text import DEFAULT_STYLE, BionicStyle, BionicWord, bionic_tokens

# Text under these elements is code or styling, never prose.
SKIP_TEXT_PARENTS = {"script", "style"}


def is_xml_markup(markup: str) -> bool:
    stripped = markup.lstrip()
    lower_head = stripped[:200].lower()
    return stripped.startswith("<?xml") or ("<html" in lower_head and "xmlns" in lower_head)


def soup_from_markup(markup: str | bytes, *, xml: bool | None = None) -> BeautifulSoup:
    """
    Parse chapter markup, preferring an XML parser for XHTML documents.
    """
    if xml is None:
        text = markup.decode("utf-8", errors="replace") if isinstance(markup, bytes) else markup
        xml = is_xml_markup(text)

    if xml:
        for parser in ("lxml-xml", "xml"):
            try:
                return BeautifulSoup(markup, parser)
            except FeatureNotFound:
                continue

    for parser in ("lxml", "html.parser"):
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
                return BeautifulSoup(markup, parser)
        except FeatureNotFound:
            continue

    return BeautifulSoup(markup, "html.parser")


def content_root(soup: BeautifulSoup) -> Tag | None:
    body = soup.find("body")
    if isinstance(body, Tag):
        return body
    return None


def _owning_soup(node: PageElement) -> BeautifulSoup:
    top: PageElement = node
    while top.parent is not None:
        top = top.parent
    if isinstance(top, BeautifulSoup):
        return top
    return BeautifulSoup("", "html.parser")


def _copy_attrs(tag: Tag) -> dict[str, object]:
    attrs: dict[str, object] = {}
    for key, value in tag.attrs.items():
        attrs[key] = list(value) if isinstance(value, list) else value
    return attrs


def _bionic_nodes(text: str, soup: BeautifulSoup, style: BionicStyle) -> list[PageElement]:
    nodes: list[PageElement] = []
    pending: list[str] = []

    def _flush() -> None:
        if pending:
            nodes.append(NavigableString("".join(pending)))
            pending.clear()

    for token in bionic_tokens(text):
        if not isinstance(token, BionicWord):
            pending.append(token)
            continue
        _flush()
        bold = soup.new_tag("span", attrs={"style": style.bold})
        bold.append(NavigableString(token.bold))
        normal = soup.new_tag("span", attrs={"style": style.normal})
        normal.append(NavigableString(token.normal))
        nodes.extend((bold, normal))
    _flush()
    return nodes


def _transform_children(
    tag: Tag,
    soup: BeautifulSoup,
    style: BionicStyle,
    skip_text: bool,
) -> list[PageElement]:
    children: list[PageElement] = []
    for child in tag.contents:
        if isinstance(child, Tag):
            children.append(_rebuild(child, soup, style, skip_text))
        elif type(child) is NavigableString and not skip_text and child.strip():
            children.extend(_bionic_nodes(str(child), soup, style))
        else:
            # Comments, CDATA, doctypes and whitespace keep their exact type.
            children.append(type(child)(str(child)))
    return children


def _rebuild(tag: Tag, soup: BeautifulSoup, style: BionicStyle, skip_text: bool) -> Tag:
    clone = soup.new_tag(
        tag.name,
        namespace=tag.namespace,
        nsprefix=tag.prefix,
        attrs=_copy_attrs(tag),
    )
    clone.can_be_empty_element = tag.can_be_empty_element
    skip = skip_text or tag.name in SKIP_TEXT_PARENTS
    for child in _transform_children(tag, soup, style, skip):
        clone.append(child)
    return clone


def transform_fragment(
    node: Tag,
    soup: BeautifulSoup | None = None,
    style: BionicStyle = DEFAULT_STYLE,
) -> Tag:
    """
    Return a bionic copy of ``node``.

    The input tree is left untouched. Elements keep their names, attributes
    and nesting; every non-blank text leaf is replaced by the bold/normal
    span sequence for its words. ``soup`` is the document that will own the
    new nodes and defaults to the one ``node`` belongs to.
    """
    if soup is None:
        soup = _owning_soup(node)
    skip_text = any(parent.name in SKIP_TEXT_PARENTS for parent in node.parents)
    return _rebuild(node, soup, style, skip_text)


def inner_markup(tag: Tag) -> str:
    return "".join(str(child) for child in tag.contents)


def transform_markup(markup: str, style: BionicStyle = DEFAULT_STYLE) -> str:
    """Apply the bionic transform to a markup fragment and return the new fragment markup."""
    soup = BeautifulSoup(f"<div>{markup}</div>", "html.parser")
    wrapper = soup.div
    if wrapper is None:
        return markup
    return inner_markup(transform_fragment(wrapper, soup, style))
