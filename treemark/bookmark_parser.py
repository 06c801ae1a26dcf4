"""
Netscape bookmark file parser and serializer
"""

import uuid
from typing import List, NamedTuple, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, Tag

from .errors import BookmarkParseError
from .models import BookmarkNode, LinkStatus

# Stamped into every export so a re-import can skip the pipeline
PROCESSED_MARKER = "treemark-analyzed"

UNTITLED_FOLDER = "Untitled Folder"
UNTITLED_LINK = "Untitled Link"

INDENT = "    "
ITEM_TAGS = ("dt", "h3", "a")

# Ids of parsed nodes are derived from their position so that re-parsing the
# same file yields the same ids (saved proposals refer to them)
ID_NAMESPACE = uuid.UUID("5b8e3f0c-6a1d-4c6e-9a57-2f3d8e4b7c10")


class ParseResult(NamedTuple):
    nodes: List[BookmarkNode]
    is_processed_export: bool


def _enclosing_dl(element: Tag) -> Optional[Tag]:
    return element.find_parent("dl")


def _direct_items(dl: Tag) -> List[Tag]:
    """H3 and A tags that belong to this DL and not to a nested one.

    html.parser leaves <DT> and <p> unclosed, so items of one list can end up
    nested inside earlier items; ownership is decided by the closest DL.
    """
    return [el for el in dl.find_all(["h3", "a"]) if _enclosing_dl(el) is dl]


def _folder_list(h3: Tag) -> Optional[Tag]:
    """The DL holding a folder's children.

    Usually the next sibling of the H3. Firefox writes a <DD> description
    first, and since html.parser never closes <DD> the DL lands inside it.
    The search stops at the next item so a later folder's list is never taken.
    """
    for sibling in h3.find_next_siblings():
        if sibling.name == "dl":
            return sibling
        if sibling.name == "dd":
            for child in sibling.find_all(True, recursive=False):
                if child.name == "dl":
                    return child
                if child.name in ITEM_TAGS:
                    return None
        elif sibling.name in ITEM_TAGS:
            return None
    return None


def parsed_id(position: Tuple[int, ...], text: str) -> str:
    key = ".".join(str(i) for i in position) + "|" + text
    return str(uuid.uuid5(ID_NAMESPACE, key))


def _traverse(dl: Tag, path: List[str], position: Tuple[int, ...] = ()) -> List[BookmarkNode]:
    nodes = []
    for index, element in enumerate(_direct_items(dl)):
        here = position + (index,)
        if element.name == "h3":
            title = element.get_text() or UNTITLED_FOLDER
            child_dl = _folder_list(element)
            children = _traverse(child_dl, path + [title], here) if child_dl is not None else []
            nodes.append(BookmarkNode.folder(
                title,
                children,
                id=parsed_id(here, title),
                added_at=element.get("add_date") or None,
                modified_at=element.get("last_modified") or None,
                original_path=list(path),
                is_toolbar=(element.get("personal_toolbar_folder", "").lower() == "true"),
            ))
        else:
            nodes.append(BookmarkNode.link(
                element.get_text() or UNTITLED_LINK,
                element.get("href") or "",
                id=parsed_id(here, element.get("href") or ""),
                added_at=element.get("add_date") or None,
                icon=element.get("icon") or None,
                original_path=list(path),
                status=LinkStatus.UNCHECKED,
            ))
    return nodes


def is_processed_export(soup: BeautifulSoup) -> bool:
    for meta in soup.find_all("meta"):
        if (meta.get("name") or "").lower() == PROCESSED_MARKER:
            return True
    return False


def parse_bookmarks(html_content: str) -> ParseResult:
    """Parse a Netscape bookmark document into a forest"""
    soup = BeautifulSoup(html_content, "html.parser")
    root_dl = soup.find("dl")
    if root_dl is None:
        raise BookmarkParseError("Invalid Netscape Bookmark File: No root DL found.")
    return ParseResult(_traverse(root_dl, []), is_processed_export(soup))


def escape_html(unsafe: str) -> str:
    return (
        unsafe.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#039;")
    )


def _attr(name: str, value: Optional[str]) -> str:
    if value is None:
        return ""
    return f' {name}="{escape_html(value)}"'


def _serialize(items: Sequence[BookmarkNode], level: int) -> List[str]:
    lines = []
    pad = INDENT * level
    for node in items:
        if node.is_folder:
            toolbar = ' PERSONAL_TOOLBAR_FOLDER="true"' if node.is_toolbar else ""
            lines.append(
                f"{pad}<DT><H3{_attr('ADD_DATE', node.added_at)}"
                f"{_attr('LAST_MODIFIED', node.modified_at)}{toolbar}>{escape_html(node.title)}</H3>"
            )
            lines.append(f"{pad}<DL><p>")
            lines.extend(_serialize(node.children, level + 1))
            lines.append(f"{pad}</DL><p>")
        else:
            lines.append(
                f"{pad}<DT><A HREF=\"{escape_html(node.url or '')}\"{_attr('ADD_DATE', node.added_at)}"
                f"{_attr('ICON', node.icon)}>{escape_html(node.title)}</A>"
            )
    return lines


def serialize_bookmarks(nodes: Sequence[BookmarkNode]) -> str:
    """Render a forest as a Netscape bookmark document, always stamping the marker"""
    header = [
        "<!DOCTYPE NETSCAPE-Bookmark-file-1>",
        "<!-- This is an automatically generated file.",
        "     It will be read and overwritten.",
        "     DO NOT EDIT! -->",
        '<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">',
        f'<META NAME="{PROCESSED_MARKER}" CONTENT="true">',
        "<TITLE>Bookmarks</TITLE>",
        "<H1>Bookmarks</H1>",
        "<DL><p>",
    ]
    return "\n".join(header + _serialize(nodes, 1) + ["</DL><p>"]) + "\n"
