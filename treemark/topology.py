"""
Dissolves vendor "imported / other bookmarks" containers into their parent level
"""

from dataclasses import replace
from typing import FrozenSet, Iterable, List, Sequence

from .models import BookmarkNode

JUNK_FOLDER_NAMES: FrozenSet[str] = frozenset({
    "other bookmarks",
    "imported favorites",
    "imported bookmarks",
    "from internet explorer",
})


def is_junk_folder(node: BookmarkNode, names: Iterable[str] = JUNK_FOLDER_NAMES) -> bool:
    return node.is_folder and node.title.strip().lower() in names


def merge_junk_folders(nodes: Sequence[BookmarkNode], names: Iterable[str] = JUNK_FOLDER_NAMES) -> List[BookmarkNode]:
    """Bottom-up: children are normalized first, then a matching folder is
    replaced by its children in place. Leaf count never changes."""
    names = frozenset(name.strip().lower() for name in names)

    result: List[BookmarkNode] = []
    for node in nodes:
        if node.is_folder:
            children = merge_junk_folders(node.children, names)
            if is_junk_folder(node, names):
                result.extend(children)
                continue
            node = replace(node, children=children)
        result.append(node)
    return result
