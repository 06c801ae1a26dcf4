"""
User intents available once the tree is under management
"""

import logging
from dataclasses import replace
from typing import AbstractSet, List, Optional, Sequence

from .errors import InvalidMoveError
from .models import BookmarkNode, LinkStatus, now_timestamp
from .tree import (
    find_node,
    insert_child,
    is_descendant,
    move_node,
    remove_nodes,
    top_level_matches,
    update_where,
)

logger = logging.getLogger(__name__)

DEFAULT_FOLDER_TITLE = "New Folder"
DEFAULT_BOOKMARK_TITLE = "New Bookmark"
DEFAULT_BOOKMARK_URL = "https://example.com"
OPTIMIZED_TITLE_NOTE = "Title optimized"

SORT_OPTIONS = ("name", "date", "type")


def _require_folder(nodes: Sequence[BookmarkNode], folder_id: str) -> BookmarkNode:
    folder = find_node(folder_id, nodes)
    if folder is None or not folder.is_folder:
        raise InvalidMoveError(f"Target folder {folder_id} not found")
    return folder


def add_folder(nodes: Sequence[BookmarkNode], parent_id: str, title: str = DEFAULT_FOLDER_TITLE) -> List[BookmarkNode]:
    _require_folder(nodes, parent_id)
    return insert_child(nodes, parent_id, BookmarkNode.folder(title), index=0)


def add_bookmark(
    nodes: Sequence[BookmarkNode],
    parent_id: str,
    title: str = DEFAULT_BOOKMARK_TITLE,
    url: str = DEFAULT_BOOKMARK_URL,
) -> List[BookmarkNode]:
    _require_folder(nodes, parent_id)
    link = BookmarkNode.link(title, url, added_at=now_timestamp())
    return insert_child(nodes, parent_id, link, index=0)


def rename_node(nodes: Sequence[BookmarkNode], node_id: str, title: str) -> List[BookmarkNode]:
    if not title:
        return list(nodes)
    return update_where(nodes, lambda node: node.id == node_id, lambda node: replace(node, title=title))


def tag_nodes(nodes: Sequence[BookmarkNode], node_ids: AbstractSet[str], tag: str) -> List[BookmarkNode]:
    if not tag:
        return list(nodes)
    return update_where(
        nodes,
        lambda node: node.id in node_ids,
        lambda node: replace(node, tags=set(node.tags) | {tag}),
    )


def mark_dead(nodes: Sequence[BookmarkNode], node_ids: AbstractSet[str]) -> List[BookmarkNode]:
    return update_where(
        nodes,
        lambda node: node.id in node_ids and node.is_link,
        lambda node: replace(node, status=LinkStatus.DEAD),
    )


def delete_nodes(nodes: Sequence[BookmarkNode], node_ids: Sequence[str]) -> List[BookmarkNode]:
    """Delete nodes and, for folders, their whole subtree"""
    return remove_nodes(list(node_ids), nodes)


def move_nodes(nodes: Sequence[BookmarkNode], node_ids: Sequence[str], target_folder_id: str) -> List[BookmarkNode]:
    """Bulk move in tree order. The target is validated before anything is removed."""
    target = _require_folder(nodes, target_folder_id)
    selected = top_level_matches(nodes, [node_id for node_id in node_ids if node_id != target.id])
    for node in selected:
        if is_descendant(node, target.id):
            raise InvalidMoveError(f'Cannot move "{node.title}" into its own child')

    remaining = remove_nodes([node.id for node in selected], nodes)
    return update_where(
        remaining,
        lambda node: node.id == target.id,
        lambda node: replace(node, children=list(node.children) + selected),
    )


def move_single(nodes: Sequence[BookmarkNode], node_id: str, target_folder_id: str) -> List[BookmarkNode]:
    """Drag-and-drop style move of one node"""
    return move_node(nodes, node_id, target_folder_id)


def _date_key(node: BookmarkNode) -> int:
    try:
        return int(node.added_at or 0)
    except ValueError:
        return 0


def sort_children(children: Sequence[BookmarkNode], option: str = "type") -> List[BookmarkNode]:
    """View ordering for one folder; does not touch the stored tree order"""
    if option == "name":
        return sorted(children, key=lambda node: node.title.lower())
    if option == "date":
        return sorted(children, key=_date_key, reverse=True)
    if option == "type":
        return sorted(children, key=lambda node: (not node.is_folder, node.title.lower()))
    raise ValueError(f"Unknown sort option: {option}. Supported: {', '.join(SORT_OPTIONS)}")


async def auto_group(nodes: Sequence[BookmarkNode], parent_id: str, node_ids: AbstractSet[str], oracle) -> List[BookmarkNode]:
    """Wrap selected children of parent_id into a new folder named by the oracle"""
    parent = _require_folder(nodes, parent_id)
    selected = [child for child in parent.children if child.id in node_ids]
    if len(selected) < 2:
        return list(nodes)

    name = await oracle.suggest_folder_name(selected)
    group = BookmarkNode.folder(name, selected)

    def regroup(folder: BookmarkNode) -> BookmarkNode:
        rest = [child for child in folder.children if child.id not in node_ids]
        return replace(folder, children=[group] + rest)

    logger.info(f'Grouped {len(selected)} items into "{name}"')
    return update_where(nodes, lambda node: node.id == parent_id, regroup)


async def smart_rename(nodes: Sequence[BookmarkNode], node_ids: AbstractSet[str], oracle) -> List[BookmarkNode]:
    """Replace cryptic link titles with oracle suggestions; unchanged ones are left alone"""
    targets = [node for node in top_level_matches(nodes, node_ids) if node.is_link]
    if not targets:
        return list(nodes)

    new_titles = await oracle.optimize_titles(targets)
    changed = {
        node.id: new_titles[node.id]
        for node in targets
        if new_titles.get(node.id) and new_titles[node.id] != node.title
    }
    logger.info(f"Optimization: Updated {len(changed)} titles.")
    return update_where(
        nodes,
        lambda node: node.id in changed,
        lambda node: replace(node, title=changed[node.id], description=OPTIMIZED_TITLE_NOTE),
    )


def first_folder_id(nodes: Sequence[BookmarkNode]) -> Optional[str]:
    for node in nodes:
        if node.is_folder:
            return node.id
    return None
