"""
Recursive primitives over the bookmark forest.

Every operation that changes structure returns a new forest; the input
forest is never modified. Link nodes that are not touched may be shared
between the input and the output, folders on the way down are rebuilt.
"""

import copy
from dataclasses import replace
from typing import Callable, Iterator, List, Optional, Sequence

from .errors import InvalidMoveError
from .models import BookmarkNode

Forest = List[BookmarkNode]


def iter_nodes(forest: Sequence[BookmarkNode]) -> Iterator[BookmarkNode]:
    """Pre-order traversal over every node (folders and links)"""
    for node in forest:
        yield node
        if node.is_folder:
            yield from iter_nodes(node.children)


def find_node(node_id: str, forest: Sequence[BookmarkNode]) -> Optional[BookmarkNode]:
    """Depth-first search, first match wins"""
    for node in iter_nodes(forest):
        if node.id == node_id:
            return node
    return None


def flatten_links(forest: Sequence[BookmarkNode]) -> List[BookmarkNode]:
    """All link leaves in tree order - the work list for batch phases"""
    return [node for node in iter_nodes(forest) if node.is_link]


def flatten_folders(forest: Sequence[BookmarkNode]) -> List[BookmarkNode]:
    return [node for node in iter_nodes(forest) if node.is_folder]


def count_links(forest: Sequence[BookmarkNode]) -> int:
    return sum(1 for node in iter_nodes(forest) if node.is_link)


def copy_forest(forest: Sequence[BookmarkNode]) -> Forest:
    """Deep copy keeping ids, used whenever two trees must coexist"""
    return copy.deepcopy(list(forest))


def remove_node(node_id: str, forest: Sequence[BookmarkNode]) -> Forest:
    """Excise the node wherever it sits; folders take their subtree with them"""
    if find_node(node_id, forest) is None:
        return list(forest)

    def _remove(items: Sequence[BookmarkNode]) -> Forest:
        result = []
        for node in items:
            if node.id == node_id:
                continue
            if node.is_folder:
                node = replace(node, children=_remove(node.children))
            result.append(node)
        return result

    return _remove(forest)


def remove_nodes(node_ids: Sequence[str], forest: Sequence[BookmarkNode]) -> Forest:
    for node_id in node_ids:
        forest = remove_node(node_id, forest)
    return list(forest)


def update_where(
    forest: Sequence[BookmarkNode],
    predicate: Callable[[BookmarkNode], bool],
    transform: Callable[[BookmarkNode], BookmarkNode],
) -> Forest:
    """Apply transform to every matching node, parent before children"""
    result = []
    for node in forest:
        if predicate(node):
            node = transform(node)
        if node.is_folder:
            node = replace(node, children=update_where(node.children, predicate, transform))
        result.append(node)
    return result


def insert_child(
    forest: Sequence[BookmarkNode],
    parent_id: Optional[str],
    child: BookmarkNode,
    index: Optional[int] = None,
) -> Forest:
    """Insert child under parent_id (or at root level when parent_id is None)"""
    def _place(children: Sequence[BookmarkNode]) -> Forest:
        children = list(children)
        if index is None:
            children.append(child)
        else:
            children.insert(index, child)
        return children

    if parent_id is None:
        return _place(forest)

    parent = find_node(parent_id, forest)
    if parent is None or not parent.is_folder:
        raise InvalidMoveError(f"Target folder {parent_id} not found")

    return update_where(
        forest,
        lambda node: node.id == parent_id,
        lambda node: replace(node, children=_place(node.children)),
    )


def is_descendant(ancestor: BookmarkNode, node_id: str) -> bool:
    """True if node_id sits anywhere below ancestor"""
    if not ancestor.is_folder:
        return False
    return any(child.id == node_id or is_descendant(child, node_id) for child in ancestor.children)


def move_node(forest: Sequence[BookmarkNode], node_id: str, target_folder_id: str) -> Forest:
    """Remove-then-append; rejected (nothing changed) on cycles or a bad target"""
    if node_id == target_folder_id:
        raise InvalidMoveError("Cannot move a node into itself")

    source = find_node(node_id, forest)
    target = find_node(target_folder_id, forest)
    if source is None:
        raise InvalidMoveError(f"Node {node_id} not found")
    if target is None or not target.is_folder:
        raise InvalidMoveError(f"Target folder {target_folder_id} not found")
    if is_descendant(source, target_folder_id):
        raise InvalidMoveError("Cannot move a folder into its own child")

    remaining = remove_node(node_id, forest)
    return insert_child(remaining, target_folder_id, source)


def top_level_matches(forest: Sequence[BookmarkNode], node_ids) -> List[BookmarkNode]:
    """Matching nodes in tree order, skipping those already inside a matching folder"""
    wanted = set(node_ids)
    result = []

    def _walk(items: Sequence[BookmarkNode]):
        for node in items:
            if node.id in wanted:
                result.append(node)
                continue
            if node.is_folder:
                _walk(node.children)

    _walk(forest)
    return result
