"""
Resolves a reviewed proposal: kept folders stay, every other folder is dissolved
"""

from dataclasses import replace
from typing import AbstractSet, List, Sequence, Set

from .models import BookmarkNode
from .tree import flatten_folders


def all_folder_ids(nodes: Sequence[BookmarkNode]) -> Set[str]:
    """Default review selection: keep everything"""
    return {folder.id for folder in flatten_folders(nodes)}


def resolve_structure(proposed: Sequence[BookmarkNode], keep_folder_ids: AbstractSet[str]) -> List[BookmarkNode]:
    """Dissolve each folder not in keep_folder_ids, lifting its resolved
    children into the position it occupied. Dissolution composes, so links
    rise to the nearest kept ancestor or the root. Links are always kept."""
    result: List[BookmarkNode] = []
    for node in proposed:
        if node.is_link:
            result.append(node)
            continue
        children = resolve_structure(node.children, keep_folder_ids)
        if node.id in keep_folder_ids:
            result.append(replace(node, children=children))
        else:
            result.extend(children)
    return result
