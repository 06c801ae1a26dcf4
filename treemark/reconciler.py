"""
Rebuilds a forest from a proposed folder grouping of link ids and repairs
coverage so that every original link ends up in the result exactly once
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

from .models import BookmarkNode
from .tree import flatten_links

logger = logging.getLogger(__name__)

RECOVERY_FOLDER_TITLE = "Unsorted & Recovered"

# A folder's own links may also be listed under this key
LINKS_KEY = "bookmark_guids"

# Saved proposals may wrap the grouping under this key next to reasoning and summary
STRUCTURE_KEY = "folder_structure"


@dataclass
class ReconcileResult:
    nodes: List[BookmarkNode]
    placed_ids: Set[str] = field(default_factory=set)
    recovered_ids: List[str] = field(default_factory=list)
    unknown_ids: List[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        """True when the proposal placed every link itself"""
        return not self.recovered_ids


class _Materializer:
    def __init__(self, links_by_id: Mapping[str, BookmarkNode]):
        self.links_by_id = links_by_id
        self.used: Set[str] = set()
        self.unknown: List[str] = []

    def take(self, ids: Sequence[Any]) -> List[BookmarkNode]:
        """Resolve ids to copies of the original links, skipping unknown or reused ones"""
        items = []
        for raw_id in ids:
            link_id = str(raw_id)
            node = self.links_by_id.get(link_id)
            if node is None:
                self.unknown.append(link_id)
                continue
            if link_id in self.used:
                logger.debug(f"Link {link_id} assigned more than once, keeping first placement")
                continue
            self.used.add(link_id)
            items.append(copy.deepcopy(node))
        return items

    def level(self, grouping: Mapping[str, Any]) -> List[BookmarkNode]:
        nodes: List[BookmarkNode] = []
        for key, value in grouping.items():
            if key == LINKS_KEY and isinstance(value, list):
                nodes.extend(self.take(value))
            elif isinstance(value, list):
                items = self.take(value)
                if items:
                    nodes.append(BookmarkNode.folder(str(key), items))
            elif isinstance(value, Mapping):
                nodes.append(BookmarkNode.folder(str(key), self.level(value)))
            else:
                logger.debug(f"Ignoring grouping entry {key!r} with value of type {type(value).__name__}")
        return nodes


def reconcile_links(
    original_links: Sequence[BookmarkNode],
    grouping: Mapping[str, Any],
    recovery_title: str = RECOVERY_FOLDER_TITLE,
) -> ReconcileResult:
    """Materialize grouping against original_links.

    Ids that do not name a known link are skipped. Original links the
    grouping never placed are appended, in their original order, to a
    single recovery folder at the end.
    """
    links_by_id: Dict[str, BookmarkNode] = {}
    for link in original_links:
        links_by_id.setdefault(link.id, link)

    builder = _Materializer(links_by_id)
    nodes = builder.level(grouping or {})

    missing = [link for link_id, link in links_by_id.items() if link_id not in builder.used]
    if missing:
        logger.info(f"{len(missing)} links were left out of the proposal, moving them to '{recovery_title}'")
        nodes.append(BookmarkNode.folder(recovery_title, [copy.deepcopy(link) for link in missing]))
    else:
        logger.info("Integrity check passed, every link was placed by the proposal")

    if builder.unknown:
        logger.info(f"Skipped {len(builder.unknown)} unknown ids in the proposal")

    return ReconcileResult(
        nodes=nodes,
        placed_ids=set(builder.used),
        recovered_ids=[link.id for link in missing],
        unknown_ids=builder.unknown,
    )


def reconcile(
    forest: Sequence[BookmarkNode],
    grouping: Mapping[str, Any],
    recovery_title: Optional[str] = None,
) -> ReconcileResult:
    """Reconcile a grouping against every link of the pre-restructuring forest"""
    return reconcile_links(flatten_links(forest), grouping, recovery_title or RECOVERY_FOLDER_TITLE)


def count_assigned_ids(grouping: Mapping[str, Any]) -> int:
    """Number of id references in a grouping (duplicates included)"""
    total = 0
    for value in (grouping or {}).values():
        if isinstance(value, list):
            total += len(value)
        elif isinstance(value, Mapping):
            total += count_assigned_ids(value)
    return total


def count_grouping_folders(grouping: Mapping[str, Any]) -> int:
    total = 0
    for key, value in (grouping or {}).items():
        if key == LINKS_KEY:
            continue
        if isinstance(value, list):
            total += 1
        elif isinstance(value, Mapping):
            total += 1 + count_grouping_folders(value)
    return total


def extract_grouping(data: Mapping[str, Any]) -> Mapping[str, Any]:
    """Accept either a bare grouping or one wrapped as {"folder_structure": ..., "reasoning": ...}"""
    if isinstance(data, Mapping):
        wrapped = data.get(STRUCTURE_KEY)
        if isinstance(wrapped, Mapping):
            return wrapped
        return data
    return {}
