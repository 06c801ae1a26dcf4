"""
Tree-wide duplicate link removal
"""

from dataclasses import replace
from typing import Dict, List, NamedTuple, Sequence, Set, Tuple
from urllib.parse import unquote, urlsplit, urlunsplit

from .models import BookmarkNode

TRACKING_PARAMS = {"gclid", "fbclid", "ref"}
TRACKING_PREFIX = "utm_"


class DedupResult(NamedTuple):
    nodes: List[BookmarkNode]
    removed_count: int


def _is_tracking_param(pair: str) -> bool:
    key = unquote(pair.split("=", 1)[0])
    return key.startswith(TRACKING_PREFIX) or key in TRACKING_PARAMS


def clean_url(url: str) -> str:
    """Drop tracking query parameters; unparseable URLs come back unchanged"""
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url

    query = parts.query
    pairs = [pair for pair in query.split("&") if pair] if query else []
    kept = [pair for pair in pairs if not _is_tracking_param(pair)]
    if len(kept) != len(pairs):
        query = "&".join(kept)

    path = parts.path or "/"
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, query, parts.fragment))


def normalize_url(url: str) -> str:
    """Identity key for a link: cleaned URL without a trailing slash"""
    cleaned = clean_url(url or "")
    if cleaned.endswith("/"):
        cleaned = cleaned[:-1]
    return cleaned


def _collect(items: Sequence[BookmarkNode], inside_toolbar: bool, out: List[Tuple[BookmarkNode, bool]]):
    for node in items:
        in_toolbar = inside_toolbar or node.is_toolbar
        if node.is_link:
            out.append((node, in_toolbar))
        else:
            _collect(node.children, in_toolbar, out)


def find_keepers(nodes: Sequence[BookmarkNode]) -> Set[str]:
    """Ids of the links that survive deduplication.

    Per URL key the first link in tree order wins, unless a later one sits
    under a toolbar folder and the current winner does not.
    """
    flat: List[Tuple[BookmarkNode, bool]] = []
    _collect(nodes, False, flat)

    winners: Dict[str, Tuple[BookmarkNode, bool]] = {}
    keep: Set[str] = set()
    for node, in_toolbar in flat:
        key = normalize_url(node.url)
        if not key:
            # Nothing to compare against, never a duplicate
            keep.add(node.id)
            continue
        existing = winners.get(key)
        if existing is None or (in_toolbar and not existing[1]):
            winners[key] = (node, in_toolbar)

    keep.update(node.id for node, _ in winners.values())
    return keep


def deduplicate_nodes(nodes: Sequence[BookmarkNode]) -> DedupResult:
    """Remove duplicate links tree-wide; folders are always kept"""
    keep = find_keepers(nodes)
    removed = 0

    def _filter(items: Sequence[BookmarkNode]) -> List[BookmarkNode]:
        nonlocal removed
        result = []
        for node in items:
            if node.is_link:
                if node.id in keep:
                    result.append(node)
                else:
                    removed += 1
            else:
                result.append(replace(node, children=_filter(node.children)))
        return result

    unique = _filter(nodes)
    return DedupResult(unique, removed)
