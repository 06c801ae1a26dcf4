"""
Executes structured agent commands (create folder / delete / move) against the forest
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .actions import first_folder_id
from .models import BookmarkNode
from .tree import (
    find_node,
    insert_child,
    is_descendant,
    iter_nodes,
    remove_nodes,
    top_level_matches,
    update_where,
)

logger = logging.getLogger(__name__)

DEFAULT_FOLDER_TITLE = "New Folder"


class AgentAction(str, Enum):
    CREATE_FOLDER = "CREATE_FOLDER"
    DELETE = "DELETE"
    MOVE = "MOVE"
    UNKNOWN = "UNKNOWN"


@dataclass
class CommandFilter:
    keyword: Optional[str] = None
    type: str = "all"  # "link", "folder" or "all"

    def matches(self, node: BookmarkNode) -> bool:
        """Case-insensitive keyword hit on title or url, then the kind constraint"""
        if not self.keyword:
            return False
        keyword = self.keyword.lower()
        text_match = keyword in node.title.lower() or (node.is_link and keyword in (node.url or "").lower())
        if not text_match:
            return False
        if self.type == "link" and not node.is_link:
            return False
        if self.type == "folder" and not node.is_folder:
            return False
        return True


@dataclass
class AgentCommand:
    action: AgentAction
    target_name: Optional[str] = None
    filter: CommandFilter = field(default_factory=CommandFilter)
    reason: Optional[str] = None

    @classmethod
    def unknown(cls, reason: str) -> "AgentCommand":
        return cls(action=AgentAction.UNKNOWN, reason=reason)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentCommand":
        """Build a command from parser JSON; anything unexpected becomes UNKNOWN"""
        if not isinstance(data, dict):
            return cls.unknown("Failed to parse command.")

        raw_action = str(data.get("action") or "UNKNOWN").upper()
        try:
            action = AgentAction(raw_action)
        except ValueError:
            return cls.unknown(data.get("reason") or f"Unsupported action: {raw_action}")

        raw_filter = data.get("filter") or {}
        if not isinstance(raw_filter, dict):
            raw_filter = {}
        filter_type = str(raw_filter.get("type") or "all").lower()
        if filter_type not in ("link", "folder", "all"):
            filter_type = "all"

        return cls(
            action=action,
            target_name=data.get("targetName") or data.get("target_name") or None,
            filter=CommandFilter(keyword=raw_filter.get("keyword") or None, type=filter_type),
            reason=data.get("reason"),
        )


@dataclass
class CommandResult:
    nodes: List[BookmarkNode]
    affected: int = 0
    message: str = ""
    applied: bool = False


def matching_nodes(nodes: Sequence[BookmarkNode], command_filter: CommandFilter) -> List[BookmarkNode]:
    """Every match in pre-order, nested matches included"""
    return [node for node in iter_nodes(nodes) if command_filter.matches(node)]


def _create_folder(nodes: List[BookmarkNode], command: AgentCommand, active_folder_id: Optional[str]) -> CommandResult:
    parent_id = active_folder_id or first_folder_id(nodes)
    parent = find_node(parent_id, nodes) if parent_id else None
    if parent is None or not parent.is_folder:
        return CommandResult(nodes, message="Agent: No folder available to create in")

    title = command.target_name or DEFAULT_FOLDER_TITLE
    new_nodes = insert_child(nodes, parent.id, BookmarkNode.folder(title), index=0)
    return CommandResult(new_nodes, affected=1, message=f'Agent: Created folder "{title}"', applied=True)


def _delete(nodes: List[BookmarkNode], command: AgentCommand) -> CommandResult:
    keyword = command.filter.keyword
    # Counted against the original tree; a matched folder takes its matching
    # descendants with it without adding to the count
    targets = top_level_matches(nodes, [node.id for node in matching_nodes(nodes, command.filter)])
    if not targets:
        return CommandResult(nodes, message=f'Agent: Deleted 0 items matching "{keyword}"')

    new_nodes = remove_nodes([node.id for node in targets], nodes)
    return CommandResult(
        new_nodes,
        affected=len(targets),
        message=f'Agent: Deleted {len(targets)} items matching "{keyword}"',
        applied=True,
    )


def _find_folder_by_title(nodes: Sequence[BookmarkNode], title: str) -> Optional[BookmarkNode]:
    wanted = title.lower()
    for node in iter_nodes(nodes):
        if node.is_folder and node.title.lower() == wanted:
            return node
    return None


def _move(nodes: List[BookmarkNode], command: AgentCommand) -> CommandResult:
    keyword = command.filter.keyword
    if not command.target_name:
        return CommandResult(nodes, message="Agent: Move needs a target folder name")

    target = _find_folder_by_title(nodes, command.target_name)
    target_id = target.id if target else None

    candidates = [node for node in matching_nodes(nodes, command.filter) if node.id != target_id]
    to_move = top_level_matches(nodes, [node.id for node in candidates])
    if target is not None:
        # A folder that contains the target cannot move into it
        to_move = [node for node in to_move if not is_descendant(node, target.id)]

    if not to_move:
        return CommandResult(nodes, message=f'Agent: No items found matching "{keyword}"')

    messages = []
    if target is None:
        target = BookmarkNode.folder(command.target_name)
        nodes = [target] + list(nodes)
        messages.append(f'Agent: Created target folder "{command.target_name}"')

    remaining = remove_nodes([node.id for node in to_move], nodes)
    new_nodes = update_where(
        remaining,
        lambda node: node.id == target.id,
        lambda node: replace(node, children=list(node.children) + to_move),
    )
    messages.append(f'Agent: Moved {len(to_move)} items to "{command.target_name}"')
    return CommandResult(new_nodes, affected=len(to_move), message="\n".join(messages), applied=True)


def execute_command(
    nodes: Sequence[BookmarkNode],
    command: AgentCommand,
    active_folder_id: Optional[str] = None,
) -> CommandResult:
    """Apply one command and return the resulting forest. Stateless; the
    input forest is left untouched."""
    nodes = list(nodes)

    if command.action is AgentAction.UNKNOWN:
        return CommandResult(nodes, message=f"Agent Error: {command.reason or 'I did not understand that.'}")
    if command.action is AgentAction.CREATE_FOLDER:
        result = _create_folder(nodes, command, active_folder_id)
    elif command.action is AgentAction.DELETE:
        result = _delete(nodes, command)
    else:
        result = _move(nodes, command)

    logger.info(result.message)
    return result
