"""
Data model for the bookmark forest
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set


class NodeKind(str, Enum):
    FOLDER = "folder"
    LINK = "link"


class LinkStatus(str, Enum):
    ACTIVE = "active"
    DEAD = "dead"
    UNCHECKED = "unchecked"
    CHECKING = "checking"


def new_id() -> str:
    """Generate a fresh node id (never reused)"""
    return str(uuid.uuid4())


def now_timestamp() -> str:
    """Current time in the export format (epoch seconds as text)"""
    return str(int(time.time()))


@dataclass
class BookmarkNode:
    """A folder or a link. Folders carry children, links carry a url."""
    kind: NodeKind
    title: str
    url: Optional[str] = None
    children: Optional[List["BookmarkNode"]] = None
    id: str = field(default_factory=new_id)
    added_at: Optional[str] = None
    modified_at: Optional[str] = None
    icon: Optional[str] = None
    status: LinkStatus = LinkStatus.UNCHECKED
    description: str = ""
    tags: Set[str] = field(default_factory=set)
    original_path: List[str] = field(default_factory=list)
    is_toolbar: bool = False

    def __post_init__(self):
        self.kind = NodeKind(self.kind)
        self.status = LinkStatus(self.status)
        if self.kind is NodeKind.FOLDER:
            if self.children is None:
                self.children = []
            self.url = None
        else:
            if self.children is not None:
                raise ValueError(f"Link '{self.title}' cannot have children")
            if self.url is None:
                self.url = ""

    @classmethod
    def folder(cls, title: str, children: Optional[List["BookmarkNode"]] = None, **kwargs) -> "BookmarkNode":
        kwargs.setdefault("status", LinkStatus.ACTIVE)
        return cls(kind=NodeKind.FOLDER, title=title, children=list(children or []), **kwargs)

    @classmethod
    def link(cls, title: str, url: str, **kwargs) -> "BookmarkNode":
        return cls(kind=NodeKind.LINK, title=title, url=url, **kwargs)

    @property
    def is_folder(self) -> bool:
        return self.kind is NodeKind.FOLDER

    @property
    def is_link(self) -> bool:
        return self.kind is NodeKind.LINK

    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON-friendly representation (ids preserved)"""
        data: Dict[str, Any] = {
            "id": self.id,
            "type": self.kind.value,
            "title": self.title,
            "added_at": self.added_at,
            "modified_at": self.modified_at,
            "original_path": list(self.original_path),
            "is_toolbar": self.is_toolbar,
        }
        if self.is_folder:
            data["children"] = [child.to_dict() for child in self.children]
        else:
            data.update({
                "url": self.url,
                "icon": self.icon,
                "status": self.status.value,
                "description": self.description,
                "tags": sorted(self.tags),
            })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BookmarkNode":
        common = dict(
            id=data.get("id") or new_id(),
            title=data.get("title", ""),
            added_at=data.get("added_at"),
            modified_at=data.get("modified_at"),
            original_path=list(data.get("original_path") or []),
            is_toolbar=bool(data.get("is_toolbar", False)),
        )
        if data.get("type") == NodeKind.FOLDER.value:
            children = [cls.from_dict(child) for child in data.get("children") or []]
            return cls.folder(children=children, **common)
        return cls.link(
            url=data.get("url") or "",
            icon=data.get("icon"),
            status=data.get("status", LinkStatus.UNCHECKED.value),
            description=data.get("description") or "",
            tags=set(data.get("tags") or []),
            **common,
        )
