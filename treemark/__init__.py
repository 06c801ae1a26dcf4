"""
Treemark - bookmark tree cleanup and reorganization pipeline
"""

from .models import BookmarkNode, NodeKind, LinkStatus
from .errors import (
    TreemarkError,
    BookmarkParseError,
    InvalidMoveError,
    StructureProposalError,
    LLMResponseError,
)

__version__ = "0.3.0"

__all__ = [
    "BookmarkNode",
    "NodeKind",
    "LinkStatus",
    "TreemarkError",
    "BookmarkParseError",
    "InvalidMoveError",
    "StructureProposalError",
    "LLMResponseError",
]
