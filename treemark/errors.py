"""
Exceptions raised by the bookmark pipeline
"""


class TreemarkError(Exception):
    """Base class for all pipeline errors"""


class BookmarkParseError(TreemarkError):
    """Import document is not a usable bookmark file"""


class InvalidMoveError(TreemarkError):
    """A move was rejected before anything was changed"""


class StructureProposalError(TreemarkError):
    """The structure oracle failed or returned something unusable"""


class LLMResponseError(TreemarkError):
    """An LLM response could not be decoded into the expected JSON"""
