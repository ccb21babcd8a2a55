"""
Error taxonomy for the task ledger core.

User-facing errors (not found, validation, conflict) carry actionable
messages. Internal errors signal a broken invariant in stored data or in the
graph engine; callers log their details and show a generic message.
"""

from typing import Any, Dict, List, Optional


class LedgerError(Exception):
    """Base class for all ledger errors."""

    code = "LEDGER_ERROR"
    status_code = 500
    internal = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(LedgerError):
    """Entity or key is absent, deleted, or has no current version."""

    code = "NOT_FOUND"
    status_code = 404


class ValidationError(LedgerError):
    """
    Input was rejected before any write happened.

    Dependency cycles are reported through this error as well; the offending
    path (display keys, root first, repeated node last) is kept on `cycle`.
    """

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, cycle: Optional[List[str]] = None):
        details = {"cycle": cycle} if cycle else None
        super().__init__(message, details)
        self.cycle = cycle


class ConflictError(LedgerError):
    """Every key candidate taken or a concurrent writer won the race."""

    code = "CONFLICT"
    status_code = 409


class GraphStructureError(LedgerError):
    """Topological sort could not order every node. Indicates a bug."""

    code = "INTERNAL_ERROR"
    status_code = 500
    internal = True


class EpicHierarchyError(LedgerError):
    """Stored epic parent links form a loop."""

    code = "INTERNAL_ERROR"
    status_code = 500
    internal = True

    def __init__(self, message: str, loop: List[str]):
        super().__init__(message, {"loop": loop})
        self.loop = loop
