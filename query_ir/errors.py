"""
Custom exceptions for query IR mapping, validation and rendering.
"""

import json
from typing import Any, List, Optional


def _describe(fragment: Any) -> str:
    try:
        return json.dumps(fragment, default=str)
    except (TypeError, ValueError):
        return repr(fragment)


class QueryIRError(Exception):
    """Base exception for query IR errors."""
    pass


class MappingError(QueryIRError):
    """Raw parse tree has an unexpected or malformed shape."""
    def __init__(self, message: str, fragment: Any = None):
        if fragment is not None:
            message = f"{message}: {_describe(fragment)}"
        super().__init__(message)
        self.fragment = fragment


class UnsupportedExpressionError(MappingError):
    """Raw expression node type is not recognized by the mapper."""
    def __init__(self, fragment: Any):
        node_type = fragment.get("type") if isinstance(fragment, dict) else type(fragment).__name__
        super().__init__(f"Unsupported expression type '{node_type}'", fragment)
        self.node_type = node_type


class DepthExceededError(QueryIRError):
    """Query nesting is deeper than the configured maximum."""
    def __init__(self, max_depth: int, location: Optional[str] = None):
        where = f" while processing {location}" if location else ""
        super().__init__(f"Maximum query nesting depth of {max_depth} exceeded{where}")
        self.max_depth = max_depth
        self.location = location


class RenderError(QueryIRError):
    """IR node cannot be turned into SQL text."""
    def __init__(self, message: str, node: Any = None):
        super().__init__(message)
        self.node = node


class QueryValidationError(QueryIRError):
    """One or more validation rules rejected a query."""
    def __init__(self, errors: List[Any]):
        lines = [
            f"- {e.message} (Location: {e.location})" for e in errors
        ]
        super().__init__("Query validation failed:\n" + "\n".join(lines))
        self.errors = list(errors)
