"""
Centralized environment configuration for query IR defaults.

Every value can be overridden per call; these are only the fallbacks used
when a QueryBuilder, ASTMapper or parser is created without explicit settings.
"""

import os
from typing import Optional


def _get_optional(value: Optional[str], default: str) -> str:
    return value if value else default


def _get_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value else default
    except ValueError:
        return default


# Render mode used by QueryBuilder() when none is given: SIMPLE, NAMED or POSITIONAL
DEFAULT_MODE = _get_optional(os.getenv('QUERY_IR_MODE'), 'NAMED').upper()

# Maximum nesting of subqueries / CTEs / expressions before DepthExceededError
MAX_DEPTH = _get_int(os.getenv('QUERY_IR_MAX_DEPTH'), 100)

# sqlglot dialect used when parsing SQL text
DIALECT = _get_optional(os.getenv('QUERY_IR_DIALECT'), 'bigquery')
