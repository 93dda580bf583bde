"""Query parameter tracking for the different render modes."""

from enum import Enum
from typing import Any, Dict, List, Optional, Union


class QueryBuilderMode(str, Enum):
    """
    Parameterization strategy used when rendering literals.

    - SIMPLE: literals are inlined, e.g. ``SELECT * FROM users WHERE age > 30``.
      Only for trusted input or debugging; it offers no injection protection.
    - NAMED: literals become ``@paramN`` placeholders and are returned as a dict.
    - POSITIONAL: literals become ``?`` placeholders and are returned as a list.
    """
    SIMPLE = "SIMPLE"
    NAMED = "NAMED"
    POSITIONAL = "POSITIONAL"


Parameters = Union[Dict[str, Any], List[Any]]


def format_value(value: Any) -> str:
    """Format a value as an inline SQL literal."""
    if value is None:
        return "NULL"
    elif isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    elif isinstance(value, str):
        # Escape single quotes
        escaped = value.replace("'", "''")
        return f"'{escaped}'"
    elif isinstance(value, (int, float)):
        return str(value)
    else:
        return str(value)


class ParameterManager:
    """
    Collects parameters for one render mode.

    A single instance is shared by every nested render of one build, so
    placeholder numbering stays continuous across CTEs and subqueries.

    >>> manager = ParameterManager(QueryBuilderMode.NAMED)
    >>> manager.add_parameter('value')
    '@param1'
    >>> manager.get_parameters()
    {'param1': 'value'}
    """

    def __init__(self, mode: QueryBuilderMode):
        self.mode = QueryBuilderMode(mode)
        self._parameters: Parameters = {} if self.mode == QueryBuilderMode.NAMED else []
        self._index = 1

    def add_parameter(self, value: Any) -> str:
        """Register a value and return the placeholder text that stands for it."""
        if self.mode == QueryBuilderMode.SIMPLE:
            return format_value(value)

        if self.mode == QueryBuilderMode.NAMED:
            name = f"param{self._index}"
            self._index += 1
            self._parameters[name] = value
            return f"@{name}"

        self._parameters.append(value)
        self._index += 1
        return "?"

    def add_parameters(self, values: List[Any]) -> List[str]:
        return [self.add_parameter(value) for value in values]

    def get_parameters(self) -> Optional[Parameters]:
        if self.mode == QueryBuilderMode.SIMPLE:
            return None
        if isinstance(self._parameters, dict):
            return dict(self._parameters)
        return list(self._parameters)
