"""Fluent builder for query parameters."""

from __future__ import annotations

from typing import Any, Mapping, Optional


class QueryBuilder:
    """Collects query parameters, dropping ``None`` values.

    Example::

        params = QueryBuilder().add("page", 2).add("tags", ["a", "b"]).add("q", None)
        params.to_query_params()  # {"page": "2", "tags": "a,b"}
    """

    def __init__(self) -> None:
        self._params: dict[str, Any] = {}

    def add(self, key: str, value: Any) -> QueryBuilder:
        if value is None:
            return self
        self._params[key] = value
        return self

    def add_all(self, values: Optional[Mapping[str, Any]]) -> QueryBuilder:
        if values is None:
            return self
        for key, value in values.items():
            self.add(key, value)
        return self

    def to_query_params(self) -> dict[str, str]:
        """Stringify values; sequences are joined with commas."""
        result: dict[str, str] = {}
        for key, value in self._params.items():
            if isinstance(value, (list, tuple)):
                result[key] = ",".join(str(item) for item in value)
            elif isinstance(value, bool):
                result[key] = str(value).lower()
            else:
                result[key] = str(value)
        return result

    @property
    def is_empty(self) -> bool:
        return not self._params

    def __len__(self) -> int:
        return len(self._params)
