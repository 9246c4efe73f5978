"""
Process-wide scratch space shared by pipeline runs.

Pipelines use it to hand small derived values to later runs in the same
process (e.g. the last stages analyzed). Nothing here is persisted.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Tuple


class PipelineSharedState:
    """Dictionary-backed key/value scratch space."""

    def __init__(self) -> None:
        self._store: Dict[str, Any] = {}

    def set(self, key: str, value: Any) -> None:
        self._store[key] = value

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        return self._store.get(key, default)

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    def has(self, key: str) -> bool:
        return key in self._store

    def entries(self) -> List[Tuple[str, Any]]:
        return list(self._store.items())

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._store))

    def __len__(self) -> int:
        return len(self._store)
