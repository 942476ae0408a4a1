from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol

from ..result import ColumnInfo


class Connection(Protocol):
    """
    Per-worker database handle.

    Created and closed on the owning worker thread; never shared. Every
    method signals failure by raising. ConnectionLostError means the
    connection is unusable and the worker must stop.
    """

    def prepare(self, text: str) -> Any: ...
    def bind(self, stmt: Any, name: str, value: Any) -> None: ...
    def execute(self, stmt: Any) -> Any: ...
    def column_info(self, cursor: Any) -> List[ColumnInfo]: ...
    def fetch_row(self, cursor: Any) -> Optional[Dict[str, Any]]: ...
    def changes(self) -> int: ...
    def last_insert_id(self) -> int: ...
    def finalize(self, stmt: Any) -> None: ...
    def close(self) -> None: ...


ConnectionFactory = Callable[[], Connection]
