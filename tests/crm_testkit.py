# tests/crm_testkit.py
"""Demo-roster ids and a failure-injecting LocalBackend for the test-suite."""
from typing import Any, List, Set, Tuple

from core.errors import RemoteStoreError
from database.queries import LocalBackend

ADMIN_ID = "1"
AGENT_ID = "2"
OTHER_AGENT_ID = "3"


class FlakyBackend(LocalBackend):
    """LocalBackend that records every table call and fails the ones it is told to."""

    def __init__(self):
        super().__init__()
        self.failing: Set[Tuple[str, str]] = set()
        self.calls: List[Tuple[str, str]] = []

    def fail(self, op: str, table: str) -> None:
        self.failing.add((op, table))

    def heal(self) -> None:
        self.failing.clear()

    def _check(self, op: str, table: str) -> None:
        self.calls.append((op, table))
        if (op, table) in self.failing:
            raise RemoteStoreError(f"injected {op} failure on {table}", table=table)

    async def select(self, table: str, **kwargs: Any):
        self._check("select", table)
        return await super().select(table, **kwargs)

    async def insert(self, table: str, row, **kwargs: Any):
        self._check("insert", table)
        return await super().insert(table, row, **kwargs)

    async def update(self, table: str, changes, **kwargs: Any):
        self._check("update", table)
        return await super().update(table, changes, **kwargs)

    async def delete(self, table: str, **kwargs: Any):
        self._check("delete", table)
        return await super().delete(table, **kwargs)

    def writes(self) -> List[Tuple[str, str]]:
        return [c for c in self.calls if c[0] in ("insert", "update", "delete")]
