# dropline/repos/inmemory.py
import copy
import threading
from typing import Optional, List, Dict, Any, Iterable

_MISSING = object()


def _get_path(doc: dict, path: str):
    cur: Any = doc
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return _MISSING
        cur = cur[part]
    return cur


def _set_path(doc: dict, path: str, value) -> None:
    parts = path.split(".")
    cur = doc
    for part in parts[:-1]:
        cur = cur.setdefault(part, {})
    cur[parts[-1]] = value


def matches(doc: dict, predicate: Dict[str, Any]) -> bool:
    """
    Equality predicate over (dotted) fields, Mongo flavoured:
    an expected value of None matches a missing field or an explicit None.
    """
    for path, expected in predicate.items():
        actual = _get_path(doc, path)
        if expected is None:
            if actual is not _MISSING and actual is not None:
                return False
        elif isinstance(expected, dict) and "$in" in expected:
            if actual is _MISSING or actual not in expected["$in"]:
                return False
        elif actual is _MISSING or actual != expected:
            return False
    return True


class InMemoryOrderStore:
    """
    Process-local order store.

    conditional_update evaluates the predicate and applies the write inside
    one critical section with no await in between, so concurrent callers on
    the same event loop (or other threads) can never both see the
    predicate hold.
    """

    name = "memory"

    def __init__(self):
        self.orders: Dict[str, dict] = {}
        self._lock = threading.Lock()

    async def ensure_indexes(self) -> None:
        return None

    async def insert_order(self, doc: dict) -> dict:
        with self._lock:
            if doc["order_id"] in self.orders:
                raise ValueError(f"Duplicate order_id {doc['order_id']}")
            self.orders[doc["order_id"]] = copy.deepcopy(doc)
        return copy.deepcopy(doc)

    async def get_order(self, order_id: str) -> Optional[dict]:
        with self._lock:
            doc = self.orders.get(order_id)
            return copy.deepcopy(doc) if doc else None

    async def conditional_update(self, order_id: str, expected: Dict[str, Any],
                                 changes: Dict[str, Any]) -> Optional[dict]:
        with self._lock:
            doc = self.orders.get(order_id)
            if doc is None or not matches(doc, expected):
                return None
            for path, value in changes.items():
                _set_path(doc, path, copy.deepcopy(value))
            return copy.deepcopy(doc)

    def _select(self, query: Dict[str, Any]) -> Iterable[dict]:
        return (d for d in self.orders.values() if matches(d, query))

    async def list_orders(self, query: Optional[Dict[str, Any]] = None,
                          limit: Optional[int] = None) -> List[dict]:
        with self._lock:
            docs = sorted(self._select(query or {}),
                          key=lambda d: d["timestamps"]["placed"], reverse=True)
            if limit:
                docs = docs[:limit]
            return [copy.deepcopy(d) for d in docs]

    async def count_orders(self, query: Optional[Dict[str, Any]] = None) -> int:
        with self._lock:
            return sum(1 for _ in self._select(query or {}))
