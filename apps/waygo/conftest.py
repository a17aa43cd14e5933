from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import pytest

from apps.waygo import fleet, loads, users
from apps.waygo.billing import referrals as billing_referrals
from apps.waygo.finance import repo as finance_repo
from apps.waygo.models import CallerContext, Role

_ids = itertools.count(1)


@dataclass
class _Snap:
    id: str
    _data: Optional[Dict[str, Any]]
    reference: Any = None

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data or {})


@dataclass
class _Agg:
    value: int


class _CountQuery:
    def __init__(self, query: "_Query"):
        self._query = query

    def get(self):
        return [[_Agg(len(self._query._matching()))]]


_OPS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a is not None and a < b,
    "<=": lambda a, b: a is not None and a <= b,
    ">": lambda a, b: a is not None and a > b,
    ">=": lambda a, b: a is not None and a >= b,
    "in": lambda a, b: a in b,
}


class _Query:
    def __init__(self, db: "FakeDB", path: str):
        self._db = db
        self._path = path
        self._filters: List[Tuple[str, str, Any]] = []
        self._order: List[Tuple[str, str]] = []
        self._offset = 0
        self._limit: Optional[int] = None

    def _copy(self) -> "_Query":
        q = _Query(self._db, self._path)
        q._filters = list(self._filters)
        q._order = list(self._order)
        q._offset = self._offset
        q._limit = self._limit
        return q

    def where(self, field: str, op: str, value: Any) -> "_Query":
        q = self._copy()
        q._filters.append((field, op, value))
        return q

    def order_by(self, field: str, direction: str = "ASCENDING") -> "_Query":
        q = self._copy()
        q._order.append((field, direction))
        return q

    def offset(self, n: int) -> "_Query":
        q = self._copy()
        q._offset = int(n)
        return q

    def limit(self, n: int) -> "_Query":
        q = self._copy()
        q._limit = int(n)
        return q

    def count(self) -> _CountQuery:
        return _CountQuery(self)

    def _matching(self) -> List[Tuple[str, Dict[str, Any]]]:
        docs = self._db.collections.get(self._path, {})
        rows = [
            (doc_id, data)
            for doc_id, data in docs.items()
            if all(_OPS[op](data.get(field), value) for field, op, value in self._filters)
        ]
        for field, direction in reversed(self._order):
            rows.sort(key=lambda r: r[1].get(field) or 0, reverse=direction == "DESCENDING")
        return rows

    def stream(self) -> Iterable[_Snap]:
        rows = self._matching()[self._offset:]
        if self._limit is not None:
            rows = rows[: self._limit]
        self._db.reads += len(rows)
        return [_Snap(doc_id, dict(data), _DocRef(self._db, self._path, doc_id)) for doc_id, data in rows]


class _Collection(_Query):
    def document(self, doc_id: Optional[str] = None) -> "_DocRef":
        return _DocRef(self._db, self._path, doc_id or f"auto{next(_ids)}")

    def add(self, data: Dict[str, Any]):
        ref = self.document()
        ref.set(data)
        return None, ref


class _DocRef:
    def __init__(self, db: "FakeDB", col_path: str, doc_id: str):
        self._db = db
        self._col_path = col_path
        self.id = doc_id

    def get(self, transaction=None) -> _Snap:
        _ = transaction
        self._db.reads += 1
        data = self._db.collections.get(self._col_path, {}).get(self.id)
        return _Snap(self.id, dict(data) if data is not None else None, self)

    def set(self, data: Dict[str, Any], merge: bool = False) -> None:
        self._db.writes += 1
        col = self._db.collections.setdefault(self._col_path, {})
        if merge and self.id in col:
            col[self.id] = {**col[self.id], **data}
        else:
            col[self.id] = dict(data)

    def update(self, data: Dict[str, Any]) -> None:
        col = self._db.collections.get(self._col_path, {})
        if self.id not in col:
            raise KeyError(f"No document to update: {self._col_path}/{self.id}")
        self._db.writes += 1
        col[self.id] = {**col[self.id], **data}


class FakeTransaction:
    """Buffers writes and applies them only when the transaction function returns."""

    def __init__(self):
        self._ops: List[Callable[[], None]] = []

    def update(self, ref: _DocRef, data: Dict[str, Any]) -> None:
        self._ops.append(lambda: ref.update(data))

    def set(self, ref: _DocRef, data: Dict[str, Any], merge: bool = False) -> None:
        self._ops.append(lambda: ref.set(data, merge=merge))

    def commit(self) -> None:
        for op in self._ops:
            op()


class FakeDB:
    def __init__(self):
        # map collection_path -> {doc_id -> doc_data}
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.reads = 0
        self.writes = 0

    def collection(self, name: str) -> _Collection:
        return _Collection(self, name)

    def seed(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self.collections.setdefault(collection, {})[doc_id] = dict(data)

    def doc(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return self.collections.get(collection, {}).get(doc_id)

    def all(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self.collections.get(collection, {})


def fake_run_in_transaction(db_client, fn):
    txn = FakeTransaction()
    result = fn(txn)
    txn.commit()
    return result


@pytest.fixture()
def fake_db(monkeypatch):
    db = FakeDB()
    for module in (loads, users, fleet, finance_repo, billing_referrals):
        monkeypatch.setattr(module, "run_in_transaction", fake_run_in_transaction)
    return db


def make_caller(uid: str = "admin1", role: Optional[Role] = Role.ADMIN, company_id: Optional[str] = "c1", **claims) -> CallerContext:
    return CallerContext(uid=uid, role=role, company_id=company_id, email=claims.pop("email", None), claims=claims)


@pytest.fixture()
def client(fake_db):
    from fastapi.testclient import TestClient

    from apps.waygo.auth import get_caller
    from apps.waygo.database import get_db
    from apps.waygo.main import app

    state = {"caller": make_caller()}

    def _set_caller(caller: Optional[CallerContext]):
        state["caller"] = caller

    app.dependency_overrides[get_db] = lambda: fake_db
    app.dependency_overrides[get_caller] = lambda: state["caller"]
    c = TestClient(app)
    c.set_caller = _set_caller
    try:
        yield c
    finally:
        app.dependency_overrides.clear()
