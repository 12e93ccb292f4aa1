"""
Shared fixtures for the admin service tests.

FakeFirestore is a small in-memory stand-in for the google-cloud-firestore
client. It supports the subset of the API the services use: collection /
document references, subcollections, collection_group, FieldFilter where
clauses, order_by / limit / offset, count() aggregation and write batches.
"""

import copy
from types import SimpleNamespace

import pytest
from google.api_core.exceptions import NotFound

from sircharge_admin.auth import AuthenticatedUser

_MISSING = object()

_OPERATORS = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "in": lambda a, b: a in b,
}


def _lookup(data, field_path):
    value = data
    for part in field_path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _merge(target, source):
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None


class FakeDocumentReference:
    def __init__(self, store, path):
        self._store = store
        self.path = path

    @property
    def id(self):
        return self.path[-1]

    @property
    def parent(self):
        return FakeCollectionReference(self._store, self.path[:-1])

    def collection(self, name):
        return FakeCollectionReference(self._store, self.path + (name,))

    def get(self):
        return FakeSnapshot(self, self._store.data.get(self.path))

    def set(self, data, merge=False):
        if merge and self.path in self._store.data:
            _merge(self._store.data[self.path], data)
        else:
            self._store.data[self.path] = copy.deepcopy(data)

    def update(self, data):
        if self.path not in self._store.data:
            raise NotFound(f"No document to update: {'/'.join(self.path)}")
        self._store.data[self.path].update(copy.deepcopy(data))

    def delete(self):
        self._store.data.pop(self.path, None)


class FakeQuery:
    def __init__(self, store, matcher, filters=(), orders=(), limit_count=None, offset_count=0):
        self._store = store
        self._matcher = matcher
        self._filters = list(filters)
        self._orders = list(orders)
        self._limit = limit_count
        self._offset = offset_count

    def _copy(self, **changes):
        values = {
            "filters": self._filters,
            "orders": self._orders,
            "limit_count": self._limit,
            "offset_count": self._offset,
        }
        values.update(changes)
        return FakeQuery(self._store, self._matcher, **values)

    def where(self, filter=None):
        return self._copy(filters=self._filters + [(filter.field_path, filter.op_string, filter.value)])

    def order_by(self, field_path, direction="ASCENDING"):
        return self._copy(orders=self._orders + [(field_path, direction == "DESCENDING")])

    def limit(self, count):
        return self._copy(limit_count=count)

    def offset(self, count):
        return self._copy(offset_count=count)

    def _matches(self, data):
        for field_path, op, expected in self._filters:
            value = _lookup(data, field_path)
            if value is _MISSING or not _OPERATORS[op](value, expected):
                return False
        return True

    def stream(self):
        paths = [p for p in self._store.data if self._matcher(p) and self._matches(self._store.data[p])]
        for field_path, descending in reversed(self._orders):
            paths = [p for p in paths if _lookup(self._store.data[p], field_path) is not _MISSING]
            paths.sort(key=lambda p: _lookup(self._store.data[p], field_path), reverse=descending)
        paths = paths[self._offset:]
        if self._limit is not None:
            paths = paths[:self._limit]
        for path in paths:
            ref = FakeDocumentReference(self._store, path)
            yield FakeSnapshot(ref, self._store.data[path])

    def get(self):
        return list(self.stream())

    def count(self):
        total = len(self.get())
        return SimpleNamespace(get=lambda: [[SimpleNamespace(value=total)]])


class FakeCollectionReference(FakeQuery):
    def __init__(self, store, path):
        depth = len(path)
        super().__init__(store, lambda p: len(p) == depth + 1 and p[:depth] == path)
        self.path = path

    @property
    def id(self):
        return self.path[-1]

    @property
    def parent(self):
        if len(self.path) == 1:
            return None
        return FakeDocumentReference(self._store, self.path[:-1])

    def document(self, document_id):
        return FakeDocumentReference(self._store, self.path + (document_id,))


class FakeBatch:
    def __init__(self, store):
        self._store = store
        self._ops = []

    def set(self, ref, data, merge=False):
        self._ops.append(lambda: ref.set(data, merge=merge))

    def update(self, ref, data):
        self._ops.append(lambda: ref.update(data))

    def delete(self, ref):
        self._ops.append(ref.delete)

    def commit(self):
        if len(self._ops) > 500:
            raise ValueError("A write batch can contain at most 500 operations")
        for op in self._ops:
            op()
        self._store.commits.append(len(self._ops))
        self._ops = []


class FakeFirestore:
    def __init__(self):
        self.data = {}
        self.commits = []

    def collection(self, name):
        return FakeCollectionReference(self, (name,))

    def collection_group(self, name):
        return FakeQuery(self, lambda p: len(p) >= 2 and p[-2] == name)

    def batch(self):
        return FakeBatch(self)

    # test helpers

    def add(self, path, data):
        """path は "users/u1" や "users/u1/vocabulary/v1" の形式"""
        self.data[tuple(path.split("/"))] = copy.deepcopy(data)

    def doc(self, path):
        return copy.deepcopy(self.data.get(tuple(path.split("/"))))

    def ids(self, collection):
        depth = len(collection.split("/"))
        prefix = tuple(collection.split("/"))
        return sorted(p[-1] for p in self.data if len(p) == depth + 1 and p[:depth] == prefix)


@pytest.fixture
def db():
    return FakeFirestore()


@pytest.fixture
def admin():
    return AuthenticatedUser("admin1", "admin@example.com", role="admin")
