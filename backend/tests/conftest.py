"""
Shared fixtures for the beneficiary allocation tests.

MongoDB is replaced by a small in-memory stand-in exposing the slice of the
Motor API the service uses: sessions whose transactions snapshot every
collection on start and restore it on abort, plus find/insert/update with
$ne, $in, $set, $inc and $pull.
"""

import copy
import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from bson import ObjectId
from pymongo.errors import PyMongoError

# Add backend to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

os.environ.setdefault("LOG_LEVEL", "WARNING")


# ==== IN-MEMORY MOTOR STAND-IN ==== #


def _matches_condition(value, condition):
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            if op == "$ne":
                if _matches_condition(value, operand):
                    return False
            elif op == "$in":
                if not any(_matches_condition(value, item) for item in operand):
                    return False
            else:
                raise NotImplementedError(op)
        return True
    if isinstance(value, list) and not isinstance(condition, list):
        return condition in value
    return value == condition


def _matches(doc, query):
    for key, condition in (query or {}).items():
        if not _matches_condition(doc.get(key), condition):
            return False
    return True


def _apply_update(doc, update):
    for op, fields in update.items():
        if op == "$set":
            doc.update(copy.deepcopy(fields))
        elif op == "$inc":
            for key, amount in fields.items():
                doc[key] = doc.get(key, 0) + amount
        elif op == "$pull":
            for key, value in fields.items():
                doc[key] = [item for item in doc.get(key, []) if item != value]
        else:
            raise NotImplementedError(op)


class InsertOneResult:
    def __init__(self, inserted_id):
        self.inserted_id = inserted_id


class UpdateResult:
    def __init__(self, matched_count):
        self.matched_count = matched_count
        self.modified_count = matched_count


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs
        self._skip = 0
        self._limit = 0

    def skip(self, count):
        self._skip = count
        return self

    def limit(self, count):
        self._limit = count
        return self

    def _window(self):
        docs = self._docs[self._skip:]
        if self._limit:
            docs = docs[:self._limit]
        return [copy.deepcopy(doc) for doc in docs]

    async def to_list(self, length=None):
        docs = self._window()
        return docs if length is None else docs[:length]

    def __aiter__(self):
        self._iter = iter(self._window())
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    def __init__(self, name):
        self.name = name
        self.docs = []
        self.indexes = []

    def _find(self, query):
        return [doc for doc in self.docs if _matches(doc, query)]

    async def find_one(self, query=None, projection=None, session=None):
        found = self._find(query)
        return copy.deepcopy(found[0]) if found else None

    def find(self, query=None, projection=None, session=None):
        return FakeCursor(self._find(query))

    async def count_documents(self, query, session=None):
        return len(self._find(query))

    async def insert_one(self, doc, session=None):
        doc.setdefault("_id", ObjectId())
        self.docs.append(copy.deepcopy(doc))
        return InsertOneResult(doc["_id"])

    async def update_one(self, query, update, session=None):
        found = self._find(query)
        if found:
            _apply_update(found[0], update)
        return UpdateResult(len(found[:1]))

    async def update_many(self, query, update, session=None):
        found = self._find(query)
        for doc in found:
            _apply_update(doc, update)
        return UpdateResult(len(found))

    async def find_one_and_update(self, query, update, return_document=False, session=None):
        found = self._find(query)
        if not found:
            return None
        before = copy.deepcopy(found[0])
        _apply_update(found[0], update)
        return copy.deepcopy(found[0]) if return_document else before

    async def find_one_and_delete(self, query, session=None):
        found = self._find(query)
        if not found:
            return None
        self.docs.remove(found[0])
        return copy.deepcopy(found[0])

    async def create_index(self, keys, **kwargs):
        self.indexes.append((keys, kwargs))
        return kwargs.get("name")


class FakeDatabase:
    def __init__(self, client):
        self._client = client

    def __getitem__(self, name):
        return self._client.collection(name)

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self._client.collection(name)


class FakeTransaction:
    def __init__(self, client):
        self._client = client
        self._snapshot = None

    async def __aenter__(self):
        self._snapshot = {
            name: copy.deepcopy(collection.docs)
            for name, collection in self._client.collections.items()
        }
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None and self._client.pending_conflicts > 0:
            self._client.pending_conflicts -= 1
            self._abort()
            raise PyMongoError("WriteConflict", error_labels=["TransientTransactionError"])
        if exc_type is not None:
            self._abort()
            return False
        self._client.commits += 1
        return False

    def _abort(self):
        self._client.aborts += 1
        for name, collection in self._client.collections.items():
            collection.docs = self._snapshot.get(name, [])


class FakeSession:
    def __init__(self, client):
        self._client = client

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def start_transaction(self):
        return FakeTransaction(self._client)


class FakeMotorClient:
    def __init__(self):
        self.collections = {}
        self.commits = 0
        self.aborts = 0
        # Number of upcoming commits that fail with a transient write conflict
        self.pending_conflicts = 0

    def collection(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    def __getitem__(self, name):
        return FakeDatabase(self)

    async def start_session(self):
        return FakeSession(self)

    def close(self):
        pass


# ==== FIXTURES ==== #


@pytest.fixture
def client():
    return FakeMotorClient()


@pytest.fixture
def db(client):
    return client["test_beneficiaries"]


@pytest.fixture
def make_user(db):
    async def _make_user(role="stakeholder", **extra):
        user = {"full_name": f"{role} user", "email": f"{ObjectId()}@example.com", "role": role, **extra}
        await db.users.insert_one(user)
        return user
    return _make_user


@pytest.fixture
def make_payment_type(db):
    async def _make_payment_type(name="TRICYCLE", beneficiaries=None):
        payment_type = {
            "name": name,
            "amount": 500,
            "beneficiaries": beneficiaries or [],
            "allocation_lock_sequence": 0
        }
        await db.payment_types.insert_one(payment_type)
        return payment_type
    return _make_payment_type


@pytest.fixture
def make_beneficiary(db):
    """Insert a beneficiary directly, bypassing the allocation check"""
    async def _make_beneficiary(user, payment_type, percentage, role=None):
        beneficiary = {
            "user_id": user["_id"],
            "percentage": percentage,
            "role": role or user["role"],
            "payment_type_id": payment_type["_id"] if payment_type else None,
            "created_by": None
        }
        await db.beneficiaries.insert_one(beneficiary)
        return beneficiary
    return _make_beneficiary


@pytest_asyncio.fixture
async def admin(make_user):
    return await make_user("admin")
