# Copyright 2015-present MongoDB, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""An in-process backing store for GridFS buckets.

:class:`MemoryDatabase` implements the part of PyMongo's asyncio collection
API that :mod:`gridstore` uses, keeping documents in plain Python
structures. It is meant for tests and for embedding GridFS where no
server is available::

  db = MemoryDatabase("test")
  fs = AsyncGridFSBucket(db)
  file_id = await fs.upload_from_stream("test_file", b"data I want to store!")

Every operation yields to the event loop once, so concurrent tasks really
interleave their store calls.
"""
from __future__ import annotations

import asyncio
import copy
import datetime
import functools
from collections import abc
from typing import Any, Iterable, Mapping, Optional

from bson.objectid import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import (
    BulkWriteError,
    DuplicateKeyError,
    InvalidOperation,
    OperationFailure,
)
from pymongo.read_concern import ReadConcern
from pymongo.read_preferences import ReadPreference, _ServerMode
from pymongo.results import DeleteResult, InsertManyResult, InsertOneResult, UpdateResult
from pymongo.write_concern import WriteConcern

_ID_INDEX = "_id_"


def _type_rank(value: Any) -> int:
    """Order values of different types the way BSON comparison does."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return 8
    if isinstance(value, (int, float)):
        return 1
    if isinstance(value, str):
        return 2
    if isinstance(value, abc.Mapping):
        return 3
    if isinstance(value, (list, tuple)):
        return 4
    if isinstance(value, (bytes, bytearray)):
        return 5
    if isinstance(value, ObjectId):
        return 7
    if isinstance(value, datetime.datetime):
        return 9
    return 10


def _compare(a: Any, b: Any) -> int:
    rank_a, rank_b = _type_rank(a), _type_rank(b)
    if rank_a != rank_b:
        return -1 if rank_a < rank_b else 1
    if rank_a == 0:
        return 0
    if rank_a == 3:
        a, b = list(a.items()), list(b.items())
    try:
        if a == b:
            return 0
        return -1 if a < b else 1
    except TypeError:
        return 0


def _lookup(doc: Mapping[str, Any], path: str) -> tuple[bool, Any]:
    """Resolve a dotted field path, returning (present, value)."""
    value: Any = doc
    for part in path.split("."):
        if isinstance(value, abc.Mapping) and part in value:
            value = value[part]
        else:
            return False, None
    return True, value


def _comparable(value: Any, arg: Any) -> bool:
    return _type_rank(value) == _type_rank(arg)


def _match_operator(present: bool, value: Any, op: str, arg: Any) -> bool:
    if op == "$exists":
        return present == bool(arg)
    if op == "$eq":
        return _match_equal(present, value, arg)
    if op == "$ne":
        return not _match_equal(present, value, arg)
    if op == "$in":
        return any(_match_equal(present, value, item) for item in arg)
    if op == "$nin":
        return not any(_match_equal(present, value, item) for item in arg)
    if op in ("$gt", "$gte", "$lt", "$lte"):
        if not present:
            return False
        candidates = value if isinstance(value, list) else [value]
        for candidate in candidates:
            if not _comparable(candidate, arg):
                continue
            cmp = _compare(candidate, arg)
            if (
                (op == "$gt" and cmp > 0)
                or (op == "$gte" and cmp >= 0)
                or (op == "$lt" and cmp < 0)
                or (op == "$lte" and cmp <= 0)
            ):
                return True
        return False
    raise OperationFailure(f"unknown operator: {op}", code=2)


def _match_equal(present: bool, value: Any, arg: Any) -> bool:
    if arg is None:
        return not present or value is None
    if not present:
        return False
    if isinstance(value, list) and not isinstance(arg, list):
        return any(_compare(item, arg) == 0 and _comparable(item, arg) for item in value)
    return _comparable(value, arg) and _compare(value, arg) == 0


def _matches(doc: Mapping[str, Any], filter: Optional[Mapping[str, Any]]) -> bool:
    """Does `doc` satisfy the query `filter`?"""
    if not filter:
        return True
    for key, cond in filter.items():
        if key == "$and":
            if not all(_matches(doc, sub) for sub in cond):
                return False
        elif key == "$or":
            if not any(_matches(doc, sub) for sub in cond):
                return False
        elif key.startswith("$"):
            raise OperationFailure(f"unknown top level operator: {key}", code=2)
        else:
            present, value = _lookup(doc, key)
            if (
                isinstance(cond, abc.Mapping)
                and cond
                and all(isinstance(k, str) and k.startswith("$") for k in cond)
            ):
                if not all(_match_operator(present, value, op, arg) for op, arg in cond.items()):
                    return False
            elif not _match_equal(present, value, cond):
                return False
    return True


def _sort_key(sort: list[tuple[str, int]]) -> Any:
    def cmp(a: Mapping[str, Any], b: Mapping[str, Any]) -> int:
        for key, direction in sort:
            result = _compare(_lookup(a, key)[1], _lookup(b, key)[1])
            if result:
                return result if direction == ASCENDING else -result
        return 0

    return functools.cmp_to_key(cmp)


def _normalize_keys(keys: Any) -> list[tuple[str, int]]:
    if isinstance(keys, str):
        return [(keys, ASCENDING)]
    if isinstance(keys, abc.Mapping):
        return list(keys.items())
    return [(key, direction) for key, direction in keys]


def _project(doc: Mapping[str, Any], projection: Any) -> dict[str, Any]:
    if not projection:
        return copy.deepcopy(dict(doc))
    if not isinstance(projection, abc.Mapping):
        projection = {field: 1 for field in projection}
    include = {k for k, v in projection.items() if v}
    if include:
        out = {k: copy.deepcopy(v) for k, v in doc.items() if k in include}
        if projection.get("_id", 1) and "_id" in doc:
            out["_id"] = copy.deepcopy(doc["_id"])
        return out
    exclude = {k for k, v in projection.items() if not v}
    return {k: copy.deepcopy(v) for k, v in doc.items() if k not in exclude}


def _set_path(doc: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    for part in parts[:-1]:
        doc = doc.setdefault(part, {})
    doc[parts[-1]] = value


def _unset_path(doc: dict[str, Any], path: str) -> None:
    parts = path.split(".")
    for part in parts[:-1]:
        doc = doc.get(part)  # type: ignore[assignment]
        if not isinstance(doc, dict):
            return
    doc.pop(parts[-1], None)


class _Namespace:
    """The documents and indexes stored under one collection name."""

    def __init__(self) -> None:
        self.documents: list[dict[str, Any]] = []
        self.indexes: dict[str, dict[str, Any]] = {}
        self.reset_indexes()

    def reset_indexes(self) -> None:
        self.indexes = {_ID_INDEX: {"v": 2, "key": {"_id": ASCENDING}, "name": _ID_INDEX}}

    def _unique_keys(self) -> list[tuple[str, list[str]]]:
        keys = []
        for name, spec in self.indexes.items():
            if name == _ID_INDEX or spec.get("unique"):
                keys.append((name, list(spec["key"])))
        return keys

    def check_unique(self, doc: Mapping[str, Any], ignore: Optional[Mapping[str, Any]] = None) -> None:
        for name, fields in self._unique_keys():
            values = [_lookup(doc, field)[1] for field in fields]
            for other in self.documents:
                if other is ignore:
                    continue
                other_values = [_lookup(other, field)[1] for field in fields]
                if all(
                    _compare(a, b) == 0 and _type_rank(a) == _type_rank(b)
                    for a, b in zip(values, other_values)
                ):
                    key = dict(zip(fields, values))
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error index: {name} dup key: {key!r}",
                        11000,
                        {"code": 11000, "keyPattern": dict.fromkeys(fields, 1), "keyValue": key},
                    )


class MemoryCursor:
    """A lazy, forward-only cursor over an in-memory query.

    Mirrors the subset of :class:`~pymongo.asynchronous.cursor.AsyncCursor`
    used by GridFS: the query runs on the first call to :meth:`next` and
    ``sort``/``skip``/``limit`` may only be changed before that.
    """

    def __init__(
        self,
        collection: MemoryCollection,
        filter: Optional[Mapping[str, Any]] = None,
        projection: Any = None,
        skip: int = 0,
        limit: int = 0,
        no_cursor_timeout: bool = False,
        sort: Any = None,
        batch_size: int = 0,
        max_time_ms: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        if filter is not None and not isinstance(filter, abc.Mapping):
            raise TypeError("filter must be an instance of dict, bson.son.SON, or Mapping")
        self._collection = collection
        self._filter = dict(filter or {})
        self._projection = projection
        self._skip = skip
        self._limit = limit
        self._sort = _normalize_keys(sort) if sort is not None else None
        self._batch_size = batch_size
        self._max_time_ms = max_time_ms
        self._no_cursor_timeout = no_cursor_timeout
        self._results: Optional[list[dict[str, Any]]] = None
        self._killed = False

    def _check_okay_to_chain(self) -> None:
        if self._results is not None:
            raise InvalidOperation("cannot set options after executing query")

    def sort(self, key_or_list: Any, direction: Optional[int] = None) -> MemoryCursor:
        self._check_okay_to_chain()
        if direction is not None:
            self._sort = [(key_or_list, direction)]
        else:
            self._sort = _normalize_keys(key_or_list)
        return self

    def skip(self, skip: int) -> MemoryCursor:
        self._check_okay_to_chain()
        self._skip = skip
        return self

    def limit(self, limit: int) -> MemoryCursor:
        self._check_okay_to_chain()
        self._limit = limit
        return self

    @property
    def batch_size_option(self) -> int:
        return self._batch_size

    @property
    def max_time_ms(self) -> Optional[int]:
        return self._max_time_ms

    @property
    def no_cursor_timeout(self) -> bool:
        return self._no_cursor_timeout

    @property
    def alive(self) -> bool:
        return not self._killed and (self._results is None or bool(self._results))

    def _execute(self) -> list[dict[str, Any]]:
        docs = [doc for doc in self._collection._namespace.documents if _matches(doc, self._filter)]
        if self._sort:
            docs.sort(key=_sort_key(self._sort))
        if self._skip:
            docs = docs[self._skip :]
        if self._limit:
            docs = docs[: abs(self._limit)]
        return [_project(doc, self._projection) for doc in docs]

    async def next(self) -> dict[str, Any]:
        await asyncio.sleep(0)
        if self._killed:
            raise StopAsyncIteration
        if self._results is None:
            self._results = self._execute()
        if not self._results:
            raise StopAsyncIteration
        return self._results.pop(0)

    __anext__ = next

    def __aiter__(self) -> MemoryCursor:
        return self

    async def to_list(self, length: Optional[int] = None) -> list[dict[str, Any]]:
        out = []
        async for doc in self:
            out.append(doc)
            if length is not None and len(out) >= length:
                break
        return out

    async def close(self) -> None:
        self._killed = True
        self._results = []


class MemoryCollection:
    """A collection stored in a :class:`MemoryDatabase`."""

    def __init__(
        self,
        database: MemoryDatabase,
        name: str,
        read_preference: Optional[_ServerMode] = None,
        write_concern: Optional[WriteConcern] = None,
        read_concern: Optional[ReadConcern] = None,
    ) -> None:
        self._database = database
        self._name = name
        self._namespace = database._namespace(name)
        self.read_preference = read_preference or database.read_preference
        self.write_concern = write_concern or database.write_concern
        self.read_concern = read_concern or database.read_concern

    @property
    def name(self) -> str:
        return self._name

    @property
    def full_name(self) -> str:
        return f"{self._database.name}.{self._name}"

    @property
    def database(self) -> MemoryDatabase:
        return self._database

    def __getattr__(self, name: str) -> MemoryCollection:
        if name.startswith("_"):
            raise AttributeError(
                f"MemoryCollection has no attribute {name!r}. To access the {self._name}.{name}"
                f" collection, use database['{self._name}.{name}']."
            )
        return self._database.get_collection(f"{self._name}.{name}")

    def __getitem__(self, name: str) -> MemoryCollection:
        return self._database.get_collection(f"{self._name}.{name}")

    def __repr__(self) -> str:
        return f"MemoryCollection({self._database!r}, {self._name!r})"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, MemoryCollection):
            return self._database is other._database and self._name == other._name
        return NotImplemented

    def __hash__(self) -> int:
        return hash((id(self._database), self._name))

    def with_options(
        self,
        codec_options: Optional[Any] = None,
        read_preference: Optional[_ServerMode] = None,
        write_concern: Optional[WriteConcern] = None,
        read_concern: Optional[ReadConcern] = None,
    ) -> MemoryCollection:
        return MemoryCollection(
            self._database,
            self._name,
            read_preference=read_preference or self.read_preference,
            write_concern=write_concern or self.write_concern,
            read_concern=read_concern or self.read_concern,
        )

    def find(self, *args: Any, **kwargs: Any) -> MemoryCursor:
        return MemoryCursor(self, *args, **kwargs)

    async def find_one(
        self, filter: Optional[Any] = None, *args: Any, **kwargs: Any
    ) -> Optional[dict[str, Any]]:
        if filter is not None and not isinstance(filter, abc.Mapping):
            filter = {"_id": filter}
        cursor = self.find(filter, *args, **kwargs).limit(-1)
        try:
            return await cursor.next()
        except StopAsyncIteration:
            return None

    async def count_documents(self, filter: Mapping[str, Any], **kwargs: Any) -> int:
        await asyncio.sleep(0)
        return sum(1 for doc in self._namespace.documents if _matches(doc, filter))

    def _insert(self, document: Any) -> Any:
        if not isinstance(document, abc.MutableMapping):
            raise TypeError("document must be an instance of dict, bson.son.SON, or MutableMapping")
        if "_id" not in document:
            document["_id"] = ObjectId()
        stored = copy.deepcopy(dict(document))
        self._namespace.check_unique(stored)
        self._namespace.documents.append(stored)
        return document["_id"]

    async def insert_one(self, document: Any, **kwargs: Any) -> InsertOneResult:
        await asyncio.sleep(0)
        return InsertOneResult(self._insert(document), self.write_concern.acknowledged)

    async def insert_many(
        self, documents: Iterable[Any], ordered: bool = True, **kwargs: Any
    ) -> InsertManyResult:
        if not isinstance(documents, abc.Iterable) or isinstance(documents, abc.Mapping) or not documents:
            raise TypeError("documents must be a non-empty list")
        await asyncio.sleep(0)
        inserted_ids = []
        write_errors = []
        for index, document in enumerate(documents):
            try:
                inserted_ids.append(self._insert(document))
            except DuplicateKeyError as exc:
                write_errors.append(
                    {"index": index, "code": exc.code, "errmsg": str(exc), "op": document}
                )
                if ordered:
                    break
        if write_errors:
            raise BulkWriteError(
                {
                    "writeErrors": write_errors,
                    "writeConcernErrors": [],
                    "nInserted": len(inserted_ids),
                    "nUpserted": 0,
                    "nMatched": 0,
                    "nModified": 0,
                    "nRemoved": 0,
                    "upserted": [],
                }
            )
        return InsertManyResult(inserted_ids, self.write_concern.acknowledged)

    async def update_one(
        self, filter: Mapping[str, Any], update: Mapping[str, Any], **kwargs: Any
    ) -> UpdateResult:
        if not update or not all(key.startswith("$") for key in update):
            raise ValueError("update only works with $ operators")
        await asyncio.sleep(0)
        for doc in self._namespace.documents:
            if _matches(doc, filter):
                updated = copy.deepcopy(doc)
                for op, fields in update.items():
                    if op == "$set":
                        for path, value in fields.items():
                            _set_path(updated, path, copy.deepcopy(value))
                    elif op == "$unset":
                        for path in fields:
                            _unset_path(updated, path)
                    else:
                        raise OperationFailure(f"Unknown modifier: {op}", code=9)
                self._namespace.check_unique(updated, ignore=doc)
                modified = int(updated != doc)
                doc.clear()
                doc.update(updated)
                return UpdateResult(
                    {"n": 1, "nModified": modified, "ok": 1.0}, self.write_concern.acknowledged
                )
        return UpdateResult({"n": 0, "nModified": 0, "ok": 1.0}, self.write_concern.acknowledged)

    async def _delete(self, filter: Mapping[str, Any], multi: bool) -> DeleteResult:
        await asyncio.sleep(0)
        kept, removed = [], 0
        for doc in self._namespace.documents:
            if (multi or not removed) and _matches(doc, filter):
                removed += 1
            else:
                kept.append(doc)
        self._namespace.documents[:] = kept
        return DeleteResult({"n": removed, "ok": 1.0}, self.write_concern.acknowledged)

    async def delete_one(self, filter: Mapping[str, Any], **kwargs: Any) -> DeleteResult:
        return await self._delete(filter, multi=False)

    async def delete_many(self, filter: Mapping[str, Any], **kwargs: Any) -> DeleteResult:
        return await self._delete(filter, multi=True)

    async def drop(self, **kwargs: Any) -> None:
        await asyncio.sleep(0)
        self._namespace.documents.clear()
        self._namespace.reset_indexes()

    async def list_indexes(self, **kwargs: Any) -> MemoryCursor:
        await asyncio.sleep(0)
        cursor = MemoryCursor(self)
        cursor._results = [copy.deepcopy(spec) for spec in self._namespace.indexes.values()]
        return cursor

    async def create_index(self, keys: Any, unique: bool = False, **kwargs: Any) -> str:
        await asyncio.sleep(0)
        key = dict(_normalize_keys(keys))
        for field, direction in key.items():
            if direction not in (ASCENDING, DESCENDING):
                raise OperationFailure(f"unsupported index direction {direction!r} for {field}")
        name = kwargs.get("name") or "_".join(f"{k}_{v}" for k, v in key.items())
        existing = self._namespace.indexes.get(name)
        if existing is not None:
            if existing["key"] != key or bool(existing.get("unique")) != unique:
                raise OperationFailure(
                    f"An existing index has the same name as the requested index: {name}",
                    code=86,
                )
            return name
        spec: dict[str, Any] = {"v": 2, "key": key, "name": name}
        if unique:
            spec["unique"] = True
            self._namespace.indexes[name] = spec
            try:
                for doc in self._namespace.documents:
                    self._namespace.check_unique(doc, ignore=doc)
            except DuplicateKeyError:
                del self._namespace.indexes[name]
                raise
        self._namespace.indexes[name] = spec
        return name


class MemoryDatabase:
    """A set of named in-memory collections.

    :param name: the database name, used in collection ``full_name``.
    :param write_concern: reported by collections that do not override it.
    :param read_concern: reported by collections that do not override it.
    :param read_preference: reported by collections that do not override it.
    """

    def __init__(
        self,
        name: str = "gridstore",
        write_concern: Optional[WriteConcern] = None,
        read_concern: Optional[ReadConcern] = None,
        read_preference: Optional[_ServerMode] = None,
    ) -> None:
        self._name = name
        self._namespaces: dict[str, _Namespace] = {}
        self.write_concern = write_concern or WriteConcern()
        self.read_concern = read_concern or ReadConcern()
        self.read_preference = read_preference or ReadPreference.PRIMARY

    @property
    def name(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"MemoryDatabase({self._name!r})"

    def _namespace(self, name: str) -> _Namespace:
        if name not in self._namespaces:
            self._namespaces[name] = _Namespace()
        return self._namespaces[name]

    def __getitem__(self, name: str) -> MemoryCollection:
        return self.get_collection(name)

    def __getattr__(self, name: str) -> MemoryCollection:
        if name.startswith("_"):
            raise AttributeError(
                f"MemoryDatabase has no attribute {name!r}. To access the {name}"
                f" collection, use database[{name!r}]."
            )
        return self.get_collection(name)

    def get_collection(
        self,
        name: str,
        codec_options: Optional[Any] = None,
        read_preference: Optional[_ServerMode] = None,
        write_concern: Optional[WriteConcern] = None,
        read_concern: Optional[ReadConcern] = None,
    ) -> MemoryCollection:
        return MemoryCollection(
            self,
            name,
            read_preference=read_preference,
            write_concern=write_concern,
            read_concern=read_concern,
        )

    async def list_collection_names(self) -> list[str]:
        await asyncio.sleep(0)
        return sorted(name for name, ns in self._namespaces.items() if ns.documents)

    async def drop_collection(self, name: str) -> None:
        await self.get_collection(name).drop()
