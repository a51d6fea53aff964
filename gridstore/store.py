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

"""The backing store capabilities GridFS relies on.

A bucket talks to its two collections only through the methods described by
:class:`AsyncStoreCollection`, which are a strict subset of PyMongo's
:class:`~pymongo.asynchronous.collection.AsyncCollection` API. Any
:class:`~pymongo.asynchronous.database.AsyncDatabase` can therefore be used
directly, as can the in-process :class:`~gridstore.memory.MemoryDatabase`.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import (
    Any,
    AsyncIterator,
    Iterable,
    Iterator,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from pymongo.errors import OperationFailure, PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.read_preferences import _ServerMode
from pymongo.results import DeleteResult, InsertManyResult, InsertOneResult, UpdateResult
from pymongo.write_concern import WriteConcern

from gridstore.errors import BackingStoreError, GridFSError, InvalidArgument


@runtime_checkable
class AsyncStoreCursor(Protocol):
    """A forward-only, lazy cursor over query results."""

    def __aiter__(self) -> AsyncIterator[Mapping[str, Any]]:
        ...

    async def next(self) -> Mapping[str, Any]:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class AsyncStoreCollection(Protocol):
    """A named collection of documents."""

    @property
    def name(self) -> str:
        ...

    @property
    def full_name(self) -> str:
        ...

    async def find_one(
        self, filter: Optional[Any] = None, *args: Any, **kwargs: Any
    ) -> Optional[Mapping[str, Any]]:
        ...

    def find(self, *args: Any, **kwargs: Any) -> AsyncStoreCursor:
        ...

    async def insert_one(self, document: Any, **kwargs: Any) -> InsertOneResult:
        ...

    async def insert_many(
        self, documents: Iterable[Any], ordered: bool = True, **kwargs: Any
    ) -> InsertManyResult:
        ...

    async def update_one(
        self, filter: Mapping[str, Any], update: Mapping[str, Any], **kwargs: Any
    ) -> UpdateResult:
        ...

    async def delete_one(self, filter: Mapping[str, Any], **kwargs: Any) -> DeleteResult:
        ...

    async def delete_many(self, filter: Mapping[str, Any], **kwargs: Any) -> DeleteResult:
        ...

    async def drop(self, **kwargs: Any) -> None:
        ...

    async def list_indexes(self, **kwargs: Any) -> Any:
        ...

    async def create_index(self, keys: Any, **kwargs: Any) -> str:
        ...


@runtime_checkable
class AsyncStoreDatabase(Protocol):
    """A namespace from which collections are obtained by name."""

    @property
    def name(self) -> str:
        ...

    def get_collection(
        self,
        name: str,
        codec_options: Optional[Any] = None,
        read_preference: Optional[_ServerMode] = None,
        write_concern: Optional[WriteConcern] = None,
        read_concern: Optional[ReadConcern] = None,
    ) -> AsyncStoreCollection:
        ...


def _collection_name(collection: Any) -> Optional[str]:
    return getattr(collection, "full_name", None) or getattr(collection, "name", None)


# Server error code for a malformed query, e.g. an unknown operator.
_BAD_VALUE = 2


@contextmanager
def _translate_errors(
    operation: str, collection: Any = None, file_id: Any = None, query: bool = False
) -> Iterator[None]:
    """Re-raise store failures inside the block as BackingStoreError.

    GridFS errors raised inside the block propagate unchanged. With `query`,
    a query the store rejects as malformed raises InvalidArgument instead.
    """
    try:
        yield
    except GridFSError:
        raise
    except PyMongoError as exc:
        name = _collection_name(collection)
        if query and isinstance(exc, OperationFailure) and exc.code == _BAD_VALUE:
            raise InvalidArgument(f"invalid query on {name!r}: {exc}") from exc
        msg = f"{operation} on {name!r} failed"
        if file_id is not None:
            msg += f" for file {file_id!r}"
        raise BackingStoreError(
            f"{msg}: {exc}", operation, collection=name, file_id=file_id
        ) from exc


def _is_duplicate_key_error(details: Optional[Mapping[str, Any]]) -> bool:
    """Does a BulkWriteError's details document report a duplicate key?"""
    if not details:
        return False
    write_errors: Sequence[Mapping[str, Any]] = details.get("writeErrors", [])
    return any(err.get("code") in (11000, 11001, 12582) for err in write_errors)
