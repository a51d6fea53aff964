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

"""Creation of the indexes a GridFS bucket relies on."""
from __future__ import annotations

from typing import Any, Mapping

from pymongo.errors import PyMongoError

from gridstore.errors import IndexCreationFailed
from gridstore.grid_file_shared import _C_INDEX, _F_INDEX
from gridstore.logger import _INDEX_LOGGER, _debug_log, _GridFSMessage, _warning_log
from gridstore.store import AsyncStoreCollection, _collection_name


class IndexManager:
    """Ensures a bucket's two supporting indexes exist.

    - ``{"files_id": 1, "n": 1}``, unique, on the chunks collection.
    - ``{"filename": 1, "uploadDate": 1}`` on the files collection.

    :meth:`ensure_indexes` only creates an index when no index with the
    same key is listed, so it may be called any number of times. A manager
    that has succeeded once does no further I/O.
    """

    def __init__(self, files: AsyncStoreCollection, chunks: AsyncStoreCollection) -> None:
        self._files = files
        self._chunks = chunks
        self._ensured = False

    @property
    def ensured(self) -> bool:
        """True once both indexes are known to exist."""
        return self._ensured

    def reset(self) -> None:
        """Forget that the indexes exist, e.g. after the bucket was dropped.

        Uploads sharing this manager recreate them before their next write.
        """
        self._ensured = False

    async def _index_keys(self, collection: AsyncStoreCollection) -> list[Mapping[str, Any]]:
        cursor = await collection.list_indexes()
        return [dict(index_spec["key"]) async for index_spec in cursor]

    async def _create_index(
        self, collection: AsyncStoreCollection, index_key: Mapping[str, Any], unique: bool
    ) -> None:
        name = _collection_name(collection)
        try:
            index_keys = await self._index_keys(collection)
            # Key order matters: {"n": 1, "files_id": 1} is a different index.
            if any(list(key.items()) == list(index_key.items()) for key in index_keys):
                return
            index_name = await collection.create_index(list(index_key.items()), unique=unique)
        except PyMongoError as exc:
            _warning_log(
                _INDEX_LOGGER,
                message=_GridFSMessage.INDEX_FAILED,
                collection=name,
                key=dict(index_key),
                failure=str(exc),
            )
            raise IndexCreationFailed(
                f"could not create index {dict(index_key)!r} on {name!r}: {exc}",
                collection=name,
            ) from exc
        _debug_log(
            _INDEX_LOGGER,
            message=_GridFSMessage.INDEX_CREATED,
            collection=name,
            key=dict(index_key),
            indexName=index_name,
            unique=unique,
        )

    async def ensure_indexes(self) -> None:
        """Create any missing index.

        Raises :exc:`~gridstore.errors.IndexCreationFailed` if an index
        could not be listed or created.
        """
        if self._ensured:
            return
        await self._create_index(self._files, _F_INDEX, False)
        await self._create_index(self._chunks, _C_INDEX, True)
        self._ensured = True
