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

"""The bucket API: uploads, downloads and operations over a whole bucket."""
from __future__ import annotations

import inspect
from typing import Any, Mapping, Optional, cast

from bson.objectid import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.common import validate_string
from pymongo.read_concern import ReadConcern
from pymongo.read_preferences import _ServerMode
from pymongo.write_concern import WriteConcern

from gridstore.errors import InvalidArgument, NoFile
from gridstore.grid_file import AsyncGridIn, AsyncGridOut, AsyncGridOutCursor
from gridstore.grid_file_shared import C_FILES_ID, F_FILENAME, F_ID, F_UPLOAD_DATE
from gridstore.index import IndexManager
from gridstore.logger import _BUCKET_LOGGER, _debug_log, _GridFSMessage
from gridstore.options import (
    DEFAULT_BUCKET_OPTIONS,
    GridFSBucketOptions,
    GridFSFindOptions,
    GridFSUploadOptions,
    _validate,
)
from gridstore.store import AsyncStoreCollection, AsyncStoreDatabase, _translate_errors


def _validate_filename(filename: Any) -> str:
    return _validate(validate_string, "filename", filename)


async def _write_to(destination: Any, data: bytes) -> None:
    result = destination.write(data)
    if inspect.isawaitable(result):
        await result


class AsyncGridFSBucket:
    """An instance of GridFS on top of a single database."""

    def __init__(
        self,
        db: AsyncStoreDatabase,
        bucket_name: Optional[str] = None,
        chunk_size_bytes: Optional[int] = None,
        write_concern: Optional[WriteConcern] = None,
        read_concern: Optional[ReadConcern] = None,
        read_preference: Optional[_ServerMode] = None,
        options: Optional[GridFSBucketOptions] = None,
    ) -> None:
        """Create a new instance of :class:`AsyncGridFSBucket`.

        Raises :exc:`TypeError` if `db` does not provide ``get_collection``.

        Raises :exc:`~gridstore.errors.InvalidArgument` if an option is
        invalid or if the effective write concern is not acknowledged.

        :param db: database to use: a PyMongo
            :class:`~pymongo.asynchronous.database.AsyncDatabase` or a
            :class:`~gridstore.memory.MemoryDatabase`.
        :param bucket_name: The name of the bucket. Defaults to 'fs'.
        :param chunk_size_bytes: The chunk size in bytes. Defaults
            to 255KB.
        :param write_concern: The
            :class:`~pymongo.write_concern.WriteConcern` to use. If ``None``
            (the default) db.write_concern is used.
        :param read_concern: The
            :class:`~pymongo.read_concern.ReadConcern` to use. If ``None``
            (the default) db.read_concern is used.
        :param read_preference: The read preference to use. If
            ``None`` (the default) db.read_preference is used.
        :param options: A :class:`~gridstore.options.GridFSBucketOptions`.
            The other keyword arguments override its fields.
        """
        if not isinstance(db, AsyncStoreDatabase):
            raise TypeError("db must provide get_collection(), not %r" % type(db).__name__)

        overrides = {
            key: value
            for key, value in (
                ("bucket_name", bucket_name),
                ("chunk_size_bytes", chunk_size_bytes),
                ("write_concern", write_concern),
                ("read_concern", read_concern),
                ("read_preference", read_preference),
            )
            if value is not None
        }
        self._options = (options or DEFAULT_BUCKET_OPTIONS).with_options(**overrides)

        wtc = self._options.write_concern
        if wtc is None:
            wtc = getattr(db, "write_concern", None)
        if isinstance(wtc, WriteConcern) and not wtc.acknowledged:
            raise InvalidArgument("write concern must be acknowledged")

        self._files: AsyncStoreCollection = db.get_collection(
            self._options.files_collection,
            read_preference=self._options.read_preference,
            write_concern=self._options.write_concern,
            read_concern=self._options.read_concern,
        )
        self._chunks: AsyncStoreCollection = db.get_collection(
            self._options.chunks_collection,
            read_preference=self._options.read_preference,
            write_concern=self._options.write_concern,
            read_concern=self._options.read_concern,
        )
        self._indexes = IndexManager(self._files, self._chunks)

    @property
    def options(self) -> GridFSBucketOptions:
        """The :class:`~gridstore.options.GridFSBucketOptions` of this bucket."""
        return self._options

    @property
    def bucket_name(self) -> str:
        return self._options.bucket_name

    @property
    def files(self) -> AsyncStoreCollection:
        """The file entry collection, ``"{bucket_name}.files"``."""
        return self._files

    @property
    def chunks(self) -> AsyncStoreCollection:
        """The chunk collection, ``"{bucket_name}.chunks"``."""
        return self._chunks

    def __repr__(self) -> str:
        return f"AsyncGridFSBucket({self._options!r})"

    def _new_grid_in(
        self,
        file_id: Any,
        filename: str,
        chunk_size_bytes: Optional[int],
        metadata: Optional[Mapping[str, Any]],
        check_exists: bool,
        fields: dict[str, Any],
    ) -> AsyncGridIn:
        _validate_filename(filename)
        upload = GridFSUploadOptions(chunk_size_bytes=chunk_size_bytes, metadata=metadata)
        opts = {
            "_id": file_id,
            "filename": filename,
            "chunk_size": (
                upload.chunk_size_bytes
                if upload.chunk_size_bytes is not None
                else self._options.chunk_size_bytes
            ),
        }
        if upload.metadata is not None:
            opts["metadata"] = upload.metadata
        opts.update(fields)
        return AsyncGridIn(
            self._files,
            self._chunks,
            index_manager=self._indexes,
            check_exists=check_exists,
            **opts,
        )

    def open_upload_stream(
        self,
        filename: str,
        chunk_size_bytes: Optional[int] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        **fields: Any,
    ) -> AsyncGridIn:
        """Opens a Stream that the application can write the contents of the
        file to.

        The user must specify the filename, and can choose to add any
        additional information in the metadata field of the file document or
        modify the chunk size.
        For example::

          fs = AsyncGridFSBucket(MemoryDatabase())
          async with fs.open_upload_stream(
                "test_file", chunk_size_bytes=4,
                metadata={"contentType": "text/plain"}) as grid_in:
              await grid_in.write(b"data I want to store!")

        Returns an instance of :class:`~gridstore.grid_file.AsyncGridIn`.

        Raises :exc:`~gridstore.errors.InvalidArgument` if `filename` is not
        a string or `chunk_size_bytes` is not a positive integer.

        :param filename: The name of the file to upload.
        :param chunk_size_bytes: The number of bytes per chunk of this
            file. Defaults to the chunk_size_bytes in :class:`AsyncGridFSBucket`.
        :param metadata: User data for the 'metadata' field of the
            files collection document. If not provided the metadata field will
            be omitted from the files collection document.
        :param fields: Additional fields of the file entry, e.g. ``encoding``.
        """
        return self._new_grid_in(
            ObjectId(), filename, chunk_size_bytes, metadata, check_exists=False, fields=fields
        )

    def open_upload_stream_with_id(
        self,
        file_id: Any,
        filename: str,
        chunk_size_bytes: Optional[int] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        **fields: Any,
    ) -> AsyncGridIn:
        """Opens a Stream that the application can write the contents of the
        file to, using a caller supplied ``_id``.

        The upload fails with :exc:`~gridstore.errors.FileExists`, before any
        chunk is written, if a file entry or chunks already use `file_id`.

        :param file_id: The id to use for this file. The id must not have
            already been used for another file.
        :param filename: The name of the file to upload.
        :param chunk_size_bytes: The number of bytes per chunk of this
            file. Defaults to the chunk_size_bytes in :class:`AsyncGridFSBucket`.
        :param metadata: User data for the 'metadata' field of the
            files collection document.
        :param fields: Additional fields of the file entry, e.g. ``encoding``.
        """
        if file_id is None:
            raise InvalidArgument("file_id must not be None")
        return self._new_grid_in(
            file_id, filename, chunk_size_bytes, metadata, check_exists=True, fields=fields
        )

    async def upload_from_stream(
        self,
        filename: str,
        source: Any,
        chunk_size_bytes: Optional[int] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        **fields: Any,
    ) -> ObjectId:
        """Uploads a user file to a GridFS bucket.

        Reads the contents of the user file from `source` and uploads
        it to the file `filename`. Source can be bytes, a string (with an
        ``encoding`` field), a file-like object with a sync or async
        ``read``, or an iterable or async iterable of bytes. For example::

          file_id = await fs.upload_from_stream(
              "test_file",
              b"data I want to store!",
              chunk_size_bytes=4,
              metadata={"contentType": "text/plain"})

        Returns the _id of the uploaded file.

        :param filename: The name of the file to upload.
        :param source: The source of the content to be uploaded.
        :param chunk_size_bytes: The number of bytes per chunk of this
            file. Defaults to the chunk_size_bytes of :class:`AsyncGridFSBucket`.
        :param metadata: User data for the 'metadata' field of the
            files collection document.
        :param fields: Additional fields of the file entry, e.g. ``encoding``.
        """
        async with self.open_upload_stream(filename, chunk_size_bytes, metadata, **fields) as gin:
            await gin.write(source)

        return cast(ObjectId, gin._id)

    async def upload_from_stream_with_id(
        self,
        file_id: Any,
        filename: str,
        source: Any,
        chunk_size_bytes: Optional[int] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        **fields: Any,
    ) -> None:
        """Uploads a user file to a GridFS bucket with a custom file id.

        Raises :exc:`~gridstore.errors.FileExists` if `file_id` is already
        in use.

        :param file_id: The id to use for this file.
        :param filename: The name of the file to upload.
        :param source: The source of the content to be uploaded, see
            :meth:`upload_from_stream`.
        :param chunk_size_bytes: The number of bytes per chunk of this
            file. Defaults to the chunk_size_bytes of :class:`AsyncGridFSBucket`.
        :param metadata: User data for the 'metadata' field of the
            files collection document.
        :param fields: Additional fields of the file entry, e.g. ``encoding``.
        """
        async with self.open_upload_stream_with_id(
            file_id, filename, chunk_size_bytes, metadata, **fields
        ) as gin:
            await gin.write(source)

    async def open_download_stream(self, file_id: Any) -> AsyncGridOut:
        """Opens a Stream from which the application can read the contents of
        the stored file specified by file_id.

        For example::

          file_id = await fs.upload_from_stream("test_file", b"data I want to store!")
          grid_out = await fs.open_download_stream(file_id)
          contents = await grid_out.read()

        Returns an instance of :class:`~gridstore.grid_file.AsyncGridOut`.

        Raises :exc:`~gridstore.errors.NoFile` if no file with file_id exists.

        :param file_id: The _id of the file to be downloaded.
        """
        gout = AsyncGridOut(self._files, self._chunks, file_id)

        # Raise NoFile now, instead of on first attribute access.
        await gout.open()
        return gout

    async def download_to_stream(self, file_id: Any, destination: Any) -> None:
        """Downloads the contents of the stored file specified by file_id and
        writes the contents to `destination`.

        Raises :exc:`~gridstore.errors.NoFile` if no file with file_id exists.

        :param file_id: The _id of the file to be downloaded.
        :param destination: an object implementing a sync or async
            :meth:`write`.
        """
        async with await self.open_download_stream(file_id) as gout:
            async for chunk in gout:
                await _write_to(destination, chunk)

    async def delete(self, file_id: Any) -> None:
        """Given an file_id, delete this stored file's files collection document
        and associated chunks from a GridFS bucket.

        The file entry is removed before its chunks, so no reader can open a
        file whose chunks are disappearing.

        Raises :exc:`~gridstore.errors.NoFile` if no file with file_id exists.

        :param file_id: The _id of the file to be deleted.
        """
        with _translate_errors("delete_one", self._files, file_id):
            res = await self._files.delete_one({F_ID: file_id})
        if not res.deleted_count:
            raise NoFile("no file could be deleted because none matched %r" % (file_id,))
        with _translate_errors("delete_many", self._chunks, file_id):
            chunks = await self._chunks.delete_many({C_FILES_ID: file_id})
        _debug_log(
            _BUCKET_LOGGER,
            message=_GridFSMessage.FILE_DELETED,
            fileId=file_id,
            chunks=chunks.deleted_count,
        )

    async def delete_by_name(self, filename: str) -> None:
        """Delete every revision of `filename`, entries first, then chunks.

        Raises :exc:`~gridstore.errors.NoFile` if no file has that name.

        :param filename: The name of the file to be deleted.
        """
        _validate_filename(filename)
        with _translate_errors("find", self._files):
            cursor = self._files.find({F_FILENAME: filename}, projection={F_ID: 1})
            file_ids = [doc[F_ID] async for doc in cursor]
        if not file_ids:
            raise NoFile("no file could be deleted because none matched filename %r" % filename)
        with _translate_errors("delete_many", self._files):
            await self._files.delete_many({F_ID: {"$in": file_ids}})
        with _translate_errors("delete_many", self._chunks):
            chunks = await self._chunks.delete_many({C_FILES_ID: {"$in": file_ids}})
        _debug_log(
            _BUCKET_LOGGER,
            message=_GridFSMessage.FILE_DELETED,
            filename=filename,
            revisions=len(file_ids),
            chunks=chunks.deleted_count,
        )

    def find(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        options: Optional[GridFSFindOptions] = None,
        **kwargs: Any,
    ) -> AsyncGridOutCursor:
        """Find and return the files collection documents that match ``filter``

        Returns a cursor that iterates across files matching
        arbitrary queries on the files collection. No chunk is read until
        one of the returned files is.

        For example::

          async for grid_data in fs.find({"filename": "lisa.txt"},
                                         no_cursor_timeout=True):
              data = await grid_data.read()

        would iterate through all versions of "lisa.txt" stored in GridFS.
        As another example, the call::

          most_recent_three = fs.find(sort=[("uploadDate", -1)], limit=3)

        would return a cursor to the three most recently uploaded files.

        :param filter: Search query.
        :param options: A :class:`~gridstore.options.GridFSFindOptions`.
        :param kwargs: Fields of :class:`~gridstore.options.GridFSFindOptions`
            (``batch_size``, ``limit``, ``max_time_ms``,
            ``no_cursor_timeout``, ``skip``, ``sort``), overriding `options`.
        """
        if options is None:
            options = GridFSFindOptions(**kwargs)
        elif kwargs:
            options = options.with_options(**kwargs)
        return AsyncGridOutCursor(self._files, self._chunks, filter, options)

    async def open_download_stream_by_name(self, filename: str, revision: int = -1) -> AsyncGridOut:
        """Opens a Stream from which the application can read the contents of
        `filename` and optional `revision`.

        Returns an instance of :class:`~gridstore.grid_file.AsyncGridOut`.

        Raises :exc:`~gridstore.errors.NoFile` if no such version of
        that file exists.

        Raises :exc:`~gridstore.errors.InvalidArgument` if filename is not a
        string or revision is not an integer.

        :param filename: The name of the file to read from.
        :param revision: Which revision (documents with the same
            filename and different uploadDate) of the file to retrieve.
            Defaults to -1 (the most recent revision).

        :Note: Revision numbers are defined as follows:

          - 0 = the original stored file
          - 1 = the first revision
          - 2 = the second revision
          - etc...
          - -2 = the second most recent revision
          - -1 = the most recent revision
        """
        _validate_filename(filename)
        if isinstance(revision, bool) or not isinstance(revision, int):
            raise InvalidArgument("revision must be an integer, not %r" % (revision,))
        if revision < 0:
            skip = abs(revision) - 1
            sort = [(F_UPLOAD_DATE, DESCENDING)]
        else:
            skip = revision
            sort = [(F_UPLOAD_DATE, ASCENDING)]
        with _translate_errors("find", self._files):
            cursor = self._files.find({F_FILENAME: filename}, sort=sort, skip=skip, limit=-1)
            try:
                grid_file = await cursor.next()
            except StopAsyncIteration:
                raise NoFile("no version %d for filename %r" % (revision, filename)) from None
            finally:
                await cursor.close()
        gout = AsyncGridOut(self._files, self._chunks, file_document=grid_file)
        await gout.open()
        return gout

    async def download_to_stream_by_name(
        self, filename: str, destination: Any, revision: int = -1
    ) -> None:
        """Write the contents of `filename` (with optional `revision`) to
        `destination`.

        Raises :exc:`~gridstore.errors.NoFile` if no such version of
        that file exists.

        :param filename: The name of the file to read from.
        :param destination: An object implementing a sync or async
            :meth:`write`.
        :param revision: Which revision of the file to retrieve, see
            :meth:`open_download_stream_by_name`.
        """
        async with await self.open_download_stream_by_name(filename, revision) as gout:
            async for chunk in gout:
                await _write_to(destination, chunk)

    async def rename(self, file_id: Any, new_filename: str) -> None:
        """Renames the stored file with the specified file_id.

        Only the ``filename`` field of the file entry changes.

        Raises :exc:`~gridstore.errors.NoFile` if no file with file_id exists.

        :param file_id: The _id of the file to be renamed.
        :param new_filename: The new name of the file.
        """
        _validate(validate_string, "new_filename", new_filename)
        with _translate_errors("update_one", self._files, file_id):
            result = await self._files.update_one(
                {F_ID: file_id}, {"$set": {F_FILENAME: new_filename}}
            )
        if not result.matched_count:
            raise NoFile(
                "no files could be renamed %r because none "
                "matched file_id %r" % (new_filename, file_id)
            )
        _debug_log(
            _BUCKET_LOGGER,
            message=_GridFSMessage.FILE_RENAMED,
            fileId=file_id,
            filename=new_filename,
        )

    async def drop(self) -> None:
        """Removes all of the files and chunks in this bucket.

        Safe to call on an empty or already dropped bucket.
        """
        with _translate_errors("drop", self._files):
            await self._files.drop()
        with _translate_errors("drop", self._chunks):
            await self._chunks.drop()
        # The indexes went with the collections.
        self._indexes.reset()
        _debug_log(_BUCKET_LOGGER, message=_GridFSMessage.BUCKET_DROPPED, bucket=self.bucket_name)

    async def ensure_indexes(self) -> None:
        """Create this bucket's indexes now.

        Uploads do this on their own, but only warn when it fails; this
        method raises :exc:`~gridstore.errors.IndexCreationFailed` instead.
        """
        await self._indexes.ensure_indexes()
