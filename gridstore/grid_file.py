# Copyright 2009-present MongoDB, Inc.
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

"""Tools for representing files stored in GridFS."""
from __future__ import annotations

import datetime
import inspect
import io
import time
import warnings
from collections import abc
from typing import Any, Iterable, Mapping, NoReturn, Optional

from bson.objectid import ObjectId
from pymongo.errors import BulkWriteError, DuplicateKeyError, InvalidOperation

from gridstore.errors import CorruptGridFile, FileExists, IndexCreationFailed, InvalidArgument, NoFile
from gridstore.grid_file_shared import (
    _CHUNK_OVERHEAD,
    _SEEK_CUR,
    _SEEK_END,
    _SEEK_SET,
    _UPLOAD_BUFFER_CHUNKS,
    _UPLOAD_BUFFER_SIZE,
    C_DATA,
    C_FILES_ID,
    C_N,
    DEFAULT_CHUNK_SIZE,
    EMPTY,
    F_CHUNK_SIZE,
    F_FILENAME,
    F_ID,
    F_LENGTH,
    F_METADATA,
    F_UPLOAD_DATE,
    NEWLN,
    _a_grid_in_property,
    _a_grid_out_property,
    _check_file_document,
    _chunk_document,
    _file_document,
    _num_chunks,
)
from gridstore.index import IndexManager
from gridstore.logger import (
    _DOWNLOAD_LOGGER,
    _UPLOAD_LOGGER,
    _debug_log,
    _GridFSMessage,
    _warning_log,
)
from gridstore.options import GridFSFindOptions, validate_chunk_size
from gridstore.store import (
    AsyncStoreCollection,
    AsyncStoreCursor,
    _is_duplicate_key_error,
    _translate_errors,
)


class AsyncGridIn:
    """Class to write data to GridFS."""

    def __init__(
        self,
        files: AsyncStoreCollection,
        chunks: AsyncStoreCollection,
        index_manager: Optional[IndexManager] = None,
        check_exists: bool = False,
        **kwargs: Any,
    ) -> None:
        """Write a file to GridFS

        Application developers should generally not need to
        instantiate this class directly - instead see the methods
        provided by :class:`~gridstore.AsyncGridFSBucket`.

        Any additional keyword arguments will be set as additional fields
        on the file entry. Valid keyword arguments include:

          - ``"_id"``: unique ID for this file (default:
            :class:`~bson.objectid.ObjectId`) - this ``"_id"`` must
            not have already been used for another file

          - ``"filename"``: human name for the file

          - ``"chunkSize"`` or ``"chunk_size"``: size of each of the
            chunks, in bytes (default: 255 kb)

          - ``"metadata"``: user data for the file entry

          - ``"encoding"``: encoding used for this file. Any :class:`str`
            that is written to the file will be converted to :class:`bytes`.

        :param files: the file entry collection
        :param chunks: the chunk collection
        :param index_manager: ensures the indexes before chunks or the file
            entry are written, again after the bucket was dropped
        :param check_exists: reject the upload with
            :exc:`~gridstore.errors.FileExists` if ``_id`` already has a file
            entry or chunks
        :param kwargs: file level options (see above)
        """
        if "chunk_size" in kwargs:
            kwargs[F_CHUNK_SIZE] = kwargs.pop("chunk_size")

        # Defaults
        kwargs[F_ID] = kwargs.get(F_ID, ObjectId())
        kwargs[F_CHUNK_SIZE] = validate_chunk_size(
            "chunk_size", kwargs.get(F_CHUNK_SIZE, DEFAULT_CHUNK_SIZE)
        )
        object.__setattr__(self, "_files", files)
        object.__setattr__(self, "_chunks", chunks)
        object.__setattr__(self, "_indexes", index_manager)
        object.__setattr__(self, "_check_exists", check_exists)
        object.__setattr__(self, "_file", kwargs)
        object.__setattr__(self, "_buffer", io.BytesIO())
        object.__setattr__(self, "_position", 0)
        object.__setattr__(self, "_chunk_number", 0)
        object.__setattr__(self, "_chunks_written", 0)
        object.__setattr__(self, "_closed", False)
        object.__setattr__(self, "_entry_written", False)
        object.__setattr__(self, "_index_failed", False)
        object.__setattr__(self, "_checked_exists", False)
        object.__setattr__(self, "_buffered_docs", [])
        object.__setattr__(self, "_buffered_docs_size", 0)
        object.__setattr__(self, "_started", time.monotonic())

    async def _ensure_indexes(self) -> None:
        # Checked before every write: a drop() resets the shared manager.
        if self._indexes is None or self._indexes.ensured or self._index_failed:
            return
        try:
            await self._indexes.ensure_indexes()
        except IndexCreationFailed as exc:
            # Keep uploading without the indexes.
            object.__setattr__(self, "_index_failed", True)
            warnings.warn(
                f"GridFS upload is proceeding without indexes: {exc}",
                RuntimeWarning,
                stacklevel=3,
            )

    async def _ensure_new_id(self) -> None:
        """Reject the upload if its ``_id`` is already in use."""
        if not self._check_exists or self._checked_exists:
            return
        file_id = self._file[F_ID]
        with _translate_errors("find_one", self._files, file_id):
            existing = await self._files.find_one({F_ID: file_id}, projection={F_ID: 1})
        if existing is None:
            with _translate_errors("find_one", self._chunks, file_id):
                existing = await self._chunks.find_one({C_FILES_ID: file_id}, projection={F_ID: 1})
        if existing is not None:
            self._raise_file_exists(file_id)
        object.__setattr__(self, "_checked_exists", True)

    async def abort(self) -> None:
        """Remove all chunks that may have been uploaded and close.

        Only possible before the file entry has been written.
        """
        if self._entry_written:
            raise InvalidOperation("cannot abort a file that has already been uploaded")
        file_id = self._file[F_ID]
        self._buffered_docs = []
        self._buffered_docs_size = 0
        with _translate_errors("delete_many", self._chunks, file_id):
            await self._chunks.delete_many({C_FILES_ID: file_id})
        object.__setattr__(self, "_closed", True)

    @property
    def closed(self) -> bool:
        """Is this file closed?"""
        return self._closed

    _id: Any = _a_grid_in_property(F_ID, "The ``'_id'`` value for this file.", read_only=True)
    filename: Optional[str] = _a_grid_in_property(F_FILENAME, "Name of this file.")
    name: Optional[str] = _a_grid_in_property(F_FILENAME, "Alias for `filename`.")
    metadata: Optional[Mapping[str, Any]] = _a_grid_in_property(
        F_METADATA, "Metadata attached to this file."
    )
    length: int = _a_grid_in_property(F_LENGTH, "Length (in bytes) of this file.", closed_only=True)
    chunk_size: int = _a_grid_in_property(F_CHUNK_SIZE, "Chunk size for this file.", read_only=True)
    upload_date: datetime.datetime = _a_grid_in_property(
        F_UPLOAD_DATE, "Date that this file was uploaded.", closed_only=True
    )

    _buffer: io.BytesIO
    _closed: bool
    _buffered_docs: list[dict[str, Any]]
    _buffered_docs_size: int

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_") and name != F_ID:
            return object.__getattribute__(self, name)
        elif name in self._file:
            return self._file[name]
        raise AttributeError("GridIn object has no attribute '%s'" % name)

    def __setattr__(self, name: str, value: Any) -> None:
        # For properties of this instance like _buffer, or descriptors set on
        # the class like filename, use regular __setattr__
        if name in self.__dict__ or name in self.__class__.__dict__:
            object.__setattr__(self, name, value)
        else:
            # All other attributes are part of the file entry.
            if self._closed:
                raise AttributeError(
                    "AsyncGridIn does not support __setattr__ after being closed(). Set the "
                    "attribute before closing the file or use AsyncGridIn.set() instead"
                )
            self._file[name] = value

    async def set(self, name: str, value: Any) -> None:
        """Set a field of the file entry, updating the stored entry if closed."""
        if name in (F_ID, F_LENGTH, F_CHUNK_SIZE):
            raise InvalidOperation("cannot change the %r field of a file" % name)
        self._file[name] = value
        if self._entry_written:
            file_id = self._file[F_ID]
            with _translate_errors("update_one", self._files, file_id):
                await self._files.update_one({F_ID: file_id}, {"$set": {name: value}})

    async def _flush_data(self, data: Any, force: bool = False) -> None:
        """Flush `data` to a chunk."""
        await self._ensure_indexes()
        await self._ensure_new_id()
        assert len(data) <= self.chunk_size
        if data:
            self._buffered_docs.append(_chunk_document(self._file[F_ID], self._chunk_number, data))
            self._buffered_docs_size += len(data) + _CHUNK_OVERHEAD
            self._chunk_number += 1
            self._position += len(data)
        if not self._buffered_docs:
            return
        # Limit to 100,000 chunks or 32MB (+1 chunk) of data.
        if (
            force
            or self._buffered_docs_size >= _UPLOAD_BUFFER_SIZE
            or len(self._buffered_docs) >= _UPLOAD_BUFFER_CHUNKS
        ):
            await self._insert_chunks()

    async def _insert_chunks(self) -> None:
        file_id = self._file[F_ID]
        docs = self._buffered_docs
        self._buffered_docs = []
        self._buffered_docs_size = 0
        try:
            with _translate_errors("insert_many", self._chunks, file_id):
                try:
                    await self._chunks.insert_many(docs, ordered=True)
                except BulkWriteError as exc:
                    if _is_duplicate_key_error(exc.details):
                        self._raise_file_exists(file_id)
                    raise
                except DuplicateKeyError:
                    self._raise_file_exists(file_id)
        except BaseException:
            _warning_log(
                _UPLOAD_LOGGER,
                message=_GridFSMessage.UPLOAD_FAILED,
                fileId=file_id,
                collection=getattr(self._chunks, "full_name", None),
                chunksWritten=self._chunks_written,
            )
            raise
        self._chunks_written += len(docs)

    async def _flush_buffer(self, force: bool = False) -> None:
        """Flush the buffer contents out to a chunk."""
        await self._flush_data(self._buffer.getvalue(), force=force)
        self._buffer.close()
        self._buffer = io.BytesIO()

    async def _flush(self) -> Any:
        """Flush the file to the database."""
        await self._flush_buffer(force=True)
        # Empty files never reach _flush_data with a chunk.
        await self._ensure_indexes()
        await self._ensure_new_id()
        extra = {
            k: v
            for k, v in self._file.items()
            if k not in (F_ID, F_FILENAME, F_CHUNK_SIZE, F_LENGTH, F_METADATA, F_UPLOAD_DATE)
        }
        self._file.update(
            _file_document(
                self._file[F_ID],
                self._file.get(F_FILENAME),
                self.chunk_size,
                self._position,
                metadata=self._file.get(F_METADATA),
                **extra,
            )
        )
        file_id = self._file[F_ID]
        with _translate_errors("insert_one", self._files, file_id):
            try:
                result = await self._files.insert_one(self._file)
            except DuplicateKeyError:
                self._raise_file_exists(file_id)
        object.__setattr__(self, "_entry_written", True)
        _debug_log(
            _UPLOAD_LOGGER,
            message=_GridFSMessage.UPLOAD_SUCCEEDED,
            fileId=file_id,
            filename=self._file.get(F_FILENAME),
            length=self._position,
            chunkSize=self.chunk_size,
            chunks=self._chunk_number,
            durationMS=datetime.timedelta(seconds=time.monotonic() - self._started),
        )
        return result

    def _raise_file_exists(self, file_id: Any) -> NoReturn:
        """Raise a FileExists exception for the given file_id."""
        raise FileExists("file with _id %r already exists" % file_id)

    async def close(self) -> None:
        """Flush the file and close it.

        A closed file cannot be written any more. Calling
        :meth:`close` more than once is allowed.
        """
        if not self._closed:
            try:
                await self._flush()
            finally:
                object.__setattr__(self, "_closed", True)

    def read(self, size: int = -1) -> NoReturn:
        raise io.UnsupportedOperation("read")

    def readable(self) -> bool:
        return False

    def seekable(self) -> bool:
        return False

    async def write(self, data: Any) -> None:
        """Write data to the file. There is no return value.

        `data` can be a string of bytes, a file-like object (implementing
        a sync or async :meth:`read`), or an iterable or async iterable of
        :class:`bytes` blocks. If the file has an :attr:`encoding`
        attribute, `data` can also be a :class:`str` instance, which will
        be encoded as :attr:`encoding` before being written.

        Due to buffering, the data may not actually be written to the
        database until the :meth:`close` method is called. Raises
        :class:`ValueError` if this file is already closed. Raises
        :class:`TypeError` if `data` is not one of the types above.

        :param data: data to be written to the file
        """
        if self._closed:
            raise ValueError("cannot write to a closed file")

        if isinstance(data, (bytes, bytearray, memoryview)):
            await self._write_bytes(data)
            return
        if isinstance(data, str):
            await self._write_bytes(self._encode(data))
            return

        read = getattr(data, "read", None)
        if read is not None:
            if inspect.iscoroutinefunction(read):
                await self._write_async(read)
            else:
                await self._write_sync(read)
        elif isinstance(data, abc.AsyncIterable):
            async for block in data:
                await self.write(block)
        elif isinstance(data, abc.Iterable):
            for block in data:
                await self.write(block)
        else:
            raise TypeError("can only write bytes, strings, iterables or file-like objects")

    def _encode(self, data: str) -> bytes:
        try:
            return data.encode(self._file["encoding"])
        except KeyError:
            raise TypeError("must specify an encoding for file in order to write str") from None

    async def _write_bytes(self, data: Any) -> None:
        view = memoryview(data).cast("B")
        if self._buffer.tell() > 0:
            # Make sure to flush only when _buffer is complete
            space = self.chunk_size - self._buffer.tell()
            self._buffer.write(view[:space])
            view = view[space:]
            if self._buffer.tell() < self.chunk_size:
                return
            await self._flush_buffer()
        while len(view) >= self.chunk_size:
            await self._flush_data(bytes(view[: self.chunk_size]))
            view = view[self.chunk_size :]
        self._buffer.write(view)

    async def _write_sync(self, read: Any) -> None:
        # A short read is not EOF, only an empty one is.
        while True:
            to_write = read(self.chunk_size - self._buffer.tell())
            if not to_write:
                return
            await self._write_bytes(to_write)

    async def _write_async(self, read: Any) -> None:
        while True:
            to_write = await read(self.chunk_size - self._buffer.tell())
            if not to_write:
                return
            await self._write_bytes(to_write)

    async def writelines(self, sequence: Iterable[Any]) -> None:
        """Write a sequence of strings to the file.

        Does not add separators.
        """
        for line in sequence:
            await self.write(line)

    def writeable(self) -> bool:
        return True

    async def __aenter__(self) -> AsyncGridIn:
        """Support for the context manager protocol."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> Any:
        """Support for the context manager protocol.

        Close the file if no exceptions occur and allow exceptions to propagate.
        """
        if exc_type is None:
            # No exceptions happened.
            await self.close()
        else:
            # Something happened, at minimum mark as closed.
            object.__setattr__(self, "_closed", True)

        # propagate exceptions
        return False


class AsyncGridOut:
    """Class to read data out of GridFS."""

    def __init__(
        self,
        files: AsyncStoreCollection,
        chunks: AsyncStoreCollection,
        file_id: Optional[Any] = None,
        file_document: Optional[Any] = None,
    ) -> None:
        """Read a file from GridFS

        Application developers should generally not need to
        instantiate this class directly - instead see the methods
        provided by :class:`~gridstore.AsyncGridFSBucket`.

        Either `file_id` or `file_document` must be specified,
        `file_document` will be given priority if present.

        :param files: the file entry collection
        :param chunks: the chunk collection
        :param file_id: value of ``"_id"`` for the file to read
        :param file_document: file entry from `files`
        """
        if file_document is not None:
            _check_file_document(file_document)

        self._chunks = chunks
        self._files = files
        self._file_id = file_id
        self._buffer = EMPTY
        # Start position within the current buffered chunk.
        self._buffer_pos = 0
        self._chunk_iter: Optional[_AsyncGridOutChunkIterator] = None
        # Position within the total file.
        self._position = 0
        self._file = file_document
        self.closed = False

    _id: Any = _a_grid_out_property(F_ID, "The ``'_id'`` value for this file.")
    filename: str = _a_grid_out_property(F_FILENAME, "Name of this file.")
    name: str = _a_grid_out_property(F_FILENAME, "Alias for `filename`.")
    length: int = _a_grid_out_property(F_LENGTH, "Length (in bytes) of this file.")
    chunk_size: int = _a_grid_out_property(F_CHUNK_SIZE, "Chunk size for this file.")
    upload_date: datetime.datetime = _a_grid_out_property(
        F_UPLOAD_DATE, "Date that this file was first uploaded."
    )
    metadata: Optional[Mapping[str, Any]] = _a_grid_out_property(
        F_METADATA, "Metadata attached to this file."
    )

    _file: Any

    async def open(self) -> None:
        """Fetch the file entry.

        Raises :exc:`~gridstore.errors.NoFile` if there is none and
        :exc:`~gridstore.errors.CorruptGridFile` if it is unusable.
        """
        if not self._file:
            with _translate_errors("find_one", self._files, self._file_id):
                file_doc = await self._files.find_one({F_ID: self._file_id})
            if not file_doc:
                raise NoFile(
                    f"no file in gridfs collection {getattr(self._files, 'full_name', self._files)!r}"
                    f" with _id {self._file_id!r}"
                )
            _check_file_document(file_doc)
            self._file = file_doc
            _debug_log(
                _DOWNLOAD_LOGGER,
                message=_GridFSMessage.DOWNLOAD_OPENED,
                fileId=self._file_id,
                length=int(file_doc.get(F_LENGTH, 0)),
                chunkSize=file_doc.get(F_CHUNK_SIZE),
            )

    @property
    def file_document(self) -> Optional[Mapping[str, Any]]:
        """The file entry, or ``None`` before :meth:`open`."""
        return self._file

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError("GridOut object has no attribute '%s'" % name)
        if not self._file:
            raise InvalidOperation(
                "You must call AsyncGridOut.open() before accessing the %s property" % name
            )
        if name in self._file:
            return self._file[name]
        raise AttributeError("GridOut object has no attribute '%s'" % name)

    def readable(self) -> bool:
        return True

    async def readchunk(self) -> bytes:
        """Reads a chunk at a time. If the current position is within a
        chunk the remainder of the chunk is returned.
        """
        await self.open()
        received = len(self._buffer) - self._buffer_pos
        chunk_data = EMPTY
        chunk_size = int(self.chunk_size)

        if received > 0:
            chunk_data = self._buffer[self._buffer_pos :]
        elif self._position < int(self.length):
            chunk_number = int((received + self._position) / chunk_size)
            if self._chunk_iter is None:
                self._chunk_iter = _AsyncGridOutChunkIterator(self, self._chunks, chunk_number)

            chunk = await self._chunk_iter.next()
            chunk_data = chunk[C_DATA][self._position % chunk_size :]

            if not chunk_data:
                raise CorruptGridFile("truncated chunk")

        self._position += len(chunk_data)
        self._buffer = EMPTY
        self._buffer_pos = 0
        return bytes(chunk_data)

    async def _check_extra_chunks(self) -> None:
        """Detect extra chunks after reading the entire file."""
        if self._chunk_iter is None and self._position >= int(self.length):
            # Nothing was read through a cursor, e.g. an empty file.
            self._chunk_iter = _AsyncGridOutChunkIterator(
                self, self._chunks, _num_chunks(int(self.length), int(self.chunk_size))
            )
        if self._chunk_iter:
            try:
                await self._chunk_iter.next()
            except StopAsyncIteration:
                pass

    async def _read_size_or_line(self, size: int = -1, line: bool = False) -> bytes:
        """Internal read() and readline() helper."""
        await self.open()
        remainder = int(self.length) - self._position
        if size < 0 or size > remainder:
            size = remainder

        if size == 0:
            if remainder == 0:
                await self._check_extra_chunks()
            return EMPTY

        received = 0
        data = []
        while received < size:
            needed = size - received
            if self._buffer:
                # Optimization: Read the buffer with zero byte copies.
                buf = self._buffer
                chunk_start = self._buffer_pos
                chunk_data = memoryview(buf)[self._buffer_pos :]
                self._buffer = EMPTY
                self._buffer_pos = 0
                self._position += len(chunk_data)
            else:
                buf = await self.readchunk()
                chunk_start = 0
                chunk_data = memoryview(buf)
            if line:
                pos = buf.find(NEWLN, chunk_start, chunk_start + needed) - chunk_start
                if pos >= 0:
                    # Decrease size to exit the loop.
                    size = received + pos + 1
                    needed = pos + 1
            if len(chunk_data) > needed:
                data.append(chunk_data[:needed])
                # Optimization: Save the buffer with zero byte copies.
                self._buffer = buf
                self._buffer_pos = chunk_start + needed
                self._position -= len(self._buffer) - self._buffer_pos
            else:
                data.append(chunk_data)
            received += len(chunk_data)

        if size == remainder:
            await self._check_extra_chunks()

        return b"".join(data)

    async def read(self, size: int = -1) -> bytes:
        """Read at most `size` bytes from the file (less if there
        isn't enough data).

        The bytes are returned as an instance of :class:`bytes`
        If `size` is negative or omitted all data is read.

        :param size: the number of bytes to read
        """
        return await self._read_size_or_line(size=size)

    async def readline(self, size: int = -1) -> bytes:
        """Read one line or up to `size` bytes from the file.

        :param size: the maximum number of bytes to read
        """
        return await self._read_size_or_line(size=size, line=True)

    def tell(self) -> int:
        """Return the current position of this file."""
        return self._position

    async def seek(self, pos: int, whence: int = _SEEK_SET) -> int:
        """Set the current position of this file.

        :param pos: the position (or offset if using relative
           positioning) to seek to
        :param whence: where to seek
           from. :attr:`os.SEEK_SET` (``0``) for absolute file
           positioning, :attr:`os.SEEK_CUR` (``1``) to seek relative
           to the current position, :attr:`os.SEEK_END` (``2``) to
           seek relative to the file's end.
        """
        await self.open()
        if whence == _SEEK_SET:
            new_pos = pos
        elif whence == _SEEK_CUR:
            new_pos = self._position + pos
        elif whence == _SEEK_END:
            new_pos = int(self.length) + pos
        else:
            raise OSError(22, "Invalid value for `whence`")

        if new_pos < 0:
            raise OSError(22, "Invalid value for `pos` - must be positive")

        # Optimization, continue using the same buffer and chunk iterator.
        if new_pos == self._position:
            return new_pos

        self._position = new_pos
        self._buffer = EMPTY
        self._buffer_pos = 0
        if self._chunk_iter:
            await self._chunk_iter.close()
            self._chunk_iter = None
        return new_pos

    def seekable(self) -> bool:
        return True

    def __aiter__(self) -> AsyncGridOut:
        """Return an iterator over the rest of this file's data, one
        chunk-sized :class:`bytes` buffer at a time.

        The iterator raises :class:`~gridstore.errors.CorruptGridFile` as
        soon as it encounters any truncated, missing, or extra chunk.
        """
        return self

    async def __anext__(self) -> bytes:
        chunk = await self.readchunk()
        if chunk:
            return chunk
        await self._check_extra_chunks()
        raise StopAsyncIteration()

    async def to_list(self) -> list[bytes]:
        return [x async for x in self]  # noqa: C416, RUF100

    async def close(self) -> None:
        """Make GridOut more generically file-like."""
        if self._chunk_iter:
            await self._chunk_iter.close()
            self._chunk_iter = None
        self.closed = True

    def write(self, value: Any) -> NoReturn:
        raise io.UnsupportedOperation("write")

    def writelines(self, lines: Any) -> NoReturn:
        raise io.UnsupportedOperation("writelines")

    def writable(self) -> bool:
        return False

    async def __aenter__(self) -> AsyncGridOut:
        """Makes it possible to use :class:`AsyncGridOut` files
        with the async context manager protocol.
        """
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> Any:
        """Makes it possible to use :class:`AsyncGridOut` files
        with the async context manager protocol.
        """
        await self.close()
        return False


class _AsyncGridOutChunkIterator:
    """Iterates over a file's chunks using a single cursor.

    Raises CorruptGridFile when encountering any truncated, missing, or extra
    chunk in a file.
    """

    def __init__(
        self,
        grid_out: AsyncGridOut,
        chunks: AsyncStoreCollection,
        next_chunk: Any,
    ) -> None:
        self._id = grid_out._id
        self._chunk_size = int(grid_out.chunk_size)
        self._length = int(grid_out.length)
        self._chunks = chunks
        self._next_chunk = next_chunk
        self._num_chunks = _num_chunks(self._length, self._chunk_size)
        self._cursor: Optional[AsyncStoreCursor] = None

    def expected_chunk_length(self, chunk_n: int) -> int:
        if chunk_n < self._num_chunks - 1:
            return self._chunk_size
        return self._length - (self._chunk_size * (self._num_chunks - 1))

    def __aiter__(self) -> _AsyncGridOutChunkIterator:
        return self

    def _create_cursor(self) -> None:
        filter: dict[str, Any] = {C_FILES_ID: self._id}
        if self._next_chunk > 0:
            filter[C_N] = {"$gte": self._next_chunk}
        with _translate_errors("find", self._chunks, self._id):
            self._cursor = self._chunks.find(filter, sort=[(C_N, 1)])

    async def _corrupt(self, msg: str) -> NoReturn:
        await self.close()
        _warning_log(
            _DOWNLOAD_LOGGER,
            message=_GridFSMessage.CORRUPT_FILE,
            fileId=self._id,
            failure=msg,
        )
        raise CorruptGridFile(msg)

    async def next(self) -> Mapping[str, Any]:
        if self._cursor is None:
            self._create_cursor()
            assert self._cursor is not None
        try:
            with _translate_errors("find", self._chunks, self._id):
                chunk = await self._cursor.next()
        except StopAsyncIteration:
            if self._next_chunk >= self._num_chunks:
                raise
            await self._corrupt("no chunk #%d" % self._next_chunk)

        if chunk[C_N] != self._next_chunk:
            await self._corrupt(
                "Missing chunk: expected chunk #%d but found "
                "chunk with n=%d" % (self._next_chunk, chunk[C_N])
            )

        if chunk[C_N] >= self._num_chunks:
            # Empty extra chunks are ignored.
            if len(chunk[C_DATA]):
                await self._corrupt(
                    "Extra chunk found: expected %d chunks but found "
                    "chunk with n=%d" % (self._num_chunks, chunk[C_N])
                )
            self._next_chunk += 1
            return await self.next()

        expected_length = self.expected_chunk_length(chunk[C_N])
        if len(chunk[C_DATA]) != expected_length:
            await self._corrupt(
                "truncated chunk #%d: expected chunk length to be %d but "
                "found chunk with length %d" % (chunk[C_N], expected_length, len(chunk[C_DATA]))
            )

        self._next_chunk += 1
        return chunk

    __anext__ = next

    async def close(self) -> None:
        if self._cursor:
            cursor, self._cursor = self._cursor, None
            with _translate_errors("close", self._chunks, self._id):
                await cursor.close()


class AsyncGridOutCursor:
    """A cursor / iterator for returning GridOut objects as the result
    of an arbitrary query against the GridFS files collection.
    """

    def __init__(
        self,
        files: AsyncStoreCollection,
        chunks: AsyncStoreCollection,
        filter: Optional[Mapping[str, Any]] = None,
        options: Optional[GridFSFindOptions] = None,
    ) -> None:
        """Create a new cursor over file entries.

        Should not be called directly by application developers - see
        the :class:`~gridstore.AsyncGridFSBucket` method
        :meth:`~gridstore.AsyncGridFSBucket.find` instead.
        """
        if filter is not None and not isinstance(filter, abc.Mapping):
            raise InvalidArgument("filter must be a mapping, not %r" % type(filter).__name__)
        options = options or GridFSFindOptions()
        self._files = files
        self._chunks = chunks
        with _translate_errors("find", files, query=True):
            self._cursor = files.find(dict(filter or {}), **options.to_find_kwargs())

    async def next(self) -> AsyncGridOut:
        """Get next GridOut object from cursor."""
        with _translate_errors("find", self._files, query=True):
            next_file = await self._cursor.next()
        return AsyncGridOut(self._files, self._chunks, file_document=next_file)

    __anext__ = next

    def __aiter__(self) -> AsyncGridOutCursor:
        return self

    async def to_list(self, length: Optional[int] = None) -> list[AsyncGridOut]:
        """Convert the cursor to a list."""
        if length is None:
            return [x async for x in self]  # noqa: C416,RUF100
        if length < 1:
            raise ValueError("to_list() length must be greater than 0")
        ret = []
        for _ in range(length):
            try:
                ret.append(await self.next())
            except StopAsyncIteration:
                break
        return ret

    async def close(self) -> None:
        with _translate_errors("close", self._files):
            await self._cursor.close()

    async def __aenter__(self) -> AsyncGridOutCursor:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
