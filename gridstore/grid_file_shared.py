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

"""Persisted schema of file entries and chunks, and helpers shared by readers and writers."""
from __future__ import annotations

import datetime
import math
import os
from typing import Any, Mapping, Optional

from bson.int64 import Int64
from pymongo import ASCENDING
from pymongo.common import MAX_MESSAGE_SIZE
from pymongo.errors import InvalidOperation

from gridstore.errors import CorruptGridFile

_SEEK_SET = os.SEEK_SET
_SEEK_CUR = os.SEEK_CUR
_SEEK_END = os.SEEK_END

EMPTY = b""
NEWLN = b"\n"

"""Default chunk size, in bytes."""
# Slightly under a power of 2, to work well with server's record allocations.
DEFAULT_CHUNK_SIZE = 255 * 1024
# The number of chunked bytes to buffer before calling insert_many.
_UPLOAD_BUFFER_SIZE = MAX_MESSAGE_SIZE
# The number of chunk documents to buffer before calling insert_many.
_UPLOAD_BUFFER_CHUNKS = 100000
# Rough BSON overhead of a chunk document not including the chunk data itself.
# Essentially len(encode({"_id": ObjectId(), "files_id": ObjectId(), "n": 1, "data": ""}))
_CHUNK_OVERHEAD = 60

# File entry fields.
F_ID = "_id"
F_LENGTH = "length"
F_CHUNK_SIZE = "chunkSize"
F_UPLOAD_DATE = "uploadDate"
F_FILENAME = "filename"
F_METADATA = "metadata"

# Chunk fields.
C_ID = "_id"
C_FILES_ID = "files_id"
C_N = "n"
C_DATA = "data"

_C_INDEX: dict[str, Any] = {C_FILES_ID: ASCENDING, C_N: ASCENDING}
_F_INDEX: dict[str, Any] = {F_FILENAME: ASCENDING, F_UPLOAD_DATE: ASCENDING}


def _num_chunks(length: int, chunk_size: int) -> int:
    """The number of chunks a file of `length` bytes is split into."""
    return math.ceil(float(length) / chunk_size)


def _chunk_document(files_id: Any, n: int, data: bytes) -> dict[str, Any]:
    """Build the chunk document for slice `n` of a file."""
    return {C_FILES_ID: files_id, C_N: n, C_DATA: data}


def _file_document(
    file_id: Any,
    filename: Optional[str],
    chunk_size: int,
    length: int,
    metadata: Optional[Mapping[str, Any]] = None,
    upload_date: Optional[datetime.datetime] = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build the file entry written once every chunk of a file is stored."""
    doc: dict[str, Any] = {
        F_ID: file_id,
        # GridFS stores length as an Int64.
        F_LENGTH: Int64(length),
        F_CHUNK_SIZE: chunk_size,
        F_UPLOAD_DATE: upload_date or datetime.datetime.now(tz=datetime.timezone.utc),
        F_FILENAME: filename,
    }
    if metadata is not None:
        doc[F_METADATA] = metadata
    doc.update(extra)
    return doc


def _check_file_document(file_doc: Mapping[str, Any]) -> tuple[int, int]:
    """Return a file entry's (length, chunkSize), raising CorruptGridFile if unusable."""
    # Protect against PHP-237
    length = file_doc.get(F_LENGTH, 0)
    chunk_size = file_doc.get(F_CHUNK_SIZE)
    try:
        length = int(length)
    except (TypeError, ValueError):
        raise CorruptGridFile(
            "file %r has a non-integer length %r" % (file_doc.get(F_ID), length)
        ) from None
    if length < 0:
        raise CorruptGridFile("file %r has a negative length %d" % (file_doc.get(F_ID), length))
    if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size <= 0:
        raise CorruptGridFile(
            "file %r has an invalid chunkSize %r" % (file_doc.get(F_ID), chunk_size)
        )
    return length, int(chunk_size)


def _a_grid_in_property(
    field_name: str,
    docstring: str,
    read_only: Optional[bool] = False,
    closed_only: Optional[bool] = False,
) -> Any:
    """Create an AsyncGridIn property."""

    def getter(self: Any) -> Any:
        if closed_only and not self._closed:
            raise AttributeError("can only get %r on a closed file" % field_name)
        if field_name == F_LENGTH:
            return self._file.get(field_name, 0)
        return self._file.get(field_name, None)

    def setter(self: Any, value: Any) -> Any:
        if self._closed:
            raise InvalidOperation(
                "AsyncGridIn does not support __setattr__ after being closed(). Set the "
                "attribute before closing the file or use AsyncGridIn.set() instead"
            )
        self._file[field_name] = value

    if read_only:
        docstring += "\n\nThis attribute is read-only."
    elif closed_only:
        docstring = "{}\n\n{}".format(
            docstring,
            "This attribute is read-only and "
            "can only be read after :meth:`close` "
            "has been called.",
        )

    if not read_only and not closed_only:
        return property(getter, setter, doc=docstring)
    return property(getter, doc=docstring)


def _a_grid_out_property(field_name: str, docstring: str) -> Any:
    """Create an AsyncGridOut property."""

    def a_getter(self: Any) -> Any:
        if not self._file:
            raise InvalidOperation(
                "You must call AsyncGridOut.open() before accessing the %s property" % field_name
            )
        if field_name == F_LENGTH:
            return self._file.get(field_name, 0)
        return self._file.get(field_name, None)

    docstring += "\n\nThis attribute is read-only."
    return property(a_getter, doc=docstring)
