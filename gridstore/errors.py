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

"""Exceptions raised by the :mod:`gridstore` package"""
from __future__ import annotations

from typing import Any, Optional

from pymongo.errors import PyMongoError


class GridFSError(PyMongoError):
    """Base class for all GridFS exceptions."""


class CorruptGridFile(GridFSError):
    """Raised when a file in a :class:`~gridstore.AsyncGridFSBucket` is malformed.

    Missing, duplicated, truncated or extra chunks, and file entries with an
    invalid ``length`` or ``chunkSize``, all raise this error.
    """


class NoFile(GridFSError):
    """Raised when an id, filename or revision has no matching file entry."""


class FileExists(GridFSError):
    """Raised when trying to create a file with an id that is already in use."""


class InvalidArgument(GridFSError, ValueError):
    """Raised when an option, filter, chunk size or filename is invalid."""


class IndexCreationFailed(GridFSError):
    """Raised when a bucket's supporting indexes could not be listed or created.

    The original store error is available as ``__cause__``.
    """

    def __init__(self, message: str, collection: Optional[str] = None) -> None:
        super().__init__(message)
        self.__collection = collection

    @property
    def collection(self) -> Optional[str]:
        """The full name of the collection whose index failed."""
        return self.__collection


class BackingStoreError(GridFSError):
    """Raised when the backing store reports a failure.

    Wraps the original :class:`~pymongo.errors.PyMongoError` (available as
    ``__cause__``) and adds the context of the GridFS operation that issued
    the failing call.
    """

    def __init__(
        self,
        message: str,
        operation: str,
        collection: Optional[str] = None,
        file_id: Any = None,
    ) -> None:
        super().__init__(message)
        self.__operation = operation
        self.__collection = collection
        self.__file_id = file_id

    @property
    def operation(self) -> str:
        """The name of the store call that failed, e.g. ``"insert_many"``."""
        return self.__operation

    @property
    def collection(self) -> Optional[str]:
        """The full name of the collection the failing call addressed."""
        return self.__collection

    @property
    def file_id(self) -> Any:
        """The ``_id`` of the file involved, if any."""
        return self.__file_id

    @property
    def timeout(self) -> bool:
        cause = self.__cause__
        if isinstance(cause, PyMongoError):
            return cause.timeout
        return False
