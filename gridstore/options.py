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

"""Tools for specifying GridFS bucket, upload and find options."""
from __future__ import annotations

from collections import abc, namedtuple
from typing import Any, Callable, Mapping, Optional, Union

from pymongo import ASCENDING, DESCENDING
from pymongo.common import (
    validate_boolean,
    validate_is_mapping,
    validate_non_negative_integer,
    validate_positive_integer,
    validate_string,
)
from pymongo.errors import ConfigurationError
from pymongo.read_concern import ReadConcern
from pymongo.read_preferences import _ServerMode
from pymongo.write_concern import WriteConcern

from gridstore.errors import InvalidArgument
from gridstore.grid_file_shared import DEFAULT_CHUNK_SIZE

_Sort = Union[str, list[tuple[str, int]], Mapping[str, int], None]


def _validate(validator: Callable[[str, Any], Any], option: str, value: Any) -> Any:
    """Run a :mod:`pymongo.common` validator, raising InvalidArgument."""
    try:
        return validator(option, value)
    except (TypeError, ValueError, ConfigurationError) as exc:
        raise InvalidArgument(str(exc)) from exc


def validate_chunk_size(option: str, value: Any) -> int:
    """Validate that `value` is a usable chunk size: a positive int."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgument(f"{option} must be an integer, not {type(value).__name__}")
    return _validate(validate_positive_integer, option, value)


def _sort_list(sort: _Sort) -> Optional[list[tuple[str, int]]]:
    """Normalize a sort argument to a list of (key, direction) pairs."""
    if sort is None:
        return None
    if isinstance(sort, str):
        items: list[Any] = [(sort, ASCENDING)]
    elif isinstance(sort, abc.Mapping):
        items = list(sort.items())
    elif isinstance(sort, (list, tuple)):
        items = list(sort)
    else:
        raise InvalidArgument(
            "sort must be a key name, a list of (key, direction) pairs or a mapping"
        )
    normalized = []
    for item in items:
        if isinstance(item, str):
            item = (item, ASCENDING)
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            raise InvalidArgument(f"invalid sort key {item!r}")
        key, direction = item
        if not isinstance(key, str):
            raise InvalidArgument(f"sort key must be a string, not {key!r}")
        if direction not in (ASCENDING, DESCENDING):
            raise InvalidArgument(f"sort direction must be 1 or -1, not {direction!r}")
        normalized.append((key, direction))
    return normalized


_bucket_options_base = namedtuple(
    "GridFSBucketOptions",
    ("bucket_name", "chunk_size_bytes", "write_concern", "read_concern", "read_preference"),
)


class GridFSBucketOptions(_bucket_options_base):
    """Configuration shared by every operation on one bucket.

    :param bucket_name: The name of the bucket. Determines the collection
        names ``"{bucket_name}.files"`` and ``"{bucket_name}.chunks"``.
        Defaults to ``"fs"``.
    :param chunk_size_bytes: The default chunk size in bytes. Defaults
        to 255KB.
    :param write_concern: The :class:`~pymongo.write_concern.WriteConcern`
        passed to the backing store. Must be acknowledged. If ``None`` (the
        default) the database's write concern is used.
    :param read_concern: The :class:`~pymongo.read_concern.ReadConcern`
        passed to the backing store. If ``None`` the database's is used.
    :param read_preference: The read preference passed to the backing store.
        If ``None`` the database's is used.
    """

    bucket_name: str
    chunk_size_bytes: int
    write_concern: Optional[WriteConcern]
    read_concern: Optional[ReadConcern]
    read_preference: Optional[_ServerMode]

    def __new__(
        cls,
        bucket_name: str = "fs",
        chunk_size_bytes: int = DEFAULT_CHUNK_SIZE,
        write_concern: Optional[WriteConcern] = None,
        read_concern: Optional[ReadConcern] = None,
        read_preference: Optional[_ServerMode] = None,
    ) -> GridFSBucketOptions:
        _validate(validate_string, "bucket_name", bucket_name)
        if not bucket_name:
            raise InvalidArgument("bucket_name must not be empty")
        validate_chunk_size("chunk_size_bytes", chunk_size_bytes)
        if write_concern is not None:
            if not isinstance(write_concern, WriteConcern):
                raise InvalidArgument("write_concern must be an instance of WriteConcern")
            if not write_concern.acknowledged:
                raise InvalidArgument("write concern must be acknowledged")
        if read_concern is not None and not isinstance(read_concern, ReadConcern):
            raise InvalidArgument("read_concern must be an instance of ReadConcern")
        if read_preference is not None and not isinstance(read_preference, _ServerMode):
            raise InvalidArgument("read_preference must be a read preference mode")
        return tuple.__new__(
            cls, (bucket_name, chunk_size_bytes, write_concern, read_concern, read_preference)
        )

    @property
    def files_collection(self) -> str:
        """The full name of the file entry collection."""
        return f"{self.bucket_name}.files"

    @property
    def chunks_collection(self) -> str:
        """The full name of the chunk collection."""
        return f"{self.bucket_name}.chunks"

    def with_options(self, **kwargs: Any) -> GridFSBucketOptions:
        """Make a copy of this GridFSBucketOptions, overriding some options::

            >>> opts = GridFSBucketOptions()
            >>> opts.with_options(bucket_name="images").files_collection
            'images.files'
        """
        opts = self._asdict()
        opts.update(kwargs)
        return GridFSBucketOptions(**opts)

    def __repr__(self) -> str:
        return (
            "GridFSBucketOptions(bucket_name=%r, chunk_size_bytes=%r, write_concern=%r, "
            "read_concern=%r, read_preference=%r)" % tuple(self)
        )


_upload_options_base = namedtuple("GridFSUploadOptions", ("chunk_size_bytes", "metadata"))


class GridFSUploadOptions(_upload_options_base):
    """Per-upload options.

    :param chunk_size_bytes: Overrides the bucket's chunk size for this
        file only.
    :param metadata: User data stored in the ``metadata`` field of the file
        entry. Omitted from the entry when ``None``.
    """

    chunk_size_bytes: Optional[int]
    metadata: Optional[Mapping[str, Any]]

    def __new__(
        cls,
        chunk_size_bytes: Optional[int] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> GridFSUploadOptions:
        if chunk_size_bytes is not None:
            validate_chunk_size("chunk_size_bytes", chunk_size_bytes)
        if metadata is not None:
            _validate(validate_is_mapping, "metadata", metadata)
        return tuple.__new__(cls, (chunk_size_bytes, metadata))

    def with_options(self, **kwargs: Any) -> GridFSUploadOptions:
        opts = self._asdict()
        opts.update(kwargs)
        return GridFSUploadOptions(**opts)


_find_options_base = namedtuple(
    "GridFSFindOptions",
    ("batch_size", "limit", "max_time_ms", "no_cursor_timeout", "skip", "sort"),
)


class GridFSFindOptions(_find_options_base):
    """Options for :meth:`~gridstore.AsyncGridFSBucket.find`.

    :param batch_size: The number of documents to return per batch.
        ``0`` lets the store decide.
    :param limit: The maximum number of documents to return. ``0`` means
        no limit.
    :param max_time_ms: The maximum amount of time, in milliseconds, the
        store may spend on the query.
    :param no_cursor_timeout: Ask the store not to time out idle cursors.
    :param skip: The number of documents to skip before returning.
    :param sort: The order by which to sort results: a key name, a list
        of ``(key, direction)`` pairs or a mapping. Defaults to no sort.
    """

    batch_size: int
    limit: int
    max_time_ms: Optional[int]
    no_cursor_timeout: bool
    skip: int
    sort: Optional[list[tuple[str, int]]]

    def __new__(
        cls,
        batch_size: int = 0,
        limit: int = 0,
        max_time_ms: Optional[int] = None,
        no_cursor_timeout: bool = False,
        skip: int = 0,
        sort: _Sort = None,
    ) -> GridFSFindOptions:
        batch_size = _validate(validate_non_negative_integer, "batch_size", batch_size)
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise InvalidArgument("limit must be an integer")
        if max_time_ms is not None:
            max_time_ms = _validate(validate_non_negative_integer, "max_time_ms", max_time_ms)
        no_cursor_timeout = _validate(validate_boolean, "no_cursor_timeout", no_cursor_timeout)
        skip = _validate(validate_non_negative_integer, "skip", skip)
        return tuple.__new__(
            cls, (batch_size, limit, max_time_ms, no_cursor_timeout, skip, _sort_list(sort))
        )

    def with_options(self, **kwargs: Any) -> GridFSFindOptions:
        opts = self._asdict()
        opts.update(kwargs)
        return GridFSFindOptions(**opts)

    def to_find_kwargs(self) -> dict[str, Any]:
        """The keyword arguments to pass to a collection's ``find``."""
        kwargs: dict[str, Any] = {
            "skip": self.skip,
            "limit": self.limit,
            "batch_size": self.batch_size,
            "no_cursor_timeout": self.no_cursor_timeout,
        }
        if self.sort is not None:
            kwargs["sort"] = self.sort
        if self.max_time_ms is not None:
            kwargs["max_time_ms"] = self.max_time_ms
        return kwargs


DEFAULT_BUCKET_OPTIONS = GridFSBucketOptions()
