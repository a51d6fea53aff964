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

"""GridFS is a convention for storing large objects in a document database.

The :mod:`gridstore` package is an asyncio implementation of GridFS on top of
any store offering the subset of PyMongo's collection API described in
:mod:`gridstore.store`: a real :mod:`pymongo` database, or the in-process
:class:`~gridstore.memory.MemoryDatabase`.
"""
from __future__ import annotations

from gridstore.bucket import AsyncGridFSBucket
from gridstore.errors import (
    BackingStoreError,
    CorruptGridFile,
    FileExists,
    GridFSError,
    IndexCreationFailed,
    InvalidArgument,
    NoFile,
)
from gridstore.grid_file import AsyncGridIn, AsyncGridOut, AsyncGridOutCursor
from gridstore.grid_file_shared import DEFAULT_CHUNK_SIZE
from gridstore.index import IndexManager
from gridstore.memory import MemoryDatabase
from gridstore.options import GridFSBucketOptions, GridFSFindOptions, GridFSUploadOptions

__all__ = [
    "AsyncGridFSBucket",
    "AsyncGridIn",
    "AsyncGridOut",
    "AsyncGridOutCursor",
    "BackingStoreError",
    "CorruptGridFile",
    "DEFAULT_CHUNK_SIZE",
    "FileExists",
    "GridFSBucketOptions",
    "GridFSError",
    "GridFSFindOptions",
    "GridFSUploadOptions",
    "IndexCreationFailed",
    "IndexManager",
    "InvalidArgument",
    "MemoryDatabase",
    "NoFile",
]
