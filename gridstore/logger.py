# Copyright 2023-present MongoDB, Inc.
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
from __future__ import annotations

import enum
import logging
import os
from typing import Any

from bson import UuidRepresentation, json_util
from bson.json_util import JSONOptions


class _GridFSMessage(str, enum.Enum):
    UPLOAD_SUCCEEDED = "Upload succeeded"
    UPLOAD_FAILED = "Upload failed"
    DOWNLOAD_OPENED = "Download opened"
    CORRUPT_FILE = "Corrupt file detected"
    FILE_DELETED = "File deleted"
    FILE_RENAMED = "File renamed"
    BUCKET_DROPPED = "Bucket dropped"
    INDEX_CREATED = "Index created"
    INDEX_FAILED = "Index creation failed"


_DEFAULT_DOCUMENT_LENGTH = 1000
_JSON_OPTIONS = JSONOptions(uuid_representation=UuidRepresentation.STANDARD)
_BUCKET_LOGGER = logging.getLogger("gridstore.bucket")
_UPLOAD_LOGGER = logging.getLogger("gridstore.upload")
_DOWNLOAD_LOGGER = logging.getLogger("gridstore.download")
_INDEX_LOGGER = logging.getLogger("gridstore.index")


def _debug_log(logger: logging.Logger, **fields: Any) -> None:
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(LogMessage(**fields))


def _warning_log(logger: logging.Logger, **fields: Any) -> None:
    if logger.isEnabledFor(logging.WARNING):
        logger.warning(LogMessage(**fields))


def _max_document_length() -> int:
    try:
        length = int(os.getenv("GRIDSTORE_LOG_MAX_DOCUMENT_LENGTH", _DEFAULT_DOCUMENT_LENGTH))
    except ValueError:
        return _DEFAULT_DOCUMENT_LENGTH
    if length < 0:
        return _DEFAULT_DOCUMENT_LENGTH
    return length


class LogMessage:
    __slots__ = ["_kwargs"]

    def __init__(self, **kwargs: Any):
        self._kwargs = kwargs

        if "message" in self._kwargs and isinstance(self._kwargs["message"], _GridFSMessage):
            self._kwargs["message"] = self._kwargs["message"].value
        if "durationMS" in self._kwargs:
            self._kwargs["durationMS"] = self._kwargs["durationMS"].total_seconds() * 1000
        if "fileId" in self._kwargs and self._kwargs["fileId"] is None:
            del self._kwargs["fileId"]

    def __str__(self) -> str:
        self._truncate()
        return "%s" % (
            json_util.dumps(
                self._kwargs, json_options=_JSON_OPTIONS, default=lambda o: o.__repr__()
            )
        )

    def _truncate(self) -> None:
        document_length = _max_document_length()
        for name, value in self._kwargs.items():
            if isinstance(value, (str, int, float, bool)) or value is None:
                continue
            doc = json_util.dumps(value, json_options=_JSON_OPTIONS, default=lambda o: o.__repr__())
            if len(doc) > document_length:
                doc = doc[:document_length] + "..."
            self._kwargs[name] = doc
