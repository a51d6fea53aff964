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

"""Tests for the persisted GridFS schema helpers."""
from __future__ import annotations

import datetime
from test import unittest

from bson.int64 import Int64
from bson.objectid import ObjectId

from gridstore.errors import CorruptGridFile
from gridstore.grid_file_shared import (
    DEFAULT_CHUNK_SIZE,
    _check_file_document,
    _chunk_document,
    _file_document,
    _num_chunks,
)


class TestSchema(unittest.TestCase):
    def test_default_chunk_size(self):
        self.assertEqual(261120, DEFAULT_CHUNK_SIZE)

    def test_num_chunks(self):
        self.assertEqual(0, _num_chunks(0, 4))
        self.assertEqual(1, _num_chunks(1, 4))
        self.assertEqual(1, _num_chunks(4, 4))
        self.assertEqual(2, _num_chunks(5, 4))
        self.assertEqual(11, _num_chunks(10 * 255 + 37, 255))

    def test_chunk_document(self):
        oid = ObjectId()
        self.assertEqual({"files_id": oid, "n": 3, "data": b"abc"}, _chunk_document(oid, 3, b"abc"))

    def test_file_document(self):
        oid = ObjectId()
        doc = _file_document(oid, "name", 4, 10)
        self.assertEqual(oid, doc["_id"])
        self.assertIsInstance(doc["length"], Int64)
        self.assertEqual(10, doc["length"])
        self.assertEqual(4, doc["chunkSize"])
        self.assertEqual("name", doc["filename"])
        self.assertNotIn("metadata", doc)
        self.assertIsInstance(doc["uploadDate"], datetime.datetime)
        self.assertEqual(datetime.timezone.utc, doc["uploadDate"].tzinfo)

    def test_file_document_metadata_and_extra(self):
        doc = _file_document(1, "name", 4, 0, metadata={"contentType": "text/plain"}, encoding="utf-8")
        self.assertEqual({"contentType": "text/plain"}, doc["metadata"])
        self.assertEqual("utf-8", doc["encoding"])

    def test_check_file_document(self):
        self.assertEqual((10, 4), _check_file_document({"_id": 1, "length": Int64(10), "chunkSize": 4}))
        self.assertEqual((0, 4), _check_file_document({"_id": 1, "chunkSize": 4}))

    def test_check_file_document_invalid(self):
        for doc in (
            {"_id": 1, "length": -1, "chunkSize": 4},
            {"_id": 1, "length": "ten", "chunkSize": 4},
            {"_id": 1, "length": 10, "chunkSize": 0},
            {"_id": 1, "length": 10, "chunkSize": True},
            {"_id": 1, "length": 10},
        ):
            with self.assertRaises(CorruptGridFile):
                _check_file_document(doc)


if __name__ == "__main__":
    unittest.main()
