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

"""Run the bucket against a real MongoDB deployment.

Set GRIDSTORE_MONGODB_URI to enable, e.g. mongodb://localhost:27017.
"""
from __future__ import annotations

import os
from io import BytesIO
from test import MONGODB_URI, unittest

from bson.objectid import ObjectId

from gridstore import AsyncGridFSBucket
from gridstore.errors import FileExists, NoFile


@unittest.skipUnless(MONGODB_URI, "GRIDSTORE_MONGODB_URI is not set")
class TestMongoIntegration(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        from pymongo import AsyncMongoClient

        self.client = AsyncMongoClient(MONGODB_URI)
        self.db = self.client.get_database("gridstore_integration")
        self.fs = AsyncGridFSBucket(self.db, bucket_name="it_%s" % ObjectId())

    async def asyncTearDown(self):
        await self.fs.drop()
        await self.client.close()

    async def test_round_trip(self):
        data = os.urandom(3 * 1024 + 17)
        oid = await self.fs.upload_from_stream("it", BytesIO(data), chunk_size_bytes=1024)
        self.assertEqual(4, await self.fs.chunks.count_documents({"files_id": oid}))
        self.assertEqual(data, await (await self.fs.open_download_stream(oid)).read())
        self.assertEqual(data, await (await self.fs.open_download_stream_by_name("it")).read())

    async def test_indexes(self):
        await self.fs.upload_from_stream("it", b"x")
        chunk_keys = [dict(spec["key"]) async for spec in await self.fs.chunks.list_indexes()]
        file_keys = [dict(spec["key"]) async for spec in await self.fs.files.list_indexes()]
        self.assertIn({"files_id": 1, "n": 1}, chunk_keys)
        self.assertIn({"filename": 1, "uploadDate": 1}, file_keys)

    async def test_duplicate_id(self):
        await self.fs.upload_from_stream_with_id(1, "it", b"one")
        with self.assertRaises(FileExists):
            await self.fs.upload_from_stream_with_id(1, "it", b"two")

    async def test_delete_and_rename(self):
        oid = await self.fs.upload_from_stream("it", b"hello", chunk_size_bytes=2)
        await self.fs.rename(oid, "renamed")
        self.assertEqual(["renamed"], [g.filename async for g in self.fs.find({})])
        await self.fs.delete(oid)
        self.assertEqual(0, await self.fs.chunks.count_documents({}))
        with self.assertRaises(NoFile):
            await self.fs.open_download_stream(oid)


if __name__ == "__main__":
    unittest.main()
