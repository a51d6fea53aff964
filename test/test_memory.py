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

"""Tests for the in-memory backing store."""
from __future__ import annotations

import asyncio
from test import AsyncGridTestCase, unittest

from bson.objectid import ObjectId
from pymongo.errors import BulkWriteError, DuplicateKeyError, InvalidOperation, OperationFailure

from gridstore.memory import MemoryDatabase
from gridstore.store import AsyncStoreCollection, AsyncStoreCursor, AsyncStoreDatabase


class TestMemoryCollection(AsyncGridTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.coll = self.db.get_collection("things")
        await self.coll.insert_many(
            [
                {"_id": 1, "name": "a", "n": 3, "tags": ["x", "y"], "meta": {"kind": "img"}},
                {"_id": 2, "name": "b", "n": 1, "meta": {"kind": "doc"}},
                {"_id": 3, "name": "a", "n": 2},
            ]
        )

    def test_protocols(self):
        self.assertIsInstance(self.db, AsyncStoreDatabase)
        self.assertIsInstance(self.coll, AsyncStoreCollection)
        self.assertIsInstance(self.coll.find(), AsyncStoreCursor)

    def test_names(self):
        self.assertEqual("things", self.coll.name)
        self.assertEqual("gridstore_test.things", self.coll.full_name)
        self.assertEqual("fs.files", self.db.fs.files.name)
        self.assertEqual(self.db["fs.files"], self.db.fs.files)

    async def test_same_name_same_storage(self):
        await self.db.get_collection("fs.files").insert_one({"_id": 1})
        self.assertEqual(1, await self.db.fs.files.count_documents({}))
        self.assertEqual(["fs.files", "things"], await self.db.list_collection_names())

    async def test_find_filters(self):
        async def ids(filter):
            return [doc["_id"] async for doc in self.coll.find(filter, sort=[("_id", 1)])]

        self.assertEqual([1, 3], await ids({"name": "a"}))
        self.assertEqual([1, 3], await ids({"n": {"$gte": 2}}))
        self.assertEqual([2], await ids({"n": {"$lt": 2}}))
        self.assertEqual([1, 2], await ids({"_id": {"$in": [1, 2, 9]}}))
        self.assertEqual([3], await ids({"_id": {"$nin": [1, 2]}}))
        self.assertEqual([2, 3], await ids({"_id": {"$ne": 1}}))
        self.assertEqual([1, 2], await ids({"meta": {"$exists": True}}))
        self.assertEqual([3], await ids({"meta": {"$exists": False}}))
        self.assertEqual([1], await ids({"meta.kind": "img"}))
        self.assertEqual([1], await ids({"tags": "y"}))
        self.assertEqual([2, 3], await ids({"$or": [{"name": "b"}, {"n": 2}]}))
        self.assertEqual([3], await ids({"$and": [{"name": "a"}, {"n": {"$lte": 2}}]}))
        self.assertEqual([], await ids({"n": {"$gt": "a string"}}))

    async def test_unknown_operator(self):
        with self.assertRaises(OperationFailure):
            await self.coll.find({"n": {"$regex": "x"}}).next()

    async def test_sort_skip_limit(self):
        cursor = self.coll.find({}, sort=[("name", 1), ("n", -1)], skip=1, limit=2)
        self.assertEqual([3, 2], [doc["_id"] for doc in await cursor.to_list()])
        cursor = self.coll.find().sort("n", -1).skip(0).limit(-1)
        self.assertEqual([1], [doc["_id"] for doc in await cursor.to_list()])

    async def test_cursor_options_after_execute(self):
        cursor = self.coll.find()
        await cursor.next()
        with self.assertRaises(InvalidOperation):
            cursor.sort("n")
        with self.assertRaises(InvalidOperation):
            cursor.limit(1)

    async def test_cursor_close(self):
        cursor = self.coll.find()
        await cursor.next()
        await cursor.close()
        with self.assertRaises(StopAsyncIteration):
            await cursor.next()

    async def test_cursor_records_options(self):
        cursor = self.coll.find({}, batch_size=5, max_time_ms=100, no_cursor_timeout=True)
        self.assertEqual(5, cursor.batch_size_option)
        self.assertEqual(100, cursor.max_time_ms)
        self.assertTrue(cursor.no_cursor_timeout)

    async def test_results_are_copies(self):
        doc = await self.coll.find_one({"_id": 1})
        doc["meta"]["kind"] = "changed"
        self.assertEqual("img", (await self.coll.find_one(1))["meta"]["kind"])

    async def test_find_one_projection(self):
        self.assertEqual({"_id": 2}, await self.coll.find_one({"_id": 2}, projection={"_id": 1}))
        self.assertEqual({"name": "b"}, await self.coll.find_one(2, projection={"name": 1, "_id": 0}))
        self.assertIsNone(await self.coll.find_one({"_id": 42}))

    async def test_insert_one_generates_id(self):
        doc = {"x": 1}
        result = await self.coll.insert_one(doc)
        self.assertIsInstance(result.inserted_id, ObjectId)
        self.assertEqual(result.inserted_id, doc["_id"])

    async def test_duplicate_id(self):
        with self.assertRaises(DuplicateKeyError) as ctx:
            await self.coll.insert_one({"_id": 1})
        self.assertEqual(11000, ctx.exception.code)

    async def test_insert_many_ordered(self):
        with self.assertRaises(BulkWriteError) as ctx:
            await self.coll.insert_many([{"_id": 10}, {"_id": 1}, {"_id": 11}])
        details = ctx.exception.details
        self.assertEqual(1, details["nInserted"])
        self.assertEqual(11000, details["writeErrors"][0]["code"])
        self.assertEqual(1, details["writeErrors"][0]["index"])
        self.assertIsNotNone(await self.coll.find_one(10))
        self.assertIsNone(await self.coll.find_one(11))

    async def test_update_one(self):
        result = await self.coll.update_one({"name": "a"}, {"$set": {"name": "c", "meta.x": 1}})
        self.assertEqual(1, result.matched_count)
        self.assertEqual(1, result.modified_count)
        doc = await self.coll.find_one(1)
        self.assertEqual("c", doc["name"])
        self.assertEqual({"kind": "img", "x": 1}, doc["meta"])
        self.assertEqual("a", (await self.coll.find_one(3))["name"])

        await self.coll.update_one({"_id": 1}, {"$unset": {"meta": ""}})
        self.assertNotIn("meta", await self.coll.find_one(1))

        result = await self.coll.update_one({"_id": 42}, {"$set": {"name": "z"}})
        self.assertEqual(0, result.matched_count)

    async def test_update_requires_operators(self):
        with self.assertRaises(ValueError):
            await self.coll.update_one({"_id": 1}, {"name": "replaced"})

    async def test_delete(self):
        self.assertEqual(1, (await self.coll.delete_one({"name": "a"})).deleted_count)
        self.assertEqual(1, await self.coll.count_documents({"name": "a"}))
        self.assertEqual(2, (await self.coll.delete_many({})).deleted_count)
        self.assertEqual(0, await self.coll.count_documents({}))

    async def test_indexes(self):
        self.assertEqual([{"_id": 1}], [spec["key"] async for spec in await self.coll.list_indexes()])
        name = await self.coll.create_index([("name", 1), ("n", 1)], unique=True)
        self.assertEqual("name_1_n_1", name)
        keys = [spec["key"] async for spec in await self.coll.list_indexes()]
        self.assertIn({"name": 1, "n": 1}, keys)
        # Same index again is a no-op.
        self.assertEqual(name, await self.coll.create_index([("name", 1), ("n", 1)], unique=True))
        with self.assertRaises(DuplicateKeyError):
            await self.coll.insert_one({"name": "a", "n": 3})

    async def test_create_unique_index_over_duplicates(self):
        with self.assertRaises(DuplicateKeyError):
            await self.coll.create_index("name", unique=True)
        keys = [spec["key"] async for spec in await self.coll.list_indexes()]
        self.assertEqual([{"_id": 1}], keys)

    async def test_index_name_conflict(self):
        await self.coll.create_index([("name", 1)], name="idx")
        with self.assertRaises(OperationFailure) as ctx:
            await self.coll.create_index([("n", 1)], name="idx")
        self.assertEqual(86, ctx.exception.code)

    async def test_drop(self):
        await self.coll.create_index("name")
        await self.coll.drop()
        await self.coll.drop()
        self.assertEqual(0, await self.coll.count_documents({}))
        self.assertEqual([{"_id": 1}], [spec["key"] async for spec in await self.coll.list_indexes()])


class TestMemoryConcurrency(unittest.IsolatedAsyncioTestCase):
    async def test_operations_interleave(self):
        coll = MemoryDatabase().get_collection("c")
        order = []

        async def writer(tag):
            for i in range(3):
                await coll.insert_one({"tag": tag, "i": i})
                order.append(tag)

        await asyncio.gather(writer("a"), writer("b"))
        self.assertEqual(6, await coll.count_documents({}))
        self.assertNotEqual(["a", "a", "a", "b", "b", "b"], order)


if __name__ == "__main__":
    unittest.main()
