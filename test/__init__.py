# Copyright 2010-present MongoDB, Inc.
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

"""Test suite for gridstore."""
from __future__ import annotations

import os
import unittest
from typing import Any

from gridstore.memory import MemoryDatabase

MONGODB_URI = os.environ.get("GRIDSTORE_MONGODB_URI")


class AsyncGridTestCase(unittest.IsolatedAsyncioTestCase):
    """Base class for tests that run against a fresh in-memory database."""

    db: MemoryDatabase

    async def asyncSetUp(self) -> None:
        self.db = MemoryDatabase("gridstore_test")

    async def cleanup_colls(self, *collections: Any) -> None:
        for c in collections:
            await c.drop()


__all__ = ["AsyncGridTestCase", "MONGODB_URI", "unittest"]
