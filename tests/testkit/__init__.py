"""
Testkit package for task monitor tests.

Provides an in-memory database pool and record factories.
"""
from .factories import RecordSeeder
from .fake_pool import FakeConnection, FakeDatabasePool

__all__ = [
    "RecordSeeder",
    "FakeConnection",
    "FakeDatabasePool",
]
