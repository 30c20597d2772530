"""
Shared pytest fixtures for document store tests.
"""

import tempfile

import pytest
import pytest_asyncio

from treedb import Store
from treedb.models.index import IndexManager
from treedb.models.path import PathResolver
from treedb.models.tree import DocumentTree


class FakeClock:
    """Controllable epoch-millisecond clock."""

    def __init__(self, now: int) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that is cleaned up after test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def clock():
    return FakeClock(1_700_000_000_000)


@pytest_asyncio.fixture
async def store(temp_dir):
    """Provide a file-backed Store that is flushed and closed after the test."""
    async with Store(directory=temp_dir) as s:
        yield s


@pytest_asyncio.fixture
async def timed_store(temp_dir, clock):
    """Provide a Store driven by a FakeClock for TTL tests."""
    async with Store(directory=temp_dir, clock=clock) as s:
        yield s


@pytest.fixture
def resolver():
    return PathResolver(".")


@pytest.fixture
def tree(resolver):
    """Provide an empty DocumentTree indexing title and description."""
    return DocumentTree(resolver, IndexManager(("title", "description"), resolver))


@pytest.fixture
def users():
    return {
        "1": {"name": "Alice", "age": 25, "role": "admin"},
        "2": {"name": "Bob", "age": 30, "role": "user"},
        "3": {"name": "Carol", "age": 35, "role": "user", "email": "carol@example.com"},
    }
