from datetime import datetime, timezone

import pytest

from core.clock import FixedClock
from core.security import SINGLE_USER_ID
from engines.service import LeitnerService
from engines.types import ItemFields
from storage import MemoryDatabase

T0 = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


def word(source_text: str, target_text: str = "translation", **kwargs) -> ItemFields:
    return ItemFields(
        source_text=source_text,
        target_text=target_text,
        source_language=kwargs.pop("source_language", "en"),
        target_language=kwargs.pop("target_language", "es"),
        **kwargs,
    )


@pytest.fixture
def clock():
    return FixedClock(T0)


@pytest.fixture
def memory_db():
    return MemoryDatabase()


@pytest.fixture
def store(memory_db):
    return memory_db.session()


@pytest.fixture
def service(store, clock):
    return LeitnerService(store, clock)


@pytest.fixture
async def scope(service):
    return (await service.create_scope(SINGLE_USER_ID, "en", "es")).unwrap()
