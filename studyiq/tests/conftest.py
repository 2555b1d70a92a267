import random

import pytest

from studyiq.common.cache import MemoryCacheBackend
from studyiq.common.clock import ManualClock
from studyiq.common.config import AppConfig
from studyiq.domain.memory_repository import create_memory_store
from studyiq.service import create_service
from studyiq.tests.factories import NOW, seeded_data


@pytest.fixture
def clock():
    return ManualClock(NOW)


@pytest.fixture
def store():
    users, categories, questions, attempts = seeded_data()
    return create_memory_store(users=users, categories=categories, questions=questions, attempts=attempts)


@pytest.fixture
def empty_store():
    return create_memory_store()


@pytest.fixture
def app_config():
    return AppConfig()


@pytest.fixture
def cache_backend(clock):
    return MemoryCacheBackend(name="analytics", time_func=clock.timestamp)


@pytest.fixture
def service(app_config, store, cache_backend, clock):
    return create_service(
        config=app_config,
        store=store,
        cache_backend=cache_backend,
        clock=clock,
        rng=random.Random(42),
    )
