"""Unit Tests für KeyedLock

Tests für src/helpers/keyed_lock.py
"""

import asyncio

from src.helpers.keyed_lock import KeyedLock


async def test_same_key_is_serialized():
    """Test: Read-Modify-Write auf denselben Key verliert keine Updates"""
    locks = KeyedLock("test")
    state = {"value": 0}

    async def increment():
        async with locks.hold("counter"):
            current = state["value"]
            await asyncio.sleep(0)
            state["value"] = current + 1

    await asyncio.gather(*(increment() for _ in range(50)))

    assert state["value"] == 50


async def test_different_keys_run_in_parallel():
    locks = KeyedLock("test")
    inside_a = asyncio.Event()
    release_a = asyncio.Event()

    async def hold_a():
        async with locks.hold("a"):
            inside_a.set()
            await release_a.wait()

    task = asyncio.create_task(hold_a())
    await inside_a.wait()

    assert locks.is_locked("a")
    async with locks.hold("b"):
        assert locks.is_locked("b")

    release_a.set()
    await task


async def test_entries_are_cleaned_up():
    locks = KeyedLock("test")

    async with locks.hold(("user-1", "header_analysis")):
        assert len(locks) == 1

    assert len(locks) == 0
    assert locks.is_locked(("user-1", "header_analysis")) is False


async def test_released_on_exception():
    locks = KeyedLock("test")

    try:
        async with locks.hold("k"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass

    assert len(locks) == 0
