"""Tests for concord/lanes.py."""

import asyncio

import pytest

from concord.lanes import BackendLanes


async def _hold(lanes: BackendLanes, identity: str, log: list[str], tag: str, release: asyncio.Event) -> None:
    async with lanes.hold(identity):
        log.append(f"{tag} start")
        await release.wait()
        log.append(f"{tag} end")


async def test_same_identity_is_serialized_in_fifo_order():
    lanes = BackendLanes()
    release = asyncio.Event()
    log: list[str] = []

    first = asyncio.create_task(_hold(lanes, "cli:claude", log, "a", release))
    await asyncio.sleep(0)
    second = asyncio.create_task(_hold(lanes, "cli:claude", log, "b", release))
    await asyncio.sleep(0)

    assert log == ["a start"]

    release.set()
    await asyncio.gather(first, second)

    assert log == ["a start", "a end", "b start", "b end"]


async def test_different_identities_run_concurrently():
    lanes = BackendLanes()
    release = asyncio.Event()
    log: list[str] = []

    tasks = [
        asyncio.create_task(_hold(lanes, "openai", log, "a", release)),
        asyncio.create_task(_hold(lanes, "gemini", log, "b", release)),
    ]
    await asyncio.sleep(0)

    assert sorted(log) == ["a start", "b start"]

    release.set()
    await asyncio.gather(*tasks)


async def test_lane_is_released_on_error():
    lanes = BackendLanes()

    with pytest.raises(RuntimeError):
        async with lanes.hold("openai"):
            raise RuntimeError("boom")

    async with asyncio.timeout(1):
        async with lanes.hold("openai"):
            pass
