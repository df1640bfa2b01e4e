"""Tests for roost._internal.invoke — sync and async callables."""

import asyncio

import pytest

from roost._internal.invoke import invoke, needs_loop


class TestInvoke:
    @pytest.mark.anyio
    async def test_sync(self) -> None:
        assert await invoke(lambda a, b=0: a + b, 1, b=2) == 3

    @pytest.mark.anyio
    async def test_async(self) -> None:
        async def double(n: int) -> int:
            await asyncio.sleep(0)
            return n * 2

        assert await invoke(double, 21) == 42

    @pytest.mark.anyio
    async def test_sync_returning_future(self) -> None:
        future = asyncio.get_running_loop().create_future()
        future.set_result("ready")

        assert await invoke(lambda: future) == "ready"


class TestNeedsLoop:
    def test_plain_value(self) -> None:
        assert not needs_loop(True)

    def test_coroutine_is_closed(self) -> None:
        async def check() -> bool:
            return True

        coro = check()

        assert needs_loop(coro)
        assert coro.cr_frame is None
