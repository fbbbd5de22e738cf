"""Tests for the polling snapshot stream."""

from delphi_panels.services.snapshots import watch


class TestWatch:
    async def test_yields_first_poll_and_changes_only(self):
        states = iter([1, 1, 2, 2, 3])

        async def fetch():
            return next(states)

        stream = watch(fetch, interval=0)
        seen = [await stream.__anext__() for _ in range(3)]
        await stream.aclose()

        assert seen == [1, 2, 3]

    async def test_equal_dicts_are_not_repeated(self):
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            return {"unreadCount": 0 if calls < 3 else 1}

        stream = watch(fetch, interval=0)
        first = await stream.__anext__()
        second = await stream.__anext__()
        await stream.aclose()

        assert first == {"unreadCount": 0}
        assert second == {"unreadCount": 1}
        assert calls == 3
