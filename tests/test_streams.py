"""Tests for the polling streams and their de-duplication window."""

import asyncio

import pytest

from thread_stream.errors import TransportError
from thread_stream.listings.streams import MessageStream, PollingStream, SeenWindow
from thread_stream.models import ListingOptions, Page

from conftest import message, post, reply


class _Item:
    def __init__(self, item_id):
        self.id = item_id


def _poller(*polls):
    """Coroutine function returning the given polls (newest first) in turn."""
    remaining = [list(p) for p in polls]

    async def poll():
        return [_Item(i) for i in remaining.pop(0)]

    return poll


async def _take(stream, n):
    return [(await stream.__anext__()).id for _ in range(n)]


class TestSeenWindow:
    def test_evicts_oldest_beyond_capacity(self):
        window = SeenWindow(capacity=10)
        for i in range(12):
            window.push(f"id{i}")

        assert len(window) == 10
        assert "id0" not in window
        assert "id1" not in window
        assert window.ids()[0] == "id2"
        assert "id11" in window

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            SeenWindow(capacity=0)


class TestPollingStream:
    async def test_yields_oldest_first_within_a_poll(self, fake_sleep):
        stream = PollingStream(_poller(["c", "b", "a"]), sleep=fake_sleep)

        assert await _take(stream, 3) == ["a", "b", "c"]
        assert fake_sleep.calls == [5.0]

    async def test_skips_items_seen_in_earlier_polls(self, fake_sleep):
        stream = PollingStream(_poller(["b", "a"], ["d", "c", "b", "a"]), sleep=fake_sleep)

        assert await _take(stream, 4) == ["a", "b", "c", "d"]
        assert fake_sleep.calls == [5.0, 5.0]

    async def test_keeps_polling_when_nothing_is_new(self, fake_sleep):
        stream = PollingStream(_poller(["a"], ["a"], [], ["b", "a"]), interval=2, sleep=fake_sleep)

        assert await _take(stream, 2) == ["a", "b"]
        assert fake_sleep.calls == [2, 2, 2, 2]

    async def test_item_reappears_only_after_ten_newer_ids(self, fake_sleep):
        first = [f"n{i}" for i in range(10, 0, -1)] + ["x"]
        stream = PollingStream(
            _poller(["x"], ["x"], first, ["x"]),
            sleep=fake_sleep,
        )

        assert await _take(stream, 1) == ["x"]
        # x is still inside the window, so the second poll yields nothing and
        # the third yields the ten newer ids; x has then been evicted.
        assert await _take(stream, 10) == [f"n{i}" for i in range(1, 11)]
        assert await _take(stream, 1) == ["x"]

    async def test_window_never_exceeds_capacity(self, fake_sleep):
        ids = [f"i{n}" for n in range(25)]
        stream = PollingStream(_poller(list(reversed(ids))), sleep=fake_sleep)

        await _take(stream, 25)

        assert len(stream.seen) == 10

    async def test_poll_failure_propagates_and_stream_continues(self, fake_sleep):
        calls = {"n": 0}

        async def flaky():
            calls["n"] += 1
            if calls["n"] == 1:
                raise TransportError("HTTP 503", status=503)
            return [_Item("a")]

        stream = PollingStream(flaky, sleep=fake_sleep)

        with pytest.raises(TransportError):
            await stream.__anext__()
        assert (await stream.__anext__()).id == "a"


class TestForumStreams:
    async def test_post_stream_polls_first_page(self, forum, fake_sleep):
        forum.polls = [
            Page(items=[post("t3_b"), post("t3_a")], continuation="t3_a"),
            Page(items=[post("t3_c"), post("t3_b")]),
        ]
        stream = forum.post_stream("test", sleep=fake_sleep)

        assert await _take(stream, 3) == ["t3_a", "t3_b", "t3_c"]
        assert all(call[2] is None for call in forum.calls)
        assert forum.calls[0][1] == "/r/test/new"

    async def test_reply_stream_samples_newest_replies(self, forum, fake_sleep):
        replies = [reply(f"t1_{n}", "t3_X") for n in "gfedcba"]
        forum.threads["X"] = (post("t3_X"), replies)
        stream = forum.reply_stream("X", sleep=fake_sleep)

        assert await _take(stream, 5) == ["t1_c", "t1_d", "t1_e", "t1_f", "t1_g"]
        assert forum.calls == [("fetch_thread", "X", "new")]


class TestMessageStream:
    async def test_marks_read_before_yielding(self, forum, fake_sleep):
        forum.polls = [Page(items=[message("t4_b"), message("t4_a")])]
        stream = forum.unread_stream(sleep=fake_sleep)

        first = await stream.__anext__()

        assert first.id == "t4_a"
        assert ("mark_read", "t4_a") in forum.calls
        assert ("mark_read", "t4_b") not in forum.calls
        # poll interval, then one more interval after marking read
        assert fake_sleep.calls == [5.0, 5.0]

    async def test_retries_mark_read_until_it_succeeds(self, forum, fake_sleep):
        forum.polls = [Page(items=[message("t4_a")])]
        forum.mark_read_failures = 3
        stream = MessageStream(
            forum,
            forum.inbox_endpoint("unread", ListingOptions(batch=5)),
            retry_delay=0.5,
            sleep=fake_sleep,
        )

        assert (await stream.__anext__()).id == "t4_a"
        assert forum.calls.count(("mark_read", "t4_a")) == 4
        assert fake_sleep.calls == [5.0, 0.5, 0.5, 0.5, 5.0]

    async def test_cancelled_wait_keeps_message_queued(self, forum):
        forum.polls = [Page(items=[message("t4_a")])]
        sleeps = []

        async def sleep(seconds):
            sleeps.append(seconds)
            # cancel the wait that follows the first successful mark
            if len(sleeps) == 2:
                raise asyncio.CancelledError

        stream = forum.unread_stream(sleep=sleep)

        with pytest.raises(asyncio.CancelledError):
            await stream.__anext__()
        assert (await stream.__anext__()).id == "t4_a"
        assert forum.calls.count(("mark_read", "t4_a")) == 2
        assert [c for c in forum.calls if c[0] == "fetch_page"] == [("fetch_page", "/message/unread", None)]
