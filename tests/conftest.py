"""Shared fixtures: an in-memory forum with scripted responses."""

from datetime import datetime, timezone
from typing import Optional

import pytest

from thread_stream.errors import TransportError
from thread_stream.forums.base import BaseForum
from thread_stream.utils.logger import setup_logging
from thread_stream.models import (
    Endpoint,
    FlatBatch,
    ForumConfig,
    ListingOptions,
    Message,
    Node,
    Page,
    PendingExpansion,
    Post,
    Reply,
)

CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)


def reply(reply_id: str, parent_id: str, inline: FlatBatch = ()) -> Node:
    """Build a decoded reply node."""
    payload = Reply(
        id=reply_id,
        parent_id=parent_id,
        link_id="t3_X",
        author="tester",
        body=f"body of {reply_id}",
        created_utc=CREATED,
    )
    return Node(id=reply_id, parent_id=parent_id, payload=payload, inline_children=list(inline))


def stub(parent_id: str, *child_ids: str) -> PendingExpansion:
    return PendingExpansion(parent_id=parent_id, child_ids=list(child_ids), count=len(child_ids))


def post(post_id: str) -> Post:
    return Post(
        id=post_id,
        short_id=post_id.split("_", 1)[-1],
        title=f"title of {post_id}",
        author="tester",
        subreddit="test",
        created_utc=CREATED,
    )


def message(message_id: str) -> Message:
    return Message(id=message_id, subject=f"subject of {message_id}", created_utc=CREATED)


class ScriptedForum(BaseForum):
    """Forum whose responses are queued up front by the test.

    pages:     continuation token (None for the first page) -> Page
    batches:   tuple(child_ids) -> FlatBatch
    polls:     successive first pages returned to streams
    failures:  errors raised, in order, before the next successful call
    """

    def __init__(self):
        super().__init__(ForumConfig(name="scripted"), http_client=None)
        self.pages: dict[Optional[str], Page] = {}
        self.batches: dict[tuple[str, ...], FlatBatch] = {}
        self.threads: dict[str, tuple[Post, FlatBatch]] = {}
        self.polls: list[Page] = []
        self.failures: list[Exception] = []
        self.mark_read_failures = 0
        self.calls: list[tuple] = []

    def _maybe_fail(self):
        if self.failures:
            raise self.failures.pop(0)

    async def fetch_page(self, endpoint: Endpoint, continuation: Optional[str]) -> Page:
        self.calls.append(("fetch_page", endpoint.path, continuation))
        self._maybe_fail()
        if self.polls:
            return self.polls.pop(0)
        return self.pages[continuation]

    async def fetch_thread(self, thread_id: str, sort: Optional[str] = None):
        self.calls.append(("fetch_thread", thread_id, sort))
        self._maybe_fail()
        post_obj, batch = self.threads[thread_id]
        return post_obj, [unit.model_copy(deep=True) for unit in batch]

    async def fetch_batch(self, thread_id: str, parent_id: str, child_ids: list[str]) -> FlatBatch:
        self.calls.append(("fetch_batch", parent_id, tuple(child_ids)))
        self._maybe_fail()
        return self.batches[tuple(child_ids)]

    async def mark_read(self, fullname: str):
        self.calls.append(("mark_read", fullname))
        if self.mark_read_failures:
            self.mark_read_failures -= 1
            raise TransportError("HTTP 503", status=503)

    def listing_endpoint(self, community: str, sort: str, options: ListingOptions) -> Endpoint:
        return Endpoint(path=f"/r/{community}/{sort}", params=options.to_params())

    def inbox_endpoint(self, box: str, options: ListingOptions) -> Endpoint:
        return Endpoint(path=f"/message/{box}", params=options.to_params(), entity="message")


class FakeSleep:
    """Records requested sleeps instead of waiting."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)


@pytest.fixture(autouse=True, scope="session")
def _logging():
    setup_logging(level="DEBUG")


@pytest.fixture
def forum():
    return ScriptedForum()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


async def drain(iterator) -> list:
    return [item async for item in iterator]
