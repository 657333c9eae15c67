"""Live polling streams with bounded de-duplication.

A stream polls the freshest page of some source at a fixed interval and
yields what it has not yielded recently, oldest first. Only the last few ids
are remembered, so a stream restarted by the caller, or an item that falls
out of the window and reappears, can be yielded again. Streams never end;
stop pulling to stop polling.
"""

import asyncio
from collections import deque
from typing import TYPE_CHECKING, Awaitable, Callable, Generic, Sequence, TypeVar

from ..errors import ThreadStreamError
from ..models import Endpoint, Message, Node, Post
from ..utils.logger import get_logger
from .comment_tree import ReplyTree

if TYPE_CHECKING:
    from ..forums.base import BaseForum

logger = get_logger("streams")

T = TypeVar("T")

DEFAULT_INTERVAL = 5.0
DEFAULT_CAPACITY = 10

Sleep = Callable[[float], Awaitable[None]]


class SeenWindow:
    """Fixed-capacity FIFO of recently yielded ids."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("SeenWindow capacity must be at least 1")
        self.capacity = capacity
        self._ids: deque[str] = deque(maxlen=capacity)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def push(self, item_id: str):
        """Record an id, evicting the oldest one when full."""
        self._ids.append(item_id)

    def ids(self) -> list[str]:
        return list(self._ids)


class PollingStream(Generic[T]):
    """Unbounded async iterator over newly seen items of a polled source.

    Args:
        poll: Coroutine function returning the freshest items, newest first.
        interval: Seconds to sleep before every poll.
        capacity: Size of the de-duplication window.
        sleep: Sleep primitive; swap it to drive the stream from another timer.
    """

    def __init__(
        self,
        poll: Callable[[], Awaitable[Sequence[T]]],
        interval: float = DEFAULT_INTERVAL,
        capacity: int = DEFAULT_CAPACITY,
        sleep: Sleep = asyncio.sleep,
    ):
        self._poll = poll
        self.interval = interval
        self.seen = SeenWindow(capacity)
        self._sleep = sleep
        self._batch: deque[T] = deque()

    @staticmethod
    def key(item: T) -> str:
        return item.id

    def __aiter__(self):
        return self

    async def __anext__(self) -> T:
        while True:
            while self._batch:
                item = self._batch[0]
                item_id = self.key(item)
                if item_id in self.seen:
                    self._batch.popleft()
                    continue
                # Stays queued until the hook completes, even if it is cancelled.
                await self._before_yield(item)
                self._batch.popleft()
                self.seen.push(item_id)
                return item
            await self._refill()

    async def _refill(self):
        await self._sleep(self.interval)
        items = await self._poll()
        # Newest first from the server; yield oldest first.
        self._batch.extend(reversed(list(items)))
        logger.debug("stream_polled", received=len(items))

    async def _before_yield(self, item: T):
        """Hook run before an item is yielded."""


class PostStream(PollingStream[Post]):
    """New posts of a listing, oldest first."""

    def __init__(self, forum: "BaseForum", endpoint: Endpoint, **kwargs):
        self.forum = forum
        self.endpoint = endpoint
        super().__init__(self._fetch_newest, **kwargs)

    async def _fetch_newest(self) -> list[Post]:
        page = await self.forum.fetch_page(self.endpoint, None)
        return page.items


class ReplyStream(PollingStream[Node]):
    """New replies to a thread, oldest first.

    Each poll rebuilds the thread sorted by new and keeps only the first
    `sample` replies of the breadth-first drain.
    """

    def __init__(self, forum: "BaseForum", thread_id: str, sample: int = 5, **kwargs):
        self.forum = forum
        self.thread_id = thread_id
        self.sample = sample
        super().__init__(self._fetch_newest, **kwargs)

    async def _fetch_newest(self) -> list[Node]:
        post, batch = await self.forum.fetch_thread(self.thread_id, sort="new")
        tree = ReplyTree(self.forum, post.id, post.id, batch)
        return await tree.take(self.sample)


class MessageStream(PollingStream[Message]):
    """Unread messages, oldest first, each marked read before it is yielded.

    Marking read is retried until it succeeds; the stream then waits one
    more interval before handing the message over.
    """

    def __init__(
        self,
        forum: "BaseForum",
        endpoint: Endpoint,
        retry_delay: float = 1.0,
        **kwargs,
    ):
        self.forum = forum
        self.endpoint = endpoint
        self.retry_delay = retry_delay
        super().__init__(self._fetch_newest, **kwargs)

    async def _fetch_newest(self) -> list[Message]:
        page = await self.forum.fetch_page(self.endpoint, None)
        return page.items

    async def _before_yield(self, item: Message):
        attempt = 0
        while True:
            attempt += 1
            try:
                await self.forum.mark_read(item.id)
                break
            except ThreadStreamError as e:
                logger.warning(
                    "mark_read_failed",
                    message_id=item.id,
                    attempt=attempt,
                    error=str(e),
                )
                await self._sleep(self.retry_delay)
        logger.debug("message_marked_read", message_id=item.id, attempts=attempt)
        await self._sleep(self.interval)
