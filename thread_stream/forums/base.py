"""Abstract base class for forum transports.

A forum turns HTTP+JSON into decoded pages, reply batches and side effects.
The listing, tree and stream iterators depend only on this contract.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..errors import NotSupported
from ..listings.comment_tree import ReplyTree
from ..listings.paginator import Listing
from ..listings.streams import MessageStream, PostStream, ReplyStream
from ..models import Endpoint, FlatBatch, ForumConfig, ListingOptions, Page, Post, StreamConfig


class BaseForum(ABC):
    """Base class that all forum implementations must extend."""

    def __init__(self, config: ForumConfig, http_client, streams: Optional[StreamConfig] = None):
        self.config = config
        self.name = config.name
        self.http = http_client
        self.streams = streams or StreamConfig()

    # ── Transport contract ────────────────────────────────────────

    @abstractmethod
    async def fetch_page(self, endpoint: Endpoint, continuation: Optional[str]) -> Page:
        """Fetch one page of a flat listing.

        Args:
            endpoint: The listing to fetch.
            continuation: Token returned by the previous page, or None for
                the first page.
        """

    @abstractmethod
    async def fetch_thread(self, thread_id: str, sort: Optional[str] = None) -> tuple[Post, FlatBatch]:
        """Fetch a thread and its first batch of replies and stubs."""

    @abstractmethod
    async def fetch_batch(self, thread_id: str, parent_id: str, child_ids: list[str]) -> FlatBatch:
        """Fetch the replies named by a stub, in one request."""

    @abstractmethod
    async def mark_read(self, fullname: str):
        """Mark a message as read so it leaves the unread queue."""

    @abstractmethod
    def listing_endpoint(self, community: str, sort: str, options: ListingOptions) -> Endpoint:
        """Endpoint for a community listing sorted by `sort`."""

    @abstractmethod
    def inbox_endpoint(self, box: str, options: ListingOptions) -> Endpoint:
        """Endpoint for a message box (inbox, unread, ...)."""

    def submissions_endpoint(self, username: str, options: ListingOptions) -> Endpoint:
        """Endpoint for the posts a user submitted, newest first."""
        raise NotSupported("submissions", f"{type(self).__name__} has no user listings")

    # ── Iterators ─────────────────────────────────────────────────

    async def listing(self, community: str, sort: str = "hot", options: ListingOptions = None) -> Listing[Post]:
        return await Listing.open(self, self.listing_endpoint(community, sort, options or ListingOptions()))

    async def submissions(self, username: str, options: ListingOptions = None) -> Listing[Post]:
        return await Listing.open(self, self.submissions_endpoint(username, options or ListingOptions()))

    async def replies(self, thread_id: str, sort: Optional[str] = None) -> ReplyTree:
        """All replies of a thread, expanding stubs as they are reached."""
        post, batch = await self.fetch_thread(thread_id, sort=sort)
        return ReplyTree(self, post.id, post.id, batch)

    async def inbox(self, options: ListingOptions = None) -> Listing:
        return await Listing.open(self, self.inbox_endpoint("inbox", options or ListingOptions()))

    async def unread(self, options: ListingOptions = None) -> Listing:
        return await Listing.open(self, self.inbox_endpoint("unread", options or ListingOptions()))

    def post_stream(self, community: str, **kwargs) -> PostStream:
        endpoint = self.listing_endpoint(community, "new", ListingOptions())
        return PostStream(self, endpoint, **self._stream_kwargs(kwargs))

    def reply_stream(self, thread_id: str, **kwargs) -> ReplyStream:
        kwargs.setdefault("sample", self.streams.reply_sample)
        return ReplyStream(self, thread_id, **self._stream_kwargs(kwargs))

    def unread_stream(self, **kwargs) -> MessageStream:
        endpoint = self.inbox_endpoint("unread", ListingOptions(batch=self.streams.message_batch))
        kwargs.setdefault("retry_delay", self.streams.mark_read_retry_delay)
        return MessageStream(self, endpoint, **self._stream_kwargs(kwargs))

    def _stream_kwargs(self, kwargs: dict) -> dict:
        kwargs.setdefault("interval", self.streams.poll_interval)
        kwargs.setdefault("capacity", self.streams.seen_capacity)
        return kwargs

    def __repr__(self):
        return f"{self.__class__.__name__}(name={self.name!r})"
