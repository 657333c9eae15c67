"""Lazy, forward-only iteration over a paginated listing.

Pages are fetched only when the local buffer runs dry. Iterating a very long
listing such as /new never stops on its own; use `take(n)` to bound it.
"""

from collections import deque
from typing import TYPE_CHECKING, Generic, Optional, TypeVar

from ..errors import ExhaustedListing
from ..models import Endpoint, Page
from ..utils.logger import get_logger

if TYPE_CHECKING:
    from ..forums.base import BaseForum

logger = get_logger("paginator")

T = TypeVar("T")


class Listing(Generic[T]):
    """Async iterator over every item of a listing, page after page.

    Items are yielded in exactly the order the server returned them. When
    the buffer is empty and there is no continuation token the iteration
    ends; that is never an error.
    """

    def __init__(self, forum: "BaseForum", endpoint: Endpoint, page: Page[T]):
        self.forum = forum
        self.endpoint = endpoint
        self._buffer: deque[T] = deque(page.items)
        self._after: Optional[str] = page.continuation
        self._before: Optional[str] = page.before

    @classmethod
    async def open(cls, forum: "BaseForum", endpoint: Endpoint) -> "Listing[T]":
        """Fetch the first page and return a listing positioned at its start."""
        page = await forum.fetch_page(endpoint, None)
        return cls(forum, endpoint, page)

    @property
    def after(self) -> Optional[str]:
        return self._after

    @property
    def before(self) -> Optional[str]:
        return self._before

    async def fetch_after(self) -> Page[T]:
        """Fetch the page following the current continuation token.

        Raises:
            ExhaustedListing: There is no continuation token.
        """
        if self._after is None:
            raise ExhaustedListing(f"No page after the end of {self.endpoint.path}")
        page = await self.forum.fetch_page(self.endpoint, self._after)
        logger.debug(
            "page_fetched",
            path=self.endpoint.path,
            after=self._after,
            count=len(page.items),
            next_after=page.continuation,
        )
        return page

    def __aiter__(self):
        return self

    async def __anext__(self) -> T:
        while not self._buffer:
            if self._after is None:
                raise StopAsyncIteration
            # State changes only after a successful fetch.
            page = await self.fetch_after()
            self._buffer.extend(page.items)
            self._after = page.continuation
        return self._buffer.popleft()

    async def take(self, n: int) -> list[T]:
        """Collect at most n items."""
        items: list[T] = []
        while len(items) < n:
            try:
                items.append(await self.__anext__())
            except StopAsyncIteration:
                break
        return items
