"""Data models for thread-stream."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Generic, Optional, TypeVar, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from .errors import NotSupported

T = TypeVar("T")


# ── Configuration ─────────────────────────────────────────────────


class ForumConfig(BaseModel):
    """Connection settings for the forum API."""

    name: str = "reddit"
    type: str = "reddit"
    url: str = "https://api.reddit.com"
    oauth_url: str = "https://oauth.reddit.com"
    user_agent: str = "linux:thread-stream:v0.1.0"
    access_token: Optional[str] = None
    requests_per_minute: int = 60
    max_retries: int = 1
    timeout: int = 30

    @field_validator("access_token", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        if v == "":
            return None
        return v


class StreamConfig(BaseModel):
    """Polling behaviour for the live streams."""

    poll_interval: float = 5.0  # seconds
    seen_capacity: int = 10
    mark_read_retry_delay: float = 1.0
    reply_sample: int = 5
    message_batch: int = 5


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = False


class AppConfig(BaseModel):
    """Complete application configuration."""

    forum: ForumConfig = Field(default_factory=ForumConfig)
    streams: StreamConfig = Field(default_factory=StreamConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    listing_batch: int = 25


# ── Listing requests ──────────────────────────────────────────────


class TimeFilter(str, Enum):
    """Time window for the top and controversial listings."""

    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"


class ListingAnchor(BaseModel):
    """Anchors pagination before or after a given fullname."""

    before: Optional[str] = None
    after: Optional[str] = None

    @model_validator(mode="after")
    def only_one_side(self):
        if self.before and self.after:
            raise ValueError("a listing can be anchored before or after an item, not both")
        return self


class ListingOptions(BaseModel):
    """Configures a paginated listing.

    `batch` is the page size sent as `limit`. Larger batches mean fewer
    requests for long listings.
    """

    batch: int = Field(default=25, ge=1, le=100)
    anchor: ListingAnchor = Field(default_factory=ListingAnchor)
    time: Optional[TimeFilter] = None

    def to_params(self) -> dict[str, str]:
        params = {"limit": str(self.batch)}
        if self.anchor.before:
            params["before"] = self.anchor.before
        if self.anchor.after:
            params["after"] = self.anchor.after
        if self.time is not None:
            params["t"] = self.time.value
        return params


class Endpoint(BaseModel):
    """A listing endpoint: path, base query parameters and the entity decoder to use."""

    path: str
    params: dict[str, str] = Field(default_factory=dict)
    entity: str = "post"

    def with_continuation(self, continuation: Optional[str]) -> dict[str, str]:
        params = {k: v for k, v in self.params.items() if k not in ("after", "before")}
        if continuation is None:
            params.update({k: v for k, v in self.params.items() if k in ("after", "before")})
        else:
            params["after"] = continuation
        return params


class Page(BaseModel, Generic[T]):
    """One fetched page of a flat listing."""

    items: list[T] = Field(default_factory=list)
    continuation: Optional[str] = None
    before: Optional[str] = None


# ── Entities ──────────────────────────────────────────────────────


class Post(BaseModel):
    """A top-level post (kind t3)."""

    id: str  # fullname, e.g. "t3_4te6jf"
    short_id: str
    title: str
    author: str
    subreddit: str
    body: str = ""
    url: Optional[str] = None
    permalink: str = ""
    score: int = 0
    num_comments: int = 0
    created_utc: datetime
    nsfw: bool = False
    stickied: bool = False
    locked: bool = False
    is_self_post: bool = False


class Reply(BaseModel):
    """A threaded reply (kind t1)."""

    id: str
    parent_id: str
    link_id: str
    author: str
    body: str = ""
    score: int = 0
    created_utc: datetime
    stickied: bool = False
    distinguished: Optional[str] = None
    edited: bool = False


class Message(BaseModel):
    """A private message or inbox notification (kind t4, or t1 for reply notifications)."""

    id: str
    parent_id: Optional[str] = None
    author: str = "reddit"
    subject: str = ""
    body: str = ""
    subreddit: Optional[str] = None
    created_utc: datetime
    unread: bool = False

    def reply_count(self) -> int:
        raise NotSupported(
            "reply_count", "the API does not report reply counts for messages"
        )

    def replies(self):
        raise NotSupported(
            "replies", "the API does not return replies to messages"
        )


# ── Reply tree units ──────────────────────────────────────────────


class PendingExpansion(BaseModel):
    """Stub standing in for children of `parent_id` that are not fetched yet."""

    id: str = ""
    parent_id: str
    child_ids: list[str] = Field(default_factory=list)
    count: int = 0


class Node(BaseModel):
    """One reply in a thread tree.

    `inline_children` is what the server embedded in the same response;
    `children` holds the replies attached to this node once materialized.
    """

    id: str
    parent_id: str
    payload: Reply
    inline_children: list[Union[Node, PendingExpansion]] = Field(default_factory=list)
    children: list[Node] = Field(default_factory=list)
    depth: int = 0


FlatBatch = list[Union[Node, PendingExpansion]]

Node.model_rebuild()
