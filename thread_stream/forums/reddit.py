"""Reddit-style forum API client.

Responses wrap everything in "things": `{"kind": ..., "data": {...}}`.
Kinds handled here:
  Listing - a page: data.children, data.after, data.before
  t1      - a reply (comment); data.replies is "" or a nested Listing
  t3      - a post
  t4      - a private message
  more    - a stub naming replies that were not included

Key endpoints:
  /r/{sub}/{sort}       - post listings (hot, new, rising, top, controversial)
  /comments/{id}        - a post followed by its reply listing
  /api/morechildren     - expands a "more" stub
  /message/{box}        - inbox, unread, sent
  /api/read_message     - marks a message read
"""

from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

from pydantic import ValidationError

from ..errors import MalformedResponse, TransportError
from ..models import (
    Endpoint,
    FlatBatch,
    ListingOptions,
    Message,
    Node,
    Page,
    PendingExpansion,
    Post,
    Reply,
)
from ..utils.logger import get_logger
from .base import BaseForum

logger = get_logger("reddit")

LISTING_SORTS = {"hot", "new", "rising", "top", "controversial"}
TIMED_SORTS = {"top", "controversial"}
MESSAGE_BOXES = {"inbox", "unread", "sent"}


def short_id(thing_id: str) -> str:
    """Strip the kind prefix from a fullname ("t3_abc" -> "abc")."""
    prefix, sep, rest = thing_id.partition("_")
    if sep and prefix.startswith("t") and prefix[1:].isdigit():
        return rest
    return thing_id


def fullname(thing_id: str, kind: str) -> str:
    """Add the kind prefix to a bare id ("abc" -> "t3_abc")."""
    if thing_id.startswith(f"{kind}_"):
        return thing_id
    return f"{kind}_{short_id(thing_id)}"


def _timestamp(value: Any) -> datetime:
    if value is None:
        raise MalformedResponse("Missing created_utc")
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def _unwrap(thing: Any, expected: Optional[str] = None) -> tuple[str, dict]:
    if not isinstance(thing, dict) or "kind" not in thing or not isinstance(thing.get("data"), dict):
        raise MalformedResponse("Expected a {kind, data} object", payload=thing)
    kind = thing["kind"]
    if expected is not None and kind != expected:
        raise MalformedResponse(f"Expected kind {expected!r}, got {kind!r}", payload=thing)
    return kind, thing["data"]


def decode_post(data: dict) -> Post:
    try:
        return Post(
            id=data.get("name") or fullname(data["id"], "t3"),
            short_id=data["id"],
            title=data.get("title", ""),
            author=data.get("author") or "[deleted]",
            subreddit=data.get("subreddit", ""),
            body=data.get("selftext") or "",
            url=data.get("url"),
            permalink=data.get("permalink", ""),
            score=data.get("score", 0),
            num_comments=data.get("num_comments", 0),
            created_utc=_timestamp(data.get("created_utc")),
            nsfw=data.get("over_18", False),
            stickied=data.get("stickied", False),
            locked=data.get("locked", False),
            is_self_post=data.get("is_self", False),
        )
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise MalformedResponse(f"Could not decode post: {e}", payload=data) from e


def decode_message(data: dict) -> Message:
    try:
        return Message(
            id=data["name"],
            parent_id=data.get("parent_id"),
            author=data.get("author") or "reddit",
            subject=data.get("subject", ""),
            body=data.get("body", ""),
            subreddit=data.get("subreddit"),
            created_utc=_timestamp(data.get("created_utc")),
            unread=data.get("new", False),
        )
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise MalformedResponse(f"Could not decode message: {e}", payload=data) from e


def decode_reply(data: dict) -> Node:
    """Decode a t1 thing, including any replies embedded under it."""
    try:
        reply = Reply(
            id=data["name"],
            parent_id=data["parent_id"],
            link_id=data.get("link_id", ""),
            author=data.get("author") or "[deleted]",
            body=data.get("body", ""),
            score=data.get("score", 0),
            created_utc=_timestamp(data.get("created_utc")),
            stickied=data.get("stickied", False),
            distinguished=data.get("distinguished"),
            # "edited" is false or the edit timestamp
            edited=bool(data.get("edited", False)),
        )
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise MalformedResponse(f"Could not decode reply: {e}", payload=data) from e

    inline: FlatBatch = []
    nested = data.get("replies")
    if nested:
        _, listing = _unwrap(nested, "Listing")
        inline = decode_batch(listing.get("children", []))

    return Node(id=reply.id, parent_id=reply.parent_id, payload=reply, inline_children=inline)


def decode_stub(data: dict) -> PendingExpansion:
    try:
        return PendingExpansion(
            id=data.get("name", ""),
            parent_id=data["parent_id"],
            child_ids=list(data.get("children", [])),
            count=data.get("count", 0),
        )
    except (KeyError, TypeError, ValidationError) as e:
        raise MalformedResponse(f"Could not decode stub: {e}", payload=data) from e


def decode_batch(things: Any) -> FlatBatch:
    """Decode a flat list of t1 and more things, keeping their order."""
    if not isinstance(things, list):
        raise MalformedResponse("Expected a list of things", payload=things)
    batch: FlatBatch = []
    for thing in things:
        kind, data = _unwrap(thing)
        if kind == "t1":
            batch.append(decode_reply(data))
        elif kind == "more":
            batch.append(decode_stub(data))
        else:
            raise MalformedResponse(f"Unexpected kind {kind!r} in a reply batch", payload=thing)
    return batch


ENTITY_DECODERS = {
    "post": decode_post,
    "message": decode_message,
}


def decode_page(payload: Any, entity: str) -> Page:
    decoder = ENTITY_DECODERS.get(entity)
    if decoder is None:
        raise ValueError(f"Unknown entity type {entity!r}")
    _, data = _unwrap(payload, "Listing")
    children = data.get("children", [])
    if not isinstance(children, list):
        raise MalformedResponse("Listing children is not a list", payload=payload)
    items = [decoder(_unwrap(child)[1]) for child in children]
    return Page(items=items, continuation=data.get("after"), before=data.get("before"))


class RedditForum(BaseForum):
    """Client for the Reddit JSON API.

    Every request asks for `raw_json=1` so bodies are not HTML-escaped.
    """

    def listing_endpoint(self, community: str, sort: str, options: ListingOptions) -> Endpoint:
        if sort not in LISTING_SORTS:
            raise ValueError(f"Unknown listing sort {sort!r}. Available: {', '.join(sorted(LISTING_SORTS))}")
        params = {"raw_json": "1", **options.to_params()}
        if sort not in TIMED_SORTS:
            params.pop("t", None)
        return Endpoint(path=f"/r/{quote(community)}/{sort}", params=params, entity="post")

    def inbox_endpoint(self, box: str, options: ListingOptions) -> Endpoint:
        if box not in MESSAGE_BOXES:
            raise ValueError(f"Unknown message box {box!r}")
        params = {"raw_json": "1", **options.to_params()}
        params.pop("t", None)
        return Endpoint(path=f"/message/{box}", params=params, entity="message")

    def submissions_endpoint(self, username: str, options: ListingOptions) -> Endpoint:
        params = {"raw_json": "1", "sort": "new", **options.to_params()}
        params.pop("t", None)
        return Endpoint(path=f"/user/{quote(username)}/submitted", params=params, entity="post")

    async def fetch_page(self, endpoint: Endpoint, continuation: Optional[str]) -> Page:
        data = await self.http.get(endpoint.path, params=endpoint.with_continuation(continuation))
        page = decode_page(data, endpoint.entity)
        logger.info(
            "page_fetched",
            forum=self.name,
            path=endpoint.path,
            count=len(page.items),
            after=page.continuation,
        )
        return page

    async def fetch_thread(self, thread_id: str, sort: Optional[str] = None) -> tuple[Post, FlatBatch]:
        params = {"raw_json": "1"}
        if sort:
            params["sort"] = sort
        data = await self.http.get(f"/comments/{short_id(thread_id)}", params=params)

        if not isinstance(data, list) or len(data) < 2:
            raise MalformedResponse("Expected [post listing, reply listing]", payload=data)
        _, post_listing = _unwrap(data[0], "Listing")
        posts = post_listing.get("children") or []
        if not posts:
            raise MalformedResponse("Thread response has no post", payload=data)
        post = decode_post(_unwrap(posts[0], "t3")[1])

        _, reply_listing = _unwrap(data[1], "Listing")
        batch = decode_batch(reply_listing.get("children", []))
        logger.info("thread_fetched", forum=self.name, thread_id=post.id, units=len(batch))
        return post, batch

    async def fetch_batch(self, thread_id: str, parent_id: str, child_ids: list[str]) -> FlatBatch:
        response = await self.http.post(
            "/api/morechildren",
            data={
                "api_type": "json",
                "link_id": fullname(thread_id, "t3"),
                "children": ",".join(child_ids),
            },
            params={"raw_json": "1"},
        )
        body = response.get("json") if isinstance(response, dict) else None
        if not isinstance(body, dict):
            raise MalformedResponse("morechildren response has no json body", payload=response)
        if body.get("errors"):
            raise TransportError(f"morechildren rejected: {body['errors']}")

        # "data" is absent when none of the children still exist.
        data = body.get("data")
        if not data:
            return []
        if not isinstance(data, dict):
            raise MalformedResponse("morechildren data is not an object", payload=data)
        return decode_batch(data.get("things", []))

    async def mark_read(self, fullname: str):
        await self.http.post("/api/read_message", data={"id": fullname})
        logger.debug("message_read", forum=self.name, id=fullname)
