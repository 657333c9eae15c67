"""Command line entry point for thread-stream.

Usage:
  thread-stream hot|new|rising|top|controversial <community> [limit]
  thread-stream replies <thread_id> [limit]
  thread-stream submitted <username> [limit]
  thread-stream stream <community>
  thread-stream reply-stream <thread_id>
  thread-stream inbox [limit]
  thread-stream unread-stream

Set THREAD_STREAM_CONFIG (environment or .env) to a YAML config file.
Prints one line per item; logs go to stderr.
"""

import asyncio
import os
import sys

from dotenv import load_dotenv

from .config import load_config
from .forums.registry import create_forum, create_http_client
from .models import AppConfig, ListingOptions, Message, Node, Post
from .utils.logger import get_logger, setup_logging

logger = get_logger("main")

LISTING_MODES = {"hot", "new", "rising", "top", "controversial"}
DEFAULT_LIMIT = 25


def format_item(item) -> str:
    """Render one yielded item as a single output line."""
    if isinstance(item, Post):
        return f"{item.id}\t{item.score}\t{item.author}\t{item.title}"
    if isinstance(item, Node):
        indent = "  " * item.depth
        body = item.payload.body.replace("\n", " ")[:120]
        return f"{indent}{item.id}\t{item.payload.author}\t{body}"
    if isinstance(item, Message):
        return f"{item.id}\t{item.author}\t{item.subject}"
    return str(item)


async def _emit(iterator, limit=None):
    count = 0
    async for item in iterator:
        print(format_item(item), flush=True)
        count += 1
        if limit is not None and count >= limit:
            break
    return count


async def run(mode: str, args: list[str], config: AppConfig):
    """Run one CLI command against the configured forum.

    Call setup_logging first so log lines go to stderr, as main() does.
    """
    http_client = create_http_client(config.forum)
    forum = create_forum(config.forum, http_client, config.streams)
    options = ListingOptions(batch=config.listing_batch)

    def limit_arg(position: int):
        return int(args[position]) if len(args) > position else DEFAULT_LIMIT

    try:
        if mode in LISTING_MODES:
            listing = await forum.listing(args[0], sort=mode, options=options)
            count = await _emit(listing, limit_arg(1))
        elif mode == "replies":
            tree = await forum.replies(args[0])
            count = await _emit(tree, limit_arg(1))
            if tree.dropped_orphans:
                logger.info("unresolved_replies", count=tree.dropped_orphans)
        elif mode == "submitted":
            listing = await forum.submissions(args[0], options)
            count = await _emit(listing, limit_arg(1))
        elif mode == "inbox":
            count = await _emit(await forum.inbox(options), limit_arg(0))
        elif mode == "stream":
            count = await _emit(forum.post_stream(args[0]))
        elif mode == "reply-stream":
            count = await _emit(forum.reply_stream(args[0]))
        elif mode == "unread-stream":
            count = await _emit(forum.unread_stream())
        else:
            raise ValueError(f"Unknown mode {mode!r}")
        logger.info("command_complete", mode=mode, items=count)
    finally:
        await http_client.close()


def main():
    """CLI entry point."""
    load_dotenv()
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    mode, args = sys.argv[1], sys.argv[2:]
    needs_target = mode in LISTING_MODES or mode in ("replies", "submitted", "stream", "reply-stream")
    known = needs_target or mode in ("inbox", "unread-stream")
    if not known or (needs_target and not args):
        print(__doc__)
        sys.exit(1)

    config = load_config(os.environ.get("THREAD_STREAM_CONFIG"))
    setup_logging(level=config.logging.level, json_output=config.logging.json_output)

    try:
        asyncio.run(run(mode, args, config))
    except KeyboardInterrupt:
        logger.info("interrupted", mode=mode)


if __name__ == "__main__":
    main()
