"""Forum type registry - maps forum types to their implementations."""

from typing import Optional

from ..models import ForumConfig, StreamConfig
from ..utils.http_client import AuthRefresh, RateLimitedClient
from .base import BaseForum
from .reddit import RedditForum

# To add a new forum type, extend BaseForum and register it here.
FORUM_TYPES: dict[str, type[BaseForum]] = {
    "reddit": RedditForum,
}


def create_http_client(config: ForumConfig, auth_refresh: Optional[AuthRefresh] = None) -> RateLimitedClient:
    """Build the HTTP client for a forum.

    Authenticated clients talk to the OAuth host with a bearer token; anonymous
    ones use the public API host.
    """
    headers = {}
    base_url = config.url
    if config.access_token:
        headers["Authorization"] = f"bearer {config.access_token}"
        base_url = config.oauth_url

    return RateLimitedClient(
        base_url=base_url,
        user_agent=config.user_agent,
        requests_per_minute=config.requests_per_minute,
        max_retries=config.max_retries,
        timeout=config.timeout,
        auth_headers=headers,
        auth_refresh=auth_refresh,
    )


def create_forum(
    config: ForumConfig,
    http_client: RateLimitedClient,
    streams: Optional[StreamConfig] = None,
) -> BaseForum:
    """Factory function to create a forum instance from config.

    Raises:
        ValueError: If the forum type is not registered.
    """
    forum_class = FORUM_TYPES.get(config.type)
    if forum_class is None:
        available = ", ".join(FORUM_TYPES.keys())
        raise ValueError(
            f"Unknown forum type '{config.type}' for forum '{config.name}'. "
            f"Available types: {available}"
        )

    return forum_class(config, http_client, streams)
