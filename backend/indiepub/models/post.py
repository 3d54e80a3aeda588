"""
Pydantic models and enums for posts.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class PostType(str, Enum):
    NOTE = "note"
    ARTICLE = "article"
    PHOTO = "photo"
    BOOKMARK = "bookmark"
    LIKE = "like"
    REPOST = "repost"
    REPLY = "reply"


# Catch-all labels some clients (and mf2 translation) write into ``type``.
# They say nothing about the kind of post, so they count as "no type".
AMBIGUOUS_TYPES = frozenset({"", "entry", "h-entry", "post", "item"})

# Front-matter key -> post type, first match wins.
TYPE_PRECEDENCE = (
    ("bookmark-of", PostType.BOOKMARK),
    ("like-of", PostType.LIKE),
    ("repost-of", PostType.REPOST),
    ("in-reply-to", PostType.REPLY),
    ("photo", PostType.PHOTO),
)


def layout_for(post_type: Optional[str]) -> str:
    """Template used to render a post of the given type."""
    try:
        return f"layouts/{PostType(post_type).value}.njk"
    except ValueError:
        return f"layouts/{PostType.NOTE.value}.njk"


class PostTypeEntry(BaseModel):
    type: PostType
    name: str


class MicropubConfig(BaseModel):
    """Body of ``GET ?q=config``."""
    media_endpoint: str = Field(serialization_alias="media-endpoint")
    post_types: List[PostTypeEntry] = Field(serialization_alias="post-types")
    syndicate_to: List[dict] = Field(default_factory=list, serialization_alias="syndicate-to")


ADVERTISED_POST_TYPES = [
    PostTypeEntry(type=PostType.NOTE, name="Note"),
    PostTypeEntry(type=PostType.ARTICLE, name="Article"),
]


def build_micropub_config(base: str) -> dict:
    """Config document advertised to Micropub clients."""
    config = MicropubConfig(
        media_endpoint=f"{base.rstrip('/')}/api/media",
        post_types=ADVERTISED_POST_TYPES,
    )
    return config.model_dump(mode="json", by_alias=True)
