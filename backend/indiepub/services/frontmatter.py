"""
Post-write front-matter normalization.

After the Micropub endpoint creates a post, the file is read back from the
store and its front matter is repaired so the site build can classify it:

  - ``type`` is one of the known post types (placeholders like ``entry`` are
    replaced by a type inferred from the other keys)
  - ``layout`` always matches ``type``
  - ``collectionType: post`` is present

The front matter is edited line by line rather than re-serialized, so keys
we don't touch keep their order and formatting.
"""

import logging
import re
from typing import Optional, Tuple

from indiepub.models.post import AMBIGUOUS_TYPES, TYPE_PRECEDENCE, PostType, layout_for
from indiepub.services.github_store import GitHubStore, StoredFile

logger = logging.getLogger(__name__)

FRONT_MATTER_RE = re.compile(r"^---\n([\s\S]*?)\n---\n?([\s\S]*)$")
TYPE_VALUE_RE = re.compile(r"(?:^|\n)type:[ \t]*([\"']?)([a-zA-Z0-9_-]*)\1[ \t]*(?=\n|$)", re.IGNORECASE)

# Where the endpoint may have written ``<slug>``, in lookup order.
CANDIDATE_PATTERNS = (
    "{dir}/{slug}.md",
    "{dir}/{slug}.mdx",
    "{dir}/{slug}.markdown",
    "{dir}/{slug}/index.md",
)

COMMIT_MESSAGE = "chore(micropub): normalize front matter"


def split_front_matter(text: str) -> Tuple[Optional[str], str]:
    """
    Split ``---`` delimited front matter from the body.

    Returns ``(None, text)`` when the file has no front-matter block.
    """
    match = FRONT_MATTER_RE.match(text.replace("\r\n", "\n"))
    if not match:
        return None, text
    return match.group(1), match.group(2)


def has_key(fm_text: str, key: str) -> bool:
    return re.search(rf"(?:^|\n){re.escape(key)}:", fm_text, re.IGNORECASE) is not None


def declared_type(fm_text: str) -> Optional[PostType]:
    """
    The ``type`` value already in the front matter, if it is usable.

    Missing, placeholder and unknown values all return None.
    """
    match = TYPE_VALUE_RE.search(fm_text)
    if not match:
        return None
    value = match.group(2).lower()
    if value in AMBIGUOUS_TYPES:
        return None
    try:
        return PostType(value)
    except ValueError:
        return None


def derive_type(fm_text: str) -> PostType:
    """
    Infer the post type from front-matter keys.

    Fixed precedence: bookmark-of, like-of, repost-of, in-reply-to, photo,
    then name/title for articles, otherwise note.
    """
    for key, post_type in TYPE_PRECEDENCE:
        if has_key(fm_text, key):
            return post_type
    if has_key(fm_text, "name") or has_key(fm_text, "title"):
        return PostType.ARTICLE
    return PostType.NOTE


def _continues_entry(line: str) -> bool:
    return line.startswith((" ", "\t", "- ")) or line.strip() in ("", "-")


def set_key(fm_text: str, key: str, value: str) -> str:
    """
    Replace the top-level ``key`` entry, or append one.

    Keys match case-insensitively, like ``has_key``. The whole entry is
    replaced, including the indented or ``- `` lines of a block value, and
    later entries for the same key are dropped.
    """
    prefix = f"{key.lower()}:"
    entry = f"{key}: {value}"
    lines: list[str] = []
    replaced = False
    skipping = False

    for line in fm_text.split("\n"):
        if skipping and _continues_entry(line):
            continue
        skipping = False
        if line.lower().startswith(prefix):
            skipping = True
            if not replaced:
                lines.append(entry)
                replaced = True
            continue
        lines.append(line)

    if replaced:
        return "\n".join(lines)
    if not fm_text.strip():
        return entry
    return fm_text.rstrip("\n") + "\n" + entry


def normalize_front_matter(text: str) -> str:
    """
    Return ``text`` with ``type``, ``layout`` and ``collectionType`` repaired.

    Files without a front-matter block get a minimal one prepended.
    """
    fm_text, body = split_front_matter(text)

    if fm_text is None:
        post_type = derive_type("")
        block = "\n".join([
            "---",
            "collectionType: post",
            f"type: {post_type.value}",
            f"layout: {layout_for(post_type)}",
            "---",
            "",
        ])
        return block + text

    post_type = declared_type(fm_text) or derive_type(fm_text)

    fm_text = set_key(fm_text, "collectionType", "post")
    fm_text = set_key(fm_text, "type", post_type.value)
    fm_text = set_key(fm_text, "layout", layout_for(post_type))

    fm_text = fm_text.rstrip("\n")
    return f"---\n{fm_text}\n---\n{body}"


def candidate_paths(content_dir: str, slug: str) -> list[str]:
    directory = content_dir.strip("/")
    return [pattern.format(dir=directory, slug=slug) for pattern in CANDIDATE_PATTERNS]


async def find_post(store: GitHubStore, content_dir: str, slug: str) -> Optional[StoredFile]:
    """First candidate path for ``slug`` that exists in the store."""
    for path in candidate_paths(content_dir, slug):
        stored = await store.get_file(path)
        if stored is not None:
            return stored
    return None


async def normalize_post(store: GitHubStore, content_dir: str, slug: str) -> Optional[str]:
    """
    Read the freshly created post back, repair its front matter and write it.

    The write carries the sha that was read, so a concurrent change makes
    the store raise ``StoreConflictError``; the caller logs it and the post
    stays as created.

    Returns the path that was normalized, or None if no file was found.
    """
    stored = await find_post(store, content_dir, slug)
    if stored is None:
        logger.warning(f"Could not find created file to normalize for slug: {slug}")
        return None

    updated = normalize_front_matter(stored.content)
    if updated == stored.content:
        logger.info(f"Front matter already normalized: {stored.path}")
        return stored.path

    await store.update_file(stored.path, updated, stored.sha, message=COMMIT_MESSAGE)
    logger.info(f"Normalized front matter for: {stored.path}")
    return stored.path
