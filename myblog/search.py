"""Search-query parsing and paginated, tag-filtered post search."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Generic, Iterable, List, Optional, Protocol, Sequence, Set, Tuple, TypeVar

from .datastore import Post, Tag


logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
TAG_PREFIX = "#"

_WHITESPACE_RE = re.compile(r"\s+")

T = TypeVar("T")


class PostStore(Protocol):
    def count_matching(
        self,
        query: str,
        has_query: bool,
        tag_names: Sequence[str],
        has_tags: bool,
        tag_count: int,
    ) -> int: ...

    def fetch_page(
        self,
        query: str,
        has_query: bool,
        tag_names: Sequence[str],
        has_tags: bool,
        tag_count: int,
        offset: int,
        limit: int,
    ) -> List[Post]: ...

    def fetch_tags_for_post_ids(self, post_ids: Iterable[int]) -> Dict[int, Set[Tag]]: ...


@dataclass(frozen=True)
class SearchCriteria:
    has_query: bool = False
    query: str = ""
    has_tags: bool = False
    tags: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.has_query != bool(self.query):
            raise ValueError("has_query must reflect whether query is non-empty")
        if self.has_tags != bool(self.tags):
            raise ValueError("has_tags must reflect whether tags is non-empty")

    @property
    def tag_count(self) -> int:
        return len(self.tags)


def parse_search(raw: Optional[str]) -> SearchCriteria:
    """Split a free-text search into plain query words and ``#tag`` filters.

    Plain words keep their order and case and are re-joined with single
    spaces. Tags lose the leading ``#``, are lowercased and deduplicated in
    first-seen order. A lone ``#`` yields an empty tag name, kept as is.
    """
    normalized = (raw or "").strip()
    if not normalized:
        return SearchCriteria()

    tokens = [token for token in _WHITESPACE_RE.sub(" ", normalized).split(" ") if token]
    plain_tokens: List[str] = []
    tags: List[str] = []
    seen_tags: Set[str] = set()
    for token in tokens:
        if not token.startswith(TAG_PREFIX):
            plain_tokens.append(token)
            continue
        tag = token[len(TAG_PREFIX):].lower()
        if tag in seen_tags:
            continue
        seen_tags.add(tag)
        tags.append(tag)

    query = " ".join(plain_tokens)
    return SearchCriteria(
        has_query=bool(query),
        query=query,
        has_tags=bool(tags),
        tags=tuple(tags),
    )


@dataclass
class PageResult(Generic[T]):
    content: List[T]
    total_elements: int
    page_number: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.total_elements <= 0:
            return 0
        return -(-self.total_elements // self.page_size)


def normalize_page(page_number: int, page_size: int) -> Tuple[int, int]:
    """Clamp a 1-based page number and a page size into the accepted range."""
    if page_number < 1:
        page_number = 1
    if page_size <= 0:
        page_size = DEFAULT_PAGE_SIZE
    if page_size > MAX_PAGE_SIZE:
        page_size = MAX_PAGE_SIZE
    return page_number, page_size


class PostAssembler:
    """Attaches tag sets to posts with one batch query per page."""

    def __init__(self, store: PostStore):
        self._store = store

    def attach_tags(self, posts: List[Post]) -> List[Post]:
        if not posts:
            return posts
        tags_by_post = self._store.fetch_tags_for_post_ids(post.id for post in posts)
        for post in posts:
            post.tags = set(tags_by_post.get(post.id, ()))
        return posts


class PostSearchEngine:
    def __init__(self, store: PostStore, assembler: Optional[PostAssembler] = None):
        self._store = store
        self._assembler = assembler or PostAssembler(store)

    def search(self, criteria: SearchCriteria, page_number: int, page_size: int) -> PageResult[Post]:
        page_number, page_size = normalize_page(page_number, page_size)
        filter_args = (
            criteria.query,
            criteria.has_query,
            list(criteria.tags),
            criteria.has_tags,
            criteria.tag_count,
        )
        total = self._store.count_matching(*filter_args)
        offset = (page_number - 1) * page_size
        posts: List[Post] = []
        # Pages past the last match are empty; the offset may not even fit in SQLite.
        if offset < total:
            posts = self._store.fetch_page(*filter_args, offset, page_size)
            self._assembler.attach_tags(posts)
        logger.debug(
            "Search query=%r tags=%s page=%d size=%d matched %d post(s), returned %d",
            criteria.query,
            list(criteria.tags),
            page_number,
            page_size,
            total,
            len(posts),
        )
        return PageResult(
            content=posts,
            total_elements=total,
            page_number=page_number,
            page_size=page_size,
        )

    def search_text(self, raw: Optional[str], page_number: int, page_size: int) -> PageResult[Post]:
        return self.search(parse_search(raw), page_number, page_size)
