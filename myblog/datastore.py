from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from threading import local
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Sequence, Set, Tuple, TypeVar


logger = logging.getLogger(__name__)

DATABASE_FILENAME = "blog.sqlite3"
UNICODE_LOWER = "unicode_lower"

K = TypeVar("K", bound=Hashable)
V = TypeVar("V", bound=Hashable)
R = TypeVar("R")


def group_into_sets(rows: Iterable[R], key: Callable[[R], K], value: Callable[[R], V]) -> Dict[K, Set[V]]:
    """Group ``rows`` by ``key`` into a mapping of value sets."""
    grouped: Dict[K, Set[V]] = {}
    for row in rows:
        grouped.setdefault(key(row), set()).add(value(row))
    return grouped


def _unicode_lower(value: Optional[str]) -> Optional[str]:
    return value.lower() if isinstance(value, str) else value


_LIKE_SPECIALS = str.maketrans({"\\": "\\\\", "%": "\\%", "_": "\\_"})


def contains_pattern(query: str) -> str:
    """LIKE pattern (with ``ESCAPE '\\'``) matching ``query`` as a lowercased literal substring."""
    return f"%{query.lower().translate(_LIKE_SPECIALS)}%"


class SQLiteConnectionManager:
    """Per-thread connections to the blog database.

    Each connection gets the pragmas the store relies on and a Unicode-aware
    ``unicode_lower()`` SQL function; SQLite's own ``LOWER()`` only folds ASCII.
    """

    PRAGMAS = (
        "foreign_keys = ON",
        "journal_mode = WAL",
        "synchronous = NORMAL",
        "busy_timeout = 5000",
    )

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = local()

    def get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "connection", None)
        if conn is None:
            conn = self._open()
            self._local.connection = conn
        return conn

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.create_function(UNICODE_LOWER, 1, _unicode_lower, deterministic=True)
        for pragma in self.PRAGMAS:
            conn.execute(f"PRAGMA {pragma}")
        logger.debug("Opened SQLite connection to %s", self.db_path)
        return conn

    def close_connection(self) -> None:
        conn = getattr(self._local, "connection", None)
        if conn is not None:
            conn.close()
            self._local.connection = None


@dataclass(frozen=True)
class Tag:
    id: int
    # Tags are unique by identity; the name does not take part in equality.
    name: str = field(compare=False)


@dataclass
class Post:
    id: int
    title: str
    text: str
    likes_count: int = 0
    comments_count: int = 0
    tags: Set[Tag] = field(default_factory=set)


@dataclass
class Comment:
    id: int
    post_id: int
    text: str


@dataclass
class PostImage:
    post_id: int
    data: bytes
    content_type: Optional[str]
    size_bytes: int
    filename: Optional[str]


@dataclass
class PostFilter:
    """Joins, predicates and bound parameters selecting a set of posts.

    Assembled once into the ``FROM ... HAVING`` part of a statement; values are
    only ever bound as parameters.
    """

    joins: List[str] = field(default_factory=list)
    predicates: List[str] = field(default_factory=list)
    params: List[Any] = field(default_factory=list)
    group_by: Optional[str] = None
    having: Optional[str] = None
    having_params: List[Any] = field(default_factory=list)

    @classmethod
    def for_search(
        cls,
        query: str,
        has_query: bool,
        tag_names: Sequence[str],
        has_tags: bool,
        tag_count: int,
    ) -> "PostFilter":
        post_filter = cls()
        if has_tags:
            post_filter.joins.append("JOIN posts_tags AS pt ON pt.post_id = p.id")
            post_filter.joins.append("JOIN tags AS t ON t.id = pt.tag_id")
            placeholders = ",".join(["?"] * len(tag_names))
            post_filter.predicates.append(f"{UNICODE_LOWER}(t.name) IN ({placeholders})")
            post_filter.params.extend(name.lower() for name in tag_names)
            # A post only survives when every requested tag matched it.
            post_filter.group_by = "p.id"
            post_filter.having = f"COUNT(DISTINCT {UNICODE_LOWER}(t.name)) = ?"
            post_filter.having_params.append(tag_count)
        if has_query:
            post_filter.predicates.append(f"{UNICODE_LOWER}(p.title) LIKE ? ESCAPE '\\'")
            post_filter.params.append(contains_pattern(query))
        return post_filter

    def render(self) -> Tuple[str, List[Any]]:
        parts = ["FROM posts AS p", *self.joins]
        if self.predicates:
            parts.append("WHERE " + " AND ".join(self.predicates))
        if self.group_by:
            parts.append(f"GROUP BY {self.group_by}")
        if self.having:
            parts.append(f"HAVING {self.having}")
        return "\n".join(parts), [*self.params, *self.having_params]


class DataStore:
    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.db_path = self.base_path / DATABASE_FILENAME
        self._connection_manager = SQLiteConnectionManager(self.db_path)
        self._ensure_schema(self._conn())

    def _conn(self) -> sqlite3.Connection:
        return self._connection_manager.get_connection()

    def close(self) -> None:
        self._connection_manager.close_connection()

    @staticmethod
    def _ensure_schema(conn: sqlite3.Connection) -> None:
        with conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS posts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    text TEXT NOT NULL DEFAULT '',
                    likes_count INTEGER NOT NULL DEFAULT 0,
                    comments_count INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS tags (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE COLLATE NOCASE
                );

                CREATE TABLE IF NOT EXISTS posts_tags (
                    post_id INTEGER NOT NULL,
                    tag_id INTEGER NOT NULL,
                    PRIMARY KEY (post_id, tag_id),
                    FOREIGN KEY(post_id) REFERENCES posts(id) ON DELETE CASCADE,
                    FOREIGN KEY(tag_id) REFERENCES tags(id) ON DELETE CASCADE
                );

                CREATE INDEX IF NOT EXISTS idx_posts_tags_tag ON posts_tags(tag_id);

                CREATE TABLE IF NOT EXISTS comments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    post_id INTEGER NOT NULL,
                    text TEXT NOT NULL,
                    FOREIGN KEY(post_id) REFERENCES posts(id) ON DELETE CASCADE
                );

                CREATE INDEX IF NOT EXISTS idx_comments_post ON comments(post_id);

                CREATE TABLE IF NOT EXISTS post_images (
                    post_id INTEGER PRIMARY KEY,
                    data BLOB NOT NULL,
                    content_type TEXT,
                    size_bytes INTEGER NOT NULL,
                    filename TEXT,
                    FOREIGN KEY(post_id) REFERENCES posts(id) ON DELETE CASCADE
                );
                """
            )

    # Search -----------------------------------------------------------

    def count_matching(
        self,
        query: str,
        has_query: bool,
        tag_names: Sequence[str],
        has_tags: bool,
        tag_count: int,
    ) -> int:
        from_clause, params = PostFilter.for_search(query, has_query, tag_names, has_tags, tag_count).render()
        row = self._conn().execute(
            f"SELECT COUNT(*) AS count FROM (SELECT p.id {from_clause}) AS matched",
            params,
        ).fetchone()
        return int(row["count"] if row else 0)

    def fetch_page(
        self,
        query: str,
        has_query: bool,
        tag_names: Sequence[str],
        has_tags: bool,
        tag_count: int,
        offset: int,
        limit: int,
    ) -> List[Post]:
        from_clause, params = PostFilter.for_search(query, has_query, tag_names, has_tags, tag_count).render()
        rows = self._conn().execute(
            f"""
            SELECT p.id, p.title, p.text, p.likes_count, p.comments_count
            {from_clause}
            ORDER BY p.id DESC
            LIMIT ? OFFSET ?
            """,
            (*params, limit, offset),
        ).fetchall()
        return [self._row_to_post(row) for row in rows]

    def fetch_tags_for_post_ids(self, post_ids: Iterable[int]) -> Dict[int, Set[Tag]]:
        ids = sorted(set(post_ids))
        if not ids:
            return {}
        placeholders = ",".join(["?"] * len(ids))
        rows = self._conn().execute(
            f"""
            SELECT pt.post_id, t.id, t.name
            FROM tags AS t
            JOIN posts_tags AS pt ON pt.tag_id = t.id
            WHERE pt.post_id IN ({placeholders})
            """,
            ids,
        ).fetchall()
        return group_into_sets(
            rows,
            key=lambda row: int(row["post_id"]),
            value=lambda row: Tag(id=int(row["id"]), name=row["name"]),
        )

    # Posts ------------------------------------------------------------

    def get_post(self, post_id: int) -> Optional[Post]:
        row = self._conn().execute(
            "SELECT id, title, text, likes_count, comments_count FROM posts WHERE id = ?",
            (post_id,),
        ).fetchone()
        if not row:
            return None
        post = self._row_to_post(row)
        post.tags = self.fetch_tags_for_post_ids([post.id]).get(post.id, set())
        return post

    def post_exists(self, post_id: int) -> bool:
        row = self._conn().execute("SELECT 1 FROM posts WHERE id = ?", (post_id,)).fetchone()
        return row is not None

    def create_post(self, title: str, text: str, tags: Optional[Iterable[str]] = None) -> Post:
        conn = self._conn()
        with conn:
            cursor = conn.execute(
                "INSERT INTO posts (title, text, likes_count, comments_count) VALUES (?, ?, 0, 0)",
                (title, text),
            )
            post_id = int(cursor.lastrowid)
            resolved = self._resolve_tags(conn, tags or [])
            self._replace_post_tags(conn, post_id, resolved)
        return Post(id=post_id, title=title, text=text, tags=set(resolved))

    def update_post(
        self,
        post_id: int,
        *,
        title: str,
        text: str,
        tags: Optional[Iterable[str]] = None,
    ) -> Optional[Post]:
        conn = self._conn()
        with conn:
            updated = conn.execute(
                "UPDATE posts SET title = ?, text = ? WHERE id = ?",
                (title, text, post_id),
            )
            if updated.rowcount == 0:
                logger.warning("Cannot update post %s: it does not exist", post_id)
                return None
            resolved = self._resolve_tags(conn, tags or [])
            self._replace_post_tags(conn, post_id, resolved)
        return self.get_post(post_id)

    def delete_post(self, post_id: int) -> bool:
        conn = self._conn()
        with conn:
            deleted = conn.execute("DELETE FROM posts WHERE id = ?", (post_id,))
        if deleted.rowcount == 0:
            logger.warning("Cannot delete post %s: it does not exist", post_id)
            return False
        logger.info("Deleted post %s with its comments, image and tag links", post_id)
        return True

    def increment_likes(self, post_id: int) -> Optional[int]:
        conn = self._conn()
        with conn:
            updated = conn.execute(
                "UPDATE posts SET likes_count = likes_count + 1 WHERE id = ?",
                (post_id,),
            )
            if updated.rowcount == 0:
                return None
            row = conn.execute("SELECT likes_count FROM posts WHERE id = ?", (post_id,)).fetchone()
        return int(row["likes_count"])

    # Tags -------------------------------------------------------------

    def find_tag_by_name(self, name: str) -> Optional[Tag]:
        return self._find_tag(self._conn(), name.strip())

    def get_or_create_tag(self, name: str) -> Tag:
        conn = self._conn()
        with conn:
            resolved = self._resolve_tags(conn, [name])
        if not resolved:
            raise ValueError("标签名称不能为空")
        return resolved[0]

    def list_tags(self) -> List[Tag]:
        rows = self._conn().execute("SELECT id, name FROM tags ORDER BY name").fetchall()
        return [Tag(id=int(row["id"]), name=row["name"]) for row in rows]

    # Comments ---------------------------------------------------------

    def list_comments(self, post_id: int) -> List[Comment]:
        rows = self._conn().execute(
            "SELECT id, post_id, text FROM comments WHERE post_id = ? ORDER BY id",
            (post_id,),
        ).fetchall()
        return [self._row_to_comment(row) for row in rows]

    def get_comment(self, post_id: int, comment_id: int) -> Optional[Comment]:
        row = self._conn().execute(
            "SELECT id, post_id, text FROM comments WHERE id = ? AND post_id = ?",
            (comment_id, post_id),
        ).fetchone()
        return self._row_to_comment(row) if row else None

    def add_comment(self, post_id: int, text: str) -> Comment:
        conn = self._conn()
        with conn:
            exists = conn.execute("SELECT 1 FROM posts WHERE id = ?", (post_id,)).fetchone()
            if not exists:
                raise ValueError("未找到文章")
            cursor = conn.execute(
                "INSERT INTO comments (post_id, text) VALUES (?, ?)",
                (post_id, text),
            )
            conn.execute(
                "UPDATE posts SET comments_count = comments_count + 1 WHERE id = ?",
                (post_id,),
            )
        return Comment(id=int(cursor.lastrowid), post_id=post_id, text=text)

    def update_comment(self, post_id: int, comment_id: int, text: str) -> Optional[Comment]:
        conn = self._conn()
        with conn:
            updated = conn.execute(
                "UPDATE comments SET text = ? WHERE id = ? AND post_id = ?",
                (text, comment_id, post_id),
            )
        if updated.rowcount == 0:
            logger.warning("Cannot update comment %s of post %s: it does not exist", comment_id, post_id)
            return None
        logger.info("Updated comment %s of post %s", comment_id, post_id)
        return Comment(id=comment_id, post_id=post_id, text=text)

    def delete_comment(self, post_id: int, comment_id: int) -> bool:
        conn = self._conn()
        with conn:
            deleted = conn.execute(
                "DELETE FROM comments WHERE id = ? AND post_id = ?",
                (comment_id, post_id),
            )
            if deleted.rowcount == 0:
                return False
            conn.execute(
                "UPDATE posts SET comments_count = MAX(comments_count - 1, 0) WHERE id = ?",
                (post_id,),
            )
        logger.info("Deleted comment %s of post %s", comment_id, post_id)
        return True

    # Images -----------------------------------------------------------

    def get_image(self, post_id: int) -> Optional[PostImage]:
        row = self._conn().execute(
            "SELECT post_id, data, content_type, size_bytes, filename FROM post_images WHERE post_id = ?",
            (post_id,),
        ).fetchone()
        if not row:
            return None
        return PostImage(
            post_id=int(row["post_id"]),
            data=bytes(row["data"] or b""),
            content_type=row["content_type"],
            size_bytes=int(row["size_bytes"]),
            filename=row["filename"],
        )

    def save_image(
        self,
        post_id: int,
        data: bytes,
        *,
        content_type: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> PostImage:
        conn = self._conn()
        with conn:
            exists = conn.execute("SELECT 1 FROM posts WHERE id = ?", (post_id,)).fetchone()
            if not exists:
                raise ValueError("未找到文章")
            conn.execute(
                """
                INSERT INTO post_images (post_id, data, content_type, size_bytes, filename)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(post_id) DO UPDATE SET
                    data = excluded.data,
                    content_type = excluded.content_type,
                    size_bytes = excluded.size_bytes,
                    filename = excluded.filename
                """,
                (post_id, sqlite3.Binary(data), content_type, len(data), filename),
            )
        logger.info("Stored image for post %s (%d bytes)", post_id, len(data))
        return PostImage(
            post_id=post_id,
            data=data,
            content_type=content_type,
            size_bytes=len(data),
            filename=filename,
        )

    # Internal helpers -------------------------------------------------

    def _resolve_tags(self, conn: sqlite3.Connection, names: Iterable[str]) -> List[Tag]:
        resolved: List[Tag] = []
        seen: Set[int] = set()
        for name in self._normalize_tag_names(names):
            tag = self._find_tag(conn, name)
            if tag is None:
                cursor = conn.execute("INSERT INTO tags (name) VALUES (?)", (name,))
                tag = Tag(id=int(cursor.lastrowid), name=name)
            if tag.id in seen:
                continue
            seen.add(tag.id)
            resolved.append(tag)
        return resolved

    @staticmethod
    def _find_tag(conn: sqlite3.Connection, name: str) -> Optional[Tag]:
        row = conn.execute(
            f"SELECT id, name FROM tags WHERE {UNICODE_LOWER}(name) = ? ORDER BY id LIMIT 1",
            (name.lower(),),
        ).fetchone()
        return Tag(id=int(row["id"]), name=row["name"]) if row else None

    @staticmethod
    def _replace_post_tags(conn: sqlite3.Connection, post_id: int, tags: Sequence[Tag]) -> None:
        conn.execute("DELETE FROM posts_tags WHERE post_id = ?", (post_id,))
        if tags:
            conn.executemany(
                "INSERT INTO posts_tags (post_id, tag_id) VALUES (?, ?)",
                [(post_id, tag.id) for tag in tags],
            )

    @staticmethod
    def _normalize_tag_names(names: Iterable[str]) -> List[str]:
        result: List[str] = []
        seen: Set[str] = set()
        for name in names:
            if not isinstance(name, str):
                continue
            text = name.strip()
            if not text or text.lower() in seen:
                continue
            seen.add(text.lower())
            result.append(text)
        return result

    @staticmethod
    def _row_to_post(row: sqlite3.Row) -> Post:
        return Post(
            id=int(row["id"]),
            title=row["title"],
            text=row["text"],
            likes_count=int(row["likes_count"]),
            comments_count=int(row["comments_count"]),
        )

    @staticmethod
    def _row_to_comment(row: sqlite3.Row) -> Comment:
        return Comment(id=int(row["id"]), post_id=int(row["post_id"]), text=row["text"])
