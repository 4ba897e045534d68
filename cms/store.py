"""
cms/store.py -- SQLAlchemy Core persistence layer for categories and news.

Pattern: Repository + Data Mapper.
ContentStore is the repository; _row_to_category / _row_to_news /
_row_to_post are the mappers. Business rules that the database cannot
express live here too:

  - Category titles are trimmed, 2-100 characters, first letter capitalised,
    and unique case-insensitively among non-deleted categories. The slug is
    regenerated whenever the title changes.
  - News must reference a non-deleted category; tags are lower-cased.
  - Post positions are >= 1 and unique within one news item. A unique
    constraint on (news_id, position) backs the application check.
  - Nothing is hard-deleted. Deleted rows are invisible to every read.

Security:
  All queries use bound parameters. Sort columns are whitelisted.

Layer rule: no imports from api/, auth/, or media/.
"""

import json
import logging
import re
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.exc import IntegrityError

from cms.errors import Conflict, EntityNotFound, ValidationFailed
from cms.models import NEWS_STATUSES, Category, News, NewsPost
from core.clock import utc_now
from core.db import make_engine

logger = logging.getLogger("newsdesk.cms")

_DEFAULT_DB_URL = "sqlite:///newsdesk.db"

_TITLE_MIN = 2
_TITLE_MAX = 100
_NEWS_TITLE_MAX = 200

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_categories = Table(
    "categories",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(100), nullable=False),
    Column("slug", String(120), nullable=False, index=True),
    Column("image", Text, nullable=False),
    Column("author_id", Integer),
    Column("post_count", Integer, nullable=False, server_default="0"),
    Column("sort_order", Integer, nullable=False, server_default="0"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_deleted", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_news = Table(
    "news",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(200), nullable=False),
    Column("content", Text, nullable=False),
    Column("category_id", Integer, nullable=False, index=True),
    Column("author_id", Integer),
    Column("status", String(10), nullable=False, server_default="Draft", index=True),
    Column("featured", Integer, nullable=False, server_default="0"),
    Column("tags", Text),  # JSON array of lower-cased strings
    Column("is_deleted", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_news_posts = Table(
    "news_posts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("news_id", Integer, nullable=False, index=True),
    Column("content", Text, nullable=False),
    Column("position", Integer, nullable=False),
    Column("author_id", Integer, nullable=False),
    Column("status", String(10), nullable=False, server_default="Draft"),
    Column("media", Text),
    Column("likes", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("news_id", "position", name="uq_post_position"),
)

_CATEGORY_SORTS = {
    "title": _categories.c.title,
    "order": _categories.c.sort_order,
    "created_at": _categories.c.created_at,
}

_NEWS_SORTS = {
    "title": _news.c.title,
    "created_at": _news.c.created_at,
    "updated_at": _news.c.updated_at,
}


def _now_iso() -> str:
    return utc_now().isoformat()


# ---------------------------------------------------------------------------
# Title helpers
# ---------------------------------------------------------------------------


def normalize_title(title: str) -> str:
    """Trim and capitalise the first letter; the rest is left as typed."""
    title = (title or "").strip()
    if not _TITLE_MIN <= len(title) <= _TITLE_MAX:
        raise ValidationFailed(f"Title must be between {_TITLE_MIN} and {_TITLE_MAX} characters.")
    return title[0].upper() + title[1:]


def slugify(title: str) -> str:
    """'Tech & Science!' -> 'tech-science'."""
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")


def normalize_tags(tags: Optional[list[str]]) -> list[str]:
    """Lower-case, trim, drop empties and duplicates (first occurrence wins)."""
    seen: list[str] = []
    for tag in tags or []:
        cleaned = tag.strip().lower()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


def _check_status(status: str) -> str:
    if status not in NEWS_STATUSES:
        raise ValidationFailed(f"status must be one of: {', '.join(NEWS_STATUSES)}")
    return status


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ContentStore:
    """Repository for Category, News and NewsPost entities.

    Usage:
        store = ContentStore("sqlite:///newsdesk.db")
        category = store.create_category("sports", image="https://...")
        news = store.create_news("Final score", "...", category.id)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def _title_taken(self, conn, title: str, exclude_id: Optional[int] = None) -> bool:
        query = select(_categories.c.id).where(
            (_categories.c.is_deleted == 0)
            & ((func.lower(_categories.c.title) == title.lower()) | (_categories.c.slug == slugify(title)))
        )
        if exclude_id is not None:
            query = query.where(_categories.c.id != exclude_id)
        return conn.execute(query).first() is not None

    def ensure_title_available(self, title: str, exclude_id: Optional[int] = None) -> None:
        """Raise Conflict if a non-deleted category already uses this title (or its slug)."""
        title = normalize_title(title)
        with self.engine.connect() as conn:
            if self._title_taken(conn, title, exclude_id):
                raise Conflict("Category with this title already exists.")

    def create_category(
        self,
        title: str,
        image: str,
        order: int = 0,
        is_active: bool = True,
        author_id: Optional[int] = None,
    ) -> Category:
        """Insert a category. Raises ValidationFailed or Conflict."""
        title = normalize_title(title)
        if not image:
            raise ValidationFailed("Category image is required.")
        now = _now_iso()
        with self.engine.begin() as conn:
            if self._title_taken(conn, title):
                logger.warning("Category already exists: %s", title)
                raise Conflict("Category with this title already exists.")
            result = conn.execute(
                _categories.insert().values(
                    title=title,
                    slug=slugify(title),
                    image=image,
                    author_id=author_id,
                    sort_order=order,
                    is_active=1 if is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            category_id = result.inserted_primary_key[0]
        logger.info("Category created: %s (%s)", category_id, title)
        return self.get_category(category_id)

    def get_category(self, category_id: int) -> Category:
        """Return a non-deleted category or raise EntityNotFound."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _categories.select().where((_categories.c.id == category_id) & (_categories.c.is_deleted == 0))
            ).fetchone()
        if row is None:
            raise EntityNotFound("Category", category_id)
        return _row_to_category(row)

    def list_categories(
        self,
        search: Optional[str] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "order",
        sort_order: str = "asc",
    ) -> tuple[list[Category], int]:
        if sort_by not in _CATEGORY_SORTS:
            raise ValidationFailed(f"sort_by must be one of: {', '.join(_CATEGORY_SORTS)}")
        conditions = [_categories.c.is_deleted == 0]
        if search:
            conditions.append(_categories.c.title.ilike(f"%{search}%"))
        if is_active is not None:
            conditions.append(_categories.c.is_active == (1 if is_active else 0))
        column = _CATEGORY_SORTS[sort_by]
        order = column.desc() if sort_order == "desc" else column.asc()
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_categories).where(*conditions)).scalar() or 0
            rows = conn.execute(
                _categories.select()
                .where(*conditions)
                .order_by(order, _categories.c.id)
                .offset((page - 1) * limit)
                .limit(limit)
            ).fetchall()
        return [_row_to_category(r) for r in rows], total

    def update_category(
        self,
        category_id: int,
        title: Optional[str] = None,
        order: Optional[int] = None,
        is_active: Optional[bool] = None,
        image: Optional[str] = None,
    ) -> Category:
        """Apply the given changes. None means "leave unchanged"."""
        current = self.get_category(category_id)
        values: dict = {}
        if title is not None:
            title = normalize_title(title)
            if title != current.title:
                values["title"] = title
                values["slug"] = slugify(title)
        if order is not None:
            values["sort_order"] = order
        if is_active is not None:
            values["is_active"] = 1 if is_active else 0
        if image:
            values["image"] = image
        if not values:
            return current
        values["updated_at"] = _now_iso()
        with self.engine.begin() as conn:
            if "title" in values and self._title_taken(conn, values["title"], exclude_id=category_id):
                logger.warning("Category title already exists: %s", values["title"])
                raise Conflict("Category with this title already exists.")
            conn.execute(_categories.update().where(_categories.c.id == category_id).values(**values))
        logger.info("Category updated: %s", category_id)
        return self.get_category(category_id)

    def delete_category(self, category_id: int) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                _categories.update()
                .where((_categories.c.id == category_id) & (_categories.c.is_deleted == 0))
                .values(is_deleted=1, updated_at=_now_iso())
            )
        if result.rowcount == 0:
            raise EntityNotFound("Category", category_id)
        logger.info("Category deleted: %s", category_id)

    def categories_with_news_count(self) -> list[tuple[Category, int]]:
        """Every non-deleted category with its count of non-deleted news, by order."""
        news_count = func.count(_news.c.id).label("news_count")
        query = (
            select(_categories, news_count)
            .select_from(
                _categories.outerjoin(
                    _news, (_news.c.category_id == _categories.c.id) & (_news.c.is_deleted == 0)
                )
            )
            .where(_categories.c.is_deleted == 0)
            .group_by(_categories.c.id)
            .order_by(_categories.c.sort_order, _categories.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [(_row_to_category(r), r.news_count) for r in rows]

    # ------------------------------------------------------------------
    # News
    # ------------------------------------------------------------------

    def _require_category(self, category_id: int) -> None:
        try:
            self.get_category(category_id)
        except EntityNotFound as exc:
            raise ValidationFailed(f"Category {category_id} does not exist.") from exc

    def create_news(
        self,
        title: str,
        content: str,
        category_id: int,
        status: str = "Draft",
        featured: bool = False,
        tags: Optional[list[str]] = None,
        author_id: Optional[int] = None,
    ) -> News:
        title = (title or "").strip()
        content = (content or "").strip()
        if not title or len(title) > _NEWS_TITLE_MAX:
            raise ValidationFailed(f"Title is required and cannot exceed {_NEWS_TITLE_MAX} characters.")
        if not content:
            raise ValidationFailed("Content is required.")
        _check_status(status)
        self._require_category(category_id)
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _news.insert().values(
                    title=title,
                    content=content,
                    category_id=category_id,
                    author_id=author_id,
                    status=status,
                    featured=1 if featured else 0,
                    tags=json.dumps(normalize_tags(tags)),
                    created_at=now,
                    updated_at=now,
                )
            )
            news_id = result.inserted_primary_key[0]
        logger.info("News created: %s in category %s", news_id, category_id)
        return self.get_news(news_id)

    def get_news(self, news_id: int) -> News:
        """Return a non-deleted news item with its posts ordered by position."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _news.select().where((_news.c.id == news_id) & (_news.c.is_deleted == 0))
            ).fetchone()
            if row is None:
                raise EntityNotFound("News", news_id)
            post_rows = conn.execute(
                _news_posts.select().where(_news_posts.c.news_id == news_id).order_by(_news_posts.c.position)
            ).fetchall()
        news = _row_to_news(row)
        news.posts = [_row_to_post(r) for r in post_rows]
        return news

    def list_news(
        self,
        category_id: Optional[int] = None,
        status: Optional[str] = None,
        featured: Optional[bool] = None,
        tag: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> tuple[list[News], int]:
        """One page of non-deleted news (without posts) and the total match count."""
        if sort_by not in _NEWS_SORTS:
            raise ValidationFailed(f"sort_by must be one of: {', '.join(_NEWS_SORTS)}")
        conditions = [_news.c.is_deleted == 0]
        if category_id is not None:
            conditions.append(_news.c.category_id == category_id)
        if status is not None:
            conditions.append(_news.c.status == _check_status(status))
        if featured is not None:
            conditions.append(_news.c.featured == (1 if featured else 0))
        if tag:
            # tags column holds a JSON array; match the quoted element.
            conditions.append(_news.c.tags.contains(json.dumps(tag.strip().lower())))
        if search:
            pattern = f"%{search}%"
            conditions.append(_news.c.title.ilike(pattern) | _news.c.content.ilike(pattern))
        column = _NEWS_SORTS[sort_by]
        order = column.desc() if sort_order == "desc" else column.asc()
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_news).where(*conditions)).scalar() or 0
            rows = conn.execute(
                _news.select()
                .where(*conditions)
                .order_by(order, _news.c.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).fetchall()
        return [_row_to_news(r) for r in rows], total

    def update_news(self, news_id: int, **fields) -> News:
        """Update title, content, category_id, status, featured or tags.

        Keys with value None are ignored.
        """
        self.get_news(news_id)
        values: dict = {}
        if fields.get("title") is not None:
            title = fields["title"].strip()
            if not title or len(title) > _NEWS_TITLE_MAX:
                raise ValidationFailed(f"Title is required and cannot exceed {_NEWS_TITLE_MAX} characters.")
            values["title"] = title
        if fields.get("content") is not None:
            if not fields["content"].strip():
                raise ValidationFailed("Content is required.")
            values["content"] = fields["content"].strip()
        if fields.get("category_id") is not None:
            self._require_category(fields["category_id"])
            values["category_id"] = fields["category_id"]
        if fields.get("status") is not None:
            values["status"] = _check_status(fields["status"])
        if fields.get("featured") is not None:
            values["featured"] = 1 if fields["featured"] else 0
        if fields.get("tags") is not None:
            values["tags"] = json.dumps(normalize_tags(fields["tags"]))
        if values:
            values["updated_at"] = _now_iso()
            with self.engine.begin() as conn:
                conn.execute(_news.update().where(_news.c.id == news_id).values(**values))
            logger.info("News updated: %s (%s)", news_id, ", ".join(sorted(values)))
        return self.get_news(news_id)

    def set_news_status(self, news_id: int, status: str) -> News:
        return self.update_news(news_id, status=status)

    def delete_news(self, news_id: int) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                _news.update()
                .where((_news.c.id == news_id) & (_news.c.is_deleted == 0))
                .values(is_deleted=1, updated_at=_now_iso())
            )
        if result.rowcount == 0:
            raise EntityNotFound("News", news_id)
        logger.info("News deleted: %s", news_id)

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    def add_post(
        self,
        news_id: int,
        content: str,
        position: int,
        author_id: int,
        status: str = "Draft",
        media: Optional[str] = None,
    ) -> NewsPost:
        """Append a post to a news item and bump its category's post_count.

        Raises ValidationFailed for position < 1 or empty content, Conflict if
        the position is already used in this news item.
        """
        news = self.get_news(news_id)
        if position < 1:
            raise ValidationFailed("Position must be at least 1.")
        if not (content or "").strip():
            raise ValidationFailed("Post content is required.")
        _check_status(status)
        if any(p.position == position for p in news.posts):
            raise Conflict("Post positions must be unique within a news item.")
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _news_posts.insert().values(
                        news_id=news_id,
                        content=content.strip(),
                        position=position,
                        author_id=author_id,
                        status=status,
                        media=media,
                        created_at=_now_iso(),
                    )
                )
                post_id = result.inserted_primary_key[0]
                conn.execute(
                    _categories.update()
                    .where(_categories.c.id == news.category_id)
                    .values(post_count=_categories.c.post_count + 1)
                )
                conn.execute(_news.update().where(_news.c.id == news_id).values(updated_at=_now_iso()))
        except IntegrityError as exc:
            # A concurrent add_post took the position between the check and the insert.
            raise Conflict("Post positions must be unique within a news item.") from exc
        logger.info("Post %s added to news %s at position %d", post_id, news_id, position)
        return next(p for p in self.get_news(news_id).posts if p.id == post_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_category(row) -> Category:
    return Category(
        id=row.id,
        title=row.title,
        slug=row.slug,
        image=row.image,
        author_id=row.author_id,
        post_count=row.post_count,
        order=row.sort_order,
        is_active=bool(row.is_active),
        is_deleted=bool(row.is_deleted),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_news(row) -> News:
    return News(
        id=row.id,
        title=row.title,
        content=row.content,
        category_id=row.category_id,
        author_id=row.author_id,
        status=row.status,
        featured=bool(row.featured),
        tags=json.loads(row.tags) if row.tags else [],
        is_deleted=bool(row.is_deleted),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_post(row) -> NewsPost:
    return NewsPost(
        id=row.id,
        news_id=row.news_id,
        content=row.content,
        position=row.position,
        author_id=row.author_id,
        status=row.status,
        media=row.media,
        likes=row.likes,
        created_at=row.created_at,
    )
