"""
cms/models.py -- Domain dataclasses for categories and news.

These are pure data containers with zero logic. Title normalisation, slug
generation and uniqueness rules live in cms/store.py.
"""

from dataclasses import dataclass, field
from typing import Optional

NEWS_STATUSES = ("Draft", "Published", "Rejected")


@dataclass
class Category:
    """A news category.

    title is stored with its first letter capitalised; slug is derived from
    it on every title change. Titles are unique case-insensitively among
    non-deleted categories only, so a deleted title can be reused.

    id is None before the record is written to the database.
    """

    title: str
    image: str  # media host URL
    slug: str = ""
    id: Optional[int] = None
    author_id: Optional[int] = None
    post_count: int = 0
    order: int = 0
    is_active: bool = True
    is_deleted: bool = False
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class NewsPost:
    """One numbered entry inside a news item. Positions are unique per news item."""

    news_id: int
    content: str
    position: int  # >= 1
    author_id: int
    status: str = "Draft"  # "Draft" | "Published" | "Rejected"
    media: Optional[str] = None
    likes: int = 0
    id: Optional[int] = None
    created_at: str = ""


@dataclass
class News:
    """A news item in one category.

    tags are lower-cased and trimmed on write. posts is populated by
    ContentStore.get_news(); list queries leave it empty.
    """

    title: str
    content: str
    category_id: int
    status: str = "Draft"
    featured: bool = False
    tags: list[str] = field(default_factory=list)
    posts: list[NewsPost] = field(default_factory=list)
    id: Optional[int] = None
    author_id: Optional[int] = None
    is_deleted: bool = False
    created_at: str = ""
    updated_at: str = ""
