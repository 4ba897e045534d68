"""
API request and response models for Newsdesk REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
cms/models.py, which own the internal domain representation. Route handlers
map between the two.

Multipart endpoints (account and category create/update, post creation) take
Form() fields directly in the route signature; their field rules are the
Annotated types defined here so JSON and form inputs validate the same way.
"""

import math
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.models import AccountView, LoginRecord
from cms.models import Category, News, NewsPost

# ---------------------------------------------------------------------------
# Constants / shared field types
# ---------------------------------------------------------------------------

PHONE_PATTERN = r"^\+?[0-9]{7,15}$"

# bcrypt ignores bytes past 72, so longer passwords are refused up front.
Password = Annotated[str, Field(min_length=8, max_length=72)]


class SortOrderEnum(str, Enum):
    asc = "asc"
    desc = "desc"


class NewsStatusEnum(str, Enum):
    Draft = "Draft"
    Published = "Published"
    Rejected = "Rejected"


# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    page: int
    limit: int
    pages: int

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "Pagination":
        return cls(total=total, page=page, limit=limit, pages=math.ceil(total / limit) if limit else 0)


# ---------------------------------------------------------------------------
# Accounts -- requests
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/{admins|authors|users}/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    password: str = Field(min_length=1, max_length=72)


class PasswordChange(BaseModel):
    """Request body for POST .../me/password."""

    current_password: str = Field(min_length=1, max_length=72)
    new_password: Password

    @field_validator("new_password")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Password cannot be blank.")
        return value


class AccountStatusUpdate(BaseModel):
    """Request body for PATCH .../{id}/status. Omitted fields stay unchanged."""

    is_active: Optional[bool] = None
    is_verified: Optional[bool] = None


# ---------------------------------------------------------------------------
# Accounts -- responses
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Sanitized account. Never carries the password hash, refresh token or lockout state."""

    model_config = ConfigDict(frozen=True)

    id: int
    kind: str
    email: str
    phone: str
    first_name: str
    last_name: str
    full_name: str
    role: str
    avatar: str
    cover_image: str
    bio: str
    social_links: dict[str, str]
    is_active: bool
    is_verified: bool
    last_active: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_view(cls, view: AccountView) -> "AccountResponse":
        return cls(**view.__dict__)


class LoginResponse(BaseModel):
    """Response for login and refresh. The refresh token travels only as a cookie."""

    model_config = ConfigDict(frozen=True)

    account: AccountResponse
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class AccountListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[AccountResponse]
    pagination: Pagination


class LoginHistoryRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    device: str
    ip_address: str
    timestamp: str

    @classmethod
    def from_record(cls, record: LoginRecord) -> "LoginHistoryRow":
        return cls(device=record.device, ip_address=record.ip_address, timestamp=record.timestamp.isoformat())


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class CategoryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    slug: str
    image: str
    author_id: Optional[int]
    post_count: int
    order: int
    is_active: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_category(cls, category: Category) -> "CategoryResponse":
        return cls(
            id=category.id,
            title=category.title,
            slug=category.slug,
            image=category.image,
            author_id=category.author_id,
            post_count=category.post_count,
            order=category.order,
            is_active=category.is_active,
            created_at=category.created_at,
            updated_at=category.updated_at,
        )


class CategoryWithCount(CategoryResponse):
    news_count: int


class CategoryListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[CategoryResponse]
    pagination: Pagination


# ---------------------------------------------------------------------------
# News
# ---------------------------------------------------------------------------


class NewsCreate(BaseModel):
    """Request body for POST /api/v1/news."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    category_id: int = Field(ge=1)
    status: NewsStatusEnum = NewsStatusEnum.Draft
    featured: bool = False
    tags: list[str] = Field(default_factory=list, max_length=20)


class NewsUpdate(BaseModel):
    """Request body for PATCH /api/v1/news/{id}. Omitted fields stay unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    content: Optional[str] = Field(default=None, min_length=1)
    category_id: Optional[int] = Field(default=None, ge=1)
    status: Optional[NewsStatusEnum] = None
    featured: Optional[bool] = None
    tags: Optional[list[str]] = Field(default=None, max_length=20)


class NewsStatusUpdate(BaseModel):
    status: NewsStatusEnum


class NewsPostResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    content: str
    position: int
    author_id: int
    status: str
    media: Optional[str]
    likes: int
    created_at: str

    @classmethod
    def from_post(cls, post: NewsPost) -> "NewsPostResponse":
        return cls(
            id=post.id,
            content=post.content,
            position=post.position,
            author_id=post.author_id,
            status=post.status,
            media=post.media,
            likes=post.likes,
            created_at=post.created_at,
        )


class NewsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    content: str
    category_id: int
    author_id: Optional[int]
    status: str
    featured: bool
    tags: list[str]
    posts: list[NewsPostResponse] = Field(default_factory=list)
    created_at: str
    updated_at: str

    @classmethod
    def from_news(cls, news: News) -> "NewsResponse":
        return cls(
            id=news.id,
            title=news.title,
            content=news.content,
            category_id=news.category_id,
            author_id=news.author_id,
            status=news.status,
            featured=news.featured,
            tags=news.tags,
            posts=[NewsPostResponse.from_post(p) for p in news.posts],
            created_at=news.created_at,
            updated_at=news.updated_at,
        )


class NewsListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[NewsResponse]
    pagination: Pagination
