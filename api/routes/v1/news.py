"""
api/routes/v1/news.py -- News and news post routes.

Routes:
  POST   /news                    -- create (JSON)
  GET    /news                    -- list (category_id, status, featured, tag, search, pagination)
  GET    /news/{news_id}          -- detail with posts ordered by position
  PATCH  /news/{news_id}          -- partial update (JSON)
  PATCH  /news/{news_id}/status   -- Draft / Published / Rejected
  DELETE /news/{news_id}          -- soft delete
  POST   /news/{news_id}/posts    -- add a post (multipart, optional media file)

Writes require an admin or author token (require_staff); reads are public.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile

from api.models import (
    MessageResponse,
    NewsCreate,
    NewsListResponse,
    NewsPostResponse,
    NewsResponse,
    NewsStatusEnum,
    NewsStatusUpdate,
    NewsUpdate,
    Pagination,
    SortOrderEnum,
)
from api.uploads import upload_optional
from auth.dependencies import require_staff
from auth.models import Account
from cms.errors import Conflict
from cms.store import ContentStore

router = APIRouter()


@router.post("/news", response_model=NewsResponse, status_code=201)
def create_news(request: Request, body: NewsCreate, actor: Account = Depends(require_staff)) -> NewsResponse:
    store: ContentStore = request.app.state.content
    news = store.create_news(
        body.title,
        body.content,
        body.category_id,
        status=body.status.value,
        featured=body.featured,
        tags=body.tags,
        author_id=actor.id,
    )
    return NewsResponse.from_news(news)


@router.get("/news", response_model=NewsListResponse)
def list_news(
    request: Request,
    category_id: Optional[int] = Query(None, ge=1),
    status: Optional[NewsStatusEnum] = Query(None),
    featured: Optional[bool] = Query(None),
    tag: Optional[str] = Query(None, max_length=50),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = Query("created_at", pattern=r"^(title|created_at|updated_at)$"),
    sort_order: SortOrderEnum = Query(SortOrderEnum.desc),
) -> NewsListResponse:
    """List news without their posts; fetch a single item for the posts."""
    store: ContentStore = request.app.state.content
    items, total = store.list_news(
        category_id=category_id,
        status=status.value if status else None,
        featured=featured,
        tag=tag,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order.value,
    )
    return NewsListResponse(
        items=[NewsResponse.from_news(n) for n in items],
        pagination=Pagination.build(total, page, limit),
    )


@router.get("/news/{news_id}", response_model=NewsResponse)
def get_news(request: Request, news_id: int) -> NewsResponse:
    store: ContentStore = request.app.state.content
    return NewsResponse.from_news(store.get_news(news_id))


@router.patch("/news/{news_id}", response_model=NewsResponse, dependencies=[Depends(require_staff)])
def update_news(request: Request, news_id: int, body: NewsUpdate) -> NewsResponse:
    store: ContentStore = request.app.state.content
    changes = body.model_dump(exclude_none=True)
    if "status" in changes:
        changes["status"] = changes["status"].value
    return NewsResponse.from_news(store.update_news(news_id, **changes))


@router.patch("/news/{news_id}/status", response_model=NewsResponse, dependencies=[Depends(require_staff)])
def update_news_status(request: Request, news_id: int, body: NewsStatusUpdate) -> NewsResponse:
    store: ContentStore = request.app.state.content
    return NewsResponse.from_news(store.set_news_status(news_id, body.status.value))


@router.delete("/news/{news_id}", response_model=MessageResponse, dependencies=[Depends(require_staff)])
def delete_news(request: Request, news_id: int) -> MessageResponse:
    store: ContentStore = request.app.state.content
    store.delete_news(news_id)
    return MessageResponse(message="News deleted.")


@router.post("/news/{news_id}/posts", response_model=NewsPostResponse, status_code=201)
def add_post(
    request: Request,
    news_id: int,
    content: str = Form(..., min_length=1),
    position: int = Form(..., ge=1),
    status: NewsStatusEnum = Form(NewsStatusEnum.Draft),
    media: Optional[UploadFile] = File(None),
    actor: Account = Depends(require_staff),
) -> NewsPostResponse:
    """Add a numbered post to a news item. Positions are unique per news item (409 on reuse)."""
    store: ContentStore = request.app.state.content
    news = store.get_news(news_id)
    # Refused before the upload; add_post re-checks under the unique constraint.
    if any(p.position == position for p in news.posts):
        raise Conflict("Post positions must be unique within a news item.")
    url = upload_optional(request, media, allowed=("image", "video", "document"))
    post = store.add_post(news_id, content, position, actor.id, status=status.value, media=url)
    return NewsPostResponse.from_post(post)
