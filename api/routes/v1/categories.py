"""
api/routes/v1/categories.py -- Category routes.

Routes (in registration order to avoid FastAPI path capture conflicts):
  POST   /categories                    -- create (multipart, image required)
  GET    /categories                    -- list (search, is_active, pagination, sort)
  GET    /categories/with-news-count    -- every category with its news count
  GET    /categories/{category_id}      -- detail
  PATCH  /categories/{category_id}      -- update (multipart, image optional)
  DELETE /categories/{category_id}      -- soft delete

Writes require an admin or author token (require_staff); reads are public.
ContentError and MediaUploadError propagate to the handlers in api/main.py.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile

from api.models import (
    CategoryListResponse,
    CategoryResponse,
    CategoryWithCount,
    MessageResponse,
    Pagination,
    SortOrderEnum,
)
from api.uploads import replace_media, upload_optional
from auth.dependencies import require_staff
from auth.models import Account
from cms.errors import ValidationFailed
from cms.store import ContentStore

router = APIRouter()


@router.post("/categories", response_model=CategoryResponse, status_code=201)
def create_category(
    request: Request,
    title: str = Form(..., min_length=2, max_length=100),
    order: int = Form(0, ge=0),
    is_active: bool = Form(True),
    image: Optional[UploadFile] = File(None),
    actor: Account = Depends(require_staff),
) -> CategoryResponse:
    """Create a category. The title's first letter is capitalised and a slug derived."""
    store: ContentStore = request.app.state.content
    if image is None or not image.filename:
        raise ValidationFailed("Category image is required.")
    # Reject duplicates before paying for the upload.
    store.ensure_title_available(title)
    url = upload_optional(request, image)
    category = store.create_category(title, image=url, order=order, is_active=is_active, author_id=actor.id)
    return CategoryResponse.from_category(category)


@router.get("/categories", response_model=CategoryListResponse)
def list_categories(
    request: Request,
    search: Optional[str] = Query(None, max_length=100),
    is_active: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = Query("order", pattern=r"^(title|order|created_at)$"),
    sort_order: SortOrderEnum = Query(SortOrderEnum.asc),
) -> CategoryListResponse:
    store: ContentStore = request.app.state.content
    categories, total = store.list_categories(
        search=search, is_active=is_active, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order.value
    )
    return CategoryListResponse(
        items=[CategoryResponse.from_category(c) for c in categories],
        pagination=Pagination.build(total, page, limit),
    )


@router.get("/categories/with-news-count", response_model=list[CategoryWithCount])
def categories_with_news_count(request: Request) -> list[CategoryWithCount]:
    """All non-deleted categories sorted by order, each with its count of non-deleted news."""
    store: ContentStore = request.app.state.content
    return [
        CategoryWithCount(**CategoryResponse.from_category(c).model_dump(), news_count=count)
        for c, count in store.categories_with_news_count()
    ]


@router.get("/categories/{category_id}", response_model=CategoryResponse)
def get_category(request: Request, category_id: int) -> CategoryResponse:
    store: ContentStore = request.app.state.content
    return CategoryResponse.from_category(store.get_category(category_id))


@router.patch("/categories/{category_id}", response_model=CategoryResponse, dependencies=[Depends(require_staff)])
def update_category(
    request: Request,
    category_id: int,
    title: Optional[str] = Form(None, min_length=2, max_length=100),
    order: Optional[int] = Form(None, ge=0),
    is_active: Optional[bool] = Form(None),
    image: Optional[UploadFile] = File(None),
) -> CategoryResponse:
    """Update a category. A new image replaces the old one, which is then deleted from the media host."""
    store: ContentStore = request.app.state.content
    current = store.get_category(category_id)
    if title is not None:
        store.ensure_title_available(title, exclude_id=category_id)
    url = upload_optional(request, image)
    category = store.update_category(category_id, title=title, order=order, is_active=is_active, image=url)
    replace_media(request, current.image, url)
    return CategoryResponse.from_category(category)


@router.delete("/categories/{category_id}", response_model=MessageResponse, dependencies=[Depends(require_staff)])
def delete_category(request: Request, category_id: int) -> MessageResponse:
    """Soft delete. The image stays on the media host."""
    store: ContentStore = request.app.state.content
    store.delete_category(category_id)
    return MessageResponse(message="Category deleted.")
