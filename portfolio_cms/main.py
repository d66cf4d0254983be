import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Body,
    Depends,
    FastAPI,
    File,
    Form,
    Query,
    Request,
    UploadFile,
)
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from portfolio_cms.config import CORS_ORIGINS, LOG_LEVEL
from portfolio_cms.db.engine import Base, engine, SessionLocal
from portfolio_cms.models.content_models import BlogPost, Project
from portfolio_cms.services.content_service import (
    ContentService,
    VARIANT_LABELS,
    cleanup_media,
    draft_to_wire,
    flatten_payload,
    increment_views_detached,
    serialize_record,
)
from portfolio_cms.services.errors import CMSError, NotFound, ValidationError
from portfolio_cms.services.markdown_rewriter import MarkdownImageRewriter
from portfolio_cms.services.media_ingestion import (
    DEFAULT_FOLDER,
    GALLERY_FOLDER,
    MediaIngestion,
    get_media_ingestion,
)
from portfolio_cms.services.rendering import render_markdown, render_page

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Portfolio CMS API", version="1.0.0")

#  CORS setup
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- DB Session Dependency ---
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# --- Create tables on startup ---
@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)


# --- Envelope helpers ---

def _success(data: Any = None, message: Optional[str] = None, status_code: int = 200, **extra) -> JSONResponse:
    body: Dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def _failure(message: str, status_code: int, details: Any = None) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "error": message}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


@app.exception_handler(CMSError)
async def cms_error_handler(request: Request, exc: CMSError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _failure(exc.message, exc.status_code, exc.details)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _failure("Validation failed", 400, exc.errors())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _failure("Internal server error", 500)


# --- Schemas (Pydantic models) ---

class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class MetadataIn(CamelModel):
    # views/likes are server-managed counters and are ignored here
    read_time: Optional[str] = None
    tag: Optional[str] = None


class SeoIn(CamelModel):
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    og_image: Optional[str] = None


class ProjectIn(CamelModel):
    slug: str
    title: str
    description: str
    content: str
    image: str = ""
    images: List[str] = []
    tags: List[str] = []
    featured: bool = False
    order: int = 0
    published_at: Optional[datetime] = None
    link: Optional[str] = None
    avatars: List[str] = []
    metadata: Optional[MetadataIn] = None
    seo: Optional[SeoIn] = None


class ProjectUpdate(CamelModel):
    slug: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    image: Optional[str] = None
    images: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    featured: Optional[bool] = None
    order: Optional[int] = None
    published_at: Optional[datetime] = None
    link: Optional[str] = None
    avatars: Optional[List[str]] = None
    metadata: Optional[MetadataIn] = None
    seo: Optional[SeoIn] = None


class BlogPostIn(CamelModel):
    slug: str
    title: str
    description: str
    content: str
    image: str = ""
    tags: List[str] = []
    featured: bool = False
    order: int = 0
    published_at: Optional[datetime] = None
    author: Optional[str] = None
    metadata: Optional[MetadataIn] = None
    seo: Optional[SeoIn] = None


class BlogPostUpdate(CamelModel):
    slug: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    image: Optional[str] = None
    tags: Optional[List[str]] = None
    featured: Optional[bool] = None
    order: Optional[int] = None
    published_at: Optional[datetime] = None
    author: Optional[str] = None
    metadata: Optional[MetadataIn] = None
    seo: Optional[SeoIn] = None


def _payload_to_fields(payload: BaseModel) -> Dict[str, Any]:
    return flatten_payload(payload.model_dump(exclude_unset=True))


def _parse_update(schema, data: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return _payload_to_fields(schema.model_validate(data))
    except PydanticValidationError as e:
        raise ValidationError("Validation failed", details=jsonable_encoder(e.errors()))


# ----- Content routes (one router per variant) -----

def content_router(variant: str, model, create_schema, update_schema) -> APIRouter:
    """
    CRUD + patch actions + markdown ingestion for one content variant,
    mounted under /api/<variant>.
    """
    router = APIRouter(prefix=f"/api/{variant}")
    label = VARIANT_LABELS[model]

    @router.get("")
    def list_records(
        featured: Optional[bool] = None,
        tag: Optional[str] = None,
        limit: Optional[int] = Query(None, ge=0),
        db: Session = Depends(get_db),
    ):
        # Only featured=true filters, like the public site expects
        rows = ContentService(db, model).list(
            featured=True if featured else None,
            tag=tag,
            limit=limit,
        )
        return _success([serialize_record(r) for r in rows])

    @router.post("")
    def create_record(payload: create_schema, db: Session = Depends(get_db)):
        row = ContentService(db, model).create(_payload_to_fields(payload))
        return _success(serialize_record(row), f"{label} created successfully", status_code=201)

    @router.post("/markdown")
    async def ingest_markdown(
        markdown: UploadFile = File(...),
        images: Optional[List[UploadFile]] = File(None),
        slug: Optional[str] = Form(None),
        record: Optional[str] = Form(None),
        identifier: Optional[str] = Form(None),
        save: bool = Form(False),
        db: Session = Depends(get_db),
        media: MediaIngestion = Depends(get_media_ingestion),
    ):
        """
        Upload a .md file plus the images it references.

        - record: JSON of fields the operator already entered (never overwritten)
        - identifier: apply the result to this existing record
        - save: create a new record from the result
        Otherwise the merged draft is returned without persisting anything.
        """
        service = ContentService(db, model)

        target: Dict[str, Any] = {}
        if record:
            try:
                raw = json.loads(record)
            except ValueError:
                raise ValidationError("Validation failed", details={"record": "Invalid JSON"})
            target = _parse_update(update_schema, raw)

        existing = None
        if identifier:
            existing = await run_in_threadpool(service.find, identifier)
            if existing is None:
                raise NotFound(f"{label} not found")
            # Stored values count as operator data: frontmatter only fills gaps
            stored = {k: v for k, v in _existing_fields(existing).items() if v not in (None, "", [])}
            target = {**stored, **target}
        if slug and not target.get("slug"):
            target["slug"] = slug

        try:
            text = (await markdown.read()).decode("utf-8-sig")
        except UnicodeDecodeError:
            raise ValidationError("Validation failed", details={"markdown": "File must be UTF-8 text"})
        files = [(f.filename or "image", await f.read(), f.content_type) for f in images or []]

        rewriter = MarkdownImageRewriter(media)
        merged = await rewriter.ingest(text, files, model, target)

        if existing is not None:
            row = await run_in_threadpool(service.update, identifier, merged)
            return _success(serialize_record(row), f"{label} updated from markdown")
        if save:
            row = await run_in_threadpool(service.create, merged)
            return _success(serialize_record(row), f"{label} created from markdown", status_code=201)
        return _success(draft_to_wire(merged), f"Markdown processed: {len(files)} image(s) uploaded")

    @router.get("/{slug}")
    def get_record(
        slug: str,
        background_tasks: BackgroundTasks,
        increment_views: bool = Query(True, alias="incrementViews"),
        db: Session = Depends(get_db),
    ):
        row = ContentService(db, model).get_by_slug(slug)
        data = serialize_record(row)
        if increment_views:
            background_tasks.add_task(increment_views_detached, variant, row.slug)
        return _success(data)

    @router.put("/{identifier}")
    def update_record(identifier: str, payload: update_schema, db: Session = Depends(get_db)):
        row = ContentService(db, model).update(identifier, _payload_to_fields(payload))
        return _success(serialize_record(row), f"{label} updated successfully")

    @router.patch("/{slug}")
    def patch_record(
        slug: str,
        payload: Dict[str, Any] = Body(...),
        db: Session = Depends(get_db),
    ):
        service = ContentService(db, model)
        action = payload.get("action")

        if action == "incrementLikes":
            return _success({"likes": service.increment_likes(slug)})
        if action == "toggleFeatured":
            return _success({"featured": service.toggle_featured(slug)})
        if action:
            raise ValidationError(f"Unknown action '{action}'")

        row = service.update(slug, _parse_update(update_schema, payload))
        return _success(serialize_record(row))

    @router.delete("/{identifier}")
    def delete_record(
        identifier: str,
        background_tasks: BackgroundTasks,
        db: Session = Depends(get_db),
        media: MediaIngestion = Depends(get_media_ingestion),
    ):
        row = ContentService(db, model).delete(identifier)
        data = serialize_record(row)
        urls = row.image_urls()
        if urls:
            # Fire and forget - never blocks or fails the delete
            background_tasks.add_task(cleanup_media, media, urls)
        return _success(data, f"{label} deleted successfully")

    return router


def _existing_fields(row) -> Dict[str, Any]:
    return {c.key: getattr(row, c.key) for c in row.__table__.columns}


app.include_router(content_router("projects", Project, ProjectIn, ProjectUpdate))
app.include_router(content_router("blog", BlogPost, BlogPostIn, BlogPostUpdate))


# ----- Media endpoints -----

@app.post("/api/upload")
async def upload_image(
    file: Optional[UploadFile] = File(None),
    folder: str = Form(DEFAULT_FOLDER),
    media: MediaIngestion = Depends(get_media_ingestion),
):
    if file is None:
        raise ValidationError("No file provided")
    # Reject before buffering when the multipart parser reports the size
    media.check_upload(file.content_type, file.size)
    data = await file.read()
    asset = await media.upload(data, file.content_type, folder)
    return _success(asset)


@app.delete("/api/upload")
async def delete_image(
    public_id: Optional[str] = Query(None, alias="publicId"),
    media: MediaIngestion = Depends(get_media_ingestion),
):
    if not public_id:
        raise ValidationError("No public_id provided")
    if not await media.delete(public_id):
        raise NotFound("Image not found")
    return _success({"publicId": public_id}, "Image deleted successfully")


@app.get("/api/gallery")
async def list_gallery(
    max_results: int = Query(500, alias="max", ge=1, le=500),
    media: MediaIngestion = Depends(get_media_ingestion),
):
    images = await media.list(GALLERY_FOLDER, max_results)
    return _success(images, total=len(images))


# ----- Public rendered pages -----

def _render_public(variant: str, model, slug: str, background_tasks: BackgroundTasks, db: Session):
    row = ContentService(db, model).get_by_slug(slug)
    html = render_page(
        title=row.title,
        description=row.description,
        body_html=render_markdown(row.content),
        image=row.image,
        meta_title=row.meta_title,
        meta_description=row.meta_description,
        og_image=row.og_image,
    )
    background_tasks.add_task(increment_views_detached, variant, row.slug)
    return HTMLResponse(content=html, status_code=200)


@app.get("/work/{slug}", response_class=HTMLResponse)
def public_project(slug: str, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    return _render_public("projects", Project, slug, background_tasks, db)


@app.get("/blog/{slug}", response_class=HTMLResponse)
def public_blog_post(slug: str, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    return _render_public("blog", BlogPost, slug, background_tasks, db)


# --- Endpoints ---

@app.get("/health")
def health():
    return JSONResponse({"status": "ok"})
