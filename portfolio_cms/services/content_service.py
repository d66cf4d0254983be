# portfolio_cms/services/content_service.py

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from portfolio_cms.db.engine import SessionLocal
from portfolio_cms.models.content_models import BlogPost, Project
from portfolio_cms.services.errors import (
    CMSError,
    DuplicateSlug,
    NotFound,
    RemoteError,
    ValidationError,
)
from portfolio_cms.services.media_ingestion import MediaIngestion, public_id_from_url
from portfolio_cms.services.rendering import estimate_read_time

logger = logging.getLogger(__name__)

# URL segment -> mapped class
VARIANTS = {
    "projects": Project,
    "blog": BlogPost,
}

VARIANT_LABELS = {
    Project: "Project",
    BlogPost: "Blog post",
}

# Internal ids are 24 hex chars; anything else is treated as a slug
INTERNAL_ID_REGEX = re.compile(r"^[0-9a-fA-F]{24}$")

REQUIRED_FIELDS = ("slug", "title", "description", "content")

# Columns with a default that may be omitted but never set to null
NON_NULL_FIELDS = ("featured", "order")

# Never client-writable. Counters only move through the increment operations.
PROTECTED_FIELDS = (
    "id",
    "_id",
    "internalId",
    "internal_id",
    "createdAt",
    "created_at",
    "updatedAt",
    "updated_at",
    "views",
    "likes",
)


def model_for_variant(variant: str):
    try:
        return VARIANTS[variant]
    except KeyError:
        raise NotFound(f"Unknown content type '{variant}'")


def flatten_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Turn the nested wire shape (metadata.*, seo.*) into column names.

    Counter fields inside `metadata` are dropped.
    """
    flat = dict(data)

    meta = flat.pop("metadata", None) or {}
    if "read_time" in meta:
        flat["read_time"] = meta["read_time"]
    if "tag" in meta:
        flat["metadata_tag"] = meta["tag"]

    seo = flat.pop("seo", None) or {}
    for key in ("meta_title", "meta_description", "og_image"):
        if key in seo:
            flat[key] = seo[key]

    return flat


# column name -> wire name for the unsaved-draft shape
_DRAFT_WIRE_NAMES = {
    "published_at": "publishedAt",
}
_DRAFT_NESTED = {
    "read_time": ("metadata", "readTime"),
    "metadata_tag": ("metadata", "tag"),
    "meta_title": ("seo", "metaTitle"),
    "meta_description": ("seo", "metaDescription"),
    "og_image": ("seo", "ogImage"),
}


def draft_to_wire(flat: Dict[str, Any]) -> Dict[str, Any]:
    """
    Inverse of flatten_payload, for records that were not saved yet.
    """
    wire: Dict[str, Any] = {}
    for key, value in flat.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        if key in _DRAFT_NESTED:
            group, name = _DRAFT_NESTED[key]
            wire.setdefault(group, {})[name] = value
        else:
            wire[_DRAFT_WIRE_NAMES.get(key, key)] = value
    return wire


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_record(row) -> Dict[str, Any]:
    """
    Public JSON shape of a Project / BlogPost row.
    """
    data: Dict[str, Any] = {
        "id": row.id,
        "slug": row.slug,
        "title": row.title,
        "description": row.description,
        "image": row.image or "",
        "content": row.content,
        "tags": list(row.tags or []),
        "featured": bool(row.featured),
        "order": row.order,
        "publishedAt": _iso(row.published_at),
        "createdAt": _iso(row.created_at),
        "updatedAt": _iso(row.updated_at),
        "metadata": {"views": row.views or 0},
        "seo": {
            "metaTitle": row.meta_title,
            "metaDescription": row.meta_description,
            "ogImage": row.og_image,
        },
    }

    if isinstance(row, Project):
        data["images"] = list(row.images or [])
        data["link"] = row.link
        data["avatars"] = list(row.avatars or [])
        data["metadata"]["likes"] = row.likes or 0
    elif isinstance(row, BlogPost):
        data["author"] = row.author
        data["metadata"]["readTime"] = row.read_time
        data["metadata"]["tag"] = row.metadata_tag

    return data


def _coerce_datetime(field: str, value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(
            "Validation failed",
            details={field: f"Invalid date '{text}'"},
        )
    # Stored naive, in UTC
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _normalize_tags(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    tags = []
    for tag in value:
        tag = str(tag).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


class ContentService:
    """
    CRUD and counter mutations for one content variant.

    Notes on concurrency:
    - views/likes are single `col = col + 1` UPDATEs, so concurrent
      increments never lose counts.
    - update() and toggle_featured() are read-modify-write and
      last-write-wins.
    - slug uniqueness is checked before writing (fast fail), but the unique
      index on `slug` is what actually holds when two writers race.
    """

    def __init__(self, db: Session, model):
        self.db = db
        self.model = model

    @classmethod
    def for_variant(cls, db: Session, variant: str) -> "ContentService":
        return cls(db, model_for_variant(variant))

    @property
    def label(self) -> str:
        return VARIANT_LABELS[self.model]

    @property
    def _writable_columns(self) -> set:
        return {c.key for c in self.model.__table__.columns} - set(PROTECTED_FIELDS)

    # ----- lookups -----

    def list(
        self,
        featured: Optional[bool] = None,
        tag: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list:
        stmt = select(self.model)
        if featured is not None:
            stmt = stmt.where(self.model.featured == featured)
        stmt = stmt.order_by(self.model.order.asc(), self.model.published_at.desc())

        rows = list(self.db.execute(stmt).scalars())

        # Tags live in a JSON column; match in Python so SQLite and Postgres behave alike
        if tag:
            rows = [row for row in rows if tag in (row.tags or [])]

        if limit is not None and limit >= 0:
            rows = rows[:limit]
        return rows

    def _by_slug(self, slug: str):
        return (
            self.db.execute(select(self.model).where(self.model.slug == slug))
            .scalars()
            .one_or_none()
        )

    def get_by_slug(self, slug: str):
        row = self._by_slug(slug)
        if row is None:
            raise NotFound(f"{self.label} not found")
        return row

    def find(self, identifier: str):
        """
        Resolve an internal id or a slug. Id-shaped identifiers are tried as
        ids first and fall back to a slug lookup.
        """
        if INTERNAL_ID_REGEX.fullmatch(identifier or ""):
            row = self.db.get(self.model, identifier.lower())
            if row is not None:
                return row
        return self._by_slug(identifier)

    def _slug_taken(self, slug: str, exclude_id: Optional[str] = None) -> bool:
        stmt = select(self.model.id).where(self.model.slug == slug)
        if exclude_id is not None:
            stmt = stmt.where(self.model.id != exclude_id)
        return self.db.execute(stmt).first() is not None

    # ----- writes -----

    def _clean(self, data: Dict[str, Any]) -> Dict[str, Any]:
        writable = self._writable_columns
        cleaned = {}
        for key, value in data.items():
            if key in writable:
                cleaned[key] = value
            elif key not in PROTECTED_FIELDS:
                logger.debug("Ignoring unknown %s field %r", self.label, key)

        if "slug" in cleaned and isinstance(cleaned["slug"], str):
            cleaned["slug"] = cleaned["slug"].strip()
        if "tags" in cleaned:
            cleaned["tags"] = _normalize_tags(cleaned["tags"])
        for list_field in ("images", "avatars"):
            if list_field in cleaned:
                cleaned[list_field] = [u for u in (cleaned[list_field] or []) if u]
        if "published_at" in cleaned:
            cleaned["published_at"] = _coerce_datetime("publishedAt", cleaned["published_at"])
            if cleaned["published_at"] is None:
                del cleaned["published_at"]
        if "image" in cleaned and cleaned["image"] is None:
            cleaned["image"] = ""
        return cleaned

    def _check_required(self, data: Dict[str, Any], partial: bool = False):
        errors = {}
        for field in REQUIRED_FIELDS:
            if partial and field not in data:
                continue
            value = data.get(field)
            if value is None or (isinstance(value, str) and not value.strip()):
                errors[field] = "This field is required"
        for field in NON_NULL_FIELDS:
            if field in data and data[field] is None:
                errors[field] = "This field cannot be null"
        if errors:
            raise ValidationError("Validation failed", details=errors)

    def _commit(self, slug: Optional[str], exclude_id: Optional[str] = None):
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if slug and self._slug_taken(slug, exclude_id=exclude_id):
                # Lost the race against a concurrent writer
                raise DuplicateSlug(slug, f"A {self.label.lower()} with this slug already exists")
            raise ValidationError("Validation failed", details=str(e.orig))
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RemoteError(f"Failed to save {self.label.lower()}: {e}") from e

    def create(self, data: Dict[str, Any]):
        cleaned = self._clean(data)
        self._check_required(cleaned)

        slug = cleaned["slug"]
        if self._slug_taken(slug):
            raise DuplicateSlug(slug, f"A {self.label.lower()} with this slug already exists")

        if self.model is BlogPost and not cleaned.get("read_time"):
            cleaned["read_time"] = estimate_read_time(cleaned["content"])

        now = datetime.utcnow()
        row = self.model(**cleaned)
        row.created_at = now
        row.updated_at = now
        if row.published_at is None:
            row.published_at = now

        self.db.add(row)
        self._commit(slug)
        self.db.refresh(row)
        logger.info("Created %s '%s'", self.label.lower(), row.slug)
        return row

    def update(self, identifier: str, patch: Dict[str, Any]):
        row = self.find(identifier)
        if row is None:
            raise NotFound(f"{self.label} not found")

        cleaned = self._clean(patch)
        self._check_required(cleaned, partial=True)

        new_slug = cleaned.get("slug")
        if new_slug and new_slug != row.slug and self._slug_taken(new_slug, exclude_id=row.id):
            raise DuplicateSlug(new_slug, "Slug already exists")

        if (
            self.model is BlogPost
            and "content" in cleaned
            and "read_time" not in cleaned
            and (not row.read_time or row.read_time == estimate_read_time(row.content))
        ):
            # Keep an auto-estimated read time in step with the body
            cleaned["read_time"] = estimate_read_time(cleaned["content"])

        for key, value in cleaned.items():
            setattr(row, key, value)
        row.updated_at = datetime.utcnow()

        self._commit(new_slug or row.slug, exclude_id=row.id)
        self.db.refresh(row)
        logger.info("Updated %s '%s'", self.label.lower(), row.slug)
        return row

    def increment_views(self, slug: str) -> bool:
        """
        Single incrementing UPDATE; returns False when the slug is absent.
        """
        result = self.db.execute(
            update(self.model)
            .where(self.model.slug == slug)
            .values(views=self.model.views + 1)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount > 0

    def increment_likes(self, slug: str) -> int:
        if not hasattr(self.model, "likes"):
            raise ValidationError(f"{self.label}s do not support likes")

        result = self.db.execute(
            update(self.model)
            .where(self.model.slug == slug)
            .values(likes=self.model.likes + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise NotFound(f"{self.label} not found")

        likes = self.db.execute(
            select(self.model.likes).where(self.model.slug == slug)
        ).scalar_one()
        self.db.commit()
        return likes

    def toggle_featured(self, slug: str) -> bool:
        # Read-flip-write: concurrent toggles are last-write-wins
        row = self.get_by_slug(slug)
        row.featured = not row.featured
        featured = row.featured
        self._commit(row.slug, exclude_id=row.id)
        return featured

    def delete(self, identifier: str):
        """
        Deletes and returns the row. Its image URLs are still readable from
        the returned (detached) instance for cleanup.
        """
        row = self.find(identifier)
        if row is None:
            raise NotFound(f"{self.label} not found")

        # Load every attribute before the row leaves the session
        self.db.refresh(row)
        self.db.delete(row)
        self._commit(None)
        logger.info("Deleted %s '%s'", self.label.lower(), row.slug)
        return row


# ----- Detached work (runs after the response has been sent) -----


def increment_views_detached(variant: str, slug: str, session_factory=SessionLocal):
    """
    Background task for view counting. Opens its own session; failures are
    logged and never reach the request that scheduled it.
    """
    db = None
    try:
        db = session_factory()
        if not ContentService.for_variant(db, variant).increment_views(slug):
            logger.info("Skipped view count for missing %s '%s'", variant, slug)
    except Exception:
        logger.exception("Failed to increment views for %s '%s'", variant, slug)
    finally:
        if db is not None:
            db.close()


async def cleanup_media(media: MediaIngestion, urls: Iterable[str]):
    """
    Best-effort deletion of hosted images a deleted record referenced.
    Not-found and host errors are logged only.
    """
    for url in urls:
        public_id = public_id_from_url(url)
        if not public_id:
            logger.debug("Skipping cleanup of non-hosted image %s", url)
            continue
        try:
            deleted = await media.delete(public_id)
        except CMSError as e:
            logger.warning("Failed to delete media %s: %s", public_id, e.message)
        except Exception:
            logger.exception("Unexpected error deleting media %s", public_id)
        else:
            if deleted:
                logger.info("Deleted media %s", public_id)
