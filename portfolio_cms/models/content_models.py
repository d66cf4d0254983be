# portfolio_cms/models/content_models.py

import uuid
from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    Text,
    JSON,
)

from portfolio_cms.db.engine import Base


def new_internal_id() -> str:
    """
    24 lowercase hex chars. The id shape is what lets update/delete tell an
    internal id apart from a slug.
    """
    return uuid.uuid4().hex[:24]


class ContentRecordMixin:
    """
    Columns shared by every content variant (Project, BlogPost).

    One row ~= one page on the public site, addressed by its slug:
      - /work/<slug> for projects
      - /blog/<slug> for blog posts
    """

    id = Column(String(24), primary_key=True, default=new_internal_id)

    # Public slug, unique within the variant's table.
    # The unique index is the real guarantee; services pre-check it only
    # to fail fast with a readable error.
    slug = Column(String(200), unique=True, index=True, nullable=False)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)

    # Primary display image URL ("" before the first upload)
    image = Column(String, nullable=False, default="")

    # Markdown body
    content = Column(Text, nullable=False)

    # Ordered list of tag strings
    tags = Column(JSON, nullable=False, default=list)

    featured = Column(Boolean, nullable=False, default=False)

    # Display ordering: `order` ascending, then published_at descending
    order = Column(Integer, nullable=False, default=0)
    published_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Set explicitly by ContentService.update; counter increments leave it alone
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # metadata.views – only ever changed with a single incrementing UPDATE
    views = Column(Integer, nullable=False, default=0)

    # seo.*
    meta_title = Column(String, nullable=True)
    meta_description = Column(String, nullable=True)
    og_image = Column(String, nullable=True)

    def image_urls(self) -> list:
        """Every hosted image URL this record references."""
        return [self.image] if self.image else []


class Project(ContentRecordMixin, Base):
    __tablename__ = "projects"

    # Additional gallery images, in display order
    images = Column(JSON, nullable=False, default=list)

    # External demo URL
    link = Column(String, nullable=True)

    # Contributor avatar image URLs
    avatars = Column(JSON, nullable=False, default=list)

    # metadata.likes
    likes = Column(Integer, nullable=False, default=0)

    def image_urls(self) -> list:
        urls = super().image_urls()
        urls.extend(url for url in (self.images or []) if url)
        return urls


class BlogPost(ContentRecordMixin, Base):
    __tablename__ = "blog_posts"

    author = Column(String, nullable=True)

    # metadata.readTime, e.g. "5 min read"
    read_time = Column(String, nullable=True)

    # metadata.tag – free-form category label shown on cards
    metadata_tag = Column(String, nullable=True)
