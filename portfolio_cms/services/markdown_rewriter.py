# portfolio_cms/services/markdown_rewriter.py

"""
Markdown ingestion: frontmatter extraction and local image rewriting.

The frontmatter format is deliberately minimal: flat `key: value` lines
between two `---` lines, quotes around values stripped. There is no
nesting and no list syntax; `tags: a, b` is read as one string and split
on commas when merged. Everything downstream expects flat string values.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from portfolio_cms.config import MEDIA_ROOT_FOLDER
from portfolio_cms.models.content_models import Project
from portfolio_cms.services.errors import ValidationError
from portfolio_cms.services.media_ingestion import MediaIngestion

logger = logging.getLogger(__name__)

# The block between the delimiters may be empty
FRONTMATTER_REGEX = re.compile(r"^---\r?\n(?:(.*?)\r?\n)?---(?:\r?\n|$)(.*)$", re.DOTALL)

# ![alt](path) or ![alt](path "title")
IMAGE_REF_REGEX = re.compile(r'!\[.*?\]\((.*?)(?:\s+".*?")?\)')

# frontmatter key -> column name, first listed key wins on conflict
FRONTMATTER_FIELDS: Sequence[Tuple[str, str]] = (
    ("slug", "slug"),
    ("title", "title"),
    ("description", "description"),
    ("summary", "description"),
    ("image", "image"),
    ("tags", "tags"),
    ("tag", "tags"),
    ("publishedAt", "published_at"),
    ("author", "author"),
    ("metaTitle", "meta_title"),
    ("metaDescription", "meta_description"),
    ("ogImage", "og_image"),
)


def split_frontmatter(markdown_text: str) -> Tuple[Dict[str, str], str]:
    """
    Returns (metadata, body). Without a frontmatter block the metadata is
    empty and the body is the input unchanged.
    """
    match = FRONTMATTER_REGEX.match(markdown_text or "")
    if not match:
        return {}, markdown_text or ""

    block, body = match.group(1) or "", match.group(2)
    metadata: Dict[str, str] = {}
    for line in block.splitlines():
        key, sep, value = line.partition(":")
        key = key.strip()
        if not sep or not key:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        metadata[key] = value
    return metadata, body.strip()


def extract_local_image_refs(body: str) -> List[str]:
    """
    Paths of every image reference that is not already an http(s) URL,
    in document order.
    """
    refs = []
    for match in IMAGE_REF_REGEX.finditer(body):
        path = match.group(1).strip()
        if path.startswith("http://") or path.startswith("https://"):
            continue
        refs.append(path)
    return refs


def reference_forms(filename: str) -> List[str]:
    """
    Every textual form a markdown file may use to point at `filename`.
    """
    forms = []
    for name in (filename, filename.replace(" ", "%20")):
        for candidate in (name, f"./{name}", f"./images/{name}", f"images/{name}"):
            if candidate not in forms:
                forms.append(candidate)
    return forms


def rewrite_image_refs(body: str, url_map: Dict[str, str]) -> str:
    """
    Replace local references found in `url_map`, keeping the alt text.
    References without an entry are left exactly as written.
    """
    updated = body
    for ref in extract_local_image_refs(body):
        hosted = url_map.get(ref)
        if not hosted:
            continue
        pattern = re.compile(r'!\[([^\]]*)\]\(' + re.escape(ref) + r'(?:\s+"[^"]*")?\)')
        updated = pattern.sub(lambda m: f"![{m.group(1)}]({hosted})", updated)
    return updated


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


def merge_frontmatter(target: Dict[str, Any], metadata: Dict[str, str]) -> Dict[str, Any]:
    """
    Fill empty/unset fields of `target` (column names) from frontmatter.
    Values the operator already entered are never overwritten.
    """
    merged = dict(target)
    for fm_key, field in FRONTMATTER_FIELDS:
        value = metadata.get(fm_key)
        if value is None or value == "":
            continue
        if not _is_empty(merged.get(field)):
            continue
        if field == "tags":
            merged[field] = [t.strip() for t in value.strip("[]").split(",") if t.strip()]
        else:
            merged[field] = value
    return merged


def media_folder_for(model, slug: str) -> str:
    kind = "Project_Images" if model is Project else "Blog_Images"
    return f"{MEDIA_ROOT_FOLDER}/{kind}/{slug}"


class MarkdownImageRewriter:
    """
    Turns an uploaded markdown document plus its local image files into
    record fields: `content` with hosted image URLs, and frontmatter merged
    into the target record.
    """

    def __init__(self, media: MediaIngestion):
        self.media = media

    async def upload_images(
        self,
        images: Sequence[Tuple[str, bytes, Optional[str]]],
        folder: str,
    ) -> Dict[str, str]:
        """
        images: (filename, data, mime_type) triples.
        Returns the reference-form -> hosted URL lookup table. A filename
        uploaded twice maps to the later upload.
        """
        url_map: Dict[str, str] = {}
        for filename, data, mime_type in images:
            asset = await self.media.upload(data, mime_type, folder)
            for form in reference_forms(filename):
                url_map[form] = asset["url"]
        return url_map

    async def ingest(
        self,
        markdown_text: str,
        images: Sequence[Tuple[str, bytes, Optional[str]]],
        model,
        target: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Returns the target merged with frontmatter and a rewritten `content`.

        The record's slug (from the target, else from frontmatter) names the
        media folder, so one of them must provide it.
        """
        target = dict(target or {})
        metadata, body = split_frontmatter(markdown_text)

        slug = (target.get("slug") or metadata.get("slug") or "").strip()
        if not slug:
            raise ValidationError(
                "Validation failed",
                details={"slug": "Enter a slug (or add one to the frontmatter) before uploading markdown"},
            )

        url_map = await self.upload_images(images, media_folder_for(model, slug))
        content = rewrite_image_refs(body, url_map)

        dangling = [ref for ref in extract_local_image_refs(content) if ref not in url_map]
        if dangling:
            logger.info("Markdown for '%s' keeps %d unresolved image reference(s)", slug, len(dangling))

        merged = merge_frontmatter(target, metadata)
        merged["slug"] = merged.get("slug") or slug
        merged["content"] = content
        return merged
