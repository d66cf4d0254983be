# portfolio_cms/services/rendering.py

import html
import math
from typing import Optional

import markdown
from bs4 import BeautifulSoup

from portfolio_cms.config import WORDS_PER_MINUTE

MARKDOWN_EXTENSIONS = ["fenced_code", "tables", "toc", "sane_lists"]


def render_markdown(content: str) -> str:
    """
    Convert a record's markdown body into an HTML fragment.
    """
    return markdown.markdown(content or "", extensions=MARKDOWN_EXTENSIONS)


def estimate_read_time(content: str, words_per_minute: int = WORDS_PER_MINUTE) -> str:
    """
    Returns a label like "4 min read".

    Words are counted on the rendered text, so markdown syntax, image URLs
    and code fences markers do not inflate the estimate. Never below 1 minute.
    """
    text = BeautifulSoup(render_markdown(content), "lxml").get_text(" ")
    words = len(text.split())
    minutes = max(1, math.ceil(words / max(1, words_per_minute)))
    return f"{minutes} min read"


def render_page(
    *,
    title: str,
    description: str,
    body_html: str,
    image: Optional[str] = None,
    meta_title: Optional[str] = None,
    meta_description: Optional[str] = None,
    og_image: Optional[str] = None,
) -> str:
    """
    Wrap a rendered fragment in a minimal HTML document.

    SEO overrides win over the record's own title/description/image.
    """
    page_title = html.escape(meta_title or title)
    page_description = html.escape(meta_description or description or "")
    share_image = og_image or image

    og_image_tag = ""
    if share_image:
        og_image_tag = f'\n  <meta property="og:image" content="{html.escape(share_image)}">'

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>{page_title}</title>
  <meta name="description" content="{page_description}">
  <meta property="og:title" content="{page_title}">
  <meta property="og:description" content="{page_description}">{og_image_tag}
</head>
<body>
  <article>
    <h1>{html.escape(title)}</h1>
    {body_html}
  </article>
</body>
</html>
"""
