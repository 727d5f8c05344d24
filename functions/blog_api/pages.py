"""
Server-rendered post pages.

Content is shown as escaped text split into paragraphs; markdown is not
converted.
"""

from __future__ import annotations

import html
import logging
import re
from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse

from blog_api.codec import decode_post, is_valid_slug, post_path
from blog_api.config import Settings, get_settings
from blog_api.dependencies import get_document_store
from blog_api.errors import NotFoundError, StoreError
from blog_api.storage import DocumentStore

logger = logging.getLogger(__name__)

router = APIRouter()

CACHE_CONTROL = "s-maxage=60, stale-while-revalidate=300"
EXCERPT_LENGTH = 160


def make_excerpt(content: str) -> str:
    """First plain-text line of the content, for meta descriptions."""
    text = re.sub(r"^#.*$", "", content or "", flags=re.MULTILINE)
    text = re.sub(r"!\[[^\]]*\]\([^)]+\)", "", text)
    text = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", text)
    text = re.sub(r"[*_`]", "", text)
    return text.strip().split("\n")[0][:EXCERPT_LENGTH]


def format_date(value: str) -> str:
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except (TypeError, ValueError):
        return value or ""
    return f"{parsed:%B} {parsed.day}, {parsed.year}"


def _absolute(url: str, site_url: str) -> str:
    if url.startswith("/"):
        return site_url.rstrip("/") + url
    return url


def _render_paragraphs(content: str) -> str:
    blocks = [block.strip() for block in re.split(r"\n\s*\n", content or "")]
    return "\n".join(
        "<p>%s</p>" % html.escape(block).replace("\n", "<br>\n")
        for block in blocks
        if block
    )


def render_post_page(post: dict, settings: Settings) -> str:
    title = html.escape(post.get("title", ""))
    description = html.escape(make_excerpt(post.get("content", "")))
    canonical = html.escape(
        f"{settings.site_url.rstrip('/')}/writing/{post.get('slug', '')}"
    )
    cover = post.get("coverImage")
    og_image = html.escape(_absolute(cover or settings.default_og_image, settings.site_url))
    hero = (
        f'<img src="{html.escape(cover)}" alt="{title}" class="post-hero-image">'
        if cover
        else ""
    )
    return f"""<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>{title}</title>
    <meta name="description" content="{description}" />
    <link rel="canonical" href="{canonical}" />
    <meta property="og:type" content="article" />
    <meta property="og:title" content="{title}" />
    <meta property="og:description" content="{description}" />
    <meta property="og:url" content="{canonical}" />
    <meta property="og:image" content="{og_image}" />
    <meta name="twitter:card" content="summary_large_image" />
    <meta name="twitter:title" content="{title}" />
    <meta name="twitter:description" content="{description}" />
    <meta name="twitter:image" content="{og_image}" />
  </head>
  <body>
    <main class="post">
      <a href="/writing" class="back-link">Back to writing</a>
      {hero}
      <h1 class="post-title">{title}</h1>
      <time class="post-date" datetime="{html.escape(post.get('date', ''))}">{html.escape(format_date(post.get('date', '')))}</time>
      <article class="post-content">
{_render_paragraphs(post.get('content', ''))}
      </article>
    </main>
  </body>
</html>
"""


def render_error_page(status_code: int) -> str:
    if status_code == 404:
        heading, message = "Post not found", "The post you're looking for doesn't exist."
    else:
        heading, message = "Something went wrong", "Please try again later."
    return f"""<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <title>{heading}</title>
  </head>
  <body>
    <main class="post">
      <h1>{heading}</h1>
      <p>{message}</p>
      <a href="/writing">Back to writing</a>
    </main>
  </body>
</html>
"""


@router.get("/writing/{slug}", response_class=HTMLResponse)
def post_page(
    slug: str,
    store: DocumentStore = Depends(get_document_store),
    settings: Settings = Depends(get_settings),
):
    if not is_valid_slug(slug):
        return HTMLResponse(render_error_page(404), status_code=404)
    path = post_path(settings.posts_dir, slug)
    try:
        post = decode_post(store.get(path).payload, path)
    except NotFoundError:
        return HTMLResponse(render_error_page(404), status_code=404)
    except StoreError:
        logger.exception("Error fetching post %s", slug)
        return HTMLResponse(render_error_page(500), status_code=500)

    if post.get("published") is False:
        return HTMLResponse(render_error_page(404), status_code=404)

    return HTMLResponse(
        render_post_page(post, settings), headers={"Cache-Control": CACHE_CONTROL}
    )
