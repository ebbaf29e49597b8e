from __future__ import annotations

import base64
import html
import logging
import math
import re
from dataclasses import dataclass
from typing import List, Optional

import requests

from .models import DEFAULT_MAX_IMAGE_SIZE_MB, Document

logger = logging.getLogger(__name__)

MAX_IMAGE_WIDTH = 1200
BASE64_OVERHEAD = 1.37
IMAGE_TIMEOUT = (8, 45)
IMAGE_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; readwise-mirror)",
    "Accept": "image/*,*/*;q=0.8",
}

HTML_ENTITIES = (
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
)

# Percent-escapes that show up literally in image URLs after the remote
# HTML has been encoded more than once. %20 is deliberately absent.
URL_FIXES = {
    "24": "$",
    "21": "!",
    "2C": ",",
    "3A": ":",
    "2F": "/",
    "3F": "?",
    "3D": "=",
    "26": "&",
    "28": "(",
    "29": ")",
    "5B": "[",
    "5D": "]",
    "7B": "{",
    "7D": "}",
    "2B": "+",
    "23": "#",
    "40": "@",
    "5C": "\\",
    "7C": "|",
    "5E": "^",
    "60": "`",
    "7E": "~",
}

_PERCENT_ESCAPE = re.compile(r"%([0-9A-Fa-f]{2})")
_EMBEDDED_URL = re.compile(r"[^/](https%3A%2F%2F.*)$", re.IGNORECASE)
_COMPLETE_URL = re.compile(r"^https://[^/]+/")

_FIGURE_PICTURE = re.compile(
    r"<figure[^>]*>\s*<picture[^>]*>(.*?)</picture>(.*?)</figure>", re.IGNORECASE | re.DOTALL
)
_PICTURE = re.compile(r"<picture[^>]*>(.*?)</picture>", re.IGNORECASE | re.DOTALL)
_SRCSET = re.compile(r'srcset="([^"]+)"', re.IGNORECASE)
_SRCSET_SPLIT = re.compile(r"(?<=\dw),|,\s+")
_CANDIDATE = re.compile(r"^\s*(\S+)(?:\s+(\d+)w)?")
_WIDTH_PARAM = re.compile(r"[?&]width=(\d+)")
_IMG_SRC = re.compile(r'<img[^>]+src="([^"]+)"', re.IGNORECASE)
_ALT = re.compile(r'alt="([^"]*)"', re.IGNORECASE)

_IMAGE = re.compile(
    r'(?P<anchor><a\b[^>]*?\bhref="(?P<href>[^"]*)"[^>]*>\s*)?(?P<img><img\b[^>]*>)', re.IGNORECASE
)
_SRC_ATTR = re.compile(r'\bsrc="([^"]*)"', re.IGNORECASE)
_HTTP_URL = re.compile(r"^https?://", re.IGNORECASE)
_IMAGE_LINK = re.compile(r"\.(?:jpe?g|png|gif|webp|avif)(?:[?#]|$)", re.IGNORECASE)

PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>{title}</title>
    <style>
        body {{ font-family: Georgia, serif; line-height: 1.6; margin: 20px; }}
        img {{ max-width: 100%; height: auto; min-width: 300px; margin: 10px 0; }}
        blockquote {{ border-left: 3px solid #ccc; margin-left: 0; padding-left: 20px; }}
        .image-placeholder {{
            background-color: #f0f0f0;
            border: 2px dashed #ccc;
            padding: 20px;
            text-align: center;
            margin: 10px 0;
            color: #666;
            min-height: 100px;
        }}
        figcaption {{ font-style: italic; color: #666; font-size: 0.9em; margin-top: 5px; }}
    </style>
</head>
<body>
    <h1>{title}</h1>
    <p><em>{author}</em></p>
    <hr>
    {body}
</body>
</html>
"""

FALLBACK_TEMPLATE = """
<h1>{title}</h1>
<p><strong>Author:</strong> {author}</p>
<p><strong>Source:</strong> <a href="{source}">{source}</a></p>
<p><strong>Summary:</strong> {summary}</p>
<p><strong>Note:</strong> Full content was not available via API. Please visit the source URL above.</p>
"""


def decode_entities(content: str) -> str:
    for entity, char in HTML_ENTITIES:
        content = content.replace(entity, char)
    return content


def fix_corrupted_url(url: str) -> str:
    """
    Undo percent-encoding damage in image URLs: pull out a doubly-encoded
    absolute URL embedded in a CDN path, collapse `%25` chains, translate
    the known `%XX` escapes back to characters and drop the fragment.
    """
    clean = url

    embedded = _EMBEDDED_URL.search(clean)
    if embedded:
        candidate = re.sub("%3A", ":", embedded.group(1), flags=re.IGNORECASE)
        candidate = re.sub("%2F", "/", candidate, flags=re.IGNORECASE)
        if _COMPLETE_URL.match(candidate):
            clean = candidate

    while "%25" in clean:
        clean = clean.replace("%25", "%")

    clean = _PERCENT_ESCAPE.sub(lambda m: URL_FIXES.get(m.group(1).upper(), m.group(0)), clean)
    clean = clean.split("#", 1)[0]

    if clean != url:
        logger.debug("Fixed corrupted URL %s -> %s", url, clean)
    return clean


def select_image_source(picture_content: str, max_width: int = MAX_IMAGE_WIDTH) -> Optional[str]:
    """
    Pick the srcset candidate with the largest declared width that does not
    exceed `max_width`; fall back to the first plain <img src>.
    """
    best_url: Optional[str] = None
    best_width = 0
    for srcset in _SRCSET.findall(picture_content):
        for part in _SRCSET_SPLIT.split(srcset):
            match = _CANDIDATE.match(part)
            if not match:
                continue
            url, width_str = match.groups()
            if width_str:
                width = int(width_str)
            else:
                param = _WIDTH_PARAM.search(url)
                width = int(param.group(1)) if param else 0
            if best_width < width <= max_width:
                best_width = width
                best_url = url

    if best_url is None:
        img = _IMG_SRC.search(picture_content)
        best_url = img.group(1) if img else None
    return best_url


def extract_larger_images(content: str, max_width: int = MAX_IMAGE_WIDTH) -> str:
    def replace_figure(match: re.Match) -> str:
        picture_content, caption = match.group(1), match.group(2)
        url = select_image_source(picture_content, max_width)
        if not url:
            return ""
        img_html = _img_tag(url, picture_content)
        if caption and caption.strip():
            return f"<figure>{img_html}{caption}</figure>"
        return img_html

    def replace_picture(match: re.Match) -> str:
        url = select_image_source(match.group(1), max_width)
        return _img_tag(url, match.group(1)) if url else ""

    content = _FIGURE_PICTURE.sub(replace_figure, content)
    return _PICTURE.sub(replace_picture, content)


def _img_tag(url: str, source_markup: str) -> str:
    alt = _ALT.search(source_markup)
    return f'<img src="{url}" alt="{alt.group(1) if alt else ""}" />'


def wrap_document(title: Optional[str], author: Optional[str], body: str) -> str:
    return PAGE_TEMPLATE.format(
        title=html.escape(title or "Untitled", quote=False),
        author=html.escape(author or "Unknown author", quote=False),
        body=body,
    )


def fallback_content(document: Document) -> str:
    source = document.source_url or ""
    return FALLBACK_TEMPLATE.format(
        title=document.title or "Untitled",
        author=document.author or "Unknown",
        source=source,
        summary=document.summary or "No summary available",
    )


def encoded_size(byte_count: int) -> int:
    return math.ceil(byte_count * BASE64_OVERHEAD)


def image_placeholder(alt: str, url: str, size_limited: bool = False) -> str:
    note = "<br>Size limit reached" if size_limited else ""
    return (
        f'<div class="image-placeholder">Image: {html.escape(alt)}'
        f"<br><small>Source: {html.escape(url)}{note}</small></div>"
    )


@dataclass
class FetchedImage:
    data: bytes
    mime_type: str = "image/jpeg"

    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{base64.b64encode(self.data).decode('ascii')}"


class ImageFetcher:
    """
    Downloads images for inlining. Any failure yields None so the caller
    can fall back to a placeholder.
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout=IMAGE_TIMEOUT):
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch(self, url: str) -> Optional[FetchedImage]:
        logger.debug("Fetching image %s", url)
        try:
            response = self.session.get(url, headers=IMAGE_HEADERS, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("Failed to fetch image %s: %s", url, exc)
            return None
        if response.status_code != 200:
            logger.warning("Failed to fetch image %s, status %s", url, response.status_code)
            return None
        if not response.content:
            logger.warning("Empty image response for %s", url)
            return None
        mime_type = (response.headers.get("content-type") or "image/jpeg").split(";")[0].strip()
        return FetchedImage(data=response.content, mime_type=mime_type or "image/jpeg")


@dataclass
class ImageBudget:
    max_bytes: int
    used: int = 0
    stopped: bool = False

    def fits(self, size: int) -> bool:
        return self.used + size <= self.max_bytes


class ContentTransformer:
    """
    Turns a remote document into a self-contained HTML page: decodes
    entities, picks responsive image variants, and inlines images as base64
    until the per-article budget runs out.
    """

    def __init__(
        self,
        fetcher: Optional[ImageFetcher] = None,
        download_images: bool = True,
        max_image_bytes: int = DEFAULT_MAX_IMAGE_SIZE_MB * 1024 * 1024,
        max_width: int = MAX_IMAGE_WIDTH,
    ):
        self.fetcher = fetcher or ImageFetcher()
        self.download_images = download_images
        self.max_image_bytes = max_image_bytes
        self.max_width = max_width

    def transform(self, document: Document) -> str:
        content = document.html_content
        if not isinstance(content, str) or not content.strip():
            logger.warning("No HTML content available for %s, using summary page", document.id)
            content = fallback_content(document)
        body = decode_entities(content)
        body = extract_larger_images(body, self.max_width)
        body = self.inline_images(body)
        return wrap_document(document.title, document.author, body)

    def inline_images(self, content: str) -> str:
        budget = ImageBudget(self.max_image_bytes)

        def replace(match: re.Match) -> str:
            return self._replace_image(match, budget)

        result = _IMAGE.sub(replace, content)
        logger.debug("Embedded %s bytes of images (budget %s)", budget.used, budget.max_bytes)
        return result

    def _replace_image(self, match: re.Match, budget: ImageBudget) -> str:
        anchor = match.group("anchor") or ""
        href = match.group("href")
        img_tag = match.group("img")
        src_match = _SRC_ATTR.search(img_tag)
        if not src_match:
            return match.group(0)
        src = src_match.group(1)
        if src.startswith("data:"):
            return match.group(0)

        candidates: List[str] = []
        links_image = bool(href and _HTTP_URL.match(href) and _IMAGE_LINK.search(href))
        if links_image:
            candidates.append(fix_corrupted_url(href))
        if _HTTP_URL.match(src):
            candidates.append(fix_corrupted_url(src))
        if not candidates:
            return match.group(0)

        alt_match = _ALT.search(img_tag)
        alt = alt_match.group(1) if alt_match and alt_match.group(1) else "Image"

        if budget.stopped:
            return anchor + image_placeholder(alt, candidates[0], size_limited=True)
        if not self.download_images:
            return anchor + image_placeholder(alt, candidates[0])

        for url in candidates:
            image = self.fetcher.fetch(url)
            if image is None:
                continue
            size = encoded_size(len(image.data))
            if not budget.fits(size):
                budget.stopped = True
                logger.debug("Image %s would exceed the article size limit, stopping image downloads", url)
                return anchor + image_placeholder(alt, url, size_limited=True)
            budget.used += size
            if budget.used >= budget.max_bytes:
                budget.stopped = True
                logger.debug("Reached article size limit, stopping image downloads")
            new_img = img_tag[: src_match.start(1)] + image.data_uri() + img_tag[src_match.end(1):]
            if links_image:
                # The link target is now embedded; keep the reader offline.
                anchor = anchor.replace(f'href="{href}"', 'href="#"', 1)
            return anchor + new_img

        return anchor + image_placeholder(alt, candidates[0])
