"""
HTML Cleaner

Shrinks page markup before it is sent to a disambiguation provider:
drops scripts, styles, SVG and noscript blocks, inline style attributes,
generated class names and base64 image payloads, then returns the body's
inner markup capped at a maximum length.
"""

import re
import logging
from typing import Optional

from bs4 import BeautifulSoup

from .dom_view import GENERATED_CLASS_PATTERNS

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 60000
STRIPPED_TAGS = ["script", "style", "svg", "noscript"]
_BASE64_IMAGE = re.compile(r"^data:image/[^;]+;base64,", re.IGNORECASE)


def _keep_class(cls: str) -> bool:
    return bool(cls) and not any(p.match(cls) for p in GENERATED_CLASS_PATTERNS)


def clean_html(markup: str, max_chars: Optional[int] = DEFAULT_MAX_CHARS) -> str:
    """Body inner markup with noise removed, truncated to max_chars"""
    original_length = len(markup or "")
    soup = BeautifulSoup(markup or "", "lxml")

    for tag in soup.find_all(STRIPPED_TAGS):
        tag.decompose()

    for tag in soup.find_all(True):
        if tag.has_attr("style"):
            del tag["style"]
        if tag.has_attr("class"):
            classes = [c for c in tag.get("class", []) if _keep_class(c)]
            if classes:
                tag["class"] = classes
            else:
                del tag["class"]
        src = tag.get("src")
        if isinstance(src, str) and _BASE64_IMAGE.match(src):
            tag["src"] = ""

    body = soup.body
    cleaned = body.decode_contents() if body is not None else str(soup)
    cleaned = re.sub(r"\n\s*\n+", "\n", cleaned).strip()

    if max_chars and len(cleaned) > max_chars:
        cleaned = cleaned[:max_chars]

    logger.debug(f"[RESOLVER] Cleaned HTML {original_length} -> {len(cleaned)} chars")
    return cleaned
