"""Text helpers for request input shaping."""

import html
import re
from typing import Mapping, Optional

SUPPORTED_LANGUAGES = ("en", "zh")
DEFAULT_LANGUAGE = "en"
LANGUAGE_COOKIE = "preferredLanguage"

_LINE_BREAK_TAGS = re.compile(r"<br\s*/?>", re.IGNORECASE)
_BLOCK_END_TAGS = re.compile(r"</(?:div|p|h[1-6]|li)\s*>", re.IGNORECASE)
_TAGS = re.compile(r"<[^>]*>")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")


def html_to_plain_text(content: Optional[str]) -> str:
    """
    Convert editor HTML to plain text.

    Line breaks and the ends of block elements become newlines, remaining
    tags are dropped, entities decoded, and runs of blank lines collapsed.

    Example:
        >>> html_to_plain_text("<p>Hello&nbsp;there</p><p>Again</p>")
        'Hello there\\nAgain'
    """
    if not content:
        return ""

    text = _LINE_BREAK_TAGS.sub("\n", content)
    text = _BLOCK_END_TAGS.sub("\n", text)
    text = _TAGS.sub("", text)
    text = html.unescape(text).replace("\xa0", " ")
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    return text.strip()


def _language_code(tag: str) -> str:
    return tag.strip().split("-")[0].split("_")[0].lower()


def detect_user_language(
    cookies: Mapping[str, str],
    accept_language: Optional[str],
) -> str:
    """
    Pick the response language for a request.

    The ``preferredLanguage`` cookie wins when it names a supported
    language; otherwise the highest-weighted supported entry of the
    Accept-Language header; otherwise English.

    Args:
        cookies: Request cookies
        accept_language: Raw Accept-Language header, if any

    Returns:
        "en" or "zh"
    """
    preferred = cookies.get(LANGUAGE_COOKIE)
    if preferred and _language_code(preferred) in SUPPORTED_LANGUAGES:
        return _language_code(preferred)

    if not accept_language:
        return DEFAULT_LANGUAGE

    weighted = []
    for position, part in enumerate(accept_language.split(",")):
        tag, _, params = part.partition(";")
        quality = 1.0
        params = params.strip()
        if params.startswith("q="):
            try:
                quality = float(params[2:])
            except ValueError:
                quality = 0.0
        # Stable on equal weights: earlier entries first
        weighted.append((-quality, position, _language_code(tag)))

    for _, _, code in sorted(weighted):
        if code in SUPPORTED_LANGUAGES:
            return code

    return DEFAULT_LANGUAGE
