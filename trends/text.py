"""Text cleaning, tokenization and dedup keys for trend items."""

from __future__ import annotations

import hashlib
import html as html_lib
import re
import unicodedata
from typing import FrozenSet, Iterable, Optional
from urllib.parse import urlparse


BANNED_TEXT_TOKENS = ("<a", "http", "&#", "#8217", "数式")

_ANCHOR_OPEN_RE = re.compile(r"<a\b[^>]*>", flags=re.IGNORECASE)
_ANCHOR_CLOSE_RE = re.compile(r"</a>", flags=re.IGNORECASE)
_HTML_TAG_RE = re.compile(r"<[^>]+>")
_NUMERIC_ENTITY_RE = re.compile(r"&#(\d+);?")
_URL_RE = re.compile(r"https?://\S+", flags=re.IGNORECASE)
_WWW_RE = re.compile(r"\bwww\.\S+", flags=re.IGNORECASE)
_BANNED_RES = tuple(re.compile(re.escape(token), flags=re.IGNORECASE) for token in BANNED_TEXT_TOKENS)
_WHITESPACE_RE = re.compile(r"\s+")
_TOKEN_SPLIT_RE = re.compile(r"[\W_]+", flags=re.UNICODE)


def compact_text(value: Optional[str]) -> str:
    return _WHITESPACE_RE.sub(" ", str(value or "")).strip()


def strip_html(value: str) -> str:
    text = _ANCHOR_OPEN_RE.sub(" ", str(value or ""))
    text = _ANCHOR_CLOSE_RE.sub(" ", text)
    return _HTML_TAG_RE.sub(" ", text)


def _numeric_entity(match: "re.Match[str]") -> str:
    try:
        return chr(int(match.group(1)))
    except (ValueError, OverflowError):
        return " "


def decode_entities(value: str) -> str:
    """Decode numeric and named HTML entities."""
    text = _NUMERIC_ENTITY_RE.sub(_numeric_entity, str(value or ""))
    return html_lib.unescape(text)


def strip_urls(value: str) -> str:
    text = _URL_RE.sub(" ", str(value or ""))
    return _WWW_RE.sub(" ", text)


def strip_banned_tokens(value: str) -> str:
    text = str(value or "")
    for pattern in _BANNED_RES:
        text = pattern.sub(" ", text)
    return text


def clean_text(value: Optional[str]) -> str:
    """Strip markup, entities, URLs and leaked tokens from feed text."""
    text = strip_html(str(value or ""))
    text = decode_entities(text)
    # entities can decode back into tags
    text = strip_html(text)
    text = strip_urls(text)
    text = strip_banned_tokens(text)
    return compact_text(text)


def tokenize_title(title: Optional[str]) -> FrozenSet[str]:
    text = unicodedata.normalize("NFKC", str(title or "")).lower()
    text = compact_text(_TOKEN_SPLIT_RE.sub(" ", text))
    if not text:
        return frozenset()
    return frozenset(text.split(" "))


def jaccard(left: Iterable[str], right: Iterable[str]) -> float:
    a = set(left)
    b = set(right)
    if not a or not b:
        return 0.0
    return len(a & b) / float(len(a | b))


def normalize_hostname(url: Optional[str], source: Optional[str] = None) -> str:
    """Lower-cased host without ``www.``; falls back to the lower-cased source."""
    fallback = str(source or "").strip().lower()
    try:
        host = urlparse(str(url or "").strip()).hostname or ""
    except ValueError:
        return fallback
    host = host.strip().lower()
    if host.startswith("www."):
        host = host[4:]
    return host or fallback


def _normalize_token(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def dedupe_key(title: Optional[str], url: Optional[str]) -> str:
    return f"{_normalize_token(title)}::{_normalize_token(url)}"


def dedupe_hash(title: Optional[str], url: Optional[str]) -> str:
    return hashlib.sha1(dedupe_key(title, url).encode("utf-8")).hexdigest()
