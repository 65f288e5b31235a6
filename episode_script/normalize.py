"""Script text normalization: markup, entities, URLs, placeholders and near-duplicate lines."""

from __future__ import annotations

import re
from typing import Dict, List, Tuple

from pydantic import BaseModel


HTML_TAG_RE = re.compile(r"<[^>]+>")
_DANGLING_TAG_RE = re.compile(r"<[^\n>]{0,280}(?=\n|$)")
_ANGLE_RE = re.compile(r"[<>]")
URL_RE = re.compile(r"https?://[^\s)\]}>]+", flags=re.IGNORECASE)
WWW_URL_RE = re.compile(r"\bwww\.[^\s)\]}>]+", flags=re.IGNORECASE)
HTML_ENTITY_RE = re.compile(r"&(?:#x[0-9a-fA-F]+|#\d+|[a-zA-Z]{2,8});")
SOURCES_SECTION_RE = re.compile(
    r"\[(SOURCES(?:_FOR_UI)?)\][\s\S]*?(?=\n\[[^\]]+\]\s*\n?|$)",
    flags=re.IGNORECASE,
)

PLACEHOLDER_PATTERNS = (
    re.compile(r"\{\{[^{}]+\}\}"),
    re.compile(r"<<[^<>]+>>"),
    re.compile(r"\b(?:TBD|TODO|PLACEHOLDER)\b", flags=re.IGNORECASE),
    re.compile(r"\b(?:SOURCE_LINK|HTTP_WORD|PERCENT_TOKEN|AI_TOKEN|MATH_TOKEN)\b"),
    re.compile(r"\[(?:URL|LINK|SOURCE|PLACEHOLDER)\]", flags=re.IGNORECASE),
)
_MATH_TOKEN = "数式"

_NAMED_ENTITIES: Dict[str, str] = {
    "amp": "&",
    "lt": "<",
    "gt": ">",
    "quot": '"',
    "apos": "'",
    "nbsp": " ",
    "ndash": "-",
    "mdash": "-",
    "hellip": "...",
    "laquo": '"',
    "raquo": '"',
}

_SIMILARITY_PREFIX_RE = re.compile(
    r"^(?:補足|補足ニュース|quick\s*news|quicknews|レター|letter)\s*\d+\s*[:：-]?\s*",
    flags=re.IGNORECASE,
)
_DIGITS_RE = re.compile(r"\d+")
_SPACES_RE = re.compile(r"\s+")
LINE_PUNCTUATION_RE = re.compile(r"[、。,.!?！？:;\-—~…・\"'`]")

DEFAULT_MIN_COMPARABLE_LENGTH = 12
DEFAULT_LOOKBACK_LINES = 200


class NormalizationMetrics(BaseModel):
    removed_html_count: int = 0
    decoded_html_entity_count: int = 0
    removed_url_count: int = 0
    removed_placeholder_count: int = 0
    deduped_lines_count: int = 0


def strip_html_tags(text: str) -> str:
    text = HTML_TAG_RE.sub(" ", text)
    text = _DANGLING_TAG_RE.sub(" ", text)
    return _ANGLE_RE.sub(" ", text)


def _decode_entity(match: "re.Match[str]") -> str:
    entity = match.group(0)
    token = entity[1:-1]
    try:
        if token[:2].lower() == "#x":
            return chr(int(token[2:], 16))
        if token.startswith("#"):
            return chr(int(token[1:]))
    except (ValueError, OverflowError):
        return entity
    return _NAMED_ENTITIES.get(token, entity)


def decode_html_entities(text: str) -> str:
    return HTML_ENTITY_RE.sub(_decode_entity, text)


def remove_urls(text: str) -> str:
    return WWW_URL_RE.sub(" ", URL_RE.sub(" ", text))


def remove_placeholders(text: str) -> str:
    for pattern in PLACEHOLDER_PATTERNS:
        text = pattern.sub(" ", text)
    return text.replace(_MATH_TOKEN, "計算式")


def normalize_line_for_similarity(line: str) -> str:
    text = _SIMILARITY_PREFIX_RE.sub("", line.strip())
    text = _DIGITS_RE.sub("", text.lower())
    text = _SPACES_RE.sub("", text)
    return LINE_PUNCTUATION_RE.sub("", text).strip()


def normalize_whitespace(text: str) -> str:
    text = text.replace("\r\n", "\n")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    return text.strip()


def dedupe_similar_lines(
    text: str,
    min_comparable_length: int = DEFAULT_MIN_COMPARABLE_LENGTH,
    lookback_lines: int = DEFAULT_LOOKBACK_LINES,
) -> Tuple[str, int]:
    """Drop lines whose normalized form already appeared in the last ``lookback_lines`` kept lines."""
    kept: List[str] = []
    kept_normalized: List[str] = []
    deduped = 0

    for line in text.replace("\r\n", "\n").split("\n"):
        trimmed = line.strip()
        if not trimmed:
            if kept and kept[-1] != "":
                kept.append("")
                kept_normalized.append("")
            continue

        normalized = normalize_line_for_similarity(trimmed)
        if len(normalized) >= min_comparable_length:
            window = kept_normalized[-lookback_lines:] if lookback_lines > 0 else []
            if normalized in window:
                deduped += 1
                continue

        kept.append(trimmed)
        kept_normalized.append(normalized)

    return re.sub(r"\n{3,}", "\n\n", "\n".join(kept)).strip(), deduped


def _protect_source_urls(text: str) -> Tuple[str, Dict[str, str]]:
    tokens: Dict[str, str] = {}

    def _protect(match: "re.Match[str]") -> str:
        token = f"__SOURCE_URL_TOKEN_{len(tokens)}__"
        tokens[token] = match.group(0)
        return token

    def _protect_block(block: "re.Match[str]") -> str:
        return WWW_URL_RE.sub(_protect, URL_RE.sub(_protect, block.group(0)))

    return SOURCES_SECTION_RE.sub(_protect_block, text), tokens


def normalize_script_text(text: str, preserve_source_urls: bool = False) -> Tuple[str, NormalizationMetrics]:
    """Clean a generated script and report how much each pass removed."""
    value = str(text or "")
    html_count = len(HTML_TAG_RE.findall(value)) + len(_ANGLE_RE.findall(value))
    entity_count = len(HTML_ENTITY_RE.findall(value))

    decoded = decode_html_entities(strip_html_tags(value))
    tokens: Dict[str, str] = {}
    if preserve_source_urls:
        decoded, tokens = _protect_source_urls(decoded)

    url_count = len(URL_RE.findall(decoded)) + len(WWW_URL_RE.findall(decoded))
    without_urls = remove_urls(decoded)

    placeholder_count = sum(len(pattern.findall(without_urls)) for pattern in PLACEHOLDER_PATTERNS)
    placeholder_count += without_urls.count(_MATH_TOKEN)
    cleaned = remove_placeholders(without_urls)
    for token, url in tokens.items():
        cleaned = cleaned.replace(token, url)

    deduped_text, deduped_count = dedupe_similar_lines(normalize_whitespace(cleaned))
    return normalize_whitespace(deduped_text), NormalizationMetrics(
        removed_html_count=html_count,
        decoded_html_entity_count=entity_count,
        removed_url_count=url_count,
        removed_placeholder_count=placeholder_count,
        deduped_lines_count=deduped_count,
    )
