"""expand-script-ja action: append an ``[EXPANSION n]`` section to a short Japanese script."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from core.contracts import JobStatus
from episode_script.normalize import normalize_whitespace
from episode_script.quality import ScriptGateConfig
from episode_script.sections import (
    ScriptSection,
    parse_script_sections,
    render_script_sections,
    sections_chars_breakdown,
)
from orchestrator.ledger import IdempotencyLedger, JobRunContext
from storage.repositories import EpisodeRepository
from utils.exceptions import StepError


logger = logging.getLogger(__name__)

EXPAND_JOB_NAME = "daily-generate"
EXPAND_STEP_NAME = "expand-script-ja"
DEFAULT_CHARS_SHORTAGE = 600
MIN_EXPANSION_CHARS = 450
MAX_EXPANSION_CHARS = 1500
EXPANSION_SLACK_CHARS = 260

_DEEPDIVE_HEADING_RE = re.compile(r"^DEEPDIVE\s+\d+$", flags=re.IGNORECASE)
_DEEPDIVE_TITLE_RE = re.compile(r"(?:^|\n)見出し:\s*(.+)")

_PERSPECTIVES = ("聞き手の立場", "作り手の立場", "業界全体の流れ", "一年後の振り返り")
_TEMPLATES = (
    "導入で結論を急がず、前提条件を一つずつ固定すると判断が安定します。",
    "影響範囲、更新頻度、未確定要素を分けて話すと、自分の状況に当てはめやすくなります。",
    "見出しの勢いだけで断定すると、翌日の更新で説明が破綻しがちです。",
    "結論を先に一行、根拠を二行、保留条件を一行で並べると伝わりやすくなります。",
    "今すぐできる確認項目を最後に短く置くと、行動につながります。",
    "数字の大小よりも、変化の向きと速さに注目すると全体像がつかみやすくなります。",
    "似た過去の事例と比べると、今回どこが新しいのかがはっきりします。",
    "賛否が分かれる点は、どの前提の違いから来ているのかを言葉にしておくと誤解が減ります。",
)
_LEADS = ("補足として", "別の角度から", "視点を変えて", "念のため")


def _sanitize_title(value: str) -> str:
    text = re.sub(r"<[^>]+>", " ", value)
    text = re.sub(r"https?://\S+", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def extract_deep_dive_titles(sections: Sequence[ScriptSection], limit: int = 3) -> List[str]:
    titles = []
    for section in sections:
        if not _DEEPDIVE_HEADING_RE.match(section.heading):
            continue
        match = _DEEPDIVE_TITLE_RE.search(section.body)
        title = _sanitize_title(match.group(1)) if match else ""
        if title:
            titles.append(title)
    return titles[:limit]


def expansion_length(chars_shortage: int) -> int:
    return max(MIN_EXPANSION_CHARS, min(chars_shortage + EXPANSION_SLACK_CHARS, MAX_EXPANSION_CHARS))


def build_expansion_body(attempt: int, chars_shortage: int, deep_dive_titles: Sequence[str]) -> str:
    """Compose distinct supplementary lines until the desired length is reached.

    Lines cycle through every perspective, subject and template combination,
    starting from the attempt's own perspective. The attempt's lead phrase keeps
    lines from different expansions apart once digits are ignored. Even with a
    single subject the combinations cover ``MAX_EXPANSION_CHARS``.
    """
    attempt = max(1, attempt)
    desired = expansion_length(chars_shortage)
    start = (attempt - 1) % len(_PERSPECTIVES)
    perspectives = _PERSPECTIVES[start:] + _PERSPECTIVES[:start]
    lead = _LEADS[(attempt - 1) % len(_LEADS)]
    focus = "、".join(deep_dive_titles) if deep_dive_titles else "本編の主要トピック"
    lines = [f"本編補足 {attempt} 回目です。{perspectives[0]}から{focus}をもう一度整理します。"]
    if attempt == 1:
        lines.append("リンクは概要欄にまとめ、本文では要点だけを話します。")
    subjects = list(deep_dive_titles) or ["本編の主要トピック"]
    body = "\n".join(lines)
    for perspective in perspectives:
        for subject in subjects:
            for template in _TEMPLATES:
                if len(body) >= desired:
                    return body
                body = f"{body}\n{lead}、{perspective}で{subject}を見ると、{template}"
    return body


def expand_ledger_key(idempotency_key: str, attempt: int, run_id: Optional[str] = None) -> str:
    # a failed daily run can be retried under the same key; each run gets its own expansions
    if run_id:
        return f"{idempotency_key}:{run_id}:{attempt}"
    return f"{idempotency_key}:{attempt}"


class ScriptExpander:
    """Ledger-wrapped expansion of an episode's Japanese script."""

    def __init__(
        self,
        episodes: EpisodeRepository,
        ledger: IdempotencyLedger,
        gate_config: Optional[ScriptGateConfig] = None,
    ) -> None:
        self.episodes = episodes
        self.ledger = ledger
        self.gate_config = gate_config or ScriptGateConfig()

    def expand_script(self, script: str, attempt: int, chars_shortage: int) -> Dict[str, Any]:
        current = normalize_whitespace(script)
        sections = parse_script_sections(current)
        heading = f"EXPANSION {attempt}"
        body = build_expansion_body(attempt, chars_shortage, extract_deep_dive_titles(sections))

        base_sections = sections or [ScriptSection("BODY", current)]
        expanded = render_script_sections([*base_sections, ScriptSection(heading, body)])
        max_chars = self.gate_config.max_chars
        if len(expanded) > max_chars:
            available = max(0, max_chars - len(current) - 20)
            if available == 0:
                expanded = current
            else:
                trimmed = ScriptSection(heading, body[:available].rstrip())
                expanded = render_script_sections([*base_sections, trimmed])
                if len(expanded) > max_chars:
                    expanded = expanded[:max_chars].rstrip()

        return {
            "script": expanded,
            "scriptChars": len(expanded),
            "addedChars": max(0, len(expanded) - len(current)),
            "estimatedDurationSec": self.gate_config.estimate_duration_sec(len(expanded)),
            "sectionsCharsBreakdown": sections_chars_breakdown(expanded),
        }

    def expand(
        self,
        episode_id: str,
        episode_date: str,
        idempotency_key: str,
        attempt: int = 1,
        chars_shortage: Optional[int] = None,
        run_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        attempt = max(1, int(attempt or 1))
        shortage = int(chars_shortage) if chars_shortage and chars_shortage > 0 else DEFAULT_CHARS_SHORTAGE
        ctx = JobRunContext(EXPAND_JOB_NAME, EXPAND_STEP_NAME, expand_ledger_key(idempotency_key, attempt, run_id))
        base = {
            "step": EXPAND_STEP_NAME,
            "episodeDate": episode_date,
            "idempotencyKey": idempotency_key,
            "episodeId": episode_id,
            "attempt": attempt,
            "charsShortage": shortage,
            "runId": run_id,
            "scriptGate": self.gate_config.as_payload(),
        }
        started = self.ledger.start_run(ctx, base, episode_id=episode_id)
        if started.should_skip:
            return {**started.record.payload, "ok": True, "skipped": True}

        try:
            episode = self.episodes.get(episode_id)
            if episode is None:
                raise StepError("episode_not_found", EXPAND_STEP_NAME, episode_id=episode_id)
            if episode.lang != "ja":
                raise StepError("episode_lang_mismatch", EXPAND_STEP_NAME, episode_id=episode_id)
            if not (episode.script or "").strip():
                raise StepError("missing_script", EXPAND_STEP_NAME, episode_id=episode_id)

            result = self.expand_script(episode.script or "", attempt, shortage)
            status = "draft" if episode.status == "failed" else episode.status
            self.episodes.update(episode.id, script=result["script"], status=status)
        except Exception as exc:
            self.ledger.fail_run(ctx, getattr(exc, "message", str(exc)), base, episode_id=episode_id)
            raise

        payload = {**base, **result}
        self.ledger.finish_run(ctx, JobStatus.SUCCEEDED, payload, episode_id=episode_id)
        logger.info(
            "expand_done episode=%s attempt=%s added=%s chars=%s",
            episode_id,
            attempt,
            result["addedChars"],
            result["scriptChars"],
        )
        return {**payload, "ok": True, "skipped": False}
