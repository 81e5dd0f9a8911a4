"""External scorer transport.

Calls the OpenAI Chat Completions HTTP API directly with `requests`
rather than through the SDK. One POST per call: retrying is the
processing queue's job, so every failure is raised as a typed error and
the queue decides what happens next.
"""

import json
import re
import time
from typing import Any, Dict, List, Optional, Union

import requests
from flask import current_app
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import ProviderError, ScorerResponseError, TransientProviderError
from ..scoring import criteria as ct
from ..scoring.criteria import TemplateSnapshot


# how each criterion type must be answered, shown to the model verbatim
VALUE_FORMATS = {
    ct.SCALE: '{"value": <number between min and max>}',
    ct.PASS_FAIL: '{"passed": true | false}',
    ct.CHECKLIST: '{"checked": ["<item id>", ...], "unchecked": ["<item id>", ...]}',
    ct.TEXT: '{"response": "<short written assessment>"}',
    ct.DROPDOWN: '{"selected": "<option value>"}',
    ct.MULTI_SELECT: '{"selected": ["<option value>", ...]}',
    ct.RATING_STARS: '{"stars": <number of stars>}',
    ct.PERCENTAGE: '{"value": <0-100>}',
}

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


class _Reply(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class CriterionReply(_Reply):
    criteria_id: Union[int, str] = Field(alias="criteriaId")
    value: Any = None
    feedback: Optional[str] = None
    auto_fail_triggered: bool = Field(default=False, alias="autoFailTriggered")

    @field_validator("feedback", mode="before")
    @classmethod
    def _feedback_as_text(cls, v):
        if v is None or isinstance(v, str):
            return v
        return json.dumps(v) if isinstance(v, (dict, list)) else str(v)

    @field_validator("auto_fail_triggered", mode="before")
    @classmethod
    def _auto_fail_flag(cls, v):
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.strip().lower() in ("true", "yes", "1")
        return False


class Objection(_Reply):
    objection: str = ""
    response: str = ""
    effectiveness: Optional[str] = None


class Sentiment(_Reply):
    overall: str = "neutral"
    score: float = 0.0


class ScorerResponse(_Reply):
    """Shape the model is instructed to return. Narrative fields default when absent.

    A ``criteriaScores`` entry that cannot be read (not an object, no usable
    ``criteriaId``) is dropped and counted in ``malformed_entries``; the
    rest of the reply still stands.
    """

    criteria_scores: List[CriterionReply] = Field(default_factory=list, alias="criteriaScores")
    malformed_entries: int = Field(default=0, alias="malformedEntries")
    summary: str = ""
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)
    action_items: List[str] = Field(default_factory=list, alias="actionItems")
    objections: List[Objection] = Field(default_factory=list)
    sentiment: Sentiment = Field(default_factory=Sentiment)
    talk_ratio: Optional[float] = Field(default=None, alias="talkRatio")
    competitor_mentions: List[str] = Field(default_factory=list, alias="competitorMentions")

    @model_validator(mode="before")
    @classmethod
    def _drop_unreadable_entries(cls, data):
        if not isinstance(data, dict) or not isinstance(data.get("criteriaScores"), list):
            return data
        kept = []
        for entry in data["criteriaScores"]:
            try:
                kept.append(CriterionReply.model_validate(entry))
            except PydanticValidationError:
                continue
        data = dict(data)
        data["malformedEntries"] = len(data["criteriaScores"]) - len(kept)
        data["criteriaScores"] = kept
        return data


class ScorerReply(BaseModel):
    data: ScorerResponse
    model: str
    token_usage: Dict[str, int] = Field(default_factory=dict)


def _describe_config(criterion) -> Optional[str]:
    cfg = criterion.config or {}
    t = criterion.criteria_type
    if t == ct.SCALE:
        return f"scale {cfg.get('min', 1)}-{cfg.get('max', 5)}"
    if t == ct.CHECKLIST:
        items = ", ".join(f"{i.get('id')}={i.get('label', '')}" for i in cfg.get("items", []))
        return f"items: {items}" if items else None
    if t in (ct.DROPDOWN, ct.MULTI_SELECT):
        opts = ", ".join(f"{o.get('value')} ({o.get('label', '')})" for o in cfg.get("options", []))
        return f"options: {opts}" if opts else None
    if t == ct.RATING_STARS:
        half = "half stars allowed" if cfg.get("allow_half") else "whole stars only"
        return f"max {cfg.get('max_stars', 5)} stars, {half}"
    return None


def build_grading_prompt(snapshot: TemplateSnapshot, prefix: Optional[str] = None) -> str:
    """System prompt listing every criterion, grouped, with its answer format."""
    lines = []
    if prefix:
        lines += [prefix.strip(), ""]
    lines += [
        "You are an expert sales call evaluator. Score the call transcript against the rubric below.",
        "Respond with a single JSON object only, no prose around it.",
        "",
        f"Rubric: {snapshot.name}",
    ]

    group_names = {g.id: g.name for g in snapshot.groups}
    ordered = sorted(snapshot.criteria, key=lambda c: (c.group_id is None, c.sort_order))
    current_group = object()
    for c in ordered:
        if c.group_id != current_group:
            current_group = c.group_id
            lines += ["", f"## {group_names.get(c.group_id, 'General')}"]
        lines.append(f"- criteriaId {c.id}: {c.name} (type {c.criteria_type}, weight {c.weight})")
        if c.description:
            lines.append(f"  {c.description}")
        if c.scoring_guide:
            lines.append(f"  Guide: {c.scoring_guide}")
        if c.keywords:
            lines.append(f"  Listen for: {', '.join(c.keywords)}")
        detail = _describe_config(c)
        if detail:
            lines.append(f"  {detail}")
        lines.append(f"  Answer as: {VALUE_FORMATS.get(c.criteria_type, '{}')}")
        if c.is_auto_fail:
            lines.append("  AUTO-FAIL: set autoFailTriggered true if the rep clearly violates this.")

    lines += [
        "",
        "Return this JSON shape:",
        '{"criteriaScores": [{"criteriaId": <id>, "value": <answer>, "feedback": "...", "autoFailTriggered": false}],',
        ' "summary": "...", "strengths": ["..."], "improvements": ["..."], "actionItems": ["..."],',
        ' "objections": [{"objection": "...", "response": "...", "effectiveness": "effective|partial|ineffective"}],',
        ' "sentiment": {"overall": "positive|neutral|negative", "score": 0.0},',
        ' "talkRatio": 0.5, "competitorMentions": ["..."]}',
    ]
    return "\n".join(lines)


def build_user_content(transcript: str, prefix: Optional[str] = None) -> str:
    parts = []
    if prefix:
        parts.append(prefix.strip())
    parts += ["Transcript:", transcript]
    return "\n".join(parts)


def _extract_json(text: str) -> Dict[str, Any]:
    try:
        data = json.loads(text)
    except ValueError:
        m = _JSON_BLOCK.search(text or "")
        if not m:
            raise ScorerResponseError("Scorer reply contained no JSON object")
        try:
            data = json.loads(m.group(0))
        except ValueError as exc:
            raise ScorerResponseError(f"Scorer reply was not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ScorerResponseError("Scorer reply JSON was not an object")
    return data


def score_transcript(
    system_prompt: str,
    user_content: str,
    model: Optional[str] = None,
    temperature: Optional[float] = None,
) -> ScorerReply:
    """POST one scoring request.

    Raises TransientProviderError on timeouts, connection errors, 429 and
    5xx; ProviderError on any other non-2xx; ScorerResponseError when the
    reply cannot be read as a ``ScorerResponse``.
    """
    cfg = current_app.config
    api_key = cfg.get("OPENAI_API_KEY")
    if not api_key:
        raise ProviderError("OPENAI_API_KEY is not configured")

    model = model or cfg.get("OPENAI_MODEL", "gpt-4o")
    body = {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ],
        "temperature": cfg.get("OPENAI_TEMPERATURE", 0.3) if temperature is None else temperature,
        "max_tokens": cfg.get("OPENAI_MAX_TOKENS", 4096),
        "response_format": {"type": "json_object"},
    }
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    started = time.monotonic()
    try:
        r = requests.post(cfg.get("OPENAI_API_URL"), headers=headers, json=body, timeout=cfg.get("OPENAI_TIMEOUT", 60))
    except requests.exceptions.Timeout as exc:
        current_app.logger.warning("scorer request timed out after %.1fs", time.monotonic() - started)
        raise TransientProviderError(f"Scorer request timed out: {exc}") from exc
    except requests.exceptions.RequestException as exc:
        current_app.logger.warning("scorer request failed after %.1fs: %s", time.monotonic() - started, exc)
        raise TransientProviderError(f"Scorer request failed: {exc}") from exc

    elapsed = time.monotonic() - started
    if r.status_code == 429 or r.status_code >= 500:
        current_app.logger.warning("scorer returned %s in %.1fs; body=%s", r.status_code, elapsed, (r.text or "")[:500])
        raise TransientProviderError(f"Scorer returned HTTP {r.status_code}")
    if not 200 <= r.status_code < 300:
        current_app.logger.warning("scorer returned %s in %.1fs; body=%s", r.status_code, elapsed, (r.text or "")[:500])
        raise ProviderError(f"Scorer returned HTTP {r.status_code}", http_status=r.status_code)

    try:
        jr = r.json()
        content = jr["choices"][0]["message"]["content"] or ""
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        current_app.logger.warning("malformed scorer envelope: %s", (r.text or "")[:500])
        raise ScorerResponseError("Scorer response envelope was malformed") from exc

    data = _extract_json(content)
    try:
        parsed = ScorerResponse.model_validate(data)
    except PydanticValidationError as exc:
        current_app.logger.warning("scorer reply failed schema validation: %s", content[:500])
        raise ScorerResponseError(f"Scorer reply did not match the expected schema: {exc.errors()[0].get('msg')}") from exc

    usage = jr.get("usage") or {}
    return ScorerReply(
        data=parsed,
        model=jr.get("model") or model,
        token_usage={
            "prompt": int(usage.get("prompt_tokens", 0)),
            "completion": int(usage.get("completion_tokens", 0)),
            "total": int(usage.get("total_tokens", 0)),
        },
    )
