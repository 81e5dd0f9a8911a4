"""Scoring engine.

Pure functions only: raw score per criterion type, normalization onto
0-100, weighted composite across criteria, and auto-fail evaluation.
Nothing here touches the database or the app context.

Raw score rules per type:

    scale         value interpolated within [min, max] onto [0, max_score]
    pass_fail     configured pass_value / fail_value, used as-is
    checklist     sum | average (checked points / item count) | all_required
    text          always 0, and excluded from the numeric composite
    dropdown      score of the selected option, 0 when nothing matches
    multi_select  sum or average of the selected options' scores
    rating_stars  stars / max_stars * max_score
    percentage    value / 100 * max_score
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from ..errors import ValidationError
from . import criteria as ct
from .criteria import CriterionSnapshot, TemplateSnapshot, parse_config, parse_value


WEIGHT_TOLERANCE = 0.01


def _clamp(n: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, n))


def _round2(n: float) -> float:
    return float(Decimal(str(n)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def round_half_up(n: float) -> int:
    return int(Decimal(str(n)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# raw scores, one function per type
# ---------------------------------------------------------------------------

def _scale_raw(value, config, max_score):
    span = config.max - config.min
    if span <= 0:
        return 0.0
    selected = _clamp(value.value, config.min, config.max)
    return (selected - config.min) / span * max_score


def _pass_fail_raw(value, config, max_score):
    return config.pass_value if value.passed else config.fail_value


def _checklist_raw(value, config, max_score):
    items = config.items
    if not items:
        return 0.0
    checked = set(value.checked)
    checked_points = sum(item.points for item in items if item.id in checked)
    if config.scoring == "sum":
        return checked_points
    if config.scoring == "average":
        # unchecked items count as zero and still dilute the average
        return checked_points / len(items)
    return max_score if all(item.id in checked for item in items) else 0.0


def _text_raw(value, config, max_score):
    return 0.0


def _dropdown_raw(value, config, max_score):
    for opt in config.options:
        if opt.value == value.selected:
            return opt.score
    return 0.0


def _multi_select_raw(value, config, max_score):
    selected = set(value.selected)
    scores = [opt.score for opt in config.options if opt.value in selected]
    if not scores:
        return 0.0
    total = sum(scores)
    return total / len(scores) if config.scoring == "average" else total


def _stars_raw(value, config, max_score):
    if config.max_stars <= 0:
        return 0.0
    stars = _clamp(value.stars, 0, config.max_stars)
    return stars / config.max_stars * max_score


def _percentage_raw(value, config, max_score):
    return _clamp(value.value, 0, 100) / 100 * max_score


RAW_SCORERS: Dict[str, Callable[[Any, Any, float], float]] = {
    ct.SCALE: _scale_raw,
    ct.PASS_FAIL: _pass_fail_raw,
    ct.CHECKLIST: _checklist_raw,
    ct.TEXT: _text_raw,
    ct.DROPDOWN: _dropdown_raw,
    ct.MULTI_SELECT: _multi_select_raw,
    ct.RATING_STARS: _stars_raw,
    ct.PERCENTAGE: _percentage_raw,
}


def compute_raw_score(criteria_type: str, value, config, max_score: float) -> float:
    """Raw score of one answer. Raises ``ValidationError`` on a malformed value."""
    cfg = parse_config(criteria_type, config)
    parsed = parse_value(criteria_type, value, cfg)
    return float(RAW_SCORERS[criteria_type](parsed, cfg, max_score))


def normalize_score(raw: float, max_score: float) -> float:
    if not max_score or max_score <= 0:
        return 0.0
    return _clamp(raw / max_score * 100, 0.0, 100.0)


def weighted_score(normalized: float, weight: float) -> float:
    return normalized * (weight / 100)


def evaluate_auto_fail(criterion: CriterionSnapshot, normalized: float, provider_flag: bool = False) -> bool:
    """Threshold trigger OR scorer-reported trigger, only for auto-fail criteria."""
    if not criterion.is_auto_fail:
        return False
    if provider_flag:
        return True
    if criterion.criteria_type == ct.TEXT or criterion.auto_fail_threshold is None:
        return False
    return normalized < criterion.auto_fail_threshold


# ---------------------------------------------------------------------------
# per-criterion result
# ---------------------------------------------------------------------------

class CriterionScore(BaseModel):
    criterion_id: int
    group_id: Optional[int] = None
    criteria_type: str
    value: Any = None
    is_na: bool = False
    raw_score: float = 0.0
    normalized_score: float = 0.0
    weighted_score: float = 0.0
    is_auto_fail_triggered: bool = False
    invalid: bool = False
    error: Optional[str] = None
    comment: Optional[str] = None


def score_criterion(
    criterion: CriterionSnapshot,
    value,
    is_na: bool = False,
    provider_auto_fail: bool = False,
    comment: Optional[str] = None,
) -> CriterionScore:
    """Score one answer. A malformed value degrades to 0 and is flagged, never raised."""
    result = CriterionScore(
        criterion_id=criterion.id,
        group_id=criterion.group_id,
        criteria_type=criterion.criteria_type,
        value=value,
        is_na=is_na,
        comment=comment,
    )
    if is_na:
        return result

    try:
        raw = compute_raw_score(criterion.criteria_type, value, criterion.config, criterion.max_score)
    except ValidationError as exc:
        raw = 0.0
        result.invalid = True
        result.error = exc.message

    normalized = normalize_score(raw, criterion.max_score)
    result.raw_score = _round2(raw)
    result.normalized_score = _round2(normalized)
    result.weighted_score = _round2(weighted_score(normalized, criterion.weight))
    result.is_auto_fail_triggered = evaluate_auto_fail(criterion, normalized, provider_auto_fail)
    return result


# ---------------------------------------------------------------------------
# aggregation
# ---------------------------------------------------------------------------

def _counts_toward_composite(score: CriterionScore) -> bool:
    return not score.is_na and score.criteria_type != ct.TEXT


def compute_composite(scores: Iterable[CriterionScore], criteria: Iterable[CriterionSnapshot]) -> int:
    """Weighted composite 0-100.

    N/A and text criteria are left out of both the numerator and the
    denominator so they cannot drag the score down.
    """
    weights = {c.id: c.weight for c in criteria}
    numerator = 0.0
    denominator = 0.0
    for s in scores:
        if not _counts_toward_composite(s) or s.criterion_id not in weights:
            continue
        numerator += s.weighted_score
        denominator += weights[s.criterion_id]
    if denominator <= 0:
        return 0
    return round_half_up(numerator * 100 / denominator)


class GroupResult(BaseModel):
    group_id: int
    name: str
    weight: float
    percentage_score: int
    scored_count: int


class SessionResult(BaseModel):
    total_score: float = 0.0
    total_possible: float = 0.0
    percentage_score: int = 0
    pass_status: str = "pending"
    has_auto_fail: bool = False
    auto_fail_criteria_ids: List[int] = Field(default_factory=list)
    invalid_criteria_ids: List[int] = Field(default_factory=list)
    groups: List[GroupResult] = Field(default_factory=list)


def group_breakdown(snapshot: TemplateSnapshot, scores: List[CriterionScore]) -> List[GroupResult]:
    """Per-group weighted sub-composite. Presentation only."""
    out = []
    for group in sorted(snapshot.groups, key=lambda g: g.sort_order):
        members = [c for c in snapshot.criteria if c.group_id == group.id]
        member_ids = {c.id for c in members}
        group_scores = [s for s in scores if s.criterion_id in member_ids]
        out.append(GroupResult(
            group_id=group.id,
            name=group.name,
            weight=group.weight,
            percentage_score=compute_composite(group_scores, members),
            scored_count=len([s for s in group_scores if _counts_toward_composite(s)]),
        ))
    return out


def compute_session_result(
    snapshot: TemplateSnapshot,
    scores: List[CriterionScore],
    default_pass_threshold: float = 70,
) -> SessionResult:
    """Aggregate every criterion score of a session.

    Auto-fail is collected over the full list once all criteria have been
    scored, so no later criterion can mask an earlier trigger.
    """
    by_id = {c.id: c for c in snapshot.criteria}
    known = [s for s in scores if s.criterion_id in by_id]

    auto_fail_ids = [s.criterion_id for s in known if s.is_auto_fail_triggered]
    invalid_ids = [s.criterion_id for s in known if s.invalid]
    valid = [s for s in known if _counts_toward_composite(s)]

    result = SessionResult(
        has_auto_fail=bool(auto_fail_ids),
        auto_fail_criteria_ids=auto_fail_ids,
        invalid_criteria_ids=invalid_ids,
        groups=group_breakdown(snapshot, known),
    )
    if not valid:
        if auto_fail_ids:
            result.pass_status = "fail"
        return result

    method = snapshot.scoring_method
    if method == "simple_average":
        pct = sum(s.normalized_score for s in valid) / len(valid)
        total, possible = pct, 100.0
    elif method == "pass_fail":
        all_passed = all(s.normalized_score >= 100 for s in valid)
        pct = 100.0 if all_passed else 0.0
        total, possible = pct, 100.0
    elif method == "points":
        total = sum(s.raw_score for s in valid)
        possible = sum(by_id[s.criterion_id].max_score for s in valid)
        pct = total / possible * 100 if possible > 0 else 0.0
    else:
        # weighted, and custom_formula until formulas are evaluated separately
        total = sum(s.weighted_score for s in valid)
        possible = sum(by_id[s.criterion_id].weight for s in valid)
        pct = compute_composite(valid, snapshot.criteria)

    result.total_score = _round2(total)
    result.total_possible = _round2(possible)
    result.percentage_score = round_half_up(pct)

    threshold = snapshot.pass_threshold if snapshot.pass_threshold is not None else default_pass_threshold
    if result.has_auto_fail:
        result.pass_status = "fail"
    else:
        result.pass_status = "pass" if result.percentage_score >= threshold else "fail"
    return result


def validate_weights(criteria: Iterable[CriterionSnapshot]) -> float:
    """Weights of a template's criteria must add up to exactly 100."""
    total = sum(c.weight for c in criteria)
    if abs(total - 100) > WEIGHT_TOLERANCE:
        raise ValidationError(f"Criteria weights must sum to 100 (got {_round2(total)})")
    return total


__all__ = [
    "CriterionScore",
    "GroupResult",
    "RAW_SCORERS",
    "SessionResult",
    "compute_composite",
    "compute_raw_score",
    "compute_session_result",
    "evaluate_auto_fail",
    "group_breakdown",
    "normalize_score",
    "round_half_up",
    "score_criterion",
    "validate_weights",
    "weighted_score",
]
