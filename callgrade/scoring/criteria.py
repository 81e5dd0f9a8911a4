"""Criterion value model.

Each of the eight criterion kinds has a config model and a value model.
A criterion answer is the pair ``(criteria_type, value)``; the type picks
the models out of ``CONFIG_MODELS`` / ``VALUE_MODELS``.

Value models are strict so that a string where a number belongs is a
validation failure instead of a silent coercion. NaN and infinity are
rejected everywhere; ``json.loads`` happily produces both.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError


SCALE = "scale"
PASS_FAIL = "pass_fail"
CHECKLIST = "checklist"
TEXT = "text"
DROPDOWN = "dropdown"
MULTI_SELECT = "multi_select"
RATING_STARS = "rating_stars"
PERCENTAGE = "percentage"

CRITERIA_TYPES = (SCALE, PASS_FAIL, CHECKLIST, TEXT, DROPDOWN, MULTI_SELECT, RATING_STARS, PERCENTAGE)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", allow_inf_nan=False)


# ---------------------------------------------------------------------------
# configs
# ---------------------------------------------------------------------------

class ScaleConfig(_Frozen):
    min: float = 1
    max: float = 5
    step: float = 1
    labels: Dict[str, str] = Field(default_factory=dict)


class PassFailConfig(_Frozen):
    pass_value: float = 100
    fail_value: float = 0
    pass_label: str = "Pass"
    fail_label: str = "Fail"


class ChecklistItem(_Frozen):
    id: str
    label: str = ""
    points: float = 0


class ChecklistConfig(_Frozen):
    items: List[ChecklistItem] = Field(default_factory=list)
    scoring: Literal["sum", "average", "all_required"] = "sum"


class TextConfig(_Frozen):
    max_length: Optional[int] = None
    placeholder: str = ""


class SelectOption(_Frozen):
    value: str
    label: str = ""
    score: float = 0


class DropdownConfig(_Frozen):
    options: List[SelectOption] = Field(default_factory=list)


class MultiSelectConfig(_Frozen):
    options: List[SelectOption] = Field(default_factory=list)
    scoring: Literal["sum", "average"] = "sum"


class StarsConfig(_Frozen):
    max_stars: int = 5
    allow_half: bool = False


class PercentageConfig(_Frozen):
    pass


CONFIG_MODELS: Dict[str, Type[_Frozen]] = {
    SCALE: ScaleConfig,
    PASS_FAIL: PassFailConfig,
    CHECKLIST: ChecklistConfig,
    TEXT: TextConfig,
    DROPDOWN: DropdownConfig,
    MULTI_SELECT: MultiSelectConfig,
    RATING_STARS: StarsConfig,
    PERCENTAGE: PercentageConfig,
}


# ---------------------------------------------------------------------------
# values
# ---------------------------------------------------------------------------

class _Value(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", strict=True, allow_inf_nan=False)


class ScaleValue(_Value):
    value: float


class PassFailValue(_Value):
    passed: bool


class ChecklistValue(_Value):
    checked: List[str] = Field(default_factory=list)
    unchecked: List[str] = Field(default_factory=list)


class TextValue(_Value):
    response: str = ""


class DropdownValue(_Value):
    selected: str


class MultiSelectValue(_Value):
    selected: List[str] = Field(default_factory=list)


class StarsValue(_Value):
    stars: float


class PercentageValue(_Value):
    value: float


VALUE_MODELS: Dict[str, Type[_Value]] = {
    SCALE: ScaleValue,
    PASS_FAIL: PassFailValue,
    CHECKLIST: ChecklistValue,
    TEXT: TextValue,
    DROPDOWN: DropdownValue,
    MULTI_SELECT: MultiSelectValue,
    RATING_STARS: StarsValue,
    PERCENTAGE: PercentageValue,
}


def _first_error(exc: PydanticValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ())) or "value"
    return f"{loc}: {err.get('msg')}"


def _check_type(criteria_type: str) -> None:
    if criteria_type not in CRITERIA_TYPES:
        raise ValidationError(f"Unknown criteria type: {criteria_type!r}")


def parse_config(criteria_type: str, raw: Any):
    _check_type(criteria_type)
    model = CONFIG_MODELS[criteria_type]
    if isinstance(raw, model):
        return raw
    try:
        return model.model_validate(raw or {})
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {criteria_type} config ({_first_error(exc)})") from exc


def parse_value(criteria_type: str, raw: Any, config=None):
    """Parse a raw answer into the value model for ``criteria_type``.

    Raises ``ValidationError`` for shape or type mismatches, and for half
    stars on a rating that does not allow them.
    """
    _check_type(criteria_type)
    model = VALUE_MODELS[criteria_type]
    if isinstance(raw, model):
        value = raw
    else:
        if not isinstance(raw, dict):
            raise ValidationError(f"{criteria_type} value must be an object, got {type(raw).__name__}")
        try:
            value = model.model_validate(raw)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid {criteria_type} value ({_first_error(exc)})") from exc

    if criteria_type == RATING_STARS and config is not None:
        stars = value.stars
        if not config.allow_half and stars != int(stars):
            raise ValidationError("Half stars are not allowed")
        if config.allow_half and (stars * 2) != int(stars * 2):
            raise ValidationError("Stars must be whole or half values")
    return value


def default_value(criteria_type: str) -> Dict[str, Any]:
    _check_type(criteria_type)
    return {
        SCALE: {"value": 0},
        PASS_FAIL: {"passed": False},
        CHECKLIST: {"checked": [], "unchecked": []},
        TEXT: {"response": ""},
        DROPDOWN: {"selected": ""},
        MULTI_SELECT: {"selected": []},
        RATING_STARS: {"stars": 0},
        PERCENTAGE: {"value": 0},
    }[criteria_type]


def display_value(criteria_type: str, value, config=None) -> str:
    """Short human-readable rendering of an answer, for reports and logs."""
    if criteria_type == SCALE:
        label = config.labels.get(_num_key(value.value)) if config else None
        return f"{_num_key(value.value)} - {label}" if label else _num_key(value.value)
    if criteria_type == PASS_FAIL:
        if config:
            return config.pass_label if value.passed else config.fail_label
        return "Pass" if value.passed else "Fail"
    if criteria_type == CHECKLIST:
        total = len(config.items) if config else len(value.checked) + len(value.unchecked)
        return f"{len(value.checked)}/{total} items"
    if criteria_type == DROPDOWN:
        if config:
            for opt in config.options:
                if opt.value == value.selected:
                    return opt.label or opt.value
        return value.selected or "Not selected"
    if criteria_type == MULTI_SELECT:
        return f"{len(value.selected)} selected"
    if criteria_type == RATING_STARS:
        max_stars = config.max_stars if config else 5
        return f"{_num_key(value.stars)}/{max_stars} stars"
    if criteria_type == PERCENTAGE:
        return f"{_num_key(value.value)}%"
    if criteria_type == TEXT:
        return value.response[:50] + "..." if len(value.response) > 50 else (value.response or "No response")
    return "Unknown"


def _num_key(n: float) -> str:
    return str(int(n)) if float(n).is_integer() else str(n)


# ---------------------------------------------------------------------------
# frozen template snapshot
# ---------------------------------------------------------------------------

class CriterionSnapshot(_Frozen):
    id: int
    name: str
    description: Optional[str] = None
    criteria_type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    weight: float = 0
    max_score: float = 100
    is_required: bool = True
    is_auto_fail: bool = False
    auto_fail_threshold: Optional[float] = None
    scoring_guide: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    group_id: Optional[int] = None
    sort_order: int = 0

    @property
    def parsed_config(self):
        return parse_config(self.criteria_type, self.config)


class GroupSnapshot(_Frozen):
    id: int
    name: str
    description: Optional[str] = None
    weight: float = 0
    sort_order: int = 0


class TemplateSnapshot(_Frozen):
    id: int
    name: str
    scoring_method: str = "weighted"
    pass_threshold: float = 70
    version: int = 1
    settings: Dict[str, Any] = Field(default_factory=dict)
    criteria: List[CriterionSnapshot] = Field(default_factory=list)
    groups: List[GroupSnapshot] = Field(default_factory=list)

    def criterion(self, criterion_id) -> Optional[CriterionSnapshot]:
        key = str(criterion_id)
        for c in self.criteria:
            if str(c.id) == key:
                return c
        return None


__all__ = [
    "CRITERIA_TYPES",
    "CONFIG_MODELS",
    "VALUE_MODELS",
    "CriterionSnapshot",
    "GroupSnapshot",
    "TemplateSnapshot",
    "default_value",
    "display_value",
    "parse_config",
    "parse_value",
]
