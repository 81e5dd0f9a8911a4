"""Pure scoring: criterion value model and the scoring engine."""

from .criteria import (  # noqa: F401
    CRITERIA_TYPES,
    CriterionSnapshot,
    GroupSnapshot,
    TemplateSnapshot,
    parse_config,
    parse_value,
)
from .engine import (  # noqa: F401
    CriterionScore,
    SessionResult,
    compute_composite,
    compute_raw_score,
    compute_session_result,
    evaluate_auto_fail,
    normalize_score,
    score_criterion,
    validate_weights,
)
