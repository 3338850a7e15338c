# =============================================================================
# scoring.py — Entity lead score and write-time derived fields
#
# The score is a 0–100 integer built from three independent bands:
#
#   revenue   (max 40)  ≥100M → 40, ≥50M → 30, ≥10M → 20, below → 10, none → 5
#   employees (max 30)  ≥100 → 30, ≥50 → 25, ≥20 → 20, ≥10 → 15, below → 10,
#                       none → 5
#   status    (max 30)  client → 30, anything else → 15
#
# An explicit 0 for revenue or employees lands in the "none" band. Forms send
# 0 for an empty numeric input, so 0 means "not provided".
#
# Everything in this module is pure: no store access, no clock, no I/O.
# =============================================================================

import math
from typing import Any, Optional

from config import settings
from models import EntityStatus, ScoreBreakdown

MAX_SCORE = 100

# (threshold, points), checked from the top down
REVENUE_BANDS = (
    (100_000_000, 40),
    (50_000_000, 30),
    (10_000_000, 20),
)
REVENUE_BELOW_BANDS = 10
REVENUE_MISSING = 5

EMPLOYEE_BANDS = (
    (100, 30),
    (50, 25),
    (20, 20),
    (10, 15),
)
EMPLOYEES_BELOW_BANDS = 10
EMPLOYEES_MISSING = 5

STATUS_CLIENT = 30
STATUS_OTHER = 15


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves going up (2.5 → 3, -2.5 → -2)."""
    return int(math.floor(value + 0.5))


def _read(source: Any, name: str) -> Any:
    if isinstance(source, dict):
        return source.get(name)
    return getattr(source, name, None)


def _band(value: Optional[float], bands, below: int, missing: int) -> int:
    if not value:
        return missing
    for threshold, points in bands:
        if value >= threshold:
            return points
    return below


def revenue_band(revenue: Optional[float]) -> int:
    return _band(revenue, REVENUE_BANDS, REVENUE_BELOW_BANDS, REVENUE_MISSING)


def employees_band(employees: Optional[float]) -> int:
    return _band(employees, EMPLOYEE_BANDS, EMPLOYEES_BELOW_BANDS, EMPLOYEES_MISSING)


def status_band(status: Any) -> int:
    return STATUS_CLIENT if status == EntityStatus.CLIENT.value else STATUS_OTHER


def score_breakdown(entity: Any) -> ScoreBreakdown:
    """
    Score an entity and return each band alongside the total.

    `entity` may be a model (EntityDraft, Entity, ScoreRequest) or a plain
    dict with `revenue`, `employees` and `status` keys.
    """
    status = _read(entity, "status")
    if isinstance(status, EntityStatus):
        status = status.value

    revenue_points = revenue_band(_read(entity, "revenue"))
    employee_points = employees_band(_read(entity, "employees"))
    status_points = status_band(status)

    return ScoreBreakdown(
        revenue_band=revenue_points,
        employees_band=employee_points,
        status_band=status_points,
        score=min(MAX_SCORE, revenue_points + employee_points + status_points),
    )


def calculate_score(entity: Any) -> int:
    """Deterministic 0–100 lead score for an entity or entity draft."""
    return score_breakdown(entity).score


# ─── Opportunity derived fields ───────────────────────────────────────────────

def weighted_value(value: float, probability: float) -> int:
    """Pipeline value scaled by win probability (0–100), nearest integer."""
    return round_half_up(value * probability / 100)


def requires_approval(value: float, threshold: Optional[int] = None) -> bool:
    """Strictly above the threshold needs approval; equal to it does not."""
    limit = settings.approval_threshold if threshold is None else threshold
    return value > limit


# ─── Mission derived fields ───────────────────────────────────────────────────

def mission_profitability(budget: float, actual_cost: float) -> int:
    """Margin as a percentage of budget. A zero budget has no margin: 0."""
    if budget <= 0:
        return 0
    return round_half_up((budget - actual_cost) / budget * 100)
