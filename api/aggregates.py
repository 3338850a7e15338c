# =============================================================================
# aggregates.py — Roll-up statistics and list queries over CRM collections
#
# Every function takes a snapshot (any iterable of records) and returns either
# a fixed-shape summary model or a new list. Nothing here touches the store,
# so dashboards, API handlers and tests all call the same code.
#
# Rules shared by every aggregator:
#   - counts are exact tallies
#   - percentages and averages round half-up to an integer
#   - an empty divisor yields 0, never NaN or an exception
#   - "top N" / "recent N" sort descending and keep input order on ties
#   - anything relative to "now" reads the clock per call (pass `now` to pin it)
# =============================================================================

from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence, TypeVar

import numpy as np

from config import settings
from models import (
    Contact,
    ContactStatistics,
    DashboardResponse,
    Entity,
    EntityStatistics,
    EntityStatus,
    Interaction,
    InteractionStatistics,
    InteractionType,
    Mission,
    MissionStatistics,
    MissionStatus,
    Opportunity,
    OpportunityStage,
    OpportunityStatistics,
)
from scoring import round_half_up

R = TypeVar("R")

ACTIVE_MISSION_STATUSES = (MissionStatus.DRAFT.value, MissionStatus.ACTIVE.value)
CLOSED_STAGES = (OpportunityStage.WON.value, OpportunityStage.LOST.value)


# ─── Time helpers ─────────────────────────────────────────────────────────────

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _resolve_now(now: Optional[datetime]) -> datetime:
    return as_utc(now) if now is not None else utc_now()


def _mean(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.mean(np.asarray(values, dtype=np.float64)))


def _percentage(part: float, whole: float) -> int:
    if whole <= 0:
        return 0
    return round_half_up(part / whole * 100)


def records_for_entity(records: Iterable[R], entity_id: str) -> List[R]:
    return [r for r in records if getattr(r, "entity_id", None) == entity_id]


# ─── Entities ─────────────────────────────────────────────────────────────────

def entity_statistics(entities: Iterable[Entity]) -> EntityStatistics:
    entities = list(entities)
    clients = sum(1 for e in entities if e.status == EntityStatus.CLIENT.value)
    return EntityStatistics(
        total=len(entities),
        clients=clients,
        prospects=len(entities) - clients,
        average_score=round_half_up(_mean([e.score for e in entities])),
        by_priority=dict(Counter(e.priority for e in entities)),
    )


def entities_by_status(entities: Iterable[Entity], status: str) -> List[Entity]:
    return [e for e in entities if e.status == status]


def entities_by_min_score(entities: Iterable[Entity], min_score: int) -> List[Entity]:
    return [e for e in entities if e.score >= min_score]


def top_entities(entities: Iterable[Entity], limit: Optional[int] = None) -> List[Entity]:
    """Highest scores first; equal scores keep their original order."""
    limit = settings.top_entities_limit if limit is None else limit
    return sorted(entities, key=lambda e: e.score, reverse=True)[:limit]


# ─── Missions ─────────────────────────────────────────────────────────────────

def mission_statistics(missions: Iterable[Mission]) -> MissionStatistics:
    """
    Counts by status plus budget roll-ups.

    `overall_profitability` is computed from the totals, not averaged from the
    per-mission figures, so large missions weigh more than small ones.
    """
    missions = list(missions)
    total_budget = sum(m.budget for m in missions)
    total_actual_cost = sum(m.actual_cost for m in missions)

    return MissionStatistics(
        total=len(missions),
        active=sum(1 for m in missions if m.status in ACTIVE_MISSION_STATUSES),
        completed=sum(1 for m in missions if m.status == MissionStatus.COMPLETED.value),
        average_profitability=round_half_up(_mean([m.profitability for m in missions])),
        total_budget=total_budget,
        total_actual_cost=total_actual_cost,
        overall_profitability=_percentage(total_budget - total_actual_cost, total_budget),
    )


def active_missions(missions: Iterable[Mission]) -> List[Mission]:
    return [m for m in missions if m.status in ACTIVE_MISSION_STATUSES]


def overdue_missions(missions: Iterable[Mission], now: Optional[datetime] = None) -> List[Mission]:
    """Missions whose end date has passed and that are not completed."""
    today = _resolve_now(now).date()
    return [
        m for m in missions
        if m.end_date is not None
        and m.end_date < today
        and m.status != MissionStatus.COMPLETED.value
    ]


# ─── Opportunities ────────────────────────────────────────────────────────────

def opportunity_statistics(opportunities: Iterable[Opportunity]) -> OpportunityStatistics:
    opportunities = list(opportunities)
    total = len(opportunities)

    stages = np.array([o.stage for o in opportunities], dtype=object)
    values = np.array([o.value for o in opportunities], dtype=np.float64)
    won_mask = stages == OpportunityStage.WON.value
    lost_mask = stages == OpportunityStage.LOST.value
    won = int(won_mask.sum())
    lost = int(lost_mask.sum())

    return OpportunityStatistics(
        total=total,
        active=total - won - lost,
        won=won,
        lost=lost,
        total_value=sum(o.value for o in opportunities),
        weighted_value=sum(o.weighted_value for o in opportunities),
        average_probability=round_half_up(_mean([o.probability for o in opportunities])),
        conversion_rate=_percentage(won, total),
        average_deal_size=round_half_up(_mean(values[won_mask])) if won else 0,
    )


def active_opportunities(opportunities: Iterable[Opportunity]) -> List[Opportunity]:
    return [o for o in opportunities if o.stage not in CLOSED_STAGES]


def opportunities_by_stage(opportunities: Iterable[Opportunity], stage: str) -> List[Opportunity]:
    return [o for o in opportunities if o.stage == stage]


def opportunities_by_min_probability(
    opportunities: Iterable[Opportunity], min_probability: int
) -> List[Opportunity]:
    return [o for o in opportunities if o.probability >= min_probability]


def high_value_opportunities(opportunities: Iterable[Opportunity], min_value: int) -> List[Opportunity]:
    return [o for o in opportunities if o.value >= min_value]


def opportunities_closing_soon(
    opportunities: Iterable[Opportunity],
    days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[Opportunity]:
    """
    Open opportunities due within the next `days` days.

    The expected close date wins over the deadline when both are set. Open
    deals already past their date are included: they still need attention.
    """
    days = settings.closing_soon_days if days is None else days
    cutoff: date = _resolve_now(now).date() + timedelta(days=days)
    return [
        o for o in opportunities
        if o.stage not in CLOSED_STAGES
        and (o.expected_close_date or o.deadline) <= cutoff
    ]


# ─── Interactions ─────────────────────────────────────────────────────────────

def today_interactions(interactions: Iterable[Interaction], now: Optional[datetime] = None) -> List[Interaction]:
    today = _resolve_now(now).date()
    return [i for i in interactions if as_utc(i.date).date() == today]


def interactions_requiring_follow_up(
    interactions: Iterable[Interaction], now: Optional[datetime] = None
) -> List[Interaction]:
    """Pending follow-ups that are not yet due."""
    current = _resolve_now(now)
    return [
        i for i in interactions
        if i.follow_up_required
        and i.follow_up_date is not None
        and as_utc(i.follow_up_date) >= current
    ]


def overdue_follow_ups(interactions: Iterable[Interaction], now: Optional[datetime] = None) -> List[Interaction]:
    current = _resolve_now(now)
    return [
        i for i in interactions
        if i.follow_up_required
        and i.follow_up_date is not None
        and as_utc(i.follow_up_date) < current
    ]


def recent_interactions(interactions: Iterable[Interaction], limit: Optional[int] = None) -> List[Interaction]:
    limit = settings.recent_interactions_limit if limit is None else limit
    return sorted(interactions, key=lambda i: as_utc(i.date), reverse=True)[:limit]


def interaction_statistics(
    interactions: Iterable[Interaction], now: Optional[datetime] = None
) -> InteractionStatistics:
    interactions = list(interactions)
    current = _resolve_now(now)
    call_durations = [
        i.duration for i in interactions
        if i.type == InteractionType.CALL.value and i.duration is not None
    ]

    return InteractionStatistics(
        total=len(interactions),
        today=len(today_interactions(interactions, current)),
        follow_up_required=len(interactions_requiring_follow_up(interactions, current)),
        overdue_follow_ups=len(overdue_follow_ups(interactions, current)),
        by_type=dict(Counter(i.type for i in interactions)),
        average_duration=round_half_up(_mean(call_durations)),
    )


# ─── Contacts ─────────────────────────────────────────────────────────────────

def contact_statistics(contacts: Iterable[Contact]) -> ContactStatistics:
    contacts = list(contacts)
    return ContactStatistics(
        total=len(contacts),
        primary=sum(1 for c in contacts if c.is_primary),
        with_whatsapp=sum(1 for c in contacts if c.whatsapp),
        entities_covered=len({c.entity_id for c in contacts}),
    )


def primary_contacts(contacts: Iterable[Contact]) -> List[Contact]:
    return [c for c in contacts if c.is_primary]


def contacts_with_whatsapp(contacts: Iterable[Contact]) -> List[Contact]:
    return [c for c in contacts if c.whatsapp]


# ─── Dashboard ────────────────────────────────────────────────────────────────

def build_dashboard(
    entities: Iterable[Entity],
    contacts: Iterable[Contact],
    missions: Iterable[Mission],
    opportunities: Iterable[Opportunity],
    interactions: Iterable[Interaction],
    now: Optional[datetime] = None,
) -> DashboardResponse:
    """All five statistics blocks, evaluated against a single `now`."""
    current = _resolve_now(now)
    return DashboardResponse(
        entities=entity_statistics(entities),
        contacts=contact_statistics(contacts),
        missions=mission_statistics(missions),
        opportunities=opportunity_statistics(opportunities),
        interactions=interaction_statistics(interactions, current),
        generated_at=current,
    )
