# =============================================================================
# validation.py — Field-scoped form validation
#
# Each validator inspects a whole draft and returns a {field: message} map.
# An empty map means the draft may be written. Validators never stop at the
# first problem: the caller re-prompts with every broken field flagged.
#
# Field keys use the camelCase names of the JSON surface (companyName,
# followUpDate, ...), which are also the names the forms bind to.
# =============================================================================

import re
from typing import Any, Dict, Iterable, Mapping

from models import (
    ContactDraft,
    EntityDraft,
    InteractionDraft,
    InteractionType,
    MissionDraft,
    OpportunityDraft,
)

FieldErrors = Dict[str, str]

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_entity(draft: EntityDraft) -> FieldErrors:
    errors: FieldErrors = {}

    if _blank(draft.company_name):
        errors["companyName"] = "Company name is required"
    if _blank(draft.sector):
        errors["sector"] = "Sector is required"
    if _blank(draft.region):
        errors["region"] = "Region is required"
    if draft.revenue is not None and draft.revenue < 0:
        errors["revenue"] = "Revenue cannot be negative"
    if draft.employees is not None and draft.employees < 0:
        errors["employees"] = "Employee count cannot be negative"
    if _blank(draft.address.street):
        errors["address.street"] = "Street address is required"
    if _blank(draft.address.city):
        errors["address.city"] = "City is required"
    if draft.email and not EMAIL_PATTERN.match(draft.email):
        errors["email"] = "Invalid email format"

    return errors


def validate_contact(draft: ContactDraft) -> FieldErrors:
    errors: FieldErrors = {}

    if _blank(draft.name):
        errors["name"] = "Name is required"
    if _blank(draft.entity_id):
        errors["entityId"] = "Company is required"
    if _blank(draft.role):
        errors["role"] = "Role is required"
    if _blank(draft.email):
        errors["email"] = "Email is required"
    elif not EMAIL_PATTERN.match(draft.email):
        errors["email"] = "Invalid email format"
    if _blank(draft.phone):
        errors["phone"] = "Phone number is required"

    return errors


def validate_mission(draft: MissionDraft) -> FieldErrors:
    errors: FieldErrors = {}

    if _blank(draft.title):
        errors["title"] = "Title is required"
    if _blank(draft.entity_id):
        errors["entityId"] = "Company is required"
    if draft.start_date is None:
        errors["startDate"] = "Start date is required"
    elif draft.end_date is not None and draft.end_date < draft.start_date:
        errors["endDate"] = "End date cannot precede the start date"
    if draft.budget <= 0:
        errors["budget"] = "Budget must be greater than 0"
    if draft.actual_cost < 0:
        errors["actualCost"] = "Actual cost cannot be negative"
    if _blank(draft.description):
        errors["description"] = "Description is required"

    return errors


def validate_opportunity(draft: OpportunityDraft) -> FieldErrors:
    errors: FieldErrors = {}

    if _blank(draft.title):
        errors["title"] = "Title is required"
    if _blank(draft.entity_id):
        errors["entityId"] = "Company is required"
    if _blank(draft.description):
        errors["description"] = "Description is required"
    if draft.value <= 0:
        errors["value"] = "Value must be greater than 0"
    if draft.probability < 0 or draft.probability > 100:
        errors["probability"] = "Probability must be between 0 and 100"
    if draft.deadline is None:
        errors["deadline"] = "Deadline is required"

    return errors


def validate_interaction(draft: InteractionDraft) -> FieldErrors:
    errors: FieldErrors = {}

    if _blank(draft.subject):
        errors["subject"] = "Subject is required"
    if _blank(draft.description):
        errors["description"] = "Description is required"
    if _blank(draft.entity_id):
        errors["entityId"] = "Company is required"
    if draft.type == InteractionType.CALL.value and (draft.duration is None or draft.duration <= 0):
        errors["duration"] = "Duration is required for a call"
    elif draft.duration is not None and draft.duration < 0:
        errors["duration"] = "Duration cannot be negative"
    if draft.follow_up_required and draft.follow_up_date is None:
        errors["followUpDate"] = "Follow-up date is required"

    return errors


def field_errors_from_pydantic(errors: Iterable[Mapping[str, Any]]) -> FieldErrors:
    """
    Flatten pydantic error dicts into the same {field: message} shape.

    Used for shape failures (an unparseable date, text in a number field).
    The leading "body"/"query" location segment FastAPI adds is dropped, and
    only the first message per field is kept.
    """
    flat: FieldErrors = {}
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        key = ".".join(loc) or "__root__"
        flat.setdefault(key, error.get("msg", "Invalid value"))
    return flat
