# =============================================================================
# store.py — In-memory CRM state container
#
# One CrmStore holds the five collections as tuples. A write never edits a
# tuple in place: it builds a new tuple and swaps it in, so anyone holding a
# snapshot keeps a consistent view.
#
# The write path for every collection is the same:
#   1. merge the payload with the current record (updates only)
#   2. validate the whole draft, collecting every field error
#   3. derive stored fields (score, weighted value, approval flag,
#      profitability) from the validated draft
#   4. swap in the new collection
#
# Derived fields are stored, not recomputed on read: a record keeps the values
# that were true when it was written.
#
# The store is not thread-safe. It expects one thread of control, as in a
# single-worker API process.
# =============================================================================

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

import scoring
from aggregates import records_for_entity, utc_now
from exceptions import FormValidationError, NotFoundError
from models import (
    Contact,
    ContactDraft,
    ContactUpdate,
    Entity,
    EntityDraft,
    EntityUpdate,
    Interaction,
    InteractionDraft,
    InteractionUpdate,
    Mission,
    MissionDraft,
    MissionUpdate,
    Opportunity,
    OpportunityDraft,
    OpportunityUpdate,
)
from validation import (
    FieldErrors,
    field_errors_from_pydantic,
    validate_contact,
    validate_entity,
    validate_interaction,
    validate_mission,
    validate_opportunity,
)

logger = logging.getLogger(__name__)

D = TypeVar("D", bound=BaseModel)
Changes = Union[BaseModel, Mapping[str, Any]]

COLLECTIONS = ("entities", "contacts", "missions", "opportunities", "interactions")


def _new_id() -> str:
    return uuid.uuid4().hex


class CrmStore:
    """
    Process-wide home of every CRM collection.

    `clock` and `id_factory` are injectable so tests can pin timestamps and
    ids. Read access goes through the tuple properties; all writes go through
    the create/update/delete methods.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = _new_id,
    ):
        self._clock = clock
        self._id_factory = id_factory
        self._data: Dict[str, Tuple[Any, ...]] = {name: () for name in COLLECTIONS}

    # ── Snapshots ─────────────────────────────────────────────────────────────

    @property
    def entities(self) -> Tuple[Entity, ...]:
        return self._data["entities"]

    @property
    def contacts(self) -> Tuple[Contact, ...]:
        return self._data["contacts"]

    @property
    def missions(self) -> Tuple[Mission, ...]:
        return self._data["missions"]

    @property
    def opportunities(self) -> Tuple[Opportunity, ...]:
        return self._data["opportunities"]

    @property
    def interactions(self) -> Tuple[Interaction, ...]:
        return self._data["interactions"]

    def collection(self, name: str) -> Tuple[Any, ...]:
        if name not in self._data:
            raise KeyError(f"Unknown collection '{name}'")
        return self._data[name]

    def clear(self) -> None:
        self._data = {name: () for name in COLLECTIONS}

    # ── Generic helpers ───────────────────────────────────────────────────────

    def _get(self, collection: str, record_id: str) -> Any:
        for record in self._data[collection]:
            if record.id == record_id:
                return record
        raise NotFoundError(collection, record_id)

    def _insert(self, collection: str, record: Any) -> None:
        self._data[collection] = self._data[collection] + (record,)

    def _replace(self, collection: str, record: Any) -> None:
        self._data[collection] = tuple(
            record if r.id == record.id else r for r in self._data[collection]
        )

    def _remove(self, collection: str, record_id: str) -> None:
        self._data[collection] = tuple(r for r in self._data[collection] if r.id != record_id)

    def _merge(self, current: BaseModel, changes: Changes, draft_cls: Type[D], update_cls: Type[BaseModel]) -> D:
        """Apply a partial update on top of a stored record and re-validate its shape."""
        try:
            if isinstance(changes, BaseModel) and not isinstance(changes, update_cls):
                changes = changes.model_dump(exclude_unset=True)
            if isinstance(changes, Mapping):
                changes = update_cls.model_validate(dict(changes))
            applied = changes.model_dump(exclude_unset=True)
            data = current.model_dump(include=set(draft_cls.model_fields))
            data.update(applied)
            return draft_cls.model_validate(data)
        except ValidationError as exc:
            raise FormValidationError(field_errors_from_pydantic(exc.errors())) from exc

    def _check(self, kind: str, errors: FieldErrors, entity_id: Optional[str] = None) -> None:
        if entity_id and "entityId" not in errors and not self._has_entity(entity_id):
            errors["entityId"] = "Unknown company"
        if errors:
            logger.warning("Rejected %s write: %s", kind, ", ".join(sorted(errors)))
            raise FormValidationError(errors)

    def _has_entity(self, entity_id: str) -> bool:
        return any(e.id == entity_id for e in self.entities)

    # ── Entities ──────────────────────────────────────────────────────────────

    def get_entity(self, entity_id: str) -> Entity:
        return self._get("entities", entity_id)

    def create_entity(self, draft: EntityDraft) -> Entity:
        self._check("entity", validate_entity(draft))
        now = self._clock()
        entity = Entity.model_validate({
            **draft.model_dump(),
            "id": self._id_factory(),
            "score": scoring.calculate_score(draft),
            "created_at": now,
            "updated_at": now,
        })
        self._insert("entities", entity)
        logger.info("Created entity %s (%s), score=%d", entity.id, entity.company_name, entity.score)
        return entity

    def update_entity(self, entity_id: str, changes: Changes) -> Entity:
        current = self.get_entity(entity_id)
        draft = self._merge(current, changes, EntityDraft, EntityUpdate)
        self._check("entity", validate_entity(draft))
        entity = Entity.model_validate({
            **draft.model_dump(),
            "id": current.id,
            "score": scoring.calculate_score(draft),
            "created_at": current.created_at,
            "updated_at": self._clock(),
        })
        self._replace("entities", entity)
        if entity.score != current.score:
            logger.info("Entity %s rescored %d -> %d", entity.id, current.score, entity.score)
        return entity

    def delete_entity(self, entity_id: str) -> None:
        """Delete an entity together with every record that references it."""
        self.get_entity(entity_id)
        removed = {}
        for collection in ("contacts", "missions", "opportunities", "interactions"):
            before = self._data[collection]
            self._data[collection] = tuple(r for r in before if r.entity_id != entity_id)
            removed[collection] = len(before) - len(self._data[collection])
        self._remove("entities", entity_id)
        logger.info("Deleted entity %s with dependents %s", entity_id, removed)

    # ── Contacts ──────────────────────────────────────────────────────────────

    def get_contact(self, contact_id: str) -> Contact:
        return self._get("contacts", contact_id)

    def contacts_for_entity(self, entity_id: str) -> list:
        return records_for_entity(self.contacts, entity_id)

    def create_contact(self, draft: ContactDraft) -> Contact:
        self._check("contact", validate_contact(draft), draft.entity_id)
        now = self._clock()
        contact = Contact.model_validate({
            **draft.model_dump(),
            "id": self._id_factory(),
            "created_at": now,
            "updated_at": now,
        })
        self._insert("contacts", contact)
        self._demote_other_primaries(contact)
        logger.info("Created contact %s for entity %s", contact.id, contact.entity_id)
        return contact

    def update_contact(self, contact_id: str, changes: Changes) -> Contact:
        current = self.get_contact(contact_id)
        draft = self._merge(current, changes, ContactDraft, ContactUpdate)
        self._check("contact", validate_contact(draft), draft.entity_id)
        contact = Contact.model_validate({
            **draft.model_dump(),
            "id": current.id,
            "created_at": current.created_at,
            "updated_at": self._clock(),
        })
        self._replace("contacts", contact)
        self._demote_other_primaries(contact)
        return contact

    def delete_contact(self, contact_id: str) -> None:
        """Delete a contact. Interactions that referenced it keep their entity link only."""
        self.get_contact(contact_id)
        self._remove("contacts", contact_id)
        now = self._clock()
        self._data["interactions"] = tuple(
            i.model_copy(update={"contact_id": None, "updated_at": now}) if i.contact_id == contact_id else i
            for i in self.interactions
        )
        logger.info("Deleted contact %s", contact_id)

    def _demote_other_primaries(self, contact: Contact) -> None:
        # At most one primary contact per entity: the latest write wins.
        if not contact.is_primary:
            return
        now = self._clock()
        demoted = []
        updated = []
        for other in self.contacts:
            if other.id != contact.id and other.entity_id == contact.entity_id and other.is_primary:
                other = other.model_copy(update={"is_primary": False, "updated_at": now})
                demoted.append(other.id)
            updated.append(other)
        if demoted:
            self._data["contacts"] = tuple(updated)
            logger.info("Demoted primary contacts %s of entity %s", demoted, contact.entity_id)

    # ── Missions ──────────────────────────────────────────────────────────────

    def get_mission(self, mission_id: str) -> Mission:
        return self._get("missions", mission_id)

    def _build_mission(
        self, draft: MissionDraft, record_id: str, created_at: datetime, updated_at: datetime
    ) -> Mission:
        return Mission.model_validate({
            **draft.model_dump(),
            "id": record_id,
            "profitability": scoring.mission_profitability(draft.budget, draft.actual_cost),
            "created_at": created_at,
            "updated_at": updated_at,
        })

    def create_mission(self, draft: MissionDraft) -> Mission:
        self._check("mission", validate_mission(draft), draft.entity_id)
        now = self._clock()
        mission = self._build_mission(draft, self._id_factory(), now, now)
        self._insert("missions", mission)
        logger.info("Created mission %s for entity %s", mission.id, mission.entity_id)
        return mission

    def update_mission(self, mission_id: str, changes: Changes) -> Mission:
        current = self.get_mission(mission_id)
        draft = self._merge(current, changes, MissionDraft, MissionUpdate)
        self._check("mission", validate_mission(draft), draft.entity_id)
        mission = self._build_mission(draft, current.id, current.created_at, self._clock())
        self._replace("missions", mission)
        return mission

    def delete_mission(self, mission_id: str) -> None:
        self.get_mission(mission_id)
        self._remove("missions", mission_id)
        logger.info("Deleted mission %s", mission_id)

    # ── Opportunities ─────────────────────────────────────────────────────────

    def get_opportunity(self, opportunity_id: str) -> Opportunity:
        return self._get("opportunities", opportunity_id)

    def _build_opportunity(
        self, draft: OpportunityDraft, record_id: str, created_at: datetime, updated_at: datetime
    ) -> Opportunity:
        return Opportunity.model_validate({
            **draft.model_dump(),
            "id": record_id,
            "weighted_value": scoring.weighted_value(draft.value, draft.probability),
            "requires_approval": scoring.requires_approval(draft.value),
            "created_at": created_at,
            "updated_at": updated_at,
        })

    def create_opportunity(self, draft: OpportunityDraft) -> Opportunity:
        self._check("opportunity", validate_opportunity(draft), draft.entity_id)
        now = self._clock()
        opportunity = self._build_opportunity(draft, self._id_factory(), now, now)
        self._insert("opportunities", opportunity)
        logger.info(
            "Created opportunity %s (value=%d, approval=%s)",
            opportunity.id, opportunity.value, opportunity.requires_approval,
        )
        return opportunity

    def update_opportunity(self, opportunity_id: str, changes: Changes) -> Opportunity:
        current = self.get_opportunity(opportunity_id)
        draft = self._merge(current, changes, OpportunityDraft, OpportunityUpdate)
        self._check("opportunity", validate_opportunity(draft), draft.entity_id)
        opportunity = self._build_opportunity(draft, current.id, current.created_at, self._clock())
        self._replace("opportunities", opportunity)
        return opportunity

    def delete_opportunity(self, opportunity_id: str) -> None:
        self.get_opportunity(opportunity_id)
        self._remove("opportunities", opportunity_id)
        logger.info("Deleted opportunity %s", opportunity_id)

    # ── Interactions ──────────────────────────────────────────────────────────

    def get_interaction(self, interaction_id: str) -> Interaction:
        return self._get("interactions", interaction_id)

    def _check_interaction(self, draft: InteractionDraft) -> None:
        errors = validate_interaction(draft)
        if draft.contact_id and not any(c.id == draft.contact_id for c in self.contacts):
            errors["contactId"] = "Unknown contact"
        self._check("interaction", errors, draft.entity_id)

    def create_interaction(self, draft: InteractionDraft) -> Interaction:
        self._check_interaction(draft)
        now = self._clock()
        interaction = Interaction.model_validate({
            **draft.model_dump(),
            "id": self._id_factory(),
            "date": draft.date or now,
            "created_at": now,
            "updated_at": now,
        })
        self._insert("interactions", interaction)
        logger.info("Logged %s interaction %s for entity %s", interaction.type, interaction.id, interaction.entity_id)
        return interaction

    def update_interaction(self, interaction_id: str, changes: Changes) -> Interaction:
        current = self.get_interaction(interaction_id)
        draft = self._merge(current, changes, InteractionDraft, InteractionUpdate)
        self._check_interaction(draft)
        interaction = Interaction.model_validate({
            **draft.model_dump(),
            "id": current.id,
            "date": draft.date or current.date,
            "created_at": current.created_at,
            "updated_at": self._clock(),
        })
        self._replace("interactions", interaction)
        return interaction

    def delete_interaction(self, interaction_id: str) -> None:
        self.get_interaction(interaction_id)
        self._remove("interactions", interaction_id)
        logger.info("Deleted interaction %s", interaction_id)
