# =============================================================================
# main.py — FastAPI application entry point
#
# This file wires together routing, middleware, error handling and the store
# dependency. Handlers stay thin: they validate shape (FastAPI/pydantic), call
# the store for writes, and call the pure functions in scoring.py,
# aggregates.py and filtering.py for everything else.
#
# ERROR SHAPE:
#   Every validation failure, whether a date that will not parse or a budget
#   of zero, comes back as 422 with the same body:
#     {"error": "validation_error", "message": "...", "fields": {field: msg}}
#
# STATE:
#   The store lives in process memory. Run a single worker. Tests swap in
#   their own store through `app.dependency_overrides[get_store]`.
# =============================================================================

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import aggregates
from config import settings
from exceptions import FormValidationError, NotFoundError
from filtering import SEARCH_FIELDS, compute_filter_stats, filter_records, paginate, sort_records
from logging_config import configure_logging
from models import (
    Contact,
    ContactDraft,
    ContactStatistics,
    ContactUpdate,
    DashboardResponse,
    Entity,
    EntityDraft,
    EntityStatistics,
    EntityUpdate,
    HealthResponse,
    Interaction,
    InteractionDraft,
    InteractionStatistics,
    InteractionUpdate,
    Mission,
    MissionDraft,
    MissionStatistics,
    MissionUpdate,
    Opportunity,
    OpportunityDraft,
    OpportunityStatistics,
    OpportunityUpdate,
    ScoreBreakdown,
    ScoreRequest,
    SearchRequest,
    SearchResponse,
)
from scoring import score_breakdown
from store import CrmStore
from validation import field_errors_from_pydantic

configure_logging()
logger = logging.getLogger(__name__)

# ─── App Initialization ───────────────────────────────────────────────────────

app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# ─── Store Dependency ─────────────────────────────────────────────────────────

_store = CrmStore()


def get_store() -> CrmStore:
    return _store


# ─── Error Handlers ───────────────────────────────────────────────────────────

def _validation_response(fields: Dict[str, str]) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": "One or more fields are invalid.",
            "fields": fields,
        },
    )


@app.exception_handler(FormValidationError)
async def form_validation_handler(request: Request, exc: FormValidationError) -> JSONResponse:
    return _validation_response(exc.errors)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _validation_response(field_errors_from_pydantic(exc.errors()))


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"error": "not_found", "message": str(exc), "fields": {}},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: always answer with JSON, never an HTML error page."""
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": str(exc) if settings.debug else "An unexpected error occurred.",
            "path": str(request.url.path),
        },
    )


# ─── Health & Scoring ─────────────────────────────────────────────────────────

@app.get("/health", response_model=HealthResponse, tags=["Operations"])
async def health_check() -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=settings.api_version,
        timestamp=datetime.now(timezone.utc),
    )


@app.post(
    "/api/v1/score",
    response_model=ScoreBreakdown,
    summary="Score an entity draft",
    description="Preview the 0–100 score a form would produce, band by band. Nothing is stored.",
    tags=["Scoring"],
)
async def score(request: ScoreRequest) -> ScoreBreakdown:
    return score_breakdown(request)


@app.get("/api/v1/dashboard", response_model=DashboardResponse, tags=["Statistics"])
async def dashboard(store: CrmStore = Depends(get_store)) -> DashboardResponse:
    return aggregates.build_dashboard(
        store.entities,
        store.contacts,
        store.missions,
        store.opportunities,
        store.interactions,
    )


# ─── Search helper ────────────────────────────────────────────────────────────

def _search(records: Sequence[Any], collection: str, request: SearchRequest) -> Dict[str, Any]:
    matched = filter_records(records, request.search_term, request.filters, SEARCH_FIELDS[collection])
    if request.sort is not None:
        matched = sort_records(matched, request.sort.field, request.sort.direction)
    return {
        "results": paginate(matched, request.page, request.size),
        "stats": compute_filter_stats(len(records), len(matched), request.search_term, request.filters),
    }


# ─── Entities ─────────────────────────────────────────────────────────────────

@app.get("/api/v1/entities", response_model=List[Entity], tags=["Entities"])
async def list_entities(
    status: Optional[str] = None,
    min_score: Optional[int] = Query(default=None, alias="minScore", ge=0, le=100),
    store: CrmStore = Depends(get_store),
) -> List[Entity]:
    entities: List[Entity] = list(store.entities)
    if status:
        entities = aggregates.entities_by_status(entities, status)
    if min_score is not None:
        entities = aggregates.entities_by_min_score(entities, min_score)
    return entities


@app.post("/api/v1/entities", response_model=Entity, status_code=201, tags=["Entities"])
async def create_entity(draft: EntityDraft, store: CrmStore = Depends(get_store)) -> Entity:
    return store.create_entity(draft)


@app.get("/api/v1/entities/statistics", response_model=EntityStatistics, tags=["Entities"])
async def entity_statistics(store: CrmStore = Depends(get_store)) -> EntityStatistics:
    return aggregates.entity_statistics(store.entities)


@app.get("/api/v1/entities/top", response_model=List[Entity], tags=["Entities"])
async def top_entities(
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    store: CrmStore = Depends(get_store),
) -> List[Entity]:
    return aggregates.top_entities(store.entities, limit)


@app.post("/api/v1/entities/search", response_model=SearchResponse[Entity], tags=["Entities"])
async def search_entities(request: SearchRequest, store: CrmStore = Depends(get_store)) -> Any:
    return _search(store.entities, "entities", request)


@app.get("/api/v1/entities/{entity_id}", response_model=Entity, tags=["Entities"])
async def get_entity(entity_id: str, store: CrmStore = Depends(get_store)) -> Entity:
    return store.get_entity(entity_id)


@app.patch("/api/v1/entities/{entity_id}", response_model=Entity, tags=["Entities"])
async def update_entity(entity_id: str, changes: EntityUpdate, store: CrmStore = Depends(get_store)) -> Entity:
    return store.update_entity(entity_id, changes)


@app.delete("/api/v1/entities/{entity_id}", status_code=204, tags=["Entities"])
async def delete_entity(entity_id: str, store: CrmStore = Depends(get_store)) -> Response:
    store.delete_entity(entity_id)
    return Response(status_code=204)


# ─── Contacts ─────────────────────────────────────────────────────────────────

@app.get("/api/v1/contacts", response_model=List[Contact], tags=["Contacts"])
async def list_contacts(
    entity_id: Optional[str] = Query(default=None, alias="entityId"),
    store: CrmStore = Depends(get_store),
) -> List[Contact]:
    if entity_id:
        return store.contacts_for_entity(entity_id)
    return list(store.contacts)


@app.post("/api/v1/contacts", response_model=Contact, status_code=201, tags=["Contacts"])
async def create_contact(draft: ContactDraft, store: CrmStore = Depends(get_store)) -> Contact:
    return store.create_contact(draft)


@app.get("/api/v1/contacts/statistics", response_model=ContactStatistics, tags=["Contacts"])
async def contact_statistics(store: CrmStore = Depends(get_store)) -> ContactStatistics:
    return aggregates.contact_statistics(store.contacts)


@app.post("/api/v1/contacts/search", response_model=SearchResponse[Contact], tags=["Contacts"])
async def search_contacts(request: SearchRequest, store: CrmStore = Depends(get_store)) -> Any:
    return _search(store.contacts, "contacts", request)


@app.get("/api/v1/contacts/{contact_id}", response_model=Contact, tags=["Contacts"])
async def get_contact(contact_id: str, store: CrmStore = Depends(get_store)) -> Contact:
    return store.get_contact(contact_id)


@app.patch("/api/v1/contacts/{contact_id}", response_model=Contact, tags=["Contacts"])
async def update_contact(contact_id: str, changes: ContactUpdate, store: CrmStore = Depends(get_store)) -> Contact:
    return store.update_contact(contact_id, changes)


@app.delete("/api/v1/contacts/{contact_id}", status_code=204, tags=["Contacts"])
async def delete_contact(contact_id: str, store: CrmStore = Depends(get_store)) -> Response:
    store.delete_contact(contact_id)
    return Response(status_code=204)


# ─── Missions ─────────────────────────────────────────────────────────────────

@app.get("/api/v1/missions", response_model=List[Mission], tags=["Missions"])
async def list_missions(
    entity_id: Optional[str] = Query(default=None, alias="entityId"),
    store: CrmStore = Depends(get_store),
) -> List[Mission]:
    if entity_id:
        return aggregates.records_for_entity(store.missions, entity_id)
    return list(store.missions)


@app.post("/api/v1/missions", response_model=Mission, status_code=201, tags=["Missions"])
async def create_mission(draft: MissionDraft, store: CrmStore = Depends(get_store)) -> Mission:
    return store.create_mission(draft)


@app.get("/api/v1/missions/statistics", response_model=MissionStatistics, tags=["Missions"])
async def mission_statistics(store: CrmStore = Depends(get_store)) -> MissionStatistics:
    return aggregates.mission_statistics(store.missions)


@app.get("/api/v1/missions/overdue", response_model=List[Mission], tags=["Missions"])
async def overdue_missions(store: CrmStore = Depends(get_store)) -> List[Mission]:
    return aggregates.overdue_missions(store.missions)


@app.post("/api/v1/missions/search", response_model=SearchResponse[Mission], tags=["Missions"])
async def search_missions(request: SearchRequest, store: CrmStore = Depends(get_store)) -> Any:
    return _search(store.missions, "missions", request)


@app.get("/api/v1/missions/{mission_id}", response_model=Mission, tags=["Missions"])
async def get_mission(mission_id: str, store: CrmStore = Depends(get_store)) -> Mission:
    return store.get_mission(mission_id)


@app.patch("/api/v1/missions/{mission_id}", response_model=Mission, tags=["Missions"])
async def update_mission(mission_id: str, changes: MissionUpdate, store: CrmStore = Depends(get_store)) -> Mission:
    return store.update_mission(mission_id, changes)


@app.delete("/api/v1/missions/{mission_id}", status_code=204, tags=["Missions"])
async def delete_mission(mission_id: str, store: CrmStore = Depends(get_store)) -> Response:
    store.delete_mission(mission_id)
    return Response(status_code=204)


# ─── Opportunities ────────────────────────────────────────────────────────────

@app.get("/api/v1/opportunities", response_model=List[Opportunity], tags=["Opportunities"])
async def list_opportunities(
    entity_id: Optional[str] = Query(default=None, alias="entityId"),
    min_probability: Optional[int] = Query(default=None, alias="minProbability", ge=0, le=100),
    min_value: Optional[int] = Query(default=None, alias="minValue", ge=0),
    store: CrmStore = Depends(get_store),
) -> List[Opportunity]:
    opportunities: List[Opportunity] = list(store.opportunities)
    if entity_id:
        opportunities = aggregates.records_for_entity(opportunities, entity_id)
    if min_probability is not None:
        opportunities = aggregates.opportunities_by_min_probability(opportunities, min_probability)
    if min_value is not None:
        opportunities = aggregates.high_value_opportunities(opportunities, min_value)
    return opportunities


@app.post("/api/v1/opportunities", response_model=Opportunity, status_code=201, tags=["Opportunities"])
async def create_opportunity(draft: OpportunityDraft, store: CrmStore = Depends(get_store)) -> Opportunity:
    return store.create_opportunity(draft)


@app.get("/api/v1/opportunities/statistics", response_model=OpportunityStatistics, tags=["Opportunities"])
async def opportunity_statistics(store: CrmStore = Depends(get_store)) -> OpportunityStatistics:
    return aggregates.opportunity_statistics(store.opportunities)


@app.get("/api/v1/opportunities/closing-soon", response_model=List[Opportunity], tags=["Opportunities"])
async def opportunities_closing_soon(
    days: Optional[int] = Query(default=None, ge=0, le=365),
    store: CrmStore = Depends(get_store),
) -> List[Opportunity]:
    return aggregates.opportunities_closing_soon(store.opportunities, days)


@app.post("/api/v1/opportunities/search", response_model=SearchResponse[Opportunity], tags=["Opportunities"])
async def search_opportunities(request: SearchRequest, store: CrmStore = Depends(get_store)) -> Any:
    return _search(store.opportunities, "opportunities", request)


@app.get("/api/v1/opportunities/{opportunity_id}", response_model=Opportunity, tags=["Opportunities"])
async def get_opportunity(opportunity_id: str, store: CrmStore = Depends(get_store)) -> Opportunity:
    return store.get_opportunity(opportunity_id)


@app.patch("/api/v1/opportunities/{opportunity_id}", response_model=Opportunity, tags=["Opportunities"])
async def update_opportunity(
    opportunity_id: str, changes: OpportunityUpdate, store: CrmStore = Depends(get_store)
) -> Opportunity:
    return store.update_opportunity(opportunity_id, changes)


@app.delete("/api/v1/opportunities/{opportunity_id}", status_code=204, tags=["Opportunities"])
async def delete_opportunity(opportunity_id: str, store: CrmStore = Depends(get_store)) -> Response:
    store.delete_opportunity(opportunity_id)
    return Response(status_code=204)


# ─── Interactions ─────────────────────────────────────────────────────────────

@app.get("/api/v1/interactions", response_model=List[Interaction], tags=["Interactions"])
async def list_interactions(
    entity_id: Optional[str] = Query(default=None, alias="entityId"),
    contact_id: Optional[str] = Query(default=None, alias="contactId"),
    type: Optional[str] = None,
    store: CrmStore = Depends(get_store),
) -> List[Interaction]:
    interactions: List[Interaction] = list(store.interactions)
    if entity_id:
        interactions = aggregates.records_for_entity(interactions, entity_id)
    if contact_id:
        interactions = [i for i in interactions if i.contact_id == contact_id]
    if type:
        interactions = [i for i in interactions if i.type == type]
    return interactions


@app.post("/api/v1/interactions", response_model=Interaction, status_code=201, tags=["Interactions"])
async def create_interaction(draft: InteractionDraft, store: CrmStore = Depends(get_store)) -> Interaction:
    return store.create_interaction(draft)


@app.get("/api/v1/interactions/statistics", response_model=InteractionStatistics, tags=["Interactions"])
async def interaction_statistics(store: CrmStore = Depends(get_store)) -> InteractionStatistics:
    return aggregates.interaction_statistics(store.interactions)


@app.get("/api/v1/interactions/recent", response_model=List[Interaction], tags=["Interactions"])
async def recent_interactions(
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    store: CrmStore = Depends(get_store),
) -> List[Interaction]:
    return aggregates.recent_interactions(store.interactions, limit)


@app.get("/api/v1/interactions/follow-ups", tags=["Interactions"])
async def follow_ups(store: CrmStore = Depends(get_store)) -> Dict[str, List[Interaction]]:
    """Pending follow-ups split into upcoming and overdue, against one clock reading."""
    now = aggregates.utc_now()
    return {
        "upcoming": aggregates.interactions_requiring_follow_up(store.interactions, now),
        "overdue": aggregates.overdue_follow_ups(store.interactions, now),
    }


@app.post("/api/v1/interactions/search", response_model=SearchResponse[Interaction], tags=["Interactions"])
async def search_interactions(request: SearchRequest, store: CrmStore = Depends(get_store)) -> Any:
    return _search(store.interactions, "interactions", request)


@app.get("/api/v1/interactions/{interaction_id}", response_model=Interaction, tags=["Interactions"])
async def get_interaction(interaction_id: str, store: CrmStore = Depends(get_store)) -> Interaction:
    return store.get_interaction(interaction_id)


@app.patch("/api/v1/interactions/{interaction_id}", response_model=Interaction, tags=["Interactions"])
async def update_interaction(
    interaction_id: str, changes: InteractionUpdate, store: CrmStore = Depends(get_store)
) -> Interaction:
    return store.update_interaction(interaction_id, changes)


@app.delete("/api/v1/interactions/{interaction_id}", status_code=204, tags=["Interactions"])
async def delete_interaction(interaction_id: str, store: CrmStore = Depends(get_store)) -> Response:
    store.delete_interaction(interaction_id)
    return Response(status_code=204)


# ─── Local Dev Entry Point ─────────────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )
