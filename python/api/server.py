"""
FastAPI Shelter Matching API Server

Provides REST API endpoints for registering sheltered persons, filing
missing-person reports, searching both datasets and confirming matches.

Usage:
    uvicorn api.server:app --reload --port 8000

Staff endpoints require the X-API-Key header when API_KEY is set.
"""

import os
import time
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, Security
from fastapi.responses import RedirectResponse
from fastapi.security import APIKeyHeader

from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    RequestLoggingMiddleware,
)
from api.models import (
    BulkRegistrationRequest,
    BulkRegistrationResponse,
    ConfidenceBreakdownResponse,
    ConfirmMatchRequest,
    ConfirmedMatchResponse,
    DatabaseHealth,
    DuplicateCheckRequest,
    DuplicateCheckResponse,
    ErrorResponse,
    HealthResponse,
    MissingReportSearchResult,
    MissingReportListResponse,
    MissingReportRequest,
    MissingReportResponse,
    PersonDetailResponse,
    PersonFields,
    PersonInfo,
    PersonRegistrationRequest,
    PersonSearchResult,
    PotentialMatchResponse,
    RegistrationResponse,
    ReportUpdateRequest,
    ReporterReportsResponse,
    SearchResponse,
    ShelterInfo,
)
from config_manager import ConfigManager, get_config, setup_logging
from database.connection import DatabaseSessionProvider
from database.monitoring import check_health, configure_monitoring, get_db_metrics
from matching.candidate_finder import MatchCandidateFinder
from matching.confirmation import MatchConfirmationRecorder
from matching.models import PersonHit, PotentialMatch, ReportSummary, UnifiedResult
from matching.registry import (
    MissingReportForm,
    PersonRegistration,
    RegisteredPerson,
    RegistryService,
    ReportUpdate,
)
from matching.unified_search import UnifiedSearchEngine

logger = logging.getLogger(__name__)

__version__ = "1.0.0"

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
CONFIG_PATH = os.getenv("CONFIG_PATH") or None

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

STAFF_ERRORS = {
    401: {"model": ErrorResponse, "description": "Missing API key"},
    403: {"model": ErrorResponse, "description": "Invalid API key"},
}


async def verify_api_key(request: Request, api_key: Optional[str] = Security(api_key_header)) -> str:
    """Verify API key for staff endpoints.

    If no API key is configured, authentication is disabled.
    """
    expected = request.app.state.api_key
    if not expected:
        # API key not configured - allow all requests (development mode)
        return "dev-mode"

    if not api_key:
        raise HTTPException(
            status_code=401, detail="Missing API key. Provide X-API-Key header."
        )

    if api_key != expected:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return api_key


def get_registry(request: Request) -> RegistryService:
    return request.app.state.registry


def get_finder(request: Request) -> MatchCandidateFinder:
    return request.app.state.finder


def get_search_engine(request: Request) -> UnifiedSearchEngine:
    return request.app.state.search_engine


def get_recorder(request: Request) -> MatchConfirmationRecorder:
    return request.app.state.recorder


# ============================================
# RESPONSE TRANSFORMS
# ============================================

def _report_to_response(report: ReportSummary) -> MissingReportResponse:
    return MissingReportResponse(**asdict(report))


def _match_to_response(match: PotentialMatch) -> PotentialMatchResponse:
    return PotentialMatchResponse(
        missing_report_id=match.missing_report_id,
        poster_code=match.poster_code,
        full_name=match.full_name,
        age=match.age,
        gender=match.gender,
        photo_url=match.photo_url,
        last_seen_location=match.last_seen_location,
        last_seen_district=match.last_seen_district,
        reporter_name=match.reporter_name,
        reporter_phone=match.reporter_phone,
        match_score=match.match_score,
        confidence=ConfidenceBreakdownResponse(**match.confidence.to_dict()),
        reasons=match.reasons,
    )


def _person_info(hit: PersonHit) -> PersonInfo:
    return PersonInfo(
        id=hit.id,
        full_name=hit.full_name,
        age=hit.age,
        gender=hit.gender,
        nic=hit.nic,
        photo_url=hit.photo_url,
        shelter=ShelterInfo(**asdict(hit.shelter)),
        created_at=hit.created_at,
    )


def _registration_from(fields: PersonFields) -> PersonRegistration:
    return PersonRegistration(
        full_name=fields.full_name,
        age=fields.age,
        gender=fields.gender,
        nic=fields.nic,
        photo_url=fields.photo_url,
        contact_number=fields.contact_number,
        health_status=fields.health_status,
        special_notes=fields.special_notes,
    )


def _registration_response(person: RegisteredPerson, matches) -> RegistrationResponse:
    return RegistrationResponse(
        person_id=person.id,
        shelter_id=person.shelter_id,
        full_name=person.full_name,
        created_at=person.created_at,
        matches=[_match_to_response(m) for m in matches],
    )


def _result_to_response(result: UnifiedResult):
    payload = result.payload
    similarity = round(result.similarity_score, 4)

    if isinstance(payload, PersonHit):
        return PersonSearchResult(
            id=result.id,
            status=result.status,
            similarity_score=similarity,
            person=_person_info(payload),
            missing_report=_report_to_response(payload.linked_report) if payload.linked_report else None,
        )

    return MissingReportSearchResult(
        id=result.id,
        status=result.status,
        similarity_score=similarity,
        missing_report=_report_to_response(payload.report),
    )


# ============================================
# ROUTES
# ============================================

router = APIRouter(prefix="/api/v1")


@router.post(
    "/persons",
    status_code=201,
    response_model=RegistrationResponse,
    responses={
        201: {"model": RegistrationResponse, "description": "Person registered"},
        **STAFF_ERRORS,
        404: {"model": ErrorResponse, "description": "Shelter not found"},
        422: {"model": ErrorResponse, "description": "Validation error"},
        503: {"model": ErrorResponse, "description": "Datastore unavailable"},
    },
    summary="Register a sheltered person",
    description="Register a person at a shelter and return open missing reports that may describe them",
)
def register_person(
    request: PersonRegistrationRequest,
    registry: RegistryService = Depends(get_registry),
    finder: MatchCandidateFinder = Depends(get_finder),
    api_key: str = Depends(verify_api_key),
):
    """Register a person, then look for candidate matches.

    Matching runs after the registration has committed; if it cannot run
    the person is still registered and the match list is empty.
    """
    registration = _registration_from(request)
    person = registry.register_person(request.shelter_id, registration)
    return _registration_response(person, finder.find_matches(registration.candidate()))


@router.post(
    "/persons/check-duplicates",
    response_model=DuplicateCheckResponse,
    responses={**STAFF_ERRORS, 404: {"model": ErrorResponse, "description": "Shelter not found"}},
    summary="Check names for duplicates",
    description="Return the submitted names that are already registered at the shelter",
)
def check_duplicates(
    request: DuplicateCheckRequest,
    registry: RegistryService = Depends(get_registry),
    api_key: str = Depends(verify_api_key),
):
    duplicates = registry.check_duplicates(request.shelter_id, request.names)
    return DuplicateCheckResponse(duplicates=duplicates)


@router.post(
    "/persons/bulk",
    status_code=201,
    response_model=BulkRegistrationResponse,
    responses={
        201: {"model": BulkRegistrationResponse, "description": "Persons registered"},
        **STAFF_ERRORS,
        404: {"model": ErrorResponse, "description": "Shelter not found"},
        422: {"model": ErrorResponse, "description": "Validation error (field names the entry)"},
        503: {"model": ErrorResponse, "description": "Datastore unavailable"},
    },
    summary="Register several persons",
    description="Register a batch at one shelter atomically, then look for matches for each person",
)
def register_bulk(
    request: BulkRegistrationRequest,
    registry: RegistryService = Depends(get_registry),
    finder: MatchCandidateFinder = Depends(get_finder),
    api_key: str = Depends(verify_api_key),
):
    registrations = [_registration_from(p) for p in request.persons]
    persons = registry.register_bulk(request.shelter_id, registrations)

    return BulkRegistrationResponse(
        count=len(persons),
        persons=[
            _registration_response(person, finder.find_matches(registration.candidate()))
            for person, registration in zip(persons, registrations)
        ],
    )


@router.get(
    "/persons/{person_id}",
    response_model=PersonDetailResponse,
    responses={**STAFF_ERRORS, 404: {"model": ErrorResponse, "description": "Person not found"}},
    summary="Get a registered person",
)
def get_person(
    person_id: UUID,
    registry: RegistryService = Depends(get_registry),
    api_key: str = Depends(verify_api_key),
):
    detail = registry.get_person(person_id)
    linked = detail.person.linked_report
    return PersonDetailResponse(
        status=detail.status,
        person=_person_info(detail.person),
        health_status=detail.health_status,
        contact_number=detail.contact_number,
        special_notes=detail.special_notes,
        missing_report=_report_to_response(linked) if linked else None,
    )


@router.post(
    "/matches",
    status_code=201,
    response_model=ConfirmedMatchResponse,
    responses={
        201: {"model": ConfirmedMatchResponse, "description": "Match recorded"},
        **STAFF_ERRORS,
        404: {"model": ErrorResponse, "description": "Person or report not found"},
        409: {"model": ErrorResponse, "description": "Pair already matched"},
        422: {"model": ErrorResponse, "description": "Validation error"},
        503: {"model": ErrorResponse, "description": "Datastore unavailable"},
    },
    summary="Confirm a match",
    description="Record that a sheltered person is the subject of a missing report; the report becomes FOUND",
)
def confirm_match(
    request: ConfirmMatchRequest,
    recorder: MatchConfirmationRecorder = Depends(get_recorder),
    api_key: str = Depends(verify_api_key),
):
    confirmed = recorder.confirm(
        person_id=request.person_id,
        missing_report_id=request.missing_report_id,
        confidence=request.confidence,
        confirmed_by=request.confirmed_by,
    )
    return ConfirmedMatchResponse(
        match_id=confirmed.id,
        person_id=confirmed.person_id,
        missing_report_id=confirmed.missing_report_id,
        confidence=confirmed.confidence,
        confirmed_at=confirmed.confirmed_at,
        confirmed_by=confirmed.confirmed_by,
        report_status=confirmed.report_status,
    )


@router.get(
    "/search",
    response_model=SearchResponse,
    responses={
        422: {"model": ErrorResponse, "description": "Validation error"},
        503: {"model": ErrorResponse, "description": "Search unavailable"},
    },
    summary="Search persons and missing reports",
    description="Search sheltered persons and missing reports by name or NIC",
)
def search(
    search_type: str = Query("name", alias="type", description="'name' or 'nic'"),
    query: Optional[str] = Query(None, max_length=200, description="Name fragment"),
    nic: Optional[str] = Query(None, max_length=20, description="NIC number"),
    engine: UnifiedSearchEngine = Depends(get_search_engine),
):
    """Unified public search.

    An empty result list means nothing matched; a datastore failure is a
    503 with code SEARCH_FAILED.
    """
    start_time = time.time()
    results = engine.search(search_type, query=query, nic=nic)
    processing_time_ms = int((time.time() - start_time) * 1000)

    return SearchResponse(
        search_type=search_type.lower(),
        total=len(results),
        results=[_result_to_response(r) for r in results],
        processing_time_ms=processing_time_ms,
    )


@router.post(
    "/missing",
    status_code=201,
    response_model=MissingReportResponse,
    responses={
        201: {"model": MissingReportResponse, "description": "Report filed"},
        422: {"model": ErrorResponse, "description": "Validation error"},
        503: {"model": ErrorResponse, "description": "Datastore unavailable"},
    },
    summary="File a missing-person report",
)
def file_missing_report(
    request: MissingReportRequest,
    x_anonymous_user_id: Optional[str] = Header(default=None, max_length=64),
    registry: RegistryService = Depends(get_registry),
):
    form = MissingReportForm(**request.model_dump())
    report = registry.file_report(form, anonymous_user_id=x_anonymous_user_id)
    return _report_to_response(report)


@router.get(
    "/missing",
    response_model=MissingReportListResponse,
    summary="List open missing reports",
    description="Reports still in MISSING status, newest first",
)
def list_missing_reports(
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    registry: RegistryService = Depends(get_registry),
):
    reports, total = registry.list_open_reports(offset=offset, limit=limit)
    return MissingReportListResponse(
        total=total,
        reports=[_report_to_response(r) for r in reports],
    )


@router.get(
    "/missing/{poster_code}",
    response_model=MissingReportResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Unknown poster code"},
        422: {"model": ErrorResponse, "description": "Malformed poster code"},
    },
    summary="Look up a report by poster code",
)
def get_missing_report(
    poster_code: str,
    registry: RegistryService = Depends(get_registry),
):
    return _report_to_response(registry.get_report_by_poster_code(poster_code))


@router.patch(
    "/missing/{report_id}/found",
    response_model=MissingReportResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Caller did not file this report"},
        404: {"model": ErrorResponse, "description": "Report not found"},
    },
    summary="Mark a report as found",
    description="Only the reporter who filed the report (X-Anonymous-User-Id) may resolve it",
)
def mark_report_found(
    report_id: UUID,
    x_anonymous_user_id: Optional[str] = Header(default=None, max_length=64),
    registry: RegistryService = Depends(get_registry),
):
    return _report_to_response(registry.mark_report_found(report_id, x_anonymous_user_id))


@router.get(
    "/user/reports",
    response_model=ReporterReportsResponse,
    responses={422: {"model": ErrorResponse, "description": "Missing reporter identifier"}},
    summary="List my reports",
    description="Every report filed under the caller's X-Anonymous-User-Id, newest first",
)
def list_my_reports(
    x_anonymous_user_id: Optional[str] = Header(default=None, max_length=64),
    registry: RegistryService = Depends(get_registry),
):
    reports = registry.list_reports_for_reporter(x_anonymous_user_id)
    return ReporterReportsResponse(
        total=len(reports),
        reports=[_report_to_response(r) for r in reports],
    )


@router.patch(
    "/user/reports/{report_id}",
    response_model=MissingReportResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Caller did not file this report"},
        404: {"model": ErrorResponse, "description": "Report not found"},
        422: {"model": ErrorResponse, "description": "Validation error"},
    },
    summary="Edit one of my reports",
    description="Only the reporter who filed the report may edit it; the poster code never changes",
)
def update_my_report(
    report_id: UUID,
    request: ReportUpdateRequest,
    x_anonymous_user_id: Optional[str] = Header(default=None, max_length=64),
    registry: RegistryService = Depends(get_registry),
):
    update = ReportUpdate(**request.model_dump(exclude_unset=True))
    return _report_to_response(registry.update_report(report_id, x_anonymous_user_id, update))


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check service and datastore health. Always returns HTTP 200.",
)
def health_check(request: Request):
    db_health = check_health(request.app.state.db_provider)

    uptime_seconds = None
    started = request.app.state.startup_time
    if started:
        uptime_seconds = int((datetime.now(timezone.utc) - started).total_seconds())

    return HealthResponse(
        status="healthy" if db_health.healthy else "degraded",
        database=DatabaseHealth(
            healthy=db_health.healthy,
            latency_ms=round(db_health.latency_ms, 2),
            error=db_health.error,
        ),
        version=__version__,
        uptime_seconds=uptime_seconds,
    )


@router.get(
    "/metrics/queries",
    responses=STAFF_ERRORS,
    summary="Query timing statistics",
    description="Per-operation datastore timings collected since startup",
)
def query_metrics(api_key: str = Depends(verify_api_key)):
    return get_db_metrics()


# ============================================
# APPLICATION FACTORY
# ============================================

def create_app(
    db_provider: Optional[DatabaseSessionProvider] = None,
    config: Optional[ConfigManager] = None,
    api_key: Optional[str] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        db_provider: Session provider (built from the environment if omitted)
        config: Configuration manager (loaded from CONFIG_PATH if omitted)
        api_key: Key required on staff endpoints (API_KEY env var if omitted)
    """
    config = config or get_config(CONFIG_PATH)
    db_provider = db_provider or DatabaseSessionProvider()

    app = FastAPI(
        title="Shelter Matching API",
        description="API for reuniting missing persons with people registered at relief shelters",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.state.config = config
    app.state.db_provider = db_provider
    app.state.api_key = api_key if api_key is not None else os.getenv("API_KEY", "")
    app.state.startup_time = None
    app.state.registry = RegistryService(db_provider, config)
    app.state.finder = MatchCandidateFinder(db_provider, config)
    app.state.search_engine = UnifiedSearchEngine(db_provider, config)
    app.state.recorder = MatchConfirmationRecorder(db_provider)

    setup_cors(app)
    app.add_middleware(RequestLoggingMiddleware)
    setup_exception_handlers(app)
    app.include_router(router)

    @app.on_event("startup")
    def startup():
        """Configure logging and connect to the datastore."""
        setup_logging(config.logging)
        configure_monitoring(config.monitoring)

        logger.info("Starting Shelter Matching API...")
        db_provider.init()
        if os.getenv("DB_CREATE_TABLES", "false").lower() == "true":
            db_provider.create_tables()

        app.state.startup_time = datetime.now(timezone.utc)
        logger.info("API ready (version %s)", __version__)

    @app.on_event("shutdown")
    def shutdown():
        logger.info("Shutting down Shelter Matching API...")
        db_provider.close()

    @app.get("/", include_in_schema=False)
    def root():
        """Redirect root to API documentation."""
        return RedirectResponse(url="/api/docs")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
