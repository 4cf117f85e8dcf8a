"""
HTTP read API for renderers of the battery usage data.

Endpoints (all under ``/v1``):
- GET /level-series: daily or hourly battery level series.
- GET /usage: ranked entries of a slot (default: the selected slot),
  split into app and system groups, with display labels. An hour without
  a concrete day is rejected with 422.
- GET /selection, PUT /selection: read or move the day/hour cursor.
  An invalid selection is rejected with 422 and leaves the cursor as is.
- GET /health: liveness and published index generation, no auth.

When an API token is configured every route except /health requires
``Authorization: Bearer {token}``.

CHANGELOG:
- 2026-10-17: Reject hour-only usage queries (STORY-014)
- 2026-10-17: Initial creation (STORY-014)

TODO:
- None
"""

import logging
import secrets
from typing import Annotated

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from fuelgauge.src.errors import InvalidSelectionError
from fuelgauge.src.health import HealthWriter
from fuelgauge.src.models import SELECT_ALL, DiffEntry, SeriesScope
from fuelgauge.src.service import UsageService

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------


class LevelSeriesResponse(BaseModel):
    """Battery level series for one scope.

    Attributes:
        scope: ``daily`` or ``hourly``.
        day_index: Day of the hourly series, SELECT_ALL for daily.
        timestamps: Boundary timestamps in ms since epoch (UTC).
        levels: Battery level at each boundary, 0-100.
    """

    scope: SeriesScope
    day_index: int
    timestamps: list[int]
    levels: list[int]


class UsageResponse(BaseModel):
    """Ranked entries of one slot."""

    generation: int
    day_index: int
    hour_index: int
    start_ms: int | None
    end_ms: int | None
    apps: list[DiffEntry]
    systems: list[DiffEntry]
    labels: dict[str, str]


class SelectionIn(BaseModel):
    day_index: int
    hour_index: int = SELECT_ALL


class SelectionOut(BaseModel):
    day_index: int
    hour_index: int
    day_count: int
    is_single_day: bool


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_service(request: Request) -> UsageService:
    return request.app.state.service


async def _verify_token(
    request: Request,
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)
    ],
) -> None:
    """Require the configured bearer token, if any.

    Raises:
        HTTPException: 401 if the token is missing or does not match.
    """
    expected: str = request.app.state.api_token
    if not expected:
        return
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Missing authorization credentials.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not secrets.compare_digest(
        credentials.credentials.encode("utf-8"), expected.encode("utf-8")
    ):
        raise HTTPException(
            status_code=401,
            detail="Invalid token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


ServiceDep = Annotated[UsageService, Depends(_get_service)]

router = APIRouter(prefix="/v1", tags=["usage"], dependencies=[Depends(_verify_token)])
health_router = APIRouter(prefix="/v1", tags=["health"])


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def _selection_out(service: UsageService) -> SelectionOut:
    day_index, hour_index = service.get_selection()
    return SelectionOut(
        day_index=day_index,
        hour_index=hour_index,
        day_count=service.index.day_count,
        is_single_day=service.is_single_day(),
    )


@router.get("/level-series", response_model=LevelSeriesResponse)
async def get_level_series(
    service: ServiceDep,
    scope: Annotated[SeriesScope, Query(description="daily or hourly.")],
    day_index: Annotated[
        int, Query(description="Day of the hourly series.")
    ] = SELECT_ALL,
) -> LevelSeriesResponse:
    """Return the battery level series for *scope*.

    The hourly scope defaults to the selected day when no day is given.
    """
    if scope is SeriesScope.HOURLY and day_index == SELECT_ALL:
        day_index = service.get_selection()[0]
    series = service.get_level_series(scope, day_index)
    return LevelSeriesResponse(
        scope=scope,
        day_index=day_index if scope is SeriesScope.HOURLY else SELECT_ALL,
        timestamps=series.timestamps,
        levels=series.levels,
    )


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    service: ServiceDep,
    day_index: Annotated[int | None, Query(description="Day index.")] = None,
    hour_index: Annotated[int | None, Query(description="Hour slot index.")] = None,
    locale: Annotated[str, Query(description="Label locale.")] = "",
) -> UsageResponse:
    """Return the ranked entries of a slot, the selected one by default.

    Raises:
        HTTPException: 422 if an hour is requested without a concrete day.
    """
    if hour_index is not None and hour_index != SELECT_ALL and (
        day_index is None or day_index == SELECT_ALL
    ):
        raise HTTPException(
            status_code=422, detail="hour selection requires a concrete day"
        )
    generation = service.index.generation
    if day_index is None and hour_index is None:
        selected = service.get_selected_entries()
    else:
        selected = service.get_slot_entries(
            SELECT_ALL if day_index is None else day_index,
            SELECT_ALL if hour_index is None else hour_index,
        )
    labels = await service.resolve_labels(
        [*selected.apps, *selected.systems], locale=locale
    )
    logger.debug(
        "Usage query: slot=(%d, %d) apps=%d systems=%d",
        selected.day_index,
        selected.hour_index,
        len(selected.apps),
        len(selected.systems),
    )
    return UsageResponse(
        generation=generation,
        labels=labels,
        **selected.model_dump(),
    )


@router.get("/selection", response_model=SelectionOut)
async def get_selection(service: ServiceDep) -> SelectionOut:
    return _selection_out(service)


@router.put("/selection", response_model=SelectionOut)
async def put_selection(service: ServiceDep, body: SelectionIn) -> SelectionOut:
    """Move the selection cursor.

    Raises:
        HTTPException: 422 if the selection is invalid for the current index.
    """
    try:
        service.select(body.day_index, body.hour_index)
    except InvalidSelectionError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _selection_out(service)


@health_router.get("/health")
async def get_health(request: Request) -> dict:
    """Return liveness plus the published index generation."""
    service: UsageService = request.app.state.service
    writer: HealthWriter | None = request.app.state.health
    body: dict = {"status": "ok"}
    if writer is not None:
        body.update(writer.snapshot())
    body["published_generation"] = service.index.generation
    body.setdefault("snapshot_count", service.index.snapshot_count)
    return body


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    service: UsageService,
    *,
    health: HealthWriter | None = None,
    api_token: str = "",
) -> FastAPI:
    """Build the read API around an existing service.

    Args:
        service: Facade over the published usage index.
        health: HealthWriter whose state /v1/health reports, or None.
        api_token: Bearer token required on /v1 routes. Empty disables auth.

    Returns:
        FastAPI: The configured application.
    """
    app = FastAPI(
        title="Fuel gauge API",
        description="Battery level series and per-consumer usage.",
        version="0.1.0",
    )
    app.state.service = service
    app.state.health = health
    app.state.api_token = api_token
    app.include_router(health_router)
    app.include_router(router)
    if not api_token:
        logger.warning("API_TOKEN not set, read API is unauthenticated")
    return app
