import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import authoring, on_behalf
from .aggregation import (
    ContainerSubmission,
    Row,
    build_rows,
    group_by_actor,
    group_by_day,
    has_value_entries,
    summarize,
)
from .authoring import WizardGateError
from .catalog import normalize
from .client import WellenApiError, WellenClient
from .config import configure_logging
from .db import get_recent_actions, init_db, log_action
from .formatting import format_currency, format_timestamp
from .goals import evaluate
from .models import (
    DraftContainer,
    DraftFlatItem,
    GoalType,
    ItemType,
    PhotoProgress,
    PhotoTag,
    ScheduleEntry,
    TYPE_LABELS,
)
from .reconciler import CompositeEditError, InlineEditReconciler
from .timeline import days_remaining, wave_status

logger = logging.getLogger(__name__)

app = FastAPI(title="Wellen Backend v1")

_client: Optional[WellenClient] = None


def get_client() -> WellenClient:
    global _client
    if _client is None:
        _client = WellenClient()
    return _client


# -------------------------------------------------------------------
# CORS
# -------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------------------------------------------------------
# Startup / shutdown
# -------------------------------------------------------------------
@app.on_event("startup")
async def on_startup() -> None:
    configure_logging()
    init_db()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


# -------------------------------------------------------------------
# Error mapping
# -------------------------------------------------------------------
@app.exception_handler(WellenApiError)
async def wellen_api_error(request: Request, exc: WellenApiError) -> JSONResponse:
    logger.error("[WELLEN_API_ERROR] %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": exc.message, "upstream_status": exc.status_code},
    )


@app.exception_handler(WizardGateError)
async def wizard_gate_error(request: Request, exc: WizardGateError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# -------------------------------------------------------------------
# View helpers
# -------------------------------------------------------------------
def _row_view(row: Row) -> Dict[str, Any]:
    view: Dict[str, Any] = {
        "key": row.key,
        "itemType": row.item_type.value,
        "typeLabel": TYPE_LABELS[row.item_type],
        "quantity": row.quantity,
        "value": row.value,
        "formattedValue": format_currency(row.value),
        "timestamp": row.timestamp.isoformat(),
        "formattedTimestamp": format_timestamp(row.timestamp),
        "submissionIds": row.submission_ids,
    }
    if isinstance(row, ContainerSubmission):
        view.update(
            name=row.name,
            parentId=row.parent_id,
            actorId=row.actor_id,
            actorName=row.actor_name,
            locationName=row.location_name,
            products=[
                {
                    "submissionId": p.submission_id,
                    "productId": p.product_id,
                    "name": p.name,
                    "quantity": p.quantity,
                    "unitValue": p.unit_value,
                    "value": p.value,
                }
                for p in row.products
            ],
        )
    else:
        sub = row.submission
        view.update(
            name=sub.item_name,
            unitValue=sub.unit_value,
            actorId=sub.actor_id,
            actorName=sub.actor_name,
            locationName=sub.location_name,
            locationChain=sub.location_chain,
            photoUrl=sub.photo_url,
        )
    return view


# -------------------------------------------------------------------
# Health
# -------------------------------------------------------------------
@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


# -------------------------------------------------------------------
# Waves
# -------------------------------------------------------------------
@app.get("/api/waves")
async def api_waves(client: WellenClient = Depends(get_client)) -> List[Dict[str, Any]]:
    waves = await client.list_waves()
    return [
        {
            "id": w.id,
            "name": w.name,
            "startDate": w.start_date.isoformat(),
            "endDate": w.end_date.isoformat(),
            "status": wave_status(w).value,
            "daysRemaining": days_remaining(w),
            "goalType": w.goal_type.value,
            "goalTarget": w.goal_target,
            "fotoOnly": w.foto_only,
        }
        for w in waves
    ]


@app.get("/api/waves/{wave_id}/progress")
async def api_wave_progress(wave_id: str, client: WellenClient = Depends(get_client)) -> Dict[str, Any]:
    """
    Goal progress of one wave plus the footer numbers of the progress view.
    """
    wave = await client.get_wave(wave_id)
    progress = await client.get_all_progress(wave_id)
    submissions = [] if isinstance(progress, PhotoProgress) else progress

    result = evaluate(wave, normalize(wave, submissions))
    footer = summarize(progress.photos if isinstance(progress, PhotoProgress) else submissions)

    goal_label = (
        f"{wave.goal_percentage or 0:g}%" if wave.goal_type == GoalType.PERCENTAGE else format_currency(wave.goal_value or 0)
    )
    return {
        "waveId": wave.id,
        "name": wave.name,
        "status": wave_status(wave).value,
        "daysRemaining": days_remaining(wave),
        "goalType": wave.goal_type.value,
        "goalLabel": goal_label,
        "totalQuantity": result.total_quantity,
        "totalValue": result.total_value,
        "formattedTotalValue": format_currency(result.total_value),
        "targetQuantity": result.target_quantity,
        "progressRatio": result.progress_ratio,
        "barRatio": result.bar_ratio,
        "goalMet": result.goal_met,
        "participatingActors": footer.participating_actors,
        "entries": footer.entries,
    }


@app.get("/api/waves/{wave_id}/submissions")
async def api_wave_submissions(
    wave_id: str,
    group_by: str = Query("actor", pattern="^(actor|day)$"),
    client: WellenClient = Depends(get_client),
) -> Dict[str, Any]:
    wave = await client.get_wave(wave_id)
    progress = await client.get_all_progress(wave_id)
    grouper = group_by_actor if group_by == "actor" else group_by_day

    if isinstance(progress, PhotoProgress):
        groups = grouper(progress.photos)
        return {
            "type": "foto",
            "groups": [
                {
                    "groupKey": g.group_key,
                    "label": g.label,
                    "count": len(g.entries),
                    "photos": [p.model_dump(mode="json") for p in g.entries],
                }
                for g in groups.values()
            ],
        }

    groups = grouper(progress)
    return {
        "type": "submissions",
        "groups": [
            {
                "groupKey": g.group_key,
                "label": g.label,
                "entryCount": len(g.entries),
                "totalQuantity": g.total_quantity,
                "totalValue": g.total_value,
                "showValue": has_value_entries(g),
                "formattedTotal": format_currency(g.total_value) if has_value_entries(g) else f"{g.total_quantity} Artikel",
                "rows": [_row_view(r) for r in build_rows(g.entries, wave)],
            }
            for g in groups.values()
        ],
    }


# -------------------------------------------------------------------
# Wave authoring
# -------------------------------------------------------------------
class WaveDraftPayload(BaseModel):
    """What the authoring screens collected, submitted in one go."""

    types: List[ItemType] = Field(default_factory=list)
    name: str = ""
    image: Optional[str] = None
    startDate: str = ""
    endDate: str = ""
    goalType: GoalType = GoalType.PERCENTAGE
    goalPercentage: Optional[float] = None
    goalValue: Optional[float] = None
    assignedMarketIds: List[str] = Field(default_factory=list)
    fotoOnly: bool = False
    fotoTags: List[PhotoTag] = Field(default_factory=list)
    displays: List[DraftFlatItem] = Field(default_factory=list)
    kartonwareItems: List[DraftFlatItem] = Field(default_factory=list)
    paletteItems: List[DraftContainer] = Field(default_factory=list)
    schutteItems: List[DraftContainer] = Field(default_factory=list)
    einzelproduktItems: List[DraftFlatItem] = Field(default_factory=list)
    kwDays: List[ScheduleEntry] = Field(default_factory=list)
    performedBy: Optional[str] = None

    def items_of(self, item_type: ItemType) -> List[Any]:
        return {
            ItemType.DISPLAY: self.displays,
            ItemType.KARTONWARE: self.kartonwareItems,
            ItemType.PALETTE: self.paletteItems,
            ItemType.SCHUETTE: self.schutteItems,
            ItemType.EINZELPRODUKT: self.einzelproduktItems,
        }[item_type]


def _fill_draft(state: authoring.AuthoringState, draft: WaveDraftPayload) -> authoring.AuthoringState:
    """Replay the draft into the wizard from the metadata step onwards."""
    state = authoring.reduce(
        state,
        authoring.UpdateMetadata(
            {
                "name": draft.name,
                "image": draft.image,
                "start_date": draft.startDate,
                "end_date": draft.endDate,
                "goal_type": draft.goalType,
                "goal_percentage": draft.goalPercentage,
                "goal_value": draft.goalValue,
                "assigned_market_ids": draft.assignedMarketIds,
                "foto_only": draft.fotoOnly,
                "foto_tags": draft.fotoTags,
            }
        ),
    )
    # Items and schedule replace whatever was prefilled
    for item_type in state.selected_types:
        for index in reversed(range(len(state.items_of(item_type)))):
            state = authoring.reduce(state, authoring.RemoveItem(item_type, index))
        for item in draft.items_of(item_type):
            state = authoring.reduce(state, authoring.AddItem(item_type, item))
    for index in reversed(range(len(state.schedule))):
        state = authoring.reduce(state, authoring.RemoveScheduleEntry(index))
    for entry in draft.kwDays:
        state = authoring.reduce(state, authoring.AddScheduleEntry(entry.kw, tuple(d.upper() for d in entry.days)))
    return authoring.advance_to_end(state)


@app.post("/api/waves", status_code=status.HTTP_201_CREATED)
async def api_create_wave(draft: WaveDraftPayload, client: WellenClient = Depends(get_client)) -> Dict[str, Any]:
    state = authoring.AuthoringState()
    for item_type in draft.types:
        state = authoring.reduce(state, authoring.ToggleType(item_type))
    state = authoring.reduce(state, authoring.Next())
    state = _fill_draft(state, draft)

    result = await authoring.submit_wave(state, client)
    log_action(
        "wave_create",
        wave_id=result.get("id"),
        performed_by=draft.performedBy,
        detail={"name": draft.name, "types": [t.value for t in state.selected_types]},
    )
    return {"status": "ok", "id": result.get("id"), "totalSteps": state.total_steps}


@app.put("/api/waves/{wave_id}")
async def api_update_wave(
    wave_id: str,
    draft: WaveDraftPayload,
    client: WellenClient = Depends(get_client),
) -> Dict[str, Any]:
    wave = await client.get_wave(wave_id)
    state = authoring.start_editing(wave)
    if draft.types and set(draft.types) != set(state.selected_types):
        raise WizardGateError("Item types cannot change while editing a wave")
    state = _fill_draft(state, draft)

    await authoring.submit_wave(state, client)
    log_action("wave_update", wave_id=wave_id, performed_by=draft.performedBy, detail={"name": draft.name})
    return {"status": "ok", "id": wave_id}


@app.delete("/api/waves/{wave_id}")
async def api_delete_wave(
    wave_id: str,
    performed_by: Optional[str] = Query(default=None, alias="performed-by"),
    client: WellenClient = Depends(get_client),
) -> Dict[str, str]:
    await client.delete_wave(wave_id)
    log_action("wave_delete", wave_id=wave_id, performed_by=performed_by)
    return {"status": "ok"}


# -------------------------------------------------------------------
# On-behalf submissions
# -------------------------------------------------------------------
class OnBehalfItem(BaseModel):
    itemType: ItemType
    itemId: str
    quantity: int


class OnBehalfPhoto(BaseModel):
    image: str
    tags: List[str] = Field(default_factory=list)


class OnBehalfPayload(BaseModel):
    actorId: str
    locationId: str
    items: List[OnBehalfItem] = Field(default_factory=list)
    photos: List[OnBehalfPhoto] = Field(default_factory=list)
    timestamp: Optional[datetime] = None
    performedBy: Optional[str] = None


@app.get("/api/waves/{wave_id}/locations")
async def api_wave_locations(
    wave_id: str,
    actor_id: Optional[str] = Query(default=None, alias="actor-id"),
    search: str = Query(default=""),
    client: WellenClient = Depends(get_client),
) -> Dict[str, Any]:
    """Locations for step 2 of the on-behalf wizard: the actor's own first."""
    wave = await client.get_wave(wave_id)
    actors = await client.list_actors() if actor_id else []
    actor = next((a for a in actors if a.id == actor_id), None)
    partition = on_behalf.partition_locations(wave, actor, await client.list_locations(), search)
    return {
        "own": [loc.model_dump(mode="json") for loc in partition.own],
        "others": [loc.model_dump(mode="json") for loc in partition.others],
    }


@app.post("/api/waves/{wave_id}/on-behalf")
async def api_on_behalf(
    wave_id: str,
    payload: OnBehalfPayload,
    client: WellenClient = Depends(get_client),
) -> Dict[str, Any]:
    wave = await client.get_wave(wave_id)
    actor = next((a for a in await client.list_actors() if a.id == payload.actorId), None)
    if actor is None:
        raise HTTPException(status_code=404, detail="Unknown field representative")
    location = next((loc for loc in await client.list_locations() if loc.id == payload.locationId), None)
    if location is None:
        raise HTTPException(status_code=404, detail="Unknown location")

    state = on_behalf.run(
        on_behalf.start(wave),
        on_behalf.SelectActor(actor),
        on_behalf.Next(),
        on_behalf.SelectLocation(location),
        on_behalf.Next(),
    )
    for item in payload.items:
        try:
            state = on_behalf.reduce(state, on_behalf.SetQuantity(item.itemType, item.itemId, item.quantity))
        except KeyError as exc:
            raise HTTPException(status_code=422, detail=str(exc.args[0])) from exc
    for photo in payload.photos:
        state = on_behalf.reduce(state, on_behalf.AddPhoto(photo.image, tuple(photo.tags)))
    state = on_behalf.run(state, on_behalf.Next(), on_behalf.SetTimestamp(payload.timestamp))

    state, result, request = await on_behalf.submit_on_behalf(state, client)
    log_action(
        "on_behalf_submit",
        wave_id=wave_id,
        target_actor=actor.id,
        performed_by=payload.performedBy,
        detail={
            "location_id": location.id,
            "items": len(request.items),
            "photos": len(payload.photos),
            "timestamp": request.timestamp.isoformat(),
        },
    )
    return {
        "status": state.phase.value,
        "itemsUpdated": result.items_updated,
        "timestamp": request.timestamp.isoformat(),
    }


# -------------------------------------------------------------------
# Inline edits
# -------------------------------------------------------------------
class SubmissionUpdatePayload(BaseModel):
    quantity: int
    performedBy: Optional[str] = None


async def _reconciler_for(client: WellenClient, wave_id: str) -> InlineEditReconciler:
    wave = await client.get_wave(wave_id)
    progress = await client.get_all_progress(wave_id)
    if isinstance(progress, PhotoProgress):
        raise HTTPException(status_code=409, detail="Photo waves have no editable quantities")
    return InlineEditReconciler(client, build_rows(progress, wave))


def _row_holding(reconciler: InlineEditReconciler, submission_id: str) -> Row:
    for row in reconciler.rows:
        if submission_id in row.submission_ids:
            return row
    raise HTTPException(status_code=404, detail="Submission not found")


@app.put("/api/waves/{wave_id}/submissions/{submission_id}")
async def api_update_submission(
    wave_id: str,
    submission_id: str,
    payload: SubmissionUpdatePayload,
    client: WellenClient = Depends(get_client),
) -> Dict[str, Any]:
    reconciler = await _reconciler_for(client, wave_id)
    row = _row_holding(reconciler, submission_id)
    try:
        session = reconciler.start_edit(row.key, submission_id)
        session.set_quantity(payload.quantity)
        row = await reconciler.save()
    except (CompositeEditError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    log_action(
        "submission_update",
        wave_id=wave_id,
        target_actor=row.actor_id if isinstance(row, ContainerSubmission) else row.submission.actor_id,
        performed_by=payload.performedBy,
        detail={"submission_id": submission_id, "quantity": payload.quantity},
    )
    return _row_view(row)


@app.delete("/api/waves/{wave_id}/rows/{row_key}")
async def api_delete_row(
    wave_id: str,
    row_key: str,
    confirm: bool = Query(default=False),
    performed_by: Optional[str] = Query(default=None, alias="performed-by"),
    client: WellenClient = Depends(get_client),
) -> Dict[str, Any]:
    """
    Delete a row and every submission behind it.

    Destructive, so it needs the explicit `confirm=true` second gesture.
    """
    if not confirm:
        raise HTTPException(status_code=409, detail="Deletion must be confirmed")
    reconciler = await _reconciler_for(client, wave_id)
    try:
        row = reconciler.row(row_key)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Row not found") from exc

    reconciler.request_delete(row_key)
    deleted = await reconciler.confirm_delete(row_key)
    log_action(
        "submission_delete",
        wave_id=wave_id,
        target_actor=row.actor_id if isinstance(row, ContainerSubmission) else row.submission.actor_id,
        performed_by=performed_by,
        detail={"row": row_key, "submission_ids": deleted},
    )
    return {"status": "ok", "deleted": deleted}


# -------------------------------------------------------------------
# Action history
# -------------------------------------------------------------------
@app.get("/api/actions")
async def api_actions(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    target_actor: Optional[str] = Query(default=None, alias="target-actor"),
) -> List[Dict[str, Any]]:
    return get_recent_actions(limit=limit, offset=offset, target_actor=target_actor)
