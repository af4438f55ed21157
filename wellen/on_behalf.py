# wellen/on_behalf.py
"""
Administrator submissions on behalf of a field actor.

Four fixed steps: actor, location, items (or photos), confirm. Like the
authoring wizard this is a pure `reduce(state, event)`; the only side effects
live in `submit_on_behalf`, which uploads photos and posts one batch.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from .authoring import WizardGateError
from .catalog import normalize
from .client import WellenApiError
from .config import TIMEZONE
from .models import (
    CONTAINER_TYPES,
    Actor,
    BatchItem,
    BatchPhoto,
    BatchProgressRequest,
    BatchProgressResult,
    ItemType,
    Location,
    NormalizedLine,
    Wave,
    as_quantity,
)
from .timeline import local_now

logger = logging.getLogger(__name__)

PHOTO_FOLDER = "wellen-fotos"

LineKey = Tuple[ItemType, str]


class OnBehalfStep(str, Enum):
    ACTOR = "actor"
    LOCATION = "location"
    ENTRY = "entry"
    CONFIRM = "confirm"


STEP_ORDER = (OnBehalfStep.ACTOR, OnBehalfStep.LOCATION, OnBehalfStep.ENTRY, OnBehalfStep.CONFIRM)


class Phase(str, Enum):
    OPEN = "open"
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CapturedPhoto:
    """A photo taken in the wizard: base64 image data and the tags picked for it."""

    image: str
    tags: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class OnBehalfState:
    wave: Wave
    step: OnBehalfStep = OnBehalfStep.ACTOR
    phase: Phase = Phase.OPEN
    actor: Optional[Actor] = None
    location: Optional[Location] = None
    search: str = ""
    quantities: Mapping[LineKey, int] = field(default_factory=dict)
    photos: Tuple[CapturedPhoto, ...] = ()
    timestamp: Optional[datetime] = None  # None means "now" at submit time

    @property
    def step_number(self) -> int:
        return STEP_ORDER.index(self.step) + 1


def start(wave: Wave) -> OnBehalfState:
    return OnBehalfState(wave=wave)


# -------------------------------------------------------------------
# Location step
# -------------------------------------------------------------------
@dataclass
class LocationPartition:
    own: List[Location]
    others: List[Location]


def _matches(location: Location, needle: str) -> bool:
    if not needle:
        return True
    haystack = " ".join(
        part
        for part in (location.name, location.chain, location.address, location.postal_code, location.city)
        if part
    ).lower()
    return needle in haystack


def partition_locations(
    wave: Wave,
    actor: Optional[Actor],
    locations: Iterable[Location],
    search: str = "",
) -> LocationPartition:
    """
    Split the wave's locations into the actor's own ones and the rest.

    Both lists only hold locations assigned to the wave and matching the
    free-text search.
    """
    assigned = set(wave.assigned_market_ids)
    needle = search.strip().lower()
    own: List[Location] = []
    others: List[Location] = []
    for location in locations:
        if location.id not in assigned or not _matches(location, needle):
            continue
        if actor is not None and location.actor_id == actor.id:
            own.append(location)
        else:
            others.append(location)
    return LocationPartition(own=own, others=others)


# -------------------------------------------------------------------
# Entry step
# -------------------------------------------------------------------
def entry_lines(state: OnBehalfState) -> List[NormalizedLine]:
    """Every item / product of the wave with the quantity typed in so far."""
    return [
        line.model_copy(update={"quantity": state.quantities.get((line.item_type, line.item_id), 0)})
        for line in normalize(state.wave)
    ]


def total_quantity(state: OnBehalfState) -> int:
    return sum(line.quantity for line in entry_lines(state))


def missing_mandatory_tags(state: OnBehalfState, photo_index: int) -> List[str]:
    """Mandatory tags not picked for a photo. Shown as a hint, never enforced."""
    photo = state.photos[photo_index]
    return [tag.name for tag in state.wave.foto_tags if tag.mandatory and tag.name not in photo.tags]


# -------------------------------------------------------------------
# Events
# -------------------------------------------------------------------
@dataclass(frozen=True)
class SelectActor:
    actor: Actor


@dataclass(frozen=True)
class SetSearch:
    text: str


@dataclass(frozen=True)
class SelectLocation:
    location: Location


@dataclass(frozen=True)
class SetQuantity:
    item_type: ItemType
    item_id: str
    quantity: Any


@dataclass(frozen=True)
class AdjustQuantity:
    item_type: ItemType
    item_id: str
    delta: int


@dataclass(frozen=True)
class AddPhoto:
    image: str
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RemovePhoto:
    index: int


@dataclass(frozen=True)
class TogglePhotoTag:
    index: int
    tag: str


@dataclass(frozen=True)
class SetTimestamp:
    timestamp: Optional[datetime]


@dataclass(frozen=True)
class Next:
    pass


@dataclass(frozen=True)
class Back:
    pass


@dataclass(frozen=True)
class Cancel:
    pass


@dataclass(frozen=True)
class Dismiss:
    """Leave the success screen."""


Event = Union[
    SelectActor,
    SetSearch,
    SelectLocation,
    SetQuantity,
    AdjustQuantity,
    AddPhoto,
    RemovePhoto,
    TogglePhotoTag,
    SetTimestamp,
    Next,
    Back,
    Cancel,
    Dismiss,
]


def gate_error(state: OnBehalfState) -> Optional[str]:
    if state.step == OnBehalfStep.ACTOR and state.actor is None:
        return "Select a field representative"
    if state.step == OnBehalfStep.LOCATION and state.location is None:
        return "Select a location"
    if state.step == OnBehalfStep.ENTRY:
        if state.wave.foto_only:
            if not state.photos:
                return "Take at least one photo"
        elif total_quantity(state) <= 0:
            return "Enter at least one quantity"
    return None


def can_advance(state: OnBehalfState) -> bool:
    return gate_error(state) is None


def _known_line(state: OnBehalfState, item_type: ItemType, item_id: str) -> LineKey:
    key = (ItemType(item_type), item_id)
    if key not in {(line.item_type, line.item_id) for line in normalize(state.wave)}:
        raise KeyError(f"{key[0].value}:{item_id} is not part of wave {state.wave.id}")
    return key


def _with_quantity(state: OnBehalfState, key: LineKey, quantity: int) -> OnBehalfState:
    quantities: Dict[LineKey, int] = dict(state.quantities)
    if quantity > 0:
        quantities[key] = quantity
    else:
        quantities.pop(key, None)
    return replace(state, quantities=quantities)


def _with_photo(state: OnBehalfState, index: int, photo: Optional[CapturedPhoto]) -> OnBehalfState:
    photos = list(state.photos)
    if photo is None:
        del photos[index]
    else:
        photos[index] = photo
    return replace(state, photos=tuple(photos))


def _require_step(state: OnBehalfState, step: OnBehalfStep) -> None:
    if state.step != step:
        raise WizardGateError(f"Only possible on the {step.value} step")


def reduce(state: OnBehalfState, event: Event) -> OnBehalfState:
    if isinstance(event, (Cancel, Dismiss)):
        return OnBehalfState(wave=state.wave, phase=Phase.CANCELLED if isinstance(event, Cancel) else Phase.OPEN)

    if state.phase != Phase.OPEN:
        raise WizardGateError(f"Wizard is {state.phase.value}")

    if isinstance(event, SelectActor):
        _require_step(state, OnBehalfStep.ACTOR)
        return replace(state, actor=event.actor)

    if isinstance(event, SetSearch):
        return replace(state, search=event.text)

    if isinstance(event, SelectLocation):
        _require_step(state, OnBehalfStep.LOCATION)
        assigned = state.wave.assigned_market_ids
        if assigned and event.location.id not in assigned:
            raise WizardGateError(f"Location {event.location.id} is not assigned to this wave")
        return replace(state, location=event.location)

    if isinstance(event, SetQuantity):
        _require_step(state, OnBehalfStep.ENTRY)
        key = _known_line(state, event.item_type, event.item_id)
        return _with_quantity(state, key, as_quantity(event.quantity))

    if isinstance(event, AdjustQuantity):
        _require_step(state, OnBehalfStep.ENTRY)
        key = _known_line(state, event.item_type, event.item_id)
        return _with_quantity(state, key, max(0, state.quantities.get(key, 0) + event.delta))

    if isinstance(event, AddPhoto):
        _require_step(state, OnBehalfStep.ENTRY)
        return replace(state, photos=state.photos + (CapturedPhoto(image=event.image, tags=frozenset(event.tags)),))

    if isinstance(event, RemovePhoto):
        _require_step(state, OnBehalfStep.ENTRY)
        return _with_photo(state, event.index, None)

    if isinstance(event, TogglePhotoTag):
        _require_step(state, OnBehalfStep.ENTRY)
        known = {tag.name for tag in state.wave.foto_tags}
        if event.tag not in known:
            raise KeyError(event.tag)
        photo = state.photos[event.index]
        tags = photo.tags - {event.tag} if event.tag in photo.tags else photo.tags | {event.tag}
        return _with_photo(state, event.index, replace(photo, tags=frozenset(tags)))

    if isinstance(event, SetTimestamp):
        _require_step(state, OnBehalfStep.CONFIRM)
        stamp = event.timestamp
        if stamp is not None and stamp.tzinfo is None:
            # The operator types wall-clock time of the region
            stamp = stamp.replace(tzinfo=TIMEZONE)
        return replace(state, timestamp=stamp)

    if isinstance(event, Next):
        if state.step == OnBehalfStep.CONFIRM:
            raise WizardGateError("Use submit on the confirm step")
        reason = gate_error(state)
        if reason:
            raise WizardGateError(reason)
        return replace(state, step=STEP_ORDER[STEP_ORDER.index(state.step) + 1])

    if isinstance(event, Back):
        if state.step == OnBehalfStep.ACTOR:
            return OnBehalfState(wave=state.wave, phase=Phase.CANCELLED)
        if state.step == OnBehalfStep.LOCATION:
            return replace(state, step=OnBehalfStep.ACTOR, actor=None, location=None, search="")
        if state.step == OnBehalfStep.ENTRY:
            return replace(state, step=OnBehalfStep.LOCATION, location=None)
        return replace(state, step=OnBehalfStep.ENTRY, timestamp=None)

    raise TypeError(f"Unknown event {event!r}")


def run(state: OnBehalfState, *events: Event) -> OnBehalfState:
    for event in events:
        state = reduce(state, event)
    return state


# -------------------------------------------------------------------
# Terminal step
# -------------------------------------------------------------------
def build_request(
    state: OnBehalfState,
    now: Optional[datetime] = None,
    photo_urls: Optional[List[str]] = None,
) -> BatchProgressRequest:
    if state.actor is None or state.location is None:
        raise WizardGateError("Actor and location are required")

    items = [
        BatchItem(
            item_type=line.item_type,
            item_id=line.item_id,
            quantity=line.quantity,
            unit_value=line.unit_value if line.item_type in CONTAINER_TYPES else None,
        )
        for line in entry_lines(state)
        if line.quantity > 0
    ]

    photos = None
    photo_url = None
    if photo_urls:
        photos = [
            BatchPhoto(photo_url=url, tags=sorted(photo.tags))
            for url, photo in zip(photo_urls, state.photos)
        ]
        photo_url = photo_urls[0]

    return BatchProgressRequest(
        actor_id=state.actor.id,
        location_id=state.location.id,
        items=items,
        timestamp=state.timestamp or now or local_now(),
        photo_url=photo_url,
        photos=photos,
    )


async def submit_on_behalf(
    state: OnBehalfState,
    client: Any,
    now: Optional[datetime] = None,
) -> Tuple[OnBehalfState, BatchProgressResult, BatchProgressRequest]:
    """
    Upload the photos, post one batch, and move to the success phase.

    On failure the error propagates and the caller keeps its current state,
    so the operator can retry.
    """
    _require_step(state, OnBehalfStep.CONFIRM)
    if state.phase != Phase.OPEN:
        raise WizardGateError(f"Wizard is {state.phase.value}")
    # Entry conditions are re-checked: the state may have been built directly
    reason = gate_error(replace(state, step=OnBehalfStep.ENTRY))
    if reason:
        raise WizardGateError(reason)

    try:
        photo_urls = [await client.upload_image(photo.image, PHOTO_FOLDER) for photo in state.photos]
        request = build_request(state, now=now, photo_urls=photo_urls)
        result = await client.submit_batch(state.wave.id, request)
    except WellenApiError as exc:
        logger.error("[ON_BEHALF_SUBMIT] wave=%s actor=%s failed: %s", state.wave.id, state.actor.id, exc)
        raise

    logger.info(
        "[ON_BEHALF_SUBMIT] wave=%s actor=%s location=%s items=%d photos=%d at %s",
        state.wave.id,
        request.actor_id,
        request.location_id,
        len(request.items),
        len(photo_urls),
        request.timestamp.isoformat(),
    )
    return replace(state, phase=Phase.SUCCEEDED), result, request
