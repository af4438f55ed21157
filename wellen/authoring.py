# wellen/authoring.py
"""
Wave authoring wizard.

The wizard is a plain state machine: `reduce(state, event)` returns the next
state and never mutates the old one. The step sequence is computed once from
the selected item types and stored on the state:

    TYPE_SELECTION, METADATA, one ITEMS step per selected type, SCHEDULE

so a wave with N item types has 2 + N + 1 steps.
"""
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .models import (
    CANONICAL_ORDER,
    CONTAINER_TYPES,
    COLLECTION_FIELDS,
    DraftContainer,
    DraftFlatItem,
    DraftProduct,
    GoalType,
    ItemType,
    PhotoTag,
    ScheduleEntry,
    Wave,
    WavePayload,
    as_number,
)

logger = logging.getLogger(__name__)

WEEKDAYS = ("MO", "DI", "MI", "DO", "FR")

DraftItem = Union[DraftFlatItem, DraftContainer]


class WizardGateError(ValueError):
    """A step's entry conditions are not met; nothing was sent anywhere."""


class StepKind(str, Enum):
    TYPE_SELECTION = "type_selection"
    METADATA = "metadata"
    ITEMS = "items"
    SCHEDULE = "schedule"


@dataclass(frozen=True)
class Step:
    kind: StepKind
    item_type: Optional[ItemType] = None


def steps_for(types: Tuple[ItemType, ...]) -> Tuple[Step, ...]:
    ordered = [t for t in CANONICAL_ORDER if t in types]
    return (
        (Step(StepKind.TYPE_SELECTION), Step(StepKind.METADATA))
        + tuple(Step(StepKind.ITEMS, t) for t in ordered)
        + (Step(StepKind.SCHEDULE),)
    )


@dataclass(frozen=True)
class AuthoringState:
    step_index: int = 0
    steps: Tuple[Step, ...] = field(default_factory=lambda: steps_for(()))
    selected_types: Tuple[ItemType, ...] = ()
    editing_wave_id: Optional[str] = None

    name: str = ""
    image: Optional[str] = None
    start_date: str = ""
    end_date: str = ""
    goal_type: GoalType = GoalType.PERCENTAGE
    goal_percentage: Optional[float] = None
    goal_value: Optional[float] = None
    assigned_market_ids: Tuple[str, ...] = ()
    foto_only: bool = False
    foto_tags: Tuple[PhotoTag, ...] = ()

    items: Mapping[ItemType, Tuple[DraftItem, ...]] = field(default_factory=dict)
    schedule: Tuple[ScheduleEntry, ...] = ()
    finished: bool = False

    @property
    def step(self) -> Step:
        return self.steps[self.step_index]

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def is_editing(self) -> bool:
        return self.editing_wave_id is not None

    @property
    def is_last_step(self) -> bool:
        return self.step_index == len(self.steps) - 1

    def items_of(self, item_type: ItemType) -> Tuple[DraftItem, ...]:
        return tuple(self.items.get(item_type, ()))


# -------------------------------------------------------------------
# Events
# -------------------------------------------------------------------
@dataclass(frozen=True)
class ToggleType:
    item_type: ItemType


METADATA_FIELDS = frozenset(
    {
        "name",
        "image",
        "start_date",
        "end_date",
        "goal_type",
        "goal_percentage",
        "goal_value",
        "assigned_market_ids",
        "foto_only",
        "foto_tags",
    }
)


@dataclass(frozen=True)
class UpdateMetadata:
    changes: Mapping[str, Any]


@dataclass(frozen=True)
class AddItem:
    item_type: ItemType
    item: Optional[DraftItem] = None


@dataclass(frozen=True)
class UpdateItem:
    item_type: ItemType
    index: int
    changes: Mapping[str, Any]


@dataclass(frozen=True)
class RemoveItem:
    item_type: ItemType
    index: int


@dataclass(frozen=True)
class AddScheduleEntry:
    kw: str = ""
    days: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SetScheduleWeek:
    index: int
    kw: str


@dataclass(frozen=True)
class ToggleScheduleDay:
    index: int
    day: str


@dataclass(frozen=True)
class RemoveScheduleEntry:
    index: int


@dataclass(frozen=True)
class Next:
    pass


@dataclass(frozen=True)
class Back:
    pass


@dataclass(frozen=True)
class Close:
    pass


Event = Union[
    ToggleType,
    UpdateMetadata,
    AddItem,
    UpdateItem,
    RemoveItem,
    AddScheduleEntry,
    SetScheduleWeek,
    ToggleScheduleDay,
    RemoveScheduleEntry,
    Next,
    Back,
    Close,
]


# -------------------------------------------------------------------
# Gates
# -------------------------------------------------------------------
def gate_error(state: AuthoringState, step: Optional[Step] = None) -> Optional[str]:
    """Why `Next` is blocked on `step` (default: the current one), or None."""
    step = step or state.step
    if step.kind == StepKind.TYPE_SELECTION:
        if not state.selected_types:
            return "Select at least one item type"
    elif step.kind == StepKind.METADATA:
        if not state.name.strip() or not state.start_date or not state.end_date:
            return "Name, start date and end date are required"
        if state.goal_type == GoalType.PERCENTAGE and state.goal_percentage is None:
            return "A goal percentage is required"
        if state.goal_type == GoalType.VALUE and state.goal_value is None:
            return "A goal value is required"
    elif step.kind == StepKind.ITEMS:
        if not state.items_of(step.item_type):
            return f"Add at least one {step.item_type.value} item"
    elif step.kind == StepKind.SCHEDULE:
        if not any(entry.kw.strip() and entry.days for entry in state.schedule):
            return "Add at least one calendar week with weekdays"
    return None


def can_advance(state: AuthoringState) -> bool:
    return gate_error(state) is None


# -------------------------------------------------------------------
# Reducer
# -------------------------------------------------------------------
def _blank_item(item_type: ItemType) -> DraftItem:
    if item_type in CONTAINER_TYPES:
        return DraftContainer()
    return DraftFlatItem()


def _with_items(state: AuthoringState, item_type: ItemType, items: Tuple[DraftItem, ...]) -> AuthoringState:
    updated: Dict[ItemType, Tuple[DraftItem, ...]] = dict(state.items)
    updated[item_type] = items
    return replace(state, items=updated)


def _with_schedule_entry(state: AuthoringState, index: int, entry: ScheduleEntry) -> AuthoringState:
    schedule = list(state.schedule)
    schedule[index] = entry
    return replace(state, schedule=tuple(schedule))


def reduce(state: AuthoringState, event: Event) -> AuthoringState:
    if isinstance(event, Close):
        # Closing forgets everything, including the wave being edited
        return AuthoringState()

    if isinstance(event, ToggleType):
        if state.is_editing:
            raise WizardGateError("Item types cannot change while editing a wave")
        if state.step.kind != StepKind.TYPE_SELECTION:
            raise WizardGateError("Item types are chosen on the first step")
        item_type = ItemType(event.item_type)
        if item_type in state.selected_types:
            types = tuple(t for t in state.selected_types if t != item_type)
        else:
            types = tuple(t for t in CANONICAL_ORDER if t in state.selected_types or t == item_type)
        return replace(state, selected_types=types, steps=steps_for(types))

    if isinstance(event, UpdateMetadata):
        unknown = set(event.changes) - METADATA_FIELDS
        if unknown:
            raise KeyError(", ".join(sorted(unknown)))
        changes = dict(event.changes)
        if "goal_type" in changes:
            changes["goal_type"] = GoalType(changes["goal_type"])
        for key in ("assigned_market_ids", "foto_tags"):
            if key in changes:
                changes[key] = tuple(changes[key] or ())
        for key in ("goal_percentage", "goal_value"):
            if key in changes:
                raw = changes[key]
                changes[key] = None if raw is None or raw == "" else as_number(raw)
        if "foto_tags" in changes:
            changes["foto_tags"] = tuple(PhotoTag.model_validate(t) for t in changes["foto_tags"])
        return replace(state, **changes)

    if isinstance(event, AddItem):
        item = event.item if event.item is not None else _blank_item(event.item_type)
        return _with_items(state, event.item_type, state.items_of(event.item_type) + (item,))

    if isinstance(event, UpdateItem):
        items = list(state.items_of(event.item_type))
        current = items[event.index]
        items[event.index] = type(current).model_validate({**current.model_dump(), **event.changes})
        return _with_items(state, event.item_type, tuple(items))

    if isinstance(event, RemoveItem):
        items = list(state.items_of(event.item_type))
        del items[event.index]
        return _with_items(state, event.item_type, tuple(items))

    if isinstance(event, AddScheduleEntry):
        entry = ScheduleEntry(kw=event.kw, days=list(event.days))
        return replace(state, schedule=state.schedule + (entry,))

    if isinstance(event, SetScheduleWeek):
        entry = state.schedule[event.index]
        return _with_schedule_entry(state, event.index, entry.model_copy(update={"kw": event.kw}))

    if isinstance(event, ToggleScheduleDay):
        day = event.day.upper()
        if day not in WEEKDAYS:
            raise ValueError(f"Unknown weekday {event.day}")
        entry = state.schedule[event.index]
        days = [d for d in entry.days if d != day] if day in entry.days else entry.days + [day]
        return _with_schedule_entry(state, event.index, entry.model_copy(update={"days": days}))

    if isinstance(event, RemoveScheduleEntry):
        schedule = list(state.schedule)
        del schedule[event.index]
        return replace(state, schedule=tuple(schedule))

    if isinstance(event, Next):
        reason = gate_error(state)
        if reason:
            raise WizardGateError(reason)
        if state.is_last_step:
            return replace(state, finished=True)
        return replace(state, step_index=state.step_index + 1)

    if isinstance(event, Back):
        # Editing starts on the metadata step; the type step stays closed
        floor = 1 if state.is_editing else 0
        return replace(state, step_index=max(floor, state.step_index - 1), finished=False)

    raise TypeError(f"Unknown event {event!r}")


def run(state: AuthoringState, *events: Event) -> AuthoringState:
    for event in events:
        state = reduce(state, event)
    return state


def advance_to_end(state: AuthoringState) -> AuthoringState:
    """Press `Next` until the wizard finishes; stops at the first closed gate."""
    while not state.finished:
        state = reduce(state, Next())
    return state


# -------------------------------------------------------------------
# Editing an existing wave
# -------------------------------------------------------------------
def _draft_from(item_type: ItemType, item: Any) -> DraftItem:
    if item_type in CONTAINER_TYPES:
        return DraftContainer(
            name=item.name,
            size=item.size,
            picture=item.picture,
            products=[
                DraftProduct(
                    name=p.name,
                    unit_value=p.unit_value,
                    units_per_container=p.units_per_container,
                    ean=p.ean,
                )
                for p in item.products
            ],
        )
    return DraftFlatItem(
        name=item.name,
        target_quantity=item.target_quantity,
        unit_value=item.unit_value,
        picture=item.picture,
    )


def start_editing(wave: Wave) -> AuthoringState:
    """Prefill the wizard from an existing wave and open it on the metadata step."""
    types = tuple(
        t for t in CANONICAL_ORDER if t in wave.types or wave.items_of(t)
    )
    items = {t: tuple(_draft_from(t, item) for item in wave.items_of(t)) for t in types}
    return AuthoringState(
        step_index=1,
        steps=steps_for(types),
        selected_types=types,
        editing_wave_id=wave.id,
        name=wave.name,
        image=wave.image,
        start_date=wave.start_date.isoformat(),
        end_date=wave.end_date.isoformat(),
        goal_type=wave.goal_type,
        goal_percentage=wave.goal_percentage,
        goal_value=wave.goal_value,
        assigned_market_ids=tuple(wave.assigned_market_ids),
        foto_only=wave.foto_only,
        foto_tags=tuple(wave.foto_tags),
        items=items,
        schedule=tuple(ScheduleEntry(kw=e.kw, days=list(e.days)) for e in wave.kw_days),
    )


# -------------------------------------------------------------------
# Terminal step
# -------------------------------------------------------------------
def build_payload(state: AuthoringState) -> WavePayload:
    """
    Shape the create/update body.

    Only the goal field matching the goal type is sent, item values only on
    value waves, and only collections of selected types.
    """
    value_goal = state.goal_type == GoalType.VALUE
    collections: Dict[str, Any] = {name: [] for name in COLLECTION_FIELDS.values()}
    for item_type in state.selected_types:
        drafts = state.items_of(item_type)
        if item_type not in CONTAINER_TYPES:
            drafts = tuple(
                d.model_copy(update={"unit_value": d.unit_value if value_goal else None}) for d in drafts
            )
        collections[COLLECTION_FIELDS[item_type]] = list(drafts)

    return WavePayload(
        name=state.name.strip(),
        image=state.image,
        start_date=state.start_date,
        end_date=state.end_date,
        types=list(state.selected_types),
        goal_type=state.goal_type,
        goal_percentage=None if value_goal else state.goal_percentage,
        goal_value=state.goal_value if value_goal else None,
        kw_days=[e for e in state.schedule if e.kw.strip() and e.days],
        assigned_market_ids=list(state.assigned_market_ids),
        foto_only=state.foto_only,
        foto_tags=list(state.foto_tags),
        **collections,
    )


async def submit_wave(state: AuthoringState, client: Any) -> Dict[str, Any]:
    """Create or update the wave once the wizard has finished."""
    if not state.finished:
        raise WizardGateError("The wizard has not reached its last step")
    payload = build_payload(state)
    if state.is_editing:
        result = await client.update_wave(state.editing_wave_id, payload)
        logger.info("[WAVE_UPDATE] %s saved (%d types)", state.editing_wave_id, len(payload.types))
    else:
        result = await client.create_wave(payload)
        logger.info("[WAVE_CREATE] %s created (%d types)", result.get("id"), len(payload.types))
    return result
