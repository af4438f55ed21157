# wellen/aggregation.py
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union
from zoneinfo import ZoneInfo

from .catalog import submission_value
from .config import TIMEZONE
from .formatting import format_day_label
from .models import (
    CONTAINER_TYPES,
    GroupSummary,
    ItemType,
    PhotoEntry,
    Submission,
    Wave,
)
from .timeline import day_key

Entry = Union[Submission, PhotoEntry]


# -------------------------------------------------------------------
# Grouping
# -------------------------------------------------------------------
def _entry_value(entry: Entry) -> float:
    if isinstance(entry, Submission):
        return submission_value(entry)
    return 0.0


def _summarise(group_key: str, label: str, entries: List[Entry]) -> GroupSummary:
    return GroupSummary(
        group_key=group_key,
        label=label,
        entries=entries,
        total_quantity=sum(e.quantity for e in entries),
        total_value=sum(_entry_value(e) for e in entries),
    )


def _bucket(entries: Iterable[Entry], key: Callable[[Entry], str]) -> Dict[str, List[Entry]]:
    buckets: Dict[str, List[Entry]] = {}
    for entry in entries:
        buckets.setdefault(key(entry), []).append(entry)
    return buckets


def actor_key(entry: Entry) -> str:
    # Older all-progress answers only name the actor
    return entry.actor_id or entry.actor_name


def group_by_actor(entries: Iterable[Entry]) -> Dict[str, GroupSummary]:
    """Groups keyed by actor (id, else name), in the order actors first appear."""
    buckets = _bucket(entries, actor_key)
    return {
        key: _summarise(key, items[0].actor_name or key, items)
        for key, items in buckets.items()
    }


def group_by_day(entries: Iterable[Entry], tz: ZoneInfo = TIMEZONE) -> Dict[str, GroupSummary]:
    """
    Groups keyed by local calendar day (YYYY-MM-DD), most recent day first.

    Every entry lands in exactly one bucket; entries keep their input order
    inside a bucket.
    """
    buckets = _bucket(entries, lambda e: day_key(e.timestamp, tz))
    return {
        key: _summarise(key, format_day_label(date.fromisoformat(key)), buckets[key])
        for key in sorted(buckets, reverse=True)
    }


# Photo-only waves report FotoEntry rows; they group exactly like submissions
group_photos_by_actor = group_by_actor
group_photos_by_day = group_by_day


def has_value_entries(group: GroupSummary) -> bool:
    """True when the header should show a monetary total instead of a count."""
    return any(_entry_value(e) > 0 for e in group.entries)


@dataclass
class ProgressSummary:
    participating_actors: int
    entries: int
    total_quantity: int
    total_value: float


def summarize(entries: Sequence[Entry]) -> ProgressSummary:
    return ProgressSummary(
        participating_actors=len({actor_key(e) for e in entries}),
        entries=len(entries),
        total_quantity=sum(e.quantity for e in entries),
        total_value=sum(_entry_value(e) for e in entries),
    )


# -------------------------------------------------------------------
# Rows (what the progress list shows and the reconciler edits)
# -------------------------------------------------------------------
@dataclass
class SubmissionRow:
    """A flat-item submission shown as one editable row."""

    key: str
    submission: Submission

    @property
    def item_type(self) -> ItemType:
        return self.submission.item_type

    @property
    def quantity(self) -> int:
        return self.submission.quantity

    @property
    def unit_value(self) -> float:
        return self.submission.unit_value

    @property
    def value(self) -> float:
        return submission_value(self.submission)

    @property
    def submission_ids(self) -> List[str]:
        return [self.submission.id]

    @property
    def timestamp(self) -> datetime:
        return self.submission.timestamp


@dataclass
class ProductSubmissionRef:
    """One per-product submission inside a palette / schütte row."""

    submission_id: str
    product_id: str
    name: str = ""
    quantity: int = 0
    unit_value: float = 0.0

    @property
    def value(self) -> float:
        return self.quantity * self.unit_value


@dataclass
class ContainerSubmission:
    """
    Palette / schütte entry shown as a single row.

    The row owns the per-product submissions it was folded from; its quantity
    and value are always the sums over them.
    """

    key: str
    item_type: ItemType
    parent_id: Optional[str]
    name: str
    actor_id: str
    actor_name: str
    location_id: Optional[str]
    location_name: str
    timestamp: datetime
    products: List[ProductSubmissionRef] = field(default_factory=list)

    @property
    def quantity(self) -> int:
        return sum(p.quantity for p in self.products)

    @property
    def value(self) -> float:
        return sum(p.value for p in self.products)

    @property
    def submission_ids(self) -> List[str]:
        return [p.submission_id for p in self.products]

    def product(self, submission_id: str) -> ProductSubmissionRef:
        for ref in self.products:
            if ref.submission_id == submission_id:
                return ref
        raise KeyError(submission_id)


Row = Union[SubmissionRow, ContainerSubmission]


def _container_names(wave: Optional[Wave]) -> Dict[str, str]:
    if wave is None:
        return {}
    names: Dict[str, str] = {}
    for item_type in CONTAINER_TYPES:
        for container in wave.items_of(item_type):
            names[container.id] = container.name
    return names


def build_rows(submissions: Iterable[Submission], wave: Optional[Wave] = None) -> List[Row]:
    """
    Fold per-product container submissions into one row per container entry.

    Submissions for the same container, by the same actor, at the same
    location and timestamp form one `ContainerSubmission`. Flat submissions
    stay one row each. Rows keep the position of their first constituent.
    """
    names = _container_names(wave)
    rows: List[Row] = []
    containers: Dict[Tuple[Any, ...], ContainerSubmission] = {}

    for sub in submissions:
        if sub.item_type not in CONTAINER_TYPES:
            rows.append(SubmissionRow(key=sub.id, submission=sub))
            continue

        group = (sub.item_type, sub.parent_id, actor_key(sub), sub.location_id or sub.location_name, sub.timestamp)
        row = containers.get(group)
        if row is None:
            row = ContainerSubmission(
                key=f"container:{sub.id}",
                item_type=sub.item_type,
                parent_id=sub.parent_id,
                name=names.get(sub.parent_id or "", "") or sub.item_name,
                actor_id=sub.actor_id,
                actor_name=sub.actor_name,
                location_id=sub.location_id,
                location_name=sub.location_name,
                timestamp=sub.timestamp,
            )
            containers[group] = row
            rows.append(row)
        row.products.append(
            ProductSubmissionRef(
                submission_id=sub.id,
                product_id=sub.item_id,
                name=sub.item_name,
                quantity=sub.quantity,
                unit_value=sub.unit_value,
            )
        )
    return rows


# Per-row keys of the old composite form; everything else is shared by the
# constituents
_LEGACY_ROW_KEYS = frozenset(
    {"id", "products", "itemId", "itemName", "quantity", "value", "valuePerUnit", "unitValue"}
)


def is_legacy_composite(entry: Dict[str, Any]) -> bool:
    return "," in str(entry.get("id") or "")


def split_legacy_entry(entry: Dict[str, Any]) -> List[Submission]:
    """
    Read a composite row in the old wire form as its per-product submissions.

    That form packs the constituent submission ids into one comma-joined
    `id` and lists the products alongside. The ids are split once here and
    paired with the products by position; `build_rows` folds the result back
    into a single `ContainerSubmission`.
    """
    ids = [part.strip() for part in str(entry.get("id") or "").split(",") if part.strip()]
    products = entry.get("products") or []
    shared = {key: value for key, value in entry.items() if key not in _LEGACY_ROW_KEYS}
    if not shared.get("parentId") and not shared.get("parent_id"):
        shared["parentId"] = entry.get("itemId")

    submissions: List[Submission] = []
    for index, submission_id in enumerate(ids):
        product = products[index] if index < len(products) else {}
        submissions.append(
            Submission.model_validate(
                {
                    **shared,
                    "id": submission_id,
                    "itemId": str(product.get("id") or ""),
                    "itemName": str(product.get("name") or ""),
                    "quantity": product.get("quantity"),
                    "valuePerUnit": product.get("valuePerUnit"),
                    "value": product.get("value"),
                }
            )
        )
    return submissions
