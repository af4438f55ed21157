# wellen/models.py
import math
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


def as_number(value: Any, default: float = 0.0) -> float:
    """
    Coerce whatever the store sent into a float.

    Missing, empty, non-numeric, NaN and infinite values all become
    `default` so a wave can always render a number.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def as_quantity(value: Any) -> int:
    """Non-negative integer quantity; anything unusable is 0."""
    return max(0, int(as_number(value)))


def as_utc(value: datetime) -> datetime:
    # Store timestamps without an offset are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ItemType(str, Enum):
    DISPLAY = "display"
    KARTONWARE = "kartonware"
    PALETTE = "palette"
    SCHUETTE = "schuette"
    EINZELPRODUKT = "einzelprodukt"


CANONICAL_ORDER = (
    ItemType.DISPLAY,
    ItemType.KARTONWARE,
    ItemType.PALETTE,
    ItemType.SCHUETTE,
    ItemType.EINZELPRODUKT,
)
CONTAINER_TYPES = frozenset({ItemType.PALETTE, ItemType.SCHUETTE})
FLAT_TYPES = frozenset(CANONICAL_ORDER) - CONTAINER_TYPES

# Wave attribute holding the collection for each item type
COLLECTION_FIELDS: Dict[ItemType, str] = {
    ItemType.DISPLAY: "displays",
    ItemType.KARTONWARE: "kartonware_items",
    ItemType.PALETTE: "palette_items",
    ItemType.SCHUETTE: "schutte_items",
    ItemType.EINZELPRODUKT: "einzelprodukt_items",
}

TYPE_LABELS: Dict[ItemType, str] = {
    ItemType.DISPLAY: "Display",
    ItemType.KARTONWARE: "Kartonware",
    ItemType.PALETTE: "Palette",
    ItemType.SCHUETTE: "Schütte",
    ItemType.EINZELPRODUKT: "Einzelprodukt",
}


class GoalType(str, Enum):
    PERCENTAGE = "percentage"
    VALUE = "value"


class WaveStatus(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    PAST = "past"


class WellenModel(BaseModel):
    """
    Base for everything exchanged with the wave store.

    The store speaks camelCase JSON; Python code uses snake_case names.
    Unknown keys are kept so nothing the store adds gets dropped on a
    round-trip.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="allow",
        coerce_numbers_to_str=True,
    )


# -------------------------------------------------------------------
# Catalog
# -------------------------------------------------------------------
class FlatItem(WellenModel):
    """Display, Kartonware or Einzelprodukt: directly targeted items."""

    id: str
    name: str = ""
    target_quantity: int = Field(0, alias="targetNumber")
    current_quantity: int = Field(0, alias="currentNumber")
    unit_value: Optional[float] = Field(None, alias="itemValue")
    picture: Optional[str] = None

    @field_validator("target_quantity", "current_quantity", mode="before")
    @classmethod
    def _quantity(cls, v: Any) -> int:
        return as_quantity(v)

    @field_validator("unit_value", mode="before")
    @classmethod
    def _unit_value(cls, v: Any) -> Optional[float]:
        return None if v is None else as_number(v)


class ContainerProduct(WellenModel):
    id: str
    name: str = ""
    unit_value: float = Field(0.0, alias="valuePerVE")
    units_per_container: int = Field(0, alias="ve")
    ean: Optional[str] = None

    @field_validator("unit_value", mode="before")
    @classmethod
    def _unit_value(cls, v: Any) -> float:
        return as_number(v)

    @field_validator("units_per_container", mode="before")
    @classmethod
    def _units(cls, v: Any) -> int:
        return as_quantity(v)


class ContainerItem(WellenModel):
    """Palette or Schütte: holds products, no quantity of its own."""

    id: str
    name: str = ""
    size: Optional[str] = None
    picture: Optional[str] = None
    products: List[ContainerProduct] = Field(default_factory=list)

    @field_validator("products", mode="before")
    @classmethod
    def _products(cls, v: Any) -> Any:
        return v or []


class ScheduleEntry(WellenModel):
    """One calendar week (e.g. "KW23") and the weekdays selling is allowed."""

    kw: str = ""
    days: List[str] = Field(default_factory=list)


class PhotoTag(WellenModel):
    id: str = ""
    name: str
    type: Literal["fixed", "optional"] = "optional"

    @property
    def mandatory(self) -> bool:
        return self.type == "fixed"


class Wave(WellenModel):
    """A campaign as returned by `GET /wellen/:id`."""

    id: str
    name: str = ""
    image: Optional[str] = None
    start_date: date = Field(alias="startDate")
    end_date: date = Field(alias="endDate")
    types: List[ItemType] = Field(default_factory=list)
    status: Optional[WaveStatus] = None

    goal_type: GoalType = Field(GoalType.PERCENTAGE, alias="goalType")
    goal_percentage: Optional[float] = Field(None, alias="goalPercentage")
    goal_value: Optional[float] = Field(None, alias="goalValue")

    displays: List[FlatItem] = Field(default_factory=list)
    kartonware_items: List[FlatItem] = Field(default_factory=list, alias="kartonwareItems")
    palette_items: List[ContainerItem] = Field(default_factory=list, alias="paletteItems")
    schutte_items: List[ContainerItem] = Field(default_factory=list, alias="schutteItems")
    einzelprodukt_items: List[FlatItem] = Field(default_factory=list, alias="einzelproduktItems")

    kw_days: List[ScheduleEntry] = Field(default_factory=list, alias="kwDays")
    assigned_market_ids: List[str] = Field(default_factory=list, alias="assignedMarketIds")

    foto_only: bool = Field(False, alias="fotoOnly")
    foto_tags: List[PhotoTag] = Field(default_factory=list, alias="fotoTags")

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _date_only(cls, v: Any) -> Any:
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        return v

    @field_validator(
        "types",
        "displays",
        "kartonware_items",
        "palette_items",
        "schutte_items",
        "einzelprodukt_items",
        "kw_days",
        "assigned_market_ids",
        "foto_tags",
        mode="before",
    )
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return v or []

    @field_validator("goal_percentage", "goal_value", mode="before")
    @classmethod
    def _goal_number(cls, v: Any) -> Optional[float]:
        if v is None or v == "":
            return None
        return as_number(v)

    def items_of(self, item_type: ItemType) -> List[Union[FlatItem, ContainerItem]]:
        return list(getattr(self, COLLECTION_FIELDS[ItemType(item_type)]))

    @property
    def goal_target(self) -> Optional[float]:
        """The goal number that `goal_type` selects; the other one is ignored."""
        if self.goal_type == GoalType.PERCENTAGE:
            return self.goal_percentage
        return self.goal_value


# -------------------------------------------------------------------
# Submissions
# -------------------------------------------------------------------
class Submission(WellenModel):
    """
    One progress fact reported by an actor at a location.

    For palette / schütte entries `item_id` is the nested product and
    `parent_id` the container it belongs to.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    wave_id: Optional[str] = Field(None, validation_alias=AliasChoices("waveId", "welle_id", "wave_id"))
    actor_id: str = Field("", validation_alias=AliasChoices("actorId", "gebietsleiter_id", "glId", "actor_id"))
    actor_name: str = Field("", validation_alias=AliasChoices("actorName", "glName", "actor_name"))
    location_id: Optional[str] = Field(None, validation_alias=AliasChoices("locationId", "marketId", "market_id", "location_id"))
    location_name: str = Field("", validation_alias=AliasChoices("locationName", "marketName", "location_name"))
    location_chain: str = Field("", validation_alias=AliasChoices("locationChain", "marketChain", "location_chain"))
    item_type: ItemType = Field(validation_alias=AliasChoices("itemType", "item_type"))
    item_id: str = Field("", validation_alias=AliasChoices("itemId", "item_id"))
    item_name: str = Field("", validation_alias=AliasChoices("itemName", "item_name"))
    parent_id: Optional[str] = Field(None, validation_alias=AliasChoices("parentId", "parent_id"))
    quantity: int = Field(0, validation_alias=AliasChoices("quantity", "current_number"))
    unit_value: float = Field(0.0, validation_alias=AliasChoices("unitValue", "valuePerUnit", "value_per_unit", "unit_value"))
    timestamp: datetime = Field(validation_alias=AliasChoices("timestamp", "created_at"))
    photo_url: Optional[str] = Field(None, validation_alias=AliasChoices("photoUrl", "photo_url"))
    reported_value: Optional[float] = Field(None, validation_alias="value", exclude=True)

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity(cls, v: Any) -> int:
        return as_quantity(v)

    @field_validator("unit_value", mode="before")
    @classmethod
    def _unit_value(cls, v: Any) -> float:
        return as_number(v)

    @field_validator("reported_value", mode="before")
    @classmethod
    def _reported_value(cls, v: Any) -> Optional[float]:
        return None if v is None else as_number(v)

    @field_validator("timestamp", mode="after")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        return as_utc(v)

    @model_validator(mode="after")
    def _derive_unit_value(self) -> "Submission":
        # Older endpoints only report the line value; recover the unit price
        if not self.unit_value and self.reported_value and self.quantity > 0:
            object.__setattr__(self, "unit_value", self.reported_value / self.quantity)
        return self

    @property
    def value(self) -> float:
        return self.quantity * self.unit_value


class PhotoEntry(WellenModel):
    """Evidence photo submitted for a photo-only wave."""

    model_config = ConfigDict(frozen=True)

    id: str
    actor_id: str = Field("", validation_alias=AliasChoices("actorId", "gebietsleiter_id", "glId", "actor_id"))
    actor_name: str = Field("", validation_alias=AliasChoices("actorName", "glName", "actor_name"))
    location_id: Optional[str] = Field(None, validation_alias=AliasChoices("locationId", "marketId", "market_id", "location_id"))
    location_name: str = Field("", validation_alias=AliasChoices("locationName", "marketName", "location_name"))
    photo_url: str = Field("", validation_alias=AliasChoices("photoUrl", "photo_url"))
    tags: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(validation_alias=AliasChoices("timestamp", "created_at"))
    # Photos count as entries, never as quantity or value
    quantity: int = 0

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, v: Any) -> Any:
        return v or []

    @field_validator("timestamp", mode="after")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        return as_utc(v)

    @property
    def value(self) -> float:
        return 0.0


class PhotoProgress(WellenModel):
    type: Literal["foto"] = "foto"
    photos: List[PhotoEntry] = Field(default_factory=list)


# -------------------------------------------------------------------
# Directories (actors and locations are owned by other services)
# -------------------------------------------------------------------
class Actor(WellenModel):
    id: str
    name: str = ""
    email: Optional[str] = None


class Location(WellenModel):
    id: str
    name: str = ""
    chain: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = Field(None, validation_alias=AliasChoices("postalCode", "postal_code"))
    city: Optional[str] = None
    actor_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("actorId", "gebietsleiterId", "gebietsleiter_id", "actor_id")
    )


# -------------------------------------------------------------------
# Derived view models
# -------------------------------------------------------------------
class NormalizedLine(BaseModel):
    """One comparable unit of progress: a flat item or a container product."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    item_type: ItemType
    unit_value: float = 0.0
    quantity: int = 0
    target_quantity: int = 0
    name: str = ""
    parent_id: Optional[str] = None


class GoalEvaluation(BaseModel):
    total_quantity: int
    total_value: float
    target_quantity: int
    progress_ratio: float
    goal_met: bool
    bar_ratio: float


class GroupSummary(BaseModel):
    group_key: str
    label: str = ""
    entries: List[Union[Submission, PhotoEntry]] = Field(default_factory=list)
    total_quantity: int = 0
    total_value: float = 0.0


# -------------------------------------------------------------------
# Outbound payloads
# -------------------------------------------------------------------
class BatchItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_type: ItemType
    item_id: str
    quantity: int = Field(alias="current_number")
    unit_value: Optional[float] = Field(None, alias="value_per_unit")


class BatchPhoto(BaseModel):
    photo_url: str
    tags: List[str] = Field(default_factory=list)


class BatchProgressRequest(BaseModel):
    """Body of `POST /wellen/:id/progress/batch`."""

    model_config = ConfigDict(populate_by_name=True)

    actor_id: str = Field(alias="gebietsleiter_id")
    location_id: str = Field(alias="market_id")
    items: List[BatchItem] = Field(default_factory=list)
    timestamp: datetime
    photo_url: Optional[str] = None
    photos: Optional[List[BatchPhoto]] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class BatchProgressResult(WellenModel):
    message: str = ""
    items_updated: int = 0


class DraftFlatItem(BaseModel):
    """A flat item while it is being typed into the authoring wizard."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    target_quantity: int = Field(0, alias="targetNumber")
    unit_value: Optional[float] = Field(None, alias="itemValue")
    picture: Optional[str] = None

    @field_validator("target_quantity", mode="before")
    @classmethod
    def _quantity(cls, v: Any) -> int:
        return as_quantity(v)

    @field_validator("unit_value", mode="before")
    @classmethod
    def _unit_value(cls, v: Any) -> Optional[float]:
        if v is None or v == "":
            return None
        return as_number(v)


class DraftProduct(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    unit_value: float = Field(0.0, alias="valuePerVE")
    units_per_container: int = Field(0, alias="ve")
    ean: Optional[str] = None

    @field_validator("unit_value", mode="before")
    @classmethod
    def _unit_value(cls, v: Any) -> float:
        return as_number(v)

    @field_validator("units_per_container", mode="before")
    @classmethod
    def _units(cls, v: Any) -> int:
        return as_quantity(v)


class DraftContainer(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    size: Optional[str] = None
    picture: Optional[str] = None
    products: List[DraftProduct] = Field(default_factory=list)


class WavePayload(BaseModel):
    """Body of `POST /wellen` and `PUT /wellen/:id`."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    image: Optional[str] = None
    start_date: str = Field(alias="startDate")
    end_date: str = Field(alias="endDate")
    types: List[ItemType]
    goal_type: GoalType = Field(alias="goalType")
    goal_percentage: Optional[float] = Field(None, alias="goalPercentage")
    goal_value: Optional[float] = Field(None, alias="goalValue")
    displays: List[DraftFlatItem] = Field(default_factory=list)
    kartonware_items: List[DraftFlatItem] = Field(default_factory=list, alias="kartonwareItems")
    palette_items: List[DraftContainer] = Field(default_factory=list, alias="paletteItems")
    schutte_items: List[DraftContainer] = Field(default_factory=list, alias="schutteItems")
    einzelprodukt_items: List[DraftFlatItem] = Field(default_factory=list, alias="einzelproduktItems")
    kw_days: List[ScheduleEntry] = Field(default_factory=list, alias="kwDays")
    assigned_market_ids: List[str] = Field(default_factory=list, alias="assignedMarketIds")
    foto_only: bool = Field(False, alias="fotoOnly")
    foto_tags: List[PhotoTag] = Field(default_factory=list, alias="fotoTags")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
