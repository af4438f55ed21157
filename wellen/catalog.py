# wellen/catalog.py
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

from .models import (
    CANONICAL_ORDER,
    CONTAINER_TYPES,
    ContainerItem,
    FlatItem,
    ItemType,
    NormalizedLine,
    Submission,
    Wave,
    as_number,
    as_quantity,
)

ProductKey = Tuple[ItemType, Optional[str], str]


def _sold_per_product(submissions: Iterable[Submission]) -> Tuple[Dict[ProductKey, int], Dict[Tuple[ItemType, str], int]]:
    """
    Sum container submissions per product.

    Two indexes are returned: one keyed by (type, container, product) for
    submissions that name their container, and one keyed by (type, product)
    for older rows that only carry the product id.
    """
    with_parent: Dict[ProductKey, int] = defaultdict(int)
    without_parent: Dict[Tuple[ItemType, str], int] = defaultdict(int)
    for sub in submissions:
        if sub.item_type not in CONTAINER_TYPES:
            continue
        if sub.parent_id:
            with_parent[(sub.item_type, sub.parent_id, sub.item_id)] += sub.quantity
        else:
            without_parent[(sub.item_type, sub.item_id)] += sub.quantity
    return with_parent, without_parent


def _flat_line(item_type: ItemType, item: FlatItem) -> NormalizedLine:
    return NormalizedLine(
        item_id=item.id,
        item_type=item_type,
        unit_value=as_number(item.unit_value),
        quantity=as_quantity(item.current_quantity),
        target_quantity=as_quantity(item.target_quantity),
        name=item.name,
    )


def _container_lines(
    item_type: ItemType,
    container: ContainerItem,
    with_parent: Dict[ProductKey, int],
    without_parent: Dict[Tuple[ItemType, str], int],
) -> List[NormalizedLine]:
    lines = []
    for product in container.products:
        sold = with_parent.get((item_type, container.id, product.id), 0)
        sold += without_parent.get((item_type, product.id), 0)
        lines.append(
            NormalizedLine(
                item_id=product.id,
                item_type=item_type,
                unit_value=as_number(product.unit_value),
                quantity=as_quantity(sold),
                target_quantity=0,
                name=product.name,
                parent_id=container.id,
            )
        )
    return lines


def normalize(wave: Wave, submissions: Iterable[Submission] = ()) -> List[NormalizedLine]:
    """
    Flatten every item collection of a wave into comparable lines.

    Flat items contribute one line each, with their own current quantity.
    Containers contribute one line per nested product, with the quantity
    taken from the submissions for that product. Collections are walked in
    canonical type order.
    """
    with_parent, without_parent = _sold_per_product(submissions)

    lines: List[NormalizedLine] = []
    for item_type in CANONICAL_ORDER:
        for item in wave.items_of(item_type):
            if item_type in CONTAINER_TYPES:
                lines.extend(_container_lines(item_type, item, with_parent, without_parent))
            else:
                lines.append(_flat_line(item_type, item))
    return lines


def line_value(line: NormalizedLine) -> float:
    return line.quantity * line.unit_value


def submission_value(submission: Submission) -> float:
    return as_quantity(submission.quantity) * as_number(submission.unit_value)


def unit_value_lookup(wave: Wave) -> Dict[Tuple[ItemType, str], float]:
    """(type, item-or-product id) -> unit value, for pricing outbound lines."""
    lookup: Dict[Tuple[ItemType, str], float] = {}
    for line in normalize(wave):
        lookup[(line.item_type, line.item_id)] = line.unit_value
    return lookup
