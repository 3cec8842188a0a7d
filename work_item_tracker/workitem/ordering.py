"""
Execution order placement.

Work items of a space are totally ordered by a float ``execution_order``;
lists show the highest order first. Moves compute a key between the two
new neighbours, so only the moved row changes. When the gap between the
neighbours is too narrow for a distinct key, a window of neighbouring rows
is spread out again (a rebalance) and every row in it gets a new key.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from ..errors import BadParameterError, NotFoundError
from .constants import ORDER_SPACING

# minimum gap between rebalanced keys, in units of the float spacing
MIN_GAP_ULPS = 2 ** 10


class Direction(str, Enum):
    ABOVE = "above"
    BELOW = "below"
    TOP = "top"
    BOTTOM = "bottom"

    @classmethod
    def parse(cls, value: str) -> "Direction":
        try:
            return cls(value)
        except ValueError:
            raise BadParameterError(
                "direction", value, expected=[d.value for d in cls]
            ) from None


@dataclass(frozen=True)
class Placement:
    """Outcome of a move.

    ``order`` is the moved item's new key, or ``None`` when it already sits
    where it was asked to go. ``rebalanced`` maps the IDs of other rows
    whose keys had to change to their new keys.
    """

    order: Optional[float]
    rebalanced: Dict[UUID, float] = field(default_factory=dict)


def next_order(current_max: Optional[float]) -> float:
    """Key for a newly created item: above everything else."""
    if current_max is None:
        return ORDER_SPACING
    return current_max + ORDER_SPACING


def _between(low: Optional[float], value: float, high: Optional[float]) -> bool:
    if not math.isfinite(value):
        return False
    return (low is None or low < value) and (high is None or value < high)


def place(
    ordered: Sequence[Tuple[UUID, float]],
    item_id: UUID,
    item_order: float,
    direction: Direction,
    target_id: Optional[UUID] = None,
) -> Placement:
    """Compute where ``item_id`` goes.

    ``ordered`` holds ``(id, order)`` of every other item of the space,
    highest order first. ``target_id`` is required for ABOVE and BELOW.
    """
    others = [(wi_id, order) for wi_id, order in ordered if wi_id != item_id]

    if direction in (Direction.ABOVE, Direction.BELOW):
        if target_id is None:
            raise BadParameterError("id", None, expected="a target work item")
        if target_id == item_id:
            raise BadParameterError("id", target_id, expected="a different work item")
        position = next((i for i, (wi_id, _) in enumerate(others) if wi_id == target_id), None)
        if position is None:
            raise NotFoundError("work item", target_id)
        anchor = others[position][1]
        if direction is Direction.ABOVE:
            index = position
            high = others[index - 1][1] if index > 0 else None
            low = anchor
            candidate = (anchor + (high if high is not None else anchor + ORDER_SPACING)) / 2
        else:
            index = position + 1
            high = anchor
            low = others[index][1] if index < len(others) else None
            candidate = (anchor + (low if low is not None else 0.0)) / 2
    elif direction is Direction.TOP:
        index = 0
        high = None
        low = others[0][1] if others else None
        candidate = low + ORDER_SPACING if low is not None else item_order
    else:
        index = len(others)
        low = None
        high = others[-1][1] if others else None
        candidate = high / 2 if high is not None else item_order

    if _between(low, item_order, high):
        return Placement(order=None)
    if _between(low, candidate, high):
        return Placement(order=candidate)
    return rebalance(others, index, item_id)


def rebalance(
    others: List[Tuple[UUID, float]],
    index: int,
    item_id: UUID,
) -> Placement:
    """Spread keys around position ``index`` and insert ``item_id`` there.

    The window grows on both sides until the evenly spaced keys are far
    enough apart to be distinct.
    """
    radius = 1
    while True:
        start = max(0, index - radius)
        stop = min(len(others), index + radius)
        window = others[start:stop]
        upper = others[start - 1][1] if start > 0 else None
        lower = others[stop][1] if stop < len(others) else 0.0
        count = len(window) + 1
        if upper is None:
            top = window[0][1] if window else lower
            upper = max(top, lower) + ORDER_SPACING * (count + 1)
        step = (upper - lower) / (count + 1)
        scale = max(abs(upper), abs(lower), 1.0)
        if step > math.ulp(scale) * MIN_GAP_ULPS or (start == 0 and stop == len(others)):
            break
        radius *= 2

    members = [wi_id for wi_id, _ in window]
    members.insert(index - start, item_id)
    keys = {wi_id: upper - (position + 1) * step for position, wi_id in enumerate(members)}
    item_order = keys.pop(item_id)
    current = dict(window)
    changed = {wi_id: key for wi_id, key in keys.items() if current[wi_id] != key}
    return Placement(order=item_order, rebalanced=changed)
