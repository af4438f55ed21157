# wellen/goals.py
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from .catalog import line_value
from .models import GoalEvaluation, GoalType, NormalizedLine, Wave

# Used when a percentage wave carries no goal number
DEFAULT_GOAL_PERCENTAGE = 100.0


def round_half_up(value: float, places: int = 1) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def percentage_of_target(total_quantity: int, target_quantity: int) -> float:
    if target_quantity <= 0:
        return 0.0
    return round_half_up(total_quantity / target_quantity * 100, 1)


def bar_ratio(goal_type: GoalType, progress_ratio: float, goal: Optional[float]) -> float:
    """
    Width of the progress bar, relative to the goal rather than to 100 %.

    Percentage waves: progress / goal percentage. Value waves: reached
    value / goal value. Capped at 100.
    """
    if goal_type == GoalType.PERCENTAGE:
        denominator = goal or DEFAULT_GOAL_PERCENTAGE
    else:
        denominator = goal or 1.0
    if progress_ratio <= 0:
        return 0.0
    return min(100.0, progress_ratio / denominator * 100)


def evaluate(wave: Wave, lines: Iterable[NormalizedLine]) -> GoalEvaluation:
    total_quantity = 0
    total_value = 0.0
    target_quantity = 0
    for line in lines:
        total_quantity += line.quantity
        total_value += line_value(line)
        target_quantity += line.target_quantity

    if wave.goal_type == GoalType.PERCENTAGE:
        goal = wave.goal_percentage or DEFAULT_GOAL_PERCENTAGE
        progress_ratio = percentage_of_target(total_quantity, target_quantity)
        goal_met = progress_ratio >= goal
    else:
        goal = wave.goal_value or 0.0
        progress_ratio = total_value
        goal_met = total_value >= goal

    return GoalEvaluation(
        total_quantity=total_quantity,
        total_value=total_value,
        target_quantity=target_quantity,
        progress_ratio=progress_ratio,
        goal_met=goal_met,
        bar_ratio=bar_ratio(wave.goal_type, progress_ratio, wave.goal_target),
    )
