# ordering.py — Fractional task ordering within a (board, status) column
"""
Tasks carry a float ``order``. A move writes a single value between the
task's new neighbours instead of renumbering the column:

- empty column: ``ORDER_STEP``
- append: ``last + ORDER_STEP``
- between two tasks: ``(prev + next) / 2``; the head of the column uses a
  phantom predecessor of 0

Repeated insertions at the same point halve the gap each time, so callers
check ``needs_rebalance`` after a move and renumber the column with
``rebalance`` once adjacent orders get closer than ``ORDER_EPSILON``.
Orders are only ever compared inside one column.
"""
from typing import Any, Iterable, List, Optional, Sequence

ORDER_STEP = 1000.0
ORDER_EPSILON = 1e-6


def _order_of(item: Any) -> float:
    if isinstance(item, (int, float)):
        return float(item)
    if isinstance(item, dict):
        return float(item["order"])
    return float(item.order)


def _id_of(item: Any) -> Optional[str]:
    if isinstance(item, dict):
        return item.get("id")
    return getattr(item, "id", None)


def next_order(max_order: Optional[float], step: float = ORDER_STEP) -> float:
    """Order for a task appended by creation: ``max + step``, or ``step`` for the first task"""
    return (max_order or 0.0) + step


def compute_order(column: Sequence[Any], target_index: int, step: float = ORDER_STEP) -> float:
    """Order for a task landing at ``target_index`` of ``column``.

    ``column`` holds the other tasks of the destination column (orders, dicts
    or objects with ``order``), sorted ascending, without the moving task.
    """
    orders = [_order_of(item) for item in column]
    if not orders:
        return step
    if target_index >= len(orders):
        return orders[-1] + step

    target_index = max(target_index, 0)
    prev_order = orders[target_index - 1] if target_index > 0 else 0.0
    next_order_ = orders[target_index]
    return (prev_order + next_order_) / 2


def order_for_drop(
    column: Sequence[Any],
    active_id: str,
    over_id: Optional[str],
    current_order: Optional[float] = None,
    step: float = ORDER_STEP,
) -> float:
    """Order for a drag-and-drop of ``active_id`` onto ``over_id``.

    ``column`` is the destination column sorted ascending; it may or may not
    contain the dragged task. ``over_id`` is the hovered task, or None when the
    drop landed on the column itself, which appends. Hovering a task simulates
    moving the dragged task to that task's index and takes the midpoint of its
    new neighbours (phantom predecessor 0, phantom successor ``prev + 2*step``).
    Dropping a task onto itself keeps ``current_order``.
    """
    ids = [_id_of(item) for item in column]
    orders = [_order_of(item) for item in column]

    if over_id is None or over_id not in ids:
        others = [o for i, o in zip(ids, orders) if i != active_id]
        return others[-1] + step if others else step

    over_index = ids.index(over_id)
    if active_id == over_id:
        return current_order if current_order is not None else orders[over_index]

    if active_id not in ids:
        # Cross-column drop lands in front of the hovered task
        return compute_order(orders, over_index, step)

    moved = list(orders)
    moved.insert(over_index, moved.pop(ids.index(active_id)))
    prev_order = moved[over_index - 1] if over_index > 0 else 0.0
    next_order_ = moved[over_index + 1] if over_index + 1 < len(moved) else prev_order + 2 * step
    return (prev_order + next_order_) / 2


def needs_rebalance(orders: Iterable[float], epsilon: float = ORDER_EPSILON) -> bool:
    """True when two adjacent orders (after sorting) are closer than ``epsilon``"""
    ordered = sorted(orders)
    return any(b - a < epsilon for a, b in zip(ordered, ordered[1:]))


def rebalance(count: int, step: float = ORDER_STEP) -> List[float]:
    """Evenly spaced orders for a column of ``count`` tasks"""
    return [step * (i + 1) for i in range(count)]
