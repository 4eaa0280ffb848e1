"""Ticket hierarchy: parent validation, subtree walks and child counters.

A child counts toward its parent while it exists and is not archived.
Counter deltas are applied with relative UPDATE statements clamped at zero,
so concurrent writers never lose each other's increments.
"""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import case, func, update
from sqlalchemy.orm import Session

from .config import get_settings
from .errors import HierarchyError
from .models import Ticket, TicketStatus, Workspace

logger = logging.getLogger("kanban-core.hierarchy")


def counted_state(archived: bool, status: TicketStatus) -> tuple[int, int]:
    """(child_count, child_done_count) contribution of one child to its parent."""
    if archived:
        return 0, 0
    return 1, 1 if TicketStatus(status) == TicketStatus.DONE else 0


def _clamped(column, delta: int):
    return case((column + delta < 0, 0), else_=column + delta)


def apply_counts_delta(db: Session, parent_id: Optional[UUID], count_delta: int, done_delta: int) -> None:
    """Adjust a parent's counters in place. No-op without a parent or a delta."""
    if parent_id is None or (count_delta == 0 and done_delta == 0):
        return
    db.execute(
        update(Ticket)
        .where(Ticket.id == parent_id)
        .values(
            child_count=_clamped(Ticket.child_count, count_delta),
            child_done_count=_clamped(Ticket.child_done_count, done_delta),
        )
        .execution_options(synchronize_session=False)
    )


def apply_state_change(
    db: Session,
    parent_id: Optional[UUID],
    before: tuple[int, int],
    after: tuple[int, int],
) -> None:
    """Apply the difference between two counted states to the parent."""
    apply_counts_delta(db, parent_id, after[0] - before[0], after[1] - before[1])


def get_ancestors(db: Session, ticket: Ticket) -> list[Ticket]:
    """Ancestors of ``ticket``, root first."""
    max_depth = get_settings().max_tree_depth
    ancestors: list[Ticket] = []
    seen = {ticket.id}
    parent_id = ticket.parent_id
    while parent_id is not None and len(ancestors) < max_depth:
        if parent_id in seen:
            logger.warning(f"Cycle detected above ticket {ticket.id} at {parent_id}")
            break
        parent = db.query(Ticket).filter(Ticket.id == parent_id).first()
        if parent is None:
            break
        seen.add(parent.id)
        ancestors.append(parent)
        parent_id = parent.parent_id
    ancestors.reverse()
    return ancestors


def lock_tree(db: Session, workspace_id: UUID) -> None:
    """
    Serialize tree moves within a workspace until the transaction ends.

    Moves hold the workspace row lock until commit, so a cycle check always
    sees every earlier move in the same workspace. SQLite has no row locks
    and serializes writers on its own.
    """
    db.query(Workspace.id).filter(Workspace.id == workspace_id).with_for_update().first()


def load_fresh(db: Session, model, row_id: UUID):
    """Load a row from the database, overwriting any stale copy in the session."""
    return db.query(model).filter(model.id == row_id).populate_existing().first()


def ensure_valid_parent(db: Session, ticket: Ticket, new_parent: Ticket) -> None:
    """
    Reject parent assignments that would create a cycle.

    Takes the workspace tree lock and walks the ancestor chain as currently
    committed, so a concurrent move can't slip a cycle past the check.

    Args:
        db: Database session
        ticket: Ticket being moved
        new_parent: Proposed parent (already verified to be in the same workspace)

    Raises:
        HierarchyError: Self-parenting, descendant parenting, or an over-deep chain
    """
    if new_parent.id == ticket.id:
        raise HierarchyError("Ticket cannot be its own parent")

    lock_tree(db, ticket.workspace_id)
    load_fresh(db, Ticket, ticket.id)

    max_depth = get_settings().max_tree_depth
    current: Optional[Ticket] = load_fresh(db, Ticket, new_parent.id)
    depth = 0
    while current is not None:
        if current.id == ticket.id:
            raise HierarchyError("Ticket cannot be moved under its own descendant")
        if current.parent_id is None:
            return
        depth += 1
        if depth >= max_depth:
            logger.warning(f"Maximum hierarchy depth ({max_depth}) reached above ticket {new_parent.id}")
            raise HierarchyError("Ticket hierarchy is too deep")
        current = load_fresh(db, Ticket, current.parent_id)


def get_children(db: Session, ticket_id: UUID) -> list[Ticket]:
    """Immediate children ordered for display."""
    return (
        db.query(Ticket)
        .filter(Ticket.parent_id == ticket_id)
        .order_by(Ticket.order.asc(), Ticket.created_at.asc())
        .all()
    )


def collect_subtree(db: Session, root: Ticket) -> list[Ticket]:
    """
    Collect ``root`` and every descendant, deepest-last in discovery order.

    Uses an explicit stack so arbitrarily deep trees never hit the recursion limit.

    Raises:
        HierarchyError: The subtree exceeds the configured depth
    """
    max_depth = get_settings().max_tree_depth
    collected: list[Ticket] = []
    seen: set[UUID] = set()
    stack: list[tuple[Ticket, int]] = [(root, 0)]
    while stack:
        node, depth = stack.pop()
        if node.id in seen:
            continue
        if depth > max_depth:
            logger.warning(f"Maximum hierarchy depth ({max_depth}) reached below ticket {root.id}")
            raise HierarchyError("Ticket hierarchy is too deep")
        seen.add(node.id)
        collected.append(node)
        children = db.query(Ticket).filter(Ticket.parent_id == node.id).all()
        stack.extend((child, depth + 1) for child in children)
    return collected


def live_child_counts(db: Session, ticket_id: UUID) -> tuple[int, int]:
    """Recompute (child_count, child_done_count) from the children themselves."""
    count, done = db.query(
        func.count(Ticket.id),
        func.coalesce(func.sum(case((Ticket.status == TicketStatus.DONE, 1), else_=0)), 0),
    ).filter(
        Ticket.parent_id == ticket_id,
        Ticket.archived.is_(False),
    ).one()
    return int(count), int(done)
