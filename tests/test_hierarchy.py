"""Tests for the ticket tree: parent validation and child counters."""
import pytest

from kanban_core import crud, tickets
from kanban_core.errors import HierarchyError
from kanban_core.hierarchy import collect_subtree, get_ancestors, live_child_counts
from kanban_core.models import Ticket, TicketStatus


def _counts(db, ticket):
    db.refresh(ticket)
    return ticket.child_count, ticket.child_done_count


class TestChildCounters:
    """Counters track live (non-archived) immediate children."""

    def test_create_and_complete_children(self, db, workspace, actor):
        parent = tickets.create_ticket(db, workspace.id, "Parent", actor=actor)
        first = tickets.create_ticket(db, workspace.id, "A", parent_id=parent.id, actor=actor)
        tickets.create_ticket(db, workspace.id, "B", parent_id=parent.id, actor=actor)
        assert _counts(db, parent) == (2, 0)

        tickets.update_ticket_status(db, first, TicketStatus.DONE, is_agent_caller=False, actor=actor)
        assert _counts(db, parent) == (2, 1)
        assert parent.has_children

        tickets.update_ticket_status(db, first, TicketStatus.IN_PROGRESS, is_agent_caller=False, actor=actor)
        assert _counts(db, parent) == (2, 0)

    def test_archiving_child_uncounts_it(self, db, workspace, actor):
        parent = tickets.create_ticket(db, workspace.id, "Parent", actor=actor)
        child = tickets.create_ticket(db, workspace.id, "Child", parent_id=parent.id, actor=actor)
        tickets.update_ticket_status(db, child, TicketStatus.DONE, is_agent_caller=False, actor=actor)

        tickets.update_ticket(db, child, {"archived": True}, actor=actor)
        assert _counts(db, parent) == (0, 0)

        tickets.update_ticket(db, child, {"archived": False}, actor=actor)
        assert _counts(db, parent) == (1, 1)

    def test_archiving_parent_leaves_children(self, db, workspace, actor):
        parent = tickets.create_ticket(db, workspace.id, "Parent", actor=actor)
        child = tickets.create_ticket(db, workspace.id, "Child", parent_id=parent.id, actor=actor)
        tickets.update_ticket(db, parent, {"archived": True}, actor=actor)
        db.refresh(child)
        assert not child.archived

    def test_reparenting_moves_counts(self, db, workspace, actor):
        old_parent = tickets.create_ticket(db, workspace.id, "Old", actor=actor)
        new_parent = tickets.create_ticket(db, workspace.id, "New", actor=actor)
        child = tickets.create_ticket(db, workspace.id, "Child", parent_id=old_parent.id, actor=actor)
        tickets.complete_ticket(db, tickets.assign_ticket(db, child, "u", "user", actor=actor), actor=actor)

        tickets.update_ticket(db, child, {"parent_id": str(new_parent.id)}, actor=actor)

        assert _counts(db, old_parent) == (0, 0)
        assert _counts(db, new_parent) == (1, 1)

    def test_detaching_to_root(self, db, workspace, actor):
        parent = tickets.create_ticket(db, workspace.id, "Parent", actor=actor)
        child = tickets.create_ticket(db, workspace.id, "Child", parent_id=parent.id, actor=actor)
        child = tickets.update_ticket(db, child, {"parent_id": None}, actor=actor)
        assert child.parent_id is None
        assert _counts(db, parent) == (0, 0)

    def test_reconcile_repairs_drift(self, db, workspace, actor):
        parent = tickets.create_ticket(db, workspace.id, "Parent", actor=actor)
        tickets.create_ticket(db, workspace.id, "Child", parent_id=parent.id, actor=actor)
        db.query(Ticket).filter(Ticket.id == parent.id).update({Ticket.child_count: 7, Ticket.child_done_count: 3})
        db.commit()

        parent = tickets.reconcile_ticket_counts(db, parent)

        assert (parent.child_count, parent.child_done_count) == (1, 0)
        assert live_child_counts(db, parent.id) == (1, 0)

    def test_counters_never_go_negative(self, db, workspace, actor):
        parent = tickets.create_ticket(db, workspace.id, "Parent", actor=actor)
        child = tickets.create_ticket(db, workspace.id, "Child", parent_id=parent.id, actor=actor)
        db.query(Ticket).filter(Ticket.id == parent.id).update({Ticket.child_count: 0})
        db.commit()

        tickets.remove_ticket(db, child, actor=actor)
        assert _counts(db, parent) == (0, 0)

    def test_workspace_backfill(self, db, workspace, actor):
        parent = tickets.create_ticket(db, workspace.id, "Parent", actor=actor)
        tickets.create_ticket(db, workspace.id, "Child", parent_id=parent.id, actor=actor)
        db.query(Ticket).filter(Ticket.id == parent.id).update({Ticket.child_count: 5})
        db.commit()

        summary = crud.backfill_workspace(db, workspace)

        assert summary == {"ticketsScanned": 2, "ticketsRepaired": 1, "workspaceFieldsRepaired": 0}
        assert _counts(db, parent) == (1, 0)


class TestParentValidation:
    def test_cannot_parent_to_self(self, db, workspace, actor):
        ticket = tickets.create_ticket(db, workspace.id, "Self", actor=actor)
        with pytest.raises(HierarchyError) as exc_info:
            tickets.update_ticket(db, ticket, {"parent_id": ticket.id}, actor=actor)
        assert exc_info.value.message == "Ticket cannot be its own parent"

    def test_cannot_parent_to_descendant(self, db, workspace, actor):
        root = tickets.create_ticket(db, workspace.id, "Root", actor=actor)
        child = tickets.create_ticket(db, workspace.id, "Child", parent_id=root.id, actor=actor)
        grandchild = tickets.create_ticket(db, workspace.id, "Grandchild", parent_id=child.id, actor=actor)

        with pytest.raises(HierarchyError) as exc_info:
            tickets.update_ticket(db, root, {"parent_id": grandchild.id}, actor=actor)
        assert exc_info.value.message == "Ticket cannot be moved under its own descendant"

    def test_stale_session_cannot_close_a_cycle(self, db, workspace, actor, session_factory):
        """A move validated against a stale copy of the tree must still see the committed one."""
        a_id = tickets.create_ticket(db, workspace.id, "A", actor=actor).id
        b_id = tickets.create_ticket(db, workspace.id, "B", actor=actor).id
        first_db, second_db = session_factory(), session_factory()
        first_a = first_db.query(Ticket).filter(Ticket.id == a_id).one()
        first_db.query(Ticket).filter(Ticket.id == b_id).one()
        second_b = second_db.query(Ticket).filter(Ticket.id == b_id).one()

        tickets.update_ticket(second_db, second_b, {"parent_id": a_id}, actor=actor)
        with pytest.raises(HierarchyError) as exc_info:
            tickets.update_ticket(first_db, first_a, {"parent_id": b_id}, actor=actor)

        assert exc_info.value.message == "Ticket cannot be moved under its own descendant"
        db.expire_all()
        assert db.query(Ticket).filter(Ticket.id == a_id).one().parent_id is None

    def test_depth_limit(self, db, workspace, actor, monkeypatch):
        from kanban_core.config import get_settings

        monkeypatch.setattr(get_settings(), "max_tree_depth", 2)
        a = tickets.create_ticket(db, workspace.id, "A", actor=actor)
        b = tickets.create_ticket(db, workspace.id, "B", parent_id=a.id, actor=actor)
        c = tickets.create_ticket(db, workspace.id, "C", parent_id=b.id, actor=actor)
        loose = tickets.create_ticket(db, workspace.id, "Loose", actor=actor)

        with pytest.raises(HierarchyError) as exc_info:
            tickets.update_ticket(db, loose, {"parent_id": c.id}, actor=actor)
        assert exc_info.value.message == "Ticket hierarchy is too deep"


class TestTreeQueries:
    def test_ancestors_root_first(self, db, workspace, actor):
        a = tickets.create_ticket(db, workspace.id, "A", actor=actor)
        b = tickets.create_ticket(db, workspace.id, "B", parent_id=a.id, actor=actor)
        c = tickets.create_ticket(db, workspace.id, "C", parent_id=b.id, actor=actor)
        assert [t.title for t in get_ancestors(db, c)] == ["A", "B"]

    def test_subtree_handles_deep_chains(self, db, workspace, actor):
        root = tickets.create_ticket(db, workspace.id, "0", actor=actor)
        current = root
        for depth in range(1, 60):
            current = tickets.create_ticket(db, workspace.id, str(depth), parent_id=current.id, actor=actor)

        subtree = collect_subtree(db, root)

        assert len(subtree) == 60
        assert subtree[0].id == root.id

    def test_hierarchy_view(self, db, workspace, actor):
        a = tickets.create_ticket(db, workspace.id, "A", actor=actor)
        b = tickets.create_ticket(db, workspace.id, "B", parent_id=a.id, actor=actor)
        tickets.create_ticket(db, workspace.id, "C1", parent_id=b.id, actor=actor)
        tickets.create_ticket(db, workspace.id, "C2", parent_id=b.id, actor=actor)

        ancestors, children = tickets.get_ticket_hierarchy(db, b)

        assert [t.title for t in ancestors] == ["A"]
        assert [t.title for t in children] == ["C1", "C2"]
