"""Tests for the activity ledger."""
from kanban_core import tickets
from kanban_core.activity import Actor, actor_for_principal, list_ticket_activity, log_ticket_activity, resolve_actor
from kanban_core.identity import authenticate_api_key
from kanban_core.models import ActivityType, ActorType


class TestActorResolution:
    def test_explicit_actor_wins(self):
        actor = Actor.user("u1", "Ada")
        assert resolve_actor(actor, None) is actor

    def test_system_fallback(self):
        actor = resolve_actor()
        assert (actor.type, actor.id, actor.display_name) == (ActorType.SYSTEM, "system", "System")

    def test_agent_principal_uses_owner_identity(self, db, agent_key):
        principal = authenticate_api_key(db, agent_key[1], "run-7")
        actor = actor_for_principal(principal)
        assert actor.type == ActorType.AGENT
        assert actor.id == "session:run-7"
        assert actor.display_name == "run-7"


class TestLedger:
    def test_newest_first(self, db, workspace, actor):
        ticket = tickets.create_ticket(db, workspace.id, "W", actor=actor)
        tickets.add_comment(db, ticket, "hello", actor)
        tickets.update_ticket(db, ticket, {"title": "W2"}, actor=actor)

        types = [event.type for event in list_ticket_activity(db, ticket.id)]

        assert types == [
            ActivityType.TICKET_UPDATED,
            ActivityType.TICKET_COMMENT_ADDED,
            ActivityType.TICKET_CREATED,
        ]

    def test_limit(self, db, workspace, actor):
        ticket = tickets.create_ticket(db, workspace.id, "W", actor=actor)
        for i in range(5):
            tickets.add_comment(db, ticket, f"c{i}", actor)
        assert len(list_ticket_activity(db, ticket.id, limit=2)) == 2

    def test_survives_ticket_deletion(self, db, workspace, actor):
        ticket = tickets.create_ticket(db, workspace.id, "Doomed", actor=actor)
        ticket_id = ticket.id
        tickets.remove_ticket(db, ticket, actor=actor)

        types = [event.type for event in list_ticket_activity(db, ticket_id)]
        assert types == [ActivityType.TICKET_DELETED, ActivityType.TICKET_CREATED]

    def test_principal_attribution(self, db, workspace, agent_key):
        principal = authenticate_api_key(db, agent_key[1])
        ticket = tickets.create_ticket(db, workspace.id, "W")
        entry = log_ticket_activity(
            db, workspace.id, ticket.id, ActivityType.TICKET_UPDATED, data={"fields": []}, principal=principal
        )
        db.commit()

        assert entry.actor_type == ActorType.AGENT
        assert entry.actor_id == f"apikey:{agent_key[0].id}"
        assert entry.actor_display_name == "CI agent"

    def test_comment_activity_references_comment(self, db, workspace, actor):
        ticket = tickets.create_ticket(db, workspace.id, "W", actor=actor)
        comment = tickets.add_comment(db, ticket, "hello", actor)
        latest = list_ticket_activity(db, ticket.id)[0]
        assert latest.data == {"commentId": str(comment.id)}
