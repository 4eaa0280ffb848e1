"""API tests for workspaces, members and caller identity."""
from conftest import MEMBER_ID, OWNER_ID


class TestWorkspaceScoping:
    def test_session_requires_workspace_id(self, client, workspace):
        response = client.get("/api/tickets", headers={"X-Authenticated-User": OWNER_ID})
        assert response.status_code == 400
        assert response.json() == {"error": "workspaceId is required"}

    def test_workspace_id_from_query(self, client, workspace):
        response = client.get(
            "/api/workspace",
            params={"workspaceId": str(workspace.id)},
            headers={"X-Authenticated-User": OWNER_ID},
        )
        assert response.status_code == 200
        assert response.json()["role"] == "owner"

    def test_non_member_gets_not_found(self, client, workspace):
        response = client.get(
            "/api/workspace",
            headers={"X-Authenticated-User": "stranger", "X-Workspace-Id": str(workspace.id)},
        )
        assert response.status_code == 404
        assert response.json() == {"error": "Workspace not found"}

    def test_api_key_for_other_workspace(self, client, agent_headers, other_workspace):
        response = client.get("/api/workspace", headers={**agent_headers, "X-Workspace-Id": str(other_workspace.id)})
        assert response.status_code == 404

    def test_malformed_workspace_id(self, client, workspace):
        response = client.get(
            "/api/workspace", headers={"X-Authenticated-User": OWNER_ID, "X-Workspace-Id": "nope"}
        )
        assert response.status_code == 404


class TestWorkspaceSettings:
    def test_get(self, client, agent_headers):
        body = client.get("/api/workspace", headers=agent_headers).json()
        assert body["name"] == "Engineering"
        assert body["prefix"] == "ENG"
        assert body["role"] is None

    def test_update_prefix(self, client, owner_headers, agent_headers):
        response = client.patch("/api/workspace", json={"prefix": "core"}, headers=owner_headers)
        assert response.json()["prefix"] == "CORE"

        ticket = client.post("/api/tickets", json={"title": "T"}, headers=agent_headers).json()["ticket"]
        assert ticket["identifier"] == "CORE-1"

    def test_invalid_prefix(self, client, owner_headers):
        response = client.patch("/api/workspace", json={"prefix": "A1"}, headers=owner_headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid prefix"}

    def test_member_cannot_update(self, client, member_headers):
        response = client.patch("/api/workspace", json={"name": "Mine"}, headers=member_headers)
        assert response.status_code == 403

    def test_backfill(self, client, owner_headers):
        response = client.post("/api/workspace/backfill", headers=owner_headers)
        assert response.json() == {"ticketsScanned": 0, "ticketsRepaired": 0, "workspaceFieldsRepaired": 0}

    def test_reset_tickets(self, client, owner_headers, agent_headers):
        parent = client.post("/api/tickets", json={"title": "Parent"}, headers=agent_headers).json()["ticket"]
        child = client.post(
            "/api/tickets", json={"title": "Child", "parentId": parent["id"]}, headers=agent_headers
        ).json()["ticket"]
        client.post(f"/api/tickets/{child['id']}/comments", json={"body": "note"}, headers=agent_headers)

        response = client.post("/api/workspace/reset-tickets", headers=owner_headers)

        assert response.json() == {"success": True, "deleted": 2}
        assert client.get("/api/tickets", headers=agent_headers).json()["tickets"] == []
        assert client.get("/api/workspace", headers=agent_headers).json()["ticketCounter"] == 0
        ticket = client.post("/api/tickets", json={"title": "Fresh"}, headers=agent_headers).json()["ticket"]
        assert ticket["identifier"] == "ENG-1"

    def test_reset_tickets_requires_admin(self, client, member_headers, agent_headers):
        response = client.post("/api/workspace/reset-tickets", headers=member_headers)
        assert response.status_code == 403
        assert response.json() == {"error": "Insufficient workspace role"}

        response = client.post("/api/workspace/reset-tickets", headers=agent_headers)
        assert response.status_code == 403
        assert response.json() == {"error": "Admin API key required"}


class TestWorkspaceDocs:
    def test_docs_history(self, client, agent_headers, owner_headers, workspace):
        client.patch("/api/workspace/docs", json={"docs": "v1"}, headers=agent_headers)
        response = client.patch("/api/workspace/docs", json={"docs": "v2"}, headers=owner_headers)

        assert response.json() == {"workspaceId": str(workspace.id), "name": "Engineering", "docs": "v2"}

        versions = client.get("/api/workspace/docs/history", headers=owner_headers).json()["versions"]
        assert [v["docs"] for v in versions] == ["v2", "v1"]
        assert [v["actorType"] for v in versions] == ["user", "agent"]

    def test_unchanged_docs_add_no_version(self, client, agent_headers):
        client.patch("/api/workspace/docs", json={"docs": "same"}, headers=agent_headers)
        client.patch("/api/workspace/docs", json={"docs": "same"}, headers=agent_headers)
        versions = client.get("/api/workspace/docs/history", headers=agent_headers).json()["versions"]
        assert len(versions) == 1

    def test_docs_required(self, client, agent_headers):
        response = client.patch("/api/workspace/docs", json={}, headers=agent_headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid docs"}


class TestMembers:
    def test_add_and_list(self, client, owner_headers):
        added = client.post("/api/workspace/members", json={"userId": MEMBER_ID}, headers=owner_headers)
        assert added.status_code == 201
        assert added.json()["role"] == "member"

        members = client.get("/api/workspace/members", headers=owner_headers).json()["members"]
        assert [(m["userId"], m["role"]) for m in members] == [(OWNER_ID, "owner"), (MEMBER_ID, "member")]

    def test_profile_fields_from_headers(self, client, workspace):
        headers = {
            "X-Authenticated-User": OWNER_ID,
            "X-Authenticated-Email": "Owner@Example.com",
            "X-Authenticated-Name": "Olive Owner",
            "X-Workspace-Id": str(workspace.id),
        }
        [member] = client.get("/api/workspace/members", headers=headers).json()["members"]
        assert member["email"] == "owner@example.com"
        assert member["name"] == "Olive Owner"

    def test_duplicate_member(self, client, owner_headers, member_headers):
        response = client.post("/api/workspace/members", json={"userId": MEMBER_ID}, headers=owner_headers)
        assert response.json() == {"error": "User is already a member of this workspace"}

    def test_last_owner_protected(self, client, owner_headers):
        demote = client.patch(f"/api/workspace/members/{OWNER_ID}", json={"role": "member"}, headers=owner_headers)
        assert demote.json() == {"error": "Cannot demote the last owner of a workspace"}

        remove = client.delete(f"/api/workspace/members/{OWNER_ID}", headers=owner_headers)
        assert remove.json() == {"error": "Cannot remove the last owner of a workspace"}

    def test_promote_then_remove(self, client, owner_headers, member_headers):
        promoted = client.patch(
            f"/api/workspace/members/{MEMBER_ID}", json={"role": "admin"}, headers=owner_headers
        )
        assert promoted.json()["role"] == "admin"

        assert client.delete(f"/api/workspace/members/{MEMBER_ID}", headers=owner_headers).json() == {
            "success": True
        }
        assert client.get("/api/workspace", headers=member_headers).status_code == 404

    def test_unknown_member(self, client, owner_headers):
        response = client.delete("/api/workspace/members/nobody", headers=owner_headers)
        assert response.status_code == 404
        assert response.json() == {"error": "Membership not found"}


class TestWorkspaceLifecycle:
    def test_create_and_list(self, client, workspace):
        headers = {"X-Authenticated-User": OWNER_ID}
        created = client.post("/api/workspaces", json={"name": "Design Ops"}, headers=headers)

        assert created.status_code == 201
        assert created.json()["role"] == "owner"
        assert created.json()["prefix"] == "DO"

        names = [w["name"] for w in client.get("/api/workspaces", headers=headers).json()["workspaces"]]
        assert names == ["Engineering", "Design Ops"]

    def test_api_keys_cannot_create_workspaces(self, client, agent_headers):
        response = client.post("/api/workspaces", json={"name": "Rogue"}, headers=agent_headers)
        assert response.status_code == 401
        assert response.json() == {"error": "User session required"}

    def test_name_required(self, client):
        response = client.post("/api/workspaces", json={"name": "  "}, headers={"X-Authenticated-User": OWNER_ID})
        assert response.json() == {"error": "Name is required"}

    def test_delete(self, client, workspace, agent_headers):
        client.post("/api/tickets", json={"title": "T"}, headers=agent_headers)

        response = client.delete(f"/api/workspaces/{workspace.id}", headers={"X-Authenticated-User": OWNER_ID})

        assert response.json() == {"success": True}
        assert client.get("/api/tickets", headers=agent_headers).status_code == 401

    def test_admin_cannot_delete(self, client, db, workspace):
        from kanban_core import crud
        from kanban_core.models import MemberRole

        crud.add_member(db, workspace.id, MEMBER_ID, MemberRole.ADMIN)
        response = client.delete(f"/api/workspaces/{workspace.id}", headers={"X-Authenticated-User": MEMBER_ID})
        assert response.status_code == 403
        assert response.json() == {"error": "Only workspace owners can delete workspaces"}

    def test_api_key_cannot_delete(self, client, workspace, admin_headers):
        response = client.delete(f"/api/workspaces/{workspace.id}", headers=admin_headers)
        assert response.status_code == 403
        assert response.json() == {"error": "API keys cannot delete workspaces"}


class TestMe:
    def test_api_key_caller(self, client, agent_key, agent_headers, workspace):
        body = client.get("/api/me", headers={**agent_headers, "X-Agent-Session-Id": "run-1"}).json()
        assert body["type"] == "apiKey"
        assert body["workspaceId"] == str(workspace.id)
        assert body["keyRole"] == "agent"
        assert body["ownerId"] == "session:run-1"
        assert body["ownerType"] == "agent"

    def test_session_caller(self, client):
        body = client.get("/api/me", headers={"X-Authenticated-User": "user-9"}).json()
        assert body["type"] == "session"
        assert body["userId"] == "user-9"
        assert body["displayName"] == "user-9"

    def test_malformed_agent_session(self, client, agent_headers):
        response = client.get("/api/me", headers={**agent_headers, "X-Agent-Session-Id": "bad id!"})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid X-Agent-Session-Id"}
