"""API tests for feature docs."""


def _create_doc(client, headers, title="Checkout flow", **fields):
    response = client.post("/api/docs", json={"title": title, **fields}, headers=headers)
    assert response.status_code == 201, response.json()
    return response.json()


class TestDocs:
    def test_create_and_get(self, client, agent_headers):
        body = _create_doc(client, agent_headers, content="  # Goals  ")

        assert body["success"] is True
        assert body["doc"]["id"] == body["id"]
        assert body["doc"]["number"] == 1
        assert body["doc"]["status"] == "unclaimed"

        doc = client.get(f"/api/docs/{body['id']}", headers=agent_headers).json()
        assert doc["content"] == "# Goals"

    def test_title_required(self, client, agent_headers):
        response = client.post("/api/docs", json={"content": "x"}, headers=agent_headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Title is required"}

    def test_list_returns_previews(self, client, agent_headers):
        _create_doc(client, agent_headers, content="a" * 500)
        [doc] = client.get("/api/docs", headers=agent_headers).json()["docs"]
        assert "content" not in doc
        assert len(doc["preview"]) == 160

    def test_update_and_delete(self, client, agent_headers):
        doc_id = _create_doc(client, agent_headers)["id"]

        updated = client.patch(f"/api/docs/{doc_id}", json={"status": "done"}, headers=agent_headers)
        assert updated.json() == {"success": True}
        assert client.get(f"/api/docs/{doc_id}", headers=agent_headers).json()["status"] == "done"

        empty = client.patch(f"/api/docs/{doc_id}", json={}, headers=agent_headers)
        assert empty.json() == {"error": "At least one field is required"}

        assert client.delete(f"/api/docs/{doc_id}", headers=agent_headers).json() == {"success": True}
        assert client.get(f"/api/docs/{doc_id}", headers=agent_headers).status_code == 404

    def test_update_rejects_bad_order_and_archived(self, client, agent_headers):
        doc_id = _create_doc(client, agent_headers)["id"]

        response = client.patch(
            f"/api/docs/{doc_id}",
            content=b'{"order": Infinity}',
            headers={**agent_headers, "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid order"}

        response = client.patch(f"/api/docs/{doc_id}", json={"archived": "yes"}, headers=agent_headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid archived"}

        doc = client.get(f"/api/docs/{doc_id}", headers=agent_headers).json()
        assert doc["archived"] is False
        assert doc["updatedAt"].endswith("Z")

    def test_parent_doc_cycle(self, client, agent_headers):
        parent = _create_doc(client, agent_headers, "Parent")["id"]
        child = _create_doc(client, agent_headers, "Child", parentDocId=parent)["id"]

        response = client.patch(f"/api/docs/{parent}", json={"parentDocId": child}, headers=agent_headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Feature doc cannot be moved under its own descendant"}

    def test_archiving_cascades_to_tickets(self, client, agent_headers):
        doc_id = _create_doc(client, agent_headers)["id"]
        client.post("/api/tickets", json={"title": "Build cart", "docId": doc_id}, headers=agent_headers)

        client.patch(f"/api/docs/{doc_id}", json={"archived": True}, headers=agent_headers)

        assert client.get("/api/tickets", headers=agent_headers).json()["tickets"] == []
        live_docs = client.get("/api/docs", params={"includeArchived": "false"}, headers=agent_headers)
        assert live_docs.json()["docs"] == []

    def test_deleting_doc_ungroups_tickets(self, client, agent_headers):
        doc_id = _create_doc(client, agent_headers)["id"]
        ticket = client.post(
            "/api/tickets", json={"title": "Build cart", "docId": doc_id}, headers=agent_headers
        ).json()["ticket"]

        client.delete(f"/api/docs/{doc_id}", headers=agent_headers)

        assert client.get(f"/api/tickets/{ticket['id']}", headers=agent_headers).json()["docId"] is None

    def test_other_workspace_doc_is_not_found(self, client, agent_headers, other_agent_headers):
        doc_id = _create_doc(client, agent_headers)["id"]
        for method in ("GET", "PATCH", "DELETE"):
            kwargs = {"json": {"title": "x"}} if method == "PATCH" else {}
            response = client.request(method, f"/api/docs/{doc_id}", headers=other_agent_headers, **kwargs)
            assert response.status_code == 404
            assert response.json() == {"error": "Doc not found"}
