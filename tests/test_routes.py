import json

import pytest
from fastapi.testclient import TestClient

from clausesync.database.schemas import SearchResult
from clausesync.main import create_app
from clausesync.routes import dependencies
from clausesync.routes.dependencies import build_services, get_services
from clausesync.services.batch_extraction import BatchExtractionDriver
from clausesync.utils.file_handler import FileHandler
from conftest import FakeExtractor, make_clause


class FakePdfPages:
    """Every uploaded file reads as two pages"""

    async def extract_pages(self, document):
        return [f"--- PAGE 1 ---\n{document}", f"--- PAGE 2 ---\n{document}"]


class FakeSmartSearch:
    async def search(self, query, clauses):
        return [SearchResult(clause_id=f"C.{c.clause_number}", clause_number=c.clause_number,
                             title=c.clause_title, relevance_score=0.9, reason=query)
                for c in clauses[:1]]


@pytest.fixture
def extractor():
    return FakeExtractor([
        [make_clause("1", title="Definitions", text="Terms used in Clause 2")],
        [make_clause("2", title="Payment"), make_clause("1.1", title="Interpretation")],
    ])


@pytest.fixture
def services(session_factory, archive, migration_state, extractor, tmp_path):
    return build_services(
        session_factory=session_factory,
        archive=archive,
        state=migration_state,
        driver=BatchExtractionDriver(extractor, FakePdfPages(), chunk_pages=2),
        smart_search=FakeSmartSearch(),
        file_handler=FileHandler(tmp_path / "uploads"),
    )


@pytest.fixture
def client(services):
    app = create_app(startup=False)
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as test_client:
        yield test_client


def signup(client, email):
    response = client.post("/api/auth/signup", json={"email": email, "password": "secret1"})
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.json()['token']}"}


def upload_pdf(client, headers):
    return client.post(
        "/api/extraction/document",
        files={"file": ("contract.pdf", b"%PDF-1.4 test", "application/pdf")},
        headers=headers,
    )


def test_signup_and_me(client):
    headers = signup(client, "admin@example.com")
    me = client.get("/api/auth/me", headers=headers).json()
    assert me["role"] == "admin"
    assert me["capabilities"] == {"can_edit": True, "can_delete": True, "can_upload": True}

    assert client.get("/api/auth/me").status_code == 401
    assert client.post("/api/auth/login", json={"email": "admin@example.com", "password": "nope"}).status_code == 401


def test_document_extraction_finalizes_contract(client):
    headers = signup(client, "admin@example.com")
    body = upload_pdf(client, headers).json()

    assert body["status"] == "success"
    assert body["contract_id"] == "Definitions"
    assert [c["clause_number"] for c in body["clauses"]] == ["1", "1.1", "2"]
    assert body["clauses"][0]["clause_text"] == 'Terms used in <a href="#clause-2">Clause 2</a>'

    clauses = client.get("/api/contracts/active/clauses", headers=headers).json()
    assert clauses["contract_id"] == "Definitions"
    assert clauses["total"] == 3
    assert clauses["groups"] == ["1", "2"]


def test_wrong_upload_type_is_rejected(client):
    headers = signup(client, "admin@example.com")
    response = client.post(
        "/api/extraction/document",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        headers=headers,
    )
    assert response.status_code == 400


def test_pending_user_is_blocked(client):
    signup(client, "admin@example.com")
    headers = signup(client, "new@example.com")
    assert client.get("/api/contracts", headers=headers).status_code == 403
    assert upload_pdf(client, headers).status_code == 403


def test_role_management(client):
    admin = signup(client, "admin@example.com")
    user = signup(client, "new@example.com")
    users = client.get("/api/users", headers=admin).json()["users"]
    uid = next(u["uid"] for u in users if u["email"] == "new@example.com")

    assert client.get("/api/users", headers=user).status_code == 403
    response = client.put(f"/api/users/{uid}/role", json={"role": "viewer"}, headers=admin)
    assert response.json()["role"] == "viewer"
    assert client.get("/api/contracts", headers=user).status_code == 200


def test_clause_crud_and_filters(client):
    headers = signup(client, "admin@example.com")
    upload_pdf(client, headers)

    created = client.post("/api/contracts/active/clauses", headers=headers, json={
        "clause_number": "15", "clause_title": "Schedule", "general_text": "Schedule of rates"
    })
    assert created.status_code == 201

    filtered = client.get("/api/contracts/active/clauses", headers=headers,
                          params={"group": "15"}).json()
    assert [c["clause_number"] for c in filtered["clauses"]] == ["15"]

    edited = make_clause("2", title="Payment Terms").model_dump()
    assert client.put("/api/contracts/active/clauses", headers=headers, json=edited).status_code == 200

    assert client.delete("/api/contracts/active/clauses/1.1", headers=headers).json()["clause_id"] == "C.1.1"
    assert client.delete("/api/contracts/active/clauses/1.1", headers=headers).status_code == 404

    found = client.get("/api/contracts/active/clauses", headers=headers, params={"q": "payment terms"}).json()
    assert [c["clause_number"] for c in found["clauses"]] == ["2"]


def test_export_then_import(client):
    headers = signup(client, "admin@example.com")
    upload_pdf(client, headers)

    exported = client.get("/api/contracts/Definitions/export", headers=headers)
    assert exported.status_code == 200
    assert "Definitions_Backup_" in exported.headers["content-disposition"]
    backup = exported.json()
    backup["id"] = "copy"
    backup["name"] = "Copy"

    imported = client.post(
        "/api/contracts/import",
        files={"file": ("copy.json", json.dumps(backup).encode(), "application/json")},
        headers=headers,
    ).json()
    assert imported["contract_id"] == "copy"
    assert (imported["imported"], imported["total"]) == (3, 3)
    assert [c["clause_number"] for c in imported["clauses"]] == ["1", "1.1", "2"]

    contracts = client.get("/api/contracts", headers=headers).json()
    assert contracts["active_contract_id"] == "copy"
    assert contracts["total"] == 2


def test_import_rejects_empty_file(client):
    headers = signup(client, "admin@example.com")
    response = client.post(
        "/api/contracts/import",
        files={"file": ("x.json", json.dumps({"name": "X", "clauses": []}).encode(), "application/json")},
        headers=headers,
    )
    assert response.status_code == 400
    assert "no clauses" in response.json()["error"]


def test_text_extraction_needs_input(client):
    headers = signup(client, "admin@example.com")
    response = client.post("/api/extraction/text", json={"general": " ", "particular": ""}, headers=headers)
    assert response.status_code == 400


def test_smart_search(client):
    headers = signup(client, "admin@example.com")
    upload_pdf(client, headers)
    results = client.post("/api/contracts/active/search", json={"query": "payment"}, headers=headers).json()
    assert results["results"][0]["clause_number"] == "1"


def test_session_reset(client):
    headers = signup(client, "admin@example.com")
    state = client.post("/api/session/reset", headers=headers).json()
    assert state["status"] == "idle"
    assert state["progress"] == 0


def test_live_updates_over_websocket(client):
    headers = signup(client, "admin@example.com")
    upload_pdf(client, headers)
    token = headers["Authorization"].split(" ", 1)[1]

    with client.websocket_connect(f"/api/contracts/Definitions/live?token={token}") as websocket:
        first = websocket.receive_json()
        assert [c["clause_number"] for c in first["clauses"]] == ["1", "1.1", "2"]

        client.post("/api/contracts/active/clauses", headers=headers, json={
            "clause_number": "0.5", "general_text": "Preamble"
        })
        update = websocket.receive_json()
        assert [c["clause_number"] for c in update["clauses"]] == ["0.5", "1", "1.1", "2"]
        assert update["revision"] > first["revision"]


def test_health(client):
    body = client.get("/api/System_Health/health").json()
    assert body["services"]["database"] == "connected"
    assert body["services"]["extraction"] == "ready"


def test_closing_live_socket_unsubscribes(client, services):
    headers = signup(client, "admin@example.com")
    upload_pdf(client, headers)
    token = headers["Authorization"].split(" ", 1)[1]
    feed = services.store.feed
    before = feed.subscriber_count("Definitions")

    with client.websocket_connect(f"/api/contracts/Definitions/live?token={token}") as websocket:
        websocket.receive_json()
        assert feed.subscriber_count("Definitions") == before + 1

    assert feed.subscriber_count("Definitions") == before


@pytest.mark.asyncio
async def test_shutdown_ends_open_sessions(services, monkeypatch):
    monkeypatch.setattr(dependencies, "_services", services)
    result = await services.auth.sign_up("admin@example.com", "secret1")
    ctx = await services.registry.context_for(result.token)

    await dependencies.shutdown_services()

    assert not ctx.alive
    assert services.registry.get(result.token) is None
    assert dependencies._services is None
