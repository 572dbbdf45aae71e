"""
Tests for document routes and the usage limits they enforce
"""
from signflow.models import MonthlyUsage
from tests.conftest import auth_headers


def create(client, headers, title="Lease agreement"):
    return client.post("/document", json={"title": title}, headers=headers)


def test_create_and_fetch_document(client, make_user):
    headers = auth_headers(make_user())

    created = create(client, headers)
    fetched = client.get(f"/document/{created.json()['id']}", headers=headers)

    assert created.status_code == 201
    assert fetched.status_code == 200
    assert fetched.json()["status"] == "draft"

def test_monthly_creation_limit_blocks_sixth_document(client, make_user):
    headers = auth_headers(make_user())
    for i in range(5):
        assert create(client, headers, f"doc {i}").status_code == 201

    response = create(client, headers, "one too many")

    assert response.status_code == 403
    assert "5/5" in response.json()["detail"]

def test_active_document_limit_blocks_fourth_publication(client, make_user):
    headers = auth_headers(make_user())
    ids = [create(client, headers, f"doc {i}").json()["id"] for i in range(4)]
    for doc_id in ids[:3]:
        assert client.post(f"/document/{doc_id}/publish", headers=headers).status_code == 200

    response = client.post(f"/document/{ids[3]}/publish", headers=headers)

    assert response.status_code == 403
    assert "3/3" in response.json()["detail"]

def test_publishing_twice_conflicts(client, make_user):
    headers = auth_headers(make_user())
    doc_id = create(client, headers).json()["id"]
    client.post(f"/document/{doc_id}/publish", headers=headers)

    response = client.post(f"/document/{doc_id}/publish", headers=headers)

    assert response.status_code == 409

def test_documents_are_private_to_their_owner(client, make_user):
    owner = auth_headers(make_user("owner@example.com"))
    other = auth_headers(make_user("other@example.com"))
    doc_id = create(client, owner).json()["id"]

    assert client.get(f"/document/{doc_id}", headers=other).status_code == 404
    assert client.delete(f"/document/{doc_id}", headers=other).status_code == 404

def test_delete_gives_back_monthly_allowance(client, db, make_user):
    user = make_user()
    headers = auth_headers(user)
    doc_id = create(client, headers).json()["id"]

    assert client.delete(f"/document/{doc_id}", headers=headers).status_code == 200

    db.expire_all()
    assert db.query(MonthlyUsage).filter_by(user_id=user.id).one().documents_created == 0

def test_dashboard_lists_documents_and_limits(client, make_user):
    headers = auth_headers(make_user())
    create(client, headers, "NDA")

    response = client.get("/dashboard", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["plan"] == "Basic"
    assert body["limits"]["currentMonthlyCreated"] == 1
    assert [d["title"] for d in body["documents"]] == ["NDA"]

def test_anonymous_document_request_is_redirected(client):
    response = client.post("/document", json={"title": "x"}, follow_redirects=False)

    assert response.status_code == 307
