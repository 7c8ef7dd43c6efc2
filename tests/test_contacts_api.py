"""Tests for the /api/contacts resource."""

import uuid

from models import Contact

URL = "/api/contacts"


class TestContactsAuth:
    def test_missing_token(self, client):
        resp = client.get(URL)
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Unauthorized: Invalid or missing authentication token"

    def test_options_preflight_needs_no_token(self, client):
        resp = client.options(URL)
        assert resp.status_code == 204
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert "Authorization" in resp.headers["Access-Control-Allow-Headers"]

    def test_unsupported_method(self, client, auth_headers):
        resp = client.patch(URL, headers=auth_headers, json={})
        assert resp.status_code == 405
        assert resp.get_json()["error"] == "HTTP method PATCH is not supported on this endpoint."

    def test_request_id_echoed(self, client, auth_headers):
        resp = client.get(URL, headers={**auth_headers, "X-Request-ID": "req-42"})
        assert resp.headers["X-Request-ID"] == "req-42"


class TestContactsRead:
    def test_list_only_own_contacts(self, client, auth_headers, add_contact):
        add_contact("Jane", "Doe")
        add_contact("Eve", "Other", owner=str(uuid.uuid4()))
        body = client.get(URL, headers=auth_headers).get_json()
        assert body["total"] == 1
        assert body["contacts"][0]["first_name"] == "Jane"

    def test_get_by_id(self, client, auth_headers, add_contact):
        contact = add_contact("Jane", "Doe")
        resp = client.get(f"{URL}?id={contact.contact_id}", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.get_json()["contact"]["last_name"] == "Doe"

    def test_get_other_users_contact_is_404(self, client, auth_headers, add_contact):
        contact = add_contact("Eve", "Other", owner=str(uuid.uuid4()))
        resp = client.get(f"{URL}?id={contact.contact_id}", headers=auth_headers)
        assert resp.status_code == 404

    def test_malformed_id(self, client, auth_headers):
        resp = client.get(f"{URL}?id=123", headers=auth_headers)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid contact id format"

    def test_search_matches_all_words(self, client, auth_headers, add_contact):
        add_contact("Jane", "Doe", company="Acme")
        add_contact("Jane", "Smith")
        body = client.get(f"{URL}?search=jane%20acme", headers=auth_headers).get_json()
        assert [c["last_name"] for c in body["contacts"]] == ["Doe"]

    def test_search_treats_wildcards_literally(self, client, auth_headers, add_contact):
        add_contact("Jane", "Doe")
        body = client.get(f"{URL}?search=%25", headers=auth_headers).get_json()
        assert body["total"] == 0


class TestContactsWrite:
    def test_create(self, client, auth_headers, db, user_id):
        resp = client.post(URL, headers=auth_headers, json={"first_name": "Jane", "email": "j@example.com",
                                                             "user_id": "spoofed"})
        assert resp.status_code == 201
        contact = resp.get_json()["contact"]
        assert contact["user_id"] == user_id
        assert db.query(Contact).filter_by(user_id=user_id).count() == 1

    def test_create_requires_first_name(self, client, auth_headers):
        resp = client.post(URL, headers=auth_headers, json={"last_name": "Doe"})
        assert resp.status_code == 400
        assert "first_name" in resp.get_json()["error"]

    def test_create_rejects_non_json(self, client, auth_headers):
        resp = client.post(URL, headers=auth_headers, data="nope", content_type="text/plain")
        assert resp.status_code == 400

    def test_create_clears_search_cache(self, client, auth_headers, app):
        client.get(f"{URL}?search=jane", headers=auth_headers)
        assert len(app.extensions["search_cache"]) == 1
        client.post(URL, headers=auth_headers, json={"first_name": "Jane"})
        assert len(app.extensions["search_cache"]) == 0
        body = client.get(f"{URL}?search=jane", headers=auth_headers).get_json()
        assert body["total"] == 1

    def test_partial_update(self, client, auth_headers, add_contact, db):
        contact = add_contact("Jane", "Doe", company="Acme", notes="keep")
        resp = client.put(f"{URL}?id={contact.contact_id}", headers=auth_headers, json={"company": "Globex"})
        assert resp.status_code == 200
        db.expire_all()
        stored = db.get(Contact, contact.contact_id)
        assert stored.company == "Globex"
        assert stored.notes == "keep"
        assert stored.updated_at is not None

    def test_update_with_no_fields(self, client, auth_headers, add_contact):
        contact = add_contact("Jane")
        resp = client.put(f"{URL}?id={contact.contact_id}", headers=auth_headers, json={"contact_id": "x"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "No updatable fields provided"

    def test_update_rejects_null_first_name(self, client, auth_headers, add_contact, db):
        contact = add_contact("Jane", "Doe")
        resp = client.put(f"{URL}?id={contact.contact_id}", headers=auth_headers, json={"first_name": None})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "first_name cannot be empty"
        db.expire_all()
        assert db.get(Contact, contact.contact_id).first_name == "Jane"

    def test_update_missing_contact(self, client, auth_headers):
        resp = client.put(f"{URL}?id={uuid.uuid4()}", headers=auth_headers, json={"company": "x"})
        assert resp.status_code == 404

    def test_delete(self, client, auth_headers, add_contact, db):
        contact = add_contact("Jane")
        resp = client.delete(f"{URL}?id={contact.contact_id}", headers=auth_headers)
        assert resp.get_json() == {"success": True, "message": "Contact deleted successfully",
                                   "contact_id": contact.contact_id}
        assert db.query(Contact).count() == 0

    def test_delete_requires_id(self, client, auth_headers):
        resp = client.delete(URL, headers=auth_headers)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Missing contact id"
