from models import UserAccount

URL = "/api/settings"


def _post(client, headers, **body):
    return client.post(URL, headers=headers, json=body)


class TestSettings:
    def test_get_settings_for_new_user(self, client, auth_headers):
        body = _post(client, auth_headers, action="get_settings").get_json()
        assert body["user_metadata"] == {}
        assert body["profile"] == {"first_name": None, "last_name": None, "email": None}

    def test_privacy_written_under_both_names(self, client, auth_headers, db, user_id):
        resp = _post(client, auth_headers, action="update_privacy_settings",
                     settings={"profile_visibility": "private", "unknown_key": 1})
        assert resp.status_code == 200
        assert resp.get_json()["updatedSettings"] == {
            "privacy_profile_visibility": "private", "profile_visibility": "private"}
        stored = db.get(UserAccount, user_id).user_metadata
        assert stored["privacy_profile_visibility"] == "private"
        assert "unknown_key" not in stored

    def test_updates_merge_with_existing_metadata(self, client, auth_headers, db, user_id):
        db.add(UserAccount(id=user_id, email="me@example.com", user_metadata={"first_name": "Pat", "theme": "dark"}))
        db.commit()

        _post(client, auth_headers, action="UpdateNotificationPreferences",
              settings={"notifications_in_app": False})
        body = _post(client, auth_headers, action="update_integration_settings",
                     settings={"zoom_default_meeting_type": "instant"}).get_json()

        assert body["user_metadata"] == {
            "first_name": "Pat", "theme": "dark", "notifications_in_app": False,
            "integrations_zoom_default_meeting_type": "instant",
        }
        profile = _post(client, auth_headers, action="get_settings").get_json()["profile"]
        assert profile == {"first_name": "Pat", "last_name": None, "email": "me@example.com"}

    def test_profile_data(self, client, auth_headers):
        body = _post(client, auth_headers, action="update_profile_data",
                     payload={"first_name": "Sam", "last_name": "Lee"}).get_json()
        assert body["updatedSettings"] == {"first_name": "Sam", "last_name": "Lee"}
        assert body["user_metadata"]["last_name"] == "Lee"

    def test_profile_data_requires_object(self, client, auth_headers):
        assert _post(client, auth_headers, action="update_profile_data", payload="x").status_code == 400

    def test_settings_object_required(self, client, auth_headers):
        assert _post(client, auth_headers, action="update_security_settings").status_code == 400

    def test_unknown_action(self, client, auth_headers):
        resp = _post(client, auth_headers, action="drop_everything")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Unknown action: drop_everything"

    def test_requires_auth(self, client):
        assert client.post(URL, json={"action": "get_settings"}).status_code == 401
