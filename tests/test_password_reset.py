from unittest.mock import MagicMock

import pytest
from werkzeug.security import check_password_hash

from auth import decode_token, issue_token
from handlers.password_reset import validate_password
from models import UserAccount

URL = "/api/reset-password"
GOOD_PASSWORD = "Blue-Harbor-42x"


@pytest.fixture
def account(db, user_id):
    acct = UserAccount(id=user_id, email="reset@example.com", user_metadata={})
    db.add(acct)
    db.commit()
    return acct


@pytest.fixture
def reset_token(settings, user_id):
    return issue_token(settings, user_id, 600, purpose="password_reset")


class TestValidatePassword:
    def test_strong_password(self):
        assert validate_password(GOOD_PASSWORD) == []

    @pytest.mark.parametrize("password, problem", [
        ("Short1!", "at least 12 characters"),
        ("alllowercase123!", "uppercase"),
        ("ALLUPPERCASE123!", "lowercase"),
        ("NoDigitsHere!!", "number"),
        ("NoSpecials12345", "special character"),
        ("Password123!xyz", "common patterns"),
    ])
    def test_policy(self, password, problem):
        assert any(problem in p for p in validate_password(password))


class TestResetPassword:
    def test_success(self, client, account, reset_token, db, user_id):
        resp = client.post(URL, json={"password": GOOD_PASSWORD, "token": reset_token})
        body = resp.get_json()
        assert resp.status_code == 200
        assert body["success"] is True
        assert body["userId"] == user_id
        assert body["toast"]["type"] == "success"
        db.expire_all()
        stored = db.get(UserAccount, user_id)
        assert check_password_hash(stored.password_hash, GOOD_PASSWORD)
        assert stored.is_verified is True

    def test_weak_password(self, client, account, reset_token):
        resp = client.post(URL, json={"password": "weak", "token": reset_token})
        assert resp.status_code == 400
        assert resp.get_json()["toast"]["type"] == "error"

    def test_missing_token(self, client):
        resp = client.post(URL, json={"password": GOOD_PASSWORD})
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Missing required field: token is required."

    def test_access_token_not_accepted(self, client, account, make_token, user_id):
        resp = client.post(URL, json={"password": GOOD_PASSWORD, "token": make_token(user_id)})
        assert resp.status_code == 401

    def test_expired_token(self, client, account, settings, user_id):
        token = issue_token(settings, user_id, -60, purpose="password_reset")
        assert client.post(URL, json={"password": GOOD_PASSWORD, "token": token}).status_code == 401

    def test_unknown_user(self, client, reset_token):
        resp = client.post(URL, json={"password": GOOD_PASSWORD, "token": reset_token})
        assert resp.status_code == 404

    def test_invalid_json(self, client):
        resp = client.post(URL, data="{", content_type="application/json")
        assert resp.status_code == 400


class TestRequestReset:
    def test_token_delivered_through_sender(self, app, client, account, settings, user_id):
        sender = MagicMock()
        app.extensions["reset_token_sender"] = sender
        resp = client.post(f"{URL}/request", json={"email": "Reset@Example.com"})
        assert resp.status_code == 200
        assert "token" not in resp.get_json()

        email, token = sender.call_args.args
        assert email == "reset@example.com"
        assert decode_token(token, settings, purpose="password_reset")["sub"] == user_id

    def test_unknown_email_same_response(self, app, client, account):
        sender = MagicMock()
        app.extensions["reset_token_sender"] = sender
        known = client.post(f"{URL}/request", json={"email": "reset@example.com"}).get_json()
        unknown = client.post(f"{URL}/request", json={"email": "nobody@example.com"}).get_json()
        assert known == unknown
        assert sender.call_count == 1
