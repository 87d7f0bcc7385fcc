# Tests for the token endpoint and the full authorization code flow.

import pytest
from fastapi.testclient import TestClient

from codegrant.errors import StoreError
from codegrant.main import create_app
from codegrant.settings import Settings
from codegrant.stores import InMemoryGrantStore

from tests.conftest import code_from_location


def _error_id(resp):
    assert resp.status_code == 400
    assert resp.json()["error"]["type"] == "OAuthException"
    return resp.json()["error"]["message"].split(":")[0]


@pytest.fixture
def code(login):
    return code_from_location(login().headers["location"])


@pytest.fixture
def redeem(client, conf):
    def _redeem(auth_code, headers=None, **overrides):
        form = {
            "grant_type": "authorization_code",
            "client_id": "C1",
            "code": auth_code,
            "redirect_uri": "https://c1/cb",
            "client_secret": "s1",
        }
        form.update(overrides)
        form = {k: v for k, v in form.items() if v is not None}
        return client.post(conf.TOKEN_URL, data=form, headers=headers or {})

    return _redeem


class TestTokenEndpoint:
    def test_scenario_redeem_then_replay(self, redeem, code):
        resp = redeem(code)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/json")
        assert resp.headers["cache-control"] == "no-store"
        assert resp.json() == {"access_token": "U1,C1"}

        assert _error_id(redeem(code)) == "invalid_grant"

    def test_secret_in_basic_header(self, redeem, code):
        resp = redeem(code, headers={"Authorization": "Basic s1"}, client_secret=None)
        assert resp.status_code == 200

    @pytest.mark.parametrize("field_secret", ["s1", "other"])
    def test_secret_twice_rejected(self, redeem, code, field_secret):
        resp = redeem(code, headers={"Authorization": "Basic s1"}, client_secret=field_secret)
        assert _error_id(resp) == "invalid_request"

    def test_secret_missing(self, redeem, code):
        assert _error_id(redeem(code, client_secret=None)) == "invalid_request"

    def test_wrong_secret(self, redeem, code):
        assert _error_id(redeem(code, client_secret="s2")) == "invalid_client"

    def test_wrong_header_secret(self, redeem, code):
        resp = redeem(code, headers={"Authorization": "Basic s2"}, client_secret=None)
        assert _error_id(resp) == "invalid_client"

    def test_unknown_client(self, redeem, code):
        assert _error_id(redeem(code, client_id="nobody")) == "invalid_client"

    @pytest.mark.parametrize("missing", ["grant_type", "client_id", "code", "redirect_uri"])
    def test_missing_param(self, redeem, code, missing):
        assert _error_id(redeem(code, **{missing: None})) == "invalid_request"

    def test_unsupported_grant_type(self, redeem, code):
        assert _error_id(redeem(code, grant_type="password")) == "unsupported_grant_type"

    def test_redirect_uri_mismatch_is_invalid_grant(self, redeem, code):
        assert _error_id(redeem(code, redirect_uri="https://c1/other")) == "invalid_grant"

    def test_code_for_other_client(self, redeem, code):
        # C2 authenticates correctly but the code was issued to C1
        resp = redeem(code, client_id="C2", client_secret="s2", redirect_uri="https://c2/cb")
        assert _error_id(resp) == "invalid_grant"
        # and the rejection did not burn the grant
        assert redeem(code).status_code == 200

    @pytest.mark.parametrize("bad", ["no-delimiter", "a|b|c"])
    def test_malformed_code(self, redeem, bad):
        assert _error_id(redeem(bad)) == "invalid_grant"

    def test_json_body(self, client, conf, code):
        resp = client.post(conf.TOKEN_URL, json={
            "grant_type": "authorization_code",
            "client_id": "C1",
            "code": code,
            "redirect_uri": "https://c1/cb",
            "client_secret": "s1",
        })
        assert resp.status_code == 200

    def test_unparseable_json(self, client, conf):
        resp = client.post(conf.TOKEN_URL, content=b"{not json",
                           headers={"Content-Type": "application/json"})
        assert _error_id(resp) == "invalid_request"

    def test_multipart_without_boundary(self, client, conf):
        resp = client.post(conf.TOKEN_URL, content=b"x",
                           headers={"Content-Type": "multipart/form-data"})
        assert _error_id(resp) == "invalid_request"

    def test_expired_grant(self, clients, grants, authenticator):
        conf = Settings(GRANT_TTL_SECONDS=0)
        app = create_app(conf, clients=clients, grants=grants, authenticator=authenticator)
        c = TestClient(app, follow_redirects=False)
        login = c.post(conf.PROCESS_LOGIN_URL, data={
            "client_id": "C1", "redirect_uri": "https://c1/cb",
            "username": "alice", "password": "wonderland", "action": "allow",
        })
        resp = c.post(conf.TOKEN_URL, data={
            "grant_type": "authorization_code",
            "client_id": "C1",
            "code": code_from_location(login.headers["location"]),
            "redirect_uri": "https://c1/cb",
            "client_secret": "s1",
        })
        assert _error_id(resp) == "invalid_grant"

    def test_signed_tokens(self, clients, grants, authenticator):
        from jose import jwt

        conf = Settings(ACCESS_TOKEN_SECRET="x" * 32)
        app = create_app(conf, clients=clients, grants=grants, authenticator=authenticator)
        c = TestClient(app, follow_redirects=False)
        login = c.post(conf.PROCESS_LOGIN_URL, data={
            "client_id": "C1", "redirect_uri": "https://c1/cb",
            "username": "alice", "password": "wonderland", "action": "allow",
        })
        resp = c.post(conf.TOKEN_URL, data={
            "grant_type": "authorization_code",
            "client_id": "C1",
            "code": code_from_location(login.headers["location"]),
            "redirect_uri": "https://c1/cb",
        }, headers={"Authorization": "Basic s1"})
        claims = jwt.decode(resp.json()["access_token"], "x" * 32, algorithms=["HS256"])
        assert (claims["sub"], claims["client_id"]) == ("U1", "C1")

    def test_store_failure_is_opaque_500(self, conf, clients, authenticator):
        class BrokenStore(InMemoryGrantStore):
            def consume(self, grant_id, check):
                raise StoreError("replica lag on grants table")

        app = create_app(conf, clients=clients, grants=BrokenStore(), authenticator=authenticator)
        resp = TestClient(app).post(conf.TOKEN_URL, data={
            "grant_type": "authorization_code",
            "client_id": "C1",
            "code": "g1|abc",
            "redirect_uri": "https://c1/cb",
            "client_secret": "s1",
        })
        assert resp.status_code == 500
        assert "replica" not in resp.text
