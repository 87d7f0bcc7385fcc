# Shared fixtures: an app wired to fresh in-memory stores.

from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from codegrant.authentication import FormAuthenticator
from codegrant.main import create_app
from codegrant.models import Client
from codegrant.settings import Settings
from codegrant.stores import InMemoryClientStore, InMemoryGrantStore

C1 = Client(id="C1", secret="s1", redirect_uri="https://c1/cb", name="Client One")
C2 = Client(id="C2", secret="s2", redirect_uri="https://c2/cb", name="Client Two")
USERS = {"alice": {"password": "wonderland", "sub": "U1"}}


def code_from_location(location: str) -> str:
    return parse_qs(urlsplit(location).query)["code"][0]


@pytest.fixture
def conf():
    return Settings()


@pytest.fixture
def clients():
    return InMemoryClientStore([C1, C2])


@pytest.fixture
def grants():
    return InMemoryGrantStore()


@pytest.fixture
def authenticator():
    return FormAuthenticator(USERS)


@pytest.fixture
def app(conf, clients, grants, authenticator):
    return create_app(conf, clients=clients, grants=grants, authenticator=authenticator)


@pytest.fixture
def client(app):
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def login(client, conf):
    """Sign alice in for `client_id` and return the redirect response."""

    def _login(client_id="C1", redirect_uri="https://c1/cb", state="xyz", **extra):
        form = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "state": state,
            "username": "alice",
            "password": "wonderland",
            "action": "allow",
        }
        form.update(extra)
        return client.post(conf.PROCESS_LOGIN_URL, data=form)

    return _login
