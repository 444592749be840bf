from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from chat_api.ai_gateway import AIGateway
from chat_api.auth_utils import TokenManager
from chat_api.config import Settings
from chat_api.database import DatabaseConnector
from chat_api.main import create_app

TEST_SECRET = "test-signing-secret"


class ScriptedTransport:
    """Transport double: each model pops outcomes (a reply string or an exception) from its script."""

    def __init__(self, name: str, script: Optional[Dict[str, List]] = None, default=None):
        self.name = name
        self.script = {model: list(outcomes) for model, outcomes in (script or {}).items()}
        self.default = default if default is not None else Exception("404 models/unknown is not found")
        self.calls = []

    async def generate(self, model_name, history, message, system_instruction):
        self.calls.append({"model": model_name, "history": history, "message": message})
        outcomes = self.script.get(model_name)
        outcome = outcomes.pop(0) if outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    @property
    def models_called(self):
        return [call["model"] for call in self.calls]


class EchoTransport:
    name = "echo"

    def __init__(self):
        self.calls = []

    async def generate(self, model_name, history, message, system_instruction):
        self.calls.append({"model": model_name, "history": history, "message": message})
        return f"Echo from {model_name}: {message.splitlines()[-1]}"


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_gateway(transports, models=("gemini-test",), sleep=None, **kwargs) -> AIGateway:
    async def lister():
        return list(models)

    return AIGateway(
        "test-key",
        transports=transports,
        model_lister=lister,
        sleep=sleep or SleepRecorder(),
        **kwargs,
    )


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}"


@pytest.fixture
def settings(database_url):
    return Settings(
        database_url=database_url,
        jwt_secret=TEST_SECRET,
        gemini_api_key="test-key",
    )


@pytest.fixture
def tokens(settings):
    return TokenManager.from_settings(settings)


@pytest.fixture
async def connector(database_url):
    connector = DatabaseConnector(database_url)
    yield connector
    await connector.close()


@pytest.fixture
def echo_transport():
    return EchoTransport()


@pytest.fixture
def gateway(echo_transport):
    return make_gateway([echo_transport])


@pytest.fixture
def client(settings, gateway):
    app = create_app(settings, gateway=gateway)
    with TestClient(app) as test_client:
        yield test_client


def register_and_login(client, email="alice@example.com", password="secret1", name=None):
    body = {"email": email, "password": password}
    if name is not None:
        body["name"] = name
    response = client.post("/auth/register", json=body)
    assert response.status_code == 201, response.text
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()["token"]


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}
