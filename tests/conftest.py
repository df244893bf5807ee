from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
TESTS_PATH = REPO_ROOT / "tests"
for path in (SRC_PATH, TESTS_PATH):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))


@pytest.fixture(scope="session")
def app(tmp_path_factory: pytest.TempPathFactory):
    import importlib

    for module_name in ["config.settings", "api.dependencies", "api.routes", "main"]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def telephony():
    from fakes import FakeTelephony

    return FakeTelephony()


@pytest.fixture()
def speech_endpoints():
    return []


@pytest.fixture()
def registry(telephony, speech_endpoints):
    from fakes import FakeSpeechEndpoint
    from telephony.registry import SessionConfig, SessionRegistry

    def factory():
        endpoint = FakeSpeechEndpoint()
        speech_endpoints.append(endpoint)
        return endpoint

    return SessionRegistry(telephony, factory, SessionConfig())


@pytest.fixture()
def client(app, registry):
    # Override the registry so tests never build Telnyx or Gemini clients.
    import api.dependencies as deps

    app.dependency_overrides[deps.get_registry] = lambda: registry

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
