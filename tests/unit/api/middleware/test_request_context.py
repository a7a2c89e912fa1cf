import time

import pytest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from quizstream.api.middleware.request_context import (
    REQUEST_ID_PREFIX,
    WEBSOCKET_ID_PREFIX,
    RequestContext,
    RequestContextMiddleware,
    clear_request_context,
    create_websocket_context,
    generate_request_id,
    get_request_context,
    get_request_id,
    set_request_context,
)


def test_request_context_dataclass() -> None:
    ctx = RequestContext(request_id="123")
    assert ctx.request_id == "123"
    assert ctx.elapsed_ms >= 0
    assert "request_id" in ctx.to_log_context()

    time.sleep(0.01)
    assert ctx.elapsed_ms > 0


def test_log_context_optional_fields() -> None:
    ctx = RequestContext(request_id="123")
    assert "client_ip" not in ctx.to_log_context()
    assert "session_id" not in ctx.to_log_context()

    ctx = RequestContext(request_id="123", client_ip="10.0.0.1", session_id="quiz_1")
    log_context = ctx.to_log_context()
    assert log_context["client_ip"] == "10.0.0.1"
    assert log_context["session_id"] == "quiz_1"


def test_generate_request_id() -> None:
    rid1 = generate_request_id()
    rid2 = generate_request_id()
    assert rid1.startswith(REQUEST_ID_PREFIX)
    assert rid1 != rid2
    assert len(rid1) == len(REQUEST_ID_PREFIX) + 16

    ws_rid = generate_request_id(WEBSOCKET_ID_PREFIX)
    assert ws_rid.startswith(WEBSOCKET_ID_PREFIX)


@pytest.mark.asyncio
async def test_context_var_management() -> None:
    ctx = RequestContext(request_id="test")

    set_request_context(ctx)
    assert get_request_context() == ctx
    assert get_request_id() == "test"

    clear_request_context()
    assert get_request_context() is None
    assert get_request_id() is None


@pytest.mark.asyncio
async def test_create_websocket_context() -> None:
    ctx = create_websocket_context(session_id="quiz_1", client_ip="127.0.0.1")

    assert ctx.request_id.startswith(WEBSOCKET_ID_PREFIX)
    assert ctx.method == "WEBSOCKET"
    assert ctx.session_id == "quiz_1"
    assert get_request_context() is ctx

    clear_request_context()


@pytest.fixture
def app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestContextMiddleware)

    @app.get("/context")
    def read_context() -> dict:
        ctx = get_request_context()
        assert ctx is not None
        return {"request_id": ctx.request_id, "client_ip": ctx.client_ip, "path": ctx.path, "method": ctx.method}

    return app


def test_middleware_sets_headers(app: FastAPI) -> None:
    response = TestClient(app).get("/context")

    assert response.status_code == 200
    request_id = response.headers["X-Request-ID"]
    assert request_id.startswith(REQUEST_ID_PREFIX)
    assert response.json()["request_id"] == request_id
    assert response.json()["path"] == "/context"
    assert response.json()["method"] == "GET"
    assert response.headers["X-Response-Time"].endswith("ms")


def test_middleware_reuses_incoming_request_id(app: FastAPI) -> None:
    response = TestClient(app).get("/context", headers={"X-Request-ID": "req_upstream"})

    assert response.headers["X-Request-ID"] == "req_upstream"
    assert response.json()["request_id"] == "req_upstream"


def test_middleware_forwarded_client_ip(app: FastAPI) -> None:
    response = TestClient(app).get("/context", headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})

    assert response.json()["client_ip"] == "203.0.113.7"
