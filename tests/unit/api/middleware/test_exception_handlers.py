import httpx
import pytest

from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from openai import AuthenticationError, RateLimitError
from pydantic import BaseModel, ValidationError

from quizstream.api.middleware.exception_handlers import (
    AppException,
    ExternalServiceError,
    register_exception_handlers,
)
from quizstream.api.middleware.request_context import RequestContextMiddleware
from quizstream.models.error_models import ErrorCode


# Setup a test app
@pytest.fixture
def test_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)
    return app


@pytest.fixture
def client(test_app: FastAPI) -> TestClient:
    # raise_server_exceptions=False ensures that we get the 500 response
    # instead of the client re-raising the exception.
    return TestClient(test_app, raise_server_exceptions=False)


def _upstream_response(status_code: int) -> httpx.Response:
    request = httpx.Request("POST", "http://localhost:11434/v1/chat/completions")
    return httpx.Response(status_code, request=request)


def test_app_exception(test_app: FastAPI, client: TestClient) -> None:
    @test_app.get("/app_error")
    def raise_app_error() -> None:
        raise AppException(code=ErrorCode.INTERNAL_ERROR, message="Test error", details={"foo": "bar"})

    response = client.get("/app_error")
    assert response.status_code == 500
    data = response.json()["error"]
    assert data["code"] == ErrorCode.INTERNAL_ERROR.value
    assert data["message"] == "Test error"
    # exclude_none=True removes code if None
    assert data["details"] == [{"field": "foo", "message": "bar"}]
    assert data["path"] == "/app_error"
    assert "debug" not in data


def test_external_service_error(test_app: FastAPI, client: TestClient) -> None:
    @test_app.get("/upstream")
    def raise_upstream() -> None:
        raise ExternalServiceError("generation", "Generation service timed out", code=ErrorCode.EXTERNAL_TIMEOUT)

    response = client.get("/upstream")
    assert response.status_code == 504
    data = response.json()["error"]
    assert data["code"] == ErrorCode.EXTERNAL_TIMEOUT.value
    assert data["message"] == "generation: Generation service timed out"
    assert data["details"] == [{"field": "service", "message": "generation"}]


def test_external_service_error_default_code() -> None:
    exc = ExternalServiceError("generation", "failed", cause=ValueError("x"))
    assert exc.code == ErrorCode.EXTERNAL_SERVICE_ERROR
    assert isinstance(exc.cause, ValueError)
    assert str(exc) == "generation: failed"


def test_debug_info_included_in_debug_mode(test_app: FastAPI, client: TestClient, mock_settings) -> None:
    mock_settings.debug = True

    @test_app.get("/debug_error")
    def raise_with_cause() -> None:
        raise AppException(code=ErrorCode.INTERNAL_ERROR, message="Broken", cause=KeyError("missing"))

    data = client.get("/debug_error").json()["error"]
    assert data["debug"]["exception_type"] == "AppException"
    assert "missing" in data["debug"]["cause"]


def test_http_exception(test_app: FastAPI, client: TestClient) -> None:
    @test_app.get("/http_error")
    def raise_http_error() -> None:
        raise HTTPException(status_code=404, detail="Not found")

    response = client.get("/http_error")
    assert response.status_code == 404
    data = response.json()["error"]
    assert data["code"] == ErrorCode.RESOURCE_NOT_FOUND.value
    assert data["message"] == "Not found"


def test_request_validation_error(test_app: FastAPI, client: TestClient) -> None:
    class Item(BaseModel):
        name: str

    @test_app.post("/items")
    def create_item(item: Item) -> Item:
        return item

    response = client.post("/items", json={})
    assert response.status_code == 422
    data = response.json()["error"]
    assert data["code"] == ErrorCode.VALIDATION_ERROR.value
    assert data["message"] == "Request validation failed"
    assert data["details"][0]["field"] == "body.name"
    assert data["details"][0]["code"] == "missing"


def test_pydantic_validation_error(test_app: FastAPI, client: TestClient) -> None:
    class Model(BaseModel):
        count: int

    @test_app.get("/pydantic_error")
    def raise_pydantic_error() -> None:
        try:
            Model(count="abc")  # type: ignore[arg-type]
        except ValidationError as e:
            raise e

    response = client.get("/pydantic_error")
    assert response.status_code == 422
    data = response.json()["error"]
    assert data["message"] == "Data validation failed"
    assert data["details"][0]["field"] == "count"


def test_openai_rate_limit_error(test_app: FastAPI, client: TestClient) -> None:
    @test_app.get("/rate_limited")
    def raise_rate_limit() -> None:
        raise RateLimitError("Slow down", response=_upstream_response(429), body=None)

    response = client.get("/rate_limited")
    assert response.status_code == 429
    assert response.json()["error"]["code"] == ErrorCode.EXTERNAL_RATE_LIMITED.value


def test_openai_auth_error(test_app: FastAPI, client: TestClient) -> None:
    @test_app.get("/auth_failed")
    def raise_auth() -> None:
        raise AuthenticationError("Bad key", response=_upstream_response(401), body=None)

    response = client.get("/auth_failed")
    assert response.status_code == 502
    data = response.json()["error"]
    assert data["code"] == ErrorCode.EXTERNAL_AUTH_FAILED.value
    assert "Bad key" not in data["message"]


def test_generic_exception(test_app: FastAPI, client: TestClient) -> None:
    @test_app.get("/generic_error")
    def raise_generic_error() -> None:
        raise RuntimeError("secret internals")

    response = client.get("/generic_error")
    assert response.status_code == 500
    data = response.json()["error"]
    assert data["code"] == ErrorCode.INTERNAL_UNEXPECTED.value
    assert data["message"] == "An unexpected error occurred"
    assert "secret internals" not in response.text


def test_error_carries_request_id() -> None:
    app = FastAPI()
    register_exception_handlers(app)
    app.add_middleware(RequestContextMiddleware)

    @app.get("/fail")
    def fail() -> None:
        raise AppException(code=ErrorCode.RESOURCE_CONFLICT, message="Busy")

    response = TestClient(app).get("/fail", headers={"X-Request-ID": "req_trace"})
    assert response.status_code == 409
    assert response.json()["error"]["request_id"] == "req_trace"
