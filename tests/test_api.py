from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from snippet_sandbox import Constraints, ExecutionService
from snippet_sandbox.api import EXECUTE_PATH, create_app


def _service(tmp_path: Path, **overrides) -> ExecutionService:
    overrides.setdefault("wall_clock_timeout_seconds", 5.0)
    return ExecutionService(Constraints(artifact_dir=tmp_path / "artifacts", **overrides))


@pytest.fixture
def service(tmp_path: Path) -> ExecutionService:
    return _service(tmp_path, wall_clock_timeout_seconds=1.0, max_output_bytes=1024, max_code_bytes=256)


@pytest.fixture
def client(service: ExecutionService):
    with TestClient(create_app(service)) as test_client:
        yield test_client


def test_success_response_shape(client: TestClient, tmp_path: Path) -> None:
    response = client.post(EXECUTE_PATH, json={"code": "print(6 * 7)", "language": "python"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "output": "42\n", "error": None}
    assert list((tmp_path / "artifacts").iterdir()) == []


def test_runtime_failure_is_reported_in_body(client: TestClient) -> None:
    response = client.post(EXECUTE_PATH, json={"code": "1 / 0", "language": "python"})

    body = response.json()
    assert response.status_code == 200
    assert body["success"] is False
    assert body["output"] is None
    assert "ZeroDivisionError" in body["error"]


def test_timeout_is_reported_in_body(client: TestClient) -> None:
    response = client.post(
        EXECUTE_PATH, json={"code": "while True:\n    pass", "language": "python"}
    )

    assert response.status_code == 200
    assert response.json() == {
        "success": False,
        "output": None,
        "error": "Execution timed out after 1s",
    }


def test_overflow_keeps_partial_output(client: TestClient) -> None:
    response = client.post(
        EXECUTE_PATH, json={"code": "while True:\n    print('z' * 64)", "language": "python"}
    )

    body = response.json()
    assert response.status_code == 200
    assert body["success"] is False
    assert body["error"] == "Output exceeded maximum buffer size"
    assert body["output"].startswith("z")


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({"code": "print(1)"}, "Code and language are required"),
        ({"language": "python"}, "Code and language are required"),
        ({"code": "", "language": "python"}, "Code and language are required"),
        ({"code": "print(1)", "language": "ruby"}, "Only Python is supported at the moment"),
        ({"code": "x = 1\n" * 100, "language": "python"}, "Code exceeds maximum size limit"),
    ],
)
def test_bad_requests_return_400(client: TestClient, payload: dict, message: str) -> None:
    response = client.post(EXECUTE_PATH, json=payload)

    assert response.status_code == 400
    assert response.json() == {"message": message}


def test_non_json_body_returns_400(client: TestClient) -> None:
    response = client.post(
        EXECUTE_PATH, content=b"not json", headers={"content-type": "application/json"}
    )
    assert response.status_code == 400
    assert "message" in response.json()


def test_gate_denial_returns_400_without_artifact(client: TestClient, tmp_path: Path) -> None:
    response = client.post(
        EXECUTE_PATH, json={"code": "import subprocess\nsubprocess.run(['ls'])", "language": "python"}
    )

    assert response.status_code == 400
    assert response.json()["message"].startswith("Code contains potentially dangerous operations")
    assert list((tmp_path / "artifacts").iterdir()) == []


def test_internal_failure_returns_generic_500(tmp_path: Path) -> None:
    broken = _service(tmp_path, interpreter=str(tmp_path / "missing-python"))
    with TestClient(create_app(broken)) as client:
        response = client.post(EXECUTE_PATH, json={"code": "print(1)", "language": "python"})

    assert response.status_code == 500
    assert response.json() == {"message": "Failed to execute code"}


def test_unexpected_exception_returns_generic_500(
    service: ExecutionService, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _explode(request):
        raise RuntimeError("boom")

    monkeypatch.setattr(service, "execute", _explode)
    with TestClient(create_app(service), raise_server_exceptions=False) as client:
        response = client.post(EXECUTE_PATH, json={"code": "print(1)", "language": "python"})

    assert response.status_code == 500
    assert response.json() == {"message": "Failed to execute code"}


def test_lifespan_starts_and_stops_service(service: ExecutionService) -> None:
    with TestClient(create_app(service)):
        assert service.reaper.running
    assert not service.reaper.running


def test_lone_surrogate_in_code_returns_400(client: TestClient, tmp_path: Path) -> None:
    payload = b'{"code": "print(1) # \\ud800", "language": "python"}'
    response = client.post(
        EXECUTE_PATH, content=payload, headers={"content-type": "application/json"}
    )

    assert response.status_code == 400
    assert response.json() == {"message": "Code must be valid UTF-8 text"}
    assert list((tmp_path / "artifacts").iterdir()) == []
