import io
import json
from contextlib import redirect_stderr, redirect_stdout

from fastapi.testclient import TestClient

from studyreview.config import settings
from studyreview.dependencies import get_app_store

_TRACE_ID_SAMPLE = "105445aa7843bc8bf206b120001000ab"
_SPAN_ID_SAMPLE = "123"
_TRACE_HEADER = f"{_TRACE_ID_SAMPLE}/{_SPAN_ID_SAMPLE};o=1"


def _json_lines(buf_out: io.StringIO, buf_err: io.StringIO) -> list[dict]:
    """Parse every JSON log line from mixed stdout/stderr text."""

    raw = buf_err.getvalue().strip() or buf_out.getvalue().strip()
    parsed = []
    for line in raw.splitlines():
        line = line.strip()
        if line.startswith("{"):
            parsed.append(json.loads(line))
    return parsed


def _request_complete(records: list[dict]) -> list[dict]:
    return [record for record in records if record.get("event") == "request_complete"]


def _get_with_app(store, path: str, headers: dict[str, str] | None = None) -> list[dict]:
    buf_out = io.StringIO()
    buf_err = io.StringIO()
    with redirect_stdout(buf_out), redirect_stderr(buf_err):
        from studyreview.main import create_app

        app = create_app()
        app.dependency_overrides[get_app_store] = lambda: store
        with TestClient(app) as client:
            client.get(path, headers=headers or {})
    return _json_lines(buf_out, buf_err)


def test_structlog_outputs_pure_json_without_stdlib_prefix():
    buf_out = io.StringIO()
    buf_err = io.StringIO()

    with redirect_stdout(buf_out), redirect_stderr(buf_err):
        from studyreview.logging import configure_logging, logger

        configure_logging()
        logger.info(
            "interaction_review_recorded",
            user_id="user-1",
            item_id="card-1",
            quality=4,
        )

    raw = buf_err.getvalue().strip() or buf_out.getvalue().strip()
    lines = [ln for ln in raw.splitlines() if ln.strip()]
    message_text = lines[-1] if lines else ""

    assert message_text, "no log output captured"
    # 標準 logging の 'INFO:...:' のような接頭辞が付かないこと
    assert not message_text.startswith("INFO:"), message_text

    data = json.loads(message_text)
    assert data.get("event") == "interaction_review_recorded"
    assert data.get("level") in {"info", "INFO"}
    assert data.get("quality") == 4
    assert "timestamp" in data


def test_request_complete_log_contains_request_context(store):
    """アクセスログに request_id / ステータス / ルート / ユーザー ID が入ることを検証する。"""

    records = _get_with_app(
        store,
        "/api/flashcards/due",
        headers={"X-User-Id": "user-1", "X-Request-ID": "req-abc"},
    )

    request_lines = _request_complete(records)
    assert request_lines, "request_complete log line not found"
    data = request_lines[-1]
    assert data.get("request_id") == "req-abc"
    assert data.get("status_code") == 200
    assert data.get("route") == "/api/flashcards/due"
    assert data.get("user_id") == "user-1"


def test_review_notes_and_credentials_are_masked():
    buf_out = io.StringIO()
    buf_err = io.StringIO()
    notes = "struggled with irregular past tense forms"
    bearer = "Bearer abcdefghijklmnop"

    with redirect_stdout(buf_out), redirect_stderr(buf_err):
        from studyreview.logging import configure_logging, logger

        configure_logging()
        logger.info(
            "debug_dump",
            review_notes=notes,
            selected_answer="went",
            headers={"authorization": bearer, "accept": "application/json"},
        )

    message_text = (buf_err.getvalue().strip() or buf_out.getvalue().strip()).splitlines()[-1]
    assert notes not in message_text
    assert bearer not in message_text

    data = json.loads(message_text)
    assert data["review_notes"] == "***"
    assert data["selected_answer"] == "***"
    assert data["headers"]["authorization"] == "Bear…mnop"
    assert data["headers"]["accept"] == "application/json"


def test_access_log_includes_trace_fields_from_header(store, monkeypatch):
    monkeypatch.setattr(settings, "gcp_project_id", "study-project")

    records = _get_with_app(store, "/healthz", headers={"X-Cloud-Trace-Context": _TRACE_HEADER})

    data = _request_complete(records)[-1]
    assert data.get("trace") == f"projects/study-project/traces/{_TRACE_ID_SAMPLE}"
    assert data.get("spanId") == _SPAN_ID_SAMPLE
    assert data.get("trace_sampled") is True


def test_malformed_trace_header_is_ignored(store, monkeypatch):
    monkeypatch.setattr(settings, "gcp_project_id", "study-project")

    records = _get_with_app(store, "/healthz", headers={"X-Cloud-Trace-Context": "not-a-trace"})

    data = _request_complete(records)[-1]
    assert "trace" not in data
