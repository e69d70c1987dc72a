"""
API Endpoint Tests

Exercises the reconciliation and health routes through FastAPI's
TestClient with an in-memory invoice store.
"""

from datetime import date

import pytest
from fastapi.testclient import TestClient

from api.routes.reconcile import get_collaborators, get_invoice_store
from api.server import create_app
from core.config import Settings, get_settings
from remittance.collaborators import build_collaborators
from remittance.models import UnpaidInvoice


class MemoryInvoiceStore:
    def __init__(self, invoices):
        self.invoices = invoices

    async def list_unpaid_invoices(self, account_id):
        return list(self.invoices)


INVOICES = [
    UnpaidInvoice(id="INV-0002", client_name="ヤマダ タロウ", total_amount=85000, issue_date=date(2025, 1, 15)),
]

CSV_BYTES = "2025/03/02,振込,85000,ﾔﾏﾀﾞ ﾀﾛｳ\n2025/03/04,振込,30000,ﾀﾅｶ ﾊﾅｺ\n".encode("cp932")


@pytest.fixture
def client():
    app = create_app()
    app.dependency_overrides[get_invoice_store] = lambda: MemoryInvoiceStore(INVOICES)
    app.dependency_overrides[get_collaborators] = lambda: (None, None)
    app.dependency_overrides[get_settings] = lambda: Settings(max_file_bytes=1024)
    return TestClient(app)


def post_csv(client, content=CSV_BYTES, filename="deposits.csv", content_type="text/csv", account="acct-1"):
    headers = {"X-Account-Id": account} if account else {}
    return client.post(
        "/reconcile",
        files={"file": (filename, content, content_type)},
        headers=headers,
    )


class TestReconcileEndpoint:
    """Test the upload endpoint envelope and status codes."""

    def test_success(self, client):
        response = post_csv(client)
        assert response.status_code == 200

        body = response.json()
        assert body["success"] is True
        assert body["meta"]["unpaid_invoice_count"] == 1
        assert body["meta"]["dropped_rows"] == 0

        first, second = body["data"]
        assert first["status"] == "Completed"
        assert first["matched_invoice_id"] == "INV-0002"
        assert first["is_confirmable"] is True
        assert second["status"] == "Unmatched"
        assert second["matched_invoice_id"] is None
        assert second["is_confirmable"] is False

    def test_missing_account_is_unauthenticated(self, client):
        response = post_csv(client, account=None)
        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": "Authentication required",
            "code": "unauthenticated",
        }

    def test_missing_file(self, client):
        response = client.post("/reconcile", headers={"X-Account-Id": "acct-1"})
        assert response.status_code == 400
        assert response.json()["code"] == "missing_file"

    def test_wrong_file_type(self, client):
        response = post_csv(client, filename="statement.pdf", content_type="application/pdf")
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "wrong_file_type"

    def test_file_too_large(self, client):
        response = post_csv(client, content=b"x" * 2048)
        assert response.status_code == 400
        assert response.json()["code"] == "file_too_large"

    def test_too_many_rows(self, client):
        client.app.dependency_overrides[get_settings] = lambda: Settings(max_rows=1)
        response = post_csv(client)
        assert response.status_code == 400
        assert response.json()["code"] == "too_many_rows"

    def test_internal_failure_hides_details(self, client):
        class BrokenStore:
            async def list_unpaid_invoices(self, account_id):
                raise RuntimeError("secret connection string")

        client.app.dependency_overrides[get_invoice_store] = lambda: BrokenStore()
        response = post_csv(client)

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "internal_failure"
        assert "secret" not in body["error"]


class TestHealthEndpoints:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"]["collaborators"] == "disabled"

    def test_ready_and_live(self, client):
        assert client.get("/ready").json() == {"status": "ready"}
        assert client.get("/live").json() == {"status": "alive"}

    def test_metrics(self, client):
        post_csv(client)
        body = client.get("/metrics").json()
        assert body["runs"]["completed"] >= 1
        assert "collaborator_fallbacks" in body


@pytest.fixture
def fresh_settings(monkeypatch):
    """Re-read settings from a patched environment."""
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


class TestServerLifecycle:
    """Test startup validation, failure envelopes and the shared text client."""

    def test_dependency_failure_uses_error_envelope(self):
        def broken_settings():
            raise ValueError("RECONCILE_AGENCIES is not valid JSON")

        app = create_app()
        app.dependency_overrides[get_settings] = broken_settings
        client = TestClient(app, raise_server_exceptions=False)

        response = post_csv(client)

        assert response.status_code == 500
        assert response.headers["content-type"].startswith("application/json")
        assert response.json() == {
            "success": False,
            "error": "Reconciliation failed due to an internal error",
            "code": "internal_failure",
        }

    def test_invalid_agency_config_fails_at_startup(self, fresh_settings):
        fresh_settings.setenv("RECONCILE_AGENCIES", "not json")
        with pytest.raises(ValueError):
            create_app()

    def test_one_text_client_per_process(self, fresh_settings):
        fresh_settings.setenv("OPENAI_API_KEY", "sk-test")
        app = create_app()

        with TestClient(app):
            text_client = app.state.text_client
            assert text_client is not None

            inference, transliterator = build_collaborators(app.state.text_client)
            again, _ = build_collaborators(app.state.text_client)
            assert inference.text_client is transliterator.text_client is again.text_client is text_client

        # Closed on shutdown
        assert text_client._client.is_closed()
        assert app.state.text_client is None

    def test_no_text_client_without_key(self, fresh_settings):
        fresh_settings.delenv("OPENAI_API_KEY", raising=False)
        app = create_app()
        app.dependency_overrides[get_invoice_store] = lambda: MemoryInvoiceStore(INVOICES)
        app.dependency_overrides[get_settings] = lambda: Settings()

        with TestClient(app) as client:
            response = post_csv(client)

        assert response.status_code == 200
        assert app.state.text_client is None
