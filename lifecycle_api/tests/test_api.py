"""
HTTP-level tests for the catalogue, health and error envelope.

Database-backed dependencies are replaced with FastAPI dependency overrides;
the application's startup hooks are not run.
"""
import uuid

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from src.api import websocket as ws_module
from src.api.main import app
from src.api.routes.lifecycle import get_lifecycle_service
from src.core.deps import get_current_permissions, get_tenant_session
from src.core.security import create_access_token
from src.services.lifecycle import LifecycleService
from src.services.realtime import broadcast_manager

TENANT = str(uuid.uuid4())


@pytest.fixture
def permissions():
    return {"lifecycle.view"}


@pytest.fixture
def client(permissions):
    """TestClient whose caller holds `permissions` and has no database session."""
    app.dependency_overrides[get_current_permissions] = lambda: frozenset(permissions)
    app.dependency_overrides[get_lifecycle_service] = lambda: LifecycleService(None, uuid.UUID(TENANT))
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Healthy"
        assert "PurchaseOrder" in body["details"]["document_types"]

    def test_correlation_id_echoed(self, client):
        response = client.get("/api/v1/health", headers={"X-Correlation-ID": "abc-123"})
        assert response.headers["X-Correlation-ID"] == "abc-123"

    def test_tenant_echo(self, client):
        response = client.get("/api/v1/health/tenant", headers={"X-Tenant-ID": TENANT})
        assert response.json() == {"tenant_id": TENANT}

    def test_missing_tenant_header(self, client):
        response = client.get("/api/v1/health/tenant")
        assert response.status_code == 400
        body = response.json()
        assert body["error"]["type"] == "http_error"
        assert body["path"] == "/api/v1/health/tenant"

    def test_websocket_info(self, client):
        info = client.get("/api/v1/websocket-info").json()
        assert info["endpoints"][0]["path"] == "/ws/lifecycle"


class TestMachineCatalogue:
    def test_list_machines(self, client):
        response = client.get("/api/v1/lifecycle/machines", headers={"X-Tenant-ID": TENANT})
        assert response.status_code == 200
        machines = {m["entity_type"]: m for m in response.json()}
        assert len(machines) == 8
        po = machines["PurchaseOrder"]
        assert po["initial_state"] == "BORRADOR"
        assert {"from": "BORRADOR", "action": "SUBMIT", "to": "EN_APROBACION"} in po["transitions"]
        assert "PRICE_MISMATCH" in po["reason_codes"]

    def test_single_machine(self, client):
        response = client.get("/api/v1/lifecycle/machines/PermitToWork", headers={"X-Tenant-ID": TENANT})
        assert response.status_code == 200
        assert response.json()["sod_rules"][0]["code"] == "PTW_REQUESTER_APPROVES"

    def test_unknown_machine_uses_domain_envelope(self, client):
        response = client.get("/api/v1/lifecycle/machines/Quotation", headers={"X-Tenant-ID": TENANT})
        assert response.status_code == 404
        body = response.json()
        assert body["status"] == 404
        assert body["error"]["type"] == "UNKNOWN_ENTITY_TYPE"
        assert "PurchaseOrder" in body["error"]["details"]["known"]
        assert body["tenant_id"] == TENANT

    @pytest.mark.parametrize("permissions", [set()])
    def test_permission_required(self, client):
        response = client.get("/api/v1/lifecycle/machines", headers={"X-Tenant-ID": TENANT})
        assert response.status_code == 403
        assert response.json()["error"]["message"] == "Insufficient permissions"

    @pytest.mark.parametrize("permissions", [{"admin:all"}])
    def test_wildcard_permission(self, client):
        response = client.get("/api/v1/lifecycle/machines", headers={"X-Tenant-ID": TENANT})
        assert response.status_code == 200

    @pytest.mark.parametrize("permissions", [{"lifecycle.view"}])
    def test_admin_routes_need_users_manage(self, client):
        app.dependency_overrides[get_tenant_session] = lambda: None
        for path in ("/api/v1/admin/users", "/api/v1/admin/roles"):
            response = client.get(path, headers={"X-Tenant-ID": TENANT})
            assert response.status_code == 403
            assert response.json()["error"]["type"] == "http_error"


class TestWebSocket:
    def test_missing_token_closes(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/lifecycle") as ws:
                ws.receive_text()
        assert exc.value.code == 4401

    @pytest.fixture
    def granted(self, monkeypatch):
        """Permissions the handshake will load for the token's user; None means no such user."""
        holder = {"permissions": frozenset({"lifecycle.subscribe"})}

        async def load(tenant_id, user_id):
            return holder["permissions"]

        monkeypatch.setattr(ws_module, "load_subscriber_permissions", load)
        return holder

    def _connect(self, client, tenant=TENANT, query="", headers=None):
        token = create_access_token(str(uuid.uuid4()), tenant)
        return client.websocket_connect(
            f"/ws/lifecycle?token={token}{query}", headers={"X-Tenant-ID": TENANT, **(headers or {})}
        )

    def _close_code(self, client, **kwargs):
        with pytest.raises(WebSocketDisconnect) as exc:
            with self._connect(client, **kwargs) as ws:
                ws.receive_text()
        return exc.value.code

    def test_unknown_user_closes(self, client, granted):
        granted["permissions"] = None
        assert self._close_code(client) == 4401

    def test_subscribe_permission_required(self, client, granted):
        granted["permissions"] = frozenset({"lifecycle.view"})
        assert self._close_code(client) == 4403

    def test_token_of_other_tenant_closes(self, client, granted):
        assert self._close_code(client, tenant=str(uuid.uuid4())) == 4403

    def test_family_view_permission_required(self, client, granted):
        assert self._close_code(client, query="&entity_type=SalesInvoice") == 4403

    def test_unknown_family_closes(self, client, granted):
        assert self._close_code(client, query="&entity_type=Quotation") == 4404

    def test_extended_mode_needs_permission(self, client, granted):
        assert self._close_code(client, headers={"X-View-Mode": "E"}) == 4403

    def test_authorized_subscriber_gets_pong(self, client, granted):
        granted["permissions"] = frozenset({"lifecycle.subscribe", "ventas.facturas.view"})
        with self._connect(client, query="&entity_type=SalesInvoice") as ws:
            ws.send_text("ping")
            assert ws.receive_text() == "pong"
            topic = broadcast_manager.lifecycle_topic(TENANT, "SalesInvoice")
            assert broadcast_manager.subscriber_count(topic) == 1


class TestHistoryViewMode:
    @pytest.mark.parametrize("permissions", [{"lifecycle.view"}])
    def test_extended_history_needs_extended_permission(self, client):
        app.dependency_overrides.pop(get_lifecycle_service)
        app.dependency_overrides[get_tenant_session] = lambda: None
        for path in (
            f"/api/v1/lifecycle/history/SalesInvoice/{uuid.uuid4()}",
            f"/api/v1/lifecycle/verify/SalesInvoice/{uuid.uuid4()}",
        ):
            response = client.get(path, headers={"X-Tenant-ID": TENANT, "X-View-Mode": "E"})
            assert response.status_code == 403
