from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
import pytest

from app.api import deps
from app.core.settings import settings
from app.core.tenant import normalize_org_id, org_id_from_host, org_slug


def _ctx_client() -> TestClient:
    app = FastAPI()

    @app.get("/ctx")
    async def ctx_route(ctx: deps.TenantContext = Depends(deps.get_tenant_context)):
        return {"org_id": ctx.org_id}

    return TestClient(app)


@pytest.mark.parametrize(
    "value,expected",
    [(" Main-Street ", "main-street"), ("dealer_42", "dealer_42")],
)
def test_normalize_org_id(value, expected) -> None:
    assert normalize_org_id(value) == expected


@pytest.mark.parametrize("value", ["", "x", "-leading", "has space", "a" * 65])
def test_normalize_org_id_rejects(value) -> None:
    with pytest.raises(ValueError):
        normalize_org_id(value)


def test_org_slug() -> None:
    assert org_slug("Main Street Motors, LLC") == "main-street-motors-llc"
    assert org_slug("  --  ") == ""


def test_org_id_from_host() -> None:
    assert org_id_from_host("westside.loans.example.com:8443") == "westside"
    assert org_id_from_host("localhost:8000") is None
    assert org_id_from_host("10.0.0.12") is None
    assert org_id_from_host("westside.loans.example.com", ["other.loans.example.com"]) is None


def test_single_mode_uses_default_org(monkeypatch) -> None:
    monkeypatch.setattr(settings, "tenancy_mode", "single")
    monkeypatch.setattr(settings, "default_org_id", "main-street")
    assert _ctx_client().get("/ctx").json() == {"org_id": "main-street"}


def test_multi_mode_requires_tenant(monkeypatch) -> None:
    monkeypatch.setattr(settings, "tenancy_mode", "multi")
    response = _ctx_client().get("/ctx", headers={"host": "localhost"})
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "tenant_required"


def test_multi_mode_header_and_subdomain(monkeypatch) -> None:
    monkeypatch.setattr(settings, "tenancy_mode", "multi")
    monkeypatch.setattr(settings, "allowed_tenant_hosts", [])
    client = _ctx_client()
    assert client.get("/ctx", headers={"X-Tenant-ID": "Westside"}).json() == {"org_id": "westside"}
    assert client.get("/ctx", headers={"host": "eastside.loans.example.com"}).json() == {"org_id": "eastside"}


def test_multi_mode_rejects_malformed_header(monkeypatch) -> None:
    monkeypatch.setattr(settings, "tenancy_mode", "multi")
    response = _ctx_client().get("/ctx", headers={"X-Tenant-ID": "bad tenant!"})
    assert response.status_code == 400
