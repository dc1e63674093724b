# tests/test_catalog.py — Locations, hardware, procedures
import csv
import io

import pytest
from httpx import AsyncClient

from careportal.services.hardware import CSV_TEMPLATE_HEADERS
from tests.conftest import get_auth_headers, make_hardware, make_principal


@pytest.mark.asyncio
class TestLocations:
    async def test_org_admin_creates_location(self, client: AsyncClient, world):
        res = await client.post("/api/locations", headers=get_auth_headers(world.acme_admin), json={
            "org_id": world.acme.id, "name": "Faro Office", "city": "Faro",
        })
        assert res.status_code == 201
        assert res.json()["timezone"] == "UTC"

    async def test_employee_cannot_create_location(self, client: AsyncClient, world):
        res = await client.post("/api/locations", headers=get_auth_headers(world.acme_employee), json={
            "org_id": world.acme.id, "name": "Shadow Office",
        })
        assert res.status_code == 403

    async def test_org_admin_of_other_org(self, client: AsyncClient, world):
        res = await client.post("/api/locations", headers=get_auth_headers(world.acme_admin), json={
            "org_id": world.globex.id, "name": "Hostile takeover",
        })
        assert res.status_code == 403

    async def test_listing_is_scoped(self, client: AsyncClient, world):
        employee = await client.get("/api/locations", headers=get_auth_headers(world.acme_employee))
        admin = await client.get("/api/locations", headers=get_auth_headers(world.acme_admin))
        assert [loc["name"] for loc in employee.json()] == ["Lisbon Office"]
        assert [loc["name"] for loc in admin.json()] == ["Lisbon Office", "Porto Office"]


@pytest.mark.asyncio
class TestHardware:
    async def test_create_takes_org_from_location(self, client: AsyncClient, world):
        res = await client.post("/api/hardware", headers=get_auth_headers(world.acme_admin), json={
            "location_id": world.porto.id,
            "name": "UniFi Switch 24 PoE",
            "hardware_type": "Switch",
            "status": "maintenance",
        })
        assert res.status_code == 201
        assert res.json()["org_id"] == world.acme.id
        assert res.json()["status"] == "maintenance"

    async def test_catalogue_shared_within_org(self, client: AsyncClient, world):
        res = await client.get("/api/hardware", headers=get_auth_headers(world.acme_employee))
        assert {h["name"] for h in res.json()} == {"Dream Machine Pro", "LaserJet"}
        other = await client.get("/api/hardware", headers=get_auth_headers(world.globex_employee))
        assert other.json() == []

    async def test_get_other_tenant_hardware(self, client: AsyncClient, world):
        res = await client.get(f"/api/hardware/{world.router.id}", headers=get_auth_headers(world.globex_employee))
        assert res.status_code == 404

    async def test_filter_by_status(self, client: AsyncClient, world):
        res = await client.get("/api/hardware", headers=get_auth_headers(world.acme_admin),
                               params={"status": "retired"})
        assert res.json() == []

    async def test_csv_template(self, client: AsyncClient, world):
        res = await client.get("/api/hardware/csv-template", headers=get_auth_headers(world.acme_employee))
        assert res.status_code == 200
        assert res.headers["content-type"].startswith("text/csv")
        assert "device-upload-template.csv" in res.headers["content-disposition"]

        rows = list(csv.reader(io.StringIO(res.text)))
        assert rows[0] == CSV_TEMPLATE_HEADERS
        assert len(rows) == 3
        assert rows[1][:2] == ["Acme", "Lisbon Office"]

    async def test_csv_template_without_locations(self, client: AsyncClient, db_session):
        admin = await make_principal(db_session, "fresh@example.com", platform_admin=True)
        res = await client.get("/api/hardware/csv-template", headers=get_auth_headers(admin))
        rows = list(csv.reader(io.StringIO(res.text)))
        assert rows[1][:2] == ["Acme Corp", "Main Office"]


@pytest.mark.asyncio
class TestProcedures:
    async def test_create_and_link(self, client: AsyncClient, world):
        res = await client.post("/api/sops", headers=get_auth_headers(world.acme_admin), json={
            "org_id": world.acme.id,
            "title": "Printer paper jam",
            "content": "Open tray 2 and remove the sheet.",
            "hardware_ids": [world.printer.id],
        })
        assert res.status_code == 201
        data = res.json()
        assert data["version"] == 1
        assert data["hardware_ids"] == [world.printer.id]

        linked = await client.get(f"/api/hardware/{world.printer.id}/sops", headers=get_auth_headers(world.acme_employee))
        assert [s["title"] for s in linked.json()] == ["Printer paper jam"]

    async def test_cannot_link_other_org_hardware(self, client: AsyncClient, db_session, world):
        berlin_router = await make_hardware(db_session, world.berlin)
        res = await client.post("/api/sops", headers=get_auth_headers(world.acme_admin), json={
            "org_id": world.acme.id,
            "title": "Sneaky",
            "content": "x",
            "hardware_ids": [berlin_router.id],
        })
        assert res.status_code == 400

    async def test_version_bumps_only_on_content_change(self, client: AsyncClient, world):
        headers = get_auth_headers(world.acme_admin)
        url = f"/api/sops/{world.router_sop.id}"
        same = await client.put(url, headers=headers, json={"title": world.router_sop.title})
        assert same.json()["version"] == 1
        flag = await client.put(url, headers=headers, json={"hardware_type": "Router"})
        assert flag.json()["version"] == 1
        changed = await client.put(url, headers=headers, json={"title": "Router restart (v2)"})
        assert changed.json()["version"] == 2

    async def test_relink_replaces_links(self, client: AsyncClient, world):
        headers = get_auth_headers(world.acme_admin)
        res = await client.put(f"/api/sops/{world.router_sop.id}", headers=headers,
                               json={"hardware_ids": [world.printer.id]})
        assert res.json()["hardware_ids"] == [world.printer.id]
        router = await client.get(f"/api/hardware/{world.router.id}/sops", headers=headers)
        assert router.json() == []

    async def test_deactivated_procedure_stops_gating(self, client: AsyncClient, world):
        await client.put(f"/api/sops/{world.router_sop.id}", headers=get_auth_headers(world.acme_admin),
                         json={"is_active": False})
        res = await client.post("/api/tickets", headers=get_auth_headers(world.acme_employee), json={
            "location_id": world.lisbon.id,
            "hardware_id": world.router.id,
            "title": "Router down",
            "description": "again",
        })
        assert res.status_code == 201

    async def test_employee_reads_but_cannot_edit(self, client: AsyncClient, world):
        url = f"/api/sops/{world.router_sop.id}"
        read = await client.get(url, headers=get_auth_headers(world.acme_employee))
        assert read.status_code == 200
        edit = await client.put(url, headers=get_auth_headers(world.acme_employee), json={"title": "mine"})
        assert edit.status_code == 403
        outsider = await client.get(url, headers=get_auth_headers(world.globex_employee))
        assert outsider.status_code == 404

    async def test_delete(self, client: AsyncClient, world):
        headers = get_auth_headers(world.acme_admin)
        res = await client.delete(f"/api/sops/{world.router_sop.id}", headers=headers)
        assert res.status_code == 204
        assert (await client.get(f"/api/sops/{world.router_sop.id}", headers=headers)).status_code == 404
        assert (await client.get("/api/sops", headers=headers)).json() == []
