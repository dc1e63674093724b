# tests/test_tickets.py — Ticket lifecycle engine
import logging

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from careportal.db.models import AuditLog, TicketEvent
from careportal.services.tickets import ALLOWED_TRANSITIONS, TERMINAL_STATUSES, Status, can_transition
from tests.conftest import close_ticket, create_ticket, get_auth_headers, set_status


class TestTransitionTable:
    def test_terminal_states_have_no_exits(self):
        for status in TERMINAL_STATUSES:
            assert ALLOWED_TRANSITIONS[status] == set()

    def test_resolved_can_reopen_but_not_cancel(self):
        assert can_transition(Status.resolved, Status.open)
        assert not can_transition(Status.resolved, Status.cancelled)

    def test_no_self_transitions(self):
        for status in Status:
            assert not can_transition(status, status)


@pytest.mark.asyncio
class TestCreate:
    async def test_sequential_numbers_per_organization(self, client: AsyncClient, world, enqueued):
        first = await create_ticket(client, world.acme_employee, world.lisbon)
        second = await create_ticket(client, world.acme_admin, world.porto)
        other = await create_ticket(client, world.globex_employee, world.berlin)

        assert first["ticket_number"] == "CL-00001"
        assert second["ticket_number"] == "CL-00002"
        assert other["ticket_number"] == "CL-00001"
        assert first["status"] == "open"
        assert first["org_id"] == world.acme.id
        assert first["submitted_by"] == world.acme_employee.id
        assert [e for e, _ in enqueued].count("ticket.created") == 3

    async def test_created_event_written(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        res = await client.get(f"/api/tickets/{t['id']}/events", headers=get_auth_headers(world.acme_employee))
        assert res.status_code == 200
        events = res.json()
        assert [e["event_type"] for e in events] == ["created"]
        assert events[0]["actor_id"] == world.acme_employee.id
        assert events[0]["new_value"] == "open"

    async def test_employee_only_at_assigned_location(self, client: AsyncClient, world):
        headers = get_auth_headers(world.acme_employee)
        porto = await client.post("/api/tickets", headers=headers, json={
            "location_id": world.porto.id, "title": "x", "description": "y",
        })
        berlin = await client.post("/api/tickets", headers=headers, json={
            "location_id": world.berlin.id, "title": "x", "description": "y",
        })
        assert porto.status_code == 403
        assert berlin.status_code == 403

    async def test_org_comes_from_the_stored_location(self, client: AsyncClient, world):
        res = await client.post("/api/tickets", headers=get_auth_headers(world.acme_employee), json={
            "location_id": world.lisbon.id,
            "org_id": world.globex.id,
            "title": "Tampered",
            "description": "org id does not match the location",
        })
        assert res.status_code == 400

    async def test_read_only_admin_cannot_create(self, client: AsyncClient, world):
        res = await client.post("/api/tickets", headers=get_auth_headers(world.read_only), json={
            "location_id": world.lisbon.id, "title": "x", "description": "y",
        })
        assert res.status_code == 403

    async def test_unknown_location(self, client: AsyncClient, world):
        res = await client.post("/api/tickets", headers=get_auth_headers(world.super_admin), json={
            "location_id": 9999, "title": "x", "description": "y",
        })
        assert res.status_code == 404

    async def test_invalid_priority_is_400(self, client: AsyncClient, world):
        res = await client.post("/api/tickets", headers=get_auth_headers(world.acme_employee), json={
            "location_id": world.lisbon.id, "title": "x", "description": "y", "priority": "critical",
        })
        assert res.status_code == 400


@pytest.mark.asyncio
class TestVisibility:
    async def test_listings_are_scoped(self, client: AsyncClient, world):
        lisbon = await create_ticket(client, world.acme_employee, world.lisbon)
        porto = await create_ticket(client, world.acme_admin, world.porto)
        berlin = await create_ticket(client, world.globex_employee, world.berlin)

        async def ids(principal):
            res = await client.get("/api/tickets", headers=get_auth_headers(principal))
            assert res.status_code == 200
            return {t["id"] for t in res.json()}

        assert await ids(world.acme_employee) == {lisbon["id"]}
        assert await ids(world.acme_admin) == {lisbon["id"], porto["id"]}
        assert await ids(world.globex_employee) == {berlin["id"]}
        assert await ids(world.read_only) == {lisbon["id"], porto["id"], berlin["id"]}

    async def test_other_tenant_ticket_reads_as_missing(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        res = await client.get(f"/api/tickets/{t['id']}", headers=get_auth_headers(world.globex_employee))
        missing = await client.get("/api/tickets/9999", headers=get_auth_headers(world.globex_employee))
        assert res.status_code == missing.status_code == 404
        assert res.json() == missing.json()

    async def test_filters_and_search(self, client: AsyncClient, world):
        await create_ticket(client, world.acme_admin, world.lisbon, title="Printer jam", priority="high")
        await create_ticket(client, world.acme_admin, world.porto, title="Wifi drops")
        headers = get_auth_headers(world.acme_admin)

        res = await client.get("/api/tickets", headers=headers, params={"search": "printer"})
        assert [t["title"] for t in res.json()] == ["Printer jam"]
        res = await client.get("/api/tickets", headers=headers, params={"priority": "high"})
        assert [t["title"] for t in res.json()] == ["Printer jam"]
        res = await client.get("/api/tickets", headers=headers, params={"location_id": world.porto.id})
        assert [t["title"] for t in res.json()] == ["Wifi drops"]
        res = await client.get("/api/tickets", headers=headers, params={"status": "closed"})
        assert res.json() == []


@pytest.mark.asyncio
class TestStatus:
    async def test_timestamps_are_set_once(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        admin = world.acme_admin

        started = (await set_status(client, admin, t["id"], "in_progress")).json()
        assert started["first_response_at"] is not None
        resolved = (await set_status(client, admin, t["id"], "resolved")).json()
        assert resolved["resolved_at"] is not None

        await set_status(client, admin, t["id"], "open")
        again = (await set_status(client, admin, t["id"], "in_progress")).json()
        assert again["first_response_at"] == started["first_response_at"]
        resolved_again = (await set_status(client, admin, t["id"], "resolved")).json()
        assert resolved_again["resolved_at"] == resolved["resolved_at"]

        closed = await close_ticket(client, t["id"], admin)
        assert closed["closed_at"] is not None
        assert closed["resolved_at"] == resolved["resolved_at"]

    async def test_closed_is_terminal(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        await close_ticket(client, t["id"], world.acme_admin)
        res = await set_status(client, world.acme_admin, t["id"], "open")
        assert res.status_code == 400
        assert "Illegal status transition" in res.json()["detail"]

    async def test_cancel_resolved_is_illegal(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        await set_status(client, world.acme_admin, t["id"], "resolved")
        res = await set_status(client, world.acme_admin, t["id"], "cancelled")
        assert res.status_code == 400

    async def test_status_events_in_order(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        for status in ("in_progress", "resolved", "closed"):
            res = await set_status(client, world.acme_admin, t["id"], status, comment=f"to {status}")
            assert res.status_code == 200

        events = (await client.get(
            f"/api/tickets/{t['id']}/events", headers=get_auth_headers(world.acme_admin)
        )).json()
        changes = [(e["old_value"], e["new_value"]) for e in events if e["event_type"] == "status_changed"]
        assert changes == [("open", "in_progress"), ("in_progress", "resolved"), ("resolved", "closed")]
        stamps = [e["created_at"] for e in events]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)

    async def test_close_queues_summary(self, client: AsyncClient, world, enqueued):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        await close_ticket(client, t["id"], world.acme_admin)
        assert ("ticket.closed", {"ticket_id": t["id"]}) in enqueued

    async def test_status_change_notifies_submitter(self, client: AsyncClient, world, enqueued):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        await set_status(client, world.acme_admin, t["id"], "in_progress")
        notes = [p for e, p in enqueued if e == "ticket.notify"]
        assert [n["recipient_id"] for n in notes] == [world.acme_employee.id]
        assert notes[0]["kind"] == "ticket_status_changed"
        assert notes[0]["metadata"] == {"old_status": "open", "new_status": "in_progress"}

    async def test_employee_may_only_cancel_own_ticket(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        resolve = await set_status(client, world.acme_employee, t["id"], "resolved")
        assert resolve.status_code == 403
        cancel = await set_status(client, world.acme_employee, t["id"], "cancelled")
        assert cancel.status_code == 200
        assert cancel.json()["status"] == "cancelled"

    async def test_employee_cannot_cancel_someone_elses_ticket(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_admin, world.lisbon)
        res = await set_status(client, world.acme_employee, t["id"], "cancelled")
        assert res.status_code == 403

    async def test_cross_tenant_mutation_rejected(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        res = await set_status(client, world.globex_employee, t["id"], "cancelled")
        assert res.status_code == 403
        after = await client.get(f"/api/tickets/{t['id']}", headers=get_auth_headers(world.acme_employee))
        assert after.json()["status"] == "open"

    async def test_read_only_admin_cannot_change_status(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        res = await set_status(client, world.read_only, t["id"], "in_progress")
        assert res.status_code == 403

    async def test_missing_ticket(self, client: AsyncClient, world):
        res = await set_status(client, world.super_admin, 9999, "closed")
        assert res.status_code == 404


@pytest.mark.asyncio
class TestAssignAndAcknowledge:
    async def test_assign_and_acknowledge(self, client: AsyncClient, world, enqueued):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        res = await client.post(
            f"/api/tickets/{t['id']}/assign",
            headers=get_auth_headers(world.acme_admin),
            json={"assigned_to": world.technician.id},
        )
        assert res.status_code == 200
        assert res.json()["assigned_to"] == world.technician.id
        notes = [p for e, p in enqueued if e == "ticket.notify"]
        assert notes[-1]["recipient_id"] == world.technician.id
        assert notes[-1]["kind"] == "ticket_assigned"

        ack = await client.post(f"/api/tickets/{t['id']}/acknowledge", headers=get_auth_headers(world.technician))
        assert ack.status_code == 200
        assert ack.json()["acknowledged_at"] is not None

        twice = await client.post(f"/api/tickets/{t['id']}/acknowledge", headers=get_auth_headers(world.technician))
        assert twice.status_code == 400
        assert twice.json()["detail"] == "Ticket already acknowledged"

        events = (await client.get(
            f"/api/tickets/{t['id']}/events", headers=get_auth_headers(world.acme_admin)
        )).json()
        assert [e["event_type"] for e in events] == ["created", "assigned", "updated"]

    async def test_only_assignee_or_platform_admin_acknowledges(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        res = await client.post(f"/api/tickets/{t['id']}/acknowledge", headers=get_auth_headers(world.acme_employee))
        assert res.status_code == 403

    async def test_assignee_must_belong_to_the_org(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        res = await client.post(
            f"/api/tickets/{t['id']}/assign",
            headers=get_auth_headers(world.acme_admin),
            json={"assigned_to": world.globex_employee.id},
        )
        assert res.status_code == 400

    async def test_unassign(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        headers = get_auth_headers(world.acme_admin)
        await client.post(f"/api/tickets/{t['id']}/assign", headers=headers, json={"assigned_to": world.acme_admin.id})
        res = await client.post(f"/api/tickets/{t['id']}/assign", headers=headers, json={"assigned_to": None})
        assert res.status_code == 200
        assert res.json()["assigned_to"] is None

    async def test_closed_ticket_cannot_be_acknowledged(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        await close_ticket(client, t["id"], world.acme_admin)
        res = await client.post(f"/api/tickets/{t['id']}/acknowledge", headers=get_auth_headers(world.super_admin))
        assert res.status_code == 400
        assert res.json()["detail"] == "Cannot acknowledge a closed ticket"

        current = await client.get(f"/api/tickets/{t['id']}", headers=get_auth_headers(world.super_admin))
        assert current.json()["acknowledged_at"] is None

    async def test_cancelled_ticket_cannot_be_reassigned(self, client: AsyncClient, world, enqueued):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        res = await set_status(client, world.acme_employee, t["id"], "cancelled")
        assert res.status_code == 200
        enqueued.clear()

        res = await client.post(
            f"/api/tickets/{t['id']}/assign",
            headers=get_auth_headers(world.acme_admin),
            json={"assigned_to": world.technician.id},
        )
        assert res.status_code == 400
        assert res.json()["detail"] == "Cannot reassign a cancelled ticket"
        assert [e for e, _ in enqueued if e == "ticket.notify"] == []

        events = (await client.get(
            f"/api/tickets/{t['id']}/events", headers=get_auth_headers(world.acme_admin)
        )).json()
        assert "assigned" not in [e["event_type"] for e in events]


@pytest.mark.asyncio
class TestEdit:
    async def test_priority_change_recorded_and_notified(self, client: AsyncClient, world, enqueued):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        headers = get_auth_headers(world.acme_admin)
        await client.post(f"/api/tickets/{t['id']}/assign", headers=headers, json={"assigned_to": world.technician.id})
        enqueued.clear()

        res = await client.put(f"/api/tickets/{t['id']}", headers=headers, json={"priority": "urgent"})
        assert res.status_code == 200
        assert res.json()["priority"] == "urgent"

        events = (await client.get(f"/api/tickets/{t['id']}/events", headers=headers)).json()
        assert events[-1]["event_type"] == "updated"
        assert events[-1]["metadata"] == {"changes": {"priority": {"old": "normal", "new": "urgent"}}}

        notes = [p for e, p in enqueued if e == "ticket.notify"]
        assert [(n["recipient_id"], n["kind"]) for n in notes] == [(world.technician.id, "ticket_priority_changed")]

    async def test_noop_edit_writes_no_event(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        headers = get_auth_headers(world.acme_admin)
        res = await client.put(f"/api/tickets/{t['id']}", headers=headers, json={"title": t["title"]})
        assert res.status_code == 200
        events = (await client.get(f"/api/tickets/{t['id']}/events", headers=headers)).json()
        assert [e["event_type"] for e in events] == ["created"]

    async def test_closed_ticket_cannot_be_edited(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        await close_ticket(client, t["id"], world.acme_admin)
        res = await client.put(
            f"/api/tickets/{t['id']}", headers=get_auth_headers(world.acme_admin), json={"title": "New"}
        )
        assert res.status_code == 400

    async def test_employee_cannot_edit(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        res = await client.put(
            f"/api/tickets/{t['id']}", headers=get_auth_headers(world.acme_employee), json={"title": "Mine"}
        )
        assert res.status_code == 403

    async def test_status_not_editable_here(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        res = await client.put(
            f"/api/tickets/{t['id']}", headers=get_auth_headers(world.acme_admin), json={"status": "closed"}
        )
        assert res.status_code == 400


@pytest.mark.asyncio
class TestComments:
    async def test_public_comment(self, client: AsyncClient, world, enqueued):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        res = await client.post(
            f"/api/tickets/{t['id']}/comments",
            headers=get_auth_headers(world.acme_admin),
            json={"body": "Rebooted the router remotely"},
        )
        assert res.status_code == 201
        notes = [p for e, p in enqueued if e == "ticket.notify"]
        assert [n["recipient_id"] for n in notes] == [world.acme_employee.id]

        comments = (await client.get(
            f"/api/tickets/{t['id']}/comments", headers=get_auth_headers(world.acme_employee)
        )).json()
        assert [c["body"] for c in comments] == ["Rebooted the router remotely"]

    async def test_internal_notes_are_staff_only(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        denied = await client.post(
            f"/api/tickets/{t['id']}/comments",
            headers=get_auth_headers(world.acme_employee),
            json={"body": "psst", "is_internal": True},
        )
        assert denied.status_code == 403

        staff = get_auth_headers(world.acme_admin)
        await client.post(f"/api/tickets/{t['id']}/comments", headers=staff,
                          json={"body": "Customer's ISP is flaky", "is_internal": True})

        visible = (await client.get(
            f"/api/tickets/{t['id']}/comments", headers=get_auth_headers(world.acme_employee)
        )).json()
        assert visible == []
        assert len((await client.get(f"/api/tickets/{t['id']}/comments", headers=staff)).json()) == 1

        events = (await client.get(f"/api/tickets/{t['id']}/events", headers=staff)).json()
        assert events[-1]["event_type"] == "comment_added"
        assert events[-1]["comment"] == "[Internal Note]"

    async def test_comment_on_other_tenant_ticket(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        res = await client.post(
            f"/api/tickets/{t['id']}/comments",
            headers=get_auth_headers(world.globex_employee),
            json={"body": "hello"},
        )
        assert res.status_code == 403


@pytest.mark.asyncio
class TestDelete:
    async def test_platform_admin_hard_delete(self, client: AsyncClient, db_session, world, caplog):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        await client.post(f"/api/tickets/{t['id']}/comments", headers=get_auth_headers(world.acme_admin),
                          json={"body": "on it"})

        with caplog.at_level(logging.WARNING, logger="careportal.services.tickets"):
            res = await client.delete(f"/api/tickets/{t['id']}", headers=get_auth_headers(world.super_admin))
        assert res.status_code == 204
        assert any("hard-deleted" in r.getMessage() for r in caplog.records)

        gone = await client.get(f"/api/tickets/{t['id']}", headers=get_auth_headers(world.super_admin))
        assert gone.status_code == 404

        audit = (await db_session.execute(select(AuditLog).where(AuditLog.ticket_id == t["id"]))).scalars().all()
        assert [a.action for a in audit] == ["ticket.delete"]
        assert audit[0].actor_id == world.super_admin.id
        assert audit[0].payload["ticket_number"] == t["ticket_number"]

        events = (await db_session.execute(select(TicketEvent).where(TicketEvent.ticket_id == t["id"]))).all()
        assert events == []

    async def test_org_admin_cannot_delete(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        res = await client.delete(f"/api/tickets/{t['id']}", headers=get_auth_headers(world.acme_admin))
        assert res.status_code == 403

    async def test_read_only_admin_cannot_delete(self, client: AsyncClient, world):
        t = await create_ticket(client, world.acme_employee, world.lisbon)
        res = await client.delete(f"/api/tickets/{t['id']}", headers=get_auth_headers(world.read_only))
        assert res.status_code == 403
