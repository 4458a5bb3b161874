"""
End-to-end tests for the REST API.
"""
import uuid

import pytest

import config
from api import app, get_uow
from conftest import FailingUnitOfWork

BASE = "/api/v1"


def create_trade(client, name, email):
    response = client.post(f"{BASE}/trades", json={"name": name, "contact": "Office", "phone": "555-0000", "email": email})
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.fixture
def site(client):
    """A project with a Foundation task gating a Framing task."""
    foundation = create_trade(client, "Foundation", "frank@concrete.com")
    framing = create_trade(client, "Framing", "contact@frameup.com")

    response = client.post(
        f"{BASE}/projects",
        json={"name": "Oak Ave. Residence", "address": "4 Oak Ave.", "client": "Chen", "trade_ids": [foundation["id"], framing["id"]]},
    )
    assert response.status_code == 201, response.text
    project_id = response.json()["data"]["id"]

    tasks = client.get(f"{BASE}/projects/{project_id}/tasks").json()["data"]
    by_trade = {t["trade_id"]: t for t in tasks}
    first = by_trade[foundation["id"]]["id"]
    second = by_trade[framing["id"]]["id"]

    tasks_url = f"{BASE}/projects/{project_id}/tasks"
    client.patch(f"{tasks_url}/{first}", json={"start_date": "2024-01-01", "end_date": "2024-01-05"})
    client.patch(f"{tasks_url}/{second}", json={"start_date": "2024-01-06", "end_date": "2024-01-08"})
    response = client.put(f"{tasks_url}/{second}/dependency", json={"dependency_id": first})
    assert response.status_code == 200, response.text

    return {"project_id": project_id, "tasks_url": tasks_url, "first": first, "second": second}


def delay(client, site, days=3, reason="Concrete cure time"):
    return client.post(
        f"{site['tasks_url']}/{site['first']}/updates",
        json={"status": "Delayed", "delay_duration_in_days": days, "notes": "Slab cracked", "delay_reason": reason},
    )


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestTradesAndProjects:
    """Trade catalogue and project creation."""

    def test_list_trades_sorted(self, client):
        create_trade(client, "Roofing", "quotes@toptier.com")
        create_trade(client, "Drywall", "jobs@smoothfinish.com")
        names = [t["name"] for t in client.get(f"{BASE}/trades").json()["data"]]
        assert names == ["Drywall", "Roofing"]

    def test_invalid_trade_email(self, client):
        response = client.post(f"{BASE}/trades", json={"name": "Roofing", "email": "not-an-email"})
        assert response.status_code == 422

    def test_project_gets_initial_task_per_trade(self, client, site):
        tasks = client.get(f"{site['tasks_url']}").json()["data"]
        assert len(tasks) == 2
        assert all(t["progress"] == 0 for t in tasks)
        project = client.get(f"{BASE}/projects/{site['project_id']}").json()["data"]
        assert project["name"] == "Oak Ave. Residence"

    def test_initial_task_defaults(self, client):
        trade = create_trade(client, "Painting", "contact@perfectpainters.com")
        project_id = client.post(f"{BASE}/projects", json={"name": "Infill", "trade_ids": [trade["id"]]}).json()["data"]["id"]
        (task,) = client.get(f"{BASE}/projects/{project_id}/tasks").json()["data"]
        assert task["status"] == "Not Started"
        assert task["notes"] == "Initial task created for this trade."
        assert task["dependency"] is None
        assert task["start_date"] == task["end_date"]

    def test_unknown_trade_in_project(self, client):
        response = client.post(f"{BASE}/projects", json={"name": "Infill", "trade_ids": [str(uuid.uuid4())]})
        assert response.status_code == 404

    def test_unknown_project(self, client):
        response = client.get(f"{BASE}/projects/{uuid.uuid4()}")
        assert response.status_code == 404
        assert "not found" in response.json()["detail"]


class TestTasks:
    """Task edits and dependency wiring."""

    def test_dependency_cycle_rejected(self, client, site):
        response = client.put(
            f"{site['tasks_url']}/{site['first']}/dependency",
            json={"dependency_id": site["second"]},
        )
        assert response.status_code == 422
        assert "circular" in response.json()["detail"]

    def test_self_dependency_rejected(self, client, site):
        response = client.put(
            f"{site['tasks_url']}/{site['first']}/dependency",
            json={"dependency_id": site["first"]},
        )
        assert response.status_code == 422

    def test_clear_dependency(self, client, site):
        response = client.put(f"{site['tasks_url']}/{site['second']}/dependency", json={"dependency_id": None})
        assert response.status_code == 200
        assert response.json()["data"]["dependency"] is None

    def test_end_before_start_rejected(self, client, site):
        response = client.patch(f"{site['tasks_url']}/{site['first']}", json={"end_date": "2023-12-31"})
        assert response.status_code == 422

    def test_add_task_with_dependency(self, client, site):
        trade = create_trade(client, "Roofing", "quotes@toptier.com")
        response = client.post(
            site["tasks_url"],
            json={
                "trade_id": trade["id"],
                "start_date": "2024-01-09",
                "end_date": "2024-01-12",
                "dependency": site["second"],
            },
        )
        assert response.status_code == 201, response.text
        assert response.json()["data"]["duration_days"] == 3

    def test_invalid_status_rejected(self, client, site):
        response = client.post(f"{site['tasks_url']}/{site['first']}/updates", json={"status": "Done"})
        assert response.status_code == 422

    def test_completed_update_applied(self, client, site):
        response = client.post(
            f"{site['tasks_url']}/{site['first']}/updates",
            json={"status": "Completed", "progress": 20},
        )
        assert response.status_code == 200
        body = response.json()["data"]
        assert body["outcome"] == "applied"
        assert body["task"]["progress"] == 100


class TestCascade:
    """Delay reporting, preview, approval and denial."""

    def test_preview_does_not_write(self, client, site):
        response = client.get(f"{site['tasks_url']}/{site['first']}/cascade-preview", params={"delay_days": 3})
        assert response.status_code == 200
        dates = {t["task_id"]: (t["start_date"], t["end_date"]) for t in response.json()["data"]["tasks"]}
        assert dates[site["second"]] == ("2024-01-09", "2024-01-11")
        second = client.get(f"{site['tasks_url']}/{site['second']}").json()["data"]
        assert second["start_date"] == "2024-01-06"

    def test_preview_rejects_zero_delay(self, client, site):
        response = client.get(f"{site['tasks_url']}/{site['first']}/cascade-preview", params={"delay_days": 0})
        assert response.status_code == 422

    def test_delay_creates_pending_request(self, client, site):
        response = delay(client, site)
        assert response.status_code == 202
        cr = response.json()["data"]["change_request"]
        assert cr["trade_name"] == "Foundation"
        assert cr["proposed_update"]["delay_duration_in_days"] == 3

        pending = client.get(f"{BASE}/projects/{site['project_id']}/change-requests").json()["data"]
        assert [p["id"] for p in pending] == [cr["id"]]

    def test_approve_reschedules(self, client, site):
        cr_id = delay(client, site).json()["data"]["change_request"]["id"]
        response = client.post(f"{BASE}/projects/{site['project_id']}/change-requests/{cr_id}/approve")
        assert response.status_code == 200, response.text

        first = client.get(f"{site['tasks_url']}/{site['first']}").json()["data"]
        second = client.get(f"{site['tasks_url']}/{site['second']}").json()["data"]
        assert (first["start_date"], first["end_date"]) == ("2024-01-04", "2024-01-08")
        assert (second["start_date"], second["end_date"]) == ("2024-01-09", "2024-01-11")
        assert first["status"] == "Delayed"
        assert first["notes"].startswith("Delay Approved. Reason: Concrete cure time")

        pending = client.get(f"{BASE}/projects/{site['project_id']}/change-requests").json()["data"]
        assert pending == []

        again = client.post(f"{BASE}/projects/{site['project_id']}/change-requests/{cr_id}/approve")
        assert again.status_code == 404
        deny = client.post(f"{BASE}/projects/{site['project_id']}/change-requests/{cr_id}/deny")
        assert deny.status_code == 204

    def test_deny_is_idempotent(self, client, site):
        cr_id = delay(client, site).json()["data"]["change_request"]["id"]
        url = f"{BASE}/projects/{site['project_id']}/change-requests/{cr_id}/deny"
        assert client.post(url).status_code == 204
        assert client.post(url).status_code == 204
        first = client.get(f"{site['tasks_url']}/{site['first']}").json()["data"]
        assert first["start_date"] == "2024-01-01"

    def test_commit_failure_returns_503(self, client, db, site):
        cr_id = delay(client, site).json()["data"]["change_request"]["id"]
        app.dependency_overrides[get_uow] = lambda: FailingUnitOfWork(db)
        response = client.post(f"{BASE}/projects/{site['project_id']}/change-requests/{cr_id}/approve")
        assert response.status_code == 503

        pending = client.get(f"{BASE}/projects/{site['project_id']}/change-requests/{cr_id}")
        assert pending.status_code == 200
        first = client.get(f"{site['tasks_url']}/{site['first']}").json()["data"]
        assert first["start_date"] == "2024-01-01"

    def test_preview_reports_dangling_dependency(self, client, db, site):
        missing = uuid.uuid4()
        db.tasks.fetch(uuid.UUID(site["first"])).dependency = missing
        response = client.get(f"{site['tasks_url']}/{site['first']}/cascade-preview", params={"delay_days": 2})
        assert response.status_code == 200
        dangling = response.json()["data"]["dangling_dependencies"]
        assert dangling == [{"task_id": site["first"], "missing_dependency_id": str(missing)}]

    def test_approve_with_stored_cycle_is_rejected(self, client, db, site):
        db.tasks.fetch(uuid.UUID(site["first"])).dependency = uuid.UUID(site["second"])
        cr_id = delay(client, site).json()["data"]["change_request"]["id"]
        response = client.post(f"{BASE}/projects/{site['project_id']}/change-requests/{cr_id}/approve")
        assert response.status_code == 422
        assert "cycle" in response.json()["detail"]
        pending = client.get(f"{BASE}/projects/{site['project_id']}/change-requests/{cr_id}")
        assert pending.status_code == 200


class TestStartup:
    def test_default_trades_seeded_through_uow_override(self, client, db, monkeypatch):
        """Startup seeding writes to whichever store get_uow resolves to."""
        monkeypatch.setattr(config, "SEED_DEFAULT_TRADES", True)
        with client:
            pass
        names = {t.name for t in db.trades.all()}
        assert len(names) == 9
        assert {"Foundation", "Municipal Inspector"} <= names


class TestMilestones:
    def test_milestones_follow_task_status(self, client, site):
        client.post(f"{site['tasks_url']}/{site['first']}/updates", json={"status": "Completed"})
        milestones = client.get(f"{BASE}/projects/{site['project_id']}/milestones").json()["data"]
        result = {m["name"]: m["status"] for m in milestones}
        assert result["Foundation"] == "Completed"
        assert result["Framing"] == "Next"
        assert result["Final"] == "Incomplete"
