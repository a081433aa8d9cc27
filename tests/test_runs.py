"""
Run & stage tests.

Covers run CRUD and archiving, dense stage orders across add / delete /
reorder, stage deletion guarded by guitars, client run visibility and
run updates with comments.
"""

import io
import os

from conftest import stage_by_label

from buildtrack.models import db
from buildtrack.models.notification import Notification
from buildtrack.models.outbox import OutboxEvent
from buildtrack.models.run import RunStage
from buildtrack.services import run_service


def _orders(run_id):
    return [(s.label, s.order) for s in run_service.list_stages(run_id)]


def _guitar(client, headers, run, stage="Carve", **kw):
    body = {"run_id": run.id, "stage_id": stage_by_label(run, stage).id, "model": "Goliath",
            "finish": "Natural"}
    body.update(kw)
    res = client.post("/api/v1/guitars", json=body, headers=headers)
    assert res.status_code == 201
    return res.get_json()


class TestRunCrud:
    def test_create_with_stages(self, client, staff_headers, admin):
        res = client.post("/api/v1/runs", json={
            "name": "Korea Run #3",
            "factory": "korea",
            "stages": [{"label": "Wood", "order": 9}, {"label": "Paint", "order": 3}],
        }, headers=staff_headers)
        assert res.status_code == 201
        data = res.get_json()
        assert [(s["label"], s["order"]) for s in data["stages"]] == [("Wood", 0), ("Paint", 1)]
        assert Notification.query.filter_by(user_uid=admin.uid, type="run_created").count() == 1

    def test_name_required(self, client, staff_headers):
        res = client.post("/api/v1/runs", json={"stages": []}, headers=staff_headers)
        assert res.status_code == 422

    def test_client_cannot_create(self, client, client_headers):
        res = client.post("/api/v1/runs", json={"name": "Nope"}, headers=client_headers)
        assert res.status_code == 403

    def test_update(self, client, staff_headers, perth_run):
        res = client.put(f"/api/v1/runs/{perth_run.id}", json={"name": "Perth Run #7b"},
                         headers=staff_headers)
        assert res.get_json()["name"] == "Perth Run #7b"

    def test_archive_and_list(self, client, staff_headers, perth_run):
        res = client.post(f"/api/v1/runs/{perth_run.id}/archive", headers=staff_headers)
        assert res.get_json()["archived"] is True

        listed = client.get("/api/v1/runs", headers=staff_headers).get_json()
        assert listed["total"] == 0
        listed = client.get("/api/v1/runs?include_archived=true", headers=staff_headers).get_json()
        assert listed["total"] == 1

        res = client.post(f"/api/v1/runs/{perth_run.id}/unarchive", headers=staff_headers)
        assert res.get_json()["archived"] is False

    def test_archived_run_rejects_guitars(self, client, staff_headers, perth_run):
        client.post(f"/api/v1/runs/{perth_run.id}/archive", headers=staff_headers)
        res = client.post("/api/v1/guitars", json={"run_id": perth_run.id, "model": "X"},
                          headers=staff_headers)
        assert res.status_code == 422

    def test_unknown_run(self, client, staff_headers):
        res = client.get("/api/v1/runs/nope", headers=staff_headers)
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


class TestStageOrdering:
    def test_add_at_position(self, client, staff_headers, perth_run):
        res = client.post(f"/api/v1/runs/{perth_run.id}/stages",
                          json={"label": "Neck", "position": 1}, headers=staff_headers)
        assert res.status_code == 201
        assert _orders(perth_run.id) == [("Design", 0), ("Neck", 1), ("Carve", 2), ("Finish", 3)]

    def test_add_defaults_to_end(self, client, staff_headers, perth_run):
        client.post(f"/api/v1/runs/{perth_run.id}/stages", json={"label": "Ship"},
                    headers=staff_headers)
        assert _orders(perth_run.id)[-1] == ("Ship", 3)

    def test_delete_closes_gap(self, client, staff_headers, perth_run):
        carve = stage_by_label(perth_run, "Carve")
        res = client.delete(f"/api/v1/runs/{perth_run.id}/stages/{carve.id}", headers=staff_headers)
        assert res.status_code == 200
        assert _orders(perth_run.id) == [("Design", 0), ("Finish", 1)]

    def test_delete_with_guitars_conflicts(self, client, staff_headers, perth_run):
        _guitar(client, staff_headers, perth_run, stage="Carve")
        carve = stage_by_label(perth_run, "Carve")
        res = client.delete(f"/api/v1/runs/{perth_run.id}/stages/{carve.id}", headers=staff_headers)
        assert res.status_code == 409
        assert db.session.get(RunStage, carve.id) is not None

    def test_reorder(self, client, staff_headers, perth_run):
        ids = {s.label: s.id for s in run_service.list_stages(perth_run.id)}
        res = client.put(f"/api/v1/runs/{perth_run.id}/stages/order",
                         json={"stage_ids": [ids["Finish"], ids["Design"], ids["Carve"]]},
                         headers=staff_headers)
        assert res.status_code == 200
        assert [s["label"] for s in res.get_json()["items"]] == ["Finish", "Design", "Carve"]
        assert _orders(perth_run.id) == [("Finish", 0), ("Design", 1), ("Carve", 2)]

    def test_reorder_must_list_every_stage(self, client, staff_headers, perth_run):
        ids = [s.id for s in run_service.list_stages(perth_run.id)]
        res = client.put(f"/api/v1/runs/{perth_run.id}/stages/order",
                         json={"stage_ids": ids[:2]}, headers=staff_headers)
        assert res.status_code == 422
        assert _orders(perth_run.id) == [("Design", 0), ("Carve", 1), ("Finish", 2)]

    def test_first_stage_is_default(self, client, staff_headers, perth_run):
        res = client.post("/api/v1/guitars", json={"run_id": perth_run.id, "model": "X"},
                          headers=staff_headers)
        assert res.get_json()["stage_id"] == stage_by_label(perth_run, "Design").id

    def test_update_stage_flags(self, client, staff_headers, perth_run):
        finish = stage_by_label(perth_run, "Finish")
        res = client.put(f"/api/v1/runs/{perth_run.id}/stages/{finish.id}",
                         json={"requires_photo": True, "invoice_schedule": {"amount": 250}},
                         headers=staff_headers)
        data = res.get_json()
        assert data["requires_photo"] is True
        assert data["invoice_schedule"] == {"amount": 250}

    def test_negative_schedule_rejected(self, client, staff_headers, perth_run):
        finish = stage_by_label(perth_run, "Finish")
        res = client.put(f"/api/v1/runs/{perth_run.id}/stages/{finish.id}",
                         json={"invoice_schedule": {"amount": -5}}, headers=staff_headers)
        assert res.status_code == 422


class TestClientVisibility:
    def test_client_sees_only_own_runs(self, client, staff, staff_headers, client_headers,
                                       perth_run, client_user):
        other = run_service.create_run({"name": "Other run", "stages": [{"label": "A"}]}, actor=staff)
        db.session.commit()
        _guitar(client, staff_headers, perth_run, client_uid=client_user.uid)

        items = client.get("/api/v1/runs", headers=client_headers).get_json()["items"]
        assert [r["id"] for r in items] == [perth_run.id]

        active = client.get("/api/v1/runs?active_only=true", headers=client_headers).get_json()
        assert {r["id"] for r in active["items"]} == {perth_run.id, other.id}

    def test_internal_stages_hidden_from_client(self, client, staff_headers, client_headers,
                                                perth_run, client_user):
        stage_by_label(perth_run, "Carve").internal_only = True
        db.session.commit()
        _guitar(client, staff_headers, perth_run, stage="Design", client_uid=client_user.uid)

        labels = [s["label"] for s in client.get(
            f"/api/v1/runs/{perth_run.id}/stages", headers=client_headers).get_json()["items"]]
        assert labels == ["Design", "Finish"]

    def test_inactive_run_not_found_for_stranger(self, client, staff, client_headers):
        run = run_service.create_run({"name": "Closed", "is_active": False}, actor=staff)
        db.session.commit()
        res = client.get(f"/api/v1/runs/{run.id}", headers=client_headers)
        assert res.status_code == 404


class TestRunUpdates:
    def _post(self, client, headers, run, **body):
        payload = {"title": "Week 3 progress", "message": "Necks are glued.",
                   "visible_to_clients": True}
        payload.update(body)
        return client.post(f"/api/v1/runs/{run.id}/updates", json=payload, headers=headers)

    def test_broadcast_to_run_clients(self, client, staff_headers, perth_run, client_user,
                                      make_user, mailgun):
        second = make_user("client", "second@example.com")
        _guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        _guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        _guitar(client, staff_headers, perth_run, client_uid=second.uid)

        res = self._post(client, staff_headers, perth_run)
        assert res.status_code == 201
        recipients = sorted(c.kwargs["data"]["to"] for c in mailgun.post.call_args_list)
        assert recipients == ["jo@example.com", "second@example.com"]
        assert mailgun.post.call_args.kwargs["data"]["subject"] == "Perth Run #7: Week 3 progress"
        assert Notification.query.filter_by(user_uid=client_user.uid, type="run_update").count() == 1

    def test_internal_update_not_emailed(self, client, staff_headers, perth_run, client_user,
                                         mailgun):
        _guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        self._post(client, staff_headers, perth_run, visible_to_clients=False)
        assert mailgun.post.call_count == 0
        assert OutboxEvent.query.filter_by(event_type="run_update.created").one().status == "dispatched"

    def test_client_view_of_updates(self, client, staff_headers, client_headers, perth_run,
                                    client_user):
        _guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        self._post(client, staff_headers, perth_run, title="Public")
        self._post(client, staff_headers, perth_run, title="Internal", visible_to_clients=False)

        res = client.get(f"/api/v1/runs/{perth_run.id}/updates", headers=client_headers)
        assert [u["title"] for u in res.get_json()["items"]] == ["Public"]

    def test_client_without_guitar_sees_nothing(self, client, staff_headers, client_headers,
                                                perth_run):
        self._post(client, staff_headers, perth_run)
        res = client.get(f"/api/v1/runs/{perth_run.id}/updates", headers=client_headers)
        assert res.get_json()["items"] == []

    def test_comment_notifies_staff(self, client, staff, staff_headers, client_headers,
                                    perth_run, client_user):
        _guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        update = self._post(client, staff_headers, perth_run).get_json()

        res = client.post(f"/api/v1/runs/{perth_run.id}/updates/{update['id']}/comments",
                          json={"message": "Looks great!"}, headers=client_headers)
        assert res.status_code == 201
        note = Notification.query.filter_by(user_uid=staff.uid, type="run_update_comment").one()
        assert note.title == "New comment on run update: Week 3 progress"
        assert note.message == "Jo Client on Perth Run #7: Looks great!"

        comments = client.get(f"/api/v1/runs/{perth_run.id}/updates/{update['id']}/comments",
                              headers=staff_headers).get_json()
        assert comments["total"] == 1

    def test_empty_comment_rejected(self, client, staff_headers, perth_run):
        update = self._post(client, staff_headers, perth_run).get_json()
        res = client.post(f"/api/v1/runs/{perth_run.id}/updates/{update['id']}/comments",
                          json={"message": "  "}, headers=staff_headers)
        assert res.status_code == 422


class TestThumbnail:
    def test_replace_deletes_previous(self, app, client, staff_headers, perth_run):
        def upload(name):
            return client.post(
                f"/api/v1/runs/{perth_run.id}/thumbnail",
                data={"file": (io.BytesIO(b"\x89PNG"), name)},
                content_type="multipart/form-data",
                headers=staff_headers,
            ).get_json()["thumbnail_url"]

        first = upload("one.png")
        assert first.startswith(f"/uploads/runs/{perth_run.id}/thumbnail/")
        first_path = os.path.join(app.config["UPLOAD_FOLDER"], *first[len("/uploads/"):].split("/"))
        assert os.path.exists(first_path)

        second = upload("two.png")
        assert second != first
        assert not os.path.exists(first_path)

    def test_file_required(self, client, staff_headers, perth_run):
        res = client.post(f"/api/v1/runs/{perth_run.id}/thumbnail", data={},
                          content_type="multipart/form-data", headers=staff_headers)
        assert res.status_code == 400
