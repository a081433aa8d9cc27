"""
Guitar build tests.

Covers:
    - staff create (defaults, spec cleaning, run constraints, assignment notification)
    - client onboarding and "my guitars"
    - client isolation and client-facing stage labels
    - update, archive / unarchive, gallery images, run listing
"""

import io

from conftest import auth_headers, stage_by_label

from buildtrack.models import db
from buildtrack.models.audit import AuditLog
from buildtrack.models.guitar import StageTransition
from buildtrack.models.notification import Notification


def _create(client, headers, run, **kw):
    body = {"run_id": run.id, "model": "Hype GTR", "finish": "Interstellar",
            "order_number": "ORM-1001"}
    body.update(kw)
    return client.post("/api/v1/guitars", json=body, headers=headers)


class TestCreate:
    def test_defaults_to_first_stage(self, client, staff_headers, perth_run):
        res = _create(client, staff_headers, perth_run)
        assert res.status_code == 201
        data = res.get_json()
        design = stage_by_label(perth_run, "Design")
        assert data["stage_id"] == design.id
        assert data["stage"]["label"] == "Design"
        assert data["run_name"] == "Perth Run #7"

        initial = StageTransition.query.filter_by(guitar_id=data["id"]).one()
        assert initial.from_stage_id is None
        assert initial.to_stage_id == design.id

    def test_specs_cleaned(self, client, staff_headers, perth_run):
        res = _create(client, staff_headers, perth_run,
                      specs={"body_wood": " Swamp Ash ", "pickups": "", "colour": "red"})
        assert res.get_json()["specs"] == {"body_wood": "Swamp Ash"}

    def test_run_spec_constraints(self, client, staff_headers, perth_run):
        perth_run.spec_constraints = {"body_wood": ["Swamp Ash", "Mahogany"]}
        db.session.commit()
        res = _create(client, staff_headers, perth_run, specs={"body_wood": "Pine"})
        assert res.status_code == 422
        assert "body_wood" in res.get_json()["details"]

    def test_stage_from_other_run(self, client, staff, staff_headers, perth_run):
        other = client.post("/api/v1/runs", json={"name": "Other", "stages": [{"label": "X"}]},
                            headers=staff_headers).get_json()
        res = _create(client, staff_headers, perth_run, stage_id=other["stages"][0]["id"])
        assert res.status_code == 404

    def test_run_required(self, client, staff_headers):
        res = client.post("/api/v1/guitars", json={"model": "X"}, headers=staff_headers)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"run_id": "required"}

    def test_assignment_notifies_client(self, client, admin, staff_headers, perth_run, client_user):
        guitar = _create(client, staff_headers, perth_run, client_uid=client_user.uid).get_json()
        assigned = Notification.query.filter_by(user_uid=client_user.uid, type="guitar_assigned").one()
        assert assigned.guitar_id == guitar["id"]
        assert Notification.query.filter_by(user_uid=admin.uid, type="guitar_created").count() == 1

    def test_drive_reference_images(self, client, staff_headers, perth_run):
        res = _create(client, staff_headers, perth_run,
                      reference_images=["https://drive.google.com/file/d/REF1/view"])
        assert res.get_json()["reference_images"] == ["https://drive.google.com/uc?export=view&id=REF1"]


class TestClientViews:
    def test_onboard(self, client, client_user, client_headers, perth_run):
        res = client.post("/api/v1/guitars/onboard", json={
            "run_id": perth_run.id, "model": "Goliath", "finish": "Black",
            "stage_id": stage_by_label(perth_run, "Finish").id, "client_uid": "someone-else",
        }, headers=client_headers)
        assert res.status_code == 201
        data = res.get_json()
        assert data["client_uid"] == client_user.uid
        assert data["customer_email"] == "jo@example.com"
        assert data["stage_id"] == stage_by_label(perth_run, "Design").id

    def test_onboard_closed_run(self, client, staff_headers, client_headers, perth_run):
        client.put(f"/api/v1/runs/{perth_run.id}", json={"is_active": False}, headers=staff_headers)
        res = client.post("/api/v1/guitars/onboard", json={"run_id": perth_run.id, "model": "X"},
                          headers=client_headers)
        assert res.status_code == 422

    def test_onboard_requires_model(self, client, client_headers, perth_run):
        res = client.post("/api/v1/guitars/onboard", json={"run_id": perth_run.id},
                          headers=client_headers)
        assert res.status_code == 422

    def test_mine_records_activity(self, client, staff_headers, client_user, client_headers,
                                   perth_run):
        _create(client, staff_headers, perth_run, client_uid=client_user.uid)
        _create(client, staff_headers, perth_run)
        data = client.get("/api/v1/guitars/mine", headers=client_headers).get_json()
        assert data["total"] == 1
        assert data["items"][0]["stage"] == {
            "id": stage_by_label(perth_run, "Design").id, "label": "Designing", "order": 0,
        }
        assert AuditLog.query.filter_by(actor_uid=client_user.uid, action="view_my_guitars").count() == 1

    def test_other_clients_guitar_404(self, client, staff_headers, perth_run, client_user, make_user):
        guitar = _create(client, staff_headers, perth_run, client_uid=client_user.uid).get_json()
        stranger = make_user("client", "stranger@example.com")
        res = client.get(f"/api/v1/guitars/{guitar['id']}", headers=auth_headers(stranger))
        assert res.status_code == 404

    def test_client_view_recorded(self, client, staff_headers, client_user, client_headers,
                                  perth_run):
        guitar = _create(client, staff_headers, perth_run, client_uid=client_user.uid).get_json()
        assert client.get(f"/api/v1/guitars/{guitar['id']}", headers=client_headers).status_code == 200
        entry = AuditLog.query.filter_by(action="view_guitar").one()
        assert entry.entity_id == guitar["id"]

    def test_client_cannot_see_history(self, client, staff_headers, client_user, client_headers,
                                       perth_run):
        guitar = _create(client, staff_headers, perth_run, client_uid=client_user.uid).get_json()
        res = client.get(f"/api/v1/guitars/{guitar['id']}/history", headers=client_headers)
        assert res.status_code == 403


class TestUpdateAndArchive:
    def test_update_ignores_stage(self, client, staff_headers, perth_run):
        guitar = _create(client, staff_headers, perth_run).get_json()
        res = client.put(f"/api/v1/guitars/{guitar['id']}", json={
            "serial": " OG-2231 ", "finish": "", "stage_id": stage_by_label(perth_run, "Finish").id,
        }, headers=staff_headers)
        data = res.get_json()
        assert data["serial"] == "OG-2231"
        assert data["finish"] is None
        assert data["stage_id"] == guitar["stage_id"]

    def test_update_bad_trigger_stage(self, client, staff_headers, perth_run):
        guitar = _create(client, staff_headers, perth_run).get_json()
        res = client.put(f"/api/v1/guitars/{guitar['id']}",
                         json={"invoice_trigger_stage_id": "nope"}, headers=staff_headers)
        assert res.status_code == 404

    def test_archive_cycle(self, client, admin, staff_headers, perth_run):
        guitar = _create(client, staff_headers, perth_run).get_json()
        res = client.post(f"/api/v1/guitars/{guitar['id']}/archive", headers=staff_headers)
        assert res.get_json()["archived"] is True
        assert Notification.query.filter_by(user_uid=admin.uid, type="guitar_archived").count() == 1

        listed = client.get(f"/api/v1/runs/{perth_run.id}/guitars", headers=staff_headers).get_json()
        assert listed["total"] == 0
        listed = client.get(f"/api/v1/runs/{perth_run.id}/guitars?include_archived=true",
                            headers=staff_headers).get_json()
        assert listed["total"] == 1

        res = client.post(f"/api/v1/guitars/{guitar['id']}/unarchive", headers=staff_headers)
        assert res.get_json()["archived"] is False

    def test_run_guitars_by_stage(self, client, staff_headers, perth_run):
        _create(client, staff_headers, perth_run)
        _create(client, staff_headers, perth_run, stage_id=stage_by_label(perth_run, "Carve").id)
        carve = stage_by_label(perth_run, "Carve").id
        listed = client.get(f"/api/v1/runs/{perth_run.id}/guitars?stage_id={carve}",
                            headers=staff_headers).get_json()
        assert [g["stage_id"] for g in listed["items"]] == [carve]


class TestGallery:
    def test_owner_adds_links(self, client, staff_headers, client_user, client_headers, perth_run):
        guitar = _create(client, staff_headers, perth_run, client_uid=client_user.uid).get_json()
        res = client.post(f"/api/v1/guitars/{guitar['id']}/gallery",
                          json={"image_urls": ["https://example.com/inspo.jpg"]},
                          headers=client_headers)
        assert res.status_code == 201
        assert res.get_json()["reference_images"] == ["https://example.com/inspo.jpg"]

    def test_upload_files(self, client, staff_headers, perth_run):
        guitar = _create(client, staff_headers, perth_run).get_json()
        res = client.post(
            f"/api/v1/guitars/{guitar['id']}/gallery",
            data={"files": (io.BytesIO(b"\x89PNG"), "inspo.png")},
            content_type="multipart/form-data",
            headers=staff_headers,
        )
        images = res.get_json()["reference_images"]
        assert images[0].startswith(f"/uploads/guitars/{guitar['id']}/reference/")

    def test_empty_gallery_rejected(self, client, staff_headers, perth_run):
        guitar = _create(client, staff_headers, perth_run).get_json()
        res = client.post(f"/api/v1/guitars/{guitar['id']}/gallery", json={}, headers=staff_headers)
        assert res.status_code == 422

    def test_reference_upload_before_create(self, client, client_user, client_headers):
        res = client.post(
            "/api/v1/guitars/reference-images",
            data={"files": (io.BytesIO(b"\x89PNG"), "ref.png"), "temp_id": "draft-1"},
            content_type="multipart/form-data",
            headers=client_headers,
        )
        assert res.status_code == 201
        prefix = f"/uploads/guitars/draft-{client_user.uid}-draft-1/reference/"
        assert res.get_json()["urls"][0].startswith(prefix)
