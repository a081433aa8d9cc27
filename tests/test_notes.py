"""
Build notes, photos and note comments.

Covers client visibility of internal notes, photo upload + removal
(owned files deleted, pasted links left alone), explicit "viewed"
marking and comment notifications via the outbox.
"""

import io
import os

from conftest import auth_headers, stage_by_label

from buildtrack.core.exceptions import ConflictError
from buildtrack.models import db
from buildtrack.models.guitar import Guitar, GuitarNote
from buildtrack.models.notification import Notification


def _guitar(client, headers, run, **kw):
    body = {"run_id": run.id, "stage_id": stage_by_label(run, "Carve").id,
            "model": "Hype GTR", "finish": "Interstellar"}
    body.update(kw)
    return client.post("/api/v1/guitars", json=body, headers=headers).get_json()


def _note(client, headers, guitar_id, **kw):
    body = {"message": "Neck carved", "type": "milestone"}
    body.update(kw)
    return client.post(f"/api/v1/guitars/{guitar_id}/notes", json=body, headers=headers)


class TestNoteVisibility:
    def test_client_sees_only_visible_notes(self, client, staff_headers, client_headers,
                                            perth_run, client_user):
        guitar = _guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        _note(client, staff_headers, guitar["id"], message="Public", visible_to_client=True)
        internal = _note(client, staff_headers, guitar["id"], message="Wood had a crack").get_json()

        res = client.get(f"/api/v1/guitars/{guitar['id']}/notes", headers=client_headers)
        assert [n["message"] for n in res.get_json()["items"]] == ["Public"]

        res = client.get(f"/api/v1/guitars/{guitar['id']}/notes", headers=staff_headers)
        assert res.get_json()["total"] == 2

        res = client.get(f"/api/v1/guitars/{guitar['id']}/notes/{internal['id']}/comments",
                         headers=client_headers)
        assert res.status_code == 404

    def test_other_clients_guitar_hidden(self, client, staff_headers, perth_run, make_user):
        owner = make_user("client", "owner@example.com")
        stranger = make_user("client", "stranger@example.com")
        guitar = _guitar(client, staff_headers, perth_run, client_uid=owner.uid)
        res = client.get(f"/api/v1/guitars/{guitar['id']}/notes", headers=auth_headers(stranger))
        assert res.status_code == 404

    def test_note_defaults_to_current_stage(self, client, staff_headers, perth_run):
        guitar = _guitar(client, staff_headers, perth_run)
        note = _note(client, staff_headers, guitar["id"]).get_json()
        assert note["stage_id"] == stage_by_label(perth_run, "Carve").id
        assert note["author_name"] == "Sam Staff"

    def test_note_needs_message_or_photo(self, client, staff_headers, perth_run):
        guitar = _guitar(client, staff_headers, perth_run)
        res = _note(client, staff_headers, guitar["id"], message="  ")
        assert res.status_code == 422

    def test_unknown_note_type(self, client, staff_headers, perth_run):
        guitar = _guitar(client, staff_headers, perth_run)
        res = _note(client, staff_headers, guitar["id"], type="gossip")
        assert res.status_code == 422

    def test_client_cannot_post_notes(self, client, staff_headers, client_headers, perth_run,
                                      client_user):
        guitar = _guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        res = _note(client, client_headers, guitar["id"])
        assert res.status_code == 403

    def test_visible_note_notifies_client(self, client, staff_headers, perth_run, client_user):
        guitar = _guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        _note(client, staff_headers, guitar["id"], visible_to_client=True)
        notes = Notification.query.filter_by(user_uid=client_user.uid, type="guitar_note_added").all()
        assert [n.title for n in notes] == ["New milestone on Hype GTR"]

    def test_internal_note_does_not_notify_client(self, client, staff_headers, perth_run,
                                                  client_user):
        guitar = _guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        _note(client, staff_headers, guitar["id"])
        assert Notification.query.filter_by(
            user_uid=client_user.uid, type="guitar_note_added").count() == 0


class TestViewed:
    def test_first_view_recorded_once(self, client, staff_headers, client_headers, perth_run,
                                      client_user):
        guitar = _guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        note = _note(client, staff_headers, guitar["id"], visible_to_client=True).get_json()
        url = f"/api/v1/guitars/{guitar['id']}/notes/{note['id']}/viewed"

        first = client.post(url, headers=client_headers).get_json()["viewed_by"][client_user.uid]
        second = client.post(url, headers=client_headers).get_json()["viewed_by"][client_user.uid]
        assert first == second

    def test_listing_does_not_mark_viewed(self, client, staff_headers, client_headers, perth_run,
                                          client_user):
        guitar = _guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        _note(client, staff_headers, guitar["id"], visible_to_client=True)
        items = client.get(f"/api/v1/guitars/{guitar['id']}/notes",
                           headers=client_headers).get_json()["items"]
        assert items[0]["viewed_by"] == {}


class TestPhotos:
    def test_upload_add_and_delete_owned(self, app, client, staff_headers, perth_run):
        guitar = _guitar(client, staff_headers, perth_run)
        res = client.post(
            f"/api/v1/guitars/{guitar['id']}/photos/upload",
            data={"files": (io.BytesIO(b"\xff\xd8\xff fake jpeg"), "body.jpg")},
            content_type="multipart/form-data",
            headers=staff_headers,
        )
        assert res.status_code == 201
        url = res.get_json()["urls"][0]
        carve_id = stage_by_label(perth_run, "Carve").id
        assert url.startswith(f"/uploads/guitars/{guitar['id']}/{carve_id}/")
        path = os.path.join(app.config["UPLOAD_FOLDER"], *url[len("/uploads/"):].split("/"))
        assert os.path.exists(path)

        note = _note(client, staff_headers, guitar["id"], photo_urls=[url]).get_json()
        g = db.session.get(Guitar, guitar["id"])
        assert g.photo_count == 1
        assert g.cover_photo_url == url

        res = client.delete(f"/api/v1/guitars/{guitar['id']}/notes/{note['id']}/photos",
                            json={"url": url}, headers=staff_headers)
        data = res.get_json()
        assert data["file_deleted"] is True
        assert data["note"]["photo_urls"] == []
        assert not os.path.exists(path)
        g = db.session.get(Guitar, guitar["id"])
        assert g.photo_count == 0
        assert g.cover_photo_url is None

    def test_failed_commit_keeps_file(self, app, client, staff_headers, perth_run, monkeypatch):
        guitar = _guitar(client, staff_headers, perth_run)
        url = client.post(
            f"/api/v1/guitars/{guitar['id']}/photos/upload",
            data={"files": (io.BytesIO(b"\xff\xd8\xff fake jpeg"), "body.jpg")},
            content_type="multipart/form-data",
            headers=staff_headers,
        ).get_json()["urls"][0]
        path = os.path.join(app.config["UPLOAD_FOLDER"], *url[len("/uploads/"):].split("/"))
        note = _note(client, staff_headers, guitar["id"], photo_urls=[url]).get_json()

        def failing_commit():
            db.session.rollback()
            raise ConflictError(resource="record", field="unique")

        monkeypatch.setattr("buildtrack.blueprints.guitars_bp.commit_and_dispatch", failing_commit)
        res = client.delete(f"/api/v1/guitars/{guitar['id']}/notes/{note['id']}/photos",
                            json={"url": url}, headers=staff_headers)
        assert res.status_code == 409
        assert os.path.exists(path)
        assert db.session.get(GuitarNote, note["id"]).photo_urls == [url]

    def test_external_link_is_not_deleted(self, client, staff_headers, perth_run):
        guitar = _guitar(client, staff_headers, perth_run)
        link = "https://drive.google.com/drive/folders/abc123"
        note = _note(client, staff_headers, guitar["id"], photo_urls=[link]).get_json()

        res = client.delete(f"/api/v1/guitars/{guitar['id']}/notes/{note['id']}/photos",
                            json={"url": link}, headers=staff_headers)
        assert res.status_code == 200
        assert res.get_json()["file_deleted"] is False
        assert res.get_json()["note"]["photo_urls"] == []

    def test_drive_file_link_converted(self, client, staff_headers, perth_run):
        guitar = _guitar(client, staff_headers, perth_run)
        note = _note(client, staff_headers, guitar["id"],
                     photo_urls=["https://drive.google.com/file/d/XYZ_1/view?usp=sharing"]).get_json()
        assert note["photo_urls"] == ["https://drive.google.com/uc?export=view&id=XYZ_1"]

    def test_remove_unknown_url(self, client, staff_headers, perth_run):
        guitar = _guitar(client, staff_headers, perth_run)
        note = _note(client, staff_headers, guitar["id"]).get_json()
        res = client.delete(f"/api/v1/guitars/{guitar['id']}/notes/{note['id']}/photos",
                            json={"url": "/uploads/nope.jpg"}, headers=staff_headers)
        assert res.status_code == 404

    def test_disallowed_extension(self, client, staff_headers, perth_run):
        guitar = _guitar(client, staff_headers, perth_run)
        res = client.post(
            f"/api/v1/guitars/{guitar['id']}/photos/upload",
            data={"files": (io.BytesIO(b"#!/bin/sh"), "evil.sh")},
            content_type="multipart/form-data",
            headers=staff_headers,
        )
        assert res.status_code == 400


class TestNoteComments:
    def test_client_comment_notifies_staff(self, client, staff, staff_headers, client_headers,
                                           perth_run, client_user):
        guitar = _guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        note = _note(client, staff_headers, guitar["id"], visible_to_client=True).get_json()
        long_message = "Love the colour! " * 10

        res = client.post(f"/api/v1/guitars/{guitar['id']}/notes/{note['id']}/comments",
                          json={"message": long_message}, headers=client_headers)
        assert res.status_code == 201

        notification = Notification.query.filter_by(
            user_uid=staff.uid, type="guitar_note_comment").one()
        assert notification.title == "New comment on Hype GTR – Interstellar"
        assert notification.message.startswith("Jo Client: Love the colour!")
        assert notification.message.endswith("…")
        assert notification.note_id == note["id"]

        comments = client.get(f"/api/v1/guitars/{guitar['id']}/notes/{note['id']}/comments",
                              headers=client_headers).get_json()
        assert comments["total"] == 1

    def test_author_not_notified(self, client, staff, staff_headers, perth_run):
        guitar = _guitar(client, staff_headers, perth_run)
        note = _note(client, staff_headers, guitar["id"]).get_json()
        client.post(f"/api/v1/guitars/{guitar['id']}/notes/{note['id']}/comments",
                    json={"message": "note to self"}, headers=staff_headers)
        assert Notification.query.filter_by(user_uid=staff.uid, type="guitar_note_comment").count() == 0
