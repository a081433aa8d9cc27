"""
Tests — stage changes.

Covers:
    - Perth Run #7 scenario: Carve → Finish, one client email
    - unchanged stage is a no-op with zero sends
    - stage of another run, requires_note / requires_photo enforced server-side
    - optimistic concurrency (expected_stage_id → 409)
    - scheduled invoice + trigger due dates
    - in-app notifications respect internal-only stages
    - handler failure never undoes the stage change
"""

from datetime import datetime, timedelta, timezone

from conftest import auth_headers, stage_by_label

from buildtrack.models import db
from buildtrack.models.audit import AuditLog
from buildtrack.models.email_log import EmailLog
from buildtrack.models.guitar import Guitar, GuitarNote, StageTransition
from buildtrack.models.invoice import Invoice
from buildtrack.models.notification import Notification
from buildtrack.models.outbox import OutboxEvent
from buildtrack.services import run_service


def _create_guitar(client, headers, run, stage_label="Carve", **kw):
    payload = {
        "run_id": run.id,
        "stage_id": stage_by_label(run, stage_label).id,
        "model": "Hype GTR",
        "finish": "Interstellar",
        "order_number": "ORM-1001",
    }
    payload.update(kw)
    res = client.post("/api/v1/guitars", json=payload, headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _advance(client, headers, guitar_id, stage_id, **body):
    return client.post(
        f"/api/v1/guitars/{guitar_id}/advance-stage",
        json={"stage_id": stage_id, **body},
        headers=headers,
    )


class TestPerthRunScenario:
    def test_carve_to_finish_sends_one_email(self, client, staff_headers, perth_run,
                                             client_user, mailgun):
        guitar = _create_guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        finish = stage_by_label(perth_run, "Finish")

        res = _advance(client, staff_headers, guitar["id"], finish.id)
        assert res.status_code == 200
        data = res.get_json()
        assert data["changed"] is True
        assert data["guitar"]["stage_id"] == finish.id

        assert mailgun.post.call_count == 1
        form = mailgun.post.call_args.kwargs["data"]
        assert form["to"] == "jo@example.com"
        assert "Finish" in form["subject"]
        assert form["subject"] == "Update: Hype GTR – Interstellar – Finish"
        assert "moved from Carve to Finish" in form["text"]
        assert form["cc"] == "guitars@ormsbyguitars.com"

        log = EmailLog.query.one()
        assert log.status == "sent"
        assert log.template_name == "stage_change"

    def test_outbox_event_dispatched(self, client, staff_headers, perth_run, client_user):
        guitar = _create_guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        _advance(client, staff_headers, guitar["id"], stage_by_label(perth_run, "Finish").id)

        event = OutboxEvent.query.filter_by(event_type="guitar.stage_changed").one()
        assert event.status == "dispatched"
        assert event.payload["before"]["stage_id"] == stage_by_label(perth_run, "Carve").id
        assert event.payload["after"]["stage_id"] == stage_by_label(perth_run, "Finish").id

    def test_transition_log_and_audit(self, client, staff_headers, perth_run):
        guitar = _create_guitar(client, staff_headers, perth_run)
        carve = stage_by_label(perth_run, "Carve")
        finish = stage_by_label(perth_run, "Finish")
        _advance(client, staff_headers, guitar["id"], finish.id)

        res = client.get(f"/api/v1/guitars/{guitar['id']}/history", headers=staff_headers)
        items = res.get_json()["items"]
        assert [(t["from_stage_id"], t["to_stage_id"]) for t in items] == [
            (None, carve.id), (carve.id, finish.id),
        ]
        assert res.get_json()["current_stage_id"] == finish.id
        assert AuditLog.query.filter_by(action="guitar.stage_change").count() == 1


class TestNoOpAndValidation:
    def test_same_stage_is_noop(self, client, staff_headers, perth_run, client_user, mailgun):
        guitar = _create_guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        carve = stage_by_label(perth_run, "Carve")

        res = _advance(client, staff_headers, guitar["id"], carve.id)
        assert res.status_code == 200
        assert res.get_json()["changed"] is False
        assert mailgun.post.call_count == 0
        assert StageTransition.query.filter_by(guitar_id=guitar["id"]).count() == 1
        assert OutboxEvent.query.count() == 0

    def test_stage_of_other_run_rejected(self, client, staff, staff_headers, perth_run):
        other = run_service.create_run({"name": "Other", "stages": [{"label": "X"}]}, actor=staff)
        db.session.commit()
        guitar = _create_guitar(client, staff_headers, perth_run)

        res = _advance(client, staff_headers, guitar["id"], other.stages[0].id)
        assert res.status_code == 422
        assert db.session.get(Guitar, guitar["id"]).stage_id == stage_by_label(perth_run, "Carve").id

    def test_missing_stage_id(self, client, staff_headers, perth_run):
        guitar = _create_guitar(client, staff_headers, perth_run)
        res = client.post(f"/api/v1/guitars/{guitar['id']}/advance-stage", json={},
                          headers=staff_headers)
        assert res.status_code == 400

    def test_unknown_guitar(self, client, staff_headers, perth_run):
        res = _advance(client, staff_headers, "nope", stage_by_label(perth_run, "Finish").id)
        assert res.status_code == 404

    def test_requires_note_enforced(self, client, staff_headers, perth_run, mailgun):
        finish = stage_by_label(perth_run, "Finish")
        finish.requires_note = True
        db.session.commit()
        guitar = _create_guitar(client, staff_headers, perth_run)

        res = _advance(client, staff_headers, guitar["id"], finish.id)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"note_message": "required"}
        assert db.session.get(Guitar, guitar["id"]).stage_id != finish.id
        assert GuitarNote.query.count() == 0

        res = _advance(client, staff_headers, guitar["id"], finish.id,
                       note={"message": "Clear coat done", "visible_to_client": True})
        assert res.status_code == 200
        note = res.get_json()["note"]
        assert note["message"] == "Clear coat done"
        assert note["stage_id"] == finish.id

    def test_requires_photo_enforced(self, client, staff_headers, perth_run):
        finish = stage_by_label(perth_run, "Finish")
        finish.requires_photo = True
        db.session.commit()
        guitar = _create_guitar(client, staff_headers, perth_run)

        res = _advance(client, staff_headers, guitar["id"], finish.id, note={"message": "done"})
        assert res.status_code == 422

        res = _advance(client, staff_headers, guitar["id"], finish.id,
                       note={"photo_urls": ["https://drive.google.com/drive/folders/abc"]})
        assert res.status_code == 200

    def test_client_cannot_advance(self, client, staff_headers, client_headers, perth_run):
        guitar = _create_guitar(client, staff_headers, perth_run)
        res = _advance(client, client_headers, guitar["id"], stage_by_label(perth_run, "Finish").id)
        assert res.status_code == 403

    def test_unauthenticated(self, client, staff_headers, perth_run):
        guitar = _create_guitar(client, staff_headers, perth_run)
        res = _advance(client, {}, guitar["id"], stage_by_label(perth_run, "Finish").id)
        assert res.status_code == 401


class TestConcurrency:
    def test_stale_expected_stage_conflicts(self, client, staff_headers, perth_run):
        guitar = _create_guitar(client, staff_headers, perth_run)
        design = stage_by_label(perth_run, "Design")
        finish = stage_by_label(perth_run, "Finish")

        res = _advance(client, staff_headers, guitar["id"], finish.id, expected_stage_id=design.id)
        assert res.status_code == 409
        assert db.session.get(Guitar, guitar["id"]).stage_id == stage_by_label(perth_run, "Carve").id

    def test_matching_expected_stage_passes(self, client, staff_headers, perth_run):
        guitar = _create_guitar(client, staff_headers, perth_run)
        carve = stage_by_label(perth_run, "Carve")
        res = _advance(client, staff_headers, guitar["id"], stage_by_label(perth_run, "Finish").id,
                       expected_stage_id=carve.id)
        assert res.status_code == 200

    def test_version_increments(self, client, staff_headers, perth_run):
        guitar = _create_guitar(client, staff_headers, perth_run)
        res = _advance(client, staff_headers, guitar["id"], stage_by_label(perth_run, "Finish").id)
        assert res.get_json()["guitar"]["version"] == guitar["version"] + 1


class TestScheduledInvoices:
    def test_stage_schedule_creates_invoice(self, client, staff_headers, perth_run, client_user):
        finish = stage_by_label(perth_run, "Finish")
        finish.invoice_schedule = {"amount": 500}
        db.session.commit()
        guitar = _create_guitar(client, staff_headers, perth_run, client_uid=client_user.uid)

        res = _advance(client, staff_headers, guitar["id"], finish.id)
        assert len(res.get_json()["invoice_ids"]) == 1

        invoice = Invoice.query.one()
        assert invoice.title == "Finish - Hype GTR"
        assert invoice.currency == "AUD"
        assert float(invoice.amount) == 500.0
        assert invoice.client_uid == client_user.uid
        assert invoice.triggered_by_stage_id == finish.id
        due = invoice.due_date if invoice.due_date.tzinfo else invoice.due_date.replace(tzinfo=timezone.utc)
        expected = datetime.now(timezone.utc) + timedelta(days=30)
        assert abs((due - expected).total_seconds()) < 120

    def test_no_invoice_without_client(self, client, staff_headers, perth_run):
        finish = stage_by_label(perth_run, "Finish")
        finish.invoice_schedule = {"amount": 500}
        db.session.commit()
        guitar = _create_guitar(client, staff_headers, perth_run)

        res = _advance(client, staff_headers, guitar["id"], finish.id)
        assert res.get_json()["invoice_ids"] == []
        assert Invoice.query.count() == 0

    def test_trigger_due_dates_filled(self, client, staff_headers, perth_run, client_user):
        finish = stage_by_label(perth_run, "Finish")
        guitar = _create_guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        res = client.post(f"/api/v1/clients/{client_user.uid}/invoices", json={
            "title": "Final balance",
            "amount": 1200,
            "guitar_id": guitar["id"],
            "triggered_by_stage_id": finish.id,
            "due_days_after_trigger": 14,
        }, headers=staff_headers)
        assert res.status_code == 201
        assert res.get_json()["due_date"] is None

        _advance(client, staff_headers, guitar["id"], finish.id)
        invoice = db.session.get(Invoice, res.get_json()["id"])
        assert invoice.due_date is not None


class TestNotifications:
    def test_client_and_staff_notified(self, client, staff_headers, perth_run, client_user, make_user):
        other_staff = make_user("staff", "other@example.com")
        guitar = _create_guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        _advance(client, staff_headers, guitar["id"], stage_by_label(perth_run, "Finish").id)

        client_notes = Notification.query.filter_by(
            user_uid=client_user.uid, type="guitar_stage_changed").all()
        assert len(client_notes) == 1
        assert client_notes[0].title == "Hype GTR moved to Finishing"
        assert Notification.query.filter_by(
            user_uid=other_staff.uid, type="guitar_stage_changed").count() == 1

    def test_internal_only_stage_hides_from_client(self, client, staff_headers, perth_run, client_user):
        finish = stage_by_label(perth_run, "Finish")
        finish.internal_only = True
        db.session.commit()
        guitar = _create_guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        _advance(client, staff_headers, guitar["id"], finish.id)

        assert Notification.query.filter_by(
            user_uid=client_user.uid, type="guitar_stage_changed").count() == 0


class TestHandlerFailure:
    def test_mailgun_error_keeps_stage_change(self, client, staff_headers, perth_run,
                                              client_user, mailgun):
        mailgun.post.return_value.ok = False
        mailgun.post.return_value.status_code = 401
        mailgun.post.return_value.text = "Forbidden"
        guitar = _create_guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        finish = stage_by_label(perth_run, "Finish")

        res = _advance(client, staff_headers, guitar["id"], finish.id)
        assert res.status_code == 200
        assert db.session.get(Guitar, guitar["id"]).stage_id == finish.id
        log = EmailLog.query.one()
        assert log.status == "failed"
        assert "401" in log.error_message

    def test_handler_exception_marks_event_failed(self, client, staff_headers, perth_run,
                                                  client_user, mailgun):
        mailgun.post.side_effect = RuntimeError("boom")
        guitar = _create_guitar(client, staff_headers, perth_run, client_uid=client_user.uid)
        finish = stage_by_label(perth_run, "Finish")

        res = _advance(client, staff_headers, guitar["id"], finish.id)
        assert res.status_code == 200
        event = OutboxEvent.query.one()
        assert event.status == "failed"
        assert "boom" in event.last_error
        assert db.session.get(Guitar, guitar["id"]).stage_id == finish.id


def test_auth_headers_for_factory_role(client, make_user, staff_headers, perth_run):
    """Factory staff may move guitars but not create them."""
    factory = make_user("factory", "factory@example.com")
    guitar = _create_guitar(client, staff_headers, perth_run)
    res = _advance(client, auth_headers(factory), guitar["id"], stage_by_label(perth_run, "Finish").id)
    assert res.status_code == 200
    res = client.post("/api/v1/guitars", json={"run_id": perth_run.id, "model": "X"},
                      headers=auth_headers(factory))
    assert res.status_code == 403
