from datetime import datetime, timedelta, timezone

from conftest import history_types, make_note
from models.models import FiscalNote, HistoryType, InvoiceStatus, NoteHistoryEvent
from services import expiration_service, lifecycle_service
from services.expiration_service import check_expirations


def test_overdue_note_expires(db, requester):
    note = make_note(db, requester, deadline_delta=timedelta(days=-1))
    now = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)
    db.query(FiscalNote).filter_by(id=note.id).update(
        {"attestation_deadline": now - timedelta(days=1)})
    db.commit()

    report = check_expirations(db, now=now)

    assert report.updated_count == 1
    assert report.note_ids == [note.id]
    db.expire_all()
    assert db.get(FiscalNote, note.id).status == InvoiceStatus.expirada
    event = db.query(NoteHistoryEvent).filter_by(type=HistoryType.expired).one()
    assert event.user_name == "Sistema (Cron Job)"
    assert event.user_id is None
    assert event.details == ("A nota expirou em 19/10/2026 pois não foi atestada "
                             "até o prazo final.")


def test_second_run_is_a_no_op(db, requester):
    for _ in range(3):
        make_note(db, requester, deadline_delta=timedelta(days=-2))
    assert check_expirations(db).updated_count == 3
    assert check_expirations(db).updated_count == 0
    assert db.query(NoteHistoryEvent).filter_by(type=HistoryType.expired).count() == 3


def test_only_overdue_pending_notes_are_touched(db, requester):
    overdue = make_note(db, requester, deadline_delta=timedelta(hours=-1))
    future = make_note(db, requester, deadline_delta=timedelta(days=3))
    attested = make_note(db, requester, deadline_delta=timedelta(days=-3),
                         status=InvoiceStatus.atestada)
    trashed = make_note(db, requester, deadline_delta=timedelta(days=-3),
                        deleted_at=datetime.now(timezone.utc))

    report = check_expirations(db)

    assert report.note_ids == [overdue.id]
    db.expire_all()
    assert db.get(FiscalNote, future.id).status == InvoiceStatus.pendente
    assert db.get(FiscalNote, attested.id).status == InvoiceStatus.atestada
    assert db.get(FiscalNote, trashed.id).status == InvoiceStatus.pendente
    assert history_types(db, attested.id) == [HistoryType.created]


def test_empty_sweep(db):
    report = check_expirations(db)
    assert report.updated_count == 0
    assert report.note_ids == []


def test_note_attested_after_selection_is_not_expired(db, session_factory, requester, monkeypatch):
    racing = make_note(db, requester, deadline_delta=timedelta(days=-1))
    other = make_note(db, requester, deadline_delta=timedelta(days=-1))
    real_select = expiration_service.overdue_note_ids

    def select_then_lose_race(session, now):
        ids = real_select(session, now)
        competitor = session_factory()
        try:
            lifecycle_service.reject(competitor, racing.id, coordinator_name="Carlos",
                                     reason="chegou antes do cron")
        finally:
            competitor.close()
        return ids

    monkeypatch.setattr(expiration_service, "overdue_note_ids", select_then_lose_race)
    report = check_expirations(db)

    assert report.note_ids == [other.id]
    db.expire_all()
    assert db.get(FiscalNote, racing.id).status == InvoiceStatus.rejeitada
    assert history_types(db, racing.id) == [HistoryType.created, HistoryType.rejected]
    assert history_types(db, other.id) == [HistoryType.created, HistoryType.expired]
