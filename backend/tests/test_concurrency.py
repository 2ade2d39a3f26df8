from datetime import datetime, timezone
import threading
import pytest
from flask import Flask
from sqlalchemy import text
from sqlalchemy.orm.exc import StaleDataError
import servicedesk
from servicedesk import create_app, get_db
from servicedesk.errors import ConcurrentUpdate
from servicedesk.models.ticket import Ticket
from servicedesk.models.user import Base
from servicedesk.services import assignment
from servicedesk.services import tickets as lifecycle
from servicedesk.services.tickets import retry_on_conflict, load_ticket, generate_ticket_number
from tests.test_utils_seed import ensure_user, ensure_technicians, seed_ticket


def test_stale_write_is_replayed(app_context: Flask):
    ensure_user('c1')
    t = seed_ticket()
    seen_versions = []

    def step(session):
        ticket = load_ticket(session, t.id)
        seen_versions.append(ticket.version)
        if len(seen_versions) == 1:
            # another writer bumps the row after we read it
            session.execute(text('UPDATE tickets SET version = version + 1 WHERE id = :id'), {'id': t.id})
        ticket.description = 'updated'
        session.flush()
        return ticket

    result = retry_on_conflict(step)
    assert len(seen_versions) == 2
    assert result.description == 'updated'
    assert lifecycle.get_ticket(t.id).description == 'updated'


def test_conflict_gives_up_after_retries(app_context: Flask):
    calls = []

    def step(session):
        calls.append(1)
        raise StaleDataError('row changed')

    with pytest.raises(ConcurrentUpdate) as exc:
        retry_on_conflict(step, retries=2)
    assert exc.value.code == 409
    assert len(calls) == 3


def test_version_increments_on_ticket_writes(app_context: Flask):
    ensure_user('c1')
    t = seed_ticket()
    v0 = t.version
    t = lifecycle.transition_ticket(t.id, Ticket.STATUS_RECEIVED, 'w1')
    assert t.version == v0 + 1


def test_ticket_number_skips_taken_numbers(app_context: Flask):
    now = datetime(2025, 5, 4, 12, 0, tzinfo=timezone.utc)
    ms = int(now.timestamp() * 1000)
    session = get_db()
    for offset in (0, 1):
        session.add(Ticket(id=f'fixed-{offset}', ticket_number=f'TKT-2025-{ms + offset}', description='x', status=Ticket.STATUS_REGISTERED))
    session.commit()
    assert generate_ticket_number(session, now) == f'TKT-2025-{ms + 2}'
    assert generate_ticket_number(session, now, with_year=False) == f'TKT-{ms}'


def test_ticket_numbers_are_unique(app_context: Flask):
    ensure_user('c1')
    numbers = {seed_ticket(description=f'n{i}').ticket_number for i in range(20)}
    assert len(numbers) == 20


@pytest.fixture()
def file_app(tmp_path, monkeypatch):
    """Second app over a file-backed SQLite database so each thread gets its own connection."""
    monkeypatch.setattr(servicedesk, 'db_engine', servicedesk.db_engine)
    monkeypatch.setattr(servicedesk, 'SessionLocal', servicedesk.SessionLocal)
    app = create_app({
        'DATABASE_URL': f"sqlite+pysqlite:///{tmp_path / 'desk.db'}",
        'JWT_SECRET_KEY': 'test-secret-key-with-enough-length-for-hs256',
        'STORAGE_ROOT': str(tmp_path / 'storage'),
        'TESTING': True,
    })
    Base.metadata.create_all(servicedesk.db_engine)
    yield app
    servicedesk.SessionLocal.remove()
    servicedesk.db_engine.dispose()


def test_parallel_auto_assignment_does_not_double_book(file_app, monkeypatch):
    with file_app.app_context():
        ensure_user('c1')
        ensure_technicians(['t1', 't2'])
        ticket_ids = [lifecycle.create_ticket('c1', f'parallel {i}', created_by='c1').id for i in range(2)]

    barrier = threading.Barrier(2)
    seen = threading.local()
    pick = assignment.pick_least_loaded

    def pick_then_wait(*args):
        chosen = pick(*args)
        if not getattr(seen, 'waited', False):
            # both threads hold the same selection before either commits
            seen.waited = True
            barrier.wait(timeout=10)
        return chosen

    monkeypatch.setattr(assignment, 'pick_least_loaded', pick_then_wait)
    chosen, errors = [], []

    def run(ticket_id):
        try:
            with file_app.app_context():
                chosen.append(assignment.assign_least_loaded(ticket_id, 'c1'))
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=run, args=(tid,)) for tid in ticket_ids]
    for th in threads:
        th.start()
    for th in threads:
        th.join(timeout=30)

    assert errors == []
    assert sorted(chosen) == ['t1', 't2']
    with file_app.app_context():
        assert assignment.technician_loads() == {'t1': 1, 't2': 1}


def test_claim_with_stale_counter_is_a_conflict(app_context: Flask):
    ensure_technicians(['t1'])
    session = get_db()
    lifecycle.claim_technician(session, 't1')
    with pytest.raises(StaleDataError):
        lifecycle.claim_technician(session, 't1', seen_seq=0)
    session.rollback()
