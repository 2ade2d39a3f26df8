#!/usr/bin/env python
"""Idempotent seed script for local demo data: one user per role, devices, tickets.

Usage:
    python backend/scripts/seed_demo.py                # seed normally
    python backend/scripts/seed_demo.py --show-users   # print users by role (after ensuring seed)
    python backend/scripts/seed_demo.py --dry-run      # run logic then rollback (no DB changes)
    python backend/scripts/seed_demo.py --validate     # check every role has a permission preset
"""
from __future__ import annotations
import os, sys, argparse, textwrap
from datetime import date
from sqlalchemy import select, text

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from servicedesk import create_app, get_db  # type: ignore
from servicedesk.models.user import User, Base, utcnow
from servicedesk.models.device import Device
from servicedesk.models.ticket import Ticket, StatusChange
from servicedesk.constants.permissions import ROLE_PRESETS, permissions_for_role
import servicedesk.models.audit  # noqa: F401

DEMO_PASSWORD_ENV = 'SEED_DEMO_PASSWORD'

DEMO_USERS = [
    {'id': 'demo-client-1', 'email': 'client@example.com', 'full_name': 'Jan Kowalski', 'role': User.ROLE_CLIENT, 'phone': '123456789'},
    {'id': 'demo-worker-1', 'email': 'worker@example.com', 'full_name': 'Maria Nowak', 'role': User.ROLE_WORKER, 'phone': '987654321'},
    {'id': 'demo-technician-1', 'email': 'technician@example.com', 'full_name': 'Piotr Lewandowski', 'role': User.ROLE_TECHNICIAN, 'phone': '555666777'},
    {'id': 'demo-technician-2', 'email': 'technician2@example.com', 'full_name': 'Anna Kowalczyk', 'role': User.ROLE_TECHNICIAN, 'phone': '555888999'},
    {'id': 'demo-manager-1', 'email': 'manager@example.com', 'full_name': 'Krzysztof Szpak', 'role': User.ROLE_MANAGER, 'phone': '111222333'},
]

DEMO_DEVICES = [
    {'id': 'demo-device-1', 'serial_number': 'SN-12345678', 'brand': 'Dell', 'model': 'XPS 13', 'year_production': 2022,
     'warranty_status': 'active', 'warranty_expire_date': date(2026, 12, 31)},
    {'id': 'demo-device-2', 'serial_number': 'SN-87654321', 'brand': 'Apple', 'model': 'MacBook Pro', 'year_production': 2021,
     'warranty_status': 'expired', 'warranty_expire_date': date(2023, 6, 30)},
    {'id': 'demo-device-3', 'serial_number': 'SN-11111111', 'brand': 'HP', 'model': 'Pavilion', 'year_production': 2023,
     'warranty_status': 'active', 'warranty_expire_date': date(2025, 11, 12)},
]

# (ticket number, device, technician, description, status path after Registered)
DEMO_TICKETS = [
    ('TKT-2025-001', 'demo-device-1', 'demo-technician-1', 'Screen does not respond to touch', [Ticket.STATUS_RECEIVED]),
    ('TKT-2025-002', 'demo-device-2', 'demo-technician-2', 'No power', [Ticket.STATUS_RECEIVED, Ticket.STATUS_DIAGNOSED]),
]


def ensure_users(session, password: str):
    existing = {u.id for u in session.execute(select(User)).scalars().all()}
    created = 0
    for data in DEMO_USERS:
        if data['id'] in existing:
            continue
        user = User(active=True, **data)
        user.set_password(password)
        session.add(user)
        created += 1
    session.flush()
    return created


def ensure_devices(session):
    existing = {d.id for d in session.execute(select(Device)).scalars().all()}
    created = 0
    for data in DEMO_DEVICES:
        if data['id'] in existing:
            continue
        session.add(Device(owner_id='demo-client-1', photos=[], asset_tag='', **data))
        created += 1
    session.flush()
    return created


def ensure_tickets(session):
    existing = set(session.execute(select(Ticket.ticket_number)).scalars().all())
    devices = {d.id: d for d in session.execute(select(Device)).scalars().all()}
    created = 0
    for number, device_id, technician_id, description, path in DEMO_TICKETS:
        if number in existing:
            continue
        now = utcnow()
        dev = devices[device_id]
        t = Ticket(
            id=f'demo-{number.lower()}',
            ticket_number=number,
            client_id='demo-client-1',
            device_id=device_id,
            technician_id=technician_id,
            created_by='demo-worker-1',
            description=description,
            status=path[-1],
            device={'brand': dev.brand, 'model': dev.model, 'serial_number': dev.serial_number, 'year': dev.year_production},
            assigned_at=now,
            assigned_by='demo-worker-1',
            created_at=now,
        )
        t.status_history.append(StatusChange(status=Ticket.STATUS_REGISTERED, changed_by='demo-worker-1', timestamp=now))
        for status in path:
            t.status_history.append(StatusChange(status=status, changed_by=technician_id, timestamp=now))
        session.add(t)
        created += 1
    return created


def print_user_summary(session):
    rows = session.execute(select(User).order_by(User.role, User.email)).scalars().all()
    if not rows:
        print("[INFO] No users present.")
        return
    email_w = max(len(u.email or '-') for u in rows)
    print(f"{'Email'.ljust(email_w)} | Role       | Perms")
    print('-' * (email_w + 30))
    for u in rows:
        print(f"{(u.email or '-').ljust(email_w)} | {u.role.ljust(10)} | {len(permissions_for_role(u.role))}")


def validate(session):
    problems = []
    for role in User.ALL_ROLES:
        if role not in ROLE_PRESETS:
            problems.append(f"Role '{role}' has no permission preset")
    for u in session.execute(select(User)).scalars().all():
        if u.role not in User.ALL_ROLES:
            problems.append(f"User {u.id} carries unknown role '{u.role}'")
    return problems


def parse_args():
    p = argparse.ArgumentParser(
        description="Seed demo users, devices and tickets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_demo.py\n  dry run: seed_demo.py --dry-run\n  show users: seed_demo.py --show-users\n""")
    )
    p.add_argument('--show-users', action='store_true', help='Print users and their permission counts after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--validate', action='store_true', help='Validate role presets & stored roles; exits non-zero on problems')
    return p.parse_args()


def main():
    args = parse_args()
    app = create_app()
    with app.app_context():
        session = get_db()
        try:
            session.execute(text('SELECT 1 FROM tickets LIMIT 1'))
        except Exception:
            # Auto-create schema for bootstrap; in real env prefer alembic upgrade
            session.rollback()
            Base.metadata.create_all(session.get_bind())
        finally:
            session.commit()

    with app.app_context():
        session = get_db()
        try:
            created_u = ensure_users(session, os.getenv(DEMO_PASSWORD_ENV, 'password123'))
            created_d = ensure_devices(session)
            created_t = ensure_tickets(session)
            if args.validate:
                problems = validate(session)
                if problems:
                    print('\n[VALIDATION] FAIL:')
                    for p in problems:
                        print(' -', p)
                    session.rollback()
                    sys.exit(2)
                print('[VALIDATION] OK: All roles have presets.')
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Users: {created_u}, Devices: {created_d}, Tickets: {created_t}")
            else:
                session.commit()
                print(f"[DONE] Users created: {created_u}, Devices created: {created_d}, Tickets created: {created_t}")
            if args.show_users:
                print('\nUsers:')
                print_user_summary(session)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

if __name__ == '__main__':
    main()
