from flask import Flask
from servicedesk.models.user import User
from servicedesk.services.sheets import ascii_fold, ticket_sheet
from tests.test_utils_seed import ensure_user, ensure_technicians, seed_ticket
from tests.test_lifecycle_helpers import HAPPY_PATH, headers_for


def test_ascii_fold_polish_letters():
    assert ascii_fold('Zażółć gęślą jaźń') == 'Zazolc gesla jazn'
    assert ascii_fold('ŁÓDŹ') == 'LODZ'
    assert ascii_fold(None) == ''
    assert ascii_fold(2022) == '2022'


def test_ticket_sheet_contents(app_context: Flask):
    owner = ensure_user('c1', full_name='Jan Kowalski')
    tech, = ensure_technicians(['t1'])
    t = seed_ticket(description='Ekran nie reaguje na dotyk, pęknięta obudowa', technician_id='t1',
                    device={'brand': 'Dell', 'model': 'XPS 13', 'serial_number': 'SN-1', 'year': 2022})
    sheet = ticket_sheet(t, owner, tech)
    assert t.ticket_number in sheet
    assert 'Jan Kowalski' in sheet
    assert 'peknieta obudowa' in sheet
    assert 'SN-1' in sheet
    assert 'ASSIGNMENT' in sheet
    sheet.encode('ascii')


def test_ticket_sheet_endpoint(app_context: Flask):
    client = app_context.test_client()
    owner = ensure_user('c1', full_name='Łukasz Żak')
    t = seed_ticket()
    resp = client.get(f'/tickets/{t.id}/sheet', headers=headers_for(owner))
    assert resp.status_code == 200
    assert resp.mimetype == 'text/plain'
    assert resp.headers['Content-Disposition'] == f'attachment; filename=ticket-{t.ticket_number}.txt'
    text = resp.get_data(as_text=True)
    assert 'Lukasz Zak' in text


def test_tickets_report_sheet(app_context: Flask):
    client = app_context.test_client()
    manager = ensure_user('m1', User.ROLE_MANAGER)
    ensure_user('c1')
    seed_ticket(description='Brak zasilania')
    seed_ticket(description='Wymiana baterii', status_path=HAPPY_PATH)
    resp = client.get('/reports/tickets/sheet', headers=headers_for(manager))
    assert resp.status_code == 200
    text = resp.get_data(as_text=True)
    assert 'Total:' in text and 'Closed:' in text
    assert 'Brak zasilania' in text
    assert 'Wymiana baterii' in text
