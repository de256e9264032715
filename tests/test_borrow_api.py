from datetime import timedelta

from models import Book, BorrowRecord, db
from utils import utcnow


def _open_loan(app, user_id, book_id, days_ago=0):
    """Insert an open borrow record that started ``days_ago`` days back."""
    with app.app_context():
        borrowed_at = utcnow() - timedelta(days=days_ago)
        record = BorrowRecord(user_id=user_id, book_id=book_id, borrowed_at=borrowed_at,
                              due_at=borrowed_at + timedelta(days=14), status='borrowed')
        db.session.add(record)
        db.session.get(Book, book_id).available_copies -= 1
        db.session.commit()
        return record.id


def _available(app, book_id):
    with app.app_context():
        return db.session.get(Book, book_id).available_copies


def test_borrow_requires_authentication(client, book_id):
    response = client.post('/api/borrow-records', json={'book_id': book_id})
    assert response.status_code == 401
    assert response.get_json()['message'] == 'Unauthenticated.'


def test_borrow_book(app, client, student, book_id):
    _, headers = student
    response = client.post('/api/borrow-records', json={'book_id': book_id}, headers=headers)

    assert response.status_code == 201
    body = response.get_json()
    assert body['message'] == 'Book borrowed successfully'
    assert body['data']['status'] == 'borrowed'
    assert body['data']['book']['title'] == 'Python Programming'
    assert body['data']['book']['author']['name'] == 'John Zelle'
    assert _available(app, book_id) == 4


def test_borrow_validation_and_missing_book(client, student):
    _, headers = student
    response = client.post('/api/borrow-records', json={}, headers=headers)
    assert response.status_code == 422
    assert 'book_id' in response.get_json()['errors']

    response = client.post('/api/borrow-records', json={'book_id': 4242}, headers=headers)
    assert response.status_code == 404
    assert response.get_json()['message'] == 'Book not found'


def test_borrow_unavailable_book(app, client, student, make_book):
    book_id = make_book(total_copies=1, available_copies=0)
    _, headers = student

    response = client.post('/api/borrow-records', json={'book_id': book_id}, headers=headers)

    assert response.status_code == 400
    assert response.get_json()['message'] == 'This book is currently unavailable'
    with app.app_context():
        assert BorrowRecord.query.count() == 0


def test_student_returns_own_loan(app, client, student, book_id):
    user_id, headers = student
    record_id = _open_loan(app, user_id, book_id)

    response = client.post(f'/api/borrow-records/{record_id}/return', headers=headers)

    assert response.status_code == 200
    data = response.get_json()['data']
    assert data['status'] == 'returned'
    assert data['fine_amount'] == 0.0
    assert _available(app, book_id) == 5


def test_late_return_charges_fine(app, client, student, book_id):
    user_id, headers = student
    record_id = _open_loan(app, user_id, book_id, days_ago=20)

    response = client.post(f'/api/borrow-records/{record_id}/return', headers=headers)

    assert response.status_code == 200
    assert response.get_json()['data']['fine_amount'] == 6.0


def test_returning_twice_is_not_found(app, client, student, book_id):
    user_id, headers = student
    record_id = _open_loan(app, user_id, book_id)
    client.post(f'/api/borrow-records/{record_id}/return', headers=headers)

    response = client.post(f'/api/borrow-records/{record_id}/return', headers=headers)

    assert response.status_code == 404
    assert response.get_json()['message'] == 'Borrow record not found or already returned'
    assert _available(app, book_id) == 5


def test_student_cannot_return_other_students_loan(app, client, make_user, book_id):
    owner_id, _ = make_user()
    _, other_headers = make_user()
    record_id = _open_loan(app, owner_id, book_id)

    response = client.post(f'/api/borrow-records/{record_id}/return', headers=other_headers)

    assert response.status_code == 404
    assert _available(app, book_id) == 4


def test_librarian_returns_any_loan(app, client, student, librarian, book_id):
    record_id = _open_loan(app, student[0], book_id)

    response = client.post(f'/api/borrow-records/{record_id}/return', headers=librarian[1])

    assert response.status_code == 200


def test_open_records_and_history(app, client, student, make_book):
    user_id, headers = student
    first = _open_loan(app, user_id, make_book(title='First'), days_ago=3)
    second = _open_loan(app, user_id, make_book(title='Second'), days_ago=1)
    client.post(f'/api/borrow-records/{first}/return', headers=headers)

    open_records = client.get('/api/borrow-records', headers=headers).get_json()
    assert [r['id'] for r in open_records] == [second]

    history = client.get('/api/borrow-history', headers=headers).get_json()
    assert [r['id'] for r in history] == [second, first]
    assert 'publisher' in history[0]['book']


def test_all_borrow_records_is_staff_only(app, client, student, admin, book_id):
    _open_loan(app, student[0], book_id)

    response = client.get('/api/all-borrow-records', headers=student[1])
    assert response.status_code == 403

    response = client.get('/api/all-borrow-records', headers=admin[1])
    assert response.status_code == 200
    records = response.get_json()
    assert len(records) == 1
    assert records[0]['user']['id'] == student[0]


def test_show_record_and_pay_fine(app, client, student, librarian, book_id):
    user_id, headers = student
    record_id = _open_loan(app, user_id, book_id, days_ago=24)
    client.post(f'/api/borrow-records/{record_id}/return', headers=headers)

    response = client.post(f'/api/borrow-records/{record_id}/payments', json={'amount': 15}, headers=librarian[1])
    assert response.status_code == 422

    response = client.post(f'/api/borrow-records/{record_id}/payments', json={'amount': 4}, headers=headers)
    assert response.status_code == 403

    response = client.post(f'/api/borrow-records/{record_id}/payments', json={'amount': 4}, headers=librarian[1])
    assert response.status_code == 201

    record = client.get(f'/api/borrow-records/{record_id}', headers=headers).get_json()
    assert record['fine_amount'] == 10.0
    assert record['total_paid'] == 4.0
    assert record['balance'] == 6.0
    assert len(record['payments']) == 1


def test_non_numeric_payment_is_rejected(app, client, student, librarian, book_id):
    user_id, headers = student
    record_id = _open_loan(app, user_id, book_id, days_ago=24)
    client.post(f'/api/borrow-records/{record_id}/return', headers=headers)

    response = client.post(f'/api/borrow-records/{record_id}/payments', json={'amount': 'NaN'},
                           headers=librarian[1])
    assert response.status_code == 422
    assert 'amount' in response.get_json()['errors']
