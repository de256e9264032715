import pytest

from models import Book, BorrowRecord, Category, db


def _author(client, headers, name='Ursula K. Le Guin'):
    return client.post('/api/authors', json={'name': name, 'nationality': 'American'}, headers=headers).get_json()


def _publisher(client, headers, name='Ace Books'):
    return client.post('/api/publishers', json={'name': name}, headers=headers).get_json()


def _category(client, headers, name='Fantasy', parent_id=None):
    return client.post('/api/categories', json={'name': name, 'parent_id': parent_id}, headers=headers).get_json()


def test_book_crud(client, librarian):
    _, headers = librarian
    author = _author(client, headers)
    publisher = _publisher(client, headers)
    category = _category(client, headers)

    response = client.post('/api/books', json={
        'title': 'A Wizard of Earthsea',
        'isbn': '9780547773742',
        'author_id': author['author_id'],
        'publisher_id': publisher['publisher_id'],
        'publication_year': 1968,
        'total_copies': 4,
        'categories': [category['category_id']],
    }, headers=headers)
    assert response.status_code == 201
    book = response.get_json()
    assert book['copies'] == 4
    assert book['available'] == 4
    assert book['status'] == 'Available'
    assert book['author'] == {'id': author['author_id'], 'name': 'Ursula K. Le Guin'}
    assert book['categories'] == [{'id': category['category_id'], 'name': 'Fantasy'}]

    response = client.put(f"/api/books/{book['id']}", json={
        'title': 'A Wizard of Earthsea', 'total_copies': 2}, headers=headers)
    assert response.status_code == 200
    assert response.get_json()['status'] == 'Low Stock'

    listing = client.get('/api/books?search=earthsea', headers=headers).get_json()
    assert [b['id'] for b in listing] == [book['id']]

    assert client.delete(f"/api/books/{book['id']}", headers=headers).status_code == 204
    assert client.get(f"/api/books/{book['id']}", headers=headers).status_code == 404


def test_book_validation_errors(client, admin):
    _, headers = admin
    response = client.post('/api/books', json={
        'isbn': 'x' * 21,
        'author_id': 99,
        'publication_year': 999,
        'total_copies': 2,
        'available_copies': 3,
        'categories': [55],
    }, headers=headers)

    assert response.status_code == 422
    errors = response.get_json()['errors']
    assert set(errors) == {'title', 'isbn', 'author_id', 'publication_year', 'categories.0'}


def test_available_copies_cannot_exceed_total(client, admin):
    response = client.post('/api/books', json={'title': 'T', 'total_copies': 2, 'available_copies': 3},
                           headers=admin[1])
    assert response.status_code == 422
    assert 'available_copies' in response.get_json()['errors']


def test_update_keeps_borrowed_copies_out(app, client, admin, student, book_id):
    client.post('/api/borrow-records', json={'book_id': book_id}, headers=student[1])
    client.post('/api/borrow-records', json={'book_id': book_id}, headers=student[1])

    response = client.put(f'/api/books/{book_id}', json={'title': 'Python Programming', 'total_copies': 1},
                          headers=admin[1])
    assert response.status_code == 422

    response = client.put(f'/api/books/{book_id}', json={'title': 'Python Programming', 'total_copies': 6},
                          headers=admin[1])
    assert response.status_code == 200
    assert response.get_json()['available'] == 4


def test_update_cannot_count_loaned_copies_as_available(app, client, admin, student, book_id):
    for _ in range(3):
        client.post('/api/borrow-records', json={'book_id': book_id}, headers=student[1])

    response = client.put(f'/api/books/{book_id}', json={
        'title': 'Python Programming', 'total_copies': 5, 'available_copies': 5}, headers=admin[1])
    assert response.status_code == 422
    assert 'available_copies' in response.get_json()['errors']
    assert client.get(f'/api/books/{book_id}', headers=admin[1]).get_json()['available'] == 2

    response = client.put(f'/api/books/{book_id}', json={
        'title': 'Python Programming', 'total_copies': 5, 'available_copies': 2}, headers=admin[1])
    assert response.status_code == 200
    assert response.get_json()['available'] == 2


@pytest.mark.parametrize('available, status', [
    (3, 'Available'),
    (2, 'Low Stock'),
    (1, 'Low Stock'),
    (0, 'Unavailable'),
])
def test_book_status_thresholds(client, admin, available, status):
    response = client.post('/api/books', json={
        'title': 'Dune', 'total_copies': 5, 'available_copies': available}, headers=admin[1])
    assert response.status_code == 201
    assert response.get_json()['status'] == status


def test_students_cannot_modify_catalogue(client, student, book_id):
    _, headers = student
    assert client.post('/api/books', json={'title': 'Nope'}, headers=headers).status_code == 403
    assert client.delete(f'/api/books/{book_id}', headers=headers).status_code == 403
    assert client.post('/api/authors', json={'name': 'Nope'}, headers=headers).status_code == 403
    assert client.get('/api/books', headers=headers).status_code == 200


def test_cannot_delete_book_on_loan(app, client, admin, student, book_id):
    client.post('/api/borrow-records', json={'book_id': book_id}, headers=student[1])

    response = client.delete(f'/api/books/{book_id}', headers=admin[1])

    assert response.status_code == 400
    with app.app_context():
        assert db.session.get(Book, book_id) is not None
        assert BorrowRecord.query.count() == 1


def test_form_data_lists_choices(client, admin, book_id):
    data = client.get('/api/books/form-data', headers=admin[1]).get_json()
    assert data['authors'][0]['name'] == 'John Zelle'
    assert data['publishers'][0]['name'] == 'Franklin, Beedle'
    assert data['categories'] == []


def test_author_crud_and_book_count(app, client, admin, book_id):
    _, headers = admin
    authors = client.get('/api/authors', headers=headers).get_json()
    assert authors[0]['book_count'] == 1
    author_id = authors[0]['author_id']

    response = client.put(f'/api/authors/{author_id}', json={'name': 'J. Zelle', 'birth_date': '1960-01-31'},
                          headers=headers)
    assert response.status_code == 200
    assert response.get_json()['birth_date'] == '1960-01-31'

    response = client.put(f'/api/authors/{author_id}', json={'name': 'J. Zelle', 'birth_date': 'someday'},
                          headers=headers)
    assert response.status_code == 422

    assert client.delete(f'/api/authors/{author_id}', headers=headers).status_code == 204
    book = client.get(f'/api/books/{book_id}', headers=headers).get_json()
    assert book['author'] == {'id': None, 'name': 'Unknown'}


def test_publisher_crud(client, admin):
    _, headers = admin
    created = _publisher(client, headers)
    publisher_id = created['publisher_id']

    response = client.put(f'/api/publishers/{publisher_id}', json={'name': 'Tor', 'address': 'New York'},
                          headers=headers)
    assert response.get_json()['address'] == 'New York'
    assert client.get(f'/api/publishers/{publisher_id}', headers=headers).get_json()['name'] == 'Tor'
    assert client.put(f'/api/publishers/{publisher_id}', json={}, headers=headers).status_code == 422
    assert client.delete(f'/api/publishers/{publisher_id}', headers=headers).status_code == 204
    assert client.get(f'/api/publishers/{publisher_id}', headers=headers).status_code == 404


def test_category_hierarchy(app, client, admin):
    _, headers = admin
    parent = _category(client, headers, 'Fiction')
    child = _category(client, headers, 'Fantasy', parent_id=parent['category_id'])
    assert child['parent_name'] == 'Fiction'

    response = client.put(f"/api/categories/{parent['category_id']}",
                          json={'name': 'Fiction', 'parent_id': child['category_id']}, headers=headers)
    assert response.status_code == 422

    response = client.put(f"/api/categories/{parent['category_id']}",
                          json={'name': 'Fiction', 'parent_id': parent['category_id']}, headers=headers)
    assert response.status_code == 422

    assert client.delete(f"/api/categories/{parent['category_id']}", headers=headers).status_code == 204
    with app.app_context():
        assert db.session.get(Category, child['category_id']).parent_id is None


def test_unknown_route_returns_json_404(client):
    response = client.get('/api/nothing-here')
    assert response.status_code == 404
    assert 'message' in response.get_json()
