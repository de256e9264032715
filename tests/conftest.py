import pytest
from cachelib import SimpleCache

from app import create_app
from auth import hash_password, issue_token
from models import Author, Book, Category, Publisher, User, db


@pytest.fixture
def app(tmp_path, request):
    # Each test gets its own SQLite database file
    db_file = tmp_path / f"test_{request.node.name}.db"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_file}",
        'SQLALCHEMY_ENGINE_OPTIONS': {},
        'SESSION_TYPE': 'cachelib',
        'SESSION_CACHELIB': SimpleCache(),
        'SESSION_COOKIE_SECURE': False,
        'SCHEDULER_ENABLED': False,
        'BCRYPT_ROUNDS': 4,
        'LOG_LEVEL': 'WARNING',
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    """Create a user and return ``(user_id, auth_headers)``."""
    counter = {'n': 0}

    def factory(role='student', name=None, password='password123'):
        counter['n'] += 1
        with app.app_context():
            user = User(
                name=name or f"{role.title()} {counter['n']}",
                email=f"{role}{counter['n']}@example.com",
                password=hash_password(password),
                role=role
            )
            db.session.add(user)
            token = issue_token(user)
            db.session.commit()
            return user.user_id, {'Authorization': f'Bearer {token}'}
    return factory


@pytest.fixture
def admin(make_user):
    return make_user('admin')


@pytest.fixture
def librarian(make_user):
    return make_user('librarian')


@pytest.fixture
def student(make_user):
    return make_user('student')


@pytest.fixture
def make_book(app):
    def factory(title='Python Programming', total_copies=5, available_copies=None, category=None):
        with app.app_context():
            author = Author(name='John Zelle')
            publisher = Publisher(name='Franklin, Beedle')
            book = Book(
                title=title,
                isbn='9781590282410',
                author=author,
                publisher=publisher,
                publication_year=2017,
                total_copies=total_copies,
                available_copies=total_copies if available_copies is None else available_copies
            )
            if category:
                book.categories = [Category(name=category)]
            db.session.add(book)
            db.session.commit()
            return book.book_id
    return factory


@pytest.fixture
def book_id(make_book):
    return make_book()
