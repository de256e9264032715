from decimal import Decimal

from flask_sqlalchemy import SQLAlchemy

from utils import isoformat, money, utcnow

db = SQLAlchemy()

ROLES = ('admin', 'librarian', 'student')
STAFF_ROLES = ('admin', 'librarian')
USER_STATUSES = ('active', 'inactive', 'pending')

book_category = db.Table(
    'book_category',
    db.Column('book_id', db.Integer, db.ForeignKey('book.book_id', ondelete='CASCADE'), primary_key=True),
    db.Column('category_id', db.Integer, db.ForeignKey('category.category_id', ondelete='CASCADE'),
              primary_key=True),
)


class User(db.Model):
    __tablename__ = 'user'
    user_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='student')
    status = db.Column(db.String(20), nullable=False, default='active')
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    borrow_records = db.relationship('BorrowRecord', back_populates='user', cascade='all, delete-orphan')
    tokens = db.relationship('AccessToken', back_populates='user', cascade='all, delete-orphan')

    @property
    def is_staff(self):
        return self.role in STAFF_ROLES

    def to_dict(self):
        return {
            'id': self.user_id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'status': self.status,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }


class AccessToken(db.Model):
    __tablename__ = 'access_token'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.user_id'), nullable=False)
    name = db.Column(db.String(100), nullable=False, default='auth_token')
    token_hash = db.Column(db.String(64), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    last_used_at = db.Column(db.DateTime)
    user = db.relationship('User', back_populates='tokens')


class Author(db.Model):
    __tablename__ = 'author'
    author_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    bio = db.Column(db.Text)
    nationality = db.Column(db.String(100))
    birth_date = db.Column(db.Date)
    created_at = db.Column(db.DateTime, default=utcnow)
    books = db.relationship('Book', back_populates='author')

    def to_dict(self, with_count=False):
        data = {
            'author_id': self.author_id,
            'name': self.name,
            'bio': self.bio,
            'nationality': self.nationality,
            'birth_date': isoformat(self.birth_date),
            'created_at': isoformat(self.created_at),
        }
        if with_count:
            data['book_count'] = len(self.books)
        return data


class Publisher(db.Model):
    __tablename__ = 'publisher'
    publisher_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.Text)
    contact_info = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)
    books = db.relationship('Book', back_populates='publisher')

    def to_dict(self, with_count=False):
        data = {
            'publisher_id': self.publisher_id,
            'name': self.name,
            'address': self.address,
            'contact_info': self.contact_info,
            'created_at': isoformat(self.created_at),
        }
        if with_count:
            data['book_count'] = len(self.books)
        return data


class Category(db.Model):
    __tablename__ = 'category'
    category_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    parent_id = db.Column(db.Integer, db.ForeignKey('category.category_id'))
    created_at = db.Column(db.DateTime, default=utcnow)
    parent = db.relationship('Category', remote_side=[category_id], back_populates='children')
    children = db.relationship('Category', back_populates='parent')
    books = db.relationship('Book', secondary=book_category, back_populates='categories')

    def to_dict(self, with_count=False):
        data = {
            'category_id': self.category_id,
            'name': self.name,
            'description': self.description,
            'parent_id': self.parent_id,
            'parent_name': self.parent.name if self.parent else None,
            'created_at': isoformat(self.created_at),
        }
        if with_count:
            data['book_count'] = len(self.books)
        return data


class Book(db.Model):
    __tablename__ = 'book'
    book_id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    isbn = db.Column(db.String(20))
    author_id = db.Column(db.Integer, db.ForeignKey('author.author_id'))
    publisher_id = db.Column(db.Integer, db.ForeignKey('publisher.publisher_id'))
    publication_year = db.Column(db.Integer)
    edition = db.Column(db.String(50))
    total_copies = db.Column(db.Integer, nullable=False, default=0)
    available_copies = db.Column(db.Integer, nullable=False, default=0)
    location_in_library = db.Column(db.String(100))
    description = db.Column(db.Text)
    cover_image = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    author = db.relationship('Author', back_populates='books')
    publisher = db.relationship('Publisher', back_populates='books')
    categories = db.relationship('Category', secondary=book_category, back_populates='books')
    borrow_records = db.relationship('BorrowRecord', back_populates='book', cascade='all, delete-orphan')

    @property
    def status(self):
        if self.available_copies <= 0:
            return 'Unavailable'
        elif self.available_copies <= 2:
            return 'Low Stock'
        return 'Available'

    @property
    def borrowed_copies(self):
        return self.total_copies - self.available_copies

    def to_dict(self):
        return {
            'id': self.book_id,
            'title': self.title,
            'isbn': self.isbn or '',
            'publicationYear': self.publication_year,
            'author': {
                'id': self.author.author_id if self.author else None,
                'name': self.author.name if self.author else 'Unknown',
            },
            'publisher': {
                'id': self.publisher.publisher_id if self.publisher else None,
                'name': self.publisher.name if self.publisher else 'Unknown',
            },
            'categories': [{'id': c.category_id, 'name': c.name} for c in self.categories],
            'status': self.status,
            'copies': self.total_copies,
            'available': self.available_copies,
            'location': self.location_in_library,
            'description': self.description,
            'edition': self.edition,
            'coverImage': self.cover_image,
        }

    def summary(self):
        return {
            'book_id': self.book_id,
            'title': self.title,
            'isbn': self.isbn or '',
            'author': self.author.to_dict() if self.author else None,
        }


class BorrowRecord(db.Model):
    __tablename__ = 'borrow_record'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.user_id'), nullable=False)
    book_id = db.Column(db.Integer, db.ForeignKey('book.book_id'), nullable=False)
    borrowed_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    due_at = db.Column(db.DateTime, nullable=False)
    returned_at = db.Column(db.DateTime)
    fine_amount = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    status = db.Column(db.String(20), nullable=False, default='borrowed')
    user = db.relationship('User', back_populates='borrow_records')
    book = db.relationship('Book', back_populates='borrow_records')
    payments = db.relationship('FinePayment', back_populates='borrow_record', cascade='all, delete-orphan',
                               order_by='FinePayment.paid_at')

    def loan_status(self, now=None):
        """Display status: returned, overdue or borrowed."""
        if self.returned_at is not None:
            return 'returned'
        if (now or utcnow()) > self.due_at:
            return 'overdue'
        return 'borrowed'

    @property
    def total_paid(self):
        return sum((Decimal(p.amount) for p in self.payments), Decimal('0.00'))

    @property
    def balance(self):
        return Decimal(self.fine_amount or 0) - self.total_paid

    def to_dict(self, book=False, user=False, catalog=False, payments=False):
        data = {
            'id': self.id,
            'user_id': self.user_id,
            'book_id': self.book_id,
            'borrowed_at': isoformat(self.borrowed_at),
            'due_at': isoformat(self.due_at),
            'returned_at': isoformat(self.returned_at),
            'fine_amount': money(self.fine_amount),
            'status': self.status,
            'loan_status': self.loan_status(),
        }
        if book and self.book is not None:
            data['book'] = self.book.summary()
            if catalog:
                data['book']['publisher'] = self.book.publisher.to_dict() if self.book.publisher else None
                data['book']['categories'] = [c.to_dict() for c in self.book.categories]
        if user and self.user is not None:
            data['user'] = {'id': self.user.user_id, 'name': self.user.name, 'email': self.user.email}
        if payments:
            data['payments'] = [p.to_dict() for p in self.payments]
            data['total_paid'] = money(self.total_paid)
            data['balance'] = money(self.balance)
        return data


class FinePayment(db.Model):
    __tablename__ = 'fine_payment'
    id = db.Column(db.Integer, primary_key=True)
    borrow_record_id = db.Column(db.Integer, db.ForeignKey('borrow_record.id'), nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    paid_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    borrow_record = db.relationship('BorrowRecord', back_populates='payments')

    def to_dict(self):
        return {
            'id': self.id,
            'borrow_record_id': self.borrow_record_id,
            'amount': money(self.amount),
            'paid_at': isoformat(self.paid_at),
        }
