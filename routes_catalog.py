import logging
from datetime import date

from flask import Blueprint, jsonify, request
from sqlalchemy.orm import selectinload

from auth import login_required
from models import STAFF_ROLES, Author, Book, Category, Publisher, db
from utils import retry_db_operation
from validation import Validator, validation_error

logger = logging.getLogger(__name__)

catalog_bp = Blueprint('catalog', __name__, url_prefix='/api')


# Books

def _validate_book(data, book=None):
    v = Validator(data)
    v.string('title', required=True, max_length=255)
    v.string('isbn', max_length=20)
    v.exists('author_id', Author)
    v.exists('publisher_id', Publisher)
    v.integer('publication_year', min_value=1000, max_value=date.today().year + 1)
    total = v.integer('total_copies', min_value=0)
    available = v.integer('available_copies', min_value=0)
    v.id_list('categories', Category)
    v.string('description')
    v.string('location_in_library', max_length=100)
    v.string('edition', max_length=50)
    v.string('cover_image', max_length=255)
    if v.fails:
        return v

    total = total if total is not None else (book.total_copies if book else 0)
    # copies out on loan can never be counted as available
    borrowed = book.borrowed_copies if book else 0
    if total < borrowed:
        v.add('total_copies', f'The total copies may not be less than the {borrowed} copies on loan.')
    elif available is None:
        available = total - borrowed
    elif available > total - borrowed:
        if borrowed:
            v.add('available_copies',
                  f'The available copies may not be greater than {total - borrowed} while {borrowed} are on loan.')
        else:
            v.add('available_copies', 'The available copies may not be greater than the total copies.')
    v.cleaned['total_copies'] = total
    v.cleaned['available_copies'] = available
    return v


def _apply_book(book, cleaned):
    for field in ('title', 'isbn', 'author_id', 'publisher_id', 'publication_year', 'edition',
                  'total_copies', 'available_copies', 'location_in_library', 'description', 'cover_image'):
        setattr(book, field, cleaned.get(field))
    if cleaned.get('categories') is not None:
        book.categories = cleaned['categories']


def _books_query():
    return Book.query.options(
        selectinload(Book.author), selectinload(Book.publisher), selectinload(Book.categories))


@catalog_bp.route('/books', methods=['GET'])
@login_required()
@retry_db_operation()
def get_books():
    search = request.args.get('search', '').strip()
    try:
        query = _books_query()
        if search:
            pattern = f'%{search}%'
            query = query.outerjoin(Author, Book.author_id == Author.author_id).filter(
                Book.title.ilike(pattern) | Book.isbn.ilike(pattern) | Author.name.ilike(pattern))
        books = query.order_by(Book.title).all()
        logger.debug(f"Fetched {len(books)} books")
        return jsonify([b.to_dict() for b in books]), 200
    except Exception as e:
        logger.error(f"Error fetching books: {str(e)}")
        return jsonify({'message': 'Server error occurred'}), 500


@catalog_bp.route('/books/form-data', methods=['GET'])
@login_required()
def get_book_form_data():
    return jsonify({
        'authors': [{'author_id': a.author_id, 'name': a.name} for a in Author.query.order_by(Author.name)],
        'publishers': [{'publisher_id': p.publisher_id, 'name': p.name}
                       for p in Publisher.query.order_by(Publisher.name)],
        'categories': [{'category_id': c.category_id, 'name': c.name}
                       for c in Category.query.order_by(Category.name)],
    }), 200


@catalog_bp.route('/books/<int:book_id>', methods=['GET'])
@login_required()
def get_book(book_id):
    book = db.get_or_404(Book, book_id, description='Book not found')
    return jsonify(book.to_dict()), 200


@catalog_bp.route('/books', methods=['POST'])
@login_required(role=STAFF_ROLES)
@retry_db_operation()
def add_book():
    v = _validate_book(request.get_json(silent=True))
    if v.fails:
        return validation_error(v.errors)
    try:
        book = Book()
        _apply_book(book, v.cleaned)
        db.session.add(book)
        db.session.commit()
        logger.debug(f"Book added: {book.title} (ISBN: {book.isbn})")
        return jsonify(book.to_dict()), 201
    except Exception as e:
        logger.error(f"Error adding book: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'Failed to add book'}), 500


@catalog_bp.route('/books/<int:book_id>', methods=['PUT'])
@login_required(role=STAFF_ROLES)
@retry_db_operation()
def edit_book(book_id):
    book = db.get_or_404(Book, book_id, description='Book not found')
    v = _validate_book(request.get_json(silent=True), book=book)
    if v.fails:
        return validation_error(v.errors)
    try:
        _apply_book(book, v.cleaned)
        db.session.commit()
        logger.debug(f"Book updated: book_id={book_id}")
        return jsonify(book.to_dict()), 200
    except Exception as e:
        logger.error(f"Error updating book: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'Failed to update book'}), 500


@catalog_bp.route('/books/<int:book_id>', methods=['DELETE'])
@login_required(role=STAFF_ROLES)
@retry_db_operation()
def delete_book(book_id):
    book = db.get_or_404(Book, book_id, description='Book not found')
    if any(r.returned_at is None for r in book.borrow_records):
        logger.debug(f"Refusing to delete book on loan: book_id={book_id}")
        return jsonify({'message': 'Cannot delete a book with copies still on loan'}), 400
    try:
        book.categories = []
        db.session.delete(book)
        db.session.commit()
        logger.debug(f"Book deleted: book_id={book_id}")
        return '', 204
    except Exception as e:
        logger.error(f"Error deleting book: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'Failed to delete book'}), 500


# Authors

def _validate_author(data):
    v = Validator(data)
    v.string('name', required=True, max_length=255)
    v.string('bio')
    v.string('nationality', max_length=100)
    v.date('birth_date')
    return v


@catalog_bp.route('/authors', methods=['GET'])
@login_required()
def get_authors():
    authors = Author.query.options(selectinload(Author.books)).order_by(Author.name).all()
    return jsonify([a.to_dict(with_count=True) for a in authors]), 200


@catalog_bp.route('/authors/<int:author_id>', methods=['GET'])
@login_required()
def get_author(author_id):
    author = db.get_or_404(Author, author_id, description='Author not found')
    return jsonify(author.to_dict(with_count=True)), 200


@catalog_bp.route('/authors', methods=['POST'])
@login_required(role=STAFF_ROLES)
@retry_db_operation()
def add_author():
    v = _validate_author(request.get_json(silent=True))
    if v.fails:
        return validation_error(v.errors)
    try:
        author = Author(**{f: v.cleaned.get(f) for f in ('name', 'bio', 'nationality', 'birth_date')})
        db.session.add(author)
        db.session.commit()
        logger.debug(f"Author added: {author.name}")
        return jsonify(author.to_dict()), 201
    except Exception as e:
        logger.error(f"Error adding author: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'Failed to add author'}), 500


@catalog_bp.route('/authors/<int:author_id>', methods=['PUT'])
@login_required(role=STAFF_ROLES)
@retry_db_operation()
def edit_author(author_id):
    author = db.get_or_404(Author, author_id, description='Author not found')
    v = _validate_author(request.get_json(silent=True))
    if v.fails:
        return validation_error(v.errors)
    try:
        for field in ('name', 'bio', 'nationality', 'birth_date'):
            setattr(author, field, v.cleaned.get(field))
        db.session.commit()
        logger.debug(f"Author updated: author_id={author_id}")
        return jsonify(author.to_dict()), 200
    except Exception as e:
        logger.error(f"Error updating author: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'Failed to update author'}), 500


@catalog_bp.route('/authors/<int:author_id>', methods=['DELETE'])
@login_required(role=STAFF_ROLES)
@retry_db_operation()
def delete_author(author_id):
    author = db.get_or_404(Author, author_id, description='Author not found')
    try:
        # books stay in the catalogue without an author
        db.session.delete(author)
        db.session.commit()
        logger.debug(f"Author deleted: author_id={author_id}")
        return '', 204
    except Exception as e:
        logger.error(f"Error deleting author: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'Failed to delete author'}), 500


# Publishers

def _validate_publisher(data):
    v = Validator(data)
    v.string('name', required=True, max_length=255)
    v.string('address')
    v.string('contact_info')
    return v


@catalog_bp.route('/publishers', methods=['GET'])
@login_required()
def get_publishers():
    publishers = Publisher.query.options(selectinload(Publisher.books)).order_by(Publisher.name).all()
    return jsonify([p.to_dict(with_count=True) for p in publishers]), 200


@catalog_bp.route('/publishers/<int:publisher_id>', methods=['GET'])
@login_required()
def get_publisher(publisher_id):
    publisher = db.get_or_404(Publisher, publisher_id, description='Publisher not found')
    return jsonify(publisher.to_dict(with_count=True)), 200


@catalog_bp.route('/publishers', methods=['POST'])
@login_required(role=STAFF_ROLES)
@retry_db_operation()
def add_publisher():
    v = _validate_publisher(request.get_json(silent=True))
    if v.fails:
        return validation_error(v.errors)
    try:
        publisher = Publisher(**{f: v.cleaned.get(f) for f in ('name', 'address', 'contact_info')})
        db.session.add(publisher)
        db.session.commit()
        logger.debug(f"Publisher added: {publisher.name}")
        return jsonify(publisher.to_dict()), 201
    except Exception as e:
        logger.error(f"Error adding publisher: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'Failed to add publisher'}), 500


@catalog_bp.route('/publishers/<int:publisher_id>', methods=['PUT'])
@login_required(role=STAFF_ROLES)
@retry_db_operation()
def edit_publisher(publisher_id):
    publisher = db.get_or_404(Publisher, publisher_id, description='Publisher not found')
    v = _validate_publisher(request.get_json(silent=True))
    if v.fails:
        return validation_error(v.errors)
    try:
        for field in ('name', 'address', 'contact_info'):
            setattr(publisher, field, v.cleaned.get(field))
        db.session.commit()
        logger.debug(f"Publisher updated: publisher_id={publisher_id}")
        return jsonify(publisher.to_dict()), 200
    except Exception as e:
        logger.error(f"Error updating publisher: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'Failed to update publisher'}), 500


@catalog_bp.route('/publishers/<int:publisher_id>', methods=['DELETE'])
@login_required(role=STAFF_ROLES)
@retry_db_operation()
def delete_publisher(publisher_id):
    publisher = db.get_or_404(Publisher, publisher_id, description='Publisher not found')
    try:
        db.session.delete(publisher)
        db.session.commit()
        logger.debug(f"Publisher deleted: publisher_id={publisher_id}")
        return '', 204
    except Exception as e:
        logger.error(f"Error deleting publisher: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'Failed to delete publisher'}), 500


# Categories

def _validate_category(data, category=None):
    v = Validator(data)
    v.string('name', required=True, max_length=255)
    v.string('description')
    parent_id = v.exists('parent_id', Category)
    if parent_id is not None and category is not None:
        # walk up from the new parent; meeting this category would close a loop
        ancestor = db.session.get(Category, parent_id)
        while ancestor is not None:
            if ancestor.category_id == category.category_id:
                v.add('parent_id', 'A category cannot be its own parent.')
                break
            ancestor = ancestor.parent
    return v


@catalog_bp.route('/categories', methods=['GET'])
@login_required()
def get_categories():
    categories = Category.query.options(selectinload(Category.books), selectinload(Category.parent)) \
        .order_by(Category.name).all()
    return jsonify([c.to_dict(with_count=True) for c in categories]), 200


@catalog_bp.route('/categories', methods=['POST'])
@login_required(role=STAFF_ROLES)
@retry_db_operation()
def add_category():
    v = _validate_category(request.get_json(silent=True))
    if v.fails:
        return validation_error(v.errors)
    try:
        category = Category(**{f: v.cleaned.get(f) for f in ('name', 'description', 'parent_id')})
        db.session.add(category)
        db.session.commit()
        logger.debug(f"Category added: {category.name}")
        return jsonify(category.to_dict()), 201
    except Exception as e:
        logger.error(f"Error adding category: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'Failed to add category'}), 500


@catalog_bp.route('/categories/<int:category_id>', methods=['PUT'])
@login_required(role=STAFF_ROLES)
@retry_db_operation()
def edit_category(category_id):
    category = db.get_or_404(Category, category_id, description='Category not found')
    v = _validate_category(request.get_json(silent=True), category=category)
    if v.fails:
        return validation_error(v.errors)
    try:
        for field in ('name', 'description', 'parent_id'):
            setattr(category, field, v.cleaned.get(field))
        db.session.commit()
        logger.debug(f"Category updated: category_id={category_id}")
        return jsonify(category.to_dict()), 200
    except Exception as e:
        logger.error(f"Error updating category: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'Failed to update category'}), 500


@catalog_bp.route('/categories/<int:category_id>', methods=['DELETE'])
@login_required(role=STAFF_ROLES)
@retry_db_operation()
def delete_category(category_id):
    category = db.get_or_404(Category, category_id, description='Category not found')
    try:
        for child in category.children:
            child.parent_id = None
        category.books = []
        db.session.delete(category)
        db.session.commit()
        logger.debug(f"Category deleted: category_id={category_id}")
        return '', 204
    except Exception as e:
        logger.error(f"Error deleting category: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'Failed to delete category'}), 500
