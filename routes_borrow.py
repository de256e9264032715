import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.orm import selectinload

from auth import current_user, login_required
from loans import LoanError, borrow_book, pay_fine, return_book
from models import STAFF_ROLES, Book, BorrowRecord, db
from utils import retry_db_operation
from validation import Validator, validation_error

logger = logging.getLogger(__name__)

borrow_bp = Blueprint('borrow', __name__, url_prefix='/api')


def _loan_error(error):
    payload = {'message': error.message}
    if error.errors:
        payload['errors'] = error.errors
    return jsonify(payload), error.status_code


def _with_book():
    return selectinload(BorrowRecord.book).selectinload(Book.author)


@borrow_bp.route('/borrow-records', methods=['GET'])
@login_required()
@retry_db_operation()
def get_open_records():
    user = current_user()
    records = BorrowRecord.query.options(_with_book()).filter(
        BorrowRecord.user_id == user.user_id,
        BorrowRecord.returned_at.is_(None)
    ).order_by(BorrowRecord.due_at).all()
    logger.debug(f"Fetched {len(records)} open borrow records for user_id={user.user_id}")
    return jsonify([r.to_dict(book=True) for r in records]), 200


@borrow_bp.route('/borrow-records', methods=['POST'])
@login_required()
@retry_db_operation()
def create_borrow_record():
    data = request.get_json(silent=True)
    logger.info(f"Borrow request data: {data}")
    v = Validator(data)
    book_id = v.integer('book_id', required=True)
    if v.fails:
        return validation_error(v.errors)
    try:
        record = borrow_book(current_user(), book_id)
    except LoanError as e:
        return _loan_error(e)
    return jsonify({
        'message': 'Book borrowed successfully',
        'data': record.to_dict(book=True)
    }), 201


@borrow_bp.route('/borrow-records/<int:record_id>', methods=['GET'])
@login_required()
def get_borrow_record(record_id):
    user = current_user()
    record = db.session.get(BorrowRecord, record_id)
    if record is None or (not user.is_staff and record.user_id != user.user_id):
        return jsonify({'message': 'Borrow record not found'}), 404
    return jsonify(record.to_dict(book=True, user=True, payments=True)), 200


@borrow_bp.route('/borrow-records/<int:record_id>/return', methods=['POST', 'GET'])
@login_required()
@retry_db_operation()
def return_borrow_record(record_id):
    user = current_user()
    logger.info(f"Return book request: record_id={record_id}, user_id={user.user_id}, user_role={user.role}")
    try:
        record = return_book(user, record_id)
    except LoanError as e:
        return _loan_error(e)
    return jsonify({
        'message': 'Book returned successfully',
        'data': record.to_dict(book=True)
    }), 200


@borrow_bp.route('/borrow-records/<int:record_id>/payments', methods=['POST'])
@login_required(role=STAFF_ROLES)
@retry_db_operation()
def create_fine_payment(record_id):
    data = request.get_json(silent=True) or {}
    if data.get('amount') is None or isinstance(data.get('amount'), bool):
        return validation_error({'amount': ['The amount field is required.']})
    try:
        record = pay_fine(record_id, data['amount'])
    except LoanError as e:
        return _loan_error(e)
    return jsonify({
        'message': 'Fine payment recorded',
        'data': record.to_dict(book=True, user=True, payments=True)
    }), 201


@borrow_bp.route('/borrow-history', methods=['GET'])
@login_required()
@retry_db_operation()
def get_borrow_history():
    user = current_user()
    records = BorrowRecord.query.options(
        _with_book(),
        selectinload(BorrowRecord.book).selectinload(Book.publisher),
        selectinload(BorrowRecord.book).selectinload(Book.categories),
    ).filter(BorrowRecord.user_id == user.user_id) \
        .order_by(BorrowRecord.borrowed_at.desc(), BorrowRecord.id.desc()).all()
    return jsonify([r.to_dict(book=True, catalog=True) for r in records]), 200


@borrow_bp.route('/all-borrow-records', methods=['GET'])
@login_required()
@retry_db_operation()
def get_all_borrow_records():
    user = current_user()
    logger.info(f"User attempting to get all borrow records: id={user.user_id}, role={user.role}")
    if not user.is_staff:
        logger.warning(f"Unauthorized user attempted to access all borrow records: "
                       f"user_id={user.user_id}, role={user.role}")
        return jsonify({'message': 'Unauthorized'}), 403
    try:
        records = BorrowRecord.query.options(
            _with_book(),
            selectinload(BorrowRecord.book).selectinload(Book.publisher),
            selectinload(BorrowRecord.book).selectinload(Book.categories),
            selectinload(BorrowRecord.user),
        ).order_by(BorrowRecord.borrowed_at.desc(), BorrowRecord.id.desc()).all()
        logger.info(f"Retrieved borrow records: count={len(records)}")
        return jsonify([r.to_dict(book=True, user=True, catalog=True) for r in records]), 200
    except Exception as e:
        logger.error(f"Error in get_all_borrow_records: {str(e)}")
        return jsonify({'message': 'Failed to retrieve borrow records', 'error': str(e)}), 500
