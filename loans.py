"""Borrow/return lifecycle and overdue fines.

A borrow record is open while ``returned_at`` is NULL and is closed exactly
once by :func:`return_book`.  Copy counts are changed with single guarded
UPDATE statements so two requests racing for the last copy (or returning
the same record twice) cannot push ``available_copies`` out of
``0..total_copies``.
"""
import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import update

from models import Book, BorrowRecord, FinePayment, db
from utils import utcnow

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')


class LoanError(Exception):
    status_code = 400

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class BookNotFound(LoanError):
    status_code = 404


class BookUnavailable(LoanError):
    status_code = 400


class RecordNotFound(LoanError):
    status_code = 404


class InvalidPayment(LoanError):
    status_code = 422


def days_overdue(due_at, now):
    """Whole days elapsed past ``due_at``; 0 when not overdue."""
    if now <= due_at:
        return 0
    return (now - due_at).days


def calculate_fine(due_at, now, per_day=None):
    if per_day is None:
        per_day = current_app.config['FINE_PER_DAY']
    return (Decimal(per_day) * days_overdue(due_at, now)).quantize(CENT)


def borrow_book(user, book_id, now=None):
    now = now or utcnow()
    book = db.session.get(Book, book_id)
    if book is None:
        raise BookNotFound('Book not found')

    taken = db.session.execute(
        update(Book)
        .where(Book.book_id == book_id, Book.available_copies > 0)
        .values(available_copies=Book.available_copies - 1)
    ).rowcount
    if not taken:
        db.session.rollback()
        logger.debug(f"Book unavailable: book_id={book_id}")
        raise BookUnavailable('This book is currently unavailable')

    record = BorrowRecord(
        user_id=user.user_id,
        book_id=book_id,
        borrowed_at=now,
        due_at=now + timedelta(days=current_app.config['LOAN_PERIOD_DAYS']),
        fine_amount=Decimal('0.00'),
        status='borrowed'
    )
    db.session.add(record)
    db.session.commit()
    logger.info(f"Book borrowed: book_id={book_id} by user_id={user.user_id}, record_id={record.id}")
    return record


def return_book(user, record_id, now=None):
    """Close an open borrow record and give the copy back.

    Staff may close any open record; students only their own.
    """
    now = now or utcnow()
    query = BorrowRecord.query.filter(BorrowRecord.id == record_id, BorrowRecord.returned_at.is_(None))
    if not user.is_staff:
        query = query.filter(BorrowRecord.user_id == user.user_id)
    record = query.first()
    if record is None:
        logger.warning(f"Borrow record not found or already returned: record_id={record_id}, "
                       f"user_id={user.user_id}")
        raise RecordNotFound('Borrow record not found or already returned')

    fine = calculate_fine(record.due_at, now)
    closed = db.session.execute(
        update(BorrowRecord)
        .where(BorrowRecord.id == record.id, BorrowRecord.returned_at.is_(None))
        .values(returned_at=now, status='returned', fine_amount=fine)
    ).rowcount
    if not closed:
        db.session.rollback()
        raise RecordNotFound('Borrow record not found or already returned')

    db.session.execute(
        update(Book)
        .where(Book.book_id == record.book_id, Book.available_copies < Book.total_copies)
        .values(available_copies=Book.available_copies + 1)
    )
    db.session.commit()
    logger.info(f"Book returned: record_id={record.id} by user_id={user.user_id} ({user.role}), fine={fine}")
    return db.session.get(BorrowRecord, record.id)


def pay_fine(record_id, amount, now=None):
    record = db.session.get(BorrowRecord, record_id)
    if record is None:
        raise RecordNotFound('Borrow record not found')
    try:
        amount = Decimal(str(amount))
        if not amount.is_finite():
            raise ValueError(amount)
        amount = amount.quantize(CENT)
    except (InvalidOperation, ValueError):
        raise InvalidPayment('The given data was invalid.', {'amount': ['The amount must be a number.']})
    if amount <= 0:
        raise InvalidPayment('The given data was invalid.', {'amount': ['The amount must be greater than 0.']})
    if amount > record.balance:
        raise InvalidPayment('The given data was invalid.',
                             {'amount': [f'The amount may not be greater than the balance of {record.balance}.']})
    payment = FinePayment(borrow_record_id=record.id, amount=amount, paid_at=now or utcnow())
    db.session.add(payment)
    db.session.commit()
    logger.info(f"Fine payment recorded: record_id={record.id}, amount={amount}")
    return record


def accrue_overdue_fines(now=None):
    """Bring the fine of every open overdue loan up to date; returns the count."""
    now = now or utcnow()
    records = BorrowRecord.query.filter(
        BorrowRecord.returned_at.is_(None),
        BorrowRecord.due_at < now
    ).all()
    for record in records:
        record.fine_amount = calculate_fine(record.due_at, now)
    db.session.commit()
    logger.debug(f"Fine calculation completed: {len(records)} borrow records updated")
    return len(records)
