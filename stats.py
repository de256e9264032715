"""Read-only aggregates for the dashboard and the report page."""
import logging
from collections import Counter
from datetime import datetime, time, timedelta

from sqlalchemy import func, or_

from models import Book, BorrowRecord, Category, User, book_category, db
from utils import isoformat, utcnow

logger = logging.getLogger(__name__)

RECENT_LOANS = 5
TOP_BOOKS = 10
MAX_REPORT_DAYS = 366


def dashboard_stats(now=None):
    now = now or utcnow()
    open_loans = BorrowRecord.query.filter(BorrowRecord.returned_at.is_(None))
    recent = BorrowRecord.query.order_by(BorrowRecord.borrowed_at.desc(), BorrowRecord.id.desc()) \
        .limit(RECENT_LOANS).all()
    return {
        'totalBooks': Book.query.count(),
        'availableCopies': int(db.session.query(func.coalesce(func.sum(Book.available_copies), 0)).scalar()),
        'activeLoans': open_loans.count(),
        'overdueLoans': open_loans.filter(BorrowRecord.due_at < now).count(),
        'totalStudents': User.query.filter_by(role='student').count(),
        'recentLoans': [{
            'id': loan.id,
            'bookId': loan.book_id,
            'bookTitle': loan.book.title if loan.book else 'Unknown',
            'userId': loan.user_id,
            'userName': loan.user.name if loan.user else 'Unknown',
            'borrowedAt': isoformat(loan.borrowed_at),
            'dueAt': isoformat(loan.due_at),
            'returnedAt': isoformat(loan.returned_at),
            'status': loan.loan_status(now),
        } for loan in recent],
    }


def _books_by_category():
    counts = db.session.query(Category.name, func.count(book_category.c.book_id)) \
        .join(book_category, Category.category_id == book_category.c.category_id) \
        .group_by(Category.category_id, Category.name).all()
    uncategorized = Book.query.filter(~Book.categories.any()).count()
    result = [{'name': name, 'value': count} for name, count in counts]
    if uncategorized:
        result.append({'name': 'Uncategorized', 'value': uncategorized})
    return sorted(result, key=lambda item: (-item['value'], item['name']))


def _borrowing_trends(start_date, end_date):
    range_start = datetime.combine(start_date, time.min)
    range_end = datetime.combine(end_date + timedelta(days=1), time.min)
    records = BorrowRecord.query.filter(or_(
        BorrowRecord.borrowed_at.between(range_start, range_end),
        BorrowRecord.returned_at.between(range_start, range_end),
    )).all()
    borrows = Counter(r.borrowed_at.date() for r in records if range_start <= r.borrowed_at < range_end)
    returns = Counter(r.returned_at.date() for r in records
                      if r.returned_at is not None and range_start <= r.returned_at < range_end)
    trends = []
    day = start_date
    while day <= end_date:
        trends.append({'date': day.isoformat(), 'borrows': borrows[day], 'returns': returns[day]})
        day += timedelta(days=1)
    return trends


def report_summary(start_date, end_date, now=None):
    now = now or utcnow()
    total_books = Book.query.count()
    borrowed_books = db.session.query(func.count(func.distinct(BorrowRecord.book_id))) \
        .filter(BorrowRecord.returned_at.is_(None)).scalar()
    top = db.session.query(Book.title, func.count(BorrowRecord.id).label('borrow_count')) \
        .join(BorrowRecord, BorrowRecord.book_id == Book.book_id) \
        .group_by(Book.book_id, Book.title) \
        .order_by(func.count(BorrowRecord.id).desc(), Book.title) \
        .limit(TOP_BOOKS).all()
    overdue = BorrowRecord.query.filter(
        BorrowRecord.returned_at.is_(None),
        BorrowRecord.due_at < now
    ).order_by(BorrowRecord.due_at).all()
    logger.debug(f"Report generated for {start_date} to {end_date}")
    return {
        'startDate': start_date.isoformat(),
        'endDate': end_date.isoformat(),
        'totalBooks': total_books,
        'availableBooks': total_books - borrowed_books,
        'borrowedBooks': borrowed_books,
        'totalBorrows': BorrowRecord.query.count(),
        'booksByCategory': _books_by_category(),
        'borrowingTrends': _borrowing_trends(start_date, end_date),
        'topBorrowedBooks': [{'title': title, 'count': count} for title, count in top],
        'overdueBooks': [r.to_dict(book=True, user=True) for r in overdue],
    }
