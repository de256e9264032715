import logging
from datetime import timedelta

from flask import Blueprint, jsonify, request
from sqlalchemy.sql import text

from auth import login_required
from models import STAFF_ROLES, db
from stats import MAX_REPORT_DAYS, dashboard_stats, report_summary
from utils import parse_date, retry_db_operation, utcnow
from validation import validation_error

logger = logging.getLogger(__name__)

reports_bp = Blueprint('reports', __name__)

DEFAULT_REPORT_DAYS = 30


@reports_bp.route('/')
def home():
    return jsonify({"message": "Library Management System Backend"})


@reports_bp.route('/api/test', methods=['GET'])
@retry_db_operation()
def test_db():
    try:
        result = db.session.execute(text('SELECT 1')).scalar()
        logger.debug(f"Database test query successful: {result}")
        return jsonify({'message': 'API is working!', 'database': 'ok'}), 200
    except Exception as e:
        logger.error(f"Database test error: {str(e)}")
        return jsonify({'message': 'Database connection failed', 'details': str(e)}), 500


@reports_bp.route('/api/dashboard/stats', methods=['GET'])
@login_required()
@retry_db_operation()
def get_dashboard_stats():
    return jsonify(dashboard_stats()), 200


@reports_bp.route('/api/reports/summary', methods=['GET'])
@login_required(role=STAFF_ROLES)
@retry_db_operation()
def get_report_summary():
    today = utcnow().date()
    errors = {}
    end_date = parse_date(request.args.get('end_date')) if request.args.get('end_date') else today
    if end_date is None:
        errors['end_date'] = ['The end_date is not a valid date.']
    start_arg = request.args.get('start_date')
    if start_arg:
        start_date = parse_date(start_arg)
        if start_date is None:
            errors['start_date'] = ['The start_date is not a valid date.']
    else:
        start_date = (end_date or today) - timedelta(days=DEFAULT_REPORT_DAYS)
    if not errors:
        if start_date > end_date:
            errors['start_date'] = ['The start_date must be a date before or equal to end_date.']
        elif (end_date - start_date).days > MAX_REPORT_DAYS:
            errors['start_date'] = [f'The report range may not exceed {MAX_REPORT_DAYS} days.']
    if errors:
        return validation_error(errors)
    return jsonify(report_summary(start_date, end_date)), 200
