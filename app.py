import atexit
import logging

import click
from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_session import Session
from werkzeug.exceptions import HTTPException

from config import load_config
from loans import accrue_overdue_fines
from models import db
from routes_auth import auth_bp
from routes_borrow import borrow_bp
from routes_catalog import catalog_bp
from routes_reports import reports_bp

logger = logging.getLogger(__name__)


def configure_logging(level):
    logging.basicConfig(level=level, format='%(asctime)s - %(levelname)s - %(message)s')


# Fine accrual scheduler
def start_scheduler(app):
    def run_accrual():
        with app.app_context():
            accrue_overdue_fines()

    scheduler = BackgroundScheduler(daemon=True)
    scheduler.add_job(run_accrual, 'interval', hours=app.config['FINE_ACCRUAL_INTERVAL_HOURS'],
                      id='accrue_overdue_fines', replace_existing=True)
    scheduler.start()
    atexit.register(lambda: scheduler.shutdown(wait=False))
    logger.debug("Scheduler started")
    return scheduler


def register_error_handlers(app):
    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'message': error.description}), error.code

    @app.errorhandler(Exception)
    def handle_error(error):
        logger.error(f"Unhandled error: {str(error)}")
        db.session.rollback()
        return jsonify({'message': 'An unexpected error occurred'}), 500


def register_commands(app):
    @app.cli.command('init-db')
    def init_db():
        """Create all tables."""
        db.create_all()
        click.echo('Database tables created')

    @app.cli.command('accrue-fines')
    def accrue_fines():
        """Update the running fine of every overdue loan."""
        count = accrue_overdue_fines()
        click.echo(f'{count} overdue borrow records updated')


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.update(load_config())
    if test_config:
        app.config.update(test_config)
    configure_logging(app.config['LOG_LEVEL'])

    if not app.config.get('SQLALCHEMY_DATABASE_URI'):
        raise ValueError("DATABASE_URL is not set in .env file")

    CORS(app, supports_credentials=True, origins=app.config['CORS_ORIGINS'])

    try:
        db.init_app(app)
    except Exception as e:
        logger.error(f"Failed to initialize database: {str(e)}")
        raise

    if app.config['SESSION_TYPE'] == 'sqlalchemy':
        app.config.setdefault('SESSION_SQLALCHEMY', db)
    Session(app)

    @app.before_request
    def log_request():
        logger.debug(f"Incoming request: {request.method} {request.path}")

    app.register_blueprint(reports_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(borrow_bp)
    register_error_handlers(app)
    register_commands(app)

    if app.config['SCHEDULER_ENABLED']:
        app.extensions['scheduler'] = start_scheduler(app)
    return app


if __name__ == '__main__':
    app = create_app()
    with app.app_context():
        db.create_all()
        logger.debug(f"Database connected: {app.config['SQLALCHEMY_DATABASE_URI']}")
    app.run(threaded=True, use_reloader=False)
