import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


def _as_bool(value, default=False):
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def normalize_database_url(database_url):
    # Heroku/Neon style URLs are not accepted by SQLAlchemy 1.4+
    if database_url and database_url.startswith('postgres://'):
        database_url = database_url.replace('postgres://', 'postgresql://', 1)
    return database_url


def load_config():
    """Build the Flask config mapping from the environment."""
    database_url = normalize_database_url(os.environ.get('DATABASE_URL'))
    config = {
        'SQLALCHEMY_DATABASE_URI': database_url,
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SECRET_KEY': os.environ.get('SECRET_KEY', 'xYz9wV1uT0sR9qP8oN7mL6kJ5iH4gF3eD2cB1a'),
        'SESSION_TYPE': os.environ.get('SESSION_TYPE', 'sqlalchemy'),
        'SESSION_PERMANENT': False,
        'SESSION_COOKIE_SECURE': _as_bool(os.environ.get('SESSION_COOKIE_SECURE'), True),
        'SESSION_COOKIE_HTTPONLY': True,
        'SESSION_COOKIE_SAMESITE': 'Lax',
        'CORS_ORIGINS': [o.strip() for o in os.environ.get(
            'CORS_ORIGINS', 'http://localhost:3000,http://localhost:5173').split(',') if o.strip()],
        'LOAN_PERIOD_DAYS': int(os.environ.get('LOAN_PERIOD_DAYS', '14')),
        'FINE_PER_DAY': Decimal(os.environ.get('FINE_PER_DAY', '1.00')),
        'FINE_ACCRUAL_INTERVAL_HOURS': int(os.environ.get('FINE_ACCRUAL_INTERVAL_HOURS', '24')),
        'SCHEDULER_ENABLED': _as_bool(os.environ.get('SCHEDULER_ENABLED'), True),
        'BCRYPT_ROUNDS': int(os.environ.get('BCRYPT_ROUNDS', '12')),
        'LOG_LEVEL': os.environ.get('LOG_LEVEL', 'DEBUG'),
    }
    if database_url and database_url.startswith('postgresql://'):
        config['SQLALCHEMY_ENGINE_OPTIONS'] = {
            'connect_args': {'connect_timeout': 10},
            'pool_size': 5,
            'max_overflow': 10,
            'pool_timeout': 30,
        }
        # For Neon cloud deployment
        if _as_bool(os.environ.get('DATABASE_SSL_REQUIRED')):
            config['SQLALCHEMY_ENGINE_OPTIONS']['connect_args']['sslmode'] = 'require'
    return config
