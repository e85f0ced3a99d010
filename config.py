import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
BASE_DIR = Path(__file__).resolve().parent
load_dotenv(dotenv_path=BASE_DIR / '.env')


def _env_flag(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _database_url():
    # Production uses DATABASE_URL, development falls back to SQLite
    database_url = os.getenv('DATABASE_URL')
    if not database_url:
        return 'sqlite:///parking.sqlite3'
    # Handle potential postgresql:// vs postgres:// URL difference
    if database_url.startswith('postgres://'):
        database_url = database_url.replace('postgres://', 'postgresql://', 1)
    return database_url


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY') or os.urandom(24)
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    SWEEP_INTERVAL_SECONDS = int(os.getenv('SWEEP_INTERVAL_SECONDS', 300))
    SWEEP_IN_BACKGROUND = _env_flag('SWEEP_IN_BACKGROUND', False)

    ADMIN_LOGIN_REQUIRED = _env_flag('ADMIN_LOGIN_REQUIRED', True)
    ADMIN_EMAIL = os.getenv('ADMIN_EMAIL')
    ADMIN_PASSWORD = os.getenv('ADMIN_PASSWORD')

    CORS_ORIGINS = os.getenv('CORS_ORIGINS', '*')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SWEEP_IN_BACKGROUND = False
    ADMIN_LOGIN_REQUIRED = True
    ADMIN_EMAIL = None
    ADMIN_PASSWORD = None
