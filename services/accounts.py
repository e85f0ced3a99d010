"""Account ledger: registration, credentials and balances."""
import logging
import re

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from models.models import db, Role, User
from services.errors import Conflict, InvalidInput, NotFound, Unauthorized
from utils.utils import parse_decimal, quantize_money

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
MIN_PASSWORD_LENGTH = 6


def normalize_email(email):
    if not isinstance(email, str):
        return ''
    return email.strip().lower()


def find_user(email):
    return User.query.filter_by(email=normalize_email(email)).first()


def get_user(email):
    user = find_user(email)
    if not user:
        raise NotFound('User not found')
    return user


def register(email, password, role=Role.USER.value):
    email = normalize_email(email)
    if not isinstance(password, str):
        password = ''
    role = role or Role.USER.value

    if find_user(email):
        raise Conflict('User already exists')
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidInput(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    if not EMAIL_PATTERN.match(email):
        raise InvalidInput('Invalid email format')
    if role not in (Role.USER.value, Role.ADMIN.value):
        raise InvalidInput('Invalid role')

    user = User(
        email=email,
        password=generate_password_hash(password),
        role=role,
        balance=0,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        # Lost a race against a concurrent registration of the same email
        db.session.rollback()
        raise Conflict('User already exists')
    except SQLAlchemyError:
        db.session.rollback()
        raise

    logger.info("Registered %s account %s", role, email)
    return user


def authenticate(email, password):
    user = find_user(email)
    if not user:
        raise NotFound('User not found')
    if not check_password_hash(user.password, password or ''):
        raise Unauthorized('Wrong password')
    return user


def get_balance(email):
    return quantize_money(get_user(email).balance)


def credit(email, amount):
    """Top up a balance; returns the balance after the update."""
    user = get_user(email)

    amount = parse_decimal(amount)
    if amount is None or amount <= 0:
        raise InvalidInput('Amount must be positive')
    amount = quantize_money(amount)
    if amount <= 0:
        raise InvalidInput('Amount must be positive')

    try:
        db.session.execute(
            update(User)
            .where(User.id == user.id)
            .values(balance=func.round(User.balance + amount, 2))
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    return quantize_money(db.session.get(User, user.id).balance)


def ensure_admin(email, password):
    """Seed an admin account at startup unless one with this email exists."""
    if not email or not password or find_user(email):
        return None
    admin = register(email, password, role=Role.ADMIN.value)
    logger.info("Default admin created: %s", admin.email)
    return admin
