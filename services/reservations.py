"""Reservation lifecycle.

Every mutation below runs as one unit of work on ``db.session``: the
preconditions are read first to pick the right error, then re-asserted by
conditional ``UPDATE`` statements inside the same transaction, so two
concurrent requests can never both claim a spot or overdraw a balance.
Any failure rolls the whole unit back.
"""
import logging
from datetime import timedelta
from decimal import InvalidOperation

from sqlalchemy import func, update

from models.models import db, ParkingSpot, Reservation, SpotStatus, User
from services import accounts
from services.errors import Conflict, InsufficientFunds, InvalidInput, NotFound, Unauthorized
from services.spots import get_spot
from utils.utils import parse_decimal, quantize_money, utc_now

logger = logging.getLogger(__name__)

HELD_STATUSES = (SpotStatus.RESERVED.value, SpotStatus.OCCUPIED.value)


def reservation_cost(price_per_hour, hours):
    return quantize_money(parse_decimal(price_per_hour) * hours)


def _parse_hours(hours):
    hours = parse_decimal(hours)
    if hours is None or hours <= 0:
        raise InvalidInput('Hours must be a positive number')
    return hours


def _end_time(now, hours):
    try:
        return now + timedelta(seconds=float(hours * 3600))
    except (OverflowError, ValueError):
        raise InvalidInput('Hours out of range')


def _rowcount(statement):
    return db.session.execute(statement.execution_options(synchronize_session=False)).rowcount


def reserve(email, spot_id, hours, now=None):
    hours = _parse_hours(hours)
    now = now or utc_now()
    end_time = _end_time(now, hours)

    user = accounts.get_user(email)
    spot = get_spot(spot_id)
    if not spot.is_free:
        raise Conflict('Spot not available')

    try:
        cost = reservation_cost(spot.price_per_hour, hours)
    except InvalidOperation:
        raise InvalidInput('Hours out of range')
    if cost <= 0:
        raise InvalidInput('Reservation is too short to be charged')
    if user.balance < cost:
        raise InsufficientFunds('Insufficient balance')

    try:
        claimed = _rowcount(
            update(ParkingSpot)
            .where(ParkingSpot.id == spot.id, ParkingSpot.status == SpotStatus.FREE.value)
            .values(status=SpotStatus.RESERVED.value)
        )
        if claimed != 1:
            raise Conflict('Spot not available')

        debited = _rowcount(
            update(User)
            .where(User.id == user.id, User.balance >= cost)
            .values(balance=func.round(User.balance - cost, 2))
        )
        if debited != 1:
            raise InsufficientFunds('Insufficient balance')

        reservation = Reservation(
            user_id=user.id,
            spot_id=spot.id,
            start_time=now,
            end_time=end_time,
            paid=cost,
        )
        db.session.add(reservation)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Spot %s reserved by %s for %s h, paid %s", spot.id, user.email, hours, cost)
    payload = reservation.to_dict()
    payload['location'] = spot.location
    return payload


def _latest_reservation_id(spot_id):
    latest = (
        Reservation.query
        .filter_by(spot_id=spot_id)
        .order_by(Reservation.id.desc())
        .first()
    )
    return latest.id if latest else None


def _get_reservation(reservation_id):
    reservation = db.session.get(Reservation, reservation_id) if reservation_id is not None else None
    if not reservation:
        raise NotFound('Reservation not found')
    return reservation


def _finish(reservation, now):
    """Cut the reservation short and free its spot if it still holds it."""
    try:
        ended = _rowcount(
            update(Reservation)
            .where(Reservation.id == reservation.id, Reservation.end_time > now)
            .values(end_time=now)
        )
        if ended != 1:
            raise Conflict('Reservation already expired. Refresh the list.')

        if reservation.spot_id is not None and _latest_reservation_id(reservation.spot_id) == reservation.id:
            _rowcount(
                update(ParkingSpot)
                .where(ParkingSpot.id == reservation.spot_id)
                .values(status=SpotStatus.FREE.value)
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def end_reservation(reservation_id, email=None, now=None):
    """Self-service end of a reservation, optionally checked against its owner."""
    now = now or utc_now()
    reservation = _get_reservation(reservation_id)

    if email is not None:
        owner = db.session.get(User, reservation.user_id)
        if owner is None or owner.email != accounts.normalize_email(email):
            raise Unauthorized('Reservation belongs to another user')

    if not reservation.is_active(now):
        raise Conflict('Reservation already ended')

    _finish(reservation, now)
    logger.info("Reservation %s ended by its owner", reservation.id)


def force_end_reservation(reservation_id, now=None):
    now = now or utc_now()
    reservation = _get_reservation(reservation_id)

    if not reservation.is_active(now):
        raise Conflict('Reservation already expired. Refresh the list.')

    _finish(reservation, now)
    logger.info("Reservation %s force-ended by admin", reservation.id)


def cleanup_expired_reservations(now=None):
    """Free every held spot whose most recent reservation has ended."""
    now = now or utc_now()

    # Latest means last booked, not last to end: an admin may free a spot
    # early and a shorter booking can follow a longer one
    latest = (
        db.session.query(
            Reservation.spot_id.label('spot_id'),
            func.max(Reservation.id).label('reservation_id'),
        )
        .filter(Reservation.spot_id.isnot(None))
        .group_by(Reservation.spot_id)
        .subquery()
    )
    expired_ids = [
        spot_id for (spot_id,) in (
            db.session.query(ParkingSpot.id)
            .join(latest, latest.c.spot_id == ParkingSpot.id)
            .join(Reservation, Reservation.id == latest.c.reservation_id)
            .filter(ParkingSpot.status.in_(HELD_STATUSES), Reservation.end_time <= now)
            .all()
        )
    ]

    if expired_ids:
        try:
            _rowcount(
                update(ParkingSpot)
                .where(ParkingSpot.id.in_(expired_ids), ParkingSpot.status.in_(HELD_STATUSES))
                .values(status=SpotStatus.FREE.value)
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("Freed %d spot(s) with expired reservations: %s", len(expired_ids), expired_ids)

    return {
        'message': f'Cleaned up {len(expired_ids)} expired reservations',
        'count': len(expired_ids),
        'spot_ids': expired_ids,
    }


def list_for_user(email, now=None):
    now = now or utc_now()
    user = accounts.get_user(email)

    rows = (
        db.session.query(Reservation, ParkingSpot)
        .outerjoin(ParkingSpot, Reservation.spot_id == ParkingSpot.id)
        .filter(Reservation.user_id == user.id)
        .order_by(Reservation.start_time.desc(), Reservation.id.desc())
        .all()
    )

    reservations = []
    for res, spot in rows:
        data = res.to_dict()
        data['location'] = spot.location if spot else None
        data['price_per_hour'] = spot.to_dict()['price_per_hour'] if spot else None
        data['status'] = res.status_at(now)
        reservations.append(data)
    return reservations


def list_all(now=None):
    now = now or utc_now()

    rows = (
        db.session.query(Reservation, User.email, ParkingSpot.location)
        .join(User, Reservation.user_id == User.id)
        .outerjoin(ParkingSpot, Reservation.spot_id == ParkingSpot.id)
        .order_by(Reservation.start_time.desc(), Reservation.id.desc())
        .all()
    )

    reservations = []
    for res, user_email, spot_location in rows:
        data = res.to_dict()
        data['user_email'] = user_email
        data['spot_location'] = spot_location
        data['reservation_status'] = res.status_at(now)
        reservations.append(data)
    return reservations


def get_reservation(reservation_id):
    return _get_reservation(reservation_id)
