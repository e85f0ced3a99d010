"""Spot registry."""
import logging

from sqlalchemy.exc import SQLAlchemyError

from models.models import db, ParkingSpot, Reservation, SpotStatus
from services.errors import Conflict, InvalidInput, NotFound
from utils.utils import parse_decimal, quantize_money, utc_now

logger = logging.getLogger(__name__)


def list_free():
    return ParkingSpot.query.filter_by(status=SpotStatus.FREE.value).order_by(ParkingSpot.id).all()


def search(location):
    """Free spots whose location contains the substring, case-sensitive."""
    query = ParkingSpot.query.filter_by(status=SpotStatus.FREE.value)
    if location:
        query = query.filter(ParkingSpot.location.contains(location, autoescape=True))
    spots = query.order_by(ParkingSpot.id).all()
    # LIKE is case-insensitive for ASCII on SQLite, re-check in Python
    if location:
        spots = [spot for spot in spots if location in spot.location]
    return spots


def list_all():
    return ParkingSpot.query.order_by(ParkingSpot.id).all()


def get_spot(spot_id):
    spot = db.session.get(ParkingSpot, spot_id) if spot_id is not None else None
    if not spot:
        raise NotFound('Spot not found')
    return spot


def _clean_location(location):
    if not isinstance(location, str):
        return ''
    return location.strip()


def _valid_price(price):
    price = parse_decimal(price)
    if price is None:
        return None
    price = quantize_money(price)
    return price if price > 0 else None


def create(location, price_per_hour):
    location = _clean_location(location)
    price = _valid_price(price_per_hour)
    if not location or price is None:
        raise InvalidInput('Invalid data')

    spot = ParkingSpot(location=location, price_per_hour=price, status=SpotStatus.FREE.value)
    db.session.add(spot)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    logger.info("Spot %s added at %s", spot.id, spot.location)
    return spot


def update(spot_id, location=None, price_per_hour=None):
    """Partial update; only the supplied fields change."""
    spot = get_spot(spot_id)

    location = _clean_location(location) or None
    price = None
    if price_per_hour is not None:
        price = _valid_price(price_per_hour)
        if price is None:
            raise InvalidInput('Price must be positive')

    if location is None and price is None:
        raise InvalidInput('No updates provided')

    if location is not None:
        spot.location = location
    if price is not None:
        spot.price_per_hour = price

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    return spot


def set_status(spot_id, status):
    """Admin override, any status may follow any other."""
    spot = get_spot(spot_id)
    parsed = SpotStatus.parse(status)
    if parsed is None:
        raise InvalidInput('Invalid status')

    spot.status = parsed.value
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    logger.info("Spot %s status set to %s", spot.id, spot.status)
    return spot


def delete(spot_id, now=None):
    spot = get_spot(spot_id)
    now = now or utc_now()

    active_count = Reservation.query.filter(
        Reservation.spot_id == spot.id,
        Reservation.end_time > now,
    ).count()
    if active_count > 0:
        raise Conflict('Cannot delete spot with active reservations')

    try:
        Reservation.query.filter_by(spot_id=spot.id).update(
            {Reservation.spot_id: None}, synchronize_session=False
        )
        db.session.delete(spot)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    logger.info("Spot %s deleted", spot_id)
