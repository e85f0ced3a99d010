"""Admin dashboard aggregates. Each figure is its own query, so a concurrent
write can make the snapshot slightly inconsistent."""
from sqlalchemy import func

from models.models import db, ParkingSpot, Reservation, SpotStatus, User
from utils.utils import to_money, utc_now


def get_statistics(now=None):
    now = now or utc_now()

    stats = {
        'totalSpots': 0,
        'freeSpots': 0,
        'reservedSpots': 0,
        'occupiedSpots': 0,
        'totalReservations': 0,
        'activeReservations': 0,
        'completedReservations': 0,
        'totalRevenue': 0,
        'totalUsers': 0,
    }

    status_keys = {
        SpotStatus.FREE.value: 'freeSpots',
        SpotStatus.RESERVED.value: 'reservedSpots',
        SpotStatus.OCCUPIED.value: 'occupiedSpots',
    }
    spot_counts = (
        db.session.query(ParkingSpot.status, func.count(ParkingSpot.id))
        .group_by(ParkingSpot.status)
        .all()
    )
    for status, count in spot_counts:
        stats['totalSpots'] += count
        if status in status_keys:
            stats[status_keys[status]] = count

    total, revenue = db.session.query(
        func.count(Reservation.id), func.sum(Reservation.paid)
    ).one()
    stats['totalReservations'] = total or 0
    stats['totalRevenue'] = to_money(revenue or 0)

    stats['activeReservations'] = Reservation.query.filter(Reservation.end_time > now).count()
    stats['completedReservations'] = stats['totalReservations'] - stats['activeReservations']

    stats['totalUsers'] = User.query.count()
    return stats
