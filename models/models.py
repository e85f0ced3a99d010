from enum import Enum

from flask_sqlalchemy import SQLAlchemy

from utils.utils import to_money, to_iso, utc_now

db = SQLAlchemy()


class Role(str, Enum):
    USER = 'user'
    ADMIN = 'admin'


class SpotStatus(str, Enum):
    FREE = 'free'
    RESERVED = 'reserved'
    OCCUPIED = 'occupied'

    @classmethod
    def parse(cls, value):
        try:
            return cls(value)
        except ValueError:
            return None


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(100), unique=True, nullable=False)
    password = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), default=Role.USER.value, nullable=False)
    balance = db.Column(db.Numeric(12, 2), default=0, nullable=False)

    created_at = db.Column(db.DateTime, nullable=True, default=utc_now)

    reservations = db.relationship('Reservation', backref='user', lazy=True)

    __table_args__ = (
        db.CheckConstraint('balance >= 0', name='ck_users_balance_non_negative'),
        db.CheckConstraint("role IN ('user', 'admin')", name='ck_users_role'),
    )

    @property
    def is_admin(self):
        return self.role == Role.ADMIN.value

    def to_dict(self):
        """Public fields only, the stored credential never leaves the model."""
        return {
            'id': self.id,
            'email': self.email,
            'role': self.role,
            'balance': to_money(self.balance),
        }

    def __repr__(self):
        return f'<User {self.email}>'


class ParkingSpot(db.Model):
    __tablename__ = 'spots'

    id = db.Column(db.Integer, primary_key=True)
    location = db.Column(db.String(200), nullable=False)
    price_per_hour = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(10), default=SpotStatus.FREE.value, nullable=False)
    created_at = db.Column(db.DateTime, nullable=True, default=utc_now)

    reservations = db.relationship('Reservation', backref='spot', lazy=True)

    __table_args__ = (
        db.CheckConstraint('price_per_hour > 0', name='ck_spots_price_positive'),
        db.CheckConstraint("status IN ('free', 'reserved', 'occupied')", name='ck_spots_status'),
    )

    @property
    def is_free(self):
        return self.status == SpotStatus.FREE.value

    def to_dict(self):
        return {
            'id': self.id,
            'location': self.location,
            'price_per_hour': to_money(self.price_per_hour),
            'status': self.status,
        }

    def __repr__(self):
        return f'<ParkingSpot {self.id} {self.status}>'


class Reservation(db.Model):
    __tablename__ = 'reservations'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    # Nulled when the spot is deleted, history rows are kept
    spot_id = db.Column(db.Integer, db.ForeignKey('spots.id', ondelete='SET NULL'), nullable=True, index=True)
    start_time = db.Column(db.DateTime, nullable=False, default=utc_now)
    end_time = db.Column(db.DateTime, nullable=False, index=True)
    paid = db.Column(db.Numeric(12, 2), nullable=False)

    def is_active(self, now=None):
        return self.end_time > (now or utc_now())

    def status_at(self, now=None):
        return 'active' if self.is_active(now) else 'completed'

    @property
    def duration_hours(self):
        return (self.end_time - self.start_time).total_seconds() / 3600

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'spot_id': self.spot_id,
            'start_time': to_iso(self.start_time),
            'end_time': to_iso(self.end_time),
            'paid': to_money(self.paid),
        }

    def __repr__(self):
        return f'<Reservation {self.id}>'
