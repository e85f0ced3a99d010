import logging
import os
from functools import wraps

from flask import Blueprint, Flask, current_app, jsonify, request, send_file, session
from flask_cors import CORS
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from config import Config
from models.models import db
from services import accounts, reservations, spots, stats
from services.errors import Forbidden, InvalidInput, ServiceError
from services.sweeper import ExpirySweeper
from utils.utils import generate_qr_image, parse_int, to_money, utc_now

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)


def now():
    return current_app.extensions['clock']()


def ok(status=200, **payload):
    return jsonify(success=True, **payload), status


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidInput('Request body must be a JSON object')
    return data


def admin_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_app.config.get('ADMIN_LOGIN_REQUIRED') and session.get('role') != 'admin':
            raise Forbidden('Admin access required')
        return f(*args, **kwargs)
    return decorated_function


@api.route('/ping')
def ping():
    return jsonify({'message': 'pong'})


# --------- Accounts ---------
@api.route('/register', methods=['POST'])
def register():
    data = json_body()
    user = accounts.register(data.get('email'), data.get('password'), data.get('role') or 'user')
    return ok(201, message='Registration successful', user=user.to_dict())


@api.route('/login', methods=['POST'])
def login():
    data = json_body()
    user = accounts.authenticate(data.get('email'), data.get('password'))

    session.clear()
    session['user_id'] = user.id
    session['role'] = user.role
    session['email'] = user.email

    return ok(user=user.to_dict())


@api.route('/logout', methods=['POST'])
def logout():
    session.clear()
    return ok(message='Logged out successfully')


@api.route('/balance/<email>')
def balance(email):
    return ok(balance=to_money(accounts.get_balance(email)))


@api.route('/add-balance', methods=['POST'])
def add_balance():
    data = json_body()
    new_balance = accounts.credit(data.get('email'), data.get('amount'))
    return ok(balance=to_money(new_balance))


# --------- Spots ---------
@api.route('/spots/free')
def free_spots():
    return ok(spots=[spot.to_dict() for spot in spots.list_free()])


@api.route('/spots/search')
def search_spots():
    location = request.args.get('location', '')
    return ok(spots=[spot.to_dict() for spot in spots.search(location)])


# --------- Reservations ---------
@api.route('/reserve', methods=['POST'])
def reserve():
    data = json_body()
    spot_id = parse_int(data.get('spotId'))
    if spot_id is None:
        raise InvalidInput('spotId must be an integer')
    reservation = reservations.reserve(data.get('email'), spot_id, data.get('hours'), now=now())
    return ok(201, reservation=reservation)


@api.route('/reservations/<int:reservation_id>/ticket')
def reservation_ticket(reservation_id):
    reservation = reservations.get_reservation(reservation_id)
    qr_buffer = generate_qr_image(f"reservation_id:{reservation.id}")
    return send_file(
        qr_buffer,
        mimetype='image/png',
        download_name=f'reservation_{reservation.id}.png',
    )


@api.route('/reservations/<email>')
def user_reservations(email):
    return ok(reservations=reservations.list_for_user(email, now=now()))


@api.route('/end-reservation', methods=['POST'])
def end_reservation():
    data = json_body()
    reservation_id = parse_int(data.get('reservationId'))
    if reservation_id is None:
        raise InvalidInput('reservationId must be an integer')
    reservations.end_reservation(reservation_id, email=data.get('email'), now=now())
    return ok(message='Reservation ended')


# --------- Admin ---------
@api.route('/admin/spots', methods=['GET'])
@admin_required
def admin_spots():
    return ok(spots=[spot.to_dict() for spot in spots.list_all()])


@api.route('/admin/spots', methods=['POST'])
@admin_required
def admin_add_spot():
    data = json_body()
    price = data.get('pricePerHour', data.get('price_per_hour'))
    spot = spots.create(data.get('location'), price)
    return ok(201, message='Spot added successfully', spotId=spot.id)


@api.route('/admin/spots/<int:spot_id>', methods=['PUT'])
@admin_required
def admin_update_spot(spot_id):
    data = json_body()
    price = data.get('pricePerHour', data.get('price_per_hour'))
    spots.update(spot_id, location=data.get('location'), price_per_hour=price)
    return ok(message='Spot updated successfully')


@api.route('/admin/spots/<int:spot_id>/status', methods=['PUT'])
@admin_required
def admin_spot_status(spot_id):
    data = json_body()
    spots.set_status(spot_id, data.get('status'))
    return ok(message='Status updated successfully')


@api.route('/admin/spots/<int:spot_id>', methods=['DELETE'])
@admin_required
def admin_delete_spot(spot_id):
    spots.delete(spot_id, now=now())
    return ok(message='Spot deleted successfully')


@api.route('/admin/reservations')
@admin_required
def admin_reservations():
    return ok(reservations=reservations.list_all(now=now()))


@api.route('/admin/end-reservation', methods=['POST'])
@admin_required
def admin_end_reservation():
    data = json_body()
    reservation_id = parse_int(data.get('reservationId'))
    if reservation_id is None:
        raise InvalidInput('reservationId must be an integer')
    reservations.force_end_reservation(reservation_id, now=now())
    return ok(message='Reservation ended and spot freed')


@api.route('/admin/cleanup', methods=['POST'])
@admin_required
def admin_cleanup():
    result = current_app.extensions['expiry_sweeper'].run(now=now())
    return ok(message=result['message'], count=result['count'])


@api.route('/admin/statistics')
@admin_required
def admin_statistics():
    return ok(stats=stats.get_statistics(now=now()))


# --------- Errors ---------
def register_error_handlers(app):

    @app.errorhandler(ServiceError)
    def service_error(error):
        return jsonify(success=False, message=error.message), error.status_code

    @app.errorhandler(Exception)
    def unexpected_error(error):
        if isinstance(error, HTTPException):
            return jsonify(success=False, message=error.description or error.name), error.code
        db.session.rollback()
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify(success=False, message='Internal server error'), 500


def create_app(config_object=None, clock=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    CORS(app, resources={r"/*": {"origins": app.config.get('CORS_ORIGINS', '*')}})

    db.init_app(app)
    app.extensions['clock'] = clock or utc_now

    app.register_blueprint(api)
    register_error_handlers(app)

    with app.app_context():
        try:
            # Create all tables if they don't exist
            db.create_all()
            accounts.ensure_admin(app.config.get('ADMIN_EMAIL'), app.config.get('ADMIN_PASSWORD'))
        except SQLAlchemyError:
            logger.exception("Database initialization failed")
            raise

    sweeper = ExpirySweeper(
        interval=app.config.get('SWEEP_INTERVAL_SECONDS', 300),
        clock=app.extensions['clock'],
    )
    sweeper.init_app(app)
    sweeper.start(app)

    return app


if __name__ == '__main__':
    app = create_app()
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port)
