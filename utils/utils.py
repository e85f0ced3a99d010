import qrcode
from io import BytesIO
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal('0.01')


def utc_now():
    """Naive UTC timestamp, the format every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_iso(value):
    if value is None:
        return None
    return value.isoformat(timespec='milliseconds') + 'Z'


def quantize_money(value):
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value):
    """JSON-friendly amount rounded to cents"""
    if value is None:
        return None
    return float(quantize_money(value))


def parse_decimal(value):
    """Decimal from a JSON number or numeric string; None when unusable"""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


def parse_int(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def generate_qr_image(data):
    """PNG entry ticket for the reservation payload, e.g. "reservation_id:42", as a BytesIO buffer"""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = BytesIO()
    img.save(buffer, format='PNG')
    buffer.seek(0)

    return buffer
