class ServiceError(Exception):
    """Base for failures a caller can act on; rendered as {success: false, message}"""

    status_code = 400
    default_message = 'Request failed'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(ServiceError):
    status_code = 400
    default_message = 'Invalid data'


class Unauthorized(ServiceError):
    status_code = 401
    default_message = 'Unauthorized'


class InsufficientFunds(ServiceError):
    status_code = 402
    default_message = 'Insufficient balance'


class Forbidden(ServiceError):
    status_code = 403
    default_message = 'Admin access required'


class NotFound(ServiceError):
    status_code = 404
    default_message = 'Not found'


class Conflict(ServiceError):
    status_code = 409
    default_message = 'Conflict'
