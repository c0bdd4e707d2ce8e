"""Application error classes shared by the rule modules and the API layer."""


class AppError(Exception):
    """Base application error class."""

    status_code = 400

    def __init__(self, message, status_code=None, details=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict:
        payload = {'error': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class Unauthenticated(AppError):
    """No credential, or one that could not be verified."""

    status_code = 401

    def __init__(self, message='Unauthorized'):
        super().__init__(message)


class Forbidden(AppError):
    """Authenticated, but the policy denies the action."""

    status_code = 403

    def __init__(self, message='Forbidden', details=None):
        super().__init__(message, details=details)


class NotFound(AppError):
    status_code = 404

    def __init__(self, message='Resource not found'):
        super().__init__(message)


class Conflict(AppError):
    """Uniqueness or state rule violated."""

    status_code = 409

    def __init__(self, message, details=None):
        super().__init__(message, details=details)


class ValidationError(AppError):
    """Malformed input or a cross-field rule violation."""

    status_code = 400

    def __init__(self, field, message):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload['field'] = self.field
        return payload


class NotSupported(AppError):
    status_code = 501

    def __init__(self, message):
        super().__init__(message)
