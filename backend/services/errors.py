# backend/services/errors.py


class ServiceError(Exception):
    """Base error raised by the record and voice services."""


class NotFoundError(ServiceError):
    pass


class ValidationError(ServiceError):
    pass


class ConflictError(ServiceError):
    def __init__(self, message: str, data: dict = None):
        super().__init__(message)
        self.data = data
