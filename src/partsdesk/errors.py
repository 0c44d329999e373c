from __future__ import annotations


class ServiceError(Exception):
    http_status = 500


class ValidationError(ServiceError):
    http_status = 400


class MissingFieldError(ValidationError):
    def __init__(self, field: str) -> None:
        super().__init__(f"Missing required field: {field}")
        self.field = field


class InvalidInputError(ValidationError):
    pass


class InvalidUpdateError(ValidationError):
    pass


class DuplicateKeyError(ValidationError):
    pass


class NotFoundError(ServiceError):
    http_status = 404


class ConfigurationError(ServiceError):
    pass


class NotConfiguredError(ConfigurationError):
    pass


class StorageError(ServiceError):
    pass


class AuthenticationError(ServiceError):
    http_status = 401
