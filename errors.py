"""
Error types raised by the cart, order and return flows.

Each carries the HTTP status the API answers with; main.py turns them into
the {success, data, message} envelope.
"""


class StoreError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(StoreError):
    status_code = 400


class NotAuthenticated(StoreError):
    status_code = 401


class Forbidden(StoreError):
    status_code = 403


class NotFound(StoreError):
    # Also used for records that exist but belong to someone else.
    status_code = 404


class InvalidTransition(StoreError):
    status_code = 409


class DuplicateRequest(StoreError):
    status_code = 409


class ServiceUnavailable(StoreError):
    status_code = 503
