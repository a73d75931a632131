# store_service/app/errors.py
"""
Store exceptions.

Every exception carries the HTTP status it maps to and a list of
human-readable messages. The handlers in main.py render them as
``{"errors": [...]}``.
"""


class StoreException(Exception):
    """Base exception for all store errors."""

    status_code = 400

    def __init__(self, *errors: str):
        super().__init__(*errors)
        self.errors = list(errors)

    def __str__(self) -> str:
        return "; ".join(self.errors)


class ValidationException(StoreException):
    """Bad, missing or mistyped input."""


class MissingIdException(ValidationException):
    """A path id was zero or otherwise not provided."""


class InvalidCredentialsException(StoreException):
    """Unknown email or wrong password on sign-in."""

    def __init__(self):
        super().__init__("Username or password invalid.")


class UnauthorizedException(StoreException):
    """Missing or invalid bearer token."""

    status_code = 401


class NotFoundException(StoreException):
    status_code = 404


class ConflictException(StoreException):
    status_code = 409


class InsufficientStockException(StoreException):
    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__("Not enough products in stock")
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InsufficientFundsException(StoreException):
    def __init__(self, total: float, balance: float):
        super().__init__(f"Not enough balance: order total is {total}, balance is {balance}")
        self.total = total
        self.balance = balance
