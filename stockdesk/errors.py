"""Failures raised by the trading core.

Each error carries the HTTP status the API answers with, so the web layer can
translate any of them into ``{"success": false, "error": ...}`` in one place.
"""


class TradingError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(TradingError):
    status_code = 404


class InvalidInput(TradingError):
    status_code = 400


class InsufficientFunds(TradingError):
    status_code = 400


class InsufficientHoldings(TradingError):
    status_code = 400


class StorageFailure(TradingError):
    status_code = 500
