"""Custom exceptions for the price oracle."""


class OracleUnavailable(Exception):
    """Reference price could not be obtained for an asset."""

    def __init__(self, message: str, asset: str | None = None, source: str | None = None):
        super().__init__(message)
        self.asset = asset
        self.source = source
