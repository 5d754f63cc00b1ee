from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class PriceQuote(BaseModel):
    """Latest reference price for an asset."""

    asset: str
    price: Decimal
    updated_at: datetime | None = None
    source: str
