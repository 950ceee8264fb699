"""Daily report administration schemas."""

from app.schemas.order import CamelModel


class ValidateDayRequest(CamelModel):
    """Lock or unlock a business day's figures."""

    is_validated: bool = True
