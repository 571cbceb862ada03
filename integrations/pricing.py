"""
Session price lookup, keyed by the client's account type.

Domestic clients pay `sessionPrice` in PKR, international clients
`intlSessionPrice` in USD. Both values live in config_entries so the
practice can change them from the dashboard without a deploy.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import Session

from models.config_entry import ConfigEntry
from models.enums import AccountType

_PRICE_KEYS = {
    AccountType.DOMESTIC.value: ("sessionPrice", "PKR"),
    AccountType.INTERNATIONAL.value: ("intlSessionPrice", "USD"),
}


@dataclass(frozen=True)
class SessionPrice:
    amount: Decimal
    currency: str


class PricingLookup(ABC):

    @abstractmethod
    def get_session_price(self, session: Session, account_type: str) -> SessionPrice | None:
        """Return None when no usable price is configured."""
        ...


class ConfigPricingLookup(PricingLookup):

    def get_session_price(self, session: Session, account_type: str) -> SessionPrice | None:
        key, currency = _PRICE_KEYS.get(account_type, _PRICE_KEYS[AccountType.DOMESTIC.value])
        raw = ConfigEntry.get_value(session, key)
        if raw is None:
            return None
        try:
            amount = Decimal(str(raw))
        except InvalidOperation:
            return None
        if amount <= 0:
            return None
        return SessionPrice(amount=amount, currency=currency)
