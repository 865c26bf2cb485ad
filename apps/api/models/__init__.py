"""Models package."""

from .account import Account
from .subscription import Subscription
from .credit_balance import CreditBalance
from .usage_record import UsageRecord
