"""Domain logic for reconciling sales with purchase lots."""

from .capital_gain import CapitalGainError, ImportFailedError, InvalidRecordError
from .lots import LotAllocationStrategy, SecurityLot
from .models import Account, Security, SplitRatio, StockSplit, TransactionDetail
from .services import CapitalGainImport, ImportSummary, LotAllocationService

__all__ = [
    "Account",
    "CapitalGainError",
    "CapitalGainImport",
    "ImportFailedError",
    "ImportSummary",
    "InvalidRecordError",
    "LotAllocationService",
    "LotAllocationStrategy",
    "Security",
    "SecurityLot",
    "SplitRatio",
    "StockSplit",
    "TransactionDetail",
]
