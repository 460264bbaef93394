"""
구독 관리 모듈
"""

from .fields import FieldDefinition, FieldRegistry, FieldType, map_row, to_db_key
from .ledger import StatusLedger, SubscriptionStatus, status_delta
from .manager import SegmentQuery, SubscriptionManager
from .confirmation import ConfirmationFlow, ConfirmResult
from .importer import ImportJobTracker, ImportStatus

__all__ = [
    "FieldDefinition",
    "FieldRegistry",
    "FieldType",
    "map_row",
    "to_db_key",
    "StatusLedger",
    "SubscriptionStatus",
    "status_delta",
    "SegmentQuery",
    "SubscriptionManager",
    "ConfirmationFlow",
    "ConfirmResult",
    "ImportJobTracker",
    "ImportStatus",
]
