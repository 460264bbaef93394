"""
데이터베이스 모듈
"""

from .models import Base, MailingList, Campaign, CustomField, Confirmation, ImportJob, User
from .repository import (
    init_db,
    get_session,
    generate_cid,
    ListRepository,
    CampaignRepository,
)
from .tables import (
    subscription_table_name,
    create_subscription_table,
    get_subscription_table,
)

__all__ = [
    "Base",
    "MailingList",
    "Campaign",
    "CustomField",
    "Confirmation",
    "ImportJob",
    "User",
    "init_db",
    "get_session",
    "generate_cid",
    "ListRepository",
    "CampaignRepository",
    "subscription_table_name",
    "create_subscription_table",
    "get_subscription_table",
]
