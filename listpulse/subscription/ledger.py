"""
구독 상태 원장 - 상태 전이와 집계 카운터(lists.subscribers, campaigns.unsubscribed) 동기화
"""

import logging
from datetime import datetime
from enum import IntEnum
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..database import get_session, get_subscription_table, MailingList, Campaign
from ..database.tables import normalize_list_id
from ..exceptions import ValidationError

logger = logging.getLogger(__name__)


class SubscriptionStatus(IntEnum):
    """구독 상태 (1 이외의 값은 카운터 관점에서 모두 '비활성')"""
    SUBSCRIBED = 1
    UNSUBSCRIBED = 2
    BOUNCED = 3
    COMPLAINED = 4


def normalize_status(status) -> int:
    """상태 값 검증"""
    try:
        value = int(status)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid subscription status: {status!r}")
    if value < 1:
        raise ValidationError(f"Invalid subscription status: {status!r}")
    return value


def status_delta(old_status: Optional[int], new_status: int) -> int:
    """
    상태 전이에 따른 구독자 카운터 증감

    활성(1) 경계를 넘을 때만 카운터가 바뀐다. 신규 삽입(old_status=None)은
    1로 들어올 때만 +1 이고 감소하는 경우는 없다.
    """
    if old_status is None:
        return 1 if new_status == SubscriptionStatus.SUBSCRIBED else 0
    if old_status == new_status:
        return 0
    if new_status == SubscriptionStatus.SUBSCRIBED:
        return 1
    if old_status == SubscriptionStatus.SUBSCRIBED:
        return -1
    return 0


def adjust_list_counter(session: Session, list_id: int, delta: int) -> None:
    """lists.subscribers 원자적 증감"""
    if not delta:
        return
    session.execute(
        update(MailingList)
        .where(MailingList.id == list_id)
        .values(subscribers=MailingList.subscribers + delta)
        .execution_options(synchronize_session=False)
    )


def increment_campaign_unsubscribed(session: Session, campaign_cid: str) -> None:
    """campaigns.unsubscribed 원자적 증가"""
    session.execute(
        update(Campaign)
        .where(Campaign.cid == campaign_cid)
        .values(unsubscribed=Campaign.unsubscribed + 1)
        .execution_options(synchronize_session=False)
    )


def _normalize_campaign(campaign_cid) -> Optional[str]:
    return str(campaign_cid or "").strip() or None


class StatusLedger:
    """구독 상태 전이 관리"""

    def change_status(
        self,
        subscription_id: int,
        list_id: int,
        campaign_cid: Optional[str],
        status: int,
    ) -> bool:
        """
        구독 상태 변경

        같은 상태로의 변경은 아무것도 쓰지 않는다 (True 반환).

        Args:
            subscription_id: 구독자 내부 ID
            list_id: 리스트 ID
            campaign_cid: 캠페인 공개 ID (선택)
            status: 새 상태

        Returns:
            구독자가 없으면 False, 그 외 True
        """
        list_id = normalize_list_id(list_id)
        status = normalize_status(status)
        campaign_cid = _normalize_campaign(campaign_cid)

        with get_session() as session:
            return self._change_status_in(session, subscription_id, list_id, campaign_cid, status)

    def unsubscribe(self, list_id: int, email: str, campaign_cid: Optional[str] = None) -> bool:
        """
        이메일로 구독 해지

        Returns:
            활성 구독자가 없으면 False, 해지되면 True
        """
        list_id = normalize_list_id(list_id)
        email = str(email or "").strip()
        campaign_cid = _normalize_campaign(campaign_cid)

        if not email:
            raise ValidationError("Missing email address")

        with get_session() as session:
            table = get_subscription_table(session.connection(), list_id)
            row = session.execute(
                select(table.c.id, table.c.status)
                .where(table.c.email == email)
                .limit(1)
                .with_for_update()
            ).first()

            if row is None or row.status != SubscriptionStatus.SUBSCRIBED:
                session.rollback()
                return False

            return self._change_status_in(
                session, row.id, list_id, campaign_cid, SubscriptionStatus.UNSUBSCRIBED
            )

    def _change_status_in(
        self,
        session: Session,
        subscription_id: int,
        list_id: int,
        campaign_cid: Optional[str],
        status: int,
    ) -> bool:
        table = get_subscription_table(session.connection(), list_id)

        row = session.execute(
            select(table.c.status)
            .where(table.c.id == subscription_id)
            .limit(1)
            .with_for_update()
        ).first()

        if row is None:
            session.rollback()
            return False

        old_status = row.status
        if old_status == status:
            session.rollback()
            return True

        session.execute(
            update(table)
            .where(table.c.id == subscription_id)
            .values(status=status, status_change=datetime.utcnow())
        )

        delta = status_delta(old_status, status)
        if delta:
            adjust_list_counter(session, list_id, delta)
            # 캠페인 카운터는 카운터가 움직인 전이에서 캠페인이 주어지면 증가
            if campaign_cid:
                increment_campaign_unsubscribed(session, campaign_cid)

        logger.info(
            f"구독 상태 변경: list={list_id} id={subscription_id} {old_status} -> {status}"
            + (f" (campaign={campaign_cid})" if campaign_cid else "")
        )
        return True
