"""
구독 관리자 - 리스트별 구독자 테이블에 대한 삽입/갱신, 조회, 필터링, 삭제
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, NamedTuple, Optional

from sqlalchemy import select, insert, update, delete, func, or_, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_session, get_subscription_table, generate_cid, ListRepository
from ..database.tables import normalize_list_id
from ..exceptions import ValidationError
from .fields import FieldRegistry, convert_keys, map_row
from .ledger import (
    StatusLedger,
    SubscriptionStatus,
    adjust_list_counter,
    normalize_status,
    status_delta,
)

logger = logging.getLogger(__name__)


class SegmentQuery(NamedTuple):
    """세그먼트 조건 (WHERE 조각 + 이름 있는 바인드 파라미터)"""
    where: str
    params: dict


SegmentCompiler = Callable[[int], Optional[SegmentQuery]]


def escape_like(value: str) -> str:
    """LIKE 패턴 특수문자(\\, %, _) 이스케이프"""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_dict(row) -> dict:
    return dict(row._mapping)


def _normalize_cid(cid) -> str:
    cid = str(cid or "").strip()
    if not cid:
        raise ValidationError("Missing Subscription ID")
    return cid


class SubscriptionManager:
    """구독자 저장소"""

    def __init__(
        self,
        field_registry: FieldRegistry = None,
        segment_compiler: SegmentCompiler = None,
        ledger: StatusLedger = None,
    ):
        self.fields = field_registry or FieldRegistry()
        self.segment_compiler = segment_compiler
        self.ledger = ledger or StatusLedger()

    # ------------------------------------------------------------------
    # 쓰기
    # ------------------------------------------------------------------

    def upsert(self, list_id: int, meta: dict, subscription: dict = None) -> int:
        """
        구독자 삽입 또는 갱신

        email 또는 cid 가 일치하는 행이 있으면 갱신, 없으면 새로 삽입한다.
        상태가 바뀌면 같은 트랜잭션에서 리스트 구독자 수를 조정한다.

        Args:
            list_id: 리스트 ID
            meta: 시스템 필드 (email, cid, opt_in_ip, opt_in_country, imported, status)
            subscription: 사용자 입력 필드 (이름, 사용자 정의 필드)

        Returns:
            구독자 ID
        """
        list_id = normalize_list_id(list_id)
        meta = convert_keys(meta)
        subscription = subscription or {}

        email = str(meta.get("email") or convert_keys(subscription).get("email") or "").strip()
        if not email:
            raise ValidationError("Missing email address")

        cid = str(meta.get("cid") or "").strip() or generate_cid()
        status = normalize_status(meta["status"]) if meta.get("status") else None

        # 동시 삽입으로 고유 제약에 걸리면 한 번 더 시도해서 기존 행 갱신으로 처리
        for attempt in range(2):
            try:
                with get_session() as session:
                    return self._upsert_in(session, list_id, email, cid, status, meta, subscription)
            except IntegrityError:
                if attempt:
                    raise
                logger.warning(f"구독자 삽입 충돌, 재시도: list={list_id} email={email}")

    insert = upsert

    def _upsert_in(
        self,
        session: Session,
        list_id: int,
        email: str,
        cid: str,
        status: Optional[int],
        meta: dict,
        subscription: dict,
    ) -> int:
        fields = self.fields.list_fields_in(session, list_id)
        table = get_subscription_table(session.connection(), list_id, [field.column for field in fields])

        existing = session.execute(
            select(table.c.id, table.c.status)
            .where(or_(table.c.email == email, table.c.cid == cid))
            .limit(1)
            .with_for_update()
        ).first()

        values = dict(map_row(fields, subscription, for_insert=existing is None))

        old_status = existing.status if existing else None
        if status is None:
            status = old_status if existing else SubscriptionStatus.SUBSCRIBED

        if existing is None or old_status != status:
            values["status"] = int(status)
            values["status_change"] = datetime.utcnow()

        if existing is None:
            values.update(
                email=email,
                cid=cid,
                opt_in_ip=meta.get("opt_in_ip") or None,
                opt_in_country=meta.get("opt_in_country") or None,
                imported=meta.get("imported") or None,
            )
            result = session.execute(insert(table).values(**values))
            entry_id = result.inserted_primary_key[0]
            logger.info(f"새 구독자 등록: list={list_id} email={email} status={status}")
        else:
            entry_id = existing.id
            if values:
                session.execute(update(table).where(table.c.id == entry_id).values(**values))
            logger.info(f"구독 정보 업데이트: list={list_id} email={email}")

        adjust_list_counter(session, list_id, status_delta(old_status, status))
        return entry_id

    def update(self, list_id: int, cid: str, updates: dict, allow_email: bool = False) -> int:
        """
        구독자 필드 갱신 (상태는 바꾸지 않음)

        Returns:
            갱신된 행 수 (갱신할 값이 없으면 0)
        """
        list_id = normalize_list_id(list_id)
        cid = _normalize_cid(cid)

        with get_session() as session:
            fields = self.fields.list_fields_in(session, list_id)
            values = dict(map_row(fields, updates, allow_email=allow_email))

            if "email" in values:
                values["email"] = str(values["email"] or "").strip()
                if not values["email"]:
                    raise ValidationError("Missing email address")

            if not values:
                return 0

            table = get_subscription_table(session.connection(), list_id, [field.column for field in fields])
            result = session.execute(update(table).where(table.c.cid == cid).values(**values))
            return result.rowcount

    def delete(self, list_id: int, cid: str) -> Optional[str]:
        """
        구독자 삭제

        Returns:
            삭제된 구독자의 이메일, 없으면 None
        """
        list_id = normalize_list_id(list_id)
        cid = _normalize_cid(cid)

        with get_session() as session:
            table = get_subscription_table(session.connection(), list_id)
            row = session.execute(
                select(table.c.id, table.c.email, table.c.status)
                .where(table.c.cid == cid)
                .limit(1)
                .with_for_update()
            ).first()

            if row is None:
                session.rollback()
                return None

            session.execute(delete(table).where(table.c.id == row.id))
            if row.status == SubscriptionStatus.SUBSCRIBED:
                adjust_list_counter(session, list_id, -1)

            logger.info(f"구독자 삭제: list={list_id} email={row.email}")
            return row.email

    def change_status(self, subscription_id: int, list_id: int, campaign_cid: Optional[str], status: int) -> bool:
        """상태 변경 (StatusLedger 위임)"""
        return self.ledger.change_status(subscription_id, list_id, campaign_cid, status)

    def unsubscribe(self, list_id: int, email: str, campaign_cid: Optional[str] = None) -> bool:
        """구독 해지 (StatusLedger 위임)"""
        return self.ledger.unsubscribe(list_id, email, campaign_cid)

    # ------------------------------------------------------------------
    # 읽기
    # ------------------------------------------------------------------

    def get(self, list_id: int, cid: str) -> Optional[dict]:
        """공개 ID로 구독자 조회"""
        list_id = normalize_list_id(list_id)
        cid = _normalize_cid(cid)

        with get_session() as session:
            table = get_subscription_table(session.connection(), list_id)
            row = session.execute(select(table).where(table.c.cid == cid).limit(1)).first()
            return _row_to_dict(row) if row else None

    def get_by_email(self, list_id: int, email: str) -> Optional[dict]:
        """이메일로 구독자 조회"""
        list_id = normalize_list_id(list_id)
        email = str(email or "").strip()
        if not email:
            raise ValidationError("Missing email address")

        with get_session() as session:
            table = get_subscription_table(session.connection(), list_id)
            row = session.execute(select(table).where(table.c.email == email).limit(1)).first()
            return _row_to_dict(row) if row else None

    def list(self, list_id: int, start: int = 0, limit: int = None) -> tuple[list[dict], int]:
        """
        구독자 목록 (이메일 오름차순)

        Returns:
            (구독자 목록, 전체 수)
        """
        list_id = normalize_list_id(list_id)
        limit = settings.default_page_size if limit is None else int(limit)

        with get_session() as session:
            table = get_subscription_table(session.connection(), list_id)
            rows = session.execute(
                select(table).order_by(table.c.email.asc()).limit(limit).offset(max(int(start or 0), 0))
            ).all()
            total = session.execute(select(func.count()).select_from(table)).scalar_one()
            return [_row_to_dict(row) for row in rows], total

    def filter(
        self,
        list_id: int,
        request: dict,
        columns: list[str],
        segment_id: int = None,
    ) -> tuple[list[dict], int, int]:
        """
        세그먼트/검색/정렬을 적용한 구독자 목록

        Args:
            list_id: 리스트 ID
            request: {"start", "length", "order": [{"column", "dir"}], "search": {"value"}}
            columns: 정렬 컬럼 인덱스 -> 컬럼명
            segment_id: 세그먼트 ID (선택)

        Returns:
            (구독자 목록, 세그먼트 범위 전체 수, 검색 적용 후 수)
        """
        list_id = normalize_list_id(list_id)
        request = request or {}
        segment = self._segment_query(segment_id)

        with get_session() as session:
            table = get_subscription_table(session.connection(), list_id)

            scope = []
            if segment:
                scope.append(text(f"({segment.where})").bindparams(**(segment.params or {})))

            conditions = list(scope)
            search_value = (request.get("search") or {}).get("value")
            if search_value:
                pattern = f"%{escape_like(str(search_value))}%"
                conditions.append(or_(
                    table.c.email.ilike(pattern, escape="\\"),
                    table.c.first_name.ilike(pattern, escape="\\"),
                    table.c.last_name.ilike(pattern, escape="\\"),
                ))

            total = session.execute(
                select(func.count()).select_from(table).where(*scope)
            ).scalar_one()

            if search_value:
                filtered_total = session.execute(
                    select(func.count()).select_from(table).where(*conditions)
                ).scalar_one()
            else:
                filtered_total = total

            query = (
                select(table)
                .where(*conditions)
                .order_by(*self._ordering(table, request.get("order"), columns))
            )

            length = int(request.get("length") or settings.default_page_size)
            if length > 0:
                query = query.limit(length)
            query = query.offset(max(int(request.get("start") or 0), 0))

            rows = session.execute(query).all()
            return [_row_to_dict(row) for row in rows], total, filtered_total

    def _segment_query(self, segment_id) -> Optional[SegmentQuery]:
        try:
            segment_id = int(segment_id or 0)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid segment ID: {segment_id!r}")
        if not segment_id:
            return None

        if self.segment_compiler is None:
            raise ValidationError("Segment filtering is not configured")

        segment = self.segment_compiler(segment_id)
        if not segment:
            logger.warning(f"세그먼트 조건 없음: segment={segment_id}")
            return None
        return segment

    @staticmethod
    def _ordering(table, order: Optional[list], columns: list[str]) -> list:
        ordering = []
        for item in order or []:
            try:
                index = int(item.get("column"))
            except (TypeError, ValueError, AttributeError):
                continue
            if not 0 <= index < len(columns or []):
                continue
            name = columns[index]
            if name not in table.c:
                continue
            column = table.c[name]
            direction = str(item.get("dir") or "").lower()
            ordering.append(column.desc() if direction == "desc" else column.asc())

        if not ordering:
            ordering.append(table.c.email.asc())
        return ordering

    # ------------------------------------------------------------------
    # 집계
    # ------------------------------------------------------------------

    def count_active(self, list_id: int) -> int:
        """구독 중(status=1)인 구독자 수를 테이블에서 직접 계산"""
        list_id = normalize_list_id(list_id)
        with get_session() as session:
            return self._count_active_in(session, list_id)

    def recount(self, list_id: int) -> int:
        """lists.subscribers 를 실제 행 수로 재계산"""
        list_id = normalize_list_id(list_id)
        with get_session() as session:
            count = self._count_active_in(session, list_id)
            ListRepository.set_subscribers(session, list_id, count)
            logger.info(f"구독자 수 재계산: list={list_id} subscribers={count}")
            return count

    @staticmethod
    def _count_active_in(session: Session, list_id: int) -> int:
        table = get_subscription_table(session.connection(), list_id)
        return session.execute(
            select(func.count())
            .select_from(table)
            .where(table.c.status == SubscriptionStatus.SUBSCRIBED)
        ).scalar_one()
