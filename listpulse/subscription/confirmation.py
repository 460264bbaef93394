"""
이중 opt-in 확인 - 확인 토큰 발급 및 구독 확정
"""

import json
import secrets
import logging
from typing import Callable, NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..database import get_session, Confirmation
from ..database.tables import normalize_list_id
from ..validators import validate_email_address
from .ledger import SubscriptionStatus
from .manager import SubscriptionManager

logger = logging.getLogger(__name__)

GeoLookup = Callable[[str], Optional[str]]


class ConfirmResult(NamedTuple):
    """구독 확정 결과"""
    list_id: int
    email: str


class ConfirmationFlow:
    """구독 확인 흐름"""

    def __init__(self, manager: SubscriptionManager = None, geo_lookup: GeoLookup = None):
        """
        Args:
            manager: 구독자 저장소
            geo_lookup: IP -> 국가 코드 조회 함수 (선택)
        """
        self.manager = manager or SubscriptionManager()
        self.geo_lookup = geo_lookup

    @staticmethod
    def generate_token() -> str:
        """확인 토큰 생성 (URL 안전 문자열)"""
        return secrets.token_urlsafe(9)

    def add_confirmation(self, list_id: int, email: str, data: dict = None) -> str:
        """
        확인 대기 레코드 생성

        Args:
            list_id: 리스트 ID
            email: 이메일 주소
            data: 구독 시 입력한 필드

        Returns:
            확인 토큰
        """
        list_id = normalize_list_id(list_id)
        email = validate_email_address(email)
        cid = self.generate_token()

        with get_session() as session:
            session.add(Confirmation(
                cid=cid,
                list_id=list_id,
                email=email,
                data=json.dumps(data or {}, ensure_ascii=False, default=str),
            ))

        logger.info(f"구독 확인 대기 등록: list={list_id} email={email}")
        return cid

    def get_confirmation(self, cid: str) -> Optional[dict]:
        """확인 대기 레코드 조회"""
        cid = str(cid or "").strip()
        if not cid:
            return None

        with get_session() as session:
            row = session.query(Confirmation).filter(Confirmation.cid == cid).first()
            if row is None:
                return None
            return {
                "cid": row.cid,
                "list_id": row.list_id,
                "email": row.email,
                "data": self._load_data(row.data),
                "created_at": row.created_at,
            }

    def confirm(self, cid: str, opt_in_ip: str = None) -> Optional[ConfirmResult]:
        """
        구독 확정

        확인 레코드를 구독자로 옮긴 뒤 삭제한다. 삭제 실패는 기록만 하고 무시한다.

        Returns:
            ConfirmResult, 토큰이 없으면 None
        """
        pending = self.get_confirmation(cid)
        if pending is None:
            logger.warning(f"구독 확인 실패 (토큰 없음): {cid}")
            return None

        list_id = pending["list_id"]
        email = pending["email"]

        self.manager.upsert(list_id, {
            "email": email,
            "cid": pending["cid"],
            "opt_in_ip": opt_in_ip,
            "opt_in_country": self._country_for_ip(opt_in_ip),
            "status": SubscriptionStatus.SUBSCRIBED,
        }, pending["data"])

        try:
            with get_session() as session:
                session.query(Confirmation).filter(
                    Confirmation.cid == pending["cid"]
                ).delete(synchronize_session=False)
        except SQLAlchemyError as e:
            logger.error(f"확인 레코드 삭제 실패 ({pending['cid']}): {e}")

        logger.info(f"구독 확정: list={list_id} email={email}")
        return ConfirmResult(list_id=list_id, email=email)

    @staticmethod
    def _load_data(raw: Optional[str]) -> dict:
        try:
            data = json.loads(raw or "{}")
        except (TypeError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    def _country_for_ip(self, ip: Optional[str]) -> Optional[str]:
        if not ip or self.geo_lookup is None:
            return None
        try:
            return self.geo_lookup(ip) or None
        except Exception as e:
            logger.warning(f"국가 조회 실패 ({ip}): {e}")
            return None
