"""
구독 확인 흐름 테스트
"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Query

from listpulse.database import get_session, Confirmation
from listpulse.exceptions import InvalidEmail, ValidationError
from listpulse.subscription.confirmation import ConfirmationFlow, ConfirmResult
from listpulse.subscription.manager import SubscriptionManager


class TestAddConfirmation:
    """확인 대기 등록 테스트"""

    def test_invalid_email(self, list_id):
        flow = ConfirmationFlow()

        with pytest.raises(InvalidEmail):
            flow.add_confirmation(list_id, "not-an-email", {})

    def test_empty_email(self, list_id):
        with pytest.raises(ValidationError):
            ConfirmationFlow().add_confirmation(list_id, "  ")

    def test_tokens_are_unique(self, list_id):
        flow = ConfirmationFlow()

        first = flow.add_confirmation(list_id, "one@example.com")
        second = flow.add_confirmation(list_id, "one@example.com")

        assert first != second

    def test_pending_record_keeps_data(self, list_id):
        flow = ConfirmationFlow()
        cid = flow.add_confirmation(list_id, " lim@example.com ", {"firstName": "수진"})

        pending = flow.get_confirmation(cid)
        assert pending["email"] == "lim@example.com"
        assert pending["list_id"] == list_id
        assert pending["data"] == {"firstName": "수진"}


class TestConfirm:
    """구독 확정 테스트"""

    @pytest.fixture
    def manager(self):
        return SubscriptionManager()

    def test_round_trip(self, manager, list_id, list_subscribers):
        """확정하면 구독자가 생기고 확인 레코드는 사라짐"""
        flow = ConfirmationFlow(manager=manager, geo_lookup=lambda ip: "KR")
        cid = flow.add_confirmation(list_id, "yoon@example.com", {"firstName": "서연"})

        result = flow.confirm(cid, "203.0.113.7")

        assert result == ConfirmResult(list_id=list_id, email="yoon@example.com")
        row = manager.get(list_id, cid)
        assert row["email"] == "yoon@example.com"
        assert row["status"] == 1
        assert row["first_name"] == "서연"
        assert row["opt_in_ip"] == "203.0.113.7"
        assert row["opt_in_country"] == "KR"
        assert list_subscribers(list_id) == 1
        assert flow.get_confirmation(cid) is None

    def test_second_confirm_returns_none(self, manager, list_id, list_subscribers):
        flow = ConfirmationFlow(manager=manager)
        cid = flow.add_confirmation(list_id, "twice@example.com")

        assert flow.confirm(cid) is not None
        assert flow.confirm(cid) is None
        assert list_subscribers(list_id) == 1

    def test_unknown_token(self, manager):
        assert ConfirmationFlow(manager=manager).confirm("nope") is None
        assert ConfirmationFlow(manager=manager).confirm("") is None

    def test_resubscribes_unsubscribed_address(self, manager, list_id, list_subscribers):
        """해지된 주소도 확인하면 다시 구독 상태가 됨"""
        manager.upsert(list_id, {"email": "back@example.com", "status": 2})
        flow = ConfirmationFlow(manager=manager)
        cid = flow.add_confirmation(list_id, "back@example.com")

        flow.confirm(cid)

        assert manager.get_by_email(list_id, "back@example.com")["status"] == 1
        assert list_subscribers(list_id) == 1

    def test_geo_lookup_failure(self, manager, list_id):
        """국가 조회 실패는 확정을 막지 않음"""
        def broken_lookup(ip):
            raise ConnectionError("geo service down")

        flow = ConfirmationFlow(manager=manager, geo_lookup=broken_lookup)
        cid = flow.add_confirmation(list_id, "geo@example.com")

        assert flow.confirm(cid, "198.51.100.1") is not None
        assert manager.get(list_id, cid)["opt_in_country"] is None

    def test_corrupt_payload(self, manager, list_id):
        """깨진 JSON 은 빈 입력으로 처리"""
        with get_session() as session:
            session.add(Confirmation(cid="broken", list_id=list_id, email="broken@example.com", data="{not json"))

        result = ConfirmationFlow(manager=manager).confirm("broken")

        assert result.email == "broken@example.com"
        assert manager.get(list_id, "broken")["first_name"] is None

    def test_cleanup_failure_is_ignored(self, manager, list_id, monkeypatch):
        """확인 레코드 삭제 실패는 기록만 하고 결과는 정상 반환"""
        flow = ConfirmationFlow(manager=manager)
        cid = flow.add_confirmation(list_id, "sticky@example.com")

        def failing_delete(self, *args, **kwargs):
            raise OperationalError("DELETE FROM confirmations", {}, Exception("locked"))

        monkeypatch.setattr(Query, "delete", failing_delete)

        assert flow.confirm(cid) == ConfirmResult(list_id=list_id, email="sticky@example.com")
        assert manager.get(list_id, cid)["status"] == 1
        assert flow.get_confirmation(cid) is not None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
