"""
구독 상태 원장 테스트
"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from listpulse.exceptions import ValidationError
from listpulse.subscription import ledger as ledger_module
from listpulse.subscription.ledger import StatusLedger, SubscriptionStatus, status_delta
from listpulse.subscription.manager import SubscriptionManager


@pytest.mark.parametrize(
    "old_status, new_status, expected",
    [
        (None, 1, 1),
        (None, 2, 0),
        (1, 1, 0),
        (1, 2, -1),
        (2, 1, 1),
        (2, 3, 0),
        (3, 1, 1),
        (4, 2, 0),
    ],
)
def test_status_delta(old_status, new_status, expected):
    """활성 경계를 넘는 전이만 카운터에 반영"""
    assert status_delta(old_status, new_status) == expected


class TestStatusLedger:
    """StatusLedger 테스트"""

    @pytest.fixture
    def manager(self):
        return SubscriptionManager()

    @pytest.fixture
    def ledger(self, manager):
        return manager.ledger

    @pytest.fixture
    def subscriber_id(self, manager, list_id):
        """활성 구독자 1명"""
        return manager.upsert(list_id, {"email": "kim@example.com", "cid": "kim"})

    def test_missing_row_returns_false(self, ledger, list_id, list_subscribers):
        assert ledger.change_status(9999, list_id, None, 2) is False
        assert list_subscribers(list_id) == 0

    def test_same_status_is_noop(self, ledger, manager, list_id, subscriber_id, list_subscribers):
        """같은 상태 재적용은 아무것도 바꾸지 않음"""
        before = manager.get(list_id, "kim")

        assert ledger.change_status(subscriber_id, list_id, None, 1) is True

        after = manager.get(list_id, "kim")
        assert after["status_change"] == before["status_change"]
        assert list_subscribers(list_id) == 1

    def test_leave_and_reenter_active(self, ledger, manager, list_id, subscriber_id, list_subscribers):
        assert ledger.change_status(subscriber_id, list_id, None, SubscriptionStatus.UNSUBSCRIBED)
        assert list_subscribers(list_id) == 0
        assert manager.get(list_id, "kim")["status"] == 2

        assert ledger.change_status(subscriber_id, list_id, None, SubscriptionStatus.SUBSCRIBED)
        assert list_subscribers(list_id) == 1

    def test_inactive_to_inactive_keeps_counters(
        self, ledger, list_id, subscriber_id, campaign_cid, list_subscribers, campaign_unsubscribed
    ):
        """비활성 상태 간 전이는 어떤 카운터도 건드리지 않음"""
        ledger.change_status(subscriber_id, list_id, None, SubscriptionStatus.UNSUBSCRIBED)

        assert ledger.change_status(subscriber_id, list_id, campaign_cid, SubscriptionStatus.BOUNCED)

        assert list_subscribers(list_id) == 0
        assert campaign_unsubscribed(campaign_cid) == 0

    def test_campaign_counter_follows_counter_movement(
        self, ledger, list_id, subscriber_id, campaign_cid, campaign_unsubscribed
    ):
        """캠페인 카운터는 리스트 카운터가 움직인 전이마다 증가"""
        ledger.change_status(subscriber_id, list_id, campaign_cid, SubscriptionStatus.UNSUBSCRIBED)
        assert campaign_unsubscribed(campaign_cid) == 1

        ledger.change_status(subscriber_id, list_id, campaign_cid, SubscriptionStatus.SUBSCRIBED)
        assert campaign_unsubscribed(campaign_cid) == 2

    def test_failure_rolls_back_status(self, ledger, manager, list_id, subscriber_id, list_subscribers, monkeypatch):
        """카운터 갱신 실패 시 상태 변경도 롤백"""
        def broken(session, list_id, delta):
            raise RuntimeError("counter update failed")

        monkeypatch.setattr(ledger_module, "adjust_list_counter", broken)

        with pytest.raises(RuntimeError):
            ledger.change_status(subscriber_id, list_id, None, SubscriptionStatus.UNSUBSCRIBED)

        assert manager.get(list_id, "kim")["status"] == 1
        assert list_subscribers(list_id) == 1

    def test_invalid_status_rejected(self, ledger, list_id, subscriber_id):
        with pytest.raises(ValidationError):
            ledger.change_status(subscriber_id, list_id, None, 0)

    def test_counter_matches_rows_after_sequence(self, ledger, manager, list_id, list_subscribers):
        """임의의 전이 순서 후에도 카운터 == status=1 행 수"""
        ids = [
            manager.upsert(list_id, {"email": f"user{i}@example.com"})
            for i in range(4)
        ]
        transitions = [(0, 2), (1, 3), (0, 2), (2, 1), (1, 1), (0, 1), (3, 4), (3, 2)]

        for index, status in transitions:
            ledger.change_status(ids[index], list_id, None, status)
            assert list_subscribers(list_id) == manager.count_active(list_id)

        assert list_subscribers(list_id) == 3


class TestUnsubscribe:
    """이메일 구독 해지 테스트"""

    @pytest.fixture
    def manager(self, list_id):
        manager = SubscriptionManager()
        manager.upsert(list_id, {"email": "lee@example.com", "cid": "lee"})
        return manager

    def test_unsubscribe_active(self, manager, list_id, campaign_cid, list_subscribers, campaign_unsubscribed):
        assert manager.unsubscribe(list_id, "lee@example.com", campaign_cid) is True

        assert manager.get(list_id, "lee")["status"] == SubscriptionStatus.UNSUBSCRIBED
        assert list_subscribers(list_id) == 0
        assert campaign_unsubscribed(campaign_cid) == 1

    def test_unsubscribe_twice(self, manager, list_id, campaign_cid, list_subscribers, campaign_unsubscribed):
        """이미 해지된 구독자는 False, 카운터 변화 없음"""
        manager.unsubscribe(list_id, "lee@example.com", campaign_cid)

        assert manager.unsubscribe(list_id, "lee@example.com", campaign_cid) is False
        assert list_subscribers(list_id) == 0
        assert campaign_unsubscribed(campaign_cid) == 1

    def test_unknown_email(self, manager, list_id):
        assert manager.unsubscribe(list_id, "nobody@example.com") is False

    def test_missing_email(self, manager, list_id):
        with pytest.raises(ValidationError):
            manager.unsubscribe(list_id, "  ")

    def test_missing_list(self):
        with pytest.raises(ValidationError):
            StatusLedger().unsubscribe(0, "lee@example.com")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
