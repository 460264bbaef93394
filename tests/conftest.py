"""
공통 테스트 픽스처 (메모리 SQLite)
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from listpulse.database import init_db, get_session, ListRepository, CampaignRepository, MailingList, Campaign


@pytest.fixture(autouse=True)
def database():
    """테스트마다 새 메모리 DB"""
    init_db("sqlite://")
    yield


@pytest.fixture
def list_id():
    """구독자 테이블이 준비된 리스트 ID"""
    with get_session() as session:
        return ListRepository.create(session, "테스트 리스트").id


@pytest.fixture
def campaign_cid(list_id):
    """캠페인 공개 ID"""
    with get_session() as session:
        return CampaignRepository.create(session, "테스트 캠페인", list_id).cid


@pytest.fixture
def list_subscribers():
    """lists.subscribers 값을 읽는 함수"""
    def read(list_id: int) -> int:
        with get_session() as session:
            return session.get(MailingList, list_id).subscribers
    return read


@pytest.fixture
def campaign_unsubscribed():
    """campaigns.unsubscribed 값을 읽는 함수"""
    def read(cid: str) -> int:
        with get_session() as session:
            return session.query(Campaign).filter(Campaign.cid == cid).first().unsubscribed
    return read
