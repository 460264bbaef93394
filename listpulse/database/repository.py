"""
데이터베이스 저장소 패턴 구현
"""

import secrets
import logging
from pathlib import Path
from contextlib import contextmanager

from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .models import Base, MailingList, Campaign
from .tables import create_subscription_table, clear_table_cache

logger = logging.getLogger(__name__)

# 데이터베이스 엔진 및 세션
_engine = None
_SessionLocal = None


def init_db(database_url: str = "sqlite:///./data/listpulse.db", isolation_level: str = None) -> None:
    """데이터베이스 초기화"""
    global _engine, _SessionLocal

    if _engine is not None:
        _engine.dispose()
    clear_table_cache()

    engine_args = {"echo": False}

    if database_url.startswith("sqlite"):
        engine_args["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # 메모리 DB는 모든 세션이 같은 연결을 공유해야 한다
            engine_args["poolclass"] = StaticPool
        else:
            # data 디렉토리 생성
            db_path = database_url.replace("sqlite:///", "")
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    elif isolation_level:
        engine_args["isolation_level"] = isolation_level

    _engine = create_engine(database_url, **engine_args)
    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)

    # 테이블 생성
    Base.metadata.create_all(bind=_engine)
    logger.info(f"데이터베이스 초기화 완료: {_engine.url.render_as_string(hide_password=True)}")


@contextmanager
def get_session():
    """
    세션 컨텍스트 매니저

    블록이 정상 종료되면 커밋, 예외가 발생하면 롤백 후 다시 던진다.
    어떤 경로로 나가든 세션은 정확히 한 번 닫힌다.
    """
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def generate_cid() -> str:
    """외부 공개용 짧은 ID 생성"""
    return secrets.token_urlsafe(9)


class ListRepository:
    """메일링 리스트 저장소"""

    @staticmethod
    def create(session: Session, name: str, description: str = None) -> MailingList:
        """리스트 생성 (구독자 테이블 포함)"""
        mailing_list = MailingList(
            cid=generate_cid(),
            name=name,
            description=description,
            subscribers=0,
        )
        session.add(mailing_list)
        session.flush()

        create_subscription_table(session.connection(), mailing_list.id)
        logger.info(f"리스트 생성: {name} (id={mailing_list.id})")
        return mailing_list

    @staticmethod
    def set_subscribers(session: Session, list_id: int, count: int) -> None:
        """구독자 수 집계값 재설정"""
        session.execute(
            update(MailingList).where(MailingList.id == list_id).values(subscribers=count)
        )


class CampaignRepository:
    """캠페인 저장소"""

    @staticmethod
    def create(session: Session, name: str, list_id: int = None) -> Campaign:
        """캠페인 생성"""
        campaign = Campaign(cid=generate_cid(), name=name, list_id=list_id, unsubscribed=0)
        session.add(campaign)
        session.flush()
        return campaign
