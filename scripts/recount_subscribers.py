"""
구독자 수 재계산 스크립트

lists.subscribers 를 구독자 테이블의 status=1 행 수로 다시 맞춘다.

사용법:
    python scripts/recount_subscribers.py --list 3
    python scripts/recount_subscribers.py --all
"""

import argparse
import logging
import sys
from pathlib import Path

# 프로젝트 루트를 Python path에 추가
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from listpulse.config import settings, configure_logging
from listpulse.database import init_db, get_session, MailingList
from listpulse.subscription import SubscriptionManager

logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="ListPulse 구독자 수 재계산")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--list", type=int, dest="list_id", help="리스트 ID")
    group.add_argument("--all", action="store_true", help="모든 리스트")

    args = parser.parse_args()

    configure_logging(log_file=settings.BASE_DIR / "logs" / "listpulse.log")

    # 데이터베이스 초기화
    init_db(settings.database_url, settings.db_isolation_level)

    if args.all:
        with get_session() as session:
            list_ids = [row.id for row in session.query(MailingList.id).order_by(MailingList.id)]
    else:
        list_ids = [args.list_id]

    manager = SubscriptionManager()
    for list_id in list_ids:
        with get_session() as session:
            before = session.get(MailingList, list_id)
            if before is None:
                logger.warning(f"리스트 없음: {list_id}")
                continue
            previous = before.subscribers

        count = manager.recount(list_id)
        print(f"리스트 {list_id}: {previous} -> {count}")


if __name__ == "__main__":
    main()
