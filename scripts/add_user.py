"""
관리자 계정 추가 스크립트

사용법:
    python scripts/add_user.py --username admin --email admin@example.com --password "..."
"""

import argparse
import sys
from pathlib import Path

# 프로젝트 루트를 Python path에 추가
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from listpulse.config import settings, configure_logging
from listpulse.database import init_db
from listpulse.accounts import UserAccountStore
from listpulse.exceptions import ListPulseError


def main():
    parser = argparse.ArgumentParser(description="ListPulse 관리자 계정 추가")
    parser.add_argument("--username", required=True, help="사용자명")
    parser.add_argument("--email", required=True, help="이메일 주소")
    parser.add_argument("--password", required=True, help="초기 비밀번호")

    args = parser.parse_args()

    configure_logging()

    # 데이터베이스 초기화
    init_db(settings.database_url, settings.db_isolation_level)

    try:
        user_id = UserAccountStore().create(args.username, args.email, args.password)
    except ListPulseError as e:
        print(f"계정 추가 실패: {e}")
        sys.exit(1)

    print(f"계정 추가 완료:")
    print(f"  - ID: {user_id}")
    print(f"  - 사용자명: {args.username}")
    print(f"  - 이메일: {args.email}")


if __name__ == "__main__":
    main()
