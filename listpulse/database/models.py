"""
SQLAlchemy 데이터베이스 모델 정의

구독자 테이블은 리스트마다 하나씩 동적으로 생성되므로 여기에 없다 (tables.py 참고).
"""

from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    BigInteger,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class MailingList(Base):
    """메일링 리스트"""
    __tablename__ = "lists"

    id = Column(Integer, primary_key=True, autoincrement=True)

    cid = Column(String(255), unique=True, nullable=False)  # 외부 공개 ID
    name = Column(String(255), nullable=False)
    description = Column(Text)

    # 구독 중(status=1)인 구독자 수 (비정규화 집계)
    subscribers = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<MailingList(id={self.id}, name='{self.name}', subscribers={self.subscribers})>"


class Campaign(Base):
    """발송 캠페인"""
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, autoincrement=True)

    cid = Column(String(255), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    list_id = Column("list", Integer, ForeignKey("lists.id", ondelete="CASCADE"))

    # 이 캠페인을 통해 구독 해지한 수
    unsubscribed = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Campaign(cid='{self.cid}', unsubscribed={self.unsubscribed})>"


class CustomField(Base):
    """리스트별 사용자 정의 필드"""
    __tablename__ = "custom_fields"

    id = Column(Integer, primary_key=True, autoincrement=True)

    list_id = Column("list", Integer, ForeignKey("lists.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    key = Column(String(100), nullable=False)      # 머지 태그 (MERGE_COLOR)
    type = Column(String(255), nullable=False, default="text")
    column = Column(String(255), nullable=False)   # subscription__<id> 테이블의 컬럼명
    default_value = Column(String(255))
    visible = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("list", "column", name="uq_custom_field_column"),
        Index("idx_custom_field_list", "list"),
    )

    def __repr__(self):
        return f"<CustomField(list={self.list_id}, key='{self.key}', type='{self.type}')>"


class Confirmation(Base):
    """이중 opt-in 확인 대기 레코드"""
    __tablename__ = "confirmations"

    id = Column(Integer, primary_key=True, autoincrement=True)

    cid = Column(String(255), unique=True, nullable=False)
    list_id = Column("list", Integer, nullable=False)
    email = Column(String(255), nullable=False)
    data = Column(Text)  # 구독 필드 (JSON 문자열)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Confirmation(cid='{self.cid}', email='{self.email}')>"


class ImportJob(Base):
    """대량 가져오기 작업"""
    __tablename__ = "importer"

    id = Column(Integer, primary_key=True, autoincrement=True)

    list_id = Column("list", Integer, nullable=False)
    type = Column(Integer, nullable=False, default=1)
    path = Column(String(255))
    size = Column(BigInteger, default=0)
    delimiter = Column(String(1), default=",")
    status = Column(Integer, nullable=False, default=0)
    error = Column(String(255))
    processed = Column(Integer, nullable=False, default=0)
    mapping = Column(Text)  # 컬럼 매핑 (JSON 문자열)

    created = Column(DateTime, default=datetime.utcnow)
    finished = Column(DateTime)

    __table_args__ = (
        Index("idx_importer_list", "list"),
    )

    def __repr__(self):
        return f"<ImportJob(id={self.id}, list={self.list_id}, status={self.status})>"


class User(Base):
    """관리자 계정"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)

    username = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password = Column(String(255))  # bcrypt 해시

    # 비밀번호 재설정
    reset_token = Column(String(255))
    reset_expire = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_user_reset", "username", "reset_token"),
    )

    def __repr__(self):
        return f"<User(username='{self.username}')>"
