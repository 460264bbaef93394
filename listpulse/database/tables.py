"""
리스트별 구독자 테이블 (subscription__<listId>)

테이블 이름은 subscription_table_name() 한 곳에서만 만들어진다.
기존 도구와 같은 DB를 공유하므로 이 명명 규칙은 바꾸지 않는다.
"""

import re
import logging
from typing import Iterable, Union

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Date,
    DateTime,
    MetaData,
    Table,
    Index,
    func,
    text,
)
from sqlalchemy.engine import Connection

from ..exceptions import ValidationError

logger = logging.getLogger(__name__)

SUBSCRIPTION_TABLE_PREFIX = "subscription__"

_COLUMN_NAME_RE = re.compile(r"^[a-z][a-z0-9_]{0,63}$")

# 반영(reflect)된 테이블 캐시: 테이블명 -> Table
_table_cache: dict[str, Table] = {}


def normalize_list_id(list_id: Union[int, str, None]) -> int:
    """리스트 ID 검증 (양의 정수만 허용)"""
    if isinstance(list_id, bool):
        raise ValidationError("Missing List ID")
    try:
        value = int(list_id)
    except (TypeError, ValueError):
        raise ValidationError("Missing List ID")
    if value < 1:
        raise ValidationError("Missing List ID")
    return value


def subscription_table_name(list_id: Union[int, str]) -> str:
    """리스트 ID로 구독자 테이블명 생성"""
    return f"{SUBSCRIPTION_TABLE_PREFIX}{normalize_list_id(list_id)}"


def validate_column_name(name: str) -> str:
    """동적 컬럼명 검증"""
    if not isinstance(name, str) or not _COLUMN_NAME_RE.match(name):
        raise ValidationError(f"Invalid column name: {name!r}")
    return name


def _base_columns() -> list:
    """모든 구독자 테이블에 공통인 컬럼"""
    return [
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("cid", String(255), nullable=False, unique=True),
        Column("email", String(255), nullable=False, unique=True),
        Column("opt_in_ip", String(100)),
        Column("opt_in_country", String(2)),
        Column("imported", Integer),
        Column("status", Integer, nullable=False, server_default=text("1")),
        Column("status_change", DateTime),
        Column("first_name", String(255)),
        Column("last_name", String(255)),
        Column("created", DateTime, server_default=func.now()),
    ]


def column_type_for(field_type: str):
    """사용자 정의 필드 타입 -> 저장 타입"""
    if field_type in ("longtext", "json"):
        return Text()
    if field_type == "number":
        return Integer()
    if field_type == "checkbox":
        return Boolean()
    if field_type == "date":
        return Date()
    return String(255)


def create_subscription_table(connection: Connection, list_id: int) -> Table:
    """구독자 테이블 생성 (이미 있으면 그대로 둠)"""
    name = subscription_table_name(list_id)
    table = Table(
        name,
        MetaData(),
        *_base_columns(),
        Index(f"idx_{name}_status", "status"),
        Index(f"idx_{name}_first_name", "first_name"),
        Index(f"idx_{name}_last_name", "last_name"),
    )
    table.create(connection, checkfirst=True)
    _table_cache.pop(name, None)
    logger.info(f"구독자 테이블 생성: {name}")
    return table


def add_field_column(connection: Connection, list_id: int, column: str, field_type: str) -> None:
    """구독자 테이블에 사용자 정의 필드 컬럼 추가"""
    name = subscription_table_name(list_id)
    column = validate_column_name(column)

    preparer = connection.dialect.identifier_preparer
    type_sql = column_type_for(field_type).compile(dialect=connection.dialect)

    connection.execute(text(
        f"ALTER TABLE {preparer.quote(name)} ADD COLUMN {preparer.quote(column)} {type_sql}"
    ))
    _table_cache.pop(name, None)
    logger.info(f"필드 컬럼 추가: {name}.{column} ({field_type})")


def get_subscription_table(
    connection: Connection,
    list_id: int,
    required_columns: Iterable[str] = (),
) -> Table:
    """
    DB에서 구독자 테이블 구조를 반영해 반환 (캐시 사용)

    다른 프로세스가 컬럼을 추가했을 수 있으므로 required_columns 중
    캐시에 없는 컬럼이 있으면 다시 반영한다.
    """
    name = subscription_table_name(list_id)
    table = _table_cache.get(name)
    if table is not None:
        missing = [column for column in required_columns if column not in table.c]
        if missing:
            logger.info(f"구독자 테이블 구조 변경 감지, 다시 반영: {name} {missing}")
            table = None
    if table is None:
        table = Table(name, MetaData(), autoload_with=connection)
        _table_cache[name] = table
    return table


def clear_table_cache() -> None:
    """반영된 테이블 캐시 초기화"""
    _table_cache.clear()
