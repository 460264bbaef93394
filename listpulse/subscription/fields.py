"""
필드 매퍼 - 입력 데이터를 리스트 스키마에 맞는 (컬럼, 값) 목록으로 변환
"""

import re
import json
import secrets
import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..database import get_session, CustomField
from ..database.tables import normalize_list_id, add_field_column
from ..exceptions import ValidationError

logger = logging.getLogger(__name__)

# 스키마와 무관하게 항상 허용되는 키
ALLOWED_KEYS = ("first_name", "last_name")

_TRUE_VALUES = {"1", "true", "yes", "on", "y"}
_FALSE_VALUES = {"", "0", "false", "no", "off", "n"}
_MERGE_KEY_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")


class FieldType(str, Enum):
    """사용자 정의 필드 타입"""
    TEXT = "text"
    WEBSITE = "website"
    LONGTEXT = "longtext"
    NUMBER = "number"
    CHECKBOX = "checkbox"
    DATE = "date"
    JSON = "json"


@dataclass(frozen=True)
class FieldDefinition:
    """리스트 필드 정의"""
    key: str
    name: str
    type: str
    column: str
    default_value: Optional[str] = None

    @classmethod
    def from_model(cls, field: CustomField) -> "FieldDefinition":
        return cls(
            key=field.key,
            name=field.name,
            type=field.type,
            column=field.column,
            default_value=field.default_value,
        )


def to_db_key(key: str) -> str:
    """camelCase / kebab-case 키를 snake_case 컬럼 키로 변환"""
    key = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", str(key))
    return key.replace("-", "_").lower()


def convert_keys(data: Optional[dict]) -> dict:
    """딕셔너리의 모든 키를 DB 키로 변환"""
    return {to_db_key(key): value for key, value in (data or {}).items()}


def coerce_value(field: FieldDefinition, value: Any) -> Any:
    """필드 저장 타입으로 값 변환"""
    if value is None:
        return None

    if field.type == FieldType.NUMBER.value:
        try:
            return int(value)
        except (TypeError, ValueError):
            try:
                return int(float(str(value).strip()))
            except (TypeError, ValueError):
                return None

    if field.type == FieldType.CHECKBOX.value:
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in _TRUE_VALUES:
                return True
            if normalized in _FALSE_VALUES:
                return False
        return bool(value)

    if field.type == FieldType.DATE.value:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value).strip()[:10])
        except ValueError:
            return None

    if field.type == FieldType.JSON.value:
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False)

    return str(value)


def map_row(
    fields: list[FieldDefinition],
    record: Optional[dict],
    for_insert: bool = False,
    for_update: bool = True,
    allow_email: bool = False,
) -> list[tuple[str, Any]]:
    """
    입력 레코드를 (컬럼, 값) 목록으로 변환

    스키마에 없는 키는 오류 없이 버린다.

    Args:
        fields: 리스트 필드 정의
        record: 입력 데이터 (camelCase 키 허용, 필드는 컬럼명 또는 머지 태그로 지정)
        for_insert: 입력에 없는 필드에 기본값 적용
        for_update: True면 입력에 있는 필드만 반환 (부분 갱신),
            False면 입력에 없는 필드도 None 으로 포함
        allow_email: email 컬럼 허용 여부

    Returns:
        (컬럼, 값) 튜플 리스트
    """
    record = record or {}
    values = convert_keys(record)
    by_merge_key = {str(key).upper(): value for key, value in record.items()}

    row = []

    allowed = (("email",) if allow_email else ()) + ALLOWED_KEYS
    for key in allowed:
        if key in values:
            row.append((key, values[key]))

    for field in fields:
        if field.column in values:
            value = values[field.column]
        elif field.key.upper() in by_merge_key:
            value = by_merge_key[field.key.upper()]
        elif for_insert and field.default_value is not None:
            value = field.default_value
        elif not for_update:
            value = None
        else:
            continue
        row.append((field.column, coerce_value(field, value)))

    return row


def _slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", (name or "").lower()).strip("_")
    return slug[:32].strip("_") or "field"


class FieldRegistry:
    """리스트별 필드 정의 저장소"""

    @staticmethod
    def list_fields_in(session: Session, list_id: int) -> list[FieldDefinition]:
        """현재 세션에서 필드 정의 조회"""
        rows = (
            session.query(CustomField)
            .filter(CustomField.list_id == list_id)
            .order_by(CustomField.id)
            .all()
        )
        return [FieldDefinition.from_model(row) for row in rows]

    def list_fields(self, list_id: int) -> list[FieldDefinition]:
        """리스트의 필드 정의 목록"""
        list_id = normalize_list_id(list_id)
        with get_session() as session:
            return self.list_fields_in(session, list_id)

    def create_field(
        self,
        list_id: int,
        name: str,
        field_type: str = FieldType.TEXT.value,
        key: str = None,
        default_value: str = None,
    ) -> FieldDefinition:
        """
        필드 생성 및 구독자 테이블에 컬럼 추가

        Args:
            list_id: 리스트 ID
            name: 표시 이름
            field_type: FieldType 값
            key: 머지 태그 (없으면 MERGE_<이름>)
            default_value: 신규 구독자 기본값

        Returns:
            생성된 FieldDefinition
        """
        list_id = normalize_list_id(list_id)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Field name must be set")

        try:
            field_type = FieldType(field_type).value
        except ValueError:
            raise ValidationError(f"Unknown field type: {field_type}")

        slug = _slugify(name)
        key = (key or f"MERGE_{slug.upper()}").strip().upper()
        if not _MERGE_KEY_RE.match(key):
            raise ValidationError(f"Invalid merge tag: {key}")

        column = f"custom_{slug}_{secrets.token_hex(3)}"

        with get_session() as session:
            duplicate = session.query(CustomField).filter(
                CustomField.list_id == list_id,
                CustomField.key == key,
            ).first()
            if duplicate:
                raise ValidationError(f"Merge tag already in use: {key}")

            field = CustomField(
                list_id=list_id,
                name=name,
                key=key,
                type=field_type,
                column=column,
                default_value=default_value,
            )
            session.add(field)
            session.flush()

            add_field_column(session.connection(), list_id, column, field_type)
            logger.info(f"필드 생성: list={list_id} key={key} column={column}")

            return FieldDefinition.from_model(field)
