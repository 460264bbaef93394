"""
가져오기 작업 추적 - 외부 가져오기 워커가 사용하는 작업 레코드 관리
"""

import json
import logging
from enum import IntEnum
from typing import Optional

from sqlalchemy import update

from ..database import get_session, ImportJob
from ..database.tables import normalize_list_id
from ..exceptions import ValidationError
from .fields import to_db_key

logger = logging.getLogger(__name__)

# update() 로 변경할 수 있는 컬럼
ALLOWED_UPDATE_KEYS = (
    "type",
    "path",
    "size",
    "delimiter",
    "status",
    "error",
    "processed",
    "mapping",
    "finished",
)


class ImportStatus(IntEnum):
    """가져오기 작업 상태 (0 은 목록에 나오지 않음)"""
    PREPARING = 0
    QUEUED = 1
    RUNNING = 2
    FINISHED = 3
    FAILED = 4


def _normalize_import_id(import_id) -> int:
    try:
        value = int(import_id)
    except (TypeError, ValueError):
        raise ValidationError("Missing Import ID")
    if value < 1:
        raise ValidationError("Missing Import ID")
    return value


def _dump_mapping(mapping) -> str:
    if isinstance(mapping, str):
        return mapping
    return json.dumps(mapping if mapping is not None else {}, ensure_ascii=False)


def _load_mapping(raw: Optional[str]) -> dict:
    try:
        mapping = json.loads(raw)
    except (TypeError, ValueError):
        return {"columns": []}
    return mapping if isinstance(mapping, dict) else {"columns": []}


def _job_to_dict(job: ImportJob) -> dict:
    return {
        "id": job.id,
        "list": job.list_id,
        "type": job.type,
        "path": job.path,
        "size": job.size,
        "delimiter": job.delimiter,
        "status": job.status,
        "error": job.error,
        "processed": job.processed,
        "mapping": _load_mapping(job.mapping),
        "created": job.created,
        "finished": job.finished,
    }


class ImportJobTracker:
    """가져오기 작업 저장소"""

    def create(
        self,
        list_id: int,
        import_type: int,
        path: str,
        size: int,
        delimiter: str,
        mapping: dict,
    ) -> int:
        """
        가져오기 작업 생성

        Returns:
            작업 ID
        """
        list_id = normalize_list_id(list_id)
        try:
            import_type = int(import_type or 1)
        except (TypeError, ValueError):
            import_type = 1

        with get_session() as session:
            job = ImportJob(
                list_id=list_id,
                type=import_type,
                path=path,
                size=size or 0,
                delimiter=delimiter or ",",
                status=ImportStatus.PREPARING,
                processed=0,
                mapping=_dump_mapping(mapping),
            )
            session.add(job)
            session.flush()
            logger.info(f"가져오기 작업 생성: list={list_id} id={job.id} path={path}")
            return job.id

    def update(self, list_id: int, import_id: int, data: dict) -> int:
        """
        가져오기 작업 갱신 (허용된 컬럼만)

        Returns:
            갱신된 행 수
        """
        list_id = normalize_list_id(list_id)
        import_id = _normalize_import_id(import_id)

        values = {}
        for key, value in (data or {}).items():
            key = to_db_key(key)
            if key in ALLOWED_UPDATE_KEYS:
                values[key] = _dump_mapping(value) if key == "mapping" else value

        if not values:
            return 0

        with get_session() as session:
            result = session.execute(
                update(ImportJob)
                .where(ImportJob.id == import_id, ImportJob.list_id == list_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    def get(self, list_id: int, import_id: int) -> Optional[dict]:
        """가져오기 작업 조회"""
        list_id = normalize_list_id(list_id)
        import_id = _normalize_import_id(import_id)

        with get_session() as session:
            job = session.query(ImportJob).filter(
                ImportJob.id == import_id,
                ImportJob.list_id == list_id,
            ).first()
            return _job_to_dict(job) if job else None

    def list_active(self, list_id: int) -> list[dict]:
        """진행 중이거나 완료된 작업 목록 (최신순)"""
        list_id = normalize_list_id(list_id)

        with get_session() as session:
            jobs = (
                session.query(ImportJob)
                .filter(ImportJob.list_id == list_id, ImportJob.status > 0)
                .order_by(ImportJob.id.desc())
                .all()
            )
            return [_job_to_dict(job) for job in jobs]
