"""
가져오기 작업 추적 테스트
"""

import pytest
import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import update

from listpulse.database import get_session, ImportJob
from listpulse.exceptions import ValidationError
from listpulse.subscription.importer import ImportJobTracker, ImportStatus


class TestImportJobTracker:
    """ImportJobTracker 테스트"""

    @pytest.fixture
    def tracker(self):
        return ImportJobTracker()

    @pytest.fixture
    def import_id(self, tracker, list_id):
        return tracker.create(list_id, 1, "/uploads/members.csv", 2048, ";", {"columns": ["email", "firstName"]})

    def test_create_and_get(self, tracker, list_id, import_id):
        job = tracker.get(list_id, import_id)

        assert job["id"] == import_id
        assert job["list"] == list_id
        assert job["path"] == "/uploads/members.csv"
        assert job["size"] == 2048
        assert job["delimiter"] == ";"
        assert job["status"] == ImportStatus.PREPARING
        assert job["processed"] == 0
        assert job["mapping"] == {"columns": ["email", "firstName"]}
        assert job["finished"] is None

    def test_get_from_other_list(self, tracker, list_id, import_id):
        assert tracker.get(list_id + 1, import_id) is None

    def test_update_allowed_keys_only(self, tracker, list_id, import_id):
        """허용되지 않은 키는 무시"""
        finished = datetime(2024, 5, 1, 12, 30)

        changed = tracker.update(list_id, import_id, {
            "status": ImportStatus.FINISHED,
            "processed": 120,
            "finished": finished,
            "list": 999,
            "created": datetime(2000, 1, 1),
        })

        job = tracker.get(list_id, import_id)
        assert changed == 1
        assert job["status"] == ImportStatus.FINISHED
        assert job["processed"] == 120
        assert job["finished"] == finished
        assert job["list"] == list_id
        assert job["created"].year != 2000

    def test_update_without_allowed_keys(self, tracker, list_id, import_id):
        assert tracker.update(list_id, import_id, {"id": 5, "list": 2}) == 0

    def test_update_mapping_is_serialised(self, tracker, list_id, import_id):
        tracker.update(list_id, import_id, {"mapping": {"columns": ["email"], "header": True}})

        assert tracker.get(list_id, import_id)["mapping"] == {"columns": ["email"], "header": True}

    def test_malformed_mapping_falls_back(self, tracker, list_id, import_id):
        """깨진 mapping 은 빈 컬럼 목록으로 대체"""
        with get_session() as session:
            session.execute(update(ImportJob).where(ImportJob.id == import_id).values(mapping="[oops"))

        assert tracker.get(list_id, import_id)["mapping"] == {"columns": []}

    def test_list_active_hides_preparing(self, tracker, list_id, import_id):
        """status 0 작업은 목록에서 제외, 최신순 정렬"""
        second = tracker.create(list_id, 1, "/uploads/b.csv", 10, ",", {"columns": []})
        third = tracker.create(list_id, 1, "/uploads/c.csv", 10, ",", {"columns": []})
        tracker.update(list_id, second, {"status": ImportStatus.QUEUED})
        tracker.update(list_id, third, {"status": ImportStatus.FAILED, "error": "bad header"})

        jobs = tracker.list_active(list_id)

        assert [job["id"] for job in jobs] == [third, second]
        assert jobs[0]["error"] == "bad header"

    @pytest.mark.parametrize("bad", [None, 0, "x"])
    def test_missing_import_id(self, tracker, list_id, bad):
        with pytest.raises(ValidationError):
            tracker.get(list_id, bad)

    def test_missing_list_id(self, tracker):
        with pytest.raises(ValidationError):
            tracker.create(None, 1, "/uploads/a.csv", 1, ",", {})


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
