"""Fake in-memory memo store for orchestration and assembly tests."""

import threading
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

from dealmemo.core.memo_sections import SECTION_CONFIGS, TOTAL_SECTIONS
from dealmemo.core.schemas_memos import MemoSectionRecord, SectionStatus, SectionType
from dealmemo.db.memo_store import STUCK_RESET_ERROR

MEMO_ID = "11111111-1111-1111-1111-111111111111"
DEAL_ID = "22222222-2222-2222-2222-222222222222"

SAMPLE_DEAL = {
    "id": DEAL_ID,
    "stage": "Seed",
    "funding_amount": 2000000,
    "valuation": 12000000,
    "check_size_max": 250000,
    "company": {
        "name": "Acme Homes",
        "website": "https://acmehomes.example",
        "location": "Austin, TX",
    },
}


class FakeMemoStore:
    """In-memory MemoStore implementation for testing."""

    def __init__(self):
        self.memos: dict[str, dict[str, Any]] = {}
        self.deals: dict[str, dict[str, Any]] = {}
        self.sections: dict[tuple[str, str], dict[str, Any]] = {}
        self.memo_updates: list[dict[str, Any]] = []
        self.section_writes: list[tuple[str, dict[str, Any]]] = []
        self.fail_section_writes = False

    @classmethod
    def with_memo(cls, memo_id: str = MEMO_ID, **memo_fields: Any) -> "FakeMemoStore":
        store = cls()
        store.deals[DEAL_ID] = dict(SAMPLE_DEAL)
        store.memos[memo_id] = {
            "id": memo_id,
            "deal_id": DEAL_ID,
            "title": "Investment Memo - Acme Homes",
            "content": "",
            "generation_status": "pending",
            "sections_completed": 0,
            "total_sections": TOTAL_SECTIONS,
            "version": 1,
            "created_at": "2026-10-19T09:00:00+00:00",
            "updated_at": "2026-10-19T09:00:00+00:00",
            **memo_fields,
        }
        return store

    # Deals
    def get_deal_with_analyses(self, deal_id: UUID | str) -> dict[str, Any] | None:
        return self.deals.get(str(deal_id))

    # Memos
    def next_memo_version(self, deal_id: UUID | str) -> int:
        versions = [m.get("version", 0) for m in self.memos.values() if m["deal_id"] == str(deal_id)]
        return max(versions, default=0) + 1

    def create_memo(
        self, deal_id: UUID | str, title: str, created_by: UUID | str | None = None
    ) -> dict[str, Any]:
        memo = {
            "id": str(uuid4()),
            "deal_id": str(deal_id),
            "title": title,
            "content": "",
            "generation_status": "pending",
            "sections_completed": 0,
            "total_sections": TOTAL_SECTIONS,
            "version": self.next_memo_version(deal_id),
            "created_by": str(created_by) if created_by else None,
        }
        self.memos[memo["id"]] = memo
        return memo

    def get_memo(self, memo_id: UUID | str) -> dict[str, Any] | None:
        memo = self.memos.get(str(memo_id))
        return dict(memo) if memo else None

    def get_memo_context(self, memo_id: UUID | str) -> dict[str, Any] | None:
        memo = self.get_memo(memo_id)
        if not memo:
            return None
        return {**memo, "deal": self.deals.get(memo["deal_id"])}

    def update_memo(self, memo_id: UUID | str, fields: dict[str, Any]) -> None:
        self.memo_updates.append(dict(fields))
        self.memos.setdefault(str(memo_id), {"id": str(memo_id), "deal_id": DEAL_ID}).update(fields)

    def delete_memo(self, memo_id: UUID | str) -> None:
        self.memos.pop(str(memo_id), None)
        for key in [k for k in self.sections if k[0] == str(memo_id)]:
            del self.sections[key]

    # Sections
    def seed_sections(self, memo_id: UUID | str, configs=SECTION_CONFIGS) -> None:
        for config in configs:
            key = (str(memo_id), config.section_type.value)
            if key not in self.sections:
                self.sections[key] = {
                    "id": str(uuid4()),
                    "memo_id": str(memo_id),
                    "section_type": config.section_type.value,
                    "section_order": config.order,
                    "status": SectionStatus.PENDING.value,
                }

    def upsert_section(
        self, memo_id: UUID | str, section_type: SectionType, fields: dict[str, Any]
    ) -> None:
        if self.fail_section_writes:
            raise RuntimeError("database unavailable")
        section = SectionType(section_type).value
        self.section_writes.append((section, dict(fields)))
        row = self.sections.setdefault(
            (str(memo_id), section),
            {"id": str(uuid4()), "memo_id": str(memo_id), "section_type": section},
        )
        row.update(fields)

    def set_section(self, section_type: SectionType, memo_id: str = MEMO_ID, **fields: Any) -> None:
        """Test helper: write a section row directly."""
        config = next(c for c in SECTION_CONFIGS if c.section_type == section_type)
        key = (memo_id, section_type.value)
        row = self.sections.setdefault(
            key,
            {
                "id": str(uuid4()),
                "memo_id": memo_id,
                "section_type": section_type.value,
                "section_order": config.order,
                "status": SectionStatus.PENDING.value,
            },
        )
        row.update(fields)

    def list_sections(self, memo_id: UUID | str) -> list[MemoSectionRecord]:
        rows = [row for (mid, _), row in list(self.sections.items()) if mid == str(memo_id)]
        rows.sort(key=lambda r: r["section_order"])
        return [MemoSectionRecord.model_validate(row) for row in rows]

    def count_completed_sections(self, memo_id: UUID | str) -> int:
        return sum(1 for r in self.list_sections(memo_id) if r.status == SectionStatus.COMPLETED)

    def reset_stuck_sections(
        self, memo_id: UUID | str, threshold: timedelta, now: datetime | None = None
    ) -> list[MemoSectionRecord]:
        cutoff = (now or datetime.now(timezone.utc)) - threshold
        reset = []
        for (mid, _), row in list(self.sections.items()):
            if mid != str(memo_id) or row.get("status") != SectionStatus.GENERATING.value:
                continue
            started = row.get("started_at")
            if started and datetime.fromisoformat(started) < cutoff:
                row.update(
                    {"status": SectionStatus.PENDING.value, "started_at": None, "error": STUCK_RESET_ERROR}
                )
                reset.append(MemoSectionRecord.model_validate(row))
        return reset

    def status_of(self, section_type: SectionType, memo_id: str = MEMO_ID) -> str:
        return self.sections[(memo_id, section_type.value)]["status"]


class ThreadRecordingMemoStore(FakeMemoStore):
    """FakeMemoStore that records which thread ran each store call."""

    def __init__(self):
        super().__init__()
        self.call_threads: list[tuple[str, int]] = []

    def _record(self, name: str) -> None:
        self.call_threads.append((name, threading.get_ident()))

    def get_memo(self, memo_id):
        self._record("get_memo")
        return super().get_memo(memo_id)

    def update_memo(self, memo_id, fields):
        self._record("update_memo")
        super().update_memo(memo_id, fields)

    def seed_sections(self, memo_id, configs=SECTION_CONFIGS):
        self._record("seed_sections")
        super().seed_sections(memo_id, configs)

    def upsert_section(self, memo_id, section_type, fields):
        self._record("upsert_section")
        super().upsert_section(memo_id, section_type, fields)

    def list_sections(self, memo_id):
        self._record("list_sections")
        return super().list_sections(memo_id)

    def count_completed_sections(self, memo_id):
        self._record("count_completed_sections")
        return super().count_completed_sections(memo_id)

    def reset_stuck_sections(self, memo_id, threshold, now=None):
        self._record("reset_stuck_sections")
        return super().reset_stuck_sections(memo_id, threshold, now=now)
