"""Investment memo and memo section database operations."""

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Protocol
from uuid import UUID

from supabase import Client

from dealmemo.core.logging import get_logger
from dealmemo.core.memo_sections import SECTION_CONFIGS, TOTAL_SECTIONS, SectionConfig
from dealmemo.core.schemas_memos import (
    GenerationStatus,
    MemoSectionRecord,
    SectionStatus,
    SectionType,
)
from dealmemo.db.supabase_client import get_supabase

logger = get_logger(__name__)

MEMOS_TABLE = "investment_memos"
SECTIONS_TABLE = "investment_memo_sections"

STUCK_RESET_ERROR = "Reset due to timeout"


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


class MemoStore(Protocol):
    """Operations the generator, orchestrator and assembler need from storage."""

    def get_memo(self, memo_id: UUID | str) -> dict[str, Any] | None: ...

    def get_memo_context(self, memo_id: UUID | str) -> dict[str, Any] | None: ...

    def update_memo(self, memo_id: UUID | str, fields: dict[str, Any]) -> None: ...

    def seed_sections(
        self,
        memo_id: UUID | str,
        configs: tuple[SectionConfig, ...] | list[SectionConfig] = SECTION_CONFIGS,
    ) -> None: ...

    def upsert_section(
        self, memo_id: UUID | str, section_type: SectionType, fields: dict[str, Any]
    ) -> None: ...

    def list_sections(self, memo_id: UUID | str) -> list[MemoSectionRecord]: ...

    def count_completed_sections(self, memo_id: UUID | str) -> int: ...

    def reset_stuck_sections(
        self, memo_id: UUID | str, threshold: timedelta, now: datetime | None = None
    ) -> list[MemoSectionRecord]: ...


class SupabaseMemoStore:
    """Memo and section-status persistence backed by Supabase tables."""

    def __init__(self, client: Client | None = None):
        self._client = client

    def _db(self) -> Client:
        return self._client or get_supabase()

    # ------------------------------------------------------------------
    # Deals
    # ------------------------------------------------------------------

    def get_deal_with_analyses(self, deal_id: UUID | str) -> dict[str, Any] | None:
        """
        Get a deal with its company and analyses embedded.

        Args:
            deal_id: Deal UUID

        Returns:
            Deal dict or None if not found
        """
        try:
            response = (
                self._db()
                .table("deals")
                .select("*, company:companies(*), deal_analyses(*)")
                .eq("id", str(deal_id))
                .execute()
            )
            if response.data:
                return response.data[0]

            logger.warning(f"Deal {deal_id} not found", extra={"deal_id": str(deal_id)})
            return None

        except Exception as e:
            logger.error(f"Failed to get deal {deal_id}: {e}", extra={"deal_id": str(deal_id)})
            raise

    # ------------------------------------------------------------------
    # Memos
    # ------------------------------------------------------------------

    def next_memo_version(self, deal_id: UUID | str) -> int:
        """Return the version number for a new memo on this deal."""
        try:
            response = (
                self._db()
                .table(MEMOS_TABLE)
                .select("version")
                .eq("deal_id", str(deal_id))
                .order("version", desc=True)
                .limit(1)
                .execute()
            )
            if response.data:
                return int(response.data[0].get("version") or 0) + 1
            return 1

        except Exception as e:
            logger.error(f"Failed to read memo versions: {e}", extra={"deal_id": str(deal_id)})
            raise

    def create_memo(
        self,
        deal_id: UUID | str,
        title: str,
        created_by: UUID | str | None = None,
    ) -> dict[str, Any]:
        """
        Create a memo record in the pending state.

        Args:
            deal_id: Deal UUID
            title: Memo title
            created_by: Optional user UUID

        Returns:
            Created memo row

        Raises:
            ValueError: If no row is returned
        """
        version = self.next_memo_version(deal_id)

        try:
            response = (
                self._db()
                .table(MEMOS_TABLE)
                .insert(
                    {
                        "deal_id": str(deal_id),
                        "title": title,
                        "content": "",
                        "generation_status": GenerationStatus.PENDING.value,
                        "sections_completed": 0,
                        "total_sections": TOTAL_SECTIONS,
                        "version": version,
                        "created_by": str(created_by) if created_by else None,
                    }
                )
                .execute()
            )

            if not response.data:
                raise ValueError("No data returned from create_memo")

            memo = response.data[0]
            logger.info(
                f"Created memo {memo['id']} v{version} for deal {deal_id}",
                extra={"memo_id": memo["id"], "deal_id": str(deal_id)},
            )
            return memo

        except Exception as e:
            logger.error(f"Failed to create memo: {e}", extra={"deal_id": str(deal_id)})
            raise

    def get_memo(self, memo_id: UUID | str) -> dict[str, Any] | None:
        """Get a memo by ID, or None if not found."""
        try:
            response = self._db().table(MEMOS_TABLE).select("*").eq("id", str(memo_id)).execute()
            if response.data:
                return response.data[0]

            logger.warning(f"Memo {memo_id} not found", extra={"memo_id": str(memo_id)})
            return None

        except Exception as e:
            logger.error(f"Failed to get memo {memo_id}: {e}", extra={"memo_id": str(memo_id)})
            raise

    def get_memo_context(self, memo_id: UUID | str) -> dict[str, Any] | None:
        """Get a memo with its deal and company embedded, for assembly."""
        try:
            response = (
                self._db()
                .table(MEMOS_TABLE)
                .select("*, deal:deals(*, company:companies(*))")
                .eq("id", str(memo_id))
                .execute()
            )
            if response.data:
                return response.data[0]
            return None

        except Exception as e:
            logger.error(
                f"Failed to get memo context {memo_id}: {e}", extra={"memo_id": str(memo_id)}
            )
            raise

    def update_memo(self, memo_id: UUID | str, fields: dict[str, Any]) -> None:
        """
        Update memo fields; updated_at is stamped automatically.

        Args:
            memo_id: Memo UUID
            fields: Columns to write
        """
        try:
            self._db().table(MEMOS_TABLE).update(
                {**fields, "updated_at": _utc_now_iso()}
            ).eq("id", str(memo_id)).execute()

            logger.debug(
                f"Updated memo {memo_id}: {sorted(fields)}", extra={"memo_id": str(memo_id)}
            )

        except Exception as e:
            logger.error(f"Failed to update memo {memo_id}: {e}", extra={"memo_id": str(memo_id)})
            raise

    def delete_memo(self, memo_id: UUID | str) -> None:
        """Delete a memo; its sections are removed by the foreign-key cascade."""
        try:
            self._db().table(MEMOS_TABLE).delete().eq("id", str(memo_id)).execute()
            logger.info(f"Deleted memo {memo_id}", extra={"memo_id": str(memo_id)})

        except Exception as e:
            logger.error(f"Failed to delete memo {memo_id}: {e}", extra={"memo_id": str(memo_id)})
            raise

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def seed_sections(
        self,
        memo_id: UUID | str,
        configs: tuple[SectionConfig, ...] | list[SectionConfig] = SECTION_CONFIGS,
    ) -> None:
        """
        Create a pending record for each section type, leaving existing rows alone.

        Args:
            memo_id: Memo UUID
            configs: Sections to seed
        """
        rows = [
            {
                "memo_id": str(memo_id),
                "section_type": config.section_type.value,
                "section_order": config.order,
                "status": SectionStatus.PENDING.value,
            }
            for config in configs
        ]
        if not rows:
            return

        try:
            self._db().table(SECTIONS_TABLE).upsert(
                rows, on_conflict="memo_id,section_type", ignore_duplicates=True
            ).execute()

            logger.info(
                f"Seeded {len(rows)} sections for memo {memo_id}", extra={"memo_id": str(memo_id)}
            )

        except Exception as e:
            logger.error(f"Failed to seed sections: {e}", extra={"memo_id": str(memo_id)})
            raise

    def upsert_section(
        self,
        memo_id: UUID | str,
        section_type: SectionType,
        fields: dict[str, Any],
    ) -> None:
        """
        Upsert one section record keyed on (memo_id, section_type).

        Args:
            memo_id: Memo UUID
            section_type: Section type key
            fields: Columns to write (status, content, error, timestamps, ...)
        """
        data = {
            "memo_id": str(memo_id),
            "section_type": SectionType(section_type).value,
            **fields,
        }

        try:
            self._db().table(SECTIONS_TABLE).upsert(
                data, on_conflict="memo_id,section_type"
            ).execute()

            logger.debug(
                f"Upserted section {data['section_type']} status={fields.get('status')}",
                extra={"memo_id": str(memo_id), "section_type": data["section_type"]},
            )

        except Exception as e:
            logger.error(
                f"Failed to upsert section {data['section_type']}: {e}",
                extra={"memo_id": str(memo_id), "section_type": data["section_type"]},
            )
            raise

    def list_sections(self, memo_id: UUID | str) -> list[MemoSectionRecord]:
        """List all section records for a memo, ordered by section_order."""
        try:
            response = (
                self._db()
                .table(SECTIONS_TABLE)
                .select("*")
                .eq("memo_id", str(memo_id))
                .order("section_order")
                .execute()
            )
            return [MemoSectionRecord.model_validate(row) for row in response.data or []]

        except Exception as e:
            logger.error(f"Failed to list sections: {e}", extra={"memo_id": str(memo_id)})
            raise

    def count_completed_sections(self, memo_id: UUID | str) -> int:
        try:
            response = (
                self._db()
                .table(SECTIONS_TABLE)
                .select("status")
                .eq("memo_id", str(memo_id))
                .execute()
            )
            return sum(
                1 for row in response.data or [] if row.get("status") == SectionStatus.COMPLETED.value
            )

        except Exception as e:
            logger.error(f"Failed to count sections: {e}", extra={"memo_id": str(memo_id)})
            raise

    def reset_stuck_sections(
        self,
        memo_id: UUID | str,
        threshold: timedelta,
        now: datetime | None = None,
    ) -> list[MemoSectionRecord]:
        """
        Reset sections stranded in 'generating' for longer than threshold.

        Args:
            memo_id: Memo UUID
            threshold: Age after which a generating section counts as stuck
            now: Current time (defaults to UTC now)

        Returns:
            The records that were reset to pending
        """
        cutoff = ((now or datetime.now(timezone.utc)) - threshold).isoformat()

        try:
            response = (
                self._db()
                .table(SECTIONS_TABLE)
                .update(
                    {
                        "status": SectionStatus.PENDING.value,
                        "started_at": None,
                        "error": STUCK_RESET_ERROR,
                    }
                )
                .eq("memo_id", str(memo_id))
                .eq("status", SectionStatus.GENERATING.value)
                .lt("started_at", cutoff)
                .execute()
            )
            reset = [MemoSectionRecord.model_validate(row) for row in response.data or []]
            if reset:
                logger.warning(
                    f"Reset {len(reset)} stuck sections: {[r.section_type.value for r in reset]}",
                    extra={"memo_id": str(memo_id)},
                )
            return reset

        except Exception as e:
            logger.error(f"Failed to reset stuck sections: {e}", extra={"memo_id": str(memo_id)})
            raise


@lru_cache(maxsize=1)
def get_memo_store() -> SupabaseMemoStore:
    """Get the shared memo store (cached singleton)."""
    return SupabaseMemoStore()
