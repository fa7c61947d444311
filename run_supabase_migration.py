#!/usr/bin/env python3
"""Check the memo tables exist, printing the DDL to apply when they do not."""
import sys
from pathlib import Path

from dealmemo.db.memo_store import MEMOS_TABLE, SECTIONS_TABLE
from dealmemo.db.supabase_client import get_supabase

MIGRATION_FILE = Path(__file__).parent / "migrations" / "0001_investment_memos.sql"


def run_migration():
    supabase = get_supabase()

    try:
        print("🚀 Checking investment memo schema")

        for table, columns in (
            (MEMOS_TABLE, "id, generation_status, sections_completed, version"),
            (SECTIONS_TABLE, "id, memo_id, section_type, status, citations, started_at"),
        ):
            print(f"🔍 Checking {table}...")
            supabase.table(table).select(columns).limit(1).execute()

        print("✅ Memo tables exist!")

    except Exception as e:
        print(f"❌ Schema check failed: {e}")
        print("💡 Run this SQL in your Supabase SQL editor:")
        print(MIGRATION_FILE.read_text())
        sys.exit(1)


if __name__ == "__main__":
    run_migration()
