#!/usr/bin/env python3
"""
Schema check — confirms the backend tables have the columns the API reads.

For each table it fetches one row and compares the keys against the expected
column list. Empty tables can only be confirmed to exist.

Run against a configured backend:
  SUPABASE_URL=https://<project>.supabase.co SUPABASE_ANON_KEY=... \
      python scripts/verify_schema.py

Exit status is 1 if any table is unreachable or missing columns.
"""
import argparse
import asyncio
import sys
from dataclasses import dataclass, field
from typing import Optional

from numnum.clients.supabase_client import GatewayError, SupabaseClient

EXPECTED_COLUMNS: dict[str, list[str]] = {
    "profiles": ["id", "username", "display_name", "avatar_url", "bio", "is_public"],
    "followers": ["follower_id", "following_id", "status"],
    "restaurants": ["id", "name", "cuisine", "latitude", "longitude", "price_range", "rating", "image_url"],
    "posts": [
        "id", "user_id", "type", "content", "restaurant_id", "rating", "image_urls",
        "likes_count", "comments_count", "created_at", "updated_at",
    ],
    "comments": ["id", "post_id", "user_id", "parent_id", "content", "likes_count", "created_at"],
    "likes": ["user_id", "post_id", "created_at"],
    "saved_restaurants": ["user_id", "restaurant_id", "is_favorited", "added_at"],
}


@dataclass
class TableReport:
    table: str
    reachable: bool = True
    empty: bool = False
    error: Optional[str] = None
    missing: list[str] = field(default_factory=list)
    extra: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.reachable and not self.missing


async def check_table(client: SupabaseClient, table: str) -> TableReport:
    report = TableReport(table=table)
    try:
        result = await client.table(table).select("*").limit(1).execute()
    except GatewayError as exc:
        report.reachable = False
        report.error = exc.message
        return report

    rows = result.data or []
    if not rows:
        report.empty = True
        return report

    actual = set(rows[0].keys())
    expected = EXPECTED_COLUMNS.get(table, [])
    report.missing = [c for c in expected if c not in actual]
    report.extra = sorted(actual - set(expected))
    return report


def print_report(report: TableReport) -> None:
    if not report.reachable:
        print(f"  FAIL {report.table}: {report.error}")
        return
    if report.empty:
        print(f"  OK   {report.table} exists (empty, columns not verified)")
        print(f"       expected: {', '.join(EXPECTED_COLUMNS.get(report.table, []))}")
        return
    print(f"  {'OK  ' if report.ok else 'WARN'} {report.table}")
    if report.missing:
        print(f"       missing: {', '.join(report.missing)}")
    if report.extra:
        print(f"       extra:   {', '.join(report.extra)}")


async def main(tables: list[str], url: Optional[str], key: Optional[str]) -> int:
    client = SupabaseClient(url, key)
    await client.start()
    try:
        print(f"Verifying backend schema at {client.base_url} ...\n")
        reports = [await check_table(client, t) for t in tables]
    finally:
        await client.stop()

    for report in reports:
        print_report(report)
    return 0 if all(r.ok for r in reports) else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Verify backend table shapes")
    parser.add_argument("--url", default=None, help="Backend URL (default: SUPABASE_URL)")
    parser.add_argument("--key", default=None, help="API key (default: SUPABASE_ANON_KEY)")
    parser.add_argument(
        "--table",
        action="append",
        choices=sorted(EXPECTED_COLUMNS),
        help="Only check this table (repeatable)",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.table or list(EXPECTED_COLUMNS), args.url, args.key)))
