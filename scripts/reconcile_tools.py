#!/usr/bin/env python3
"""
Reconcile tool projections against the maintenance ledger.

Recomputes regrinding/resegmentation counters from the ledger and raises
current_tool_life back to the life recorded at the latest ledger
entry where it has fallen below. Without --repair only reports the drift.

Usage:
    python scripts/reconcile_tools.py --actor ops-oncall
    python scripts/reconcile_tools.py --actor ops-oncall --tool 42 --repair
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

console = Console()


async def reconcile(tool_ids: list[int] | None, actor_id: str, repair: bool) -> int:
    from sqlalchemy import select

    from database import get_db_context, init_database, shutdown_database
    from db.models import Tool
    from core.monitoring import init_sentry
    from logger import configure_from_settings
    from services import ProjectionService

    configure_from_settings()
    init_sentry()
    await init_database()
    drifted = 0
    try:
        async with get_db_context() as db:
            if not tool_ids:
                result = await db.execute(select(Tool.tool_id).order_by(Tool.tool_id))
                tool_ids = list(result.scalars().all())

            table = Table(title="Projection reconciliation")
            table.add_column("Tool", justify="right")
            table.add_column("Drift")
            table.add_column("Repaired")
            table.add_column("Notes")

            service = ProjectionService(db)
            for tool_id in tool_ids:
                report = await service.reconcile_projection(tool_id, actor_id=actor_id, repair=repair)
                if report.drift_detected:
                    drifted += 1
                table.add_row(
                    str(tool_id),
                    "yes" if report.drift_detected else "no",
                    "yes" if report.repaired else "-",
                    "; ".join(report.notes),
                )
            console.print(table)
    finally:
        await shutdown_database()
    return drifted


def main() -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Reconcile tool projections with the ledger")
    parser.add_argument("--actor", required=True, help="Actor id recorded in the audit trail")
    parser.add_argument("--tool", type=int, action="append", help="Tool id (repeatable, default: all)")
    parser.add_argument("--repair", action="store_true", help="Write the repaired projection")
    args = parser.parse_args()

    drifted = asyncio.run(reconcile(args.tool, args.actor, args.repair))
    console.print(f"{drifted} tool(s) with drift")
    return 1 if drifted and not args.repair else 0


if __name__ == "__main__":
    sys.exit(main())
