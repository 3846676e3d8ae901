#!/usr/bin/env python3
"""
Import historical tools from a JSON file.

The file holds a list of tool objects:

    [
      {
        "material_id": "400123", "batch_id": "B-7", "tool_name": "Die 12",
        "type": "cutting", "current_factory_id": 1, "format": "a4",
        "lifecycle_events": [
          {"event_type": "initial", "life_value": 0, "date": "2023-01-05"},
          {"event_type": "regrinding", "life_value": 100, "date": "2023-03-01"}
        ]
      }
    ]

Each tool is imported in its own transaction; failures are reported per
row and do not stop the rest of the file.

Usage:
    python scripts/import_tools.py tools.json --actor planner-3
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

console = Console()


async def run_import(path: Path, actor_id: str) -> int:
    from database import get_db_context, init_database, shutdown_database
    from core.monitoring import init_sentry
    from logger import configure_from_settings
    from services import ImportService

    configure_from_settings()
    init_sentry()
    specs = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(specs, list):
        console.print("[red]Import file must contain a JSON list of tools[/red]")
        return 2

    await init_database()
    try:
        async with get_db_context() as db:
            result = await ImportService(db).import_tools(specs, actor_id=actor_id)
    finally:
        await shutdown_database()

    table = Table(title=f"Import of {path.name}")
    table.add_column("Row", justify="right")
    table.add_column("Tool")
    table.add_column("Outcome")
    for success in result.successes:
        table.add_row(
            str(success.row),
            success.tool,
            f"[green]tool {success.tool_id}, {success.events_imported} event(s)[/green]",
        )
    for failure in result.failures:
        table.add_row(str(failure.row), failure.tool or "?", f"[red]{failure.error_type}: {failure.error}[/red]")
    console.print(table)

    return 1 if result.failures else 0


def main() -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Import historical tools from JSON")
    parser.add_argument("file", type=Path, help="JSON file with a list of tools")
    parser.add_argument("--actor", required=True, help="Actor id recorded in the audit trail")
    args = parser.parse_args()
    return asyncio.run(run_import(args.file, args.actor))


if __name__ == "__main__":
    sys.exit(main())
