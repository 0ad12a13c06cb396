import os
import json
from typing import Any, Dict

from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _label(key: str) -> str:
    return key.replace("_", " ").title()


def print_mapping(data: Dict[str, Any], title: str, empty_message: str = "Nothing to show.") -> None:
    """Print a flat mapping in the current output mode.
    - plain: one 'Label: value' line per key
    - json: JSON object
    - rich: two-column table inside a panel
    """
    mode = get_output_mode()

    if not data:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps(data, ensure_ascii=False, default=str))
    elif mode == "rich":
        table = Table(show_header=False, box=None)
        table.add_column(style="bold cyan")
        table.add_column(style="white")
        for key, value in data.items():
            table.add_row(_label(key), str(value))
        _console.print(Panel.fit(table, title=title, border_style="blue"))
    else:
        for key, value in data.items():
            print(f"{_label(key)}: {value}")


def print_stats_result(stats: Dict[str, Any]) -> None:
    print_mapping(stats, "📊 Library Stats", empty_message="No statistics available.")


def print_reminder_summary(summary: Dict[str, Any]) -> None:
    print_mapping(summary, "🔔 Reminders", empty_message="No reminders sent.")
