"""Utility for initializing the fuel ledger workbook.

The module doubles as a script (``python -m fuel_ledger.setup_excel``) and as
a library used by tests or other tooling, so the workbook bootstrap logic stays
consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Mapping, Sequence

import openpyxl
from openpyxl.styles import Font

from . import data_manager
from .constants import CollectionName


def create_ledger_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[CollectionName, Sequence[str]] = data_manager.SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create an empty ledger workbook with one sheet per collection.

    Parameters are overridable to facilitate testing. When ``overwrite`` is
    ``False`` (the default) this function raises ``FileExistsError`` if the
    target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing ledger workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for collection, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=collection.value)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``DataFile`` in ``config_path``."""

    resolved = config_path.expanduser().resolve()
    parser = data_manager.read_config(resolved)
    settings = data_manager.parse_settings(parser, base_path=resolved.parent)
    return create_ledger_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the fuel ledger workbook")
    parser.add_argument(
        "--config",
        default=data_manager.CONFIG_FILE_NAME,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Fuel Ledger Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created ledger workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
