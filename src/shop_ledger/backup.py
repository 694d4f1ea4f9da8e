"""Backup and restore of the whole store as one JSON document.

The document holds one key per collection (``products``, ``sales``, ...,
``supplierPayments``), each mapped to the list of records in insertion order
using the same field names as the worksheet headers. Restoring is additive per
collection: keys present in the document replace their collection, absent
keys leave it untouched.
"""

from __future__ import annotations

import json
import os
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from . import core_logic, data_manager, log
from .constants import Collection


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def build_backup_document(context: core_logic.RuntimeContext) -> Dict[str, List[Dict[str, Any]]]:
    """Return every collection as plain, JSON-ready mappings."""

    snapshot = data_manager.export_all(context.workbook)
    return {
        collection.value: [data_manager.record_to_document(record, include_empty=False) for record in records]
        for collection, records in snapshot.items()
    }


def default_backup_path(context: core_logic.RuntimeContext) -> Path:
    return context.settings.export_dir / f"shop-ledger-backup-{core_logic.today_iso()}.json"


def export_backup(context: core_logic.RuntimeContext, destination: Optional[Path] = None) -> Path:
    """Write the backup document to ``destination``.

    The file is written next to its final location and renamed into place, so
    an interrupted export never leaves a truncated backup.

    Args:
        context (core_logic.RuntimeContext): Context whose workbook is exported.
        destination (Path | None): Target file. Defaults to a dated file in the
            configured export directory.

    Returns:
        Path: The written file.

    Raises:
        core_logic.StorageFailure: If the file cannot be written.
    """

    target = Path(destination) if destination is not None else default_backup_path(context)
    target = target.expanduser().resolve()
    text = json.dumps(build_backup_document(context), indent=2, ensure_ascii=False, default=_json_default)

    temp_name: Optional[str] = None
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        handle, temp_name = tempfile.mkstemp(prefix=f".{target.stem}-", suffix=".json", dir=target.parent)
        with os.fdopen(handle, "w", encoding="utf-8") as stream:
            stream.write(text)
        os.replace(temp_name, target)
    except OSError as exc:
        if temp_name is not None:
            Path(temp_name).unlink(missing_ok=True)
        log.error("Backup export to '%s' failed: %s", target, exc)
        raise core_logic.StorageFailure(f"Unable to write backup to {target}: {exc}") from exc

    log.info("Exported backup to '%s'", target)
    return target


def parse_backup_document(document: Any) -> Dict[Collection, List[Any]]:
    """Convert a decoded backup document into typed records.

    Every present collection is converted before anything is returned, so a
    single bad record rejects the whole document. Unknown keys are ignored.

    Raises:
        core_logic.InvalidInputError: If the document is not an object, a
            collection is not a list, or a record cannot be converted.
    """

    if not isinstance(document, Mapping):
        raise core_logic.InvalidInputError("Backup document must be a JSON object")

    snapshot: Dict[Collection, List[Any]] = {}
    for collection in Collection:
        if collection.value not in document:
            continue
        entries = document[collection.value]
        if not isinstance(entries, list):
            raise core_logic.InvalidInputError(f"Backup key '{collection.value}' must hold a list")
        records = []
        for position, entry in enumerate(entries):
            if not isinstance(entry, Mapping):
                raise core_logic.InvalidInputError(f"{collection.value}[{position}] is not an object")
            try:
                records.append(data_manager.record_from_document(collection, entry))
            except ValueError as exc:
                raise core_logic.InvalidInputError(f"{collection.value}[{position}]: {exc}") from exc
        snapshot[collection] = records
    return snapshot


def read_backup(source: Path) -> Dict[Collection, List[Any]]:
    """Load and convert a backup file.

    Raises:
        FileNotFoundError: If ``source`` does not exist.
        core_logic.InvalidInputError: If the file is not a valid backup.
    """

    path = Path(source).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Backup file not found: {path}")
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        log.error("Backup file '%s' is not valid JSON: %s", path, exc)
        raise core_logic.InvalidInputError(f"Backup file is not valid JSON: {exc}") from exc
    return parse_backup_document(document)


def restore_backup(context: core_logic.RuntimeContext, source: Path) -> List[Collection]:
    """Replace the collections present in the backup file at ``source``.

    Nothing is written unless the whole file converts cleanly. The write
    itself is one :func:`data_manager.import_all` call, which restores every
    sheet if it fails midway.

    Returns:
        list[Collection]: The collections that were replaced.
    """

    snapshot = read_backup(source)
    try:
        restored = data_manager.import_all(context.workbook, snapshot)
    finally:
        context._cache.clear()
    log.info(
        "Restored %d collection(s) from '%s': %s",
        len(restored),
        source,
        ", ".join(collection.value for collection in restored) or "none",
    )
    return restored
