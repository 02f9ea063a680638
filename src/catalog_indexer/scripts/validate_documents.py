"""Index Document Validation Script

Validates an export of index documents (``SearchClient.export_documents()``
or the collection's ``/documents/export`` endpoint) against the shape the
indexer promises:
  - ``id`` present, a non-empty string, and unique across the export
  - ``relevance_score`` a finite number in [0, 100]
  - hierarchical category levels lowercase and prefix-closed
  - ``warranties`` an object or null, never an array
  - array and object fields carry the declared shape
  - bounded string fields within their limits

Usage:
    python -m src.catalog_indexer.scripts.validate_documents \\
        --path logs/export.jsonl

Exits with code 0 on success, 1 on validation failure, 2 on argument error.
"""

import argparse
import json
import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..typesense_config import (
    ARRAY_FIELDS,
    CATEGORY_FIELD,
    CATEGORY_SEPARATOR,
    NULLABLE_OBJECT_FIELDS,
    OBJECT_FIELDS,
    STRING_LIMITS,
)


def load_documents(path: Path) -> List[Dict[str, Any]]:
    """Load index documents from a JSON array or a JSONL file."""
    with path.open("r", encoding="utf-8") as f:
        content = f.read().strip()

    try:
        data = json.loads(content)
        if isinstance(data, list):
            return data
        if not isinstance(data, dict):
            raise ValueError("Top-level JSON is not a list of documents.")
        # a single-line JSONL export parses as one object
        return [data]
    except json.JSONDecodeError:
        pass

    documents: List[Dict[str, Any]] = []
    for line_no, line in enumerate(content.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError as e:
            raise ValueError(f"Failed to parse JSON on line {line_no}: {e}") from e
        if not isinstance(obj, dict):
            raise ValueError(f"Line {line_no} JSON is not an object (got {type(obj).__name__})")
        documents.append(obj)

    if not documents:
        raise ValueError("No documents found in file.")

    return documents


def is_finite_number(x: Any) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool) and math.isfinite(x)


def _category_levels(doc: Dict[str, Any]) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    nested = doc.get(CATEGORY_FIELD)
    nested = nested if isinstance(nested, dict) else {}
    return tuple(
        nested.get(level, doc.get(f"{CATEGORY_FIELD}.{level}"))
        for level in ("lvl0", "lvl1", "lvl2")
    )


def _extends(child: Optional[str], parent: Optional[str]) -> bool:
    if child is None or parent is None:
        return child is None or child == parent
    return child == parent or child.startswith(parent + CATEGORY_SEPARATOR)


def validate_document(doc: Any, idx: int) -> Tuple[List[str], List[str]]:
    """Validate a single index document.

    Returns:
        (errors, warnings)
    """
    errors: List[str] = []
    warnings: List[str] = []

    if not isinstance(doc, dict):
        errors.append(f"[idx={idx}] document should be an object, got {type(doc).__name__}")
        return errors, warnings

    # --- id ---
    doc_id = doc.get("id")
    if doc_id is None:
        errors.append(f"[idx={idx}] missing 'id'")
    elif not isinstance(doc_id, str):
        errors.append(f"[idx={idx}] 'id' should be a string, got {type(doc_id).__name__}")
    elif not doc_id.strip():
        errors.append(f"[idx={idx}] 'id' is empty")

    # --- relevance score ---
    score = doc.get("relevance_score")
    if score is None:
        errors.append(f"[idx={idx}] missing 'relevance_score'")
    elif not is_finite_number(score):
        errors.append(f"[idx={idx}] relevance_score is not a finite number (got {score!r})")
    elif not 0 <= score <= 100:
        errors.append(f"[idx={idx}] relevance_score {score} outside [0, 100]")

    # --- categories ---
    lvl0, lvl1, lvl2 = _category_levels(doc)
    for name, value in (("lvl0", lvl0), ("lvl1", lvl1), ("lvl2", lvl2)):
        if value is not None and (not isinstance(value, str) or value != value.lower()):
            errors.append(f"[idx={idx}] {CATEGORY_FIELD}.{name} is not a lowercase string: {value!r}")
    if all(v is None or isinstance(v, str) for v in (lvl0, lvl1, lvl2)):
        if not _extends(lvl1, lvl0):
            errors.append(f"[idx={idx}] {CATEGORY_FIELD}.lvl1 {lvl1!r} does not extend lvl0 {lvl0!r}")
        if not _extends(lvl2, lvl1):
            errors.append(f"[idx={idx}] {CATEGORY_FIELD}.lvl2 {lvl2!r} does not extend lvl1 {lvl1!r}")
    if lvl0 is None:
        warnings.append(f"[idx={idx}] document has no category")

    # --- warranties / nullable objects ---
    for field in NULLABLE_OBJECT_FIELDS:
        value = doc.get(field)
        if value is not None and not isinstance(value, dict):
            errors.append(
                f"[idx={idx}] '{field}' should be an object or null, got {type(value).__name__}"
            )

    # --- shapes ---
    for field in ARRAY_FIELDS:
        if field in doc and not isinstance(doc[field], list):
            errors.append(f"[idx={idx}] '{field}' should be a list, got {type(doc[field]).__name__}")
    for field in OBJECT_FIELDS:
        if field in doc and not isinstance(doc[field], dict):
            errors.append(f"[idx={idx}] '{field}' should be an object, got {type(doc[field]).__name__}")

    # --- bounded strings ---
    for field, limit in STRING_LIMITS.items():
        value = doc.get(field)
        if isinstance(value, str) and len(value) > limit:
            errors.append(f"[idx={idx}] '{field}' has {len(value)} chars (max {limit})")

    if not doc.get("title"):
        warnings.append(f"[idx={idx}] document missing 'title'")

    return errors, warnings


def find_duplicate_ids(documents: List[Any]) -> List[str]:
    seen = set()
    duplicates: List[str] = []
    for doc in documents:
        doc_id = doc.get("id") if isinstance(doc, dict) else None
        if doc_id is None:
            continue
        if doc_id in seen and doc_id not in duplicates:
            duplicates.append(doc_id)
        seen.add(doc_id)
    return duplicates


def main(argv: list[str] | None = None) -> None:
    """Validate an index document export.

    Raises:
        SystemExit: With code 0 on success, 1 on validation failure
    """
    parser = argparse.ArgumentParser(description="Validate exported index documents.")
    parser.add_argument(
        "--path",
        type=str,
        required=True,
        help="Path to a JSON array or JSONL export of the collection",
    )
    args = parser.parse_args(argv)

    path = Path(args.path)

    try:
        documents = load_documents(path)
    except (OSError, ValueError) as e:
        print(f"FAILED TO LOAD FILE: {e}")
        raise SystemExit(1)

    all_errors: List[str] = []
    all_warnings: List[str] = []

    for idx, doc in enumerate(documents):
        errors, warnings = validate_document(doc, idx)
        all_errors.extend(errors)
        all_warnings.extend(warnings)

    for doc_id in find_duplicate_ids(documents):
        all_errors.append(f"duplicate id {doc_id!r}")

    if all_errors:
        print("VALIDATION FAILED:\n")
        for err in all_errors:
            print(err)
        print(f"\nTotal errors: {len(all_errors)}")
        if all_warnings:
            print(f"Total warnings: {len(all_warnings)}")
        raise SystemExit(1)

    print("VALIDATION PASSED")
    print(f"Total documents: {len(documents)}")
    if all_warnings:
        print("\nWarnings (non-fatal):")
        for w in all_warnings:
            print(w)
        print(f"\nTotal warnings: {len(all_warnings)}")

    raise SystemExit(0)


if __name__ == "__main__":
    main()
