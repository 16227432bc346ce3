#!/usr/bin/env python3
"""
Corpus Reload Utility
Repopulates a freshly built retrieval service from a JSON export of knowledge items.
"""

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from kb_retrieval.core.config import build_retrieval_service
from kb_retrieval.core.errors import ConfigurationError
from kb_retrieval.vector.types import KnowledgeItem

ITEM_FIELDS = set(KnowledgeItem.__dataclass_fields__)


def load_items(path: Path):
    """Read a JSON array of knowledge items; unknown keys are ignored."""
    with open(path, encoding="utf-8") as f:
        rows = json.load(f)
    if not isinstance(rows, list):
        raise ValueError(f"{path} must contain a JSON array of items")

    items = []
    for row in rows:
        data = {k: v for k, v in row.items() if k in ITEM_FIELDS}
        if isinstance(data.get("last_updated"), str):
            data["last_updated"] = datetime.fromisoformat(data["last_updated"])
        data.setdefault("category", "general")
        items.append(KnowledgeItem(**data))
    return items


def main(argv=None):
    parser = argparse.ArgumentParser(description="Bulk reload knowledge items into the retrieval index")
    parser.add_argument("corpus", type=Path, help="JSON file with an array of knowledge items")
    parser.add_argument("--query", help="Run one verification query after loading")
    parser.add_argument("--domain", default="general", help="Domain tag for the verification query")
    args = parser.parse_args(argv)

    try:
        items = load_items(args.corpus)
    except (OSError, ValueError, TypeError) as e:
        print(f"ERROR: Failed to read corpus: {e}")
        return 1

    try:
        service = build_retrieval_service()
    except ConfigurationError as e:
        print(f"ERROR: {e}")
        return 1

    print(f"Reloading {len(items)} knowledge items...")
    result = service.reload(items)
    print(f"✓ Loaded {result.processed_count} items, {result.failed_count} failed")
    for error in result.errors[:10]:
        print(f"  - {error['id']}: {error['error']}")

    if args.query:
        retrieved = service.retrieve(args.query, args.domain)
        print(f"✓ Verification query returned {len(retrieved.documents)} documents "
              f"(confidence {retrieved.confidence:.3f})")
        for doc in retrieved.documents:
            print(f"  {doc.score:.3f}  {doc.id}  {doc.title}")

    service.close()
    return 0 if result.success else 2


if __name__ == "__main__":
    sys.exit(main())
