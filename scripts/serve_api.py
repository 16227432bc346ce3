#!/usr/bin/env python3
"""
Runs the knowledge-base retrieval API under uvicorn.
"""

import argparse
import sys
from pathlib import Path

import uvicorn

sys.path.insert(0, str(Path(__file__).parent.parent))

from kb_retrieval.core.config import debug_enabled


def main():
    parser = argparse.ArgumentParser(description="Knowledge-base retrieval API server")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    args = parser.parse_args()

    uvicorn.run(
        "kb_retrieval.api.main:app",
        host=args.host,
        port=args.port,
        log_level="debug" if debug_enabled() else "info",
    )


if __name__ == "__main__":
    main()
