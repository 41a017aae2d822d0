#!/usr/bin/env python3
"""
Reindex Notes Script

Reconciliation sweep between the notes table and the vector index:
re-embeds every completed, live note that has no vector record (or all
of them with --all) and upserts it. Safe to re-run: upserts are keyed by
note id.

Usage:
    Requires the database and the AI backend to be reachable:
    $ python scripts/reindex_notes.py
    $ python scripts/reindex_notes.py --all
"""

import argparse
import asyncio
import os
import sys

# Required for direct script execution without package installation
sys.path.append(os.path.join(os.path.dirname(__file__), "../src"))

from cortex.core.config import settings
from cortex.core.database import build_engine, build_session_factory
from cortex.core.exceptions import ServiceUnavailableError
from cortex.core.logging import setup_logging
from cortex.repositories.notes import NoteRepository
from cortex.services.ai import create_ai_client
from cortex.services.reindex import NoteReindexer
from cortex.services.vector_index import PgVectorIndex


async def main(reindex_all: bool) -> int:
    """
    Run the sweep.

    Returns:
        Process exit code (1 if the AI backend is offline or any note failed).
    """
    engine = build_engine(settings.DATABASE_URL)
    session_factory = build_session_factory(engine)
    ai = create_ai_client(settings)
    reindexer = NoteReindexer(
        session_factory,
        NoteRepository(),
        ai,
        PgVectorIndex(session_factory),
        embed_char_limit=settings.EMBED_CHAR_LIMIT,
    )

    try:
        print(f"ℹ Reindexing {'all' if reindex_all else 'missing'} note vectors...")
        stats = await reindexer.run(reindex_all)
    except ServiceUnavailableError:
        print("✗ AI backend offline, nothing reindexed")
        return 1
    finally:
        await ai.aclose()
        await engine.dispose()

    print(f"ℹ {stats.total} completed notes")
    print(f"✓ indexed={stats.indexed} skipped={stats.skipped} failed={stats.failed}")
    if stats.failed:
        print("⚠ Some notes failed, see the log above")
    return 1 if stats.failed else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Rebuild missing note embeddings")
    parser.add_argument(
        "--all",
        action="store_true",
        help="Re-embed every completed note, not only those missing a vector",
    )
    args = parser.parse_args()
    setup_logging("WARNING")  # Progress goes to stdout; only problems are logged
    sys.exit(asyncio.run(main(args.all)))
