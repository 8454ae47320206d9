import argparse
import asyncio
import os
import sys
from pathlib import Path

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from knowledge_index.config import settings, allowed_extensions
from knowledge_index.container import build_container
from knowledge_index.core.errors import InvalidUploadError
from knowledge_index.core.logging import configure_logging
from knowledge_index.ingestion.models import EnqueueOutcome, IngestionJobState


async def main(directory: Path, scope_id: str, strategy: str, backend: str):
    configure_logging(settings.log_level)
    container = build_container(settings, backend=backend)

    if container.backend == "postgres":
        from knowledge_index.db import init_schema
        await init_schema()

    extensions = set(allowed_extensions(container.settings_provider.snapshot().upload))
    files = sorted(p for p in directory.rglob("*") if p.is_file() and p.suffix.lower() in extensions)
    print(f"Found {len(files)} files under {directory}.")
    if not files:
        return

    await container.workers.start()
    jobs = []
    try:
        for i, file_path in enumerate(files):
            relative = file_path.relative_to(directory).as_posix()
            print(f"Submitting ({i+1}/{len(files)}): {relative}")
            try:
                result = await container.ingestion.submit(
                    file_path.read_bytes(),
                    file_name=file_path.name,
                    scope_id=scope_id,
                    path=relative,
                    chunking_strategy=strategy or None,
                )
            except InvalidUploadError as e:
                print(f"  skipped: {e}")
                continue

            if result.outcome == EnqueueOutcome.QUEUE_FULL:
                # Let the workers catch up, then retry once.
                print("  queue full, waiting for workers...")
                await container.queue.join()
                result = await container.ingestion.submit(
                    file_path.read_bytes(),
                    file_name=file_path.name,
                    scope_id=scope_id,
                    path=relative,
                    chunking_strategy=strategy or None,
                )
            if result.job_id:
                jobs.append(result.job_id)

        print(f"Waiting for {len(jobs)} jobs...")
        await container.queue.join()
    finally:
        await container.workers.stop()

    states = {}
    for job_id in jobs:
        status = container.ingestion.get_job_status(job_id)
        state = status.state if status else IngestionJobState.FAILED
        states[state.value] = states.get(state.value, 0) + 1
        if status and status.error_message:
            print(f"  {status.document_id}: {status.error_message}")

    print("Done!", ", ".join(f"{k}: {v}" for k, v in sorted(states.items())))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Ingest every supported file in a directory.")
    parser.add_argument("directory", type=Path)
    parser.add_argument("--scope", required=True, help="Scope id to ingest into")
    parser.add_argument("--strategy", default="", help="Chunking strategy override")
    parser.add_argument("--backend", default=None, help="memory or postgres")
    args = parser.parse_args()

    asyncio.run(main(args.directory, args.scope, args.strategy, args.backend))
