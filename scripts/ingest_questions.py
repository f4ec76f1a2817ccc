import argparse
import asyncio
import os
import sys
from pathlib import Path

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from question_vector.config import settings
from question_vector.ingest import find_question_files, load_question_file
from question_vector.service import VectorService


async def main(root: Path, batch_size: int, recreate: bool) -> int:
    print("Initializing vector service...")
    service = VectorService.from_settings(settings)

    try:
        if recreate:
            print(f"Recreating index {service.schema.name}...")
            await service.schemas.recreate_index(service.schema)
        await service.startup()

        files = find_question_files(root)
        print(f"Found {len(files)} question files under {root}.")

        items = []
        for path in files:
            questions = load_question_file(path)
            print(f"  {path.name}: {len(questions)} questions")
            items.extend(questions)

        if not items:
            print("No questions to ingest.")
            return 0

        stored, failed = 0, []
        for i in range(0, len(items), batch_size):
            batch = items[i:i + batch_size]
            print(f"Embedding and storing {i}-{i + len(batch)}...")
            report = await service.index_batch(batch)
            stored += len(report.stored)
            failed.extend(report.failed)

        print(f"Stored {stored} of {len(items)} questions in {service.schema.name}.")
        if failed:
            print(f"Embedding failed for {len(failed)} questions: {', '.join(failed)}")
            return 1
        return 0
    finally:
        await service.shutdown()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Bulk ingest question bank JSON files")
    parser.add_argument("root", type=Path, help="Question bank directory")
    parser.add_argument("--batch-size", type=int, default=20, help="Questions per batch")
    parser.add_argument(
        "--recreate",
        action="store_true",
        help="Drop and recreate the index before ingesting",
    )
    args = parser.parse_args()

    sys.exit(asyncio.run(main(args.root, args.batch_size, args.recreate)))
