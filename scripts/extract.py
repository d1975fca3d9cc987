"""Import extracted paper structure into the content store as an extraction job.

Reads a JSON export of an already-parsed paper (``{"metadata": {...},
"units": [...]}``), validates it, and publishes it to the content store,
reporting progress through the job pipeline the same way the service does.

Usage:
    python scripts/extract.py path/to/paper.json [--config configs/default.yaml]
"""

import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from paperchat.config import load_config, setup_logging
from paperchat.data.content_store import JsonContentStore
from paperchat.data.models import ContentUnit, PaperMetadata
from paperchat.jobs.pipeline import JobPipeline
from paperchat.jobs.workflows import JobRunner, run_extraction

logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Publish extracted paper content")
    parser.add_argument("source", type=str, help="JSON file with metadata and content units")
    parser.add_argument("--config", type=str, default=None, help="Path to config YAML file")
    args = parser.parse_args()

    config = load_config(args.config)
    setup_logging(config.logging)
    store = JsonContentStore(config.content_store)
    runner = JobRunner(JobPipeline(config.jobs))

    source = Path(args.source)
    raw = source.read_bytes()

    def parse(context):
        return json.loads(context["Upload"])

    def structure(context):
        data = context["Parse"]
        metadata = PaperMetadata.from_dict({"paper_id": source.stem, **data["metadata"]})
        units = [ContentUnit.from_dict(u) for u in data.get("units", [])]
        return str(store.save_paper(metadata, units))

    job = run_extraction(
        runner,
        source.stem,
        raw,
        {
            "Upload": lambda context: context["payload"],
            "Parse": parse,
            "StructureExtraction": structure,
        },
    )
    status = runner.wait(job.id)
    runner.shutdown()

    print(json.dumps(status.to_status(), indent=2))
    if status.error:
        sys.exit(1)


if __name__ == "__main__":
    main()
