"""Ask a question about an extracted paper.

Loads the paper's extracted content from the content store, builds the
query-specific prompt and, unless --dry-run is given, sends it to the model.

Usage:
    python scripts/ask.py --paper 2301.00001 --question "What does Figure 3 show?"
    python scripts/ask.py --paper 2301.00001 --question "Explain this" --excerpt "..." --dry-run
"""

import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from paperchat.data.models import Question
from paperchat.pipeline import create_pipeline

logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Ask a question about an extracted paper")
    parser.add_argument("--paper", type=str, required=True, help="Paper id in the content store")
    parser.add_argument("--question", type=str, required=True, help="Question to ask")
    parser.add_argument("--excerpt", type=str, default=None, help="Highlighted text the question is about")
    parser.add_argument(
        "--selection-locator", type=str, default=None,
        help="Locator of the highlighted text (e.g. 'Page 4', 'Table 2')",
    )
    parser.add_argument("--config", type=str, default=None, help="Path to config YAML file")
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Print the query profile and prompt without calling the model",
    )
    args = parser.parse_args()

    pipeline = create_pipeline(args.config)
    question = Question(
        raw_text=args.question,
        selected_excerpt=args.excerpt,
        selection_locator=args.selection_locator,
    )

    if args.dry_run:
        profile, ranked, prompt = pipeline.build_prompt(args.paper, question)
        print(f"Query type: {profile.primary_type.value}"
              f" (secondary: {profile.secondary_type.value if profile.secondary_type else '-'})")
        print(f"References: {', '.join(profile.specific_references) or '-'}")
        print(f"Generation: {profile.generation_params}")
        print(f"Units used: {len(ranked)}")
        for item in ranked:
            print(f"  {item.score:7.3f}  {item.unit.kind.value:<10} {item.unit.locator or item.unit.id}")
        print("\n" + "=" * 70 + "\n")
        print(prompt)
        return

    response = pipeline.answer(args.paper, question)
    print(json.dumps(response.to_dict(), indent=2))
    if not response.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
