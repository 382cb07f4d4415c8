"""
CLI Entrypoint for the Issue Summary Pipeline

Summarizes one journal issue from a JSON file and outputs the result as JSON,
or as a server-sent event stream with --stream.
"""

import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

# Load .env file before reading configuration
load_dotenv()

from issue_summary.backends.llm import build_llm_client
from issue_summary.config import PipelineConfig
from issue_summary.errors import IssueSummaryError
from issue_summary.pipeline import IssueSummaryPipeline
from issue_summary.sources import load_issue_file
from issue_summary.synthesize import default_synthesis_prompt


# Parse command-line arguments
def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Issue Summary - Extract, index and synthesize the papers of one journal issue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--input", "-i",
        type=str,
        required=True,
        help="JSON file with journal_name, issue_info and documents",
    )

    parser.add_argument(
        "--prompt", "-p",
        type=str,
        default=None,
        help="Custom synthesis instruction (replaces the default one)",
    )

    parser.add_argument(
        "--field", "-f",
        type=str,
        default=None,
        help="Field of expertise to frame extraction and synthesis",
    )

    parser.add_argument(
        "--stream",
        action="store_true",
        help="Print server-sent events as the pipeline progresses",
    )

    parser.add_argument(
        "--show-prompt",
        action="store_true",
        help="Print the default synthesis prompt and exit (no model calls)",
    )

    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Output file path (default: print to stdout)",
    )

    return parser.parse_args(argv)


def configure_logging() -> None:
    # Suppress noisy httpx logs
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# Main entry point of the entire program
async def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging()

    try:
        journal_name, issue_info, documents = load_issue_file(args.input)
    except IssueSummaryError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    if args.show_prompt:
        print(default_synthesis_prompt(journal_name, issue_info.describe(), len(documents), args.field))
        return 0

    try:
        config = PipelineConfig.from_env()
        pipeline = IssueSummaryPipeline(build_llm_client(config), config)
    except IssueSummaryError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    if args.stream:
        exit_code = 0
        async for event in pipeline.stream(
            documents, journal_name, issue_info,
            custom_prompt=args.prompt, field_context=args.field,
        ):
            sys.stdout.write(event.to_sse())
            sys.stdout.flush()
            if event.name == "error":
                exit_code = 1
        return exit_code

    try:
        result = await pipeline.run(
            documents, journal_name, issue_info,
            custom_prompt=args.prompt, field_context=args.field,
        )
    except IssueSummaryError as e:
        print(json.dumps(e.to_payload(), ensure_ascii=False), file=sys.stderr)
        return 1

    # Format output as JSON
    output = json.dumps(result.to_dict(), indent=2, ensure_ascii=False)

    if args.output: # Write to file
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(output)
        print(f"Results saved to {args.output}", file=sys.stderr)
    else: # Print to stdout
        print(output)

    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
