#!/usr/bin/env python3
"""
Build a relationship map from a JSON dump of normalized messages.

The input file holds either a list of message objects or an object with a
"messages" list. The map is printed (or written) as JSON.

Usage:
    python scripts/build_relationship_map.py --messages FILE --user-email ADDR
        [--no-commitments] [--deadline SECONDS] [--output FILE]

Options:
    --messages FILE      JSON file of messages (required)
    --user-email ADDR    The user's own address (required)
    --no-commitments     Skip commitment extraction (no oracle calls)
    --deadline SECONDS   Stop starting new contact batches after this long
    --output FILE        Write JSON here instead of stdout
    --alerts             Emit alerts instead of the full map
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from api.services.alerts import build_alerts
from api.services.oracle import AnthropicOracle, create_oracle
from api.services.relationship_extractor import RelationshipExtractor
from config.extraction_config import ExtractionConfig
from config.settings import settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s'
)
logger = logging.getLogger(__name__)


def load_messages(path: Path) -> list[dict]:
    """
    Load message records from a JSON file.

    Raises:
        ValueError: If the file does not hold a list of messages
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("messages", [])
    if not isinstance(data, list):
        raise ValueError(f"{path} does not contain a list of messages")
    return data


async def build_map(
    messages: list[dict],
    user_email: str,
    extract_commitments: bool = True,
    deadline: Optional[float] = None,
    alerts_only: bool = False,
) -> dict:
    """
    Run one extraction and return the JSON-ready result.

    The oracle is created here and closed when the run finishes.
    """
    config = ExtractionConfig.from_settings(extract_commitments=extract_commitments)
    oracle = create_oracle() if extract_commitments else None
    if isinstance(oracle, AnthropicOracle) and not settings.anthropic_api_key.strip():
        logger.warning("ANTHROPIC_API_KEY not set; skipping commitment extraction")
        await oracle.aclose()
        oracle = None

    try:
        extractor = RelationshipExtractor(oracle=oracle, config=config)
        relationship_map = await extractor.extract_relationships(
            messages,
            user_email,
            deadline_seconds=deadline,
        )
    finally:
        if oracle is not None:
            await oracle.aclose()

    if alerts_only:
        return {"alerts": [a.to_dict() for a in build_alerts(relationship_map)]}
    return relationship_map.to_dict()


def main():
    parser = argparse.ArgumentParser(description="Build a relationship map from messages")
    parser.add_argument("--messages", required=True, type=Path, help="JSON file of messages")
    parser.add_argument("--user-email", required=True, help="The user's own email address")
    parser.add_argument("--no-commitments", action="store_true", help="Skip commitment extraction")
    parser.add_argument("--deadline", type=float, default=None, help="Overall deadline in seconds")
    parser.add_argument("--output", type=Path, default=None, help="Write JSON to this file")
    parser.add_argument("--alerts", action="store_true", help="Emit alerts instead of the map")
    args = parser.parse_args()

    try:
        messages = load_messages(args.messages)
    except (OSError, ValueError) as e:
        logger.error(f"Could not read messages: {e}")
        sys.exit(1)

    logger.info(f"Loaded {len(messages)} messages from {args.messages}")

    result = asyncio.run(build_map(
        messages,
        args.user_email,
        extract_commitments=not args.no_commitments,
        deadline=args.deadline,
        alerts_only=args.alerts,
    ))

    output = json.dumps(result, indent=2)
    if args.output:
        args.output.write_text(output, encoding="utf-8")
        logger.info(f"Wrote results to {args.output}")
    else:
        print(output)


if __name__ == "__main__":
    main()
