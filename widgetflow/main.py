from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from widgetflow.config import PipelineConfig, build_adapter
from widgetflow.errors import ConfigError
from widgetflow.fallback import iter_events
from widgetflow.models import DataSourceMode
from widgetflow.utils.io import write_json, write_text
from widgetflow.utils.logs import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Turn a question into a validated widget")
    parser.add_argument("--mode", choices=["mock", "live"], default=None)
    parser.add_argument("--provider", choices=["openai", "gemini"], default=None)
    parser.add_argument("--query", required=True)
    parser.add_argument(
        "--data-source",
        choices=[mode.value for mode in DataSourceMode],
        default=None,
        help="Force a data source instead of the planner's choice",
    )
    parser.add_argument("--model", default=None)
    parser.add_argument("--max-output-tokens", type=int, default=None)
    parser.add_argument("--temperature", type=float, default=None)
    parser.add_argument("--max-retries", type=int, default=None)
    parser.add_argument("--events", action="store_true", help="Print every event as a JSON line")
    parser.add_argument("--output", default=None, help="Directory to save the run into")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def _save_run(output_dir: Path, query: str, events: List[Dict[str, Any]], response: Dict[str, Any]) -> Path:
    run_id = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    run_dir = output_dir / run_id
    write_text(run_dir / "query.txt", query + "\n")
    write_text(run_dir / "events.jsonl", "".join(json.dumps(event) + "\n" for event in events))
    write_json(run_dir / "response.json", response)
    return run_dir


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = PipelineConfig.from_env(base_dir=Path.cwd()).with_overrides(
            mode=args.mode,
            provider=args.provider,
            model=args.model,
            max_output_tokens=args.max_output_tokens,
            temperature=args.temperature,
            max_retries=args.max_retries,
        )
        adapter = build_adapter(config)
    except ConfigError as exc:
        logger.error("%s", exc, extra={"step": "config"})
        return 2

    events: List[Dict[str, Any]] = []
    response: Dict[str, Any] = {}
    for event in iter_events(
        args.query,
        model=args.model,
        data_source_override=args.data_source,
        config=config,
        adapter=adapter,
    ):
        payload = event.to_dict()
        events.append(payload)
        if args.events:
            print(json.dumps(payload))
        if event.is_terminal:
            response = event.response or {}

    print(json.dumps(response, indent=2, ensure_ascii=False))
    if args.output:
        run_dir = _save_run(Path(args.output), args.query, events, response)
        logger.info("Run saved to %s", run_dir, extra={"step": "output"})
    return 0


if __name__ == "__main__":
    sys.exit(main())
