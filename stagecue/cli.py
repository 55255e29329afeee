from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from .config import load_config
from .detection.fuzzy import load_fuzzy_table
from .logging_config import configure_logging
from .replay import SessionReplayer, read_records


def _cmd_serve(args) -> int:
    from .api import main as serve_main

    argv = ["--host", args.host, "--port", str(args.port)]
    if args.config:
        argv += ["--config", args.config]
    if args.state_path:
        argv += ["--state-path", args.state_path]
    serve_main(argv)
    return 0


def _cmd_replay(args) -> int:
    config = load_config(args.config)
    configure_logging(args.log_level or config.log_level, config.log_dir or None)

    fuzzy_table = load_fuzzy_table(config.fuzzy_match_path or None)
    replayer = SessionReplayer(config, fuzzy_table=fuzzy_table)
    batches = replayer.run(read_records(args.recording), drain_seconds=args.drain)

    for batch in batches:
        sys.stdout.write(json.dumps(batch.to_dict()) + "\n")

    if args.stats:
        sys.stderr.write(json.dumps(replayer.runtime.stats(), indent=2, default=str) + "\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="stagecue",
        description="Real-time trigger engine for a tabletop GM assistant",
    )
    ap.add_argument("--config", help="YAML/JSON config file")
    sub = ap.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--state-path", help="Persist pacing state here across restarts")
    serve.set_defaults(func=_cmd_serve)

    replay = sub.add_parser("replay", help="Replay a JSONL recording and print batches")
    replay.add_argument("recording", help="Path to the .jsonl recording")
    replay.add_argument("--drain", type=float, default=0.0,
                        help="Seconds to keep ticking after the last record")
    replay.add_argument("--stats", action="store_true", help="Print stats to stderr")
    replay.add_argument("--log-level", default=None)
    replay.set_defaults(func=_cmd_replay)

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
