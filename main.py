#!/usr/bin/env python3
"""
Command-line runner for AIGameEngine

Flow:
    main.py --prompt "...game idea..."
        -> plan the game (creates a session, prints its id)
        -> optional: --build runs the initial coding cycle from the plan
    main.py --session ID --instruction "add a boss fight"
        -> one orchestration cycle (model call -> operation batch -> save)
    main.py --session ID --error "JS RUNTIME: player is not defined"
        -> debugging cycle driven by the error report
    main.py --session ID --preview out.html
        -> writes the assembled sandbox document

Usage examples:
  python main.py --prompt "Cozy farming rogue-lite on a floating island" --build
  python main.py --prompt-file prompt.txt
  python main.py --session 3f2c... --instruction "Make the enemies faster" --preview game.html
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from data_class import Outcome
from game_engine import GameEngine, build_engine
from settings import configure_logging, load_settings

# ---------- Logging ----------

def log(msg: str) -> None:
    print(f"[main] {msg}", flush=True)

def die(msg: str, code: int = 1) -> None:
    log(f"ERROR: {msg}")
    sys.exit(code)

def check(outcome: Outcome, step: str) -> dict:
    if outcome.ok:
        return outcome.data
    hint = f" ({outcome.hint})" if outcome.hint else ""
    die(f"{step} failed [{outcome.category}, {outcome.status_code}]: {outcome.message}{hint}",
        code=75 if outcome.kind == "retryable" else 1)
    return {}  # unreachable

# ---------- Steps ----------

def run_plan_step(engine: GameEngine, prompt: str, session_id: Optional[str]) -> str:
    log("Planning game...")
    data = check(engine.create_or_update_plan(prompt, session_id), "Planning")
    plan = data["game_plan"]
    log(f"Session {data['session_id']}: {plan['game_title']}")
    log(data["chat_response"])
    return data["session_id"]

def run_cycle_step(engine: GameEngine, session_id: str, instruction: Optional[str], error: Optional[str]) -> None:
    log("Running orchestration cycle...")
    data = check(engine.run_orchestration_cycle(session_id, instruction, error), "Cycle")
    log(data["interim_response"])
    for line in data["summary"]:
        log(f"  - {line}")
    log(data["chat_response"])

def run_preview_step(engine: GameEngine, session_id: str, out_path: Path, print_diagnostics: bool) -> None:
    doc = check(engine.preview(session_id), "Preview")
    out_path.write_text(doc.document, encoding="utf-8")
    log(f"Preview written to {out_path.resolve()}")
    if doc.diagnostics:
        log(f"{len(doc.diagnostics)} structural diagnostic(s)")
        if print_diagnostics:
            for d in doc.diagnostics:
                log(f"  {d}")

# ---------- CLI ----------

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="AIGameEngine orchestration runner")
    g = parser.add_mutually_exclusive_group()
    g.add_argument("--prompt", type=str, help="Game idea; creates (or re-plans) a session")
    g.add_argument("--prompt-file", type=str, help="Path to a text file containing the game idea")

    parser.add_argument("--session", type=str, help="Existing session id")
    parser.add_argument("--build", action="store_true", help="After planning, run the initial coding cycle")
    c = parser.add_mutually_exclusive_group()
    c.add_argument("--instruction", type=str, help="Instruction for one orchestration cycle")
    c.add_argument("--error", type=str, help="Runtime error report to fix in one cycle")
    parser.add_argument("--preview", type=str, help="Write the assembled sandbox document to this path")
    parser.add_argument("--print-diagnostics", action="store_true", help="List structural diagnostics")
    parser.add_argument("--show-session", action="store_true", help="Print the stored session as JSON")
    return parser.parse_args(argv)

# ---------- Main ----------

def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    settings = load_settings()
    configure_logging(settings.log_level)

    prompt = None
    if args.prompt is not None:
        prompt = args.prompt.strip()
    elif args.prompt_file is not None:
        prompt_path = Path(args.prompt_file)
        if not prompt_path.exists():
            die(f"Prompt file not found: {prompt_path}")
        prompt = prompt_path.read_text(encoding="utf-8").strip()

    if prompt is None and not args.session:
        die("Provide --prompt/--prompt-file or --session")
    if prompt == "":
        die("Empty prompt provided")

    engine = build_engine(settings)
    session_id = args.session

    if prompt:
        session_id = run_plan_step(engine, prompt, session_id)
        if args.build:
            run_cycle_step(engine, session_id, None, None)

    if args.instruction or args.error:
        run_cycle_step(engine, session_id, args.instruction, args.error)

    if args.preview:
        run_preview_step(engine, session_id, Path(args.preview), args.print_diagnostics)

    if args.show_session:
        data = check(engine.get_session(session_id), "Load")
        log(json.dumps(data, indent=2, ensure_ascii=False))

    log("Done.")

if __name__ == "__main__":
    main()
