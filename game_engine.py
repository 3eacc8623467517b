# game_engine.py
"""
Orchestration loop: plan a game, then run cycles of
model call -> operation batch -> atomic session update.

Public entry points return an Outcome instead of raising, so callers choose
their own retry policy:

    engine = build_engine()
    engine.create_or_update_plan("Retro plane game, dodge birds, collect stars")
    engine.run_orchestration_cycle(session_id)                  # initial build
    engine.run_orchestration_cycle(session_id, "Add a score")   # next turn
    engine.report_error(session_id, "JS RUNTIME: player is not defined")
"""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from data_class import (
    AssembledDocument,
    ChatTurn,
    ExecutionResult,
    Fragment,
    OrchestrationPlan,
    Operation,
    Outcome,
    Session,
    SessionStatus,
)
from errors import GameEngineError, InvalidRequestError, SessionNotFoundError
from image_gen import OpenAIImageGenerator
from instructions import (
    SYSTEM_INSTRUCTIONS_ORCHESTRATOR,
    SYSTEM_INSTRUCTIONS_PLANNER,
    build_plan_message,
)
from openai_client import OpenAIChatModel, get_client
from sandbox import assemble, assemble_fragments, assemble_session
from session_state import SessionLocks, ensure_cycle_allowed, ensure_not_in_flight, transition
from settings import Settings, load_settings
from storage import SessionStore, build_stores
from tool_calls import LanguageModel, ToolCallExecutor, check_external_references
from utils import ensure_operations_payload, ensure_plan_payload, extract_json_object, split_lines

logger = logging.getLogger(__name__)

_OUTLINE_LINE = re.compile(r"<[a-zA-Z][\w-]*\b[^>]*\b(?:id|class)\s*=", re.I)

# An interim save older than this no longer blocks a new cycle.
DEFAULT_CYCLE_LEASE_SECONDS = 600.0

__all__ = ["GameEngine", "Orchestrator", "build_engine", "assemble", "assemble_fragments"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def html_outline(structure: str, limit: int = 200) -> List[str]:
    """Line-numbered list of structure lines that open an element with an id or class."""
    outline = []
    for number, line in enumerate(split_lines(structure), start=1):
        if _OUTLINE_LINE.search(line):
            outline.append(f"{number}: {line.strip()[:160]}")
            if len(outline) >= limit:
                break
    return outline


def error_turn(error_report: str, instruction: Optional[str] = None) -> str:
    text = f"Please fix this error in my game:\n{error_report}"
    if instruction:
        text += f"\n\nAfter that: {instruction}"
    return text


class Orchestrator:
    """
    Turns session state plus an instruction or error report into a validated
    list of operations.
    """

    def __init__(self, llm: LanguageModel, *, model: Optional[str] = None, include_outline: bool = True):
        self.llm = llm
        self.model = model
        self.include_outline = include_outline

    def build_context(
        self,
        session: Session,
        instruction: Optional[str],
        error_report: Optional[str],
    ) -> Dict[str, Any]:
        context: Dict[str, Any] = {
            "game_plan": session.plan.to_dict() if session.plan else None,
            "html_code": session.html_code,
            "css_code": session.css_code,
            "js_code": session.js_code,
            "line_counts": {f.column: len(split_lines(session.fragment(f))) for f in Fragment},
            "asset_urls": session.asset_map(),
            "error_log": error_report or session.error_log,
            "user_prompt": instruction,
        }
        if self.include_outline and session.html_code:
            context["html_outline"] = html_outline(session.html_code)
        return context

    def build_messages(
        self,
        session: Session,
        instruction: Optional[str],
        error_report: Optional[str],
    ) -> List[Dict[str, str]]:
        state = json.dumps(self.build_context(session, instruction, error_report), indent=2, ensure_ascii=False)
        system = f"{SYSTEM_INSTRUCTIONS_ORCHESTRATOR}\n## SESSION STATE\n{state}\n\nGenerate your response now."
        user = error_turn(error_report, instruction) if error_report else (instruction or "")
        return (
            [{"role": "system", "content": system}]
            + [t.to_dict() for t in session.chat_history]
            + [{"role": "user", "content": user}]
        )

    def plan_next(
        self,
        session: Session,
        instruction: Optional[str] = None,
        error_report: Optional[str] = None,
    ) -> OrchestrationPlan:
        logger.info("Orchestrating changes for session: %s", session.id)
        raw = self.llm.complete(self.build_messages(session, instruction, error_report), model=self.model)
        plan = ensure_operations_payload(extract_json_object(raw))
        logger.info("Validated operations: %d tool calls", len(plan.operations))
        logger.info("AI Thought: %s", plan.thought)
        return plan


class GameEngine:
    def __init__(
        self,
        store: SessionStore,
        orchestrator: Orchestrator,
        executor: ToolCallExecutor,
        llm: LanguageModel,
        *,
        planner_model: Optional[str] = None,
        locks: Optional[SessionLocks] = None,
        cycle_lease_seconds: float = DEFAULT_CYCLE_LEASE_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.executor = executor
        self.llm = llm
        self.planner_model = planner_model
        self.locks = locks or SessionLocks()
        self.cycle_lease_seconds = cycle_lease_seconds
        self.clock = clock

    # -------------------- Public API --------------------

    def create_or_update_plan(self, prompt: str, session_id: Optional[str] = None) -> Outcome:
        return self._outcome("create_or_update_plan", self._create_or_update_plan, prompt, session_id)

    def run_orchestration_cycle(
        self,
        session_id: str,
        instruction: Optional[str] = None,
        error_report: Optional[str] = None,
    ) -> Outcome:
        return self._outcome("run_orchestration_cycle", self._run_cycle, session_id, instruction, error_report)

    def report_error(self, session_id: str, error: str) -> Outcome:
        return self._outcome("report_error", self._report_error, session_id, error)

    def get_session(self, session_id: str) -> Outcome:
        return self._outcome("get_session", lambda sid: self._load(sid).to_row(), session_id)

    def preview(self, session_id: str) -> Outcome:
        return self._outcome("preview", lambda sid: assemble_session(self._load(sid)), session_id)

    @staticmethod
    def assemble(fragments: Dict[Fragment, str]) -> AssembledDocument:
        return assemble_fragments(fragments)

    # -------------------- Steps --------------------

    def _create_or_update_plan(self, prompt: str, session_id: Optional[str]) -> Dict[str, Any]:
        prompt = (prompt or "").strip()
        if not prompt:
            raise InvalidRequestError("Missing prompt")

        if session_id:
            with self.locks.hold(session_id):
                existing = self._load(session_id)
                # fail before spending a model call on an illegal re-plan
                transition(existing, SessionStatus.PLANNING_COMPLETE)
                plan = self._generate_plan(prompt)
                session = transition(
                    existing.with_changes(
                        plan=plan,
                        user_prompt=prompt,
                        chat_history=[ChatTurn("user", prompt), ChatTurn("assistant", plan.chat_response)],
                        updated_at=self._stamp(),
                    ),
                    SessionStatus.PLANNING_COMPLETE,
                )
                self.store.update(session, expected_status=existing.status)
        else:
            plan = self._generate_plan(prompt)
            draft = Session(
                id="",
                plan=plan,
                user_prompt=prompt,
                chat_history=[ChatTurn("user", prompt), ChatTurn("assistant", plan.chat_response)],
                updated_at=self._stamp(),
            )
            session = self.store.insert(transition(draft, SessionStatus.PLANNING_COMPLETE))

        logger.info("Session created/updated: %s (%s)", session.id, plan.title)
        return {
            "session_id": session.id,
            "game_plan": plan.to_dict(),
            "chat_response": plan.chat_response,
            "status": session.status.value,
        }

    def _generate_plan(self, prompt: str):
        messages = [
            {"role": "system", "content": SYSTEM_INSTRUCTIONS_PLANNER},
            {"role": "user", "content": build_plan_message(prompt)},
        ]
        raw = self.llm.complete(messages, model=self.planner_model)
        return ensure_plan_payload(extract_json_object(raw))

    def _run_cycle(
        self,
        session_id: str,
        instruction: Optional[str],
        error_report: Optional[str],
    ) -> Dict[str, Any]:
        instruction = (instruction or "").strip() or None
        error_report = (error_report or "").strip() or None

        with self.locks.hold(session_id):
            session = self._load(session_id)
            ensure_cycle_allowed(session)
            ensure_not_in_flight(session, self.clock(), self.cycle_lease_seconds)
            recovering = session.status is SessionStatus.ORCHESTRATING
            transition(session, SessionStatus.ORCHESTRATING, recovering=recovering)

            if instruction is None and error_report is None:
                if session.status is SessionStatus.PLANNING_COMPLETE and session.plan and session.plan.next_step:
                    instruction = session.plan.next_step
                else:
                    raise InvalidRequestError("Provide an instruction or an error report")

            plan = self.orchestrator.plan_next(session, instruction, error_report)
            check_external_references(session, plan.operations)

            user_text = error_turn(error_report, instruction) if error_report else instruction
            interim = session.with_changes(
                chat_history=[
                    *session.chat_history,
                    ChatTurn("user", user_text),
                    ChatTurn("assistant", plan.chat_response),
                ],
                error_log=error_report or session.error_log,
                updated_at=self._stamp(),
            )
            interim = transition(interim, SessionStatus.ORCHESTRATING, recovering=recovering)
            self.store.update(interim, expected_status=session.status)

            committed, result = self._execute_tool_calls(interim, plan.operations)

        return {
            "session_id": committed.id,
            "status": committed.status.value,
            "interim_response": plan.chat_response,
            "chat_response": result.chat_response,
            "thought": plan.thought,
            "plan": plan.steps,
            "summary": result.summary,
        }

    def _execute_tool_calls(self, session: Session, operations: List[Operation]) -> tuple[Session, ExecutionResult]:
        result = self.executor.execute(session, operations)
        committed = transition(
            session.with_changes(
                html_code=result.html_code,
                css_code=result.css_code,
                js_code=result.js_code,
                assets=result.assets,
                chat_history=[*session.chat_history, ChatTurn("assistant", result.chat_response)],
                error_log=None,  # the report described code that has now been replaced
                updated_at=self._stamp(),
            ),
            SessionStatus.CODING_COMPLETE,
        )
        self.store.update(committed, expected_status=SessionStatus.ORCHESTRATING)
        logger.info("Tool calls executed successfully for session %s", session.id)
        return committed, result

    def _report_error(self, session_id: str, error: str) -> Dict[str, Any]:
        error = (error or "").strip()
        if not error:
            raise InvalidRequestError("Missing error")
        with self.locks.hold(session_id):
            session = self._load(session_id)
            self.store.update(session.with_changes(error_log=error))
        logger.info("Recorded error for session %s: %s", session_id, error[:200])
        return {"session_id": session_id, "error_log": error}

    def _stamp(self) -> str:
        return self.clock().isoformat()

    def _load(self, session_id: str) -> Session:
        if not session_id:
            raise InvalidRequestError("Missing required field: sessionId")
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _outcome(self, name: str, fn, *args) -> Outcome:
        try:
            return Outcome.success(fn(*args))
        except GameEngineError as e:
            logger.error("%s failed (%s, %d): %s", name, e.category, e.status_code, e.message)
            return Outcome.from_error(e)


def build_engine(settings: Optional[Settings] = None) -> GameEngine:
    """Wire the engine to OpenAI and the configured storage backend."""
    settings = settings or load_settings()
    client = get_client(settings)
    llm = OpenAIChatModel(client, settings.model)
    store, assets = build_stores(settings)
    images = OpenAIImageGenerator(
        client,
        model=settings.image_model,
        size=settings.image_size,
        timeout=settings.image_timeout,
    )
    executor = ToolCallExecutor(
        images,
        assets,
        llm,
        summary_model=settings.summary_model,
        image_workers=settings.image_workers,
    )
    orchestrator = Orchestrator(llm, model=settings.model, include_outline=settings.include_html_outline)
    return GameEngine(
        store,
        orchestrator,
        executor,
        llm,
        planner_model=settings.planner_model,
        cycle_lease_seconds=settings.cycle_lease_seconds,
    )
