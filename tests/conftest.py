"""
Pytest fixtures for the orchestration loop.

The model and image collaborators are small fakes; sessions and assets use
the file-backed stores under tmp_path.
"""
import json

import pytest

from data_class import Asset, ChatTurn, GamePlan, Session, SessionStatus
from game_engine import GameEngine, Orchestrator
from storage import LocalAssetStore, LocalSessionStore
from tool_calls import ToolCallExecutor

SUMMARY_MODEL = "summary-model"
ASSET_BASE = "https://assets.test/game-assets"

PLAN = {
    "game_title": "Sky Courier",
    "game_concept": "Fly a tiny plane, dodge birds and collect stars.",
    "technical_stack": {"renderer": "2D Canvas API", "libraries": []},
    "core_features": ["Arrow-key flight", "Bird flocks", "Star pickups"],
    "asset_plan": ["plane.png", "bird.png"],
    "initial_task": "Set up the canvas, the plane and a requestAnimationFrame loop.",
    "chat_response": "Sky Courier is ready to build!",
}


class ScriptedModel:
    """
    Returns queued replies in order and records every call. Calls made with
    the summary model get `summary` instead, so summaries never consume the
    queue. A queued exception is raised instead of returned; a queued callable
    is called and its result used as the reply.
    """

    def __init__(self):
        self.replies = []
        self.calls = []
        self.summary = "Your plane now flies!"

    def queue(self, *replies):
        self.replies.extend(replies)

    def complete(self, messages, *, model=None):
        self.calls.append({"messages": messages, "model": model})
        if model == SUMMARY_MODEL:
            if isinstance(self.summary, Exception):
                raise self.summary
            return self.summary
        if not self.replies:
            raise AssertionError("ScriptedModel ran out of replies")
        reply = self.replies.pop(0)
        if callable(reply):
            reply = reply()
        if isinstance(reply, Exception):
            raise reply
        return reply

    @property
    def last_messages(self):
        non_summary = [c for c in self.calls if c["model"] != SUMMARY_MODEL]
        return non_summary[-1]["messages"]


class FakeImages:
    def __init__(self):
        self.failures = {}
        self.calls = []

    def generate(self, name, prompt):
        self.calls.append((name, prompt))
        if name in self.failures:
            raise self.failures[name]
        return b"\x89PNG fake " + name.encode()


def plan_reply(**overrides):
    return "Here is the plan:\n```json\n" + json.dumps({**PLAN, **overrides}) + "\n```"


def ops_reply(operations, thought="Building the core loop. Then more.", plan=None):
    return json.dumps({
        "thought": thought,
        "plan": plan if plan is not None else ["1. Write the HTML", "2. Write the JS", "3. Polish"],
        "operations": operations,
    })


def write_op(file_path, content):
    return {"tool_name": "write_file", "parameters": {"file_path": file_path, "content": content}}


def replace_op(file_path, start, end, content):
    return {
        "tool_name": "replace_lines",
        "parameters": {"file_path": file_path, "start_line": start, "end_line": end, "content": content},
    }


def image_op(name, prompt="a small pixel-art sprite"):
    return {"tool_name": "generate_image", "parameters": {"name": name, "prompt": prompt}}


@pytest.fixture
def model():
    return ScriptedModel()


@pytest.fixture
def images():
    return FakeImages()


@pytest.fixture
def store(tmp_path):
    return LocalSessionStore(tmp_path)


@pytest.fixture
def asset_store(tmp_path):
    return LocalAssetStore(tmp_path, ASSET_BASE)


@pytest.fixture
def executor(images, asset_store, model):
    return ToolCallExecutor(images, asset_store, model, summary_model=SUMMARY_MODEL, image_workers=2)


@pytest.fixture
def engine(store, executor, model):
    orchestrator = Orchestrator(model, model="orchestrator-model")
    return GameEngine(store, orchestrator, executor, model, planner_model="planner-model")


@pytest.fixture
def make_session(store):
    def _make(status=SessionStatus.CODING_COMPLETE, html="", css="", js="", assets=(), error_log=None,
              updated_at=None):
        session = Session(
            id="",
            plan=GamePlan.from_dict(PLAN),
            html_code=html,
            css_code=css,
            js_code=js,
            assets=list(assets),
            chat_history=[ChatTurn("user", "plane game"), ChatTurn("assistant", PLAN["chat_response"])],
            error_log=error_log,
            status=status,
            user_prompt="plane game",
            updated_at=updated_at,
        )
        return store.insert(session)

    return _make


@pytest.fixture
def ship_asset():
    return Asset(name="ship", url=f"{ASSET_BASE}/s1/ship.png")
