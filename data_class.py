# data_class.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union
from urllib.parse import unquote, urlparse

from errors import GameEngineError


class Fragment(str, Enum):
    STRUCTURE = "structure"
    STYLE = "style"
    BEHAVIOR = "behavior"

    @property
    def column(self) -> str:
        """Name used for this fragment in stored rows and on the model wire."""
        return _COLUMNS[self]


_COLUMNS = {
    Fragment.STRUCTURE: "html_code",
    Fragment.STYLE: "css_code",
    Fragment.BEHAVIOR: "js_code",
}


class SessionStatus(str, Enum):
    INITIAL = "initial"
    PLANNING_COMPLETE = "planning_complete"
    ORCHESTRATING = "orchestrating"
    CODING_COMPLETE = "coding_complete"


@dataclass(frozen=True)
class ChatTurn:
    role: str  # "user" | "assistant"
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatTurn":
        return cls(role=str(data.get("role") or "user"), content=str(data.get("content") or ""))


@dataclass(frozen=True)
class GamePlan:
    title: str
    concept: str
    features: List[str] = field(default_factory=list)
    assets: List[str] = field(default_factory=list)
    next_step: str = ""
    technical_stack: Dict[str, Any] = field(default_factory=dict)
    chat_response: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "game_title": self.title,
            "game_concept": self.concept,
            "technical_stack": dict(self.technical_stack),
            "core_features": list(self.features),
            "asset_plan": list(self.assets),
            "initial_task": self.next_step,
            "chat_response": self.chat_response,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GamePlan":
        return cls(
            title=str(data.get("game_title") or "").strip(),
            concept=str(data.get("game_concept") or "").strip(),
            features=[str(x) for x in data.get("core_features") or []],
            assets=[str(x) for x in data.get("asset_plan") or []],
            next_step=str(data.get("initial_task") or "").strip(),
            technical_stack=dict(data.get("technical_stack") or {}),
            chat_response=str(data.get("chat_response") or "").strip(),
        )


@dataclass(frozen=True)
class Asset:
    name: str
    url: str

    @classmethod
    def from_url(cls, url: str) -> "Asset":
        # Stored objects live at {session_id}/{name}.png
        last = unquote(urlparse(url).path.rsplit("/", 1)[-1])
        name = last[:-4] if last.lower().endswith(".png") else last
        return cls(name=name, url=url)


@dataclass(frozen=True)
class Session:
    id: str
    plan: Optional[GamePlan] = None
    html_code: str = ""
    css_code: str = ""
    js_code: str = ""
    assets: List[Asset] = field(default_factory=list)
    chat_history: List[ChatTurn] = field(default_factory=list)
    error_log: Optional[str] = None
    status: SessionStatus = SessionStatus.INITIAL
    user_prompt: Optional[str] = None
    updated_at: Optional[str] = None  # ISO-8601, set by plan and cycle writes

    def fragment(self, which: Fragment) -> str:
        return getattr(self, which.column)

    def fragments(self) -> Dict[Fragment, str]:
        return {f: self.fragment(f) for f in Fragment}

    def asset_map(self) -> Dict[str, str]:
        return {a.name: a.url for a in self.assets}

    def with_changes(self, **changes: Any) -> "Session":
        return replace(self, **changes)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Session":
        plan = row.get("game_plan")
        try:
            status = SessionStatus(row.get("status") or SessionStatus.INITIAL.value)
        except ValueError:
            status = SessionStatus.INITIAL
        return cls(
            id=str(row["id"]),
            plan=GamePlan.from_dict(plan) if isinstance(plan, dict) else None,
            html_code=row.get("html_code") or "",
            css_code=row.get("css_code") or "",
            js_code=row.get("js_code") or "",
            assets=[Asset.from_url(u) for u in row.get("asset_urls") or []],
            chat_history=[ChatTurn.from_dict(t) for t in row.get("chat_history") or []],
            error_log=row.get("error_log"),
            status=status,
            user_prompt=row.get("user_prompt"),
            updated_at=row.get("updated_at"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "game_plan": self.plan.to_dict() if self.plan else None,
            "html_code": self.html_code,
            "css_code": self.css_code,
            "js_code": self.js_code,
            "asset_urls": [a.url for a in self.assets],
            "chat_history": [t.to_dict() for t in self.chat_history],
            "error_log": self.error_log,
            "status": self.status.value,
            "user_prompt": self.user_prompt,
            "updated_at": self.updated_at,
        }


# -------------------- Operations --------------------

@dataclass(frozen=True)
class WriteFragment:
    tool_name: ClassVar[str] = "write_file"
    target: Fragment
    content: str


@dataclass(frozen=True)
class ReplaceRange:
    tool_name: ClassVar[str] = "replace_lines"
    target: Fragment
    start_line: int
    end_line: int
    content: str


@dataclass(frozen=True)
class GenerateImage:
    tool_name: ClassVar[str] = "generate_image"
    name: str
    prompt: str


@dataclass(frozen=True)
class SkippedOperation:
    """An operation that could not be built (unknown kind or missing parameters)."""

    tool_name: str
    reason: str


Operation = Union[WriteFragment, ReplaceRange, GenerateImage, SkippedOperation]


@dataclass(frozen=True)
class OrchestrationPlan:
    thought: str
    steps: List[str]
    operations: List[Operation]
    chat_response: str


@dataclass(frozen=True)
class ExecutionResult:
    html_code: str
    css_code: str
    js_code: str
    assets: List[Asset]
    summary: List[str]
    chat_response: str


@dataclass(frozen=True)
class AssembledDocument:
    document: str
    diagnostics: List[str]

    @property
    def clean(self) -> bool:
        return not self.diagnostics


# -------------------- Outcomes --------------------

SUCCESS = "success"
RETRYABLE = "retryable"
FATAL = "fatal"


@dataclass(frozen=True)
class Outcome:
    kind: str
    data: Any = None
    category: Optional[str] = None
    message: Optional[str] = None
    status_code: int = 200
    hint: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind == SUCCESS

    @classmethod
    def success(cls, data: Any) -> "Outcome":
        return cls(kind=SUCCESS, data=data)

    @classmethod
    def from_error(cls, err: GameEngineError) -> "Outcome":
        return cls(
            kind=RETRYABLE if err.retryable else FATAL,
            category=err.category,
            message=err.message,
            status_code=err.status_code,
            hint=err.hint,
        )

    def error_payload(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "category": self.category,
            "hint": self.hint,
            "retryable": self.kind == RETRYABLE,
        }
