import json
import logging
import re
from typing import Any, Dict, List, Optional

from data_class import (
    Fragment,
    GamePlan,
    GenerateImage,
    Operation,
    OrchestrationPlan,
    ReplaceRange,
    SkippedOperation,
    WriteFragment,
)
from errors import ModelResponseError, UnknownTargetError

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```json\s*\n(.*?)\n\s*```", re.DOTALL | re.IGNORECASE)

# Lenient names the model uses for the three fragments.
TARGET_ALIASES: Dict[str, Fragment] = {
    "html": Fragment.STRUCTURE,
    "html_code": Fragment.STRUCTURE,
    "index.html": Fragment.STRUCTURE,
    "structure": Fragment.STRUCTURE,
    "markup": Fragment.STRUCTURE,
    "css": Fragment.STYLE,
    "css_code": Fragment.STYLE,
    "style.css": Fragment.STYLE,
    "styles.css": Fragment.STYLE,
    "style": Fragment.STYLE,
    "styles": Fragment.STYLE,
    "styling": Fragment.STYLE,
    "js": Fragment.BEHAVIOR,
    "js_code": Fragment.BEHAVIOR,
    "script.js": Fragment.BEHAVIOR,
    "game.js": Fragment.BEHAVIOR,
    "main.js": Fragment.BEHAVIOR,
    "script": Fragment.BEHAVIOR,
    "javascript": Fragment.BEHAVIOR,
    "behavior": Fragment.BEHAVIOR,
    "behaviour": Fragment.BEHAVIOR,
}

_PARAM_KEYS = ("parameters", "params", "arguments", "args")


def normalize_target(value: Any) -> Optional[Fragment]:
    if isinstance(value, Fragment):
        return value
    if not isinstance(value, str):
        return None
    return TARGET_ALIASES.get(value.strip().lower())


def extract_json_object(raw: str) -> Dict[str, Any]:
    """
    Pull the JSON object out of a model reply: a ```json fenced block if there
    is one, otherwise the whole reply.
    """
    match = _FENCED_JSON.search(raw or "")
    text = (match.group(1) if match else (raw or "")).strip()
    if not text.startswith("{"):
        logger.error("Model reply is not a JSON object: %s", text[:500])
        raise ModelResponseError(
            f"Failed to parse AI response as JSON: response does not start with a JSON object. "
            f"Response preview: {text[:200]}..."
        )
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.error("JSON parse error: %s; attempted to parse: %s", e, text[:500])
        raise ModelResponseError(
            f"Failed to parse AI response as JSON: {e}. Response preview: {text[:200]}..."
        ) from e
    if not isinstance(data, dict):
        raise ModelResponseError("Failed to parse AI response as JSON: top-level value is not an object.")
    return data


def ensure_plan_payload(data: Dict[str, Any]) -> GamePlan:
    """
    Validate the planner's JSON payload and build a GamePlan.
    """
    missing = [k for k in ("game_title", "game_concept") if not data.get(k)]
    if missing:
        raise ModelResponseError(f"Model JSON missing fields: {missing}")
    for key in ("core_features", "asset_plan"):
        if key in data and not isinstance(data[key], list):
            raise ModelResponseError(f"Model JSON field {key!r} must be a list")
    plan = GamePlan.from_dict(data)
    if not plan.chat_response:
        plan = GamePlan.from_dict({**data, "chat_response": f"Let's build {plan.title}! {plan.concept}"})
    return plan


def ensure_operations_payload(data: Dict[str, Any]) -> OrchestrationPlan:
    """
    Validate the orchestrator's JSON payload into typed operations.

    Shape problems and unmappable targets are fatal. Unknown tools and missing
    parameters become SkippedOperation entries the executor reports and skips.
    """
    operations = data.get("operations")
    if not isinstance(operations, list):
        raise ModelResponseError(
            'AI response missing required "operations" array. Response keys: ' + ", ".join(data.keys())
        )
    parsed = [parse_operation(op, i) for i, op in enumerate(operations)]
    thought = str(data.get("thought") or "").strip()
    steps = _plan_steps(data.get("plan"))
    return OrchestrationPlan(
        thought=thought,
        steps=steps,
        operations=parsed,
        chat_response=interim_chat_response(thought, steps),
    )


def parse_operation(raw: Any, index: int) -> Operation:
    if not isinstance(raw, dict):
        raise ModelResponseError(f"Operation {index} is not an object")
    tool = raw.get("tool_name") or raw.get("tool")
    params = next((raw[k] for k in _PARAM_KEYS if k in raw), None)
    if not tool or not isinstance(params, dict):
        raise ModelResponseError(f'Operation {index} is missing "tool_name" or "parameters" field')
    tool = str(tool).strip().lower()

    if tool in (WriteFragment.tool_name, ReplaceRange.tool_name):
        raw_target = params.get("file_path")
        if raw_target in (None, ""):
            return SkippedOperation(tool, "missing file_path")
        target = normalize_target(raw_target)
        if target is None:
            raise UnknownTargetError(raw_target, index)
        content = params.get("content")
        if not isinstance(content, str):
            return SkippedOperation(tool, f"missing content for {target.column}")
        if tool == WriteFragment.tool_name:
            return WriteFragment(target=target, content=content)
        start, end = coerce_line(params.get("start_line")), coerce_line(params.get("end_line"))
        if start is None or end is None:
            return SkippedOperation(tool, f"start_line and end_line must be integers for {target.column}")
        return ReplaceRange(target=target, start_line=start, end_line=end, content=content)

    if tool == GenerateImage.tool_name:
        name = str(params.get("name") or "").strip()
        if name.lower().endswith(".png"):
            name = name[:-4]
        prompt = str(params.get("prompt") or "").strip()
        if not name or not prompt:
            return SkippedOperation(tool, "missing name or prompt")
        # same name Asset.from_url recovers from the stored path
        return GenerateImage(name=safe_asset_name(name), prompt=prompt)

    return SkippedOperation(tool, "unknown tool")


def coerce_line(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and re.fullmatch(r"\s*-?\d+\s*", value):
        return int(value)
    return None


def interim_chat_response(thought: str, steps: List[str]) -> str:
    message = "Working on it! "
    if thought:
        message += thought.split(".")[0].strip() + ". "
    if steps:
        message += "Making these changes: " + ", ".join(steps[:2]) + "."
    return message.strip()


def _plan_steps(plan: Any) -> List[str]:
    if isinstance(plan, list):
        return [str(s).strip() for s in plan if str(s).strip()]
    if isinstance(plan, str):
        return [line.strip() for line in plan.splitlines() if line.strip()]
    return []


def safe_asset_name(name: str) -> str:
    text = re.sub(r"[^A-Za-z0-9_-]+", "-", name.strip())
    return text.strip("-") or "asset"


def split_lines(text: str) -> List[str]:
    """1-indexed line view of a fragment; an empty fragment has no lines."""
    return text.split("\n") if text else []
