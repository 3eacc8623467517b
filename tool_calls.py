# tool_calls.py
"""
Applies one batch of model operations to a session's fragments.

Order is fixed: validate the batch, generate images, substitute image names
in the existing code, apply code operations in list order, then substitute
again so code written in this batch also picks up the URLs.
"""
from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple

from data_class import (
    Asset,
    ExecutionResult,
    Fragment,
    GenerateImage,
    Operation,
    ReplaceRange,
    Session,
    SkippedOperation,
    WriteFragment,
)
from errors import ExternalReferenceError, GameEngineError
from instructions import SYSTEM_INSTRUCTIONS_SUMMARIZER, build_summary_message
from sandbox import is_balanced, tag_balance
from storage import AssetStore
from utils import safe_asset_name, split_lines

logger = logging.getLogger(__name__)

FALLBACK_CHAT_RESPONSE = "I've updated your game with the requested changes."

_REFERENCE = re.compile(r"""(?<![\w.-])(?:src|href)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>"']+))""", re.I)
_INLINE_PREFIXES = ("http://", "https://", "//", "data:", "blob:", "#", "javascript:", "mailto:")


class ImageGenerator(Protocol):
    def generate(self, name: str, prompt: str) -> bytes: ...


class LanguageModel(Protocol):
    def complete(self, messages: List[Dict[str, str]], *, model: Optional[str] = None) -> str: ...


# -------------------- Line edits --------------------

def replace_lines(code: str, start: int, end: int, new_content: str) -> Tuple[str, Optional[str]]:
    """
    Replace lines start..end (1-indexed, inclusive) of `code`.
    Returns (result, error); on error the code comes back unchanged.
    """
    lines = split_lines(code)
    total = len(lines)
    if start < 1 or end < 1:
        return code, f"Invalid line numbers: start={start}, end={end}. Line numbers must be >= 1."
    if start > total or end > total:
        return code, f"Line numbers out of range: start={start}, end={end}, but file only has {total} lines."
    if start > end:
        return code, f"Invalid range: start ({start}) is greater than end ({end})."
    lines[start - 1:end] = new_content.split("\n")
    return "\n".join(lines), None


# -------------------- External references --------------------

def _is_inline_reference(value: str) -> bool:
    low = value.lower()
    return not value or low.startswith(_INLINE_PREFIXES) or "{{" in value or "${" in value


def _asset_stem(value: str) -> str:
    stem = value[:-4] if value.lower().endswith(".png") else value
    return safe_asset_name(stem)


def external_references(markup: str, allowed_names: Iterable[str] = ()) -> List[str]:
    """src/href values in `markup` that point at local files."""
    names = set(allowed_names)
    allowed: Set[str] = set()
    for name in names:
        allowed.update({name, f"{name}.png"})
    found = []
    for match in _REFERENCE.finditer(markup or ""):
        value = next(g for g in match.groups() if g is not None).strip()
        if _is_inline_reference(value) or value in allowed or _asset_stem(value) in names:
            continue
        if value not in found:
            found.append(value)
    return found


def check_external_references(session: Session, operations: List[Operation]) -> None:
    """
    Reject the batch if any structure write introduces a local file reference.
    Names of images requested in this batch or already generated are allowed,
    since substitution turns them into URLs.
    """
    allowed = [a.name for a in session.assets]
    allowed += [op.name for op in operations if isinstance(op, GenerateImage)]
    existing = set(external_references(session.html_code, allowed))
    introduced: List[str] = []
    for op in operations:
        if isinstance(op, (WriteFragment, ReplaceRange)) and op.target is Fragment.STRUCTURE:
            for ref in external_references(op.content, allowed):
                if ref not in existing and ref not in introduced:
                    introduced.append(ref)
    if introduced:
        raise ExternalReferenceError(introduced)


# -------------------- Placeholders --------------------

def substitute_placeholders(fragments: Dict[Fragment, str], urls: Dict[str, str]) -> Dict[Fragment, str]:
    """
    Replace generated image names with their URLs.

    'name', "name.png" and {{name}} become a quoted URL in structure and
    behavior code and url('...') in style code. A name already inside
    url(...) keeps a single url() around it.
    """
    out = dict(fragments)
    for name, url in urls.items():
        n = re.escape(name)
        quoted = re.compile(rf"""(["']){n}(?:\.png)?\1""")
        curly = re.compile(rf"\{{\{{\s*{n}(?:\.png)?\s*\}}\}}")
        css_url = re.compile(rf"""url\(\s*(["']?)(?:\{{\{{\s*{n}(?:\.png)?\s*\}}\}}|{n}(?:\.png)?)\1\s*\)""")
        as_url = f"url('{url}')"

        for target in (Fragment.STRUCTURE, Fragment.BEHAVIOR):
            code = curly.sub(lambda _m: url, out.get(target, ""))
            out[target] = quoted.sub(lambda _m: f"'{url}'", code)

        css = css_url.sub(lambda _m: as_url, out.get(Fragment.STYLE, ""))
        css = curly.sub(lambda _m: as_url, css)
        out[Fragment.STYLE] = quoted.sub(lambda _m: as_url, css)
    return out


# -------------------- Summary --------------------

def summarize_changes(llm: LanguageModel, actions: List[str], model: Optional[str] = None) -> str:
    messages = [
        {"role": "system", "content": SYSTEM_INSTRUCTIONS_SUMMARIZER},
        {"role": "user", "content": build_summary_message(actions)},
    ]
    try:
        text = llm.complete(messages, model=model)
    except GameEngineError as e:
        logger.error("Error generating summary: %s", e.message)
        return FALLBACK_CHAT_RESPONSE
    return text.strip() or FALLBACK_CHAT_RESPONSE


# -------------------- Executor --------------------

class ToolCallExecutor:
    def __init__(
        self,
        images: ImageGenerator,
        assets: AssetStore,
        llm: LanguageModel,
        *,
        summary_model: Optional[str] = None,
        image_workers: int = 4,
    ):
        self.images = images
        self.assets = assets
        self.llm = llm
        self.summary_model = summary_model
        self.image_workers = max(1, image_workers)

    def execute(self, session: Session, operations: List[Operation]) -> ExecutionResult:
        """
        Run one batch against `session` and return the new fragments, assets and
        change summary. Nothing is persisted here; a FatalBatchError means the
        batch must be dropped as a whole.
        """
        logger.info("Executing %d tool calls for session %s", len(operations), session.id)
        check_external_references(session, operations)

        summary: List[str] = []
        fragments = session.fragments()
        batch_start_structure = fragments[Fragment.STRUCTURE]
        assets = list(session.assets)

        # Stage 1: images
        generated = self._run_image_stage(session.id, [op for op in operations if isinstance(op, GenerateImage)], summary)
        known = {a.url for a in assets}
        for name, url in generated.items():
            if url not in known:
                assets.append(Asset(name=name, url=url))
                known.add(url)

        # Stage 2: names already in the code
        if generated:
            fragments = substitute_placeholders(fragments, generated)

        # Stage 3: code, strictly in order
        for op in operations:
            if isinstance(op, GenerateImage):
                continue
            if isinstance(op, SkippedOperation):
                line = (
                    f"Skipped unknown tool: {op.tool_name}"
                    if op.reason == "unknown tool"
                    else f"Skipped {op.tool_name}: {op.reason}"
                )
                logger.warning(line)
                summary.append(line)
            elif isinstance(op, WriteFragment):
                fragments[op.target] = op.content
                summary.append(f"Updated {op.target.column}.")
            elif isinstance(op, ReplaceRange):
                self._apply_replace(op, fragments, batch_start_structure, summary)
            else:
                summary.append(f"Skipped unknown tool: {getattr(op, 'tool_name', type(op).__name__)}")

        if generated:
            fragments = substitute_placeholders(fragments, generated)
            summary.append(f"Replaced {len(generated)} image placeholders with generated URLs.")

        for line in summary:
            logger.info("  %s", line)

        chat_response = summarize_changes(self.llm, summary, self.summary_model)
        return ExecutionResult(
            html_code=fragments[Fragment.STRUCTURE],
            css_code=fragments[Fragment.STYLE],
            js_code=fragments[Fragment.BEHAVIOR],
            assets=assets,
            summary=summary,
            chat_response=chat_response,
        )

    def _apply_replace(
        self,
        op: ReplaceRange,
        fragments: Dict[Fragment, str],
        batch_start_structure: str,
        summary: List[str],
    ) -> None:
        column = op.target.column
        before = fragments[op.target]
        result, error = replace_lines(before, op.start_line, op.end_line, op.content)
        if error:
            logger.warning("replace_lines on %s rejected: %s", column, error)
            summary.append(f"ERROR replacing lines in {column}: {error}")
            return

        if op.target is Fragment.STRUCTURE and not is_balanced(result):
            details = ", ".join(f"{tag} {o} open/{c} close" for tag, o, c in tag_balance(result))
            logger.warning("Rolling back %s after unbalanced replace: %s", column, details)
            fragments[op.target] = batch_start_structure
            summary.append(
                f"Rolled back {column}: replacing lines {op.start_line}-{op.end_line} left unbalanced tags "
                f"({details}); restored the code from before this change."
            )
            return

        fragments[op.target] = result
        summary.append(f"Replaced lines {op.start_line}-{op.end_line} in {column}.")

    def _run_image_stage(self, session_id: str, ops: List[GenerateImage], summary: List[str]) -> Dict[str, str]:
        generated: Dict[str, str] = {}
        if not ops:
            return generated
        with ThreadPoolExecutor(max_workers=min(self.image_workers, len(ops))) as pool:
            futures = [(op, pool.submit(self._generate_and_store, session_id, op)) for op in ops]
            for op, future in futures:
                try:
                    url = future.result()
                except GameEngineError as e:
                    logger.error("Failed to generate image %s: %s", op.name, e.message)
                    summary.append(f"Failed to generate image '{op.name}': {e.message}")
                    continue
                generated[op.name] = url
                summary.append(f"Generated image '{op.name}'")
        return generated

    def _generate_and_store(self, session_id: str, op: GenerateImage) -> str:
        data = self.images.generate(op.name, op.prompt)
        url = self.assets.upload(session_id, op.name, data)
        logger.info("Image uploaded successfully: %s", url)
        return url
