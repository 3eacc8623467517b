# sandbox.py
"""
Fragment assembly for the sandboxed preview.

The three stored fragments (structure, style, behavior) are combined into one
self-contained document with error-capturing instrumentation. Problems with
the fragments never raise: they come back as diagnostics and assembly falls
back to a best-effort document so partial games still render.
"""
from __future__ import annotations

import re
from typing import Dict, List, Tuple

from data_class import AssembledDocument, Fragment, Session

# iframe sandbox tokens. No allow-same-origin: the game must not see the
# host page's storage or cookies.
SANDBOX_PERMISSIONS = "allow-scripts allow-forms allow-pointer-lock allow-popups allow-modals"

# Messages posted to window.parent by the instrumentation.
RUNTIME_ERROR = "runtime_error"
STRUCTURAL_WARNING = "structural_warning"

BASELINE_CSS = "html, body { margin: 0; padding: 0; overflow: hidden; }"

CONTAINER_TAGS = (
    "div", "span", "section", "main", "header", "footer", "nav", "article", "aside",
    "ul", "ol", "li", "table", "thead", "tbody", "tr", "td", "th",
    "form", "label", "button", "select", "textarea", "canvas", "svg", "p", "a",
    "h1", "h2", "h3", "h4", "h5", "h6", "script", "style",
)

INSTRUMENTATION_ATTR = "data-sandbox-instrumentation"

INSTRUMENTATION_JS = """(function () {
  function report(kind, message) {
    window.parent.postMessage({ kind: kind, message: String(message) }, '*');
  }
  window.addEventListener('error', function (event) {
    var where = event.filename ? ' at ' + event.filename + ':' + event.lineno + ':' + event.colno : '';
    report('%(runtime)s', 'JS RUNTIME: ' + event.message + where);
  });
  window.addEventListener('unhandledrejection', function (event) {
    var reason = event.reason && event.reason.message ? event.reason.message : event.reason;
    report('%(runtime)s', 'JS PROMISE: Unhandled Promise Rejection: ' + reason);
  });
  document.addEventListener('DOMContentLoaded', function () {
    if (document.querySelectorAll('[id]').length === 0) {
      report('%(warning)s', 'DOM VALIDATION: No elements with IDs found - possible HTML corruption');
    }
    var inline = document.body.querySelectorAll('script:not([src]):not([%(attr)s])');
    if (inline.length > 1) {
      report('%(warning)s', 'DOM WARNING: Multiple script tags in body detected');
    }
    if (document.body.querySelectorAll('style').length > 0) {
      report('%(warning)s', 'DOM WARNING: Style tags found in body instead of head');
    }
  });
})();""" % {"runtime": RUNTIME_ERROR, "warning": STRUCTURAL_WARNING, "attr": INSTRUMENTATION_ATTR}

_WRAPPERS = (
    ("<!DOCTYPE>", re.compile(r"<!doctype\b", re.I)),
    ("<html>", re.compile(r"<html\b", re.I)),
    ("<head>", re.compile(r"<head\b", re.I)),
    ("<body>", re.compile(r"<body\b", re.I)),
)
_BODY_INNER = re.compile(r"<body\b[^>]*>(.*?)(?:</body\s*>|$)", re.I | re.S)
_HEAD_BLOCK = re.compile(r"<head\b[^>]*>.*?</head\s*>", re.I | re.S)
_WRAPPER_TAGS = re.compile(r"<!doctype[^>]*>|</?html\b[^>]*>|</?head\b[^>]*>|</?body\b[^>]*>", re.I)

_COMMENT = re.compile(r"<!--.*?-->", re.S)
_RAW_BLOCK = re.compile(r"<(script|style)\b([^>]*)>.*?</\1\s*>", re.I | re.S)
_INLINE_SCRIPT = re.compile(r"<script\b(?![^>]*\bsrc\s*=)(?![^>]*%s)[^>]*>" % INSTRUMENTATION_ATTR, re.I)
_STYLE_OPEN = re.compile(r"<style\b", re.I)
_STYLE_TAGS = re.compile(r"</?style\b[^>]*>", re.I)
_SCRIPT_TAGS = re.compile(r"</?script\b[^>]*>", re.I)


# -------------------- Structure checks --------------------

def find_wrappers(structure: str) -> List[str]:
    return [label for label, pattern in _WRAPPERS if pattern.search(structure or "")]


def wrapper_diagnostics(structure: str) -> List[str]:
    return [
        f"STRUCTURAL: Structure code contains a {label} wrapper; it must be body content only"
        for label in find_wrappers(structure)
    ]


def strip_wrappers(structure: str) -> str:
    """Best-effort reduction of a full document to its body content."""
    body = _BODY_INNER.search(structure)
    if body:
        return body.group(1).strip("\n")
    text = _HEAD_BLOCK.sub("", structure)
    return _WRAPPER_TAGS.sub("", text).strip("\n")


def _collapse(markup: str) -> str:
    """Drop comments and the bodies of script/style blocks, keeping their tags."""
    text = _COMMENT.sub("", markup or "")
    return _RAW_BLOCK.sub(lambda m: f"<{m.group(1)}{m.group(2)}></{m.group(1)}>", text)


def tag_balance(markup: str) -> List[Tuple[str, int, int]]:
    """
    Container tags whose open and close counts differ, as (tag, opens, closes).
    Script and style bodies and comments are ignored.
    """
    text = _collapse(markup)
    mismatched = []
    for tag in CONTAINER_TAGS:
        opens = len(re.findall(rf"<{tag}(?![\w-])[^>]*(?<!/)>", text, re.I))
        closes = len(re.findall(rf"</{tag}\s*>", text, re.I))
        if opens != closes:
            mismatched.append((tag, opens, closes))
    return mismatched


def is_balanced(markup: str) -> bool:
    return not tag_balance(markup)


def balance_diagnostics(markup: str) -> List[str]:
    return [
        f"STRUCTURAL: Unclosed {tag} tags ({opens} open, {closes} close)"
        for tag, opens, closes in tag_balance(markup)
    ]


# -------------------- Assembly --------------------

def _clean_style(style: str, diagnostics: List[str]) -> str:
    if _STYLE_TAGS.search(style):
        diagnostics.append("WARNING: Style code contained <style> tags; they were removed")
        style = _STYLE_TAGS.sub("", style)
    return re.sub(r"</style", r"<\\/style", style, flags=re.I)


def _clean_behavior(behavior: str, diagnostics: List[str]) -> str:
    if _SCRIPT_TAGS.search(behavior):
        diagnostics.append("WARNING: Script code contained <script> tags; they were removed")
        behavior = _SCRIPT_TAGS.sub("", behavior)
    return re.sub(r"</script", r"<\\/script", behavior, flags=re.I)


def _body_diagnostics(body: str) -> List[str]:
    diagnostics = balance_diagnostics(body)
    text = _collapse(body)
    inline = len(_INLINE_SCRIPT.findall(text))
    if inline > 1:
        diagnostics.append(
            f"STRUCTURAL: Multiple script blocks in body content ({inline}); game logic belongs in the script code"
        )
    if _STYLE_OPEN.search(text):
        diagnostics.append("STRUCTURAL: <style> tag found in body instead of head")
    return diagnostics


def assemble(structure: str, style: str, behavior: str) -> AssembledDocument:
    """
    Build the preview document from the three fragments.

    Deterministic: the same fragments always give the same document and
    diagnostics.
    """
    structure, style, behavior = structure or "", style or "", behavior or ""
    diagnostics = wrapper_diagnostics(structure)
    if diagnostics:
        structure = strip_wrappers(structure)

    style = _clean_style(style, diagnostics)
    behavior = _clean_behavior(behavior, diagnostics)

    body = (
        f"{structure}\n"
        f"<script {INSTRUMENTATION_ATTR}>\n{INSTRUMENTATION_JS}\n</script>\n"
        f"<script>\n{behavior}\n</script>"
    )
    diagnostics.extend(_body_diagnostics(body))

    document = (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "<head>\n"
        '<meta charset="UTF-8">\n'
        '<meta name="viewport" content="width=device-width, initial-scale=1.0">\n'
        f"<style>\n{BASELINE_CSS}\n{style}\n</style>\n"
        "</head>\n"
        f"<body>\n{body}\n</body>\n"
        "</html>\n"
    )
    return AssembledDocument(document=document, diagnostics=diagnostics)


def assemble_fragments(fragments: Dict[Fragment, str]) -> AssembledDocument:
    return assemble(
        fragments.get(Fragment.STRUCTURE, ""),
        fragments.get(Fragment.STYLE, ""),
        fragments.get(Fragment.BEHAVIOR, ""),
    )


def assemble_session(session: Session) -> AssembledDocument:
    return assemble(session.html_code, session.css_code, session.js_code)


def sandbox_headers() -> Dict[str, str]:
    """Headers that apply the iframe sandbox when the preview is served directly."""
    return {
        "Content-Security-Policy": f"sandbox {SANDBOX_PERMISSIONS}",
        "X-Content-Type-Options": "nosniff",
    }
