import html
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


MAX_PROMPT_POST_CONTENT_CHARS = 5000
MAX_MEMORY_EXCERPT_CHARS = 100
MAX_PROMPT_COMMENTS = 10

COMMENT_INSTRUCTIONS = (
    "You are about to read a blog post. Write a comment on it as this persona.\n"
    "- Write naturally in the persona's voice and language style.\n"
    "- Reference your memory if relevant, but don't force it.\n"
    "- Keep the comment concise (1-3 paragraphs).\n"
    "- If you are replying to another comment, address that comment directly.\n"
    "- Do NOT include any metadata, headers, labels or commentary about the task. Output only the comment text."
)

WRITING_GUIDELINE = (
    "Write content following these guidelines. "
    "The content will be posted as HTML to WordPress, "
    "so use appropriate HTML tags (h2, h3, p, pre, code, ul, ol, etc.)."
)

_SCRIPT_STYLE_RE = re.compile(r"<(script|style)[^>]*?>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")


def normalize_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def strip_markup(value: Any) -> str:
    text = _SCRIPT_STYLE_RE.sub("", normalize_str(value))
    text = _TAG_RE.sub("", text)
    return html.unescape(text).strip()


def clip_text(value: Any, width: int, marker: str = "...") -> str:
    """Clip to ``width`` characters, the marker included."""
    text = normalize_str(value)
    if len(text) <= width:
        return text
    return text[: max(0, width - len(marker))] + marker


def parse_datetime(value: Any) -> Optional[datetime]:
    text = normalize_str(value).strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def human_time_ago(then: Optional[datetime], now: Optional[datetime] = None) -> str:
    if then is None:
        return ""
    now = now or datetime.now(timezone.utc)
    seconds = max(0, int((now - then).total_seconds()))
    units = (
        ("year", 365 * 86400),
        ("month", 30 * 86400),
        ("week", 7 * 86400),
        ("day", 86400),
        ("hour", 3600),
        ("min", 60),
    )
    for label, size in units:
        if seconds >= size:
            count = seconds // size
            return f"{count} {label}{'s' if count != 1 else ''} ago"
    return "just now"


def build_system_instruction(definition: str, memory: str) -> str:
    parts = [normalize_str(definition).strip()]
    memory_text = normalize_str(memory).strip()
    if memory_text:
        parts.append("---\n\n## Your Memory\n\n" + memory_text)
    parts.append("---\n\n## Instructions\n\n" + COMMENT_INSTRUCTIONS)
    return "\n\n".join(parts)


def _why_this_post(context: Dict[str, Any]) -> str:
    hint = normalize_str(context.get("strategy_hint")).strip()
    notes = [normalize_str(n).strip() for n in (context.get("notes") or []) if normalize_str(n).strip()]
    if not hint and not notes:
        return ""
    lines = ["## Why This Post", ""]
    if hint:
        lines.append(hint)
    lines.extend(f"- {note}" for note in notes)
    return "\n".join(lines)


def _format_comment(comment: Dict[str, Any]) -> str:
    return "**{}** ({}):\n{}\n".format(
        normalize_str(comment.get("author_name")) or "Anonymous",
        normalize_str(comment.get("date")),
        strip_markup(comment.get("content")),
    )


def build_comment_prompt(
    post: Dict[str, Any],
    comments: List[Dict[str, Any]],
    context: Dict[str, Any],
    parent: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> str:
    title = strip_markup(post.get("title"))
    published = normalize_str(post.get("date"))
    header = [f"# {title}", ""]
    if published:
        ago = human_time_ago(parse_datetime(published), now)
        header.append(f"Published: {published}" + (f" ({ago})" if ago else ""))
    categories = [normalize_str(c).strip() for c in (post.get("categories") or []) if normalize_str(c).strip()]
    if categories:
        header.append("Categories: " + ", ".join(categories))
    parts = ["\n".join(header).rstrip()]

    why = _why_this_post(context or {})
    if why:
        parts.append("---\n\n" + why)

    content = clip_text(strip_markup(post.get("content")), MAX_PROMPT_POST_CONTENT_CHARS)
    parts.append("---\n\n" + content)

    if comments:
        rendered = [_format_comment(c) for c in comments[-MAX_PROMPT_COMMENTS:]]
        parts.append("---\n\n## Existing Comments\n\n" + "\n".join(rendered).rstrip())

    if parent:
        parts.append(
            "---\n\n## Replying To\n\n"
            + _format_comment(parent)
            + "\nWrite a reply to this comment. Address its author directly."
        )

    return "\n\n".join(parts)


def memory_excerpt(text: Any) -> str:
    flat = re.sub(r"\s+", " ", normalize_str(text)).strip()
    return clip_text(flat, MAX_MEMORY_EXCERPT_CHARS)


def build_memory_report_prompt(memory: str) -> str:
    return (
        "Here is your memory log:\n\n"
        + normalize_str(memory)
        + "\n\n---\n\nBriefly report what you have been up to recently, in your own voice. "
        + "Be conversational and concise (a few sentences)."
    )


def build_writing_context(definition: Optional[str], memory: str, topic: str = "") -> str:
    parts: List[str] = []
    if definition:
        parts.append(normalize_str(definition).strip())
    memory_text = normalize_str(memory).strip()
    if memory_text:
        parts.append("---\n\n## Your Memory\n\n" + memory_text)
    topic_text = normalize_str(topic).strip()
    if topic_text:
        parts.append("---\n\n## Topic\n\n" + topic_text)
    parts.append("---\n\n" + WRITING_GUIDELINE)
    return "\n\n".join(parts)
