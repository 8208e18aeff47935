from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional, Union

from .drafting import (
    MAX_PROMPT_COMMENTS,
    build_comment_prompt,
    build_system_instruction,
    memory_excerpt,
    normalize_str,
    strip_markup,
)
from .hooks import SHOULD_COMMENT, Hooks
from .memory_log import MemoryLog
from .state import StoreWriteError
from .strategy import build_selection_context


MAX_OUTPUT_TOKENS = 1500

logger = logging.getLogger("marginalia.autonomy")

# generate(provider, system, prompt, max_tokens) -> text
GenerateFn = Callable[[str, str, str, int], str]


@dataclass
class CommentResult:
    comment_id: int
    content: str
    post_id: int
    author: str

    ok = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CommentFailure:
    code: str
    message: str

    ok = False

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


CommentOutcome = Union[CommentResult, CommentFailure]


class Commenter:
    """Generates one comment as a persona and records it in the memory log."""

    def __init__(self, host, registry, memory: MemoryLog, hooks: Hooks, generate: GenerateFn):
        self.host = host
        self.registry = registry
        self.memory = memory
        self.hooks = hooks
        self.generate = generate

    def comment(
        self,
        content_id: int,
        persona_id: str,
        parent_id: int = 0,
        context: Optional[Dict[str, Any]] = None,
    ) -> CommentOutcome:
        persona = self.registry.get(persona_id)
        if persona is None:
            return CommentFailure("persona_not_found", f"Persona not found: {persona_id}")

        post = self.host.get_post(int(content_id), status="publish")
        if not post:
            return CommentFailure("content_not_found", f"Published post not found: {content_id}")

        user = self.host.get_user(persona.author_id)
        if not user:
            return CommentFailure("author_not_found", f"Persona user not found: {persona.author_id}")

        if not self.hooks.apply(SHOULD_COMMENT, True, post, persona):
            logger.info("Comment blocked by safety gate persona_id=%s post_id=%s", persona.id, post["id"])
            return CommentFailure("comment_blocked", "Commenting on this post was blocked.")

        if not context:
            context = build_selection_context(self.hooks, post, None)

        system = build_system_instruction(persona.definition, self.memory.read())

        parent = None
        if parent_id and int(parent_id) > 0:
            parent = self.host.get_comment(int(parent_id))
            if not parent or parent.get("post_id") != post["id"]:
                return CommentFailure(
                    "parent_not_found",
                    f"Parent comment {parent_id} not found on post {post['id']}.",
                )

        comments = self.host.list_comments(post["id"], limit=MAX_PROMPT_COMMENTS)
        prompt = build_comment_prompt(post, comments, context, parent=parent)

        logger.info(
            "Drafting comment persona_id=%s post_id=%s parent_id=%s strategy_id=%s",
            persona.id,
            post["id"],
            parent["id"] if parent else 0,
            context.get("strategy_id"),
        )
        try:
            text = self.generate(persona.provider, system, prompt, MAX_OUTPUT_TOKENS)
        except Exception as e:
            return CommentFailure("generation_failed", str(e) or e.__class__.__name__)

        text = normalize_str(text).strip()
        if not text:
            return CommentFailure("empty_comment", "The provider returned an empty comment.")

        try:
            created = self.host.create_comment(
                post["id"],
                text,
                author_id=persona.author_id,
                parent_id=parent["id"] if parent else 0,
            )
        except Exception as e:
            return CommentFailure("insert_failed", f"Failed to insert comment: {e}")
        comment_id = int((created or {}).get("id") or 0)
        if comment_id <= 0:
            return CommentFailure("insert_failed", "Failed to insert comment.")

        try:
            self._remember(post, text, parent)
        except StoreWriteError as e:
            return CommentFailure("memory_write_failed", f"Comment #{comment_id} posted but memory update failed: {e}")

        return CommentResult(
            comment_id=comment_id,
            content=strip_markup(created.get("content")) or text,
            post_id=post["id"],
            author=normalize_str(created.get("author_name")) or normalize_str(user.get("name")),
        )

    def _remember(self, post: Dict[str, Any], text: str, parent: Optional[Dict[str, Any]]) -> None:
        title = strip_markup(post.get("title"))
        excerpt = memory_excerpt(text)
        if parent:
            other = normalize_str(parent.get("author_name")) or "someone"
            self.memory.append_entry(
                "recent_activities",
                f"Replied to {other}'s comment on \"{title}\" (post #{post['id']})",
            )
            self.memory.append_entry(
                "commentary_log",
                f"Post #{post['id']} \"{title}\" (reply to {other}): {excerpt}",
            )
            return
        self.memory.append_entry("recent_activities", f"Commented on \"{title}\" (post #{post['id']})")
        self.memory.append_entry("commentary_log", f"Post #{post['id']} \"{title}\": {excerpt}")
