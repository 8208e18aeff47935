"""Extension points for selection and commenting.

Each hook is an ordered list of handlers. ``apply`` threads a value through
every handler in registration order: a handler receives the current value
plus the hook's arguments and returns the new value, so later handlers see
(and may override) what earlier ones produced.

Hooks and their contracts:

``comment_strategies(strategies) -> strategies``
    Receives the list of built-in ``Strategy`` objects and returns the full
    list. Handlers may append ``Strategy`` instances or plain dicts with the
    same keys.

``select_post_query(query, strategy, persona) -> query``
    Receives the host query dict built from the chosen strategy. The
    already-commented exclusion is applied after every handler has run, so a
    handler cannot remove it.

``selection_context(context, post, strategy) -> context``
    Receives ``{"strategy_id", "strategy_hint", "notes"}`` for the chosen post.
    ``strategy`` is ``None`` when the commenter synthesizes a context for a
    direct call. Handlers may append notes or replace the hint.

``should_comment(allowed, post, persona) -> bool``
    Safety gate. Returning a falsy value vetoes the comment.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List


COMMENT_STRATEGIES = "comment_strategies"
SELECT_POST_QUERY = "select_post_query"
SELECTION_CONTEXT = "selection_context"
SHOULD_COMMENT = "should_comment"


class Hooks:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[Callable[..., Any]]] = {}

    def add(self, name: str, handler: Callable[..., Any]) -> None:
        self._handlers.setdefault(name, []).append(handler)

    def apply(self, name: str, value: Any, *args: Any) -> Any:
        for handler in list(self._handlers.get(name, [])):
            value = handler(value, *args)
        return value
