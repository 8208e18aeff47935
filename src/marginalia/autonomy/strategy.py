from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .drafting import normalize_str
from .hooks import COMMENT_STRATEGIES, SELECT_POST_QUERY, SELECTION_CONTEXT, Hooks


logger = logging.getLogger("marginalia.autonomy")


@dataclass
class Strategy:
    id: str
    label: str = ""
    weight: int = 1
    selection_spec: Dict[str, Any] = field(default_factory=dict)
    hint: str = ""

    @property
    def effective_weight(self) -> int:
        try:
            return max(1, int(self.weight))
        except (TypeError, ValueError):
            return 1

    @classmethod
    def coerce(cls, item: Any) -> Optional["Strategy"]:
        if isinstance(item, Strategy):
            return item
        if not isinstance(item, dict):
            return None
        spec = item.get("selection_spec", item.get("query_args"))
        return cls(
            id=normalize_str(item.get("id")) or "unknown",
            label=normalize_str(item.get("label")),
            weight=item.get("weight", 1),
            selection_spec=dict(spec) if isinstance(spec, dict) else {},
            hint=normalize_str(item.get("hint")),
        )


DEFAULT_STRATEGIES = (
    Strategy(
        id="recent",
        label="Recent posts",
        weight=1,
        selection_spec={"after_days": 90, "orderby": "rand"},
        hint="A recently published post.",
    ),
)


@dataclass
class Selection:
    content_id: int = 0
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def found(self) -> bool:
        return self.content_id > 0


def pick_weighted(strategies: Sequence[Strategy], rng: Optional[random.Random] = None) -> Strategy:
    rng = rng or random
    total = sum(s.effective_weight for s in strategies)
    roll = rng.randint(1, max(1, total))
    cumulative = 0
    for strategy in strategies:
        cumulative += strategy.effective_weight
        if roll <= cumulative:
            return strategy
    return strategies[0]


class StrategySelector:
    """Picks the next post for a persona from a weighted set of strategies."""

    def __init__(
        self,
        host,
        hooks: Hooks,
        *,
        defaults: Sequence[Strategy] = DEFAULT_STRATEGIES,
        rng: Optional[random.Random] = None,
    ):
        self.host = host
        self.hooks = hooks
        self.defaults = tuple(defaults)
        self.rng = rng or random.Random()

    def strategies(self) -> List[Strategy]:
        raw = self.hooks.apply(COMMENT_STRATEGIES, list(self.defaults))
        out: List[Strategy] = []
        for item in raw or []:
            strategy = Strategy.coerce(item)
            if strategy is not None:
                out.append(strategy)
        return out

    def select(self, persona, strategy_id: Optional[str] = None) -> Selection:
        strategies = self.strategies()
        if not strategies:
            logger.info("No strategies registered persona_id=%s", persona.id)
            return Selection()

        if strategy_id:
            strategy = next((s for s in strategies if s.id == strategy_id), None)
            if strategy is None:
                logger.info("Unknown strategy persona_id=%s strategy_id=%s", persona.id, strategy_id)
                return Selection()
        else:
            strategy = pick_weighted(strategies, self.rng)

        query = self.build_query(strategy)
        customized = self.hooks.apply(SELECT_POST_QUERY, dict(query), strategy, persona)
        if isinstance(customized, dict):
            query = customized
        query = self._exclude_commented(query, persona)

        posts = self.host.query_posts(query)
        if not posts:
            logger.info("No eligible post persona_id=%s strategy_id=%s", persona.id, strategy.id)
            return Selection()

        post = posts[0]
        return Selection(content_id=int(post["id"]), context=self.build_context(post, strategy))

    @staticmethod
    def build_query(strategy: Strategy) -> Dict[str, Any]:
        query = dict(strategy.selection_spec)
        query["post_type"] = "post"
        query["status"] = "publish"
        query["limit"] = 1
        return query

    def _exclude_commented(self, query: Dict[str, Any], persona) -> Dict[str, Any]:
        # Final stage, applied after every select_post_query handler.
        commented = self.host.commented_post_ids(persona.author_id)
        if commented:
            existing = [int(x) for x in query.get("exclude") or []]
            query = dict(query)
            query["exclude"] = existing + [int(x) for x in commented]
        return query

    def build_context(self, post: Dict[str, Any], strategy: Optional[Strategy]) -> Dict[str, Any]:
        return build_selection_context(self.hooks, post, strategy)


def build_selection_context(hooks: Hooks, post: Dict[str, Any], strategy: Optional[Strategy]) -> Dict[str, Any]:
    """Context for a chosen post; ``strategy`` is None for direct comment requests."""
    context: Dict[str, Any] = {
        "strategy_id": strategy.id if strategy else "direct",
        "strategy_hint": strategy.hint if strategy else "",
        "notes": [],
    }
    enriched = hooks.apply(SELECTION_CONTEXT, context, post, strategy)
    return enriched if isinstance(enriched, dict) else context
