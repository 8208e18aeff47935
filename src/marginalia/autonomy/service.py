from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, Optional

from ..host_client import HostClient
from .commenter import Commenter
from .config import Config
from .drafting import build_memory_report_prompt, build_writing_context
from .generation_utils import generate_text
from .hooks import Hooks
from .memory_log import MemoryLog
from .persona import Persona, PersonaRegistry
from .scheduler import Scheduler
from .state import OptionStore
from .strategy import StrategySelector


MEMORY_REPORT_MAX_TOKENS = 500

logger = logging.getLogger("marginalia.autonomy")


@dataclass
class Service:
    """All components wired against one host and one option store."""

    host: Any
    store: OptionStore
    hooks: Hooks
    registry: PersonaRegistry
    memory: MemoryLog
    selector: StrategySelector
    commenter: Commenter
    scheduler: Scheduler
    generate: Callable[[str, str, str, int], str]

    def activate(self) -> None:
        self.memory.read()
        if self.registry.migrate():
            for persona in self.registry.list():
                self.scheduler.reschedule(persona.id)
        # Installs triggers for cron-enabled personas that have none yet.
        for persona in self.registry.list():
            if persona.cron_enabled and self.scheduler.next_scheduled(persona.id) is None:
                self.scheduler.reschedule(persona.id)
        logger.info("Activated personas=%s", len(self.registry.list()))

    def deactivate(self) -> None:
        self.scheduler.unschedule()
        logger.info("Deactivated; all schedules cleared")

    def uninstall(self) -> None:
        self.scheduler.unschedule()
        self.scheduler.uninstall()
        self.memory.uninstall()
        self.registry.uninstall()
        logger.info("Uninstalled; memory, personas and schedules removed")

    def resolve_persona(self, persona_id: Optional[str] = None) -> Persona:
        """Named persona, or the first configured one when no id is given."""
        if persona_id:
            persona = self.registry.get(persona_id)
            if persona is None:
                raise LookupError(f'Persona "{persona_id}" not found.')
            return persona
        personas = self.registry.list()
        if not personas:
            raise LookupError("No personas configured. Create one first.")
        return personas[0]

    def current_context(self) -> Dict[str, Any]:
        site = self.host.get_site_info()
        return {
            "site_name": site.get("name", ""),
            "site_url": site.get("url", ""),
            "personas": [
                {"id": p.id, "name": p.name, "definition": p.definition}
                for p in self.registry.list()
            ],
            "memory": self.memory.read(),
        }

    def memory_report(self, persona_id: Optional[str] = None) -> str:
        persona = self.resolve_persona(persona_id)
        prompt = build_memory_report_prompt(self.memory.read())
        text = self.generate(persona.provider, persona.definition, prompt, MEMORY_REPORT_MAX_TOKENS)
        return text.strip()

    def writing_context(self, persona_id: Optional[str] = None, topic: str = "") -> str:
        definition = None
        if persona_id:
            persona = self.registry.get(persona_id)
            definition = persona.definition if persona else None
        else:
            personas = self.registry.list()
            definition = personas[0].definition if personas else None
        return build_writing_context(definition, self.memory.read(), topic)


def build_service(
    cfg: Config,
    host=None,
    generate: Optional[Callable[[str, str, str, int], str]] = None,
    store: Optional[OptionStore] = None,
    hooks: Optional[Hooks] = None,
) -> Service:
    if host is None:
        host = HostClient(site_url=cfg.site_url)
    if generate is None:
        generate = partial(generate_text, cfg)

    store = store or OptionStore(cfg.state_path)
    hooks = hooks or Hooks()
    registry = PersonaRegistry(store, host)
    memory = MemoryLog(store)
    selector = StrategySelector(host, hooks)
    commenter = Commenter(host, registry, memory, hooks, generate)
    scheduler = Scheduler(store, registry, selector, commenter, default_frequency=registry.default_frequency)
    registry.scheduler = scheduler

    return Service(
        host=host,
        store=store,
        hooks=hooks,
        registry=registry,
        memory=memory,
        selector=selector,
        commenter=commenter,
        scheduler=scheduler,
        generate=generate,
    )
