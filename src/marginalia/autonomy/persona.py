from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

from .config import DEFAULT_FREQUENCY, FREQUENCIES, PROVIDERS
from .drafting import normalize_str, strip_markup
from .state import OptionStore


OPTION_KEY = "personas"
LEGACY_OPTION_KEY = "persona"

logger = logging.getLogger("marginalia.autonomy")


class PersonaValidationError(ValueError):
    def __init__(self, code: str, field: str, message: str):
        super().__init__(message)
        self.code = code
        self.field = field


@dataclass
class Persona:
    id: str
    name: str
    definition: str
    author_id: int
    provider: str
    cron_enabled: bool = False
    cron_frequency: str = DEFAULT_FREQUENCY

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Persona":
        return cls(
            id=normalize_str(data.get("id")),
            name=normalize_str(data.get("name")),
            definition=normalize_str(data.get("definition")),
            author_id=_coerce_int(data.get("author_id")),
            provider=normalize_str(data.get("provider")),
            cron_enabled=bool(data.get("cron_enabled")),
            cron_frequency=normalize_str(data.get("cron_frequency")) or DEFAULT_FREQUENCY,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def slugify(value: Any) -> str:
    text = unicodedata.normalize("NFKD", strip_markup(value))
    text = text.encode("ascii", "ignore").decode("ascii").lower()
    text = re.sub(r"[^a-z0-9\s_-]", "", text)
    text = re.sub(r"[\s_-]+", "-", text)
    return text.strip("-")


def generate_id(name: str, personas: Sequence[Persona] = ()) -> str:
    # Names without ASCII letters or digits (e.g. Japanese) slugify to nothing.
    base = slugify(name) or "persona"
    existing = {p.id for p in personas}
    candidate = base
    suffix = 2
    while candidate in existing:
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


class PersonaRegistry:
    """Persona collection stored as a list of dicts under one option key."""

    def __init__(
        self,
        store: OptionStore,
        host,
        *,
        providers: Sequence[str] = PROVIDERS,
        frequencies: Sequence[str] = FREQUENCIES,
        default_frequency: str = DEFAULT_FREQUENCY,
        scheduler=None,
    ):
        self.store = store
        self.host = host
        self.providers = tuple(providers)
        self.frequencies = tuple(frequencies)
        self.default_frequency = default_frequency
        self.scheduler = scheduler

    def list(self) -> List[Persona]:
        raw = self.store.get(OPTION_KEY, [])
        if not isinstance(raw, list):
            return []
        return [Persona.from_dict(item) for item in raw if isinstance(item, dict)]

    def get(self, persona_id: str) -> Optional[Persona]:
        for persona in self.list():
            if persona.id == persona_id:
                return persona
        return None

    def validate(self, data: Dict[str, Any]) -> None:
        if not normalize_str(data.get("name")).strip():
            raise PersonaValidationError("missing_name", "name", "Persona name is required.")
        if not normalize_str(data.get("definition")).strip():
            raise PersonaValidationError("missing_definition", "definition", "Persona definition is required.")
        author_id = _coerce_int(data.get("author_id"))
        if author_id <= 0 or not self.host.get_user(author_id):
            raise PersonaValidationError("invalid_author", "author_id", "A valid author user must be selected.")
        if normalize_str(data.get("provider")).strip() not in self.providers:
            raise PersonaValidationError(
                "invalid_provider",
                "provider",
                f"A valid provider must be selected ({', '.join(self.providers)}).",
            )

    def normalize(self, data: Dict[str, Any], persona_id: str) -> Persona:
        frequency = normalize_str(data.get("cron_frequency")).strip()
        return Persona(
            id=persona_id,
            name=re.sub(r"\s+", " ", strip_markup(data.get("name"))).strip(),
            definition=normalize_str(data.get("definition")).strip(),
            author_id=_coerce_int(data.get("author_id")),
            provider=normalize_str(data.get("provider")).strip(),
            cron_enabled=bool(data.get("cron_enabled")),
            cron_frequency=frequency if frequency in self.frequencies else self.default_frequency,
        )

    def save(self, data: Dict[str, Any]) -> str:
        self.validate(data)

        personas = self.list()
        persona_id = normalize_str(data.get("id")).strip()
        index = self._find_index(persona_id, personas)

        if index is not None:
            personas[index] = self.normalize(data, persona_id)
        else:
            persona_id = generate_id(data["name"], personas)
            personas.append(self.normalize(data, persona_id))

        self._write(personas)
        logger.info("Persona saved persona_id=%s created=%s", persona_id, index is None)

        if self.scheduler is not None:
            self.scheduler.reschedule(persona_id)
        return persona_id

    def delete(self, persona_id: str) -> bool:
        personas = self.list()
        index = self._find_index(persona_id, personas)
        if index is None:
            return False

        del personas[index]
        self._write(personas)
        logger.info("Persona deleted persona_id=%s", persona_id)

        if self.scheduler is not None:
            self.scheduler.unschedule(persona_id)
        return True

    def migrate(self) -> bool:
        """Turn the legacy single-persona option into the first persona record.

        Only runs when no personas exist and the legacy value is present, so
        calling it on every activation is safe.
        """
        if self.list():
            return False
        legacy = normalize_str(self.store.get(LEGACY_OPTION_KEY, "")).strip()
        if not legacy:
            return False

        author_id = self.host.first_admin_id() or 1
        persona = Persona(
            id="default",
            name="Default",
            definition=legacy,
            author_id=int(author_id),
            provider="anthropic" if "anthropic" in self.providers else self.providers[0],
        )
        self._write([persona])
        logger.info("Migrated legacy persona option author_id=%s", persona.author_id)
        return True

    def uninstall(self) -> None:
        self.store.delete(OPTION_KEY)
        self.store.delete(LEGACY_OPTION_KEY)

    def _write(self, personas: List[Persona]) -> None:
        self.store.set(OPTION_KEY, [p.to_dict() for p in personas])

    @staticmethod
    def _find_index(persona_id: str, personas: List[Persona]) -> Optional[int]:
        if not persona_id:
            return None
        for index, persona in enumerate(personas):
            if persona.id == persona_id:
                return index
        return None
