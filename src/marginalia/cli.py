import argparse
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .autonomy.commenter import CommentFailure
from .autonomy.config import FREQUENCIES, PROVIDERS, load_config
from .autonomy.drafting import clip_text, strip_markup
from .autonomy.memory_log import SECTIONS
from .autonomy.persona import PersonaValidationError
from .autonomy.runner import run_loop
from .autonomy.service import Service, build_service
from .autonomy.ui import print_success_banner
from .host_client import HostAuthError, HostClient


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _service() -> Service:
    return build_service(load_config())


def cmd_personas(_: argparse.Namespace) -> None:
    """List configured personas with their bound author."""
    service = _service()
    personas = service.registry.list()
    if not personas:
        print("No personas configured.")
        return
    items = []
    for p in personas:
        user = service.host.get_user(p.author_id)
        items.append(
            {
                "id": p.id,
                "name": p.name,
                "user": user["name"] if user else "(unknown)",
                "provider": p.provider,
                "cron": p.cron_frequency if p.cron_enabled else "off",
            }
        )
    print_json(items)


def cmd_persona_save(args: argparse.Namespace) -> None:
    """Create or update a persona.

    Examples:

        python -m marginalia.cli persona-save \
          --name "Madame Claude" \
          --definition-file personas/madame.md \
          --author-id 3 --provider anthropic --cron --frequency daily
    """
    definition = args.definition
    if args.definition_file:
        definition = Path(args.definition_file).read_text(encoding="utf-8")

    service = _service()
    data = {}
    if args.id:
        existing = service.registry.get(args.id)
        if existing is None:
            raise SystemExit(f'Persona "{args.id}" not found.')
        data = existing.to_dict()
    for key, value in (
        ("name", args.name),
        ("definition", definition),
        ("author_id", args.author_id),
        ("provider", args.provider),
        ("cron_frequency", args.frequency),
        ("cron_enabled", args.cron),
    ):
        if value is not None:
            data[key] = value

    try:
        persona_id = service.registry.save(data)
    except PersonaValidationError as e:
        raise SystemExit(f"Invalid {e.field} ({e.code}): {e}")
    print_json({"id": persona_id, "next_run": _format_ts(service.scheduler.next_scheduled(persona_id))})


def cmd_persona_delete(args: argparse.Namespace) -> None:
    service = _service()
    if not service.registry.delete(args.persona_id):
        raise SystemExit(f'Persona "{args.persona_id}" not found.')
    print(f'Deleted persona "{args.persona_id}".')


def _print_outcome(outcome, title: str = "") -> None:
    if isinstance(outcome, CommentFailure):
        raise SystemExit(f"Error: {outcome.message} ({outcome.code})")
    print_success_banner(outcome.comment_id, outcome.post_id, outcome.author, title=title)
    print(outcome.content)


def cmd_comment(args: argparse.Namespace) -> None:
    """Generate a comment on one post as a persona."""
    service = _service()
    if args.parent:
        print(f'Replying to comment #{args.parent} on post #{args.post_id} as "{args.persona}"...')
    else:
        print(f'Generating comment for post #{args.post_id} as "{args.persona}"...')
    outcome = service.commenter.comment(args.post_id, args.persona, args.parent)
    _print_outcome(outcome)


def cmd_run(args: argparse.Namespace) -> None:
    """Select a post and comment on it, exactly as a scheduled trigger would."""
    service = _service()
    if args.persona:
        persona_ids = [args.persona]
    else:
        persona_ids = [p.id for p in service.registry.list() if p.cron_enabled]
        if not persona_ids:
            raise SystemExit("No personas with auto-commenting enabled. Use --persona or enable cron on a persona.")

    failures = 0
    for persona_id in persona_ids:
        if args.strategy:
            print(f'Running auto-comment as "{persona_id}" with strategy "{args.strategy}"...')
        else:
            print(f'Running auto-comment as "{persona_id}"...')
        outcome = service.scheduler.run(persona_id, args.strategy)
        if isinstance(outcome, CommentFailure):
            failures += 1
            print(f"[{persona_id}] {outcome.message} ({outcome.code})")
            continue
        post = service.host.get_post(outcome.post_id, status="")
        _print_outcome(outcome, title=strip_markup(post["title"]) if post else "")
    if args.persona and failures:
        raise SystemExit(1)


def cmd_strategies(_: argparse.Namespace) -> None:
    """List registered strategies with their selection probability."""
    service = _service()
    strategies = service.selector.strategies()
    if not strategies:
        print("No strategies registered.")
        return
    total = sum(s.effective_weight for s in strategies)
    print_json(
        [
            {
                "id": s.id,
                "label": s.label,
                "weight": s.effective_weight,
                "probability": f"{round(s.effective_weight / total * 100)}%",
                "hint": clip_text(s.hint, 60),
            }
            for s in strategies
        ]
    )


def cmd_memory(args: argparse.Namespace) -> None:
    """Show the memory log, narrated by a persona unless --raw or --section is given."""
    service = _service()
    if args.section:
        body = service.memory.read_section(args.section)
        print(body or f'Section "{args.section}" is empty.')
        return
    if args.raw:
        print(service.memory.read())
        return
    print(service.memory_report(args.persona))


def cmd_memory_add(args: argparse.Namespace) -> None:
    service = _service()
    if not service.memory.append_entry(args.section, args.entry):
        raise SystemExit(f"Failed to append entry to section: {args.section}")
    print_json({"section": args.section, "updated_at": service.memory.updated_at()})


def cmd_context(_: argparse.Namespace) -> None:
    """Site identity, every persona and the full memory, for priming other tools."""
    print_json(_service().current_context())


def cmd_write_context(args: argparse.Namespace) -> None:
    print(_service().writing_context(args.persona, args.topic or ""))


def _format_ts(ts) -> Any:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(microsecond=0).isoformat()


def cmd_schedule(_: argparse.Namespace) -> None:
    """Show installed triggers and when each next runs."""
    service = _service()
    entries = service.scheduler.scheduled()
    if not entries:
        print("No personas scheduled.")
        return
    print_json(
        {
            persona_id: {
                "frequency": entry.get("frequency"),
                "next_run": _format_ts(service.scheduler.next_scheduled(persona_id)),
            }
            for persona_id, entry in entries.items()
        }
    )


def cmd_activate(_: argparse.Namespace) -> None:
    _service().activate()
    print("Activated.")


def cmd_deactivate(_: argparse.Namespace) -> None:
    _service().deactivate()
    print("Deactivated; all schedules cleared.")


def cmd_uninstall(args: argparse.Namespace) -> None:
    if not args.yes:
        raise SystemExit("Refusing to uninstall without --yes (drops personas, memory and schedules).")
    _service().uninstall()
    print("Uninstalled.")


def cmd_trash(args: argparse.Namespace) -> None:
    """Move a post to the trash."""
    cfg = load_config()
    client = HostClient(site_url=cfg.site_url)
    print_json(client.trash_post(args.post_id))


def cmd_loop(_: argparse.Namespace) -> None:
    run_loop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Persona-driven commenting for a WordPress site.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # personas
    p_personas = subparsers.add_parser("personas", help="List configured personas")
    p_personas.set_defaults(func=cmd_personas)

    # persona-save
    p_save = subparsers.add_parser("persona-save", help="Create or update a persona")
    p_save.add_argument("--id", help="Existing persona id to update")
    p_save.add_argument("--name", help="Display name")
    p_save.add_argument("--definition", help="Persona definition text")
    p_save.add_argument("--definition-file", help="Read the definition from a file")
    p_save.add_argument("--author-id", type=int, help="Site user id that authors the comments")
    p_save.add_argument("--provider", choices=PROVIDERS, help="Generation provider")
    p_save.add_argument("--frequency", choices=FREQUENCIES, help="Auto-comment frequency")
    p_save.add_argument("--cron", dest="cron", action="store_true", default=None, help="Enable auto-commenting")
    p_save.add_argument("--no-cron", dest="cron", action="store_false", help="Disable auto-commenting")
    p_save.set_defaults(func=cmd_persona_save)

    # persona-delete
    p_delete = subparsers.add_parser("persona-delete", help="Delete a persona and its schedule")
    p_delete.add_argument("persona_id")
    p_delete.set_defaults(func=cmd_persona_delete)

    # comment
    p_comment = subparsers.add_parser("comment", help="Comment on a post as a persona")
    p_comment.add_argument("post_id", type=int, help="Post to comment on")
    p_comment.add_argument("--persona", required=True, help="Persona id")
    p_comment.add_argument("--parent", type=int, default=0, help="Reply to this comment id")
    p_comment.set_defaults(func=cmd_comment)

    # run
    p_run = subparsers.add_parser("run", help="Auto-select a post and comment (same logic as the scheduler)")
    p_run.add_argument("--persona", help="Run for one persona; default is every cron-enabled persona")
    p_run.add_argument("--strategy", help="Use a specific strategy instead of a weighted pick")
    p_run.set_defaults(func=cmd_run)

    # strategies
    p_strategies = subparsers.add_parser("strategies", help="List comment strategies")
    p_strategies.set_defaults(func=cmd_strategies)

    # memory
    p_memory = subparsers.add_parser("memory", help="Show memory, narrated by a persona")
    p_memory.add_argument("--persona", help="Persona that narrates; default is the first persona")
    p_memory.add_argument("--raw", action="store_true", help="Print the raw markdown")
    p_memory.add_argument("--section", choices=list(SECTIONS), help="Print one section only (implies --raw)")
    p_memory.set_defaults(func=cmd_memory)

    # memory-add
    p_memory_add = subparsers.add_parser("memory-add", help="Append an entry to a memory section")
    p_memory_add.add_argument("section", choices=list(SECTIONS))
    p_memory_add.add_argument("entry", help="Entry text; the date prefix is added automatically")
    p_memory_add.set_defaults(func=cmd_memory_add)

    # context / write-context
    p_context = subparsers.add_parser("context", help="Site, personas and memory as JSON")
    p_context.set_defaults(func=cmd_context)

    p_write = subparsers.add_parser("write-context", help="Writing context (persona + memory) for authoring posts")
    p_write.add_argument("--persona", help="Persona id; default is the first persona")
    p_write.add_argument("--topic", help="Topic or theme for the post")
    p_write.set_defaults(func=cmd_write_context)

    # schedule lifecycle
    p_schedule = subparsers.add_parser("schedule", help="Show scheduled personas")
    p_schedule.set_defaults(func=cmd_schedule)

    p_activate = subparsers.add_parser("activate", help="Create memory, migrate legacy persona, install schedules")
    p_activate.set_defaults(func=cmd_activate)

    p_deactivate = subparsers.add_parser("deactivate", help="Clear every schedule")
    p_deactivate.set_defaults(func=cmd_deactivate)

    p_uninstall = subparsers.add_parser("uninstall", help="Remove personas, memory and schedules")
    p_uninstall.add_argument("--yes", action="store_true", help="Confirm")
    p_uninstall.set_defaults(func=cmd_uninstall)

    # trash
    p_trash = subparsers.add_parser("trash", help="Move a post to the trash")
    p_trash.add_argument("post_id", type=int)
    p_trash.set_defaults(func=cmd_trash)

    # loop
    p_loop = subparsers.add_parser("loop", help="Run the scheduler polling loop")
    p_loop.set_defaults(func=cmd_loop)

    return parser


def main() -> None:
    load_dotenv()
    try:
        parser = build_parser()
        args = parser.parse_args()
        args.func(args)
    except HostAuthError as e:
        raise SystemExit(str(e))
    except Exception as e:
        # Catch-all to avoid noisy tracebacks for common runtime issues
        raise SystemExit(f"Error: {e}")


if __name__ == "__main__":
    main()
