import time

from dotenv import load_dotenv

from ..host_client import HostAuthError
from .config import load_config
from .generation_utils import has_generation_provider
from .logging_utils import setup_logging
from .service import build_service
from .ui import print_runtime_banner


def run_loop() -> None:
    load_dotenv()
    cfg = load_config()
    logger = setup_logging(cfg)
    service = build_service(cfg)
    service.activate()

    scheduled = service.scheduler.scheduled()
    print_runtime_banner(cfg, personas=len(service.registry.list()), scheduled=len(scheduled))
    logger.info(
        "Autonomy loop starting site_url=%s poll_seconds=%s max_cycles=%s state_path=%s scheduled=%s",
        cfg.site_url,
        cfg.poll_seconds,
        cfg.max_cycles,
        cfg.state_path,
        ",".join(sorted(scheduled)) or "-",
    )
    if cfg.log_path:
        logger.info("File logging enabled path=%s", cfg.log_path)
    for persona in service.registry.list():
        if persona.id in scheduled and not has_generation_provider(cfg, persona.provider):
            logger.warning("Provider not configured persona_id=%s provider=%s", persona.id, persona.provider)

    iteration = 0
    while True:
        iteration += 1
        sleep_seconds = max(1, cfg.poll_seconds)
        sleep_reason = "idle_poll"
        try:
            fired = service.scheduler.run_due()
            logger.debug("Poll cycle=%s fired=%s", iteration, fired)
            if fired:
                sleep_reason = "triggers_fired"
        except HostAuthError as e:
            logger.error("Poll cycle=%s auth_error=%s", iteration, e)
            sleep_reason = "auth_error_backoff"
        except Exception as e:
            logger.exception("Poll cycle=%s loop_error=%s", iteration, e)
            sleep_reason = "loop_error_backoff"

        if cfg.max_cycles > 0 and iteration >= cfg.max_cycles:
            logger.info("Max cycles reached cycles=%s; stopping", iteration)
            return

        logger.info("Sleeping seconds=%s reason=%s", sleep_seconds, sleep_reason)
        time.sleep(sleep_seconds)


if __name__ == "__main__":
    run_loop()
