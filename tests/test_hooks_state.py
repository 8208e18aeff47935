import json
import logging
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from marginalia.autonomy.config import load_config
from marginalia.autonomy.hooks import Hooks
from marginalia.autonomy.logging_utils import LOGGER_NAME, ColorFormatter, setup_logging
from marginalia.autonomy.state import OptionStore, StoreWriteError


class HooksTests(unittest.TestCase):
    def test_apply_threads_value_in_registration_order(self):
        hooks = Hooks()
        hooks.add("h", lambda value, extra: value + [f"first:{extra}"])
        hooks.add("h", lambda value, extra: value + ["second"])
        self.assertEqual(hooks.apply("h", [], "x"), ["first:x", "second"])

    def test_apply_without_handlers_returns_value(self):
        self.assertEqual(Hooks().apply("nothing", 5), 5)


class OptionStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "nested" / "options.json"
        self.store = OptionStore(self.path)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_set_get_delete(self):
        self.assertEqual(self.store.get("k", "dflt"), "dflt")
        self.store.set("k", {"a": 1})
        self.assertEqual(self.store.get("k"), {"a": 1})
        self.assertEqual(json.loads(self.path.read_text(encoding="utf-8")), {"k": {"a": 1}})
        self.assertTrue(self.store.delete("k"))
        self.assertFalse(self.store.delete("k"))

    def test_failed_write_raises_and_keeps_previous_document(self):
        self.store.set("k", 1)
        with patch("marginalia.autonomy.state.os.replace", side_effect=OSError("read-only")):
            with self.assertRaises(StoreWriteError):
                self.store.set("k", 2)
        self.assertEqual(self.store.get("k"), 1)
        self.assertEqual(list(self.path.parent.glob(".options-*")), [])

    def test_unserializable_value_leaves_no_temp_file(self):
        self.store.set("k", 1)
        with self.assertRaises(StoreWriteError):
            self.store.set("k", object())
        self.assertEqual(self.store.get("k"), 1)
        self.assertEqual(list(self.path.parent.glob(".options-*")), [])


class LoggingTests(unittest.TestCase):
    def test_setup_logging_adds_file_handler(self):
        with tempfile.TemporaryDirectory() as tmp:
            env = {"MARGINALIA_LOG_PATH": str(Path(tmp) / "logs" / "run.log"), "NO_COLOR": "1"}
            with patch.dict(os.environ, env, clear=True):
                logger = setup_logging(load_config())
            self.assertEqual(logger.name, LOGGER_NAME)
            self.assertEqual(len(logger.handlers), 2)
            for handler in logger.handlers:
                handler.close()
            logger.handlers.clear()
            logger.propagate = True

    def test_color_formatter_tags_cycle_phases(self):
        record = logging.LogRecord(LOGGER_NAME, logging.INFO, __file__, 1, "cycle success persona_id=x", None, None)
        self.assertIn("[SUCCESS]", ColorFormatter("%(message)s").format(record))

    def test_color_formatter_tags_failed_cycles(self):
        record = logging.LogRecord(
            LOGGER_NAME, logging.ERROR, __file__, 1, "cycle failed persona_id=x code=generation_failed", None, None
        )
        formatted = ColorFormatter("%(message)s").format(record)
        self.assertIn("[FAILED] cycle failed", formatted)
        self.assertNotIn("[SUCCESS]", formatted)


if __name__ == "__main__":
    unittest.main()
