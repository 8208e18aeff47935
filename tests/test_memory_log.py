import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from marginalia.autonomy.memory_log import (
    OPTION_KEY,
    UPDATED_AT_KEY,
    MemoryLog,
    build_markdown,
    default_document,
    parse_sections,
)
from marginalia.autonomy.state import OptionStore, StoreWriteError, utc_date_str


class MemoryLogTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = OptionStore(Path(self._tmp.name) / "options.json")
        self.memory = MemoryLog(self.store)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_first_read_materializes_template(self):
        self.assertIsNone(self.store.get(OPTION_KEY))
        doc = self.memory.read()
        self.assertEqual(doc, default_document())
        self.assertIn("## Recent Activities", doc)
        self.assertIn("## Notes", doc)
        self.assertEqual(self.store.get(OPTION_KEY), doc)
        self.assertTrue(self.store.get(UPDATED_AT_KEY))

    def test_replace_then_read_round_trips_exactly(self):
        doc = "## Recent Activities\n\n- [2026-01-01] hello\n\n## Custom\n\nfree text\n"
        self.memory.replace(doc)
        self.assertEqual(self.memory.read(), doc)

    def test_append_entry_adds_dated_bullet(self):
        self.assertTrue(self.memory.append_entry("notes", "Remember the tea."))
        doc = self.memory.read()
        self.assertIn(f"- [{utc_date_str()}] Remember the tea.", doc)
        self.assertEqual(self.memory.read_section("notes"), f"- [{utc_date_str()}] Remember the tea.")

    def test_append_entry_unknown_section_is_rejected(self):
        before = self.memory.read()
        self.assertFalse(self.memory.append_entry("gossip", "nope"))
        self.assertEqual(self.memory.read(), before)

    def test_retention_keeps_most_recent_twenty_oldest_first(self):
        for i in range(1, 26):
            self.memory.append_entry("commentary_log", f"entry #{i}")
        lines = self.memory.read_section("commentary_log").split("\n")
        self.assertEqual(len(lines), 20)
        self.assertTrue(lines[0].endswith("entry #6"))
        self.assertTrue(lines[-1].endswith("entry #25"))
        body = "\n".join(lines)
        self.assertNotIn("entry #1\n", body + "\n")
        self.assertNotIn("entry #5\n", body + "\n")

    def test_injected_retention_limit(self):
        memory = MemoryLog(self.store, max_entries=3)
        for i in range(5):
            memory.append_entry("notes", f"n{i}")
        self.assertEqual(
            [line.split("] ", 1)[1] for line in memory.read_section("notes").split("\n")],
            ["n2", "n3", "n4"],
        )

    def test_read_section_unknown_or_empty_returns_empty_string(self):
        self.assertEqual(self.memory.read_section("nope"), "")
        self.assertEqual(self.memory.read_section("ongoing_topics"), "")

    def test_append_drops_non_bullet_text_and_keeps_extra_sections(self):
        self.memory.replace(
            "preamble is discarded\n"
            "## Notes\n\nSome prose first.\n- [2026-01-01] kept\n\n"
            "## Reading List\n\nfree text stays\n"
        )
        self.memory.append_entry("notes", "new")
        doc = self.memory.read()
        self.assertNotIn("preamble", doc)
        self.assertNotIn("Some prose first.", doc)
        self.assertIn("- [2026-01-01] kept", doc)
        self.assertIn("## Reading List\n\nfree text stays", doc)
        order = [doc.index(f"## {h}") for h in ("Recent Activities", "Ongoing Topics", "Commentary Log", "Notes")]
        self.assertEqual(order, sorted(order))
        self.assertLess(doc.index("## Notes"), doc.index("## Reading List"))

    def test_multiline_entry_is_flattened(self):
        self.memory.append_entry("notes", "line one\n\n  line two")
        self.assertTrue(self.memory.read_section("notes").endswith("line one line two"))

    def test_updated_at_bumped_on_mutation(self):
        with patch("marginalia.autonomy.memory_log.utc_iso", return_value="2026-10-18T08:00:00+00:00"):
            self.memory.append_entry("notes", "x")
        self.assertEqual(self.memory.updated_at(), "2026-10-18T08:00:00+00:00")

    def test_parse_and_build_helpers(self):
        sections = parse_sections("## A\n\n x \n## B\n")
        self.assertEqual(sections, {"A": "x", "B": ""})
        out = build_markdown({"Notes": "- [2026-01-01] n"}, {"notes": "Notes"})
        self.assertEqual(out, "## Notes\n\n- [2026-01-01] n\n")

    def test_store_write_failure_raises(self):
        self.memory.read()
        with patch("marginalia.autonomy.state.os.replace", side_effect=OSError("disk full")):
            with self.assertRaises(StoreWriteError):
                self.memory.append_entry("notes", "lost")

    def test_uninstall_removes_document_and_timestamp(self):
        self.memory.append_entry("notes", "x")
        self.memory.uninstall()
        self.assertIsNone(self.store.get(OPTION_KEY))
        self.assertIsNone(self.store.get(UPDATED_AT_KEY))


if __name__ == "__main__":
    unittest.main()
