import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from host_fakes import FakeHost

from marginalia.autonomy.commenter import MAX_OUTPUT_TOKENS, CommentFailure, CommentResult, Commenter
from marginalia.autonomy.hooks import SELECTION_CONTEXT, SHOULD_COMMENT, Hooks
from marginalia.autonomy.memory_log import MemoryLog
from marginalia.autonomy.persona import PersonaRegistry
from marginalia.autonomy.state import OptionStore, StoreWriteError


class _Generator:
    def __init__(self, reply="What a lovely essay on tea.", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def __call__(self, provider, system, prompt, max_tokens):
        self.calls.append({"provider": provider, "system": system, "prompt": prompt, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return self.reply


class CommenterTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = OptionStore(Path(self._tmp.name) / "options.json")
        self.host = FakeHost()
        self.host.add_user(3, "Madame Claude")
        self.host.add_user(5, "Reader")
        self.host.add_post(10, title="On Tea", content="<p>Tea is <b>good</b>.</p><script>x()</script>")
        self.hooks = Hooks()
        self.registry = PersonaRegistry(self.store, self.host)
        self.persona_id = self.registry.save(
            {"name": "Madame Claude", "definition": "You are a tea critic.", "author_id": 3, "provider": "openai"}
        )
        self.memory = MemoryLog(self.store)
        self.generate = _Generator()
        self.commenter = Commenter(self.host, self.registry, self.memory, self.hooks, self.generate)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_direct_comment_runs_full_pipeline(self):
        result = self.commenter.comment(10, self.persona_id, context={})
        self.assertIsInstance(result, CommentResult)
        self.assertTrue(result.ok)
        self.assertEqual(result.post_id, 10)
        self.assertEqual(result.content, "What a lovely essay on tea.")
        self.assertEqual(result.author, "Madame Claude")
        self.assertGreater(result.comment_id, 0)

        created = self.host.comments[-1]
        self.assertEqual(created["author_id"], 3)
        self.assertEqual(created["parent_id"], 0)

        call = self.generate.calls[0]
        self.assertEqual(call["provider"], "openai")
        self.assertEqual(call["max_tokens"], MAX_OUTPUT_TOKENS)
        self.assertTrue(call["system"].startswith("You are a tea critic."))
        self.assertIn("## Your Memory", call["system"])
        self.assertIn("## Instructions", call["system"])
        self.assertIn("# On Tea", call["prompt"])
        self.assertIn("Tea is good.", call["prompt"])
        self.assertNotIn("x()", call["prompt"])

        self.assertIn('Commented on "On Tea" (post #10)', self.memory.read_section("recent_activities"))
        self.assertIn('Post #10 "On Tea": What a lovely essay on tea.', self.memory.read_section("commentary_log"))

    def test_direct_context_goes_through_selection_hook(self):
        self.hooks.add(SELECTION_CONTEXT, lambda ctx, post, strategy: {**ctx, "notes": ["Direct request."]})
        self.commenter.comment(10, self.persona_id)
        self.assertIn("## Why This Post", self.generate.calls[0]["prompt"])
        self.assertIn("- Direct request.", self.generate.calls[0]["prompt"])

    def test_selector_context_is_used_as_given(self):
        context = {"strategy_id": "recent", "strategy_hint": "A recently published post.", "notes": []}
        self.commenter.comment(10, self.persona_id, context=context)
        self.assertIn("A recently published post.", self.generate.calls[0]["prompt"])

    def test_safety_gate_blocks_before_generation_and_memory(self):
        before = self.memory.read()
        self.hooks.add(SHOULD_COMMENT, lambda allowed, post, persona: False)
        result = self.commenter.comment(10, self.persona_id)
        self.assertIsInstance(result, CommentFailure)
        self.assertEqual(result.code, "comment_blocked")
        self.assertEqual(self.generate.calls, [])
        self.assertEqual(self.host.comments, [])
        self.assertEqual(self.memory.read(), before)

    def test_safety_gate_sees_post_and_persona(self):
        seen = []

        def _gate(allowed, post, persona):
            seen.append((post["id"], persona.id))
            return allowed

        self.hooks.add(SHOULD_COMMENT, _gate)
        self.commenter.comment(10, self.persona_id)
        self.assertEqual(seen, [(10, self.persona_id)])

    def test_resolution_failures(self):
        self.host.add_post(11, status="draft")
        cases = [
            ((10, "nobody"), "persona_not_found"),
            ((99, self.persona_id), "content_not_found"),
            ((11, self.persona_id), "content_not_found"),
        ]
        for args, code in cases:
            with self.subTest(code=code, args=args):
                result = self.commenter.comment(*args)
                self.assertEqual(result.code, code)
        self.assertEqual(self.generate.calls, [])

    def test_author_not_found(self):
        del self.host.users[3]
        self.assertEqual(self.commenter.comment(10, self.persona_id).code, "author_not_found")

    def test_parent_must_exist_on_same_post(self):
        self.host.add_post(12)
        other = self.host.add_comment(12, author_id=5, content="Elsewhere.")
        self.assertEqual(self.commenter.comment(10, self.persona_id, other["id"]).code, "parent_not_found")
        self.assertEqual(self.commenter.comment(10, self.persona_id, 999).code, "parent_not_found")
        self.assertEqual(self.generate.calls, [])

    def test_reply_threads_and_records_memory(self):
        parent = self.host.add_comment(10, author_id=5, content="Coffee is better.")
        result = self.commenter.comment(10, self.persona_id, parent["id"])
        self.assertTrue(result.ok)
        self.assertEqual(self.host.comments[-1]["parent_id"], parent["id"])

        prompt = self.generate.calls[0]["prompt"]
        self.assertIn("## Replying To", prompt)
        self.assertIn("**Reader**", prompt)
        self.assertIn("Coffee is better.", prompt)

        self.assertIn(
            "Replied to Reader's comment on \"On Tea\" (post #10)",
            self.memory.read_section("recent_activities"),
        )
        self.assertIn(
            'Post #10 "On Tea" (reply to Reader): What a lovely essay on tea.',
            self.memory.read_section("commentary_log"),
        )

    def test_generation_failure_is_converted(self):
        self.generate.error = RuntimeError("quota exceeded")
        result = self.commenter.comment(10, self.persona_id)
        self.assertEqual(result.code, "generation_failed")
        self.assertIn("quota exceeded", result.message)
        self.assertEqual(self.host.comments, [])

    def test_blank_generation_is_empty_comment(self):
        self.generate.reply = "   \n "
        self.assertEqual(self.commenter.comment(10, self.persona_id).code, "empty_comment")
        self.assertEqual(self.host.comments, [])

    def test_insert_failure(self):
        before = self.memory.read()
        self.host.fail_create = RuntimeError("Site error 500")
        result = self.commenter.comment(10, self.persona_id)
        self.assertEqual(result.code, "insert_failed")
        self.assertEqual(self.memory.read(), before)

    def test_memory_write_failure(self):
        self.memory.read()
        with patch.object(self.memory, "append_entry", side_effect=StoreWriteError("disk full")):
            result = self.commenter.comment(10, self.persona_id)
        self.assertEqual(result.code, "memory_write_failed")
        self.assertEqual(len(self.host.comments), 1)

    def test_long_comment_excerpt_is_clipped(self):
        self.generate.reply = "word " * 60
        self.commenter.comment(10, self.persona_id)
        entry = self.memory.read_section("commentary_log").split(": ", 1)[1]
        self.assertEqual(len(entry), 100)
        self.assertTrue(entry.endswith("..."))

    def test_result_to_dict(self):
        result = self.commenter.comment(10, self.persona_id)
        self.assertEqual(set(result.to_dict()), {"comment_id", "content", "post_id", "author"})


if __name__ == "__main__":
    unittest.main()
