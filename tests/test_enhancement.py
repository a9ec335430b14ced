"""
Tests for enhancement planning and auto-continue.
"""

import unittest

from continuum.enhancement import (
    APPROVAL_REPLY,
    AutoContinueHandler,
    EnhancementDecider,
    IntentClassifier,
    PatternIntentClassifier,
    detect_data_requests,
)
from continuum.errors import InvalidArgument
from continuum.models import Message, ReportRevision, SessionPolicy, Thread


def make_thread():
    return Thread(thread_id="t1", owner_id="alice", title="Chip makers")


def make_revision(body="<h1>NVDA</h1><p>Margins are expanding.</p>", version=1):
    return ReportRevision(revision_id=f"r{version}", thread_id="t1", title="Chips", body=body, version=version)


class TestEnhancementDecider(unittest.TestCase):
    """Test the fresh versus incremental decision."""

    def setUp(self):
        self.decider = EnhancementDecider()
        self.thread = make_thread()

    def test_no_prior_report_is_fresh(self):
        for instruction in ("Add a section on risks", "Update the report", "Start over"):
            plan = self.decider.decide(self.thread, None, instruction)
            self.assertEqual(plan.mode, "fresh")
            self.assertIsNone(plan.context)
            self.assertIsNone(plan.parent_revision)
            self.assertIn(instruction, plan.directive)

    def test_prior_report_is_incremental(self):
        prior = make_revision()

        plan = self.decider.decide(self.thread, prior, "Add a peer comparison table")

        self.assertEqual(plan.mode, "incremental")
        self.assertEqual(plan.context, prior.body)
        self.assertIs(plan.parent_revision, prior)

    def test_incremental_directive_rules(self):
        plan = self.decider.decide(self.thread, make_revision(), "Add a peer comparison table")

        directive = plan.directive.lower()
        self.assertIn("preserve every previously added section", directive)
        self.assertIn("add or modify only what the new request asks for", directive)
        self.assertIn("never regenerate unrelated sections", directive)
        self.assertIn("Add a peer comparison table", plan.directive)

    def test_instruction_with_braces_is_kept_verbatim(self):
        plan = self.decider.decide(self.thread, None, "Render {ticker} as a table")
        self.assertIn("Render {ticker} as a table", plan.directive)

    def test_policy_can_force_fresh(self):
        plan = self.decider.decide(self.thread, make_revision(), "Rewrite it",
                                   policy=SessionPolicy(incremental=False))
        self.assertEqual(plan.mode, "fresh")

    def test_history_without_generated_report_is_fresh(self):
        messages = [Message(message_id="m1", thread_id="t1", role="user", content="Hi")]
        plan = self.decider.decide(self.thread, make_revision(), "Add risks", messages=messages)
        self.assertEqual(plan.mode, "fresh")

    def test_history_with_generated_report_is_incremental(self):
        messages = [
            Message(message_id="m1", thread_id="t1", role="user", content="Cover NVDA"),
            Message(message_id="m2", thread_id="t1", role="assistant", content="Created report v1", report_id="r1"),
        ]
        plan = self.decider.decide(self.thread, make_revision(), "Add risks", messages=messages)
        self.assertEqual(plan.mode, "incremental")

    def test_invalid_arguments(self):
        with self.assertRaises(InvalidArgument):
            self.decider.decide(self.thread, None, "")
        with self.assertRaises(InvalidArgument):
            self.decider.decide(self.thread, None, "   ")
        with self.assertRaises(InvalidArgument):
            self.decider.decide(None, None, "Add risks")

    def test_data_requests_on_plan(self):
        plan = self.decider.decide(self.thread, None, "Show the latest stock price and analyst targets")
        self.assertEqual(plan.data_requests, ["stock_price", "analyst_ratings", "news"])


class TestAutoContinue(unittest.TestCase):
    """Test automatic approval of confirmation requests."""

    def test_confirmation_request_detected(self):
        classifier = PatternIntentClassifier()
        self.assertTrue(classifier.is_confirmation_request("Let me gather the latest quarterly data first."))
        self.assertTrue(classifier.is_confirmation_request("Would you like me to include peers?"))
        self.assertFalse(classifier.is_confirmation_request("Here is the completed report."))

    def test_reply_requires_auto_approve(self):
        handler = AutoContinueHandler()
        text = "Shall I proceed with the analysis?"

        self.assertIsNone(handler.auto_reply(text, SessionPolicy(auto_approve=False)))
        self.assertEqual(handler.auto_reply(text, SessionPolicy(auto_approve=True)), APPROVAL_REPLY)
        self.assertIsNone(handler.auto_reply("Done.", SessionPolicy(auto_approve=True)))

    def test_custom_classifier(self):
        class AlwaysAsking(IntentClassifier):
            def is_confirmation_request(self, text):
                return True

        handler = AutoContinueHandler(AlwaysAsking())
        self.assertEqual(handler.auto_reply("anything", SessionPolicy(auto_approve=True)), APPROVAL_REPLY)

    def test_detect_data_requests(self):
        self.assertEqual(detect_data_requests("Compare revenue with competitors"), ["financials", "peers"])
        self.assertEqual(detect_data_requests("Explain the thesis"), [])


if __name__ == '__main__':
    unittest.main(verbosity=2)
