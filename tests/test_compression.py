"""
Tests for the compression policy.
"""

import unittest

from continuum.agents.base import TextSummarizer
from continuum.compression import CompressionPolicy, compression_ratio, estimate_tokens
from continuum.errors import EmptyInput, InvalidArgument, SummarizerError


class FakeSummarizer(TextSummarizer):
    """Summarizer returning a canned answer and recording its calls."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    async def summarize(self, text):
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.response


class TestTokenEstimates(unittest.TestCase):
    """Test the four-characters-per-token estimate and the ratio formula."""

    def test_estimate_tokens(self):
        self.assertEqual(estimate_tokens(""), 0)
        self.assertEqual(estimate_tokens(None), 0)
        self.assertEqual(estimate_tokens("abcd"), 1)
        self.assertEqual(estimate_tokens("abcde"), 2)
        self.assertEqual(estimate_tokens("x" * 4000), 1000)

    def test_compression_ratio(self):
        self.assertEqual(compression_ratio(1000, 500), 50)
        self.assertEqual(compression_ratio(3, 2), 33)
        self.assertEqual(compression_ratio(8, 7), 13)  # 12.5 rounds up
        self.assertEqual(compression_ratio(100, 100), 0)
        self.assertEqual(compression_ratio(100, 120), -20)


class TestShouldCompress(unittest.TestCase):
    """Test the budget boundary."""

    def setUp(self):
        self.policy = CompressionPolicy(threshold_tokens=100)

    def test_at_budget_is_not_compressed(self):
        self.assertFalse(self.policy.should_compress("x" * 400))

    def test_one_token_over_budget_is_compressed(self):
        self.assertTrue(self.policy.should_compress("x" * 401))

    def test_empty_text_is_never_compressed(self):
        self.assertFalse(self.policy.should_compress(""))
        self.assertFalse(self.policy.should_compress(None))

    def test_default_threshold_from_config(self):
        self.assertEqual(CompressionPolicy().threshold_tokens, 8000)


class TestCompress(unittest.IsolatedAsyncioTestCase):
    """Test the single delegated summarization call."""

    def setUp(self):
        self.policy = CompressionPolicy(threshold_tokens=100)

    async def test_halving_text_reports_fifty_percent(self):
        summarizer = FakeSummarizer(response="y" * 2000)

        result = await self.policy.compress("x" * 4000, summarizer)

        self.assertEqual(result.original_tokens, 1000)
        self.assertEqual(result.new_token_count, 500)
        self.assertEqual(result.compression_ratio, 50)
        self.assertEqual(result.compressed_text, "y" * 2000)
        self.assertEqual(len(summarizer.calls), 1)

    async def test_request_carries_instructions_and_text(self):
        summarizer = FakeSummarizer(response="short")

        await self.policy.compress("Quarterly revenue grew 12%.", summarizer, kind="thread")

        request = summarizer.calls[0]
        self.assertIn("conversation context", request)
        self.assertIn("Quarterly revenue grew 12%.", request)

    async def test_empty_input(self):
        summarizer = FakeSummarizer(response="anything")

        for text in ("", "   \n", None):
            with self.assertRaises(EmptyInput):
                await self.policy.compress(text, summarizer)
        self.assertEqual(summarizer.calls, [])

    async def test_empty_summary_is_an_error(self):
        with self.assertRaises(SummarizerError):
            await self.policy.compress("x" * 500, FakeSummarizer(response="  "))

    async def test_non_text_summary_is_an_error(self):
        with self.assertRaises(SummarizerError):
            await self.policy.compress("x" * 500, FakeSummarizer(response={"text": "short"}))

    async def test_summarizer_failure_is_wrapped(self):
        summarizer = FakeSummarizer(error=ConnectionError("refused"))

        with self.assertRaises(SummarizerError):
            await self.policy.compress("x" * 500, summarizer)
        self.assertEqual(len(summarizer.calls), 1)

    async def test_summarizer_error_passes_through(self):
        original = SummarizerError("timed out")

        with self.assertRaises(SummarizerError) as ctx:
            await self.policy.compress("x" * 500, FakeSummarizer(error=original))
        self.assertIs(ctx.exception, original)

    async def test_unknown_kind(self):
        with self.assertRaises(InvalidArgument):
            await self.policy.compress("x" * 500, FakeSummarizer(response="short"), kind="chapter")


class TestMaybeCompress(unittest.IsolatedAsyncioTestCase):
    """Test compression only happens over budget."""

    def setUp(self):
        self.policy = CompressionPolicy(threshold_tokens=100)

    async def test_within_budget_is_unchanged(self):
        summarizer = FakeSummarizer(response="short")

        result = await self.policy.maybe_compress("x" * 400, summarizer)

        self.assertFalse(result.was_compressed)
        self.assertEqual(result.text, "x" * 400)
        self.assertIsNone(result.metrics)
        self.assertEqual(summarizer.calls, [])

    async def test_over_budget_is_compressed(self):
        summarizer = FakeSummarizer(response="y" * 100)

        result = await self.policy.maybe_compress("x" * 800, summarizer)

        self.assertTrue(result.was_compressed)
        self.assertEqual(result.text, "y" * 100)
        self.assertEqual(result.metrics.compression_ratio, 88)


if __name__ == '__main__':
    unittest.main(verbosity=2)
