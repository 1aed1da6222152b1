# Tests for verify/parsing.py and verify/models.py

import pytest

from claimwatch.errors import VerificationParseFailure
from claimwatch.verify.models import Claim, Source, Verdict, VerificationResult
from claimwatch.verify.parsing import (
    NO_EXPLANATION,
    coerce_score,
    extract_json_object,
    parse_verification_text,
)


class TestParseVerificationText:
    def test_plain_json(self):
        parsed = parse_verification_text(
            '{"verdict": "False", "score": 1, "explanation": "Nope.", '
            '"sources": [{"title": "x", "url": "https://x.org"}]}'
        )
        assert parsed.verdict is Verdict.FALSE
        assert parsed.score == 1
        assert parsed.explanation == "Nope."
        assert parsed.sources == [{"title": "x", "url": "https://x.org"}]

    def test_json_in_code_fence_and_prose(self):
        text = (
            "Here is my answer:\n```json\n"
            '{"verdict": "mixed", "score": "3", "explanation": "Partly {true}."}\n'
            "```\nHope that helps."
        )
        parsed = parse_verification_text(text)
        assert parsed.verdict is Verdict.MIXED
        assert parsed.score == 3
        assert parsed.explanation == "Partly {true}."

    def test_skips_unrelated_object(self):
        text = 'Search: {"query": "x"} Result: {"verdict": "True", "score": 5, "explanation": "Yes."}'
        assert parse_verification_text(text).verdict is Verdict.TRUE

    def test_unknown_verdict_is_unverified(self):
        parsed = parse_verification_text('{"verdict": "Probably", "score": 4, "explanation": "?"}')
        assert parsed.verdict is Verdict.UNVERIFIED

    def test_missing_explanation(self):
        parsed = parse_verification_text('{"verdict": "True", "score": 5}')
        assert parsed.explanation == NO_EXPLANATION

    def test_bad_sources_ignored(self):
        parsed = parse_verification_text(
            '{"verdict": "True", "score": 5, "explanation": "e", "sources": ["str", {"url": "u"}]}'
        )
        assert parsed.sources == [{"url": "u"}]
        parsed = parse_verification_text(
            '{"verdict": "True", "score": 5, "explanation": "e", "sources": "none"}'
        )
        assert parsed.sources == []

    def test_labelled_format(self):
        text = "VERDICT: **False**\nSCORE: 2\nEXPLANATION: The moon is not cheese."
        parsed = parse_verification_text(text)
        assert parsed.verdict is Verdict.FALSE
        assert parsed.score == 2
        assert parsed.explanation == "The moon is not cheese."
        assert parsed.sources == []

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "I could not decide.",
            '{"verdict": "True", "score": 5',
            '{"score": 5, "explanation": "no verdict"}',
            "VERDICT: True\nEXPLANATION: missing score",
        ],
    )
    def test_unparseable(self, text):
        with pytest.raises(VerificationParseFailure):
            parse_verification_text(text)


class TestCoerceScore:
    @pytest.mark.parametrize(
        "value,expected",
        [(1, 1), (5, 5), ("4", 4), (3.0, 3), (0, 0), (6, 0), (-1, 0), (None, 0), ("high", 0), (True, 0)],
    )
    def test_values(self, value, expected):
        assert coerce_score(value) == expected


def test_extract_json_object_none():
    assert extract_json_object("no braces here") is None
    assert extract_json_object("[1, 2]") is None


class TestModels:
    def test_verdict_parse(self):
        assert Verdict.parse("TRUE") is Verdict.TRUE
        assert Verdict.parse(" unverified ") is Verdict.UNVERIFIED
        assert Verdict.parse(None) is Verdict.UNVERIFIED

    def test_unverified_result(self):
        result = VerificationResult.unverified("why")
        assert result.verdict is Verdict.UNVERIFIED
        assert result.score == 0
        assert result.sources == ()

    def test_to_dict(self):
        result = VerificationResult(
            verdict=Verdict.TRUE,
            score=5,
            explanation="ok",
            sources=(Source(title="bbc.com", uri="https://bbc.com/x"),),
        )
        assert result.to_dict() == {
            "verdict": "True",
            "score": 5,
            "explanation": "ok",
            "sources": [{"title": "bbc.com", "uri": "https://bbc.com/x"}],
        }

    def test_claim_is_immutable(self):
        claim = Claim(title="t", text="x")
        with pytest.raises(AttributeError):
            claim.text = "y"
        assert Claim(title="t", text="x").id != claim.id
