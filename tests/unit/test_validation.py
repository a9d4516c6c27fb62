"""Unit tests for validation and the deterministic reconciliation that follows it."""

import pytest

from scanner.errors import InferenceError
from scanner.models import Findings, SafetyLevel
from scanner.steps import validation
from scanner.steps.safety_level import CLOSING_SENTENCES
from scanner.steps.validation import VALIDATION_SCHEMA, build_prompt, reconcile, with_closing_sentence

SAFE = CLOSING_SENTENCES[SafetyLevel.SAFE]
CAUTION = CLOSING_SENTENCES[SafetyLevel.CAUTION]
UNSAFE = CLOSING_SENTENCES[SafetyLevel.UNSAFE]


def _answer(findings, level, summary="Summary.", corrections=()):
    return {
        "validated": True,
        "corrections": list(corrections),
        "scanResult": {
            "repoUrl": "https://github.com/octo-dev/left-pad-ng",
            "findings": findings,
            "safetyLevel": level,
            "aiSummary": summary,
        },
    }


class TestWithClosingSentence:
    def test_appends_missing_sentence(self):
        assert with_closing_sentence("No threats found.", SafetyLevel.SAFE) == f"No threats found. {SAFE}"

    def test_keeps_correct_sentence(self):
        summary = f"Two risky deps. {CAUTION}"
        assert with_closing_sentence(summary, SafetyLevel.CAUTION) == summary

    def test_replaces_wrong_sentence(self):
        assert with_closing_sentence(f"Malware found. {CAUTION}", SafetyLevel.UNSAFE) == f"Malware found. {UNSAFE}"

    def test_empty_summary(self):
        assert with_closing_sentence("", SafetyLevel.SAFE) == SAFE


class TestReconcile:
    def test_severe_forces_unsafe(self, make_findings, severe_finding):
        findings = Findings.from_dict(make_findings(maliciousCode=[severe_finding]))

        outcome = reconcile("octo-dev", findings, SafetyLevel.CAUTION, "Looks odd.", [])

        assert outcome.safety_level == SafetyLevel.UNSAFE
        assert outcome.ai_summary.endswith(UNSAFE)
        assert any("raised from caution to unsafe" in c for c in outcome.corrections)

    def test_unsafe_without_severe_is_demoted(self, make_findings, moderate_finding):
        findings = Findings.from_dict(make_findings(dependencies=[moderate_finding]))
        outcome = reconcile("octo-dev", findings, SafetyLevel.UNSAFE, "Bad.", [])
        assert outcome.safety_level == SafetyLevel.CAUTION
        assert outcome.ai_summary.endswith(CAUTION)

    def test_unsafe_with_no_findings_becomes_safe(self):
        outcome = reconcile("octo-dev", Findings(), SafetyLevel.UNSAFE, "Bad.", [])
        assert outcome.safety_level == SafetyLevel.SAFE

    def test_caution_with_no_findings_becomes_safe(self):
        outcome = reconcile("octo-dev", Findings(), SafetyLevel.CAUTION, "Hmm.", [])
        assert outcome.safety_level == SafetyLevel.SAFE
        assert outcome.corrections == ["Safety level lowered from caution to safe: no findings remain"]

    def test_reputable_repo_may_be_safe_with_moderate_findings(self, make_findings, moderate_finding):
        findings = Findings.from_dict(make_findings(dependencies=[moderate_finding]))
        outcome = reconcile("octo-dev", findings, SafetyLevel.SAFE, "Well-known org.", [])
        assert outcome.safety_level == SafetyLevel.SAFE
        assert outcome.corrections == []

    def test_trusted_owner_is_safe_without_severe(self, make_findings, moderate_finding):
        findings = Findings.from_dict(make_findings(dependencies=[moderate_finding]))
        outcome = reconcile("Octo-Dev", findings, SafetyLevel.CAUTION, "Risky dep.", [], trusted_owners=("octo-dev",))
        assert outcome.safety_level == SafetyLevel.SAFE
        assert outcome.ai_summary.endswith(SAFE)

    def test_trusted_owner_does_not_override_severe(self, make_findings, severe_finding):
        findings = Findings.from_dict(make_findings(maliciousCode=[severe_finding]))
        outcome = reconcile("octo-dev", findings, SafetyLevel.SAFE, "Fine.", [], trusted_owners=("octo-dev",))
        assert outcome.safety_level == SafetyLevel.UNSAFE

    def test_dropped_entries_are_recorded(self, make_findings, low_finding):
        findings = Findings.from_dict(make_findings(networkActivity=[low_finding]))
        outcome = reconcile("octo-dev", findings, SafetyLevel.SAFE, "Fine.", [])
        assert outcome.corrections == ["Removed 1 low-severity or malformed finding(s)"]

    def test_model_corrections_are_kept_first(self):
        outcome = reconcile("octo-dev", Findings(), SafetyLevel.SAFE, "Fine.", ["Removed CI workflow finding"])
        assert outcome.corrections == ["Removed CI workflow finding"]


class TestBuildPrompt:
    def test_trusted_owners_are_listed(self, metadata):
        prompt = build_prompt("https://github.com/octo-dev/left-pad-ng", metadata, Findings(), SafetyLevel.SAFE,
                              trusted_owners=("octo-dev", "acme"))
        assert "Owners explicitly configured as trusted: acme, octo-dev" in prompt

    def test_no_trusted_owner_line_by_default(self, metadata):
        prompt = build_prompt("https://github.com/octo-dev/left-pad-ng", metadata, Findings(), SafetyLevel.SAFE)
        assert "explicitly configured" not in prompt


class TestRun:
    def test_severity_invariant_holds_after_model_answer(self, metadata, scripted_client, make_findings,
                                                         severe_finding):
        client = scripted_client(_answer(make_findings(maliciousCode=[severe_finding]), "caution"))

        outcome = validation.run(client, "https://github.com/octo-dev/left-pad-ng", metadata,
                                 Findings(), SafetyLevel.CAUTION)

        assert outcome.safety_level == SafetyLevel.UNSAFE
        assert client.calls[0]["response_schema"] is VALIDATION_SCHEMA
        assert client.calls[0]["temperature"] == 0.2

    def test_model_removes_findings(self, metadata, scripted_client, make_findings, moderate_finding):
        original = Findings.from_dict(make_findings(dependencies=[moderate_finding]))
        client = scripted_client(_answer(make_findings(), "safe", f"Nothing left. {SAFE}",
                                         ["Removed dev-only dependency finding"]))

        outcome = validation.run(client, "https://github.com/octo-dev/left-pad-ng", metadata,
                                 original, SafetyLevel.CAUTION)

        assert outcome.findings.is_empty()
        assert outcome.safety_level == SafetyLevel.SAFE
        assert outcome.corrections == ["Removed dev-only dependency finding"]
        assert outcome.ai_summary == f"Nothing left. {SAFE}"

    def test_missing_findings_keeps_input(self, metadata, scripted_client, make_findings, moderate_finding):
        original = Findings.from_dict(make_findings(dependencies=[moderate_finding]))
        client = scripted_client({"validated": True, "corrections": [], "scanResult": {"safetyLevel": "caution"}})

        outcome = validation.run(client, "https://github.com/octo-dev/left-pad-ng", metadata,
                                 original, SafetyLevel.CAUTION, provisional_summary="One risky dep.")

        assert outcome.findings is original
        assert outcome.ai_summary == f"One risky dep. {CAUTION}"

    def test_non_object_answer_is_an_error(self, metadata, scripted_client):
        client = scripted_client("just text")
        with pytest.raises(InferenceError):
            validation.run(client, "https://github.com/o/r", metadata, Findings(), SafetyLevel.SAFE)
