"""Second-pass review of a scan result.

Gemini removes findings that do not threaten contributors, applies the
reputation rule and rewrites the summary. The answer is then reconciled
locally so that the verdict always agrees with the remaining findings:
``unsafe`` if and only if a severe finding is left.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from scanner.errors import InferenceError
from scanner.models import Findings, RepoMetadata, SafetyLevel
from scanner.steps.risk_detection import FINDINGS_SCHEMA
from scanner.steps.safety_level import CLOSING_SENTENCES, level_from_findings

logger = logging.getLogger(__name__)

VALIDATION_TEMPERATURE = 0.2
VALIDATION_MAX_TOKENS = 65536

VALIDATION_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "validated": {"type": "BOOLEAN", "description": "Whether the scan result has been validated"},
        "corrections": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "List of corrections made during validation",
        },
        "scanResult": {
            "type": "OBJECT",
            "properties": {
                "repoUrl": {"type": "STRING"},
                "findings": FINDINGS_SCHEMA,
                "safetyLevel": {"type": "STRING", "description": "Overall safety level: safe, caution, or unsafe"},
                "aiSummary": {"type": "STRING", "description": "Human-readable summary of the security assessment"},
            },
            "required": ["repoUrl", "findings", "safetyLevel", "aiSummary"],
        },
    },
    "required": ["validated", "corrections", "scanResult"],
}


@dataclass
class ValidationOutcome:
    findings: Findings
    safety_level: SafetyLevel
    ai_summary: str
    corrections: List[str] = field(default_factory=list)


def build_prompt(repo_url: str, metadata: RepoMetadata, findings: Findings, safety_level: SafetyLevel,
                 trusted_owners: Iterable[str] = ()) -> str:
    scan_data = {
        "repoUrl": repo_url,
        "repoMetadata": metadata.to_dict(),
        "findings": findings.to_dict(),
        "safetyLevel": safety_level.value,
    }
    trusted = sorted(trusted_owners)
    trusted_note = (
        f"\n   Owners explicitly configured as trusted: {', '.join(trusted)}\n" if trusted else ""
    )

    return f"""Validate this security scan result for CONTRIBUTOR SAFETY:

{json.dumps(scan_data, indent=2)}

CONTEXT: This scan evaluates threats to open source contributors who clone, install dependencies, or contribute to this repository.

YOUR RESPONSIBILITIES:
1. REMOVE findings that are NOT threats to contributors:
   - GitHub Actions workflows (run on GitHub servers, not contributor machines)
   - Release/publish scripts (only run by maintainers)
   - CI/CD tooling and dev scripts (not executed during clone/install)
   - Network calls made by legitimate dev/test/build tools

2. REMOVE any "low" severity findings (only keep "moderate" or "severe")

3. PRESERVE all fields of the findings you keep: item, location, issue, severity, codeSnippet, batchId, dependencyUrl.
   Only remove entire findings; never drop fields from a kept finding.

4. EVALUATE repository reputation:
   REPUTABLE: accounts of well-known companies or organizations, well-known open source projects and foundations,
   official repositories of major languages, frameworks or tools.{trusted_note}
   - Reputable repo: DISREGARD moderate findings (likely false positives) unless a severe finding exists
   - Unknown/unverified account: keep moderate findings

5. ADJUST safetyLevel:
   - "unsafe": any severe finding (regardless of reputation)
   - "caution": unknown repo with moderate findings
   - "safe": reputable repo with only moderate findings, OR no findings

6. GENERATE aiSummary reflecting the corrected findings, reputation and safety level. End it with exactly:
   - safe: "{CLOSING_SENTENCES[SafetyLevel.SAFE]}"
   - caution: "{CLOSING_SENTENCES[SafetyLevel.CAUTION]}"
   - unsafe: "{CLOSING_SENTENCES[SafetyLevel.UNSAFE]}"

7. List every correction you made (empty array if none)

Return JSON in this exact format:
{{
  "validated": true,
  "corrections": ["..."],
  "scanResult": {{
    "repoUrl": "same as input",
    "findings": {{"maliciousCode": [], "dependencies": [], "networkActivity": [], "fileSystemSafety": [], "credentialSafety": []}},
    "safetyLevel": "safe" | "caution" | "unsafe",
    "aiSummary": "summary ending with the closing sentence for the safety level"
  }}
}}

Do NOT include "repoMetadata" in your response."""


def with_closing_sentence(summary: str, level: SafetyLevel) -> str:
    """Make the summary end with the closing sentence for ``level``."""
    text = (summary or "").strip()
    for other, sentence in CLOSING_SENTENCES.items():
        if other != level and text.endswith(sentence):
            text = text[: -len(sentence)].rstrip()
    closing = CLOSING_SENTENCES[level]
    if text.endswith(closing):
        return text
    return f"{text} {closing}".strip()


def reconcile(owner: str, findings: Findings, proposed: Optional[SafetyLevel], summary: str,
              corrections: List[str], trusted_owners: Iterable[str] = ()) -> ValidationOutcome:
    corrections = list(corrections)
    if findings.dropped:
        corrections.append(f"Removed {findings.dropped} low-severity or malformed finding(s)")

    level = proposed or level_from_findings(findings)
    severe = findings.has_severe()

    if not severe and owner.lower() in {o.lower() for o in trusted_owners} and level != SafetyLevel.SAFE:
        corrections.append(f"Safety level set to safe: {owner} is a trusted owner and no severe findings remain")
        level = SafetyLevel.SAFE

    if severe and level != SafetyLevel.UNSAFE:
        corrections.append(f"Safety level raised from {level.value} to unsafe: severe findings remain")
        level = SafetyLevel.UNSAFE
    elif not severe and level == SafetyLevel.UNSAFE:
        demoted = SafetyLevel.CAUTION if not findings.is_empty() else SafetyLevel.SAFE
        corrections.append(f"Safety level lowered from unsafe to {demoted.value}: no severe findings remain")
        level = demoted
    elif findings.is_empty() and level != SafetyLevel.SAFE:
        corrections.append(f"Safety level lowered from {level.value} to safe: no findings remain")
        level = SafetyLevel.SAFE

    return ValidationOutcome(
        findings=findings,
        safety_level=level,
        ai_summary=with_closing_sentence(summary, level),
        corrections=corrections,
    )


def run(client, repo_url: str, metadata: RepoMetadata, findings: Findings, safety_level: SafetyLevel,
        provisional_summary: str = "", trusted_owners: Iterable[str] = ()) -> ValidationOutcome:
    """Validate a provisional result. Inference errors propagate."""
    trusted_owners = tuple(trusted_owners)
    logger.info("✔️ Validating scan result (provisional level: %s)", safety_level.value.upper())

    result = client.generate_json(
        build_prompt(repo_url, metadata, findings, safety_level, trusted_owners),
        temperature=VALIDATION_TEMPERATURE,
        max_output_tokens=VALIDATION_MAX_TOKENS,
        response_schema=VALIDATION_SCHEMA,
    )
    if not isinstance(result, dict):
        raise InferenceError(f"Expected a JSON object from validation, got {type(result).__name__}")

    scan_result = result.get("scanResult")
    if not isinstance(scan_result, dict):
        scan_result = {}

    if "findings" in scan_result:
        validated_findings = Findings.from_dict(scan_result["findings"])
    else:
        validated_findings = findings

    proposed = SafetyLevel.parse(scan_result.get("safetyLevel")) or safety_level
    summary = scan_result.get("aiSummary") or provisional_summary
    corrections = [str(c) for c in (result.get("corrections") or []) if c]

    outcome = reconcile(metadata.owner, validated_findings, proposed, summary, corrections, trusted_owners)
    if outcome.corrections:
        logger.info("⚠️ %d correction(s) made by review", len(outcome.corrections))
    else:
        logger.info("✅ No corrections needed")
    return outcome
