"""Provisional safety level and summary from aggregated findings."""

import json
import logging
from dataclasses import dataclass

from scanner.errors import InferenceError
from scanner.models import Findings, RepoMetadata, SafetyLevel

logger = logging.getLogger(__name__)

SAFETY_LEVEL_TEMPERATURE = 0.1
SAFETY_LEVEL_MAX_TOKENS = 32768

CLOSING_SENTENCES = {
    SafetyLevel.SAFE: "This repository is likely safe to contribute to.",
    SafetyLevel.CAUTION: "Exercise caution if contributing to this repository.",
    SafetyLevel.UNSAFE: "We strongly advise against contributing to this repository.",
}

SAFETY_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "safetyLevel": {"type": "STRING", "description": "Overall safety level: safe, caution, or unsafe"},
        "aiSummary": {"type": "STRING", "description": "2-3 sentence summary of the security assessment"},
    },
    "required": ["safetyLevel", "aiSummary"],
}


@dataclass(frozen=True)
class SafetyAssessment:
    safety_level: SafetyLevel
    ai_summary: str


def level_from_findings(findings: Findings) -> SafetyLevel:
    if findings.has_severe():
        return SafetyLevel.UNSAFE
    if not findings.is_empty():
        return SafetyLevel.CAUTION
    return SafetyLevel.SAFE


def build_prompt(findings: Findings, metadata: RepoMetadata) -> str:
    description = f"Description: {metadata.description}\n" if metadata.description else ""
    return f"""Analyze these security findings and provide safety level and summary FOR CONTRIBUTORS:

Repository: {metadata.owner}/{metadata.name}
{description}Language: {metadata.language or "Unknown"}
Stars: {metadata.stars or 0}

Findings:
{json.dumps(findings.to_dict(), indent=2)}

CONTEXT: These findings are threats to open source contributors who clone/install/contribute to this repository.
Only "moderate" or "severe" findings are reported - "low" severity issues are filtered out.

YOUR TASK:
1. Analyze all findings across all categories (DO NOT filter or remove any findings)
2. Determine the safety level for contributors based on severity
3. Write a concise summary (2-3 sentences) explaining the assessment

SAFETY LEVEL RULES:
- "unsafe": ANY severe finding - immediate threat to contributors
- "caution": ONLY moderate findings - potential concerns requiring contributor awareness
- "safe": NO moderate or severe findings

SUMMARY GUIDELINES:
- safe: say no threats were found and end with "{CLOSING_SENTENCES[SafetyLevel.SAFE]}"
- caution: mention the kinds of concerns found and end with "{CLOSING_SENTENCES[SafetyLevel.CAUTION]}"
- unsafe: state the severe threats and end with "{CLOSING_SENTENCES[SafetyLevel.UNSAFE]}"

Return JSON in this exact format:
{{
  "safetyLevel": "safe" | "caution" | "unsafe",
  "aiSummary": "2-3 sentence summary of the security assessment"
}}"""


def run(client, findings: Findings, metadata: RepoMetadata) -> SafetyAssessment:
    """Ask Gemini for a provisional verdict. Inference errors propagate."""
    logger.info("📊 Scoring %d findings across 5 categories", findings.total)

    result = client.generate_json(
        build_prompt(findings, metadata),
        temperature=SAFETY_LEVEL_TEMPERATURE,
        max_output_tokens=SAFETY_LEVEL_MAX_TOKENS,
        response_schema=SAFETY_SCHEMA,
    )
    if not isinstance(result, dict):
        raise InferenceError(f"Expected a JSON object for safety level, got {type(result).__name__}")

    level = SafetyLevel.parse(result.get("safetyLevel"))
    if level is None:
        level = level_from_findings(findings)
        logger.warning("⚠️ Unrecognized safety level %r, using %s from findings", result.get("safetyLevel"), level.value)

    summary = result.get("aiSummary") or ""
    logger.info("✅ Provisional safety level: %s", level.value.upper())
    return SafetyAssessment(safety_level=level, ai_summary=str(summary))
