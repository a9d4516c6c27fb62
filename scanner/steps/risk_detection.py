"""Batched risk detection over fetched repository files."""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from scanner.errors import InferenceError
from scanner.github_client import SKIPPED_PREFIX
from scanner.models import Findings, RepoMetadata

logger = logging.getLogger(__name__)

BATCH_SIZE = 5
RISK_DETECTION_TEMPERATURE = 0.2
RISK_DETECTION_MAX_TOKENS = 65536

_FINDING_PROPERTIES = {
    "item": {"type": "STRING"},
    "location": {"type": "STRING"},
    "issue": {"type": "STRING"},
    "severity": {"type": "STRING"},
    "codeSnippet": {"type": "STRING"},
    "batchId": {"type": "NUMBER"},
}
_FINDING_REQUIRED = ["item", "location", "issue", "severity", "codeSnippet", "batchId"]

FINDING_SCHEMA = {"type": "OBJECT", "properties": _FINDING_PROPERTIES, "required": _FINDING_REQUIRED}
DEPENDENCY_FINDING_SCHEMA = {
    "type": "OBJECT",
    "properties": {**_FINDING_PROPERTIES, "dependencyUrl": {"type": "STRING"}},
    "required": _FINDING_REQUIRED,
}

FINDINGS_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "maliciousCode": {"type": "ARRAY", "items": FINDING_SCHEMA},
        "dependencies": {"type": "ARRAY", "items": DEPENDENCY_FINDING_SCHEMA},
        "networkActivity": {"type": "ARRAY", "items": FINDING_SCHEMA},
        "fileSystemSafety": {"type": "ARRAY", "items": FINDING_SCHEMA},
        "credentialSafety": {"type": "ARRAY", "items": FINDING_SCHEMA},
    },
    "required": ["maliciousCode", "dependencies", "networkActivity", "fileSystemSafety", "credentialSafety"],
}

RISK_SCHEMA = {
    "type": "OBJECT",
    "properties": {"findings": FINDINGS_SCHEMA},
    "required": ["findings"],
}


@dataclass
class RiskReport:
    findings: Findings = field(default_factory=Findings)
    batches_total: int = 0
    batches_failed: int = 0

    @property
    def complete(self) -> bool:
        return self.batches_failed == 0


def make_batches(paths: List[str], batch_size: int = BATCH_SIZE) -> List[List[str]]:
    return [paths[i:i + batch_size] for i in range(0, len(paths), batch_size)]


def _format_file(path: str, content: Optional[str]) -> str:
    if not content:
        return f"{path}: [Could not read]"
    if content.startswith(SKIPPED_PREFIX):
        return f"{path}: {content}"
    return f"\n=== {path} ===\n{content}\n"


def build_prompt(batch: List[str], batch_num: int, metadata: RepoMetadata, contents: Dict[str, Optional[str]]) -> str:
    """Build the risk detection prompt for one batch of files."""
    files_block = "\n".join(_format_file(path, contents.get(path)) for path in batch)

    return f"""Analyze these {len(batch)} files from {metadata.owner}/{metadata.name} for security threats TO CONTRIBUTORS:

{files_block}


YOUR JOB: Identify threats to OPEN SOURCE CONTRIBUTORS who clone, install dependencies, or contribute to this repository.

IGNORE these (NOT threats to contributors):
- GitHub Actions workflows (.github/workflows/*) - run on GitHub servers, not contributor machines
- Release/publish scripts (scripts/release/*, scripts/publish/*) - only run by maintainers
- CI/CD tooling and dev scripts - not executed during clone/install by contributors
- Legitimate network calls in dev/test/build tools
- Standard package manager operations (npm install, yarn, etc.)

ONLY REPORT these actual threats to contributors:
- Malicious code in package.json scripts (preinstall, postinstall, install) that auto-run on npm install
- Malicious dependencies that execute harmful code when installed
- Obfuscated code designed to hide malicious behavior
- Credential harvesting from contributor environments
- Code that mines crypto or installs backdoors on contributor machines
- Executable files that auto-run and compromise contributor systems

SEVERITY RULES - ONLY report "moderate" or "severe":
- "severe": Immediate threat to contributors (malware, credential theft, system compromise)
- "moderate": Potential threat requiring investigation (suspicious patterns, risky dependencies)
- DO NOT report "low" severity findings - skip them entirely

GUIDELINES:
1. Keep "issue" explanations to one sentence
2. "codeSnippet": the exact line where the issue occurs; at most 2 lines with original formatting, then "..." if more code follows. Preserve newlines as \\n.
3. CI/CD and dev tooling are normal, not threats
4. If a category has no moderate/severe issues, return an empty array

Each finding MUST include:
{{
  "item": "Short label for the issue (max 4-5 words)",
  "location": "Exact file path",
  "issue": "Brief explanation of the threat to contributors (one sentence)",
  "severity": "moderate" | "severe",
  "codeSnippet": "The exact line where the issue occurs",
  "batchId": {batch_num},
  "dependencyUrl": "https://npmjs.com/package/name (dependency findings only)"
}}

Return JSON in this exact format:
{{
  "findings": {{
    "maliciousCode": [],
    "dependencies": [],
    "networkActivity": [],
    "fileSystemSafety": [],
    "credentialSafety": []
  }}
}}"""


def _analyze_batch(client, batch: List[str], batch_num: int, metadata: RepoMetadata,
                   contents: Dict[str, Optional[str]]) -> Findings:
    prompt = build_prompt(batch, batch_num, metadata, contents)
    result = client.generate_json(
        prompt,
        temperature=RISK_DETECTION_TEMPERATURE,
        max_output_tokens=RISK_DETECTION_MAX_TOKENS,
        response_schema=RISK_SCHEMA,
    )
    if not isinstance(result, dict):
        raise InferenceError(f"Expected a JSON object for batch {batch_num}, got {type(result).__name__}")

    findings = Findings.from_dict(result)
    for finding in findings.all():
        if finding.batch_id is None:
            finding.batch_id = batch_num
    if findings.dropped:
        logger.info("   Dropped %d low-severity or malformed findings from batch %d", findings.dropped, batch_num)
    return findings


def run(client, metadata: RepoMetadata, contents: Dict[str, Optional[str]], batch_size: int = BATCH_SIZE) -> RiskReport:
    """Analyze files in priority order, one Gemini call per batch.

    A batch whose call fails is logged and skipped, so the returned findings
    are a lower bound whenever ``batches_failed`` is non-zero.
    """
    batches = make_batches(list(contents), batch_size)
    report = RiskReport(batches_total=len(batches))
    logger.info("🔎 Analyzing %d files in %d batches (%d per batch)", len(contents), len(batches), batch_size)

    scan_started = time.monotonic()
    for batch_num, batch in enumerate(batches, start=1):
        logger.info("📋 Batch %d/%d: %s", batch_num, len(batches), ", ".join(batch))
        batch_started = time.monotonic()
        try:
            findings = _analyze_batch(client, batch, batch_num, metadata, contents)
        except InferenceError as e:
            report.batches_failed += 1
            logger.warning("❌ Batch %d failed, skipping: %s", batch_num, e)
            continue

        report.findings.merge(findings)
        logger.info("✅ Batch %d done: %d findings (batch %.2fs, scan %.2fs)", batch_num, findings.total,
                    time.monotonic() - batch_started, time.monotonic() - scan_started)
        logger.debug("Batch %d findings: %s", batch_num, json.dumps(findings.to_dict(), indent=2))

    if report.batches_failed:
        logger.warning("⚠️ %d of %d batches failed; findings are a lower bound",
                       report.batches_failed, report.batches_total)
    logger.info("📊 Total findings: %d", report.findings.total)
    return report
