"""Scan orchestration.

    metadata -> unchanged shortcut -> trusted shortcut
             -> fetch -> risk detection -> safety level -> validation -> store

Both shortcuts can be switched off through configuration. Fetch, scoring and
validation errors abort the scan; batch, file and store errors do not.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from scanner.artifacts import ArtifactWriter
from scanner.config import ScanConfig
from scanner.errors import ConfigError, StoreError
from scanner.gemini import GeminiClient, shared_rate_limiter
from scanner.github_client import GitHubContentProvider, parse_repo_url
from scanner.models import Findings, PriorRecord, RepoMetadata, SafetyLevel, ScanResult
from scanner.steps import risk_detection, safety_level, validation
from scanner.steps.safety_level import CLOSING_SENTENCES
from scanner.store import ScanStore, record_for

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def is_unchanged_since(metadata: RepoMetadata, prior: Optional[PriorRecord]) -> bool:
    """True when the repo has not been pushed to since the prior scan.

    A repo without a push timestamp, or a record without a scan time, counts
    as changed.
    """
    if prior is None or prior.scanned_at is None or metadata.last_pushed_at is None:
        return False
    return _aware(metadata.last_pushed_at) <= _aware(prior.scanned_at)


def trusted_summary(metadata: RepoMetadata) -> str:
    return (
        f"{metadata.full_name} has {metadata.stars:,} stars on GitHub, which indicates broad community "
        "trust, so the full security scan was skipped. "
        + CLOSING_SENTENCES[SafetyLevel.SAFE]
    )


class ScanWorkflow:
    """Runs one scan per ``scan()`` call; safe to share across threads."""

    def __init__(
        self,
        config: ScanConfig,
        provider: Optional[GitHubContentProvider] = None,
        client=None,
        store: Optional[ScanStore] = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.config = config
        self.provider = provider or GitHubContentProvider(config.github_token)
        self._client = client
        self.store = store
        self._now = now

    @property
    def client(self):
        # built on first use so shortcut-only scans need no Gemini key
        if self._client is None:
            if not self.config.gemini_api_key:
                raise ConfigError("GEMINI_API_KEY is required for a full scan")
            self._client = GeminiClient(
                api_key=self.config.gemini_api_key,
                model_name=self.config.gemini_model,
                limiter=shared_rate_limiter(self.config.min_request_interval),
                max_retries=self.config.max_retries,
                rate_limit_base_wait=self.config.rate_limit_base_wait,
                retry_wait=self.config.retry_wait,
            )
        return self._client

    def scan(self, repo_url: str, scanned_by: str = "cli") -> ScanResult:
        owner, name = parse_repo_url(repo_url)
        logger.info("🔍 Starting scan for %s/%s", owner, name)

        metadata = self.provider.get_metadata(owner, name)
        prior = self._find_prior(owner, name)

        if self.config.unchanged_check_enabled:
            cached = self._unchanged_result(metadata, prior)
            if cached is not None:
                return cached
        else:
            logger.info("Unchanged repo check disabled - proceeding")

        if self.config.star_check_enabled:
            if metadata.stars >= self.config.star_threshold:
                logger.info("⭐ %s has %d stars - marking as trusted and skipping scan",
                            metadata.full_name, metadata.stars)
                result = self._trusted_result(repo_url, metadata)
                self._save(owner, name, result, scanned_by)
                return result
        else:
            logger.info("Star threshold check disabled - proceeding with full scan")

        result = self._full_scan(repo_url, owner, name, metadata)
        self._save(owner, name, result, scanned_by)
        return result

    def _find_prior(self, owner: str, name: str) -> Optional[PriorRecord]:
        if self.store is None or not self.config.unchanged_check_enabled:
            return None
        try:
            return self.store.find_by_owner_and_name(owner, name)
        except StoreError as e:
            logger.warning("⚠️ Could not read previous scan of %s/%s: %s", owner, name, e)
            return None

    def _unchanged_result(self, metadata: RepoMetadata, prior: Optional[PriorRecord]) -> Optional[ScanResult]:
        if not is_unchanged_since(metadata, prior):
            return None
        logger.info("♻️ %s unchanged since last scan on %s - returning cached results",
                    metadata.full_name, prior.scanned_at.isoformat())
        previous = prior.result
        return ScanResult(
            repo_url=previous.repo_url,
            repo_metadata=previous.repo_metadata or metadata,
            findings=previous.findings,
            safety_level=previous.safety_level,
            ai_summary=previous.ai_summary,
            scanned_at=previous.scanned_at or prior.scanned_at,
            validated=previous.validated,
            corrections=list(previous.corrections),
            trusted_by_star=previous.trusted_by_star,
            unchanged_since_last_scan=True,
        )

    def _trusted_result(self, repo_url: str, metadata: RepoMetadata) -> ScanResult:
        return ScanResult(
            repo_url=repo_url,
            repo_metadata=metadata,
            findings=Findings(),
            safety_level=SafetyLevel.SAFE,
            ai_summary=trusted_summary(metadata),
            scanned_at=self._now(),
            validated=False,
            corrections=[],
            trusted_by_star=True,
        )

    def _full_scan(self, repo_url: str, owner: str, name: str, metadata: RepoMetadata) -> ScanResult:
        artifacts = ArtifactWriter(self.config.results_dir, owner, name, self._now())
        limiter = getattr(self.client, "limiter", None)
        if limiter is not None:
            info = limiter.rate_limit_info()
            logger.info("📊 Gemini rate limit: %s requests/minute (%ss between requests)",
                        info["rpm"], info["min_interval_seconds"])

        logger.info("📦 Step 1/4: Fetching repository content")
        content = self.provider.fetch_repo_content(owner, name, metadata)
        logger.info("   %d production deps, %d dev deps, %d install scripts, %d executables",
                    len(content.dependencies["production"]), len(content.dependencies["dev"]),
                    len(content.install_scripts), len(content.executables))

        logger.info("🔎 Step 2/4: Analyzing for security risks")
        report = risk_detection.run(self.client, metadata, content.contents, self.config.batch_size)
        artifacts.write("step-2-findings.json", {
            "findings": report.findings.to_dict(),
            "batchesTotal": report.batches_total,
            "batchesFailed": report.batches_failed,
        })

        logger.info("📊 Step 3/4: Calculating safety level")
        assessment = safety_level.run(self.client, report.findings, metadata)
        artifacts.write("step-3-safety.json", {
            "safetyLevel": assessment.safety_level.value,
            "aiSummary": assessment.ai_summary,
        })

        logger.info("✔️ Step 4/4: Validating scan results")
        outcome = validation.run(
            self.client,
            repo_url,
            metadata,
            report.findings,
            assessment.safety_level,
            provisional_summary=assessment.ai_summary,
            trusted_owners=self.config.trusted_owners,
        )
        artifacts.write("step-4-validation.json", {
            "findings": outcome.findings.to_dict(),
            "safetyLevel": outcome.safety_level.value,
            "aiSummary": outcome.ai_summary,
            "corrections": outcome.corrections,
        })

        result = ScanResult(
            repo_url=repo_url,
            repo_metadata=metadata,
            findings=outcome.findings,
            safety_level=outcome.safety_level,
            ai_summary=outcome.ai_summary,
            scanned_at=self._now(),
            validated=True,
            corrections=outcome.corrections,
        )
        path = artifacts.write("final-scan-result.json", result.to_dict())
        if path:
            logger.info("💾 Step artifacts saved to %s", artifacts.folder)
        logger.info("✅ Scan of %s complete: %s", metadata.full_name, result.safety_level.value.upper())
        return result

    def _save(self, owner: str, name: str, result: ScanResult, scanned_by: str) -> None:
        if self.store is None:
            return
        try:
            self.store.upsert(record_for(owner, name, result, scanned_by))
        except StoreError as e:
            logger.error("❌ Failed to save scan of %s/%s: %s", owner, name, e)
