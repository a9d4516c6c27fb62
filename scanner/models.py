from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import total_ordering
from typing import Any, Dict, List, Optional

CATEGORIES = (
    ("malicious_code", "maliciousCode"),
    ("dependencies", "dependencies"),
    ("network_activity", "networkActivity"),
    ("file_system_safety", "fileSystemSafety"),
    ("credential_safety", "credentialSafety"),
)


class Severity(Enum):
    LOW = "low"
    MODERATE = "moderate"
    SEVERE = "severe"


REPORTABLE_SEVERITIES = (Severity.MODERATE, Severity.SEVERE)


@total_ordering
class SafetyLevel(Enum):
    SAFE = "safe"
    CAUTION = "caution"
    UNSAFE = "unsafe"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    @property
    def score(self) -> str:
        """Storage format of the level (SAFE / CAUTION / UNSAFE)."""
        return self.value.upper()

    def __lt__(self, other):
        if not isinstance(other, SafetyLevel):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def parse(cls, value: Any) -> Optional["SafetyLevel"]:
        if isinstance(value, SafetyLevel):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


_LEVEL_RANK = {SafetyLevel.SAFE: 0, SafetyLevel.CAUTION: 1, SafetyLevel.UNSAFE: 2}


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class RepoMetadata:
    owner: str
    name: str
    default_branch: str = "main"
    language: str = "Unknown"
    description: Optional[str] = None
    stars: int = 0
    last_pushed_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "name": self.name,
            "defaultBranch": self.default_branch,
            "language": self.language,
            "description": self.description,
            "stars": self.stars,
            "lastPushedAt": format_datetime(self.last_pushed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RepoMetadata":
        return cls(
            owner=data.get("owner", ""),
            name=data.get("name", ""),
            default_branch=data.get("defaultBranch") or "main",
            language=data.get("language") or "Unknown",
            description=data.get("description") or None,
            stars=int(data.get("stars") or 0),
            last_pushed_at=parse_datetime(data.get("lastPushedAt")),
        )


@dataclass(frozen=True)
class TreeEntry:
    path: str
    kind: str  # blob, tree, commit
    size: Optional[int] = None

    @property
    def is_file(self) -> bool:
        return self.kind == "blob"


@dataclass(frozen=True)
class FileToScan:
    path: str
    priority: int  # 1 critical .. 4 low
    size: Optional[int] = None


@dataclass
class Finding:
    item: str
    location: str
    issue: str
    severity: Severity
    code_snippet: Optional[str] = None
    batch_id: Optional[int] = None
    dependency_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "item": self.item,
            "location": self.location,
            "issue": self.issue,
            "severity": self.severity.value,
        }
        if self.code_snippet is not None:
            data["codeSnippet"] = self.code_snippet
        if self.batch_id is not None:
            data["batchId"] = self.batch_id
        if self.dependency_url:
            data["dependencyUrl"] = self.dependency_url
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Finding"]:
        """Build a Finding from model output; None when the entry is unusable."""
        if not isinstance(data, dict):
            return None
        try:
            severity = Severity(str(data.get("severity", "")).strip().lower())
        except ValueError:
            return None
        item = data.get("item")
        location = data.get("location")
        if not item or not location:
            return None

        batch_id = data.get("batchId")
        if batch_id is not None:
            try:
                batch_id = int(batch_id)
            except (TypeError, ValueError, OverflowError):
                batch_id = None

        return cls(
            item=str(item),
            location=str(location),
            issue=str(data.get("issue") or ""),
            severity=severity,
            code_snippet=data.get("codeSnippet"),
            batch_id=batch_id,
            dependency_url=data.get("dependencyUrl") or None,
        )


@dataclass
class Findings:
    malicious_code: List[Finding] = field(default_factory=list)
    dependencies: List[Finding] = field(default_factory=list)
    network_activity: List[Finding] = field(default_factory=list)
    file_system_safety: List[Finding] = field(default_factory=list)
    credential_safety: List[Finding] = field(default_factory=list)
    # count of entries discarded while parsing (low severity or malformed)
    dropped: int = field(default=0, compare=False, repr=False)

    def categories(self):
        for attr, key in CATEGORIES:
            yield key, getattr(self, attr)

    def all(self) -> List[Finding]:
        return [f for _, items in self.categories() for f in items]

    @property
    def total(self) -> int:
        return len(self.all())

    def is_empty(self) -> bool:
        return self.total == 0

    def has_severe(self) -> bool:
        return any(f.severity == Severity.SEVERE for f in self.all())

    def merge(self, other: "Findings") -> None:
        for attr, _ in CATEGORIES:
            getattr(self, attr).extend(getattr(other, attr))

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {key: [f.to_dict() for f in items] for key, items in self.categories()}

    @classmethod
    def from_dict(cls, data: Any) -> "Findings":
        """Accepts both {"findings": {...}} and the flat category mapping.

        Entries that are not reportable (low severity, unknown severity, missing
        item or location) are discarded and counted in ``dropped``.
        """
        findings = cls()
        if isinstance(data, dict) and isinstance(data.get("findings"), dict):
            data = data["findings"]
        if not isinstance(data, dict):
            return findings

        for attr, key in CATEGORIES:
            entries = data.get(key)
            if not isinstance(entries, list):
                continue
            target = getattr(findings, attr)
            for entry in entries:
                finding = Finding.from_dict(entry)
                if finding is None or finding.severity not in REPORTABLE_SEVERITIES:
                    findings.dropped += 1
                    continue
                target.append(finding)
        return findings


@dataclass(frozen=True)
class ScanResult:
    repo_url: str
    repo_metadata: Optional[RepoMetadata]
    findings: Findings
    safety_level: SafetyLevel
    ai_summary: str
    scanned_at: Optional[datetime]
    validated: bool = False
    corrections: List[str] = field(default_factory=list)
    trusted_by_star: Optional[bool] = None
    unchanged_since_last_scan: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "repoUrl": self.repo_url,
            "repoMetadata": self.repo_metadata.to_dict() if self.repo_metadata else None,
            "findings": self.findings.to_dict(),
            "safetyLevel": self.safety_level.value,
            "aiSummary": self.ai_summary,
            "scannedAt": format_datetime(self.scanned_at),
            "validated": self.validated,
            "corrections": list(self.corrections),
        }
        if self.trusted_by_star is not None:
            data["trustedByStar"] = self.trusted_by_star
        if self.unchanged_since_last_scan is not None:
            data["unchangedSinceLastScan"] = self.unchanged_since_last_scan
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanResult":
        metadata = data.get("repoMetadata")
        return cls(
            repo_url=data.get("repoUrl", ""),
            repo_metadata=RepoMetadata.from_dict(metadata) if metadata else None,
            findings=Findings.from_dict(data.get("findings") or {}),
            safety_level=SafetyLevel.parse(data.get("safetyLevel")) or SafetyLevel.CAUTION,
            ai_summary=data.get("aiSummary", ""),
            scanned_at=parse_datetime(data.get("scannedAt")),
            validated=bool(data.get("validated", False)),
            corrections=list(data.get("corrections") or []),
            trusted_by_star=data.get("trustedByStar"),
            unchanged_since_last_scan=data.get("unchangedSinceLastScan"),
        )


@dataclass
class PriorRecord:
    owner: str
    name: str
    language: str
    safety_score: str
    result: ScanResult
    scanned_at: datetime
    scanned_by: str = "unknown"
