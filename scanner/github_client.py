"""GitHub content provider.

Fetches repository metadata, the recursive file tree and the contents of
security-relevant files, and decides which files are worth sending to Gemini.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import requests
from github import Auth, Github, GithubException

from scanner.errors import InvalidRepoUrlError, RepoFetchError
from scanner.models import FileToScan, RepoMetadata, TreeEntry

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 100_000
LOCK_FILES = ("package-lock.json", "yarn.lock", "pnpm-lock.yaml")
LOCK_FILE_MARKER = "[Skipped - lock file]"
SKIPPED_PREFIX = "[Skipped"

INSTALL_SCRIPT_KEYS = ["preinstall", "install", "postinstall", "prepare", "prepublish", "prepublishOnly"]
EXECUTABLE_EXTENSIONS = (".exe", ".sh", ".bat", ".bin", ".cmd", ".ps1")

_REPO_URL = re.compile(r"github\.com/([^/]+)/([^/]+)")

# (priority, patterns); the first tier with a matching pattern wins
PRIORITY_TIERS = [
    (1, [
        re.compile(r"^package\.json$", re.IGNORECASE),
        re.compile(r"^\.env", re.IGNORECASE),
        re.compile(r"credentials", re.IGNORECASE),
        re.compile(r"secrets", re.IGNORECASE),
        re.compile(r"^\.npmrc$", re.IGNORECASE),
        re.compile(r"^\.yarnrc$", re.IGNORECASE),
        re.compile(r"password", re.IGNORECASE),
        re.compile(r"private.*key", re.IGNORECASE),
    ]),
    (2, [
        re.compile(r"postinstall\.(js|ts|sh)$", re.IGNORECASE),
        re.compile(r"preinstall\.(js|ts|sh)$", re.IGNORECASE),
        re.compile(r"install\.(js|ts|sh)$", re.IGNORECASE),
        re.compile(r"^scripts/(install|postinstall|preinstall)", re.IGNORECASE),
        re.compile(r"^bin/", re.IGNORECASE),
    ]),
    (3, [
        re.compile(r"^scripts/.*\.(js|ts)$", re.IGNORECASE),
        re.compile(r"^build/.*\.(js|ts)$", re.IGNORECASE),
        re.compile(r"^tools/.*\.(js|ts)$", re.IGNORECASE),
        re.compile(r"^\.github/workflows/", re.IGNORECASE),
    ]),
    (4, [
        re.compile(r"\.exe$", re.IGNORECASE),
        re.compile(r"\.bat$", re.IGNORECASE),
        re.compile(r"\.cmd$", re.IGNORECASE),
        re.compile(r"\.sh$", re.IGNORECASE),
        re.compile(r"\.ps1$", re.IGNORECASE),
        re.compile(r"config\.json$", re.IGNORECASE),
    ]),
]

PRIORITY_LABELS = {1: "Critical", 2: "High", 3: "Medium", 4: "Low"}


def parse_repo_url(url: str) -> Tuple[str, str]:
    """Return (owner, name) for a GitHub repository URL."""
    match = _REPO_URL.search(url or "")
    if not match:
        raise InvalidRepoUrlError(f"Invalid GitHub URL: {url}")
    return match.group(1), re.sub(r"\.git$", "", match.group(2))


def classify(path: str) -> Optional[int]:
    for priority, patterns in PRIORITY_TIERS:
        if any(p.search(path) for p in patterns):
            return priority
    return None


def prioritize(tree: List[TreeEntry]) -> List[FileToScan]:
    """Pick the security-relevant files of a tree, most critical first.

    Files matching no tier are left out. ``sorted`` is stable, so files of the
    same tier keep their tree order.
    """
    files = []
    for entry in tree:
        if not entry.is_file:
            continue
        priority = classify(entry.path)
        if priority is None:
            continue
        files.append(FileToScan(path=entry.path, priority=priority, size=entry.size))
    return sorted(files, key=lambda f: f.priority)


def find_executables(tree: List[TreeEntry]) -> List[str]:
    return [e.path for e in tree if e.is_file and e.path.endswith(EXECUTABLE_EXTENSIONS)]


def extract_install_scripts(manifest: Optional[dict]) -> List[str]:
    """Lifecycle scripts that npm runs on install, as "<key>: <command>"."""
    scripts = (manifest or {}).get("scripts")
    if not isinstance(scripts, dict):
        return []
    return [f"{key}: {scripts[key]}" for key in INSTALL_SCRIPT_KEYS if scripts.get(key)]


def parse_manifest(content: Optional[str]) -> Optional[dict]:
    if not content or not content.strip():
        logger.warning("⚠️ package.json not found or empty")
        return None
    if content.startswith(SKIPPED_PREFIX):
        logger.warning("⚠️ package.json was skipped: %s", content)
        return None
    try:
        manifest = json.loads(content)
    except json.JSONDecodeError as e:
        logger.warning("⚠️ Failed to parse package.json: %s", e)
        return None
    return manifest if isinstance(manifest, dict) else None


def extract_dependencies(manifest: Optional[dict]) -> Dict[str, List[str]]:
    manifest = manifest or {}

    def _format(section: str) -> List[str]:
        deps = manifest.get(section)
        if not isinstance(deps, dict):
            return []
        return [f"{name}@{version}" for name, version in deps.items()]

    return {"production": _format("dependencies"), "dev": _format("devDependencies")}


def is_lock_file(path: str) -> bool:
    return any(lock in path for lock in LOCK_FILES)


def too_large_marker(size: int) -> str:
    return f"[Skipped - file too large: {size} bytes]"


@dataclass
class RepoContent:
    """Everything fetched from GitHub for one scan."""

    metadata: RepoMetadata
    tree: List[TreeEntry]
    files: List[FileToScan]
    contents: Dict[str, Optional[str]]
    manifest: Optional[dict] = None
    install_scripts: List[str] = field(default_factory=list)
    executables: List[str] = field(default_factory=list)
    dependencies: Dict[str, List[str]] = field(default_factory=lambda: {"production": [], "dev": []})


class GitHubContentProvider:
    """Reads repositories through the GitHub REST API."""

    def __init__(self, token: Optional[str] = None, gh: Optional[Github] = None):
        if gh is None:
            gh = Github(auth=Auth.Token(token)) if token else Github()
        self._gh = gh

    def _repo(self, owner: str, name: str):
        # lazy handle: no request until a tree or contents call is made
        return self._gh.get_repo(f"{owner}/{name}", lazy=True)

    def get_metadata(self, owner: str, name: str) -> RepoMetadata:
        logger.info("📡 Fetching repository info for %s/%s", owner, name)
        try:
            repo = self._gh.get_repo(f"{owner}/{name}")
            metadata = RepoMetadata(
                owner=repo.owner.login,
                name=repo.name,
                default_branch=repo.default_branch or "main",
                language=repo.language or "Unknown",
                description=repo.description or None,
                stars=repo.stargazers_count or 0,
                last_pushed_at=repo.pushed_at,
            )
        except GithubException as e:
            raise RepoFetchError(
                f"Failed to fetch repo metadata for {owner}/{name}: {e.status} {e.data}",
                owner=owner, name=name, status=e.status,
            ) from e
        except requests.RequestException as e:
            raise RepoFetchError(
                f"Failed to fetch repo metadata for {owner}/{name}: {e}", owner=owner, name=name,
            ) from e

        logger.info("⭐ %s has %d stars, last pushed at %s", metadata.full_name, metadata.stars, metadata.last_pushed_at)
        return metadata

    def get_tree(self, owner: str, name: str, branch: str) -> List[TreeEntry]:
        logger.info("🌳 Fetching file tree of %s/%s@%s", owner, name, branch)
        try:
            git_tree = self._repo(owner, name).get_git_tree(branch, recursive=True)
        except GithubException as e:
            raise RepoFetchError(
                f"Failed to fetch repo tree for {owner}/{name}: {e.status} {e.data}",
                owner=owner, name=name, status=e.status,
            ) from e
        except requests.RequestException as e:
            raise RepoFetchError(
                f"Failed to fetch repo tree for {owner}/{name}: {e}", owner=owner, name=name,
            ) from e

        tree = [TreeEntry(path=el.path, kind=el.type, size=el.size) for el in git_tree.tree]
        logger.info("✅ Found %d entries in repository", len(tree))
        return tree

    def get_file_content(self, owner: str, name: str, path: str, branch: str) -> Tuple[Optional[str], Optional[int]]:
        """Return (text, size). Failures raise; callers decide how to degrade."""
        content_file = self._repo(owner, name).get_contents(path, ref=branch)
        if isinstance(content_file, list):
            # path is a directory
            return None, None
        if content_file.size and content_file.size > MAX_FILE_SIZE:
            return None, content_file.size
        if content_file.type != "file" or content_file.encoding != "base64":
            # symlinks and submodules carry no decodable content
            return None, None
        return content_file.decoded_content.decode("utf-8", errors="replace"), content_file.size

    def fetch_contents(self, owner: str, name: str, branch: str, files: List[FileToScan]) -> Dict[str, Optional[str]]:
        contents: Dict[str, Optional[str]] = {}
        total = len(files)

        for index, file in enumerate(files, start=1):
            path = file.path
            logger.debug("📥 Fetching (%d/%d): %s", index, total, path)

            if is_lock_file(path):
                contents[path] = LOCK_FILE_MARKER
                continue
            if file.size is not None and file.size > MAX_FILE_SIZE:
                contents[path] = too_large_marker(file.size)
                continue

            try:
                text, size = self.get_file_content(owner, name, path, branch)
            except (GithubException, requests.RequestException) as e:
                logger.warning("⚠️ Failed to fetch %s: %s", path, e)
                contents[path] = None
                continue

            if text is None and size is not None:
                contents[path] = too_large_marker(size)
            else:
                contents[path] = text

        return contents

    def fetch_repo_content(self, owner: str, name: str, metadata: RepoMetadata) -> RepoContent:
        tree = self.get_tree(owner, name, metadata.default_branch)

        files = prioritize(tree)
        executables = find_executables(tree)
        logger.info("🔍 %d security-relevant files to scan (priority-sorted)", len(files))
        for priority, label in PRIORITY_LABELS.items():
            logger.info("   Priority %d (%s): %d files", priority, label,
                        sum(1 for f in files if f.priority == priority))

        contents = self.fetch_contents(owner, name, metadata.default_branch, files)
        manifest = parse_manifest(contents.get("package.json"))

        return RepoContent(
            metadata=metadata,
            tree=tree,
            files=files,
            contents=contents,
            manifest=manifest,
            install_scripts=extract_install_scripts(manifest),
            executables=executables,
            dependencies=extract_dependencies(manifest),
        )
