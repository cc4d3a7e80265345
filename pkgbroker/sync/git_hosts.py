"""Git hosting providers used by the git-hosted sync strategy.

Each provider knows how to:
- parse a repository URL into an account and an optional repository
- locate the account's hosted Composer registry (Tier A)
- list a branch's file tree, read files and list tags (Tier B)
- build archive and clone URLs for discovered versions
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, urlparse

import httpx

from pkgbroker.core.errors import UpstreamSyncFailure, ValidationError
from pkgbroker.services.upstream import UpstreamClient

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "main"


@dataclass
class GitTarget:
    """Account (and optionally one repository) on a git host."""

    owner: str
    repository: Optional[str] = None
    branch: Optional[str] = None
    origin: str = ""

    @property
    def full_path(self) -> str:
        return f"{self.owner}/{self.repository}" if self.repository else self.owner


@dataclass
class TreeListing:
    reference: str  # sha recorded as dist/source reference
    paths: List[str] = field(default_factory=list)
    truncated: bool = False


def check_repository_response(response: httpx.Response, action: str) -> None:
    """Raise the sync failure matching a non-200 repository API response."""
    if response.status_code == 200:
        return
    if response.status_code in (401, 403):
        raise UpstreamSyncFailure(f"{action}: authentication failed", code="auth_failed")
    if response.status_code == 404:
        raise UpstreamSyncFailure(f"{action}: repository not found", code="repo_not_found")
    raise UpstreamSyncFailure(
        f"{action}: HTTP {response.status_code}",
        code=f"tree_fetch_failed_{response.status_code}",
    )


def _split_fragment(url: str) -> Tuple[str, Optional[str]]:
    url, _, fragment = url.partition("#")
    return url, (fragment or None)


class GitHostingProvider(ABC):
    """Abstract git hosting provider."""

    def __init__(self, upstream: UpstreamClient):
        self.upstream = upstream

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def matches(self, url: str) -> bool:
        """Return True if this provider hosts ``url``."""
        pass

    @abstractmethod
    def parse_target(self, url: str) -> GitTarget:
        """Parse a repository URL.

        Raises:
            ValidationError: If the URL names no account
        """
        pass

    @abstractmethod
    def registry_base(self, target: GitTarget) -> str:
        """Base URL of the account's hosted Composer registry."""
        pass

    def api_headers(self) -> Dict[str, str]:
        return {}

    @abstractmethod
    async def default_branch(self, target: GitTarget, headers: Dict[str, str]) -> str:
        pass

    @abstractmethod
    async def list_tree(self, target: GitTarget, headers: Dict[str, str]) -> TreeListing:
        pass

    @abstractmethod
    async def fetch_file(self, target: GitTarget, path: str, headers: Dict[str, str]) -> Optional[str]:
        """Return a file's raw text, or None if it cannot be read."""
        pass

    @abstractmethod
    async def list_tags(self, target: GitTarget, headers: Dict[str, str]) -> List[Tuple[str, str]]:
        """Return (tag name, commit sha) pairs."""
        pass

    @abstractmethod
    def archive_url(self, target: GitTarget, ref: str) -> str:
        pass

    @abstractmethod
    def clone_url(self, target: GitTarget) -> str:
        pass


class GitHubProvider(GitHostingProvider):
    """github.com via the REST API and GitHub Packages."""

    URL_RE = re.compile(r"github\.com[:/]([^/]+)(?:/([^/?#]+?))?(?:\.git)?/?$")

    def __init__(
        self,
        upstream: UpstreamClient,
        api_url: str = "https://api.github.com",
        packages_url: str = "https://composer.pkg.github.com",
    ):
        super().__init__(upstream)
        self.api_url = api_url.rstrip("/")
        self.packages_url = packages_url.rstrip("/")

    @property
    def name(self) -> str:
        return "github"

    def matches(self, url: str) -> bool:
        return "github.com" in url

    def parse_target(self, url: str) -> GitTarget:
        url, branch = _split_fragment(url.strip())
        match = self.URL_RE.search(url)
        if not match:
            raise ValidationError(f"Not a GitHub URL: {url}")
        return GitTarget(
            owner=match.group(1),
            repository=match.group(2) or None,
            branch=branch,
            origin="https://github.com",
        )

    def registry_base(self, target: GitTarget) -> str:
        return f"{self.packages_url}/{target.owner}"

    def api_headers(self) -> Dict[str, str]:
        return {"X-GitHub-Api-Version": "2022-11-28"}

    def _repo_api(self, target: GitTarget) -> str:
        return f"{self.api_url}/repos/{target.owner}/{target.repository}"

    async def default_branch(self, target: GitTarget, headers: Dict[str, str]) -> str:
        response = await self.upstream.get(
            self._repo_api(target),
            headers=headers,
            accept="application/vnd.github+json",
        )
        check_repository_response(response, f"Repository {target.full_path}")
        return response.json().get("default_branch") or DEFAULT_BRANCH

    async def list_tree(self, target: GitTarget, headers: Dict[str, str]) -> TreeListing:
        response = await self.upstream.get(
            f"{self._repo_api(target)}/git/trees/{quote(target.branch or DEFAULT_BRANCH, safe='')}?recursive=1",
            headers=headers,
            accept="application/vnd.github+json",
        )
        check_repository_response(response, f"Tree of {target.full_path}")
        data = response.json()
        if data.get("truncated"):
            logger.warning(f"Tree of {target.full_path} is truncated, some manifests may be missed")
        return TreeListing(
            reference=data.get("sha", ""),
            paths=[item["path"] for item in data.get("tree", []) if item.get("type") == "blob"],
            truncated=bool(data.get("truncated")),
        )

    async def fetch_file(self, target: GitTarget, path: str, headers: Dict[str, str]) -> Optional[str]:
        response = await self.upstream.get(
            f"{self._repo_api(target)}/contents/{quote(path)}?ref={quote(target.branch or DEFAULT_BRANCH, safe='')}",
            headers=headers,
            accept="application/vnd.github.raw+json",
        )
        if response.status_code != 200:
            logger.warning(f"Could not read {path} from {target.full_path}: HTTP {response.status_code}")
            return None
        return response.text

    async def list_tags(self, target: GitTarget, headers: Dict[str, str]) -> List[Tuple[str, str]]:
        response = await self.upstream.get(
            f"{self._repo_api(target)}/tags?per_page=100",
            headers=headers,
            accept="application/vnd.github+json",
        )
        if response.status_code != 200:
            logger.warning(f"Could not list tags of {target.full_path}: HTTP {response.status_code}")
            return []
        return [
            (tag["name"], tag.get("commit", {}).get("sha", ""))
            for tag in response.json()
            if isinstance(tag, dict) and tag.get("name")
        ]

    def archive_url(self, target: GitTarget, ref: str) -> str:
        return f"{self._repo_api(target)}/zipball/{quote(ref, safe='')}"

    def clone_url(self, target: GitTarget) -> str:
        return f"https://github.com/{target.owner}/{target.repository}.git"


class GitLabProvider(GitHostingProvider):
    """GitLab (gitlab.com or self-managed) via the v4 API.

    ``https://gitlab.example.com/group`` and
    ``https://gitlab.example.com/groups/group/subgroup`` name a group;
    any longer path names a project.
    """

    PER_PAGE = 100

    @property
    def name(self) -> str:
        return "gitlab"

    def matches(self, url: str) -> bool:
        host = urlparse(_split_fragment(url)[0]).hostname or ""
        return "gitlab" in host

    def parse_target(self, url: str) -> GitTarget:
        url, branch = _split_fragment(url.strip())
        parsed = urlparse(url)
        if not parsed.hostname:
            raise ValidationError(f"Not a GitLab URL: {url}")
        path = parsed.path.strip("/")
        if path.endswith(".git"):
            path = path[:-4]
        segments = [segment for segment in path.split("/") if segment]
        if not segments:
            raise ValidationError(f"GitLab URL names no group or project: {url}")

        origin = f"{parsed.scheme or 'https'}://{parsed.netloc}"
        if segments[0] == "groups" and len(segments) > 1:
            return GitTarget(owner="/".join(segments[1:]), branch=branch, origin=origin)
        if len(segments) == 1:
            return GitTarget(owner=segments[0], branch=branch, origin=origin)
        return GitTarget(
            owner="/".join(segments[:-1]),
            repository=segments[-1],
            branch=branch,
            origin=origin,
        )

    def _api(self, target: GitTarget) -> str:
        return f"{target.origin}/api/v4"

    def _project_api(self, target: GitTarget) -> str:
        return f"{self._api(target)}/projects/{quote(target.full_path, safe='')}"

    def registry_base(self, target: GitTarget) -> str:
        return f"{self._api(target)}/group/{quote(target.owner, safe='')}/-/packages/composer"

    async def default_branch(self, target: GitTarget, headers: Dict[str, str]) -> str:
        response = await self.upstream.get(self._project_api(target), headers=headers)
        check_repository_response(response, f"Project {target.full_path}")
        return response.json().get("default_branch") or DEFAULT_BRANCH

    async def list_tree(self, target: GitTarget, headers: Dict[str, str]) -> TreeListing:
        branch = quote(target.branch or DEFAULT_BRANCH, safe="")
        response = await self.upstream.get(
            f"{self._project_api(target)}/repository/branches/{branch}",
            headers=headers,
        )
        check_repository_response(response, f"Branch {target.branch} of {target.full_path}")
        reference = response.json().get("commit", {}).get("id", "")

        paths: List[str] = []
        page = 1
        while True:
            response = await self.upstream.get(
                f"{self._project_api(target)}/repository/tree"
                f"?recursive=true&ref={branch}&per_page={self.PER_PAGE}&page={page}",
                headers=headers,
            )
            check_repository_response(response, f"Tree of {target.full_path}")
            items = response.json()
            paths.extend(item["path"] for item in items if item.get("type") == "blob")
            next_page = response.headers.get("x-next-page")
            if not next_page or len(items) < self.PER_PAGE:
                break
            page = int(next_page)

        return TreeListing(reference=reference, paths=paths)

    async def fetch_file(self, target: GitTarget, path: str, headers: Dict[str, str]) -> Optional[str]:
        response = await self.upstream.get(
            f"{self._project_api(target)}/repository/files/{quote(path, safe='')}/raw"
            f"?ref={quote(target.branch or DEFAULT_BRANCH, safe='')}",
            headers=headers,
            accept="text/plain",
        )
        if response.status_code != 200:
            logger.warning(f"Could not read {path} from {target.full_path}: HTTP {response.status_code}")
            return None
        return response.text

    async def list_tags(self, target: GitTarget, headers: Dict[str, str]) -> List[Tuple[str, str]]:
        response = await self.upstream.get(
            f"{self._project_api(target)}/repository/tags?per_page={self.PER_PAGE}",
            headers=headers,
        )
        if response.status_code != 200:
            logger.warning(f"Could not list tags of {target.full_path}: HTTP {response.status_code}")
            return []
        return [
            (tag["name"], tag.get("commit", {}).get("id", ""))
            for tag in response.json()
            if isinstance(tag, dict) and tag.get("name")
        ]

    def archive_url(self, target: GitTarget, ref: str) -> str:
        return f"{self._project_api(target)}/repository/archive.zip?sha={quote(ref, safe='')}"

    def clone_url(self, target: GitTarget) -> str:
        return f"{target.origin}/{target.full_path}.git"
