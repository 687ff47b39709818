"""Best-effort repository metadata lookup for ``cppx info``."""

from typing import Any, Optional, TypedDict

import httpx

from cppx.errors import GithubError

GITHUB_API_URL = "https://api.github.com"
USER_AGENT = "cppx-repo-info"
REQUEST_TIMEOUT = 10.0


class RepoInfo(TypedDict):
    name: str
    description: str
    stars: int
    forks: int
    open_issues: int
    last_commit_date: str
    html_url: str


def _parse_repo(data: Any) -> RepoInfo:
    if not isinstance(data, dict):
        raise GithubError("unexpected response from GitHub API")
    return {
        "name": data.get("name") or "",
        "description": data.get("description") or "",
        "stars": int(data.get("stargazers_count") or 0),
        "forks": int(data.get("forks_count") or 0),
        "open_issues": int(data.get("open_issues_count") or 0),
        "last_commit_date": data.get("pushed_at") or "",
        "html_url": data.get("html_url") or "",
    }


def get_repo_info(
    owner: str, repo: str, client: Optional[httpx.Client] = None
) -> RepoInfo:
    """Fetch repository metadata; raises GithubError on any failure."""
    url = f"{GITHUB_API_URL}/repos/{owner}/{repo}"
    headers = {"User-Agent": USER_AGENT, "Accept": "application/vnd.github+json"}
    try:
        if client is not None:
            response = client.get(url, headers=headers)
        else:
            with httpx.Client(timeout=REQUEST_TIMEOUT, follow_redirects=True) as session:
                response = session.get(url, headers=headers)
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPStatusError as exc:
        raise GithubError(
            f"GitHub API returned {exc.response.status_code} for {owner}/{repo}"
        ) from exc
    except httpx.RequestError as exc:
        raise GithubError(f"request to GitHub failed: {exc}") from exc
    except ValueError as exc:
        raise GithubError(f"invalid JSON from GitHub API: {exc}") from exc
    return _parse_repo(data)
