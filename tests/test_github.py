import httpx
import pytest

from cppx.errors import GithubError
from cppx.github import get_repo_info


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_get_repo_info_parses_response():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["agent"] = request.headers["User-Agent"]
        return httpx.Response(
            200,
            json={
                "name": "demo",
                "description": None,
                "stargazers_count": 12,
                "forks_count": 3,
                "open_issues_count": 1,
                "pushed_at": "2024-05-01T10:00:00Z",
                "html_url": "https://github.com/ada/demo",
            },
        )

    with _client(handler) as client:
        repo = get_repo_info("ada", "demo", client=client)

    assert seen["url"] == "https://api.github.com/repos/ada/demo"
    assert seen["agent"] == "cppx-repo-info"
    assert repo == {
        "name": "demo",
        "description": "",
        "stars": 12,
        "forks": 3,
        "open_issues": 1,
        "last_commit_date": "2024-05-01T10:00:00Z",
        "html_url": "https://github.com/ada/demo",
    }


def test_get_repo_info_http_error():
    with _client(lambda request: httpx.Response(404, json={"message": "Not Found"})) as client:
        with pytest.raises(GithubError, match="404"):
            get_repo_info("ada", "missing", client=client)


def test_get_repo_info_network_error():
    def handler(request):
        raise httpx.ConnectError("offline", request=request)

    with _client(handler) as client:
        with pytest.raises(GithubError):
            get_repo_info("ada", "demo", client=client)


def test_get_repo_info_invalid_json():
    with _client(lambda request: httpx.Response(200, text="<html>")) as client:
        with pytest.raises(GithubError):
            get_repo_info("ada", "demo", client=client)
