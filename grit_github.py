# grit_github: GitHub REST access for a single repository
#
# Every call is blocking and is meant to run inside a TUI command (thread
# executor), never on the UI loop. Errors surface as GitHubError with a
# message that can be shown to the user as-is.

from __future__ import annotations

import datetime as dt
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import requests

logger = logging.getLogger('grit')

API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
RETRY_STATUSES = (403, 429, 502, 503, 504)


class GitHubError(RuntimeError):
    """Network failure or non-2xx response from the GitHub API."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


# -----------------------------
# Models
# -----------------------------
@dataclass
class Issue:
    number: int
    title: str
    body: str = ""
    state: str = "open"
    html_url: str = ""
    labels: List[str] = field(default_factory=list)
    assignees: List[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""
    comments: int = 0
    is_pull_request: bool = False

    @classmethod
    def from_api(cls, data: Dict) -> "Issue":
        labels: List[str] = []
        for lab in data.get('labels') or []:
            if isinstance(lab, dict):
                name = (lab.get('name') or '').strip()
            else:
                name = str(lab).strip()
            if name:
                labels.append(name)
        assignees: List[str] = []
        for user in data.get('assignees') or []:
            if isinstance(user, dict) and user.get('login'):
                assignees.append(str(user['login']))
        return cls(
            number=int(data.get('number') or 0),
            title=data.get('title') or '',
            body=data.get('body') or '',
            state=data.get('state') or 'open',
            html_url=data.get('html_url') or '',
            labels=labels,
            assignees=assignees,
            created_at=data.get('created_at') or '',
            updated_at=data.get('updated_at') or '',
            comments=int(data.get('comments') or 0),
            is_pull_request='pull_request' in data,
        )


@dataclass
class Comment:
    id: int
    body: str
    html_url: str = ""
    created_at: str = ""

    @classmethod
    def from_api(cls, data: Dict) -> "Comment":
        return cls(
            id=int(data.get('id') or 0),
            body=data.get('body') or '',
            html_url=data.get('html_url') or '',
            created_at=data.get('created_at') or '',
        )


@dataclass
class IssueUpdate:
    """Partial update; only fields that are not None are sent."""
    title: Optional[str] = None
    body: Optional[str] = None
    state: Optional[str] = None
    labels: Optional[List[str]] = None
    assignees: Optional[List[str]] = None

    def payload(self) -> Dict[str, object]:
        out: Dict[str, object] = {}
        for key in ('title', 'body', 'state', 'labels', 'assignees'):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        return out

    def is_empty(self) -> bool:
        return not self.payload()


# -----------------------------
# HTTP helpers
# -----------------------------
def _session(token: str) -> requests.Session:
    s = requests.Session()
    s.headers["Authorization"] = f"Bearer {token}"
    s.headers["Accept"] = "application/vnd.github+json"
    s.headers["X-GitHub-Api-Version"] = API_VERSION
    return s


def _parse_retry_after_seconds(resp: Optional[requests.Response]) -> Optional[int]:
    if resp is None:
        return None
    ra = resp.headers.get('Retry-After') if resp.headers is not None else None
    if ra:
        try:
            return int(float(ra))
        except ValueError:
            pass
    xrlr = resp.headers.get('X-RateLimit-Reset') if resp.headers is not None else None
    remaining = resp.headers.get('X-RateLimit-Remaining') if resp.headers is not None else None
    if xrlr and remaining == '0':
        try:
            return max(1, int(xrlr) - int(time.time()))
        except ValueError:
            pass
    return None


def _error_message(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get('message'):
        message = str(data['message'])
        details = []
        for err in data.get('errors') or []:
            if isinstance(err, dict):
                detail = err.get('message') or ' '.join(
                    str(err.get(k)) for k in ('resource', 'field', 'code') if err.get(k)
                )
                if detail:
                    details.append(detail)
        if details:
            message += " (" + "; ".join(details) + ")"
        return f"github api error ({resp.status_code}): {message}"
    return f"github api error ({resp.status_code}): {resp.text[:200]}"


# -----------------------------
# Client
# -----------------------------
class IssueClient:
    """Typed REST client bound to one owner/repo."""

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        base_url: str = API_URL,
        session: Optional[requests.Session] = None,
        timeout: float = 30,
        max_total_wait: int = 60,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.owner = owner
        self.repo = repo
        self.base_url = base_url.rstrip('/')
        self.session = session if session is not None else _session(token)
        self.timeout = timeout
        self.max_total_wait = max_total_wait
        self._sleep = sleep

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def _repo_path(self, suffix: str = "") -> str:
        return f"/repos/{self.owner}/{self.repo}{suffix}"

    def _request(self, method: str, path: str, params: Optional[Dict[str, object]] = None,
                 payload: Optional[Dict[str, object]] = None) -> object:
        """Send one request, retrying rate limits and transient gateway errors.

        - 403/429 are retried only when GitHub says how long to wait.
        - 502/503/504 and connection errors back off exponentially.
        - Total waiting is capped by ``max_total_wait``.
        """
        url = self.base_url + path
        backoff = 2
        total_wait = 0
        while True:
            try:
                resp = self.session.request(method, url, params=params, json=payload, timeout=self.timeout)
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as exc:
                wait_s = backoff
                backoff = min(30, backoff * 2)
                if total_wait + wait_s > self.max_total_wait:
                    logger.warning('%s %s failed: %s', method, path, exc)
                    raise GitHubError(f"request failed: {exc}") from exc
                self._sleep(wait_s)
                total_wait += wait_s
                continue
            except requests.exceptions.RequestException as exc:
                logger.warning('%s %s failed: %s', method, path, exc)
                raise GitHubError(f"request failed: {exc}") from exc

            if resp.status_code in RETRY_STATUSES:
                wait_s = _parse_retry_after_seconds(resp)
                if wait_s is None and resp.status_code >= 500:
                    wait_s = backoff
                    backoff = min(30, backoff * 2)
                if wait_s is not None and total_wait + wait_s <= self.max_total_wait:
                    logger.info('%s %s -> HTTP %s; retrying in %ss', method, path, resp.status_code, wait_s)
                    self._sleep(wait_s)
                    total_wait += wait_s
                    continue

            if resp.status_code >= 400:
                logger.warning('%s %s HTTP %s: %s', method, path, resp.status_code, resp.text[:200])
                raise GitHubError(_error_message(resp), status=resp.status_code)
            if not resp.content:
                return None
            try:
                return resp.json()
            except ValueError as exc:
                raise GitHubError(f"parsing response: {exc}") from exc

    # -- queries ---------------------------------------------------------
    def list_issues(self, state: str = "open", page: int = 1, per_page: int = 20) -> List[Issue]:
        params = {"state": state or "open", "page": max(1, page), "per_page": per_page}
        data = self._request("GET", self._repo_path("/issues"), params=params) or []
        return [Issue.from_api(item) for item in data if isinstance(item, dict)]

    def search_issues(self, query: str, state: str = "open", page: int = 1,
                      per_page: int = 20) -> Tuple[List[Issue], int]:
        qualifiers = [f"repo:{self.full_name}", "is:issue"]
        if state and state != "all":
            qualifiers.append(f"state:{state}")
        if query:
            qualifiers.append(query)
        params = {"q": " ".join(qualifiers), "page": max(1, page), "per_page": per_page}
        data = self._request("GET", "/search/issues", params=params)
        if not isinstance(data, dict):
            data = {}
        items = data.get('items') or []
        total = int(data.get('total_count') or 0)
        return [Issue.from_api(item) for item in items if isinstance(item, dict)], total

    def get_issue(self, number: int) -> Issue:
        data = self._request("GET", self._repo_path(f"/issues/{number}"))
        return Issue.from_api(data or {})

    def check_access(self) -> str:
        """Fetch the repository once; returns its full name or raises GitHubError."""
        data = self._request("GET", self._repo_path())
        if isinstance(data, dict) and data.get("full_name"):
            return str(data["full_name"])
        return self.full_name

    # -- mutations -------------------------------------------------------
    def create_issue(self, title: str, body: str = "", labels: Optional[List[str]] = None,
                     assignees: Optional[List[str]] = None) -> Issue:
        payload: Dict[str, object] = {"title": title}
        if body:
            payload["body"] = body
        if labels:
            payload["labels"] = list(labels)
        if assignees:
            payload["assignees"] = list(assignees)
        data = self._request("POST", self._repo_path("/issues"), payload=payload)
        return Issue.from_api(data or {})

    def close_issue(self, number: int, comment: str = "") -> Issue:
        if comment.strip():
            try:
                self.add_comment(number, comment)
            except GitHubError as exc:
                raise GitHubError(f"adding closing comment: {exc}", status=exc.status) from exc
        data = self._request("PATCH", self._repo_path(f"/issues/{number}"), payload={"state": "closed"})
        return Issue.from_api(data or {})

    def update_issue(self, number: int, update: IssueUpdate) -> Issue:
        data = self._request("PATCH", self._repo_path(f"/issues/{number}"), payload=update.payload())
        return Issue.from_api(data or {})

    def add_comment(self, number: int, body: str) -> Comment:
        data = self._request("POST", self._repo_path(f"/issues/{number}/comments"), payload={"body": body})
        return Comment.from_api(data or {})

    def assign_issue(self, number: int, assignees: List[str]) -> Issue:
        data = self._request("PATCH", self._repo_path(f"/issues/{number}"), payload={"assignees": list(assignees)})
        return Issue.from_api(data or {})


# -----------------------------
# Mock
# -----------------------------
class MockIssueClient:
    """In-memory stand-in used with MOCK_FETCH=1 / --mock for offline demos."""

    def __init__(self, owner: str = "example", repo: str = "demo", issues: Optional[List[Issue]] = None):
        self.owner = owner
        self.repo = repo
        self.issues: Dict[int, Issue] = {i.number: i for i in (issues if issues is not None else generate_mock_issues(owner, repo))}
        self.comments: Dict[int, List[Comment]] = {}

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def _get(self, number: int) -> Issue:
        issue = self.issues.get(number)
        if issue is None:
            raise GitHubError("github api error (404): Not Found", status=404)
        return issue

    def _filtered(self, state: str) -> List[Issue]:
        rows = sorted(self.issues.values(), key=lambda i: i.number, reverse=True)
        if state in ('open', 'closed'):
            rows = [i for i in rows if i.state == state]
        return rows

    def list_issues(self, state: str = "open", page: int = 1, per_page: int = 20) -> List[Issue]:
        rows = self._filtered(state)
        start = (max(1, page) - 1) * per_page
        return rows[start:start + per_page]

    def search_issues(self, query: str, state: str = "open", page: int = 1,
                      per_page: int = 20) -> Tuple[List[Issue], int]:
        needle = (query or '').lower()
        rows = [i for i in self._filtered(state) if needle in i.title.lower() or needle in i.body.lower()]
        start = (max(1, page) - 1) * per_page
        return rows[start:start + per_page], len(rows)

    def get_issue(self, number: int) -> Issue:
        return self._get(number)

    def create_issue(self, title: str, body: str = "", labels: Optional[List[str]] = None,
                     assignees: Optional[List[str]] = None) -> Issue:
        number = max(self.issues or {0: None}) + 1
        now = dt.datetime.now().isoformat(timespec="seconds")
        issue = Issue(
            number=number, title=title, body=body, state="open",
            html_url=f"https://github.com/{self.full_name}/issues/{number}",
            labels=list(labels or []), assignees=list(assignees or []),
            created_at=now, updated_at=now,
        )
        self.issues[number] = issue
        return issue

    def close_issue(self, number: int, comment: str = "") -> Issue:
        issue = self._get(number)
        if comment.strip():
            self.add_comment(number, comment)
        issue.state = "closed"
        return issue

    def update_issue(self, number: int, update: IssueUpdate) -> Issue:
        issue = self._get(number)
        for key, value in update.payload().items():
            setattr(issue, key, list(value) if isinstance(value, list) else value)
        return issue

    def add_comment(self, number: int, body: str) -> Comment:
        issue = self._get(number)
        items = self.comments.setdefault(number, [])
        comment = Comment(id=len(items) + 1, body=body, html_url=f"{issue.html_url}#comment-{len(items) + 1}")
        items.append(comment)
        issue.comments += 1
        return comment

    def assign_issue(self, number: int, assignees: List[str]) -> Issue:
        issue = self._get(number)
        issue.assignees = list(assignees)
        return issue


def generate_mock_issues(owner: str = "example", repo: str = "demo", count: int = 45) -> List[Issue]:
    """Generate synthetic issues for offline demo & testing."""
    today = dt.date.today()
    labels_cycle = [["bug"], ["feature"], ["docs"], ["bug", "ui"], []]
    people = [["octocat"], [], ["hubot"], ["octocat", "hubot"]]
    rows: List[Issue] = []
    for n in range(1, count + 1):
        day = (today - dt.timedelta(days=count - n)).isoformat()
        rows.append(Issue(
            number=n,
            title=f"Sample issue {n}",
            body=f"Body of sample issue {n}.\n\nSteps to reproduce:\n1. Open the app\n2. Look at item {n}",
            state="closed" if n % 4 == 0 else "open",
            html_url=f"https://github.com/{owner}/{repo}/issues/{n}",
            labels=list(labels_cycle[n % len(labels_cycle)]),
            assignees=list(people[n % len(people)]),
            created_at=f"{day}T09:00:00Z",
            updated_at=f"{day}T12:00:00Z",
        ))
    return rows
