"""Shared fakes and a synchronous driver for the grit state machine."""
import json
from typing import List

import grit_tui as gt
from grit_github import GitHubError, Issue, MockIssueClient
from grit_llm import GeneratedIssue


def make_issues(count: int, state: str = 'open', start: int = 1) -> List[Issue]:
    return [
        Issue(
            number=n,
            title=f"Issue {n}",
            body=f"Body of issue {n}",
            state=state,
            html_url=f"https://github.com/acme/widgets/issues/{n}",
            labels=['bug'] if n % 2 else [],
            assignees=['octocat'] if n % 3 == 0 else [],
        )
        for n in range(start, start + count)
    ]


class RecordingClient(MockIssueClient):
    """MockIssueClient that records every call and can be told to fail."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []
        self.fail = {}

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.fail:
            raise self.fail[name]

    def names(self):
        return [c[0] for c in self.calls]

    def list_issues(self, state="open", page=1, per_page=20):
        self._record('list_issues', state, page, per_page)
        return super().list_issues(state, page, per_page)

    def search_issues(self, query, state="open", page=1, per_page=20):
        self._record('search_issues', query, state, page, per_page)
        return super().search_issues(query, state, page, per_page)

    def get_issue(self, number):
        self._record('get_issue', number)
        return super().get_issue(number)

    def create_issue(self, title, body="", labels=None, assignees=None):
        self._record('create_issue', title, body, list(labels or []), list(assignees or []))
        return super().create_issue(title, body, labels, assignees)

    def close_issue(self, number, comment=""):
        self._record('close_issue', number, comment)
        return super().close_issue(number, comment)

    def update_issue(self, number, update):
        self._record('update_issue', number, update.payload())
        return super().update_issue(number, update)

    def add_comment(self, number, body):
        self._record('add_comment', number, body)
        return super().add_comment(number, body)

    def assign_issue(self, number, assignees):
        self._record('assign_issue', number, list(assignees))
        return super().assign_issue(number, assignees)


class FakeLLM:
    def __init__(self, issue=None, comment="Drafted comment"):
        self.issue = issue or GeneratedIssue(title="Add dark mode", body="## Description\nDark theme.", labels=[])
        self.comment = comment
        self.requests = []
        self.comment_calls = []

    def generate_issue(self, req):
        self.requests.append(req)
        return GeneratedIssue(title=self.issue.title, body=self.issue.body, labels=list(self.issue.labels))

    def generate_comment(self, context, prompt):
        self.comment_calls.append((context, prompt))
        return self.comment


class Harness:
    """Feeds messages into update_app and runs calls/emits synchronously.

    Ticks are parked in ``self.ticks`` so tests decide when (and whether) a
    delayed message arrives.
    """

    def __init__(self, deps, width=80, height=24):
        self.deps = deps
        self.state, cmds = gt.init_app(deps, width, height)
        self.pending = list(cmds)
        self.ticks = []
        self.quit = False

    def send(self, msg):
        self.state, cmds = gt.update_app(self.state, msg)
        self.pending.extend(cmds)
        return cmds

    def key(self, *keys):
        for k in keys:
            self.send(gt.KeyMsg(k, k if len(k) == 1 else ''))
        return self

    def type(self, text):
        for ch in text:
            self.send(gt.KeyMsg(ch, ch))
        return self

    def run(self):
        while self.pending:
            cmd = self.pending.pop(0)
            if cmd.kind == 'call':
                self.send(cmd.run())
            elif cmd.kind == 'emit':
                self.send(cmd.msg)
            elif cmd.kind == 'tick':
                self.ticks.append(cmd)
            elif cmd.kind == 'quit':
                self.quit = True
        return self

    def take_ticks(self, msg_type):
        self.run()
        found = [t for t in self.ticks if isinstance(t.msg, msg_type)]
        self.ticks = [t for t in self.ticks if not isinstance(t.msg, msg_type)]
        return found

    def press(self, *keys):
        self.key(*keys)
        return self.run()


def not_found():
    return GitHubError("github api error (404): Not Found", status=404)


class FakeResponse:
    def __init__(self, status_code=200, data=None, headers=None, text=None):
        self.status_code = status_code
        self._data = data
        self.headers = headers or {}
        if text is None:
            text = json.dumps(data) if data is not None else ""
        self.text = text
        self.content = text.encode('utf-8')

    def json(self):
        if self._data is None:
            return json.loads(self.text)
        return self._data


class FakeSession:
    """Replays queued responses and records each request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []
        self.headers = {}

    def _next(self):
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def request(self, method, url, params=None, json=None, timeout=None):
        self.requests.append((method, url, params, json))
        return self._next()

    def post(self, url, json=None, headers=None, timeout=None):
        self.requests.append(('POST', url, headers, json))
        return self._next()
