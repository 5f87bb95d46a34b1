# grit_tui: screen state machine for the issue browser
#
# Everything here is pure bookkeeping: update functions take a state and a
# message, mutate that state and hand back commands. Commands are executed by
# the runtime (grit_app) and each resolves into exactly one message that comes
# back through update_app. Nothing in this module touches the terminal or the
# network directly.

from __future__ import annotations

import itertools
import logging
import textwrap
import webbrowser
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, List, Mapping, NamedTuple, Optional, Tuple

from grit_config import Config
from grit_github import Issue, IssueUpdate
from grit_llm import GeneratedIssue, IssueInput, draft_issue, issue_context

logger = logging.getLogger('grit')

SPINNER_FRAMES = "⣾⣽⣻⢿⡿⣟⣯⣷"
SPINNER_INTERVAL = 0.1
SEARCH_DEBOUNCE = 0.3
STATE_FILTERS = ('open', 'closed', 'all')
REVIEW_BODY_LIMIT = 500

_request_ids = itertools.count(1)


def next_request_id() -> int:
    """Process-wide id for fetches; a result is applied only if its id is still current."""
    return next(_request_ids)


# -----------------------------
# Messages
# -----------------------------
@dataclass(frozen=True)
class KeyMsg:
    key: str
    text: str = ""


@dataclass(frozen=True)
class ResizeMsg:
    width: int
    height: int


@dataclass(frozen=True)
class SpinnerTickMsg:
    pass


@dataclass(frozen=True)
class SearchTickMsg:
    generation: int


@dataclass(frozen=True)
class IssuesLoadedMsg:
    issues: List[Issue]
    page: int
    request_id: int


@dataclass(frozen=True)
class SearchResultsMsg:
    issues: List[Issue]
    total_count: int
    page: int
    request_id: int


@dataclass(frozen=True)
class IssueLoadedMsg:
    issue: Issue
    request_id: int


@dataclass(frozen=True)
class ActionSucceededMsg:
    text: str


@dataclass(frozen=True)
class CommentDraftedMsg:
    text: str


@dataclass(frozen=True)
class IssueGeneratedMsg:
    issue: GeneratedIssue


@dataclass(frozen=True)
class IssueCreatedMsg:
    issue: Issue


@dataclass(frozen=True)
class IssueUpdatedMsg:
    issue: Issue


@dataclass(frozen=True)
class BrowserOpenedMsg:
    url: str


@dataclass(frozen=True)
class ErrorMsg:
    """A failed command. ``source`` names the state that owns the failure."""
    source: str
    error: str
    request_id: int = 0


@dataclass(frozen=True)
class NavigateToListMsg:
    pass


@dataclass(frozen=True)
class NavigateToDetailMsg:
    number: int


@dataclass(frozen=True)
class NavigateToCreateMsg:
    pass


@dataclass(frozen=True)
class NavigateToEditMsg:
    number: int


@dataclass(frozen=True)
class StartActionMsg:
    kind: str
    number: int


@dataclass(frozen=True)
class ActionDoneMsg:
    pass


@dataclass(frozen=True)
class ActionCancelledMsg:
    pass


# -----------------------------
# Commands
# -----------------------------
@dataclass(frozen=True)
class Command:
    kind: str  # emit | call | tick | quit
    msg: Any = None
    name: str = ""
    func: Optional[Callable[[], Any]] = None
    on_error: Optional[Callable[[Exception], Any]] = None
    delay: float = 0.0

    def run(self) -> Any:
        """Run a ``call`` command's function; failures become ``on_error(exc)``."""
        try:
            return self.func()
        except Exception as exc:
            logger.warning("command %s failed: %s", self.name, exc)
            if self.on_error is None:
                raise
            return self.on_error(exc)


def emit(msg) -> Command:
    return Command('emit', msg=msg)


def call(name: str, func: Callable[[], Any], on_error: Callable[[Exception], Any]) -> Command:
    return Command('call', name=name, func=func, on_error=on_error)


def tick(delay: float, msg) -> Command:
    return Command('tick', msg=msg, delay=delay)


def quit_app() -> Command:
    return Command('quit')


# -----------------------------
# Key table
# -----------------------------
class KeyBinding(NamedTuple):
    keys: Tuple[str, ...]
    help_key: str
    help: str


GLOBAL_KEYS = MappingProxyType({
    'force_quit': KeyBinding(('ctrl+c',), 'ctrl+c', 'quit from anywhere'),
    'quit': KeyBinding(('q',), 'q', 'quit'),
    'help': KeyBinding(('?',), '?', 'toggle help'),
    'close_help': KeyBinding(('esc',), 'esc', 'close help'),
})

LIST_KEYS = MappingProxyType({
    'up': KeyBinding(('k', 'up'), 'k/↑', 'move up'),
    'down': KeyBinding(('j', 'down'), 'j/↓', 'move down'),
    'top': KeyBinding(('g', 'home'), 'g/home', 'first issue'),
    'bottom': KeyBinding(('G', 'end'), 'G/end', 'last issue'),
    'open': KeyBinding(('enter', 'l'), 'enter/l', 'open issue'),
    'create': KeyBinding(('c',), 'c', 'create issue'),
    'next_page': KeyBinding(('n',), 'n', 'next page'),
    'prev_page': KeyBinding(('p',), 'p', 'previous page'),
    'refresh': KeyBinding(('r',), 'r', 'refresh'),
    'filter_open': KeyBinding(('1',), '1', 'open issues'),
    'filter_closed': KeyBinding(('2',), '2', 'closed issues'),
    'filter_all': KeyBinding(('3',), '3', 'all issues'),
    'search': KeyBinding(('/',), '/', 'search'),
    'clear_search': KeyBinding(('esc',), 'esc', 'clear search'),
})

SEARCH_KEYS = MappingProxyType({
    'done': KeyBinding(('enter',), 'enter', 'leave search box'),
    'cancel': KeyBinding(('esc',), 'esc', 'cancel search'),
})

DETAIL_KEYS = MappingProxyType({
    'up': KeyBinding(('k', 'up'), 'k/↑', 'scroll up'),
    'down': KeyBinding(('j', 'down'), 'j/↓', 'scroll down'),
    'half_up': KeyBinding(('ctrl+u',), 'ctrl+u', 'half page up'),
    'half_down': KeyBinding(('ctrl+d',), 'ctrl+d', 'half page down'),
    'top': KeyBinding(('g', 'home'), 'g', 'top'),
    'bottom': KeyBinding(('G', 'end'), 'G', 'bottom'),
    'back': KeyBinding(('esc', 'h', 'backspace'), 'esc/h', 'back to list'),
    'browser': KeyBinding(('o',), 'o', 'open in browser'),
    'close': KeyBinding(('x',), 'x', 'close issue'),
    'assign': KeyBinding(('a',), 'a', 'assign issue'),
    'comment': KeyBinding(('m',), 'm', 'add comment'),
    'edit': KeyBinding(('e',), 'e', 'edit issue'),
    'reload': KeyBinding(('r',), 'r', 'reload'),
})

FORM_KEYS = MappingProxyType({
    'next_field': KeyBinding(('tab', 'down'), 'tab', 'next field'),
    'prev_field': KeyBinding(('shift+tab', 'up'), 'shift+tab', 'previous field'),
    'generate': KeyBinding(('ctrl+g',), 'ctrl+g', 'generate with LLM'),
    'submit': KeyBinding(('ctrl+s',), 'ctrl+s', 'submit'),
    'confirm': KeyBinding(('enter',), 'enter', 'confirm'),
    'cancel': KeyBinding(('esc',), 'esc', 'cancel / back'),
    'browser': KeyBinding(('o',), 'o', 'open result in browser'),
    'retry': KeyBinding(('r',), 'r', 'retry loading'),
})

KEYMAP: Mapping[str, Mapping[str, KeyBinding]] = MappingProxyType({
    'global': GLOBAL_KEYS,
    'list': LIST_KEYS,
    'search': SEARCH_KEYS,
    'detail': DETAIL_KEYS,
    'form': FORM_KEYS,
})


@dataclass(frozen=True)
class Dependencies:
    """Read-only handles shared by every screen."""
    config: Config
    github: Any
    llm: Any = None
    keys: Mapping[str, Mapping[str, KeyBinding]] = field(default_factory=lambda: KEYMAP)
    style: Mapping[str, str] = field(default_factory=dict)
    open_url: Callable[[str], Any] = webbrowser.open

    def is_key(self, section: str, name: str, key: str) -> bool:
        binding = self.keys[section].get(name)
        return binding is not None and key in binding.keys


# -----------------------------
# Text input
# -----------------------------
@dataclass
class TextField:
    label: str = ""
    placeholder: str = ""
    value: str = ""
    cursor: int = 0
    multiline: bool = False
    limit: int = 0

    def set(self, value: str) -> None:
        self.value = value
        self.cursor = len(value)

    def _insert(self, text: str) -> None:
        if not self.multiline:
            text = text.replace("\r\n", " ").replace("\n", " ").replace("\r", " ")
        if self.limit:
            text = text[:max(0, self.limit - len(self.value))]
        if not text:
            return
        self.value = self.value[:self.cursor] + text + self.value[self.cursor:]
        self.cursor += len(text)

    def handle_key(self, key: str, text: str = "") -> bool:
        """Apply an editing key; returns False for keys a text field does not use."""
        if key == 'backspace':
            if self.cursor > 0:
                self.value = self.value[:self.cursor - 1] + self.value[self.cursor:]
                self.cursor -= 1
        elif key == 'delete':
            self.value = self.value[:self.cursor] + self.value[self.cursor + 1:]
        elif key == 'left':
            self.cursor = max(0, self.cursor - 1)
        elif key == 'right':
            self.cursor = min(len(self.value), self.cursor + 1)
        elif key in ('home', 'ctrl+a'):
            self.cursor = 0
        elif key in ('end', 'ctrl+e'):
            self.cursor = len(self.value)
        elif key == 'ctrl+u':
            self.value = self.value[self.cursor:]
            self.cursor = 0
        elif key == 'ctrl+k':
            self.value = self.value[:self.cursor]
        elif key == 'paste':
            self._insert(text)
        elif key == 'enter' and self.multiline:
            self._insert("\n")
        elif len(key) == 1 and key.isprintable():
            self._insert(key)
        else:
            return False
        return True


def parse_csv(value: str) -> List[str]:
    """Split on commas, trim, drop empties; order kept, duplicates kept."""
    return [part.strip() for part in (value or "").split(",") if part.strip()]


# -----------------------------
# Screen states
# -----------------------------
@dataclass
class ListState:
    per_page: int = 20
    issues: List[Issue] = field(default_factory=list)
    cursor: int = 0
    offset: int = 0
    page: int = 1
    state_filter: str = 'open'
    loading: bool = False
    error: str = ""
    search_query: str = ""
    searching: bool = False
    search_input: TextField = field(default_factory=lambda: TextField(placeholder="search issues"))
    search_generation: int = 0
    search_pending: bool = False
    total_count: int = 0
    request_id: int = 0
    width: int = 80
    height: int = 24


@dataclass
class DetailState:
    issue_number: int
    issue: Optional[Issue] = None
    loading: bool = False
    error: str = ""
    scroll_offset: int = 0
    body_lines: List[str] = field(default_factory=list)
    request_id: int = 0
    width: int = 80
    height: int = 24


ACTION_KINDS = ('close', 'assign', 'comment')
ACTION_INPUT_LIMIT = 256
ACTION_PLACEHOLDERS = {
    'close': "closing comment (optional)",
    'assign': "usernames (comma-separated)",
    'comment': "comment text",
}


@dataclass
class ActionState:
    kind: str
    issue_number: int
    input: TextField = field(default_factory=lambda: TextField(limit=ACTION_INPUT_LIMIT))
    loading: bool = False
    drafting: bool = False
    error: str = ""
    notice: str = ""
    result: str = ""
    done: bool = False
    width: int = 80
    height: int = 24

    def __post_init__(self):
        if not self.input.placeholder:
            self.input.placeholder = ACTION_PLACEHOLDERS.get(self.kind, "")


def _create_fields() -> List[TextField]:
    return [
        TextField(label="Title", placeholder="Issue title", limit=256),
        TextField(label="Prompt", placeholder="Prompt or description for LLM", multiline=True),
        TextField(label="Labels", placeholder="Labels (comma-separated, optional)"),
        TextField(label="Assignees", placeholder="Assignees (comma-separated, optional)"),
    ]


def _edit_fields() -> List[TextField]:
    return [
        TextField(label="Title", placeholder="Title", limit=256),
        TextField(label="Body", placeholder="Body", multiline=True),
        TextField(label="Labels", placeholder="Labels (comma-separated)"),
        TextField(label="Assignees", placeholder="Assignees (comma-separated)"),
        TextField(label="State", placeholder="State (open/closed)", limit=10),
    ]


CREATE_TITLE, CREATE_PROMPT, CREATE_LABELS, CREATE_ASSIGNEES = range(4)
EDIT_TITLE, EDIT_BODY, EDIT_LABELS, EDIT_ASSIGNEES, EDIT_STATE = range(5)


@dataclass
class CreateState:
    fields: List[TextField] = field(default_factory=_create_fields)
    focus_index: int = 0
    step: str = 'input'  # input | generating | review | creating | done | error
    generated: Optional[GeneratedIssue] = None
    created: Optional[Issue] = None
    error: str = ""
    notice: str = ""
    width: int = 80
    height: int = 24


@dataclass
class EditState:
    issue_number: int
    fields: List[TextField] = field(default_factory=_edit_fields)
    focus_index: int = 0
    step: str = 'loading'  # loading | load_error | input | saving | done | error
    original: Optional[Issue] = None
    updated: Optional[Issue] = None
    error: str = ""
    notice: str = ""
    request_id: int = 0
    width: int = 80
    height: int = 24


@dataclass
class AppState:
    deps: Dependencies
    screen: str = 'list'
    list: ListState = field(default_factory=ListState)
    detail: Optional[DetailState] = None
    create: Optional[CreateState] = None
    edit: Optional[EditState] = None
    action: Optional[ActionState] = None
    help_visible: bool = False
    width: int = 80
    height: int = 24
    spinner_frame: int = 0
    spinner_running: bool = False
    flash: str = ""

    @property
    def spinner(self) -> str:
        return SPINNER_FRAMES[self.spinner_frame % len(SPINNER_FRAMES)]


def _on_error(source: str, request_id: int = 0) -> Callable[[Exception], ErrorMsg]:
    return lambda exc: ErrorMsg(source, str(exc), request_id)


def open_url_command(deps: Dependencies, url: str) -> Command:
    def _open():
        deps.open_url(url)
        return BrowserOpenedMsg(url)
    return call('open_browser', _open, _on_error('browser'))


def _drop_stale(owner: str, current: int, got: int) -> bool:
    if got != current:
        logger.debug("dropping stale %s result (request %s, current %s)", owner, got, current)
        return True
    return False


# -----------------------------
# List screen
# -----------------------------
def visible_rows(st: ListState) -> int:
    rows = st.height - 6
    if st.searching or st.search_query:
        rows -= 1
    if len(st.issues) > rows:
        # room for the "more above" and "more below" lines
        rows -= 2
    return max(1, rows)


def adjust_offset(st: ListState) -> None:
    if not st.issues:
        st.cursor = 0
        st.offset = 0
        return
    st.cursor = max(0, min(st.cursor, len(st.issues) - 1))
    rows = visible_rows(st)
    if st.cursor < st.offset:
        st.offset = st.cursor
    if st.cursor >= st.offset + rows:
        st.offset = st.cursor - rows + 1
    st.offset = max(0, st.offset)


def has_next_page(st: ListState) -> bool:
    if st.search_query:
        return st.page * st.per_page < st.total_count
    return len(st.issues) == st.per_page


def has_prev_page(st: ListState) -> bool:
    return st.page > 1


def load_list(st: ListState, deps: Dependencies) -> List[Command]:
    st.loading = True
    st.error = ""
    rid = next_request_id()
    st.request_id = rid
    github = deps.github
    query, state_filter, page, per_page = st.search_query, st.state_filter, st.page, st.per_page
    if query:
        def _search():
            issues, total = github.search_issues(query, state_filter, page, per_page)
            return SearchResultsMsg(issues, total, page, rid)
        return [call('search_issues', _search, _on_error('list', rid))]

    def _list():
        return IssuesLoadedMsg(github.list_issues(state_filter, page, per_page), page, rid)
    return [call('list_issues', _list, _on_error('list', rid))]


def _apply_results(st: ListState, issues: List[Issue], page: int) -> None:
    st.issues = list(issues)
    st.page = page
    st.loading = False
    st.error = ""
    st.cursor = 0
    st.offset = 0


def _clear_search(st: ListState, deps: Dependencies) -> List[Command]:
    st.search_pending = False
    st.search_input.set("")
    if not st.search_query:
        adjust_offset(st)
        return []
    st.search_query = ""
    st.total_count = 0
    st.page = 1
    adjust_offset(st)
    return load_list(st, deps)


def _update_search_box(st: ListState, msg: KeyMsg, deps: Dependencies) -> List[Command]:
    if deps.is_key('search', 'done', msg.key):
        st.searching = False
        adjust_offset(st)
        return []
    if deps.is_key('search', 'cancel', msg.key):
        st.searching = False
        st.search_generation += 1
        return _clear_search(st, deps)
    before = st.search_input.value
    st.search_input.handle_key(msg.key, msg.text)
    if st.search_input.value == before:
        return []
    st.search_pending = True
    st.search_generation += 1
    return [tick(SEARCH_DEBOUNCE, SearchTickMsg(st.search_generation))]


def _commit_search(st: ListState, deps: Dependencies) -> List[Command]:
    st.search_pending = False
    query = st.search_input.value.strip()
    if not query:
        if st.search_query:
            st.search_query = ""
            st.total_count = 0
            st.page = 1
            return load_list(st, deps)
        return []
    st.search_query = query
    st.page = 1
    adjust_offset(st)
    return load_list(st, deps)


def update_list(st: ListState, msg, deps: Dependencies) -> List[Command]:
    if isinstance(msg, ResizeMsg):
        st.width, st.height = msg.width, msg.height
        adjust_offset(st)
        return []
    if isinstance(msg, IssuesLoadedMsg):
        if _drop_stale('list', st.request_id, msg.request_id):
            return []
        _apply_results(st, msg.issues, msg.page)
        return []
    if isinstance(msg, SearchResultsMsg):
        if _drop_stale('search', st.request_id, msg.request_id):
            return []
        _apply_results(st, msg.issues, msg.page)
        st.total_count = msg.total_count
        return []
    if isinstance(msg, SearchTickMsg):
        if msg.generation != st.search_generation:
            logger.debug("ignoring search tick %s (current %s)", msg.generation, st.search_generation)
            return []
        return _commit_search(st, deps)
    if isinstance(msg, ErrorMsg):
        if _drop_stale('list', st.request_id, msg.request_id):
            return []
        st.loading = False
        st.error = msg.error
        return []
    if not isinstance(msg, KeyMsg):
        return []

    if st.searching:
        return _update_search_box(st, msg, deps)
    if st.loading:
        return []

    key = msg.key
    is_key = deps.is_key
    if is_key('list', 'search', key):
        cmds: List[Command] = []
        if st.search_pending:
            # text still waiting on its debounce tick is committed before the box is cleared
            st.search_generation += 1
            cmds = _commit_search(st, deps)
        st.searching = True
        st.search_input.set("")
        adjust_offset(st)
        return cmds
    if is_key('list', 'clear_search', key):
        return _clear_search(st, deps) if st.search_query else []
    if is_key('list', 'down', key):
        if st.cursor < len(st.issues) - 1:
            st.cursor += 1
            adjust_offset(st)
        return []
    if is_key('list', 'up', key):
        if st.cursor > 0:
            st.cursor -= 1
            adjust_offset(st)
        return []
    if is_key('list', 'top', key):
        st.cursor = 0
        adjust_offset(st)
        return []
    if is_key('list', 'bottom', key):
        st.cursor = max(0, len(st.issues) - 1)
        adjust_offset(st)
        return []
    if is_key('list', 'open', key):
        if st.issues:
            return [emit(NavigateToDetailMsg(st.issues[st.cursor].number))]
        return []
    if is_key('list', 'next_page', key):
        if has_next_page(st):
            st.page += 1
            return load_list(st, deps)
        return []
    if is_key('list', 'prev_page', key):
        if has_prev_page(st):
            st.page -= 1
            return load_list(st, deps)
        return []
    if is_key('list', 'refresh', key):
        return load_list(st, deps)
    for name, state_filter in (('filter_open', 'open'), ('filter_closed', 'closed'), ('filter_all', 'all')):
        if is_key('list', name, key):
            st.state_filter = state_filter
            st.page = 1
            return load_list(st, deps)
    if is_key('list', 'create', key):
        return [emit(NavigateToCreateMsg())]
    return []


# -----------------------------
# Detail screen
# -----------------------------
def body_rows(st: DetailState) -> int:
    return max(1, st.height - 10)


def max_scroll(st: DetailState) -> int:
    return max(0, len(st.body_lines) - body_rows(st))


def wrap_body(body: str, width: int) -> List[str]:
    """Wrap an issue body to the viewport width, keeping blank lines."""
    if not (body or "").strip():
        return []
    inner = max(10, width - 4)
    lines: List[str] = []
    for raw in body.replace("\r\n", "\n").split("\n"):
        if not raw.strip():
            lines.append("")
            continue
        lines.extend(textwrap.wrap(raw, inner, replace_whitespace=False, drop_whitespace=True) or [""])
    return lines


def load_detail(st: DetailState, deps: Dependencies) -> List[Command]:
    st.loading = True
    st.error = ""
    rid = next_request_id()
    st.request_id = rid
    number = st.issue_number
    github = deps.github
    return [call('get_issue', lambda: IssueLoadedMsg(github.get_issue(number), rid), _on_error('detail', rid))]


def _scroll(st: DetailState, delta: int) -> None:
    st.scroll_offset = max(0, min(max_scroll(st), st.scroll_offset + delta))


def update_detail(st: DetailState, msg, deps: Dependencies) -> List[Command]:
    if isinstance(msg, ResizeMsg):
        st.width, st.height = msg.width, msg.height
        if st.issue is not None:
            st.body_lines = wrap_body(st.issue.body, st.width)
        _scroll(st, 0)
        return []
    if isinstance(msg, IssueLoadedMsg):
        if _drop_stale('detail', st.request_id, msg.request_id):
            return []
        st.issue = msg.issue
        st.loading = False
        st.error = ""
        st.body_lines = wrap_body(msg.issue.body, st.width)
        st.scroll_offset = 0
        return []
    if isinstance(msg, ErrorMsg):
        if _drop_stale('detail', st.request_id, msg.request_id):
            return []
        st.loading = False
        st.error = msg.error
        st.issue = None
        st.body_lines = []
        st.scroll_offset = 0
        return []
    if not isinstance(msg, KeyMsg) or st.loading:
        return []

    key = msg.key
    is_key = deps.is_key
    if is_key('detail', 'back', key):
        return [emit(NavigateToListMsg())]
    if is_key('detail', 'reload', key):
        return load_detail(st, deps)
    if is_key('detail', 'down', key):
        _scroll(st, 1)
    elif is_key('detail', 'up', key):
        _scroll(st, -1)
    elif is_key('detail', 'half_down', key):
        _scroll(st, max(1, body_rows(st) // 2))
    elif is_key('detail', 'half_up', key):
        _scroll(st, -max(1, body_rows(st) // 2))
    elif is_key('detail', 'top', key):
        st.scroll_offset = 0
    elif is_key('detail', 'bottom', key):
        st.scroll_offset = max_scroll(st)
    elif st.issue is None:
        return []
    elif is_key('detail', 'browser', key):
        if st.issue.html_url:
            return [open_url_command(deps, st.issue.html_url)]
    elif is_key('detail', 'edit', key):
        return [emit(NavigateToEditMsg(st.issue_number))]
    else:
        for kind in ACTION_KINDS:
            if is_key('detail', kind, key):
                return [emit(StartActionMsg(kind, st.issue_number))]
    return []


# -----------------------------
# Action overlay
# -----------------------------
def _submit_action(st: ActionState, deps: Dependencies) -> List[Command]:
    number = st.issue_number
    value = st.input.value.strip()
    github = deps.github
    if st.kind == 'close':
        def _run():
            github.close_issue(number, value)
            return ActionSucceededMsg(f"Issue #{number} closed")
        name = 'close_issue'
    elif st.kind == 'assign':
        users = parse_csv(value)
        if not users:
            return []

        def _run():
            github.assign_issue(number, users)
            return ActionSucceededMsg(f"Issue #{number} assigned to {', '.join(users)}")
        name = 'assign_issue'
    else:
        if not value:
            return []

        def _run():
            github.add_comment(number, value)
            return ActionSucceededMsg(f"Comment added to issue #{number}")
        name = 'add_comment'
    st.loading = True
    st.notice = ""
    return [call(name, _run, _on_error('action'))]


def _draft_comment(st: ActionState, deps: Dependencies) -> List[Command]:
    prompt = st.input.value.strip()
    if not prompt:
        return []
    number = st.issue_number
    github, llm = deps.github, deps.llm

    def _run():
        issue = github.get_issue(number)
        return CommentDraftedMsg(llm.generate_comment(issue_context(issue.title, issue.body), prompt))
    st.drafting = True
    st.notice = ""
    return [call('generate_comment', _run, _on_error('action_draft'))]


def update_action(st: ActionState, msg, deps: Dependencies) -> List[Command]:
    if isinstance(msg, ResizeMsg):
        st.width, st.height = msg.width, msg.height
        return []
    if isinstance(msg, ActionSucceededMsg):
        st.loading = False
        st.done = True
        st.result = msg.text
        return []
    if isinstance(msg, CommentDraftedMsg):
        st.drafting = False
        st.input.set(msg.text)
        return []
    if isinstance(msg, ErrorMsg):
        if msg.source == 'action_draft':
            st.drafting = False
            st.notice = f"Draft failed: {msg.error}"
            return []
        st.loading = False
        st.error = msg.error
        return []
    if not isinstance(msg, KeyMsg):
        return []

    if st.done or st.error:
        return [emit(ActionDoneMsg())]
    if st.loading or st.drafting:
        return []
    key = msg.key
    if deps.is_key('form', 'cancel', key):
        return [emit(ActionCancelledMsg())]
    if deps.is_key('form', 'confirm', key):
        return _submit_action(st, deps)
    if deps.is_key('form', 'generate', key):
        if st.kind == 'comment' and deps.llm is not None:
            return _draft_comment(st, deps)
        return []
    st.notice = ""
    st.input.handle_key(key, msg.text)
    return []


# -----------------------------
# Forms (create / edit)
# -----------------------------
def _cycle_focus(st, delta: int) -> None:
    st.focus_index = (st.focus_index + delta) % len(st.fields)


def _form_key(st, msg: KeyMsg, deps: Dependencies) -> bool:
    """Focus cycling and text entry shared by both wizards."""
    if deps.is_key('form', 'next_field', msg.key):
        _cycle_focus(st, 1)
    elif deps.is_key('form', 'prev_field', msg.key):
        _cycle_focus(st, -1)
    else:
        return st.fields[st.focus_index].handle_key(msg.key, msg.text)
    return True


def create_input(st: CreateState) -> IssueInput:
    return IssueInput(
        title=st.fields[CREATE_TITLE].value.strip(),
        prompt=st.fields[CREATE_PROMPT].value.strip(),
        labels=parse_csv(st.fields[CREATE_LABELS].value),
        assignees=parse_csv(st.fields[CREATE_ASSIGNEES].value),
    )


def _generate(st: CreateState, deps: Dependencies) -> List[Command]:
    data = create_input(st)
    llm, cfg = deps.llm, deps.config
    st.step = 'generating'
    return [call('generate_issue', lambda: IssueGeneratedMsg(draft_issue(llm, cfg, data, True)), _on_error('create'))]


def _create_from(draft_fn: Callable[[], GeneratedIssue], assignees: List[str], deps: Dependencies) -> Command:
    github = deps.github
    # project default assignees apply when the form leaves them empty
    assignees = list(assignees) or list(deps.config.project.assignees)

    def _run():
        draft = draft_fn()
        return IssueCreatedMsg(github.create_issue(draft.title, draft.body, list(draft.labels), assignees))
    return call('create_issue', _run, _on_error('create'))


def update_create(st: CreateState, msg, deps: Dependencies) -> List[Command]:
    if isinstance(msg, ResizeMsg):
        st.width, st.height = msg.width, msg.height
        return []
    if isinstance(msg, IssueGeneratedMsg):
        if st.step != 'generating':
            logger.debug("ignoring generated draft in step %s", st.step)
            return []
        st.generated = msg.issue
        st.step = 'review'
        return []
    if isinstance(msg, IssueCreatedMsg):
        st.created = msg.issue
        st.step = 'done'
        return []
    if isinstance(msg, ErrorMsg):
        st.error = msg.error
        st.step = 'error'
        return []
    if not isinstance(msg, KeyMsg):
        return []

    key = msg.key
    is_key = deps.is_key
    if st.step == 'error':
        st.error = ""
        st.step = 'input'
        return []
    if st.step == 'done':
        if is_key('form', 'browser', key) and st.created is not None and st.created.html_url:
            return [open_url_command(deps, st.created.html_url)]
        return [emit(NavigateToListMsg())]
    if st.step == 'review':
        if is_key('form', 'cancel', key):
            st.generated = None
            st.step = 'input'
        elif is_key('form', 'confirm', key) or is_key('form', 'submit', key):
            draft = st.generated
            if draft is None or not draft.title.strip():
                return []
            st.step = 'creating'
            return [_create_from(lambda: draft, parse_csv(st.fields[CREATE_ASSIGNEES].value), deps)]
        return []
    if st.step != 'input':
        return []

    st.notice = ""
    if is_key('form', 'cancel', key):
        return [emit(NavigateToListMsg())]
    if is_key('form', 'generate', key):
        data = create_input(st)
        if not data.title and not data.prompt:
            return []
        return _generate(st, deps)
    if is_key('form', 'submit', key):
        data = create_input(st)
        if not data.title:
            return []
        llm, cfg = deps.llm, deps.config
        st.step = 'creating'
        return [_create_from(lambda: draft_issue(llm, cfg, data, False), data.assignees, deps)]
    _form_key(st, msg, deps)
    return []


def compute_edit_diff(original: Issue, title: str, body: str, labels: str, assignees: str,
                      state: str) -> IssueUpdate:
    """Fields whose edited value differs from ``original``; untouched fields stay None."""
    update = IssueUpdate()
    title = title.strip()
    if title != original.title.strip():
        update.title = title
    body = body.strip()
    if body != (original.body or "").strip():
        update.body = body
    state = state.strip()
    if state != original.state and state in ('open', 'closed'):
        update.state = state
    label_list = parse_csv(labels)
    if label_list != list(original.labels):
        update.labels = label_list
    assignee_list = parse_csv(assignees)
    if assignee_list != list(original.assignees):
        update.assignees = assignee_list
    return update


def load_edit(st: EditState, deps: Dependencies) -> List[Command]:
    st.step = 'loading'
    st.error = ""
    rid = next_request_id()
    st.request_id = rid
    number = st.issue_number
    github = deps.github
    return [call('get_issue', lambda: IssueLoadedMsg(github.get_issue(number), rid), _on_error('edit_load', rid))]


def _populate_edit(st: EditState, issue: Issue) -> None:
    st.original = issue
    st.fields[EDIT_TITLE].set(issue.title)
    st.fields[EDIT_BODY].set(issue.body or "")
    st.fields[EDIT_LABELS].set(", ".join(issue.labels))
    st.fields[EDIT_ASSIGNEES].set(", ".join(issue.assignees))
    st.fields[EDIT_STATE].set(issue.state)
    st.focus_index = 0


def _save_edit(st: EditState, deps: Dependencies) -> List[Command]:
    values = [f.value for f in st.fields]
    if not values[EDIT_TITLE].strip():
        st.notice = "Title cannot be empty"
        return []
    if values[EDIT_STATE].strip() not in ('open', 'closed'):
        st.notice = "State must be 'open' or 'closed'"
        return []
    update = compute_edit_diff(st.original, *values)
    if update.is_empty():
        st.notice = "No changes to save"
        return []
    number = st.issue_number
    github = deps.github
    st.step = 'saving'
    return [call('update_issue', lambda: IssueUpdatedMsg(github.update_issue(number, update)), _on_error('edit'))]


def update_edit(st: EditState, msg, deps: Dependencies) -> List[Command]:
    if isinstance(msg, ResizeMsg):
        st.width, st.height = msg.width, msg.height
        return []
    if isinstance(msg, IssueLoadedMsg):
        if _drop_stale('edit', st.request_id, msg.request_id):
            return []
        _populate_edit(st, msg.issue)
        st.step = 'input'
        return []
    if isinstance(msg, IssueUpdatedMsg):
        st.updated = msg.issue
        st.step = 'done'
        return []
    if isinstance(msg, ErrorMsg):
        if msg.source == 'edit_load':
            if _drop_stale('edit', st.request_id, msg.request_id):
                return []
            st.step = 'load_error'
        else:
            st.step = 'error'
        st.error = msg.error
        return []
    if not isinstance(msg, KeyMsg):
        return []

    key = msg.key
    is_key = deps.is_key
    if st.step == 'load_error':
        if is_key('form', 'retry', key):
            return load_edit(st, deps)
        return [emit(NavigateToDetailMsg(st.issue_number))]
    if st.step == 'error':
        st.error = ""
        st.step = 'input'
        return []
    if st.step == 'done':
        if is_key('form', 'browser', key) and st.updated is not None and st.updated.html_url:
            return [open_url_command(deps, st.updated.html_url)]
        return [emit(NavigateToDetailMsg(st.issue_number))]
    if st.step != 'input':
        return []

    st.notice = ""
    if is_key('form', 'cancel', key):
        return [emit(NavigateToDetailMsg(st.issue_number))]
    if is_key('form', 'submit', key):
        return _save_edit(st, deps)
    _form_key(st, msg, deps)
    return []


# -----------------------------
# App controller
# -----------------------------
SCREEN_UPDATERS: Mapping[str, Tuple[str, Callable]] = MappingProxyType({
    'list': ('list', update_list),
    'detail': ('detail', update_detail),
    'create': ('create', update_create),
    'edit': ('edit', update_edit),
})

ERROR_OWNERS = MappingProxyType({
    'list': 'list',
    'detail': 'detail',
    'action': 'action',
    'action_draft': 'action',
    'create': 'create',
    'edit': 'edit',
    'edit_load': 'edit',
})


def init_app(deps: Dependencies, width: int = 80, height: int = 24) -> Tuple[AppState, List[Command]]:
    state = AppState(deps=deps, width=width, height=height)
    cmds = _enter_list(state)
    cmds.extend(_ensure_spinner(state))
    return state, cmds


def is_loading(state: AppState) -> bool:
    if state.action is not None and (state.action.loading or state.action.drafting):
        return True
    if state.screen == 'list':
        return state.list.loading
    if state.screen == 'detail':
        return state.detail is not None and state.detail.loading
    if state.screen == 'create':
        return state.create is not None and state.create.step in ('generating', 'creating')
    if state.screen == 'edit':
        return state.edit is not None and state.edit.step in ('loading', 'saving')
    return False


def _ensure_spinner(state: AppState) -> List[Command]:
    if state.spinner_running or not is_loading(state):
        return []
    state.spinner_running = True
    return [tick(SPINNER_INTERVAL, SpinnerTickMsg())]


def _enter_list(state: AppState) -> List[Command]:
    per_page = state.deps.config.ui.per_page if state.deps.config is not None else 20
    state.list = ListState(per_page=per_page, width=state.width, height=state.height)
    state.screen = 'list'
    return load_list(state.list, state.deps)


def _enter_detail(state: AppState, number: int) -> List[Command]:
    state.detail = DetailState(issue_number=number, width=state.width, height=state.height)
    state.screen = 'detail'
    return load_detail(state.detail, state.deps)


def _delegate(state: AppState, msg) -> List[Command]:
    attr, updater = SCREEN_UPDATERS[state.screen]
    sub = getattr(state, attr)
    if sub is None:
        logger.debug("no %s state for %r", state.screen, msg)
        return []
    return updater(sub, msg, state.deps)


def _handle_key(state: AppState, msg: KeyMsg) -> List[Command]:
    deps = state.deps
    key = msg.key
    state.flash = ""
    if deps.is_key('global', 'force_quit', key):
        return [quit_app()]
    if state.action is not None:
        return update_action(state.action, msg, deps)
    if state.screen in ('create', 'edit') or (state.screen == 'list' and state.list.searching):
        return _delegate(state, msg)
    if deps.is_key('global', 'help', key):
        state.help_visible = not state.help_visible
        return []
    if state.help_visible:
        if deps.is_key('global', 'close_help', key):
            state.help_visible = False
        return []
    if deps.is_key('global', 'quit', key):
        return [quit_app()]
    return _delegate(state, msg)


def _route_result(state: AppState, msg) -> List[Command]:
    deps = state.deps
    if isinstance(msg, (IssuesLoadedMsg, SearchResultsMsg, SearchTickMsg)):
        return update_list(state.list, msg, deps)
    if isinstance(msg, IssueLoadedMsg):
        if state.edit is not None and state.edit.request_id == msg.request_id:
            return update_edit(state.edit, msg, deps)
        if state.detail is not None:
            return update_detail(state.detail, msg, deps)
        logger.debug("dropping issue #%s with no owner", msg.issue.number)
        return []
    if isinstance(msg, ErrorMsg):
        owner = ERROR_OWNERS.get(msg.source)
        if owner is None:
            logger.warning("%s error: %s", msg.source, msg.error)
            state.flash = f"{msg.source}: {msg.error}"
            return []
        if owner == 'action':
            return update_action(state.action, msg, deps) if state.action is not None else []
        attr, updater = SCREEN_UPDATERS[owner]
        sub = getattr(state, attr)
        if sub is None:
            logger.debug("dropping %s error without an owner: %s", msg.source, msg.error)
            return []
        return updater(sub, msg, deps)
    if isinstance(msg, (ActionSucceededMsg, CommentDraftedMsg)):
        if state.action is None:
            logger.debug("dropping %r with no open action", msg)
            return []
        return update_action(state.action, msg, deps)
    if isinstance(msg, (IssueGeneratedMsg, IssueCreatedMsg)):
        return update_create(state.create, msg, deps) if state.create is not None else []
    if isinstance(msg, IssueUpdatedMsg):
        return update_edit(state.edit, msg, deps) if state.edit is not None else []
    if isinstance(msg, BrowserOpenedMsg):
        logger.info("opened %s", msg.url)
        return []
    logger.debug("unhandled message %r", msg)
    return []


def _update(state: AppState, msg) -> List[Command]:
    if isinstance(msg, KeyMsg):
        return _handle_key(state, msg)
    if isinstance(msg, ResizeMsg):
        state.width, state.height = msg.width, msg.height
        cmds: List[Command] = []
        cmds.extend(update_list(state.list, msg, state.deps))
        for attr in ('detail', 'create', 'edit'):
            sub = getattr(state, attr)
            if sub is not None:
                cmds.extend(SCREEN_UPDATERS[attr][1](sub, msg, state.deps))
        if state.action is not None:
            cmds.extend(update_action(state.action, msg, state.deps))
        return cmds
    if isinstance(msg, SpinnerTickMsg):
        if not is_loading(state):
            state.spinner_running = False
            return []
        state.spinner_frame = (state.spinner_frame + 1) % len(SPINNER_FRAMES)
        return [tick(SPINNER_INTERVAL, SpinnerTickMsg())]
    if isinstance(msg, NavigateToListMsg):
        state.help_visible = False
        return _enter_list(state)
    if isinstance(msg, NavigateToDetailMsg):
        state.help_visible = False
        return _enter_detail(state, msg.number)
    if isinstance(msg, NavigateToCreateMsg):
        state.help_visible = False
        state.create = CreateState(width=state.width, height=state.height)
        state.screen = 'create'
        return []
    if isinstance(msg, NavigateToEditMsg):
        state.help_visible = False
        state.edit = EditState(issue_number=msg.number, width=state.width, height=state.height)
        state.screen = 'edit'
        return load_edit(state.edit, state.deps)
    if isinstance(msg, StartActionMsg):
        state.help_visible = False
        state.action = ActionState(kind=msg.kind, issue_number=msg.number, width=state.width, height=state.height)
        return []
    if isinstance(msg, ActionDoneMsg):
        number = state.action.issue_number if state.action is not None else None
        state.action = None
        if number is None and state.detail is not None:
            number = state.detail.issue_number
        return _enter_detail(state, number) if number is not None else []
    if isinstance(msg, ActionCancelledMsg):
        state.action = None
        return []
    return _route_result(state, msg)


def update_app(state: AppState, msg) -> Tuple[AppState, List[Command]]:
    """Deliver one message; returns the (mutated) state and the commands to run."""
    cmds = _update(state, msg)
    cmds.extend(_ensure_spinner(state))
    return state, cmds
