import grit_tui as gt
from grit_github import GitHubError
from grit_llm import GeneratedIssue
from helpers import FakeLLM, Harness


def _wizard(deps):
    h = Harness(deps).run()
    h.press('c')
    h.deps.github.calls.clear()
    return h


def _fields(h):
    return [f.value for f in h.state.create.fields]


def test_parse_csv():
    assert gt.parse_csv("a, b ,,c") == ["a", "b", "c"]
    assert gt.parse_csv("") == []
    assert gt.parse_csv(" , ") == []
    assert gt.parse_csv("x,x") == ["x", "x"]


def test_direct_submit_skips_llm(llm_deps, client, llm):
    h = _wizard(llm_deps)
    h.type('Fix bug')
    h.press('ctrl+s')
    st = h.state.create
    assert st.step == 'done'
    assert client.calls == [('create_issue', 'Fix bug', '', [], [])]
    assert llm.requests == []
    assert st.created.number == 26


def test_direct_submit_sends_prompt_labels_and_assignees(deps, client):
    h = _wizard(deps)
    h.type('Crash on save')
    h.key('tab')
    h.type('It crashes.')
    h.key('tab')
    h.type('bug, ui')
    h.key('tab')
    h.type('alice')
    h.press('ctrl+s')
    assert client.calls == [('create_issue', 'Crash on save', 'It crashes.', ['bug', 'ui'], ['alice'])]


def test_submit_requires_title(deps, client):
    h = _wizard(deps)
    h.key('tab')
    h.type('only a prompt')
    h.press('ctrl+s')
    assert h.state.create.step == 'input'
    assert client.calls == []


def test_generate_requires_title_or_prompt(llm_deps, llm):
    h = _wizard(llm_deps)
    h.press('ctrl+g')
    assert h.state.create.step == 'input'
    assert llm.requests == []


def test_generate_then_discard_keeps_fields(llm_deps, client, llm):
    h = _wizard(llm_deps)
    h.key('tab')
    h.type('dark mode please')
    h.key('tab')
    h.type('ui')
    h.press('ctrl+g')
    st = h.state.create
    assert st.step == 'review'
    assert st.generated.title == 'Add dark mode'
    assert st.generated.labels == ['ui']
    req = llm.requests[0]
    assert req.user_prompt == 'dark mode please'
    assert req.generate_title is True
    assert req.suggest_labels is False
    assert req.repo_context == 'acme/widgets'

    h.press('esc')
    assert st.step == 'input'
    assert st.generated is None
    assert _fields(h) == ['', 'dark mode please', 'ui', '']
    assert client.calls == []


def test_generate_keeps_user_title(llm_deps, llm):
    h = _wizard(llm_deps)
    h.type('My title')
    h.press('ctrl+g')
    assert h.state.create.generated.title == 'My title'
    assert llm.requests[0].generate_title is False
    assert llm.requests[0].suggest_labels is True


def test_review_submit_creates_generated_issue(llm_deps, client):
    h = _wizard(llm_deps)
    h.key('tab')
    h.type('dark mode')
    h.key('tab', 'tab')
    h.type('bob')
    h.press('ctrl+g')
    h.press('enter')
    assert h.state.create.step == 'done'
    assert client.calls == [('create_issue', 'Add dark mode', '## Description\nDark theme.', [], ['bob'])]


def test_review_blocks_empty_title(cfg, client):
    llm = FakeLLM(issue=GeneratedIssue(title='  ', body='b'))
    deps = gt.Dependencies(config=cfg, github=client, llm=llm)
    h = _wizard(deps)
    h.key('tab')
    h.type('something')
    h.press('ctrl+g')
    h.press('ctrl+s')
    assert h.state.create.step == 'review'
    assert client.calls == []


def test_generate_without_llm_passes_input_through(deps):
    h = _wizard(deps)
    h.type('Plain')
    h.key('tab')
    h.type('just text')
    h.press('ctrl+g')
    st = h.state.create
    assert st.step == 'review'
    assert st.generated == GeneratedIssue(title='Plain', body='just text', labels=[])


def test_create_error_then_any_key_returns_to_input(deps, client):
    client.fail['create_issue'] = GitHubError('github api error (422): Validation Failed', status=422)
    h = _wizard(deps)
    h.type('Broken')
    h.press('ctrl+s')
    st = h.state.create
    assert st.step == 'error'
    assert st.error == 'github api error (422): Validation Failed'
    h.press('x')
    assert st.step == 'input'
    assert st.error == ''
    assert _fields(h)[gt.CREATE_TITLE] == 'Broken'


def test_generate_error_reports_and_recovers(llm_deps, llm):
    def fail(req):
        raise RuntimeError('model offline')
    llm.generate_issue = fail
    h = _wizard(llm_deps)
    h.type('Title')
    h.press('ctrl+g')
    assert h.state.create.step == 'error'
    assert h.state.create.error == 'model offline'
    h.press('enter')
    assert h.state.create.step == 'input'


def test_done_browser_key_opens_created_issue(deps, opened):
    h = _wizard(deps)
    h.type('New')
    h.press('ctrl+s')
    h.press('o')
    assert opened == ['https://github.com/acme/widgets/issues/26']
    assert h.state.screen == 'create'


def test_done_other_key_returns_to_list(deps, client):
    h = _wizard(deps)
    h.type('New')
    h.press('ctrl+s')
    h.press('enter')
    assert h.state.screen == 'list'
    assert h.state.list.issues[0].number == 26


def test_escape_cancels_to_list(deps, client):
    h = _wizard(deps)
    h.type('draft')
    h.press('esc')
    assert h.state.screen == 'list'
    assert client.calls == [('list_issues', 'open', 1, 20)]


def test_focus_cycles_both_ways(deps):
    h = _wizard(deps)
    st = h.state.create
    h.key('tab', 'tab', 'tab', 'tab')
    assert st.focus_index == 0
    h.key('shift+tab')
    assert st.focus_index == 3
    h.key('down')
    assert st.focus_index == 0
    h.key('up', 'up')
    assert st.focus_index == 2


def test_text_goes_to_focused_field_and_global_keys_are_typed(deps):
    h = _wizard(deps)
    h.type('q?')
    h.key('tab')
    h.type('line one')
    h.key('enter')
    h.type('line two')
    assert h.quit is False
    assert h.state.help_visible is False
    assert _fields(h) == ['q?', 'line one\nline two', '', '']


def test_title_is_limited(deps):
    h = _wizard(deps)
    h.send(gt.KeyMsg('paste', 'x' * 300))
    assert len(_fields(h)[gt.CREATE_TITLE]) == 256


def test_keys_ignored_while_creating(deps):
    h = _wizard(deps)
    h.type('New')
    h.key('ctrl+s')
    assert h.state.create.step == 'creating'
    assert gt.is_loading(h.state)
    h.key('esc')
    assert h.state.screen == 'create'
    h.run()
    assert h.state.create.step == 'done'


def test_late_generated_draft_is_ignored():
    st = gt.CreateState()
    gt.update_create(st, gt.IssueGeneratedMsg(GeneratedIssue(title='late')), None)
    assert st.step == 'input'
    assert st.generated is None


def test_project_assignees_fill_in_when_field_empty(cfg, client):
    cfg.project.assignees = ['octocat']
    deps = gt.Dependencies(config=cfg, github=client)
    h = _wizard(deps)
    h.type('Needs triage')
    h.press('ctrl+s')
    assert client.calls == [('create_issue', 'Needs triage', '', [], ['octocat'])]

    h = _wizard(deps)
    h.type('Mine')
    for _ in range(3):
        h.key('tab')
    h.type('alice')
    h.press('ctrl+s')
    assert client.calls == [('create_issue', 'Mine', '', [], ['alice'])]
