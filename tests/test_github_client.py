import pytest
import requests

from grit_github import GitHubError, Issue, IssueClient, IssueUpdate, MockIssueClient, generate_mock_issues
from helpers import FakeResponse, FakeSession


def _raw(number, **kw):
    data = {
        'number': number,
        'title': f'Issue {number}',
        'body': None,
        'state': 'open',
        'html_url': f'https://github.com/acme/widgets/issues/{number}',
        'labels': [{'name': 'bug'}, {'name': ' '}],
        'assignees': [{'login': 'alice'}],
        'comments': 2,
    }
    data.update(kw)
    return data


def _client(*responses, **kw):
    session = FakeSession(*responses)
    waits = []
    client = IssueClient('acme', 'widgets', 'tok', session=session, sleep=waits.append, **kw)
    return client, session, waits


def test_issue_from_api():
    issue = Issue.from_api(_raw(3, pull_request={'url': 'x'}))
    assert issue.number == 3
    assert issue.body == ''
    assert issue.labels == ['bug']
    assert issue.assignees == ['alice']
    assert issue.comments == 2
    assert issue.is_pull_request is True


def test_list_issues_params():
    client, session, _ = _client(FakeResponse(200, [_raw(2), _raw(1)]))
    issues = client.list_issues('closed', 3, 10)
    assert [i.number for i in issues] == [2, 1]
    method, url, params, _ = session.requests[0]
    assert method == 'GET'
    assert url == 'https://api.github.com/repos/acme/widgets/issues'
    assert params == {'state': 'closed', 'page': 3, 'per_page': 10}


def test_search_builds_query_and_returns_total():
    client, session, _ = _client(FakeResponse(200, {'total_count': 41, 'items': [_raw(9)]}))
    issues, total = client.search_issues('crash', 'open', 2, 20)
    assert total == 41
    assert [i.number for i in issues] == [9]
    _, url, params, _ = session.requests[0]
    assert url == 'https://api.github.com/search/issues'
    assert params['q'] == 'repo:acme/widgets is:issue state:open crash'
    assert params['page'] == 2


def test_search_all_states_has_no_state_qualifier():
    client, session, _ = _client(FakeResponse(200, {'total_count': 0, 'items': []}))
    client.search_issues('x', 'all')
    assert session.requests[0][2]['q'] == 'repo:acme/widgets is:issue x'


def test_error_message_includes_status_and_details():
    body = {'message': 'Validation Failed', 'errors': [{'resource': 'Issue', 'field': 'title', 'code': 'missing'}]}
    client, _, _ = _client(FakeResponse(422, body))
    with pytest.raises(GitHubError) as info:
        client.create_issue('')
    assert info.value.status == 422
    assert str(info.value) == 'github api error (422): Validation Failed (Issue title missing)'


def test_error_message_without_json():
    client, _, _ = _client(FakeResponse(500, text='upstream down'))
    with pytest.raises(GitHubError) as info:
        client.get_issue(1)
    assert str(info.value) == 'github api error (500): upstream down'


def test_gateway_errors_are_retried_with_backoff():
    client, session, waits = _client(
        FakeResponse(503, text='busy'),
        FakeResponse(502, text='busy'),
        FakeResponse(200, _raw(5)),
    )
    assert client.get_issue(5).number == 5
    assert waits == [2, 4]
    assert len(session.requests) == 3


def test_rate_limit_waits_for_retry_after():
    client, _, waits = _client(
        FakeResponse(429, {'message': 'slow down'}, headers={'Retry-After': '7'}),
        FakeResponse(200, [_raw(1)]),
    )
    client.list_issues()
    assert waits == [7]


def test_forbidden_without_hint_is_not_retried():
    client, session, waits = _client(FakeResponse(403, {'message': 'Bad credentials'}))
    with pytest.raises(GitHubError):
        client.list_issues()
    assert waits == []
    assert len(session.requests) == 1


def test_retry_budget_is_capped():
    client, _, waits = _client(*[FakeResponse(503, text='busy')] * 5, max_total_wait=10)
    with pytest.raises(GitHubError) as info:
        client.get_issue(1)
    assert info.value.status == 503
    assert sum(waits) <= 10


def test_connection_errors_become_github_errors():
    err = requests.exceptions.ConnectionError('refused')
    client, _, waits = _client(err, err, max_total_wait=3)
    with pytest.raises(GitHubError) as info:
        client.get_issue(1)
    assert 'request failed' in str(info.value)
    assert waits == [2]


def test_create_issue_payload_omits_empty_fields():
    client, session, _ = _client(FakeResponse(201, _raw(30, title='New')))
    issue = client.create_issue('New', '', [], ['bob'])
    assert issue.number == 30
    method, url, _, payload = session.requests[0]
    assert method == 'POST'
    assert payload == {'title': 'New', 'assignees': ['bob']}


def test_close_with_comment_posts_comment_then_patches():
    client, session, _ = _client(
        FakeResponse(201, {'id': 1, 'body': 'bye'}),
        FakeResponse(200, _raw(4, state='closed')),
    )
    issue = client.close_issue(4, 'bye')
    assert issue.state == 'closed'
    assert [(r[0], r[1].rsplit('/repos/acme/widgets', 1)[1], r[3]) for r in session.requests] == [
        ('POST', '/issues/4/comments', {'body': 'bye'}),
        ('PATCH', '/issues/4', {'state': 'closed'}),
    ]


def test_close_comment_failure_stops_before_patch():
    client, session, _ = _client(FakeResponse(404, {'message': 'Not Found'}))
    with pytest.raises(GitHubError) as info:
        client.close_issue(4, 'bye')
    assert str(info.value).startswith('adding closing comment:')
    assert len(session.requests) == 1


def test_close_without_comment_only_patches():
    client, session, _ = _client(FakeResponse(200, _raw(4, state='closed')))
    client.close_issue(4, '  ')
    assert [r[0] for r in session.requests] == ['PATCH']


def test_update_sends_only_set_fields():
    client, session, _ = _client(FakeResponse(200, _raw(4)))
    client.update_issue(4, IssueUpdate(state='closed', labels=[]))
    assert session.requests[0][3] == {'state': 'closed', 'labels': []}


def test_assign_replaces_assignees():
    client, session, _ = _client(FakeResponse(200, _raw(4)))
    client.assign_issue(4, ['a', 'b'])
    assert session.requests[0][0] == 'PATCH'
    assert session.requests[0][3] == {'assignees': ['a', 'b']}


def test_issue_update_payload():
    assert IssueUpdate().is_empty()
    assert IssueUpdate(body='').payload() == {'body': ''}


def test_mock_client_paginates_and_searches():
    client = MockIssueClient('acme', 'widgets')
    assert len(client.issues) == 45
    page = client.list_issues('all', 1, 20)
    assert [i.number for i in page][:3] == [45, 44, 43]
    assert all(i.state == 'open' for i in client.list_issues('open', 1, 100))
    rows, total = client.search_issues('SAMPLE ISSUE 1', 'all', 1, 5)
    assert total == 11
    assert len(rows) == 5


def test_mock_client_mutations():
    client = MockIssueClient('acme', 'widgets', issues=generate_mock_issues('acme', 'widgets', 3))
    created = client.create_issue('New', 'b', ['x'], ['y'])
    assert created.number == 4
    assert created.html_url == 'https://github.com/acme/widgets/issues/4'
    client.close_issue(4, 'done')
    assert client.get_issue(4).state == 'closed'
    assert client.get_issue(4).comments == 1
    with pytest.raises(GitHubError) as info:
        client.get_issue(99)
    assert info.value.status == 404
