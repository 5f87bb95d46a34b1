# grit_view: state -> prompt_toolkit formatted text
#
# Renderers return lists of (style, text) fragments consumed by
# FormattedTextControl. Style names are prompt_toolkit classes resolved through
# the dict in Dependencies.style (BASE_STYLE merged with config overrides).

from __future__ import annotations

import unicodedata
from typing import Dict, List, Mapping, Optional, Tuple

from prompt_toolkit.utils import get_cwidth

from grit_tui import (
    CREATE_ASSIGNEES, REVIEW_BODY_LIMIT, ActionState, AppState, CreateState,
    DetailState, EditState, KeyBinding, ListState, TextField, body_rows, has_next_page,
    has_prev_page, visible_rows,
)

Fragments = List[Tuple[str, str]]

BASE_STYLE: Dict[str, str] = {
    'header': 'bold #eeeeee bg:#5f5fd7',
    'title': 'bold #ff87d7',
    'selected': 'bold bg:#3a3a3a',
    'normal': '',
    'state.open': '#00d787',
    'state.closed': '#ff0000',
    'label': '#ffaf00',
    'assignee': '#87d7ff',
    'pull': '#af87ff',
    'error': 'bold #ff0000',
    'success': 'bold #00d787',
    'notice': '#ffd787',
    'status': 'bg:#303030 #d0d0d0',
    'help': '#626262',
    'dim': '#585858',
    'spinner': '#ff87d7',
    'rule': '#444444',
    'field.label': '#585858',
    'field.label.focused': 'bold #ff87d7',
    'field.input': '#eeeeee',
    'field.placeholder': 'italic #585858',
    'field.cursor': 'reverse',
    'modal': 'bg:#1c1c1c #eeeeee',
    'modal.title': 'bold #ff87d7',
    'help.key': '#87d7ff',
    'help.section': 'bold #ffd75f',
}

ACTION_TITLES = {
    'close': "Close issue #{n}",
    'assign': "Assign issue #{n}",
    'comment': "Comment on issue #{n}",
}


def build_style(overrides: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    style = dict(BASE_STYLE)
    for key, value in (overrides or {}).items():
        if isinstance(key, str) and isinstance(value, str):
            style[key] = value
    return style


# -----------------------------
# Width helpers
# -----------------------------
def _char_width(ch: str) -> int:
    """Printable cell width of one character; combining marks are zero-width."""
    if unicodedata.combining(ch) or unicodedata.category(ch) == "Cf":
        return 0
    return max(1, get_cwidth(ch))


def display_width(text: str) -> int:
    return sum(_char_width(ch) for ch in text)


def truncate(s: str, maxlen: int) -> str:
    """Truncate string to a maximum display width, preserving whole glyphs."""
    s = (s or "").replace("\n", " ").replace("\r", " ")
    if maxlen <= 0:
        return ""
    if display_width(s) <= maxlen:
        return s
    out: List[str] = []
    width = 0
    for ch in s:
        ch_w = _char_width(ch)
        if width + ch_w + 1 > maxlen:
            break
        out.append(ch)
        width += ch_w
    return "".join(out) + "…"


def pad(text: str, width: int) -> str:
    raw = truncate(text, width)
    return raw + " " * max(0, width - display_width(raw))


# -----------------------------
# Shared pieces
# -----------------------------
def _header(text: str, width: int) -> Fragments:
    return [('class:header', pad(f" grit · {text}", max(1, width))), ('', '\n')]


def _status_bar(left: str, right: str, width: int) -> Fragments:
    gap = max(1, width - display_width(left) - display_width(right))
    return [('class:status', truncate(left + " " * gap + right, max(1, width))), ('', '\n')]


def _help_line(text: str) -> Fragments:
    return [('class:help', f"  {text}"), ('', '\n')]


def _loading(state: AppState, text: str) -> Fragments:
    return [('', '  '), ('class:spinner', state.spinner), ('', f" {text}\n")]


def _error(text: str) -> Fragments:
    return [('class:error', f"  Error: {text}"), ('', '\n')]


def _state_fragment(state: str) -> Tuple[str, str]:
    return ('class:state.open', 'open') if state == 'open' else ('class:state.closed', 'closed')


def render_input(f: TextField, focused: bool, indent: str = "  ") -> Fragments:
    """Field value on its own; the focused one shows a block cursor."""
    if not f.value and not focused:
        return [('class:field.placeholder', indent + f.placeholder), ('', '\n')]
    if not focused:
        return [('class:field.input', indent + f.value.replace("\n", "\n" + indent)), ('', '\n')]
    before, at, after = f.value[:f.cursor], f.value[f.cursor:f.cursor + 1], f.value[f.cursor + 1:]
    if at in ("", "\n"):
        after = at + after
        at = " "
    out: Fragments = [
        ('class:field.input', indent + before.replace("\n", "\n" + indent)),
        ('class:field.cursor', at),
        ('class:field.input', after.replace("\n", "\n" + indent)),
    ]
    if not f.value:
        out.append(('class:field.placeholder', f" {f.placeholder}"))
    out.append(('', '\n'))
    return out


def render_field(f: TextField, focused: bool) -> Fragments:
    label = 'class:field.label.focused' if focused else 'class:field.label'
    return [(label, f"  {f.label}:"), ('', '\n')] + render_input(f, focused)


# -----------------------------
# List
# -----------------------------
def list_title_width(width: int) -> int:
    return max(20, width - 30)


def render_issue_row(issue, selected: bool, width: int) -> Fragments:
    base = 'class:selected' if selected else 'class:normal'
    title = truncate(issue.title, list_title_width(width))
    frags: Fragments = [(base, f"  #{issue.number:<4}  {title}  ")]
    style, text = _state_fragment(issue.state)
    frags.append((f"{base} {style}", text))
    if issue.is_pull_request:
        frags.append((f"{base} class:pull", "  PR"))
    if issue.labels:
        frags.append((f"{base} class:label", "  " + ",".join(issue.labels)))
    if issue.assignees:
        frags.append((f"{base} class:assignee", "  " + ",".join(issue.assignees)))
    used = sum(display_width(t) for _, t in frags)
    if selected and used < width:
        frags.append((base, " " * (width - used)))
    frags.append(('', '\n'))
    return frags


def list_help_text(st: ListState) -> str:
    if st.searching:
        return "type to search · enter done · esc cancel"
    if st.search_query:
        return "j/k navigate · enter open · n/p page · 1/2/3 filter · / new search · esc clear search · ? help · q quit"
    return "j/k navigate · enter open · c create · n/p page · 1/2/3 filter · / search · ? help · q quit"


def render_list(st: ListState, state: AppState) -> Fragments:
    repo = state.deps.config.project.full_name
    out: Fragments = _header(repo, st.width)
    out.append(('', '\n'))
    if st.searching:
        out.append(('', '  / '))
        out.extend(render_input(st.search_input, True, indent=""))
    elif st.search_query:
        out.append(('class:dim', f"  search: {st.search_query} ({st.total_count} results)"))
        out.append(('', '\n'))

    if st.loading:
        out.extend(_loading(state, "Loading issues..."))
        return out
    if st.error:
        out.extend(_error(st.error))
        out.extend(_help_line("r retry · 1/2/3 filter · q quit"))
        return out

    if not st.issues:
        out.append(('class:dim', "  No matching issues found." if st.search_query else "  No issues found."))
        out.append(('', '\n'))
    else:
        rows = visible_rows(st)
        end = min(len(st.issues), st.offset + rows)
        if st.offset > 0:
            out.append(('class:dim', f"  ↑ {st.offset} more above"))
            out.append(('', '\n'))
        for i in range(st.offset, end):
            out.extend(render_issue_row(st.issues[i], i == st.cursor, st.width))
        remaining = len(st.issues) - end
        if remaining > 0:
            out.append(('class:dim', f"  ↓ {remaining} more below"))
            out.append(('', '\n'))

    out.append(('', '\n'))
    paging = []
    if has_prev_page(st):
        paging.append("‹ p")
    if has_next_page(st):
        paging.append("n ›")
    right = f"Page {st.page} · {len(st.issues)} issues"
    if paging:
        right += "  " + " ".join(paging)
    out.extend(_status_bar(f" {repo} · {st.state_filter}", right + " ", st.width))
    out.extend(_help_line(list_help_text(st)))
    return out


# -----------------------------
# Detail
# -----------------------------
def render_detail(st: DetailState, state: AppState) -> Fragments:
    out: Fragments = _header(f"Issue #{st.issue_number}", st.width)
    if st.loading:
        out.append(('', '\n'))
        out.extend(_loading(state, "Loading issue..."))
        return out
    if st.error:
        out.append(('', '\n'))
        out.extend(_error(st.error))
        out.extend(_help_line("r retry · esc/h back"))
        return out
    issue = st.issue
    if issue is None:
        return out
    out.append(('', '\n'))
    out.append(('class:title', f"  {issue.title}"))
    out.append(('', '\n\n'))
    out.append(('', "  State: "))
    out.append(_state_fragment(issue.state))
    out.append(('', '\n'))
    if issue.labels:
        out.extend([('', "  Labels: "), ('class:label', ", ".join(issue.labels)), ('', '\n')])
    if issue.assignees:
        out.extend([('', "  Assignees: "), ('class:assignee', ", ".join(issue.assignees)), ('', '\n')])
    meta = f"  Comments: {issue.comments}"
    if issue.updated_at:
        meta += f" · updated {issue.updated_at}"
    out.extend([('class:dim', meta), ('', '\n')])
    out.extend([('', "  URL: "), ('class:dim', issue.html_url), ('', '\n')])
    out.extend([('class:rule', "─" * max(1, st.width)), ('', '\n')])

    rows = body_rows(st)
    if not st.body_lines:
        out.extend([('class:dim', "  No description provided."), ('', '\n')])
    else:
        for line in st.body_lines[st.scroll_offset:st.scroll_offset + rows]:
            out.append(('', f"  {line}\n"))
    out.append(('', '\n'))
    out.extend(_help_line("j/k scroll · x close · a assign · m comment · e edit · o browser · esc/h back · ? help"))
    return out


# -----------------------------
# Create / edit wizards
# -----------------------------
def _done_view(title: str, issue) -> Fragments:
    return [
        ('class:success', f"  {title}"), ('', '\n\n'),
        ('', f"  {issue.title}\n"),
        ('class:dim', f"  {issue.html_url}"), ('', '\n\n'),
    ]


def render_create(st: CreateState, state: AppState) -> Fragments:
    out: Fragments = _header("Create Issue", st.width)
    out.append(('', '\n'))
    if st.step == 'generating':
        return out + _loading(state, "Generating with LLM...")
    if st.step == 'creating':
        return out + _loading(state, "Creating issue...")
    if st.step == 'error':
        out.extend(_error(st.error))
        return out + _help_line("press any key to return to the form")
    if st.step == 'done' and st.created is not None:
        out.extend(_done_view(f"Issue #{st.created.number} created", st.created))
        return out + _help_line("o open in browser · any other key to return to list")
    if st.step == 'review' and st.generated is not None:
        draft = st.generated
        out.extend([('class:title', "  Review Generated Issue"), ('', '\n\n')])
        out.extend([('class:dim', "  Title:"), ('', f"\n  {draft.title}\n\n")])
        if draft.labels:
            out.extend([('class:dim', "  Labels: "), ('class:label', ", ".join(draft.labels)), ('', '\n\n')])
        assignees = st.fields[CREATE_ASSIGNEES].value.strip()
        if assignees:
            out.extend([('class:dim', "  Assignees: "), ('class:assignee', assignees), ('', '\n\n')])
        body = draft.body
        if len(body) > REVIEW_BODY_LIMIT:
            body = body[:REVIEW_BODY_LIMIT - 3] + "..."
        out.extend([('class:dim', "  Body:"), ('', '\n')])
        for line in body.split("\n"):
            out.append(('', f"  {line}\n"))
        out.append(('', '\n'))
        return out + _help_line("enter/ctrl+s create · esc back to edit")

    for i, f in enumerate(st.fields):
        out.extend(render_field(f, i == st.focus_index))
        out.append(('', '\n'))
    if st.notice:
        out.extend([('class:notice', f"  {st.notice}"), ('', '\n')])
    hint = "tab/shift+tab navigate · ctrl+g generate with LLM · ctrl+s submit · esc cancel"
    if state.deps.llm is None:
        hint = "tab/shift+tab navigate · ctrl+g review · ctrl+s submit · esc cancel"
    return out + _help_line(hint)


def render_edit(st: EditState, state: AppState) -> Fragments:
    out: Fragments = _header(f"Edit Issue #{st.issue_number}", st.width)
    out.append(('', '\n'))
    if st.step == 'loading':
        return out + _loading(state, "Loading issue...")
    if st.step == 'saving':
        return out + _loading(state, "Saving changes...")
    if st.step == 'load_error':
        out.extend(_error(st.error))
        return out + _help_line("r retry · any other key to go back")
    if st.step == 'error':
        out.extend(_error(st.error))
        return out + _help_line("press any key to return to the form")
    if st.step == 'done' and st.updated is not None:
        out.extend(_done_view(f"Issue #{st.updated.number} updated", st.updated))
        return out + _help_line("o open in browser · any other key to return to issue")

    for i, f in enumerate(st.fields):
        out.extend(render_field(f, i == st.focus_index))
        out.append(('', '\n'))
    if st.notice:
        out.extend([('class:notice', f"  {st.notice}"), ('', '\n')])
    return out + _help_line("tab/shift+tab navigate · ctrl+s save · esc cancel")


# -----------------------------
# Overlays
# -----------------------------
def render_action(st: ActionState, state: AppState) -> Fragments:
    out: Fragments = [('class:modal.title', ACTION_TITLES[st.kind].format(n=st.issue_number)), ('', '\n\n')]
    if st.loading:
        return out + [('class:spinner', state.spinner), ('', " Processing...")]
    if st.done:
        return out + [('class:success', st.result), ('', '\n\n'), ('class:dim', "Press any key to continue")]
    if st.error:
        return out + [('class:error', f"Error: {st.error}"), ('', '\n\n'), ('class:dim', "Press any key to continue")]
    if st.drafting:
        return out + [('class:spinner', state.spinner), ('', " Drafting comment...")]
    out.extend(render_input(st.input, True, indent=""))
    if st.notice:
        out.extend([('class:notice', st.notice), ('', '\n')])
    out.append(('', '\n'))
    hint = "enter submit · esc cancel"
    if st.kind == 'comment' and state.deps.llm is not None:
        hint = "enter submit · ctrl+g draft with LLM · esc cancel"
    out.append(('class:dim', hint))
    return out


HELP_SECTIONS = {
    'list': ('list', 'global'),
    'detail': ('detail', 'global'),
    'create': ('form', 'global'),
    'edit': ('form', 'global'),
}


def render_help(state: AppState) -> Fragments:
    """Key reference for the active screen, built from the injected key table."""
    keys: Mapping[str, Mapping[str, KeyBinding]] = state.deps.keys
    out: Fragments = [('class:modal.title', "Key Bindings"), ('', '\n')]
    for section in HELP_SECTIONS.get(state.screen, ('global',)):
        out.extend([('', '\n'), ('class:help.section', section), ('', '\n')])
        for binding in keys[section].values():
            out.append(('class:help.key', f"  {pad(binding.help_key, 12)}"))
            out.append(('class:help', binding.help))
            out.append(('', '\n'))
    out.extend([('', '\n'), ('class:dim', "Press ? or esc to close")])
    return out


def render_screen(state: AppState) -> Fragments:
    if state.screen == 'detail' and state.detail is not None:
        out = render_detail(state.detail, state)
    elif state.screen == 'create' and state.create is not None:
        out = render_create(state.create, state)
    elif state.screen == 'edit' and state.edit is not None:
        out = render_edit(state.edit, state)
    else:
        out = render_list(state.list, state)
    if state.flash:
        out = out + [('class:notice', f"  {state.flash}"), ('', '\n')]
    return out


def fragments_text(frags: Fragments) -> str:
    return "".join(text for _, text in frags)
