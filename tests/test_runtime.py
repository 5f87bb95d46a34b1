import asyncio

import pytest
from prompt_toolkit.keys import Keys

import grit_tui as gt
from grit_app import Program, to_key_msg


@pytest.mark.parametrize('key,data,expected', [
    (Keys.ControlM, '\r', gt.KeyMsg('enter')),
    (Keys.ControlJ, '\n', gt.KeyMsg('enter')),
    (Keys.Escape, '\x1b', gt.KeyMsg('esc')),
    (Keys.ControlI, '\t', gt.KeyMsg('tab')),
    (Keys.BackTab, '', gt.KeyMsg('shift+tab')),
    (Keys.ControlH, '\x08', gt.KeyMsg('backspace')),
    (Keys.Up, '', gt.KeyMsg('up')),
    (Keys.Home, '', gt.KeyMsg('home')),
    (Keys.ControlG, '\x07', gt.KeyMsg('ctrl+g')),
    (Keys.ControlS, '\x13', gt.KeyMsg('ctrl+s')),
    (Keys.ControlD, '\x04', gt.KeyMsg('ctrl+d')),
    ('j', 'j', gt.KeyMsg('j', 'j')),
    ('G', 'G', gt.KeyMsg('G', 'G')),
    ('?', '?', gt.KeyMsg('?', '?')),
    (Keys.BracketedPaste, 'a\nb', gt.KeyMsg('paste', 'a\nb')),
])
def test_to_key_msg(key, data, expected):
    assert to_key_msg(key, data) == expected


def test_unmapped_keys_are_dropped():
    assert to_key_msg(Keys.F5, '') is None


async def _drain(tasks):
    while tasks:
        await tasks.pop(0)


def _program(deps):
    tasks, exits, redraws = [], [], []
    program = Program(deps, spawn=tasks.append, exit=lambda: exits.append(True),
                      invalidate=lambda: redraws.append(True))
    return program, tasks, exits, redraws


def test_program_loads_list_and_stops_spinner(deps, client):
    program, tasks, exits, redraws = _program(deps)
    program.start(100, 30)
    assert len(tasks) == 2
    asyncio.run(_drain(tasks))
    st = program.state
    assert len(st.list.issues) == 20
    assert st.list.width == 100
    assert st.spinner_running is False
    assert client.names() == ['list_issues']
    assert redraws


def test_program_runs_emitted_navigation(deps, client):
    program, tasks, _, _ = _program(deps)
    program.start(80, 24)
    asyncio.run(_drain(tasks))
    program.dispatch(gt.KeyMsg('enter'))
    asyncio.run(_drain(tasks))
    assert program.state.screen == 'detail'
    assert program.state.detail.issue.number == 25


def test_program_quit_stops_dispatch(deps, client):
    program, tasks, exits, _ = _program(deps)
    program.start(80, 24)
    asyncio.run(_drain(tasks))
    program.dispatch(gt.KeyMsg('q', 'q'))
    assert exits == [True]
    assert program.done is True
    program.dispatch(gt.KeyMsg('r', 'r'))
    program.quit()
    assert tasks == []
    assert exits == [True]


def test_program_without_spawner_refuses_commands(deps):
    program = Program(deps)
    with pytest.raises(RuntimeError):
        program.start(80, 24)


def test_dispatch_before_start_is_ignored(deps):
    program = Program(deps)
    program.dispatch(gt.KeyMsg('q', 'q'))
    assert program.state is None
    assert program.done is False
