# grit_app: prompt_toolkit runtime for the grit state machine
#
# Key presses and terminal resizes become messages, commands run as background
# tasks on the application's asyncio loop (blocking calls in the default thread
# pool executor) and every delivered message triggers a redraw.

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine, List, Optional

from prompt_toolkit.application import Application
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.keys import Keys
from prompt_toolkit.layout import Layout
from prompt_toolkit.layout.containers import Float, FloatContainer, HSplit, Window
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.styles import Style
from prompt_toolkit.widgets import Frame

from grit_tui import AppState, Command, Dependencies, KeyMsg, ResizeMsg, init_app, update_app
from grit_view import render_action, render_help, render_screen

logger = logging.getLogger('grit')

# prompt_toolkit key names -> the names used in the key table
KEY_NAMES = {
    'c-m': 'enter',
    'c-j': 'enter',
    'escape': 'esc',
    'c-i': 'tab',
    's-tab': 'shift+tab',
    'c-h': 'backspace',
    'c-?': 'backspace',
    'backspace': 'backspace',
    'delete': 'delete',
    'up': 'up',
    'down': 'down',
    'left': 'left',
    'right': 'right',
    'home': 'home',
    'end': 'end',
    'pageup': 'pageup',
    'pagedown': 'pagedown',
}


def to_key_msg(key: Any, data: str = "") -> Optional[KeyMsg]:
    """Translate one prompt_toolkit KeyPress (key, data) into a KeyMsg."""
    name = key.value if isinstance(key, Keys) else str(key)
    if name == Keys.BracketedPaste.value:
        return KeyMsg('paste', data or "")
    if name in KEY_NAMES:
        return KeyMsg(KEY_NAMES[name])
    if name.startswith('c-') and len(name) > 2:
        return KeyMsg('ctrl+' + name[2:])
    if len(name) == 1:
        return KeyMsg(name, name)
    if data and len(data) == 1 and data.isprintable():
        return KeyMsg(data, data)
    logger.debug("unmapped key %r", name)
    return None


class Program:
    """Owns the single AppState and feeds it messages one at a time.

    ``spawn`` schedules a coroutine (Application.create_background_task in the
    terminal, a plain list in tests); ``exit`` stops the application.
    """

    def __init__(self, deps: Dependencies,
                 spawn: Optional[Callable[[Coroutine], Any]] = None,
                 exit: Optional[Callable[[], None]] = None,
                 invalidate: Optional[Callable[[], None]] = None):
        self.deps = deps
        self.state: Optional[AppState] = None
        self.spawn = spawn
        self.exit = exit
        self.invalidate = invalidate or (lambda: None)
        self.done = False

    def start(self, width: int, height: int) -> None:
        self.state, cmds = init_app(self.deps, width, height)
        self.run_commands(cmds)

    def dispatch(self, msg, redraw: bool = True) -> None:
        if self.state is None or self.done:
            logger.debug("dropping %r after shutdown", msg)
            return
        self.state, cmds = update_app(self.state, msg)
        self.run_commands(cmds)
        if redraw:
            self.invalidate()

    def run_commands(self, cmds: List[Command]) -> None:
        for cmd in cmds:
            if cmd.kind == 'quit':
                self.quit()
                return
            if self.spawn is None:
                raise RuntimeError("Program has no task spawner")
            self.spawn(self.execute(cmd))

    async def execute(self, cmd: Command) -> None:
        if cmd.kind == 'tick':
            await asyncio.sleep(cmd.delay)
            msg = cmd.msg
        elif cmd.kind == 'call':
            loop = asyncio.get_running_loop()
            msg = await loop.run_in_executor(None, cmd.run)
        elif cmd.kind == 'emit':
            await asyncio.sleep(0)
            msg = cmd.msg
        else:
            raise ValueError(f"unknown command kind: {cmd.kind}")
        if msg is not None:
            self.dispatch(msg)

    def quit(self) -> None:
        if self.done:
            return
        self.done = True
        if self.exit is not None:
            self.exit()


def run(deps: Dependencies) -> None:
    """Run the full-screen UI until the user quits.

    Terminal failures propagate to the caller.
    """
    program = Program(deps)
    kb = KeyBindings()

    @kb.add('c-c', eager=True)
    def _(event):
        program.dispatch(KeyMsg('ctrl+c'))

    @kb.add(Keys.Any)
    def _(event):
        for press in event.key_sequence:
            msg = to_key_msg(press.key, press.data)
            if msg is not None:
                program.dispatch(msg)

    def _screen():
        return render_screen(program.state) if program.state is not None else []

    def _action():
        state = program.state
        if state is None or state.action is None:
            return []
        return render_action(state.action, state)

    def _help():
        return render_help(program.state) if program.state is not None else []

    body = Window(content=FormattedTextControl(text=_screen), wrap_lines=False)
    floats: List[Float] = []
    action_float = Float(
        content=Frame(HSplit([Window(FormattedTextControl(text=_action), style='class:modal')]), style='class:modal'),
        width=60, top=4,
    )
    help_float = Float(
        content=Frame(HSplit([Window(FormattedTextControl(text=_help), style='class:modal')]), title="Help", style='class:modal'),
        width=64, top=2,
    )
    container = FloatContainer(content=body, floats=floats)

    def _sync_overlays():
        state = program.state
        wanted = []
        if state is not None and state.action is not None:
            wanted.append(action_float)
        elif state is not None and state.help_visible:
            wanted.append(help_float)
        if floats != wanted:
            floats[:] = wanted

    last_size = {'value': None}

    def _before_render(app):
        size = app.output.get_size()
        current = (size.columns, size.rows)
        if last_size['value'] != current:
            last_size['value'] = current
            if program.state is not None:
                program.dispatch(ResizeMsg(*current), redraw=False)
        _sync_overlays()

    app = Application(
        layout=Layout(container),
        key_bindings=kb,
        full_screen=True,
        style=Style.from_dict(dict(deps.style)),
        before_render=_before_render,
    )
    app.ttimeoutlen = 0.05
    program.invalidate = app.invalidate
    program.exit = app.exit
    program.spawn = app.create_background_task

    def _pre_run():
        size = app.output.get_size()
        last_size['value'] = (size.columns, size.rows)
        program.start(size.columns, size.rows)
        _sync_overlays()

    logger.info("starting UI for %s", deps.config.project.full_name)
    app.run(pre_run=_pre_run)
