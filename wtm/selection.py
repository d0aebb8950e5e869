"""Choice prompts with an interactive backend and a numbered fallback."""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, TextIO

import questionary
from prompt_toolkit.application import Application
from prompt_toolkit.filters import Condition
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout import Layout
from prompt_toolkit.layout.containers import Window
from prompt_toolkit.layout.controls import FormattedTextControl

from .errors import ExternalCallFailed, ToolMissing, UserCancelled, ValidationFailed
from .fallback import Attempt, attempt_then_recover
from .models import SelectionOption

logger = logging.getLogger(__name__)

FZF_CANCEL_CODES = (1, 130)


class Selector(Protocol):
    name: str

    def choose(
        self, options: Sequence[SelectionOption], prompt: str, default: str | None = None
    ) -> str:
        """Return the chosen key, or raise UserCancelled."""
        ...


class Mode(Enum):
    LIST = "list"
    SEARCH = "search"


@dataclass
class ListState:
    """Cursor, filter and mode of the interactive list."""

    options: list[SelectionOption]
    mode: Mode = Mode.LIST
    cursor: int = 0
    filter: str = ""
    query: str = ""
    _visible: list[SelectionOption] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        self._refresh()

    def _refresh(self) -> None:
        needle = self.query if self.mode is Mode.SEARCH else self.filter
        if needle:
            self._visible = [opt for opt in self.options if opt.matches(needle)]
        else:
            self._visible = list(self.options)
        self.cursor = max(0, min(self.cursor, len(self._visible) - 1))

    @property
    def visible(self) -> list[SelectionOption]:
        return self._visible

    def place_cursor(self, key: str | None) -> None:
        for idx, opt in enumerate(self._visible):
            if opt.key == key:
                self.cursor = idx
                return

    def move(self, delta: int) -> None:
        if self._visible:
            self.cursor = max(0, min(self.cursor + delta, len(self._visible) - 1))

    def start_search(self) -> None:
        self.mode = Mode.SEARCH
        self.query = self.filter
        self._refresh()

    def insert(self, text: str) -> None:
        self.query += text
        self.cursor = 0
        self._refresh()

    def backspace(self) -> None:
        self.query = self.query[:-1]
        self._refresh()

    def keep_search(self) -> None:
        self.filter = self.query
        self.mode = Mode.LIST
        self._refresh()

    def discard_search(self) -> None:
        self.filter = ""
        self.query = ""
        self.mode = Mode.LIST
        self._refresh()

    def current(self) -> SelectionOption | None:
        if not self._visible:
            return None
        return self._visible[self.cursor]

    def render(self, prompt: str) -> str:
        if self.mode is Mode.SEARCH:
            hint = "type to filter, enter to keep, esc to clear"
            header = f"{prompt}  /{self.query}"
        else:
            hint = "up/down to move, / to search, enter to select, q to quit"
            header = f"{prompt}  (filter: {self.filter})" if self.filter else prompt
        lines = [header, hint, ""]
        if not self._visible:
            lines.append("  (no matches)")
        for idx, opt in enumerate(self._visible):
            marker = "> " if idx == self.cursor else "  "
            detail = f"  {opt.description}" if opt.description else ""
            lines.append(f"{marker}{opt.label}{detail}")
        return "\n".join(lines)


class ListSelector:
    """Full-screen prompt_toolkit list with a `/` search mode."""

    name = "list"

    def choose(
        self, options: Sequence[SelectionOption], prompt: str, default: str | None = None
    ) -> str:
        state = ListState(list(options))
        state.place_cursor(default)

        control = FormattedTextControl(text=lambda: state.render(prompt), focusable=True)
        layout = Layout(Window(content=control, always_hide_cursor=True))

        in_list = Condition(lambda: state.mode is Mode.LIST)
        in_search = Condition(lambda: state.mode is Mode.SEARCH)
        kb = KeyBindings()

        @kb.add("up")
        @kb.add("k", filter=in_list)
        def _up(event) -> None:  # type: ignore[no-untyped-def]
            state.move(-1)
            event.app.invalidate()

        @kb.add("down")
        @kb.add("j", filter=in_list)
        def _down(event) -> None:  # type: ignore[no-untyped-def]
            state.move(1)
            event.app.invalidate()

        @kb.add("/", filter=in_list)
        def _search(event) -> None:  # type: ignore[no-untyped-def]
            state.start_search()
            event.app.invalidate()

        @kb.add("enter", filter=in_list)
        def _select(event) -> None:  # type: ignore[no-untyped-def]
            chosen = state.current()
            if chosen is not None:
                event.app.exit(result=chosen.key)

        @kb.add("q", filter=in_list)
        @kb.add("escape", filter=in_list)
        @kb.add("c-c")
        def _quit(event) -> None:  # type: ignore[no-untyped-def]
            event.app.exit(exception=UserCancelled())

        @kb.add("<any>", filter=in_search)
        def _type(event) -> None:  # type: ignore[no-untyped-def]
            if event.data.isprintable():
                state.insert(event.data)
                event.app.invalidate()

        @kb.add("backspace", filter=in_search)
        def _backspace(event) -> None:  # type: ignore[no-untyped-def]
            state.backspace()
            event.app.invalidate()

        @kb.add("enter", filter=in_search)
        def _keep(event) -> None:  # type: ignore[no-untyped-def]
            state.keep_search()
            event.app.invalidate()

        @kb.add("escape", filter=in_search)
        def _discard(event) -> None:  # type: ignore[no-untyped-def]
            state.discard_search()
            event.app.invalidate()

        app: Application[str] = Application(layout=layout, key_bindings=kb, full_screen=True)
        try:
            return app.run()
        except (OSError, EOFError) as exc:
            raise ExternalCallFailed(f"interactive list unavailable: {exc}") from exc


class FzfSelector:
    """External fzf, fed option lines on stdin."""

    name = "fzf"

    def choose(
        self, options: Sequence[SelectionOption], prompt: str, default: str | None = None
    ) -> str:
        if shutil.which("fzf") is None:
            raise ToolMissing("fzf")
        ordered = sorted(options, key=lambda opt: opt.key != default)
        lines = []
        for idx, opt in enumerate(ordered):
            lines.append("\t".join([str(idx), opt.label, opt.description or ""]))
        cmd = [
            "fzf",
            "--prompt",
            f"{prompt}> ",
            "--height",
            "40%",
            "--reverse",
            "--delimiter",
            "\t",
            "--with-nth",
            "2..",
        ]
        logger.debug("running %s", " ".join(cmd))
        result = subprocess.run(cmd, input="\n".join(lines), stdout=subprocess.PIPE, text=True)
        if result.returncode in FZF_CANCEL_CODES:
            raise UserCancelled()
        if result.returncode != 0:
            raise ExternalCallFailed(f"fzf exited with status {result.returncode}")
        index, _, _ = result.stdout.strip().partition("\t")
        if not index.isdigit() or int(index) >= len(ordered):
            raise ExternalCallFailed(f"unexpected fzf output: {result.stdout.strip()!r}")
        return ordered[int(index)].key


class NumberedSelector:
    """Prints a numbered list and reads 1-based indexes from a line of input."""

    name = "numbered"

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        self.stdin = stdin
        self.stdout = stdout

    def _ask(
        self, options: Sequence[SelectionOption], prompt: str, hint: str, default: str | None = None
    ) -> str:
        stdin = self.stdin or sys.stdin
        out = self.stdout or sys.stdout
        out.write(f"{prompt}:\n")
        for idx, opt in enumerate(options, start=1):
            marker = "*" if opt.key == default else " "
            detail = f" - {opt.description}" if opt.description else ""
            out.write(f"{marker}{idx:>3}) {opt.label}{detail}\n")
        out.write(f"{hint}, q to quit: ")
        out.flush()

        line = stdin.readline()
        if not line:
            raise UserCancelled()
        text = line.strip()
        if text.lower() == "q":
            raise UserCancelled()
        return text

    @staticmethod
    def _index(text: str, count: int) -> int:
        if not text.isdigit():
            raise ValidationFailed(f"Invalid selection: {text!r} is not a number")
        index = int(text)
        if not 1 <= index <= count:
            raise ValidationFailed(f"Selection {index} is out of range 1-{count}")
        return index - 1

    def choose(
        self, options: Sequence[SelectionOption], prompt: str, default: str | None = None
    ) -> str:
        text = self._ask(options, prompt, f"Enter a number [1-{len(options)}]", default)
        if not text and default is not None and any(opt.key == default for opt in options):
            return default
        return options[self._index(text, len(options))].key

    def choose_many(self, options: Sequence[SelectionOption], prompt: str) -> list[str]:
        """Read space or comma separated indexes; an empty line selects nothing."""
        text = self._ask(options, prompt, "Enter numbers separated by spaces")
        chosen: list[str] = []
        for part in text.replace(",", " ").split():
            key = options[self._index(part, len(options))].key
            if key not in chosen:
                chosen.append(key)
        return chosen


def _isatty(stream: TextIO) -> bool:
    try:
        return stream.isatty()
    except (AttributeError, ValueError):
        return False


def choose_selector(
    preference: str = "auto", stdin: TextIO | None = None, stdout: TextIO | None = None
) -> Selector:
    """Pick the backend for one selection call."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    if preference == "numbered" or not (_isatty(stdin) and _isatty(stdout)):
        return NumberedSelector(stdin, stdout)
    if preference == "fzf" or (preference == "auto" and shutil.which("fzf")):
        return FzfSelector()
    return ListSelector()


def select_attempt(
    options: Sequence[SelectionOption],
    prompt: str,
    default: str | None = None,
    selector: Selector | None = None,
    fallback: Selector | None = None,
) -> Attempt[str]:
    """Run one selection and report which backend produced the answer."""
    if not options:
        raise ValidationFailed(f"{prompt}: nothing to choose from")
    primary = selector or choose_selector()
    secondary = fallback or NumberedSelector()
    logger.debug("selecting with %s backend", primary.name)
    return attempt_then_recover(
        lambda: primary.choose(options, prompt, default),
        lambda reason: secondary.choose(options, prompt, default),
        recoverable=(ExternalCallFailed, ToolMissing),
    )


def select(
    options: Sequence[SelectionOption],
    prompt: str,
    default: str | None = None,
    selector: Selector | None = None,
) -> str:
    """Return the key of the chosen option; raises UserCancelled on quit."""
    return select_attempt(options, prompt, default=default, selector=selector).unwrap()


def select_many(
    options: Sequence[SelectionOption], prompt: str, selector: Selector | None = None
) -> list[str]:
    """Return the keys of every option the user ticked, possibly none."""
    if not options:
        raise ValidationFailed(f"{prompt}: nothing to choose from")
    selector = selector or choose_selector()
    if isinstance(selector, NumberedSelector):
        return selector.choose_many(options, prompt)
    choices = [
        questionary.Choice(
            title=f"{opt.label}  {opt.description}" if opt.description else opt.label, value=opt.key
        )
        for opt in options
    ]
    answer = questionary.checkbox(prompt, choices=choices).unsafe_ask()
    return list(answer or [])
