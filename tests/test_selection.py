from __future__ import annotations

import io
import os
from pathlib import Path

import pytest
from prompt_toolkit.application import create_app_session
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.output import DummyOutput

from wtm.errors import ExternalCallFailed, ToolMissing, UserCancelled, ValidationFailed, WtmError
from wtm.fallback import Attempt, Outcome
from wtm.models import SelectionOption
from wtm.selection import (
    FzfSelector,
    ListSelector,
    ListState,
    Mode,
    NumberedSelector,
    choose_selector,
    select,
    select_attempt,
    select_many,
)

posix_only = pytest.mark.skipif(os.name != "posix", reason="fake fzf is a shell script")

OPTIONS = [
    SelectionOption("alpha", "Alpha", "first project"),
    SelectionOption("beta", "Beta", "second project"),
    SelectionOption("gamma", "Gamma", "Third PROJECT"),
]


class RecordingSelector:
    name = "recording"

    def __init__(self, result: str | None = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls = 0

    def choose(self, options, prompt, default=None):  # type: ignore[no-untyped-def]
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


def _numbered(answer: str) -> tuple[NumberedSelector, io.StringIO]:
    out = io.StringIO()
    return NumberedSelector(stdin=io.StringIO(answer), stdout=out), out


def test_empty_options_fail_before_backend() -> None:
    backend = RecordingSelector("alpha")
    fallback = RecordingSelector("beta")
    with pytest.raises(ValidationFailed):
        select_attempt([], "Pick", selector=backend, fallback=fallback)
    assert backend.calls == 0
    assert fallback.calls == 0


def test_numbered_selects_by_index() -> None:
    selector, out = _numbered("2\n")
    assert select(OPTIONS, "Pick", selector=selector) == "beta"
    assert "  2) Beta - second project" in out.getvalue()


@pytest.mark.parametrize("answer", ["abc\n", "0\n", "4\n", "-1\n", "\n"])
def test_numbered_rejects_bad_input(answer: str) -> None:
    selector, _ = _numbered(answer)
    with pytest.raises(ValidationFailed):
        selector.choose(OPTIONS, "Pick")


@pytest.mark.parametrize("answer", ["", "q\n"])
def test_numbered_cancel(answer: str) -> None:
    selector, _ = _numbered(answer)
    with pytest.raises(UserCancelled):
        selector.choose(OPTIONS, "Pick")


def test_numbered_default_on_blank_line() -> None:
    selector, out = _numbered("\n")
    assert selector.choose(OPTIONS, "Pick", default="gamma") == "gamma"
    assert "*  3) Gamma" in out.getvalue()


def test_failing_backend_falls_back_to_numbered() -> None:
    backend = RecordingSelector(error=ExternalCallFailed("fzf crashed"))
    fallback, _ = _numbered("3\n")
    attempt = select_attempt(OPTIONS, "Pick", selector=backend, fallback=fallback)
    assert attempt.outcome is Outcome.FELL_BACK
    assert attempt.value == "gamma"
    assert attempt.reason == "fzf crashed"


def test_cancel_is_not_recovered() -> None:
    backend = RecordingSelector(error=UserCancelled())
    fallback = RecordingSelector("beta")
    with pytest.raises(UserCancelled):
        select_attempt(OPTIONS, "Pick", selector=backend, fallback=fallback)
    assert fallback.calls == 0


def test_successful_backend_is_tagged() -> None:
    attempt = select_attempt(OPTIONS, "Pick", selector=RecordingSelector("alpha"))
    assert attempt.outcome is Outcome.SUCCEEDED
    assert attempt.unwrap() == "alpha"


def test_non_tty_uses_numbered() -> None:
    selector = choose_selector("auto", stdin=io.StringIO(), stdout=io.StringIO())
    assert isinstance(selector, NumberedSelector)


def test_list_state_search_keep_and_discard() -> None:
    state = ListState(list(OPTIONS))
    state.start_search()
    assert state.mode is Mode.SEARCH
    state.insert("project")
    assert [opt.key for opt in state.visible] == ["alpha", "beta", "gamma"]
    state.backspace()
    state.insert("T")
    state.keep_search()
    assert state.mode is Mode.LIST
    assert state.filter == "projecT"
    assert [opt.key for opt in state.visible] == ["alpha", "beta", "gamma"]

    state.start_search()
    for ch in "/xyz":
        state.insert(ch)
    assert state.visible == []
    assert state.current() is None
    state.discard_search()
    assert state.filter == ""
    assert len(state.visible) == 3


def test_list_state_filter_matches_key_label_description() -> None:
    state = ListState(list(OPTIONS))
    state.start_search()
    state.insert("third")
    assert [opt.key for opt in state.visible] == ["gamma"]
    state.keep_search()
    assert state.current() == OPTIONS[2]
    assert "(filter: third)" in state.render("Pick")


def test_list_state_cursor_is_clamped() -> None:
    state = ListState(list(OPTIONS))
    state.move(-5)
    assert state.cursor == 0
    state.move(10)
    assert state.cursor == 2
    state.start_search()
    state.insert("alpha")
    assert state.cursor == 0
    state.place_cursor("alpha")
    assert state.current() == OPTIONS[0]


@pytest.mark.parametrize(("answer", "expected"), [("3, 1 3\n", ["gamma", "alpha"]), ("\n", []), ("2\n", ["beta"])])
def test_numbered_choose_many(answer: str, expected: list[str]) -> None:
    selector, _ = _numbered(answer)
    assert select_many(OPTIONS, "Pick", selector=selector) == expected


def test_numbered_choose_many_rejects_bad_index() -> None:
    selector, _ = _numbered("1 9\n")
    with pytest.raises(ValidationFailed):
        select_many(OPTIONS, "Pick", selector=selector)
    selector, _ = _numbered("q\n")
    with pytest.raises(UserCancelled):
        select_many(OPTIONS, "Pick", selector=selector)
    with pytest.raises(ValidationFailed):
        select_many([], "Pick", selector=selector)


def test_failed_attempt_always_raises() -> None:
    with pytest.raises(WtmError, match="nothing worked"):
        Attempt(Outcome.FAILED, reason="nothing worked").unwrap()


@pytest.fixture
def fake_fzf(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """An `fzf` on PATH that records its stdin and replies from env vars."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "fzf"
    script.write_text(
        "#!/bin/sh\n"
        'cat > "$FAKE_FZF_INPUT"\n'
        'printf "%s" "$FAKE_FZF_OUTPUT"\n'
        'exit "${FAKE_FZF_STATUS:-0}"\n'
    )
    script.chmod(0o755)
    received = tmp_path / "fzf-input"
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    monkeypatch.setenv("FAKE_FZF_INPUT", str(received))
    monkeypatch.setenv("FAKE_FZF_OUTPUT", "")
    return received


@posix_only
def test_fzf_maps_line_back_to_key(fake_fzf: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FAKE_FZF_OUTPUT", "2\tGamma\tThird PROJECT\n")
    assert FzfSelector().choose(OPTIONS, "Pick") == "gamma"
    lines = fake_fzf.read_text().splitlines()
    assert lines == ["0\tAlpha\tfirst project", "1\tBeta\tsecond project", "2\tGamma\tThird PROJECT"]


@posix_only
def test_fzf_lists_default_first(fake_fzf: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FAKE_FZF_OUTPUT", "0\tBeta\tsecond project\n")
    assert FzfSelector().choose(OPTIONS, "Pick", default="beta") == "beta"
    assert fake_fzf.read_text().splitlines()[0] == "0\tBeta\tsecond project"


@posix_only
@pytest.mark.parametrize("status", ["1", "130"])
def test_fzf_quit_is_cancel(fake_fzf: Path, monkeypatch: pytest.MonkeyPatch, status: str) -> None:
    monkeypatch.setenv("FAKE_FZF_STATUS", status)
    fallback, _ = _numbered("1\n")
    with pytest.raises(UserCancelled):
        select_attempt(OPTIONS, "Pick", selector=FzfSelector(), fallback=fallback)


@posix_only
def test_fzf_failure_falls_back(fake_fzf: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FAKE_FZF_STATUS", "2")
    with pytest.raises(ExternalCallFailed):
        FzfSelector().choose(OPTIONS, "Pick")
    fallback, _ = _numbered("2\n")
    attempt = select_attempt(OPTIONS, "Pick", selector=FzfSelector(), fallback=fallback)
    assert attempt.outcome is Outcome.FELL_BACK
    assert attempt.value == "beta"


@posix_only
def test_fzf_garbage_output(fake_fzf: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FAKE_FZF_OUTPUT", "Alpha\n")
    with pytest.raises(ExternalCallFailed):
        FzfSelector().choose(OPTIONS, "Pick")


def test_fzf_missing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PATH", str(tmp_path))
    with pytest.raises(ToolMissing):
        FzfSelector().choose(OPTIONS, "Pick")


def _run_list(keys: str, default: str | None = None) -> str:
    with create_pipe_input() as pipe:
        pipe.send_text(keys)
        with create_app_session(input=pipe, output=DummyOutput()):
            return ListSelector().choose(OPTIONS, "Pick", default)


def test_list_selector_moves_and_selects() -> None:
    assert _run_list("\r") == "alpha"
    assert _run_list("jj\r") == "gamma"
    assert _run_list("k\r", default="gamma") == "beta"


def test_list_selector_keeps_search_filter() -> None:
    assert _run_list("/ird\r\r") == "gamma"


def test_list_selector_ctrl_c_in_search_cancels() -> None:
    with pytest.raises(UserCancelled):
        _run_list("/be\x03")


def test_list_selector_q_cancels() -> None:
    with pytest.raises(UserCancelled):
        _run_list("q")
