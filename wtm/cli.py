"""wtm command line: create, checkout, list, delete, rename and clean worktrees."""

from __future__ import annotations

import logging
import signal
from dataclasses import dataclass
from pathlib import Path

import click

from . import git_ops, ui
from .cache import SessionCache
from .cleanup import CleanupEngine
from .config import Config, load_config
from .errors import ExternalCallFailed, UserCancelled, ValidationFailed, WtmError
from .jira import AcliTicketClient
from .locator import find_repositories, open_repository, pick_repository
from .logging_config import setup_logging
from .models import Repository, SelectionOption
from .naming import COMMIT_TYPES, DEFAULT_COMMIT_TYPE, NamingEngine
from .orchestrator import WorktreeOrchestrator
from .selection import Selector, choose_selector, select, select_many

logger = logging.getLogger(__name__)


@dataclass
class State:
    config: Config
    verbose: bool = False

    def selector(self) -> Selector:
        return choose_selector(self.config.selector)

    def orchestrator(self) -> WorktreeOrchestrator:
        return WorktreeOrchestrator.from_config(self.config, on_warning=ui.warn)

    def repositories(self) -> list[Repository]:
        return find_repositories(self.config.programming_dir, self.config.max_depth)

    def repository(self, repo_path: Path | None) -> Repository:
        """Open `--repo`, or let the user pick one of the located repositories."""
        if repo_path is not None:
            return open_repository(repo_path)
        repositories = self.repositories()
        if not repositories:
            raise ValidationFailed(f"No git repositories found under {self.config.programming_dir}")
        session = SessionCache.load()
        chosen = pick_repository(repositories, session, selector=self.selector())
        session.save()
        return chosen


def _raise_interrupt(signum, frame) -> None:  # type: ignore[no-untyped-def]
    raise KeyboardInterrupt


class WtmGroup(click.Group):
    """Turns wtm errors into a one-line message and exit status 1."""

    def invoke(self, ctx: click.Context):  # type: ignore[no-untyped-def]
        try:
            return super().invoke(ctx)
        except UserCancelled as exc:
            ui.info(str(exc))
            raise SystemExit(1)
        except WtmError as exc:
            logger.debug("command failed", exc_info=True)
            ui.fail(str(exc))
            raise SystemExit(1)
        except KeyboardInterrupt:
            ui.fail("Interrupted.")
            raise SystemExit(1)


repo_option = click.option(
    "--repo",
    "repo_path",
    type=click.Path(path_type=Path, file_okay=False),
    help="Repository to operate on (skips the project picker).",
)


@click.group(cls=WtmGroup, context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    envvar="WTM_CONFIG",
    help="Config file (default: $XDG_CONFIG_HOME/wtm/config.yaml).",
)
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """wtm: create, list and clean up git worktrees."""
    setup_logging(verbose)
    signal.signal(signal.SIGTERM, _raise_interrupt)
    config = load_config(config_path)
    git_ops.require_git()
    ctx.obj = State(config=config, verbose=verbose)


@main.command()
@click.argument("user_input", metavar="[TICKET_OR_DESCRIPTION]", required=False)
@repo_option
@click.option("--type", "commit_type", help="Conventional commit type (feat, fix, ...).")
@click.option("--base", "base_branch", help="Base branch (default: develop, main or master).")
@click.pass_obj
def create(
    state: State,
    user_input: str | None,
    repo_path: Path | None,
    commit_type: str | None,
    base_branch: str | None,
) -> None:
    """Create a worktree from a ticket key or a description."""
    repository = state.repository(repo_path)
    prompter = ui.ConsolePrompter()
    if not user_input:
        user_input = prompter.text("Ticket key or description")
    if not commit_type:
        options = [SelectionOption(t.name, f"{t.emoji} {t.name}", t.description) for t in COMMIT_TYPES]
        commit_type = select(options, "Commit type", default=DEFAULT_COMMIT_TYPE, selector=state.selector())

    engine = NamingEngine(
        ticket_pattern=state.config.ticket_pattern,
        ticket_link=state.config.ticket_link,
        client=AcliTicketClient(),
        prompter=prompter,
    )
    plan = engine.plan(user_input, commit_type)
    worktree = state.orchestrator().create(repository, plan, base_branch)
    ui.success(f"Created {worktree.branch} at {worktree.path}")


@main.command()
@click.argument("branch", required=False)
@repo_option
@click.pass_obj
def checkout(state: State, branch: str | None, repo_path: Path | None) -> None:
    """Create a worktree for an existing remote branch."""
    repository = state.repository(repo_path)
    orchestrator = state.orchestrator()
    orchestrator.fetch(repository)
    if not branch:
        refs = orchestrator.remote_branches(repository)
        if not refs:
            raise ValidationFailed(f"No remote branches found in {repository.name}")
        options = [SelectionOption(ref, ref) for ref in refs]
        branch = select(options, "Remote branch", selector=state.selector())
    worktree = orchestrator.checkout(repository, branch)
    ui.success(f"{worktree.branch} is checked out at {worktree.path}")


@main.command("list")
@repo_option
@click.pass_obj
def list_cmd(state: State, repo_path: Path | None) -> None:
    """List worktrees, with stale registry entries marked."""
    if repo_path is not None:
        repositories = [open_repository(repo_path)]
    else:
        repositories = state.repositories()
    orchestrator = state.orchestrator()
    shown = False
    for repository in repositories:
        reconciliation = orchestrator.reconcile(repository)
        if not reconciliation.consistent and not reconciliation.stale and repo_path is None:
            continue
        worktrees = orchestrator.list_worktrees(repository)
        ui.print_worktrees(repository.name, worktrees, reconciliation.stale)
        shown = True
    if not shown:
        ui.info("No worktrees found.")


def _worktree_options(state: State, repository: Repository) -> list[SelectionOption]:
    worktrees = state.orchestrator().list_worktrees(repository)
    if not worktrees:
        raise ValidationFailed(f"No worktrees in {repository.name}")
    return [SelectionOption(str(wt.path), wt.branch or "(detached)", str(wt.path)) for wt in worktrees]


def _pick_worktree(state: State, repository: Repository, prompt: str) -> Path:
    return Path(select(_worktree_options(state, repository), prompt, selector=state.selector()))


@main.command()
@click.argument("paths", nargs=-1, type=click.Path(path_type=Path))
@repo_option
@click.option("-y", "--yes", is_flag=True, help="Do not ask for confirmation.")
@click.option("--keep-branch", is_flag=True, help="Keep the worktree's local branch.")
@click.option("-f", "--force", is_flag=True, help="Remove even with local changes; force-delete the branch.")
@click.pass_obj
def delete(
    state: State,
    paths: tuple[Path, ...],
    repo_path: Path | None,
    yes: bool,
    keep_branch: bool,
    force: bool,
) -> None:
    """Delete one or more worktrees, falling back to removing their directories."""
    repository = open_repository(repo_path) if repo_path else None
    targets = list(paths)
    if not targets:
        repository = repository or state.repository(None)
        options = _worktree_options(state, repository)
        chosen = select_many(options, "Worktrees to delete", selector=state.selector())
        targets = [Path(key) for key in chosen]
        if not targets:
            ui.info("No worktrees selected.")
            return

    if not yes:
        if len(targets) == 1:
            ui.require_confirmation(f"Delete worktree {targets[0]}?")
        else:
            for target in targets:
                ui.info(f"  {target}")
            ui.require_confirmation(f"Delete {len(targets)} worktrees?")

    orchestrator = state.orchestrator()
    failed = 0
    for target in targets:
        try:
            result = orchestrator.delete(target, repository, delete_branch=not keep_branch, force=force)
        except WtmError as exc:
            if len(targets) == 1:
                raise
            logger.debug("delete failed", exc_info=True)
            ui.fail(str(exc))
            failed += 1
            continue
        if result.used_fallback:
            ui.warn(f"git could not remove it ({result.reason}); removed the directory instead")
        ui.success(f"Deleted {result.path} ({result.method})")
        if result.branch_deleted:
            ui.success(f"Deleted branch {result.branch}")
        elif result.branch_error and not keep_branch:
            ui.warn(f"Kept branch {result.branch}: {result.branch_error}")
    if failed:
        raise ExternalCallFailed(f"{failed} of {len(targets)} worktrees could not be deleted")


@main.command()
@click.argument("path", type=click.Path(path_type=Path), required=False)
@click.argument("new_branch", required=False)
@repo_option
@click.pass_obj
def rename(state: State, path: Path | None, new_branch: str | None, repo_path: Path | None) -> None:
    """Rename a worktree's branch and move its directory."""
    repository = state.repository(repo_path)
    if path is None:
        path = _pick_worktree(state, repository, "Worktree to rename")
    if not new_branch:
        new_branch = ui.ConsolePrompter().text(f"New branch name for {path.name}")
    worktree = state.orchestrator().rename(repository, path, new_branch)
    ui.success(f"Renamed to {worktree.branch} at {worktree.path}")


@main.command()
@repo_option
@click.option(
    "--dry-run",
    type=click.BOOL,
    is_flag=False,
    flag_value=True,
    default=False,
    help="Only report what would be removed.",
)
@click.option("--target", help="Branch that merged worktrees were merged into (default: config).")
@click.option("--orphans", is_flag=True, help="Also remove orphaned worktree directories.")
@click.option("-y", "--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_obj
def clean(
    state: State, repo_path: Path | None, dry_run: bool, target: str | None, orphans: bool, yes: bool
) -> None:
    """Prune stale entries and remove worktrees merged into the target branch."""
    target = target or state.config.default_branch
    if repo_path is not None:
        repositories = [open_repository(repo_path)]
    else:
        repositories = state.repositories()
    orchestrator = state.orchestrator()
    engine = CleanupEngine(orchestrator)
    scan_root = state.config.worktrees_dir

    work: list[tuple[Repository, bool, bool]] = []
    for repository in repositories:
        reconciliation = orchestrator.reconcile(repository, scan_root=scan_root)
        try:
            merged = engine.merged_candidates(repository, target)
            has_target = True
        except ValidationFailed as exc:
            if repo_path is not None:
                raise
            logger.debug("skipping %s: %s", repository.name, exc)
            merged = []
            has_target = False
        verb = "Would" if dry_run else "Will"
        remove_orphans = orphans and bool(reconciliation.orphaned)
        for orphan in reconciliation.orphaned:
            if orphans:
                ui.info(f"{verb} remove orphaned directory {orphan} ({repository.name})")
            else:
                ui.warn(f"Orphaned directory, not registered with {repository.name}: {orphan}")
        if not merged and not reconciliation.stale and not remove_orphans:
            continue
        work.append((repository, has_target, remove_orphans))
        for entry in reconciliation.stale:
            ui.info(f"{verb} prune stale entry {entry.path} ({repository.name})")
        for entry in merged:
            ui.info(f"{verb} remove merged worktree {entry.branch} at {entry.path}")

    if not work:
        ui.info("Nothing to clean.")
        return
    if dry_run:
        return
    if not yes:
        ui.require_confirmation("Proceed?")
    for repository, has_target, remove_orphans in work:
        pruned = engine.prune_stale(repository)
        if pruned:
            ui.success(f"Pruned {len(pruned)} stale entries in {repository.name}")
        if remove_orphans:
            for path in engine.remove_orphans(repository, scan_root):
                ui.success(f"Removed orphaned directory {path}")
        if not has_target:
            continue
        for worktree in engine.clean_merged(repository, target):
            ui.success(f"Removed {worktree.branch} ({worktree.path})")


if __name__ == "__main__":
    main()
