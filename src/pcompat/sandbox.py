"""Disposable sandbox branches that always hand the caller's checkout back.

``SandboxSession.begin`` parks uncommitted edits in the stash and checks out
a fresh ``test-patches-<target>`` branch; ``SandboxSession.end`` returns to
the original ref and pops the stash. :func:`open_sandbox` wraps the pair so
that ``end`` runs on every exit path, including SIGINT/SIGTERM.
"""

from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from types import FrameType
from typing import Any, Callable, Dict, Iterator

from .telemetry import emit_event
from .tools.vcs import GitError, GitRepository

LOGGER = logging.getLogger(__name__)

DEFAULT_BRANCH_PREFIX = "test-patches-"

_GUARDED_SIGNALS = tuple(
    sig for sig in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)) if sig is not None
)


class SandboxError(RuntimeError):
    """A git operation failed while entering or leaving the sandbox."""

    def __init__(self, message: str, *, phase: str = "begin", stash_token: str | None = None) -> None:
        super().__init__(message)
        self.phase = phase
        self.stash_token = stash_token


class SandboxInterrupted(BaseException):
    """Raised from the signal guard so that pending ``finally`` blocks run."""

    def __init__(self, signum: int, *, restored: bool = False) -> None:
        super().__init__(f"interrupted by signal {signum}")
        self.signum = signum
        # True once the original checkout and stash are back in place.
        self.restored = restored


@dataclass(slots=True)
class SandboxState:
    """Bookkeeping for one active sandbox; owned by a single session."""

    original_ref: str
    sandbox_branch: str
    target_revision: str
    stash_token: str | None = None
    closed: bool = False


class _SignalGuard:
    """Routes SIGINT/SIGTERM while a sandbox is active.

    ``defer`` records signals without interrupting (used while git is moving
    between the original ref and the sandbox); ``arm`` raises
    :class:`SandboxInterrupted` from the handler so ``finally`` blocks run.
    ``release`` puts the caller's handlers back and hands over any signal
    that arrived while deferred.
    """

    def __init__(self) -> None:
        self._previous: Dict[int, Any] = {}
        self._pending: int | None = None

    @staticmethod
    def _usable() -> bool:
        return threading.current_thread() is threading.main_thread()

    def _swap(self, handler: Callable[[int, FrameType | None], None]) -> None:
        for sig in _GUARDED_SIGNALS:
            previous = signal.signal(sig, handler)
            self._previous.setdefault(sig, previous)

    def defer(self) -> None:
        if self._usable():
            self._swap(self._record)

    def arm(self) -> int | None:
        """Switch to raising handlers; return a signal recorded while deferred."""

        pending, self._pending = self._pending, None
        if self._usable():
            self._swap(self._raise)
        return pending

    def release(self) -> int | None:
        while self._previous:
            sig, handler = self._previous.popitem()
            signal.signal(sig, handler)
        pending, self._pending = self._pending, None
        return pending

    def _record(self, signum: int, frame: FrameType | None) -> None:
        if self._pending is None:
            self._pending = signum

    @staticmethod
    def _raise(signum: int, frame: FrameType | None) -> None:
        raise SandboxInterrupted(signum)


class SandboxSession:
    """Enter and leave a sandbox branch without losing the caller's work."""

    def __init__(
        self,
        repo: GitRepository,
        *,
        branch_prefix: str = DEFAULT_BRANCH_PREFIX,
        include_untracked: bool = False,
        install_signal_guard: bool = True,
    ) -> None:
        self.repo = repo
        self.branch_prefix = branch_prefix
        self.include_untracked = include_untracked
        self._guard = _SignalGuard() if install_signal_guard else None
        self._active: SandboxState | None = None

    def branch_name_for(self, target_revision: str) -> str:
        return f"{self.branch_prefix}{target_revision}"

    def begin(self, target_revision: str) -> SandboxState:
        """Switch to a fresh sandbox branch rooted at ``target_revision``.

        On failure the stash (if one was created) is restored and the
        original ref is checked out again before :class:`SandboxError` is
        raised. A signal received while the branch is being set up is held
        back; the sandbox is then ended and :class:`SandboxInterrupted` raised.
        """

        if self._active is not None and not self._active.closed:
            raise SandboxError("A sandbox is already active for this session.")

        branch = self.branch_name_for(target_revision)
        try:
            original_ref = self.repo.current_ref()
        except GitError as error:
            raise SandboxError(f"Unable to resolve the current ref: {error}") from error
        if original_ref == branch:
            raise SandboxError(
                f"HEAD is already on sandbox branch {branch}; check out your working branch first."
            )

        state = SandboxState(original_ref=original_ref, sandbox_branch=branch, target_revision=target_revision)
        # Signals wait until the stash and sandbox branch are in a known state.
        if self._guard is not None:
            self._guard.defer()
        try:
            self._prepare(state)
        except BaseException:
            if self._guard is not None:
                self._guard.release()
            raise

        self._active = state
        emit_event(
            "sandbox_begin",
            original_ref=state.original_ref,
            sandbox_branch=state.sandbox_branch,
            target=target_revision,
            stashed=state.stash_token is not None,
        )
        pending = self._guard.arm() if self._guard is not None else None
        if pending is not None:
            self.end(state)
            raise SandboxInterrupted(pending, restored=True)
        return state

    def _prepare(self, state: SandboxState) -> None:
        try:
            if self.repo.has_uncommitted_changes(include_untracked=self.include_untracked):
                stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
                state.stash_token = self.repo.stash_push(
                    message=f"auto-stash for patch testing at {stamp}",
                    include_untracked=self.include_untracked,
                )
                if state.stash_token:
                    LOGGER.info("Stashed uncommitted changes as %s", state.stash_token)
        except GitError as error:
            raise SandboxError(f"Unable to stash uncommitted changes: {error}") from error

        try:
            if self.repo.delete_branch(state.sandbox_branch):
                LOGGER.info("Removed previous sandbox branch %s", state.sandbox_branch)
            self.repo.create_branch(state.sandbox_branch, state.target_revision)
        except BaseException as error:
            self._unwind(state)
            if isinstance(error, GitError):
                raise SandboxError(
                    f"Unable to create sandbox branch {state.sandbox_branch} at {state.target_revision}: {error}",
                    stash_token=state.stash_token,
                ) from error
            raise

    def _unwind(self, state: SandboxState) -> None:
        """Undo a partially completed ``begin``."""

        try:
            if self.repo.current_ref() != state.original_ref:
                self.repo.checkout(state.original_ref)
            if state.stash_token is not None:
                self.repo.stash_restore(state.stash_token)
                state.stash_token = None
        except GitError as error:
            raise SandboxError(
                f"Failed to roll back sandbox setup; uncommitted work is in stash {state.stash_token}: {error}",
                stash_token=state.stash_token,
            ) from error
        state.closed = True

    def end(self, state: SandboxState) -> None:
        """Return to ``state.original_ref`` and restore stashed edits exactly once.

        Calling ``end`` again after a successful call is a no-op. When a step
        fails the stash token stays on ``state`` and :class:`SandboxError`
        names it, so the edits can be recovered by hand.
        """

        if state.closed:
            return
        # A second Ctrl-C must not cut the checkout or stash pop short.
        if self._guard is not None:
            self._guard.defer()
        pending = None
        try:
            self._leave(state)
        finally:
            if state.closed and self._active is state:
                self._active = None
            if self._guard is not None:
                pending = self._guard.release()
        if pending is not None:
            raise SandboxInterrupted(pending, restored=True)

    def _leave(self, state: SandboxState) -> None:
        try:
            if self.repo.current_branch() == state.sandbox_branch:
                # Applied patches that were not committed stay on the sandbox side.
                self.repo.reset_hard()
            self.repo.checkout(state.original_ref)
        except GitError as error:
            raise SandboxError(
                f"Failed to return to {state.original_ref}: {error}"
                + (f"; uncommitted work is preserved in stash {state.stash_token}" if state.stash_token else ""),
                phase="end",
                stash_token=state.stash_token,
            ) from error

        if state.stash_token is not None:
            token = state.stash_token
            try:
                self.repo.stash_restore(token)
            except GitError as error:
                raise SandboxError(
                    f"Failed to restore uncommitted work from stash {token}: {error}",
                    phase="end",
                    stash_token=token,
                ) from error
            state.stash_token = None
            LOGGER.info("Restored stashed changes from %s", token)

        state.closed = True
        emit_event(
            "sandbox_end",
            original_ref=state.original_ref,
            sandbox_branch=state.sandbox_branch,
        )


@contextmanager
def open_sandbox(
    repo: GitRepository,
    target_revision: str,
    *,
    session_factory: Callable[[GitRepository], SandboxSession] | None = None,
) -> Iterator[SandboxState]:
    """Yield an active sandbox and end it on every exit path."""

    session = session_factory(repo) if session_factory is not None else SandboxSession(repo)
    state = session.begin(target_revision)
    try:
        yield state
    except SandboxInterrupted as interrupt:
        session.end(state)
        interrupt.restored = state.closed
        raise
    except BaseException:
        session.end(state)
        raise
    else:
        session.end(state)


__all__ = [
    "DEFAULT_BRANCH_PREFIX",
    "SandboxError",
    "SandboxInterrupted",
    "SandboxSession",
    "SandboxState",
    "open_sandbox",
]
