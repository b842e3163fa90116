"""Forking of child processes with exec error reporting and user switching."""

from __future__ import annotations

import os
import pwd
import signal
from dataclasses import dataclass
from typing import NoReturn

PARENT_DIED_SIGNAL = signal.SIGTERM
MAX_PIPE_MESSAGE_SIZE = 1024
_MAX_SUPPLEMENTARY_GROUPS = 50


class SubProcessError(RuntimeError):
    """Raised when starting or preparing a child process fails."""


@dataclass(frozen=True)
class PasswdEntry:
    uid: int
    gid: int
    groups: tuple[int, ...]


def get_passwd_entry(user_name: str) -> PasswdEntry:
    """Look up a user's ids and supplementary groups."""
    try:
        entry = pwd.getpwnam(user_name)
    except (KeyError, ValueError):
        raise SubProcessError(f"Could not get passwd entry for user name: {user_name}") from None

    try:
        groups = os.getgrouplist(user_name, entry.pw_gid)
    except OSError:
        groups = None
    if groups is None or len(groups) > _MAX_SUPPLEMENTARY_GROUPS:
        raise SubProcessError(f"Could not get supplementary groups for user name: {user_name}")

    return PasswdEntry(entry.pw_uid, entry.pw_gid, tuple(groups))


def set_real_user(user_name: str) -> None:
    """Switch the process to the given user and its groups."""
    entry = get_passwd_entry(user_name)
    try:
        os.setgroups(list(entry.groups))
    except OSError as exc:
        raise SubProcessError("setgroups failed") from exc
    try:
        os.setgid(entry.gid)
    except OSError as exc:
        raise SubProcessError("setgid failed") from exc
    try:
        os.setuid(entry.uid)
    except OSError as exc:
        raise SubProcessError("setuid failed") from exc


def _make_pipe() -> tuple[int, int]:
    if hasattr(os, "pipe2"):
        return os.pipe2(os.O_CLOEXEC | getattr(os, "O_DIRECT", 0))
    return os.pipe()


class SubProcess:
    """A forked process; the child reports a failed exec to the parent through a pipe."""

    def __init__(self, fd: int, pid: int) -> None:
        self._fd = fd
        self.pid = pid
        self._checked = False

    @classmethod
    def create(cls, run_as_user: str = "") -> "SubProcess":
        """Fork; returns a child handle in the child and a parent handle in the parent."""
        try:
            read_fd, write_fd = _make_pipe()
        except OSError as exc:
            raise SubProcessError(f"Syscall pipe2() failed ({exc.strerror}), exiting") from exc

        parent_pid = os.getpid()
        try:
            pid = os.fork()
        except OSError as exc:
            os.close(read_fd)
            os.close(write_fd)
            raise SubProcessError(f"Syscall fork() failed ({exc.strerror}), exiting") from exc

        if pid == 0:
            os.close(read_fd)
            handle = cls(write_fd, 0)
            if run_as_user:
                try:
                    set_real_user(run_as_user)
                except SubProcessError:
                    handle.send_error_and_exit(f"Failed to set real user to: {run_as_user}")
            if os.getppid() != parent_pid:
                os.kill(os.getpid(), PARENT_DIED_SIGNAL)
            return handle

        os.close(write_fd)
        return cls(read_fd, pid)

    def is_child(self) -> bool:
        return self.pid == 0

    def send_error_and_exit(self, message: str) -> NoReturn:
        """Report an error to the parent and terminate the child."""
        if not self.is_child():
            raise SubProcessError("send_error_and_exit() may only be called in the child process")
        try:
            os.write(self._fd, message.encode("utf-8")[: MAX_PIPE_MESSAGE_SIZE - 1])
            os.close(self._fd)
        finally:
            os._exit(1)

    def check_child_executed(self) -> int:
        """Wait until the child has exec'd; raises if it reported an error instead."""
        if self.is_child():
            raise SubProcessError("check_child_executed() may only be called in the parent process")
        if self._checked:
            return self.pid
        self._checked = True

        try:
            data = os.read(self._fd, MAX_PIPE_MESSAGE_SIZE)
        except OSError as exc:
            raise SubProcessError(
                "Failed to communicate via pipe with forked child process. "
                f"Syscall to read() failed ({exc.strerror}), exiting"
            ) from exc
        finally:
            os.close(self._fd)

        if data:
            text = data.split(b"\0", 1)[0].decode("utf-8", errors="replace")
            raise SubProcessError(f"Forked child process did not complete exec():\n{text}")
        return self.pid