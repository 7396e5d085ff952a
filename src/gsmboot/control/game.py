import os
import pwd
import subprocess
from pathlib import Path

GAME_USER = "ec2-user"


class GameProcessError(RuntimeError):
    pass


def run_executable(path: str) -> int:
    """Run an operator-supplied executable to completion and return its exit code."""
    return subprocess.run([path]).returncode


class GameProcess:
    """The game server, run in the foreground as an unprivileged user."""

    def __init__(self, run_path: str, user: str | None = GAME_USER):
        self.run_path = run_path
        self.user = user
        self._process: subprocess.Popen | None = None

    def _credentials(self) -> dict:
        """uid, primary gid and supplementary groups of the game account."""
        if self.user is None:
            return {}
        try:
            account = pwd.getpwnam(self.user)
        except KeyError:
            raise GameProcessError(f"unknown game user {self.user}") from None
        return {
            "user": account.pw_uid,
            "group": account.pw_gid,
            "extra_groups": os.getgrouplist(account.pw_name, account.pw_gid),
        }

    def start(self) -> None:
        if not Path(self.run_path).exists():
            raise GameProcessError(f"run path {self.run_path} does not exist")
        credentials = self._credentials()
        try:
            # stdout is inherited
            self._process = subprocess.Popen([self.run_path], **credentials)
        except OSError as e:
            raise GameProcessError(f"error starting {self.run_path}: {e}") from e

    def _require_started(self) -> subprocess.Popen:
        if not self._process:
            raise GameProcessError("Not started. Call start() first.")
        return self._process

    def poll(self) -> int | None:
        return self._require_started().poll()

    def wait(self, timeout: float | None = None) -> int | None:
        """Wait for exit. Returns the exit code, or None if still running after ``timeout``."""
        try:
            return self._require_started().wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def terminate(self, grace: float = 10) -> int:
        """SIGTERM, then SIGKILL if the process outlives ``grace`` seconds."""
        process = self._require_started()
        if process.poll() is not None:
            return process.returncode
        process.terminate()
        try:
            return process.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            process.kill()
            return process.wait()
