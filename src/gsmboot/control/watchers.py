"""Background watchers that decide when the instance shuts down.

Both watchers share one ShutdownSignal. Whichever claims it first runs its
shutdown sequence; the other stops polling once it sees the claim.
"""

import threading

from botocore.exceptions import BotoCoreError, ClientError

from gsmboot.aws.ec2 import terminate_instance
from gsmboot.aws.metadata import MetadataClient, MetadataError
from gsmboot.control.config import InstanceConfig, InstanceIdentity
from gsmboot.control.game import run_executable

TERMINATION_POLL_INTERVAL = 5

REASON_TERMINATION = "termination-notice"
REASON_IDLE = "idle"


class ShutdownSignal:
    """One-shot shutdown guard.

    ``claim`` succeeds for exactly one caller; ``finish`` records the exit
    code once that caller's sequence is done.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._claimed = threading.Event()
        self._done = threading.Event()
        self.reason: str | None = None
        self.exit_code: int | None = None

    def claim(self, reason: str) -> bool:
        with self._lock:
            if self._claimed.is_set():
                return False
            self.reason = reason
            self._claimed.set()
            return True

    def finish(self, exit_code: int = 0) -> None:
        self.exit_code = exit_code
        self._done.set()

    @property
    def claimed(self) -> bool:
        return self._claimed.is_set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True early if the signal was claimed."""
        return self._claimed.wait(seconds)

    def wait(self, timeout: float | None = None) -> bool:
        return self._done.wait(timeout)


class _Watcher:
    name = "watcher"

    def __init__(self, config: InstanceConfig, shutdown: ShutdownSignal,
                 on_status=None, on_debug=None):
        self.config = config
        self.shutdown = shutdown
        self.on_status = on_status
        self.on_debug = on_debug
        self._thread: threading.Thread | None = None

    def _notify(self, message: str) -> None:
        if self.on_status:
            self.on_status(message)

    def _debug(self, message: str) -> None:
        if self.on_debug:
            self.on_debug(message)

    @property
    def interval(self) -> float:
        raise NotImplementedError

    def poll_once(self) -> bool:
        """Run one cycle. Returns True when this watcher's condition is met."""
        raise NotImplementedError

    def trigger(self) -> int:
        """Run the shutdown sequence. Returns the exit code for the process."""
        raise NotImplementedError

    def _poll_safely(self) -> bool:
        try:
            return self.poll_once()
        except Exception as e:
            self._notify(f"Error in {self.name} check: {e}")
            return False

    def _trigger_safely(self) -> None:
        # The claimed signal must always be finished or nothing can shut down.
        exit_code = 1
        try:
            exit_code = self.trigger()
        except Exception as e:
            self._notify(f"Error during {self.name} shutdown: {e}")
        finally:
            self.shutdown.finish(exit_code)

    def run(self) -> None:
        while not self.shutdown.claimed:
            if self._poll_safely():
                if self.shutdown.claim(self.name):
                    self._trigger_safely()
                return
            if self.shutdown.sleep(self.interval):
                return

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, name=self.name, daemon=True)
        self._thread.start()
        return self._thread

    def _run_stop(self) -> None:
        try:
            exit_code = run_executable(self.config.stop_path)
        except OSError as e:
            self._notify(f"Error trying to call stop: {e}")
            return
        if exit_code != 0:
            self._notify(f"Stop call returned exit status {exit_code}")


class TerminationWatcher(_Watcher):
    """Polls for a spot termination notice. Anything but a 404 is a notice."""

    name = REASON_TERMINATION

    def __init__(self, config: InstanceConfig, metadata: MetadataClient,
                 shutdown: ShutdownSignal, poll_interval: float = TERMINATION_POLL_INTERVAL,
                 on_status=None, on_debug=None):
        super().__init__(config, shutdown, on_status=on_status, on_debug=on_debug)
        self.metadata = metadata
        self.poll_interval = poll_interval

    @property
    def interval(self) -> float:
        return self.poll_interval

    def poll_once(self) -> bool:
        try:
            status = self.metadata.termination_status()
        except MetadataError as e:
            self._notify(f"Error getting termination time: {e}")
            return False
        if status == 404:
            return False
        self._debug(f"Termination endpoint returned HTTP {status}")
        return True

    def trigger(self) -> int:
        self._notify("Got notification of termination. Calling stop.")
        self._run_stop()
        return 0


class IdleCounter:
    """Length of the current run of consecutive idle checks."""

    def __init__(self):
        self.count = 0

    def record(self, idle: bool) -> int:
        self.count = self.count + 1 if idle else 0
        return self.count


class IdleWatcher(_Watcher):
    """Runs the idle check every interval; terminates the instance after enough idle cycles."""

    name = REASON_IDLE

    def __init__(self, config: InstanceConfig, identity: InstanceIdentity,
                 shutdown: ShutdownSignal, on_status=None, on_debug=None):
        super().__init__(config, shutdown, on_status=on_status, on_debug=on_debug)
        self.identity = identity
        self.counter = IdleCounter()

    @property
    def threshold(self) -> int:
        return self.config.idle_consecutive_threshold

    @property
    def interval(self) -> float:
        return self.config.idle_interval

    def _check_idle(self) -> bool:
        try:
            return run_executable(self.config.idle_path) == 0
        except OSError as e:
            self._notify(f"Error running idle check: {e}")
            return False

    def poll_once(self) -> bool:
        count = self.counter.record(self._check_idle())
        self._debug(f"Idle count {count}/{self.threshold}")
        return count >= self.threshold

    def trigger(self) -> int:
        self._notify(
            f"Idle for {self.counter.count} consecutive checks. "
            f"Calling stop and terminating {self.identity.instance_id}."
        )
        self._run_stop()
        try:
            terminate_instance(self.identity.region, self.identity.instance_id)
        except (ClientError, BotoCoreError) as e:
            self._notify(f"Error terminating instance: {e}")
            return 1
        return 0
