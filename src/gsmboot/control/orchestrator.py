from botocore.exceptions import BotoCoreError, ClientError

from gsmboot.aws.metadata import MetadataClient, MetadataError
from gsmboot.control.config import ConfigError, fetch_config, fetch_identity
from gsmboot.control.game import GAME_USER, GameProcess, GameProcessError
from gsmboot.control.provisioner import ProvisionError, Provisioner
from gsmboot.control.watchers import IdleWatcher, ShutdownSignal, TerminationWatcher

EXIT_FATAL = 1
EXIT_INTERRUPTED = 130
# Time the game gets to exit on its own after the stop executable ran.
STOP_GRACE_SECONDS = 30
WAIT_TICK_SECONDS = 1


class Orchestrator:
    """Boot sequence: config, identity, DNS, volume, watchers, then the game."""

    def __init__(self, metadata: MetadataClient | None = None,
                 provisioner: Provisioner | None = None,
                 game_user: str | None = GAME_USER,
                 on_status=None, on_debug=None, on_error=None):
        self.metadata = metadata or MetadataClient()
        self.provisioner = provisioner or Provisioner(on_status=on_status, on_debug=on_debug)
        self.game_user = game_user
        self.on_status = on_status
        self.on_debug = on_debug
        self.on_error = on_error
        self.shutdown = ShutdownSignal()
        self.watchers = []
        self.game: GameProcess | None = None

    def _notify(self, message: str) -> None:
        if self.on_status:
            self.on_status(message)

    def _debug(self, message: str) -> None:
        if self.on_debug:
            self.on_debug(message)

    def _error(self, message: str) -> None:
        if self.on_error:
            self.on_error(message)
        else:
            self._notify(message)

    def provision(self):
        """Fetch config and identity, publish DNS and mount the volume.

        Raises ConfigError, MetadataError or ProvisionError on fatal failures.
        """
        self._notify("Getting user data")
        config = fetch_config(self.metadata)
        self._notify("Getting instance identity")
        identity = fetch_identity(self.metadata)
        self._debug(f"Instance {identity.instance_id} in {identity.region} at {identity.public_ip}")

        try:
            self.provisioner.publish_dns(config, identity)
        except (ClientError, BotoCoreError) as e:
            self._error(f"Error setting DNS: {e}")

        self.provisioner.attach_and_mount(config, identity)
        return config, identity

    def start_watchers(self, config, identity) -> None:
        kwargs = {"on_status": self.on_status, "on_debug": self.on_debug}
        self.watchers = [TerminationWatcher(config, self.metadata, self.shutdown, **kwargs)]
        if config.idle_shutdown_enabled:
            self.watchers.append(IdleWatcher(config, identity, self.shutdown, **kwargs))
        else:
            self._notify("Idle shutdown disabled")
        for watcher in self.watchers:
            watcher.start()

    def run(self, on_provisioned=None) -> int:
        """Full boot. Returns the process exit code.

        ``on_provisioned`` is called once provisioning succeeded, before the
        watchers and the game start.
        """
        try:
            try:
                config, identity = self.provision()
            except (ConfigError, MetadataError, ProvisionError) as e:
                self._error(f"Error: {e}")
                return EXIT_FATAL
            if on_provisioned:
                on_provisioned()
            return self.launch(config, identity)
        except KeyboardInterrupt:
            self._error("Interrupted.")
            return EXIT_INTERRUPTED

    def launch(self, config, identity) -> int:
        """Start the watchers and run the game until a watcher shuts the instance down."""
        self.start_watchers(config, identity)

        self._notify(f"Starting game server {config.run_path}")
        self.game = GameProcess(config.run_path, user=self.game_user)
        try:
            self.game.start()
        except GameProcessError as e:
            self._error(f"Error: {e}")
            return EXIT_FATAL

        return self.wait_for_shutdown()

    def wait_for_shutdown(self) -> int:
        game_exited = False
        while not self.shutdown.wait(WAIT_TICK_SECONDS):
            if not game_exited:
                status = self.game.poll()
                if status is not None:
                    game_exited = True
                    self._notify(f"Game server exited with status {status}")

        self._notify(f"Shutting down ({self.shutdown.reason})")
        if not game_exited and self.game.wait(STOP_GRACE_SECONDS) is None:
            self._notify("Game server still running after stop, terminating it")
            self.game.terminate()
        return self.shutdown.exit_code
