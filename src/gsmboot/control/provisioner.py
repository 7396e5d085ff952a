import subprocess
from dataclasses import replace
from pathlib import Path

from botocore.exceptions import BotoCoreError, ClientError

from gsmboot.aws.ec2 import attach_volume, get_volume_attachment
from gsmboot.aws.route53 import upsert_a_record
from gsmboot.control.config import InstanceConfig, InstanceIdentity
from gsmboot.control.retry import ATTACH_RETRY, DEVICE_RETRY, RetryPolicy

MOUNT_POINT = "/mnt/game"
DEVICE_SLOT = "/dev/sdf"
# Xen instances expose the slot as xvdf, Nitro instances as an NVMe namespace.
DEVICE_CANDIDATES = ("/dev/xvdf", "/dev/nvme1n1")
FS_TYPE = "ext4"
MOUNT_MODE = 0o777


class ProvisionError(RuntimeError):
    pass


def _is_client_error(exc: ClientError, code: str) -> bool:
    return exc.response["Error"]["Code"] == code


class Provisioner:
    def __init__(
        self,
        mount_point: str = MOUNT_POINT,
        device_candidates: tuple[str, ...] = DEVICE_CANDIDATES,
        attach_retry: RetryPolicy = ATTACH_RETRY,
        device_retry: RetryPolicy = DEVICE_RETRY,
        on_status=None,
        on_debug=None,
    ):
        self.mount_point = Path(mount_point)
        self.device_candidates = device_candidates
        self.attach_retry = attach_retry
        self.device_retry = device_retry
        self.on_status = on_status
        self.on_debug = on_debug

    def _notify(self, message: str) -> None:
        if self.on_status:
            self.on_status(message)

    def _debug(self, message: str) -> None:
        if self.on_debug:
            self.on_debug(message)

    def publish_dns(self, config: InstanceConfig, identity: InstanceIdentity) -> str:
        """Upsert the A record for this instance. Returns the Route 53 change id."""
        self._notify(f"Setting DNS {config.dns_name} -> {identity.public_ip}")
        change_id = upsert_a_record(
            identity.region, config.hosted_zone, config.dns_name, identity.public_ip,
        )
        self._debug(f"DNS change {change_id}")
        return change_id

    def attach_and_mount(self, config: InstanceConfig, identity: InstanceIdentity) -> str:
        """Attach the data volume and mount it. Returns the device file used."""
        self.attach(config.volume_id, identity)
        device = self.find_device_file()
        self.create_mount_point()
        self.mount(device)
        return device

    def _attach_once(self, volume_id: str, identity: InstanceIdentity) -> None:
        try:
            attach_volume(identity.region, volume_id, identity.instance_id, DEVICE_SLOT)
        except ClientError as e:
            # Already attached here, e.g. after a reboot.
            if _is_client_error(e, "VolumeInUse"):
                owner = get_volume_attachment(identity.region, volume_id)
                if owner == identity.instance_id:
                    self._debug(f"Volume {volume_id} already attached to {owner}")
                    return
            raise

    def attach(self, volume_id: str, identity: InstanceIdentity) -> None:
        self._notify(f"Attaching volume {volume_id}")

        def _on_retry(attempt, error):
            self._debug(
                f"Attach attempt {attempt}/{self.attach_retry.attempts}: "
                f"{type(error).__name__}: {error}"
            )

        policy = replace(self.attach_retry, retry_on=(ClientError, BotoCoreError))
        try:
            policy.call(lambda: self._attach_once(volume_id, identity), on_retry=_on_retry)
        except (ClientError, BotoCoreError) as e:
            raise ProvisionError(f"error attaching volume: {e}") from e
        self._notify("Volume attached")

    def _present_device(self) -> str | None:
        for candidate in self.device_candidates:
            if Path(candidate).exists():
                return candidate
        return None

    def find_device_file(self) -> str:
        self._notify("Looking for device file")
        device = self.device_retry.poll(self._present_device)
        if not device:
            raise ProvisionError(
                f"device file not found (tried {', '.join(self.device_candidates)})"
            )
        self._debug(f"Found device file {device}")
        return device

    def create_mount_point(self) -> None:
        """Create the mount point world-writable.

        chmod applies the mode exactly, so the process umask is left alone.
        """
        self._notify(f"Creating mount point {self.mount_point}")
        try:
            self.mount_point.mkdir(parents=True, exist_ok=True)
            self.mount_point.chmod(MOUNT_MODE)
        except OSError as e:
            raise ProvisionError(f"error creating mount point: {e}") from e

    def mount(self, device: str) -> None:
        self._notify(f"Mounting {device} at {self.mount_point}")
        try:
            result = subprocess.run(
                ["mount", "-t", FS_TYPE, device, str(self.mount_point)],
                capture_output=True, text=True,
            )
        except OSError as e:
            raise ProvisionError(f"error mounting volume: {e}") from e
        if result.returncode != 0:
            output = (result.stderr or result.stdout).strip()
            raise ProvisionError(f"error mounting volume: {output}")
        self._notify("Volume mounted")
