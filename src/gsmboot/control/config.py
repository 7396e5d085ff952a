"""Boot configuration read from instance user data.

User data is a single pipe-delimited line:

    hostedZone|dnsName|volumeId|runPath|stopPath|idlePath|idleIntervalSeconds|idleConsecutiveThreshold
"""

from dataclasses import dataclass

from gsmboot.aws.metadata import MetadataClient


class ConfigError(ValueError):
    pass


class MalformedConfig(ConfigError):
    pass


class MalformedInterval(ConfigError):
    pass


class MalformedThreshold(ConfigError):
    pass


@dataclass(frozen=True)
class UserDataField:
    name: str
    kind: type = str
    error: type[ConfigError] = MalformedConfig
    description: str = ""

    def parse(self, raw: str):
        if self.kind is str:
            return raw
        # Digits only: no sign, no surrounding whitespace.
        if not (raw.isascii() and raw.isdigit()):
            raise self.error(f"{self.description or self.name} was malformed: {raw!r}")
        return int(raw)


USER_DATA_FIELDS = (
    UserDataField("hosted_zone"),
    UserDataField("dns_name"),
    UserDataField("volume_id"),
    UserDataField("run_path"),
    UserDataField("stop_path"),
    UserDataField("idle_path"),
    UserDataField("idle_interval", int, MalformedInterval, "idle interval"),
    UserDataField(
        "idle_consecutive_threshold", int, MalformedThreshold,
        "idle consecutive times for shutdown",
    ),
)


@dataclass(frozen=True)
class InstanceConfig:
    hosted_zone: str
    dns_name: str
    volume_id: str
    run_path: str
    stop_path: str
    idle_path: str
    idle_interval: int
    idle_consecutive_threshold: int

    @property
    def idle_shutdown_enabled(self) -> bool:
        return self.idle_consecutive_threshold > 0


@dataclass(frozen=True)
class InstanceIdentity:
    instance_id: str
    public_ip: str
    region: str


def parse_user_data(text: str) -> InstanceConfig:
    sliced = text.rstrip("\r\n").split("|")
    if len(sliced) != len(USER_DATA_FIELDS):
        raise MalformedConfig(
            f"user data was malformed or not complete: expected "
            f"{len(USER_DATA_FIELDS)} fields, got {len(sliced)}"
        )
    values = {f.name: f.parse(raw) for f, raw in zip(USER_DATA_FIELDS, sliced)}
    return InstanceConfig(**values)


def fetch_config(metadata: MetadataClient) -> InstanceConfig:
    return parse_user_data(metadata.user_data())


def fetch_identity(metadata: MetadataClient) -> InstanceIdentity:
    return InstanceIdentity(
        instance_id=metadata.instance_id(),
        public_ip=metadata.public_ipv4(),
        region=metadata.region(),
    )
