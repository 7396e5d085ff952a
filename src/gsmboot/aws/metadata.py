"""Instance metadata service (IMDS) access.

Requests a session token first (IMDSv2) and falls back to plain requests
when the token endpoint is unavailable (IMDSv1).
"""

from http.client import HTTPException
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

IMDS_URL = "http://169.254.169.254"
TOKEN_PATH = "/latest/api/token"
TOKEN_TTL_SECONDS = 21600

INSTANCE_ID_PATH = "/latest/meta-data/instance-id"
PUBLIC_IPV4_PATH = "/latest/meta-data/public-ipv4"
REGION_PATH = "/latest/meta-data/placement/region"
USER_DATA_PATH = "/latest/user-data"
TERMINATION_TIME_PATH = "/latest/meta-data/spot/termination-time"


class MetadataError(RuntimeError):
    pass


class MetadataClient:
    def __init__(self, base_url: str = IMDS_URL, timeout: int = 10):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _token(self) -> str | None:
        request = Request(
            self.base_url + TOKEN_PATH, method="PUT",
            headers={"X-aws-ec2-metadata-token-ttl-seconds": str(TOKEN_TTL_SECONDS)},
        )
        try:
            with urlopen(request, timeout=self.timeout) as resp:
                return resp.read().decode("utf-8")
        except (OSError, HTTPException):
            return None

    def _request(self, path: str) -> Request:
        headers = {}
        token = self._token()
        if token:
            headers["X-aws-ec2-metadata-token"] = token
        return Request(self.base_url + path, headers=headers)

    def get(self, path: str) -> str:
        """Fetch a plain-text metadata value."""
        try:
            with urlopen(self._request(path), timeout=self.timeout) as resp:
                return resp.read().decode("utf-8")
        except HTTPError as e:
            raise MetadataError(f"{path} returned HTTP {e.code}") from e
        except URLError as e:
            raise MetadataError(f"error fetching {path}: {e.reason}") from e
        except (OSError, HTTPException) as e:
            raise MetadataError(f"error fetching {path}: {type(e).__name__}: {e}") from e

    def status(self, path: str) -> int:
        """Return the HTTP status of a metadata path, 404 included.

        Raises MetadataError only when the service cannot be reached.
        """
        try:
            with urlopen(self._request(path), timeout=self.timeout) as resp:
                return resp.status
        except HTTPError as e:
            return e.code
        except URLError as e:
            raise MetadataError(f"error fetching {path}: {e.reason}") from e
        except (OSError, HTTPException) as e:
            raise MetadataError(f"error fetching {path}: {type(e).__name__}: {e}") from e

    def instance_id(self) -> str:
        return self.get(INSTANCE_ID_PATH)

    def public_ipv4(self) -> str:
        return self.get(PUBLIC_IPV4_PATH)

    def region(self) -> str:
        return self.get(REGION_PATH)

    def user_data(self) -> str:
        return self.get(USER_DATA_PATH)

    def termination_status(self) -> int:
        return self.status(TERMINATION_TIME_PATH)
