"""
Facility Link Configuration

Sender and receiver settings as dataclasses. Values come from, in order of
increasing precedence: defaults, a JSON config file, environment variables
(``FACILITY_LINK_*``), command-line flags.

The JSON file also accepts the legacy rc.cfg keys (``scriptName``,
``publicKey``, ``keySize``, ``iterationFrequency``).

Every validation failure is a ConfigurationError whose message starts with
the configured process name.
"""

import dataclasses
import json
import os
import socket
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .crypto.identity import CURVES
from .crypto.session import DIGESTS, SessionPolicy
from .errors import ConfigurationError
from .transport.tunnel import parse_address

ENV_PREFIX = "FACILITY_LINK_"

# Legacy rc.cfg key -> field
LEGACY_KEYS = {
    "scriptName": "name",
    "publicKey": "peer_public_key",
    "keySize": "key_size",
    "iterationFrequency": "interval",
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _load_json(path: str) -> Dict[str, Any]:
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"{path}: No such file or directory", "config_file") from None
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"{path}: unreadable config file ({e})", "config_file") from None
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: config file must contain a JSON object", "config_file")
    return {LEGACY_KEYS.get(k, k): v for k, v in data.items()}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class _ConfigBase:
    """Shared loading and validation helpers."""

    # field -> (environment suffix, converter)
    ENV_FIELDS: Dict[str, Any] = {}

    @classmethod
    def from_file(cls, path: str):
        """Create config from a JSON file"""
        data = _load_json(path)
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"{path}: unknown config key(s): {', '.join(unknown)}", unknown[0])
        return cls(**data)

    @classmethod
    def from_env(cls, base=None):
        """Create config from environment variables, on top of ``base``"""
        config = base if base is not None else cls()
        overrides = {}
        for name, (suffix, convert) in cls.ENV_FIELDS.items():
            raw = os.environ.get(ENV_PREFIX + suffix)
            if raw is None or raw == "":
                continue
            try:
                overrides[name] = convert(raw)
            except ValueError:
                raise ConfigurationError(
                    f"{config.name}: {ENV_PREFIX + suffix}={raw!r}: invalid value", name
                ) from None
        return dataclasses.replace(config, **overrides)

    def with_overrides(self, **overrides):
        """Copy with every non-None override applied"""
        return dataclasses.replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def _fail(self, message: str, field: str):
        raise ConfigurationError(f"{self.name}: {message}", field)

    def _check_name(self):
        if not isinstance(self.name, str) or not self.name:
            raise ConfigurationError("'name': must be a non-empty string", "name")

    def _check_key_file(self, field: str, path: Any):
        if not isinstance(path, str) or not path:
            self._fail(f"'{field}': must be a path string", field)
        if not os.path.exists(path):
            self._fail(f"{path}: No such file or directory", field)

    def _check_address(self, field: str, value: Any):
        if not isinstance(value, str):
            self._fail(f"'{field}': must be a host:port string", field)
        try:
            parse_address(value)
        except ValueError as e:
            self._fail(str(e), field)

    def _check_common(self):
        self._check_name()
        if self.digest not in DIGESTS:
            self._fail(f"{self.digest}: digest must be one of {', '.join(sorted(DIGESTS))}", "digest")
        if not isinstance(self.log_level, str) or self.log_level.upper() not in LOG_LEVELS:
            self._fail(f"{self.log_level}: unknown log level", "log_level")
        self._check_address("local_address", self.local_address)
        self._check_address("remote_address", self.remote_address)


@dataclass
class SenderConfig(_ConfigBase):
    """Collector (sender) settings"""
    name: str = "facility-link-sender"
    peer_public_key: str = "/etc/facility-link/receiver.pub"
    key_size: int = 384
    interval: float = 5.0
    private_key: Optional[str] = None
    sender_id: str = dataclasses.field(default_factory=socket.gethostname)
    session_policy: str = SessionPolicy.PER_PROCESS.value
    digest: str = "md5"
    local_address: str = "0.0.0.0:0"
    remote_address: str = "127.0.0.1:8150"
    snapshot_path: Optional[str] = None
    log_level: str = "INFO"

    ENV_FIELDS = {
        "name": ("NAME", str),
        "peer_public_key": ("PEER_PUBLIC_KEY", str),
        "key_size": ("KEY_SIZE", int),
        "interval": ("INTERVAL", float),
        "private_key": ("PRIVATE_KEY", str),
        "sender_id": ("SENDER_ID", str),
        "session_policy": ("SESSION_POLICY", str),
        "digest": ("DIGEST", str),
        "local_address": ("LOCAL_ADDRESS", str),
        "remote_address": ("REMOTE_ADDRESS", str),
        "snapshot_path": ("SNAPSHOT", str),
        "log_level": ("LOG_LEVEL", str),
    }

    @property
    def policy(self) -> SessionPolicy:
        return SessionPolicy(self.session_policy)

    def validate(self) -> "SenderConfig":
        """Raise ConfigurationError on the first invalid field"""
        self._check_common()
        self._check_key_file("peer_public_key", self.peer_public_key)
        if self.private_key is not None:
            self._check_key_file("private_key", self.private_key)

        if not _is_number(self.key_size):
            self._fail(f"'key_size': Is a '{type(self.key_size).__name__}', invalid data type", "key_size")
        if self.key_size not in CURVES:
            self._fail(f"{self.key_size}: Keysize must be either 256 or 384", "key_size")

        if not _is_number(self.interval):
            self._fail(f"'interval': Is a '{type(self.interval).__name__}', invalid data type", "interval")
        if self.interval <= 0:
            self._fail(f"{self.interval}: 'interval' must not be less than or equal to zero (0)", "interval")

        if not isinstance(self.sender_id, str) or not self.sender_id:
            self._fail("'sender_id': must be a non-empty string", "sender_id")

        try:
            SessionPolicy(self.session_policy)
        except ValueError:
            choices = ', '.join(p.value for p in SessionPolicy)
            self._fail(f"{self.session_policy}: session policy must be one of {choices}", "session_policy")
        return self


@dataclass
class ReceiverConfig(_ConfigBase):
    """Decoder (receiver) settings"""
    name: str = "facility-link-receiver"
    private_key: str = "/etc/facility-link/receiver.pem"
    key_size: Optional[int] = None
    digest: str = "md5"
    receive_timeout: float = 5.0
    local_address: str = "0.0.0.0:8150"
    remote_address: str = "127.0.0.1:0"
    output: Optional[str] = None
    log_level: str = "INFO"

    ENV_FIELDS = {
        "name": ("NAME", str),
        "private_key": ("PRIVATE_KEY", str),
        "key_size": ("KEY_SIZE", int),
        "digest": ("DIGEST", str),
        "receive_timeout": ("RECEIVE_TIMEOUT", float),
        "local_address": ("LOCAL_ADDRESS", str),
        "remote_address": ("REMOTE_ADDRESS", str),
        "output": ("OUTPUT", str),
        "log_level": ("LOG_LEVEL", str),
    }

    def validate(self) -> "ReceiverConfig":
        """Raise ConfigurationError on the first invalid field"""
        self._check_common()
        self._check_key_file("private_key", self.private_key)

        if self.key_size is not None and (not _is_number(self.key_size) or self.key_size not in CURVES):
            self._fail(f"{self.key_size}: Keysize must be either 256 or 384", "key_size")

        if not _is_number(self.receive_timeout):
            self._fail(
                f"'receive_timeout': Is a '{type(self.receive_timeout).__name__}', invalid data type",
                "receive_timeout"
            )
        if self.receive_timeout <= 0:
            self._fail(f"{self.receive_timeout}: 'receive_timeout' must be greater than zero (0)", "receive_timeout")
        return self
