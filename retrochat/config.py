import os
from dataclasses import dataclass, fields

ENV_PREFIX = "RETROCHAT_"


@dataclass
class Settings:
    """Runtime configuration for the client engine and the store server.

    Attributes:
        poll_interval (float): Seconds between two poll queries
        max_message_length (int): Longest accepted message body
        presence_heartbeat (float): Seconds between presence re-announcements
        write_timeout (float): Seconds to wait for the store to confirm a write
        reconnect_delay (float): Seconds a transport waits before resubscribing
        data_dir (str): Where JSON/JSONL data files live
        host (str): Store server host
        port (int): Store server port
    """
    poll_interval: float = 2.0
    max_message_length: int = 500
    presence_heartbeat: float = 30.0
    write_timeout: float = 10.0
    reconnect_delay: float = 1.0
    data_dir: str = os.path.join("retrochat", "data")
    host: str = "127.0.0.1"
    port: int = 50051

    @classmethod
    def from_env(cls, environ=None, **overrides) -> "Settings":
        """Build settings from ``RETROCHAT_*`` variables.

        Keyword overrides that are not None win over the environment, which
        lets CLI options be passed straight through.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            try:
                values[f.name] = f.type(raw) if f.type in (int, float) else raw
            except ValueError as e:
                raise ValueError(f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw!r}") from e
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def target(self) -> str:
        return f"{self.host}:{self.port}"
