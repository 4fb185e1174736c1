import ipaddress
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Bind address as "ip:port", IPv6 hosts in brackets: "[::1]:8080"
    host: str = "127.0.0.1:8080"
    db_path: str

    # Write one audit row per request into __metadata_query
    collect_metadata: bool = False

    wal: bool = True
    foreign_keys: bool = False
    extensions: List[str] = []

    atomic_batches: bool = False
    request_timeout: Optional[float] = None

    log_level: str = "INFO"

    # Read SQLGATE_* variables and the .env file; settings never change after load
    model_config = SettingsConfigDict(
        env_prefix="SQLGATE_", env_file=".env", extra="ignore", frozen=True
    )

    @field_validator("host")
    @classmethod
    def validate_host(cls, value: str) -> str:
        split_address(value)
        return value

    @field_validator("request_timeout")
    @classmethod
    def validate_request_timeout(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            raise ValueError("request_timeout must be positive")
        return value

    @property
    def bind_host(self) -> str:
        return split_address(self.host)[0]

    @property
    def bind_port(self) -> int:
        return split_address(self.host)[1]


def split_address(address: str):
    """
    Split an "ip:port" bind address into its host and port.

    Raises ValueError when the host is not an IP literal or the port is out of range.
    """
    host, sep, port = address.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"bind address must look like ip:port, got {address!r}")

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    ipaddress.ip_address(host)

    port_number = int(port)
    if port_number > 65535:
        raise ValueError(f"port out of range: {port_number}")
    return host, port_number
