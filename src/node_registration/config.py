"""
Configuration management for the node registration server
"""
import json
import os
from typing import List, Optional

from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    """Configuration of the CoAP endpoint and the worker pool"""
    host: str = "::"
    port: int = Field(default=5683, ge=1, le=65535)
    workers: int = Field(default=20, ge=1, le=1000)
    discovery_timeout: Optional[float] = Field(default=30.0, gt=0)  # seconds, None waits forever
    release_on_failure: bool = False
    registration_path: str = "here_i_am"


class BackendConfig(BaseModel):
    """A backend and the devices it owns"""
    prefix: str
    path_prefix: str


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[str] = None
    format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class Config(BaseModel):
    """Main configuration class"""
    server: ServerConfig = Field(default_factory=ServerConfig)
    backends: List[BackendConfig] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables"""
        timeout = os.getenv("COAP_DISCOVERY_TIMEOUT", "30")
        return cls(
            server=ServerConfig(
                host=os.getenv("COAP_HOST", "::"),
                port=int(os.getenv("COAP_PORT", "5683")),
                workers=int(os.getenv("COAP_WORKERS", "20")),
                discovery_timeout=float(timeout) if timeout.lower() not in ("", "none") else None,
                release_on_failure=os.getenv("COAP_RELEASE_ON_FAILURE", "").lower() in ("1", "true", "yes")
            ),
            backends=parse_backends(os.getenv("COAP_BACKENDS", "").split(",")),
            logging=LoggingConfig(level=os.getenv("LOG_LEVEL", "INFO"))
        )

    @classmethod
    def load_from_file(cls, file_path: str) -> "Config":
        """Load configuration from JSON file"""
        with open(file_path, 'r') as f:
            data = json.load(f)
        return cls(**data)

    def save_to_file(self, file_path: str) -> None:
        """Save configuration to JSON file"""
        with open(file_path, 'w') as f:
            json.dump(self.model_dump(), f, indent=2)


def parse_backends(specs: List[str]) -> List[BackendConfig]:
    """
    Parse ``prefix=path_prefix`` pairs.

    Args:
        specs: Items such as ``2001:db8::=/building-1``; blank items are skipped

    Returns:
        Backend configurations in the given order
    """
    backends = []
    for spec in specs:
        spec = spec.strip()
        if not spec:
            continue
        prefix, sep, path_prefix = spec.rpartition('=')
        if not sep or not prefix:
            raise ValueError(f"Invalid backend '{spec}', expected prefix=path_prefix")
        backends.append(BackendConfig(prefix=prefix, path_prefix=path_prefix))
    return backends
