"""Environment-driven settings for the controller process."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .allocator import DEFAULT_FIRST_HOST, DEFAULT_NETWORK


@dataclass
class ControllerConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    network: str = DEFAULT_NETWORK
    first_host: int = DEFAULT_FIRST_HOST
    log_level: str = "info"

    @classmethod
    def from_env(cls) -> "ControllerConfig":
        return cls(
            host=os.getenv("CONTROLLER_HOST", "0.0.0.0"),
            port=int(os.getenv("CONTROLLER_PORT", "8080")),
            network=os.getenv("OVERLAY_NETWORK", DEFAULT_NETWORK),
            first_host=int(os.getenv("OVERLAY_FIRST_HOST", str(DEFAULT_FIRST_HOST))),
            log_level=os.getenv("LOG_LEVEL", "info").lower(),
        )


__all__ = ["ControllerConfig"]
