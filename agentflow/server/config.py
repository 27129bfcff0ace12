"""
Server settings, read from the environment.

A `.env` file in the working directory (or any parent) is loaded first by
server/main.py, so local overrides don't need a manual `export`:

    AGENTFLOW_MAX_NODES=500          # node-count ceiling for /api/compile
    AGENTFLOW_DEFAULT_TARGET=agentflow
    AGENTFLOW_CORS_ORIGINS=*         # comma separated
    AGENTFLOW_HOST=127.0.0.1
    AGENTFLOW_PORT=8000
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from agentflow.compiler.templates import PROFILES


def _int_setting(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")
    if value < 1:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class ServerConfig:
    max_nodes: int = 500
    default_target: str = "agentflow"
    cors_origins: Tuple[str, ...] = ("*",)
    host: str = "127.0.0.1"
    port: int = 8000

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        env = os.environ if environ is None else environ

        target = env.get("AGENTFLOW_DEFAULT_TARGET") or cls.default_target
        if target not in PROFILES:
            raise ValueError(
                f"AGENTFLOW_DEFAULT_TARGET must be one of {', '.join(sorted(PROFILES))}, got {target!r}"
            )

        origins = tuple(
            o.strip() for o in env.get("AGENTFLOW_CORS_ORIGINS", "*").split(",") if o.strip()
        )

        return cls(
            max_nodes=_int_setting(env, "AGENTFLOW_MAX_NODES", cls.max_nodes),
            default_target=target,
            cors_origins=origins or ("*",),
            host=env.get("AGENTFLOW_HOST") or cls.host,
            port=_int_setting(env, "AGENTFLOW_PORT", cls.port),
        )
