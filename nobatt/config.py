"""Configuration management for nobatt

Settings come from environment variables only; nobatt reads no
configuration file.
"""

import logging
import os
import shlex
import signal

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_STATUS_COMMAND = ["pmset", "-g", "ps"]
DEFAULT_LOG_COMMAND = ["pmset", "-g", "pslog"]


def parse_signal(value: str | int | signal.Signals) -> signal.Signals:
    """Convert a signal name or number to a signal.Signals member

    Accepts "SIGUSR1", "USR1" (case-insensitive) or a number.

    Raises:
        ValueError: If the value does not name a known signal
    """
    if isinstance(value, signal.Signals):
        return value
    if isinstance(value, int) or (isinstance(value, str) and value.strip().isdigit()):
        return signal.Signals(int(value))

    name = value.strip().upper()
    if not name.startswith("SIG"):
        name = "SIG" + name
    try:
        return signal.Signals[name]
    except KeyError:
        raise ValueError(f"unknown signal: {value!r}") from None


def _command_from_env(var: str, default: list[str]) -> list[str]:
    raw = os.getenv(var)
    if not raw:
        return list(default)
    return shlex.split(raw)


class NobattConfig(BaseModel):
    """Main nobatt configuration"""

    # Single-shot power status query; only the first output line is used
    status_command: list[str] = Field(default_factory=lambda: list(DEFAULT_STATUS_COMMAND))

    # Long-running power log, read line by line
    log_command: list[str] = Field(default_factory=lambda: list(DEFAULT_LOG_COMMAND))

    resume_signal: signal.Signals = Field(default=signal.SIGUSR1)
    suspend_signal: signal.Signals = Field(default=signal.SIGUSR2)
    terminate_signals: tuple[signal.Signals, ...] = Field(default=(signal.SIGINT, signal.SIGTERM))

    # Seconds to wait for the log command to exit before killing it
    terminate_timeout: float = Field(default=2.0, gt=0)

    log_level: str = Field(default="WARNING")

    @field_validator("status_command", "log_command")
    @classmethod
    def _require_command(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("command must not be empty")
        return value

    @field_validator("resume_signal", "suspend_signal", mode="before")
    @classmethod
    def _coerce_signal(cls, value):
        return parse_signal(value)

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level: {value!r}")
        return level

    @model_validator(mode="after")
    def _distinct_signals(self) -> "NobattConfig":
        if self.resume_signal == self.suspend_signal:
            raise ValueError("resume and suspend signals must differ")
        for sig in (self.resume_signal, self.suspend_signal):
            if sig in self.terminate_signals:
                raise ValueError(f"{sig.name} is reserved for termination")
            if sig in (signal.SIGKILL, signal.SIGSTOP):
                raise ValueError(f"{sig.name} cannot be caught")
        return self

    @classmethod
    def from_env(cls) -> "NobattConfig":
        """Load configuration from NOBATT_* environment variables"""
        values = {
            "status_command": _command_from_env("NOBATT_STATUS_COMMAND", DEFAULT_STATUS_COMMAND),
            "log_command": _command_from_env("NOBATT_LOG_COMMAND", DEFAULT_LOG_COMMAND),
            "resume_signal": os.getenv("NOBATT_RESUME_SIGNAL", "SIGUSR1"),
            "suspend_signal": os.getenv("NOBATT_SUSPEND_SIGNAL", "SIGUSR2"),
            "log_level": os.getenv("NOBATT_LOG_LEVEL", "WARNING"),
        }
        timeout = os.getenv("NOBATT_TERMINATE_TIMEOUT")
        if timeout:
            values["terminate_timeout"] = timeout
        return cls(**values)


def get_config() -> NobattConfig:
    """Get the current configuration"""
    return NobattConfig.from_env()
