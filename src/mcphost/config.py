"""
Configuration for the tool-calling host.

All configuration is loaded from environment variables. Every concern has
its own dataclass with a from_env() constructor, and HostConfig bundles
them so the runtime can be wired from a single call.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from platformdirs import user_data_dir

APP_NAME = "mcphost"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, sep: str) -> list[str]:
    value = os.getenv(name, "")
    return [item.strip() for item in value.split(sep) if item.strip()]


def default_data_dir() -> Path:
    """Per-user application data directory."""
    return Path(user_data_dir(APP_NAME))


@dataclass
class LLMConfig:
    """Configuration for the text-generation client."""
    base_url: str = "http://localhost:11434"
    model: str = "llama3"
    timeout: float = 300.0
    max_retries: int = 2
    retry_delay: float = 2.0

    @classmethod
    def from_env(cls) -> "LLMConfig":
        """Load configuration from environment variables."""
        return cls(
            base_url=os.getenv("MCPHOST_BASE_URL", "http://localhost:11434"),
            model=os.getenv("MCPHOST_MODEL", "llama3"),
            timeout=float(os.getenv("MCPHOST_TIMEOUT", "300")),
            max_retries=int(os.getenv("MCPHOST_MAX_RETRIES", "2")),
            retry_delay=float(os.getenv("MCPHOST_RETRY_DELAY", "2.0")),
        )


@dataclass
class ContextConfig:
    """
    Configuration for conversation context.

    Tokens are approximated as chars / chars_per_token. Once the history
    estimate passes summarize_threshold the context is compacted into a
    single summary.
    """
    enabled: bool = True
    window: int = 5
    summarize_threshold: int = 2000
    chars_per_token: float = 4.0
    auto_summarize: bool = True

    @classmethod
    def from_env(cls) -> "ContextConfig":
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("MCPHOST_CONTEXT_ENABLED", True),
            window=int(os.getenv("MCPHOST_CONTEXT_WINDOW", "5")),
            summarize_threshold=int(os.getenv("MCPHOST_SUMMARIZE_THRESHOLD", "2000")),
            chars_per_token=float(os.getenv("MCPHOST_CHARS_PER_TOKEN", "4.0")),
            auto_summarize=_env_bool("MCPHOST_AUTO_SUMMARIZE", True),
        )


@dataclass
class SandboxConfig:
    """Filesystem roots the file tools may touch."""
    extra_roots: list[str] = field(default_factory=list)
    include_defaults: bool = True

    @classmethod
    def from_env(cls) -> "SandboxConfig":
        """Load configuration from environment variables."""
        return cls(
            extra_roots=_env_list("MCPHOST_ALLOWED_DIRS", os.pathsep),
            include_defaults=_env_bool("MCPHOST_SANDBOX_DEFAULTS", True),
        )


@dataclass
class OperationLogConfig:
    """Configuration for the tool operation audit trail."""
    capacity: int = 100
    file_logging: bool = True
    log_dir: Path | None = None

    @classmethod
    def from_env(cls) -> "OperationLogConfig":
        """Load configuration from environment variables."""
        log_dir = os.getenv("MCPHOST_OPLOG_DIR")
        return cls(
            capacity=int(os.getenv("MCPHOST_OPLOG_CAPACITY", "100")),
            file_logging=_env_bool("MCPHOST_OPLOG_FILE", True),
            log_dir=Path(log_dir) if log_dir else None,
        )

    @property
    def resolved_log_dir(self) -> Path:
        """Directory that daily log files are written to."""
        return self.log_dir or default_data_dir() / "logs"


@dataclass
class EngineConfig:
    """
    Configuration for the protocol engine.

    max_tool_rounds bounds how many tool calls a single turn may chain
    before the continuation output is taken as final.
    """
    max_tool_rounds: int = 1
    reject_concurrent: bool = False
    disabled_tools: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Load configuration from environment variables."""
        return cls(
            max_tool_rounds=int(os.getenv("MCPHOST_MAX_TOOL_ROUNDS", "1")),
            reject_concurrent=_env_bool("MCPHOST_REJECT_CONCURRENT", False),
            disabled_tools=_env_list("MCPHOST_DISABLED_TOOLS", ","),
        )


@dataclass
class HostConfig:
    """Combined configuration for the entire host."""
    llm: LLMConfig = field(default_factory=LLMConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    sandbox: SandboxConfig = field(default_factory=SandboxConfig)
    oplog: OperationLogConfig = field(default_factory=OperationLogConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)

    @classmethod
    def from_env(cls) -> "HostConfig":
        """Load all configuration from environment variables."""
        return cls(
            llm=LLMConfig.from_env(),
            context=ContextConfig.from_env(),
            sandbox=SandboxConfig.from_env(),
            oplog=OperationLogConfig.from_env(),
            engine=EngineConfig.from_env(),
        )
