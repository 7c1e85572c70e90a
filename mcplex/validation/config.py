"""
mcplex Configuration - Configuration loading and validation.

This module provides the Config class for managing mcplex configuration
from both global (~/.mcplex/config.yaml) and local (.mcplex/config.yaml)
sources.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from mcplex.mcp.schema import ServerConfig

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when there's a configuration error."""

    pass


class MCPServerEntry(BaseModel):
    """Configuration for a single MCP server."""

    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    working_dir: Optional[str] = None
    description: Optional[str] = None
    enabled: bool = True
    auto_connect: bool = False


class MCPConfig(BaseModel):
    """Configuration for the MCP client stack."""

    servers: Dict[str, MCPServerEntry] = Field(default_factory=dict)
    request_timeout: float = 30.0
    tool_timeout: float = 60.0
    shutdown_grace: float = 5.0


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = "WARNING"


class McplexConfig(BaseModel):
    """Complete mcplex configuration schema."""

    mcp: MCPConfig = Field(default_factory=MCPConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def expand_env_refs(value: str, environ: Optional[Dict[str, str]] = None) -> str:
    """
    Replace ``${VAR}`` references with values from the environment.

    Raises:
        ConfigError: If a referenced variable is not set.
    """
    environ = os.environ if environ is None else environ

    def replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name not in environ:
            raise ConfigError(f"Environment variable {name} is not set")
        return environ[name]

    return _ENV_REF.sub(replace, value)


class Config:
    """
    mcplex configuration manager.

    Handles loading, merging, and validating configuration from:
    - Global: ~/.mcplex/config.yaml
    - Local: .mcplex/config.yaml (project-specific)

    Local configuration overrides global configuration.

    Example:
        >>> config = Config.load()
        >>> for name in config.auto_connect_servers():
        ...     await router.add_server(name, config.server_config(name))
    """

    GLOBAL_CONFIG_DIR = Path.home() / ".mcplex"
    LOCAL_CONFIG_DIR = Path(".mcplex")

    def __init__(
        self,
        global_config: Optional[Dict[str, Any]] = None,
        local_config: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize Config.

        Args:
            global_config: Global configuration dictionary.
            local_config: Local (project) configuration dictionary.
        """
        self._global_config = global_config or {}
        self._local_config = local_config or {}
        self._merged: Optional[McplexConfig] = None

    @classmethod
    def load(cls) -> "Config":
        """
        Load configuration from default locations.

        Returns:
            Config instance with loaded configuration.
        """
        global_config = cls._load_yaml(cls.GLOBAL_CONFIG_DIR / "config.yaml")
        local_config = cls._load_yaml(cls._find_local_config())

        return cls(global_config=global_config, local_config=local_config)

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """Load a single configuration file, ignoring the default locations."""
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        return cls(local_config=cls._load_yaml(path))

    @classmethod
    def _load_yaml(cls, path: Optional[Path]) -> Dict[str, Any]:
        """Load YAML file if it exists."""
        if path is None or not path.exists():
            return {}

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except Exception as e:
            raise ConfigError(f"Failed to load config from {path}: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return data

    @classmethod
    def _find_local_config(cls) -> Optional[Path]:
        """Find the local config file by walking up the directory tree."""
        current = Path.cwd()
        while current != current.parent:
            config_path = current / cls.LOCAL_CONFIG_DIR / "config.yaml"
            if config_path.exists():
                return config_path
            current = current.parent
        return None

    def get_merged_config(self) -> Dict[str, Any]:
        """Get the merged configuration as a dictionary."""
        return self._deep_merge(self._global_config.copy(), self._local_config)

    @property
    def merged(self) -> McplexConfig:
        """Get the validated merged configuration."""
        if self._merged is None:
            try:
                self._merged = McplexConfig(**self.get_merged_config())
            except ValidationError as e:
                raise ConfigError(f"Invalid configuration: {e}")
        return self._merged

    # ── Servers ───────────────────────────────────────────────────────────

    @property
    def servers(self) -> Dict[str, MCPServerEntry]:
        return self.merged.mcp.servers

    def enabled_servers(self) -> List[str]:
        return [name for name, entry in self.servers.items() if entry.enabled]

    def auto_connect_servers(self) -> List[str]:
        return [name for name, entry in self.servers.items() if entry.enabled and entry.auto_connect]

    def server_config(self, name: str) -> ServerConfig:
        """
        Build the launch config for a named server.

        ``${VAR}`` references in ``args`` and ``env`` values are expanded
        here, so a missing secret is reported when the server is used, not
        when the file is read.

        Raises:
            ConfigError: Unknown server or unset environment variable.
        """
        entry = self.servers.get(name)
        if entry is None:
            known = ", ".join(sorted(self.servers)) or "none"
            raise ConfigError(f"Unknown MCP server: {name} (configured: {known})")

        try:
            args = [expand_env_refs(arg) for arg in entry.args]
            env = {key: expand_env_refs(value) for key, value in entry.env.items()}
        except ConfigError as e:
            raise ConfigError(f"MCP server '{name}': {e}")

        working_dir = os.path.expanduser(entry.working_dir) if entry.working_dir else None
        return ServerConfig(command=entry.command, args=args, env=env, working_dir=working_dir)

    # ── Persistence ───────────────────────────────────────────────────────

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    @classmethod
    def create_default_global(cls) -> Path:
        """Create default global configuration file."""
        config_dir = cls.GLOBAL_CONFIG_DIR
        config_file = config_dir / "config.yaml"

        if config_file.exists():
            return config_file

        config_dir.mkdir(parents=True, exist_ok=True)

        default_config = {
            "mcp": {
                "request_timeout": 30.0,
                "tool_timeout": 60.0,
                "shutdown_grace": 5.0,
                "servers": {
                    "git": {
                        "command": "uvx",
                        "args": ["mcp-server-git", "--repository", "."],
                        "description": "Git repository tools",
                        "auto_connect": True,
                    },
                    "github": {
                        "command": "npx",
                        "args": ["-y", "@modelcontextprotocol/server-github"],
                        "env": {"GITHUB_PERSONAL_ACCESS_TOKEN": "${GITHUB_PERSONAL_ACCESS_TOKEN}"},
                        "description": "GitHub API (needs a personal access token)",
                        "enabled": False,
                    },
                },
            },
            "logging": {"level": "WARNING"},
        }

        with open(config_file, "w") as f:
            yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)

        return config_file
