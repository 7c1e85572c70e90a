"""
mcplex CLI Completer - prompt_toolkit completion for the console.

Provides real-time dropdown suggestions for slash commands, server names
and tool names.
"""

from typing import Callable, Iterable, List, Optional

from prompt_toolkit.completion import Completer, Completion

# (command, description) pairs for the dropdown
SLASH_COMMANDS = [
    ("/help", "Show help"),
    ("/?", "Show help"),
    ("/mcp status", "Connected servers and their tools"),
    ("/mcp list", "Configured servers"),
    ("/mcp connect", "Connect a configured server"),
    ("/mcp disconnect", "Disconnect a server"),
    ("/mcp tools", "Tools with their parameters"),
    ("/mcp call", "Call a tool (key=value arguments)"),
    ("/exit", "Exit mcplex"),
    ("/quit", "Exit mcplex"),
    ("/q", "Exit mcplex"),
]

SERVER_PREFIXES = ("/mcp connect ", "/mcp disconnect ")
TOOL_PREFIX = "/mcp call "


class McplexCompleter(Completer):
    """Completer for the mcplex console.

    Provides real-time dropdown suggestions:
    - Slash commands with descriptions when typing "/"
    - Server names after "/mcp connect " and "/mcp disconnect "
    - Tool names after "/mcp call "
    """

    def __init__(
        self,
        server_names_fn: Optional[Callable[[], Iterable[str]]] = None,
        tool_names_fn: Optional[Callable[[], Iterable[str]]] = None,
    ):
        self._server_names_fn = server_names_fn
        self._tool_names_fn = tool_names_fn

    def get_completions(self, document, complete_event):
        text = document.text_before_cursor

        # Only complete when starting with "/"
        if not text.startswith("/"):
            return

        for prefix in SERVER_PREFIXES:
            if text.startswith(prefix):
                yield from self._complete_names(text[len(prefix):], self._server_names_fn, "server")
                return

        if text.startswith(TOOL_PREFIX):
            partial = text[len(TOOL_PREFIX):]
            if " " not in partial:
                yield from self._complete_names(partial, self._tool_names_fn, "tool")
            return

        for cmd, description in SLASH_COMMANDS:
            if cmd.startswith(text):
                yield Completion(
                    cmd,
                    start_position=-len(text),
                    display_meta=description,
                )

    @staticmethod
    def _complete_names(prefix: str, names_fn: Optional[Callable[[], Iterable[str]]], meta: str):
        if names_fn is None:
            return
        seen: List[str] = []
        for name in names_fn():
            if name.startswith(prefix) and name not in seen:
                seen.append(name)
                yield Completion(name, start_position=-len(prefix), display_meta=meta)
