"""
mcplex CLI - MCP server console.

Run `mcplex` to manage tool servers interactively, or use the
`servers`, `tools` and `call` subcommands for one-shot work.
Server launch commands come from .mcplex/config.yaml.
"""

import asyncio
import json
import logging
import shlex
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import click
from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory, InMemoryHistory
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from mcplex import __version__
from mcplex.cli.completer import McplexCompleter
from mcplex.mcp.client import MCPClient
from mcplex.mcp.router import MCPRouter
from mcplex.mcp.schema import ServerConfig, ServerConnectResult
from mcplex.mcp.transport import StdioTransport
from mcplex.tools.handler import ToolHandler
from mcplex.validation.config import Config, ConfigError

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(level: str, verbose: bool = False) -> None:
    """Route library logging through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def parse_tool_arguments(pairs: Sequence[str]) -> Dict[str, Any]:
    """
    Turn ``key=value`` pairs into a tool argument object.

    Values that parse as JSON (numbers, booleans, lists, objects) keep their
    type; anything else is passed as a string.

    Raises:
        ValueError: If a pair has no ``=`` or an empty key.
    """
    arguments: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected key=value, got {pair!r}")
        try:
            arguments[key] = json.loads(raw)
        except json.JSONDecodeError:
            arguments[key] = raw
    return arguments


def build_router(config: Config) -> MCPRouter:
    """Router whose clients use the configured timeouts and shutdown grace."""
    mcp = config.merged.mcp

    def client_factory(name: str, server_config: ServerConfig) -> MCPClient:
        return MCPClient(StdioTransport(server_config, name=name, grace_period=mcp.shutdown_grace))

    return MCPRouter(
        client_factory=client_factory,
        request_timeout=mcp.request_timeout,
        tool_timeout=mcp.tool_timeout,
    )


def print_connect_result(result: ServerConnectResult) -> None:
    if result.success:
        info = f": {result.server_info}" if result.server_info else ""
        console.print(f"[green]✓ {result.server_name} connected{info}[/green]")
        console.print(f"  [dim]Tools: {', '.join(result.tools) or '(none)'}[/dim]")
    else:
        console.print(f"[red]✗ {result.server_name}: {result.error}[/red]")


async def connect_servers(router: MCPRouter, config: Config, names: Iterable[str]) -> List[ServerConnectResult]:
    """Add each named server to the router, printing one line per outcome."""
    results = []
    for name in names:
        try:
            server_config = config.server_config(name)
        except ConfigError as e:
            result = ServerConnectResult(success=False, server_name=name, error=str(e))
        else:
            with console.status(f"[bold blue]Connecting to {name}...[/bold blue]", spinner="dots"):
                result = await router.add_server(name, server_config)
        print_connect_result(result)
        results.append(result)
    return results


class McplexREPL:
    """
    Interactive console for MCP servers.

    Holds one router for the whole session: servers connected here stay
    connected until /mcp disconnect or exit, when every server is stopped.
    """

    def __init__(self, config: Config, router: Optional[MCPRouter] = None):
        self.config = config
        self.router = router or build_router(config)
        self.tool_handler = ToolHandler(router=self.router)
        self.running = True
        self._ctrlc_count = 0

    def _create_session(self) -> PromptSession:
        history_dir = Config.GLOBAL_CONFIG_DIR
        history = FileHistory(str(history_dir / "input_history")) if history_dir.exists() else InMemoryHistory()
        completer = McplexCompleter(
            server_names_fn=lambda: list(self.config.servers),
            tool_names_fn=lambda: self.router.tool_names,
        )
        return PromptSession(history=history, completer=completer)

    def _print_banner(self):
        console.print(f"[bold blue]mcplex[/bold blue] [cyan]v{__version__}[/cyan]")
        console.print("  [dim]Type /help for commands. /exit to quit.[/dim]")
        console.print()

    def _print_help(self):
        help_text = """
[bold]Commands:[/bold]
  /help, /?                    Show this help
  /mcp status                  Connected servers and their tools
  /mcp list                    Configured servers
  /mcp connect <name>          Connect a configured server
  /mcp disconnect <name>       Disconnect a server
  /mcp tools                   Tools with their parameters
  /mcp call <tool> [k=v ...]   Call a tool (values may be JSON)
  /exit, /quit, /q             Disconnect everything and exit

[bold]Examples:[/bold]
  > /mcp connect git
  > /mcp call git_status repo_path=.
  > /mcp call search_repositories query="mcp server" perPage=5
"""
        console.print(Panel(help_text.strip(), title="mcplex Help", border_style="blue"))

    # ── /mcp subcommands ──────────────────────────────────────────────────

    async def _show_status(self):
        servers = self.router.connected_servers
        if not servers:
            console.print("[dim]No MCP servers connected. Use /mcp list to see configured servers.[/dim]")
            return

        console.print("[bold]Connected MCP servers:[/bold]")
        for name in servers:
            client = self.router.get_client(name)
            info = client.server_info.label() if client and client.server_info else ""
            console.print(f"  [green]✓[/green] {name} [dim]{info}[/dim]")

        tools = await self.router.list_all_tools()
        if tools:
            console.print()
            console.print(f"[bold]Available tools ({len(tools)}):[/bold]")
            for tool in tools:
                description = (tool.description or "(no description)")[:60]
                console.print(f"  [cyan]{tool.name}[/cyan] - {description}")

    def _list_servers(self):
        servers = self.config.servers
        if not servers:
            console.print("[dim]No servers configured. Add them to .mcplex/config.yaml:[/dim]")
            console.print("[dim]  mcp:[/dim]")
            console.print("[dim]    servers:[/dim]")
            console.print("[dim]      git:[/dim]")
            console.print('[dim]        command: "uvx"[/dim]')
            console.print('[dim]        args: ["mcp-server-git"][/dim]')
            return

        connected = set(self.router.connected_servers)
        table = Table(show_header=True, header_style="bold", border_style="blue")
        table.add_column("Server", style="cyan")
        table.add_column("Status")
        table.add_column("Description", style="dim")
        for name, entry in servers.items():
            if name in connected:
                status = "[green]connected[/green]"
            elif not entry.enabled:
                status = "[dim]disabled[/dim]"
            else:
                status = "disconnected"
            table.add_row(name, status, entry.description or "")
        console.print(table)
        console.print("[dim]Use /mcp connect <name> to connect a server[/dim]")

    async def _connect(self, name: str):
        if not name:
            console.print("[yellow]Usage: /mcp connect <name>[/yellow]")
            console.print(f"[dim]Configured: {', '.join(self.config.servers) or 'none'}[/dim]")
            return
        if name in self.router.connected_servers:
            console.print(f"[yellow]Server '{name}' is already connected.[/yellow]")
            return
        await connect_servers(self.router, self.config, [name])

    async def _disconnect(self, name: str):
        if not name:
            console.print("[yellow]Usage: /mcp disconnect <name>[/yellow]")
            return
        if await self.router.disconnect(name):
            console.print(f"[green]✓ Server '{name}' disconnected.[/green]")
        else:
            console.print(f"[yellow]Server '{name}' is not connected.[/yellow]")

    async def _list_tools(self):
        tools = await self.router.list_all_tools()
        if not tools:
            console.print("[dim]No tools available. Use /mcp connect <name> first.[/dim]")
            return

        for index, tool in enumerate(tools, 1):
            owner = self.router.owner_of(tool.name)
            console.print(f"[bold]{index}. {tool.name}[/bold] [dim]({owner})[/dim]")
            if tool.description:
                console.print(f"   {tool.description}")
            schema = tool.inputSchema or {}
            properties = schema.get("properties") or {}
            required = set(schema.get("required") or [])
            for param, spec in properties.items():
                param_type = spec.get("type", "any") if isinstance(spec, dict) else "any"
                marker = " [yellow](required)[/yellow]" if param in required else ""
                console.print(f"   [dim]- {param}: {param_type}[/dim]{marker}")

    async def _call(self, args: str):
        try:
            parts = shlex.split(args)
        except ValueError as e:
            console.print(f"[red]Cannot parse arguments: {e}[/red]")
            return
        if not parts:
            console.print("[yellow]Usage: /mcp call <tool> [key=value ...][/yellow]")
            return
        try:
            arguments = parse_tool_arguments(parts[1:])
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            return

        with console.status(f"[bold blue]Running {parts[0]}...[/bold blue]", spinner="dots"):
            block = await self.tool_handler.execute_tool_result({"name": parts[0], "input": arguments})
        style = "red" if block.is_error else "white"
        console.print(Panel(Text(block.content), title=parts[0], border_style=style))

    async def _handle_mcp(self, args: str):
        sub, _, rest = args.strip().partition(" ")
        sub = sub.lower()
        rest = rest.strip()

        if sub in ("", "help"):
            self._print_help()
        elif sub == "status":
            await self._show_status()
        elif sub == "list":
            self._list_servers()
        elif sub == "connect":
            await self._connect(rest)
        elif sub == "disconnect":
            await self._disconnect(rest)
        elif sub == "tools":
            await self._list_tools()
        elif sub == "call":
            await self._call(rest)
        else:
            console.print(f"[yellow]Unknown subcommand: {sub}[/yellow]")
            console.print("[dim]Type /help for available commands[/dim]")

    async def _handle_command(self, cmd: str) -> bool:
        """Handle a slash command. Returns True if should continue."""
        command, _, args = cmd.partition(" ")
        command = command.lower()

        if command in ("/exit", "/quit", "/q"):
            self.running = False
            return False

        elif command in ("/help", "/?"):
            self._print_help()

        elif command == "/mcp":
            await self._handle_mcp(args)

        else:
            console.print(f"[yellow]Unknown command: {command}[/yellow]")
            console.print("[dim]Type /help for available commands[/dim]")

        return True

    # ── Main loop ─────────────────────────────────────────────────────────

    async def run(self):
        """Run the interactive console until /exit, then stop every server."""
        self._print_banner()
        session = self._create_session()

        try:
            auto = self.config.auto_connect_servers()
            if auto:
                await connect_servers(self.router, self.config, auto)
                console.print()

            while self.running:
                try:
                    user_input = (await session.prompt_async("> ")).strip()
                    self._ctrlc_count = 0

                    if not user_input:
                        continue

                    if user_input.startswith("/"):
                        if not await self._handle_command(user_input):
                            break
                        continue

                    console.print("[dim]Commands start with '/'. Type /help for the list.[/dim]")

                except EOFError:
                    break
                except KeyboardInterrupt:
                    self._ctrlc_count += 1
                    if self._ctrlc_count >= 2:
                        break
                    console.print("[dim]Press Ctrl+C again to exit, or type a command.[/dim]")
                except Exception as e:
                    logger.debug("Command failed", exc_info=True)
                    console.print(f"[red]Error: {e}[/red]")
        finally:
            with console.status("[dim]Stopping MCP servers...[/dim]"):
                await self.router.disconnect_all()
            console.print("[dim]Bye.[/dim]")


# ── One-shot commands ─────────────────────────────────────────────────────


def _load_config(config_path: Optional[Path]) -> Config:
    try:
        config = Config.from_file(config_path) if config_path else Config.load()
        config.merged  # validate now, not on first use
    except ConfigError as e:
        console.print(f"[red]Config error: {e}[/red]")
        sys.exit(1)
    return config


async def _run_tools(config: Config, names: Sequence[str]) -> int:
    async with build_router(config) as router:
        results = await connect_servers(router, config, names or config.enabled_servers())
        tools = await ToolHandler(router=router).get_available_tools()
        if not tools:
            console.print("[dim]No tools available.[/dim]")
            return 0 if any(r.success for r in results) else 1

        table = Table(title=f"Tools ({len(tools)})", show_lines=False, border_style="blue")
        table.add_column("Tool", style="bold cyan")
        table.add_column("Server", style="dim")
        table.add_column("Description")
        for tool in tools:
            table.add_row(tool.name, router.owner_of(tool.name) or "", tool.description or "")
        console.print(table)
        return 0


async def _run_call(config: Config, tool: str, arguments: Dict[str, Any], names: Sequence[str]) -> int:
    async with build_router(config) as router:
        await connect_servers(router, config, names or config.enabled_servers())
        block = await ToolHandler(router=router).execute_tool_result({"name": tool, "input": arguments})
        console.print(block.content)
        return 1 if block.is_error else 0


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.option("--verbose", is_flag=True, help="Debug logging (wire traffic, server stderr)")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Use this config file instead of ~/.mcplex and .mcplex",
)
@click.pass_context
def cli(ctx: click.Context, version: bool, verbose: bool, config_path: Optional[Path]) -> None:
    """
    mcplex - run and route MCP tool servers.

    Run without a subcommand to start the interactive console.

    \b
    Examples:
        mcplex                              # Interactive console
        mcplex servers                      # Configured servers
        mcplex tools git                    # Tools of one server
        mcplex call git_status repo_path=.  # One tool call
    """
    if version:
        console.print(f"mcplex v{__version__}")
        ctx.exit()

    config = _load_config(config_path)
    setup_logging(config.merged.logging.level, verbose)
    ctx.obj = config

    if ctx.invoked_subcommand is None:
        asyncio.run(McplexREPL(config).run())


@cli.command()
@click.pass_obj
def servers(config: Config) -> None:
    """List configured MCP servers."""
    if not config.servers:
        console.print("[dim]No servers configured.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", border_style="blue")
    table.add_column("Server", style="cyan")
    table.add_column("Command")
    table.add_column("Enabled")
    table.add_column("Auto-connect")
    for name, entry in config.servers.items():
        table.add_row(
            name,
            " ".join([entry.command] + entry.args),
            "yes" if entry.enabled else "no",
            "yes" if entry.auto_connect else "no",
        )
    console.print(table)


@cli.command()
@click.argument("names", nargs=-1)
@click.pass_obj
def tools(config: Config, names: tuple) -> None:
    """Connect servers (default: all enabled) and list their tools."""
    sys.exit(asyncio.run(_run_tools(config, names)))


@cli.command()
@click.argument("tool")
@click.argument("arguments", nargs=-1)
@click.option("--server", "-s", "server_names", multiple=True, help="Server to connect (repeatable)")
@click.pass_obj
def call(config: Config, tool: str, arguments: tuple, server_names: tuple) -> None:
    """Call TOOL with key=value ARGUMENTS and print its text result."""
    try:
        parsed = parse_tool_arguments(arguments)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="ARGUMENTS")
    sys.exit(asyncio.run(_run_call(config, tool, parsed, server_names)))


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
