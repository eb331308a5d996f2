"""
MCPChat CLI - Chat with an LLM that can call MCP tools.

Run `mcpchat chat` to start an interactive session. Servers come from
.mcpchat/config.yaml or the MCP_SERVER_URL / TAVILY_API_KEY environment
variables.
"""

import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, List, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from mcpchat import __version__
from mcpchat.core.compression import CompressionError, compress_messages
from mcpchat.core.conversation import Conversation
from mcpchat.core.orchestrator import ConversationOrchestrator
from mcpchat.mcp.registry import ConnectionRegistry, RegistryError
from mcpchat.mcp.schema import ToolWithServer
from mcpchat.providers.base import ProviderError, ProviderFactory
from mcpchat.validation.config import Config, ConfigError

console = Console()
logger = logging.getLogger("mcpchat")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _load_config() -> Config:
    try:
        config = Config.load()
        config.merged  # validate eagerly
        return config
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(1)


def _make_registry(config: Config) -> ConnectionRegistry:
    return ConnectionRegistry(
        config.get_server_configs,
        request_timeout=config.merged.mcp.request_timeout,
    )


def _run(coro: Awaitable[Any]) -> Any:
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted[/dim]")
        sys.exit(130)


def _print_tools(tools: List[ToolWithServer], selected: Optional[List[str]] = None) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Tool", style="cyan")
    table.add_column("Server", style="dim")
    table.add_column("Description")

    for tool in tools:
        mark = "✓" if selected is not None and tool.name in selected else ""
        title = tool.annotations.title if tool.annotations and tool.annotations.title else tool.name
        table.add_row(mark, title, tool.server_name, (tool.description or "")[:80])

    console.print(table)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@click.group(invoke_without_command=True)
@click.option("--version", "-V", is_flag=True, help="Show version")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, version: bool, verbose: bool) -> None:
    """
    MCPChat - LLM chat with MCP tool calling.

    \b
    Examples:
        mcpchat servers             # Connect and show server status
        mcpchat tools               # List tools from every server
        mcpchat call search --args '{"query": "mcp"}'
        mcpchat chat --all-tools    # Interactive chat with every tool enabled
    """
    if version:
        console.print(f"MCPChat v{__version__}")
        ctx.exit()

    _setup_logging(verbose)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
def servers() -> None:
    """Connect to every configured server and show the result."""
    config = _load_config()

    async def run() -> None:
        registry = _make_registry(config)
        try:
            result = await registry.connect_all()
        finally:
            await registry.close_all()

        table = Table(show_header=True, header_style="bold")
        table.add_column("Server", style="cyan")
        table.add_column("Status")
        for name in result.connected:
            table.add_row(name, "[green]connected[/green]")
        for failed in result.failed:
            table.add_row(failed.name, f"[red]failed[/red] [dim]{failed.error}[/dim]")
        console.print(table)

    try:
        _run(run())
    except RegistryError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


@cli.command()
def tools() -> None:
    """List tools advertised by every connected server."""
    config = _load_config()

    async def run() -> None:
        registry = _make_registry(config)
        try:
            listing = await registry.list_tools()
        finally:
            await registry.close_all()

        _print_tools(listing.tools)
        for name, status in listing.server_statuses.items():
            if status.connected:
                console.print(f"[dim]{name}: {status.tool_count} tools[/dim]")
            else:
                console.print(f"[yellow]{name}: unavailable ({status.error})[/yellow]")

    try:
        _run(run())
    except RegistryError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("tool_name")
@click.option("--args", "args_json", default="{}", help="Tool arguments as a JSON object")
@click.option("--server", "server_name", default=None, help="Server that owns the tool")
def call(tool_name: str, args_json: str, server_name: Optional[str]) -> None:
    """Call a single tool and print its raw result."""
    try:
        arguments = json.loads(args_json)
    except ValueError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--args")
    if not isinstance(arguments, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--args")

    config = _load_config()

    async def run() -> Any:
        registry = _make_registry(config)
        try:
            if server_name:
                await registry.connect_all()
            return await registry.call_tool(tool_name, arguments, server_name=server_name)
        finally:
            await registry.close_all()

    try:
        result = _run(run())
    except RegistryError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print_json(json.dumps(result, ensure_ascii=False, default=str))


@cli.command()
@click.option("--model", "-m", default=None, help="Model, e.g. openrouter/mistralai/mistral-7b-instruct:free")
@click.option("--tool", "-t", "tool_names", multiple=True, help="Enable a tool (repeatable)")
@click.option("--all-tools", is_flag=True, help="Enable every discovered tool")
def chat(model: Optional[str], tool_names: Tuple[str, ...], all_tools: bool) -> None:
    """Start an interactive chat session."""
    config = _load_config()
    model = model or config.get_default_model()
    try:
        provider = ProviderFactory.create(model, config)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    _run(ChatSession(config, provider, list(tool_names), all_tools).run())


# ---------------------------------------------------------------------------
# Interactive session
# ---------------------------------------------------------------------------

class ChatSession:
    """REPL around a ConversationOrchestrator."""

    def __init__(self, config: Config, provider, tool_names: List[str], all_tools: bool):
        self.config = config
        self.provider = provider
        self.tool_names = tool_names
        self.all_tools = all_tools
        self.registry = _make_registry(config)
        self.conversation = Conversation()
        self.available: List[ToolWithServer] = []
        self._responses = 0
        agent = config.merged.agent
        self.orchestrator = ConversationOrchestrator(
            provider,
            self.registry,
            max_iterations=agent.max_tool_iterations,
            temperature=agent.temperature,
            system_prompt=agent.system_prompt,
        )

    async def run(self) -> None:
        console.print(Panel(
            f"[bold]MCPChat v{__version__}[/bold]\n"
            f"Model: {self.provider.provider_name}/{self.provider.model}\n\n"
            "[dim]/tools[/dim] list tools  [dim]/clear[/dim] reset  [dim]/exit[/dim] quit",
            border_style="blue",
        ))
        try:
            await self._discover_tools()
            await self._loop()
        finally:
            await self.registry.close_all()

    async def _discover_tools(self) -> None:
        if not self.tool_names and not self.all_tools:
            return
        try:
            with console.status("[bold blue]Connecting to MCP servers...[/bold blue]"):
                listing = await self.registry.list_tools()
        except RegistryError as e:
            console.print(f"[yellow]Tools unavailable: {e}[/yellow]")
            return

        for name, status in listing.server_statuses.items():
            if not status.connected:
                console.print(f"[yellow]{name}: unavailable ({status.error})[/yellow]")

        self.available = listing.tools
        if self.all_tools:
            selected = list(listing.tools)
        else:
            selected = [t for t in listing.tools if t.name in self.tool_names]
            missing = set(self.tool_names) - {t.name for t in selected}
            if missing:
                console.print(f"[yellow]Unknown tools: {', '.join(sorted(missing))}[/yellow]")
        self.orchestrator.select_tools(selected)
        console.print(f"[dim]{len(selected)} tool(s) enabled[/dim]")

    async def _loop(self) -> None:
        while True:
            try:
                text = await asyncio.to_thread(Prompt.ask, "[bold green]>[/bold green]")
            except EOFError:
                return
            text = text.strip()
            if not text:
                continue
            if text in ("/exit", "/quit"):
                return
            if text == "/clear":
                self.conversation.clear()
                console.print("[dim]Conversation cleared[/dim]")
                continue
            if text == "/tools":
                _print_tools(self.available, [t.name for t in self.orchestrator.selected_tools])
                continue

            try:
                with console.status("[bold blue]Thinking...[/bold blue]"):
                    result = await self.orchestrator.send(self.conversation, text)
            except ProviderError as e:
                console.print(f"[red]Error: {e}[/red]")
                continue

            console.print(Markdown(result.final.content))
            details = f"{result.iterations} call(s), {result.tool_calls} tool call(s)"
            if result.token_usage:
                details += f", {result.token_usage} tokens"
            if result.hit_iteration_limit:
                details += ", stopped at iteration limit"
            console.print(f"[dim]{details}[/dim]")

            self._responses += 1
            await self._maybe_compress()

    async def _maybe_compress(self) -> None:
        interval = self.config.merged.agent.compression_interval
        if interval <= 0 or self._responses % interval:
            return
        try:
            summary = await compress_messages(self.conversation.messages, self.provider)
        except CompressionError as e:
            logger.warning("Skipping compression: %s", e)
            return
        self.conversation.apply_summary(summary)
        console.print("[dim]Conversation history compressed[/dim]")


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
