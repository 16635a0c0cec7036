"""CLI interface for socialab-studio."""

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from .assistant.attachments import LocalFile
from .assistant.models import (
    FilePart,
    ImageEditRequest,
    Message,
    PendingExternalEdit,
    TextPart,
    ToolInvocationPart,
)
from .assistant.surface import ChatSurface
from .assistant.tool_state import ToolInvocationState
from .assistant.transport import HttpChatTransport
from .config.logging import get_logger, setup_logging
from .config.settings import Settings, get_settings

app = typer.Typer(
    name="socialab-studio",
    help="Chat with the Socialab marketing assistant from the terminal.",
    rich_markup_mode="rich",
)

console = Console()
logger = get_logger(__name__)

HELP_TEXT = """[bold]Commands[/bold]
  [cyan]/attach PATH[/cyan]      Send an image file into the chat
  [cyan]/ref ID URL[/cyan]       Attach a gallery image to your next message
  [cyan]/clear[/cyan]            Remove the attached image
  [cyan]/new[/cyan]              Start a new chat
  [cyan]/help[/cyan]             Show this help
  [cyan]/quit[/cyan]             Leave"""

_STATE_STYLES = {
    ToolInvocationState.APPROVAL_REQUESTED: "yellow",
    ToolInvocationState.OUTPUT_AVAILABLE: "green",
    ToolInvocationState.OUTPUT_ERROR: "red",
    ToolInvocationState.DENIED: "red",
}


def render_tool_invocation(part: ToolInvocationPart) -> Text:
    """One-line summary of a tool call."""
    style = _STATE_STYLES.get(part.state, "cyan")
    line = Text.assemble(("⚙ ", "dim"), (part.tool_name, "bold"), " ", (part.state.value, style))
    if part.state == ToolInvocationState.OUTPUT_AVAILABLE and isinstance(part.output, dict):
        url = part.output.get("imageUrl") or part.output.get("url")
        if url:
            line.append(f"  {url}", style="dim")
    elif part.error_text:
        line.append(f"  {part.error_text}", style="red")
    return line


def render_message(msg: Message) -> RenderableType:
    """Render a message as a titled panel."""
    rows: list[RenderableType] = []
    for part in msg.parts:
        if isinstance(part, TextPart) and part.text:
            rows.append(Text(part.text))
        elif isinstance(part, FilePart):
            url = part.url if not part.url.startswith("data:") else "inline image"
            rows.append(Text(f"🖼  {part.name} ({url})", style="magenta"))
        elif isinstance(part, ToolInvocationPart):
            rows.append(render_tool_invocation(part))
    is_user = msg.role == "user"
    return Panel(
        Group(*rows) if rows else Text("…", style="dim"),
        title="[bold]You[/bold]" if is_user else "[bold cyan]Assistant[/bold cyan]",
        title_align="left",
        border_style="blue" if is_user else "cyan",
    )


class _Renderer:
    """Prints messages that are new or changed since the last call."""

    def __init__(self, surface: ChatSurface):
        self._surface = surface
        self._printed: dict[str, str] = {}

    def reset(self) -> None:
        self._printed.clear()

    def flush(self) -> None:
        view = self._surface.view()
        for msg in view.messages:
            digest = json.dumps(msg.to_wire(), sort_keys=True)
            if self._printed.get(msg.id) == digest:
                continue
            self._printed[msg.id] = digest
            console.print(render_message(msg))
        for notice in view.notices:
            style = "red" if notice.level.value == "error" else "yellow"
            console.print(f"[{style}]{notice.message}[/{style}]")
            self._surface.notices.dismiss(notice.id)


async def _resolve_approvals(surface: ChatSurface, renderer: _Renderer) -> None:
    """Ask for a decision on every pending approval until none remain."""
    while True:
        pending = surface.view().pending_approvals
        if not pending:
            return
        item = pending[0]
        args = json.dumps(item.input, ensure_ascii=False)
        console.print(Panel(args, title=f"[yellow]{item.tool_name}[/yellow] wants to run"))
        if Confirm.ask("Approve?", default=True, console=console):
            await surface.approve(item.approval_id)
        else:
            reason = Prompt.ask("Reason (optional)", default="", console=console)
            await surface.deny(item.approval_id, reason or None)
        renderer.flush()


async def _resolve_edits(
    surface: ChatSurface, requests: list[ImageEditRequest], renderer: _Renderer
) -> None:
    """Stand in for the image editor: ask for the edited image URL."""
    while requests:
        req = requests.pop(0)
        console.print(
            Panel(
                f"Prompt: {req.prompt or '-'}\nImage: {req.image_id or '-'}",
                title=f"[yellow]{req.tool_name}[/yellow] needs the editor",
            )
        )
        url = Prompt.ask("Edited image URL (blank to reject)", default="", console=console)
        if url:
            edit = PendingExternalEdit(
                tool_call_id=req.tool_call_id, result="approved", image_url=url
            )
        else:
            edit = PendingExternalEdit(tool_call_id=req.tool_call_id, result="rejected")
        await surface.receive_external_edit(edit)
        renderer.flush()


async def _handle_command(line: str, surface: ChatSurface, renderer: _Renderer) -> bool:
    """Run a slash command. Returns False when the user wants to leave."""
    cmd, _, rest = line.partition(" ")
    rest = rest.strip()
    if cmd in ("/quit", "/exit"):
        return False
    if cmd == "/help":
        console.print(Panel(HELP_TEXT, border_style="cyan"))
    elif cmd == "/attach":
        if not rest:
            console.print("[red]Usage:[/red] /attach PATH")
            return True
        try:
            file = LocalFile.from_path(Path(rest).expanduser())
        except OSError as e:
            console.print(f"[red]Cannot read file:[/red] {e}")
            return True
        resp = await surface.upload_file(file)
        if not resp["success"]:
            console.print(f"[red]{resp['error']}[/red]")
    elif cmd == "/ref":
        image_id, _, src = rest.partition(" ")
        resp = surface.attach_reference(image_id, src.strip())
        if resp["success"]:
            console.print(f"[green]Attached[/green] {image_id}")
        else:
            console.print(f"[red]{resp['error']}[/red]")
    elif cmd == "/clear":
        surface.clear_reference()
    elif cmd == "/new":
        resp = surface.new_chat()
        if not resp["success"]:
            console.print(f"[red]{resp['error']}[/red]")
            return True
        renderer.reset()
        console.print(f"[dim]New chat {resp['data']['chatId']}[/dim]")
    else:
        console.print(f"[red]Unknown command:[/red] {cmd} (try /help)")
    return True


async def _chat_loop(settings: Settings, brand_profile: dict | None) -> None:
    edit_requests: list[ImageEditRequest] = []
    transport = HttpChatTransport.from_settings(settings)
    surface = ChatSurface(
        transport,
        settings=settings,
        brand_profile=brand_profile,
        on_request_image_edit=edit_requests.append,
    )
    renderer = _Renderer(surface)
    try:
        while True:
            ref = surface.reference_image
            label = f"[bold]You[/bold] [dim](+{ref.id})[/dim]" if ref else "[bold]You[/bold]"
            line = Prompt.ask(label, default="", show_default=False, console=console).strip()
            if line.startswith("/"):
                if not await _handle_command(line, surface, renderer):
                    break
            elif line or ref:
                with console.status("[cyan]Thinking...[/cyan]"):
                    resp = await surface.send(line)
                if not resp["success"]:
                    logger.debug("Send failed: %s", resp["error"])
            else:
                continue
            renderer.flush()
            await _resolve_approvals(surface, renderer)
            await _resolve_edits(surface, edit_requests, renderer)
    finally:
        await transport.aclose()


def _load_brand_profile(path: Path | None) -> dict | None:
    if path is None:
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise typer.BadParameter(f"Cannot load brand profile: {e}") from e
    if not isinstance(data, dict):
        raise typer.BadParameter("Brand profile must be a JSON object")
    return data


@app.command()
def chat(
    brand: Path = typer.Option(None, "--brand", "-b", help="Brand profile JSON file"),
    model: str = typer.Option(None, "--model", "-m", help="Chat model to request"),
) -> None:
    """Start an interactive chat session."""
    try:
        settings = get_settings()
    except Exception as e:
        console.print(f"[red]Failed to load configuration:[/red] {e}")
        raise typer.Exit(1)
    if model:
        settings = settings.model_copy(update={"socialab_chat_model": model})
    profile = _load_brand_profile(brand)
    console.print(
        Panel(
            "[bold magenta]Socialab Studio[/bold magenta]\n"
            f"[dim]{settings.socialab_chat_endpoint}[/dim]",
            border_style="cyan",
        )
    )
    console.print("[dim]Type /help for commands.[/dim]")
    try:
        asyncio.run(_chat_loop(settings, profile))
    except KeyboardInterrupt:
        console.print("\n[bold cyan]Goodbye![/bold cyan]\n")
        raise typer.Exit(130)


@app.command()
def status() -> None:
    """Show configuration status."""
    console.print(Panel("[bold]Configuration Status[/bold]", border_style="blue"))
    try:
        settings = get_settings()
    except Exception as e:
        console.print(f"[red]Failed to load configuration:[/red] {e}")
        console.print("\n[yellow]Tip:[/yellow] Check the SOCIALAB_* variables in your .env file.")
        raise typer.Exit(1)

    table = Table(show_header=False, box=None)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("Chat endpoint", settings.socialab_chat_endpoint)
    table.add_row("API token", "set" if settings.socialab_api_token else "[dim]not set[/dim]")
    table.add_row("Chat model", settings.socialab_chat_model)
    table.add_row("Allowed models", ", ".join(settings.socialab_allowed_chat_models))
    table.add_row("Editor tools", ", ".join(settings.socialab_external_edit_tools))
    table.add_row("Auto-resume", "yes" if settings.socialab_auto_resume else "no")
    table.add_row("Log level", settings.log_level)
    console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    try:
        log_level = get_settings().log_level
    except Exception:
        # Use default log level if settings fail to load
        log_level = "INFO"
    setup_logging(level=log_level)
    app()


if __name__ == "__main__":
    main()
