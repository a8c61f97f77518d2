"""Main CLI application using Typer."""
import asyncio
import signal

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.progress import BarColumn, DownloadColumn, Progress, TextColumn
from rich.table import Table

from ..chat import ChatSession
from ..errors import ChatRelayError
from ..llm import OllamaProvider
from ..models import Conversation, LLMProviderType, Role
from .providers import configure_logging, get_credentials, get_manager, get_repository, get_settings

# Load environment variables
load_dotenv()

# Create Typer app
app = typer.Typer(
    name="chatrelay",
    help="Chat with local and cloud LLMs from one streaming interface",
    no_args_is_help=True,
    add_completion=True,
)

# Console for rich output
console = Console()

EXIT_COMMANDS = ("exit", "quit", "q")


@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Configure logging for every command."""
    configure_logging(verbose, console)


def _key_name(provider: LLMProviderType) -> str:
    if provider is LLMProviderType.OLLAMA:
        console.print("[red]Error: the local provider does not use an API key[/red]")
        raise typer.Exit(code=1)
    return get_settings().config_for(provider).api_key_name


@app.command()
def models():
    """List models from every enabled provider."""
    async def _models():
        settings = get_settings()
        enabled = settings.enabled_providers()
        if not enabled:
            console.print("[yellow]No providers enabled. Set an API key or CHATRELAY_OLLAMA_ENABLED.[/yellow]")
            return

        manager = get_manager(settings)
        try:
            console.print(f"[dim]Querying {', '.join(p.label for p in enabled)}...[/dim]")
            found = await manager.load_models(settings, [])
        finally:
            await manager.registry.close()

        if not found:
            console.print("[yellow]No models found[/yellow]")
            return

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Provider", style="green")
        table.add_column("Model")
        table.add_column("Display name", style="dim")
        for model in found:
            table.add_row(model.provider.label, model.name, model.display_name)
        console.print(table)

    asyncio.run(_models())


@app.command("model-set")
def model_set(
    name: str = typer.Argument(..., help="Model name as listed by 'chatrelay models'"),
    provider: LLMProviderType | None = typer.Option(
        None, "--provider", "-p", help="Provider, when more than one lists the name"
    ),
    display_name: str | None = typer.Option(None, "--display-name", help="Label shown instead of the name"),
    enabled: bool | None = typer.Option(None, "--enable/--disable", help="Offer or hide the model"),
    temperature: float | None = typer.Option(None, "--temperature", help="Sampling temperature override"),
    top_p: float | None = typer.Option(None, "--top-p", help="Nucleus sampling override"),
    max_tokens: int | None = typer.Option(None, "--max-tokens", help="Reply length override"),
    system_prompt: str | None = typer.Option(None, "--system-prompt", help="System prompt sent with every request"),
):
    """Edit a model's display name, availability or generation overrides."""
    changes = {
        field: value
        for field, value in {
            "display_name": display_name,
            "enabled": enabled,
            "temperature": temperature,
            "top_p": top_p,
            "max_tokens": max_tokens,
            "system_prompt": system_prompt,
        }.items()
        if value is not None
    }
    if not changes:
        console.print("[yellow]Nothing to change. See 'chatrelay model-set --help'.[/yellow]")
        raise typer.Exit(code=1)

    async def _model_set():
        repository = get_repository()
        try:
            await repository.connect()
        except ChatRelayError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)

        settings = get_settings()
        manager = get_manager(settings)
        session = ChatSession(repository, manager, default_settings=settings)
        try:
            get_settings(await session.load_settings())
            await session.load_models()
            match = next(
                (m for m in session.models if m.name == name and (provider is None or m.provider == provider)),
                None,
            )
            if match is None:
                console.print(f"[red]Error: model {name} not found[/red]")
                raise typer.Exit(code=1)
            await session.update_model(match, **changes)
        finally:
            await manager.registry.close()
            await repository.disconnect()

        console.print(f"[green]Updated {match.display_name} ({match.provider.label})[/green]")

    asyncio.run(_model_set())


@app.command()
def threads():
    """List stored conversations, most recent first."""
    async def _threads():
        repository = get_repository()
        try:
            await repository.connect()
            stored = await repository.fetch_threads()
        except ChatRelayError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)
        finally:
            await repository.disconnect()

        if not stored:
            console.print("[dim]No conversations yet[/dim]")
            return

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Title")
        table.add_column("Model", style="green")
        table.add_column("Messages", justify="right")
        table.add_column("Updated", style="dim")
        for thread in stored:
            table.add_row(
                thread.title,
                thread.model.display_name,
                str(len(thread.messages)),
                thread.updated_at.strftime("%Y-%m-%d %H:%M"),
            )
        console.print(table)

    asyncio.run(_threads())


@app.command("set-key")
def set_key(
    provider: LLMProviderType = typer.Argument(..., help="Cloud provider the key belongs to"),
    key: str = typer.Option(
        ..., "--key", "-k", prompt=True, hide_input=True, help="API key (prompted if omitted)"
    ),
):
    """Store an API key for a cloud provider."""
    name = _key_name(provider)
    try:
        get_credentials().save(key.strip(), name)
    except ChatRelayError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Saved {provider.label} API key[/green]")


@app.command("delete-key")
def delete_key(
    provider: LLMProviderType = typer.Argument(..., help="Cloud provider the key belongs to"),
):
    """Delete a stored API key."""
    name = _key_name(provider)
    try:
        deleted = get_credentials().delete(name)
    except ChatRelayError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)
    if deleted:
        console.print(f"[green]Deleted {provider.label} API key[/green]")
    else:
        console.print(f"[dim]No stored {provider.label} API key[/dim]")


@app.command()
def pull(
    name: str = typer.Argument(..., help="Model to download, e.g. llama3.2"),
):
    """Download a model to the local inference server."""
    async def _pull():
        settings = get_settings()
        async with OllamaProvider(base_url=settings.ollama.endpoint_url) as provider:
            with Progress(
                TextColumn("[bold cyan]{task.description}"),
                BarColumn(),
                DownloadColumn(),
                console=console,
            ) as progress:
                task_id = progress.add_task(f"Pulling {name}", total=None)
                try:
                    async for update in provider.pull_model(name):
                        status = update.get("status", "")
                        progress.update(
                            task_id,
                            description=status or f"Pulling {name}",
                            total=update.get("total"),
                            completed=update.get("completed", 0),
                        )
                except ChatRelayError as e:
                    console.print(f"[red]Error: {e}[/red]")
                    raise typer.Exit(code=1)
        console.print(f"[green]Pulled {name}[/green]")

    asyncio.run(_pull())


@app.command()
def chat(
    model: str = typer.Option(None, "--model", "-m", help="Model name (default: first available)"),
    provider: LLMProviderType = typer.Option(None, "--provider", "-p", help="Restrict --model to a provider"),
    resume: bool = typer.Option(False, "--resume", "-r", help="Continue the most recent conversation"),
):
    """Interactive streaming chat. Ctrl-C stops the current reply."""
    printed = 0

    def _on_change(thread: Conversation | None) -> None:
        nonlocal printed
        if thread is None or not thread.messages:
            return
        last = thread.messages[-1]
        if last.role is not Role.ASSISTANT:
            return
        if len(last.text) > printed:
            console.print(last.text[printed:], end="", markup=False, highlight=False)
            printed = len(last.text)

    async def _chat():
        nonlocal printed
        repository = get_repository()
        try:
            await repository.connect()
        except ChatRelayError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)

        settings = get_settings()
        manager = get_manager(settings)
        session = ChatSession(repository, manager, on_change=_on_change, default_settings=settings)
        loop = asyncio.get_running_loop()
        try:
            get_settings(await session.load_settings())
            await session.load_threads()
            available = await session.load_models()
            if not available:
                console.print("[red]Error: no models available. Run 'chatrelay models' to check providers.[/red]")
                raise typer.Exit(code=1)

            if model:
                match = next(
                    (m for m in available if m.name == model and (provider is None or m.provider == provider)),
                    None,
                )
                if match is None:
                    console.print(f"[red]Error: model {model} not found[/red]")
                    raise typer.Exit(code=1)
                session.selected_model = match
            elif not resume:
                session.select_default_model()

            if not resume or session.selected_thread is None:
                session.create_draft_thread()

            console.print(f"[bold cyan]chatrelay[/bold cyan] [dim]{session.selected_model.display_name}"
                          f" ({session.selected_model.provider.label})[/dim]")
            console.print("[dim]Type 'exit', 'quit', or 'q' to leave. Ctrl-C stops a reply.\n[/dim]")

            while True:
                try:
                    user_input = await asyncio.to_thread(console.input, "[bold yellow]You:[/bold yellow] ")
                except (KeyboardInterrupt, EOFError):
                    console.print("\n[dim]Goodbye![/dim]")
                    break

                if not user_input.strip():
                    continue
                if user_input.strip().lower() in EXIT_COMMANDS:
                    console.print("[dim]Goodbye![/dim]")
                    break

                printed = 0
                loop.add_signal_handler(signal.SIGINT, session.cancel_streaming_message)
                try:
                    await session.send_message(user_input)
                finally:
                    loop.remove_signal_handler(signal.SIGINT)
                console.print()

                if session.error_message:
                    console.print(f"[red]Error: {session.error_message}[/red]")
                console.print()
        finally:
            await manager.registry.close()
            await repository.disconnect()

    asyncio.run(_chat())


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
