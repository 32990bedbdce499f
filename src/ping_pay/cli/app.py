"""CLI for PingPay - operate the service and inspect its ledger from the terminal."""

from __future__ import annotations

import asyncio
import logging

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ping_pay.errors import PingPayError

app = typer.Typer(
    name="ping-pay",
    help="Send stablecoins to a chat handle.",
    no_args_is_help=True,
)
console = Console()


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"ping-pay {version('ping-pay')}")
        raise typer.Exit()


@app.callback()
def main(
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        "-l",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
        envvar="PING_PAY_LOG_LEVEL",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Send stablecoins to a chat handle."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _run(coro):
    """Run an async function synchronously."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_running():
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor() as pool:
                return pool.submit(asyncio.run, coro).result()
        return loop.run_until_complete(coro)
    except RuntimeError:
        return asyncio.run(coro)


def _call(method: str, *args, **kwargs):
    """Load the service, await ``service.<method>(...)``, and shut it down.

    Domain errors are printed and turned into exit code 1.
    """
    from ping_pay.service import PingPay

    async def _go():
        service = await PingPay.load()
        try:
            return await getattr(service, method)(*args, **kwargs)
        finally:
            await service.shutdown()

    try:
        return _run(_go())
    except PingPayError as e:
        console.print(f"[red]{e.kind}:[/red] {e.detail}")
        raise typer.Exit(1)


_STATUS_STYLE = {
    "pending": "yellow",
    "confirmed": "cyan",
    "claimed": "green",
    "failed": "red",
}


def _transfer_table(title: str, transfers: list[dict]) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="dim")
    table.add_column("To")
    table.add_column("Amount", justify="right")
    table.add_column("Status")
    table.add_column("Created", style="dim")
    for t in transfers:
        style = _STATUS_STYLE.get(t["status"], "white")
        table.add_row(
            t["id"][:8],
            f"@{t['recipientHandle']}",
            t["amount"],
            f"[{style}]{t['status']}[/{style}]",
            t["createdAt"][:19],
        )
    return table


# ------------------------------------------------------------------
# init / serve
# ------------------------------------------------------------------


@app.command()
def init(
    network: str = typer.Option("arbitrum-sepolia", "--network", "-n", help="Network to settle on"),
    rpc_url: str = typer.Option(None, "--rpc-url", help="RPC endpoint (defaults to ${RPC_URL})"),
    telegram: bool = typer.Option(False, "--telegram", help="Enable the Telegram bot (reads ${TELEGRAM_BOT_TOKEN})"),
    use_llm: bool = typer.Option(False, "--use-llm", help="Parse commands with an OpenAI model (reads ${OPENAI_API_KEY})"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing config"),
):
    """Write a starter .ping-pay/config.yaml in the current directory."""
    from ping_pay.chain.networks import get_network, list_network_names
    from ping_pay.config import (
        InterpreterConfig, NetworkConfig, PingPayConfig, TelegramConfig,
        get_data_dir, save_config,
    )

    try:
        get_network(network)
    except KeyError:
        console.print(f"[red]Unknown network '{network}'.[/red] Choose from: {', '.join(list_network_names())}")
        raise typer.Exit(1)

    config_path = get_data_dir() / "config.yaml"
    if config_path.exists() and not force:
        console.print(f"[yellow]{config_path} already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)

    config = PingPayConfig(
        network=NetworkConfig(name=network, rpc_url=rpc_url or "${RPC_URL}"),
        telegram=TelegramConfig(enabled=telegram, bot_token="${TELEGRAM_BOT_TOKEN}"),
        interpreter=InterpreterConfig(use_llm=use_llm, api_key="${OPENAI_API_KEY}"),
    )
    save_config(config, config_path)

    console.print(Panel(
        f"[bold green]Config written[/bold green] to [cyan]{config_path}[/cyan]\n\n"
        f"Network: {network}\n"
        f"Telegram bot: {'enabled' if telegram else 'disabled'}\n"
        f"AI command parsing: {'enabled' if use_llm else 'regex only'}\n\n"
        f"[dim]Run 'ping-pay serve' to start the API.[/dim]",
        title="PingPay",
    ))


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Host to bind to (config default 127.0.0.1)"),
    port: int = typer.Option(None, "--port", "-p", help="Port to serve on (config default 3001)"),
):
    """Run the HTTP API (and the Telegram bot, when enabled)."""
    from ping_pay.api.server import run_server
    from ping_pay.service import PingPay

    service = PingPay.from_data_dir()
    bind_host = host or service.config.server.host
    bind_port = port or service.config.server.port
    console.print(
        f"[bold green]PingPay API on http://{bind_host}:{bind_port}[/bold green] "
        f"[dim]({service.network.name})[/dim]"
    )
    run_server(service, host=bind_host, port=bind_port)


# ------------------------------------------------------------------
# wallet
# ------------------------------------------------------------------


wallet_app = typer.Typer(
    name="wallet",
    help="Inspect and provision custodial wallets.",
    no_args_is_help=True,
)
app.add_typer(wallet_app, name="wallet")


@wallet_app.command("show")
def wallet_show(handle: str = typer.Argument(help="Chat handle (with or without @)")):
    """Show the custodial wallet for a handle."""
    info = _call("get_wallet", handle)
    console.print(Panel(
        f"Address: [cyan]{info['address']}[/cyan]\n"
        f"Balance: [bold]{info['balance']}[/bold]",
        title=f"@{info['handle']}",
    ))


@wallet_app.command("create")
def wallet_create(handle: str = typer.Argument(help="Chat handle (with or without @)")):
    """Provision a custodial wallet for a handle (no-op if it exists)."""
    info = _call("create_wallet", handle)
    if info["isNew"]:
        console.print(f"[bold green]Wallet created[/bold green] for @{info['handle']}: [cyan]{info['address']}[/cyan]")
    else:
        console.print(f"[yellow]@{info['handle']} already has a wallet:[/yellow] [cyan]{info['address']}[/cyan]")


@app.command()
def balance(address: str = typer.Argument(help="Wallet address (0x...)")):
    """Show the token balance of any address."""
    info = _call("get_balance", address)
    console.print(f"[bold]{address}:[/bold] {info['balance']} [dim](token {info['tokenAddress']})[/dim]")


# ------------------------------------------------------------------
# transfers
# ------------------------------------------------------------------


transfers_app = typer.Typer(
    name="transfers",
    help="Inspect and maintain the transfer ledger.",
    no_args_is_help=True,
)
app.add_typer(transfers_app, name="transfers")


@transfers_app.command("history")
def transfers_history(sender: str = typer.Argument(help="Sender address (0x...) or handle")):
    """List transfers sent from an address or by a handle, newest first."""
    transfers = _call("list_transfers_by_sender", sender)
    if not transfers:
        console.print("[dim]No transfers yet.[/dim]")
        return
    console.print(_transfer_table(f"Transfers from {sender}", transfers))


@transfers_app.command("show")
def transfers_show(transfer_id: str = typer.Argument(help="Transfer ID")):
    """Show one transfer."""
    t = _call("get_transfer", transfer_id)
    style = _STATUS_STYLE.get(t["status"], "white")
    lines = [
        f"To: @{t['recipientHandle']} [dim]({t['recipientAddress']})[/dim]",
        f"Amount: [bold]{t['amount']}[/bold]",
        f"Status: [{style}]{t['status']}[/{style}]",
        f"Created: {t['createdAt']}",
    ]
    if t["senderHandle"] or t["senderAddress"]:
        lines.insert(0, f"From: {t['senderHandle'] or t['senderAddress']}")
    if t["txHash"]:
        lines.append(f"Tx: {t['explorerUrl']}")
    if t["claimedAt"]:
        lines.append(f"Claimed: {t['claimedAt']}")
    console.print(Panel("\n".join(lines), title=f"Transfer {t['id']}"))


@transfers_app.command("expire")
def transfers_expire(
    hours: float = typer.Option(24.0, "--hours", help="Fail transfers pending longer than this"),
):
    """Mark stale pending transfers as failed."""
    expired = _call("expire_stale", hours)
    if not expired:
        console.print("[dim]Nothing to expire.[/dim]")
        return
    console.print(_transfer_table(f"Expired {len(expired)} transfer(s)", expired))


# ------------------------------------------------------------------
# parse
# ------------------------------------------------------------------


@app.command()
def parse(command: str = typer.Argument(help='e.g. "send 10 usdc to @alice"')):
    """Parse a free-text send command without creating anything."""
    result = _call("parse_command", command)
    if not result["parsed"]:
        console.print(f"[yellow]{result['reason']}[/yellow]")
        raise typer.Exit(1)
    console.print(
        f"Send [bold]{result['amount']} {result['currency']}[/bold] to "
        f"[cyan]@{result['recipient']}[/cyan] on {result['network']}"
    )
