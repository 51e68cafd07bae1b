from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from typing import Any

import click
from loguru import logger

from flapburn.core.config import get_wallet, load_config
from flapburn.core.constants.base import DEFAULT_SUBSCRIBE_SHARES
from flapburn.core.constants.chains import TARGET_CHAIN_ID
from flapburn.core.position.models import PositionView
from flapburn.core.position.scheduler import PollingScheduler
from flapburn.core.position.store import PositionStore
from flapburn.core.transactions.orchestrator import (
    OperationResult,
    TransactionOrchestrator,
)
from flapburn.core.transactions.state import ClaimKind
from flapburn.core.utils.referral import inviter_from_url, referral_link
from flapburn.core.utils.units import format_native, parse_token_amount
from flapburn.core.wallet import (
    LocalWalletSession,
    WalletSession,
    WatchOnlyWalletSession,
)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _view_to_dict(view: PositionView | None) -> dict[str, Any] | None:
    if view is None:
        return None
    effective = asdict(view.effective)
    return {
        "account": view.onchain.account,
        "chain_id": view.onchain.chain_id,
        "effective": effective,
        "effective_formatted": {
            name: format_native(value)
            for name, value in effective.items()
            if isinstance(value, int)
        },
        "onchain": asdict(view.onchain),
        "offchain": (
            view.offchain.model_dump(by_alias=True) if view.offchain else None
        ),
        "refreshed_at": view.refreshed_at,
    }


def _result_to_dict(result: OperationResult) -> dict[str, Any]:
    return {"ok": result.ok, "result": asdict(result)}


def _session(obj: dict[str, Any]) -> WalletSession:
    chain_id = obj.get("chain_id") or TARGET_CHAIN_ID
    if obj.get("address"):
        return WatchOnlyWalletSession(obj["address"], chain_id)

    wallet = get_wallet(obj.get("wallet_label"))
    if wallet is None:
        raise click.ClickException(
            "No wallet configured; pass --address or add one under 'wallets'"
        )
    if wallet.get("private_key"):
        return LocalWalletSession(wallet["private_key"], chain_id)
    if wallet.get("address"):
        return WatchOnlyWalletSession(wallet["address"], chain_id)
    raise click.ClickException(f"Wallet {wallet.get('label')!r} has no address")


async def _with_store(
    session: WalletSession, fn: Callable[[PositionStore], Awaitable[Any]]
) -> Any:
    store = PositionStore(session)
    try:
        await store.refresh()
        return await fn(store)
    finally:
        await store.close()


def _run_operation(
    obj: dict[str, Any],
    operation: Callable[[TransactionOrchestrator], Awaitable[OperationResult]],
    *,
    ref: str | None = None,
) -> None:
    session = _session(obj)

    async def _go(store: PositionStore) -> OperationResult:
        orchestrator = TransactionOrchestrator(session, store)
        orchestrator.url_inviter = inviter_from_url(ref)
        return await operation(orchestrator)

    _echo_json(_result_to_dict(asyncio.run(_with_store(session, _go))))


@click.group(name="flapburn", help="Track and act on a burn / dividend position.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to config.json (defaults to FLAPBURN_CONFIG_PATH or ./config.json).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
@click.option("--wallet", "wallet_label", default=None, help="Wallet label from config.")
@click.option("--address", default=None, help="Watch an address without a signer.")
@click.option("--chain-id", type=int, default=TARGET_CHAIN_ID, show_default=True)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    log_level: str,
    wallet_label: str | None,
    address: str | None,
    chain_id: int,
) -> None:
    logger.remove()
    logger.add(sys.stderr, level=str(log_level).upper())
    if config_path:
        try:
            load_config(config_path, require_exists=True)
        except FileNotFoundError as exc:
            raise click.ClickException(str(exc)) from exc
    ctx.obj = {"wallet_label": wallet_label, "address": address, "chain_id": chain_id}


@cli.command(name="status", help="Read and reconcile the position once.")
@click.pass_obj
def status_cmd(obj: dict[str, Any]) -> None:
    session = _session(obj)

    async def _view(store: PositionStore) -> PositionView | None:
        return store.view

    view = asyncio.run(_with_store(session, _view))
    if view is None:
        _echo_json({"ok": False, "error": "refresh_failed"})
        return
    _echo_json({"ok": True, "result": _view_to_dict(view)})


@cli.command(name="watch", help="Poll the position and print every refresh.")
@click.option("--interval", type=float, default=None, help="Seconds between polls.")
@click.option(
    "--iterations", type=int, default=0, show_default=True, help="0 = until interrupted."
)
@click.pass_obj
def watch_cmd(obj: dict[str, Any], interval: float | None, iterations: int) -> None:
    session = _session(obj)

    async def _watch() -> None:
        store = PositionStore(session)
        store.subscribe(
            lambda view: _echo_json({"ok": True, "result": _view_to_dict(view)})
        )
        done = asyncio.Event()
        ticks = 0

        async def _tick() -> None:
            nonlocal ticks
            await store.refresh()
            ticks += 1
            if iterations and ticks >= iterations:
                done.set()

        try:
            async with PollingScheduler(_tick, interval):
                await done.wait()
        finally:
            await store.close()

    asyncio.run(_watch())


@cli.command(name="quote", help="Check a burn amount against the protocol minimum.")
@click.argument("amount")
@click.pass_obj
def quote_cmd(obj: dict[str, Any], amount: str) -> None:
    session = _session(obj)
    amount_wei = parse_token_amount(amount)

    async def _quote(store: PositionStore) -> dict[str, Any]:
        orchestrator = TransactionOrchestrator(session, store)
        check = orchestrator.check_burn_value(amount_wei)
        return {
            "amount": amount_wei,
            "valid": check.valid,
            "burn_value": check.burn_value,
            "burn_value_formatted": format_native(check.burn_value),
            "min_burn_value": check.min_burn_value,
            "min_tokens": check.min_tokens,
            "message": check.message,
            "approval_needed": orchestrator.approval_needed(amount_wei),
        }

    _echo_json({"ok": True, "result": asyncio.run(_with_store(session, _quote))})


@cli.command(name="approve", help="Approve the burn contract, then burn AMOUNT.")
@click.argument("amount")
@click.option("--ref", default=None, help="Referral URL or ?ref= query string.")
@click.pass_obj
def approve_cmd(obj: dict[str, Any], amount: str, ref: str | None) -> None:
    amount_wei = parse_token_amount(amount)
    _run_operation(obj, lambda o: o.approve(amount_wei), ref=ref)


@cli.command(name="burn", help="Burn AMOUNT tokens (approving first if needed).")
@click.argument("amount")
@click.option("--inviter", default=None, help="Inviter address to bind.")
@click.option("--ref", default=None, help="Referral URL or ?ref= query string.")
@click.pass_obj
def burn_cmd(
    obj: dict[str, Any], amount: str, inviter: str | None, ref: str | None
) -> None:
    amount_wei = parse_token_amount(amount)
    _run_operation(
        obj, lambda o: o.burn(amount_wei, manual_inviter=inviter), ref=ref
    )


@cli.command(name="claim", help="Claim a dividend or NFT.")
@click.argument(
    "kind",
    type=click.Choice([k.value for k in ClaimKind], case_sensitive=False),
)
@click.pass_obj
def claim_cmd(obj: dict[str, Any], kind: str) -> None:
    _run_operation(obj, lambda o: o.claim(ClaimKind(kind.upper())))


@cli.command(name="subscribe", help="Subscribe to NFT shares at the current price.")
@click.option("--shares", type=int, default=DEFAULT_SUBSCRIBE_SHARES, show_default=True)
@click.option("--ref", default=None, help="Referral URL or ?ref= query string.")
@click.pass_obj
def subscribe_cmd(obj: dict[str, Any], shares: int, ref: str | None) -> None:
    _run_operation(obj, lambda o: o.subscribe(shares=shares), ref=ref)


@cli.command(name="referral-link", help="Print the referral link for the wallet.")
@click.argument("base_url")
@click.pass_obj
def referral_link_cmd(obj: dict[str, Any], base_url: str) -> None:
    session = _session(obj)
    try:
        link = referral_link(base_url, session.address or "")
    except ValueError as exc:
        _echo_json({"ok": False, "error": str(exc)})
        return
    _echo_json({"ok": True, "result": {"link": link}})


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
