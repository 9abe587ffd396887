#!/usr/bin/env python3
"""Thin wrapper to bridge a token from the command line and follow it to completion.

Signing uses ``OMNIBRIDGE_PRIVATE_KEY``; everything else is delegated to the
``omnibridge`` package.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import click

from omnibridge import BridgeError, BridgeOrchestrator, LocalAccountProvider, load_bridge_config
from omnibridge.constants import CHAINS, ETHEREUM_CHAIN_ID, PULSECHAIN_CHAIN_ID
from omnibridge.errors import IndexerError
from omnibridge.orchestrator import BridgeState
from omnibridge.progress import ProgressStep, format_amount

CHAIN_NAMES = {"ethereum": ETHEREUM_CHAIN_ID, "pulsechain": PULSECHAIN_CHAIN_ID}


async def _show_activity(orchestrator: BridgeOrchestrator) -> None:
    transactions = await orchestrator.fetch_activity()
    if not transactions:
        click.echo("No bridge transactions found.")
        return
    for tx in transactions:
        amount = format_amount(tx.amount, tx.token_decimals or 18)
        click.echo(
            f"{tx.created_at:%Y-%m-%d %H:%M} {tx.status:<9} {amount} {tx.token_symbol or tx.token_address} "
            f"{CHAINS[tx.source_chain_id].name if tx.source_chain_id in CHAINS else tx.source_chain_id} -> "
            f"{CHAINS[tx.target_chain_id].name if tx.target_chain_id in CHAINS else tx.target_chain_id} "
            f"({tx.source_tx_hash})"
        )


async def _bridge(
    orchestrator: BridgeOrchestrator,
    token_query: str,
    amount: str,
    from_chain_id: int,
    to_chain_id: int,
    receiver: str,
) -> None:
    catalog = await orchestrator.load_tokens()
    token = catalog.find(from_chain_id, token_query)
    if token is None:
        raise click.ClickException(f"Token {token_query!r} is not bridgeable from {CHAINS[from_chain_id].name}.")

    orchestrator.set_chains(from_chain_id, to_chain_id)
    orchestrator.select_token(token)
    orchestrator.set_amount(amount)
    try:
        estimate = await orchestrator.refresh_estimate()
    except IndexerError as exc:
        click.echo(f"Bridge estimate unavailable: {exc}")
    else:
        if estimate is not None:
            received = format_amount(int(estimate.estimated_amount), token.decimals)
            click.echo(f"Estimated to receive {received} {token.symbol} (fee {estimate.fee_percentage}%).")

    last_step: Optional[ProgressStep] = None

    def _on_state(state: BridgeState) -> None:
        nonlocal last_step
        step = state.progress()
        if step is not None and step != last_step:
            last_step = step
            click.echo(f"Bridge progress: {step.label}")
        if state.polling_error:
            click.echo(f"Status poll failed: {state.polling_error}")

    orchestrator.subscribe(_on_state)
    result = await orchestrator.submit_bridge(orchestrator.intent(receiver), log=click.echo)
    click.echo(f"Bridge transaction: {result.transaction_explorer or result.transaction_hash}")
    if result.tracking_warning:
        click.echo(f"Tracking unavailable: {result.tracking_warning}")
        return

    handle = orchestrator.tracker.handle
    if handle is not None:
        await handle.wait()
    final = orchestrator.state.bridge_transaction
    if final is not None:
        click.echo(f"Final status: {final.status}")
        if final.target_tx_hash and final.target_chain_id in CHAINS:
            click.echo(f"Destination transaction: {CHAINS[final.target_chain_id].tx_explorer_url(final.target_tx_hash)}")


@click.command()
@click.option("--token", help="Token symbol or address on the source chain")
@click.option("--amount", help="Human-readable amount, e.g. 1.5")
@click.option(
    "--from-chain",
    type=click.Choice(sorted(CHAIN_NAMES)),
    default="ethereum",
    show_default=True,
)
@click.option("--to-chain", type=click.Choice(sorted(CHAIN_NAMES)), default=None, help="Defaults to the other chain")
@click.option("--receiver", default=None, help="Destination address; defaults to the signing account")
@click.option("--activity", is_flag=True, default=False, help="List past bridge transactions and exit")
@click.option("--env-file", type=click.Path(dir_okay=False, path_type=Path), default=None)
def main(
    token: Optional[str],
    amount: Optional[str],
    from_chain: str,
    to_chain: Optional[str],
    receiver: Optional[str],
    activity: bool,
    env_file: Optional[Path],
) -> None:
    """Bridge tokens between Ethereum and PulseChain via the Omnibridge."""
    config, error = load_bridge_config(require_private_key=True, env_file=env_file)
    if error or config is None:
        raise click.ClickException(error or "Bridge configuration could not be loaded.")
    for warning in config.warnings:
        click.echo(f"Warning: {warning}")

    from_chain_id = CHAIN_NAMES[from_chain]
    to_chain_id = CHAIN_NAMES[to_chain] if to_chain else (
        PULSECHAIN_CHAIN_ID if from_chain_id == ETHEREUM_CHAIN_ID else ETHEREUM_CHAIN_ID
    )
    if not activity and (not token or not amount):
        raise click.UsageError("Pass --token and --amount, or --activity.")

    try:
        wallet = LocalAccountProvider(config.private_key or "", config.rpc_urls, from_chain_id)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    orchestrator = BridgeOrchestrator.from_config(config, wallet)

    async def run() -> None:
        try:
            if activity:
                await _show_activity(orchestrator)
            else:
                await _bridge(orchestrator, token or "", amount or "", from_chain_id, to_chain_id, receiver or wallet.address)
        finally:
            orchestrator.close()

    try:
        asyncio.run(run())
    except BridgeError as exc:
        raise click.ClickException(str(exc)) from exc


if __name__ == "__main__":
    main()
