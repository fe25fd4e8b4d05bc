#!/usr/bin/python3

import click

from starkops.constants import STRK_TOKEN_ADDRESS
from starkops.options import auto_option, network_option, signer_option
from starkops.transfer import BalanceGuardedTransfer
from starkops.types import Felt, MinInt


@click.command()
@network_option
@signer_option
@auto_option
@click.option(
    "--token",
    "-t",
    help="Token contract address.",
    type=Felt(),
    default=hex(STRK_TOKEN_ADDRESS),
)
@click.option(
    "--recipient",
    "-r",
    help="Recipient address.",
    type=Felt(),
    required=True,
)
@click.option(
    "--amount",
    "-a",
    help="Amount in the token's smallest unit.",
    type=MinInt(0),
    required=True,
)
def cli(network, signer, auto, token, recipient, amount):
    """Transfer tokens from the signing account after checking its balance."""
    click.echo(f"Connected to {network.name} network.")
    transactor = network.transactor(signer=signer, autosign=auto)
    transfer = BalanceGuardedTransfer(transactor)

    click.echo(f"Transferring {amount} of {hex(token)} to {hex(recipient)}.")
    result = transfer.transfer(
        token=token, sender=transactor.address, recipient=recipient, amount=amount
    )

    click.echo(f"Sender balance: {result.sender_before} -> {result.sender_after}")
    click.echo(f"Recipient balance: {result.recipient_before} -> {result.recipient_after}")
    if not result.verified:
        raise click.ClickException(
            "Balances after the transfer do not match: " + "; ".join(result.anomalies)
        )
    click.secho("Transfer verified.", fg="green")


if __name__ == "__main__":
    cli()
