#!/usr/bin/python3

import click

from starkops.errors import NoPendingUpgrade, NotReady, StarkOpsError
from starkops.options import (
    auto_option,
    contracts_option,
    network_option,
    registry_filepath_option,
    signer_option,
)
from starkops.registry import resolve_contract_references
from starkops.timelock import UpgradeCoordinator


@click.command()
@network_option
@signer_option
@auto_option
@registry_filepath_option
@contracts_option
def cli(network, signer, auto, registry_filepath, contracts):
    """Execute the ready upgrades of one or more contracts; others are skipped."""
    click.echo(f"Connected to {network.name} network.")
    contracts = resolve_contract_references(contracts, registry_filepath, network.chain_id)
    transactor = network.transactor(signer=signer, autosign=auto)
    coordinator = UpgradeCoordinator(executor=transactor.executor, transactor=transactor)

    results = coordinator.run_batch(contracts, action=coordinator.execute)

    failed = list()
    for name, result in results.items():
        if isinstance(result, NotReady):
            click.secho(f"    {name}: skipped, {result.remaining}s remaining", fg="yellow")
        elif isinstance(result, NoPendingUpgrade):
            click.secho(f"    {name}: skipped, nothing pending", fg="yellow")
        elif isinstance(result, StarkOpsError):
            click.secho(f"    {name}: {result}", fg="red")
            failed.append(name)
        else:
            click.secho(f"    {name}: upgraded to {hex(result)}", fg="green")

    if failed:
        raise click.ClickException(f"Failed to execute upgrade of {', '.join(failed)}.")


if __name__ == "__main__":
    cli()
