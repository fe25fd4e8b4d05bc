#!/usr/bin/python3

import click

from starkops.errors import StarkOpsError
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
    """Cancel the pending upgrade of one or more contracts."""
    click.echo(f"Connected to {network.name} network.")
    contracts = resolve_contract_references(contracts, registry_filepath, network.chain_id)
    transactor = network.transactor(signer=signer, autosign=auto)
    coordinator = UpgradeCoordinator(executor=transactor.executor, transactor=transactor)

    results = coordinator.run_batch(contracts, action=coordinator.cancel)

    failed = [name for name, result in results.items() if isinstance(result, StarkOpsError)]
    for name, result in results.items():
        if name not in failed:
            click.secho(f"    {name}: cancelled upgrade to {hex(result)}", fg="green")
    if failed:
        raise click.ClickException(f"Failed to cancel upgrade of {', '.join(failed)}.")


if __name__ == "__main__":
    cli()
