#!/usr/bin/python3

import click

from starkops.errors import StarkOpsError
from starkops.options import contracts_option, network_option, registry_filepath_option
from starkops.registry import resolve_contract_references
from starkops.timelock import UpgradeCoordinator, UpgradeInfo, UpgradeState


def _format_status(info: UpgradeInfo, now: float) -> str:
    state = info.state(now)
    if state == UpgradeState.IDLE:
        return f"no pending upgrade (delay {info.delay_seconds}s)"
    message = f"{hex(info.pending_class_hash)} pending, ready at {info.ready_time}"
    if state == UpgradeState.READY:
        return f"{message} - READY"
    return f"{message} - {info.remaining(now)}s remaining"


@click.command()
@network_option
@registry_filepath_option
@contracts_option
def cli(network, registry_filepath, contracts):
    """Show the upgrade timelock status of one or more contracts."""
    contracts = resolve_contract_references(contracts, registry_filepath, network.chain_id)
    coordinator = UpgradeCoordinator(executor=network.executor())
    results = coordinator.run_batch(contracts, action=coordinator.get_status)

    now = coordinator.clock()
    for name, result in results.items():
        if isinstance(result, StarkOpsError):
            click.secho(f"    {name}: {result}", fg="red")
        else:
            click.secho(f"    {name}: {_format_status(result, now)}", fg="cyan")


if __name__ == "__main__":
    cli()
