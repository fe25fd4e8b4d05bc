#!/usr/bin/python3

from pathlib import Path

import click

from starkops.options import auto_option, network_option, plan_option, signer_option
from starkops.params import Deployer
from starkops.utils import plan_filepath


@click.command()
@network_option
@signer_option
@auto_option
@plan_option
@click.option(
    "--registry-filepath",
    "-r",
    help="Write the deployment registry here instead of the plan's artifacts path.",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
)
def cli(network, signer, auto, plan, registry_filepath):
    """Run a deployment plan; steps already in the registry are skipped."""
    click.echo(f"Connected to {network.name} network.")
    filepath = Path(plan) if plan.endswith((".yml", ".yaml")) else plan_filepath(plan)
    transactor = network.transactor(signer=signer, autosign=auto)
    deployer = Deployer.from_yaml(
        filepath=filepath,
        executor=transactor.executor,
        signer=transactor.get_signer(),
        chain_id=network.chain_id,
        autosign=auto,
        registry_filepath=registry_filepath,
    )

    result = deployer.run()

    click.secho("\nDeployment record", fg="green")
    for entry in result.record.entries():
        status = "" if entry.initialized else " (not initialized)"
        click.secho(f"    {entry.name} {hex(entry.address)}{status}", fg="cyan")
    for failure in result.failures.values():
        click.secho(f"    {failure.describe()}", fg="yellow" if failure.unconfirmed else "red")

    if not result.succeeded:
        raise click.ClickException(
            f"{len(result.failures)} step(s) did not complete; re-run to resume."
        )


if __name__ == "__main__":
    cli()
