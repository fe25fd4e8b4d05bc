#!/usr/bin/python3

import click

from starkops.calldata import encode_shortstring
from starkops.options import network_option


@click.command()
@network_option
def cli(network):
    """Probe every endpoint of a network and report its chain id."""
    expected_chain_id = encode_shortstring(network.chain_id)
    click.echo(f"Probing {len(network.pool)} endpoints of {network.name}...")

    working = 0
    for result in network.pool.probe():
        if not result.ok:
            click.secho(f"    {result.endpoint.name}: {result.error}", fg="red")
        elif result.chain_id != expected_chain_id:
            click.secho(
                f"    {result.endpoint.name}: wrong chain id {hex(result.chain_id)} "
                f"(expected {network.chain_id})",
                fg="yellow",
            )
        else:
            working += 1
            click.secho(f"    {result.endpoint.name}: OK", fg="green")

    if not working:
        raise click.ClickException(f"No working endpoint for {network.name}.")
    click.echo(f"{working}/{len(network.pool)} endpoints working.")


if __name__ == "__main__":
    cli()
