from pathlib import Path

import click

from starkops.types import Felt, MinInt, Network

network_option = click.option(
    "--network",
    "-n",
    help="Network name or path to a network YAML file.",
    type=Network(),
    required=True,
)

signer_option = click.option(
    "--signer",
    "-s",
    help="Signer factory as 'module:attribute'; defaults to the network's signer.",
    default=None,
)

auto_option = click.option(
    "--auto",
    help="Automatically sign transactions.",
    is_flag=True,
)

registry_filepath_option = click.option(
    "--registry-filepath",
    "-r",
    help="Deployment registry used to look up contract names.",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
)

contracts_option = click.option(
    "--contracts",
    "-c",
    help="Registry name or hex address of a contract; may be repeated.",
    multiple=True,
    required=True,
)

class_hash_option = click.option(
    "--class-hash",
    help="Class hash of the new implementation.",
    type=Felt(),
    required=True,
)

delay_option = click.option(
    "--delay",
    "-d",
    help="Upgrade delay in seconds.",
    type=MinInt(0),
    required=True,
)

plan_option = click.option(
    "--plan",
    "-p",
    help="Plan name or path to a plan YAML file.",
    required=True,
)
