from pathlib import Path

import click
import yaml

from starkops.calldata import to_felt
from starkops.networks import NetworkConfig
from starkops.utils import network_filepath


class MinInt(click.ParamType):
    name = "minint"

    def __init__(self, min_value):
        self.min_value = min_value

    def convert(self, value, param, ctx):
        try:
            ivalue = int(value)
        except ValueError:
            self.fail(f"{value} is not a valid integer", param, ctx)
        if ivalue < self.min_value:
            self.fail(
                f"{value} is less than the minimum allowed value of {self.min_value}", param, ctx
            )
        return ivalue


class Felt(click.ParamType):
    name = "felt"

    def convert(self, value, param, ctx):
        if isinstance(value, int):
            return value
        try:
            return to_felt(value)
        except (TypeError, ValueError):
            self.fail(f"{value} is not a valid felt (hex or decimal)", param, ctx)


class Network(click.ParamType):
    """A network name from starkops/networks or the path of a network YAML file."""

    name = "network"

    def convert(self, value, param, ctx):
        if isinstance(value, NetworkConfig):
            return value
        try:
            filepath = Path(value) if value.endswith((".yml", ".yaml")) else network_filepath(value)
            return NetworkConfig.from_yaml(filepath)
        except (OSError, ValueError, yaml.YAMLError) as e:
            self.fail(f"Invalid network '{value}': {e}", param, ctx)
