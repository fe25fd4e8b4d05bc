import time
from pathlib import Path
from typing import Any, Callable, Collection, Dict, Optional

from starkops.calldata import encode_shortstring
from starkops.constants import (
    DEFAULT_ACCEPTED_STATES,
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    LOCAL_NETWORKS,
    TransactionStatus,
)
from starkops.endpoints import EndpointPool
from starkops.executor import ResilientExecutor, Signer
from starkops.params import Transactor
from starkops.utils import _load_yaml, expand_env, load_object


def is_local_network(name: str) -> bool:
    return name in LOCAL_NETWORKS


class NetworkConfig:
    """
    Everything needed to talk to one network: the endpoint pool, the chain id
    and the confirmation policy. Several instances can coexist.
    """

    def __init__(
        self,
        name: str,
        chain_id: str,
        pool: EndpointPool,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        accepted_states: Collection[TransactionStatus] = DEFAULT_ACCEPTED_STATES,
        signer: Optional[str] = None,
    ):
        self.name = name
        self.chain_id = chain_id
        self.pool = pool
        self.poll_interval = poll_interval
        self.confirmation_timeout = confirmation_timeout
        self.accepted_states = tuple(accepted_states)
        self.signer_reference = signer

    @property
    def chain_id_felt(self) -> int:
        return encode_shortstring(self.chain_id)

    @property
    def is_local(self) -> bool:
        return is_local_network(self.name)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "NetworkConfig":
        network = config.get("network")
        if not network:
            raise ValueError("network is not set in network file.")
        for field in ("name", "chain_id"):
            if not network.get(field):
                raise ValueError(f"network {field} is not set in network file.")

        endpoints = config.get("endpoints")
        if not endpoints:
            raise ValueError("Network file missing 'endpoints' field.")
        expanded = list()
        for position, endpoint in enumerate(endpoints):
            if not isinstance(endpoint, dict) or not endpoint.get("url"):
                raise ValueError(f"Endpoint at position {position} has no 'url'.")
            expanded.append(dict(endpoint, url=expand_env(endpoint["url"])))

        confirmation = config.get("confirmation") or dict()
        accepted_names = confirmation.get("accepted_states")
        if accepted_names:
            try:
                accepted_states = [TransactionStatus[state] for state in accepted_names]
            except KeyError as e:
                raise ValueError(f"Unknown accepted transaction status {e}.")
        else:
            accepted_states = DEFAULT_ACCEPTED_STATES
        for status in accepted_states:
            if status in (TransactionStatus.REVERTED, TransactionStatus.REJECTED):
                raise ValueError(f"{status.name} cannot be an accepted status.")

        return cls(
            name=network["name"],
            chain_id=network["chain_id"],
            pool=EndpointPool.from_config(expanded),
            poll_interval=confirmation.get("poll_interval", DEFAULT_POLL_INTERVAL),
            confirmation_timeout=confirmation.get("timeout", DEFAULT_CONFIRMATION_TIMEOUT),
            accepted_states=accepted_states,
            signer=config.get("signer"),
        )

    @classmethod
    def from_yaml(cls, filepath: Path) -> "NetworkConfig":
        return cls.from_config(_load_yaml(filepath))

    def executor(
        self,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> ResilientExecutor:
        return ResilientExecutor(
            pool=self.pool,
            chain_id=self.chain_id_felt,
            poll_interval=self.poll_interval,
            confirmation_timeout=self.confirmation_timeout,
            accepted_states=self.accepted_states,
            clock=clock,
            sleep=sleep,
        )

    def transactor(
        self,
        signer: Optional[str] = None,
        autosign: bool = False,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Transactor:
        return Transactor(
            executor=self.executor(clock=clock, sleep=sleep),
            signer=self.load_signer(signer),
            autosign=autosign,
        )

    def load_signer(self, reference: Optional[str] = None) -> Signer:
        """Builds the signer from a 'module:factory' reference."""
        reference = reference or self.signer_reference
        if not reference:
            raise ValueError(f"No signer configured for network '{self.name}'.")
        factory = load_object(reference)
        signer = factory(self)
        if not isinstance(signer, Signer):
            raise TypeError(f"'{reference}' did not produce a Signer.")
        return signer

    def __repr__(self) -> str:
        return f"NetworkConfig({self.name}, chain_id={self.chain_id}, endpoints={self.pool.names})"
