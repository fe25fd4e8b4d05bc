import itertools
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Sequence

import requests

from starkops.constants import DEFAULT_DECLARE_TIMEOUT, DEFAULT_REQUEST_TIMEOUT
from starkops.errors import (
    EndpointTimeout,
    EndpointUnavailable,
    MalformedResponse,
    RemoteError,
    RpcError,
)


class Endpoint(ABC):
    """A single remote execution endpoint with its own timeout configuration."""

    def __init__(
        self,
        name: str,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        declare_timeout: float = DEFAULT_DECLARE_TIMEOUT,
    ):
        self.name = name
        self.timeout = timeout
        self.declare_timeout = declare_timeout

    def timeout_for(self, large_payload: bool = False) -> float:
        return self.declare_timeout if large_payload else self.timeout

    @abstractmethod
    def request(self, method: str, params: Dict[str, Any], timeout: float) -> Any:
        """
        Performs a single call and returns its result.
        Transport failures raise EndpointUnavailable, EndpointTimeout or
        MalformedResponse; a JSON-RPC error object raises RpcError.
        """
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name})"


class JsonRpcEndpoint(Endpoint):
    """Starknet JSON-RPC over HTTP."""

    def __init__(
        self,
        name: str,
        url: str,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        declare_timeout: float = DEFAULT_DECLARE_TIMEOUT,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(name=name, timeout=timeout, declare_timeout=declare_timeout)
        self.url = url
        self.headers = headers or dict()
        self._session = session or requests.Session()
        self._ids = itertools.count(1)

    def request(self, method: str, params: Dict[str, Any], timeout: float) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }
        try:
            response = self._session.post(
                self.url, json=payload, headers=self.headers, timeout=timeout
            )
        # Timeout must be checked first: ConnectTimeout is also a ConnectionError
        except requests.Timeout as e:
            raise EndpointTimeout(
                f"no answer within {timeout}s", endpoint=self.name, operation=method
            ) from e
        except requests.RequestException as e:
            raise EndpointUnavailable(str(e), endpoint=self.name, operation=method) from e

        if response.status_code != 200:
            raise EndpointUnavailable(
                f"HTTP {response.status_code}", endpoint=self.name, operation=method
            )

        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponse(
                "response is not JSON", endpoint=self.name, operation=method
            ) from e

        if not isinstance(body, dict):
            raise MalformedResponse(
                "response is not a JSON-RPC object", endpoint=self.name, operation=method
            )

        error = body.get("error")
        if error is not None:
            if not isinstance(error, dict) or "code" not in error:
                raise MalformedResponse(
                    f"malformed error object {error}", endpoint=self.name, operation=method
                )
            raise RpcError(
                code=error["code"],
                message=error.get("message", ""),
                data=error.get("data"),
                endpoint=self.name,
                operation=method,
            )

        if "result" not in body:
            raise MalformedResponse("response has no result", endpoint=self.name, operation=method)
        return body["result"]


class ProbeResult(NamedTuple):
    endpoint: Endpoint
    chain_id: Optional[int]
    error: Optional[RemoteError]

    @property
    def ok(self) -> bool:
        return self.error is None


class EndpointPool:
    """
    Ordered, immutable list of endpoints. Iteration always starts from the
    first endpoint; there is no shared cursor between operations.
    """

    def __init__(self, endpoints: Sequence[Endpoint]):
        if not endpoints:
            raise ValueError("Endpoint pool requires at least one endpoint.")
        names = [endpoint.name for endpoint in endpoints]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate endpoint names in pool: {names}")
        self._endpoints = tuple(endpoints)

    def __iter__(self) -> Iterator[Endpoint]:
        return iter(self._endpoints)

    def __len__(self) -> int:
        return len(self._endpoints)

    @property
    def names(self) -> List[str]:
        return [endpoint.name for endpoint in self._endpoints]

    @classmethod
    def from_config(cls, endpoints_config: List[Dict[str, Any]]) -> "EndpointPool":
        endpoints = list()
        for position, endpoint_config in enumerate(endpoints_config):
            if not isinstance(endpoint_config, dict) or not endpoint_config.get("url"):
                raise ValueError(f"Endpoint at position {position} has no 'url'.")
            endpoints.append(
                JsonRpcEndpoint(
                    name=endpoint_config.get("name", f"endpoint-{position}"),
                    url=endpoint_config["url"],
                    timeout=endpoint_config.get("timeout", DEFAULT_REQUEST_TIMEOUT),
                    declare_timeout=endpoint_config.get(
                        "declare_timeout", DEFAULT_DECLARE_TIMEOUT
                    ),
                    headers=endpoint_config.get("headers"),
                )
            )
        return cls(endpoints)

    def probe(self) -> List[ProbeResult]:
        """Asks every endpoint for its chain id."""
        results = list()
        for endpoint in self._endpoints:
            try:
                chain_id = endpoint.request("starknet_chainId", {}, timeout=endpoint.timeout)
                results.append(ProbeResult(endpoint, int(chain_id, 16), None))
            except RemoteError as e:
                results.append(ProbeResult(endpoint, None, e))
            except (TypeError, ValueError):
                error = MalformedResponse(
                    f"invalid chain id {chain_id!r}",
                    endpoint=endpoint.name,
                    operation="starknet_chainId",
                )
                results.append(ProbeResult(endpoint, None, error))
        return results
