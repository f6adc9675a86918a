#     The Certora Prover
#     Copyright (C) 2025  Certora Ltd.
#
#     This program is free software: you can redistribute it and/or modify
#     it under the terms of the GNU General Public License as published by
#     the Free Software Foundation, version 3 of the License.
#
#     This program is distributed in the hope that it will be useful,
#     but WITHOUT ANY WARRANTY; without even the implied warranty of
#     MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
#     GNU General Public License for more details.
#
#     You should have received a copy of the GNU General Public License
#     along with this program.  If not, see <https://www.gnu.org/licenses/>.


import itertools
import logging
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List, Optional

import requests

scripts_dir_path = Path(__file__).parent.parent.resolve()  # containing directory
sys.path.insert(0, str(scripts_dir_path))

from Shared import verifierUtils as Util

rpc_logger = logging.getLogger("rpc")

Response = requests.models.Response


class NetworkProviderError(Exception):
    """
    The node could not be queried. This is not a statement about the contract, so it is never retried as one.
    """
    pass


class NetworkProvider(ABC):
    """
    Read access to the chain the contracts were deployed to
    """

    @abstractmethod
    def get_code(self, address: str) -> Optional[str]:
        """
        @param address: a 20-byte address with the 0x prefix
        @return: the code stored at the address as a 0x-prefixed hex string, or None if there is no code there
        @raise NetworkProviderError: if the node could not be queried
        """
        pass


class JsonRpcNetworkProvider(NetworkProvider):
    """
    Queries an Ethereum JSON-RPC endpoint over HTTP
    """
    _request_ids = itertools.count(1)

    def __init__(self, rpc_url: str, timeout: int = 30) -> None:
        self.rpc_url = rpc_url
        self.timeout = timeout

    def call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._request_ids), "method": method, "params": params}
        rpc_logger.debug(f"{method} {params} -> {self.rpc_url}")
        try:
            response = requests.post(self.rpc_url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise NetworkProviderError(f"Could not reach the node at {self.rpc_url}: {e}") from e

        if response.status_code != requests.codes.ok:
            raise NetworkProviderError(f"{method} to {self.rpc_url} failed with status code {response.status_code}")
        try:
            json_response = response.json()
        except ValueError as e:
            raise NetworkProviderError(f"Could not parse the response of {self.rpc_url} to {method}") from e

        if not isinstance(json_response, dict):
            raise NetworkProviderError(f"Unexpected response of {self.rpc_url} to {method}: {json_response}")
        if json_response.get("error"):
            raise NetworkProviderError(f"{method} failed: {json_response['error']}")
        return json_response.get("result")

    def get_code(self, address: str) -> Optional[str]:
        result = self.call("eth_getCode", [address, "latest"])
        if result is None or not isinstance(result, str):
            return None
        if Util.strip_hex_prefix(result) == "":
            return None
        return result

    def __repr__(self) -> str:
        return f"JsonRpcNetworkProvider({self.rpc_url})"
