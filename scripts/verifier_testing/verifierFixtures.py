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


import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import cbor2

scripts_dir_path = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(scripts_dir_path))

from ContractVerifier.verifierArtifactIndex import parse_build_record
from ContractVerifier.verifierCloudIO import ServiceResponse, VerificationService
from ContractVerifier.verifierDataClasses import BuildRecord, VerificationRequest
from ContractVerifier.verifierNetwork import NetworkProvider

"""
Builders of build-info files and in-memory collaborators shared by the tests
"""

SOLC_VERSION = "0.8.9"
SOLC_LONG_VERSION = "0.8.9+commit.e5eed63a"

API_URL = "https://explorer.test/contract/verify"
BROWSER_URL = "https://explorer.test"

ADDRESS = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
LIBRARY_ADDRESS = "0xe7f1725e7734ce288f8367e1bb143e90bb3f0512"

EXECUTABLE = "6080604052348015600f57600080fd5b50603f80601d6000396000f3fe6080604052600080fd"


def metadata_section(solc: Optional[Tuple[int, int, int]] = (0, 8, 9), ipfs_byte: int = 0x11) -> str:
    """
    @return: a CBOR metadata section as solc appends it, hex encoded, including the two length bytes
    """
    metadata: Dict[str, Any] = {"ipfs": bytes([0x12, 0x20]) + bytes([ipfs_byte]) * 32}
    if solc is not None:
        metadata["solc"] = bytes(solc)
    payload = cbor2.dumps(metadata)
    return payload.hex() + len(payload).to_bytes(2, "big").hex()


def contract_entry(deployed_object: str, abi: Optional[List[Dict[str, Any]]] = None,
                   link_references: Optional[Dict[str, Any]] = None,
                   immutable_references: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "abi": abi or [],
        "evm": {
            "bytecode": {"object": "60806040" + deployed_object, "linkReferences": link_references or {}},
            "deployedBytecode": {"object": deployed_object,
                                 "linkReferences": link_references or {},
                                 "immutableReferences": immutable_references or {}}
        }
    }


def build_info(sources: Dict[str, str], contracts: Dict[str, Dict[str, Dict[str, Any]]],
               solc_version: str = SOLC_VERSION, solc_long_version: Optional[str] = SOLC_LONG_VERSION,
               optimizer: Optional[Dict[str, Any]] = None, build_id: str = "build") -> Dict[str, Any]:
    """
    @param sources: source name -> content, in compiler input order
    @param contracts: source name -> contract name -> output entry, see contract_entry()
    """
    info: Dict[str, Any] = {
        "id": build_id,
        "_format": "hh-sol-build-info-1",
        "solcVersion": solc_version,
        "input": {
            "language": "Solidity",
            "sources": {name: {"content": content} for name, content in sources.items()},
            "settings": {"optimizer": optimizer or {"enabled": True, "runs": 200},
                         "outputSelection": {"*": {"*": ["abi", "evm.bytecode", "evm.deployedBytecode"]}}}
        },
        "output": {"contracts": contracts, "sources": {}}
    }
    if solc_long_version is not None:
        info["solcLongVersion"] = solc_long_version
    return info


def build_record(sources: Dict[str, str], contracts: Dict[str, Dict[str, Dict[str, Any]]],
                 **kwargs: Any) -> BuildRecord:
    return parse_build_record(build_info(sources, contracts, **kwargs), "test.json")


# A imports B, C is unrelated. The compiler input lists them as B, C, A
ABC_SOURCES = {
    "contracts/B.sol": 'pragma solidity ^0.8.0;\n\ncontract B {\n    uint256 public value;\n}\n',
    "contracts/C.sol": 'pragma solidity ^0.8.0;\n\ncontract C {}\n',
    "contracts/A.sol": 'pragma solidity ^0.8.0;\n\nimport "./B.sol";\n\ncontract A is B {\n'
                       '    constructor(uint256 v) { value = v; }\n}\n',
}

A_CONSTRUCTOR_ABI = [{"type": "constructor", "stateMutability": "nonpayable",
                      "inputs": [{"name": "v", "type": "uint256", "internalType": "uint256"}]}]


def abc_record(a_object: str = EXECUTABLE + metadata_section(ipfs_byte=0x22)) -> BuildRecord:
    return build_record(ABC_SOURCES, {
        "contracts/B.sol": {"B": contract_entry("6080604052600080fd" + metadata_section(ipfs_byte=0x33))},
        "contracts/C.sol": {"C": contract_entry("60806040526001600255" + metadata_section(ipfs_byte=0x44))},
        "contracts/A.sol": {"A": contract_entry(a_object, abi=A_CONSTRUCTOR_ABI)},
    })


class FakeNetworkProvider(NetworkProvider):
    """
    Returns the given codes in order, one per call, repeating the last one
    """

    def __init__(self, codes: Iterable[Optional[str]]) -> None:
        self.codes = list(codes)
        self.calls: List[str] = []

    def get_code(self, address: str) -> Optional[str]:
        self.calls.append(address)
        return self.codes[min(len(self.calls), len(self.codes)) - 1]


class FakeVerificationService(VerificationService):
    """
    Records the requests and answers with the given responses in order, repeating the last one
    """

    def __init__(self, responses: Optional[Iterable[ServiceResponse]] = None) -> None:
        super().__init__(API_URL, BROWSER_URL)
        self.responses = list(responses) if responses is not None else [ServiceResponse(True, "Verified", 200)]
        self.requests: List[VerificationRequest] = []

    def post(self, request: VerificationRequest) -> ServiceResponse:
        self.requests.append(request)
        return self.responses[min(len(self.requests), len(self.responses)) - 1]


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
