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


import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

scripts_dir_path = Path(__file__).parent.parent.resolve()  # containing directory
sys.path.insert(0, str(scripts_dir_path))

from ContractVerifier.verifierDataClasses import BuildRecord, CompiledContract, ContractLocator
from Shared import verifierUtils as Util

"""
This file is responsible for loading build records (Hardhat build-info files) and for finding the one that
compiled a requested contract.
"""

artifacts_logger = logging.getLogger("artifacts")


class ArtifactParseError(Util.VerifierUserInputError):
    pass


class ContractNotFoundError(Util.VerifierUserInputError):
    pass


def _bytecode_object(evm_entry: Dict[str, Any]) -> str:
    return Util.strip_hex_prefix(evm_entry.get("object") or "")


def parse_build_record(build_info: Dict[str, Any], file_name: str = "") -> BuildRecord:
    """
    Converts the JSON content of a build-info file into a BuildRecord
    @param build_info: the parsed JSON object
    @param file_name: the file the object was read from, for error messages
    @raise ArtifactParseError: if mandatory entries are missing or malformed
    """
    try:
        compiler_input = build_info["input"]
        sources = {source_name: entry["content"] for source_name, entry in compiler_input["sources"].items()}
        settings = compiler_input.get("settings") or {}
        solc_version = str(build_info["solcVersion"])
        solc_long_version = build_info.get("solcLongVersion")

        contracts = {}
        for source_name, source_contracts in build_info["output"].get("contracts", {}).items():
            for contract_name, data in source_contracts.items():
                evm = data.get("evm") or {}
                deployed = evm.get("deployedBytecode") or {}
                creation = evm.get("bytecode") or {}
                locator = ContractLocator(source_name, contract_name)
                contracts[locator] = CompiledContract(locator,
                                                      data.get("abi") or [],
                                                      _bytecode_object(deployed),
                                                      deployed.get("linkReferences") or {},
                                                      deployed.get("immutableReferences") or {},
                                                      creation.get("linkReferences") or {})
    except (KeyError, TypeError, AttributeError) as e:
        raise ArtifactParseError(f"Malformed build info {file_name}: missing or invalid entry {e}", e) from None

    return BuildRecord(str(build_info.get("id", "")), solc_version, solc_long_version, sources, settings, contracts,
                       file_name)


def load_build_record(store_location: Union[str, Path], file_name: str) -> BuildRecord:
    """
    Loads a single build-info file from the store. A file name without an extension gets the .json extension.
    """
    store_dir = _store_dir(store_location)
    name = file_name if Path(file_name).suffix else f"{file_name}{Util.JSON_EXT}"
    build_info_file = store_dir / name
    if not build_info_file.is_file():
        raise ArtifactParseError(f"Could not find a file at {build_info_file}")
    try:
        with build_info_file.open() as f:
            build_info = json.load(f)
    except (OSError, ValueError) as e:
        raise ArtifactParseError(f"Could not read build info {build_info_file}: {e}", e) from None
    if not isinstance(build_info, dict):
        raise ArtifactParseError(f"Malformed build info {build_info_file}: expected a JSON object")
    artifacts_logger.debug(f"Loaded build info {build_info_file}")
    return parse_build_record(build_info, str(build_info_file))


def load_all(store_location: Union[str, Path]) -> List[BuildRecord]:
    """
    Loads every build-info file in the store.
    Files are visited in sorted name order so that the first-match rule of find_containing() does not depend on
    the order in which the file system lists them.
    """
    store_dir = _store_dir(store_location)
    records = [load_build_record(store_dir, build_info_file.name)
               for build_info_file in sorted(store_dir.glob(f"*{Util.JSON_EXT}"))]
    artifacts_logger.debug(f"Loaded {len(records)} build records from {store_dir}")
    return records


def find_containing(records: Sequence[BuildRecord], contract_name: str) -> BuildRecord:
    """
    @return: the first record, in load order, that compiled a contract named `contract_name`
    @raise ContractNotFoundError: if no record compiled such a contract
    """
    for record in records:
        if record.has_contract_named(contract_name):
            artifacts_logger.debug(f"Contract {contract_name} found in {record}")
            return record
    raise ContractNotFoundError(f"Could not find a build info for contract {contract_name}")


def _store_dir(store_location: Union[str, Path]) -> Path:
    store_dir = Path(store_location)
    if not store_dir.is_dir():
        raise ArtifactParseError(f"Could not find a directory at {store_dir}")
    return store_dir
