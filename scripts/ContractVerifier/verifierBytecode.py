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


import dataclasses
import logging
import re
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import cbor2

scripts_dir_path = Path(__file__).parent.parent.resolve()  # containing directory
sys.path.insert(0, str(scripts_dir_path))

from ContractVerifier.verifierDataClasses import CompiledContract, ContractInformation, ContractLocator, \
    DeployedBytecode, ImmutableReferences, LibraryLinks, LinkReferences, TrimmedBuildRecord
from ContractVerifier.verifierNetwork import NetworkProvider, NetworkProviderError
from Shared import verifierUtils as Util

"""
This file is responsible for finding the compiled contract that produced the code deployed at an address.

The deployed code and the compiled runtime bytecode differ in a few known places, so both are normalized before being
compared:
 - the metadata section at the end of the code (its hash depends on the sources, including comments)
 - the addresses of linked libraries, which are placeholders in the compiled bytecode
 - the values of immutable variables, which are zeros in the compiled bytecode
 - the address of a library itself, pushed by its call protection code, which is zero in the compiled bytecode
"""

bytecode_logger = logging.getLogger("bytecode")

METADATA_LENGTH_SIZE = 2  # in bytes
SOLC_VERSION_LENGTH = 3  # the solc entry of the metadata is major, minor, patch
METADATA_PRESENT_SOLC_NOT_FOUND_VERSION_RANGE = "0.4.7 - 0.5.8"
METADATA_ABSENT_VERSION_RANGE = "<0.4.7"
PUSH20_OPCODE_HEX = "73"
LIBRARY_CALL_PROTECTION_PLACEHOLDER = PUSH20_OPCODE_HEX + "0" * Util.ADDRESS_SIZE_BYTES * 2

# A byte range of a bytecode, as emitted by solc
SliceReference = Dict[str, int]


class BytecodeAbsentError(Util.VerifierUserInputError):
    """
    There is no code at the address yet. The node may not have indexed the deployment, so this may change
    """
    pass


class NoBytecodeMatchError(Util.VerifierUserInputError):
    pass


class LibraryLinkError(Util.VerifierUserInputError):
    pass


def get_metadata_section_length(code: bytes) -> int:
    """
    @param code: bytecode that may end with a CBOR encoded metadata section
    @return: the length in bytes of the metadata section, including the two bytes that store its length,
        or 0 if the code is too short to have one
    """
    if len(code) < METADATA_LENGTH_SIZE:
        return 0
    section_length = int.from_bytes(code[-METADATA_LENGTH_SIZE:], "big") + METADATA_LENGTH_SIZE
    if section_length > len(code):
        return 0
    return section_length


def infer_solc_version(code: bytes) -> Tuple[str, int]:
    """
    Reads the compiler version from the metadata section of the code.
    @return: the version (an exact version, or a range when the metadata does not state it) and the length of the
        metadata section. The length is 0 if there is no metadata section we could decode.
    """
    section_length = get_metadata_section_length(code)
    if section_length == 0:
        return METADATA_ABSENT_VERSION_RANGE, 0

    payload = code[-section_length:-METADATA_LENGTH_SIZE]
    try:
        metadata = cbor2.loads(payload)
    except (cbor2.CBORDecodeError, ValueError, TypeError, EOFError) as e:
        bytecode_logger.debug(f"Could not decode the metadata section: {e}")
        return METADATA_ABSENT_VERSION_RANGE, 0
    if not isinstance(metadata, dict):
        return METADATA_ABSENT_VERSION_RANGE, 0

    solc_version = metadata.get("solc")
    if isinstance(solc_version, bytes) and len(solc_version) == SOLC_VERSION_LENGTH:
        return ".".join(str(b) for b in solc_version), section_length
    return METADATA_PRESENT_SOLC_NOT_FOUND_VERSION_RANGE, section_length


def make_deployed_bytecode(address: str, code: str) -> DeployedBytecode:
    """
    @param address: the address the code was read from
    @param code: the code as a hex string, with or without the 0x prefix
    """
    hex_code = Util.strip_hex_prefix(code).lower()
    try:
        raw_code = bytes.fromhex(hex_code)
    except ValueError:
        raise NetworkProviderError(f"The code at {address} is not a valid hex string") from None
    solc_version, metadata_section_length = infer_solc_version(raw_code)
    return DeployedBytecode(address, hex_code, solc_version, metadata_section_length)


def fetch_deployed_bytecode(address: str, provider: NetworkProvider) -> DeployedBytecode:
    """
    Reads the code at `address`. Never retries: absence of code is reported, and it is up to the caller to decide
    whether to ask again.
    @raise BytecodeAbsentError: if there is no code at the address
    """
    code = provider.get_code(address)
    if code is None or Util.strip_hex_prefix(code) == "":
        raise BytecodeAbsentError(f"The address {address} has no bytecode. "
                                  f"Is the contract deployed to this network?")
    deployed = make_deployed_bytecode(address, code)
    bytecode_logger.debug(f"Fetched {len(deployed.code) // 2} bytes from {address}, "
                          f"inferred solc version {deployed.inferred_solc_version}")
    return deployed


def _read_slice(code: str, ref: SliceReference) -> str:
    return code[ref["start"] * 2:(ref["start"] + ref["length"]) * 2]


def zero_out_slices(code: str, slices: Iterable[SliceReference]) -> str:
    for ref in slices:
        start, length = ref["start"], ref["length"]
        code = code[:start * 2] + "0" * length * 2 + code[(start + length) * 2:]
    return code


def normalize_bytecode(code: str, reference_object: str, link_references: LinkReferences,
                       immutable_references: ImmutableReferences) -> Tuple[str, LibraryLinks, Dict[str, str]]:
    """
    Zeroes the parts of `code` that are expected to differ between the compiled and the deployed bytecode of the
    contract whose compiled runtime bytecode is `reference_object`.
    The values found in those parts are read before zeroing them, from the first occurrence of each reference.
    @return: the normalized code, the library addresses and the immutable values found in `code`
    """
    slices: List[SliceReference] = []

    library_links: LibraryLinks = {}
    for source_name, libraries in link_references.items():
        for library_name, refs in libraries.items():
            if not refs:
                continue
            library_links.setdefault(source_name, {})[library_name] = "0x" + _read_slice(code, refs[0])
            slices.extend(refs)

    immutable_values: Dict[str, str] = {}
    for ast_id, refs in immutable_references.items():
        if not refs:
            continue
        immutable_values[ast_id] = _read_slice(code, refs[0])
        slices.extend(refs)

    # The runtime code of a library starts by pushing its own address, which is zero at compile time
    if reference_object.startswith(LIBRARY_CALL_PROTECTION_PLACEHOLDER) and code.startswith(PUSH20_OPCODE_HEX):
        slices.append({"start": 1, "length": Util.ADDRESS_SIZE_BYTES})

    return zero_out_slices(code, slices), library_links, immutable_values


def measure_executable_section_length(bytecode_object: str) -> int:
    """
    @return: the length in hex characters of the bytecode object without its metadata section.
        Library placeholders are never part of the metadata section, so only the trailer has to be valid hex.
    """
    if len(bytecode_object) < METADATA_LENGTH_SIZE * 2:
        return len(bytecode_object)
    try:
        trailer = bytes.fromhex(bytecode_object[-METADATA_LENGTH_SIZE * 2:])
    except ValueError:
        return len(bytecode_object)
    section_length = int.from_bytes(trailer, "big") + METADATA_LENGTH_SIZE
    if section_length * 2 > len(bytecode_object):
        return len(bytecode_object)
    return len(bytecode_object) - section_length * 2


def compare_bytecode(deployed: DeployedBytecode, contract: CompiledContract) \
        -> Optional[Tuple[LibraryLinks, Dict[str, str]]]:
    """
    @return: the library addresses and immutable values read from the deployed code if it was produced by
        `contract`, None otherwise
    """
    reference_object = contract.deployed_bytecode.lower()
    if not reference_object:
        return None

    deployed_executable = deployed.executable_section
    if len(deployed_executable) != measure_executable_section_length(reference_object) and deployed.has_metadata():
        return None

    normalized_deployed, library_links, immutable_values = normalize_bytecode(
        deployed_executable, reference_object, contract.link_references, contract.immutable_references)
    normalized_reference, _, _ = normalize_bytecode(
        reference_object, reference_object, contract.link_references, contract.immutable_references)

    compared_length = len(deployed_executable)
    if normalized_deployed[:compared_length] == normalized_reference[:compared_length]:
        return library_links, immutable_values
    return None


def _version_key(version: str) -> Tuple[int, ...]:
    return tuple(int(part) for part in re.findall(r"\d+", version)[:3])


def version_satisfies(version: str, version_range: str) -> bool:
    """
    @param version: an exact version x.y.z
    @param version_range: an exact version, a range 'a.b.c - x.y.z', or an upper bound '<x.y.z'
    """
    if version_range.startswith("<"):
        return _version_key(version) < _version_key(version_range[1:])
    if " - " in version_range:
        low, high = version_range.split(" - ")
        return _version_key(low) <= _version_key(version) <= _version_key(high)
    return _version_key(version) == _version_key(version_range)


def _candidates(trimmed: TrimmedBuildRecord, contract_name: Optional[str]) -> List[ContractLocator]:
    locators = trimmed.locators() if contract_name is None else trimmed.locators_named(contract_name)
    if trimmed.root_source is not None:
        # the contract defined in the file named after it goes first
        locators.sort(key=lambda locator: locator.source_name != trimmed.root_source)
    return locators


def match(deployed: DeployedBytecode, trimmed: TrimmedBuildRecord,
          contract_name: Optional[str] = None) -> ContractInformation:
    """
    Finds the compiled contract of the trimmed record that produced the deployed code.
    @param contract_name: if given, only contracts with this name are considered
    @return: the first matching contract, trying the contract of the root source first and then the others in record
        order. Library links are the addresses found in the deployed code.
    @raise NoBytecodeMatchError: if no contract matches
    """
    # code without a metadata section carries no compiler version
    if deployed.has_metadata() and not version_satisfies(trimmed.solc_version, deployed.inferred_solc_version):
        raise NoBytecodeMatchError(f"The contract at {deployed.address} was compiled with solc "
                                   f"{deployed.inferred_solc_version}, but the build info of {contract_name} "
                                   f"uses solc {trimmed.solc_version}")

    candidates = _candidates(trimmed, contract_name)
    for locator in candidates:
        contract = trimmed.contract(locator)
        if contract is None:
            continue
        result = compare_bytecode(deployed, contract)
        if result is None:
            bytecode_logger.debug(f"{locator} does not match the code at {deployed.address}")
            continue
        library_links, immutable_values = result
        bytecode_logger.debug(f"{locator} matches the code at {deployed.address}")
        return ContractInformation(locator, trimmed.solc_version, trimmed.solc_long_version, contract,
                                   trimmed.with_libraries(library_links), library_links, immutable_values)

    raise NoBytecodeMatchError(f"The code at {deployed.address} does not match any of "
                               f"{', '.join(str(locator) for locator in candidates) or 'the compiled contracts'}")


def _library_locators(link_references: LinkReferences) -> List[ContractLocator]:
    return [ContractLocator(source_name, library_name)
            for source_name, libraries in link_references.items() for library_name in libraries]


def _lookup_library(name: str, all_libraries: List[ContractLocator], contract_name: str) -> ContractLocator:
    matching = [lib for lib in all_libraries if name in (lib.contract_name, lib.fully_qualified_name())]
    if not matching:
        if all_libraries:
            raise LibraryLinkError(f"You gave a link for the library {name}, which is not one of the libraries of "
                                   f"{contract_name}: {', '.join(str(lib) for lib in all_libraries)}")
        raise LibraryLinkError(f"You gave a link for the library {name}, "
                               f"but {contract_name} does not use any library")
    if len(matching) > 1:
        raise LibraryLinkError(f"The library name {name} is ambiguous for {contract_name}. Use one of the fully "
                               f"qualified names {', '.join(str(lib) for lib in matching)}")
    return matching[0]


def resolve_library_links(info: ContractInformation, libraries: Optional[Dict[str, str]] = None) \
        -> ContractInformation:
    """
    Merges the library addresses given by the user with the ones found in the deployed code.
    Libraries used only by the constructor cannot be found in the deployed code, and must be given by the user.
    @param libraries: library name or fully qualified name -> address
    @return: a new ContractInformation whose links, and the compiler settings of its trimmed record, contain every
        library of the contract with checksummed addresses
    @raise LibraryLinkError: if a given library is unknown or ambiguous, given twice, conflicts with the address found
        in the deployed code, or if the address of a library is missing
    """
    contract = info.compiled_contract
    all_libraries = _library_locators(contract.bytecode_link_references)
    for lib in _library_locators(contract.link_references):
        if lib not in all_libraries:
            all_libraries.append(lib)

    given: Dict[ContractLocator, str] = {}
    for name, address in (libraries or {}).items():
        if not Util.is_address(address):
            raise LibraryLinkError(f"You gave {address} as the address of the library {name}, "
                                   f"which is not a valid address")
        lib = _lookup_library(name, all_libraries, info.contract_name)
        if lib in given:
            raise LibraryLinkError(f"The library {lib} is linked more than once")
        given[lib] = Util.to_checksum_address(address)

    merged: LibraryLinks = {}
    for source_name, detected_libraries in info.library_links.items():
        for library_name, detected_address in detected_libraries.items():
            lib = ContractLocator(source_name, library_name)
            if lib in given and given[lib].lower() != detected_address.lower():
                raise LibraryLinkError(f"The address {given[lib]} you gave for the library {lib} differs from "
                                       f"the address {detected_address} found in the code of {info.contract_name}")
            merged.setdefault(source_name, {})[library_name] = Util.to_checksum_address(detected_address)
    for lib, address in given.items():
        merged.setdefault(lib.source_name, {})[lib.contract_name] = address

    missing = [lib for lib in all_libraries if lib.contract_name not in merged.get(lib.source_name, {})]
    if missing:
        raise LibraryLinkError(f"The following libraries of {info.contract_name} are not linked, "
                               f"give their addresses: {', '.join(str(lib) for lib in missing)}")

    bytecode_logger.debug(f"Library links of {info.locator}: {merged}")
    return dataclasses.replace(info, library_links=merged, trimmed_record=info.trimmed_record.with_libraries(merged))
