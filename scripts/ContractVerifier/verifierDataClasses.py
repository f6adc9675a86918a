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


import copy
from dataclasses import dataclass, field
from enum import auto
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from Shared import verifierUtils as Util

# Link references as emitted by solc: source -> library -> list of {"start", "length"} byte ranges
LinkReferences = Dict[str, Dict[str, List[Dict[str, int]]]]
# Immutable references as emitted by solc: ast id -> list of {"start", "length"} byte ranges
ImmutableReferences = Dict[str, List[Dict[str, int]]]
# Resolved library links: source -> library -> address
LibraryLinks = Dict[str, Dict[str, str]]


@dataclass(frozen=True)
class ContractLocator:
    """
    Identifies a compiled contract inside a build record
    """
    source_name: str
    contract_name: str

    def fully_qualified_name(self) -> str:
        return f"{self.source_name}:{self.contract_name}"

    def __str__(self) -> str:
        return self.fully_qualified_name()


@dataclass(frozen=True)
class OptimizerSettings:
    enabled: bool
    runs: Optional[int]


class CompiledContract:
    def __init__(self, locator: ContractLocator, abi: List[Dict[str, Any]], deployed_bytecode: str,
                 link_references: LinkReferences, immutable_references: ImmutableReferences,
                 bytecode_link_references: Optional[LinkReferences] = None) -> None:
        self.locator = locator
        self.abi = abi
        # runtime bytecode object, hex without a 0x prefix. May contain __$...$__ library placeholders
        self.deployed_bytecode = deployed_bytecode
        self.link_references = link_references
        self.immutable_references = immutable_references
        # link references of the creation bytecode. Libraries used only by the constructor appear only here
        self.bytecode_link_references = bytecode_link_references if bytecode_link_references is not None \
            else link_references

    def __repr__(self) -> str:
        return f"CompiledContract({self.locator})"


class BuildRecord:
    """
    The output of a single compiler invocation: the compiler input (sources and settings) and the compiled contracts.
    The source mapping keeps the order of the compiler input, which some solc versions are sensitive to.
    A build record is never modified after it is loaded, and may be shared between concurrent verifications.
    """

    def __init__(self, build_id: str, solc_version: str, solc_long_version: Optional[str],
                 sources: Mapping[str, str], settings: Mapping[str, Any],
                 contracts: Mapping[ContractLocator, CompiledContract], file_name: str = "") -> None:
        self.build_id = build_id
        self.solc_version = solc_version
        self.solc_long_version = solc_long_version
        self.file_name = file_name
        self._sources = MappingProxyType(dict(sources))
        self._settings = copy.deepcopy(dict(settings))
        self._contracts = MappingProxyType(dict(contracts))

    @property
    def sources(self) -> Mapping[str, str]:
        return self._sources

    @property
    def settings(self) -> Dict[str, Any]:
        # a copy, so callers cannot change the record through it
        return copy.deepcopy(self._settings)

    @property
    def contracts(self) -> Mapping[ContractLocator, CompiledContract]:
        return self._contracts

    @property
    def optimizer(self) -> OptimizerSettings:
        optimizer = self._settings.get("optimizer", {})
        return OptimizerSettings(bool(optimizer.get("enabled", False)), optimizer.get("runs"))

    def source_names(self) -> List[str]:
        return list(self._sources.keys())

    def locators(self) -> List[ContractLocator]:
        return list(self._contracts.keys())

    def contract(self, locator: ContractLocator) -> Optional[CompiledContract]:
        return self._contracts.get(locator)

    def has_contract_named(self, contract_name: str) -> bool:
        return any(locator.contract_name == contract_name for locator in self._contracts)

    def locators_named(self, contract_name: str) -> List[ContractLocator]:
        return [locator for locator in self._contracts if locator.contract_name == contract_name]

    def __repr__(self) -> str:
        return f"BuildRecord({self.build_id or self.file_name}, solc {self.solc_version}, " \
               f"{len(self._sources)} sources, {len(self._contracts)} contracts)"


class TrimmedBuildRecord(BuildRecord):
    """
    A build record restricted to the import closure of `root_source`.
    Both the sources and the compiled contracts keep the relative order they had in the untrimmed record.
    """

    def __init__(self, original: BuildRecord, root_source: Optional[str], sources: Mapping[str, str],
                 contracts: Mapping[ContractLocator, CompiledContract],
                 settings: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(original.build_id, original.solc_version, original.solc_long_version, sources,
                         original.settings if settings is None else settings, contracts, original.file_name)
        self.original = original
        self.root_source = root_source

    def with_libraries(self, library_links: LibraryLinks) -> "TrimmedBuildRecord":
        """
        @return: a new trimmed record whose compiler settings link the given libraries
        """
        settings = self.settings
        if library_links:
            settings["libraries"] = {source: dict(libs) for source, libs in library_links.items()}
        return TrimmedBuildRecord(self.original, self.root_source, self.sources, self.contracts, settings)


@dataclass(frozen=True)
class DeployedBytecode:
    """
    The code stored at an address when it was fetched. Hex without the 0x prefix, lowercase.
    """
    address: str
    code: str
    inferred_solc_version: str
    metadata_section_length: int  # in bytes, including the two length bytes

    @property
    def executable_section(self) -> str:
        return self.code[:len(self.code) - self.metadata_section_length * 2]

    @property
    def metadata_section(self) -> str:
        return self.code[len(self.code) - self.metadata_section_length * 2:]

    def has_metadata(self) -> bool:
        return self.metadata_section_length > 0


@dataclass(frozen=True)
class ContractInformation:
    """
    The compiled contract that produced a deployed bytecode
    """
    locator: ContractLocator
    solc_version: str
    solc_long_version: Optional[str]
    compiled_contract: CompiledContract
    trimmed_record: TrimmedBuildRecord
    library_links: LibraryLinks = field(default_factory=dict)
    immutable_values: Dict[str, str] = field(default_factory=dict)

    @property
    def source_name(self) -> str:
        return self.locator.source_name

    @property
    def contract_name(self) -> str:
        return self.locator.contract_name

    @property
    def abi(self) -> List[Dict[str, Any]]:
        return self.compiled_contract.abi


@dataclass(frozen=True)
class VerificationRequest:
    contract_address: str
    source_code: Tuple[Tuple[str, str], ...]  # (file name, content) in compiler input order
    contract_name: str
    version: str
    args: str
    optimization: bool
    runs: Optional[int]
    compiler_type: str = "solidity"

    def as_dict(self) -> Dict[str, Any]:
        """
        :return: the JSON body the verification service expects
        """
        return {
            "contract_address": self.contract_address,
            "source_code": [{"file_name": file_name, "content": content} for file_name, content in self.source_code],
            "contract_name": self.contract_name,
            "version": self.version,
            "args": self.args,
            "optimization": self.optimization,
            "runs": self.runs,
            "compiler_type": self.compiler_type
        }

    def file_names(self) -> List[str]:
        return [file_name for file_name, _ in self.source_code]


class VerificationOutcome:
    """
    Closed set of results of a verification attempt: Success, Failure and Retryable
    """

    def is_success(self) -> bool:
        return False

    def is_retryable(self) -> bool:
        return False


@dataclass(frozen=True)
class Success(VerificationOutcome):
    url: str

    def is_success(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure(VerificationOutcome):
    reason: str


@dataclass(frozen=True)
class Retryable(VerificationOutcome):
    reason: str

    def is_retryable(self) -> bool:
        return True


class VerificationState(Util.NoValEnum):
    ATTEMPTING = auto()
    RETRY_WAIT = auto()
    SUCCEEDED = auto()
    FAILED_TERMINAL = auto()
