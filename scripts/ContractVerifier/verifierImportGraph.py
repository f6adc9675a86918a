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


import logging
import posixpath
import sys
from functools import lru_cache
from pathlib import Path, PurePosixPath
from typing import AbstractSet, List, Optional, Set, Tuple

scripts_dir_path = Path(__file__).parent.parent.resolve()  # containing directory
sys.path.insert(0, str(scripts_dir_path))

from ContractVerifier.verifierDataClasses import BuildRecord, TrimmedBuildRecord
from ContractVerifier.verifierImportParser import parse_imports
from Shared import verifierUtils as Util

imports_logger = logging.getLogger("imports")

IMPORTS_CACHE_SIZE = 256


class SourceNotFoundError(Util.VerifierUserInputError):
    pass


class AmbiguousSourceError(Util.VerifierUserInputError):
    pass


def is_source_file_of(source_name: str, contract_name: str) -> bool:
    """
    @return: True if the file name of `source_name` is `contract_name` with a known source extension,
        e.g. 'contracts/vault/Vault.sol' for 'Vault'
    """
    posix_name = Util.as_posix(source_name)
    return any(posix_name == f"{contract_name}{ext}" or posix_name.endswith(f"/{contract_name}{ext}")
               for ext in Util.SOURCE_EXTENSIONS)


def resolve_source_path(contract_name: str, record: BuildRecord) -> str:
    """
    Finds the source file named after the contract. This is a guess: the compiler input keys sources by path, and we
    only know the contract name.
    @raise SourceNotFoundError: if no source is named after the contract
    @raise AmbiguousSourceError: if several sources are
    """
    candidates = [source_name for source_name in record.source_names() if is_source_file_of(source_name, contract_name)]
    if not candidates:
        raise SourceNotFoundError(f"Could not find source name for {contract_name}")
    if len(candidates) > 1:
        raise AmbiguousSourceError(f"Found several sources for {contract_name}: {', '.join(candidates)}")
    return candidates[0]


def get_absolute_source_path(imported_path: str, importing_source: str, record: BuildRecord) -> str:
    """
    Converts an import path, as written in `importing_source`, to a source name of the record.
    Paths that are keys of the record, directly or after resolving them against the directory of the importing
    source, are taken as is. Otherwise we fall back to guessing by the file name, like resolve_source_path().
    """
    imported_posix = Util.as_posix(imported_path)
    if imported_posix.startswith("./") or imported_posix.startswith("../"):
        candidate = posixpath.normpath(posixpath.join(posixpath.dirname(Util.as_posix(importing_source)),
                                                      imported_posix))
        if candidate in record.sources:
            return candidate
    elif imported_posix in record.sources:
        return imported_posix

    try:
        return resolve_source_path(PurePosixPath(imported_posix).stem, record)
    except SourceNotFoundError:
        raise SourceNotFoundError(f"Import of {imported_path} in {importing_source} "
                                  f"could not be resolved to a source of the build info") from None


@lru_cache(maxsize=IMPORTS_CACHE_SIZE)
def _imported_paths(source_name: str, source_content: str) -> Tuple[str, ...]:
    return tuple(directive.path for directive in parse_imports(source_name, source_content))


def closure(root: str, record: BuildRecord) -> Set[str]:
    """
    Returns the set of sources reachable from `root` via import directives, including `root` itself.
    Every source is parsed at most once, so cyclic imports terminate.
    """
    if root not in record.sources:
        raise SourceNotFoundError(f"Source {root} is not part of {record}")

    seen = {root}
    worklist = [root]
    while worklist:
        curr = worklist.pop()
        for imported_path in _imported_paths(curr, record.sources[curr]):
            imported_source = get_absolute_source_path(imported_path, curr, record)
            if imported_source not in seen:
                imports_logger.debug(f"{curr} imports {imported_source}")
                seen.add(imported_source)
                worklist.append(imported_source)

    return seen


def trim(record: BuildRecord, closure_set: AbstractSet[str], root_source: Optional[str] = None) \
        -> TrimmedBuildRecord:
    """
    Keeps only the sources in `closure_set`, and the contracts compiled from them.
    The order of the kept entries is their order in `record`, not the order of `closure_set`.
    """
    sources = {source_name: content for source_name, content in record.sources.items()
               if source_name in closure_set}
    contracts = {locator: contract for locator, contract in record.contracts.items()
                 if locator.source_name in closure_set}
    imports_logger.debug(f"Kept {len(sources)} of {len(record.sources)} sources of {record}")
    return TrimmedBuildRecord(record, root_source, sources, contracts)


def trimmed_build_record(contract_name: str, record: BuildRecord) -> TrimmedBuildRecord:
    """
    Trims the record to the sources the contract's file imports, avoiding submitting unrelated sources (e.g. mocks)
    that were compiled in the same compiler run.
    """
    root = resolve_source_path(contract_name, record)
    return trim(record, closure(root, record), root)

