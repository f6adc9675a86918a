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
import unittest
from itertools import combinations
from pathlib import Path

scripts_dir_path = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(scripts_dir_path))
sys.path.insert(0, str(Path(__file__).parent.resolve()))

from ContractVerifier import verifierImportGraph as ImportGraph
from ContractVerifier.verifierDataClasses import ContractLocator
from verifierFixtures import abc_record, build_record, contract_entry, EXECUTABLE


def record_of(sources: dict):
    return build_record(sources, {})


class TestImportGraph(unittest.TestCase):

    def test_resolve_source_path(self) -> None:
        record = record_of({"contracts/Vault.sol": "", "contracts/VaultMock.sol": "", "Token.sol": ""})
        self.assertEqual(ImportGraph.resolve_source_path("Vault", record), "contracts/Vault.sol")
        self.assertEqual(ImportGraph.resolve_source_path("Token", record), "Token.sol")
        with self.assertRaises(ImportGraph.SourceNotFoundError):
            ImportGraph.resolve_source_path("Pool", record)

    def test_resolve_source_path_ambiguous(self) -> None:
        record = record_of({"contracts/a/Vault.sol": "", "contracts/b/Vault.sol": ""})
        with self.assertRaises(ImportGraph.AmbiguousSourceError):
            ImportGraph.resolve_source_path("Vault", record)

    def test_relative_import_resolved_against_importer(self) -> None:
        record = record_of({"contracts/a/Math.sol": "", "contracts/b/Math.sol": "", "contracts/b/Pool.sol": ""})
        self.assertEqual(ImportGraph.get_absolute_source_path("./Math.sol", "contracts/b/Pool.sol", record),
                         "contracts/b/Math.sol")
        self.assertEqual(ImportGraph.get_absolute_source_path("../a/Math.sol", "contracts/b/Pool.sol", record),
                         "contracts/a/Math.sol")

    def test_import_falls_back_to_file_name(self) -> None:
        record = record_of({"node_modules/lib/contracts/Ownable.sol": "", "contracts/Pool.sol": ""})
        self.assertEqual(ImportGraph.get_absolute_source_path("lib/contracts/Ownable.sol", "contracts/Pool.sol",
                                                              record),
                         "node_modules/lib/contracts/Ownable.sol")
        with self.assertRaises(ImportGraph.SourceNotFoundError):
            ImportGraph.get_absolute_source_path("./Missing.sol", "contracts/Pool.sol", record)

    def test_closure_contains_root(self) -> None:
        record = record_of({"contracts/Lonely.sol": "contract Lonely {}"})
        self.assertEqual(ImportGraph.closure("contracts/Lonely.sol", record), {"contracts/Lonely.sol"})

    def test_closure_transitive(self) -> None:
        record = record_of({
            "contracts/A.sol": 'import "./B.sol";',
            "contracts/B.sol": 'import {C} from "./lib/C.sol";',
            "contracts/lib/C.sol": 'import "@oz/contracts/D.sol";',
            "@oz/contracts/D.sol": '',
            "contracts/E.sol": 'import "./A.sol";',
        })
        self.assertEqual(ImportGraph.closure("contracts/A.sol", record),
                         {"contracts/A.sol", "contracts/B.sol", "contracts/lib/C.sol", "@oz/contracts/D.sol"})

    def test_closure_cycle(self) -> None:
        record = record_of({"contracts/A.sol": 'import "./B.sol";', "contracts/B.sol": 'import "./A.sol";'})
        self.assertEqual(ImportGraph.closure("contracts/A.sol", record), {"contracts/A.sol", "contracts/B.sol"})

    def test_closure_self_import(self) -> None:
        record = record_of({"contracts/A.sol": 'import "./A.sol";'})
        self.assertEqual(ImportGraph.closure("contracts/A.sol", record), {"contracts/A.sol"})

    def test_closure_idempotent_within_cycle(self) -> None:
        record = record_of({
            "contracts/A.sol": 'import "./B.sol";',
            "contracts/B.sol": 'import "./C.sol";',
            "contracts/C.sol": 'import "./A.sol";',
            "contracts/D.sol": '',
        })
        closure = ImportGraph.closure("contracts/A.sol", record)
        for path in closure:
            self.assertEqual(ImportGraph.closure(path, record), closure)

    def test_closure_unknown_root(self) -> None:
        with self.assertRaises(ImportGraph.SourceNotFoundError):
            ImportGraph.closure("contracts/Missing.sol", record_of({"contracts/A.sol": ""}))

    def test_parsed_imports_cache_is_bounded(self) -> None:
        ImportGraph._imported_paths.cache_clear()
        record = abc_record()
        ImportGraph.closure("contracts/A.sol", record)
        ImportGraph.closure("contracts/A.sol", record)
        cache_info = ImportGraph._imported_paths.cache_info()
        self.assertEqual(cache_info.maxsize, ImportGraph.IMPORTS_CACHE_SIZE)
        self.assertEqual(cache_info.misses, 2)
        self.assertEqual(cache_info.hits, 2)

    def test_trim_preserves_original_order(self) -> None:
        names = [f"contracts/S{i}.sol" for i in range(5)]
        record = record_of({name: "" for name in names})
        for size in range(len(names) + 1):
            for subset in combinations(reversed(names), size):
                trimmed = ImportGraph.trim(record, set(subset))
                kept = trimmed.source_names()
                self.assertEqual(kept, [name for name in names if name in subset])

    def test_trim_does_not_change_record(self) -> None:
        record = abc_record()
        ImportGraph.trim(record, {"contracts/A.sol"})
        self.assertEqual(len(record.sources), 3)
        self.assertEqual(len(record.contracts), 3)

    def test_trimmed_build_record_end_to_end(self) -> None:
        record = abc_record()
        trimmed = ImportGraph.trimmed_build_record("A", record)
        self.assertEqual(trimmed.source_names(), ["contracts/B.sol", "contracts/A.sol"])
        self.assertEqual(trimmed.locators(), [ContractLocator("contracts/B.sol", "B"),
                                              ContractLocator("contracts/A.sol", "A")])
        self.assertEqual(trimmed.root_source, "contracts/A.sol")
        self.assertIs(trimmed.original, record)
        self.assertEqual(trimmed.settings, record.settings)

    def test_trimmed_contracts_follow_sources(self) -> None:
        record = build_record({"contracts/A.sol": "", "contracts/Mock.sol": ""},
                              {"contracts/A.sol": {"A": contract_entry(EXECUTABLE)},
                               "contracts/Mock.sol": {"Mock": contract_entry(EXECUTABLE)}})
        trimmed = ImportGraph.trimmed_build_record("A", record)
        self.assertEqual(trimmed.locators(), [ContractLocator("contracts/A.sol", "A")])


if __name__ == '__main__':
    unittest.main()
