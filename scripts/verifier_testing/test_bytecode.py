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
from pathlib import Path

import cbor2

scripts_dir_path = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(scripts_dir_path))
sys.path.insert(0, str(Path(__file__).parent.resolve()))

from ContractVerifier import verifierBytecode as Bytecode
from ContractVerifier.verifierDataClasses import ContractLocator
from ContractVerifier.verifierImportGraph import trimmed_build_record
from Shared import verifierUtils as Util
from verifierFixtures import ADDRESS, EXECUTABLE, LIBRARY_ADDRESS, FakeNetworkProvider, abc_record, \
    build_record, contract_entry, metadata_section

PLACEHOLDER = "__$" + "ab" * 17 + "$__"
LIBRARY_SOURCE = "contracts/lib/Math.sol"
LINKED_SOURCES = {
    "contracts/lib/Math.sol": 'library Math {}',
    "contracts/Pool.sol": 'import "./lib/Math.sol";\ncontract Pool {}',
}
# PUSH2 0x6080, then PUSH20 <Math>, then DELEGATECALL
POOL_PREFIX = "616080" + "73"
POOL_SUFFIX = "f4"
POOL_LINK_REFERENCES = {LIBRARY_SOURCE: {"Math": [{"start": 4, "length": 20}]}}


def linked_record():
    return build_record(LINKED_SOURCES, {
        "contracts/lib/Math.sol": {"Math": contract_entry("73" + "00" * 20 + "3014" + metadata_section(ipfs_byte=1))},
        "contracts/Pool.sol": {"Pool": contract_entry(POOL_PREFIX + PLACEHOLDER + POOL_SUFFIX + metadata_section(),
                                                      link_references=POOL_LINK_REFERENCES)},
    })


INIT_SOURCE = "contracts/lib/Init.sol"
OTHER_LIBRARY_SOURCE = "contracts/v2/Math.sol"
FACTORY_SOURCES = {
    INIT_SOURCE: 'library Init {}',
    LIBRARY_SOURCE: 'library Math {}',
    OTHER_LIBRARY_SOURCE: 'library Math {}',
    "contracts/Factory.sol": 'import "./lib/Init.sol";\nimport "./lib/Math.sol";\nimport "./v2/Math.sol" as M2;\n'
                             'contract Factory {}',
}


def matched_factory(creation_link_references):
    """
    Factory uses its libraries in its constructor only, the deployed code does not link them
    """
    entry = contract_entry(EXECUTABLE + metadata_section(ipfs_byte=0x55))
    entry["evm"]["bytecode"]["linkReferences"] = creation_link_references
    record = build_record(FACTORY_SOURCES, {"contracts/Factory.sol": {"Factory": entry}})
    deployed = Bytecode.make_deployed_bytecode(ADDRESS, EXECUTABLE + metadata_section(ipfs_byte=0x66))
    return Bytecode.match(deployed, trimmed_build_record("Factory", record), "Factory")


class TestMetadata(unittest.TestCase):

    def test_exact_version(self) -> None:
        code = bytes.fromhex(EXECUTABLE + metadata_section(solc=(0, 7, 1)))
        version, length = Bytecode.infer_solc_version(code)
        self.assertEqual(version, "0.7.1")
        self.assertEqual(length * 2, len(metadata_section()))

    def test_metadata_without_version(self) -> None:
        version, length = Bytecode.infer_solc_version(bytes.fromhex(EXECUTABLE + metadata_section(solc=None)))
        self.assertEqual(version, Bytecode.METADATA_PRESENT_SOLC_NOT_FOUND_VERSION_RANGE)
        self.assertGreater(length, 0)

    def test_no_metadata(self) -> None:
        self.assertEqual(Bytecode.infer_solc_version(bytes.fromhex(EXECUTABLE)),
                         (Bytecode.METADATA_ABSENT_VERSION_RANGE, 0))
        self.assertEqual(Bytecode.infer_solc_version(b""), (Bytecode.METADATA_ABSENT_VERSION_RANGE, 0))

    def test_undecodable_metadata(self) -> None:
        # the trailer claims 3 bytes of metadata, which are not valid CBOR
        code = bytes.fromhex(EXECUTABLE + "ffffff" + "0003")
        self.assertEqual(Bytecode.infer_solc_version(code), (Bytecode.METADATA_ABSENT_VERSION_RANGE, 0))

    def test_sections(self) -> None:
        deployed = Bytecode.make_deployed_bytecode(ADDRESS, "0x" + EXECUTABLE.upper() + metadata_section())
        self.assertEqual(deployed.executable_section, EXECUTABLE)
        self.assertEqual(deployed.metadata_section, metadata_section())
        self.assertTrue(deployed.has_metadata())
        self.assertEqual(deployed.inferred_solc_version, "0.8.9")

    def test_metadata_payload_is_cbor(self) -> None:
        section = bytes.fromhex(metadata_section())
        self.assertEqual(cbor2.loads(section[:-2])["solc"], bytes([0, 8, 9]))

    def test_version_satisfies(self) -> None:
        self.assertTrue(Bytecode.version_satisfies("0.8.9", "0.8.9"))
        self.assertFalse(Bytecode.version_satisfies("0.8.10", "0.8.9"))
        self.assertTrue(Bytecode.version_satisfies("0.5.0", "0.4.7 - 0.5.8"))
        self.assertFalse(Bytecode.version_satisfies("0.6.0", "0.4.7 - 0.5.8"))
        self.assertTrue(Bytecode.version_satisfies("0.4.0", "<0.4.7"))
        self.assertFalse(Bytecode.version_satisfies("0.4.7", "<0.4.7"))


class TestFetch(unittest.TestCase):

    def test_absent(self) -> None:
        for code in (None, "0x", ""):
            with self.assertRaises(Bytecode.BytecodeAbsentError):
                Bytecode.fetch_deployed_bytecode(ADDRESS, FakeNetworkProvider([code]))

    def test_present(self) -> None:
        provider = FakeNetworkProvider(["0x" + EXECUTABLE + metadata_section()])
        deployed = Bytecode.fetch_deployed_bytecode(ADDRESS, provider)
        self.assertEqual(deployed.address, ADDRESS)
        self.assertEqual(provider.calls, [ADDRESS])


class TestNormalize(unittest.TestCase):

    def test_link_and_immutable_values_are_read_then_zeroed(self) -> None:
        code = "aa" + "11" * 2 + "bb" + "22" * 2 + "cc" + "11" * 2
        normalized, links, immutables = Bytecode.normalize_bytecode(
            code, code,
            {"L.sol": {"L": [{"start": 1, "length": 2}, {"start": 7, "length": 2}]}},
            {"7": [{"start": 4, "length": 2}]})
        self.assertEqual(normalized, "aa" + "00" * 2 + "bb" + "00" * 2 + "cc" + "00" * 2)
        self.assertEqual(links, {"L.sol": {"L": "0x1111"}})
        self.assertEqual(immutables, {"7": "2222"})

    def test_library_call_protection(self) -> None:
        reference = "73" + "00" * 20 + "3014"
        deployed = "73" + "ab" * 20 + "3014"
        normalized, _, _ = Bytecode.normalize_bytecode(deployed, reference, {}, {})
        self.assertEqual(normalized, reference)
        # only code whose compiled form pushes a zero address is a library
        normalized, _, _ = Bytecode.normalize_bytecode(deployed, deployed, {}, {})
        self.assertEqual(normalized, deployed)


class TestMatch(unittest.TestCase):

    def test_exact_match_ignores_metadata(self) -> None:
        record = abc_record()
        trimmed = trimmed_build_record("A", record)
        deployed = Bytecode.make_deployed_bytecode(ADDRESS, EXECUTABLE + metadata_section(ipfs_byte=0x99))
        info = Bytecode.match(deployed, trimmed, "A")
        self.assertEqual(info.locator, ContractLocator("contracts/A.sol", "A"))
        self.assertEqual(info.solc_version, "0.8.9")
        self.assertEqual(info.abi, record.contract(info.locator).abi)
        self.assertEqual(info.library_links, {})

    def test_no_metadata_exact_match(self) -> None:
        trimmed = trimmed_build_record("A", abc_record(a_object=EXECUTABLE))
        deployed = Bytecode.make_deployed_bytecode(ADDRESS, EXECUTABLE)
        self.assertFalse(deployed.has_metadata())
        info = Bytecode.match(deployed, trimmed, "A")
        self.assertEqual(info.locator, ContractLocator("contracts/A.sol", "A"))

    def test_no_metadata_no_match(self) -> None:
        trimmed = trimmed_build_record("A", abc_record(a_object=EXECUTABLE))
        deployed = Bytecode.make_deployed_bytecode(ADDRESS, EXECUTABLE.replace("fd", "fe"))
        with self.assertRaises(Bytecode.NoBytecodeMatchError):
            Bytecode.match(deployed, trimmed, "A")

    def test_any_contract_of_the_record(self) -> None:
        trimmed = trimmed_build_record("A", abc_record())
        deployed = Bytecode.make_deployed_bytecode(ADDRESS, "6080604052600080fd" + metadata_section())
        self.assertEqual(Bytecode.match(deployed, trimmed).locator, ContractLocator("contracts/B.sol", "B"))
        with self.assertRaises(Bytecode.NoBytecodeMatchError):
            Bytecode.match(deployed, trimmed, "A")

    def test_no_match(self) -> None:
        trimmed = trimmed_build_record("A", abc_record())
        deployed = Bytecode.make_deployed_bytecode(ADDRESS, EXECUTABLE.replace("fd", "fe") + metadata_section())
        with self.assertRaises(Bytecode.NoBytecodeMatchError):
            Bytecode.match(deployed, trimmed, "A")

    def test_different_length(self) -> None:
        trimmed = trimmed_build_record("A", abc_record())
        deployed = Bytecode.make_deployed_bytecode(ADDRESS, EXECUTABLE + "00" + metadata_section())
        with self.assertRaises(Bytecode.NoBytecodeMatchError):
            Bytecode.match(deployed, trimmed, "A")

    def test_compiler_version_mismatch(self) -> None:
        trimmed = trimmed_build_record("A", abc_record())
        deployed = Bytecode.make_deployed_bytecode(ADDRESS, EXECUTABLE + metadata_section(solc=(0, 8, 10)))
        with self.assertRaises(Bytecode.NoBytecodeMatchError):
            Bytecode.match(deployed, trimmed, "A")

    def test_library_link_detected(self) -> None:
        trimmed = trimmed_build_record("Pool", linked_record())
        code = POOL_PREFIX + Util.strip_hex_prefix(LIBRARY_ADDRESS) + POOL_SUFFIX + metadata_section(ipfs_byte=5)
        info = Bytecode.match(Bytecode.make_deployed_bytecode(ADDRESS, code), trimmed, "Pool")
        self.assertEqual(info.library_links, {LIBRARY_SOURCE: {"Math": LIBRARY_ADDRESS}})

        resolved = Bytecode.resolve_library_links(info)
        checksummed = Util.to_checksum_address(LIBRARY_ADDRESS)
        self.assertEqual(resolved.library_links, {LIBRARY_SOURCE: {"Math": checksummed}})
        self.assertEqual(resolved.trimmed_record.settings["libraries"], {LIBRARY_SOURCE: {"Math": checksummed}})
        self.assertNotIn("libraries", info.trimmed_record.original.settings)

    def test_library_is_matched(self) -> None:
        trimmed = trimmed_build_record("Math", linked_record())
        deployed = Bytecode.make_deployed_bytecode(ADDRESS, "73" + Util.strip_hex_prefix(ADDRESS) + "3014" +
                                                   metadata_section(ipfs_byte=2))
        self.assertEqual(Bytecode.match(deployed, trimmed, "Math").contract_name, "Math")


class TestLibraryLinks(unittest.TestCase):

    def matched_pool(self):
        trimmed = trimmed_build_record("Pool", linked_record())
        code = POOL_PREFIX + Util.strip_hex_prefix(LIBRARY_ADDRESS) + POOL_SUFFIX + metadata_section()
        return Bytecode.match(Bytecode.make_deployed_bytecode(ADDRESS, code), trimmed, "Pool")

    def test_given_links_agree(self) -> None:
        info = self.matched_pool()
        for name in ("Math", f"{LIBRARY_SOURCE}:Math"):
            resolved = Bytecode.resolve_library_links(info, {name: LIBRARY_ADDRESS.upper().replace("0X", "0x")})
            self.assertEqual(resolved.library_links[LIBRARY_SOURCE]["Math"],
                             Util.to_checksum_address(LIBRARY_ADDRESS))

    def test_given_link_conflicts(self) -> None:
        with self.assertRaises(Bytecode.LibraryLinkError):
            Bytecode.resolve_library_links(self.matched_pool(), {"Math": ADDRESS})

    def test_unknown_library(self) -> None:
        with self.assertRaises(Bytecode.LibraryLinkError):
            Bytecode.resolve_library_links(self.matched_pool(), {"Oracle": LIBRARY_ADDRESS})

    def test_invalid_address(self) -> None:
        with self.assertRaises(Bytecode.LibraryLinkError):
            Bytecode.resolve_library_links(self.matched_pool(), {"Math": "0x1234"})

    def test_constructor_library_needs_an_address(self) -> None:
        info = matched_factory({INIT_SOURCE: {"Init": [{"start": 10, "length": 20}]}})
        with self.assertRaises(Bytecode.LibraryLinkError):
            Bytecode.resolve_library_links(info)

        resolved = Bytecode.resolve_library_links(info, {"Init": LIBRARY_ADDRESS})
        checksummed = Util.to_checksum_address(LIBRARY_ADDRESS)
        self.assertEqual(resolved.library_links, {INIT_SOURCE: {"Init": checksummed}})
        self.assertEqual(resolved.trimmed_record.settings["libraries"], {INIT_SOURCE: {"Init": checksummed}})

    def test_ambiguous_library_name(self) -> None:
        info = matched_factory({LIBRARY_SOURCE: {"Math": [{"start": 10, "length": 20}]},
                                OTHER_LIBRARY_SOURCE: {"Math": [{"start": 40, "length": 20}]}})
        with self.assertRaises(Bytecode.LibraryLinkError):
            Bytecode.resolve_library_links(info, {"Math": LIBRARY_ADDRESS})

        resolved = Bytecode.resolve_library_links(info, {f"{LIBRARY_SOURCE}:Math": LIBRARY_ADDRESS,
                                                         f"{OTHER_LIBRARY_SOURCE}:Math": ADDRESS})
        self.assertEqual(resolved.library_links[OTHER_LIBRARY_SOURCE]["Math"], Util.to_checksum_address(ADDRESS))

    def test_library_linked_twice(self) -> None:
        with self.assertRaises(Bytecode.LibraryLinkError):
            Bytecode.resolve_library_links(self.matched_pool(), {"Math": LIBRARY_ADDRESS,
                                                                 f"{LIBRARY_SOURCE}:Math": LIBRARY_ADDRESS})


if __name__ == '__main__':
    unittest.main()
