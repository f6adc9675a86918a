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
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from eth_abi import encode
from eth_abi.exceptions import EncodingError

scripts_dir_path = Path(__file__).parent.parent.resolve()  # containing directory
sys.path.insert(0, str(scripts_dir_path))

from Shared import verifierUtils as Util

verification_logger = logging.getLogger("verification")

ConstructorArguments = Union[str, Sequence[Any]]

ARRAY_SUFFIX = re.compile(r"(\[\d*\])$")


class ConstructorArgumentsError(Util.VerifierUserInputError):
    pass


def canonical_type(param: Dict[str, Any]) -> str:
    """
    @param param: an ABI parameter, e.g. {"type": "tuple[]", "components": [...]}
    @return: the canonical type string eth_abi expects, with tuples spelled out, e.g. (uint256,address)[]
    """
    abi_type = param["type"]
    if abi_type.startswith("tuple"):
        components = ",".join(canonical_type(component) for component in param.get("components", []))
        return f"({components}){abi_type[len('tuple'):]}"
    return abi_type


def _coerce(param: Dict[str, Any], value: Any) -> Any:
    """
    Converts a JSON value to what eth_abi expects for the parameter: hex strings for bytes, and sequences for tuples
    and arrays
    """
    abi_type = param["type"]
    array_match = ARRAY_SUFFIX.search(abi_type)
    if array_match:
        if not isinstance(value, (list, tuple)):
            raise ConstructorArgumentsError(f"Expected a list for {param.get('name') or abi_type}, got {value!r}")
        element = dict(param, type=abi_type[:array_match.start()])
        return [_coerce(element, v) for v in value]
    if abi_type == "tuple":
        components = param.get("components", [])
        if isinstance(value, dict):
            value = [value.get(component.get("name")) for component in components]
        if not isinstance(value, (list, tuple)) or len(value) != len(components):
            raise ConstructorArgumentsError(f"Expected {len(components)} components for "
                                            f"{param.get('name') or abi_type}, got {value!r}")
        return tuple(_coerce(component, v) for component, v in zip(components, value))
    if abi_type.startswith("bytes") and isinstance(value, str):
        try:
            return bytes.fromhex(Util.strip_hex_prefix(value))
        except ValueError:
            raise ConstructorArgumentsError(f"{value} is not a hex string, as {abi_type} requires") from None
    if (abi_type.startswith("uint") or abi_type.startswith("int")) and isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError:
            raise ConstructorArgumentsError(f"{value} is not a number, as {abi_type} requires") from None
    return value


def encode_constructor_arguments(abi: List[Dict[str, Any]], args: Optional[ConstructorArguments],
                                 contract_name: str = "") -> str:
    """
    @param abi: the ABI of the contract
    @param args: either the ABI encoded arguments as a hex string, or the list of argument values
    @return: the ABI encoded arguments as a hex string without the 0x prefix
    @raise ConstructorArgumentsError: if the values do not fit the constructor
    """
    if args is None:
        args = []
    if isinstance(args, str):
        encoded = Util.strip_hex_prefix(args.strip())
        if encoded and (len(encoded) % 2 or not Util.is_hex(f"0x{encoded}")):
            raise ConstructorArgumentsError(f"The encoded constructor arguments of {contract_name} "
                                            f"are not a hex string: {args}")
        return encoded.lower()

    constructor = next((entry for entry in abi if entry.get("type") == "constructor"), None)
    inputs = constructor.get("inputs", []) if constructor else []
    if len(inputs) != len(args):
        raise ConstructorArgumentsError(f"The constructor of {contract_name} has {len(inputs)} parameters "
                                        f"but {len(args)} arguments were provided instead")
    if not inputs:
        return ""

    types = [canonical_type(param) for param in inputs]
    values = [_coerce(param, value) for param, value in zip(inputs, args)]
    try:
        encoded_bytes = encode(types, values)
    except (EncodingError, TypeError, ValueError, OverflowError) as e:
        raise ConstructorArgumentsError(f"Could not encode the constructor arguments of {contract_name} "
                                        f"as ({', '.join(types)}): {e}", e) from None
    verification_logger.debug(f"Encoded the constructor arguments of {contract_name} as ({', '.join(types)})")
    return encoded_bytes.hex()
