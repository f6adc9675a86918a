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
import re
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import eth_utils
from rich.console import Console

scripts_dir_path = Path(__file__).parent.parent.resolve()  # containing directory
sys.path.insert(0, str(scripts_dir_path))

CONSOLE = Console()

io_logger = logging.getLogger("file")

# bash colors
BASH_ORANGE_COLOR = "\033[33m"
BASH_END_COLOR = "\033[0m"
BASH_RED_COLOR = "\033[31m"

VERIFIER_INTERNAL_ROOT = Path(".verifier_internal")
DEFAULT_BUILD_INFO_DIR = Path("artifacts") / "build-info"
ENVVAR_API_KEY = "VERIFIER_API_KEY"
SOL_EXT = '.sol'
SOURCE_EXTENSIONS = (SOL_EXT,)
JSON_EXT = '.json'
ADDRESS_SIZE_BYTES = 20


class VerifierUserInputError(Exception):
    def __init__(self, message: str, orig: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.orig = orig


# Internal exceptions that are due to bugs in our implementation
class ImplementationError(Exception):
    pass


class NoValEnum(Enum):
    """
    A class for an enum where the numerical value has no meaning.
    """

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}.{self.name}>'

    @classmethod
    def values(cls) -> List[str]:
        return list(map(lambda c: str(c), cls))  # type: ignore

    def __str__(self) -> str:
        return self.name.lower()


def __colored_text(txt: str, color: str) -> str:
    return color + txt + BASH_END_COLOR


def orange_text(txt: str) -> str:
    return __colored_text(txt, BASH_ORANGE_COLOR)


def red_text(txt: str) -> str:
    return __colored_text(txt, BASH_RED_COLOR)


def print_rich_link(link: str) -> str:
    return f"[link={link}]{link}[/link]"


def safe_create_dir(path: Path) -> None:
    if path.is_dir():
        io_logger.debug(f"directory {path} already exists")
        return
    path.mkdir(parents=True, exist_ok=True)


def get_debug_log_file() -> Path:
    return VERIFIER_INTERNAL_ROOT / "verifier_debug_log.txt"


def read_json_file(file_name: Path) -> Dict[str, Any]:
    with file_name.open() as json_file:
        json_obj = json.load(json_file)
        return json_obj


def write_json_file(data: Union[Dict[str, Any], List[Dict[str, Any]]], file_name: Path) -> None:
    with file_name.open("w+") as json_file:
        json.dump(data, json_file, indent=4)


def as_posix(path: str) -> str:
    """
    Converts path from windows to unix
    :param path: Path to translate
    :return: A unix path
    """
    return path.replace("\\", "/")


def is_hex(number: str) -> bool:
    """
    @param number: A string
    @return: True if the number is a hexadecimal number:
        - Starts with 0
        - Second character is either x or X
        - All other characters are digits 0-9, or letters a-f or A-F
    """
    match = re.search(r'^0[xX][0-9a-fA-F]+$', number)
    return match is not None


def strip_hex_prefix(s: str) -> str:
    return re.sub(r'^0[xX]', '', s)


def is_address(address: str) -> bool:
    """
    @return: True for a 20-byte hex address, with or without the 0x prefix. Mixed-case addresses must carry a valid
        EIP-55 checksum
    """
    return eth_utils.is_address(address)


def to_checksum_address(address: str) -> str:
    """
    Renders a 20-byte address in its EIP-55 mixed-case form
    @param address: an address, with or without the 0x prefix, in any case
    @raise VerifierUserInputError: if the string is not an address
    """
    if not is_address(address):
        raise VerifierUserInputError(f"{address} is not a valid address")
    return eth_utils.to_checksum_address(address)
