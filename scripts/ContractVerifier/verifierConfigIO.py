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
import os
import sys
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import json5
import urllib3.util

scripts_dir_path = Path(__file__).parent.parent.resolve()  # containing directory
sys.path.insert(0, str(scripts_dir_path))

from ContractVerifier.verifierSubmitter import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_DELAY_SECONDS
from Shared import verifierUtils as Util

"""
This file is responsible for reading the configuration of a run: the command line, an optional .conf file and
the built-in network table.
"""

conf_logger = logging.getLogger("conf")

CONF_EXT = ".conf"
DEFAULT_NETWORK = "neonDevnet"


@dataclass(frozen=True)
class NetworkConfig:
    name: str
    chain_id: int
    rpc_url: Optional[str]
    verify_url: Optional[str] = None
    browser_url: Optional[str] = None


NETWORKS: Dict[str, NetworkConfig] = {
    "neonDevnet": NetworkConfig("neonDevnet", 245022926, "https://devnet.neonevm.org",
                                "https://beta-devnet-api.neonscan.org/contract/verify",
                                "https://neonscan.org"),
    "dockerParity": NetworkConfig("dockerParity", 17, "http://localhost:8545"),
    "localhost": NetworkConfig("localhost", 31337, "http://127.0.0.1:8545"),
}


@dataclass
class VerifierContext:
    """
    The settings of a run. Every field but conf_file can also be set in a .conf file
    """
    network: str = DEFAULT_NETWORK
    rpc_url: Optional[str] = None
    verify_url: Optional[str] = None
    browser_url: Optional[str] = None
    api_key: Optional[str] = None
    build_info_dir: str = str(Util.DEFAULT_BUILD_INFO_DIR)
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS
    rpc_timeout: int = 30
    request_timeout: int = 60
    request_dump_dir: Optional[str] = None
    max_workers: int = 4
    conf_file: Optional[str] = None

    @classmethod
    def conf_keys(cls) -> List[str]:
        return [f.name for f in fields(cls) if f.name != "conf_file"]


def is_valid_url(url: str) -> bool:
    try:
        parsed_url = urllib3.util.parse_url(url)
    except urllib3.exceptions.LocationParseError:
        return False
    return parsed_url.scheme in ("http", "https") and bool(parsed_url.host)


def validate_url(url: str) -> str:
    if not is_valid_url(url):
        raise Util.VerifierUserInputError(f"{url} is not a valid URL")
    return url


def validate_positive_integer(value: Union[str, int]) -> int:
    try:
        number = int(value)
        if number <= 0:
            raise ValueError
    except (TypeError, ValueError):
        raise Util.VerifierUserInputError(f"expected a positive integer, instead given {value}") from None
    return number


def validate_non_negative_number(value: Union[str, int, float]) -> float:
    try:
        number = float(value)
        if number < 0:
            raise ValueError
    except (TypeError, ValueError):
        raise Util.VerifierUserInputError(f"expected a non-negative number, instead given {value}") from None
    return number


def validate_address(address: str) -> str:
    if not Util.is_address(address):
        raise Util.VerifierUserInputError(f"{address} is not a valid address")
    return address if address.lower().startswith("0x") else f"0x{address}"


def parse_constructor_args(value: Optional[str]) -> Union[None, str, List[Any]]:
    """
    @param value: a JSON list of argument values, or the ABI encoded arguments as a hex string
    """
    if value is None:
        return None
    stripped = value.strip()
    if stripped.startswith("["):
        try:
            args = json.loads(stripped)
        except ValueError as e:
            raise Util.VerifierUserInputError(f"The constructor arguments are not a valid JSON list: {e}") from None
        return args
    return stripped


def parse_libraries(value: Optional[Union[str, Dict[str, str]]]) -> Dict[str, str]:
    """
    @param value: a JSON object mapping library names (or fully qualified names) to addresses
    """
    if not value:
        return {}
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError as e:
            raise Util.VerifierUserInputError(f"The libraries are not a valid JSON object: {e}") from None
    if not isinstance(value, dict) or not all(isinstance(k, str) and isinstance(v, str) for k, v in value.items()):
        raise Util.VerifierUserInputError(f"The libraries must map library names to addresses, got {value}")
    return value


def read_conf_file(conf_file_path: Path) -> Dict[str, Any]:
    if conf_file_path.suffix != CONF_EXT:
        raise Util.VerifierUserInputError(f"conf file must be of type {CONF_EXT}, instead got {conf_file_path}")
    try:
        with conf_file_path.open() as conf_file:
            configuration = json5.load(conf_file, allow_duplicate_keys=False)
    except OSError as e:
        raise Util.VerifierUserInputError(f"Could not read {conf_file_path}: {e}", e) from None
    except ValueError as e:
        raise Util.VerifierUserInputError(f"Error when reading {conf_file_path}: {e}", e) from None
    if not isinstance(configuration, dict):
        raise Util.VerifierUserInputError(f"{conf_file_path} must contain a single object")
    return configuration


def check_conf_content(conf: Dict[str, Any], cli_values: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merges the content of a conf file with the values given in the command line.
    Note: a command line definition trumps the definition in the file.
    @param conf: A json object in the conf file format
    @param cli_values: the values given in the command line, None for options that were not given
    @return: the merged values
    """
    merged = {k: v for k, v in cli_values.items() if v is not None}
    known_keys = VerifierContext.conf_keys()
    for option, conf_value in conf.items():
        if option not in known_keys:
            raise Util.VerifierUserInputError(f"{option} appears in the conf file but is not a known attribute.")
        cli_value = cli_values.get(option)
        if cli_value is None:
            merged[option] = conf_value
        elif cli_value != conf_value:
            conf_logger.warning(f"Note: attribute {option} value in CLI ({cli_value}) overrides value stored in conf"
                                f" file ({conf_value})")
    return merged


def build_context(cli_values: Dict[str, Any], conf_file: Optional[str] = None) -> VerifierContext:
    """
    Creates the context of a run: command line values, then conf file values, then the built-in defaults of the
    network, then the environment
    @param cli_values: conf key -> value given in the command line, None for options that were not given
    @raise VerifierUserInputError: on unknown or invalid settings
    """
    values = {k: v for k, v in cli_values.items() if k in VerifierContext.conf_keys()}
    if conf_file is not None:
        conf_path = Path(conf_file)
        try:
            values = check_conf_content(read_conf_file(conf_path), values)
        except Util.VerifierUserInputError as e:
            raise Util.VerifierUserInputError(f"Error when reading {conf_path}: {str(e)}", e) from None
    else:
        values = {k: v for k, v in values.items() if v is not None}

    context = VerifierContext(**values, conf_file=conf_file)

    network = NETWORKS.get(context.network)
    if network is None:
        if context.rpc_url is None or context.verify_url is None or context.browser_url is None:
            raise Util.VerifierUserInputError(
                f"Unknown network {context.network}. Known networks are {', '.join(NETWORKS)}; "
                f"for other networks, give rpc_url, verify_url and browser_url")
    else:
        context.rpc_url = context.rpc_url or network.rpc_url
        context.verify_url = context.verify_url or network.verify_url
        context.browser_url = context.browser_url or network.browser_url

    if context.api_key is None:
        context.api_key = os.environ.get(Util.ENVVAR_API_KEY)

    validate_context(context)
    masked_context = replace(context, api_key="***" if context.api_key else None)
    conf_logger.debug(f"Running with {masked_context}")
    return context


def validate_context(context: VerifierContext) -> None:
    for attr in ("rpc_url", "verify_url", "browser_url"):
        url = getattr(context, attr)
        if url is None:
            raise Util.VerifierUserInputError(f"Network {context.network} has no {attr}, give it explicitly")
        validate_url(url)
    context.max_attempts = validate_positive_integer(context.max_attempts)
    context.retry_delay = validate_non_negative_number(context.retry_delay)
    context.rpc_timeout = validate_positive_integer(context.rpc_timeout)
    context.request_timeout = validate_positive_integer(context.request_timeout)
    context.max_workers = validate_positive_integer(context.max_workers)
