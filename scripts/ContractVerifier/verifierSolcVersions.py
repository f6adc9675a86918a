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
import sys
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import requests

scripts_dir_path = Path(__file__).parent.parent.resolve()  # containing directory
sys.path.insert(0, str(scripts_dir_path))

from Shared import verifierUtils as Util

verification_logger = logging.getLogger("verification")

COMPILERS_LIST_URL = "https://binaries.soliditylang.org/bin/list.json"


class CompilerVersionError(Util.VerifierUserInputError):
    pass


@lru_cache(maxsize=1)
def get_compilers_list(url: str = COMPILERS_LIST_URL) -> Dict[str, Any]:
    """
    @return: the list of solc releases published by the Solidity team
    @raise CompilerVersionError: if the list could not be fetched
    """
    verification_logger.debug(f"Fetching the list of compiler versions from {url}")
    try:
        response = requests.get(url, timeout=10)
        if response.status_code != requests.codes.ok:
            raise CompilerVersionError(f"Could not fetch the list of compiler versions from {url}: "
                                       f"status code {response.status_code}")
        return response.json()
    except (requests.exceptions.RequestException, ValueError) as e:
        raise CompilerVersionError(f"Could not fetch the list of compiler versions from {url}: {e}", e) from None


def get_long_version(short_version: str, long_version: Optional[str] = None) -> str:
    """
    The verification service identifies a compiler by its long version, e.g. v0.7.1+commit.f4a555be
    @param short_version: the version as recorded by the build, e.g. 0.7.1
    @param long_version: the long version recorded by the build, if any, with or without the leading 'v'
    @raise CompilerVersionError: if the long version is not recorded and is not a published release
    """
    if long_version:
        return long_version if long_version.startswith("v") else f"v{long_version}"

    for build in get_compilers_list().get("builds", []):
        if build.get("version") == short_version and build.get("longVersion"):
            return f"v{build['longVersion']}"
    raise CompilerVersionError(f"Could not find the long version of solc {short_version}. "
                               f"Is it an official release?")
