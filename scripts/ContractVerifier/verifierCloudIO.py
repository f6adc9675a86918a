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
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import requests

scripts_dir_path = Path(__file__).parent.parent.resolve()  # containing directory
sys.path.insert(0, str(scripts_dir_path))

from ContractVerifier.verifierDataClasses import VerificationRequest
from Shared import verifierUtils as Util

cloud_logger = logging.getLogger("cloud")

DEFAULT_REQUEST_TIMEOUT = 60  # seconds

# the explorer answers this when it has not seen the deployment yet
BYTECODE_MISSING_PREFIX = "Unable to locate ContractCode at"

# error messages
CONNECTION_ERR_PREFIX = "Connection error:"
GENERAL_ERR_PREFIX = "An error occurred:"
STATUS_ERR_PREFIX = "Error Status:"
TIMEOUT_MSG_PREFIX = "Request timed out."

Response = requests.models.Response


@dataclass(frozen=True)
class ServiceResponse:
    success: bool
    message: str
    status_code: Optional[int] = None  # None if no response was received

    def is_bytecode_missing(self) -> bool:
        return not self.success and is_bytecode_missing_message(self.message)


def is_bytecode_missing_message(message: str) -> bool:
    return message.strip().lower().startswith(BYTECODE_MISSING_PREFIX.lower())


def parse_json(response: Response) -> Dict[str, Any]:
    try:
        json_response = response.json()
    except ValueError:
        cloud_logger.debug(f"{GENERAL_ERR_PREFIX} Could not parse JSON response: {response.text}")
        return {}
    if not isinstance(json_response, dict):
        return {}
    return json_response


def get_response_message(json_response: Dict[str, Any], response: Response) -> str:
    for key in ("message", "errorString", "error", "result"):
        if json_response.get(key):
            return str(json_response[key])
    return response.text


class VerificationService:
    """
    Client of the explorer's verification endpoint. A single POST per request, the retry policy is the caller's.
    """

    def __init__(self, api_url: str, browser_url: str, api_key: Optional[str] = None,
                 timeout: int = DEFAULT_REQUEST_TIMEOUT, request_dump_dir: Optional[Path] = None) -> None:
        self.api_url = api_url
        self.browser_url = browser_url
        self.api_key = api_key
        self.timeout = timeout
        self.request_dump_dir = request_dump_dir

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def contract_url(self, address: str) -> str:
        """
        @return: the page of the verified contract on the explorer
        """
        return urljoin(self.browser_url.rstrip("/") + "/", f"address/{address}#code")

    def dump_request(self, request: VerificationRequest) -> Optional[Path]:
        """
        Saves the payload of the request, to be able to submit it manually when the service is down
        """
        if self.request_dump_dir is None:
            return None
        Util.safe_create_dir(self.request_dump_dir)
        dump_file = self.request_dump_dir / f"{request.contract_name}{Util.JSON_EXT}"
        Util.write_json_file(request.as_dict(), dump_file)
        cloud_logger.debug(f"Saved the verification request of {request.contract_name} to {dump_file}")
        return dump_file

    def post(self, request: VerificationRequest) -> ServiceResponse:
        """
        Sends the verification request. Never raises on a failed request: failures are reported in the response.
        """
        self.dump_request(request)
        cloud_logger.debug(f"requesting verification of {request.contract_name} at {request.contract_address} "
                           f"from {self.api_url}")
        try:
            response = requests.post(self.api_url, json=request.as_dict(), headers=self.headers(),
                                     timeout=self.timeout)
        except requests.exceptions.Timeout:
            return ServiceResponse(False, f"{TIMEOUT_MSG_PREFIX} No response from {self.api_url} "
                                          f"after {self.timeout} seconds")
        except (requests.exceptions.RequestException, ConnectionError) as e:
            return ServiceResponse(False, f"{CONNECTION_ERR_PREFIX} {e}")

        json_response = parse_json(response)
        message = get_response_message(json_response, response)
        if not response.ok:
            cloud_logger.debug(f"{STATUS_ERR_PREFIX} {response.status_code}: {message}")
            return ServiceResponse(False, message, response.status_code)
        if not json_response.get("success"):
            cloud_logger.debug(f"The service rejected the request: {message}")
            return ServiceResponse(False, message, response.status_code)
        return ServiceResponse(True, message, response.status_code)

    def __repr__(self) -> str:
        return f"VerificationService({self.api_url})"
