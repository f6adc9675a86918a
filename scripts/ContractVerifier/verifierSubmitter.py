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
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

scripts_dir_path = Path(__file__).parent.parent.resolve()  # containing directory
sys.path.insert(0, str(scripts_dir_path))

from ContractVerifier.verifierAbiEncoder import ConstructorArguments, encode_constructor_arguments
from ContractVerifier.verifierCloudIO import VerificationService
from ContractVerifier.verifierDataClasses import ContractInformation, Failure, Retryable, Success, \
    VerificationOutcome, VerificationRequest, VerificationState
from ContractVerifier.verifierSolcVersions import get_long_version
from Shared import verifierUtils as Util

verification_logger = logging.getLogger("verification")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_SECONDS = 5.0


class VerificationFailedError(Util.VerifierUserInputError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"The contract verification failed. Reason: {reason}")
        self.reason = reason


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise Util.VerifierUserInputError(f"The number of attempts must be at least 1, got {self.max_attempts}")
        if self.delay_seconds < 0:
            raise Util.VerifierUserInputError(f"The delay between attempts cannot be negative, "
                                              f"got {self.delay_seconds}")


def build_request(info: ContractInformation, address: str, encoded_args: str, version: str,
                  compiler_type: str = "solidity") -> VerificationRequest:
    """
    @param encoded_args: the ABI encoded constructor arguments, hex without the 0x prefix
    @param version: the long compiler version, e.g. v0.7.1+commit.f4a555be
    """
    record = info.trimmed_record
    optimizer = record.optimizer
    return VerificationRequest(contract_address=address,
                               source_code=tuple(record.sources.items()),
                               contract_name=info.contract_name,
                               version=version,
                               args=encoded_args,
                               optimization=optimizer.enabled,
                               runs=optimizer.runs,
                               compiler_type=compiler_type)


def submit(info: ContractInformation, address: str, constructor_args: Optional[ConstructorArguments],
           service: VerificationService) -> VerificationOutcome:
    """
    Sends a single verification request for the matched contract.
    @raise ConstructorArgumentsError: if the arguments do not fit the constructor
    @raise CompilerVersionError: if the long compiler version cannot be determined
    """
    encoded_args = encode_constructor_arguments(info.abi, constructor_args, info.contract_name)
    version = get_long_version(info.solc_version, info.solc_long_version)
    request = build_request(info, address, encoded_args, version)
    verification_logger.debug(f"Submitting {info.locator} compiled with {version}, "
                              f"{len(request.source_code)} sources: {', '.join(request.file_names())}")

    response = service.post(request)
    if response.success:
        return Success(service.contract_url(address))
    if response.is_bytecode_missing():
        return Retryable(response.message)
    return Failure(response.message)


def verify_with_retry(attempt_fn: Callable[[int], VerificationOutcome],
                      policy: Optional[RetryPolicy] = None) -> VerificationOutcome:
    """
    Runs verification attempts until one succeeds, one fails for a reason other than the deployed bytecode not being
    visible yet, or `policy.max_attempts` attempts were made. Consecutive attempts are `policy.delay_seconds` apart.
    @param attempt_fn: runs one attempt, receiving the attempt number (starting from 1)
    @return: Success, or Failure with the reason of the last attempt. Never Retryable.
    """
    if policy is None:
        policy = RetryPolicy()

    state = VerificationState.ATTEMPTING
    attempt = 1
    outcome: VerificationOutcome = Failure("No verification attempt was made")
    while state not in (VerificationState.SUCCEEDED, VerificationState.FAILED_TERMINAL):
        if state == VerificationState.ATTEMPTING:
            outcome = attempt_fn(attempt)
            if outcome.is_success():
                state = VerificationState.SUCCEEDED
            elif outcome.is_retryable() and attempt < policy.max_attempts:
                state = VerificationState.RETRY_WAIT
            else:
                state = VerificationState.FAILED_TERMINAL
        elif state == VerificationState.RETRY_WAIT:
            verification_logger.info(f"Could not find deployed bytecode in network, "
                                     f"retrying {attempt}/{policy.max_attempts}...")
            policy.sleep(policy.delay_seconds)
            attempt += 1
            state = VerificationState.ATTEMPTING
        else:
            raise Util.ImplementationError(f"unexpected verification state {state}")

    verification_logger.debug(f"Verification ended in state {state} after {attempt} attempt(s)")
    if isinstance(outcome, Retryable):
        return Failure(outcome.reason)
    return outcome
