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
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

scripts_dir_path = Path(__file__).parent.parent.resolve()  # containing directory
sys.path.insert(0, str(scripts_dir_path))

from ContractVerifier import verifierArtifactIndex as ArtifactIndex
from ContractVerifier.verifierAbiEncoder import ConstructorArguments
from ContractVerifier.verifierBytecode import BytecodeAbsentError, fetch_deployed_bytecode, match, \
    resolve_library_links
from ContractVerifier.verifierCloudIO import VerificationService
from ContractVerifier.verifierConfigIO import VerifierContext
from ContractVerifier.verifierDataClasses import BuildRecord, ContractInformation, Retryable, Success, \
    VerificationOutcome
from ContractVerifier.verifierImportGraph import trimmed_build_record
from ContractVerifier.verifierNetwork import JsonRpcNetworkProvider, NetworkProvider, NetworkProviderError
from ContractVerifier.verifierSubmitter import RetryPolicy, VerificationFailedError, submit, verify_with_retry
from Shared import verifierUtils as Util

"""
This file is responsible for running a verification end to end:
build record -> trimmed sources -> bytecode match -> submission, retried while the deployed code is not visible.
"""

run_logger = logging.getLogger("run")


@dataclass(frozen=True)
class VerificationJob:
    contract_name: str
    address: str
    constructor_args: Optional[ConstructorArguments] = None
    libraries: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class VerificationResult:
    job: VerificationJob
    url: Optional[str] = None
    error: Optional[str] = None

    def is_success(self) -> bool:
        return self.url is not None


class Verifier:
    """
    Verifies deployed contracts against the build records of a project.
    The build records are loaded once and are only read afterwards, so a Verifier can run several verifications
    concurrently.
    """

    def __init__(self, context: VerifierContext, provider: Optional[NetworkProvider] = None,
                 service: Optional[VerificationService] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 records: Optional[Sequence[BuildRecord]] = None) -> None:
        self.context = context
        self.provider = provider if provider is not None else \
            JsonRpcNetworkProvider(str(context.rpc_url), context.rpc_timeout)
        if service is None:
            dump_dir = Path(context.request_dump_dir) if context.request_dump_dir else None
            service = VerificationService(str(context.verify_url), str(context.browser_url), context.api_key,
                                          context.request_timeout, dump_dir)
        self.service = service
        self.policy = RetryPolicy(context.max_attempts, context.retry_delay, sleep)
        self._records: Optional[List[BuildRecord]] = list(records) if records is not None else None
        self._records_lock = threading.Lock()

    @property
    def records(self) -> List[BuildRecord]:
        with self._records_lock:
            if self._records is None:
                self._records = ArtifactIndex.load_all(self.context.build_info_dir)
            return self._records

    def contract_information(self, contract_name: str, address: str,
                             libraries: Optional[Dict[str, str]] = None) -> ContractInformation:
        """
        Finds the compiled contract deployed at `address`, with the sources it needs.
        @raise BytecodeAbsentError: if there is no code at the address yet
        """
        record = ArtifactIndex.find_containing(self.records, contract_name)
        trimmed = trimmed_build_record(contract_name, record)
        deployed = fetch_deployed_bytecode(address, self.provider)
        return resolve_library_links(match(deployed, trimmed, contract_name), libraries)

    def verify(self, contract_name: str, address: str, constructor_args: Optional[ConstructorArguments] = None,
               libraries: Optional[Dict[str, str]] = None) -> VerificationOutcome:
        """
        A single verification attempt
        """
        try:
            info = self.contract_information(contract_name, address, libraries)
        except BytecodeAbsentError as e:
            return Retryable(str(e))
        return submit(info, address, constructor_args, self.service)

    def call(self, contract_name: str, address: str, constructor_args: Optional[ConstructorArguments] = None,
             libraries: Optional[Dict[str, str]] = None) -> str:
        """
        Verifies the contract, retrying while its code is not visible on the network.
        @return: the page of the verified contract on the explorer
        @raise VerificationFailedError: if the verification failed
        """
        def attempt(attempt_number: int) -> VerificationOutcome:
            run_logger.debug(f"Verifying {contract_name} at {address}, attempt {attempt_number}")
            return self.verify(contract_name, address, constructor_args, libraries)

        outcome = verify_with_retry(attempt, self.policy)
        if isinstance(outcome, Success):
            run_logger.info(f"Verified {contract_name} at {address}")
            return outcome.url
        raise VerificationFailedError(getattr(outcome, "reason", str(outcome)))

    def run_job(self, job: VerificationJob) -> VerificationResult:
        try:
            url = self.call(job.contract_name, job.address, job.constructor_args, job.libraries)
        except (Util.VerifierUserInputError, NetworkProviderError) as e:
            run_logger.debug(f"Verification of {job.contract_name} at {job.address} failed", exc_info=e)
            return VerificationResult(job, error=str(e))
        return VerificationResult(job, url=url)

    def verify_many(self, jobs: Sequence[VerificationJob], max_workers: Optional[int] = None) \
            -> List[VerificationResult]:
        """
        Runs independent verifications concurrently.
        @return: the results, in the order of `jobs`
        """
        if not jobs:
            return []
        # load once, before the workers share them
        _ = self.records
        workers = max_workers if max_workers is not None else self.context.max_workers
        with ThreadPoolExecutor(max_workers=min(workers, len(jobs))) as executor:
            return list(executor.map(self.run_job, jobs))
