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


import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import json5
from rich.console import Console
from rich.markup import escape
from rich.table import Table

scripts_dir_path = Path(__file__).parent.resolve()  # containing directory
sys.path.insert(0, str(scripts_dir_path))
from Shared import verifierUtils as Util
from Shared.verifierLogging import LoggingManager, VERIFIER_TOPICS

from ContractVerifier import verifierConfigIO as ConfigIO
from ContractVerifier.verifierPipeline import VerificationJob, VerificationResult, Verifier

# logger for issues regarding the general run flow.
# Also serves as the default logger for errors originating from unexpected places.
run_logger = logging.getLogger("run")


class ExitException(Exception):
    def __init__(self, message: str, exit_code: int):
        super().__init__(message)
        self.exit_code = exit_code


def get_args(args: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="verifyContract",
                                     description="Verifies the sources of a deployed contract on a block explorer")
    parser.add_argument("contract_name", nargs="?", help="name of the deployed contract")
    parser.add_argument("address", nargs="?", type=ConfigIO.validate_address, help="address of the deployed contract")
    parser.add_argument("--args", dest="constructor_args",
                        help="constructor arguments, as a JSON list of values or as ABI encoded hex")
    parser.add_argument("--libraries", help="JSON object mapping library names to their addresses")
    parser.add_argument("--batch", help="JSON5 file with a list of contracts to verify, each an object with "
                                        "contract_name, address and optionally args and libraries")
    parser.add_argument("--conf", help=f"configuration file ({ConfigIO.CONF_EXT}) with any of: "
                                       f"{', '.join(ConfigIO.VerifierContext.conf_keys())}")
    parser.add_argument("--network", help=f"one of {', '.join(ConfigIO.NETWORKS)} "
                                          f"(default: {ConfigIO.DEFAULT_NETWORK})")
    parser.add_argument("--rpc_url", type=ConfigIO.validate_url, help="JSON-RPC endpoint of the network")
    parser.add_argument("--verify_url", type=ConfigIO.validate_url, help="verification endpoint of the explorer")
    parser.add_argument("--browser_url", type=ConfigIO.validate_url, help="base URL of the explorer")
    parser.add_argument("--api_key", help=f"explorer API key (default: ${Util.ENVVAR_API_KEY})")
    parser.add_argument("--build_info_dir", help=f"directory of build-info files "
                                                 f"(default: {Util.DEFAULT_BUILD_INFO_DIR})")
    parser.add_argument("--max_attempts", type=ConfigIO.validate_positive_integer,
                        help="attempts while the deployed code is not visible (default: 3)")
    parser.add_argument("--retry_delay", type=ConfigIO.validate_non_negative_number,
                        help="seconds between attempts (default: 5)")
    parser.add_argument("--request_dump_dir", help="save every verification request to this directory")
    parser.add_argument("--max_workers", type=ConfigIO.validate_positive_integer,
                        help="verifications run concurrently in batch mode (default: 4)")
    parser.add_argument("--short_output", action="store_true", help="only print warnings and errors")
    parser.add_argument("--debug", action="store_true", help="show debug messages")
    parser.add_argument("--debug_topics", nargs="+", choices=VERIFIER_TOPICS, help="only show debug messages of "
                                                                                  "these topics")
    parser.add_argument("--show_debug_topics", action="store_true", help="show the topic of each log message")
    namespace = parser.parse_args(args)

    if namespace.batch is None and (namespace.contract_name is None or namespace.address is None):
        parser.error("either a contract name and an address, or --batch, is required")
    if namespace.batch is not None and namespace.contract_name is not None:
        parser.error("--batch cannot be used together with a contract name")
    return namespace


def read_batch_file(batch_file: Path) -> List[VerificationJob]:
    try:
        with batch_file.open() as f:
            entries = json5.load(f, allow_duplicate_keys=False)
    except (OSError, ValueError) as e:
        raise Util.VerifierUserInputError(f"Could not read the batch file {batch_file}: {e}", e) from None
    if not isinstance(entries, list):
        raise Util.VerifierUserInputError(f"The batch file {batch_file} must contain a list")

    jobs = []
    for entry in entries:
        if not isinstance(entry, dict) or "contract_name" not in entry or "address" not in entry:
            raise Util.VerifierUserInputError(f"Every entry of {batch_file} must have a contract_name and an "
                                              f"address, got {entry}")
        args = entry.get("args")
        if args is not None and not isinstance(args, (str, list)):
            raise Util.VerifierUserInputError(f"The args of {entry['contract_name']} must be a list or a hex string")
        jobs.append(VerificationJob(entry["contract_name"], ConfigIO.validate_address(entry["address"]), args,
                                    ConfigIO.parse_libraries(entry.get("libraries"))))
    return jobs


def print_batch_results(results: List[VerificationResult]) -> None:
    table = Table(title="Verification results")
    table.add_column("Contract")
    table.add_column("Address")
    table.add_column("Result")
    for result in results:
        outcome = Util.print_rich_link(result.url) if result.url else f"[red]{escape(str(result.error))}[/red]"
        table.add_row(result.job.contract_name, result.job.address, outcome)
    Util.CONSOLE.print(table)


def run_verifier(args: List[str]) -> Optional[List[VerificationResult]]:
    """
    The main function that is responsible for the general flow of the script:
    1. Parse program arguments and the configuration file
    2. Verify the requested contract, or every contract of the batch
    """
    # If we are not in debug mode, we do not want to print the traceback in case of exceptions.
    if '--debug' not in args:  # We check manually, because we want no traceback in argument parsing exceptions
        sys.tracebacklimit = 0

    namespace = get_args(args)
    logging_manager = LoggingManager(quiet=namespace.short_output, debug=namespace.debug,
                                     debug_topics=namespace.debug_topics,
                                     show_debug_topics=namespace.show_debug_topics)
    try:
        cli_values: Dict[str, Any] = {key: getattr(namespace, key, None)
                                      for key in ConfigIO.VerifierContext.conf_keys()}
        context = ConfigIO.build_context(cli_values, namespace.conf)
        verifier = Verifier(context)

        if namespace.batch is not None:
            results = verifier.verify_many(read_batch_file(Path(namespace.batch)))
            print_batch_results(results)
            failed = [result for result in results if not result.is_success()]
            if failed:
                raise ExitException(f"{len(failed)} of {len(results)} verifications failed", 1)
            return results

        url = verifier.call(namespace.contract_name, namespace.address,
                            ConfigIO.parse_constructor_args(namespace.constructor_args),
                            ConfigIO.parse_libraries(namespace.libraries))
        Util.CONSOLE.print(f"[bold green]Successfully verified {namespace.contract_name}[/bold green]: "
                           f"{Util.print_rich_link(url)}")
        return [VerificationResult(VerificationJob(namespace.contract_name, namespace.address), url=url)]
    finally:
        logging_manager.tear_down()


def entry_point() -> None:
    """
    This function is the entry point of the verifyContract console script, as well as this script.
    It is important this function gets no arguments!
    """
    try:
        run_verifier(sys.argv[1:])
        sys.exit(0)
    except KeyboardInterrupt:
        Console().print("[bold red]\nInterrupted by user")
        sys.exit(1)
    except Util.VerifierUserInputError as e:
        if e.orig:
            print(f"\n{str(e.orig).strip()}")
        Console().print(f"[bold red]\n{e}\n")
        sys.exit(1)
    except ExitException as e:
        Console().print(f"[bold red]{e}")
        sys.exit(e.exit_code)
    except Exception as e:
        Console().print(f"[bold red]{e}")
        sys.exit(1)


if __name__ == '__main__':
    entry_point()
