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
from typing import Iterable, List, Optional, Set

from Shared.verifierUtils import red_text, orange_text, get_debug_log_file, safe_create_dir

# All topics the verifier logs on, see the module-level loggers of ContractVerifier
VERIFIER_TOPICS = ["artifacts",
                   "bytecode",
                   "cloud",
                   "conf",
                   "file",
                   "imports",
                   "rpc",
                   "run",
                   "verification"
                   ]


class ColoredString(logging.Formatter):
    def __init__(self, msg_fmt: str = "%(name)s - %(message)s") -> None:
        super().__init__(msg_fmt)

    def format(self, record: logging.LogRecord) -> str:
        to_ret = super().format(record)
        if record.levelno == logging.WARN:
            return orange_text("WARNING") + ": " + to_ret
        elif record.levelno >= logging.ERROR:  # aka ERROR, FATAL, and CRITICAL
            return red_text(record.levelname) + ": " + to_ret
        else:  # aka INFO and DEBUG
            return record.levelname + ": " + to_ret


class TopicFilter(logging.Filter):
    def __init__(self, names: Iterable[str]) -> None:
        super().__init__()
        self.logged_names = set(names)

    def filter(self, record: logging.LogRecord) -> bool:
        return (record.name in self.logged_names) or record.levelno >= logging.WARN


class DebugLogHandler(logging.FileHandler):
    """
    A handler that writes all messages of the verifier topics, of all levels debug-critical, to the debug log file.
    Retry attempts of the verification state machine end up here even when stdout is not in debug mode.
    """

    def __init__(self) -> None:
        log_file = get_debug_log_file()
        safe_create_dir(log_file.parent)
        super().__init__(log_file)
        self.set_name("debug_log")
        self.level = logging.DEBUG  # Always set this handler's log-level to debug
        self.addFilter(TopicFilter(VERIFIER_TOPICS))


class LoggingManager():
    """
    A class that manages logs, be they file logs or stdout logs. Used for:
    * Adding or removing logs
    * Setting log levels and outputs
    * Checking whether we are in debug mode via LoggingManager().is_debugging
    """

    def __init__(self, quiet: bool = False, debug: bool = False,
                 debug_topics: Optional[List[str]] = None,
                 show_debug_topics: bool = False,
                 with_debug_log_file: bool = True) -> None:
        """
        @param quiet: if true, we show minimal log messages, and logging level is WARNING.
        @param debug: Ignored if quiet is True. If true, logging level is DEBUG.
        @param debug_topics: Ignored if debug is False. Only debug messages related to loggers of those topics are
            shown. If it is None or an empty list, we show ALL topics.
        @param show_debug_topics: If True, sets the logging message format to show the topic of the logger that
            sent them.
        @param with_debug_log_file: if true, every message of the verifier topics is also written to the debug log
        """
        self.stdout_handler = logging.StreamHandler(stream=sys.stdout)
        self.debug_log_handler: Optional[DebugLogHandler] = DebugLogHandler() if with_debug_log_file else None
        self.handlers: Set[logging.Handler] = set()
        self.is_debugging = False

        root_logger = logging.root
        self.orig_root_log_level = root_logger.level  # used to restore the root logger's level after exit
        root_logger.setLevel(logging.NOTSET)

        handler_list: List[logging.Handler] = [self.stdout_handler]
        if self.debug_log_handler is not None:
            handler_list.append(self.debug_log_handler)
        for handler in handler_list:
            self.__add_handler(handler)

        self.set_log_level_and_format(quiet, debug, debug_topics, show_debug_topics)

    def tear_down(self) -> None:
        """
        Releases all resources and restores the root logger to the state it was in before this class was constructed
        """
        root_logger = logging.root
        root_logger.setLevel(self.orig_root_log_level)

        while self.handlers:
            _handler = next(iter(self.handlers))
            self.__remove_handler(_handler)

    def __add_handler(self, handler: logging.Handler) -> None:
        if handler not in self.handlers:
            self.handlers.add(handler)
            logging.root.addHandler(handler)
        else:
            logging.warning(f"Tried to add a handler that was already active: {handler}")

    def __remove_handler(self, handler: logging.Handler) -> None:
        """
        Closes and removes a handler from the root logger
        """
        if handler in self.handlers:
            try:
                handler.close()
            except Exception as e:
                logging.warning(f"Failed to close {handler}: {repr(e)}")
            self.handlers.remove(handler)
            logging.root.removeHandler(handler)
        else:
            logging.warning(f"Tried to remove a handler that is not active: {handler}")

    def set_log_level_and_format(
            self,
            is_quiet: bool = False,
            debug: bool = False,
            debug_topics: Optional[List[str]] = None,
            show_debug_topics: bool = False) -> None:
        """
        Sets the logging level and log message format.
        @param is_quiet: if true, we show minimal log messages, and logging level is WARNING. No debug topics can be
            enabled.
        @param debug: if true, we show debug information
        @param debug_topics: see __init__
        @param show_debug_topics: If True, sets the logging message format to show the topic of the logger that
            sent them.
        """
        self.__format_stdout_log_messages(show_debug_topics)
        self.__set_logging_level(is_quiet, debug, debug_topics)

    def __format_stdout_log_messages(self, show_debug_topics: bool) -> None:
        if show_debug_topics:
            base_message = "%(name)s - %(message)s"
        else:
            base_message = "%(message)s"

        if sys.stdout.isatty():
            self.stdout_handler.setFormatter(ColoredString(base_message))
        else:
            self.stdout_handler.setFormatter(logging.Formatter(f'%(levelname)s: {base_message}'))

    def __set_logging_level(self, is_quiet: bool, debug: bool = False, debug_topics: Optional[List[str]] = None) \
            -> None:
        if is_quiet:
            self.stdout_handler.setLevel(logging.WARNING)
            self.is_debugging = False
        elif not debug:
            self.stdout_handler.setLevel(logging.INFO)
            self.is_debugging = False
        else:
            self.stdout_handler.setLevel(logging.DEBUG)
            self.is_debugging = True

        self.__set_topics_filter(debug_topics)

    def __set_topics_filter(self, debug_topics: Optional[List[str]] = None) -> None:
        """
        Adds a filter to the stdout logger to ignore logging topics not provided.
        """
        for _filter in list(self.stdout_handler.filters):
            self.stdout_handler.removeFilter(_filter)
        if self.is_debugging and debug_topics is not None and len(debug_topics) > 0:
            topics = [n.strip() for n in debug_topics]
            self.stdout_handler.addFilter(TopicFilter(topics))
