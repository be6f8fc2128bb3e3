# Relay error types and the fatal error policy
import logging
import sys

EXIT_FAILURE = -1


class RelayError(Exception):
    pass


class ConfigError(RelayError):
    pass


class ConnectionFailed(RelayError):
    pass


class GameHostError(RelayError):
    pass


class PlayerRecordMissing(RelayError):
    """The host referenced a player slot that its own registry cannot resolve."""

    def __init__(self, who: int):
        super().__init__(f"No player record for slot {who}")
        self.who = who


def handle_fatal_error(logger: logging.Logger, message: str, abort_on_error: bool) -> None:
    logger.error(message)
    if abort_on_error:
        sys.exit(EXIT_FAILURE)
