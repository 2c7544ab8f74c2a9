from dataclasses import dataclass
from typing import List

from gembridge.domain.contracts import SPAWN_FAILED_EXIT_CODE


@dataclass(frozen=True)
class RecoveryAction:
    action_id: str
    label: str
    description: str


@dataclass(frozen=True)
class ErrorCatalogEntry:
    code: str
    title: str
    user_message: str
    triggers: List[str]
    actions: List[RecoveryAction]


ERROR_CATALOG: List[ErrorCatalogEntry] = [
    ErrorCatalogEntry(
        code="ERR_RUBY_MISSING",
        title="Ruby not available",
        user_message="The ruby interpreter could not be found on the server path.",
        triggers=["Ruby isn't present."],
        actions=[
            RecoveryAction("install_ruby", "Install ruby", "Install ruby for the web server user."),
            RecoveryAction("check_path", "Check PATH", "Make sure ruby is on the web server's PATH."),
        ],
    ),
    ErrorCatalogEntry(
        code="ERR_RUBYGEMS_UNAVAILABLE",
        title="RubyGems not available",
        user_message="Ruby is present but the gem command could not report its version.",
        triggers=["problem accessing the current rubygems version"],
        actions=[
            RecoveryAction("check_path", "Check PATH", "Make sure gem is on the web server's PATH."),
        ],
    ),
    ErrorCatalogEntry(
        code="ERR_RUBYGEMS_TOO_OLD",
        title="RubyGems too old",
        user_message="The installed RubyGems is older than the supported minimum.",
        triggers=["Rubygems is too old."],
        actions=[
            RecoveryAction("upgrade_rubygems", "Upgrade RubyGems", "Run 'gem update --system'."),
        ],
    ),
    ErrorCatalogEntry(
        code="ERR_GEM_INSTALL_FAILED",
        title="Gem install failed",
        user_message="A required gem could not be installed.",
        triggers=["Could not install required gem"],
        actions=[
            RecoveryAction("install_manually", "Install manually", "Install the gem into the gem path by hand."),
            RecoveryAction("force_refresh", "Retry install", "Retry with force_refresh enabled."),
        ],
    ),
    ErrorCatalogEntry(
        code="ERR_SPAWN_FAILED",
        title="Process could not be started",
        user_message="The command could not be spawned; no diagnostic output is available.",
        triggers=["Error: process could not be spawned."],
        actions=[
            RecoveryAction("check_shell", "Check shell", "Verify the shell and executable exist on the host."),
        ],
    ),
    ErrorCatalogEntry(
        code="ERR_UNKNOWN",
        title="Unknown execution error",
        user_message="An unknown error occurred.",
        triggers=[],
        actions=[
            RecoveryAction("retry", "Retry", "Retry once to confirm reproducibility."),
        ],
    ),
]

SPAWN_FAILED_MESSAGE = "Error: process could not be spawned."


def detect_error_code(text: str) -> str:
    value = text or ""
    for entry in ERROR_CATALOG:
        if any(trigger in value for trigger in entry.triggers):
            return entry.code
    return "ERR_UNKNOWN"


def error_code_for_exit(exit_code: int) -> str:
    if exit_code == SPAWN_FAILED_EXIT_CODE:
        return "ERR_SPAWN_FAILED"
    return ""


def get_catalog_entry(code: str) -> ErrorCatalogEntry:
    for entry in ERROR_CATALOG:
        if entry.code == code:
            return entry
    return next(entry for entry in ERROR_CATALOG if entry.code == "ERR_UNKNOWN")
