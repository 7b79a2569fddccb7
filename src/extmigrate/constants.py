"""extmigrate constants: store layout, API facades, and defaults."""

from __future__ import annotations

COMMAND_NAME = "migrate"
COMMAND_ARGS = "<model-name> <target-controller-name> <machine-tag> <machine-password> <machine-nonce>"
COMMAND_PURPOSE = "Migrate a hosted model to another controller."
COMMAND_DOC = "Runs an externally controlled migration, then forces it through ABORT and ABORTDONE."

# Positional fields in command-line order; a missing one is reported by name.
ARGUMENT_FIELDS = (
    "model",
    "target controller",
    "machine tag",
    "machine password",
    "machine nonce",
)

DATA_DIR_ENV = "JUJU_DATA"
XDG_DATA_HOME_ENV = "XDG_DATA_HOME"
DEFAULT_DATA_DIR_NAME = "juju"
CONTROLLERS_FILE = "controllers.yaml"
ACCOUNTS_FILE = "accounts.yaml"
MODELS_FILE = "models.yaml"
CONFIG_FILE = "extmigrate.yaml"

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
READINESS_MODES = ("poll", "delay")
DEFAULT_READINESS_MODE = "poll"
DEFAULT_READINESS_TIMEOUT_SECONDS = 60.0
DEFAULT_READINESS_POLL_INTERVAL_SECONDS = 1.0
DEFAULT_READINESS_DELAY_SECONDS = 5.0
DEFAULT_LOG_FILE = "logs/extmigrate.log"

ADMIN_FACADE = ("Admin", 3)
CONTROLLER_FACADE = ("Controller", 3)
MIGRATION_MASTER_FACADE = ("MigrationMaster", 1)
# Name the controller's TLS certificate is issued for, whatever address is dialled.
API_SERVER_HOSTNAME = "juju-apiserver"
