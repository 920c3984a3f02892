"""
This module contains the configuration settings for localreg.
It defines paths, registry server settings, package manager executables and
logging configuration. Values can be overridden through the environment or a
`.env` file in the working directory.
"""

import os
import signal
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)

#* --- Core Paths ---
BASE_DIR = pathlib.Path.cwd()
OVERRIDES_JSON_PATH = BASE_DIR / ".localreg.json"

#* --- Registry Server Settings ---
DEFAULT_PORT = int(os.getenv("LOCALREG_PORT", "4873"))
DEFAULT_LOCATION = os.getenv("LOCALREG_LOCATION", "user")
REGISTRY_SERVER_EXECUTABLE = os.getenv("REGISTRY_SERVER_EXECUTABLE", "verdaccio")
REGISTRY_SERVER_NAME = "verdaccio"
REGISTRY_URL_TEMPLATE = "http://localhost:{port}/"

# Environment variables handed to the registry server
HANDLE_KILL_SIGNALS_ENV = "VERDACCIO_HANDLE_KILL_SIGNALS"
STORAGE_PATH_ENV = "VERDACCIO_STORAGE_PATH"

#* --- Package Manager Executables ---
NPM_EXECUTABLE = os.getenv("NPM_EXECUTABLE", "npm")
YARN_EXECUTABLE = os.getenv("YARN_EXECUTABLE", "yarn")

#* --- Lifecycle Settings ---
# SIGHUP does not exist on Windows.
TERMINATION_SIGNALS = [
    getattr(signal, name)
    for name in ("SIGINT", "SIGTERM", "SIGHUP")
    if hasattr(signal, name)
]
PROCESS_TITLE = "LocalReg - Coordinator"

#* --- Logging ---
LOG_FILE_PATH = pathlib.Path(os.environ["LOCALREG_LOG_FILE"]) if os.getenv("LOCALREG_LOG_FILE") else None

# Settings that may be changed through the overrides file
MODIFIABLE_SETTINGS = {
    "DEFAULT_PORT",
    "DEFAULT_LOCATION",
    "REGISTRY_SERVER_EXECUTABLE",
    "NPM_EXECUTABLE",
    "YARN_EXECUTABLE",
    "LOG_FILE_PATH",
}
