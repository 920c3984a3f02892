import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

from localreg.local.config import effective_settings as config

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartupOptions:
    """Options for one local registry run. Immutable once built."""
    port: Optional[int] = None
    config: Optional[str] = None
    storage: Optional[str] = None
    location: str = "user"

    def __post_init__(self) -> None:
        if self.port is not None:
            if isinstance(self.port, bool) or not isinstance(self.port, int) or self.port <= 0:
                raise ValueError(f"Port must be a positive integer, got {self.port!r}.")
        if not self.location:
            raise ValueError("Location must not be empty.")

    @property
    def registry_url(self) -> str:
        """The URL package managers are pointed at while the server runs."""
        if self.port is None:
            raise ValueError("No port set for the local registry.")
        return config.REGISTRY_URL_TEMPLATE.format(port=self.port)

    def merged_with(self, overrides: Dict[str, Any]) -> "StartupOptions":
        """Returns a copy with every non-None value in `overrides` applied."""
        known = {f.name for f in fields(self)}
        changes = {key: value for key, value in overrides.items() if key in known and value is not None}
        return replace(self, **changes)


def default_options() -> StartupOptions:
    """Options built from the effective settings alone."""
    return StartupOptions(port=config.DEFAULT_PORT, location=config.DEFAULT_LOCATION)


def load_options_file(path: Path) -> Dict[str, Any]:
    """
    Reads startup options from a YAML file.

    :param path: Path of a YAML mapping with any of port, config, storage, location.
    :return: The parsed mapping; unknown keys are dropped with a warning.
    """
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Options file '{path}' is not valid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Options file '{path}' must contain a mapping.")

    known = {f.name for f in fields(StartupOptions)}
    for key in set(data) - known:
        log.warning(f"Ignoring unknown option '{key}' in '{path}'.")
    options = {key: value for key, value in data.items() if key in known}
    for key in ("config", "storage"):
        if options.get(key) is not None:
            options[key] = str(options[key])
    return options
