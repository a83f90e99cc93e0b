"""solokit"""

from importlib.metadata import PackageNotFoundError, version

from . import cli, config, informatics
from . import informatics as inform
from .informatics.run_config import RunConfig

package_name = "solokit"
try:
    __version__ = version(package_name)
except PackageNotFoundError:  # pragma: no cover - running from a source tree
    __version__ = "0.0.0"

__all__ = [
    "RunConfig",
    "cli",
    "config",
    "inform",
    "informatics",
]
