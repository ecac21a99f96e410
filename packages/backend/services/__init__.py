"""Services layer.

Services take their collaborators explicitly; core.factory.ServiceFactory
wires them together from Settings.
"""

from .aggregator import UnifiedAggregator
from .configurator import StorageConfigurator
from .detector import ModelDetector
from .downloader import ModelDownloader
from .importer import ModelImporter
from .path_resolver import PathResolver
from .registry import CentralRegistry

__all__ = [
    "CentralRegistry",
    "ModelDetector",
    "ModelDownloader",
    "ModelImporter",
    "PathResolver",
    "StorageConfigurator",
    "UnifiedAggregator",
]
