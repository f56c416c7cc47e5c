"""Badge Tracker Server package.

This package provides:
- ConfigManager: YAML-based configuration management
- AnchorStore: fixed anchor coordinates (YAML list or CSV)
- estimate_distance / trilaterate: RSSI path-loss model and 2-D trilateration
- TagLedger: per-tag distance/position state with staleness eviction
- IngestionCoordinator: anchor report ingestion pipeline
- Publisher: role-filtered position fan-out to subscribers
- MQTTDataProcessor: MQTT transport
"""

from .config_manager import ConfigError, ConfigManager
from .anchor_store import AnchorStore
from .calculator import PositionCalculator, estimate_distance, estimate_position, trilaterate
from .filters import smooth
from .tag_ledger import TagLedger
from .coordinator import IngestionCoordinator, IngestSummary
from .publisher import Publisher, SubscriberClosed
from .mqtt_processor import MQTTDataProcessor

__all__ = [
    "ConfigError",
    "ConfigManager",
    "AnchorStore",
    "PositionCalculator",
    "estimate_distance",
    "estimate_position",
    "trilaterate",
    "smooth",
    "TagLedger",
    "IngestionCoordinator",
    "IngestSummary",
    "Publisher",
    "SubscriberClosed",
    "MQTTDataProcessor",
]
