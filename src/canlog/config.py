"""
Configuration management for canlog.

Loads run configuration from TOML, validates it, and builds the catalog and
engine options a run needs.
"""

import os
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union

import toml

from .analysis.catalog import SignalCatalog
from .analysis.engine import EngineConfig
from .canbus.log_source import open_frame_source
from .canbus.messages import CANMessage
from .canbus.transport import TransportPair
from .exceptions import ConfigValidationError
from .utils import dbc_loader
from .utils.sym_parser import SymParser

logger = logging.getLogger(__name__)

MAX_29BIT_ID = 0x1FFFFFFF


def _parse_id(value: Union[int, str], what: str) -> int:
    """Accept integers and "0x..." strings for CAN identifiers"""
    if isinstance(value, bool):
        raise ConfigValidationError(f"{what} must be a CAN identifier, got {value!r}")
    if isinstance(value, int):
        parsed = value
    else:
        try:
            parsed = int(str(value).strip(), 0)
        except ValueError:
            raise ConfigValidationError(f"{what} must be a CAN identifier, got {value!r}") from None
    if not (0 <= parsed <= MAX_29BIT_ID):
        raise ConfigValidationError(f"{what} out of range: 0x{parsed:X}")
    return parsed


@dataclass
class DatabaseConfig:
    """A signal database and the channels it describes"""

    path: str = ""
    channels: List[int] = field(default_factory=lambda: [0])

    def __post_init__(self) -> None:
        if not self.path:
            raise ConfigValidationError("database path must not be empty")
        if not self.channels:
            raise ConfigValidationError(f"database {self.path} must apply to at least one channel")
        if any(c < 0 for c in self.channels):
            raise ConfigValidationError(f"channels must be non-negative, got {self.channels}")

    def to_dict(self) -> Dict[str, Any]:
        return {'path': self.path, 'channels': list(self.channels)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DatabaseConfig':
        return cls(path=data.get('path', ''), channels=list(data.get('channels', [0])))


@dataclass
class InputConfig:
    """Log files and databases"""

    files: List[str] = field(default_factory=list)
    databases: List[DatabaseConfig] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'files': list(self.files),
            'databases': [db.to_dict() for db in self.databases],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InputConfig':
        return cls(
            files=list(data.get('files', [])),
            databases=[DatabaseConfig.from_dict(db) for db in data.get('databases', [])],
        )


@dataclass
class SignalsConfig:
    """Which signals are decoded and dispatched"""

    track: Union[str, List[str]] = "all"
    decode: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.track, str) and self.track != "all":
            raise ConfigValidationError(f"track must be 'all' or a list of names, got {self.track!r}")

    @property
    def tracked_names(self) -> Optional[List[str]]:
        """None when every signal is tracked"""
        return None if self.track == "all" else list(self.track)

    def to_dict(self) -> Dict[str, Any]:
        return {'track': self.track, 'decode': self.decode}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SignalsConfig':
        return cls(track=data.get('track', "all"), decode=data.get('decode', True))


@dataclass
class CanTpPairConfig:
    """One ISO-TP request/response identifier pair"""

    source: int = 0
    target: int = 0
    name: str = ""

    def __post_init__(self) -> None:
        self.source = _parse_id(self.source, "cantp source")
        self.target = _parse_id(self.target, "cantp target")
        if self.source == self.target:
            raise ConfigValidationError(f"cantp pair uses 0x{self.source:X} in both directions")

    def to_pair(self) -> TransportPair:
        return TransportPair(self.source, self.target, self.name or None)

    def to_dict(self) -> Dict[str, Any]:
        return {'source': self.source, 'target': self.target, 'name': self.name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CanTpPairConfig':
        if 'source' not in data or 'target' not in data:
            raise ConfigValidationError("cantp pairs need both source and target")
        return cls(source=data['source'], target=data['target'], name=data.get('name', ''))


@dataclass
class CanTpConfig:
    """ISO-TP reassembly options"""

    auto_detect: bool = False
    timeout_ms: int = 1000
    max_wait_frames: int = 10
    pairs: List[CanTpPairConfig] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ConfigValidationError(f"timeout_ms must be positive, got {self.timeout_ms}")
        if self.max_wait_frames < 0:
            raise ConfigValidationError(
                f"max_wait_frames must be non-negative, got {self.max_wait_frames}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'auto_detect': self.auto_detect,
            'timeout_ms': self.timeout_ms,
            'max_wait_frames': self.max_wait_frames,
            'pairs': [p.to_dict() for p in self.pairs],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CanTpConfig':
        config = cls(
            auto_detect=data.get('auto_detect', False),
            timeout_ms=data.get('timeout_ms', 1000),
            max_wait_frames=data.get('max_wait_frames', 10),
        )
        config.pairs = [CanTpPairConfig.from_dict(p) for p in data.get('pairs', [])]
        return config


@dataclass
class FilteringConfig:
    """Channel and identifier filters, empty lists accept everything"""

    channels: List[int] = field(default_factory=list)
    message_ids: List[int] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.message_ids = [_parse_id(i, "message_ids entry") for i in self.message_ids]
        if any(c < 0 for c in self.channels):
            raise ConfigValidationError(f"channels must be non-negative, got {self.channels}")

    def to_dict(self) -> Dict[str, Any]:
        return {'channels': list(self.channels), 'message_ids': list(self.message_ids)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FilteringConfig':
        return cls(channels=list(data.get('channels', [])),
                   message_ids=list(data.get('message_ids', [])))


@dataclass
class OutputConfig:
    """Report output"""

    path: str = ""
    include_basic_info: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {'path': self.path, 'include_basic_info': self.include_basic_info}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OutputConfig':
        return cls(path=data.get('path', ''),
                   include_basic_info=data.get('include_basic_info', True))


@dataclass
class AppConfig:
    """Complete run configuration"""

    input: InputConfig = field(default_factory=InputConfig)
    signals: SignalsConfig = field(default_factory=SignalsConfig)
    cantp: CanTpConfig = field(default_factory=CanTpConfig)
    filtering: FilteringConfig = field(default_factory=FilteringConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    base_dir: str = ""

    def resolve(self, path: str) -> str:
        """Resolve a path relative to the configuration file"""
        if not path or os.path.isabs(path) or not self.base_dir:
            return path
        return os.path.join(self.base_dir, path)

    def engine_config(self) -> EngineConfig:
        tracked = self.signals.tracked_names
        return EngineConfig(
            channels=tuple(self.filtering.channels) or None,
            message_ids=tuple(self.filtering.message_ids) or None,
            tracked_signals=tuple(tracked) if tracked is not None else None,
            decode_signals=self.signals.decode,
            transport_pairs=tuple(p.to_pair() for p in self.cantp.pairs),
            transport_auto_detect=self.cantp.auto_detect,
            transport_timeout_ms=self.cantp.timeout_ms,
            transport_max_wait_frames=self.cantp.max_wait_frames,
        )

    def build_catalog(self) -> SignalCatalog:
        """Load every configured database into a new catalog"""
        catalog = SignalCatalog()
        for db in self.input.databases:
            path = self.resolve(db.path)
            if path.lower().endswith('.sym'):
                SymParser().parse_file(path).load_into(catalog, db.channels)
            else:
                dbc_loader.load_into(catalog, path, db.channels)

        stats = catalog.stats()
        logger.info("Catalog ready: %d messages, %d signals on %d channels",
                    stats.messages, stats.signals, stats.channels)
        return catalog

    def open_inputs(self) -> Iterator[CANMessage]:
        """Chain all configured log files into one frame sequence.

        Every file is checked and its reader created before the first frame
        is read, so a missing, unsupported or unreadable input fails here.
        Frames are still read lazily, one file after the other.
        """
        if not self.input.files:
            raise ConfigValidationError("no input files configured")
        sources = [open_frame_source(self.resolve(f)) for f in self.input.files]
        return itertools.chain.from_iterable(sources)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'input': self.input.to_dict(),
            'signals': self.signals.to_dict(),
            'cantp': self.cantp.to_dict(),
            'filtering': self.filtering.to_dict(),
            'output': self.output.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: str = "") -> 'AppConfig':
        return cls(
            input=InputConfig.from_dict(data.get('input', {})),
            signals=SignalsConfig.from_dict(data.get('signals', {})),
            cantp=CanTpConfig.from_dict(data.get('cantp', {})),
            filtering=FilteringConfig.from_dict(data.get('filtering', {})),
            output=OutputConfig.from_dict(data.get('output', {})),
            base_dir=base_dir,
        )


def load_config(path: str) -> AppConfig:
    """Load and validate a TOML configuration file"""
    try:
        data = toml.load(path)
    except FileNotFoundError as e:
        raise ConfigValidationError(f"Config file not found: {path}") from e
    except toml.TomlDecodeError as e:
        raise ConfigValidationError(f"Invalid TOML in {path}: {e}") from e

    config = AppConfig.from_dict(data, base_dir=os.path.dirname(os.path.abspath(path)))
    logger.info("Loaded configuration from %s", path)
    return config


def save_config(config: AppConfig, path: str):
    with open(path, 'w') as f:
        toml.dump(config.to_dict(), f)
    logger.info("Saved configuration to %s", path)
