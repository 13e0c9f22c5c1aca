"""
canlog - CAN log decoding, signal change tracking and ISO-TP reassembly
"""

from .analysis.catalog import (ByteOrder, MessageDefinition, SignalCatalog,
                               SignalDefinition, ValueType)
from .analysis.engine import (CallbackApi, DecodeEngine, EngineConfig, RunResult,
                              SignalChangeContext, TransportContext)
from .analysis.ledger import EventLedger, EventRecord
from .analysis.report import Report
from .analysis.tracker import ChangeEvent, SignalTracker
from .canbus.log_source import open_frame_source
from .canbus.messages import CANMessage
from .canbus.transport import TransportMessage, TransportPair, TransportReassembler
from .config import AppConfig, load_config
from .exceptions import (CanLogError, CatalogError, ConfigValidationError,
                         FrameSourceError, SignalDecodeError, TransportError)

__version__ = "0.1.0"

__all__ = [
    'ByteOrder', 'MessageDefinition', 'SignalCatalog', 'SignalDefinition', 'ValueType',
    'CallbackApi', 'DecodeEngine', 'EngineConfig', 'RunResult',
    'SignalChangeContext', 'TransportContext',
    'EventLedger', 'EventRecord', 'Report', 'ChangeEvent', 'SignalTracker',
    'open_frame_source', 'CANMessage',
    'TransportMessage', 'TransportPair', 'TransportReassembler',
    'AppConfig', 'load_config',
    'CanLogError', 'CatalogError', 'ConfigValidationError', 'FrameSourceError',
    'SignalDecodeError', 'TransportError',
]
