"""
PCAN Symbol File (.sym) Parser
Parses PCAN Symbol Editor format files into catalog message definitions
"""

import re
import logging
from typing import Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass, field

from ..analysis.catalog import (ByteOrder, MessageDefinition, SignalCatalog,
                                SignalDefinition, ValueType)
from ..exceptions import CatalogError

logger = logging.getLogger(__name__)

# Data type -> (value type, forced bit length)
DATA_TYPES = {
    'unsigned': (ValueType.UNSIGNED, None),
    'bit': (ValueType.UNSIGNED, 1),
    'char': (ValueType.UNSIGNED, None),
    'raw': (ValueType.UNSIGNED, None),
    'signed': (ValueType.SIGNED, None),
    'float': (ValueType.FLOAT, 32),
    'double': (ValueType.FLOAT, 64),
}

_NUMBER = r'[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?'


@dataclass
class SymEnum:
    """Represents an enumeration definition"""
    name: str
    values: Dict[int, str]


@dataclass
class SymVariable:
    """A Var=, Sig= or Mux= field with its attributes"""
    name: str
    data_type: str
    start_bit: int
    bit_length: int
    motorola: bool = False
    unit: str = ""
    factor: float = 1.0
    offset: float = 0.0
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    enum_name: Optional[str] = None
    is_hex: bool = False
    comment: str = ""


@dataclass
class SymMessage:
    """Represents a CAN message definition"""
    name: str
    can_id: int = 0
    length: int = 8
    is_extended: bool = False
    cycle_time: Optional[int] = None
    mux: Optional[Tuple[SymVariable, int]] = None
    variables: List[SymVariable] = field(default_factory=list)
    comment: str = ""


class SymParser:
    """Parser for PCAN Symbol (.sym) files"""

    def __init__(self):
        self.enums: Dict[str, SymEnum] = {}
        self.signals: Dict[str, SymVariable] = {}
        self.messages: List[SymMessage] = []
        self.version: str = ""
        self.title: str = ""
        self.source: str = ""

    def parse_file(self, file_path: str) -> 'SymParser':
        """Parse a .sym file and populate the internal structures"""
        try:
            with open(file_path, 'r', encoding='utf-8', errors='replace') as f:
                content = f.read()
        except OSError as e:
            raise CatalogError(f"Cannot read symbol file {file_path}: {e}") from e

        self.source = str(file_path)
        return self.parse_content(content)

    def parse_content(self, content: str) -> 'SymParser':
        """Parse .sym file content"""
        self._parse_header(content)
        sections = self._split_into_sections(content)

        if 'ENUMS' in sections:
            self._parse_enums(sections['ENUMS'])

        if 'SIGNALS' in sections:
            self._parse_signals(sections['SIGNALS'])

        for section in ('SEND', 'RECEIVE', 'SENDRECEIVE'):
            if section in sections:
                self._parse_messages(sections[section])

        logger.info("Parsed %d message blocks from %s", len(self.messages), self.source or "content")
        return self

    def _split_into_sections(self, content: str) -> Dict[str, str]:
        """Split content into {SECTION} blocks"""
        sections = {}
        parts = re.split(r'^\s*\{(\w+)\}\s*$', content, flags=re.MULTILINE)
        for i in range(1, len(parts) - 1, 2):
            sections[parts[i].upper()] = sections.get(parts[i].upper(), '') + parts[i + 1]
        return sections

    def _parse_header(self, content: str):
        """Parse header information"""
        version_match = re.search(r'FormatVersion=(\S+)', content)
        if version_match:
            self.version = version_match.group(1).strip()

        title_match = re.search(r'Title="(.+)"', content)
        if title_match:
            self.title = title_match.group(1).strip()

    def _parse_enums(self, enum_section: str):
        """Parse enumeration definitions"""
        enum_pattern = r'(?:Enum=|enum\s+)(\w+)\((.*?)\)'

        for match in re.finditer(enum_pattern, enum_section, re.DOTALL | re.IGNORECASE):
            values = {}
            for value_match in re.finditer(r'(\d+)\s*=\s*"([^"]*)"', match.group(2)):
                values[int(value_match.group(1))] = value_match.group(2)

            self.enums[match.group(1)] = SymEnum(name=match.group(1), values=values)

    def _parse_signals(self, signals_section: str):
        """Parse reusable signal definitions: Sig=name type length [attributes]"""
        signal_pattern = r'Sig=(\w+)\s+(\w+)\s+(\d+)(.*)$'

        for line in signals_section.splitlines():
            line = line.strip()
            if not line or line.startswith('//'):
                continue

            match = re.match(signal_pattern, line)
            if not match:
                logger.warning("Ignoring malformed signal line: %s", line)
                continue

            signal = SymVariable(
                name=match.group(1),
                data_type=match.group(2).lower(),
                start_bit=0,
                bit_length=int(match.group(3)),
            )
            self._parse_attributes(signal, match.group(4))
            self.signals[signal.name] = signal

    def _parse_attributes(self, var: SymVariable, attributes: str):
        """Parse attributes like -m, -h, /u:, /f:, /o:, /min:, /max:, /e:"""
        if not attributes:
            return

        if '//' in attributes:
            attributes, var.comment = attributes.split('//', 1)
            var.comment = var.comment.strip()

        flags = attributes.split()
        var.motorola = '-m' in flags
        var.is_hex = '-h' in flags

        unit_match = re.search(r'/u:("([^"]*)"|\S+)', attributes)
        if unit_match:
            var.unit = unit_match.group(2) if unit_match.group(2) is not None else unit_match.group(1)

        factor_match = re.search(r'/f:(' + _NUMBER + ')', attributes)
        if factor_match:
            var.factor = float(factor_match.group(1))

        offset_match = re.search(r'/o:(' + _NUMBER + ')', attributes)
        if offset_match:
            var.offset = float(offset_match.group(1))

        min_match = re.search(r'/min:(' + _NUMBER + ')', attributes)
        if min_match:
            var.minimum = float(min_match.group(1))

        max_match = re.search(r'/max:(' + _NUMBER + ')', attributes)
        if max_match:
            var.maximum = float(max_match.group(1))

        enum_match = re.search(r'/e:(\w+)', attributes)
        if enum_match:
            var.enum_name = enum_match.group(1)

    def _parse_messages(self, section: str):
        """Parse [Name] message blocks"""
        message_blocks = re.split(r'^\s*\[([^\]]+)\]\s*$', section, flags=re.MULTILINE)

        for i in range(1, len(message_blocks) - 1, 2):
            message = self._parse_single_message(message_blocks[i].strip(), message_blocks[i + 1])
            if message is not None:
                self.messages.append(message)

    def _parse_single_message(self, name: str, content: str) -> Optional[SymMessage]:
        """Parse a single message definition"""
        message = SymMessage(name=name)
        has_id = False

        for line in content.splitlines():
            line = line.strip()
            if not line or line.startswith('//'):
                continue

            if line.startswith('ID='):
                id_match = re.match(r'ID=([0-9A-Fa-f]+)h?', line)
                if id_match:
                    message.can_id = int(id_match.group(1), 16)
                    has_id = True

            elif line.startswith('Type='):
                message.is_extended = 'extended' in line.lower()

            elif line.startswith('Len='):
                len_match = re.match(r'Len=(\d+)', line)
                if len_match:
                    message.length = int(len_match.group(1))

            elif line.startswith('CycleTime='):
                cycle_match = re.match(r'CycleTime=(\d+)', line)
                if cycle_match:
                    message.cycle_time = int(cycle_match.group(1))

            elif line.startswith('Mux='):
                mux = self._parse_mux_line(line)
                if mux:
                    message.mux = mux

            elif line.startswith('Var='):
                var = self._parse_variable_line(line)
                if var:
                    message.variables.append(var)

            elif line.startswith('Sig='):
                var = self._parse_signal_assignment(line)
                if var:
                    message.variables.append(var)

        if not has_id:
            logger.warning("Message block [%s] has no ID, skipped", name)
            return None
        if message.is_extended is False and message.can_id > 0x7FF:
            message.is_extended = True
        return message

    def _parse_mux_line(self, line: str) -> Optional[Tuple[SymVariable, int]]:
        """Parse Mux=name start_bit,bit_length value [attributes]"""
        match = re.match(r'Mux=(\w+)\s+(\d+),(\d+)\s+([0-9A-Fa-f]+)(h?)(.*)$', line)
        if not match:
            logger.warning("Ignoring malformed mux line: %s", line)
            return None

        var = SymVariable(
            name=match.group(1),
            data_type='unsigned',
            start_bit=int(match.group(2)),
            bit_length=int(match.group(3)),
        )
        self._parse_attributes(var, match.group(6))
        value = int(match.group(4), 16 if match.group(5) else 10)
        return var, value

    def _parse_variable_line(self, line: str) -> Optional[SymVariable]:
        """Parse Var=name datatype start_bit,bit_length [attributes] [// comment]"""
        match = re.match(r'Var=(\w+)\s+(\w+)\s+(\d+),(\d+)(.*)$', line)
        if not match:
            logger.warning("Ignoring malformed variable line: %s", line)
            return None

        var = SymVariable(
            name=match.group(1),
            data_type=match.group(2).lower(),
            start_bit=int(match.group(3)),
            bit_length=int(match.group(4)),
        )
        self._parse_attributes(var, match.group(5))
        return var

    def _parse_signal_assignment(self, line: str) -> Optional[SymVariable]:
        """Parse a Sig= line that places a {SIGNALS} definition at a bit position"""
        match = re.match(r'Sig=(\w+)\s+(\d+)', line)
        if not match:
            return None

        template = self.signals.get(match.group(1))
        if template is None:
            logger.warning("Signal %s referenced but not defined", match.group(1))
            return None

        return SymVariable(**{**template.__dict__, 'start_bit': int(match.group(2))})

    def _to_signal(self, var: SymVariable, is_multiplexer: bool = False,
                   multiplexer_ids: Tuple[int, ...] = ()) -> SignalDefinition:
        if var.data_type not in DATA_TYPES:
            raise CatalogError(f"Unsupported data type '{var.data_type}' for {var.name}")
        value_type, forced_length = DATA_TYPES[var.data_type]
        if forced_length is not None and var.bit_length != forced_length:
            raise CatalogError(
                f"{var.data_type} signal {var.name} must be {forced_length} bits, got {var.bit_length}"
            )

        choices = None
        if var.enum_name:
            enum = self.enums.get(var.enum_name)
            if enum is None:
                logger.warning("Enum %s referenced by %s not defined", var.enum_name, var.name)
            else:
                choices = dict(enum.values)

        return SignalDefinition(
            name=var.name,
            start_bit=var.start_bit,
            bit_length=var.bit_length,
            byte_order=ByteOrder.BIG_ENDIAN if var.motorola else ByteOrder.LITTLE_ENDIAN,
            value_type=value_type,
            factor=var.factor,
            offset=var.offset,
            unit=var.unit,
            minimum=var.minimum,
            maximum=var.maximum,
            choices=choices,
            is_multiplexer=is_multiplexer,
            multiplexer_ids=multiplexer_ids,
            comment=var.comment,
        )

    def to_message_definitions(self) -> List[MessageDefinition]:
        """Merge parsed blocks into catalog message definitions.

        Blocks sharing an ID are merged; each Mux= block contributes its
        variables as companions active for that multiplexer value.
        """
        merged: Dict[int, MessageDefinition] = {}
        mux_ids: Dict[int, Dict[str, List[int]]] = {}
        plain: Dict[int, Dict[str, SymVariable]] = {}
        muxed: Dict[int, Dict[str, SymVariable]] = {}

        for block in self.messages:
            definition = merged.get(block.can_id)
            if definition is None:
                definition = MessageDefinition(
                    name=block.name,
                    frame_id=block.can_id,
                    length=block.length,
                    is_extended_id=block.is_extended,
                    cycle_time=block.cycle_time,
                    comment=block.comment,
                    source=self.source,
                )
                merged[block.can_id] = definition
                mux_ids[block.can_id] = {}
                plain[block.can_id] = {}
                muxed[block.can_id] = {}

            if block.mux is None:
                for var in block.variables:
                    self._merge_variable(plain[block.can_id], var, block.name)
                continue

            mux_var, mux_value = block.mux
            if definition.multiplexer is None:
                definition.signals.append(self._to_signal(mux_var, is_multiplexer=True))
            elif definition.multiplexer.name != mux_var.name:
                raise CatalogError(f"Message {block.name} uses two multiplexers")
            for var in block.variables:
                self._merge_variable(muxed[block.can_id], var, block.name)
                mux_ids[block.can_id].setdefault(var.name, []).append(mux_value)

        for can_id, definition in merged.items():
            for var in plain[can_id].values():
                definition.signals.append(self._to_signal(var))
            for name, var in muxed[can_id].items():
                ids = tuple(sorted(set(mux_ids[can_id][name])))
                definition.signals.append(self._to_signal(var, multiplexer_ids=ids))

        return list(merged.values())

    @staticmethod
    def _merge_variable(variables: Dict[str, SymVariable], var: SymVariable, message_name: str):
        """Add a variable seen in one of the blocks of a message.

        A name repeated across blocks must describe the same bit field.
        """
        existing = variables.get(var.name)
        if existing is not None and (
                existing.data_type, existing.start_bit, existing.bit_length, existing.motorola
        ) != (var.data_type, var.start_bit, var.bit_length, var.motorola):
            raise CatalogError(
                f"Variable '{var.name}' in message {message_name} is defined twice with "
                f"different layouts ({existing.start_bit},{existing.bit_length} and "
                f"{var.start_bit},{var.bit_length})"
            )
        variables.setdefault(var.name, var)

    def load_into(self, catalog: SignalCatalog, channels: Iterable[int] = (0,)) -> int:
        """Register all parsed messages in a catalog, returns the count added"""
        channels = tuple(channels)
        count = 0
        for definition in self.to_message_definitions():
            catalog.add_message(definition, channels)
            count += 1
        return count

    def get_statistics(self) -> Dict[str, int]:
        """Get statistics about the loaded symbol file"""
        return {
            'enums': len(self.enums),
            'signals': len(self.signals),
            'messages': len({m.can_id for m in self.messages}),
            'total_variables': sum(len(msg.variables) for msg in self.messages)
        }
