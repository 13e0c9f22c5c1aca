"""Tests for the PCAN symbol file parser."""

import pytest

from canlog.analysis.catalog import ByteOrder, SignalCatalog, ValueType
from canlog.exceptions import CatalogError
from canlog.utils.message_decoder import MessageDecoder
from canlog.utils.sym_parser import SymParser

SYM_CONTENT = """FormatVersion=6.0 // Do not edit this line!
Title="Powertrain"

{ENUMS}
enum Gear(0="Park", 1="Reverse", 2="Neutral", 3="Drive")

{SIGNALS}
Sig=Temperature signed 8 /u:C /o:-40

{SEND}

[EngineData]
ID=100h
Len=8
CycleTime=100
Var=EngineSpeed unsigned 0,16 /u:rpm /f:0.25
Var=GearPos unsigned 16,4 /e:Gear
Sig=Temperature 24

[Diag]
ID=200h
Len=8
Mux=Page 0,8 1h
Var=Voltage unsigned 8,16 /u:V /f:0.01

[Diag]
ID=200h
Len=8
Mux=Page 0,8 2h
Var=Current signed 8,16 -m /u:A // pack current
"""


@pytest.fixture
def parser():
    return SymParser().parse_content(SYM_CONTENT)


class TestSymParsing:
    """Test section and line parsing."""

    def test_header(self, parser):
        assert parser.version == "6.0"
        assert parser.title == "Powertrain"

    def test_enums_and_templates(self, parser):
        assert parser.enums["Gear"].values[3] == "Drive"
        assert parser.signals["Temperature"].offset == -40.0

    def test_statistics(self, parser):
        stats = parser.get_statistics()
        assert stats["enums"] == 1
        assert stats["messages"] == 2
        assert stats["total_variables"] == 5

    def test_attributes(self, parser):
        engine = next(m for m in parser.messages if m.name == "EngineData")
        speed = engine.variables[0]
        assert speed.unit == "rpm"
        assert speed.factor == 0.25
        assert engine.cycle_time == 100
        assert engine.can_id == 0x100


class TestSymDefinitions:
    """Test conversion to catalog definitions."""

    def test_plain_message(self, parser):
        definitions = {d.frame_id: d for d in parser.to_message_definitions()}
        engine = definitions[0x100]
        assert [s.name for s in engine.signals] == ["EngineSpeed", "GearPos", "Temperature"]
        temperature = engine.get_signal("Temperature")
        assert temperature.start_bit == 24
        assert temperature.value_type == ValueType.SIGNED
        assert engine.get_signal("GearPos").choices[2] == "Neutral"

    def test_mux_blocks_merged(self, parser):
        diag = {d.frame_id: d for d in parser.to_message_definitions()}[0x200]
        assert diag.multiplexer.name == "Page"
        assert diag.get_signal("Voltage").multiplexer_ids == (1,)
        current = diag.get_signal("Current")
        assert current.multiplexer_ids == (2,)
        assert current.byte_order == ByteOrder.BIG_ENDIAN
        assert current.comment == "pack current"

    def test_decode_through_catalog(self, parser):
        catalog = SignalCatalog()
        assert parser.load_into(catalog) == 2

        engine = catalog.message_for(0, 0x100)
        decoded = {d.name: d for d in MessageDecoder.decode_message(
            bytes([0x40, 0x1F, 0x03, 0x14, 0, 0, 0, 0]), engine)}
        assert decoded["EngineSpeed"].value == pytest.approx(2000.0)
        assert decoded["GearPos"].value_description == "Drive"
        assert decoded["Temperature"].value == pytest.approx(-20.0)

        diag = catalog.message_for(0, 0x200)
        decoded = MessageDecoder.decode_message(bytes([0x02, 0xFF, 0x38, 0, 0, 0, 0, 0]), diag)
        assert [(d.name, d.value) for d in decoded] == [("Page", 2), ("Current", -200)]

    def test_mux_variable_conflicting_layout(self):
        """A companion reused across Mux blocks must keep its bit field."""
        content = (
            "{SEND}\n\n"
            "[Diag]\nID=200h\nLen=8\nMux=Page 0,8 1h\nVar=Value unsigned 8,16\n\n"
            "[Diag]\nID=200h\nLen=8\nMux=Page 0,8 2h\nVar=Value unsigned 24,16\n"
        )
        with pytest.raises(CatalogError):
            SymParser().parse_content(content).to_message_definitions()

    def test_mux_variable_shared_layout(self):
        content = (
            "{SEND}\n\n"
            "[Diag]\nID=200h\nLen=8\nMux=Page 0,8 1h\nVar=Value unsigned 8,16\n\n"
            "[Diag]\nID=200h\nLen=8\nMux=Page 0,8 2h\nVar=Value unsigned 8,16\n"
        )
        diag = SymParser().parse_content(content).to_message_definitions()[0]
        assert diag.get_signal("Value").multiplexer_ids == (1, 2)
        assert diag.get_signal("Value").start_bit == 8

    def test_bad_float_length(self):
        content = "{SEND}\n\n[Bad]\nID=10h\nLen=8\nVar=F float 0,16\n"
        with pytest.raises(CatalogError):
            SymParser().parse_content(content).to_message_definitions()

    def test_missing_id_skipped(self):
        content = "{SEND}\n\n[NoId]\nLen=8\nVar=A unsigned 0,8\n"
        assert SymParser().parse_content(content).messages == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(CatalogError):
            SymParser().parse_file(str(tmp_path / "missing.sym"))
