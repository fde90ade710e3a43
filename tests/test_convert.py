from textwrap import dedent
from xml.etree import ElementTree

import pytest

from edc2svd import __main__ as cli
from edc2svd import (MissingRequiredAttribute, Options,
                     UnresolvableNameCollision, convert, convert_file)
from edc2svd.names import IDENTIFIER
from tests.edcdoc import adjust, document, field, sector, sfr


def _pic32_like():
    tables = dedent("""\
        <edc:ValueTable edc:name="UEN">
          <edc:Value edc:cname="TX_RX" edc:value="0b00"/>
          <edc:Value edc:cname="TX-RX-RTS" edc:value="0b01"/>
          <edc:Value edc:cname="ALL" edc:value="0b11"/>
        </edc:ValueTable>
        """)
    def uart_regs(n, base):
        mode = (field(f"STSEL", "0x1") + field("PDSEL", "0x2") + field("BRGH", "0x1")
                + adjust("0x4") + field("UEN", "0x2", valuetable="UEN") + adjust("0x5")
                + field("ON", "0x1"))
        sta = (field("URXDA", "0x1", access="read-only") + field("OERR", "0x1", access="read-only, cleared-on-read")
               + field("FERR", "0x1", access="r"))
        return [
            sfr(f"U{n}MODE", hex(base), f"UART{n}", portals="CLR SET INV",
                mclr="0000000000000000-000000000000000", access="nnnnnnnnnnnnnnnnnnnnnnnnnnnnnnnn", fields=mode),
            sfr(f"U{n}STA", hex(base + 0x10), f"UART{n}", portals="CLR SET INV", fields=sta),
        ]
    return document(sector(
        *uart_regs(1, 0x1F806000),
        *uart_regs(2, 0x1F806200),
        sfr("WDTCON", "0x1F800000", "WDT", portals="CLR SET INV",
            fields=field("WDTCLR", "0x1", access="write-only") + adjust("0x1") + field("ON", "0x1")),
        sfr("weird.name", "0x1F800010", "WDT"),
    ), tables=tables)


def _registers(peripheral):
    return peripheral.findall("registers/register")


def test_scenario_a_single_gpio_register():
    doc = document(sector(sfr("PORT", "0x1F800000", "GPIOA", nzwidth="32", access="read-write",
                              mclr="0x00000000", fields=field("PIN0", "0x1"))))
    root = ElementTree.fromstring(convert(doc))
    (gpio,) = root.findall("peripherals/peripheral")
    assert gpio.findtext("name") == "GPIOA"
    assert gpio.findtext("baseAddress") == "0x1F800000"
    (port,) = _registers(gpio)
    assert port.findtext("name") == "PORT"
    assert port.findtext("addressOffset") == "0x00000000"
    assert port.findtext("size") == "32"
    assert port.findtext("access") == "read-write"
    assert port.findtext("resetValue") == "0x00000000"
    (pin0,) = port.findall("fields/field")
    assert pin0.findtext("name") == "PIN0"
    assert pin0.findtext("bitOffset") == "0"
    assert pin0.findtext("bitWidth") == "1"


def test_scenario_b_identical_uarts_are_derived():
    doc = document(sector(
        sfr("MODE", "0x1F806000", "UART1", fields=field("ON", "0x1")),
        sfr("STA", "0x1F806010", "UART1"),
        sfr("MODE", "0x1F806200", "UART2", fields=field("ON", "0x1")),
        sfr("STA", "0x1F806210", "UART2"),
    ))
    root = ElementTree.fromstring(convert(doc))
    u1, u2 = root.findall("peripherals/peripheral")
    assert [r.findtext("name") for r in _registers(u1)] == ["MODE", "STA"]
    assert u2.get("derivedFrom") == "UART1"
    assert u2.findtext("baseAddress") == "0x1F806200"
    assert _registers(u2) == []


def test_scenario_c_clear_on_read_becomes_read_write_note():
    doc = document(sector(sfr("IFS0", "0x1F881030", "INT",
                              fields=field("CTIF", "0x1", access="read-only, cleared-on-read", desc="Core timer"))))
    first = convert(doc)
    ctif = ElementTree.fromstring(first).find(".//field")
    assert ctif.findtext("access") == "read-write"
    assert ctif.findtext("description") == "Core timer [cleared on read]"
    assert convert(doc) == first


def test_scenario_d_missing_address_writes_nothing(tmp_path):
    src = tmp_path / "bad.PIC"
    dst = tmp_path / "bad.svd"
    src.write_bytes(document(sector(sfr("PORTA", None, "PORTA"))))
    with pytest.raises(MissingRequiredAttribute):
        convert_file(src, dst)
    assert not dst.exists()


def test_mixed_clear_on_read_bits_keep_their_note():
    fields = field("FLAGS", "0x2", access="rc", desc="Flags") + field("DATA", "0x6")
    doc = document(sector(sfr("R", "0x1F800000", "P", nzwidth="0x8", access="nnnnnnnc",
                              desc="Status", fields=fields)))
    reg = ElementTree.fromstring(convert(doc)).find(".//register")
    assert reg.findtext("access") == "read-write"
    assert reg.findtext("description") == "Status [cleared on read]"
    flags, data = reg.findall("fields/field")
    assert flags.findtext("access") == "read-write"
    assert flags.findtext("description") == "Flags [cleared on read]"
    assert data.findtext("access") == "read-write"
    assert data.find("description") is None


def test_short_mclr_leaves_every_bit_defined():
    doc = document(sector(sfr("R", "0x1F800000", "P", mclr="0"),
                          sfr("S", "0x1F800004", "P", mclr="10")))
    r, s = ElementTree.fromstring(convert(doc)).iter("register")
    assert (r.findtext("resetValue"), r.findtext("resetMask")) == ("0x00000000", "0xFFFFFFFF")
    assert (s.findtext("resetValue"), s.findtext("resetMask")) == ("0x00000002", "0xFFFFFFFF")


def test_conversion_is_deterministic():
    assert convert(_pic32_like()) == convert(_pic32_like())


def test_structure_and_names_survive():
    root = ElementTree.fromstring(convert(_pic32_like()))
    peripherals = {p.findtext("name"): p for p in root.findall("peripherals/peripheral")}
    assert list(peripherals) == ["UART1", "UART2", "WDT"]
    assert peripherals["UART2"].get("derivedFrom") == "UART1"
    assert _registers(peripherals["UART2"]) == []

    uart1 = peripherals["UART1"]
    names = [(r.findtext("name"), r.findtext("addressOffset")) for r in _registers(uart1)]
    assert names == [
        ("U1MODE", "0x00000000"), ("U1MODECLR", "0x00000004"), ("U1MODESET", "0x00000008"),
        ("U1MODEINV", "0x0000000C"), ("U1STA", "0x00000010"), ("U1STACLR", "0x00000014"),
        ("U1STASET", "0x00000018"), ("U1STAINV", "0x0000001C"),
    ]
    mode = _registers(uart1)[0]
    assert mode.findtext("resetMask") == "0xFFFF7FFF"
    layout = [(f.findtext("name"), f.findtext("bitOffset"), f.findtext("bitWidth"))
              for f in mode.findall("fields/field")]
    assert layout == [("STSEL", "0", "1"), ("PDSEL", "1", "2"), ("BRGH", "3", "1"),
                      ("UEN", "8", "2"), ("ON", "15", "1")]
    uen = mode.find("fields/field[name='UEN']")
    assert [v.findtext("name") for v in uen.findall("enumeratedValues/enumeratedValue")] == [
        "TX_RX", "TX_RX_RTS", "ALL"]

    modeclr = _registers(uart1)[1]
    assert modeclr.findtext("access") == "write-only"
    assert "[write has side effects]" in modeclr.findtext("description")
    assert modeclr.find("fields/field[name='UEN']/enumeratedValues") is None

    sta = _registers(uart1)[4]
    assert [f.findtext("access") for f in sta.findall("fields/field")] == [
        "read-only", "read-write", "read-only"]

    wdt = _registers(peripherals["WDT"])
    assert [r.findtext("name") for r in wdt][-1] == "weird_name"


def test_every_emitted_name_is_an_identifier_unique_in_its_scope():
    root = ElementTree.fromstring(convert(_pic32_like()))
    scopes = [root.findall("peripherals/peripheral")]
    for p in root.iter("peripheral"):
        scopes.append(p.findall("registers/register") + p.findall("registers/cluster"))
    for r in root.iter("register"):
        scopes.append(r.findall("fields/field"))
    for f in root.iter("field"):
        scopes.append(f.findall("enumeratedValues/enumeratedValue"))
    for scope in scopes:
        names = [e.findtext("name") for e in scope]
        assert all(IDENTIFIER.match(n) for n in names)
        assert len({n.casefold() for n in names}) == len(names)


def test_every_register_has_a_reset_value():
    root = ElementTree.fromstring(convert(_pic32_like()))
    for r in root.iter("register"):
        assert r.findtext("resetValue").startswith("0x")


def test_fields_never_overlap_after_mapping():
    root = ElementTree.fromstring(convert(_pic32_like()))
    for r in root.iter("register"):
        taken = set()
        for f in r.findall("fields/field"):
            bits = set(range(int(f.findtext("bitOffset")), int(f.findtext("bitOffset")) + int(f.findtext("bitWidth"))))
            assert not bits & taken
            taken |= bits


def test_colliding_peripheral_names():
    doc = document(sector(
        sfr("A", "0x1F800000", "OSC.1"),
        sfr("B", "0x1F800100", "OSC-1"),
    ))
    with pytest.raises(UnresolvableNameCollision):
        convert(doc)


def test_options_reach_the_output():
    doc = document(sector(sfr("R", "0x1F800000", "P", portals="CLR SET INV")))
    root = ElementTree.fromstring(convert(doc, Options(kseg1=True, portals=False, vendor_id="MCHP")))
    assert root.findtext("vendorID") == "MCHP"
    assert root.findtext("peripherals/peripheral/baseAddress") == "0xBF800000"
    assert len(root.findall(".//register")) == 1


def test_cli_success(tmp_path):
    src, dst = tmp_path / "in.PIC", tmp_path / "out.svd"
    src.write_bytes(_pic32_like())
    assert cli.main([str(src), str(dst)]) == 0
    assert dst.read_bytes() == convert(_pic32_like())


def test_cli_failure_writes_nothing(tmp_path, capsys):
    src, dst = tmp_path / "in.PIC", tmp_path / "out.svd"
    src.write_bytes(document(sector(sfr("PORTA", None, "PORTA"))))
    assert cli.main([str(src), str(dst)]) == 1
    assert not dst.exists()
    err = capsys.readouterr()
    assert "_addr" in err.err
    assert err.out == ""


def test_cli_config_and_flags(tmp_path):
    src, dst, cfg = tmp_path / "in.PIC", tmp_path / "out.svd", tmp_path / "opts.yaml"
    src.write_bytes(document(sector(sfr("R", "0x1F800000", "P", portals="CLR - -"))))
    cfg.write_text("vendor: Acme\nversion: '3.1'\n")
    assert cli.main([str(src), str(dst), "--config", str(cfg), "--no-portals", "--kseg1"]) == 0
    root = ElementTree.fromstring(dst.read_bytes())
    assert root.findtext("vendor") == "Acme"
    assert root.findtext("version") == "3.1"
    assert root.findtext("peripherals/peripheral/baseAddress") == "0xBF800000"
    assert len(root.findall(".//register")) == 1


def test_cli_exact_names_keep_instances_expanded(tmp_path):
    src, dst = tmp_path / "in.PIC", tmp_path / "out.svd"
    src.write_bytes(_pic32_like())
    assert cli.main([str(src), str(dst), "--derive-exact-names"]) == 0
    uart2 = ElementTree.fromstring(dst.read_bytes()).find("peripherals/peripheral[name='UART2']")
    assert uart2.get("derivedFrom") is None
    assert _registers(uart2)[0].findtext("name") == "U2MODE"


def test_cli_bad_config(tmp_path):
    src, dst, cfg = tmp_path / "in.PIC", tmp_path / "out.svd", tmp_path / "opts.yaml"
    src.write_bytes(document(sector(sfr("R", "0x1F800000", "P"))))
    cfg.write_text("colour: blue\n")
    assert cli.main([str(src), str(dst), "--config", str(cfg)]) == 2
    assert not dst.exists()


def test_checkout_script_runs_the_packaged_main():
    import convert
    assert convert.main is cli.main
