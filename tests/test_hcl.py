"""Tests for HCL mention scanning."""

from blastradius.hcl import scan_literal, scan_text, unquote_go_string

CONFIG = '''
resource "azurerm_subnet" "test" {
  virtual_network_name = azurerm_virtual_network.test.name
  resource_group_name  = data.azurerm_resource_group.example.name
}

data "azurerm_client_config" "current" {}
'''


def test_unquote_raw_and_interpreted():
    assert unquote_go_string("`a\\nb`") == ("a\\nb", True)
    assert unquote_go_string('"a\\nb \\"c\\""') == ('a\nb "c"', False)


def test_blocks_and_attributes():
    mentions = scan_text(CONFIG, "azurerm_", first_line=10)
    found = [(m.resource, m.style, m.line) for m in mentions]

    assert found == [
        ("azurerm_subnet", "RESOURCE_BLOCK", 11),
        ("azurerm_virtual_network", "ATTRIBUTE_REFERENCE", 12),
        ("azurerm_resource_group", "ATTRIBUTE_REFERENCE", 13),
        ("azurerm_client_config", "RESOURCE_BLOCK", 16),
    ]
    assert mentions[1].context == "virtual_network_name = azurerm_virtual_network.test.name"


def test_block_suppresses_same_line_attribute():
    mentions = scan_text('resource "azurerm_foo" "a" { x = azurerm_foo.b.id }', "azurerm_")
    assert [(m.resource, m.style) for m in mentions] == [("azurerm_foo", "RESOURCE_BLOCK")]


def test_provider_block_is_not_a_mention():
    assert scan_text('provider "azurerm" {\n  features {}\n}', "azurerm_") == []


def test_interpreted_string_reports_literal_line():
    literal = '"resource \\"azurerm_foo\\" \\"a\\" {}\\nname = azurerm_bar.a.name"'
    mentions = scan_literal(literal, "azurerm_", start_line=42)

    assert [(m.resource, m.line) for m in mentions] == [("azurerm_foo", 42), ("azurerm_bar", 42)]


def test_custom_prefix():
    mentions = scan_text('resource "google_compute_instance" "vm" {}', "google_")
    assert mentions[0].resource == "google_compute_instance"
