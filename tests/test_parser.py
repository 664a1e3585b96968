"""Tests for the Tree-sitter Go extractor."""

from pathlib import Path

import pytest

from blastradius.errors import ParseError
from blastradius.models import CALL_COMPOSITE, CALL_EXTERNAL, CALL_LOCAL, CALL_RECEIVER
from blastradius.parser import ExtractOptions, GoExtractor, analyze_file, extract_source, service_for_path
from blastradius.predicates import TemplateFilter

SIMPLE_TEST = '''package network_test

type WidgetResource struct{}

func TestAccWidget_basic(t *testing.T) {
	data := acceptance.BuildTestData(t, "azurerm_widget", "test")
	r := WidgetResource{}

	data.ResourceTest(t, r, []acceptance.TestStep{
		{
			Config: r.basic(data),
			Check: acceptance.ComposeTestCheckFunc(
				check.That(data.ResourceName).ExistsInAzure(r),
			),
		},
		data.ImportStep(),
		{
			Config: r.update(data),
		},
	})
}

func (r WidgetResource) basic(data acceptance.TestData) string {
	return fmt.Sprintf(`
resource "azurerm_widget" "test" {
  name = "widget-%d"
}
`, data.RandomInteger)
}

func (r *WidgetResource) update(data acceptance.TestData) string {
	return r.basic(data)
}

func (r WidgetResource) Exists(ctx context.Context, client *clients.Client, state *pluginsdk.InstanceState) (*bool, error) {
	return nil, nil
}

func (r WidgetResource) basicSchema() string {
	return ""
}
'''


def _names(decls):
    return [d.name for d in decls]


class TestServiceDerivation:
    """Tests for deriving a service from a path."""

    def test_services_segment(self):
        assert service_for_path("internal/services/network/widget_test.go") == "network"

    def test_parent_directory_fallback(self):
        assert service_for_path("acceptance/helpers_test.go") == "acceptance"

    def test_bare_filename(self):
        assert service_for_path("main_test.go") == "root"


class TestDeclarations:
    """Tests for test and configuration function discovery."""

    def test_functions_classified(self):
        """Test, config and helper methods are told apart."""
        analysis = extract_source("internal/services/network/widget_test.go", SIMPLE_TEST)

        assert analysis.ok
        assert analysis.package == "network_test"
        assert analysis.service == "network"
        assert _names(analysis.test_functions) == ["TestAccWidget_basic"]
        assert _names(analysis.config_functions) == ["basic", "update"]

    def test_receiver_details(self):
        """Receiver variable, struct and kind are captured."""
        analysis = extract_source("a/widget_test.go", SIMPLE_TEST)
        basic, update = analysis.config_functions

        assert basic.struct == "WidgetResource"
        assert basic.receiver_var == "r"
        assert basic.receiver_kind == "value"
        assert basic.returns_text is True
        assert update.receiver_kind == "pointer"

    def test_output_contract_has_all_lists(self):
        """Every list key is present even for an empty file."""
        payload = extract_source("a/empty_test.go", "package a\n").to_dict()
        for key in ("test_functions", "config_functions", "call_sites", "test_steps",
                    "sequential_entries", "bindings", "resource_mentions", "registrations"):
            assert payload[key] == []

    def test_custom_predicate(self):
        """A replacement predicate decides what counts as a config builder."""
        options = ExtractOptions(predicate=lambda name, receiver, results: name == "basicSchema")
        analysis = extract_source("a/widget_test.go", SIMPLE_TEST, options)
        assert _names(analysis.config_functions) == ["basicSchema"]

    def test_filter_overrides(self):
        """Config lists narrow or widen the default filter."""
        options = ExtractOptions(predicate=TemplateFilter(excluded_suffixes=()))
        analysis = extract_source("a/widget_test.go", SIMPLE_TEST, options)
        assert "basicSchema" in _names(analysis.config_functions)

    def test_constructors_recorded(self):
        source = '''package a

func newWidget() (*WidgetResource, error) {
	return &WidgetResource{}, nil
}
'''
        analysis = extract_source("a/ctor_test.go", source)
        assert analysis.constructors == {"newWidget": "WidgetResource"}


class TestStepsAndCalls:
    """Tests for step tables and call sites."""

    def test_steps_only_count_config_steps(self):
        analysis = extract_source("a/widget_test.go", SIMPLE_TEST)
        steps = analysis.test_steps

        assert [s.index for s in steps] == [1, 2]
        assert steps[0].config_variable == "r"
        assert steps[0].config_method == "basic"
        assert steps[1].config_method == "update"
        assert steps[0].line == 10

    def test_check_fields_are_skipped(self):
        """Calls inside Check: never become call sites."""
        analysis = extract_source("a/widget_test.go", SIMPLE_TEST)
        methods = {c.method for c in analysis.call_sites}

        assert "ExistsInAzure" not in methods
        assert "ComposeTestCheckFunc" not in methods
        assert {"basic", "update", "ResourceTest", "ImportStep"} <= methods

    def test_call_receiver_kinds(self):
        analysis = extract_source("a/widget_test.go", SIMPLE_TEST)
        by_method = {(c.caller, c.method): c for c in analysis.call_sites}

        assert by_method[("TestAccWidget_basic", "basic")].receiver_kind == CALL_LOCAL
        assert by_method[("TestAccWidget_basic", "BuildTestData")].receiver_kind == CALL_EXTERNAL
        assert by_method[("update", "basic")].receiver_kind == CALL_RECEIVER

    def test_composite_receiver(self):
        source = '''package a

func (WidgetResource) complete(data acceptance.TestData) string {
	return GadgetResource{}.template(data) + (&GizmoResource{}).template(data)
}
'''
        analysis = extract_source("a/widget_test.go", source)
        calls = analysis.call_sites

        assert [c.receiver_kind for c in calls] == [CALL_COMPOSITE, CALL_COMPOSITE]
        assert [c.composite_struct for c in calls] == ["GadgetResource", "GizmoResource"]

    def test_config_expression_forms(self):
        source = '''package a

func TestAccWidget_forms(t *testing.T) {
	r := WidgetResource{}
	config := r.basic(data)
	data.ResourceTest(t, r, []resource.TestStep{
		{Config: config},
		{Config: func() string {
			return r.complete(data)
		}()},
		{Config: WidgetResource{}.update(data)},
	})
}
'''
        analysis = extract_source("a/widget_test.go", source)
        first, second, third = analysis.test_steps

        assert first.config_variable == "config" and first.config_method == ""
        assert second.config_variable == "r" and second.config_method == "complete"
        assert third.config_struct == "WidgetResource" and third.config_method == "update"

    def test_bindings(self):
        source = '''package a

func TestAccWidget_bindings(t *testing.T) {
	r := &WidgetResource{}
	var g GadgetResource
	w, err := newWidget()
	cfg := r.basic(data)
}
'''
        analysis = extract_source("a/widget_test.go", source)
        bindings = {b.name: b for b in analysis.bindings}

        assert bindings["r"].struct == "WidgetResource"
        assert bindings["g"].struct == "GadgetResource"
        assert bindings["w"].constructor == "newWidget"
        assert bindings["cfg"].method == "basic"
        assert bindings["cfg"].receiver_var == "r"
        assert "err" not in bindings


class TestSequentialEntries:
    """Tests for grouped sequential-invocation tables."""

    def test_run_tests_in_sequence(self):
        source = '''package a

func TestAccWidgetSequential(t *testing.T) {
	acceptance.RunTestsInSequence(t, map[string]map[string]func(t *testing.T){
		"widget": {
			"basic":  testAccWidget_basic,
			"update": testAccWidget_update,
		},
		"gadget": {
			"basic": testAccGadget_basic,
		},
	})
}
'''
        analysis = extract_source("a/seq_test.go", source)
        triples = [(e.group, e.key, e.target) for e in analysis.sequential_entries]

        assert triples == [
            ("widget", "basic", "testAccWidget_basic"),
            ("widget", "update", "testAccWidget_update"),
            ("gadget", "basic", "testAccGadget_basic"),
        ]
        assert {e.pattern for e in analysis.sequential_entries} == {"RunTestsInSequence"}

    def test_map_assignment_marks_entry_point(self):
        """A function holding a nested map is a test even without a test prefix."""
        source = '''package a

func runWidgetGroups(t *testing.T) {
	testCases := map[string]map[string]func(t *testing.T){
		"widget": {
			"basic": testAccWidget_basic,
		},
	}
	for group, m := range testCases {
		_ = group
		_ = m
	}
}
'''
        analysis = extract_source("a/seq_test.go", source)

        assert _names(analysis.test_functions) == ["runWidgetGroups"]
        entry = analysis.sequential_entries[0]
        assert (entry.entry_function, entry.group, entry.key, entry.pattern) == (
            "runWidgetGroups", "widget", "basic", "MapBased",
        )

    def test_subtest(self):
        source = '''package a

func TestAccWidget_all(t *testing.T) {
	t.Run("basic", testAccWidget_basic)
}
'''
        entry = extract_source("a/seq_test.go", source).sequential_entries[0]
        assert (entry.group, entry.key, entry.target, entry.pattern) == ("basic", "", "testAccWidget_basic", "SubTest")


class TestMentionsAndRegistrations:
    """Tests for HCL mentions and resource registrations."""

    def test_mentions_use_source_lines(self):
        analysis = extract_source("a/widget_test.go", SIMPLE_TEST)
        mentions = analysis.resource_mentions

        assert len(mentions) == 1
        assert mentions[0].resource == "azurerm_widget"
        assert mentions[0].style == "RESOURCE_BLOCK"
        assert mentions[0].function == "basic"
        assert mentions[0].line == 25

    def test_registrations(self):
        source = '''package a

func (r Registration) SupportedResources() map[string]*pluginsdk.Resource {
	return map[string]*pluginsdk.Resource{
		"azurerm_widget": resourceWidget(),
		"azurerm_gadget": resourceGadget(),
	}
}

func (r WidgetTypedResource) ResourceType() string {
	return "azurerm_gizmo"
}
'''
        analysis = extract_source("a/registration.go", source)
        assert analysis.registrations == ["azurerm_widget", "azurerm_gadget", "azurerm_gizmo"]
        assert analysis.config_functions == []


class TestFailures:
    """Tests for per-file failure capture."""

    def test_syntax_error_recorded(self):
        analysis = extract_source("a/broken_test.go", "package a\n\nfunc TestAccX(t *testing.T) {\n\tfoo(\n")

        assert not analysis.ok
        assert "syntax error" in analysis.error
        assert analysis.test_functions == []

    def test_parse_raises_parse_error(self):
        with pytest.raises(ParseError) as excinfo:
            GoExtractor().parse("a/broken_test.go", b"package a\n\nfunc (\n")

        assert excinfo.value.path == "a/broken_test.go"
        assert excinfo.value.message.startswith("syntax error")

    def test_missing_file(self, temp_dir: Path):
        analysis = analyze_file(str(temp_dir / "gone_test.go"), str(temp_dir), ExtractOptions())

        assert not analysis.ok
        assert analysis.path == "gone_test.go"

    def test_extract_file_relative_path(self, provider_root: Path):
        path = provider_root / "internal" / "services" / "network" / "network_template_test.go"
        analysis = GoExtractor().extract_file(path, provider_root)

        assert analysis.path == "internal/services/network/network_template_test.go"
        assert _names(analysis.config_functions) == ["template"]
        assert analysis.config_functions[0].receiver_var == ""


@pytest.mark.parametrize("prefix,expected", [("azurerm_", 1), ("google_", 0)])
def test_resource_prefix_option(prefix: str, expected: int):
    analysis = extract_source("a/widget_test.go", SIMPLE_TEST, ExtractOptions(resource_prefix=prefix))
    assert len(analysis.resource_mentions) == expected
