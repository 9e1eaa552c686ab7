"""Tests for the aggregation engine — merge, rollup, thresholds, baseline, suppressions."""

import json
from decimal import Decimal

import pytest

from metrics_report.aggregation import MetricsAggregator, build_report
from metrics_report.aggregation.rollup import aggregate_values
from metrics_report.catalog import RollupRule
from metrics_report.errors import DuplicateElementError, ValidationError
from metrics_report.filters import FilterSettings
from metrics_report.models import (
    LocatedFinding,
    MemberKind,
    MetricIdentifier,
    MetricSymbolLevel,
    ParsedDocument,
    RawElement,
    RawMetricValue,
    RuleBreakdownEntry,
    RuleDescription,
    SourceFamily,
    SourceLocation,
    SuppressedSymbolInfo,
    ThresholdStatus,
)
from metrics_report.serialization import dump_report, report_from_dict, report_to_dict
from metrics_report.thresholds import DeltaTrend, classify_delta, default_thresholds

SEQ = MetricIdentifier.SEQUENCE_COVERAGE
BRANCH = MetricIdentifier.BRANCH_COVERAGE
CYCLO = MetricIdentifier.CYCLOMATIC_COMPLEXITY
LINES = MetricIdentifier.SOURCE_LINES
CA = MetricIdentifier.CA_RULE_VIOLATIONS

SOLUTION = MetricSymbolLevel.SOLUTION
ASSEMBLY = MetricSymbolLevel.ASSEMBLY
NAMESPACE = MetricSymbolLevel.NAMESPACE
TYPE = MetricSymbolLevel.TYPE
MEMBER = MetricSymbolLevel.MEMBER


# --------------------------------------------------------------------------- #
# Helpers
# --------------------------------------------------------------------------- #

def _clock():
    return "2026-01-01T00:00:00+00:00"


def _values(metrics):
    return {
        metric: value if isinstance(value, RawMetricValue) else RawMetricValue(Decimal(str(value)))
        for metric, value in (metrics or {}).items()
    }


def _member(fqn, metrics=None, *, assembly="Shop", member_kind=MemberKind.METHOD, source=None):
    return RawElement(
        kind=MEMBER, name=fqn, fully_qualified_name=fqn, containing_assembly=assembly,
        member_kind=member_kind, source=source, metrics=_values(metrics),
    )


def _type(fqn, metrics=None, *, assembly="Shop", parent=None, source=None):
    return RawElement(
        kind=TYPE, name=fqn.rsplit(".", 1)[-1], fully_qualified_name=fqn,
        parent_fully_qualified_name=parent, containing_assembly=assembly,
        source=source, metrics=_values(metrics),
    )


def _doc(source, *elements, path=None, solution=None, rules=None):
    return ParsedDocument(
        source=source, elements=tuple(elements), solution_name=solution,
        source_path=path, rule_descriptions=rules or {},
    )


def _coverage(*elements, **kwargs):
    return _doc(SourceFamily.COVERAGE, *elements, **kwargs)


def _metrics(*elements, **kwargs):
    return _doc(SourceFamily.METRICS, *elements, **kwargs)


def _diagnostics(*elements, **kwargs):
    return _doc(SourceFamily.DIAGNOSTICS, *elements, **kwargs)


def _aggregate(*documents, **options):
    options.setdefault("clock", _clock)
    return build_report(documents, **options)


def _nodes(report, kind):
    return [node for node in report.solution.walk() if node.kind is kind]


def _orders_documents():
    coverage = _coverage(
        _member("Shop.Orders.Place(Shop.Order, System.Int32)", {SEQ: 80}),
        _member("Shop.Orders.Cancel(Shop.Order)", {SEQ: 60}),
    )
    metrics = _metrics(
        _member("Shop.Orders.Place(Order? order, int qty)", {LINES: 3, CYCLO: 2}),
        _member("Shop.Orders.Cancel(Order? order)", {LINES: 5, CYCLO: 6}),
    )
    return coverage, metrics


# --------------------------------------------------------------------------- #
# Tree shape and identity merge
# --------------------------------------------------------------------------- #

class TestTreeShape:
    def test_levels_and_names(self):
        report = _aggregate(*_orders_documents()).report
        root = report.solution
        assert root.kind is SOLUTION
        assert root.name == "Solution"

        (assembly,) = root.children
        assert (assembly.kind, assembly.name) == (ASSEMBLY, "Shop")
        (namespace,) = assembly.children
        assert (namespace.kind, namespace.name) == (NAMESPACE, "Shop")
        (type_node,) = namespace.children
        assert (type_node.name, type_node.fully_qualified_name) == ("Orders", "Shop.Orders")
        assert [m.name for m in type_node.children] == ["Cancel(...)", "Place(...)"]
        assert type_node.children[1].fully_qualified_name == "Shop.Orders.Place(...)"

    def test_conventions_merge_into_one_member(self):
        report = _aggregate(*_orders_documents()).report
        members = _nodes(report, MEMBER)
        assert len(members) == 2
        place = report.solution.find(MEMBER, "Shop.Orders.Place(...)")
        assert place.metrics[SEQ].value == Decimal(80)
        assert place.metrics[LINES].value == Decimal(3)
        assert place.member_kind is MemberKind.METHOD

    def test_type_reported_by_two_documents(self):
        coverage = _coverage(_type("A.B", {SEQ: 80}, assembly="A"))
        metrics = _metrics(_type("A.B", {CYCLO: 12}, assembly=None))
        report = _aggregate(coverage, metrics).report
        types = _nodes(report, TYPE)
        assert len(types) == 1
        assert types[0].fully_qualified_name == "A.B"
        assert types[0].metrics[SEQ].value == Decimal(80)
        assert types[0].metrics[CYCLO].value == Decimal(12)
        assert [a.name for a in _nodes(report, ASSEMBLY)] == ["A"]

    def test_nested_type_lives_in_outer_namespace(self):
        metrics = _metrics(
            _type("Shop.Order", {LINES: 10}),
            _type("Shop.Order.Line", {LINES: 4}, parent="Shop.Order"),
        )
        report = _aggregate(metrics).report
        (namespace,) = _nodes(report, NAMESPACE)
        assert namespace.fully_qualified_name == "Shop"
        assert sorted(t.name for t in namespace.children) == ["Order", "Order.Line"]

    def test_generic_spellings_share_a_type(self):
        coverage = _coverage(_member("Shop.Repository`1.Find(System.Int32)", {SEQ: 50}))
        metrics = _metrics(_member("Shop.Repository<T>.Find(int id)", {CYCLO: 2}))
        report = _aggregate(coverage, metrics).report
        assert [t.fully_qualified_name for t in _nodes(report, TYPE)] == ["Shop.Repository"]
        find = report.solution.find(MEMBER, "Shop.Repository.Find(...)")
        assert set(find.metrics) == {SEQ, CYCLO}

    def test_member_without_assembly_joins_the_only_assembly(self):
        metrics = _metrics(
            _member("Shop.Orders.Place(int)", {LINES: 3}),
            _member("Shop.Orders.Cancel(int)", {LINES: 5}, assembly=None),
        )
        report = _aggregate(metrics).report
        assert [a.name for a in _nodes(report, ASSEMBLY)] == ["Shop"]
        assert len(_nodes(report, TYPE)) == 1

    def test_unknown_assembly_when_ambiguous(self):
        metrics = _metrics(
            _member("Shop.Orders.Place(int)", {LINES: 3}),
            _member("Billing.Invoice.Send(int)", {LINES: 1}, assembly="Billing"),
            _member("Misc.Tool.Run(int)", {LINES: 2}, assembly=None),
        )
        report = _aggregate(metrics).report
        assert [a.name for a in _nodes(report, ASSEMBLY)] == ["<unknown-assembly>", "Billing", "Shop"]

    def test_solution_name(self):
        assert _aggregate(_metrics(solution="Webshop")).report.solution.name == "Webshop"
        assert _aggregate(_metrics(solution="Webshop"), solution_name="Override").report.solution.name == "Override"

    def test_most_complete_source_location_wins(self):
        coverage = _coverage(_member("Shop.Orders.Place(int)", {SEQ: 80}, source=SourceLocation("Orders.cs")))
        metrics = _metrics(_member("Shop.Orders.Place(int)", {LINES: 3}, source=SourceLocation("Orders.cs", 10, 20)))
        report = _aggregate(coverage, metrics).report
        assert report.solution.find(MEMBER, "Shop.Orders.Place(...)").source == SourceLocation("Orders.cs", 10, 20)

    def test_constructor_node_name_when_included(self):
        metrics = _metrics(_member("Shop.Order..ctor(int)", {LINES: 2}))
        report = _aggregate(metrics, filters=FilterSettings.from_strings("")).report
        (member,) = _nodes(report, MEMBER)
        assert member.name == ".ctor(...)"
        assert member.fully_qualified_name == "Shop.Order..ctor(...)"

    def test_report_is_read_only(self):
        report = _aggregate(*_orders_documents()).report
        with pytest.raises(TypeError):
            report.solution.metrics[SEQ] = None


# --------------------------------------------------------------------------- #
# Determinism and conflicts
# --------------------------------------------------------------------------- #

class TestDeterminism:
    def test_document_order_does_not_matter(self):
        coverage, metrics = _orders_documents()
        diagnostics = _diagnostics(_member("Shop.Orders.Place(int)", {CA: 2}))
        forward = _aggregate(coverage, metrics, diagnostics).report
        backward = _aggregate(diagnostics, metrics, coverage).report
        assert report_to_dict(forward) == report_to_dict(backward)

    def test_conflicting_values_keep_the_first_document(self):
        first = _coverage(_member("Shop.Orders.Place(int)", {SEQ: 80}), path="a.json")
        second = _coverage(_member("Shop.Orders.Place(int)", {SEQ: 70}), path="b.json")
        for documents in ((first, second), (second, first)):
            result = _aggregate(*documents)
            place = result.report.solution.find(MEMBER, "Shop.Orders.Place(...)")
            assert place.metrics[SEQ].value == Decimal(80)
            assert [w.code for w in result.warnings] == ["metric-conflict"]
            assert result.warnings[0].fully_qualified_name == "Shop.Orders.Place(...)"

    def test_equal_values_are_not_a_conflict(self):
        first = _coverage(_member("Shop.Orders.Place(int)", {SEQ: 80}), path="a.json")
        second = _coverage(_member("Shop.Orders.Place(int)", {SEQ: 80}), path="b.json")
        assert _aggregate(first, second).warnings == ()

    def test_diagnostics_counts_add_up(self):
        first = _diagnostics(_member("Shop.Orders.Place(int)", {
            CA: RawMetricValue(Decimal(2), breakdown={"CA1822": RuleBreakdownEntry(2)}),
        }), path="a.sarif.json")
        second = _diagnostics(_member("Shop.Orders.Place(int)", {
            CA: RawMetricValue(Decimal(3), breakdown={
                "CA2000": RuleBreakdownEntry(2), "CA1822": RuleBreakdownEntry(1),
            }),
        }), path="b.sarif.json")
        result = _aggregate(first, second)
        value = result.report.solution.find(MEMBER, "Shop.Orders.Place(...)").metrics[CA]
        assert value.value == Decimal(5)
        assert {rule: entry.count for rule, entry in value.breakdown.items()} == {"CA1822": 3, "CA2000": 2}
        assert result.warnings == ()


class TestDuplicateValidation:
    def test_conflicting_values_raise(self):
        metrics = _metrics(
            _member("Shop.Orders.Place(int)", {CYCLO: 3}),
            _member("Shop.Orders.Place(int)", {CYCLO: 4}),
            path="metrics.json",
        )
        with pytest.raises(DuplicateElementError, match="metrics.json.*Shop.Orders.Place\\(int\\)"):
            _aggregate(metrics)

    def test_conflicting_locations_raise(self):
        metrics = _metrics(
            _member("Shop.Orders.Place(int)", {CYCLO: 3}, source=SourceLocation("Orders.cs", 10, 20)),
            _member("Shop.Orders.Place(int)", {CYCLO: 3}, source=SourceLocation("Orders.cs", 30, 40)),
        )
        with pytest.raises(ValidationError, match="different source locations"):
            _aggregate(metrics)

    def test_identical_repeat_is_accepted(self):
        metrics = _metrics(
            _member("Shop.Orders.Place(int)", {CYCLO: 3}),
            _member("Shop.Orders.Place(int)", {CYCLO: 3}),
        )
        result = _aggregate(metrics)
        assert result.report.solution.find(MEMBER, "Shop.Orders.Place(...)").metrics[CYCLO].value == Decimal(3)

    def test_repeated_diagnostics_entries_are_accepted(self):
        diagnostics = _diagnostics(
            _member("Shop.Orders.Place(int)", {CA: 1}),
            _member("Shop.Orders.Place(int)", {CA: 2}),
        )
        place = _aggregate(diagnostics).report.solution.find(MEMBER, "Shop.Orders.Place(...)")
        assert place.metrics[CA].value == Decimal(3)

    def test_overloads_are_not_duplicates(self):
        metrics = _metrics(
            _member("Shop.Orders.Place(int)", {LINES: 3}),
            _member("Shop.Orders.Place(string)", {LINES: 3}),
        )
        assert len(_nodes(_aggregate(metrics).report, MEMBER)) == 1


# --------------------------------------------------------------------------- #
# Rollup and thresholds
# --------------------------------------------------------------------------- #

class TestRollup:
    def test_sum_and_mean(self):
        report = _aggregate(*_orders_documents()).report
        orders = report.solution.find(TYPE, "Shop.Orders")
        assert orders.metrics[LINES].value == Decimal(8)
        assert orders.metrics[SEQ].value == Decimal(70)
        assert orders.metrics[CYCLO].value == Decimal(4)

    def test_values_reach_the_solution(self):
        report = _aggregate(*_orders_documents()).report
        for node in (report.solution, *_nodes(report, ASSEMBLY), *_nodes(report, NAMESPACE)):
            assert node.metrics[LINES].value == Decimal(8)
            assert node.metrics[SEQ].value == Decimal(70)

    def test_reported_type_value_wins(self):
        coverage, metrics = _orders_documents()
        coverage = _coverage(*coverage.elements, _type("Shop.Orders", {SEQ: 64}))
        report = _aggregate(coverage, metrics).report
        assert report.solution.find(TYPE, "Shop.Orders").metrics[SEQ].value == Decimal(64)
        assert report.solution.metrics[SEQ].value == Decimal(64)

    def test_depth_of_inheritance_takes_the_maximum(self):
        depth = MetricIdentifier.DEPTH_OF_INHERITANCE
        metrics = _metrics(_type("Shop.Order", {depth: 2}), _type("Shop.Special", {depth: 4}))
        assert _aggregate(metrics).report.solution.metrics[depth].value == Decimal(4)

    def test_missing_child_values_do_not_count(self):
        coverage = _coverage(
            _member("Shop.Orders.Place(int)", {SEQ: 90}),
            _member("Shop.Orders.Cancel(int)", {SEQ: RawMetricValue(None)}),
        )
        report = _aggregate(coverage).report
        assert report.solution.find(TYPE, "Shop.Orders").metrics[SEQ].value == Decimal(90)

    def test_breakdowns_roll_up(self):
        diagnostics = _diagnostics(
            _member("Shop.Orders.Place(int)", {CA: RawMetricValue(Decimal(1), breakdown={"CA1822": RuleBreakdownEntry(1)})}),
            _member("Shop.Orders.Cancel(int)", {CA: RawMetricValue(Decimal(2), breakdown={"CA1822": RuleBreakdownEntry(2)})}),
        )
        value = _aggregate(diagnostics).report.solution.metrics[CA]
        assert value.value == Decimal(3)
        assert value.breakdown["CA1822"].count == 3

    def test_violations_on_a_type_add_to_its_members(self):
        diagnostics = _diagnostics(
            _type("Shop.Orders", {CA: RawMetricValue(Decimal(1), breakdown={"CA1051": RuleBreakdownEntry(1)})}),
            _member("Shop.Orders.Place(int)", {CA: RawMetricValue(Decimal(2), breakdown={"CA1822": RuleBreakdownEntry(2)})}),
        )
        report = _aggregate(diagnostics).report
        value = report.solution.find(TYPE, "Shop.Orders").metrics[CA]
        assert value.value == Decimal(3)
        assert {rule: entry.count for rule, entry in value.breakdown.items()} == {"CA1051": 1, "CA1822": 2}
        assert report.solution.metrics[CA].value == Decimal(3)

    def test_fractional_mean_is_rounded(self):
        assert aggregate_values(RollupRule.MEAN, [Decimal(1), Decimal(2), Decimal(2)]) == Decimal("1.6667")
        assert aggregate_values(RollupRule.MEAN, [Decimal("1.5"), Decimal(2)]) == Decimal("1.75")
        assert aggregate_values(RollupRule.MEAN, []) is None


class TestThresholdStatus:
    def test_statuses_per_level(self):
        report = _aggregate(*_orders_documents()).report
        assert report.solution.find(MEMBER, "Shop.Orders.Place(...)").metrics[SEQ].status is ThresholdStatus.SUCCESS
        assert report.solution.find(MEMBER, "Shop.Orders.Cancel(...)").metrics[SEQ].status is ThresholdStatus.WARNING
        assert report.solution.find(TYPE, "Shop.Orders").metrics[SEQ].status is ThresholdStatus.WARNING

    def test_null_value_is_not_applicable(self):
        coverage = _coverage(_member("Shop.Orders.Place(int)", {SEQ: RawMetricValue(None)}))
        place = _aggregate(coverage).report.solution.find(MEMBER, "Shop.Orders.Place(...)")
        assert place.metrics[SEQ].status is ThresholdStatus.NA


# --------------------------------------------------------------------------- #
# Filters
# --------------------------------------------------------------------------- #

class TestFilters:
    def _documents(self, with_ctor=True):
        elements = [_member("Shop.Order.Place(int)", {SEQ: 80, LINES: 10})]
        if with_ctor:
            elements.append(_member("Shop.Order..ctor(int)", {SEQ: 0, LINES: 5}))
        return [_coverage(*elements)]

    def test_excluded_member_contributes_nothing(self):
        with_ctor = _aggregate(*self._documents()).report
        without_ctor = _aggregate(*self._documents(with_ctor=False)).report
        assert with_ctor.solution.find(MEMBER, "Shop.Order..ctor(...)") is None
        assert report_to_dict(with_ctor)["solution"] == report_to_dict(without_ctor)["solution"]

    def test_toggling_the_filter_changes_the_rollup(self):
        included = _aggregate(*self._documents(), filters=FilterSettings.from_strings("")).report
        order = included.solution.find(TYPE, "Shop.Order")
        assert order.metrics[SEQ].value == Decimal(40)
        assert order.metrics[LINES].value == Decimal(15)

    def test_short_constructor_spelling(self):
        coverage = _coverage(
            _member("Shop.Order.Order(int)", {LINES: 5}),
            _member("Shop.Order.Place(int)", {LINES: 10}),
        )
        report = _aggregate(coverage).report
        assert [m.name for m in _nodes(report, MEMBER)] == ["Place(...)"]

    def test_assembly_filter(self):
        metrics = _metrics(
            _member("Shop.Orders.Place(int)", {LINES: 3}),
            _member("Shop.Tests.OrdersTests.Places(int)", {LINES: 40}, assembly="Shop.Tests"),
        )
        report = _aggregate(metrics, filters=FilterSettings.from_strings(excluded_assemblies="tests")).report
        assert [a.name for a in _nodes(report, ASSEMBLY)] == ["Shop"]
        assert report.solution.metrics[LINES].value == Decimal(3)

    def test_type_filter(self):
        metrics = _metrics(
            _type("Shop.Order", {LINES: 10}),
            _type("Shop.Migrations.Initial", {LINES: 500}),
            _member("Shop.Migrations.Initial.Up(int)", {LINES: 490}),
        )
        report = _aggregate(metrics, filters=FilterSettings.from_strings(excluded_types="*.Migrations.*")).report
        assert [t.fully_qualified_name for t in _nodes(report, TYPE)] == ["Shop.Order"]
        assert _nodes(report, MEMBER) == []

    def test_member_kind_filter_spares_members_with_diagnostics(self):
        metrics = _metrics(
            _member("Shop.Order.Total", {LINES: 1}, member_kind=MemberKind.FIELD),
            _member("Shop.Order._id", {LINES: 1}, member_kind=MemberKind.FIELD),
            _member("Shop.Order.Place(int)", {LINES: 10}),
        )
        diagnostics = _diagnostics(_member("Shop.Order.Total", {CA: 2}, member_kind=MemberKind.FIELD))
        report = _aggregate(metrics, diagnostics, filters=FilterSettings(
            member_kinds=FilterSettings.from_strings(exclude_fields=True).member_kinds,
        )).report
        names = sorted(m.fully_qualified_name for m in _nodes(report, MEMBER))
        assert names == ["Shop.Order.Place(...)", "Shop.Order.Total"]
        total = report.solution.find(MEMBER, "Shop.Order.Total")
        assert total.metrics[LINES].value == Decimal(1)
        assert total.member_kind is MemberKind.FIELD

    def test_filters_are_described_in_metadata(self):
        settings = FilterSettings.from_strings("ctor;Dispose", "Tests", "*.Generated*")
        metadata = _aggregate(_metrics(), filters=settings).report.metadata
        assert metadata.excluded_member_names == "Dispose, ctor"
        assert metadata.excluded_assembly_names == "Tests"
        assert metadata.excluded_type_names == "*.Generated*"


# --------------------------------------------------------------------------- #
# State machines
# --------------------------------------------------------------------------- #

class TestStateMachines:
    def test_coverage_moves_to_the_method(self):
        coverage = _coverage(
            _type("Shop.Reader"),
            _member("Shop.Reader.ReadAll()", {}),
            _type("Shop.Reader+<ReadAll>d__7", {SEQ: 90, BRANCH: 50, MetricIdentifier.NPATH_COMPLEXITY: 4}),
        )
        metrics = _metrics(_member("Shop.Reader.ReadAll()", {CYCLO: 3}))
        report = _aggregate(coverage, metrics).report
        assert [t.fully_qualified_name for t in _nodes(report, TYPE)] == ["Shop.Reader"]
        read_all = report.solution.find(MEMBER, "Shop.Reader.ReadAll(...)")
        assert read_all.includes_state_machine_coverage
        assert read_all.metrics[SEQ].value == Decimal(90)
        assert read_all.metrics[MetricIdentifier.NPATH_COMPLEXITY].value == Decimal(4)
        assert BRANCH not in read_all.metrics
        assert report.solution.find(TYPE, "Shop.Reader").metrics[SEQ].value == Decimal(90)

    def test_covered_method_keeps_both(self):
        coverage = _coverage(
            _member("Shop.Reader.ReadAll()", {SEQ: 50}),
            _type("Shop.Reader+<ReadAll>d__7", {SEQ: 90}),
        )
        report = _aggregate(coverage).report
        assert len(_nodes(report, TYPE)) == 2
        read_all = report.solution.find(MEMBER, "Shop.Reader.ReadAll(...)")
        assert read_all.metrics[SEQ].value == Decimal(50)
        assert not read_all.includes_state_machine_coverage

    def test_uncovered_state_machine_is_dropped(self):
        coverage = _coverage(
            _member("Shop.Reader.ReadAll()", {LINES: 4}),
            _type("Shop.Reader+<ReadAll>d__7", {LINES: 12}),
        )
        report = _aggregate(coverage).report
        assert [t.fully_qualified_name for t in _nodes(report, TYPE)] == ["Shop.Reader"]
        assert report.solution.metrics[LINES].value == Decimal(4)

    def test_state_machine_without_method_is_kept(self):
        coverage = _coverage(
            _member("Shop.Reader.Other()", {SEQ: 10}),
            _type("Shop.Reader+<ReadAll>d__7", {SEQ: 90}),
        )
        report = _aggregate(coverage).report
        assert report.solution.find(TYPE, "Shop.Reader+<ReadAll>d__7") is not None


# --------------------------------------------------------------------------- #
# Nested types
# --------------------------------------------------------------------------- #

class TestNestedTypes:
    def test_plus_spelling_folds_into_the_dotted_type(self):
        coverage = _coverage(
            _type("Shop.Orders+Line", {SEQ: 75}),
            _member("Shop.Orders+Line.Total()", {SEQ: 75}),
            _member("Shop.Orders+Line.Recalculate(System.Int32)", {SEQ: 50}),
        )
        metrics = _metrics(
            _type("Shop.Orders", {LINES: 20}),
            _type("Shop.Orders.Line", {LINES: 10}, parent="Shop.Orders"),
            _member("Shop.Orders.Line.Total()", {LINES: 4}),
        )
        report = _aggregate(coverage, metrics).report
        assert sorted(t.fully_qualified_name for t in _nodes(report, TYPE)) == ["Shop.Orders", "Shop.Orders.Line"]
        assert [n.fully_qualified_name for n in _nodes(report, NAMESPACE)] == ["Shop"]

        line = report.solution.find(TYPE, "Shop.Orders.Line")
        assert line.metrics[SEQ].value == Decimal(75)
        assert line.metrics[LINES].value == Decimal(10)
        assert [m.name for m in line.children] == ["Recalculate(...)", "Total(...)"]

        total = report.solution.find(MEMBER, "Shop.Orders.Line.Total(...)")
        assert total.metrics[SEQ].value == Decimal(75)
        assert total.metrics[LINES].value == Decimal(4)
        recalculate = report.solution.find(MEMBER, "Shop.Orders.Line.Recalculate(...)")
        assert recalculate.metrics[SEQ].value == Decimal(50)
        assert recalculate.member_kind is MemberKind.METHOD
        assert recalculate.includes_state_machine_coverage

    def test_both_spellings_covered_are_kept(self):
        coverage = _coverage(
            _type("Shop.Orders+Line", {SEQ: 75}),
            _type("Shop.Orders.Line", {SEQ: 40}),
        )
        report = _aggregate(coverage).report
        assert sorted(t.fully_qualified_name for t in _nodes(report, TYPE)) == [
            "Shop.Orders+Line", "Shop.Orders.Line",
        ]
        assert report.solution.find(TYPE, "Shop.Orders.Line").metrics[SEQ].value == Decimal(40)

    def test_method_covered_on_both_sides_keeps_both(self):
        coverage = _coverage(
            _member("Shop.Orders+Line.Total()", {SEQ: 75}),
            _member("Shop.Orders.Line.Total()", {SEQ: 30}),
        )
        report = _aggregate(coverage).report
        assert report.solution.find(TYPE, "Shop.Orders+Line") is not None
        total = report.solution.find(MEMBER, "Shop.Orders.Line.Total(...)")
        assert total.metrics[SEQ].value == Decimal(30)
        assert not total.includes_state_machine_coverage

    def test_plus_type_without_counterpart_is_kept(self):
        coverage = _coverage(_member("Shop.Orders+Line.Total()", {SEQ: 75}))
        report = _aggregate(coverage).report
        assert [t.fully_qualified_name for t in _nodes(report, TYPE)] == ["Shop.Orders+Line"]


# --------------------------------------------------------------------------- #
# Type locations
# --------------------------------------------------------------------------- #

class TestTypeSources:
    def test_type_location_comes_from_its_members(self):
        metrics = _metrics(
            _member("Shop.Orders.Place(int)", {LINES: 3}, source=SourceLocation("src/Orders.cs", 12, 20)),
            _member("Shop.Orders.Cancel(int)", {LINES: 5}, source=SourceLocation("src/Orders.cs", 30, 40)),
            _member("Shop.Orders.Log(int)", {LINES: 1}, source=SourceLocation("src/Orders.Log.cs", 1, 9)),
        )
        report = _aggregate(metrics).report
        assert report.solution.find(TYPE, "Shop.Orders").source == SourceLocation("src/Orders.cs", 12, 40)

    def test_known_parts_are_kept(self):
        metrics = _metrics(
            _type("Shop.Orders", {LINES: 9}, source=SourceLocation("src/Orders.cs", None, 90)),
            _member("Shop.Orders.Place(int)", {LINES: 3}, source=SourceLocation("SRC\\Orders.cs", 12, 20)),
        )
        report = _aggregate(metrics).report
        assert report.solution.find(TYPE, "Shop.Orders").source == SourceLocation("src/Orders.cs", 12, 90)

    def test_members_without_lines_leave_the_type_alone(self):
        metrics = _metrics(_member("Shop.Orders.Place(int)", {LINES: 3}, source=SourceLocation("src/Orders.cs")))
        report = _aggregate(metrics).report
        assert report.solution.find(TYPE, "Shop.Orders").source is None


# --------------------------------------------------------------------------- #
# Findings located by file and line
# --------------------------------------------------------------------------- #

class TestLocatedFindings:
    def _aggregate_findings(self, *findings, place=(12, 20), cancel=(24, 40)):
        metrics = _metrics(
            _type("Shop.Orders", {LINES: 30}, source=SourceLocation("src/Orders.cs", 5, 60)),
            _member("Shop.Orders.Place(int)", {LINES: 3}, source=SourceLocation("src/Orders.cs", *place)),
            _member("Shop.Orders.Cancel(int)", {LINES: 5}, source=SourceLocation("src/Orders.cs", *cancel)),
        )
        diagnostics = ParsedDocument(SourceFamily.DIAGNOSTICS, (), source_path="build.sarif", findings=findings)
        return _aggregate(metrics, diagnostics)

    def test_line_inside_a_member(self):
        result = self._aggregate_findings(
            LocatedFinding(CA, "src/Orders.cs", 15, 15, rule_id="CA1822", message="Mark members as static"),
        )
        value = result.report.solution.find(MEMBER, "Shop.Orders.Place(...)").metrics[CA]
        assert value.value == Decimal(1)
        (detail,) = value.breakdown["CA1822"].violations
        assert (detail.message, detail.uri, detail.start_line) == ("Mark members as static", "src/Orders.cs", 15)
        assert CA not in result.report.solution.find(MEMBER, "Shop.Orders.Cancel(...)").metrics
        assert result.warnings == ()

    def test_declaration_line_belongs_to_the_next_member(self):
        result = self._aggregate_findings(LocatedFinding(CA, "src/Orders.cs", 23, rule_id="CA1822"))
        assert result.report.solution.find(MEMBER, "Shop.Orders.Cancel(...)").metrics[CA].value == Decimal(1)

    def test_line_outside_members_goes_to_the_type(self):
        result = self._aggregate_findings(
            LocatedFinding(CA, "src/Orders.cs", 50, rule_id="CA1051"),
            LocatedFinding(CA, "src/Orders.cs", 13, rule_id="CA1822"),
        )
        orders = result.report.solution.find(TYPE, "Shop.Orders").metrics[CA]
        assert orders.value == Decimal(2)
        assert {rule: entry.count for rule, entry in orders.breakdown.items()} == {"CA1051": 1, "CA1822": 1}

    def test_paths_are_compared_loosely(self):
        result = self._aggregate_findings(LocatedFinding(CA, "file:///SRC/Orders.cs", 30))
        value = result.report.solution.find(MEMBER, "Shop.Orders.Cancel(...)").metrics[CA]
        assert value.value == Decimal(1)
        assert value.breakdown is None

    def test_single_line_members_keep_the_lines_below(self):
        result = self._aggregate_findings(
            LocatedFinding(CA, "src/Orders.cs", 18, rule_id="CA1822"), place=(12, 12), cancel=(30, 30),
        )
        assert result.report.solution.find(MEMBER, "Shop.Orders.Place(...)").metrics[CA].value == Decimal(1)

    def test_unknown_file_warns(self):
        result = self._aggregate_findings(LocatedFinding(CA, "src/Other.cs", 3, rule_id="CA1822"))
        assert [w.code for w in result.warnings] == ["finding-unattributed"]
        assert "src/Other.cs:3" in result.warnings[0].message
        assert CA not in result.report.solution.metrics


# --------------------------------------------------------------------------- #
# Baseline
# --------------------------------------------------------------------------- #

class TestBaseline:
    def _baseline(self):
        coverage = _coverage(
            _member("Shop.Orders.Place(int)", {SEQ: 80}),
            _member("Shop.Orders.Cancel(int)", {SEQ: 60}),
        )
        previous = _aggregate(coverage).report
        # baselines are read back from disk
        return report_from_dict(json.loads(dump_report(previous), parse_float=Decimal))

    def _current(self, baseline):
        coverage = _coverage(
            _member("Shop.Orders.Place(int)", {SEQ: 85}),
            _member("Shop.Orders.Refund(int)", {SEQ: 90}),
        )
        return _aggregate(coverage, baseline=baseline)

    def test_without_baseline_everything_is_new(self):
        report = _aggregate(*_orders_documents()).report
        assert not report.solution.is_new
        for node in report.solution.walk():
            if node.kind is not SOLUTION:
                assert node.is_new
            assert all(value.delta is None for value in node.metrics.values())

    def test_deltas_and_new_flags(self):
        result = self._current(self._baseline())
        root = result.report.solution
        place = root.find(MEMBER, "Shop.Orders.Place(...)")
        assert not place.is_new
        assert place.metrics[SEQ].delta == Decimal(5)
        refund = root.find(MEMBER, "Shop.Orders.Refund(...)")
        assert refund.is_new
        assert refund.metrics[SEQ].delta is None
        orders = root.find(TYPE, "Shop.Orders")
        assert not orders.is_new
        assert orders.metrics[SEQ].delta == Decimal("17.5")
        assert root.metrics[SEQ].delta == Decimal("17.5")

    def test_unchanged_value_has_zero_delta(self):
        baseline = self._baseline()
        coverage = _coverage(
            _member("Shop.Orders.Place(int)", {SEQ: 80}),
            _member("Shop.Orders.Cancel(int)", {SEQ: 60}),
        )
        result = _aggregate(coverage, baseline=baseline)
        place = result.report.solution.find(MEMBER, "Shop.Orders.Place(...)")
        assert place.metrics[SEQ].delta == Decimal(0)
        assert not place.is_new
        assert result.warnings == ()

    def test_fractional_mean_survives_a_written_baseline(self):
        coverage = _coverage(
            _member("Shop.Orders.Place(int)", {SEQ: 100}),
            _member("Shop.Orders.Cancel(int)", {SEQ: 0}),
            _member("Shop.Orders.Refund(int)", {SEQ: 0}),
        )
        previous = _aggregate(coverage).report
        baseline = report_from_dict(json.loads(dump_report(previous), parse_float=Decimal))

        report = _aggregate(coverage, baseline=baseline).report
        for node in (report.solution.find(TYPE, "Shop.Orders"), report.solution):
            value = node.metrics[SEQ]
            assert value.value == Decimal("33.3333")
            assert value.delta == 0
            assert classify_delta(value.delta, default_thresholds()[SEQ]) is DeltaTrend.NEUTRAL

    def test_vanished_symbols_are_reported_once(self):
        result = self._current(self._baseline())
        assert [w.code for w in result.warnings] == ["baseline-unmatched"]
        assert result.warnings[0].message.startswith("1 baseline symbol(s)")

    def test_same_name_at_another_level_is_new(self):
        baseline = _aggregate(_metrics(_type("Shop.Orders", {LINES: 3}))).report
        report = _aggregate(_metrics(_type("Shop.Orders.Cart", {LINES: 3})), baseline=baseline).report
        assert report.solution.find(NAMESPACE, "Shop.Orders").is_new
        assert report.solution.find(TYPE, "Shop.Orders.Cart").is_new
        assert not report.solution.find(ASSEMBLY, "Shop").is_new


# --------------------------------------------------------------------------- #
# Suppressions
# --------------------------------------------------------------------------- #

class TestSuppressions:
    def _documents(self):
        return [_coverage(
            _member("Shop.Orders.Place(int)", {SEQ: 80}),
            _member("Shop.Orders.Cancel(int)", {SEQ: 50}),
        )]

    def test_status_is_kept(self):
        suppressed = [SuppressedSymbolInfo(
            "Shop.Orders.Cancel(Order? order)", "AltCoverSequenceCoverage",
            rule_id="S1", justification="legacy path",
        )]
        result = _aggregate(*self._documents(), suppressed_symbols=suppressed)
        value = result.report.solution.find(MEMBER, "Shop.Orders.Cancel(...)").metrics[SEQ]
        assert value.status is ThresholdStatus.ERROR
        assert value.suppressed
        assert (value.suppression.rule_id, value.suppression.justification) == ("S1", "legacy path")
        assert result.warnings == ()
        assert result.report.metadata.suppressed_symbols == tuple(suppressed)

    def test_type_level_suppression(self):
        suppressed = [SuppressedSymbolInfo("Shop.Orders", "AltCoverSequenceCoverage", rule_id="S2")]
        report = _aggregate(*self._documents(), suppressed_symbols=suppressed).report
        assert report.solution.find(TYPE, "Shop.Orders").metrics[SEQ].suppressed
        assert not report.solution.find(MEMBER, "Shop.Orders.Place(...)").metrics[SEQ].suppressed

    def test_last_entry_wins(self):
        suppressed = [
            SuppressedSymbolInfo("Shop.Orders.Cancel()", "AltCoverSequenceCoverage", justification="first"),
            SuppressedSymbolInfo("Shop.Orders.Cancel(int)", "AltCoverSequenceCoverage", justification="second"),
        ]
        report = _aggregate(*self._documents(), suppressed_symbols=suppressed).report
        value = report.solution.find(MEMBER, "Shop.Orders.Cancel(...)").metrics[SEQ]
        assert value.suppression.justification == "second"

    def test_incomplete_and_unmatched_entries_warn(self):
        suppressed = [
            SuppressedSymbolInfo(None, "AltCoverSequenceCoverage"),
            SuppressedSymbolInfo("Shop.Orders.Cancel(int)", "NotAMetric"),
            SuppressedSymbolInfo("Shop.Orders.Gone(int)", "AltCoverSequenceCoverage"),
        ]
        result = _aggregate(*self._documents(), suppressed_symbols=suppressed)
        assert [w.code for w in result.warnings] == [
            "suppression-skipped", "suppression-skipped", "suppression-unmatched",
        ]
        assert result.warnings[2].fully_qualified_name == "Shop.Orders.Gone(...)"

    def test_shared_name_suppresses_the_deepest_level(self):
        suppressed = [SuppressedSymbolInfo("Shop", "AltCoverSequenceCoverage", rule_id="S3")]
        result = _aggregate(*self._documents(), suppressed_symbols=suppressed)
        assert result.report.solution.find(NAMESPACE, "Shop").metrics[SEQ].suppressed
        assert not result.report.solution.find(ASSEMBLY, "Shop").metrics[SEQ].suppressed
        assert result.warnings == ()

    def test_level_pins_the_entry(self):
        suppressed = [SuppressedSymbolInfo("Shop", "AltCoverSequenceCoverage", level=ASSEMBLY)]
        report = _aggregate(*self._documents(), suppressed_symbols=suppressed).report
        assert report.solution.find(ASSEMBLY, "Shop").metrics[SEQ].suppressed
        assert not report.solution.find(NAMESPACE, "Shop").metrics[SEQ].suppressed

    def test_level_without_match_warns(self):
        suppressed = [SuppressedSymbolInfo("Shop.Orders", "AltCoverSequenceCoverage", level=MEMBER)]
        result = _aggregate(*self._documents(), suppressed_symbols=suppressed)
        assert [w.code for w in result.warnings] == ["suppression-unmatched"]
        assert "at Member level" in result.warnings[0].message
        assert not result.report.solution.find(TYPE, "Shop.Orders").metrics[SEQ].suppressed


# --------------------------------------------------------------------------- #
# Metadata
# --------------------------------------------------------------------------- #

class TestMetadata:
    def test_defaults(self):
        metadata = _aggregate(*_orders_documents()).report.metadata
        assert metadata.generated_at == "2026-01-01T00:00:00+00:00"
        assert metadata.excluded_member_names == "MoveNext, SetStateMachine, cctor, ctor"
        assert metadata.metric_units[SEQ] == "percent"
        assert metadata.metric_units[LINES] == "count"
        assert metadata.metric_descriptions[SEQ] == "Share of sequence points executed by tests."
        assert set(metadata.thresholds) == set(MetricIdentifier)
        assert metadata.baseline_reference is None

    def test_only_used_rule_descriptions_are_kept(self):
        diagnostics = _diagnostics(
            _member("Shop.Orders.Place(int)", {
                CA: RawMetricValue(Decimal(1), breakdown={"CA1822": RuleBreakdownEntry(1)}),
            }),
            rules={
                "CA1822": RuleDescription("Mark members as static"),
                "CA2000": RuleDescription("Dispose objects before losing scope"),
            },
        )
        metadata = _aggregate(diagnostics).report.metadata
        assert list(metadata.rule_descriptions) == ["CA1822"]
        assert metadata.rule_descriptions["CA1822"].short_description == "Mark members as static"

    def test_aggregator_is_reusable(self):
        aggregator = MetricsAggregator(clock=_clock)
        first = aggregator.aggregate(_orders_documents())
        second = aggregator.aggregate(_orders_documents())
        assert report_to_dict(first.report) == report_to_dict(second.report)
