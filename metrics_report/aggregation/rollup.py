"""Bottom-up rollup of metric values to ancestor nodes."""

from decimal import ROUND_HALF_EVEN, Decimal

from metrics_report.aggregation.arena import NodeArena
from metrics_report.aggregation.merge import is_additive, merge_breakdowns
from metrics_report.catalog import RollupRule, descriptor, metric_sort_key
from metrics_report.models import MetricKey, MetricValue

# Means are kept to this many decimal places so a written report reads back
# as the same value.
MEAN_PLACES = 4
_MEAN_QUANTUM = Decimal(1).scaleb(-MEAN_PLACES)


def aggregate_values(rule: RollupRule, values: list[Decimal]) -> Decimal | None:
    if not values:
        return None
    if rule is RollupRule.SUM:
        return sum(values, Decimal(0))
    if rule is RollupRule.MAX:
        return max(values)
    mean = sum(values, Decimal(0)) / len(values)
    if mean.as_tuple().exponent < -MEAN_PLACES:
        return mean.quantize(_MEAN_QUANTUM, rounding=ROUND_HALF_EVEN)
    return mean


def roll_up(arena: NodeArena) -> None:
    """Fill every parent's missing metrics from its direct children.

    Children are processed before parents, so a child's rolled-up value feeds
    its parent. A value a node received directly from a source is kept,
    except for diagnostics counts: violations reported on a node itself are
    added to those of its children. Null child values do not count towards
    a mean.
    """
    for draft in arena.post_order():
        children = arena.children(draft.key)
        if not children:
            continue
        metrics: set[MetricKey] = set()
        for child in children:
            metrics.update(child.metrics)
        for metric in sorted(metrics, key=metric_sort_key):
            own = draft.metrics.get(metric)
            has_own = own is not None and own.value is not None
            if has_own and not is_additive(metric):
                continue
            contributions = [
                child.metrics[metric] for child in children
                if metric in child.metrics and child.metrics[metric].value is not None
            ]
            if has_own:
                contributions.insert(0, own)
            rule = descriptor(metric).rollup
            unit = next((c.unit for c in contributions if c.unit), None) or descriptor(metric).unit
            breakdown = None
            if rule is RollupRule.SUM:
                breakdown = merge_breakdowns(c.breakdown for c in contributions)
            draft.metrics[metric] = MetricValue(
                value=aggregate_values(rule, [c.value for c in contributions]),
                unit=unit,
                breakdown=breakdown,
            )
