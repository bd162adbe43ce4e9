"""Notification targets and threshold alarms."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence
from datetime import timedelta

from topology.errors import TopologyValidationError
from topology.graph import ResourceGraph
from topology.nodes import Alarm, Comparison, MetricSource, NotificationTarget

logger = logging.getLogger(__name__)

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
# Periods CloudWatch supports below one minute (high-resolution metrics)
_SUB_MINUTE_PERIODS = (10, 30)


def create_notification_target(
    graph: ResourceGraph,
    name: str = "AlarmTopic",
    subscribers: Sequence[str] = (),
    *,
    display_name: str = "",
) -> NotificationTarget:
    """Define a notification channel with e-mail subscribers."""
    invalid = [address for address in subscribers if not _EMAIL.match(address)]
    if invalid:
        raise TopologyValidationError(
            name, "subscriber-email", f"not e-mail addresses: {invalid}"
        )
    return graph.add(
        NotificationTarget(
            name=name,
            display_name=display_name,
            subscribers=tuple(dict.fromkeys(subscribers)),
        )
    )


def create_alarm(
    graph: ResourceGraph,
    name: str,
    metric: MetricSource,
    period: timedelta,
    threshold: float,
    comparison: Comparison,
    evaluation_periods: int,
    datapoints_to_alarm: int,
    actions: Sequence[NotificationTarget],
    *,
    description: str = "",
) -> Alarm:
    """Define an alarm on ``metric`` that notifies every target in ``actions``.

    The alarm only watches; it never remediates. Several alarms may share a
    target, which stays a single node.
    """
    source = graph.get(metric.node)
    if source.kind is not metric.node_kind:
        raise TopologyValidationError(
            name, "metric-source-kind", f"{metric.node!r} is not a {metric.node_kind.value}"
        )
    for target in actions:
        graph.require(target, name)

    seconds = period.total_seconds()
    if seconds not in _SUB_MINUTE_PERIODS and (seconds <= 0 or seconds % 60):
        raise TopologyValidationError(
            name,
            "alarm-period",
            f"period must be 10s, 30s or a multiple of 60s, got {seconds:g}s",
        )
    if not math.isfinite(threshold):
        raise TopologyValidationError(name, "finite-threshold", f"threshold {threshold} is not finite")
    if evaluation_periods < 1:
        raise TopologyValidationError(
            name, "evaluation-periods", f"evaluation periods must be at least 1, got {evaluation_periods}"
        )
    if not 1 <= datapoints_to_alarm <= evaluation_periods:
        raise TopologyValidationError(
            name,
            "datapoints-within-evaluation-periods",
            f"datapoints to alarm ({datapoints_to_alarm}) must be between 1 and "
            f"evaluation periods ({evaluation_periods})",
        )
    if not actions:
        raise TopologyValidationError(name, "alarm-actions", "an alarm needs a notification target")

    action_names = tuple(dict.fromkeys(target.name for target in actions))
    alarm = graph.add(
        Alarm(
            name=name,
            metric=metric,
            period_seconds=int(seconds),
            threshold=threshold,
            comparison=comparison,
            evaluation_periods=evaluation_periods,
            datapoints_to_alarm=datapoints_to_alarm,
            actions=action_names,
            description=description,
        ),
        depends_on=[source, *action_names],
    )
    logger.info(
        "Alarm %s: %s.%s %s %g, notifying %s",
        name,
        metric.node,
        metric.metric_name,
        comparison.value,
        threshold,
        ", ".join(action_names),
    )
    return alarm
