"""WorkloadBalancingPolicy: greedy rebalance of technician workload around the mean."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

OVERLOAD_MARGIN = 1.0
FILL_MARGIN = 2.0


@dataclass(frozen=True)
class Move:
    work_order_id: str
    from_technician: str
    to_technician: str


@dataclass(frozen=True)
class Fill:
    appointment_id: str
    technician_id: str


@dataclass
class BalancePlan:
    average: float
    moves: list[Move] = field(default_factory=list)
    fills: list[Fill] = field(default_factory=list)
    gaps: list[str] = field(default_factory=list)
    workloads: dict[str, int] = field(default_factory=dict)


def average_workload(workloads: Mapping[str, int]) -> float:
    if not workloads:
        return 0.0
    return sum(workloads.values()) / len(workloads)


def classify(workloads: Mapping[str, int]) -> tuple[float, list[str], list[str]]:
    """Return (avg, overloaded, underloaded); both lists sorted by id."""
    avg = average_workload(workloads)
    overloaded = sorted(t for t, load in workloads.items() if load > avg + OVERLOAD_MARGIN)
    underloaded = sorted(t for t, load in workloads.items() if load < avg - OVERLOAD_MARGIN)
    return avg, overloaded, underloaded


def plan_rebalance(
    workloads: Mapping[str, int],
    open_orders: Mapping[str, list[str]],
    unassigned: Iterable[str],
    eligible_targets: Iterable[str] | None = None,
) -> BalancePlan:
    """Pure function: compute moves and fills for one optimizer pass.

    1. avg is fixed for the whole pass; counters are updated in memory after
       every move, never re-queried, so a pass cannot oscillate.
    2. Overloaded technicians (load > avg + 1) are drained heaviest first
       (ties by id), one open order at a time, into the least-loaded
       underloaded technician (load < avg - 1, ties by id).
    3. Each unassigned appointment goes to the least-loaded target when that
       keeps it within avg + 2; otherwise it is reported as a gap.

    Args:
        workloads: technician id -> active work orders + booked appointments.
        open_orders: technician id -> movable work order ids, oldest first.
        unassigned: appointment ids in the order they should be filled.
        eligible_targets: technicians allowed to receive work (default: all).
    """
    load = dict(workloads)
    plan = BalancePlan(average=average_workload(load), workloads=load)
    if not load:
        plan.gaps = list(unassigned)
        return plan

    avg = plan.average
    targets = sorted(set(eligible_targets) & load.keys() if eligible_targets is not None else load.keys())
    queues = {tech: list(ids) for tech, ids in open_orders.items()}

    overloaded = sorted(
        (t for t in load if load[t] > avg + OVERLOAD_MARGIN),
        key=lambda t: (-load[t], t),
    )
    for source in overloaded:
        while load[source] > avg + OVERLOAD_MARGIN and queues.get(source):
            candidates = [t for t in targets if t != source and load[t] < avg - OVERLOAD_MARGIN]
            if not candidates:
                break
            target = min(candidates, key=lambda t: (load[t], t))
            work_order_id = queues[source].pop(0)
            plan.moves.append(Move(work_order_id, source, target))
            load[source] -= 1
            load[target] += 1

    for appointment_id in unassigned:
        if not targets:
            plan.gaps.append(appointment_id)
            continue
        best = min(targets, key=lambda t: (load[t], t))
        if load[best] + 1 <= avg + FILL_MARGIN:
            plan.fills.append(Fill(appointment_id, best))
            load[best] += 1
        else:
            plan.gaps.append(appointment_id)

    return plan
