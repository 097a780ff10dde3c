# src/pipeline/dag_builder.py — v1
"""DAG builder — build the step graph and validate a pipeline definition.

Produces a staged execution plan. Detects cycles and unresolvable
dependencies before any step is allowed to run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import networkx as nx

from waveflow.core.errors import DAGCycleError, PipelineDefinitionError
from waveflow.core.models import Pipeline

logger = logging.getLogger(__name__)


@dataclass
class ExecutionPlan:
    """Ordered execution plan for pipeline steps.

    stages is a list of "levels": steps within the same level have no
    mutual ordering and may run concurrently. The scheduler does not wait
    for a whole level; it only uses readiness, so the plan is informative.
    """

    stages: list[list[str]] = field(default_factory=list)
    total_steps: int = 0

    @property
    def flat_order(self) -> list[str]:
        """Return a flat topological ordering (no concurrency info)."""
        return [step for stage in self.stages for step in stage]


def build_graph(dependency_map: dict[str, list[str]]) -> nx.DiGraph:
    """Build a DiGraph with an edge dependency -> dependent.

    Raises:
        PipelineDefinitionError: If a dependency names an unknown step.
    """
    graph = nx.DiGraph()
    graph.add_nodes_from(dependency_map)
    for step_id, deps in dependency_map.items():
        for dep in deps:
            if dep not in dependency_map:
                raise PipelineDefinitionError(
                    f"step '{step_id}' depends on non-existent step '{dep}'"
                )
            graph.add_edge(dep, step_id)
    return graph


def build_dag(dependency_map: dict[str, list[str]]) -> ExecutionPlan:
    """Build an execution DAG from step dependency declarations.

    Args:
        dependency_map: step_id -> list of upstream step IDs.

    Returns:
        ExecutionPlan with staged execution order.

    Raises:
        DAGCycleError: If the graph contains a cycle.
        PipelineDefinitionError: If a dependency is missing.
    """
    if not dependency_map:
        return ExecutionPlan()

    graph = build_graph(dependency_map)

    try:
        cycle_edges = nx.find_cycle(graph)
    except nx.NetworkXNoCycle:
        cycle_edges = []
    if cycle_edges:
        cycle = [edge[0] for edge in cycle_edges] + [cycle_edges[0][0]]
        raise DAGCycleError(cycle)

    stages = [sorted(gen) for gen in nx.topological_generations(graph)]
    plan = ExecutionPlan(stages=stages, total_steps=graph.number_of_nodes())
    logger.info(
        "DAG built: %d steps in %d stages → %s",
        plan.total_steps,
        len(plan.stages),
        plan.flat_order,
    )
    return plan


def validate_pipeline(
    pipeline: Pipeline, summarizer_persona: str | None = None
) -> ExecutionPlan:
    """Validate a pipeline definition and return its execution plan.

    Besides the graph checks, every matrix items_source must point at a
    declared upstream step, and a step's compaction persona must differ
    from the step's own persona.
    """
    for step in pipeline.steps:
        compaction = step.handover.compaction
        relay_persona = (compaction.persona if compaction else None) or summarizer_persona
        if relay_persona is not None and relay_persona == step.persona:
            raise PipelineDefinitionError(
                f"step '{step.id}' cannot use its own persona '{step.persona}' "
                "as relay summarizer"
            )
        if step.strategy is not None and step.strategy.source_ref[0] == step.id:
            raise PipelineDefinitionError(
                f"matrix step '{step.id}' cannot read items from itself"
            )
    return build_dag(pipeline.dependency_map())
