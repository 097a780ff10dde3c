# src/core/models.py — v1
"""Pipeline definition models shared across modules.

A Pipeline is immutable once loaded; runtime state lives in
pipeline.execution, never on these models.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from waveflow.contract.models import ContractSpec


# === PERSONA ===


class Persona(BaseModel):
    """Role binding passed through to the adapter. Permissions are external."""

    name: str
    adapter: str = "claude"
    model: str | None = None
    temperature: float = 0.7
    timeout_minutes: float | None = None
    system_prompt: str = ""
    context_window: int | None = None


# === ARTIFACTS & MEMORY ===


class ArtifactRef(BaseModel):
    """Upstream artifact consumed by a step."""

    model_config = ConfigDict(populate_by_name=True)

    step: str
    artifact: str
    as_: str | None = Field(default=None, alias="as")
    optional: bool = False

    @field_validator("artifact", "as_")
    @classmethod
    def _plain_name(cls, value: str | None) -> str | None:
        # injected under .waveflow/artifacts, so the name must stay a single entry
        if value is not None and (value in ("", ".", "..") or "/" in value or "\\" in value):
            raise ValueError(f"artifact name '{value}' must be a plain file name")
        return value

    @property
    def target_name(self) -> str:
        return self.as_ or self.artifact


class ArtifactDef(BaseModel):
    """Output a step promises to produce, relative to its workspace."""

    name: str
    path: str
    type: Literal["json", "markdown", "text", "file"] = "file"
    required: bool = True
    source: Literal["file", "stdout"] = "file"


class MemoryConfig(BaseModel):
    strategy: Literal["fresh"] = "fresh"
    inject_artifacts: list[ArtifactRef] = Field(default_factory=list)


class Mount(BaseModel):
    source: str
    target: str
    mode: Literal["readonly", "readwrite"] = "readonly"


class WorkspaceConfig(BaseModel):
    mounts: list[Mount] = Field(default_factory=list)


# === HANDOVER ===


class CompactionConfig(BaseModel):
    """Relay settings for one step. None fields fall back to Settings."""

    threshold_percent: int | None = Field(default=None, ge=1, le=100)
    persona: str | None = None
    context_window: int | None = Field(default=None, gt=0)


class HandoverConfig(BaseModel):
    contract: ContractSpec | None = None
    compaction: CompactionConfig | None = None
    max_retries: int | None = Field(default=None, ge=0)


class MatrixStrategy(BaseModel):
    """Fan-out of one step over the items of an upstream artifact."""

    items_source: str
    item_key: str | None = None
    max_concurrency: int | None = None
    failure_policy: Literal["all_must_pass", "best_effort"] | None = None

    @property
    def source_ref(self) -> tuple[str, str]:
        """Split ``"<step_id>/<artifact>"`` into its parts."""
        step_id, sep, artifact = self.items_source.partition("/")
        if not sep or not step_id or not artifact:
            raise ValueError(
                f"items_source must be '<step_id>/<artifact>', got {self.items_source!r}"
            )
        return step_id, artifact


# === STEP & PIPELINE ===


class Step(BaseModel):
    """Unit of work. ``kind`` selects the execution path explicitly."""

    id: str
    persona: str
    kind: Literal["normal", "matrix"] = "normal"
    prompt: str = ""
    dependencies: list[str] = Field(default_factory=list)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    output_artifacts: list[ArtifactDef] = Field(default_factory=list)
    handover: HandoverConfig = Field(default_factory=HandoverConfig)
    strategy: MatrixStrategy | None = None
    optional: bool = False
    timeout_minutes: float | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def check_kind(self) -> Step:
        if self.kind == "matrix" and self.strategy is None:
            raise ValueError(f"matrix step '{self.id}' requires a strategy")
        if self.kind == "normal" and self.strategy is not None:
            raise ValueError(f"step '{self.id}' declares a strategy but kind is 'normal'")
        if self.strategy is not None:
            self.strategy.source_ref  # noqa: B018 - validates the format
        return self

    @property
    def upstream(self) -> list[str]:
        """Ordering edges: explicit dependencies plus injection producers."""
        producers = [ref.step for ref in self.memory.inject_artifacts]
        if self.strategy is not None:
            producers.append(self.strategy.source_ref[0])
        seen: list[str] = []
        for step_id in [*self.dependencies, *producers]:
            if step_id not in seen:
                seen.append(step_id)
        return seen


class Pipeline(BaseModel):
    """Immutable pipeline definition."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    steps: list[Step] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unique_ids(self) -> Pipeline:
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"duplicate step id '{step.id}'")
            seen.add(step.id)
        return self

    @property
    def step_ids(self) -> list[str]:
        return [s.id for s in self.steps]

    def get_step(self, step_id: str) -> Step:
        for step in self.steps:
            if step.id == step_id:
                return step
        raise KeyError(step_id)

    def dependency_map(self) -> dict[str, list[str]]:
        """step_id -> upstream step IDs, in definition order."""
        return {s.id: s.upstream for s in self.steps}
