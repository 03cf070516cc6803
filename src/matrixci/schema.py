# schema.py
# Raw shape of a YAML workflow definition. The loader validates with these
# models and then converts to the plain dataclasses in model.py.

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class StepSchema(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: Optional[str] = None
    id: Optional[str] = None
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    env: Dict[str, Any] = Field(default_factory=dict)
    working_directory: Optional[str] = Field(default=None, alias="working-directory")

    @model_validator(mode="after")
    def _run_or_uses(self) -> "StepSchema":
        if (self.run is None) == (self.uses is None):
            raise ValueError("a step needs exactly one of 'run' or 'uses'")
        if self.run is not None and self.with_:
            raise ValueError("'with' is only valid on 'uses' steps")
        if self.uses is not None and self.working_directory is not None:
            raise ValueError("'working-directory' is only valid on 'run' steps")
        return self


class StrategySchema(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    matrix: Optional[Dict[str, Any]] = None
    fail_fast: bool = Field(default=True, alias="fail-fast")
    max_parallel: Optional[int] = Field(default=None, alias="max-parallel", ge=1)


class JobSchema(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: Optional[str] = None
    runs_on: Union[str, List[str]] = Field(default="ubuntu-latest", alias="runs-on")
    needs: Union[str, List[str]] = Field(default_factory=list)
    timeout_minutes: Optional[float] = Field(default=None, alias="timeout-minutes", gt=0)
    env: Dict[str, Any] = Field(default_factory=dict)
    secrets: List[str] = Field(default_factory=list)
    strategy: Optional[StrategySchema] = None
    steps: List[StepSchema] = Field(min_length=1)

    @field_validator("needs")
    @classmethod
    def _needs_list(cls, v: Union[str, List[str]]) -> List[str]:
        return [v] if isinstance(v, str) else list(v)


class WorkflowSchema(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: Optional[str] = None
    on: Union[str, List[str], Dict[str, Any]]
    env: Dict[str, Any] = Field(default_factory=dict)
    jobs: Dict[str, JobSchema] = Field(min_length=1)
