from .errors import ConfigurationError, StepFailure
from .loader import load_workflow
from .model import Workflow, JobDefinition, JobInstance, Status
from .runner import run_workflow
from .triggers import Event, evaluate
# Imported last: loading .runner binds the .matrix submodule on the package,
# which would otherwise shadow the dsl.matrix helper.
from .dsl import job, sh, uses, matrix, wf, JobBuilder, build

__all__ = [
    "job", "sh", "uses", "matrix", "wf", "JobBuilder", "build",
    "ConfigurationError", "StepFailure", "load_workflow",
    "Workflow", "JobDefinition", "JobInstance", "Status",
    "run_workflow", "Event", "evaluate",
]
