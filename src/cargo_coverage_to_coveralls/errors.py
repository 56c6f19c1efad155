from __future__ import annotations


class PipelineError(Exception):
    """Base for stage failures; each subclass maps to its own process exit code."""

    exit_code = 1
    stage = "pipeline"


class ProvisioningError(PipelineError):
    exit_code = 2
    stage = "provision"


class BuildError(PipelineError):
    exit_code = 3
    stage = "build"


class TestFailure(PipelineError):
    __test__ = False

    exit_code = 4
    stage = "test"


class AggregationError(PipelineError):
    exit_code = 5
    stage = "aggregate"


class PublishError(PipelineError):
    exit_code = 6
    stage = "publish"
