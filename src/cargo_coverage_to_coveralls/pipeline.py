from __future__ import annotations

from dataclasses import dataclass, field

from .aggregate import aggregate_coverage
from .args_config import build_config, parse_args
from .build import build_project, instrumented_env, remove_stale_outputs, run_tests
from .command_utils import log, log_error
from .errors import PipelineError
from .models import CoverageReport, PipelineConfig
from .publish import publish_report
from .state import PipelineState, transition
from .toolchain import provision_toolchain
from .trigger import TriggerRules, should_run


@dataclass
class PipelineRun:
    """Outcome of one run: the state trail, the report (if any) and the failure (if any)."""

    state: PipelineState = PipelineState.IDLE
    history: list[PipelineState] = field(default_factory=lambda: [PipelineState.IDLE])
    report: CoverageReport | None = None
    error: PipelineError | None = None

    def advance(self, target: PipelineState, allow_skip_publish: bool = False) -> None:
        self.state = transition(self.state, target, allow_skip_publish)
        self.history.append(self.state)

    @property
    def exit_code(self) -> int:
        if self.state is PipelineState.FAILED:
            return self.error.exit_code if self.error is not None else 1
        return 0


def run_pipeline(config: PipelineConfig) -> PipelineRun:
    run = PipelineRun()

    rules = TriggerRules(push_branches=config.push_branches)
    if config.event is None or not should_run(config.event, rules):
        log("[skip] Event does not match any trigger rule; nothing to do")
        config.credential.clear()
        return run

    log(f"[0/6] Triggered by {config.event.event_kind.value} on '{config.event.branch}'")
    try:
        run.advance(PipelineState.PROVISIONING)
        if config.skip_provision:
            log("[1/6] Skip toolchain provisioning")
        else:
            log(
                f"[1/6] Provision toolchain {config.toolchain.compiler_channel} "
                f"({', '.join(sorted(config.toolchain.components))}, "
                f"{config.toolchain.instrumentation_tool})"
            )
            provision_toolchain(config.toolchain)

        run.advance(PipelineState.BUILDING)
        log(f"[2/6] Build instrumented project in {config.workdir}")
        remove_stale_outputs(config)
        env = instrumented_env(config)
        build_project(config, env)

        run.advance(PipelineState.TESTING)
        log(f"[3/6] Run tests (LLVM_PROFILE_FILE={config.profile_pattern})")
        profile_data = run_tests(config, env)

        run.advance(PipelineState.AGGREGATING)
        log(f"[4/6] Aggregate coverage -> {config.output}")
        run.report = aggregate_coverage(config, profile_data)

        if config.skip_publish:
            log("[5/6] Skip publishing")
            run.advance(PipelineState.SUCCEEDED, allow_skip_publish=True)
        else:
            run.advance(PipelineState.PUBLISHING)
            log(f"[5/6] Publish report to {config.endpoint}")
            publish_report(
                run.report,
                config.credential,
                config.context,
                source_root=config.source_root,
                endpoint=config.endpoint,
                timeout=config.timeout,
            )
            run.advance(PipelineState.SUCCEEDED)
    except PipelineError as exc:
        run.error = exc
        run.advance(PipelineState.FAILED)
        log_error(f"{exc.stage}: {exc}")
        return run
    except Exception:
        run.advance(PipelineState.FAILED)
        raise
    finally:
        config.credential.clear()

    log(f"[6/6] Done. Report: {config.output}")
    return run


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    config = build_config(args)
    return run_pipeline(config).exit_code
