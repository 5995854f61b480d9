"""Build orchestration: discover -> validate -> extract -> package -> script ->
describe -> wrap.

Stages run strictly in sequence. The first fatal :class:`PipelineError` stops the
run; the result records which stage failed and why. A failure while wrapping
leaves every earlier artifact in place and is reported as a partial success.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from intunewin_builder.cancel import CancelToken
from intunewin_builder.config import BuilderSettings
from intunewin_builder.detect.base import DiscoveryReport, discover_source_trees
from intunewin_builder.errors import PipelineError, StagingError, ToolInvocationError
from intunewin_builder.logging import RunLog
from intunewin_builder.metadata.extract import ExtractionResult, extract_metadata
from intunewin_builder.naming import archive_name, slug
from intunewin_builder.package.builder import Confirm, PackageBuilder
from intunewin_builder.planner import DescriptorFiles, emit_descriptor
from intunewin_builder.script.generator import write_install_script
from intunewin_builder.types import (
    CompressionOutcome,
    FinalArtifact,
    SourceTree,
    ValidationResult,
)
from intunewin_builder.validator import ensure_valid, required_layout, validate_source_tree
from intunewin_builder.wrap.assembler import ToolRunner, assemble, run_tool
from intunewin_builder.wrap.tool import ensure_tool

Select = Callable[[list[SourceTree]], "SourceTree | None"]


def _always(answer: bool) -> Confirm:
    return lambda _question: answer


@dataclass
class BuildContext:
    settings: BuilderSettings
    confirm: Confirm = field(default_factory=lambda: _always(False))
    select: Select | None = None
    cancel: CancelToken = field(default_factory=CancelToken)
    tool_runner: ToolRunner = run_tool
    source: str | None = None


@dataclass
class PipelineResult:
    status: Literal["success", "partial", "failed"] = "failed"
    discovery: DiscoveryReport | None = None
    tree: SourceTree | None = None
    validation: ValidationResult | None = None
    extraction: ExtractionResult | None = None
    compression: CompressionOutcome | None = None
    script: Path | None = None
    descriptor: DescriptorFiles | None = None
    artifact: FinalArtifact | None = None
    failed_stage: str | None = None
    error: str | None = None


def work_dir(settings: BuilderSettings, tree: SourceTree) -> Path:
    return settings.output_dir / "work" / slug(tree.name)


def _choose(ctx: BuildContext, report: DiscoveryReport) -> SourceTree:
    if ctx.source is not None:
        for tree in report.candidates:
            if tree.name.lower() == ctx.source.lower():
                return tree
        raise PipelineError(f"No candidate named {ctx.source!r}", stage="select")
    if len(report.candidates) == 1 or ctx.select is None:
        return report.candidates[0]
    chosen = ctx.select(report.candidates)
    if chosen is None:
        raise PipelineError("No source tree selected", stage="select")
    return chosen


def package_tree(tree: SourceTree, ctx: BuildContext, log: RunLog, result: PipelineResult) -> None:
    """Run every stage after selection for *tree*, filling *result* as it goes."""
    settings = ctx.settings
    cancel = ctx.cancel
    result.tree = tree
    workdir = work_dir(settings, tree)

    with log.step("validate"):
        cancel.raise_if_cancelled("validate")
        result.validation = validate_source_tree(tree, required_layout(settings))
        for missing in result.validation.missing_optional:
            log.warning("optional file missing: %s", missing)
        ensure_valid(result.validation)

    with log.step("extract"):
        cancel.raise_if_cancelled("extract")
        result.extraction = extract_metadata(
            tree.path / settings.manifest_name, fallback_name=tree.name
        )
        for warning in result.extraction.warnings:
            log.warning("metadata %s", warning)
        if result.extraction.degraded:
            log.warning("descriptor is degraded; detection rules may need manual edits")

    with log.step("package"):
        builder = PackageBuilder(settings, confirm=ctx.confirm, log=log, cancel=cancel)
        result.compression = builder.build(tree, workdir / archive_name(tree.name))

    with log.step("script"):
        cancel.raise_if_cancelled("script")
        result.script = write_install_script(
            tree,
            result.extraction.descriptor,
            result.compression.output_path.name,
            workdir,
            settings,
        )

    with log.step("describe"):
        result.descriptor = emit_descriptor(
            settings.output_dir,
            tree,
            result.extraction.descriptor,
            result.compression,
            result.script,
            result.extraction.warnings,
        )

    with log.step("assemble"):
        cancel.raise_if_cancelled("assemble")
        tool = ensure_tool(settings, confirm=ctx.confirm, log=log)
        result.artifact = assemble(
            tool,
            result.compression.output_path,
            result.script,
            tree.name,
            settings.output_dir,
            log=log,
            staging_root=settings.staging_root,
            window_seconds=settings.recent_window_seconds,
            runner=ctx.tool_runner,
            cancel=cancel,
        )


def run_pipeline(
    ctx: BuildContext, log: RunLog, tree: SourceTree | None = None
) -> PipelineResult:
    """Run the whole pipeline; discovery is skipped when *tree* is given."""
    result = PipelineResult()
    try:
        if tree is None:
            with log.step("discover"):
                report = discover_source_trees(ctx.settings.source_root, ctx.settings.patterns)
                result.discovery = report
                if report.error:
                    log.error("discovery failed: %s", report.error)
                if not report.candidates:
                    hint = ", ".join(report.unmatched) or "none"
                    raise PipelineError(
                        f"No deployments matched under {ctx.settings.source_root} "
                        f"(other directories: {hint})",
                        stage="discover",
                    )
            with log.step("select"):
                tree = _choose(ctx, report)
                log.info("selected %s", tree.path)
        package_tree(tree, ctx, log, result)
    except (ToolInvocationError, StagingError) as exc:
        result.failed_stage, result.error = exc.stage, str(exc)
        result.status = "partial"
        log.error("wrapping failed; earlier artifacts are kept: %s", exc)
        return result
    except PipelineError as exc:
        result.failed_stage, result.error = exc.stage, str(exc)
        log.error("pipeline stopped at %s: %s", exc.stage, exc)
        return result
    except OSError as exc:
        result.failed_stage = log.failed_stage or "pipeline"
        result.error = str(exc)
        log.exception("I/O failure during %s", result.failed_stage)
        return result

    result.status = "success"
    return result
