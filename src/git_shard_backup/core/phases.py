"""Phased transfer engine.

A node's repositories are copied in four rsync passes, each scoped by
filter rules:

1. auxiliary files (config, HEAD, hooks, info, ...): never point at data
2. ``packed-refs``
3. loose refs and reflogs: read after packed-refs, so they win on conflict
4. objects and packs, minus packs that are still being written

Refs are copied before the objects they point to; the objects pass that
follows in the same job is what makes the copy consistent, so a job whose
refs pass fails stops there and is reported failed as a whole.
"""

import logging
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Optional

from ..config import TransferConfig
from .context import RunContext
from .models import JobResult, JobStatus, PhaseResult, TransferJob

logger = logging.getLogger(__name__)

# rsync: "partial transfer due to vanished source files"
RSYNC_VANISHED = 24


class Phase(Enum):
    """Transfer phases, in execution order."""

    AUXILIARY = "auxiliary"
    PACKED_REFS = "packed-refs"
    LOOSE_REFS = "loose-refs"
    OBJECTS = "objects"
    SPECIAL = "special"

    @property
    def compress(self) -> bool:
        # pack data is already zlib compressed
        return self is not Phase.OBJECTS


REPOSITORY_PHASES = [Phase.AUXILIARY, Phase.PACKED_REFS, Phase.LOOSE_REFS, Phase.OBJECTS]

# (directories leading to repositories, repository pattern)
LAYOUTS = [
    # flat: <shard>/<repo>.git
    (["/*/"], "/*/*.git"),
    # nested: <shard>/nw/<aa>/<bb>/<cc>/<network>/<repo>.git
    (
        ["/*/", "/*/nw/", "/*/nw/??/", "/*/nw/??/??/", "/*/nw/??/??/??/", "/*/nw/??/??/??/*/"],
        "/*/nw/??/??/??/*/*.git",
    ),
]

# Temporary files git creates while writing packs and loose objects
IN_PROGRESS_OBJECTS = ["tmp_*", "*.tmp", "*.lock"]


def _walk_layouts(body) -> list[str]:
    rules: list[str] = []
    for parents, repo in LAYOUTS:
        for parent in parents:
            rule = f"+ {parent}"
            if rule not in rules:
                rules.append(rule)
        rules.append(f"+ {repo}/")
        rules.extend(body(repo))
    rules.append("- *")
    return rules


def phase_rules(phase: Phase, cache_dirs: Optional[list[str]] = None) -> list[str]:
    """rsync filter rules for one phase. First matching rule wins."""
    if phase is Phase.AUXILIARY:
        return _walk_layouts(
            lambda repo: [
                f"- {repo}/objects/",
                f"- {repo}/refs/",
                f"- {repo}/logs/",
                f"- {repo}/packed-refs",
                f"+ {repo}/**",
            ]
        )
    if phase is Phase.PACKED_REFS:
        return _walk_layouts(lambda repo: [f"+ {repo}/packed-refs"])
    if phase is Phase.LOOSE_REFS:
        return _walk_layouts(
            lambda repo: [
                f"+ {repo}/refs/",
                f"+ {repo}/refs/**",
                f"+ {repo}/logs/",
                f"+ {repo}/logs/**",
            ]
        )
    if phase is Phase.OBJECTS:

        def objects(repo: str) -> list[str]:
            rules = [f"+ {repo}/objects/"]
            for pattern in IN_PROGRESS_OBJECTS:
                rules.append(f"- {repo}/objects/{pattern}")
                rules.append(f"- {repo}/objects/**/{pattern}")
            rules.append(f"+ {repo}/objects/**")
            return rules

        return _walk_layouts(objects)
    if phase is Phase.SPECIAL:
        rules = [f"- /{name}/" for name in cache_dirs or []]
        rules.extend(["+ /__*__/", "+ /__*__/**", "- *"])
        return rules
    raise ValueError(f"unknown phase: {phase}")


def build_rsync_command(
    settings: TransferConfig,
    job: TransferJob,
    phase: Phase,
    rules_file: Path,
    remote_shell: str,
) -> list[str]:
    """Assemble the rsync argv for one phase of a job."""
    argv = [settings.rsync, "-a", "-r", "-H", "--numeric-ids"]
    if job.file_list is not None:
        argv += ["--relative", f"--files-from={job.file_list}", "--ignore-missing-args"]
    argv.append(f"--filter=merge {rules_file}")
    if job.link_dest:
        argv.append(f"--link-dest={job.link_dest}")
    if phase.compress:
        argv.append("-z")
    argv += ["-e", remote_shell, f"--rsync-path={settings.remote_rsync}"]
    argv += settings.extra_args
    argv += [job.source, job.destination]
    return argv


class PhasedTransfer:
    """Runs the ordered phases of a transfer job through a remote shell."""

    def __init__(self, context: RunContext, shell):
        self.context = context
        self.shell = shell
        self.settings = context.config.transfer
        self._rules: dict[Phase, Path] = {}
        self._lock = threading.Lock()

    def rules_file(self, phase: Phase) -> Path:
        """Write the rules for ``phase`` into the workspace once per run."""
        with self._lock:
            path = self._rules.get(phase)
            if path is None:
                assert self.context.workspace is not None
                rules_dir = self.context.workspace / "rules"
                rules_dir.mkdir(exist_ok=True)
                path = rules_dir / f"{phase.value}.rules"
                rules = phase_rules(phase, self.settings.cache_dirs)
                path.write_text("\n".join(rules) + "\n")
                self._rules[phase] = path
        return path

    def _run_phase(self, job: TransferJob, phase: Phase, remote_shell: str) -> PhaseResult:
        label = f"{job.node} {job.label}/{phase.value}"
        vanished: list[str] = []

        def on_line(line: str) -> None:
            if "vanished" in line:
                vanished.append(line)
                logger.warning("[%s] source missing, skipped: %s", label, line)

        argv = build_rsync_command(
            self.settings, job, phase, self.rules_file(phase), remote_shell
        )
        start = time.monotonic()
        returncode = self.shell.spawn(argv, label, on_line=on_line)
        return PhaseResult(
            phase=phase.value,
            returncode=returncode,
            missing_sources=bool(vanished) or returncode == RSYNC_VANISHED,
            duration_seconds=time.monotonic() - start,
        )

    def run_job(self, job: TransferJob) -> JobResult:
        """Run every phase of ``job`` in order, stopping at the first failure."""
        result = JobResult(
            node=job.node.name,
            label=job.label,
            status=JobStatus.SUCCEEDED,
            network_count=len(job.network_ids),
        )
        logger.info(
            "[%s] %s: %d network(s), %d phase(s)",
            job.node,
            job.label,
            len(job.network_ids),
            len(job.phases),
        )
        remote_shell = self.shell.rsync_shell(job.node)

        for phase in job.phases:
            if self.context.aborted:
                result.status = JobStatus.ABORTED
                result.message = f"aborted before {phase.value}"
                break

            phase_result = self._run_phase(job, phase, remote_shell)
            result.phases.append(phase_result)

            if self.context.aborted:
                result.status = JobStatus.ABORTED
                result.message = f"aborted during {phase.value}"
                break
            if not phase_result.ok:
                result.status = JobStatus.FAILED
                result.message = (
                    f"{phase.value} phase exited with status {phase_result.returncode}"
                )
                logger.warning("[%s] %s: %s", job.node, job.label, result.message)
                break
            logger.debug(
                "[%s] %s/%s done in %.1fs",
                job.node,
                job.label,
                phase.value,
                phase_result.duration_seconds,
            )

        result.completed_at = time.time()
        if result.ok:
            logger.info("[%s] %s transferred", job.node, job.label)
        return result
