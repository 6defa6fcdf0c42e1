from __future__ import annotations

import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional, Set, Tuple

from goodbot.common.config import Credentials, LanguageSettings
from goodbot.common.env import Env
from goodbot.common.logging_setup import get_logger
from goodbot.common.paths import resolve_path
from goodbot.project.asciicast import RecordingError, normalize
from goodbot.project.scenes import (
    NotInProjectError,
    RecordingsDirAbsent,
    ensure_renders_dir,
    final_video,
    find_owning_scene,
    list_recordings,
    list_scenes,
    render_artifact_path,
    uses_narration,
)
from goodbot.pipeline.steps import assemble_spec, record_spec, render_recording_spec, setup_spec
from goodbot.session.process_session import (
    CommandSpec,
    ContainerRuntime,
    ExitStatus,
    ProcessSession,
    SessionCancelled,
    SessionError,
)


log = get_logger("pipeline")


class StepFailed(RuntimeError):
    pass


class RenderFailed(RuntimeError):
    pass


# Per-recording problems: logged and skipped, never fatal to sibling work.
# SessionCancelled is a SessionError but always propagates.
_RECORDING_FAILURES = (RecordingError, OSError, SessionError, RenderFailed, NotInProjectError)


@dataclass
class RenderReport:
    attempted: int = 0
    rendered: List[Path] = field(default_factory=list)
    failed: List[Tuple[Path, str]] = field(default_factory=list)
    skipped_scenes: List[Tuple[Path, str]] = field(default_factory=list)
    empty_scenes: List[Path] = field(default_factory=list)


SessionFactory = Callable[..., ProcessSession]


class Pipeline:
    """Setup -> Record -> RenderAllScenes -> AssembleVideo, one step after another."""

    def __init__(
        self,
        *,
        env: Env,
        runtime: ContainerRuntime,
        stdin: Optional[BinaryIO] = None,
        stdout: Optional[BinaryIO] = None,
        stderr: Optional[BinaryIO] = None,
        session_factory: SessionFactory = ProcessSession,
    ):
        self.env = env
        self.runtime = runtime
        self.stdin = stdin if stdin is not None else sys.stdin.buffer
        self.stdout = stdout if stdout is not None else sys.stdout.buffer
        self.stderr = stderr if stderr is not None else sys.stderr.buffer
        self._session_factory = session_factory

        self._pulled: Set[str] = set()
        self._pull_lock = threading.Lock()
        self._report_lock = threading.Lock()
        self._active: Set[ProcessSession] = set()
        # reentrant: cancel() runs from a signal handler on the main thread
        self._active_lock = threading.RLock()
        self._cancelled = threading.Event()

    # -- sessions -------------------------------------------------------

    def _ensure_image(self, image: str) -> None:
        if not self.env.pull_images:
            return
        pull = getattr(self.runtime, "pull", None)
        if pull is None:
            return
        with self._pull_lock:
            if image in self._pulled:
                return
            pull(image)
            self._pulled.add(image)

    def _new_session(self, spec: CommandSpec) -> ProcessSession:
        return self._session_factory(
            self.runtime,
            spec,
            stdin=self.stdin if spec.interactive else None,
            stdout=self.stdout,
            stderr=self.stderr,
            queue_size=self.env.input_queue_size,
            wait_timeout=float(self.env.wait_timeout_sec) or None,
            remove_on_dispose=not self.env.keep_containers,
        )

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise SessionCancelled("pipeline cancelled")

    def run_session(self, spec: CommandSpec) -> ExitStatus:
        session = self._new_session(spec)
        with self._active_lock:
            # under the lock: cancel() either sees this session or we see the flag
            self._check_cancelled()
            self._active.add(session)
        try:
            return session.run()
        finally:
            with self._active_lock:
                self._active.discard(session)

    def cancel(self) -> None:
        """Abandon every running session and refuse to start new ones.

        Only local resources are released; remote processes keep their own
        lifecycle.
        """
        self._cancelled.set()
        with self._active_lock:
            active = list(self._active)
        for s in active:
            s.cancel()

    def _run_step(self, step: str, spec: CommandSpec) -> ExitStatus:
        self._check_cancelled()
        self._ensure_image(spec.image)
        log.info("%s: starting %s %s", step, spec.image, " ".join(spec.args))
        try:
            status = self.run_session(spec)
        except SessionCancelled:
            raise
        except SessionError as e:
            raise StepFailed(f"{step} failed: {e}") from e
        if not status.ok:
            raise StepFailed(f"{step} failed: container exited with status {status.code}")
        return status

    # -- steps ----------------------------------------------------------

    def setup(self, script: str, write_dir: str, project_name: str) -> Path:
        spec = setup_spec(script, write_dir, project_name, image=self.env.goodbot_image)
        self._run_step("setup", spec)
        project = resolve_path(write_dir) / project_name
        if not project.is_dir():
            raise StepFailed(f"setup finished but {project} was not created")
        return project

    def record(self, project: str, *, credentials: Credentials, language: LanguageSettings) -> ExitStatus:
        narration = uses_narration(project)
        spec = record_spec(
            project,
            credentials=credentials,
            language=language,
            image=self.env.goodbot_image,
            narration=narration,
        )
        log.info("record: narration=%s", "yes" if narration else "no")
        return self._run_step("record", spec)

    def render_recording(self, recording: str | Path) -> Path:
        """Normalize one recording and convert it to a GIF; returns the artifact."""
        rec = resolve_path(recording)
        scene = find_owning_scene(rec)
        ensure_renders_dir(scene)

        normalize(rec, width=self.env.rec_width, height=self.env.rec_height)

        spec = render_recording_spec(rec, image=self.env.gif_image, scale=self.env.gif_scale)
        self._ensure_image(spec.image)
        status = self.run_session(spec)

        artifact = render_artifact_path(rec)
        if not artifact.exists():
            raise RenderFailed(f"no render produced (exit status {status.code})")
        return artifact

    def _attempt(self, rec: Path, report: RenderReport) -> None:
        self._check_cancelled()
        with self._report_lock:
            report.attempted += 1
        try:
            artifact = self.render_recording(rec)
        except SessionCancelled:
            raise
        except _RECORDING_FAILURES as e:
            log.warning("skipping recording %s: %s", rec, e)
            with self._report_lock:
                report.failed.append((rec, str(e)))
            return
        log.info("rendered %s", artifact)
        with self._report_lock:
            report.rendered.append(artifact)

    def discover(self, project: str | Path, report: Optional[RenderReport] = None) -> List[Path]:
        """Every recording of every scene; scenes without recordings are logged."""
        found: List[Path] = []
        for scene in list_scenes(project):
            try:
                recs = list_recordings(scene.path)
            except RecordingsDirAbsent as e:
                log.warning("skipping scene %s: %s", scene.path, e)
                if report is not None:
                    report.skipped_scenes.append((scene.path, str(e)))
                continue
            if not recs:
                log.warning("found no recordings in scene %s", scene.path)
                if report is not None:
                    report.empty_scenes.append(scene.path)
                continue
            found.extend(recs)
        return found

    def render_all_scenes(self, project: str | Path) -> RenderReport:
        report = RenderReport()
        recordings = self.discover(project, report)
        if recordings:
            self._ensure_image(self.env.gif_image)

        workers = max(1, int(self.env.render_workers))
        if workers == 1 or len(recordings) < 2:
            for rec in recordings:
                self._attempt(rec, report)
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="render") as pool:
                for _ in pool.map(lambda r: self._attempt(r, report), recordings):
                    pass

        log.info(
            "render done: attempted=%d rendered=%d failed=%d skipped_scenes=%d",
            report.attempted,
            len(report.rendered),
            len(report.failed),
            len(report.skipped_scenes),
        )
        return report

    def assemble_video(self, project: str | Path) -> Path:
        """Run the assembly step and return the video it wrote under final/."""
        spec = assemble_spec(project, image=self.env.goodbot_image)
        before = final_video(project)
        before_mtime = before.stat().st_mtime if before is not None else None

        self._run_step("assemble", spec)

        video = final_video(project)
        if video is None or (video == before and video.stat().st_mtime == before_mtime):
            raise StepFailed(f"assemble finished but no new video was written to {project}/final")
        return video

    def run(
        self,
        project: str | Path,
        *,
        credentials: Credentials,
        language: LanguageSettings,
        render: bool = True,
        gifs_only: bool = False,
    ) -> int:
        self.record(str(project), credentials=credentials, language=language)
        if not render:
            return 0
        self.render_all_scenes(project)
        if gifs_only:
            return 0
        final = self.assemble_video(project)
        log.info("final video written to %s", final)
        return 0
