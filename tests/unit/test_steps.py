from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from goodbot.common.config import Credentials, LanguageSettings
from goodbot.pipeline.steps import (
    MissingCredentialsError,
    assemble_spec,
    record_spec,
    render_recording_spec,
    setup_spec,
)
from goodbot.session.process_session import Mount

from tests._helpers import build_project


LANG = LanguageSettings(lang="en-US", lang_name="en-US-Standard-C")


class TestSteps(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)

    def tearDown(self) -> None:
        self._td.cleanup()

    def test_setup_spec(self) -> None:
        script = self.root / "scripts" / "demo.md"
        script.parent.mkdir()
        script.write_text("# demo\n", encoding="utf-8")

        spec = setup_spec(script, self.root / "work", "demo", image="img")

        self.assertEqual(spec.args, ("setup", "--project-path", "/users-cwd/demo", "/project/demo.md"))
        self.assertIn(Mount(source=str(self.root / "scripts"), target="/project"), spec.mounts)
        self.assertIn(Mount(source=str(self.root / "work"), target="/users-cwd"), spec.mounts)
        self.assertTrue(spec.interactive)

    def test_setup_spec_rejects_bad_name(self) -> None:
        with self.assertRaises(ValueError):
            setup_spec(self.root / "demo.md", self.root, "a/b", image="img")

    def test_record_spec_without_narration(self) -> None:
        project = build_project(self.root, {"scene_1": ["a.cast"]})
        creds = Credentials(tts_file=None, passwords=["DB_PASSWORD=x"])

        spec = record_spec(project, credentials=creds, language=LANG, image="img", narration=False)

        self.assertEqual(spec.args, ("record", "/project/demo"))
        self.assertEqual(spec.env, ("DB_PASSWORD=x",))
        self.assertEqual(spec.mounts, (Mount(source=str(self.root), target="/project"),))

    def test_record_spec_narration_needs_credentials(self) -> None:
        project = build_project(self.root, {"scene_1": ["a.cast"]}, narration=True)
        with self.assertRaises(MissingCredentialsError):
            record_spec(project, credentials=Credentials(tts_file=None), language=LANG, image="img", narration=True)

    def test_record_spec_with_narration(self) -> None:
        project = build_project(self.root, {"scene_1": ["a.cast"]}, narration=True)
        creds = Credentials(tts_file=str(self.root / "keys" / "tts.json"))

        spec = record_spec(project, credentials=creds, language=LANG, image="img", narration=True)

        self.assertIn("GOOGLE_APPLICATION_CREDENTIALS=/credentials/tts.json", spec.env)
        self.assertIn(Mount(source=str(self.root / "keys"), target="/credentials"), spec.mounts)
        self.assertEqual(spec.args[-4:], ("-l", "en-US", "-n", "en-US-Standard-C"))

    def test_render_recording_spec_uses_scene_relative_paths(self) -> None:
        project = build_project(self.root, {"scene_1": ["a.cast"]})
        rec = project / "scene_1" / "asciicasts" / "a.cast"

        spec = render_recording_spec(rec, image="gif", scale=2)

        self.assertEqual(spec.args, ("-S2", "asciicasts/a.cast", "gifs/a.gif"))
        self.assertEqual(spec.mounts, (Mount(source=str(project / "scene_1"), target="/data"),))
        self.assertFalse(spec.interactive)

    def test_assemble_spec(self) -> None:
        project = build_project(self.root, {"scene_1": []})
        spec = assemble_spec(project, image="img")
        self.assertEqual(spec.args, ("render-video", "/project/demo"))
        self.assertEqual(spec.mounts, (Mount(source=str(self.root), target="/project"),))


if __name__ == "__main__":
    unittest.main()
