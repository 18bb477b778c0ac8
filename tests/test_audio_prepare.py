#!/usr/bin/env python3
"""
Tests for audio preparation. ffmpeg/ffprobe are replaced by a fake that
writes the requested output file and answers probes with canned JSON.
"""

import sys
import json
import tempfile
import subprocess
from pathlib import Path
from unittest import mock

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from mediapress.core.audio_prepare import AudioPreparer, probe_media
from mediapress.core.error_codes import InvalidMediaError, MediaProcessingError
from mediapress.core.models_sqlite import ChunkSpan

AUDIO = [{"codec_type": "audio"}]
VIDEO = [{"codec_type": "video", "disposition": {"attached_pic": 0}}, {"codec_type": "audio"}]
COVER_ART = [{"codec_type": "audio"}, {"codec_type": "video", "disposition": {"attached_pic": 1}}]


class FakeMediaTools:
    """Stands in for run_subprocess_capture."""

    def __init__(self, streams=AUDIO, duration=650.0, ffmpeg_failures=0, probe_rc=0):
        self.streams = streams
        self.duration = duration
        self.ffmpeg_failures = ffmpeg_failures
        self.probe_rc = probe_rc
        self.calls = []

    def __call__(self, args, timeout=300, **kwargs):
        self.calls.append(list(args))
        if args[0] == "ffprobe":
            if self.probe_rc:
                return subprocess.CompletedProcess(args, self.probe_rc, stdout="",
                                                   stderr="moov atom not found")
            out = {"format": {"duration": str(self.duration)}, "streams": self.streams}
            return subprocess.CompletedProcess(args, 0, stdout=json.dumps(out), stderr="")

        if self.ffmpeg_failures > 0:
            self.ffmpeg_failures -= 1
            return subprocess.CompletedProcess(args, 1, stdout="",
                                               stderr="Invalid data found when processing input")
        Path(args[-1]).write_bytes(b"RIFF\x00\x00\x00\x00WAVEfmt " + args[-1].encode())
        return subprocess.CompletedProcess(args, 0, stdout="", stderr="")

    def ffmpeg_calls(self):
        return [c for c in self.calls if c[0] == "ffmpeg"]


class AudioPrepareTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        root = Path(self.tmpdir.name)
        self.source = root / "talk.mp3"
        self.source.write_bytes(b"ID3 not really audio")
        self.workspace_root = root / "work"
        self.preparer = AudioPreparer(workspace_root=self.workspace_root, chunk_target_sec=300)

    def tearDown(self):
        self.tmpdir.cleanup()

    def patch_tools(self, tools: FakeMediaTools):
        patcher = mock.patch("mediapress.core.audio_prepare.run_subprocess_capture", new=tools)
        patcher.start()
        self.addCleanup(patcher.stop)
        return tools

    def workspaces(self):
        if not self.workspace_root.exists():
            return []
        return list(self.workspace_root.iterdir())


class TestProbe(AudioPrepareTestCase):
    """Test ffprobe interpretation."""

    def test_audio_only(self):
        self.patch_tools(FakeMediaTools(AUDIO, duration=12.3456))
        info = probe_media(self.source)
        self.assertTrue(info.has_audio)
        self.assertFalse(info.has_video)
        self.assertEqual(info.duration_sec, 12.346)

    def test_cover_art_is_not_video(self):
        self.patch_tools(FakeMediaTools(COVER_ART))
        self.assertFalse(probe_media(self.source).has_video)

    def test_unreadable(self):
        self.patch_tools(FakeMediaTools(probe_rc=1))
        with self.assertRaises(InvalidMediaError) as ctx:
            probe_media(self.source)
        self.assertIn("moov atom", ctx.exception.message)


class TestPreparedAudio(AudioPrepareTestCase):
    """Test the scoped workspace and lazy chunk sequence."""

    def test_audio_source_yields_chunks_in_order(self):
        tools = self.patch_tools(FakeMediaTools(AUDIO, duration=650.0))
        with self.preparer.prepare(str(self.source)) as audio:
            self.assertEqual(len(audio), 3)
            self.assertEqual(audio.duration_sec, 650.0)
            workspace = audio.workspace
            chunks = []
            for chunk in audio:
                chunks.append(chunk)
                # each chunk file is gone once its bytes are handed out
                self.assertEqual(list((workspace / "chunks").iterdir()), [])

        self.assertEqual([c.index for c in chunks], [0, 1, 2])
        self.assertEqual([(c.start_seconds, c.end_seconds) for c in chunks],
                         [(0, 300), (300, 600), (600, 650)])
        self.assertTrue(all(c.data.startswith(b"RIFF") for c in chunks))
        self.assertTrue(all(c.sample_rate == 16000 for c in chunks))

        # normalize + 3 cuts, no extraction for audio-only input
        ffmpeg = tools.ffmpeg_calls()
        self.assertEqual(len(ffmpeg), 4)
        self.assertNotIn("-map", ffmpeg[0])
        self.assertIn("16000", ffmpeg[0])
        self.assertFalse(workspace.exists())
        self.assertEqual(self.workspaces(), [])

    def test_video_source_extracts_audio_first(self):
        tools = self.patch_tools(FakeMediaTools(VIDEO, duration=100.0))
        with self.preparer.prepare(str(self.source)) as audio:
            self.assertEqual(len(audio), 1)
        ffmpeg = tools.ffmpeg_calls()
        self.assertIn("-map", ffmpeg[0])
        self.assertTrue(ffmpeg[0][-1].endswith("extracted.wav"))
        self.assertTrue(ffmpeg[1][-1].endswith("normalized.wav"))

    def test_cover_art_skips_extraction(self):
        tools = self.patch_tools(FakeMediaTools(COVER_ART, duration=100.0))
        with self.preparer.prepare(str(self.source)):
            pass
        self.assertNotIn("-map", tools.ffmpeg_calls()[0])

    def test_no_audio_track(self):
        self.patch_tools(FakeMediaTools([{"codec_type": "video"}]))
        with self.assertRaises(InvalidMediaError):
            with self.preparer.prepare(str(self.source)):
                pass
        self.assertEqual(self.workspaces(), [])

    def test_zero_duration(self):
        self.patch_tools(FakeMediaTools(AUDIO, duration=0))
        with self.assertRaises(InvalidMediaError):
            with self.preparer.prepare(str(self.source)):
                pass
        self.assertEqual(self.workspaces(), [])

    def test_missing_source(self):
        self.patch_tools(FakeMediaTools())
        with self.assertRaises(InvalidMediaError):
            with self.preparer.prepare(str(self.source.with_name("gone.mp3"))):
                pass

    def test_tool_failure_retried_once(self):
        tools = self.patch_tools(FakeMediaTools(AUDIO, duration=10.0, ffmpeg_failures=1))
        with self.preparer.prepare(str(self.source)) as audio:
            self.assertEqual(len(list(audio)), 1)
        self.assertEqual(len(tools.ffmpeg_calls()), 3)
        # the retry uses identical arguments
        self.assertEqual(tools.ffmpeg_calls()[0], tools.ffmpeg_calls()[1])

    def test_tool_failure_twice_is_fatal(self):
        tools = self.patch_tools(FakeMediaTools(AUDIO, duration=10.0, ffmpeg_failures=2))
        with self.assertRaises(MediaProcessingError) as ctx:
            with self.preparer.prepare(str(self.source)):
                pass
        self.assertIn("Invalid data found", ctx.exception.diagnostic)
        self.assertEqual(len(tools.ffmpeg_calls()), 2)
        self.assertEqual(self.workspaces(), [])

    def test_chunk_cut_failure_releases_workspace(self):
        tools = self.patch_tools(FakeMediaTools(AUDIO, duration=650.0))
        with self.assertRaises(MediaProcessingError):
            with self.preparer.prepare(str(self.source)) as audio:
                tools.ffmpeg_failures = 2
                list(audio)
        self.assertEqual(self.workspaces(), [])

    def test_persisted_spans_reused(self):
        self.patch_tools(FakeMediaTools(AUDIO, duration=651.2))
        spans = [ChunkSpan(0, 0, 300), ChunkSpan(1, 300, 600), ChunkSpan(2, 600, 650)]
        with self.preparer.prepare(str(self.source), spans=spans) as audio:
            self.assertEqual(audio.spans, spans)
            self.assertEqual([c.end_seconds for c in audio], [300, 600, 650])

    def test_iterating_unopened_sequence(self):
        audio = self.preparer.prepare(str(self.source))
        with self.assertRaises(RuntimeError):
            iter(audio)

    def test_close_is_idempotent(self):
        self.patch_tools(FakeMediaTools(AUDIO, duration=10.0))
        audio = self.preparer.prepare(str(self.source))
        audio.open()
        audio.close()
        audio.close()
        self.assertTrue(audio.closed)
        with self.assertRaises(RuntimeError):
            iter(audio)


if __name__ == "__main__":
    unittest.main()
