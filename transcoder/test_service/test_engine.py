"""
Tests for service/engine.py
"""
import json
import subprocess
import tempfile
from pathlib import Path
from unittest import TestCase
from unittest.mock import MagicMock

from transcoder.exceptions import TranscodeFailed
from transcoder.service.config import EngineOptions
from transcoder.service.engine import FFmpegEngine, build_audio_command, build_video_command


def completed(returncode=0, stdout='', stderr=''):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class CommandBuilderTest(TestCase):
    """Tests for ffmpeg command lines"""

    def test_video_command(self):
        options = EngineOptions(threads=4, extra_params={'-vf': 'scale=-1:720'})

        cmd = build_video_command('in.webm', 'out.mp4', options)

        self.assertEqual(cmd[0], 'ffmpeg')
        self.assertIn('libx264', cmd)
        self.assertEqual(cmd[cmd.index('-threads') + 1], '4')
        self.assertEqual(cmd[cmd.index('-c:a') + 1], 'libmp3lame')
        self.assertEqual(cmd[cmd.index('-vf') + 1], 'scale=-1:720')
        self.assertEqual(cmd[-1], 'out.mp4')

    def test_audio_command(self):
        options = EngineOptions(audio_kilobitrate=96, audio_channels=1)

        cmd = build_audio_command('in.ogg', 'out.mp3', options)

        self.assertEqual(cmd[cmd.index('-c:a') + 1], 'libmp3lame')
        self.assertEqual(cmd[cmd.index('-b:a') + 1], '96k')
        self.assertEqual(cmd[cmd.index('-ac') + 1], '1')
        self.assertIn('-vn', cmd)


class FFmpegEngineTest(TestCase):
    """Tests for running conversions"""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.output = Path(self.tmp.name) / 'out' / 'clip.mp4'

    def runner_writing_output(self, probe_stdout='{"format": {"duration": "12.7"}}'):
        def run(cmd, **kwargs):
            if cmd[0] == 'ffprobe':
                return completed(stdout=probe_stdout)
            Path(cmd[-1]).write_bytes(b'mp4')
            return completed()
        return MagicMock(side_effect=run)

    def test_convert_success(self):
        runner = self.runner_writing_output()
        engine = FFmpegEngine(EngineOptions(timeout=60), runner=runner)

        info = engine.convert('in.webm', self.output, 'video')

        self.assertEqual(info.path, self.output)
        self.assertEqual(info.file_size, 3)
        self.assertEqual(info.kind, 'video')
        self.assertEqual(info.duration_seconds, 12)
        first_call = runner.call_args_list[0]
        self.assertEqual(first_call.kwargs['timeout'], 60)

    def test_nonzero_exit_raises(self):
        runner = MagicMock(return_value=completed(returncode=1, stderr='Invalid data'))
        engine = FFmpegEngine(EngineOptions(), runner=runner)

        with self.assertRaises(TranscodeFailed):
            engine.convert('in.webm', self.output, 'video')

    def test_timeout_raises(self):
        runner = MagicMock(side_effect=subprocess.TimeoutExpired(cmd='ffmpeg', timeout=5))
        engine = FFmpegEngine(EngineOptions(timeout=5), runner=runner)

        with self.assertRaises(TranscodeFailed) as ctx:
            engine.convert('in.webm', self.output, 'video')

        self.assertIn('timed out', str(ctx.exception))

    def test_missing_binary_raises(self):
        runner = MagicMock(side_effect=FileNotFoundError('ffmpeg'))
        engine = FFmpegEngine(EngineOptions(), runner=runner)

        with self.assertRaises(TranscodeFailed):
            engine.convert('in.ogg', self.output, 'audio')

    def test_no_output_written_raises(self):
        engine = FFmpegEngine(EngineOptions(), runner=MagicMock(return_value=completed()))

        with self.assertRaises(TranscodeFailed):
            engine.convert('in.webm', self.output, 'video')

    def test_unknown_kind_raises(self):
        engine = FFmpegEngine(EngineOptions(), runner=MagicMock())

        with self.assertRaises(TranscodeFailed):
            engine.convert('in.png', self.output, 'image')

    def test_probe_duration_handles_bad_output(self):
        runner = MagicMock(return_value=completed(stdout=json.dumps({'format': {}})))
        engine = FFmpegEngine(EngineOptions(), runner=runner)

        self.assertIsNone(engine.probe_duration('clip.mp4'))
