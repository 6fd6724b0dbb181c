"""
Transcoding engine adapter.

Converts a physical media file into a web-friendly format using ffmpeg.
Beyond success/failure and the output path, the engine is opaque to the
rest of the transcoder.
"""
import json
import subprocess
from dataclasses import dataclass
from pathlib import Path

from transcoder.exceptions import TranscodeFailed
from transcoder.service.trace import JobTrace


@dataclass
class ConvertedFileInfo:
    """Information about a converted file"""
    path: Path
    file_size: int
    kind: str
    duration_seconds: int = None


def build_video_command(input_path, output_path, options):
    """
    Build the ffmpeg command for an x264 mp4 conversion.

    Extra parameters from the options are appended verbatim as key/value
    pairs, e.g. {"-vf": "scale=-1:720"} becomes ['-vf', 'scale=-1:720'].
    """
    cmd = [
        options.ffmpeg_binary,
        '-y',  # Overwrite output file
        '-i', str(input_path),
        '-threads', str(options.threads),
        '-c:v', 'libx264',
        '-c:a', options.audio_codec,
    ]
    for key, value in options.extra_params.items():
        cmd.extend([key, value])
    cmd.append(str(output_path))
    return cmd


def build_audio_command(input_path, output_path, options):
    """Build the ffmpeg command for an mp3 conversion (libmp3lame only)"""
    return [
        options.ffmpeg_binary,
        '-y',
        '-i', str(input_path),
        '-threads', str(options.threads),
        '-vn',
        '-c:a', 'libmp3lame',
        '-b:a', f"{options.audio_kilobitrate}k",
        '-ac', str(options.audio_channels),
        str(output_path),
    ]


class FFmpegEngine:
    """
    Runs ffmpeg as a subprocess with a timeout.

    Args:
        options: EngineOptions
        logger: Optional logger exposing log(level, message)
        runner: Callable compatible with subprocess.run (swapped in tests)
    """

    def __init__(self, options, logger=None, runner=subprocess.run):
        self.options = options
        self.trace = JobTrace(logger, __name__)
        self.runner = runner

    def convert(self, input_path, output_path, kind, options=None):
        """
        Convert a file.

        Args:
            input_path: Path to the physical source file
            output_path: Path for the output file; the extension selects the container
            kind: 'video' or 'audio'
            options: EngineOptions overriding the engine defaults for this call

        Returns:
            ConvertedFileInfo

        Raises:
            TranscodeFailed: If ffmpeg times out, cannot be started or exits non-zero
        """
        options = options or self.options
        input_path = Path(input_path)
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        if kind == 'video':
            cmd = build_video_command(input_path, output_path, options)
        elif kind == 'audio':
            cmd = build_audio_command(input_path, output_path, options)
        else:
            raise TranscodeFailed(f"Unknown media kind {kind!r}")

        self.trace.debug(f"Running: {' '.join(cmd)}", 2)

        try:
            result = self.runner(cmd, capture_output=True, text=True, timeout=options.timeout)
        except subprocess.TimeoutExpired as e:
            raise TranscodeFailed(f"ffmpeg timed out after {options.timeout} seconds") from e
        except OSError as e:
            raise TranscodeFailed(f"Could not run {options.ffmpeg_binary}: {e}") from e

        if result.returncode != 0:
            self.trace.warning(f"ffmpeg stderr: {(result.stderr or '')[-2000:]}", 2)
            raise TranscodeFailed(f"ffmpeg failed with code {result.returncode}")

        if not output_path.exists():
            raise TranscodeFailed(f"ffmpeg reported success but {output_path} was not written")

        return ConvertedFileInfo(
            path=output_path,
            file_size=output_path.stat().st_size,
            kind=kind,
            duration_seconds=self.probe_duration(output_path, options),
        )

    def probe_duration(self, file_path, options=None):
        """
        Extract duration from a media file using ffprobe.

        Returns:
            int: Duration in seconds, or None if extraction fails
        """
        options = options or self.options
        try:
            result = self.runner([
                options.ffprobe_binary,
                '-v', 'quiet',
                '-print_format', 'json',
                '-show_format',
                str(file_path)
            ], capture_output=True, text=True, timeout=30)
            if result.returncode != 0:
                return None
            metadata = json.loads(result.stdout)
            return int(float(metadata['format']['duration']))
        except (subprocess.SubprocessError, OSError, ValueError, KeyError, TypeError):
            return None
