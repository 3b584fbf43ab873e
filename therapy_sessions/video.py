"""
Video-provider recordings.

DailyClient wraps the recordings part of the Daily REST API.
process_recording downloads a finished recording and extracts a 16 kHz mono
WAV track with ffmpeg, the format Whisper transcribes best.
"""

import logging
import os
import subprocess
from typing import Optional, Tuple

import httpx
from django.conf import settings

from .types import Recording

logger = logging.getLogger(__name__)

AUDIO_SAMPLE_RATE = 16000
AUDIO_CHANNELS = 1
DOWNLOAD_CHUNK_SIZE = 1024 * 1024


class DailyError(Exception):
    """Error from the Daily REST API or while downloading a recording."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AudioExtractionError(Exception):
    """ffmpeg could not produce the audio track."""


class DailyClient:
    """Recordings endpoints of the Daily REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = 'https://api.daily.co/v1',
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self._transport = transport

    def _get(self, path: str) -> dict:
        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={'Authorization': f'Bearer {self.api_key}'},
            ) as client:
                response = client.get(path)
        except httpx.TransportError as exc:
            raise DailyError(f'Daily API unreachable: {exc}') from exc

        if not response.is_success:
            raise DailyError(
                f'Daily API error {response.status_code} for {path}: {response.text[:200]}',
                status_code=response.status_code,
            )
        return response.json()

    def get_recording(self, recording_id: str) -> Recording:
        """
        Raises:
            DailyError: If the recording cannot be fetched
        """
        return Recording.from_dict(self._get(f'/recordings/{recording_id}'))

    def get_access_link(self, recording_id: str) -> str:
        """Temporary download link for a recording."""
        data = self._get(f'/recordings/{recording_id}/access-link')
        link = data.get('download_link')
        if not link:
            raise DailyError(f'No download link for recording {recording_id}')
        return link

    def download(self, url: str, destination: str) -> str:
        """Stream a recording to a local file and return its path."""
        logger.info("Downloading recording to %s", destination)
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport, follow_redirects=True) as client:
                with client.stream('GET', url) as response:
                    if not response.is_success:
                        raise DailyError(
                            f'Failed to download recording: HTTP {response.status_code}',
                            status_code=response.status_code,
                        )
                    with open(destination, 'wb') as output:
                        for chunk in response.iter_bytes(DOWNLOAD_CHUNK_SIZE):
                            output.write(chunk)
        except httpx.TransportError as exc:
            raise DailyError(f'Failed to download recording: {exc}') from exc
        return destination


def get_daily_client(transport: Optional[httpx.BaseTransport] = None) -> DailyClient:
    return DailyClient(
        api_key=settings.DAILY_API_KEY,
        base_url=settings.DAILY_API_BASE,
        transport=transport,
    )


def extract_audio(video_path: str, audio_path: str) -> str:
    """
    Extract a 16 kHz mono PCM WAV track from a video file.

    Raises:
        AudioExtractionError: If ffmpeg is missing or fails
    """
    command = [
        'ffmpeg', '-y', '-i', video_path,
        '-vn', '-acodec', 'pcm_s16le',
        '-ar', str(AUDIO_SAMPLE_RATE), '-ac', str(AUDIO_CHANNELS),
        audio_path,
    ]
    logger.info("Extracting audio from %s", video_path)
    try:
        subprocess.run(command, check=True, capture_output=True)
    except FileNotFoundError as exc:
        raise AudioExtractionError('ffmpeg is not installed') from exc
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.decode(errors='replace')[-500:] if exc.stderr else ''
        raise AudioExtractionError(f'ffmpeg exited with {exc.returncode}: {stderr}') from exc
    return audio_path


def process_recording(
    recording: Recording,
    output_dir: str,
    client: Optional[DailyClient] = None
) -> Tuple[str, str]:
    """
    Download a recording and extract its audio.

    Returns:
        (video_path, audio_path)

    Raises:
        DailyError: If the recording cannot be downloaded
        AudioExtractionError: If audio extraction fails
    """
    client = client or get_daily_client()
    os.makedirs(output_dir, exist_ok=True)

    download_url = recording.download_url or client.get_access_link(recording.id)
    video_path = os.path.join(output_dir, f'{recording.id}.mp4')
    audio_path = os.path.join(output_dir, f'{recording.id}.wav')

    client.download(download_url, video_path)
    extract_audio(video_path, audio_path)
    return video_path, audio_path


def cleanup_files(*paths: str) -> None:
    """Delete temporary files, logging failures."""
    for path in paths:
        try:
            os.remove(path)
            logger.debug("Removed temp file %s", path)
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.error("Could not remove temp file %s: %s", path, exc)
