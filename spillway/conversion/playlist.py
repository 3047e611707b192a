"""
HLS playlist post-processing: absolute segment URLs and the master playlist.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import List, Union

from .constants import PLAYLIST_EXTENSION, SEGMENT_EXTENSION
from .models import RenditionSpec

logger = logging.getLogger(__name__)


class PlaylistPostProcessor:
    """Rewrites sub-playlists and writes the master playlist for a video."""

    def __init__(self, base_url: str, absolute_urls: bool = True):
        self.base_url = base_url.rstrip("/")
        self.absolute_urls = absolute_urls

    def segment_url(self, video_id: str, filename: str) -> str:
        return f"{self.base_url}/video/{video_id}/segments/{filename}"

    def rendition_url(self, video_id: str, rendition: RenditionSpec) -> str:
        return f"{self.base_url}/video/{video_id}/playlist/{rendition.name}"

    def master_playlist_url(self, video_id: str) -> str:
        return f"{self.base_url}/video/{video_id}/playlist"

    @staticmethod
    def playlist_path(output_dir: Path, video_id: str) -> Path:
        return output_dir / f"{video_id}{PLAYLIST_EXTENSION}"

    def rewrite_segment_urls(self, playlist_path: Union[str, Path], video_id: str) -> None:
        """
        Point every relative segment line at the segment endpoint.

        Lines that already start with http are left alone, so running this
        twice changes nothing. Raises FileNotFoundError if the playlist is missing.
        """
        path = Path(playlist_path)
        lines = path.read_text(encoding="utf-8").splitlines()

        rewritten = []
        changed = 0
        for line in lines:
            stripped = line.strip()
            if stripped.endswith(SEGMENT_EXTENSION) and not stripped.startswith("http"):
                rewritten.append(self.segment_url(video_id, stripped))
                changed += 1
            else:
                rewritten.append(line)

        if changed:
            _atomic_write(path, "\n".join(rewritten) + "\n")
        logger.debug(f"[Playlist] Rewrote {changed} segment URL(s) in {path.name}")

    def build_master_playlist(
        self,
        output_dir: Path,
        video_id: str,
        renditions: List[RenditionSpec],
    ) -> Path:
        """
        Write <output_dir>/<video_id>.m3u8 listing every rendition on disk.

        Renditions whose sub-playlist does not exist are skipped.
        """
        lines = ["#EXTM3U", "#EXT-X-VERSION:3"]
        included = 0

        for rendition in renditions:
            if not (output_dir / rendition.playlist_name).exists():
                logger.warning(f"[Playlist] {video_id}: no playlist for {rendition.name}, skipping")
                continue

            lines.append(
                f"#EXT-X-STREAM-INF:BANDWIDTH={rendition.bandwidth},"
                f"RESOLUTION={rendition.width}x{rendition.height}"
            )
            if self.absolute_urls:
                lines.append(self.rendition_url(video_id, rendition))
            else:
                lines.append(rendition.playlist_name)
            included += 1

        master_path = self.playlist_path(output_dir, video_id)
        _atomic_write(master_path, "\n".join(lines) + "\n")
        logger.info(f"[Playlist] Master playlist for {video_id} with {included} rendition(s)")
        return master_path


def _atomic_write(path: Path, content: str) -> None:
    """Write to a sibling temp file, then rename over the target."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
