"""Segment stitching with the ffmpeg concat demuxer.

Given completed segments, the stitcher:
1. orders them by `order` (duplicates are rejected),
2. downloads every segment into a per-invocation workspace before muxing,
3. concatenates them into final.mp4 (stream copy, or re-encode when
   segments come from heterogeneous generators),
4. uploads {order_id}/final.mp4 with replace-on-conflict,
5. moves the order stitching -> complete with the public URL.

The workspace is removed on success and on failure alike.
"""

import asyncio
import logging
import subprocess
import uuid
from pathlib import Path
from typing import Awaitable, Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from santavid.config import settings
from santavid.errors import ExternalGenerationFailure, SegmentFetchFailed, StorageFailure, ValidationError
from santavid.schemas.operations import SceneOperationState, Segment
from santavid.services import order_service
from santavid.services.base import StorageSink
from santavid.services.file_manager import FileManager
from santavid.services.retry import provider_retry

logger = logging.getLogger(__name__)

Muxer = Callable[[list[Path], Path], Awaitable[None]]


def order_segments(segments: list[Segment]) -> list[Segment]:
    """Sort by `order`. Empty input and duplicate order values are caller errors."""
    if not segments:
        raise ValidationError("No segments to stitch")
    orders = [s.order for s in segments]
    duplicates = sorted({o for o in orders if orders.count(o) > 1})
    if duplicates:
        raise ValidationError(f"Duplicate segment order values: {duplicates}")
    return sorted(segments, key=lambda s: s.order)


def segments_from_operations(operations: list[SceneOperationState]) -> list[Segment]:
    """Completed scene operations as segments ordered by scene number."""
    return [
        Segment(url=op.video_url, type="veo", order=op.scene_number)
        for op in sorted(operations, key=lambda o: o.scene_number)
        if op.status == "complete" and op.video_url
    ]


def _concat_demuxer(clip_paths: list[Path], output_path: Path, reencode: bool) -> None:
    """Run ffmpeg's concat demuxer over clip_paths.

    -safe 0 allows absolute paths in the list file. Stream copy keeps the
    original audio/video; re-encode normalizes mismatched codecs.
    """
    list_file = output_path.parent / "concat.txt"
    with open(list_file, "w") as f:
        for clip_path in clip_paths:
            f.write(f"file '{clip_path.resolve()}'\n")

    codec_args = (
        ["-c:v", "libx264", "-preset", "fast", "-crf", "20", "-c:a", "aac", "-movflags", "+faststart"]
        if reencode
        else ["-c", "copy"]
    )
    subprocess.run(
        ["ffmpeg", "-f", "concat", "-safe", "0", "-i", str(list_file), *codec_args, str(output_path), "-y"],
        check=True,
        capture_output=True,
    )


def ffmpeg_concat(reencode: bool = False) -> Muxer:
    """Default muxer: ffmpeg concat demuxer in a worker thread."""

    async def _mux(clip_paths: list[Path], output_path: Path) -> None:
        try:
            await asyncio.to_thread(_concat_demuxer, clip_paths, output_path, reencode)
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace") if e.stderr else "No error output"
            raise ExternalGenerationFailure("stitching", f"ffmpeg failed: {stderr[-500:]}") from e

    return _mux


class SegmentStitcher:

    def __init__(
        self,
        storage: StorageSink,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        muxer: Optional[Muxer] = None,
        file_manager: Optional[FileManager] = None,
    ):
        self._storage = storage
        self._http = http_client
        self._muxer = muxer or ffmpeg_concat(settings.pipeline.reencode_on_stitch)
        self._file_manager = file_manager

    async def _download(self, client: httpx.AsyncClient, segment: Segment, dest: Path) -> Path:
        @provider_retry()
        async def _get() -> bytes:
            response = await client.get(segment.url)
            response.raise_for_status()
            return response.content

        try:
            data = await _get()
        except Exception as e:
            raise SegmentFetchFailed(segment.url, f"{type(e).__name__}: {e}") from e
        if not data:
            raise SegmentFetchFailed(segment.url, "empty response body")
        dest.write_bytes(data)
        return dest

    async def _fetch_all(self, segments: list[Segment], work_dir: Path) -> list[Path]:
        async def _run(client: httpx.AsyncClient) -> list:
            return await asyncio.gather(
                *(
                    self._download(client, seg, work_dir / f"segment_{i:02d}.mp4")
                    for i, seg in enumerate(segments)
                ),
                return_exceptions=True,
            )

        if self._http is not None:
            results = await _run(self._http)
        else:
            async with httpx.AsyncClient(timeout=120.0, follow_redirects=True) as client:
                results = await _run(client)

        # every download has settled, so nothing writes into the workspace after cleanup
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return results

    async def stitch(
        self,
        session: AsyncSession,
        order_id: uuid.UUID,
        segments: list[Segment],
    ) -> str:
        """Produce, store and publish the final video. Returns its public URL.

        Raises:
            ValidationError: empty segment list or duplicate order values.
            SegmentFetchFailed: a segment could not be downloaded.
            StorageFailure: upload failed, or the order could not be completed
                after a successful upload (the stored artifact is orphaned).
        """
        ordered = order_segments(segments)
        file_manager = self._file_manager or FileManager()
        key = f"{order_id}/final.mp4"

        with file_manager.workspace(order_id) as work_dir:
            logger.info(f"Order {order_id}: fetching {len(ordered)} segments")
            clip_paths = await self._fetch_all(ordered, work_dir)

            output_path = work_dir / "final.mp4"
            await self._muxer(clip_paths, output_path)
            data = output_path.read_bytes()
            url = await self._storage.store(data, key, "video/mp4")

        try:
            await order_service.complete_order(session, order_id, url)
        except Exception as e:
            logger.error(
                f"Order {order_id}: final video stored at {key} but order update failed, "
                f"artifact is orphaned: {type(e).__name__}: {e}"
            )
            raise StorageFailure(f"Order update failed after upload of {key}: {e}") from e

        logger.info(f"Order {order_id}: stitched {len(ordered)} segments -> {url}")
        return url
