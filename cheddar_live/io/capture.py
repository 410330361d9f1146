from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

from cheddar_live.config.model import AudioCaptureSettings
from cheddar_live.core.errors import CaptureProcessError
from cheddar_live.io.debug_audio import DebugAudioWriter
from cheddar_live.io.reframe import PcmReframer


logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES = 4096


class CaptureProcess(Protocol):
    """The subset of `asyncio.subprocess.Process` the bridge relies on."""

    pid: int | None
    returncode: int | None
    stdout: asyncio.StreamReader | None
    stderr: asyncio.StreamReader | None

    def terminate(self) -> None: ...

    def kill(self) -> None: ...

    async def wait(self) -> int: ...


Spawner = Callable[[Sequence[str]], Awaitable[CaptureProcess]]
OrphanKiller = Callable[[str], Awaitable[None]]
FrameSink = Callable[[bytes], Awaitable[Any]]


async def spawn_piped(argv: Sequence[str]) -> CaptureProcess:
    return await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )


async def kill_orphans(name: str, *, timeout_s: float = 2.0) -> None:
    """Best-effort `pkill -f <name>`; every failure mode is ignored."""

    try:
        proc = await asyncio.create_subprocess_exec(
            "pkill",
            "-f",
            name,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        logger.debug("capture_orphan_check_failed", extra={"binary": name, "error": str(e)})
        return

    try:
        code = await asyncio.wait_for(proc.wait(), timeout=timeout_s)
    except asyncio.TimeoutError:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        logger.debug("capture_orphan_check_timeout", extra={"binary": name})
        return

    if code == 0:
        logger.info("capture_orphans_killed", extra={"binary": name})
    else:
        logger.debug("capture_no_orphans", extra={"binary": name, "code": code})


class AudioCaptureBridge:
    """Drives the native system-audio capture binary.

    The binary writes interleaved PCM16LE to stdout until it is terminated.
    Its byte stream is cut into fixed-duration mono frames which are handed to
    `sink` in capture order. Delivery is fire-and-forget from the reader's
    point of view: a dedicated task drains an in-order queue, so a slow or
    failing sink never stalls reading.
    """

    def __init__(
        self,
        cfg: AudioCaptureSettings,
        sink: FrameSink,
        *,
        spawner: Spawner = spawn_piped,
        orphan_killer: OrphanKiller = kill_orphans,
        platform: str | None = None,
    ) -> None:
        self._cfg = cfg
        self._sink = sink
        self._spawner = spawner
        self._orphan_killer = orphan_killer
        self._platform = platform or sys.platform

        self._proc: CaptureProcess | None = None
        self._reframer = PcmReframer(
            sample_rate=cfg.sample_rate,
            channels=cfg.channels,
            bytes_per_sample=cfg.bytes_per_sample,
            frame_duration_s=cfg.frame_duration_s,
        )
        # At most one second of finished frames waits for the sink; the oldest is dropped beyond that.
        self._frames: asyncio.Queue[bytes] = asyncio.Queue(maxsize=max(1, round(1.0 / cfg.frame_duration_s)))
        self._reader_tasks: list[asyncio.Task[None]] = []
        self._stdout_task: asyncio.Task[None] | None = None
        self._deliver_task: asyncio.Task[None] | None = None

        self._debug: DebugAudioWriter | None = None
        if cfg.debug_dir is not None:
            self._debug = DebugAudioWriter(cfg.debug_dir, sample_rate=cfg.sample_rate)

        self.frames_delivered = 0
        self.delivery_failures = 0
        self.frames_dropped = 0

    @property
    def supported(self) -> bool:
        return self._platform in self._cfg.platforms

    @property
    def running(self) -> bool:
        return self._proc is not None

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def queued_frames(self) -> int:
        return self._frames.qsize()

    @property
    def buffered_bytes(self) -> int:
        """Bytes held by the bridge: unframed stdout residual plus frames waiting for the sink."""

        return self._reframer.buffered_bytes + self._frames.qsize() * self._reframer.output_frame_bytes

    @property
    def dropped_bytes(self) -> int:
        return self._reframer.dropped_bytes + self.frames_dropped * self._reframer.output_frame_bytes

    async def start(self) -> bool:
        if not self.supported:
            logger.warning(
                "capture_unsupported_platform",
                extra={"platform": self._platform, "supported": list(self._cfg.platforms)},
            )
            return False

        if self._proc is not None:
            return True

        name = os.path.basename(self._cfg.binary)
        try:
            await self._orphan_killer(name)
        except Exception as e:  # noqa: BLE001
            logger.debug("capture_orphan_check_failed", extra={"binary": name, "error": str(e)})

        try:
            proc = await self._spawner([self._cfg.binary])
        except OSError as e:
            err = CaptureProcessError(f"failed to spawn: {e}", binary=self._cfg.binary)
            logger.error("capture_spawn_failed", extra={"error": str(err)})
            return False

        if not proc.pid:
            err = CaptureProcessError("no process id after spawn", binary=self._cfg.binary)
            logger.error("capture_spawn_failed", extra={"error": str(err)})
            return False

        self._proc = proc
        self._reframer.reset()
        logger.info(
            "capture_started",
            extra={
                "pid": proc.pid,
                "binary": self._cfg.binary,
                "frame_bytes": self._reframer.output_frame_bytes,
            },
        )

        if self._deliver_task is None or self._deliver_task.done():
            self._deliver_task = asyncio.create_task(self._deliver(), name="capture_deliver")

        self._stdout_task = asyncio.create_task(self._pump_stdout(proc), name="capture_stdout")
        self._reader_tasks = [
            self._stdout_task,
            asyncio.create_task(self._pump_stderr(proc), name="capture_stderr"),
            asyncio.create_task(self._watch(proc), name="capture_watch"),
        ]
        return True

    async def stop(self) -> None:
        proc = self._proc
        self._proc = None

        if proc is not None and proc.returncode is None:
            logger.info("capture_stopping", extra={"pid": proc.pid})
            try:
                proc.terminate()
            except ProcessLookupError:
                pass

        tasks = [*self._reader_tasks]
        if self._deliver_task is not None:
            tasks.append(self._deliver_task)
        for t in tasks:
            t.cancel()
        for t in tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
            except Exception as e:  # noqa: BLE001
                logger.warning("capture_task_error", extra={"error": str(e)})

        self._reader_tasks = []
        self._stdout_task = None
        self._deliver_task = None
        self._reframer.reset()
        while not self._frames.empty():
            self._frames.get_nowait()
            self._frames.task_done()

    async def drain(self) -> None:
        """Wait for stdout to reach EOF and every framed chunk to be delivered."""

        if self._stdout_task is not None:
            try:
                await self._stdout_task
            except asyncio.CancelledError:
                pass
        await self._frames.join()

    async def _pump_stdout(self, proc: CaptureProcess) -> None:
        assert proc.stdout is not None

        while True:
            data = await proc.stdout.read(_READ_CHUNK_BYTES)
            if not data:
                break

            for frame in self._reframer.feed(data):
                self._enqueue(frame)
                if self._debug is not None:
                    try:
                        self._debug.write(frame)
                    except OSError as e:
                        logger.warning("debug_audio_write_failed", extra={"error": str(e)})

        if self.dropped_bytes:
            logger.warning(
                "capture_audio_dropped",
                extra={"dropped_bytes": self.dropped_bytes, "dropped_frames": self.frames_dropped},
            )

    def _enqueue(self, frame: bytes) -> None:
        try:
            self._frames.put_nowait(frame)
            return
        except asyncio.QueueFull:
            pass

        try:
            self._frames.get_nowait()
            self._frames.task_done()
        except asyncio.QueueEmpty:
            pass
        self.frames_dropped += 1
        if self.frames_dropped == 1:
            logger.warning("capture_sink_stalled", extra={"queued_frames": self._frames.qsize()})
        self._frames.put_nowait(frame)

    async def _pump_stderr(self, proc: CaptureProcess) -> None:
        if proc.stderr is None:
            return
        while True:
            line = await proc.stderr.readline()
            if not line:
                return
            logger.warning("capture_stderr", extra={"line": line.decode("utf-8", errors="replace").rstrip()})

    async def _watch(self, proc: CaptureProcess) -> None:
        code = await proc.wait()
        logger.info("capture_process_closed", extra={"pid": proc.pid, "code": code})
        if self._proc is proc:
            # Lets the next start() respawn cleanly.
            self._proc = None

    async def _deliver(self) -> None:
        while True:
            frame = await self._frames.get()
            try:
                await self._sink(frame)
                self.frames_delivered += 1
            except Exception as e:  # noqa: BLE001
                self.delivery_failures += 1
                logger.warning("capture_frame_delivery_failed", extra={"error": str(e)})
            finally:
                self._frames.task_done()
