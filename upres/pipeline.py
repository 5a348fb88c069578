"""Multi-pass denoise/upscale pipeline over the luminance plane of one image."""

import logging, math, time
from pathlib import Path
from typing import Callable

import cv2
import numpy as np

from upres.buffers import BatchBuffers
from upres.color import composite_over_white, extract_luminance, quantize, recompose, resize_plane
from upres.config import UPSCALE_MODES, PipelineConfig, normalize_mode
from upres.dispatch import BatchDispatcher
from upres.engine.base import EngineBase
from upres.engine.providers import resolve_providers
from upres.errors import Cancelled, InvalidConfiguration, NotInitialized
from upres.geometry import ScalePlan, crop_plane, decompose_scale, pad_plane
from upres.io import is_lossy_input, read_image, write_image
from upres.model_loader import DENOISE, UPSCALE, load_engine, resolve_model_dir


CancelProbe = Callable[[], bool]


def zoom2x(plane: np.ndarray) -> np.ndarray:
    """Enlarge a plane by exactly 2 on each axis with nearest-neighbour sampling."""
    height, width = plane.shape
    return cv2.resize(plane, (width * 2, height * 2), interpolation=cv2.INTER_NEAREST)


class Pipeline:
    """
    One configured reconstruction pipeline.

    Engines and batch buffers live from `init()` until `destroy()` and are reused
    for every pass and every image processed by the instance. Instances share
    no mutable state, so separate instances may run in parallel threads.
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        model_dir: str | Path | None = None,
        denoise_engine: EngineBase | None = None,
        upscale_engine: EngineBase | None = None,
        lossy_predicate: Callable[[Path], bool] = is_lossy_input,
        use_progress: bool = False,
        logger=None,
    ):
        self.config = config
        self.model_dir = model_dir
        self.denoise_engine = denoise_engine
        self.upscale_engine = upscale_engine
        self.lossy_predicate = lossy_predicate
        self.use_progress = use_progress
        self.log = logger or logging.getLogger(__name__)
        self.buffers: BatchBuffers | None = None
        self.dispatcher: BatchDispatcher | None = None
        self.is_initialized = False
        self._owned_engines: list[EngineBase] = []
        self._process = config.process

    @property
    def used_process(self) -> str:
        """Processor the engines run on; `gpu` only once CUDA availability was confirmed by `init()`."""
        return self._process

    def __enter__(self):
        """Initialize the pipeline for this context."""
        return self.init()

    def __exit__(self, exc_type, exc, tb):
        """Release engines and buffers when context exits."""
        self.destroy()
        return False

    def init(self) -> "Pipeline":
        """Load engines, check block sizes and allocate batch buffers; no-op when already initialized."""
        if self.is_initialized:
            return self
        cfg = self.config
        start = time.perf_counter()
        try:
            missing_denoise = cfg.needs_denoise_engine and self.denoise_engine is None
            missing_upscale = cfg.needs_upscale_engine and self.upscale_engine is None
            # Injected engines are checked against the requested process too.
            providers = resolve_providers(cfg.process)
            if missing_denoise or missing_upscale:
                model_dir = resolve_model_dir(self.model_dir)
                if missing_denoise:
                    self.denoise_engine = self._load_owned(model_dir, DENOISE, providers)
                if missing_upscale:
                    self.upscale_engine = self._load_owned(model_dir, UPSCALE, providers)

            for engine in (self.denoise_engine, self.upscale_engine):
                if engine is not None:
                    self._check_block_sizes(engine)

            self.buffers = BatchBuffers(cfg.batch_size, cfg.input_block_size, cfg.output_block_size).allocate()
            self.dispatcher = BatchDispatcher(cfg, self.buffers, use_progress=self.use_progress, logger=self.log)
        except Exception:
            self.destroy()
            raise

        self.is_initialized = True
        self.log.info(
            f"initialized pipeline in {time.perf_counter() - start:.3f}s\n"
            f"  mode={cfg.mode} noise_level={cfg.noise_level} scale_ratio={cfg.scale_ratio}\n"
            f"  process={self.used_process} crop_size={cfg.crop_size} batch_size={cfg.batch_size}\n"
            f"  blocks={cfg.input_block_size}->{cfg.output_block_size}"
        )
        return self

    def _load_owned(self, model_dir: Path, kind: str, providers: tuple[str, ...]) -> EngineBase:
        engine = load_engine(model_dir, kind, noise_level=self.config.noise_level, providers=providers, logger=self.log)
        self._owned_engines.append(engine)
        return engine

    def _check_block_sizes(self, engine: EngineBase) -> None:
        """Reject engines whose fixed block sizes disagree with the configuration."""
        sizes = engine.block_sizes()
        expected = (self.config.input_block_size, self.config.output_block_size)
        if sizes is not None and tuple(sizes) != expected:
            raise InvalidConfiguration(
                f"engine {engine.model_path()} expects blocks {sizes[0]}->{sizes[1]}, "
                f"configuration gives {expected[0]}->{expected[1]} (crop_size={self.config.crop_size})"
            )

    def destroy(self) -> None:
        """Release loaded engines and batch buffers; safe to call repeatedly."""
        for engine in self._owned_engines:
            engine.close()
            if engine is self.denoise_engine:
                self.denoise_engine = None
            if engine is self.upscale_engine:
                self.upscale_engine = None
        self._owned_engines = []
        if self.buffers is not None:
            self.buffers.release()
        self.buffers = None
        self.dispatcher = None
        self.is_initialized = False

    def _check_cancel(self, cancel: CancelProbe | None, where: str) -> None:
        if cancel is not None and cancel():
            self.log.info(f"cancelled {where}")
            raise Cancelled(f"cancelled {where}")

    def _reconstruct_pass(self, plane: np.ndarray, engine: EngineBase, desc: str) -> np.ndarray:
        """Pad to tile multiples, reconstruct, and crop back to the incoming size."""
        height, width = plane.shape
        canvas = pad_plane(plane, self.config.output_size)
        start = time.perf_counter()
        reconstructed = self.dispatcher.reconstruct(canvas, engine, desc=desc)
        self.log.info(
            f"{desc} pass on {width}x{height} (padded {canvas.shape[1]}x{canvas.shape[0]}) "
            f"in {time.perf_counter() - start:.3f}s"
        )
        return crop_plane(reconstructed, width, height)

    def _run(
        self,
        image: np.ndarray,
        mode: str | None,
        scale_ratio: float | None,
        lossy_input: bool,
        cancel: CancelProbe | None,
    ) -> tuple[np.ndarray, dict[str, object]]:
        """Run every pass for one image and return the quantized result plus diagnostics."""
        if not self.is_initialized:
            raise NotInitialized("Pipeline.init() must be called before processing")
        mode = self.config.mode if mode is None else normalize_mode(mode)
        scale_ratio = self.config.scale_ratio if scale_ratio is None else float(scale_ratio)
        if not math.isfinite(scale_ratio) or scale_ratio <= 0.0:
            raise InvalidConfiguration(f"scale_ratio must be finite and > 0; got {scale_ratio}")

        denoise = mode in {"noise", "noise_scale"} or (mode == "auto_scale" and lossy_input)
        # Auto mode always upscales; the lossy check only gates denoising.
        upscale = mode in UPSCALE_MODES
        if denoise and self.denoise_engine is None:
            raise InvalidConfiguration(f"mode={mode} needs a denoise engine, which this pipeline did not load")
        if upscale and self.upscale_engine is None:
            raise InvalidConfiguration(f"mode={mode} needs an upscale engine, which this pipeline did not load")
        plan = decompose_scale(scale_ratio) if upscale else ScalePlan(scale_ratio=1.0, iterations=0, shrink_ratio=1.0)

        bgr, alpha = composite_over_white(image)
        plane = extract_luminance(bgr)
        in_height, in_width = plane.shape

        if denoise:
            plane = self._reconstruct_pass(plane, self.denoise_engine, "denoise")

        # Polled only ahead of a pass, never after the last one.
        for iteration in range(plan.iterations):
            self._check_cancel(cancel, f"before upscale pass {iteration + 1}/{plan.iterations}")
            plane = self._reconstruct_pass(
                zoom2x(plane),
                self.upscale_engine,
                f"upscale {iteration + 1}/{plan.iterations}",
            )

        # Non-power-of-two remainder of the ratio.
        zoom_height, zoom_width = plane.shape
        target_size = plan.final_size(zoom_width, zoom_height)
        if plan.needs_shrink:
            plane = resize_plane(plane, target_size[0], target_size[1], cv2.INTER_LINEAR)

        out = quantize(recompose(plane, bgr, alpha, target_size=target_size, logger=self.log))
        info = {
            "mode": mode,
            "denoised": denoise,
            "iterations": plan.iterations,
            "shrink_ratio": plan.shrink_ratio,
            "input_shape": [in_height, in_width],
            "output_shape": [int(out.shape[0]), int(out.shape[1])],
            "process": self.used_process,
        }
        return out, info

    def process(
        self,
        image: np.ndarray,
        mode: str | None = None,
        scale_ratio: float | None = None,
        *,
        lossy_input: bool = False,
        cancel: CancelProbe | None = None,
    ) -> np.ndarray:
        """
        Denoise and/or upscale one image.

        Parameters
        ----------
        image:
            float32 image in `[0, 1]`: gray `(H, W)`, BGR `(H, W, 3)` or BGRA `(H, W, 4)`.
        mode:
            Optional mode override; defaults to the configured mode.
        scale_ratio:
            Optional scale override; defaults to the configured ratio.
        lossy_input:
            Whether the source was lossy-compressed (drives denoising in auto mode).
        cancel:
            Optional zero-argument probe polled between passes.

        Returns
        -------
        np.ndarray
            uint8 BGR or BGRA image at the requested scale.
        """
        out, _ = self._run(image, mode, scale_ratio, lossy_input, cancel)
        return out

    def process_file(
        self,
        input_fp: str | Path,
        output_fp: str | Path,
        cancel: CancelProbe | None = None,
    ) -> dict[str, object]:
        """Decode, process and encode one image file; nothing is written on failure or cancellation."""
        start = time.perf_counter()
        in_path = Path(input_fp).expanduser().resolve()
        out_path = Path(output_fp).expanduser().resolve()
        self.log.info(f"processing image\n    {in_path}\noutput\n    {out_path}")

        image = read_image(in_path)
        out, info = self._run(
            image,
            None,
            None,
            lossy_input=bool(self.lossy_predicate(in_path)),
            cancel=cancel,
        )
        written_fp = write_image(out_path, out)

        runtime_s = time.perf_counter() - start
        self.log.info(f"finished in {runtime_s:.3f}s; wrote output to\n    {written_fp}")
        return {"output_fp": str(written_fp), "runtime_s": float(runtime_s), **info}
