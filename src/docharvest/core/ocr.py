"""
OCR engine using RapidOCR with local ONNX models.

RapidOCR is PaddleOCR's models pre-converted to ONNX, running on onnxruntime.

Custom models (optional) in <models_dir>/rapidocr/ or, per language,
<models_dir>/rapidocr/<language>/:
- det.onnx - Text region detection
- rec.onnx - Text recognition
- cls.onnx - Orientation classification

Without custom models the models bundled with rapidocr-onnxruntime are used.

Usage:
    from docharvest.core.ocr import OCREngine, OcrOptions

    engine = OCREngine(language="eng")
    text = engine.extract_text(image, OcrOptions(timeout=60))
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from itertools import groupby
from pathlib import Path
from typing import TYPE_CHECKING, Any, List, Optional, Union

from docharvest.exceptions import OcrTimeoutError, ParseError

from .constants import DEFAULT_MODELS_DIR, DEFAULT_OCR_LANGUAGE, DEFAULT_OCR_TIMEOUT

if TYPE_CHECKING:
    import numpy as np
    from PIL import Image

logger = logging.getLogger(__name__)

__all__ = ["OCREngine", "OcrOptions"]

REQUIRED_MODELS = ("det.onnx", "rec.onnx", "cls.onnx")


@dataclass(frozen=True)
class OcrOptions:
    """Per-invocation OCR tuning. Built once from settings, shared read-only."""
    timeout: float = DEFAULT_OCR_TIMEOUT  # seconds; <= 0 disables the timeout
    apply_rotation: bool = False
    enable_image_processing: bool = False
    language: str = DEFAULT_OCR_LANGUAGE


def _top(bbox) -> float:
    return min(point[1] for point in bbox)


def _left(bbox) -> float:
    return min(point[0] for point in bbox)


def _line_height(result: List[Any]) -> float:
    """Vertical bucket size: 60% of the median block height, at least 5px."""
    heights = sorted(
        height
        for height in (max(p[1] for p in bbox) - _top(bbox) for bbox, _text, _conf in result)
        if height > 0
    )
    if not heights:
        return 20
    return max(heights[len(heights) // 2] * 0.6, 5)


def _join_lines(result: List[Any]) -> str:
    """
    Arrange RapidOCR blocks in reading order.

    ``result`` is RapidOCR's [(bbox, text, confidence), ...] where bbox is a
    four-point quadrilateral. Blocks whose tops fall in the same vertical
    bucket form one line, ordered left to right.
    """
    bucket = _line_height(result)

    def line_of(item) -> int:
        return int(_top(item[0]) / bucket)

    ordered = sorted(result, key=lambda item: (line_of(item), _left(item[0])))
    return "\n".join(
        " ".join(text for _bbox, text, _conf in blocks)
        for _line, blocks in groupby(ordered, key=line_of)
    )


class OCREngine:
    """
    RapidOCR wrapper shared by every backend that needs OCR.

    The model is loaded on first use, once, under a lock. Per-call tuning
    (timeout, rotation, preprocessing) comes from OcrOptions.
    """

    def __init__(self, models_dir: Optional[Path] = None, language: str = DEFAULT_OCR_LANGUAGE):
        """
        Args:
            models_dir: Directory holding rapidocr/ (default ~/.docharvest/models)
            language: Prefer rapidocr/<language>/ when it has a full model set
        """
        self.models_dir = Path(models_dir) if models_dir else DEFAULT_MODELS_DIR
        self.language = language
        self._engine = None
        self._load_lock = threading.Lock()

    @staticmethod
    def _complete(directory: Path) -> bool:
        return all((directory / name).exists() for name in REQUIRED_MODELS)

    @property
    def rapidocr_dir(self) -> Path:
        language_dir = self.models_dir / "rapidocr" / self.language
        return language_dir if self._complete(language_dir) else self.models_dir / "rapidocr"

    @property
    def has_custom_models(self) -> bool:
        return self._complete(self.rapidocr_dir)

    @property
    def is_available(self) -> bool:
        """True when OCR can run with custom or bundled models."""
        if self.has_custom_models:
            return True
        try:
            import rapidocr_onnxruntime  # noqa: F401
        except ImportError:
            logger.debug("OCR unavailable: rapidocr-onnxruntime is not installed")
            return False
        return True

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    def _model_paths(self) -> dict:
        if not self.has_custom_models:
            return {}
        directory = self.rapidocr_dir
        return {
            f"{kind}_model_path": str(directory / f"{kind}.onnx")
            for kind in ("det", "rec", "cls")
        }

    def _load(self):
        with self._load_lock:
            if self._engine is None:
                try:
                    from rapidocr_onnxruntime import RapidOCR
                except ImportError as e:
                    raise ParseError(
                        "rapidocr-onnxruntime not installed. Run: pip install rapidocr-onnxruntime",
                        cause=e,
                    ) from e

                paths = self._model_paths()
                logger.info(
                    f"Loading RapidOCR models from {self.rapidocr_dir}" if paths
                    else "Loading bundled RapidOCR models"
                )
                try:
                    self._engine = RapidOCR(**paths)
                except (OSError, RuntimeError, ValueError) as e:
                    logger.error(f"RapidOCR failed to load: {type(e).__name__}: {e}")
                    raise ParseError(f"OCR engine failed to load: {e}", cause=e) from e
        return self._engine

    @staticmethod
    def _prepare(
        image: Union[str, Path, "np.ndarray", "Image.Image"],
        enable_image_processing: bool,
    ) -> Any:
        """Convert input to something RapidOCR accepts, optionally cleaning it up."""
        if isinstance(image, Path):
            image = str(image)

        if not enable_image_processing:
            return image

        import numpy as np
        from PIL import Image, ImageOps

        if isinstance(image, str):
            image = Image.open(image)
        elif isinstance(image, np.ndarray):
            image = Image.fromarray(image)

        # Grayscale + contrast stretch helps faded scans and photocopies
        cleaned = ImageOps.autocontrast(ImageOps.grayscale(image))
        return np.array(cleaned.convert("RGB"))

    def extract_text(
        self,
        image: Union[str, Path, "np.ndarray", "Image.Image"],
        options: Optional[OcrOptions] = None,
    ) -> str:
        """
        Extract text from an image.

        Args:
            image: Path, numpy array (H, W, C) or PIL Image
            options: Timeout / rotation / preprocessing settings

        Returns:
            Recognized text with lines joined by newlines ("" if none found)

        Raises:
            OcrTimeoutError: If recognition exceeds options.timeout
            ParseError: If the engine cannot be loaded or fails
        """
        options = options or OcrOptions()
        engine = self._engine or self._load()

        prepared = self._prepare(image, options.enable_image_processing)
        timeout = options.timeout if options.timeout and options.timeout > 0 else None

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="docharvest-ocr")
        try:
            future = executor.submit(engine, prepared, use_cls=options.apply_rotation)
            try:
                result, _elapsed = future.result(timeout=timeout)
            except FuturesTimeoutError as e:
                future.cancel()
                logger.warning(f"OCR exceeded {timeout}s timeout")
                raise OcrTimeoutError(timeout) from e
            except (OSError, RuntimeError, ValueError) as e:
                raise ParseError(f"OCR failed: {e}", cause=e) from e
        finally:
            # Don't block on a timed-out worker; it finishes in the background
            executor.shutdown(wait=False)

        if not result:
            return ""
        return _join_lines(result)
