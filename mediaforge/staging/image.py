"""OpenCV implementation of the per-conversion image manipulations.

Manipulations are mappings of Glide-style parameters, for example
``{"w": 368, "h": 232, "fit": "crop", "fm": "jpg", "q": 80}``. Each call to
:meth:`ImageTransformer.apply` decodes the file, applies every parameter of the
mapping and re-encodes it in place.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

import cv2  # type: ignore
import numpy as np

from mediaforge.core.errors import ManipulationFailed
from mediaforge.core.logging import get_logger

SUPPORTED_PARAMS = frozenset(
    {
        "or",
        "flip",
        "crop",
        "w",
        "h",
        "dpr",
        "fit",
        "bg",
        "bri",
        "con",
        "gam",
        "sharp",
        "blur",
        "pixel",
        "filt",
        "mark",
        "markw",
        "markh",
        "markpos",
        "markpad",
        "markalpha",
        "fm",
        "q",
    }
)

DEFAULT_QUALITY = 90

_ENCODERS = {
    "jpg": ".jpg",
    "pjpg": ".jpg",
    "png": ".png",
    "webp": ".webp",
    "bmp": ".bmp",
    "tiff": ".tiff",
}

_NAMED_POSITIONS: dict[str, Tuple[float, float]] = {
    "top-left": (0, 0),
    "top": (50, 0),
    "top-right": (100, 0),
    "left": (0, 50),
    "center": (50, 50),
    "right": (100, 50),
    "bottom-left": (0, 100),
    "bottom": (50, 100),
    "bottom-right": (100, 100),
}

_SEPIA = np.array(
    [
        [0.131, 0.534, 0.272],
        [0.168, 0.686, 0.349],
        [0.189, 0.769, 0.393],
    ]
)


class ImageTransformer:
    def __init__(self, watermark_root: Optional[Path] = None):
        self.watermark_root = watermark_root
        self.logger = get_logger(component="image_transformer")

    def apply(self, manipulation: Mapping[str, Any], image_path: Path) -> Path:
        unknown = sorted(set(manipulation) - SUPPORTED_PARAMS)
        if unknown:
            raise ManipulationFailed(f"unsupported manipulation parameters: {', '.join(unknown)}")

        image = cv2.imread(str(image_path), cv2.IMREAD_COLOR)
        if image is None:
            raise ManipulationFailed(f"unreadable image: {image_path}")

        fmt = str(manipulation.get("fm") or _sniff_format(image_path))
        if fmt not in _ENCODERS:
            raise ManipulationFailed(f"unsupported output format: {fmt}")

        try:
            image = self._transform(image, manipulation)
            params = _encode_params(fmt, manipulation.get("q"))
            ok, encoded = cv2.imencode(_ENCODERS[fmt], image, params)
        except (cv2.error, ValueError, TypeError) as exc:
            raise ManipulationFailed(f"manipulation failed: {exc}") from exc
        if not ok:
            raise ManipulationFailed(f"could not encode image as {fmt}")

        image_path.write_bytes(encoded.tobytes())
        self.logger.debug("image_manipulated", path=str(image_path), params=sorted(manipulation))
        return image_path

    def _transform(self, image: np.ndarray, m: Mapping[str, Any]) -> np.ndarray:
        image = _orient(image, m.get("or"))
        if m.get("crop"):
            image = _crop(image, str(m["crop"]))

        dpr = float(m.get("dpr", 1))
        if not 1 <= dpr <= 8:
            raise ValueError("dpr must be between 1 and 8")
        width = _scaled(m.get("w"), dpr)
        height = _scaled(m.get("h"), dpr)
        if width or height:
            image = _resize(image, width, height, str(m.get("fit", "contain")), _parse_color(m.get("bg")))

        if "bri" in m:
            image = cv2.convertScaleAbs(image, alpha=1.0, beta=_bounded(m["bri"], -100, 100) * 2.55)
        if "con" in m:
            alpha = 1 + _bounded(m["con"], -100, 100) / 100
            image = cv2.convertScaleAbs(image, alpha=alpha, beta=128 * (1 - alpha))
        if "gam" in m:
            gamma = _bounded(m["gam"], 0.1, 9.99)
            table = np.array([((i / 255.0) ** (1.0 / gamma)) * 255 for i in range(256)]).astype("uint8")
            image = cv2.LUT(image, table)
        if m.get("sharp"):
            amount = _bounded(m["sharp"], 0, 100) / 50
            blurred = cv2.GaussianBlur(image, (0, 0), 3)
            image = cv2.addWeighted(image, 1 + amount, blurred, -amount, 0)
        if m.get("filt"):
            image = _filter(image, str(m["filt"]))
        if m.get("flip"):
            image = _flip(image, str(m["flip"]))
        if m.get("blur"):
            image = cv2.GaussianBlur(image, (0, 0), max(_bounded(m["blur"], 0, 100) / 4, 0.1))
        if m.get("pixel"):
            image = _pixelate(image, int(_bounded(m["pixel"], 0, 1000)))
        if m.get("mark"):
            image = self._watermark(image, m)
        return image

    def _watermark(self, image: np.ndarray, m: Mapping[str, Any]) -> np.ndarray:
        mark_path = Path(str(m["mark"]))
        if not mark_path.is_absolute() and self.watermark_root is not None:
            mark_path = self.watermark_root / mark_path
        mark = cv2.imread(str(mark_path), cv2.IMREAD_UNCHANGED)
        if mark is None:
            raise ValueError(f"unreadable watermark: {mark_path}")
        if mark.ndim == 2:
            mark = cv2.cvtColor(mark, cv2.COLOR_GRAY2BGR)

        img_h, img_w = image.shape[:2]
        mark_w = _dimension(m.get("markw"), img_w, img_h)
        mark_h = _dimension(m.get("markh"), img_w, img_h)
        if mark_w or mark_h:
            src_h, src_w = mark.shape[:2]
            mark_w = mark_w or max(1, round(src_w * mark_h / src_h))
            mark_h = mark_h or max(1, round(src_h * mark_w / src_w))
            mark = cv2.resize(mark, (mark_w, mark_h), interpolation=cv2.INTER_AREA)

        mark_h, mark_w = mark.shape[:2]
        pad = _dimension(m.get("markpad"), img_w, img_h) or 0
        fx, fy = _NAMED_POSITIONS.get(str(m.get("markpos", "bottom-right")), (100, 100))
        x = int(pad + (img_w - mark_w - 2 * pad) * fx / 100)
        y = int(pad + (img_h - mark_h - 2 * pad) * fy / 100)

        # Clip the mark to the part that overlaps the image.
        x0, y0 = max(x, 0), max(y, 0)
        x1, y1 = min(x + mark_w, img_w), min(y + mark_h, img_h)
        if x0 >= x1 or y0 >= y1:
            return image
        mark = mark[y0 - y : y1 - y, x0 - x : x1 - x]

        opacity = _bounded(m.get("markalpha", 100), 0, 100) / 100
        if mark.shape[2] == 4:
            alpha = (mark[:, :, 3:4].astype(np.float32) / 255.0) * opacity
            overlay = mark[:, :, :3].astype(np.float32)
        else:
            alpha = np.full((*mark.shape[:2], 1), opacity, dtype=np.float32)
            overlay = mark.astype(np.float32)

        region = image[y0:y1, x0:x1].astype(np.float32)
        blended = region * (1 - alpha) + overlay * alpha
        result = image.copy()
        result[y0:y1, x0:x1] = np.clip(blended, 0, 255).astype(np.uint8)
        return result


def _orient(image: np.ndarray, value: Any) -> np.ndarray:
    if value in (None, "auto", 0, "0"):
        return image
    rotations = {
        90: cv2.ROTATE_90_COUNTERCLOCKWISE,
        180: cv2.ROTATE_180,
        270: cv2.ROTATE_90_CLOCKWISE,
    }
    try:
        return cv2.rotate(image, rotations[int(value)])
    except KeyError:
        raise ValueError(f"unsupported orientation: {value}") from None


def _flip(image: np.ndarray, value: str) -> np.ndarray:
    codes = {"h": 1, "v": 0, "both": -1}
    if value not in codes:
        raise ValueError(f"unsupported flip: {value}")
    return cv2.flip(image, codes[value])


def _crop(image: np.ndarray, value: str) -> np.ndarray:
    parts = [int(part) for part in value.split(",")]
    if len(parts) != 4:
        raise ValueError("crop expects 'width,height,x,y'")
    width, height, x, y = parts
    img_h, img_w = image.shape[:2]
    if width <= 0 or height <= 0 or x < 0 or y < 0 or x >= img_w or y >= img_h:
        raise ValueError(f"crop outside image bounds: {value}")
    return image[y : min(y + height, img_h), x : min(x + width, img_w)]


def _resize(
    image: np.ndarray,
    width: Optional[int],
    height: Optional[int],
    fit: str,
    background: Tuple[int, int, int],
) -> np.ndarray:
    img_h, img_w = image.shape[:2]
    if fit == "stretch" and width and height:
        return _scale_to(image, width, height)

    if width and not height:
        height = max(1, round(img_h * width / img_w))
    elif height and not width:
        width = max(1, round(img_w * height / img_h))
    if not width or not height:
        raise ValueError("resize needs a width or a height")

    if fit.startswith("crop"):
        focal = _focal_point(fit)
        scale = max(width / img_w, height / img_h)
        scaled = _scale_to(image, max(width, round(img_w * scale)), max(height, round(img_h * scale)))
        new_h, new_w = scaled.shape[:2]
        left = min(max(round(new_w * focal[0] / 100 - width / 2), 0), new_w - width)
        top = min(max(round(new_h * focal[1] / 100 - height / 2), 0), new_h - height)
        return scaled[top : top + height, left : left + width]

    if fit not in {"contain", "max", "fill"}:
        raise ValueError(f"unsupported fit: {fit}")

    scale = min(width / img_w, height / img_h)
    if fit == "max":
        scale = min(scale, 1.0)
    contained = _scale_to(image, max(1, round(img_w * scale)), max(1, round(img_h * scale)))
    if fit != "fill":
        return contained

    new_h, new_w = contained.shape[:2]
    top = (height - new_h) // 2
    left = (width - new_w) // 2
    return cv2.copyMakeBorder(
        contained,
        top,
        height - new_h - top,
        left,
        width - new_w - left,
        cv2.BORDER_CONSTANT,
        value=background,
    )


def _scale_to(image: np.ndarray, width: int, height: int) -> np.ndarray:
    img_h, img_w = image.shape[:2]
    if (width, height) == (img_w, img_h):
        return image
    shrinking = width * height < img_w * img_h
    interpolation = cv2.INTER_AREA if shrinking else cv2.INTER_CUBIC
    return cv2.resize(image, (width, height), interpolation=interpolation)


def _focal_point(fit: str) -> Tuple[float, float]:
    if fit == "crop":
        return 50, 50
    position = fit[len("crop-") :]
    if position in _NAMED_POSITIONS:
        return _NAMED_POSITIONS[position]
    parts = position.split("-")
    if len(parts) != 2:
        raise ValueError(f"unsupported crop position: {fit}")
    return _bounded(parts[0], 0, 100), _bounded(parts[1], 0, 100)


def _filter(image: np.ndarray, name: str) -> np.ndarray:
    if name == "greyscale":
        return cv2.cvtColor(cv2.cvtColor(image, cv2.COLOR_BGR2GRAY), cv2.COLOR_GRAY2BGR)
    if name == "sepia":
        return cv2.transform(image, _SEPIA)
    raise ValueError(f"unsupported filter: {name}")


def _pixelate(image: np.ndarray, block: int) -> np.ndarray:
    if block <= 1:
        return image
    img_h, img_w = image.shape[:2]
    small = cv2.resize(image, (max(1, img_w // block), max(1, img_h // block)), interpolation=cv2.INTER_LINEAR)
    return cv2.resize(small, (img_w, img_h), interpolation=cv2.INTER_NEAREST)


def _encode_params(fmt: str, quality: Any) -> list[int]:
    q = DEFAULT_QUALITY if quality is None else int(_bounded(quality, 0, 100))
    if fmt == "jpg":
        return [cv2.IMWRITE_JPEG_QUALITY, q]
    if fmt == "pjpg":
        return [cv2.IMWRITE_JPEG_QUALITY, q, cv2.IMWRITE_JPEG_PROGRESSIVE, 1]
    if fmt == "webp":
        return [cv2.IMWRITE_WEBP_QUALITY, max(q, 1)]
    return []


def _sniff_format(path: Path) -> str:
    with path.open("rb") as handle:
        header = handle.read(12)
    if header.startswith(b"\x89PNG"):
        return "png"
    if header.startswith(b"GIF8"):
        return "png"
    if header.startswith(b"RIFF") and header[8:12] == b"WEBP":
        return "webp"
    if header.startswith(b"BM"):
        return "bmp"
    if header[:4] in (b"II*\x00", b"MM\x00*"):
        return "tiff"
    return "jpg"


def _parse_color(value: Any) -> Tuple[int, int, int]:
    if not value:
        return (255, 255, 255)
    text = str(value).lstrip("#")
    if len(text) == 3:
        text = "".join(ch * 2 for ch in text)
    if len(text) != 6:
        raise ValueError(f"unsupported background colour: {value}")
    red, green, blue = (int(text[i : i + 2], 16) for i in (0, 2, 4))
    return (blue, green, red)


def _dimension(value: Any, image_w: int, image_h: int) -> Optional[int]:
    if value is None or value == "":
        return None
    text = str(value)
    if text.endswith("w"):
        return max(1, round(image_w * float(text[:-1]) / 100))
    if text.endswith("h"):
        return max(1, round(image_h * float(text[:-1]) / 100))
    return int(float(text))


def _scaled(value: Any, dpr: float) -> Optional[int]:
    if value is None or value == "":
        return None
    size = int(value)
    if size <= 0:
        raise ValueError(f"dimension must be positive: {value}")
    return max(1, round(size * dpr))


def _bounded(value: Any, low: float, high: float) -> float:
    number = float(value)
    if not low <= number <= high:
        raise ValueError(f"value {value} outside [{low}, {high}]")
    return number


__all__ = ["ImageTransformer", "SUPPORTED_PARAMS"]
