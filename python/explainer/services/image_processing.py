"""Image validation and normalization for captured photos.

validate() inspects raw bytes without fully decoding them; process() turns a
valid capture into the two assets that get stored:
- main: auto-rotated, metadata-stripped (ICC profile kept), at most 2048px on
  the long edge, progressive JPEG at quality 85
- thumbnail: 400x400 cover crop, JPEG at quality 70

Each output carries the SHA-256 of its final encoded bytes. The main image's
hash is the dedup key for explanations.
"""

import io
import warnings
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from explainer.errors import ApiErrorCode, ImageConstraintViolation, InvalidImage
from explainer.storage.client import compute_sha256

ALLOWED_FORMATS = frozenset({"JPEG", "PNG", "WEBP"})
MAX_IMAGE_BYTES = 10 * 1024 * 1024
MIN_DIMENSION = 50
MAX_DIMENSION = 10000

MAIN_MAX_EDGE = 2048
MAIN_QUALITY = 85
THUMBNAIL_SIZE = (400, 400)
THUMBNAIL_QUALITY = 70
OUTPUT_CONTENT_TYPE = "image/jpeg"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validate().

    On failure `reason` is human readable and `error_code` says whether the
    input is malformed (E_INVALID_IMAGE) or merely out of bounds.
    """

    ok: bool
    reason: str | None = None
    error_code: ApiErrorCode | None = None
    format: str | None = None
    width: int | None = None
    height: int | None = None
    size_bytes: int = 0

    def raise_for_failure(self) -> None:
        if self.ok:
            return
        if self.error_code == ApiErrorCode.E_INVALID_IMAGE:
            raise InvalidImage(self.reason or "Invalid image")
        raise ImageConstraintViolation(
            self.reason or "Image constraints violated",
            code=self.error_code or ApiErrorCode.E_IMAGE_CONSTRAINT,
        )


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    width: int
    height: int
    sha256: str
    content_type: str = OUTPUT_CONTENT_TYPE


@dataclass(frozen=True)
class ProcessedImages:
    main: EncodedImage
    thumbnail: EncodedImage

    @property
    def content_hash(self) -> str:
        """Dedup key: hash of the main asset."""
        return self.main.sha256


def _invalid(reason: str, size: int) -> ValidationResult:
    return ValidationResult(
        ok=False, reason=reason, error_code=ApiErrorCode.E_INVALID_IMAGE, size_bytes=size
    )


def _constraint(
    reason: str, size: int, code: ApiErrorCode = ApiErrorCode.E_IMAGE_CONSTRAINT, **dims
) -> ValidationResult:
    return ValidationResult(ok=False, reason=reason, error_code=code, size_bytes=size, **dims)


def validate(data: bytes) -> ValidationResult:
    """Check format, byte size and pixel dimensions of an encoded image."""
    size = len(data)
    if size == 0:
        return _invalid("Image is empty", size)
    if size > MAX_IMAGE_BYTES:
        return _constraint(
            f"Image is {size} bytes; the limit is {MAX_IMAGE_BYTES} bytes",
            size,
            code=ApiErrorCode.E_IMAGE_TOO_LARGE,
        )

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", Image.DecompressionBombWarning)
            with Image.open(io.BytesIO(data)) as img:
                img.verify()
            with Image.open(io.BytesIO(data)) as img:
                img_format = img.format
                width, height = img.size
    except Image.DecompressionBombError:
        return _constraint("Image dimensions exceed the decoder limit", size)
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        return _invalid(f"Image could not be decoded: {type(e).__name__}", size)

    if img_format not in ALLOWED_FORMATS:
        return _invalid(f"Unsupported image format: {img_format or 'unknown'}", size)

    dims = {"format": img_format, "width": width, "height": height}
    if min(width, height) < MIN_DIMENSION:
        return _constraint(
            f"Image is {width}x{height}; minimum is {MIN_DIMENSION}px per side", size, **dims
        )
    if max(width, height) > MAX_DIMENSION:
        return _constraint(
            f"Image is {width}x{height}; maximum is {MAX_DIMENSION}px per side", size, **dims
        )

    return ValidationResult(ok=True, size_bytes=size, **dims)


def _flatten_to_rgb(img: Image.Image) -> Image.Image:
    """Composite transparent images onto white and convert to RGB."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def _encode_jpeg(
    img: Image.Image, quality: int, icc_profile: bytes | None, *, progressive: bool
) -> EncodedImage:
    buffer = io.BytesIO()
    params: dict = {"format": "JPEG", "quality": quality, "optimize": True}
    if progressive:
        params["progressive"] = True
    if icc_profile:
        params["icc_profile"] = icc_profile
    img.save(buffer, **params)
    data = buffer.getvalue()
    return EncodedImage(data=data, width=img.width, height=img.height, sha256=compute_sha256(data))


def process(data: bytes) -> ProcessedImages:
    """Normalize a capture into main and thumbnail JPEGs.

    Raises:
        InvalidImage: If the bytes are not a decodable JPEG/PNG/WebP.
        ImageConstraintViolation: If size or dimensions are out of bounds.
    """
    validate(data).raise_for_failure()

    try:
        with Image.open(io.BytesIO(data)) as source:
            source.load()
            icc_profile = source.info.get("icc_profile") if source.mode != "CMYK" else None
            oriented = ImageOps.exif_transpose(source)
    except (OSError, SyntaxError, ValueError) as e:
        raise InvalidImage(f"Image could not be decoded: {type(e).__name__}") from e

    rgb = _flatten_to_rgb(oriented)

    main = rgb.copy()
    main.thumbnail((MAIN_MAX_EDGE, MAIN_MAX_EDGE), Image.Resampling.LANCZOS)
    thumbnail = ImageOps.fit(rgb, THUMBNAIL_SIZE, method=Image.Resampling.LANCZOS)

    return ProcessedImages(
        main=_encode_jpeg(main, MAIN_QUALITY, icc_profile, progressive=True),
        thumbnail=_encode_jpeg(thumbnail, THUMBNAIL_QUALITY, icc_profile, progressive=False),
    )
