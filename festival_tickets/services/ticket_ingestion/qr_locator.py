"""
QR code location and cropping.

A whole-page scan is tried first. When it finds nothing, a fixed list of
sub-regions is scanned in order and the first region holding a code is used.
Every crop is normalized to a square white-padded image.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .models import RasterImage

logger = logging.getLogger(__name__)

DEFAULT_PADDING = 50
DEFAULT_OUTPUT_SIZE = 500
WHITE = (255, 255, 255)


@dataclass(frozen=True, eq=False)
class QRScan:
    """A decoded QR code and its corner points in image coordinates"""

    payload: str
    corners: np.ndarray  # shape (4, 2), x/y pairs

    def bounding_box(self) -> Tuple[int, int, int, int]:
        """Return (left, top, right, bottom) spanning all corners"""
        xs = self.corners[:, 0]
        ys = self.corners[:, 1]
        return int(np.floor(xs.min())), int(np.floor(ys.min())), int(np.ceil(xs.max())), int(np.ceil(ys.max()))


QRScanner = Callable[[np.ndarray], Optional[QRScan]]


@dataclass(frozen=True)
class ScanRegion:
    """Sub-rectangle of a page, given as fractions of its width and height"""

    name: str
    left: float
    top: float
    width: float
    height: float

    def pixel_box(self, image_width: int, image_height: int) -> Tuple[int, int, int, int]:
        """Return (left, top, right, bottom) in pixels, floored like the crop"""
        left = int(image_width * self.left)
        top = int(image_height * self.top)
        right = min(image_width, left + int(image_width * self.width))
        bottom = min(image_height, top + int(image_height * self.height))
        return left, top, right, bottom


# Tickets put the code near a top corner or in the middle of the page
DEFAULT_SCAN_REGIONS = (
    ScanRegion("top-left", 0.0, 0.0, 0.5, 0.5),
    ScanRegion("top-right", 0.5, 0.0, 0.5, 0.5),
    ScanRegion("center", 0.25, 0.25, 0.5, 0.5),
)


class OpenCVQRScanner:
    """QR scan primitive backed by OpenCV with a few preprocessing variants"""

    def __init__(self):
        self.qr_detector = cv2.QRCodeDetector()

    def __call__(self, img: np.ndarray) -> Optional[QRScan]:
        gray = img if img.ndim == 2 else cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)

        for j, processed_img in enumerate(self._get_preprocessed_images(gray)):
            try:
                decoded, points, _ = self.qr_detector.detectAndDecode(processed_img)
            except cv2.error as e:
                logger.debug(f"QR detection method {j + 1} failed: {e}")
                continue

            if decoded and points is not None:
                logger.debug(f"Found QR with method {j + 1}: {decoded[:50]}")
                return QRScan(payload=decoded, corners=np.asarray(points, dtype=np.float32).reshape(-1, 2))

        return None

    @staticmethod
    def _get_preprocessed_images(gray: np.ndarray) -> List[np.ndarray]:
        """Same-size variants only, so corner points stay in page coordinates"""
        return [
            gray,
            cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)[1],
            cv2.adaptiveThreshold(gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, 11, 2),
            cv2.equalizeHist(gray),
        ]


def normalize_square(img: np.ndarray, size: int = DEFAULT_OUTPUT_SIZE) -> np.ndarray:
    """
    Fit an image inside a size x size white square, keeping its aspect ratio.

    Args:
        img: BGR, BGRA or grayscale bitmap
        size: Side length of the output

    Returns:
        BGR bitmap of exactly size x size
    """
    if img.ndim == 2:
        img = cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
    elif img.shape[2] == 4:
        img = cv2.cvtColor(img, cv2.COLOR_BGRA2BGR)

    height, width = img.shape[:2]
    scale = min(size / width, size / height)
    new_width = max(1, min(size, int(round(width * scale))))
    new_height = max(1, min(size, int(round(height * scale))))
    interpolation = cv2.INTER_AREA if scale < 1 else cv2.INTER_CUBIC
    resized = cv2.resize(img, (new_width, new_height), interpolation=interpolation)

    canvas = np.full((size, size, 3), 255, dtype=np.uint8)
    x = (size - new_width) // 2
    y = (size - new_height) // 2
    canvas[y:y + new_height, x:x + new_width] = resized
    return canvas


class QRLocator:
    """Finds the QR code on a rendered ticket page and returns it cropped"""

    def __init__(self, scanner: Optional[QRScanner] = None,
                 regions: Sequence[ScanRegion] = DEFAULT_SCAN_REGIONS,
                 padding: int = DEFAULT_PADDING, output_size: int = DEFAULT_OUTPUT_SIZE):
        self.scanner = scanner or OpenCVQRScanner()
        self.regions = tuple(regions)
        self.padding = padding
        self.output_size = output_size

    def locate(self, image: RasterImage) -> Optional[RasterImage]:
        """
        Locate and crop the QR code of a page.

        Returns:
            Normalized output_size x output_size image, or None when no code
            is found on the page or in any region
        """
        pixels = image.pixels
        scan = self.scanner(pixels)
        if scan is not None:
            left, top, right, bottom = self._padded_box(scan, image.width, image.height)
            if right > left and bottom > top:
                logger.debug(f"QR found by full-page scan at ({left}, {top})-({right}, {bottom})")
                return RasterImage(normalize_square(pixels[top:bottom, left:right], self.output_size))
            logger.debug("Full-page scan returned corners outside the page")

        return self._search_regions(image)

    def _padded_box(self, scan: QRScan, width: int, height: int) -> Tuple[int, int, int, int]:
        left, top, right, bottom = scan.bounding_box()
        return (
            max(0, left - self.padding),
            max(0, top - self.padding),
            min(width, right + self.padding),
            min(height, bottom + self.padding),
        )

    def _search_regions(self, image: RasterImage) -> Optional[RasterImage]:
        for region in self.regions:
            left, top, right, bottom = region.pixel_box(image.width, image.height)
            if right <= left or bottom <= top:
                logger.debug(f"Skipping empty region {region.name}")
                continue

            crop = image.pixels[top:bottom, left:right]
            if self.scanner(crop) is not None:
                logger.info(f"QR found in {region.name} region")
                # The region itself is generous enough, no extra padding
                return RasterImage(normalize_square(crop, self.output_size))
            logger.debug(f"No QR in {region.name} region")

        logger.warning(f"No QR code found on page after full scan and {len(self.regions)} region(s)")
        return None
