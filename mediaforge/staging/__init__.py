"""Stage converters turning an original file into a renderable image."""

from mediaforge.staging.image import ImageTransformer
from mediaforge.staging.office import OfficeToPdfBridge
from mediaforge.staging.pdf import PdfRasterizer
from mediaforge.staging.transcode import AudioTranscoder, VideoTranscoder

__all__ = [
    "AudioTranscoder",
    "ImageTransformer",
    "OfficeToPdfBridge",
    "PdfRasterizer",
    "VideoTranscoder",
]
