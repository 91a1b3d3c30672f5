"""Custom exceptions for arpreview"""


class ArPreviewError(Exception):
    """Base exception for arpreview errors"""
    pass


class CertificateError(ArPreviewError):
    """Self-signed certificate could not be generated"""
    pass


class ImageLoadError(ArPreviewError):
    """Image could not be resolved or decoded"""
    pass


class BlobNotFoundError(ImageLoadError):
    """Blob URL is not registered (or was already revoked)"""
    pass


class ImageDecodeError(ImageLoadError):
    """Image bytes are not a format Pillow can decode"""
    pass


class ConversionError(ArPreviewError):
    """Base exception for model conversion errors"""
    pass


class ModelReadError(ConversionError):
    """Input model could not be read from disk"""
    pass


class ModelParseError(ConversionError):
    """Input model is malformed or uses unsupported features"""
    pass


class ModelExportError(ConversionError):
    """Scene could not be exported to the output format"""
    pass


class ConversionTimeoutError(ConversionError):
    """A conversion stage did not finish in time"""
    pass
