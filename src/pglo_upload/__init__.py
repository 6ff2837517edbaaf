"""pglo-upload: chunked, transactional uploads into PostgreSQL large objects."""

from .errors import UploadError
from .uploader import UploadFailure
from .uploader import UploadRequest
from .uploader import UploadSuccess
from .uploader import Uploader


__all__ = [
    "UploadError",
    "UploadFailure",
    "UploadRequest",
    "UploadSuccess",
    "Uploader",
]
