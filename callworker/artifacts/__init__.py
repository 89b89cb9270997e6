from .handoff import ArtifactHandoff
from .locator import ArtifactLocator
from .uploader import UploadResult, Uploader

__all__ = ["ArtifactHandoff", "ArtifactLocator", "UploadResult", "Uploader"]
