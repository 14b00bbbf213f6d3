"""ocilayout: content addressable storage for OCI image layouts.

Stores manifests and blobs in a local OCI layout directory, tracks referrers
(signatures, SBOMs, attestations) through a fallback tag index, garbage
collects unreachable blobs and copies images between layouts under bounded
write concurrency.
"""

__version__ = "0.1.0"
__description__ = "Content addressable storage engine for OCI image layouts"

from ocilayout.core.copier import copy_image
from ocilayout.core.ocidir import OCIDir
from ocilayout.models.reference import Ref, parse

__all__ = ["OCIDir", "Ref", "copy_image", "parse", "__version__"]
