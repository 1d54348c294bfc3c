"""Post-processing of discovered skills: zip packages and R2 upload."""

from .r2 import R2Uploader
from .runner import PostProcessStats, resume_pending, run_post_processing

__all__ = ["PostProcessStats", "R2Uploader", "resume_pending", "run_post_processing"]
