from __future__ import annotations

from functools import lru_cache

import cloudinary

from propimage.config import cloudinary_api_key, cloudinary_api_secret, cloudinary_cloud_name


def cloudinary_is_configured() -> bool:
    """
    True when the credentials needed to overwrite a delivered asset are present.
    """
    return bool(cloudinary_cloud_name() and cloudinary_api_key() and cloudinary_api_secret())


@lru_cache(maxsize=1)
def configure_cloudinary() -> bool:
    """Push credentials into the SDK once per process; False when they are missing."""
    if not cloudinary_is_configured():
        return False
    cloudinary.config(
        cloud_name=cloudinary_cloud_name(),
        api_key=cloudinary_api_key(),
        api_secret=cloudinary_api_secret(),
        secure=True,
    )
    return True
