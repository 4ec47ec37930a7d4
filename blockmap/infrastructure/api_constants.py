"""
API endpoint constants and configuration.

This module contains all imagery API endpoint paths and related constants.
Centralizing these values makes it easy to swap out endpoints or update API versions.
"""

from blockmap.domain.models import LayerKind


class ImageryAPIEndpoints:
    """Imagery API endpoint paths."""

    PROCESS = "/process"
    FIELD_SCALAR = "/fields/{field_id}/scalars/{layer}"

    @classmethod
    def get_field_scalar(cls, field_id: str, layer: LayerKind) -> str:
        """
        Get the scalar overlay endpoint for a field.

        Args:
            field_id: Field identifier
            layer: Scalar layer (water balance, ET)

        Returns:
            Formatted endpoint path
        """
        return cls.FIELD_SCALAR.format(field_id=field_id, layer=layer.value)


class APIConstants:
    """General API configuration constants."""

    # HTTP Headers
    CONTENT_TYPE_JSON = "application/json"

    # Timeouts (in seconds)
    DEFAULT_TIMEOUT = 30.0
    LONG_TIMEOUT = 60.0

    # Raster output size requested from the imagery service
    RASTER_WIDTH = 512
    RASTER_HEIGHT = 512

    # Scenes above this cloud cover are skipped by the service
    MAX_CLOUD_COVERAGE = 30

    DATA_SOURCE = "sentinel-2-l2a"
