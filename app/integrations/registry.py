"""
Normalizer registry: the lookup table from vendor tag to POS normalizer.
Adding a vendor means registering another BasePosNormalizer here.
"""

from datetime import datetime

import structlog

from app.integrations.base import BasePosNormalizer, UnsupportedVendorError
from app.integrations.classification import MenuClassifier
from app.models.pos import PosEvent, PosVendor

logger = structlog.get_logger()


def _vendor_key(vendor) -> str:
    if isinstance(vendor, PosVendor):
        return vendor.value.lower()
    return str(vendor).strip().lower()


class NormalizerRegistry:
    """Registry that manages and provides access to all POS normalizers."""

    def __init__(self, classifier: MenuClassifier | None = None, autoload: bool = True):
        """
        Initialize the normalizer registry.

        Args:
            classifier: Menu classifier shared by every normalizer (configured default if None)
            autoload: Register the built-in Toast, Square and Clover normalizers
        """
        self._normalizers: dict[str, BasePosNormalizer] = {}
        self._classifier = classifier
        if autoload:
            self._load_normalizers()

    def _load_normalizers(self):
        """Load the built-in vendor normalizers."""
        from app.integrations.clover.adapter import CloverNormalizer
        from app.integrations.square.adapter import SquareNormalizer
        from app.integrations.toast.adapter import ToastNormalizer

        for normalizer_class in (ToastNormalizer, SquareNormalizer, CloverNormalizer):
            self.register(normalizer_class(classifier=self._classifier))

    def register(self, normalizer: BasePosNormalizer):
        """
        Register a POS normalizer.

        Args:
            normalizer: Normalizer instance
        """
        name = normalizer.get_name()
        if name in self._normalizers:
            logger.warning("Normalizer already registered, replacing", vendor=name)
        self._normalizers[name] = normalizer
        logger.debug("Registered POS normalizer", vendor=name)

    def get_normalizer(self, vendor: str) -> BasePosNormalizer:
        """
        Get the normalizer for a vendor tag.

        Args:
            vendor: Vendor tag, case-insensitive (e.g., 'toast', 'SQUARE')

        Returns:
            Normalizer instance

        Raises:
            UnsupportedVendorError: If no normalizer is registered for the tag
        """
        normalizer = self._normalizers.get(_vendor_key(vendor))
        if normalizer is None:
            raise UnsupportedVendorError(_vendor_key(vendor), self.list_available())
        return normalizer

    def list_available(self) -> list[str]:
        """
        List all registered vendors.

        Returns:
            List of vendor names
        """
        return list(self._normalizers.keys())

    def is_available(self, vendor: str) -> bool:
        return _vendor_key(vendor) in self._normalizers

    def supported_events(self) -> dict[str, list[str]]:
        """Vendor event types each registered normalizer maps, keyed by vendor."""
        return {
            name: normalizer.get_supported_events()
            for name, normalizer in self._normalizers.items()
        }

    def normalize(
        self,
        raw_payload: dict,
        vendor: str,
        headers: dict | None = None,
        received_at: datetime | None = None,
    ) -> PosEvent:
        """
        Normalize a vendor-tagged raw payload to a canonical PosEvent.

        Raises:
            PosEventValidationError: Unsupported vendor or malformed payload
        """
        normalizer = self.get_normalizer(vendor)
        return normalizer.normalize(raw_payload, headers=headers, received_at=received_at)


def normalize(
    raw_payload: dict,
    vendor: str,
    headers: dict | None = None,
    received_at: datetime | None = None,
) -> PosEvent:
    """Normalize with the global registry."""
    return normalizer_registry.normalize(
        raw_payload, vendor, headers=headers, received_at=received_at
    )


# Global registry instance
normalizer_registry = NormalizerRegistry()
