"""Configuration package for the payment broker."""
from .settings import MoMoConfig, PayOSConfig, Settings, VNPayConfig, get_settings

__all__ = ["Settings", "VNPayConfig", "MoMoConfig", "PayOSConfig", "get_settings"]
