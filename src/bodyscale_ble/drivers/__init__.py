"""Vendor drivers."""

from .beurer_bf600 import BeurerBF600Driver
from .beurer_sanitas import BeurerSanitasDriver, DeviceType
from .cult_smart_scale_pro import CultSmartScaleProDriver
from .escs20m import ESCS20MDriver
from .okok import OKOKDriver
from .sinocare import SinocareDriver
from .standard_weight_profile import StandardWeightProfileDriver

__all__ = [
    "BeurerBF600Driver",
    "BeurerSanitasDriver",
    "CultSmartScaleProDriver",
    "DeviceType",
    "ESCS20MDriver",
    "OKOKDriver",
    "SinocareDriver",
    "StandardWeightProfileDriver",
]
