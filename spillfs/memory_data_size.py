"""Amounts of data, in octets, with legacy and binary unit conversions."""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal

_USIZE_MAX = 2**64 - 1

_DISPLAY_UNITS = (
    ("octets", 1.0),
    ("KiB", 1024.0),
    ("MiB", 1024.0**2),
    ("GiB", 1024.0**3),
    ("TiB", 1024.0**4),
    ("PiB", 1024.0**5),
    ("EiB", 1024.0**6),
)


def _ieee_div(a: float, b: float) -> float:
    """Floating division that yields inf/nan instead of raising on zero."""
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def _format_plain(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value.is_integer():
        return f"{value:.0f}"
    return format(Decimal(repr(value)), "f")


@dataclass(frozen=True, order=True)
class MemoryDataSize:
    """An amount of data measured in octets."""

    octets: float

    OCTET_BIT_FACTOR = 0.125

    OCTET_KILOOCTET_FACTOR = 1000
    OCTET_MEGAOCTET_FACTOR = 1000**2
    OCTET_GIGAOCTET_FACTOR = 1000**3
    OCTET_TERAOCTET_FACTOR = 1000**4

    OCTET_KIBIOCTET_FACTOR = 1024
    OCTET_MEBIOCTET_FACTOR = 1024**2
    OCTET_GIBIOCTET_FACTOR = 1024**3
    OCTET_TEBIOCTET_FACTOR = 1024**4

    def __post_init__(self) -> None:
        object.__setattr__(self, "octets", float(self.octets))

    @classmethod
    def from_octets(cls, octets: float) -> MemoryDataSize:
        return cls(float(octets))

    @classmethod
    def from_bits(cls, bits: float) -> MemoryDataSize:
        return cls(bits * cls.OCTET_BIT_FACTOR)

    @classmethod
    def from_kilooctets(cls, kilooctets: int) -> MemoryDataSize:
        return cls(float(kilooctets * cls.OCTET_KILOOCTET_FACTOR))

    @classmethod
    def from_megaoctets(cls, megaoctets: int) -> MemoryDataSize:
        return cls(float(megaoctets * cls.OCTET_MEGAOCTET_FACTOR))

    @classmethod
    def from_gigaoctets(cls, gigaoctets: int) -> MemoryDataSize:
        return cls(float(gigaoctets * cls.OCTET_GIGAOCTET_FACTOR))

    @classmethod
    def from_teraoctets(cls, teraoctets: int) -> MemoryDataSize:
        return cls(float(teraoctets * cls.OCTET_TERAOCTET_FACTOR))

    @classmethod
    def from_kibioctets(cls, kibioctets: int) -> MemoryDataSize:
        return cls(float(kibioctets * cls.OCTET_KIBIOCTET_FACTOR))

    @classmethod
    def from_mebioctets(cls, mebioctets: int) -> MemoryDataSize:
        return cls(float(mebioctets * cls.OCTET_MEBIOCTET_FACTOR))

    @classmethod
    def from_gibioctets(cls, gibioctets: int) -> MemoryDataSize:
        return cls(float(gibioctets * cls.OCTET_GIBIOCTET_FACTOR))

    @classmethod
    def from_tebioctets(cls, tebioctets: int) -> MemoryDataSize:
        return cls(float(tebioctets * cls.OCTET_TEBIOCTET_FACTOR))

    @classmethod
    def from_bytes(cls, count: int) -> MemoryDataSize:
        return cls(float(count))

    def as_octets(self) -> float:
        return self.octets

    def as_bits(self) -> float:
        return self.octets / self.OCTET_BIT_FACTOR

    def as_kilooctets(self) -> float:
        return self.octets / self.OCTET_KILOOCTET_FACTOR

    def as_megaoctets(self) -> float:
        return self.octets / self.OCTET_MEGAOCTET_FACTOR

    def as_gigaoctets(self) -> float:
        return self.octets / self.OCTET_GIGAOCTET_FACTOR

    def as_teraoctets(self) -> float:
        return self.octets / self.OCTET_TERAOCTET_FACTOR

    def as_kibioctets(self) -> float:
        return self.octets / self.OCTET_KIBIOCTET_FACTOR

    def as_mebioctets(self) -> float:
        return self.octets / self.OCTET_MEBIOCTET_FACTOR

    def as_gibioctets(self) -> float:
        return self.octets / self.OCTET_GIBIOCTET_FACTOR

    def as_tebioctets(self) -> float:
        return self.octets / self.OCTET_TEBIOCTET_FACTOR

    def as_bytes(self) -> int:
        """Whole number of bytes, saturating to the range of a 64-bit size."""
        value = self.octets
        if math.isnan(value) or value <= 0:
            return 0
        if math.isinf(value) or value >= _USIZE_MAX:
            return _USIZE_MAX
        return int(value)

    def max(self, other: MemoryDataSize) -> MemoryDataSize:
        """The larger of two sizes; a NaN side is ignored."""
        if math.isnan(self.octets):
            return MemoryDataSize(other.octets)
        if math.isnan(other.octets):
            return MemoryDataSize(self.octets)
        return MemoryDataSize(max(self.octets, other.octets))

    def appropriate_units(self) -> tuple[str, float]:
        """The largest binary unit in which the magnitude is at least one."""
        for unit, scale in reversed(_DISPLAY_UNITS):
            value = self.octets / scale
            if value >= 1.0 or value <= -1.0:
                return unit, value
        unit, scale = _DISPLAY_UNITS[0]
        return unit, self.octets / scale

    def __add__(self, other: object) -> MemoryDataSize:
        if not isinstance(other, MemoryDataSize):
            return NotImplemented
        return MemoryDataSize(self.octets + other.octets)

    def __sub__(self, other: object) -> MemoryDataSize:
        if not isinstance(other, MemoryDataSize):
            return NotImplemented
        return MemoryDataSize(self.octets - other.octets)

    def __mul__(self, factor: object) -> MemoryDataSize:
        if isinstance(factor, bool) or not isinstance(factor, (int, float)):
            return NotImplemented
        return MemoryDataSize(self.octets * factor)

    def __rmul__(self, factor: object) -> MemoryDataSize:
        return self.__mul__(factor)

    def __truediv__(self, other: object):
        if isinstance(other, MemoryDataSize):
            return _ieee_div(self.octets, other.octets)
        if isinstance(other, bool) or not isinstance(other, (int, float)):
            return NotImplemented
        return MemoryDataSize(_ieee_div(self.octets, float(other)))

    def __str__(self) -> str:
        unit, value = self.appropriate_units()
        return f"{_format_plain(value)}\u00a0{unit}"

    def __format__(self, spec: str) -> str:
        if not spec:
            return str(self)
        unit, value = self.appropriate_units()
        if not (spec[-1].isalpha() or spec[-1] == "%"):
            spec += "f"
        return f"{format(value, spec)}\u00a0{unit}"