"""Request bodies for the GeoBlock API.

Country codes are stripped and upper-cased on the way in. Anything that is
not two ASCII letters fails validation, and the app's validation handler
turns that into HTTP 400.
"""

from __future__ import annotations

from pydantic import BaseModel, field_validator


def _validate_code(value: str) -> str:
    code = value.strip().upper()
    if len(code) != 2 or not code.isascii() or not code.isalpha():
        raise ValueError(f"invalid country code: {value!r} (expected ISO 3166-1 alpha-2)")
    return code


class SimulateVPNRequest(BaseModel):
    """POST /api/simulate-vpn."""

    country_code: str

    @field_validator("country_code")
    @classmethod
    def _code(cls, value: str) -> str:
        return _validate_code(value)


class BlockCountriesRequest(BaseModel):
    """POST /api/block-countries. An empty list clears the block list."""

    countries: list[str]

    @field_validator("countries")
    @classmethod
    def _codes(cls, value: list[str]) -> list[str]:
        return [_validate_code(code) for code in value]


class ValidateBlockingRequest(BaseModel):
    """POST /api/validate-blocking. Hypothetical list; the live store is untouched."""

    blocked_countries: list[str]
    test_countries: list[str]

    @field_validator("blocked_countries", "test_countries")
    @classmethod
    def _codes(cls, value: list[str]) -> list[str]:
        return [_validate_code(code) for code in value]
