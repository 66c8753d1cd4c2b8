"""
Script Templating.

Renders typed script parameters into a PowerShell script body.
Placeholders are written as ``{{Name}}``; every value is substituted as a
single-quoted PowerShell literal so it can never break out of its string.
"""

import re
from typing import Dict, Mapping

from pydantic import BaseModel, Field, field_validator

from patchops.core.errors import TemplateError

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")
PARAMETER_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
# Control characters other than tab are rejected outright
FORBIDDEN_CHARACTERS = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")


class ScriptParameters(BaseModel):
    """Parameters substituted into the install script."""

    software_name: str = Field(..., min_length=1, max_length=255)
    version: str = Field(..., min_length=1, max_length=100)
    install_command: str = Field(..., min_length=1, max_length=2000)
    vendor: str = Field("", max_length=255)
    extra: Dict[str, str] = Field(default_factory=dict)

    @field_validator("extra")
    @classmethod
    def validate_extra_names(cls, v: Dict[str, str]) -> Dict[str, str]:
        for name in v:
            if not PARAMETER_NAME_PATTERN.match(name):
                raise ValueError(f"Invalid script parameter name: {name!r}")
        return v

    def as_mapping(self) -> Dict[str, str]:
        """Placeholder name -> raw value."""
        values = {
            "SoftwareName": self.software_name,
            "Version": self.version,
            "InstallCommand": self.install_command,
            "Vendor": self.vendor,
        }
        values.update(self.extra)
        return values


def quote_powershell(value: str) -> str:
    """Return ``value`` as a single-quoted PowerShell string literal."""
    if FORBIDDEN_CHARACTERS.search(value):
        raise TemplateError("Script parameter values may not contain control characters")
    # PowerShell also treats typographic single quotes as quote characters
    escaped = re.sub(r"(['‘’‚‛])", r"\1\1", value)
    return f"'{escaped}'"


def render_script(template: str, parameters: Mapping[str, str]) -> str:
    """
    Substitute every ``{{Name}}`` in ``template`` with a quoted literal.

    Raises:
        TemplateError: A placeholder has no value, or a value is unsafe
    """
    missing = sorted(
        {name for name in PLACEHOLDER_PATTERN.findall(template) if name not in parameters}
    )
    if missing:
        raise TemplateError(f"Missing script parameters: {', '.join(missing)}")

    return PLACEHOLDER_PATTERN.sub(lambda m: quote_powershell(str(parameters[m.group(1)])), template)
