"""Argument vectors for ruby/gem invocations.

Names and version constraints are never interpolated into a shell string:
each builder returns a list that the runner quotes argument by argument.
Values placed inside ``ruby -e`` programs go through ``ruby_string_literal``.
"""
from __future__ import annotations

import re
from typing import List, Mapping, Optional, Sequence, Tuple, Union

from gembridge.domain.contracts import ANY_VERSION, PackageRequirement

Packages = Union[str, Mapping[str, Optional[str]]]

MINIMUM_RUBYGEMS_VERSION: Tuple[int, int] = (1, 2)
NO_DOCUMENT_FLAGS: Tuple[str, ...] = ("--no-document",)

_LEADING_DIGITS = re.compile(r"\d+")


def ruby_string_literal(value: str) -> str:
    """Double-quoted Ruby literal with ``\\``, ``"`` and ``#`` escaped."""
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"').replace("#", "\\#")
    return f'"{escaped}"'


def normalize_requirements(packages: Packages) -> List[PackageRequirement]:
    if isinstance(packages, str):
        return [PackageRequirement(name=packages, constraint=ANY_VERSION)]
    return [
        PackageRequirement(name=str(name), constraint=str(constraint or "").strip() or ANY_VERSION)
        for name, constraint in packages.items()
    ]


def command_version(packages: Packages, command_name: str) -> str:
    if isinstance(packages, str):
        return ANY_VERSION
    return str(packages.get(command_name) or "").strip() or ANY_VERSION


def _version_option(version: Optional[str]) -> List[str]:
    value = str(version or "").strip()
    return ["-v", value] if value else []


def interpreter_probe_argv(ruby_bin: str = "ruby") -> List[str]:
    return [ruby_bin, "-v"]


def rubygems_version_argv(gem_bin: str = "gem") -> List[str]:
    return [gem_bin, "environment", "version"]


def gem_list_argv(name: str, version: Optional[str] = None, gem_bin: str = "gem") -> List[str]:
    return [gem_bin, "list", name, "-i", *_version_option(version)]


def gem_install_argv(name: str, version: Optional[str] = None, gem_bin: str = "gem") -> List[str]:
    return [gem_bin, "install", name, *_version_option(version), *NO_DOCUMENT_FLAGS]


def gem_exec_argv(
    packages: Packages,
    command_name: str,
    args: Sequence[str] = (),
    ruby_bin: str = "ruby",
) -> List[str]:
    """Declare every required gem, then load the command's executable from them."""
    argv = [ruby_bin, "-rrubygems"]
    for req in normalize_requirements(packages):
        argv += ["-e", f"gem {ruby_string_literal(req.name)}, {ruby_string_literal(req.constraint)}"]
    command = ruby_string_literal(command_name)
    version = ruby_string_literal(command_version(packages, command_name))
    argv += ["-e", f"load Gem.bin_path({command}, {command}, {version})", "--"]
    argv += [str(item) for item in args]
    return argv


def parse_version(text: str) -> Optional[Tuple[int, int]]:
    """Parse the major and minor of a version string: ``"3.5.0.dev"`` gives ``(3, 5)``.

    Each component contributes its leading digits, so prerelease suffixes and
    anything past the minor are ignored. A missing minor counts as 0. None
    when the major has no leading digits.
    """
    raw = str(text or "").strip()
    chunks = raw.split(".")[:2]
    major = _LEADING_DIGITS.match(chunks[0])
    if major is None:
        return None
    minor = _LEADING_DIGITS.match(chunks[1]) if len(chunks) > 1 else None
    return int(major.group()), (int(minor.group()) if minor else 0)


def version_meets_floor(version: Tuple[int, ...], strict: bool = False) -> bool:
    """Check a parsed rubygems version against the 1.2 floor.

    The default rule compares major and minor independently
    (``major >= 1 and minor >= 2``), so ``2.0`` does not pass. ``strict``
    compares ``(major, minor)`` as a tuple instead.
    """
    major = version[0] if len(version) > 0 else 0
    minor = version[1] if len(version) > 1 else 0
    floor_major, floor_minor = MINIMUM_RUBYGEMS_VERSION
    if strict:
        return (major, minor) >= (floor_major, floor_minor)
    return major >= floor_major and minor >= floor_minor
