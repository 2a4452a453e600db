#!/usr/bin/env python3
# Package Index Module
# Reads package metadata out of `pacman -Si`

from dataclasses import dataclass, field

ARCHIVE_URL = "https://archive.archlinux.org/packages/{initial}/{name}/{name}-{version}-x86_64.pkg.tar.zst"


@dataclass(frozen=True)
class PackageInfo:
    name: str
    version: str
    depends: list = field(default_factory=list)

    def pinned_version(self, dependency):
        """Version this package requires of `dependency` through a `name=version` pin, if any."""
        prefix = f"{dependency}="
        for dep in self.depends:
            if dep.startswith(prefix):
                return dep[len(prefix):]
        return None


def parse_fields(text):
    """Parse the `Key : value` block of the first repository entry.

    Continuation lines (indented, no key) are folded into the previous field.
    """
    fields = {}
    key = None
    for line in text.splitlines():
        if not line.strip():
            if fields:
                break
            continue
        if line[0].isspace() and key is not None:
            fields[key] += " " + line.strip()
            continue
        name, sep, value = line.partition(":")
        if not sep:
            continue
        key = name.strip()
        fields[key] = value.strip()
    return fields


def parse_package_info(text):
    fields = parse_fields(text)
    depends = fields.get("Depends On", "")
    return PackageInfo(
        name=fields.get("Name", ""),
        version=fields.get("Version", ""),
        depends=[] if depends == "None" else depends.split(),
    )


@dataclass(frozen=True)
class KernelSource:
    from_archive: bool
    version: str = None
    url: str = None


def select_kernel_source(kernel, required_version, repo_version):
    """Decide where the kernel matching the ZFS module comes from.

    A rolling repository may already have moved past the kernel the ZFS
    module was built for; only the archive still holds that build.
    """
    if required_version is None or required_version == repo_version:
        return KernelSource(from_archive=False, version=repo_version)
    url = ARCHIVE_URL.format(initial=kernel[0], name=kernel, version=required_version)
    return KernelSource(from_archive=True, version=required_version, url=url)


class PackageIndex:
    def __init__(self, runner):
        self.runner = runner

    def refresh(self):
        self.runner.run(["pacman", "-Sy"], description="Update pacman repository")

    def info(self, name):
        out = self.runner.output(["pacman", "-Si", name], description=f"Query package {name}")
        return parse_package_info(out)
