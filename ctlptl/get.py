"""Print clusters and registries as tables, names, YAML or JSON."""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import IO, Any, Optional

import yaml

from .resources import Cluster, ClusterList, Registry, RegistryList

_STR_TAG = "tag:yaml.org,2002:str"
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
_LISTS = (ClusterList, RegistryList)


def short_human_duration(delta: timedelta) -> str:
    """Render a duration coarsely, as in ``3y`` or ``45s``."""
    seconds = int(delta.total_seconds())
    if seconds < -1:
        return "<invalid>"
    if seconds < 0:
        return "0s"
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    hours = seconds // 3600
    if hours < 24:
        return f"{hours}h"
    if hours < 24 * 365:
        return f"{hours // 24}d"
    return f"{int(delta.total_seconds() / 3600 / 24 / 365)}y"


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@dataclass
class Table:
    """Column headings and rows of cells."""

    columns: list[str]
    rows: list[list[Any]] = field(default_factory=list)

    def render(self) -> str:
        """Lay the table out in padded columns; empty when there are no rows."""
        if not self.rows:
            return ""
        lines = [[c.upper() for c in self.columns]]
        lines.extend([str(cell) for cell in row] for row in self.rows)
        widths = [max(map(len, column)) for column in zip(*lines)]
        return "".join(
            "".join(cell.ljust(width + 3) for cell, width in zip(line[:-1], widths))
            + line[-1]
            + "\n"
            for line in lines
        )


class _Dumper(yaml.SafeDumper):
    pass


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    style = None
    if dumper.resolve(yaml.ScalarNode, data, (True, False)) != _STR_TAG:
        style = '"'
    return dumper.represent_scalar(_STR_TAG, data, style=style)


_Dumper.add_representer(str, _represent_str)


def _as_dict(obj: Any) -> Any:
    return obj.to_dict() if hasattr(obj, "to_dict") else obj


@dataclass
class NamePrinter:
    """Prints ``kind.group/name operation`` for each object."""

    operation: str = ""
    short_output: bool = False

    def print_obj(self, obj: Any, out: IO[str]) -> None:
        if isinstance(obj, _LISTS):
            for item in obj.items:
                self.print_obj(item, out)
            return
        group = obj.api_version.split("/")[0] if "/" in obj.api_version else ""
        kind = obj.kind.lower() + (f".{group}" if group else "")
        operation = ""
        if self.operation and not self.short_output:
            operation = f" {self.operation}"
        out.write(f"{kind}/{obj.name}{operation}\n")


@dataclass
class YAMLPrinter:
    """Prints an object as a YAML document."""

    def print_obj(self, obj: Any, out: IO[str]) -> None:
        out.write(
            yaml.dump(
                _as_dict(obj),
                Dumper=_Dumper,
                default_flow_style=False,
                sort_keys=True,
                allow_unicode=True,
            )
        )


@dataclass
class _JSONPrinter:
    def print_obj(self, obj: Any, out: IO[str]) -> None:
        out.write(json.dumps(_as_dict(obj), indent=4, sort_keys=True) + "\n")


@dataclass
class _TablePrinter:
    def print_obj(self, obj: Any, out: IO[str]) -> None:
        if not isinstance(obj, Table):
            raise TypeError(f"cannot print {type(obj).__name__} as a table")
        out.write(obj.render())


def to_printer(output: Optional[str], operation: str = "") -> Any:
    """Choose a printer for an ``-o`` output format."""
    if not output or output == "name":
        return NamePrinter(operation=operation)
    if output == "yaml":
        return YAMLPrinter()
    if output == "json":
        return _JSONPrinter()
    raise ValueError(
        f'unable to match a printer suitable for the output format "{output}", '
        "allowed formats are: json,name,yaml"
    )


@dataclass
class GetOptions:
    """Options and output for reading clusters and registries."""

    out: IO[str] = field(default_factory=lambda: sys.stdout)
    err_out: IO[str] = field(default_factory=lambda: sys.stderr)
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ignore_not_found: bool = False
    field_selector: str = ""
    output: Optional[str] = None

    @property
    def output_flag_specified(self) -> bool:
        return self.output is not None

    def _printer(self) -> Any:
        if not self.output_flag_specified:
            return _TablePrinter()
        return to_printer(self.output)

    def print(self, obj: Any) -> None:
        """Print the object with the chosen printer."""
        if obj is None:
            self.out.write("No resources found\n")
            return
        self._printer().print_obj(obj, self.out)

    def transform_for_output(self, obj: Any) -> Any:
        """Turn resources into tables unless an output format was chosen."""
        if self.output_flag_specified:
            return obj
        if isinstance(obj, Registry):
            return self.registries_as_table([obj])
        if isinstance(obj, RegistryList):
            return self.registries_as_table(obj.items)
        if isinstance(obj, Cluster):
            return self.clusters_as_table([obj])
        if isinstance(obj, ClusterList):
            return self.clusters_as_table(obj.items)
        return obj

    def _age(self, created: Optional[datetime]) -> str:
        if created is None:
            return "unknown"
        return short_human_duration(_aware(self.start_time) - _aware(created))

    def clusters_as_table(self, clusters: list[Cluster]) -> Table:
        table = Table(["Current", "Name", "Product", "Age", "Registry"])
        for cluster in clusters:
            hosting = cluster.status.local_registry_hosting or {}
            table.rows.append(
                [
                    "*" if cluster.status.current else "",
                    cluster.name,
                    cluster.product,
                    self._age(cluster.status.creation_timestamp),
                    hosting.get("host") or "none",
                ]
            )
        return table

    def registries_as_table(self, registries: list[Registry]) -> Table:
        table = Table(["Name", "Host Address", "Container Address", "Age"])
        # Newest first, as `docker ps` does.
        ordered = sorted(
            registries,
            key=lambda r: _aware(r.status.creation_timestamp or _EPOCH),
            reverse=True,
        )
        for registry in ordered:
            status = registry.status
            host_address = "none"
            if status.host_port:
                host_address = f"{status.listen_address}:{status.host_port}"
            container_address = "none"
            if status.container_port and status.ip_address:
                container_address = f"{status.ip_address}:{status.container_port}"
            table.rows.append(
                [
                    registry.name,
                    host_address,
                    container_address,
                    self._age(status.creation_timestamp),
                ]
            )
        return table