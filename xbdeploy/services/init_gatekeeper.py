"""Initialization gatekeeper: decide INIT / SKIP / WARN from persisted evidence."""

from datetime import datetime
import json
import os
import re

from xbdeploy.core.filesystem_utils import directory_has_entries
from xbdeploy.state import GateResult, InitDecision, InitMarker

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_]+$")


def safe_identifier(name):
    """Return ``name`` when it is a plain SQL identifier, else raise ValueError."""
    text = str(name or "")
    if not _IDENTIFIER_RE.match(text):
        raise ValueError(f"Unsafe SQL identifier: {text!r}")
    return text


def query_scalar(ctx, sql):
    """Run one query inside the container and return its integer result or None."""
    result = ctx.runtime.exec(ctx.config.container_name, ["mysql", "-N", "-e", sql])
    if not result.ok:
        return None
    lines = [line.strip() for line in (result.output or "").splitlines() if line.strip()]
    if not lines:
        return None
    try:
        return int(lines[-1].split()[0])
    except (ValueError, IndexError):
        return None


def table_exists(ctx, table):
    """Return whether ``DB_SCHEMA.table`` exists, or None when the lookup failed."""
    schema = safe_identifier(ctx.config.db_schema)
    table = safe_identifier(table)
    count = query_scalar(
        ctx,
        "SELECT COUNT(*) FROM information_schema.tables "
        f"WHERE table_schema='{schema}' AND table_name='{table}';",
    )
    if count is None:
        return None
    return count > 0


def count_rows(ctx, table, where=""):
    """Return a row count for ``DB_SCHEMA.table``; unreadable results count as 0."""
    schema = safe_identifier(ctx.config.db_schema)
    table = safe_identifier(table)
    sql = f"SELECT COUNT(*) FROM {schema}.{table}"
    if where:
        sql += f" WHERE {where}"
    return query_scalar(ctx, sql + ";") or 0


def schema_present(ctx):
    """Independent schema check: True, False, or None when the database did not answer."""
    return table_exists(ctx, ctx.config.key_table)


def data_present(ctx):
    """Return whether the schema's data directory on the host has content."""
    return directory_has_entries(ctx.config.database_data_dir)


def read_marker(config):
    """Return the persisted InitMarker, or None when no marker exists."""
    path = config.marker_path
    try:
        text = path.read_text(encoding="utf-8", errors="ignore")
    except OSError:
        return None
    try:
        payload = json.loads(text)
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        return InitMarker.from_dict(payload)
    # Plain-text markers from earlier installer runs still count as evidence.
    ports = {}
    for line in text.splitlines():
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip().lower().replace("_port", "")
        if value.strip().isdigit():
            ports[key] = int(value.strip())
    first = text.strip().splitlines()[0] if text.strip() else ""
    return InitMarker(timestamp=first, ports_at_init=ports, initialized=True)


def write_marker(config, now=None):
    """Write the InitMarker atomically and return it."""
    stamp = (now or datetime.now().astimezone()).isoformat(timespec="seconds")
    marker = InitMarker(timestamp=stamp, ports_at_init=config.host_ports(), initialized=True)
    path = config.marker_path
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.tmp")
    tmp.write_text(json.dumps(marker.to_dict(), ensure_ascii=True, indent=2) + "\n", encoding="utf-8")
    os.replace(tmp, path)
    return marker


def decide(has_data, has_schema, marker=None):
    """Apply the decision table; the schema check always wins over file evidence.

    ``has_schema`` is None when the schema query itself failed. Setup only runs
    on a definite "absent", so an unreadable schema degrades to WARN.
    """
    if has_schema is None:
        return GateResult(InitDecision.WARN, has_data, None, marker,
                          "Database answers pings but the schema query failed (access denied or database error); "
                          "refusing to initialize. Check the database account, then run redeploy.")
    if has_schema:
        if has_data:
            return GateResult(InitDecision.SKIP, has_data, has_schema, marker,
                              "Existing database and schema detected; skipping initialization.")
        return GateResult(InitDecision.SKIP, has_data, has_schema, marker,
                          "Schema present without table files on the host; schema check wins, skipping initialization.")
    if has_data:
        return GateResult(InitDecision.WARN, has_data, has_schema, marker,
                          "Database files exist but the schema is missing; data may be corrupted. "
                          "Starting services anyway; restore from a backup if this is not a first deployment.")
    if marker is not None:
        return GateResult(InitDecision.WARN, has_data, has_schema, marker,
                          "An initialization marker exists but the database is empty; refusing to re-run setup. "
                          "Restore from a backup, or remove the marker file to allow a fresh initialization.")
    return GateResult(InitDecision.INIT, has_data, has_schema, marker,
                      "No existing data detected; this is a first deployment.")


def evaluate(ctx):
    """Collect evidence (data dir, live schema, marker) and return a GateResult."""
    marker = read_marker(ctx.config)
    gate = decide(data_present(ctx), schema_present(ctx), marker)
    ctx.log_action(
        "gatekeeper",
        command=(
            f"decision={gate.decision.value} data={int(gate.data_present)} "
            f"schema={'unknown' if gate.schema_present is None else int(gate.schema_present)} "
            f"marker={int(marker is not None)}"
        ),
    )
    return gate
