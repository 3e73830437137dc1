"""
ACMO-MCP Server

Builds ACMO (AgMIP Crop Model output) metadata files from AgMIP data packages
and exposes the generator as MCP tools:
  - generate_acmo(package_path, dest_model, ...)
  - acmo_file_name(model, meta_path, ...)
  - classify_experiment(exname, clim_id, rap_id, man_id)
  - unpack_dome(dome_ids)
  - list_codes(kind)

Inputs
- AgMIP package JSON: {"experiments": [...], "weathers": [...], "soils": [...]}
- DOME hash JSON (optional): either {dome_id: hash} or {dome_id: dome_definition};
  definitions are hashed with SHA-256.

Quickstart
1) pip install -e .
2) Set environment variables (see ENV section below) or create .env next to this file.
3) python acmo_mcp_server.py  (starts an MCP server over stdio)
"""
from __future__ import annotations

import json
import logging
import os
import string
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from dotenv import load_dotenv
from fastmcp import FastMCP

from acmo_filename import create_csv_file
from acmo_models import AcmoPackage, PackageError
from acmo_util import acmo_lines, check_cm_series, generate_acmo_header
from dome_utils import build_dome_hash_index, get_dome_meta_infos
from lookup_codes import CODE_TABLES
from lookup_codes import list_codes as _list_codes

# -----------------------------
# ENV & PATHS
# -----------------------------
# Optional env vars (create .env file or set in shell):
#   ACMO_WORK        : Output root for generated ACMO files (default ./_acmo)
#   ACMO_DEST_MODEL  : Default destination model (default DSSAT)
#   ACMO_DOME_HASHES : Default DOME hash JSON used when none is given
#   ACMO_LOG_LEVEL   : DEBUG | INFO | WARNING | ERROR (default INFO)
load_dotenv()

ACMO_WORK = Path(os.getenv("ACMO_WORK", str(Path.cwd() / "_acmo"))).resolve()
ACMO_DEST_MODEL = os.getenv("ACMO_DEST_MODEL", "DSSAT")
ACMO_DOME_HASHES = os.getenv("ACMO_DOME_HASHES", "")
ACMO_LOG_LEVEL = os.getenv("ACMO_LOG_LEVEL", "INFO").upper()

ACMO_META_FILE = "ACMO_meta.dat"
# 64 hex digits: a SHA-256 digest already, not a DOME definition.
_HASH_LEN = 64

logger = logging.getLogger(__name__)


# -----------------------------
# LOADERS
# -----------------------------
def _read_json(path: Union[str, Path], what: str) -> Any:
    p = Path(path)
    if not p.exists():
        raise PackageError(f"{what} not found: {p}")
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise PackageError(f"cannot read {what} {p}: {e}") from e


def load_package(path: Union[str, Path]) -> AcmoPackage:
    """Load an AgMIP package JSON file."""
    return AcmoPackage.from_raw(_read_json(path, "package"))


def load_dome_hashes(path: Union[str, Path]) -> Dict[str, str]:
    """Load DOME id -> content hash.

    Values that are already SHA-256 hex digests are taken as-is; any other
    value is treated as a DOME definition and hashed.
    """
    raw = _read_json(path, "DOME hash file")
    if not isinstance(raw, Mapping):
        raise PackageError(f"DOME hash file must be a JSON object: {path}")
    hashes: Dict[str, str] = {}
    domes: Dict[str, Any] = {}
    for dome_id, value in raw.items():
        if isinstance(value, str) and len(value) == _HASH_LEN and all(c in string.hexdigits for c in value):
            hashes[dome_id.upper()] = value
        else:
            domes[dome_id] = value
    hashes.update(build_dome_hash_index(domes))
    return hashes


# -----------------------------
# WRITER
# -----------------------------
def write_acmo(
    output_dir: Union[str, Path],
    package: AcmoPackage,
    dest_model: str,
    dome_hashes: Optional[Mapping[str, str]] = None,
) -> Path:
    """Write ACMO_meta.dat for every experiment of ``package``.

    The directory is created if needed. Write errors propagate; a partially
    written file is left in place.
    """
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / ACMO_META_FILE
    logger.debug("Attempting to write %s", path)
    with path.open("w", encoding="utf-8", newline="") as f:
        f.write(generate_acmo_header())
        for line in acmo_lines(package, dest_model, dome_hashes or {}):
            f.write(line)
            f.write("\n")
    logger.info("Wrote %d experiment(s) to %s", len(package.experiments), path)
    return path


# -----------------------------
# MCP SERVER & TOOLS
# -----------------------------
app = FastMCP("acmo-mcp")


@app.tool
def generate_acmo(
    package_path: str,
    dest_model: str = "",
    output_dir: str = "",
    dome_hash_path: str = "",
) -> Dict[str, Any]:
    """Write the ACMO metadata file (ACMO_meta.dat) for an AgMIP package.

    Args:
        package_path: Path to the AgMIP package JSON (experiments, weathers, soils).
        dest_model: Destination crop model, e.g. "DSSAT", "APSIM". Selects the
                    model-specific cultivar id and fills CROP_MODEL.
                    Defaults to ACMO_DEST_MODEL.
        output_dir: Directory for ACMO_meta.dat. Defaults to ACMO_WORK.
        dome_hash_path: Optional JSON of DOME id -> hash (or DOME definitions).
                        Defaults to ACMO_DOME_HASHES when set.

    Returns a dict with:
        ok: True if the file was written
        path: Path of ACMO_meta.dat
        n_experiments: Number of data lines written
        csv_name: Suggested non-colliding ACMO CSV name for the model outputs
    """
    model = dest_model or ACMO_DEST_MODEL
    out_dir = Path(output_dir) if output_dir else ACMO_WORK
    hash_path = dome_hash_path or ACMO_DOME_HASHES
    try:
        package = load_package(package_path)
        hashes = load_dome_hashes(hash_path) if hash_path else {}
        path = write_acmo(out_dir, package, model, hashes)
    except PackageError as e:
        return {"ok": False, "error": str(e)}
    except OSError as e:
        logger.error("Error writing %s: %s", ACMO_META_FILE, e)
        return {"ok": False, "error": f"write_failed: {e}"}
    return {
        "ok": True,
        "path": str(path),
        "n_experiments": len(package.experiments),
        "csv_name": create_csv_file(out_dir, model, path).name,
    }


@app.tool
def acmo_file_name(model: str, meta_path: str = "", output_dir: str = "") -> Dict[str, Any]:
    """Suggest a free ACMO CSV file name: ACMO-<region>-<crop>-<clim>-<rap>-<man>-<model>.csv

    Args:
        model: Crop model that produced the outputs, e.g. "DSSAT".
        meta_path: Optional ACMO_meta.dat used to fill the DOME part of the name.
        output_dir: Directory checked for existing files. Defaults to ACMO_WORK.
    """
    path = create_csv_file(Path(output_dir) if output_dir else ACMO_WORK, model, meta_path or None)
    return {"ok": True, "file": path.name, "path": str(path)}


@app.tool
def classify_experiment(exname: str, clim_id: str = "0XXX", rap_id: str = "", man_id: str = "") -> Dict[str, Any]:
    """Return the crop model simulation set (CM0..CM6) of an experiment.

    Args:
        exname: Experiment name, e.g. "KEMA0101_1__1" or "KEMA0101_1_b2__3".
        clim_id: 4-character climate id; "0..X" means no climate scenario.
        rap_id: RAP id from the DOME, empty if none.
        man_id: Management regimen id from the DOME, empty if none.
    """
    return {"ok": True, "cmss": check_cm_series(exname, clim_id, rap_id, man_id)}


@app.tool
def unpack_dome(dome_ids: str) -> Dict[str, Any]:
    """Split a DOME id (or several joined with "|") into region, stratum, RAP, management, ..."""
    return {"ok": True, "domes": get_dome_meta_infos(dome_ids)}


@app.tool
def list_codes(kind: str) -> Dict[str, Any]:
    """List the code -> name table for "crid", "irop" or "tiimp"."""
    if kind not in CODE_TABLES:
        return {"ok": False, "error": f"unsupported_kind: {kind}. Supported: {list(CODE_TABLES)}"}
    return {"ok": True, "kind": kind, "codes": _list_codes(kind)}


def main() -> None:
    # stdout carries the MCP stdio transport; logs go to stderr.
    logging.basicConfig(level=ACMO_LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.run()


if __name__ == "__main__":
    main()
