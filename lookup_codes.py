"""
lookup_codes.py — AgMIP/ICASA code tables used when summarising experiments.

Only the three vocabularies the ACMO summary prints are carried here:
  - crid  : crop code -> common name
  - irop  : irrigation operation code -> operation name
  - tiimp : tillage implement code -> implement name

Usage:
    from lookup_codes import lookup_code

    lookup_code("crid", "MAZ")    # -> "Maize"
    lookup_code("irop", "IR004")  # -> "Sprinkler, mm"
    lookup_code("tiimp", "XX99")  # -> "XX99" (unknown codes pass through)
"""
from __future__ import annotations

from typing import Dict, Optional

# -----------------------------
# IRRIGATION CLASSES
# -----------------------------
# Paddy (bund / flood depth) operations describe the field state, not applied water.
PADDY_IRRIGATION_CODES = frozenset({"IR008", "IR009", "IR010"})
# Constant flood depth: the model decides amounts, so totals are reported as "auto".
AUTO_IRRIGATION_CODE = "IR011"

# -----------------------------
# CODE TABLES (ICASA vocabulary)
# -----------------------------
CROP_CODES: Dict[str, str] = {
    "ALF": "Alfalfa",
    "BAR": "Barley",
    "BND": "Dry bean",
    "CAS": "Cassava",
    "CHP": "Chickpea",
    "COT": "Cotton",
    "FBN": "Faba bean",
    "GRB": "Green bean",
    "MAZ": "Maize",
    "MIL": "Millet",
    "OAT": "Oat",
    "PEA": "Pea",
    "PML": "Pearl millet",
    "PNT": "Peanut",
    "POT": "Potato",
    "RIC": "Rice",
    "RYE": "Rye",
    "SBT": "Sugar beet",
    "SGG": "Sorghum",
    "SOY": "Soybean",
    "SUC": "Sugarcane",
    "SUN": "Sunflower",
    "SWC": "Sweet corn",
    "TOM": "Tomato",
    "WHB": "Wheat, bread",
    "WHD": "Wheat, durum",
    "WHT": "Wheat",
}

IRRIGATION_OPERATIONS: Dict[str, str] = {
    "IR001": "Furrow, mm",
    "IR002": "Alternating furrows, mm",
    "IR003": "Flood, mm",
    "IR004": "Sprinkler, mm",
    "IR005": "Drip or trickle, mm",
    "IR006": "Flood depth, mm",
    "IR007": "Water table depth, mm",
    "IR008": "Percolation rate, mm/day",
    "IR009": "Bund height, mm",
    "IR010": "Puddling (for rice only)",
    "IR011": "Constant flood depth, mm",
}

TILLAGE_IMPLEMENTS: Dict[str, str] = {
    "TI001": "V-Ripper",
    "TI002": "Subsoiler",
    "TI003": "Moldboard plow 20 cm depth",
    "TI004": "Chisel plow, sweeps",
    "TI005": "Chisel plow, straight point",
    "TI006": "Chisel plow, twisted shovels",
    "TI007": "Disk plow",
    "TI008": "Disk, 1-way",
    "TI009": "Disk, tandem",
    "TI010": "Disk, double disk",
    "TI011": "Cultivator, field",
    "TI012": "Cultivator, row",
    "TI013": "Cultivator, ridge till",
    "TI014": "Harrow, spike",
    "TI015": "Harrow, tine",
    "TI016": "Lister",
    "TI017": "Bedder",
    "TI018": "Blade cultivator",
    "TI019": "Fertilizer applicator, anhydrous",
    "TI020": "Manure injector",
    "TI022": "Mulch treader",
    "TI023": "Plank",
    "TI024": "Roller packer",
    "TI025": "Drill, double-disk",
    "TI026": "Drill, deep furrow",
    "TI027": "Drill, no-till",
    "TI028": "Drill, no-till (into sod)",
    "TI029": "Planter, row",
    "TI030": "Planter, no-till",
    "TI031": "Planter, double disk opener",
    "TI032": "Hoe",
    "TI033": "Rotary hoe",
    "TI034": "Rototiller",
    "TI035": "Row cultivator",
}

CODE_TABLES: Dict[str, Dict[str, str]] = {
    "crid": CROP_CODES,
    "irop": IRRIGATION_OPERATIONS,
    "tiimp": TILLAGE_IMPLEMENTS,
}


def lookup_code(kind: str, code: str, default: Optional[str] = None) -> str:
    """Return the display name for ``code`` in the ``kind`` vocabulary.

    Unknown codes come back as ``default``, or unchanged when no default is
    given. An unknown ``kind`` raises KeyError.
    """
    table = CODE_TABLES[kind]
    name = table.get((code or "").strip().upper())
    if name is not None:
        return name
    return code if default is None else default


def list_codes(kind: str) -> Dict[str, str]:
    return dict(CODE_TABLES[kind])
