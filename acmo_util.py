"""
acmo_util.py — build ACMO (AgMIP Crop Model output) metadata lines.

One ACMO data line summarises one experiment of an AgMIP package so that the
outputs of different crop models can be lined up for comparison:

    *,,"KEMA0101_1__1","","","","","",1,"Base","0XXX","",1,"CM1",...

Pipeline (per batch):
  1. build_weather_index() / build_soil_index()  -- once per package
  2. resolve_ids()                                -- per experiment
  3. extract_event_data()                         -- management event summary
  4. extract_acmo_data()                          -- one escaped CSV line

Schema: ACMO template 4.1.0 (with batch DOME, CM series, climate category and
translator version columns). The data line covers the metadata columns up to
CROP_MODEL; simulated-output columns are filled later by the model output
stage.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, localcontext
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from acmo_models import (
    AcmoIds,
    AcmoPackage,
    Dataset,
    FertilizerEvent,
    IrrigationEvent,
    OrganicMatterEvent,
    OtherEvent,
    PackageError,
    PlantingEvent,
    SoilSite,
    TillageEvent,
    WeatherStation,
)
from dome_utils import get_dome_hash, get_dome_meta_info, get_dome_meta_infos
from lookup_codes import AUTO_IRRIGATION_CODE, PADDY_IRRIGATION_CODES, lookup_code

logger = logging.getLogger(__name__)

NO_CLIMATE_ID = "0XXX"
INSTITUTION = "AgMIP"
CLIMATE_REPLICATION = "1"

# -----------------------------
# ACMO TEMPLATE 4.1.0
# -----------------------------
# (code, unit, description) in file order.
ACMO_COLUMNS: Tuple[Tuple[str, str, str], ...] = (
    ("SUITE_ID", "text", "ID for suite of sites or experiments"),
    ("EXNAME", "text", "Name of experiment, field test or survey"),
    ("FIELD_OVERLAY", "text", "Field Overlay (DOME) ID"),
    ("SEASONAL_STRATEGY", "text", "Seasonal Strategy (DOME) ID"),
    ("ROTATIONAL_ANALYSIS", "text", "Rotational Analysis (DOME) ID"),
    ("BATCH_DOME", "text", "BATCH (DOME) ID"),
    ("BATCH_RUN#", "number", ""),
    ("RUN#", "number", ""),
    ("TRT_NAME", "text", "Treatment Name"),
    ("CLIM_ID", "code", "4-character Climate ID code"),
    ("CLIM_CAT", "code", "Climate scenario category"),
    ("CLIM_REP", "number", "Climate replication number for multiple realizations of weather data"),
    ("CMSS", "code", "Crop model simulation set"),
    ("REG_ID", "code", "Region ID"),
    ("STRATUM", "number", "Regional stratum identification number"),
    ("RAP_ID", "code", "RAP ID"),
    ("MAN_ID", "code", "Management regimen ID, for multiple management regimens per RAP"),
    ("INSTITUTION", "text", "Names of institutions involved in collection of field or survey data"),
    ("ROTATION", "number", "Crop rotation indicator (=1 to indicate that this is a continuous, "
                           "multi-year simulation, =0 for single year simulations)"),
    ("WST_ID", "text", "Weather station ID"),
    ("SOIL_ID", "text", "Soil ID"),
    ("FL_LAT", "decimal degrees", "Site Latitude"),
    ("FL_LONG", "decimal degrees", "Site Longitude"),
    ("CRID_text", "text", "Crop type (common name)"),
    ("CUL_ID", "text", "Crop model-specific cultivar ID"),
    ("CUL_NAME", "text", "Cultivar name"),
    ("SDAT", "yyyy-mm-dd", "Start of simulation date"),
    ("PDATE", "yyyy-mm-dd", "Planting date"),
    ("HWAH", "kg/ha", "Observed harvested yield, dry weight"),
    ("CWAH", "kg/ha", "Observed total above-ground biomass at harvest"),
    ("HDATE", "yyyy-mm-dd", "Observed harvest date"),
    ("IR#C", "number", "Total number of irrigation events"),
    ("IR_TOT", "mm", "Total amount of irrigation"),
    ("IROP_text", "text", "Type of irrigation application"),
    ("FE_#", "number", "Total number of fertilizer applications"),
    ("FEN_TOT", "kg[N]/ha", "Total N applied"),
    ("FEP_TOT", "kg[P]/ha", "Total P applied"),
    ("FEK_TOT", "kg[K]/ha", "Total K applied"),
    ("OM_TOT", "kg/ha", "Manure and applied organic matter"),
    ("TI_#", "#", "Total number of tillage applications"),
    ("TIIMP_text", "text", "Tillage type (hand, animal or mechanized)"),
    ("EID", "text", "Experiment ID"),
    ("WID", "text", "Weather ID"),
    ("SID", "text", "Soil ID"),
    ("DOID", "text", "DOME ID for Overlay"),
    ("DSID", "text", "DOME ID for Seasonal"),
    ("DRID", "text", "DOME ID for Rotational"),
    ("BDID", "text", "DOME ID for Batch DOME"),
    ("TOOL_VERSION", "text", "Translator version"),
    ("CROP_MODEL", "text", "Short name of crop model used for simulations "
                           "(e.g., DSSAT, APSIM, Aquacrop, STICS, etc.)"),
    # Simulated outputs, filled by the model output stage.
    ("MODEL_VER", "text", "Model name and version number of the crop model used to generate simulated outputs"),
    ("HWAH_S", "kg/ha", "Simulated harvest yield, dry matter"),
    ("CWAH_S", "kg/ha", "Simulated above-ground biomass at harvest, dry matter"),
    ("ADAT_S", "yyyy-mm-dd", "Simulated anthesis date"),
    ("MDAT_S", "yyyy-mm-dd", "Simulated maturity date"),
    ("HADAT_S", "yyyy-mm-dd", "Simulated harvest date"),
    ("LAIX_S", "m2/m2", "Simulated leaf area index, maximum"),
    ("PRCP_S", "mm", "Total precipitation from planting to harvest"),
    ("ETCP_S", "mm", "Simulated evapotranspiration, planting to harvest"),
    ("NUCM_S", "kg/ha", "Simulated N uptake during season"),
    ("NLCM_S", "kg/ha", "Simulated N leached up to harvest maturity"),
    ("EPCP_S", "mm", "Transpiration, cumulative from planting to harvest"),
    ("ESCP_S", "mm", "Evaporation,soil, cumulative from planting to harvest"),
    ("SRAA_S", "MJ/m2.d", "Solar radiation, average, sowing to harvest"),
    ("TMAXA_S", "C", "Maximum daily air temperature, average, sowing to harvest"),
    ("TMINA_S", "C", "Minimum daily air temperature, average, sowing to harvest"),
    ("TAVGA_S", "C", "Daily air temperature, average, sowing to harvest"),
    ("CO2D_S", "vpm", "CO2 concentration, atmospheric average over day"),
    ("IR#C_S", "number", "Total number of irrigation events"),
    ("IR_TOT_S", "mm", "Total amount of irrigation"),
)
ACMO_CODES: Tuple[str, ...] = tuple(code for code, _, _ in ACMO_COLUMNS)
# Columns written by extract_acmo_data (SUITE_ID .. CROP_MODEL).
META_COLUMN_COUNT = ACMO_CODES.index("CROP_MODEL") + 1

# Experiment names produced by the batch/seasonal DOME tools: <base>_<n>[_b<batch>]__<run>
_CM_NAME_PATTERNS = (
    re.compile(r"(\w+_\d+)_b\w+__\d+", re.ASCII),
    re.compile(r"(\w+_\d+)__\d+", re.ASCII),
)
_RUN_NUMBER = re.compile(r".*__(\d+)", re.ASCII)
# Plain decimal literal: no underscores, surrounding blanks, NaN or Infinity.
_DECIMAL_LITERAL = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?", re.ASCII)


# -----------------------------
# CSV HELPERS
# -----------------------------
def quote_me(unquoted: Any) -> str:
    """Always-quoted CSV field: quotes doubled, backslashes doubled."""
    text = "" if unquoted is None else str(unquoted)
    return '"' + text.replace('"', '""').replace("\\", "\\\\") + '"'


def escape_csv_str(text: Optional[str]) -> str:
    """Quote only when needed (embedded quote or comma)."""
    if not text:
        return ""
    if '"' in text:
        return '"' + text.replace('"', '""') + '"'
    if "," in text:
        return f'"{text}"'
    return text


def correct_date_format(date: str) -> str:
    """yyyymmdd -> yyyy-mm-dd; anything else is passed through."""
    if len(date) == 8 and date.isdigit():
        return f"{date[:4]}-{date[4:6]}-{date[6:]}"
    return date


def generate_acmo_header() -> str:
    """The three ACMO header lines (descriptions, units, codes), newline-terminated."""
    descriptions = ["!"] + [escape_csv_str(d) for _, _, d in ACMO_COLUMNS]
    units = ["!"] + [escape_csv_str(u) for _, u, _ in ACMO_COLUMNS]
    codes = ["#"] + list(ACMO_CODES)
    return "".join(",".join(row) + "\n" for row in (descriptions, units, codes))


def add_acmoui_version(line: str, acmoui_ver: str) -> str:
    return line.replace("acmoui=", "acmoui=" + acmoui_ver, 1)


# -----------------------------
# INDEXES (built once per package)
# -----------------------------
@dataclass(frozen=True)
class WeatherIndex:
    clim_id: Mapping[str, str]
    clim_cat: Mapping[str, str]
    wid: Mapping[str, str]


@dataclass(frozen=True)
class SoilIndex:
    """Soil ids sharing one normalized id (sid) collapse onto the shortest raw id.

    canonical: raw soil_id -> canonical raw soil_id (canonical ids map to themselves)
    sid:       canonical raw soil_id -> sid
    """

    canonical: Mapping[str, str]
    sid: Mapping[str, str]

    def resolve(self, soil_id: str) -> Tuple[str, str]:
        canonical = self.canonical.get(soil_id, soil_id)
        return canonical, self.sid.get(canonical, "")


def build_weather_index(weathers: Iterable[WeatherStation]) -> WeatherIndex:
    clim_id: Dict[str, str] = {}
    clim_cat: Dict[str, str] = {}
    wid: Dict[str, str] = {}
    for wst in weathers:
        clim_id[wst.wst_id] = wst.clim_id or NO_CLIMATE_ID
        clim_cat[wst.wst_id] = wst.clim_cat
        wid[wst.wst_id] = wst.wid
    return WeatherIndex(MappingProxyType(clim_id), MappingProxyType(clim_cat), MappingProxyType(wid))


def build_soil_index(soils: Iterable[SoilSite]) -> SoilIndex:
    """Deduplicate soil ids that point at the same sid.

    Pass 1 groups raw ids by sid in first-seen order; pass 2 keeps the shortest
    raw id of each group (first seen on ties) and redirects the rest to it.
    """
    sid_of: Dict[str, str] = {}
    for soil in soils:
        sid_of[soil.soil_id] = soil.sid

    groups: Dict[str, List[str]] = {}
    for soil_id, sid in sid_of.items():
        groups.setdefault(sid, []).append(soil_id)

    canonical: Dict[str, str] = {}
    sids: Dict[str, str] = {}
    for sid, soil_ids in groups.items():
        keep = min(soil_ids, key=len)
        sids[keep] = sid
        for soil_id in soil_ids:
            canonical[soil_id] = keep
        if len(soil_ids) > 1:
            logger.debug("Soil ids %s share sid %s, using %s", soil_ids, sid, keep)
    return SoilIndex(MappingProxyType(canonical), MappingProxyType(sids))


def build_indexes(package: AcmoPackage) -> Tuple[WeatherIndex, SoilIndex]:
    return build_weather_index(package.weathers), build_soil_index(package.soils)


def resolve_ids(dataset: Dataset, weather_index: WeatherIndex, soil_index: SoilIndex) -> AcmoIds:
    """Look up the climate, weather and soil identifiers of one experiment."""
    wst_id = dataset.wst_id
    soil_id, sid = soil_index.resolve(dataset.soil_id)
    return AcmoIds(
        clim_id=dataset.ctwn_clim_id or weather_index.clim_id.get(wst_id, NO_CLIMATE_ID),
        clim_cat=weather_index.clim_cat.get(wst_id, ""),
        wid=weather_index.wid.get(wst_id, ""),
        sid=sid,
        soil_id=soil_id,
        quadui_ver=dataset.quadui_ver.strip(),
    )


# -----------------------------
# MANAGEMENT EVENT SUMMARY
# -----------------------------
def _to_decimal(value: str) -> Decimal:
    if not _DECIMAL_LITERAL.fullmatch(value):
        raise InvalidOperation(value)
    return Decimal(value)


def _join_unique(names: List[str], name: str) -> None:
    if name not in names:
        names.append(name)


def extract_event_data(dataset: Dataset, dest_model: str) -> Dict[str, str]:
    """Summarise planting, irrigation, fertilizer, organic matter and tillage events.

    Returns a dict with any of: crid, cul_id, cul_name, pdate, ir_count, ir_tot,
    irop, fe_count, fen_tot, fek_tot, fep_tot, omamt, ti_count, tiimp.
    Counter-driven keys are left out when nothing was counted.

    Irrigation:
      - IR008/IR009/IR010 (paddy) and IR011 (auto) are not counted or summed,
        but their operation names are still listed.
      - IR011 anywhere turns ir_count / ir_tot into "auto".
    Fertilizer amounts are read N, K, P in turn; a malformed amount stops the
    remaining nutrients of that event (kept for compatibility with existing
    ACMO files).
    """
    results: Dict[str, str] = {}
    ir_count = fe_count = ti_count = 0
    auto_irrigation = False
    irops: List[str] = []
    tiimps: List[str] = []

    with localcontext() as ctx:
        ctx.prec = 64
        ir_tot = om_tot = Decimal(0)
        fe_tot = {"n": Decimal(0), "k": Decimal(0), "p": Decimal(0)}

        for event in dataset.events:
            logger.debug("Current event: %s", event)
            if isinstance(event, PlantingEvent):
                results["pdate"] = event.date
                results["cul_name"] = event.cul_name
                results["cul_id"] = event.cultivar_id(dest_model)
                results["crid"] = lookup_code("crid", event.crid)

            elif isinstance(event, IrrigationEvent):
                code = event.irop.strip().upper()
                if code == AUTO_IRRIGATION_CODE:
                    auto_irrigation = True
                elif code not in PADDY_IRRIGATION_CODES:
                    ir_count += 1
                    if event.irval:
                        try:
                            ir_tot += _to_decimal(event.irval)
                        except InvalidOperation:
                            logger.error("Error converting irrigation amount with value %s", event.irval)
                _join_unique(irops, lookup_code("irop", event.irop))

            elif isinstance(event, FertilizerEvent):
                fe_count += 1
                for nutrient, value in (("n", event.feamn), ("k", event.feamk), ("p", event.feamp)):
                    if not value:
                        continue
                    try:
                        fe_tot[nutrient] += _to_decimal(value)
                    except InvalidOperation:
                        logger.error("Error converting fertilizer [%s] with value %s", nutrient.upper(), value)
                        break

            elif isinstance(event, OrganicMatterEvent):
                if event.omamt:
                    try:
                        om_tot += _to_decimal(event.omamt)
                    except InvalidOperation:
                        logger.error("Error converting organic matter amount with value %s", event.omamt)

            elif isinstance(event, TillageEvent):
                ti_count += 1
                _join_unique(tiimps, lookup_code("tiimp", event.tiimp))

            elif isinstance(event, OtherEvent):
                continue

            else:
                raise TypeError(f"unsupported event type: {type(event).__name__}")

    if auto_irrigation:
        results.update(ir_count="auto", ir_tot="auto", irop="|".join(irops))
    elif ir_count > 0:
        results.update(ir_count=str(ir_count), ir_tot=str(ir_tot), irop="|".join(irops))
    if fe_count > 0:
        results.update(
            fe_count=str(fe_count),
            fen_tot=str(fe_tot["n"]),
            fek_tot=str(fe_tot["k"]),
            fep_tot=str(fe_tot["p"]),
        )
    if str(om_tot) != "0":
        results["omamt"] = str(om_tot)
    if ti_count > 0:
        results.update(ti_count=str(ti_count), tiimp="|".join(tiimps))
    logger.debug("extract_event_data results: %s", results)
    return results


# -----------------------------
# CM SERIES
# -----------------------------
def check_cm_series(exname: Optional[str], clim_id: str, rap_id: str, man_id: str) -> str:
    """Classify an experiment into the simulation sets CM0..CM6.

    CM0: not a DOME-generated experiment name.
    No climate scenario (clim_id "0..X"): CM1 base, CM3 management only, CM4 RAP.
    Climate scenario: CM2 no RAP, CM5 RAP without management, CM6 both.
    """
    if not exname or not any(p.fullmatch(exname) for p in _CM_NAME_PATTERNS):
        return "CM0"
    # An id ending with X means no climate scenario was applied.
    clim_id = clim_id or ""
    if clim_id.startswith("0") and clim_id.endswith("X"):
        if not rap_id:
            return "CM3" if man_id else "CM1"
        return "CM4"
    if not rap_id:
        return "CM2"
    if not man_id:
        return "CM5"
    return "CM6"


def get_run_number(exname: str) -> str:
    m = _RUN_NUMBER.fullmatch(exname or "")
    return m.group(1) if m else "1"


# -----------------------------
# ACMO DATA LINE
# -----------------------------
def get_dome_ids(dome_ids: str, applied_flag: str) -> str:
    """DOME ids are only reported when the matching *_dome_applied flag is "Y"."""
    return dome_ids.upper() if applied_flag == "Y" else ""


def _as_dataset(dataset: Union[Dataset, Mapping[str, Any]]) -> Dataset:
    if isinstance(dataset, Dataset):
        return dataset
    try:
        return Dataset.from_raw(dataset)
    except (ValueError, TypeError, AttributeError) as e:
        raise PackageError(f"invalid experiment: {e}") from e


def extract_acmo_data(
    dataset: Union[Dataset, Mapping[str, Any]],
    dest_model: str,
    dome_hashes: Optional[Mapping[str, str]] = None,
    ids: Optional[AcmoIds] = None,
) -> str:
    """Build the ACMO data line (starting with "*") for a single experiment.

    Args:
        dataset: One experiment, as a Dataset or a raw ACE mapping.
        dest_model: Destination crop model, e.g. "DSSAT"; selects <model>_cul_id.
        dome_hashes: DOME id -> content hash, for the DOID/DSID/DRID/BDID columns.
        ids: Identifiers resolved from the package indexes (see resolve_ids).
             Defaults to climate id "0XXX", blank wid/sid and the
             experiment's own soil id.
    """
    dataset = _as_dataset(dataset)
    ids = ids or AcmoIds()
    soil_id = dataset.soil_id if ids.soil_id is None else ids.soil_id
    quadui_ver = (ids.quadui_ver or dataset.quadui_ver).strip()
    events = extract_event_data(dataset, dest_model)
    observed = dataset.observed
    exname = dataset.exname

    do_str = get_dome_ids(dataset.field_overlay, dataset.field_dome_applied)
    ds_str = get_dome_ids(dataset.seasonal_strategy, dataset.seasonal_dome_applied)
    dr_str = get_dome_ids(dataset.rotational_analysis, dataset.rotational_dome_applied)
    bat_str = get_dome_ids(dataset.batch_dome, dataset.batch_dome_applied)
    bat_run = get_dome_ids(dataset.batch_run_no, dataset.batch_dome_applied)

    # Seasonal strategy ids take precedence over field overlay ids.
    dome_bases: List[Dict[str, str]] = []
    if dataset.seasonal_strategy:
        dome_bases.extend(get_dome_meta_infos(dataset.seasonal_strategy))
    dome_bases.extend(get_dome_meta_infos(dataset.field_overlay))
    reg_id = get_dome_meta_info(dome_bases, "reg_id")
    stratum = get_dome_meta_info(dome_bases, "stratum")
    rap_id = get_dome_meta_info(dome_bases, "rap_id")
    man_id = get_dome_meta_info(dome_bases, "man_id")

    def ev(key: str) -> str:
        return events.get(key, "")

    acmo_data = [
        "*",
        "",  # SUITE_ID
        quote_me(exname),
        quote_me(do_str),
        quote_me(ds_str),
        quote_me(dr_str),
        quote_me(bat_str),
        quote_me(bat_run),
        get_run_number(exname),
        quote_me(dataset.trt_name),
        quote_me(ids.clim_id),
        quote_me(ids.clim_cat),
        CLIMATE_REPLICATION,
        quote_me(check_cm_series(exname, ids.clim_id, rap_id, man_id)),
        quote_me(reg_id),
        quote_me(stratum),
        escape_csv_str(rap_id),
        escape_csv_str(man_id),
        INSTITUTION,
        escape_csv_str(dataset.rotation or "0"),
        escape_csv_str(dataset.wst_id[:4]),
        escape_csv_str(soil_id),
        escape_csv_str(dataset.fl_lat),
        escape_csv_str(dataset.fl_long),
        quote_me(ev("crid")),
        escape_csv_str(ev("cul_id")),
        quote_me(ev("cul_name")),
        escape_csv_str(correct_date_format(dataset.sdat)),
        escape_csv_str(correct_date_format(ev("pdate"))),
        escape_csv_str(observed.hwah),
        escape_csv_str(observed.cwah),
        escape_csv_str(correct_date_format(observed.hdate)),
        ev("ir_count"),
        ev("ir_tot"),
        quote_me(ev("irop")),
        ev("fe_count"),
        ev("fen_tot"),
        ev("fep_tot"),
        ev("fek_tot"),
        ev("omamt"),
        ev("ti_count"),
        quote_me(ev("tiimp")),
        # EID/WID/SID and the DOME hashes are assigned by the database.
        quote_me(dataset.eid),
        quote_me(ids.wid),
        quote_me(ids.sid),
        quote_me(get_dome_hash(dome_hashes, do_str)),
        quote_me(get_dome_hash(dome_hashes, ds_str)),
        quote_me(get_dome_hash(dome_hashes, dr_str)),
        quote_me(get_dome_hash(dome_hashes, bat_str)),
        quote_me(f"quadui={quadui_ver}|acmoui="),
        escape_csv_str(dest_model.upper()),
    ]
    return ",".join(acmo_data)


def acmo_lines(
    package: AcmoPackage,
    dest_model: str,
    dome_hashes: Optional[Mapping[str, str]] = None,
) -> Iterator[str]:
    """ACMO data lines for every experiment of ``package``, in package order."""
    weather_index, soil_index = build_indexes(package)
    for experiment in package.experiments:
        line = extract_acmo_data(
            experiment, dest_model, dome_hashes, resolve_ids(experiment, weather_index, soil_index)
        )
        logger.debug("ACMO dataline: %s", line)
        yield line
