"""
acmo_models.py — typed views of an AgMIP (ACE) data package.

The translators hand over nested JSON-like mappings:

    {
      "experiments": [{"exname": ..., "management": {"events": [...]}, "observed": {...}}],
      "weathers":    [{"wst_id": ..., "clim_id": ..., "clim_cat": ..., "wid": ...}],
      "soils":       [{"soil_id": ..., "sid": ...}],
    }

AcmoPackage.from_raw() is the single place where those mappings are turned into
models; everything downstream works on the models below.
"""
from __future__ import annotations

from typing import Annotated, Any, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationInfo, field_validator


class PackageError(RuntimeError):
    """Raised when a data package (or DOME hash file) cannot be used."""


class _AceModel(BaseModel):
    # ACE values are text; numbers written by older translators are accepted as text too.
    model_config = ConfigDict(
        coerce_numbers_to_str=True,
        populate_by_name=True,
        frozen=True,
    )

    @field_validator("*", mode="before")
    @classmethod
    def null_as_default(cls, value: Any, info: ValidationInfo) -> Any:
        # JSON null means "not given".
        if value is None:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        return value


# -----------------------------
# MANAGEMENT EVENTS
# -----------------------------
class PlantingEvent(_AceModel):
    # Model-specific cultivar ids (dssat_cul_id, apsim_cul_id, ...) arrive as extra keys.
    model_config = ConfigDict(extra="allow")

    event: Literal["planting"] = "planting"
    date: str = Field(default="", description="Planting date, yyyymmdd")
    crid: str = ""
    cul_id: str = ""
    cul_name: str = ""

    def cultivar_id(self, dest_model: str) -> str:
        """Prefer ``<model>_cul_id`` over the generic cultivar id."""
        key = f"{dest_model.lower()}_cul_id"
        extra = self.model_extra or {}
        if key in extra:
            value = extra[key]
            return "" if value is None else str(value)
        return self.cul_id


class IrrigationEvent(_AceModel):
    event: Literal["irrigation"] = "irrigation"
    date: str = ""
    irop: str = ""
    irval: str = Field(default="", description="Irrigation amount, mm")


class FertilizerEvent(_AceModel):
    event: Literal["fertilizer"] = "fertilizer"
    date: str = ""
    fecd: str = ""
    feamn: str = ""
    feamp: str = ""
    feamk: str = ""


class OrganicMatterEvent(_AceModel):
    event: Literal["organic_matter"] = "organic_matter"
    date: str = ""
    omcd: str = ""
    omamt: str = ""


class TillageEvent(_AceModel):
    event: Literal["tillage"] = "tillage"
    date: str = ""
    tiimp: str = ""
    tidep: str = ""


class OtherEvent(_AceModel):
    """Harvest, chemicals, auto-management, ... kept but not summarised."""

    model_config = ConfigDict(extra="allow")

    event: str = ""
    date: str = ""


KnownEvent = Annotated[
    Union[PlantingEvent, IrrigationEvent, FertilizerEvent, OrganicMatterEvent, TillageEvent],
    Field(discriminator="event"),
]
Event = Union[PlantingEvent, IrrigationEvent, FertilizerEvent, OrganicMatterEvent, TillageEvent, OtherEvent]
SUMMARISED_EVENTS = frozenset({"planting", "irrigation", "fertilizer", "organic_matter", "tillage"})
_EVENT_ADAPTER: TypeAdapter = TypeAdapter(KnownEvent)


def _parse_event(raw: Any) -> Event:
    if isinstance(raw, BaseModel):
        return raw
    if not isinstance(raw, Mapping):
        raise ValueError(f"event must be an object, got {type(raw).__name__}")
    if raw.get("event") in SUMMARISED_EVENTS:
        return _EVENT_ADAPTER.validate_python(dict(raw))
    return OtherEvent.model_validate(dict(raw))


# -----------------------------
# EXPERIMENT
# -----------------------------
class Management(_AceModel):
    events: List[Event] = Field(default_factory=list)

    @field_validator("events", mode="before")
    @classmethod
    def parse_events(cls, value: Any) -> List[Event]:
        return [_parse_event(e) for e in value or []]


class Observed(_AceModel):
    model_config = ConfigDict(extra="allow")

    hwah: str = Field(default="", description="Harvested yield, kg/ha")
    cwah: str = Field(default="", description="Above-ground biomass at harvest, kg/ha")
    hdate: str = Field(default="", description="Harvest date, yyyymmdd")


class Dataset(_AceModel):
    """One experiment of the package."""

    model_config = ConfigDict(extra="allow")

    exname: str = ""
    trt_name: str = ""
    eid: str = ""
    fl_lat: str = ""
    fl_long: str = ""
    wst_id: str = ""
    soil_id: str = ""
    sdat: str = Field(default="", description="Start of simulation, yyyymmdd")
    rotation: str = "0"
    ctwn_clim_id: str = Field(default="", description="Climate id set by the climate scenario generator")
    quadui_ver: str = Field(default="", alias="quaduiVer")

    field_overlay: str = ""
    field_dome_applied: str = ""
    seasonal_strategy: str = ""
    seasonal_dome_applied: str = ""
    rotational_analysis: str = ""
    rotational_dome_applied: str = ""
    batch_dome: str = ""
    batch_run_no: str = Field(default="", alias="batch_run#")
    batch_dome_applied: str = ""

    observed: Observed = Field(default_factory=Observed)
    management: Management = Field(default_factory=Management)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "Dataset":
        data = dict(raw)
        data["management"] = data.get("management") or {}
        data["observed"] = data.get("observed") or {}
        return cls.model_validate(data)

    @property
    def events(self) -> List[Event]:
        return self.management.events


# -----------------------------
# CROSS-REFERENCED SITES
# -----------------------------
class WeatherStation(_AceModel):
    model_config = ConfigDict(extra="ignore")

    wst_id: str = ""
    clim_id: str = "0XXX"
    clim_cat: str = ""
    wid: str = ""


class SoilSite(_AceModel):
    model_config = ConfigDict(extra="ignore")

    soil_id: str = ""
    sid: str = ""


class AcmoIds(_AceModel):
    """Per-experiment identifiers resolved outside the experiment itself.

    soil_id=None means "use the experiment's own soil_id".
    """

    clim_id: str = "0XXX"
    clim_cat: str = ""
    wid: str = ""
    sid: str = ""
    soil_id: Optional[str] = None
    quadui_ver: str = ""


class AcmoPackage(BaseModel):
    experiments: List[Dataset] = Field(default_factory=list)
    weathers: List[WeatherStation] = Field(default_factory=list)
    soils: List[SoilSite] = Field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "AcmoPackage":
        if not isinstance(raw, Mapping):
            raise PackageError(f"package must be a JSON object, got {type(raw).__name__}")
        try:
            return cls(
                experiments=[Dataset.from_raw(e) for e in raw.get("experiments") or []],
                weathers=[WeatherStation.model_validate(w) for w in raw.get("weathers") or []],
                soils=[SoilSite.model_validate(s) for s in raw.get("soils") or []],
            )
        except (ValueError, TypeError, AttributeError) as e:
            raise PackageError(f"invalid package: {e}") from e

