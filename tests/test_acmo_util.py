import csv

import pytest

from acmo_models import AcmoIds, AcmoPackage, PackageError
from acmo_util import (
    ACMO_CODES,
    META_COLUMN_COUNT,
    acmo_lines,
    add_acmoui_version,
    check_cm_series,
    correct_date_format,
    escape_csv_str,
    extract_acmo_data,
    generate_acmo_header,
    get_run_number,
    quote_me,
)

DOME = "MACHAKOS-1-RAP1-MAN2-1-0XXX-BASE"


def _experiment(**overrides):
    experiment = {
        "exname": "KEMA0101_1__1",
        "trt_name": "Base",
        "eid": "E1",
        "fl_lat": "-1.5",
        "fl_long": "37.2",
        "wst_id": "KEMA0001",
        "soil_id": "KE_MA0001",
        "sdat": "19801201",
        "quaduiVer": " 1.2.3 ",
        "field_overlay": DOME,
        "field_dome_applied": "Y",
        "observed": {"hwah": "2500", "cwah": "6000", "hdate": "19810415"},
        "management": {
            "events": [
                {"event": "planting", "date": "19810101", "crid": "MAZ", "cul_name": "KATUMANI", "dssat_cul_id": "GH0010"},
                {"event": "irrigation", "date": "19810110", "irop": "IR004", "irval": "25"},
            ]
        },
    }
    experiment.update(overrides)
    return experiment


def _fields(line):
    return next(csv.reader([line]))


def _row(line):
    fields = _fields(line)
    assert fields[0] == "*"
    return dict(zip(ACMO_CODES, fields[1:]))


@pytest.mark.parametrize(
    "exname, clim_id, rap_id, man_id, expected",
    [
        ("KEMA0101", "0XXX", "", "", "CM0"),
        ("", "0XXX", "RAP1", "MAN1", "CM0"),
        (None, "IAFX", "", "", "CM0"),
        ("KEMA0101_1__1", "0XXX", "", "", "CM1"),
        ("KEMA0101_1__1", "0XXX", "", "MAN1", "CM3"),
        ("KEMA0101_1__1", "0XXX", "RAP1", "", "CM4"),
        ("KEMA0101_1__1", "0XXX", "RAP1", "MAN1", "CM4"),
        ("KEMA0101_1_b2__3", "IAFX", "", "", "CM2"),
        ("KEMA0101_1_b2__3", "IAFX", "", "MAN1", "CM2"),
        ("KEMA0101_1__1", "0ABC", "RAP1", "", "CM5"),
        ("KEMA0101_1__1", "IAFX", "RAP1", "MAN1", "CM6"),
    ],
)
def test_cm_series(exname, clim_id, rap_id, man_id, expected):
    assert check_cm_series(exname, clim_id, rap_id, man_id) == expected


def test_run_number():
    assert get_run_number("KEMA0101_1__12") == "12"
    assert get_run_number("a__1__7") == "7"
    assert get_run_number("KEMA0101") == "1"
    assert get_run_number("") == "1"


def test_quoting_helpers():
    assert quote_me('a\\b"') == '"a\\\\b"""'
    assert quote_me(None) == '""'
    assert escape_csv_str("") == ""
    assert escape_csv_str("plain") == "plain"
    assert escape_csv_str("a,b") == '"a,b"'
    assert escape_csv_str('a"b') == '"a""b"'


def test_correct_date_format():
    assert correct_date_format("19810101") == "1981-01-01"
    assert correct_date_format("") == ""
    assert correct_date_format("1981-01-01") == "1981-01-01"


def test_header_lines_line_up():
    lines = generate_acmo_header().splitlines()
    assert len(lines) == 3
    rows = [_fields(line) for line in lines]
    assert [r[0] for r in rows] == ["!", "!", "#"]
    assert rows[2][1:] == list(ACMO_CODES)
    assert len(rows[0]) == len(rows[1]) == len(rows[2]) == len(ACMO_CODES) + 1
    assert META_COLUMN_COUNT == 50


def test_data_line_matches_metadata_columns():
    line = extract_acmo_data(_experiment(), "DSSAT")
    assert len(_fields(line)) == META_COLUMN_COUNT + 1
    assert not line.endswith(",")


def test_data_line_values():
    ids = AcmoIds(clim_id="0XXX", clim_cat="", wid="W1", sid="S1", soil_id="KE_MA")
    row = _row(extract_acmo_data(_experiment(), "dssat", {DOME: "abc123"}, ids))
    assert row["SUITE_ID"] == ""
    assert row["EXNAME"] == "KEMA0101_1__1"
    assert row["FIELD_OVERLAY"] == DOME
    assert row["SEASONAL_STRATEGY"] == ""
    assert row["RUN#"] == "1"
    assert row["TRT_NAME"] == "Base"
    assert row["CLIM_ID"] == "0XXX"
    assert row["CLIM_REP"] == "1"
    assert row["CMSS"] == "CM4"
    assert (row["REG_ID"], row["STRATUM"], row["RAP_ID"], row["MAN_ID"]) == ("MACHAKOS", "1", "RAP1", "MAN2")
    assert row["INSTITUTION"] == "AgMIP"
    assert row["ROTATION"] == "0"
    assert row["WST_ID"] == "KEMA"
    assert row["SOIL_ID"] == "KE_MA"
    assert (row["FL_LAT"], row["FL_LONG"]) == ("-1.5", "37.2")
    assert (row["CRID_text"], row["CUL_ID"], row["CUL_NAME"]) == ("Maize", "GH0010", "KATUMANI")
    assert (row["SDAT"], row["PDATE"], row["HDATE"]) == ("1980-12-01", "1981-01-01", "1981-04-15")
    assert (row["HWAH"], row["CWAH"]) == ("2500", "6000")
    assert (row["IR#C"], row["IR_TOT"], row["IROP_text"]) == ("1", "25", "Sprinkler, mm")
    assert row["FE_#"] == row["FEN_TOT"] == row["OM_TOT"] == row["TI_#"] == ""
    assert (row["EID"], row["WID"], row["SID"]) == ("E1", "W1", "S1")
    assert row["DOID"] == "abc123"
    assert row["DSID"] == ""
    assert row["TOOL_VERSION"] == "quadui=1.2.3|acmoui="
    assert row["CROP_MODEL"] == "DSSAT"


def test_defaults_without_ids():
    row = _row(extract_acmo_data(_experiment(), "apsim"))
    assert row["CLIM_ID"] == "0XXX"
    assert row["SOIL_ID"] == "KE_MA0001"
    assert row["WID"] == row["SID"] == row["DOID"] == ""
    assert row["CUL_ID"] == ""
    assert row["CROP_MODEL"] == "APSIM"


def test_unapplied_dome_is_blank_but_still_describes_region():
    row = _row(extract_acmo_data(_experiment(field_dome_applied="N"), "DSSAT"))
    assert row["FIELD_OVERLAY"] == ""
    assert row["REG_ID"] == "MACHAKOS"


def test_seasonal_strategy_takes_precedence():
    experiment = _experiment(seasonal_strategy="KEMA-2-RAP9--1", seasonal_dome_applied="Y")
    row = _row(extract_acmo_data(experiment, "DSSAT"))
    assert row["SEASONAL_STRATEGY"] == "KEMA-2-RAP9--1"
    assert (row["REG_ID"], row["STRATUM"], row["RAP_ID"], row["MAN_ID"]) == ("KEMA", "2", "RAP9", "MAN2")


def test_batch_dome_columns():
    experiment = _experiment(
        exname="KEMA0101_1_b1__4",
        batch_dome="kema-1-rap1-man2",
        **{"batch_run#": "4", "batch_dome_applied": "Y"},
    )
    row = _row(extract_acmo_data(experiment, "DSSAT", {"KEMA-1-RAP1-MAN2": "bd"}))
    assert row["BATCH_DOME"] == "KEMA-1-RAP1-MAN2"
    assert row["BATCH_RUN#"] == "4"
    assert row["RUN#"] == "4"
    assert row["BDID"] == "bd"


def test_name_with_quote_and_comma_survives_csv():
    name = 'Trial "A", north'
    fields = _fields(extract_acmo_data(_experiment(exname=name, trt_name="N, high"), "DSSAT"))
    assert len(fields) == META_COLUMN_COUNT + 1
    assert fields[2] == name
    assert fields[9] == "N, high"


def test_date_with_comma_keeps_columns_aligned():
    experiment = _experiment(sdat="1981,01,01", observed={"hdate": "15/04/1981, late"})
    fields = _fields(extract_acmo_data(experiment, "DSSAT"))
    assert len(fields) == META_COLUMN_COUNT + 1
    row = dict(zip(ACMO_CODES, fields[1:]))
    assert row["SDAT"] == "1981,01,01"
    assert row["HDATE"] == "15/04/1981, late"
    assert row["CROP_MODEL"] == "DSSAT"


def test_null_fields_are_treated_as_missing():
    experiment = _experiment(trt_name=None, fl_lat=None, observed=None)
    experiment["management"] = {"events": [{"event": "irrigation", "irop": "IR004", "irval": None}]}
    row = _row(extract_acmo_data(experiment, "DSSAT"))
    assert row["TRT_NAME"] == ""
    assert row["FL_LAT"] == ""
    assert row["HWAH"] == ""
    assert (row["IR#C"], row["IR_TOT"], row["IROP_text"]) == ("1", "0", "Sprinkler, mm")


def test_invalid_experiment_raises_package_error():
    with pytest.raises(PackageError):
        extract_acmo_data({"management": {"events": [{"event": "planting", "crid": ["MAZ"]}]}}, "DSSAT")


def test_add_acmoui_version():
    line = extract_acmo_data(_experiment(), "DSSAT")
    assert _row(add_acmoui_version(line, "1.4"))["TOOL_VERSION"] == "quadui=1.2.3|acmoui=1.4"


def test_acmo_lines_use_package_indexes():
    package = AcmoPackage.from_raw(
        {
            "experiments": [_experiment(), _experiment(exname="KEMA0102_1__2", soil_id="OTHER")],
            "weathers": [{"wst_id": "KEMA0001", "clim_id": "IAFX", "clim_cat": "1", "wid": "W1"}],
            "soils": [{"soil_id": "KE_MA0001", "sid": "S1"}, {"soil_id": "KE_MA", "sid": "S1"}],
        }
    )
    rows = [_row(line) for line in acmo_lines(package, "DSSAT")]
    assert [r["EXNAME"] for r in rows] == ["KEMA0101_1__1", "KEMA0102_1__2"]
    assert (rows[0]["CLIM_ID"], rows[0]["CLIM_CAT"], rows[0]["WID"]) == ("IAFX", "1", "W1")
    assert (rows[0]["SOIL_ID"], rows[0]["SID"]) == ("KE_MA", "S1")
    assert (rows[1]["SOIL_ID"], rows[1]["SID"]) == ("OTHER", "")
    assert rows[0]["CMSS"] == "CM6"
    assert rows[1]["RUN#"] == "2"
