import logging

from acmo_filename import create_csv_file, dome_info_prefix, read_acmo_meta

HEADER = "#,EXNAME,REG_ID,CRID_text,CLIM_ID,RAP_ID,MAN_ID,FIELD_OVERLAY,SEASONAL_STRATEGY\n"


def _meta(tmp_path, *rows, header=HEADER):
    path = tmp_path / "ACMO_meta.dat"
    path.write_text("!,Name of experiment\n" + header + "".join(r + "\n" for r in rows), encoding="utf-8")
    return path


def test_no_existing_file_uses_base_name(tmp_path):
    assert create_csv_file(tmp_path, "TEST").name == "ACMO-TEST.csv"


def test_collisions_get_counter(tmp_path):
    (tmp_path / "ACMO-TEST.csv").touch()
    assert create_csv_file(tmp_path, "TEST").name == "ACMO-TEST (1).csv"
    (tmp_path / "ACMO-TEST (1).csv").touch()
    assert create_csv_file(tmp_path, "TEST").name == "ACMO-TEST (2).csv"
    assert not (tmp_path / "ACMO-TEST (2).csv").exists()


def test_uniform_and_mixed_segments(tmp_path):
    meta = _meta(
        tmp_path,
        '*,"E1","MACHAKOS","Maize","0XXX",RAP1,MAN2,"",""',
        '*,"E2","MACHAKOS","Maize","0XXX",RAP1,MAN3,"",""',
    )
    assert create_csv_file(tmp_path, "DSSAT", meta).name == "ACMO-MACHAKOS-MAIZE-0XXX-RAP1-M-DSSAT.csv"


def test_blank_segments_become_zero(tmp_path):
    meta = _meta(tmp_path, '*,"E1","MACHAKOS","Sweet corn","",,,"",""')
    assert dome_info_prefix(read_acmo_meta(meta)) == "MACHAKOS-SWEETCORN-0-0-0-"


def test_region_recovered_from_seasonal_strategy(tmp_path):
    meta = _meta(tmp_path, '*,"E1","","Maize","IAFX",RAP9,,"MACHAKOS-1","KEMA-2-RAP9--1"')
    assert dome_info_prefix(read_acmo_meta(meta)) == "KEMA-MAIZE-IAFX-RAP9-0-"


def test_region_recovered_from_field_overlay(tmp_path):
    meta = _meta(tmp_path, '*,"E1","","Maize","IAFX",,,"MACHAKOS-1",""')
    assert dome_info_prefix(read_acmo_meta(meta)) == "MACHAKOS-MAIZE-IAFX-0-0-"


def test_no_region_anywhere_gives_empty_prefix(tmp_path):
    meta = _meta(tmp_path, '*,"E1","","Maize","IAFX",,,"",""')
    assert create_csv_file(tmp_path, "DSSAT", meta).name == "ACMO-DSSAT.csv"


def test_header_lookup_is_case_insensitive(tmp_path):
    meta = _meta(tmp_path, '*,"KENYA","Maize"', header="#,reg_id,crid_TEXT\n")
    assert dome_info_prefix(read_acmo_meta(meta)) == "KENYA-MAIZE-0-0-0-"


def test_region_column_required(tmp_path):
    meta = _meta(tmp_path, '*,"E1","Maize"', header="#,EXNAME,CRID_text\n")
    assert dome_info_prefix(read_acmo_meta(meta)) == ""


def test_meta_without_data_rows(tmp_path):
    assert read_acmo_meta(_meta(tmp_path)) is None
    assert dome_info_prefix(None) == ""


def test_unreadable_meta_degrades_to_plain_name(tmp_path, caplog):
    with caplog.at_level(logging.WARNING):
        path = create_csv_file(tmp_path, "DSSAT", tmp_path / "missing.dat")
    assert path.name == "ACMO-DSSAT.csv"
    assert "missing.dat" in caplog.text
