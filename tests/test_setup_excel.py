"""Tests for the workbook bootstrap script."""

from __future__ import annotations

import openpyxl
import pytest

from shop_tracker import constants, data_manager, setup_excel


def test_build_master_workbook_has_every_sheet_with_bold_headers():
    workbook = setup_excel.build_master_workbook()

    assert workbook.sheetnames == list(data_manager.SHEET_COLUMNS)
    for sheet_name, columns in data_manager.SHEET_COLUMNS.items():
        header = workbook[sheet_name][1]
        assert [cell.value for cell in header] == list(columns)
        assert all(cell.font.bold for cell in header)


def test_build_master_workbook_seeds_named_shopkeeper():
    workbook = setup_excel.build_master_workbook(default_username="owner")
    users = data_manager.load_collection(workbook, constants.CollectionKey.USERS)
    assert users == [data_manager.UserRow("owner", "Shop Owner", "SHOPKEEPER", True)]


def test_create_master_workbook_refuses_to_overwrite(tmp_path):
    destination = tmp_path / "shop_data.xlsx"
    setup_excel.create_master_workbook(destination)

    with pytest.raises(FileExistsError):
        setup_excel.create_master_workbook(destination)

    assert setup_excel.create_master_workbook(destination, overwrite=True) == destination.resolve()


def test_main_creates_workbook_from_config(tmp_path, capsys):
    config_path = tmp_path / "config.ini"
    config_path.write_text(
        "[System]\nDataFile = data/shop.xlsx\nShopName = Corner\nSchemaVersion = 1.0.0\n\n"
        "[Defaults]\nDefaultUser = boss\n"
    )

    assert setup_excel.main(["--config", str(config_path)]) == 0

    workbook = openpyxl.load_workbook(tmp_path / "data" / "shop.xlsx")
    data_manager.validate_layout(workbook)
    assert workbook[constants.SheetName.USERS.value]["A2"].value == "boss"
    assert "[SUCCESS]" in capsys.readouterr().out


def test_main_reports_existing_workbook(tmp_path, capsys):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nDataFile = shop.xlsx\n\n[Defaults]\nDefaultUser = admin\n")
    (tmp_path / "shop.xlsx").write_bytes(b"")

    assert setup_excel.main(["--config", str(config_path)]) == 1
    assert "--force" in capsys.readouterr().out


def test_main_missing_config(tmp_path):
    assert setup_excel.main(["--config", str(tmp_path / "nope.ini")]) == 1
