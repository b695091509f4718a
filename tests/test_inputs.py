import json
from pathlib import Path

import pandas as pd
import pytest

from spatialpotential.errors import InvalidParameter
from spatialpotential.inputs.load import load_mask_geojson, load_points_csv, mask_from_geojson, normalize_points_frame
from spatialpotential.inputs.validators import validate_points_table
from spatialpotential.spatial.frames import ReferenceFrame


def test_load_points_csv_keeps_string_ids_and_renames_coordinates(tmp_path: Path) -> None:
    path = tmp_path / "points.csv"
    path.write_text("code,COORDX,COORDY,pop\n007,10.5,20.5,3\n008,11,21,4\n", encoding="utf-8")
    df = load_points_csv(path, id_col="code")
    assert df["id"].tolist() == ["007", "008"]
    assert {"x", "y", "pop"} <= set(df.columns)
    assert "code" not in df.columns


def test_missing_id_column_gets_row_positions() -> None:
    df = normalize_points_frame(pd.DataFrame({"lon": [1.0, 2.0], "lat": [3.0, 4.0]}))
    assert df["id"].tolist() == ["0", "1"]
    assert df["x"].tolist() == [1.0, 2.0]


def test_validation_reports_errors_and_warnings() -> None:
    df = pd.DataFrame(
        {
            "id": ["a", "a", " "],
            "x": [1.0, 2.0, None],
            "y": [1.0, 2.0, 3.0],
            "pop": [1.0, -2.0, 3.0],
        }
    )
    report = validate_points_table(df, variables=["pop"], label="known")
    assert not report.ok
    text = " ".join(report.errors)
    assert "duplicates" in text
    assert "empty" in text
    assert "invalid x/y" in text
    assert "negative" in text
    # Planar coordinates this small look like degrees.
    assert report.warnings


def test_validation_of_geographic_bounds() -> None:
    df = pd.DataFrame({"id": ["a"], "x": [650000.0], "y": [6860000.0]})
    assert validate_points_table(df).ok
    report = validate_points_table(df, frame=ReferenceFrame.GEOGRAPHIC)
    assert not report.ok


def test_missing_stock_column_is_an_error() -> None:
    df = pd.DataFrame({"id": ["a"], "x": [650000.0], "y": [6860000.0]})
    report = validate_points_table(df, variables=["pop"])
    assert report.errors == ["points: missing required column 'pop'"]


def test_mask_from_geojson_feature_collection(tmp_path: Path) -> None:
    fc = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {}, "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [2, 0], [2, 2], [0, 2], [0, 0]]]}},
            {"type": "Feature", "properties": {}, "geometry": {"type": "Polygon", "coordinates": [[[2, 0], [4, 0], [4, 2], [2, 2], [2, 0]]]}},
            {"type": "Feature", "properties": {}, "geometry": {"type": "Point", "coordinates": [10, 10]}},
        ],
    }
    path = tmp_path / "mask.geojson"
    path.write_text(json.dumps(fc), encoding="utf-8")
    mask = load_mask_geojson(path)
    assert mask.area == pytest.approx(8.0)
    assert mask.bounds == (0.0, 0.0, 4.0, 2.0)


def test_mask_without_area_is_rejected() -> None:
    with pytest.raises(InvalidParameter):
        mask_from_geojson({"type": "Point", "coordinates": [0, 0]})
    with pytest.raises(InvalidParameter):
        mask_from_geojson({"type": "FeatureCollection", "features": []})
