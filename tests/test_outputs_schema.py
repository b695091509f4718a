import numpy as np
import pandas as pd

from spatialpotential.data.outputs_schema import validate_isopleths_geojson, validate_potentials_table


def test_potentials_table_checks() -> None:
    df = pd.DataFrame({"id": ["a", "b"], "x": [0.0, 1.0], "y": [0.0, 1.0], "pop": [1.0, 2.0], "ratio": [np.nan, 0.5]})
    report = validate_potentials_table(df, value_cols=["pop", "ratio"])
    assert report.ok
    assert report.warnings == ["potentials: 1 NaN values in 'ratio'"]
    assert report.stats["pop"] == {"min": 1.0, "max": 2.0}

    bad = df.assign(id=["a", "a"], pop=[-1.0, 2.0])
    report = validate_potentials_table(bad, value_cols=["pop"])
    assert not report.ok
    assert len(report.errors) == 2


def test_isopleths_geojson_checks() -> None:
    square = {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 0]]]}
    fc = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "geometry": square, "properties": {"lower": 0.0, "upper": 1.0}},
            {"type": "Feature", "geometry": square, "properties": {"lower": 1.0, "upper": 2.0}},
        ],
    }
    assert validate_isopleths_geojson(fc, breaks=[0.0, 1.0, 2.0]).ok

    fc["features"].reverse()
    assert not validate_isopleths_geojson(fc, breaks=[0.0, 1.0, 2.0]).ok
    assert not validate_isopleths_geojson({"type": "Feature"}, breaks=[]).ok
