import argparse
import json
from pathlib import Path
from typing import Any

from spatialpotential.errors import PotentialError
from spatialpotential.log import get_logger
from spatialpotential.settings import build_request, load_settings


def _floats(raw: str) -> list[float]:
    # "10,20.5,30" -> [10.0, 20.5, 30.0]
    try:
        return [float(x) for x in raw.split(",") if x.strip()]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected comma-separated numbers, got {raw!r}") from exc


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default="config/default.yaml", help="Path to config YAML")
    common.add_argument("--scenario", default=None, help="Scenario name (config/scenarios/<name>.yaml)")
    common.add_argument("--out", default=None, help="Output directory (default: project.outputs_dir)")

    model = argparse.ArgumentParser(add_help=False)
    model.add_argument("--points", required=True, help="CSV of known points (id, x, y, stock columns)")
    model.add_argument("--id-col", default="id", help="Id column of the points/targets CSV")
    model.add_argument("--var", action="append", default=None, help="Stock variable (repeatable)")
    model.add_argument("--family", choices=["exponential", "pareto"], default=None)
    model.add_argument("--span", type=float, default=None, help="Distance at which weight is 0.5")
    model.add_argument("--beta", type=float, default=None, help="Decay shape exponent")
    model.add_argument("--frame", choices=["planar", "geographic"], default=None)
    model.add_argument("--metric", choices=["euclidean", "geodesic"], default=None)
    model.add_argument("--workers", type=int, default=None, help="Threads for distance building")

    classify = argparse.ArgumentParser(add_help=False)
    classify.add_argument("--ratio", nargs=2, metavar=("NUM", "DEN"), default=None, help="Map NUM/DEN potentials")
    classify.add_argument("--ratio-scale", type=float, default=1.0, help="Multiplier applied to the ratio")
    classify.add_argument("--breaks", type=_floats, default=None, help="Comma-separated class breaks")
    classify.add_argument(
        "--exact-breaks",
        action="store_true",
        help="Use --breaks as given instead of refitting the ends to the new value range",
    )
    classify.add_argument("--method", choices=["quantile", "equal"], default=None)
    classify.add_argument("--nclass", type=int, default=None)

    parser = argparse.ArgumentParser(
        prog="spatialpotential", description="Spatial potentials and isopleths", parents=[common]
    )
    sub = parser.add_subparsers(dest="command", required=True)

    pot = sub.add_parser("potentials", parents=[common, model, classify], help="Potentials on points")
    pot.add_argument("--targets", default=None, help="CSV of evaluation points (default: the known points)")
    pot.add_argument("--mask", default=None, help="GeoJSON polygon; targets outside are dropped")

    iso = sub.add_parser("isopleths", parents=[common, model, classify], help="Grid potentials and isopleth bands")
    iso.add_argument("--mask", required=True, help="GeoJSON study-area polygon")
    iso.add_argument("--resolution", type=float, default=None, help="Grid cell size (frame units)")
    iso.add_argument("--buffer", type=float, default=None, help="Grid buffer around the mask")

    grid = sub.add_parser("grid", parents=[common], help="Write the grid cells covering a mask")
    grid.add_argument("--mask", required=True, help="GeoJSON study-area polygon")
    grid.add_argument("--resolution", type=float, default=None, help="Grid cell size (frame units)")
    grid.add_argument("--buffer", type=float, default=None, help="Grid buffer around the mask")
    grid.add_argument("--frame", choices=["planar", "geographic"], default=None)

    inter = sub.add_parser("interaction", parents=[common, model], help="Huff probabilities or Reilly catchments")
    inter.add_argument("--targets", default=None, help="CSV of evaluation points (default: the known points)")
    inter.add_argument("--model", choices=["huff", "reilly"], default="huff")
    return parser


def _overrides(args: argparse.Namespace, *, mode: str) -> dict[str, Any]:
    ratio = None
    if getattr(args, "ratio", None):
        num, den = args.ratio
        ratio = {"numerator": num, "denominator": den, "scale": args.ratio_scale}
    return {
        "mode": mode,
        "variables": getattr(args, "var", None),
        "family": getattr(args, "family", None),
        "span": getattr(args, "span", None),
        "beta": getattr(args, "beta", None),
        "frame": getattr(args, "frame", None),
        "metric": getattr(args, "metric", None),
        "workers": getattr(args, "workers", None),
        "resolution": getattr(args, "resolution", None),
        "buffer": getattr(args, "buffer", None),
        "ratio": ratio,
        "breaks": getattr(args, "breaks", None),
        "comparable": False if getattr(args, "exact_breaks", False) else None,
        "breaks_method": getattr(args, "method", None),
        "nclass": getattr(args, "nclass", None),
    }


def _finish(
    *,
    settings: dict[str, Any],
    args: argparse.Namespace,
    out_dir: Path,
    request: dict[str, Any],
    inputs: list[Path],
    outputs: list[Path],
    breaks: list[float],
) -> None:
    from spatialpotential.data.outputs_schema import SCHEMA_VERSION
    from spatialpotential.run_meta import build_run_meta, file_meta, new_run_id, utc_now_iso, write_json

    meta = build_run_meta(
        run_id=new_run_id(),
        generated_at=utc_now_iso(),
        settings=settings,
        command=str(args.command),
        request=request,
        input_sources=[file_meta(p) for p in inputs],
        outputs=[file_meta(p) for p in outputs],
        breaks=breaks,
        schema_versions={"outputs": SCHEMA_VERSION},
    )
    write_json(out_dir / "run_meta.json", meta)
    get_logger().info("Wrote %d outputs to %s (run_id=%s)", len(outputs), out_dir, meta["run_id"])


def _check_report(report: Any) -> None:
    log = get_logger()
    for w in report.warnings:
        log.warning(w)
    if not report.ok:
        raise PotentialError("; ".join(report.errors))


def _run(args: argparse.Namespace, settings: dict[str, Any]) -> None:
    from spatialpotential.data.outputs_schema import validate_isopleths_geojson, validate_potentials_table
    from spatialpotential.inputs.load import load_mask_geojson, load_points_csv
    from spatialpotential.run_meta import write_json

    out_dir = Path(args.out) if args.out else Path(settings["paths"]["outputs_dir"])
    out_dir.mkdir(parents=True, exist_ok=True)

    if args.command == "grid":
        from spatialpotential.spatial.frames import parse_frame
        from spatialpotential.spatial.grid import DEFAULT_MAX_CELLS, generate_grid

        grid_cfg = settings.get("grid", {}) or {}
        resolution = args.resolution if args.resolution is not None else grid_cfg.get("resolution")
        if resolution is None:
            raise PotentialError("grid requires --resolution (or grid.resolution in the config)")
        buffer = args.buffer if args.buffer is not None else grid_cfg.get("buffer") or 0.0
        frame = args.frame or (settings.get("distance", {}) or {}).get("frame", "planar")
        mask_path = Path(args.mask)
        grid = generate_grid(
            load_mask_geojson(mask_path),
            float(resolution),
            buffer=float(buffer),
            max_cells=int(grid_cfg.get("max_cells", DEFAULT_MAX_CELLS)),
            frame=parse_frame(frame),
        )
        out_path = out_dir / "grid.csv"
        grid.cells.to_frame().to_csv(out_path, index=False)
        request = {"resolution": float(resolution), "buffer": float(buffer), "frame": frame}
        _finish(settings=settings, args=args, out_dir=out_dir, request=request, inputs=[mask_path], outputs=[out_path], breaks=[])
        return

    points_path = Path(args.points)
    known_df = load_points_csv(points_path, id_col=args.id_col)
    inputs = [points_path]
    targets_df = None
    if getattr(args, "targets", None):
        inputs.append(Path(args.targets))
        targets_df = load_points_csv(Path(args.targets), id_col=args.id_col)

    if args.command == "interaction":
        from spatialpotential.pipeline import run_interaction

        request = build_request(settings, **_overrides(args, mode="discrete"))
        table = run_interaction(known_df, request, model=args.model, targets_df=targets_df)
        out_path = out_dir / f"{args.model}.csv"
        table.to_csv(out_path, index=False)
        _finish(
            settings=settings,
            args=args,
            out_dir=out_dir,
            request=request.model_dump(),
            inputs=inputs,
            outputs=[out_path],
            breaks=[],
        )
        return

    if args.command == "potentials":
        from spatialpotential.pipeline import run_discrete

        request = build_request(settings, **_overrides(args, mode="discrete"))
        mask = None
        if args.mask:
            inputs.append(Path(args.mask))
            mask = load_mask_geojson(Path(args.mask))
        result = run_discrete(known_df, request, targets_df=targets_df, mask=mask)
        value_cols = [c for c in result.table.columns if c not in {"id", "x", "y", "row", "col"}]
        _check_report(validate_potentials_table(result.table, value_cols=value_cols))

        table_path = out_dir / "potentials.csv"
        result.table.to_csv(table_path, index=False)
        breaks_path = out_dir / "breaks.json"
        write_json(breaks_path, {"variable": request.classified_variable, "breaks": result.breaks})
        _finish(
            settings=settings,
            args=args,
            out_dir=out_dir,
            request=request.model_dump(),
            inputs=inputs,
            outputs=[table_path, breaks_path],
            breaks=result.breaks,
        )
        return

    if args.command == "isopleths":
        from spatialpotential.isopleth.extract import isopleths_geojson
        from spatialpotential.pipeline import run_raster

        request = build_request(settings, **_overrides(args, mode="raster"))
        mask_path = Path(args.mask)
        inputs.append(mask_path)
        result = run_raster(known_df, load_mask_geojson(mask_path), request)
        value_cols = [c for c in result.table.columns if c not in {"id", "x", "y", "row", "col"}]
        _check_report(validate_potentials_table(result.table, value_cols=value_cols))
        fc = isopleths_geojson(result.isopleths)
        _check_report(validate_isopleths_geojson(fc, breaks=result.breaks))

        table_path = out_dir / "grid_potentials.csv"
        result.table.to_csv(table_path, index=False)
        geojson_path = out_dir / "isopleths.geojson"
        geojson_path.write_text(json.dumps(fc, ensure_ascii=False), encoding="utf-8")
        breaks_path = out_dir / "breaks.json"
        write_json(breaks_path, {"variable": request.classified_variable, "breaks": result.breaks})
        _finish(
            settings=settings,
            args=args,
            out_dir=out_dir,
            request=request.model_dump(),
            inputs=inputs,
            outputs=[table_path, geojson_path, breaks_path],
            breaks=result.breaks,
        )
        return

    raise SystemExit(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    settings = load_settings(Path(args.config), scenario=args.scenario)
    try:
        _run(args, settings)
    except (PotentialError, FileNotFoundError) as exc:
        get_logger().error("%s failed: %s", args.command, exc)
        raise SystemExit(f"error: {exc}") from exc


if __name__ == "__main__":
    main()
