from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from sts_qa.errors import DataInconsistencyError, MissingInputError
from sts_qa.event import (
    Event,
    ReconstructedHit,
    ReconstructedTrack,
    TrackParam,
    TruthPoint,
    TruthTrack,
)

try:
    import orjson as _orjson
except Exception:  # pragma: no cover
    _orjson = None

logger = logging.getLogger(__name__)

TABLES: Dict[str, Sequence[str]] = {
    "mc_tracks": ("event", "track_id", "x", "y", "z", "px", "py", "pz", "pdg"),
    "sts_points": ("event", "point_id", "track_id", "station"),
    "sts_hits": ("event", "hit_id", "station", "point_ref"),
    "sts_tracks": ("event", "track_id", "hits", "x", "y", "z", "tx", "ty", "qp"),
}
_PARAM_COLS = ("x", "y", "z", "tx", "ty", "qp")


def _find_table(directory: Path, name: str) -> Optional[Path]:
    for suffix in (".parquet", ".csv", ".csv.gz"):
        path = directory / f"{name}{suffix}"
        if path.exists():
            return path
    return None


def available_inputs(directory: Path) -> frozenset:
    """Names of the known tables present in ``directory``."""
    return frozenset(name for name in TABLES if _find_table(Path(directory), name) is not None)


def read_tables(directory: Path) -> Dict[str, pd.DataFrame]:
    r"""
    Read the four event tables from ``directory``.

    Each table is looked up as ``<name>.parquet``, ``<name>.csv`` or
    ``<name>.csv.gz`` and must carry the columns listed in :data:`TABLES`.

    Raises
    ------
    MissingInputError
        If a table file or one of its required columns is absent.
    """
    directory = Path(directory)
    tables: Dict[str, pd.DataFrame] = {}
    for name, columns in TABLES.items():
        path = _find_table(directory, name)
        if path is None:
            raise MissingInputError(f"input table {name!r} not found in {directory}")
        df = pd.read_parquet(path) if path.suffix == ".parquet" else pd.read_csv(path)
        missing = [c for c in columns if c not in df.columns]
        if missing:
            raise MissingInputError(f"{path.name}: missing columns {', '.join(missing)}")
        tables[name] = df
        logger.debug("Read %s: %d rows", path.name, len(df))
    return tables


def _parse_hits(value: Any) -> List[int]:
    # "3 4 7" (CSV) or a list-like (parquet)
    if isinstance(value, str):
        return [int(tok) for tok in value.split()]
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return []
    if isinstance(value, (int, np.integer)):
        # single-hit track read back from CSV
        return [int(value)]
    return [int(v) for v in value]


def _point_ref(value: Any) -> Optional[int]:
    # -1 or an empty cell marks a fake hit
    if pd.isna(value) or int(value) < 0:
        return None
    return int(value)


def _param(row: Mapping[str, Any], prefix: str = "") -> TrackParam:
    return TrackParam(*(float(row[prefix + c]) for c in _PARAM_COLS))


def events_from_tables(tables: Mapping[str, pd.DataFrame]) -> List[Event]:
    r"""
    Assemble :class:`~sts_qa.event.Event` objects from the tables.

    Within an event, points are ordered by ``point_id`` and hits by
    ``hit_id``; ``sts_hits.point_ref`` is the position of the point in that
    order (``-1`` or an empty cell for a fake hit) and ``sts_tracks.hits``
    lists hit positions. Optional ``last_x .. last_qp``, ``chi2`` and ``ndf``
    columns fill the remaining track fields.

    References are not checked here; the QA lookups validate them lazily.
    """
    groups = {name: dict(tuple(df.groupby("event", sort=True))) for name, df in tables.items()}
    numbers = sorted(set().union(*(g.keys() for g in groups.values())))
    empty = {name: df.iloc[0:0] for name, df in tables.items()}

    events: List[Event] = []
    for number in numbers:
        part = {name: groups[name].get(number, empty[name]) for name in tables}

        mc = part["mc_tracks"]
        truth = [
            TruthTrack(
                track_id=int(t.track_id),
                start_vertex=(t.x, t.y, t.z),
                momentum=(t.px, t.py, t.pz),
                pdg_code=int(t.pdg),
            )
            for t in mc.itertuples(index=False)
        ]
        pts = part["sts_points"].sort_values("point_id", kind="stable")
        points = [
            TruthPoint(int(p.point_id), int(p.track_id), int(p.station)) for p in pts.itertuples(index=False)
        ]
        hts = part["sts_hits"].sort_values("hit_id", kind="stable")
        hits = [
            ReconstructedHit(int(h.hit_id), int(h.station), _point_ref(h.point_ref))
            for h in hts.itertuples(index=False)
        ]

        trk = part["sts_tracks"]
        has_last = all(f"last_{c}" in trk.columns for c in _PARAM_COLS)
        tracks = []
        for row in trk.to_dict("records"):
            tracks.append(
                ReconstructedTrack(
                    track_id=int(row["track_id"]),
                    hit_indices=_parse_hits(row["hits"]),
                    param_first=_param(row),
                    param_last=_param(row, "last_") if has_last else TrackParam(),
                    chi2=float(row.get("chi2", 0.0)),
                    ndf=int(row.get("ndf", 0)),
                )
            )

        ids = [t.track_id for t in truth]
        if len(set(ids)) != len(ids):
            raise DataInconsistencyError("duplicate truth track id", event=int(number))
        events.append(Event(int(number), truth, points, hits, tracks))

    logger.info("Assembled %d events", len(events))
    return events


def load_events(directory: Path) -> List[Event]:
    """Read the event tables of ``directory`` and group them into events."""
    return events_from_tables(read_tables(Path(directory)))


def _dumps(obj: Any) -> bytes:
    if _orjson is not None:
        return _orjson.dumps(obj, option=_orjson.OPT_INDENT_2 | _orjson.OPT_SERIALIZE_NUMPY)
    return json.dumps(obj, indent=2).encode("utf-8")


def write_results(
    path: Path,
    summary,
    accumulators=None,
    *,
    matching=None,
    config=None,
) -> Path:
    r"""
    Write the run summary (and optionally the raw histograms) as JSON.

    Parameters
    ----------
    path : pathlib.Path
        Output file; parent directories are created.
    summary : RunSummary
    accumulators : RunAccumulators, optional
        If given, counters and all raw distributions are included.
    matching : MatchingStatistics, optional
    config : QaConfig, optional

    Returns
    -------
    pathlib.Path
        The written path.
    """
    out: Dict[str, Any] = {"summary": summary.to_dict()}
    if accumulators is not None:
        out["counters"] = accumulators.counters.to_dict()
        out["histograms"] = {k: h.to_dict() for k, h in accumulators.histograms.items()}
        out["histograms_2d"] = {k: h.to_dict() for k, h in accumulators.histograms_2d.items()}
    if matching is not None:
        out["matching"] = matching.to_dict()
    if config is not None:
        out["config"] = config.to_dict()

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(_dumps(out))
    logger.info("Wrote results to %s", path)
    return path
