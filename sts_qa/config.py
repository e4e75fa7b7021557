from __future__ import annotations

import dataclasses
import json
import logging
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Tuple

from sts_qa.errors import ConfigurationError, ConfigurationWarning
from sts_qa.event import DetectorSetup
from sts_qa.histograms import Binning

try:
    import orjson as _orjson
except Exception:  # pragma: no cover
    _orjson = None

logger = logging.getLogger(__name__)

ERROR_POLICIES: Tuple[str, ...] = ("binomial", "over-unity")
VARIANTS: Tuple[str, ...] = ("find-tracks", "reconstruction")

# e-, e+, pi+, pi-, K+, K-, p, anti-p
DEFAULT_SPECIES: Tuple[int, ...] = (11, -11, 211, -211, 321, -321, 2212, -2212)


@dataclass
class HistogramConfig:
    """Binnings of the QA distributions."""
    momentum: Binning = Binning(40, 0.0, 10.0)
    n_points: Binning = Binning(16, -0.5, 15.5)
    vertex_z: Binning = Binning(50, 0.0, 50.0)
    resolution: Binning = Binning(20, -10.0, 10.0)
    ref_tracks: Binning = Binning(1000, -0.5, 999.5)


@dataclass
class QaConfig:
    r"""
    Run configuration of the QA.

    Attributes
    ----------
    variant : {"find-tracks", "reconstruction"}
        QA flavour; selects the reconstructibility criterion.
    min_stations : int
        Minimum number of distinct stations of a reconstructible truth track
        (station-count criterion).
    min_hits : int
        Base hit threshold of the hit-count criterion.
    quota : float
        Minimum fraction of true hits, :math:`0 < q \le 1`, inclusive.
    reference_momentum : float
        Momentum threshold (GeV/c) for reference tracks.
    vertex_tolerance : float
        Maximum distance (cm) of a vertex track's origin from the target.
    error_policy : {"binomial", "over-unity"}
        Error formula applied to every efficiency curve of the run.
    workers : int
        Thread count of the event runner; ``1`` runs sequentially.
    n_stations, target_position
        Detector setup used when no setup object is passed explicitly.
    species : tuple of int
        PDG codes with a dedicated efficiency-vs-momentum curve.
    histograms : HistogramConfig
    """
    variant: str = "find-tracks"
    min_stations: int = 3
    min_hits: int = 4
    quota: float = 0.7
    reference_momentum: float = 1.0
    vertex_tolerance: float = 1.0
    error_policy: str = "binomial"
    workers: int = 1
    n_stations: int = 8
    target_position: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    species: Tuple[int, ...] = DEFAULT_SPECIES
    histograms: HistogramConfig = field(default_factory=HistogramConfig)

    def validate(self) -> "QaConfig":
        if self.variant not in VARIANTS:
            raise ConfigurationError(
                f"variant must be one of {', '.join(VARIANTS)}, got {self.variant!r}"
            )
        if not 0.0 < float(self.quota) <= 1.0:
            raise ConfigurationError(f"quota must be in (0, 1], got {self.quota}")
        if int(self.min_stations) < 1:
            raise ConfigurationError(f"min_stations must be >= 1, got {self.min_stations}")
        if int(self.min_hits) < 1:
            raise ConfigurationError(f"min_hits must be >= 1, got {self.min_hits}")
        if self.reference_momentum < 0.0 or self.vertex_tolerance <= 0.0:
            raise ConfigurationError("reference_momentum must be >= 0 and vertex_tolerance > 0")
        if self.error_policy not in ERROR_POLICIES:
            raise ConfigurationError(
                f"error_policy must be one of {', '.join(ERROR_POLICIES)}, got {self.error_policy!r}"
            )
        if int(self.workers) < 1:
            raise ConfigurationError(f"workers must be >= 1, got {self.workers}")
        return self

    def detector_setup(self) -> DetectorSetup:
        return DetectorSetup(n_stations=int(self.n_stations), target_position=self.target_position)

    def check_against_setup(self, setup: DetectorSetup) -> bool:
        r"""
        Warn (non-fatal) when the station threshold cannot be met by the detector.

        Returns ``True`` if a :class:`~sts_qa.errors.ConfigurationWarning` was emitted.
        """
        if setup.n_stations and self.variant == "find-tracks" and self.min_stations > setup.n_stations:
            msg = (
                f"min_stations={self.min_stations} exceeds the {setup.n_stations} detector "
                "stations; no truth track will be reconstructible"
            )
            logger.warning(msg)
            warnings.warn(msg, ConfigurationWarning, stacklevel=2)
            return True
        return False

    def to_dict(self) -> Dict[str, Any]:
        d = dataclasses.asdict(self)
        d["histograms"] = {k: v.to_dict() for k, v in vars(self.histograms).items()}
        return d


def _deep_update(d: Mapping[str, Any], u: Mapping[str, Any]) -> Dict[str, Any]:
    out = dict(d)
    for k, v in u.items():
        if isinstance(v, Mapping) and isinstance(out.get(k), Mapping):
            out[k] = _deep_update(out[k], v)
        else:
            out[k] = v
    return out


def config_from_mapping(raw: Mapping[str, Any]) -> QaConfig:
    """
    Build a validated :class:`QaConfig` from a plain mapping.

    Unknown keys raise :class:`~sts_qa.errors.ConfigurationError`. Histogram
    binnings are given as ``{"n_bins": .., "lo": .., "hi": ..}`` or
    ``[n_bins, lo, hi]``.
    """
    known = {f.name for f in dataclasses.fields(QaConfig)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(f"unknown configuration keys: {', '.join(sorted(unknown))}")

    kwargs: MutableMapping[str, Any] = {k: v for k, v in raw.items() if k != "histograms"}
    if "target_position" in kwargs:
        tp = tuple(float(x) for x in kwargs["target_position"])
        if len(tp) != 3:
            raise ConfigurationError("target_position needs three coordinates")
        kwargs["target_position"] = tp
    if "species" in kwargs:
        kwargs["species"] = tuple(int(x) for x in kwargs["species"])

    hist = HistogramConfig()
    for name, value in (raw.get("histograms") or {}).items():
        if not hasattr(hist, name):
            raise ConfigurationError(f"unknown histogram binning {name!r}")
        try:
            if isinstance(value, Mapping):
                b = Binning(int(value["n_bins"]), float(value["lo"]), float(value["hi"]))
            else:
                n, lo, hi = value
                b = Binning(int(n), float(lo), float(hi))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"bad binning for {name!r}: {e}") from e
        setattr(hist, name, b)

    return QaConfig(histograms=hist, **kwargs).validate()


def load_config(config_path: Path, overrides: Mapping[str, Any] | None = None) -> QaConfig:
    r"""
    Load a JSON configuration with optional :mod:`orjson` acceleration.

    Parameters
    ----------
    config_path : pathlib.Path
        JSON file; its keys override the defaults of :class:`QaConfig`.
    overrides : mapping, optional
        Values applied on top of the file (e.g. from the command line),
        merged recursively.

    Returns
    -------
    QaConfig
        Validated configuration.

    Raises
    ------
    ConfigurationError
        If the file cannot be parsed or a value is invalid.
    """
    try:
        if _orjson is not None:
            raw = _orjson.loads(config_path.read_bytes())
        else:
            with config_path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Failed to parse {config_path}: {e}") from e
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"{config_path}: top level must be a JSON object")
    if overrides:
        raw = _deep_update(raw, overrides)
    return config_from_mapping(raw)
